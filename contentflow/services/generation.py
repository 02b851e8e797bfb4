from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any, Optional, Protocol

from contentflow.schemas import (
    GENERATED_FIELD_BY_DESTINATION,
    PRODUCT_DESCRIPTION,
    GenerationResult,
    Product,
)

logger = logging.getLogger(__name__)

DEFAULT_PROMPT = "Generate SEO content."
CANCELLED_MESSAGE = "Generation cancelled"
EMPTY_OUTPUT_MESSAGE = "Model returned no content"


class GenerationInputError(ValueError):
    pass


class GenerationCancelledError(RuntimeError):
    pass


class TextGenerator(Protocol):
    async def generate(self, content: list[dict[str, Any]]) -> Optional[str]: ...


def build_source_lines(product: Product) -> list[str]:
    sources: list[str] = []
    if product.title:
        sources.append(f"Product Title: {product.title}")
    if product.vendor:
        sources.append(f"Vendor: {product.vendor}")
    if product.productType:
        sources.append(f"Type: {product.productType}")
    return sources


def build_generation_content(
    product: Product,
    prompt: str,
    destinations: Sequence[str],
) -> list[dict[str, Any]]:
    """Build the user message parts for one product.

    The product image is only attached when a description is requested, so the
    model can describe what it sees.
    """
    text = f"{prompt}\n\n" + "\n".join(build_source_lines(product))
    content: list[dict[str, Any]] = [{"type": "text", "text": text}]
    if product.featuredImage and PRODUCT_DESCRIPTION in destinations:
        content.append({"type": "image_url", "image_url": {"url": product.featuredImage}})
    return content


def requested_generated_fields(destinations: Sequence[str]) -> list[str]:
    fields: list[str] = []
    for destination in destinations:
        field_name = GENERATED_FIELD_BY_DESTINATION.get(destination)
        if field_name and field_name not in fields:
            fields.append(field_name)
    return fields


def _product_fields(product: Product) -> dict[str, Any]:
    return product.model_dump(include=set(Product.model_fields))


def build_success_result(product: Product, text: str, destinations: Sequence[str]) -> GenerationResult:
    # One completion per product: the same text lands in every requested slot.
    values = {field_name: text for field_name in requested_generated_fields(destinations)}
    return GenerationResult(**_product_fields(product), **values, error=None)


def build_failure_result(product: Product, message: str) -> GenerationResult:
    return GenerationResult(**_product_fields(product), error=message)


def validate_generation_input(products: Sequence[Product], destinations: Sequence[str]) -> None:
    if not products:
        raise GenerationInputError("No products provided.")
    if not destinations:
        raise GenerationInputError("No destinations provided.")


async def _generate_text(
    llm: TextGenerator,
    content: list[dict[str, Any]],
    *,
    timeout_seconds: float | None,
    cancel_event: asyncio.Event | None,
) -> Optional[str]:
    call = asyncio.ensure_future(llm.generate(content))
    if cancel_event is None:
        return await asyncio.wait_for(call, timeout=timeout_seconds)

    cancelled = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _ = await asyncio.wait(
            {call, cancelled},
            timeout=timeout_seconds,
            return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        for task in (call, cancelled):
            if not task.done():
                task.cancel()

    if call in done:
        return call.result()
    if cancelled in done:
        raise GenerationCancelledError(CANCELLED_MESSAGE)
    raise asyncio.TimeoutError()


async def generate_for_product(
    product: Product,
    *,
    prompt: str,
    destinations: Sequence[str],
    llm: TextGenerator,
    semaphore: asyncio.Semaphore,
    timeout_seconds: float | None = None,
    cancel_event: asyncio.Event | None = None,
) -> GenerationResult:
    async with semaphore:
        if cancel_event is not None and cancel_event.is_set():
            return build_failure_result(product, CANCELLED_MESSAGE)

        content = build_generation_content(product, prompt, destinations)
        logger.info(
            "Generating content for product",
            extra={
                "product_id": product.id,
                "destinations": list(destinations),
                "has_image": len(content) > 1,
            },
        )
        try:
            text = await _generate_text(
                llm,
                content,
                timeout_seconds=timeout_seconds,
                cancel_event=cancel_event,
            )
        except GenerationCancelledError:
            return build_failure_result(product, CANCELLED_MESSAGE)
        except asyncio.TimeoutError:
            logger.warning(
                "Generation timed out for product",
                extra={"product_id": product.id, "timeout_seconds": timeout_seconds},
            )
            return build_failure_result(product, f"Generation timed out after {timeout_seconds:g}s")
        except Exception as exc:
            logger.exception("Generation failed for product", extra={"product_id": product.id})
            return build_failure_result(product, str(exc) or exc.__class__.__name__)

    if not text:
        return build_failure_result(product, EMPTY_OUTPUT_MESSAGE)
    return build_success_result(product, text, destinations)


async def run_generation_batch(
    products: Sequence[Product],
    *,
    prompt: str,
    destinations: Sequence[str],
    llm: TextGenerator,
    max_concurrency: int = 8,
    timeout_seconds: float | None = None,
    cancel_event: asyncio.Event | None = None,
) -> list[GenerationResult]:
    """Generate destination content for every product independently.

    Returns exactly one result per input product, in input order. A product
    whose call fails, times out or is cancelled carries ``error`` and no
    generated fields; its siblings are unaffected.
    """
    validate_generation_input(products, destinations)
    if max_concurrency < 1:
        raise GenerationInputError("max_concurrency must be at least 1")

    effective_prompt = prompt.strip() or DEFAULT_PROMPT
    semaphore = asyncio.Semaphore(max_concurrency)
    results = await asyncio.gather(
        *(
            generate_for_product(
                product,
                prompt=effective_prompt,
                destinations=destinations,
                llm=llm,
                semaphore=semaphore,
                timeout_seconds=timeout_seconds,
                cancel_event=cancel_event,
            )
            for product in products
        )
    )

    failed = sum(1 for result in results if result.error)
    logger.info(
        "Generation batch finished",
        extra={"total": len(results), "succeeded": len(results) - failed, "failed": failed},
    )
    return list(results)
