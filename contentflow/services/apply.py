from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Sequence
from typing import Any, Protocol

from contentflow.schemas import (
    PRODUCT_DESCRIPTION,
    PRODUCT_TITLE,
    SEO_DESCRIPTION,
    SEO_TITLE,
    ApplyOutcome,
    ApplySummary,
    GenerationResult,
    UserError,
)
from contentflow.shopify_api import PRODUCT_GID_PREFIX, ShopifyApiError

logger = logging.getLogger(__name__)

APPLY_FAILED_MESSAGE = "Failed to apply changes."


class ProductUpdater(Protocol):
    async def update_product(self, *, product_input: dict[str, Any]) -> dict[str, Any]: ...


class ProductUpdateRejected(RuntimeError):
    """The catalog refused the update with field-level user errors."""

    def __init__(self, *, product_id: str, user_errors: list[UserError]) -> None:
        messages = "; ".join(error.message for error in user_errors)
        super().__init__(f"productUpdate rejected for product {product_id}: {messages}")
        self.product_id = product_id
        self.user_errors = user_errors


class NothingToApplyError(ValueError):
    pass


def to_product_gid(product_id: str) -> str:
    if product_id.startswith(PRODUCT_GID_PREFIX):
        return product_id
    return f"{PRODUCT_GID_PREFIX}{product_id}"


def description_to_html(text: str) -> str:
    lines = (line.strip() for line in text.split("\n"))
    return "".join(f"<p>{line}</p>" for line in lines if line)


def build_product_update_input(product: GenerationResult, destinations: Sequence[str]) -> dict[str, Any]:
    """Map generated values onto a sparse ``ProductInput``.

    Only requested destinations with a non-empty generated value are set;
    unknown destinations are ignored.
    """
    product_input: dict[str, Any] = {"id": to_product_gid(product.id)}

    if PRODUCT_TITLE in destinations and product.generatedTitle:
        product_input["title"] = product.generatedTitle

    if PRODUCT_DESCRIPTION in destinations and product.generatedDescription:
        description_html = description_to_html(product.generatedDescription)
        if description_html:
            product_input["descriptionHtml"] = description_html

    seo: dict[str, str] = {}
    if SEO_TITLE in destinations and product.generatedSeoTitle:
        seo["title"] = product.generatedSeoTitle
    if SEO_DESCRIPTION in destinations and product.generatedSeoDescription:
        seo["description"] = product.generatedSeoDescription
    if seo:
        product_input["seo"] = seo

    return product_input


async def apply_single(
    product: GenerationResult,
    destinations: Sequence[str],
    *,
    client: ProductUpdater,
) -> dict[str, Any]:
    product_input = build_product_update_input(product, destinations)
    if len(product_input) == 1:
        raise NothingToApplyError(
            f"No generated content to apply for product {product.id} and the requested destinations"
        )

    response = await client.update_product(product_input=product_input)
    user_errors = [UserError.model_validate(error) for error in response.get("userErrors") or []]
    if user_errors:
        raise ProductUpdateRejected(product_id=product.id, user_errors=user_errors)

    logger.info(
        "Applied generated content",
        extra={"product_id": product.id, "fields": sorted(key for key in product_input if key != "id")},
    )
    return response.get("product") or {}


async def apply_product(
    product: GenerationResult,
    destinations: Sequence[str],
    *,
    client: ProductUpdater,
) -> ApplyOutcome:
    try:
        updated = await apply_single(product, destinations, client=client)
    except ProductUpdateRejected as exc:
        return ApplyOutcome(productId=product.id, success=False, userErrors=exc.user_errors, error=str(exc))
    except NothingToApplyError as exc:
        return ApplyOutcome(productId=product.id, success=False, skipped=True, error=str(exc))
    except ShopifyApiError as exc:
        logger.warning("Apply failed for product", extra={"product_id": product.id, "error": str(exc)})
        return ApplyOutcome(productId=product.id, success=False, error=str(exc))
    except Exception:
        logger.exception("Unexpected apply failure for product", extra={"product_id": product.id})
        return ApplyOutcome(productId=product.id, success=False, error=APPLY_FAILED_MESSAGE)
    return ApplyOutcome(productId=product.id, success=True, product=updated)


def is_pending_apply(product: GenerationResult) -> bool:
    return product.error is None and product.status in (None, "not-applied")


def summarize_outcomes(outcomes: Sequence[ApplyOutcome]) -> ApplySummary:
    applied = sum(1 for outcome in outcomes if outcome.success)
    skipped = sum(1 for outcome in outcomes if outcome.skipped)
    return ApplySummary(
        total=len(outcomes),
        applied=applied,
        failed=len(outcomes) - applied - skipped,
        skipped=skipped,
    )


async def apply_all(
    products: Sequence[GenerationResult],
    destinations: Sequence[str],
    *,
    client: ProductUpdater,
    max_concurrency: int = 4,
) -> tuple[list[ApplyOutcome], ApplySummary]:
    """Apply every pending product, continuing past individual failures.

    Products already applied or that failed generation are reported as
    skipped. Updates for the same product id never run concurrently.
    """
    semaphore = asyncio.Semaphore(max(1, max_concurrency))
    product_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def _apply(product: GenerationResult) -> ApplyOutcome:
        if not is_pending_apply(product):
            reason = product.error or f"Product status is {product.status}"
            return ApplyOutcome(productId=product.id, success=False, skipped=True, error=reason)
        async with product_locks[to_product_gid(product.id)], semaphore:
            return await apply_product(product, destinations, client=client)

    outcomes = list(await asyncio.gather(*(_apply(product) for product in products)))
    summary = summarize_outcomes(outcomes)
    logger.info("Bulk apply finished", extra=summary.model_dump())
    return outcomes, summary
