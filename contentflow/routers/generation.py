from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status

from contentflow.config import settings
from contentflow.deps import get_llm_client, get_shopify_api
from contentflow.llm import LLMClient
from contentflow.schemas import (
    ApplyAllRequest,
    ApplyAllResponse,
    ApplySingleRequest,
    ApplySingleResponse,
    GenerateRequest,
    GenerateResponse,
    GenerationResult,
    Product,
)
from contentflow.services.apply import (
    NothingToApplyError,
    ProductUpdateRejected,
    apply_all,
    apply_single,
)
from contentflow.services.generation import GenerationInputError, run_generation_batch
from contentflow.shopify_api import ShopifyApiClient, ShopifyApiError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["generation"])

_DISCONNECT_POLL_SECONDS = 0.5


@contextlib.asynccontextmanager
async def cancel_on_disconnect(request: Request) -> AsyncIterator[asyncio.Event]:
    """Yield an event that is set once the HTTP client goes away."""
    cancel_event = asyncio.Event()

    async def _watch() -> None:
        while not cancel_event.is_set():
            if await request.is_disconnected():
                logger.info("Client disconnected; cancelling pending generation", extra={"path": request.url.path})
                cancel_event.set()
                return
            await asyncio.sleep(_DISCONNECT_POLL_SECONDS)

    watcher = asyncio.create_task(_watch())
    try:
        yield cancel_event
    finally:
        watcher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await watcher


async def generate_results(
    request: Request,
    *,
    products: Sequence[Product],
    prompt: str,
    destinations: Sequence[str],
    llm: LLMClient,
) -> list[GenerationResult]:
    try:
        async with cancel_on_disconnect(request) as cancel_event:
            return await run_generation_batch(
                products,
                prompt=prompt,
                destinations=destinations,
                llm=llm,
                max_concurrency=settings.GENERATION_MAX_CONCURRENCY,
                timeout_seconds=settings.GENERATION_TIMEOUT_SECONDS,
                cancel_event=cancel_event,
            )
    except GenerationInputError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("Generation batch failed", extra={"product_count": len(products)})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to generate content.",
        ) from exc


async def apply_single_or_raise(
    product: GenerationResult,
    destinations: Sequence[str],
    *,
    shopify_api: ShopifyApiClient,
) -> dict[str, Any]:
    try:
        return await apply_single(product, destinations, client=shopify_api)
    except ProductUpdateRejected as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=[error.model_dump() for error in exc.user_errors],
        ) from exc
    except NothingToApplyError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ShopifyApiError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("Apply failed", extra={"product_id": product.id})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to apply changes.",
        ) from exc


@router.post("/generate", response_model=GenerateResponse)
async def generate(
    payload: GenerateRequest,
    request: Request,
    llm: LLMClient = Depends(get_llm_client),
):
    results = await generate_results(
        request,
        products=payload.products,
        prompt=payload.prompt,
        destinations=payload.destinations,
        llm=llm,
    )
    return GenerateResponse(results=results)


@router.post("/apply-single", response_model=ApplySingleResponse)
async def apply_single_product(
    payload: ApplySingleRequest,
    shopify_api: ShopifyApiClient = Depends(get_shopify_api),
):
    if payload.product is None or payload.destinations is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No product or destinations provided",
        )
    updated = await apply_single_or_raise(payload.product, payload.destinations, shopify_api=shopify_api)
    return ApplySingleResponse(success=True, product=updated)


@router.post("/apply-all", response_model=ApplyAllResponse)
async def apply_all_products(
    payload: ApplyAllRequest,
    shopify_api: ShopifyApiClient = Depends(get_shopify_api),
):
    if not payload.products:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No products provided.")
    if not payload.destinations:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No destinations provided.")

    outcomes, summary = await apply_all(payload.products, payload.destinations, client=shopify_api)
    return ApplyAllResponse(results=outcomes, summary=summary)
