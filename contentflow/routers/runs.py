from __future__ import annotations

from collections import Counter

from fastapi import APIRouter, Depends, HTTPException, Request, status

from contentflow.deps import get_flow_store, get_llm_client, get_run_store, get_shopify_api
from contentflow.llm import LLMClient
from contentflow.routers.generation import apply_single_or_raise, generate_results
from contentflow.schemas import (
    ApplyAllResponse,
    ApplyOutcome,
    CreateRunRequest,
    Product,
    RunApplyRequest,
    RunRecord,
)
from contentflow.services.apply import apply_all
from contentflow.services.catalog import CatalogReadError, read_catalog
from contentflow.services.flows import FlowNotFoundError, FlowStore
from contentflow.services.runs import RunNotFoundError, RunStore
from contentflow.shopify_api import ShopifyApiClient, ShopifyApiError

router = APIRouter(prefix="/runs", tags=["runs"])


def _get_run_or_404(runs: RunStore, run_id: str) -> RunRecord:
    try:
        return runs.get_run(run_id)
    except RunNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


async def _select_products(
    payload: CreateRunRequest,
    *,
    shopify_api: ShopifyApiClient,
) -> list[Product]:
    if payload.products is not None:
        counts = Counter(product.id for product in payload.products)
        duplicates = sorted(product_id for product_id, count in counts.items() if count > 1)
        if duplicates:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Duplicate product id(s): {', '.join(duplicates)}",
            )
        return payload.products
    if not payload.productIds:
        return []

    try:
        snapshot = await read_catalog(shopify_api)
    except CatalogReadError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc
    except ShopifyApiError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc

    wanted = set(payload.productIds)
    selected = [product for product in snapshot.products if product.id in wanted]
    missing = wanted.difference(product.id for product in selected)
    if missing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown product id(s): {', '.join(sorted(missing))}",
        )
    return selected


@router.post("", response_model=RunRecord, status_code=status.HTTP_201_CREATED)
async def create_run(
    payload: CreateRunRequest,
    flows: FlowStore = Depends(get_flow_store),
    runs: RunStore = Depends(get_run_store),
    shopify_api: ShopifyApiClient = Depends(get_shopify_api),
):
    try:
        flow = flows.get_flow(payload.flowId)
    except FlowNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    products = await _select_products(payload, shopify_api=shopify_api)
    if not products:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No products provided.")
    return runs.create_run(flow=flow, products=products)


@router.get("/{run_id}", response_model=RunRecord)
def get_run(run_id: str, runs: RunStore = Depends(get_run_store)):
    return _get_run_or_404(runs, run_id)


@router.delete("/{run_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_run(run_id: str, runs: RunStore = Depends(get_run_store)):
    try:
        runs.delete_run(run_id)
    except RunNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.post("/{run_id}/generate", response_model=RunRecord)
async def generate_run(
    run_id: str,
    request: Request,
    onlyFailed: bool = False,
    runs: RunStore = Depends(get_run_store),
    llm: LLMClient = Depends(get_llm_client),
):
    run = _get_run_or_404(runs, run_id)
    targets = [product for product in run.products if product.status == "failed"] if onlyFailed else run.products
    if not targets:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No products to generate.")

    results = await generate_results(
        request,
        products=targets,
        prompt=run.flow.prompt,
        destinations=run.flow.destinations,
        llm=llm,
    )
    by_id = {result.id: result for result in results}
    merged = [by_id.get(product.id, product) for product in run.products]
    return runs.record_generation(run_id, merged)


@router.post("/{run_id}/apply", response_model=RunRecord)
async def apply_run_product(
    run_id: str,
    payload: RunApplyRequest,
    runs: RunStore = Depends(get_run_store),
    shopify_api: ShopifyApiClient = Depends(get_shopify_api),
):
    run = _get_run_or_404(runs, run_id)
    product = next((item for item in run.products if item.id == payload.productId), None)
    if product is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Product {payload.productId} is not part of run {run_id}",
        )
    if product.error:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Product {product.id} has no generated content: {product.error}",
        )

    updated = await apply_single_or_raise(product, run.flow.destinations, shopify_api=shopify_api)
    outcome = ApplyOutcome(productId=product.id, success=True, product=updated)
    return runs.record_apply_outcomes(run_id, [outcome])


@router.post("/{run_id}/apply-all", response_model=ApplyAllResponse)
async def apply_run_all(
    run_id: str,
    runs: RunStore = Depends(get_run_store),
    shopify_api: ShopifyApiClient = Depends(get_shopify_api),
):
    run = _get_run_or_404(runs, run_id)
    if not run.generated:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Run {run_id} has not been generated yet")

    outcomes, summary = await apply_all(run.products, run.flow.destinations, client=shopify_api)
    runs.record_apply_outcomes(run_id, outcomes)
    return ApplyAllResponse(results=outcomes, summary=summary)
