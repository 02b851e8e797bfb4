from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from contentflow.deps import get_shopify_api
from contentflow.schemas import CatalogResponse
from contentflow.services.catalog import CatalogReadError, filter_products, read_catalog
from contentflow.shopify_api import ShopifyApiClient, ShopifyApiError

router = APIRouter(prefix="/catalog", tags=["catalog"])


@router.get("/products", response_model=CatalogResponse)
async def list_catalog_products(
    search: str | None = None,
    vendor: list[str] | None = Query(default=None),
    productType: list[str] | None = Query(default=None),
    tag: list[str] | None = Query(default=None),
    collection: list[str] | None = Query(default=None),
    allowPartial: bool = False,
    shopify_api: ShopifyApiClient = Depends(get_shopify_api),
):
    try:
        snapshot = await read_catalog(shopify_api, allow_partial=allowPartial)
    except CatalogReadError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc
    except ShopifyApiError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc

    products = filter_products(
        snapshot.products,
        search=search,
        vendors=vendor or [],
        product_types=productType or [],
        tags=tag or [],
        collections=collection or [],
    )
    return CatalogResponse(
        shopDomain=shopify_api.shop_domain,
        products=products,
        vendors=snapshot.facets.vendors,
        productTypes=snapshot.facets.product_types,
        tags=snapshot.facets.tags,
        collections=snapshot.facets.collections,
        complete=snapshot.complete,
        warning=snapshot.warning,
    )
