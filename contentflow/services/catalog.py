from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from contentflow.schemas import UNKNOWN_PRODUCT_TYPE, CollectionRef, Product
from contentflow.shopify_api import ShopifyApiClient, ShopifyApiError

logger = logging.getLogger(__name__)


class CatalogReadError(RuntimeError):
    def __init__(self, *, message: str, pages_read: int, status_code: int = 502) -> None:
        super().__init__(message)
        self.pages_read = pages_read
        self.status_code = status_code


@dataclass
class ProductFacets:
    vendors: list[str] = field(default_factory=list)
    product_types: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    collections: list[CollectionRef] = field(default_factory=list)


@dataclass
class CatalogSnapshot:
    products: list[Product]
    facets: ProductFacets
    pages_read: int
    complete: bool = True
    warning: str | None = None


def strip_gid(value: str) -> str:
    """Return the trailing local id of a Shopify GID (``gid://shopify/Product/1`` -> ``1``)."""
    return value.rsplit("/", 1)[-1]


def normalize_product_node(node: dict[str, Any]) -> Product:
    raw_id = node.get("id")
    if not isinstance(raw_id, str) or not raw_id:
        raise ShopifyApiError(message="Product node is missing id")

    product_type = node.get("productType")
    if not isinstance(product_type, str) or not product_type.strip():
        product_type = UNKNOWN_PRODUCT_TYPE
    else:
        product_type = product_type.strip()

    image = node.get("featuredImage") or {}
    image_url = image.get("url") if isinstance(image, dict) else None

    collection_edges = (node.get("collections") or {}).get("edges") or []
    collections: list[CollectionRef] = []
    for edge in collection_edges:
        collection = (edge or {}).get("node") or {}
        collection_id = collection.get("id")
        if not isinstance(collection_id, str) or not collection_id:
            continue
        collections.append(CollectionRef(id=strip_gid(collection_id), title=collection.get("title") or ""))

    return Product(
        id=strip_gid(raw_id),
        title=node.get("title") or "",
        vendor=node.get("vendor") or "",
        productType=product_type,
        tags=[tag for tag in (node.get("tags") or []) if isinstance(tag, str)],
        featuredImage=image_url if isinstance(image_url, str) and image_url else None,
        collections=collections,
    )


def _unique_non_blank(values: Iterable[str | None]) -> list[str]:
    seen: dict[str, None] = {}
    for value in values:
        if not isinstance(value, str) or not value.strip():
            continue
        seen.setdefault(value, None)
    return list(seen)


def derive_facets(products: Sequence[Product]) -> ProductFacets:
    collections: dict[str, CollectionRef] = {}
    for product in products:
        for collection in product.collections:
            if not collection.id.strip():
                continue
            # Keeps first-seen position; a later title for the same id replaces the earlier one.
            collections[collection.id] = collection

    return ProductFacets(
        vendors=_unique_non_blank(product.vendor for product in products),
        product_types=_unique_non_blank(product.productType for product in products),
        tags=_unique_non_blank(tag for product in products for tag in product.tags),
        collections=list(collections.values()),
    )


async def read_catalog(client: ShopifyApiClient, *, allow_partial: bool = False) -> CatalogSnapshot:
    """Fetch every product page by page and derive the filter facets.

    Pages are concatenated in the order they were returned. Any page failure
    aborts the read with ``CatalogReadError`` unless ``allow_partial`` is set, in
    which case the pages read so far are returned with ``complete=False`` and a
    warning.
    """
    products: list[Product] = []
    cursor: str | None = None
    pages_read = 0

    while True:
        try:
            page = await client.fetch_products_page(cursor=cursor)
            page_products = [normalize_product_node(node) for node in page["nodes"]]
        except ShopifyApiError as exc:
            logger.warning(
                "Catalog page fetch failed",
                extra={"pages_read": pages_read, "products_read": len(products), "error": str(exc)},
            )
            if not allow_partial:
                raise CatalogReadError(
                    message=f"Failed to read catalog after {pages_read} page(s): {exc}",
                    pages_read=pages_read,
                    status_code=exc.status_code,
                ) from exc
            return CatalogSnapshot(
                products=products,
                facets=derive_facets(products),
                pages_read=pages_read,
                complete=False,
                warning=(
                    f"Catalog read stopped after {pages_read} page(s) ({len(products)} products): {exc}"
                ),
            )

        pages_read += 1
        products.extend(page_products)
        if not page["hasNextPage"]:
            break
        cursor = page["endCursor"]

    logger.info("Catalog read complete", extra={"pages_read": pages_read, "products_read": len(products)})
    return CatalogSnapshot(products=products, facets=derive_facets(products), pages_read=pages_read)


def filter_products(
    products: Sequence[Product],
    *,
    search: str | None = None,
    vendors: Sequence[str] = (),
    product_types: Sequence[str] = (),
    tags: Sequence[str] = (),
    collections: Sequence[str] = (),
) -> list[Product]:
    needle = (search or "").strip().lower()
    vendor_set = set(vendors)
    type_set = set(product_types)
    tag_set = set(tags)
    collection_set = set(collections)

    filtered: list[Product] = []
    for product in products:
        if needle and needle not in product.title.lower():
            continue
        if vendor_set and product.vendor not in vendor_set:
            continue
        if type_set and product.productType not in type_set:
            continue
        if tag_set and not tag_set.intersection(product.tags):
            continue
        if collection_set and not any(c.id in collection_set for c in product.collections):
            continue
        filtered.append(product)
    return filtered
