from __future__ import annotations

import logging
from typing import Any

import httpx

from contentflow.config import settings

logger = logging.getLogger(__name__)

PRODUCTS_PAGE_SIZE = 250
COLLECTIONS_PER_PRODUCT = 5
PRODUCT_GID_PREFIX = "gid://shopify/Product/"


class ShopifyApiError(RuntimeError):
    def __init__(self, *, message: str, status_code: int = 502) -> None:
        super().__init__(message)
        self.status_code = status_code


class ShopifyApiClient:
    def __init__(
        self,
        *,
        shop_domain: str | None = None,
        access_token: str | None = None,
        api_version: str | None = None,
    ) -> None:
        self._shop_domain = shop_domain or settings.SHOPIFY_SHOP_DOMAIN
        self._access_token = access_token or settings.SHOPIFY_ADMIN_ACCESS_TOKEN
        self._api_version = api_version or settings.SHOPIFY_ADMIN_API_VERSION
        self._timeout = settings.SHOPIFY_REQUEST_TIMEOUT_SECONDS

    @property
    def shop_domain(self) -> str:
        return self._shop_domain

    async def fetch_products_page(self, *, cursor: str | None = None) -> dict[str, Any]:
        query = """
        query fetchProducts($first: Int!, $cursor: String, $collectionsFirst: Int!) {
            products(first: $first, after: $cursor) {
                edges {
                    cursor
                    node {
                        id
                        title
                        vendor
                        productType
                        tags
                        featuredImage {
                            url
                        }
                        collections(first: $collectionsFirst) {
                            edges {
                                node {
                                    id
                                    title
                                }
                            }
                        }
                    }
                }
                pageInfo {
                    hasNextPage
                    endCursor
                }
            }
        }
        """
        payload = {
            "query": query,
            "variables": {
                "first": PRODUCTS_PAGE_SIZE,
                "cursor": cursor,
                "collectionsFirst": COLLECTIONS_PER_PRODUCT,
            },
        }
        response = await self._admin_graphql(payload=payload)
        products = response.get("products")
        if not isinstance(products, dict):
            raise ShopifyApiError(message="Products query response is missing products")

        edges = products.get("edges") or []
        if not isinstance(edges, list):
            raise ShopifyApiError(message="Products query response has invalid edges")
        nodes: list[dict[str, Any]] = []
        for edge in edges:
            node = edge.get("node") if isinstance(edge, dict) else None
            if not isinstance(node, dict):
                raise ShopifyApiError(message="Products query response contains an edge without node")
            nodes.append(node)

        page_info = products.get("pageInfo") or {}
        has_next_page = bool(page_info.get("hasNextPage"))
        end_cursor = page_info.get("endCursor")
        if has_next_page and (not isinstance(end_cursor, str) or not end_cursor):
            raise ShopifyApiError(message="Products query response has hasNextPage without endCursor")

        return {"nodes": nodes, "hasNextPage": has_next_page, "endCursor": end_cursor}

    async def update_product(self, *, product_input: dict[str, Any]) -> dict[str, Any]:
        product_id = product_input.get("id")
        if not isinstance(product_id, str) or not product_id.startswith(PRODUCT_GID_PREFIX):
            raise ShopifyApiError(
                message=f"productUpdate input requires a product GID, got: {product_id!r}",
                status_code=400,
            )

        query = """
        mutation productUpdate($input: ProductInput!) {
            productUpdate(input: $input) {
                product {
                    id
                    title
                    descriptionHtml
                    seo {
                        title
                        description
                    }
                }
                userErrors {
                    field
                    message
                }
            }
        }
        """
        payload = {"query": query, "variables": {"input": product_input}}
        response = await self._admin_graphql(payload=payload)
        update_data = response.get("productUpdate")
        if not isinstance(update_data, dict):
            raise ShopifyApiError(message="productUpdate response is missing productUpdate")

        user_errors = update_data.get("userErrors") or []
        if not isinstance(user_errors, list):
            raise ShopifyApiError(message="productUpdate response has invalid userErrors")
        product = update_data.get("product")
        if not user_errors and not isinstance(product, dict):
            raise ShopifyApiError(message="productUpdate response is missing product")
        return {"product": product if isinstance(product, dict) else None, "userErrors": user_errors}

    async def _admin_graphql(self, *, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"https://{self._shop_domain}/admin/api/{self._api_version}/graphql.json"
        headers = {
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": self._access_token,
        }
        response = await self._post_json(url=url, payload=payload, headers=headers)
        data = response.get("data")
        errors = response.get("errors")
        if errors:
            raise ShopifyApiError(message=f"Admin GraphQL errors: {errors}")
        if not isinstance(data, dict):
            raise ShopifyApiError(message="Admin GraphQL response is missing data")
        return data

    async def _post_json(
        self,
        *,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.RequestError as exc:
            logger.warning("Shopify request failed", extra={"url": url, "error": str(exc)})
            raise ShopifyApiError(message=f"Network error while calling Shopify: {exc}") from exc

        if response.status_code >= 400:
            raise ShopifyApiError(
                message=f"Shopify API call failed ({response.status_code}): {response.text}",
                status_code=502,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise ShopifyApiError(message="Shopify API returned invalid JSON") from exc

        if not isinstance(body, dict):
            raise ShopifyApiError(message="Shopify API response must be a JSON object")
        return body
