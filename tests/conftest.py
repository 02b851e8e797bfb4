import os
import sys
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))

os.environ.setdefault("SHOPIFY_SHOP_DOMAIN", "example.myshopify.com")
os.environ.setdefault("SHOPIFY_ADMIN_ACCESS_TOKEN", "shpat_test_token")
os.environ.setdefault("CONTENTFLOW_DB_URL", "sqlite:///./test_contentflow.db")
os.environ.setdefault("OPENAI_API_KEY", "sk-test")
os.environ.setdefault("GENERATION_TIMEOUT_SECONDS", "5")


def make_product_node(index: int, **overrides) -> dict:
    node = {
        "id": f"gid://shopify/Product/{index}",
        "title": f"Product {index}",
        "vendor": "Acme",
        "productType": "Shirts",
        "tags": ["summer"],
        "featuredImage": {"url": f"https://cdn.example.com/{index}.jpg"},
        "collections": {
            "edges": [{"node": {"id": "gid://shopify/Collection/10", "title": "Featured"}}],
        },
    }
    node.update(overrides)
    return node


class FakeCatalogClient:
    """Serves product nodes in pages and records product updates."""

    def __init__(
        self,
        nodes: list[dict] | None = None,
        *,
        page_size: int = 250,
        fail_on_page: int | None = None,
        update_responses: dict[str, dict] | None = None,
    ) -> None:
        self.nodes = nodes or []
        self.page_size = page_size
        self.fail_on_page = fail_on_page
        self.update_responses = update_responses or {}
        self.cursors: list[str | None] = []
        self.updates: list[dict] = []

    @property
    def shop_domain(self) -> str:
        return "example.myshopify.com"

    async def fetch_products_page(self, *, cursor: str | None = None) -> dict:
        from contentflow.shopify_api import ShopifyApiError

        self.cursors.append(cursor)
        page_index = len(self.cursors)
        if self.fail_on_page is not None and page_index == self.fail_on_page:
            raise ShopifyApiError(message="Shopify API call failed (503): unavailable")
        start = int(cursor) if cursor else 0
        end = start + self.page_size
        has_next = end < len(self.nodes)
        return {
            "nodes": self.nodes[start:end],
            "hasNextPage": has_next,
            "endCursor": str(end) if has_next else None,
        }

    async def update_product(self, *, product_input: dict) -> dict:
        self.updates.append(product_input)
        response = self.update_responses.get(product_input["id"])
        if isinstance(response, Exception):
            raise response
        if response is not None:
            return response
        return {
            "product": {"id": product_input["id"], "title": product_input.get("title", "Unchanged")},
            "userErrors": [],
        }


class FakeLLM:
    """Returns ``"Copy for <title>"`` unless the title is configured to fail."""

    def __init__(self, *, failing_titles: set[str] | None = None, text: str | None = None) -> None:
        self.failing_titles = failing_titles or set()
        self.text = text
        self.calls: list[list[dict]] = []

    async def generate(self, content: list[dict]) -> str | None:
        self.calls.append(content)
        prompt_text = content[0]["text"]
        for title in self.failing_titles:
            if f"Product Title: {title}\n" in prompt_text + "\n":
                raise RuntimeError(f"model unavailable for {title}")
        if self.text is not None:
            return self.text
        title_line = next(line for line in prompt_text.splitlines() if line.startswith("Product Title: "))
        return f"Copy for {title_line.removeprefix('Product Title: ')}"


@pytest.fixture()
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture()
def catalog_client() -> FakeCatalogClient:
    return FakeCatalogClient([make_product_node(index) for index in range(1, 4)])
