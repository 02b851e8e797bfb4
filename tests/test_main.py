from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

import contentflow.main as main_module
from conftest import FakeCatalogClient, FakeLLM, make_product_node
from contentflow.deps import get_kv_store, get_llm_client, get_shopify_api
from contentflow.repositories import InMemoryKeyValueStore
from contentflow.services.flows import FLOW_TEMPLATES
from contentflow.shopify_api import ShopifyApiError


@pytest.fixture()
def kv_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture()
def api_client(kv_store, catalog_client, fake_llm):
    app = main_module.app
    app.dependency_overrides[get_kv_store] = lambda: kv_store
    app.dependency_overrides[get_shopify_api] = lambda: catalog_client
    app.dependency_overrides[get_llm_client] = lambda: fake_llm
    try:
        with TestClient(app) as client:
            yield client
    finally:
        app.dependency_overrides.clear()


def _generated_product(product_id: str = "1", **overrides) -> dict:
    product = {
        "id": product_id,
        "title": f"Product {product_id}",
        "generatedTitle": "New title",
        "generatedDescription": "Line one\nLine two",
        "generatedSeoTitle": "SEO title",
        "generatedSeoDescription": "SEO description",
    }
    product.update(overrides)
    return product


def _create_flow(api_client, **overrides) -> dict:
    payload = {
        "title": "Titles",
        "sourceFields": ["Product Title", "Vendor"],
        "destinations": ["Product Title", "SEO Title"],
        "prompt": "Write copy.",
    }
    payload.update(overrides)
    response = api_client.post("/flows", json=payload)
    assert response.status_code == 201
    return response.json()


def test_health(api_client):
    response = api_client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"ok": True}


def test_catalog_returns_products_and_facets(api_client, catalog_client):
    catalog_client.nodes.append(make_product_node(4, vendor="Globex", tags=["winter"], productType=""))

    response = api_client.get("/catalog/products")

    assert response.status_code == 200
    body = response.json()
    assert body["shopDomain"] == "example.myshopify.com"
    assert [product["id"] for product in body["products"]] == ["1", "2", "3", "4"]
    assert body["vendors"] == ["Acme", "Globex"]
    assert body["productTypes"] == ["Shirts", "Unknown"]
    assert body["tags"] == ["summer", "winter"]
    assert body["collections"] == [{"id": "10", "title": "Featured"}]
    assert body["complete"] is True


def test_catalog_filters_keep_full_facets(api_client, catalog_client):
    catalog_client.nodes.append(make_product_node(4, vendor="Globex"))

    response = api_client.get("/catalog/products", params={"vendor": "Globex", "search": "product"})

    body = response.json()
    assert [product["id"] for product in body["products"]] == ["4"]
    assert body["vendors"] == ["Acme", "Globex"]


def test_catalog_page_failure_returns_error(api_client, catalog_client):
    catalog_client.fail_on_page = 1

    response = api_client.get("/catalog/products")

    assert response.status_code == 502
    assert "error" in response.json()


def test_flow_templates_are_listed(api_client):
    response = api_client.get("/flows/templates")

    assert response.status_code == 200
    ids = [template["id"] for template in response.json()]
    assert "seoDescription" in ids
    assert len(ids) == 7


def test_flow_crud(api_client):
    flow = _create_flow(api_client)

    assert api_client.get("/flows").json() == [flow]
    assert api_client.get(f"/flows/{flow['id']}").json() == flow

    updated = api_client.put(f"/flows/{flow['id']}", json={"title": "Renamed"})
    assert updated.status_code == 200
    assert updated.json()["title"] == "Renamed"
    assert updated.json()["destinations"] == ["Product Title", "SEO Title"]

    assert api_client.delete(f"/flows/{flow['id']}").status_code == 204
    missing = api_client.get(f"/flows/{flow['id']}")
    assert missing.status_code == 404
    assert "error" in missing.json()


def test_create_flow_validation_error(api_client):
    response = api_client.post("/flows", json={"sourceFields": ["Vendor"], "destinations": []})

    assert response.status_code == 400
    assert response.json() == {"error": "Please select at least one source and one destination field."}


def test_generate_rejects_empty_products(api_client):
    response = api_client.post("/generate", json={"products": [], "prompt": "x", "destinations": ["SEO Title"]})

    assert response.status_code == 400
    assert response.json() == {"error": "No products provided."}


def test_generate_rejects_malformed_body(api_client):
    response = api_client.post("/generate", json={"products": "nope"})

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid request."
    assert response.json()["details"]


def test_generate_fans_out_and_isolates_failures(api_client):
    main_module.app.dependency_overrides[get_llm_client] = lambda: FakeLLM(failing_titles={"B"})

    response = api_client.post(
        "/generate",
        json={
            "products": [{"id": "1", "title": "A"}, {"id": "2", "title": "B"}],
            "prompt": "Write copy.",
            "destinations": ["Product Title", "SEO Title"],
        },
    )

    assert response.status_code == 200
    first, second = response.json()["results"]
    assert first["generatedTitle"] == first["generatedSeoTitle"] == "Copy for A"
    assert first["error"] is None
    assert second["error"] == "model unavailable for B"
    assert second["generatedTitle"] is None


def test_apply_single_requires_product_and_destinations(api_client):
    response = api_client.post("/apply-single", json={"destinations": ["Product Title"]})

    assert response.status_code == 400
    assert response.json() == {"error": "No product or destinations provided"}


def test_apply_single_sends_sparse_update(api_client, catalog_client):
    response = api_client.post(
        "/apply-single",
        json={"product": _generated_product(), "destinations": ["Product Description", "SEO Title"]},
    )

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert catalog_client.updates == [
        {
            "id": "gid://shopify/Product/1",
            "descriptionHtml": "<p>Line one</p><p>Line two</p>",
            "seo": {"title": "SEO title"},
        }
    ]


def test_apply_single_returns_user_errors(api_client, catalog_client):
    catalog_client.update_responses["gid://shopify/Product/1"] = {
        "product": None,
        "userErrors": [{"field": ["title"], "message": "Title is too long"}],
    }

    response = api_client.post(
        "/apply-single",
        json={"product": _generated_product(), "destinations": ["Product Title"]},
    )

    assert response.status_code == 400
    assert response.json() == {"error": [{"field": ["title"], "message": "Title is too long"}]}


def test_apply_single_surfaces_shopify_failure(api_client, catalog_client):
    catalog_client.update_responses["gid://shopify/Product/1"] = ShopifyApiError(message="Shopify down")

    response = api_client.post(
        "/apply-single",
        json={"product": _generated_product(), "destinations": ["Product Title"]},
    )

    assert response.status_code == 502
    assert response.json() == {"error": "Shopify down"}


def test_apply_single_unexpected_failure_is_generic(api_client, catalog_client):
    catalog_client.update_responses["gid://shopify/Product/1"] = RuntimeError("boom")

    response = api_client.post(
        "/apply-single",
        json={"product": _generated_product(), "destinations": ["Product Title"]},
    )

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to apply changes."}


def test_apply_all_reports_summary(api_client, catalog_client):
    catalog_client.update_responses["gid://shopify/Product/2"] = {
        "product": None,
        "userErrors": [{"field": "title", "message": "Invalid"}],
    }

    response = api_client.post(
        "/apply-all",
        json={
            "products": [
                _generated_product("1"),
                _generated_product("2"),
                _generated_product("3", error="model unavailable"),
            ],
            "destinations": ["Product Title"],
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["summary"] == {"total": 3, "applied": 1, "failed": 1, "skipped": 1}
    assert [result["success"] for result in body["results"]] == [True, False, False]
    assert body["results"][1]["userErrors"] == [{"field": ["title"], "message": "Invalid"}]


def test_apply_all_requires_destinations(api_client):
    response = api_client.post("/apply-all", json={"products": [_generated_product()], "destinations": []})

    assert response.status_code == 400
    assert response.json() == {"error": "No destinations provided."}


def test_run_lifecycle(api_client, catalog_client):
    flow = _create_flow(api_client)

    created = api_client.post("/runs", json={"flowId": flow["id"], "productIds": ["1", "3"]})
    assert created.status_code == 201
    run = created.json()
    run_id = run["runId"]
    assert [product["id"] for product in run["products"]] == ["1", "3"]
    assert run["flow"]["destinations"] == ["Product Title", "SEO Title"]
    assert run["generated"] is False

    not_generated = api_client.post(f"/runs/{run_id}/apply-all")
    assert not_generated.status_code == 409

    generated = api_client.post(f"/runs/{run_id}/generate")
    assert generated.status_code == 200
    products = generated.json()["products"]
    assert [product["status"] for product in products] == ["not-applied", "not-applied"]
    assert products[0]["generatedTitle"] == "Copy for Product 1"

    applied_one = api_client.post(f"/runs/{run_id}/apply", json={"productId": "1"})
    assert applied_one.status_code == 200
    assert [product["status"] for product in applied_one.json()["products"]] == ["applied", "not-applied"]

    applied_all = api_client.post(f"/runs/{run_id}/apply-all")
    assert applied_all.status_code == 200
    assert applied_all.json()["summary"] == {"total": 2, "applied": 1, "failed": 0, "skipped": 1}
    assert [update["id"] for update in catalog_client.updates] == [
        "gid://shopify/Product/1",
        "gid://shopify/Product/3",
    ]

    final = api_client.get(f"/runs/{run_id}").json()
    assert [product["status"] for product in final["products"]] == ["applied", "applied"]

    assert api_client.delete(f"/runs/{run_id}").status_code == 204
    assert api_client.get(f"/runs/{run_id}").status_code == 404


def test_run_retry_only_failed_products(api_client):
    flow = _create_flow(api_client)
    run_id = api_client.post(
        "/runs",
        json={"flowId": flow["id"], "products": [{"id": "1", "title": "A"}, {"id": "2", "title": "B"}]},
    ).json()["runId"]

    main_module.app.dependency_overrides[get_llm_client] = lambda: FakeLLM(failing_titles={"B"})
    first = api_client.post(f"/runs/{run_id}/generate").json()
    assert [product["status"] for product in first["products"]] == ["not-applied", "failed"]

    retry_llm = FakeLLM()
    main_module.app.dependency_overrides[get_llm_client] = lambda: retry_llm
    retried = api_client.post(f"/runs/{run_id}/generate", params={"onlyFailed": "true"}).json()

    assert len(retry_llm.calls) == 1
    assert [product["status"] for product in retried["products"]] == ["not-applied", "not-applied"]
    assert retried["products"][1]["generatedTitle"] == "Copy for B"


def test_run_apply_rejects_product_with_generation_error(api_client):
    flow = _create_flow(api_client)
    run_id = api_client.post(
        "/runs",
        json={"flowId": flow["id"], "products": [{"id": "1", "title": "A"}]},
    ).json()["runId"]
    main_module.app.dependency_overrides[get_llm_client] = lambda: FakeLLM(failing_titles={"A"})
    api_client.post(f"/runs/{run_id}/generate")

    response = api_client.post(f"/runs/{run_id}/apply", json={"productId": "1"})

    assert response.status_code == 409


def test_run_creation_errors(api_client):
    assert api_client.post("/runs", json={"flowId": "missing", "productIds": ["1"]}).status_code == 404

    flow = _create_flow(api_client)
    unknown = api_client.post("/runs", json={"flowId": flow["id"], "productIds": ["1", "99"]})
    assert unknown.status_code == 400
    assert unknown.json() == {"error": "Unknown product id(s): 99"}

    empty = api_client.post("/runs", json={"flowId": flow["id"]})
    assert empty.status_code == 400


def test_run_lookup_of_unknown_product(api_client):
    flow = _create_flow(api_client)
    run_id = api_client.post("/runs", json={"flowId": flow["id"], "productIds": ["1"]}).json()["runId"]

    response = api_client.post(f"/runs/{run_id}/apply", json={"productId": "2"})

    assert response.status_code == 404


def test_catalog_unavailable_during_run_creation(api_client):
    flow = _create_flow(api_client)
    main_module.app.dependency_overrides[get_shopify_api] = lambda: FakeCatalogClient(
        [make_product_node(1)], fail_on_page=1
    )

    response = api_client.post("/runs", json={"flowId": flow["id"], "productIds": ["1"]})

    assert response.status_code == 502


@pytest.mark.parametrize("preset", [template.id for template in FLOW_TEMPLATES])
def test_every_template_flow_can_generate_a_run(api_client, preset):
    flow = api_client.post("/flows", json={"preset": preset}).json()
    run_id = api_client.post("/runs", json={"flowId": flow["id"], "productIds": ["1"]}).json()["runId"]

    response = api_client.post(f"/runs/{run_id}/generate")

    assert response.status_code == 200
    product = response.json()["products"][0]
    assert product["error"] is None
    assert product["status"] == "not-applied"


def test_run_rejects_duplicate_explicit_products(api_client):
    flow = _create_flow(api_client)

    response = api_client.post(
        "/runs",
        json={"flowId": flow["id"], "products": [{"id": "1", "title": "A"}, {"id": "1", "title": "A again"}]},
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Duplicate product id(s): 1"}


def test_apply_single_without_generated_values_is_rejected(api_client, catalog_client):
    response = api_client.post(
        "/apply-single",
        json={"product": {"id": "1", "title": "Product 1"}, "destinations": ["Product Title", "Tags"]},
    )

    assert response.status_code == 400
    assert "No generated content to apply" in response.json()["error"]
    assert catalog_client.updates == []
