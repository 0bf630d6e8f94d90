import json
from typing import Any, Dict, List

import httpx
from fastapi.testclient import TestClient

from flora_portal.main import app
from flora_portal.models.user import WordPressUser
from flora_portal.routers import products as products_router
from flora_portal.services import auth as auth_service
from flora_portal.services.blueprint_fields import blueprint_field_service
from flora_portal.services.flora_api_client import flora_client


def _override_current_user() -> WordPressUser:
    return WordPressUser(id=1, username="admin", display_name="Admin")


def _client(monkeypatch, handler) -> TestClient:
    app.dependency_overrides[auth_service.get_current_active_user] = _override_current_user
    monkeypatch.setattr(flora_client, "transport", httpx.MockTransport(handler))
    blueprint_field_service.clear()
    return TestClient(app)


def _teardown() -> None:
    app.dependency_overrides.pop(auth_service.get_current_active_user, None)
    blueprint_field_service.clear()


def _catalog(request: httpx.Request) -> httpx.Response:
    path = request.url.path.replace("/wp-json/", "", 1)
    if path == "wc/v3/products/1":
        return httpx.Response(
            200,
            json={
                "id": 1,
                "name": "Blue Dream",
                "categories": [{"id": 10}],
                "meta_data": [{"key": "thc_percentage", "value": "24"}],
            },
        )
    if path == "fd/v1/blueprint-assignments":
        return httpx.Response(200, json=[{"blueprint_id": 41}])
    if path == "fd/v1/blueprints/41/fields":
        return httpx.Response(200, json=[{"field_name": "thc_percentage", "field_label": "THC %"}])
    return httpx.Response(404, json={"code": "rest_no_route", "message": "No route"})


def test_batch_rejects_missing_product_ids(monkeypatch):
    client = _client(monkeypatch, _catalog)
    try:
        resp = client.post("/api/products/blueprint-fields/batch", json={})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid product IDs"}

        resp = client.post("/api/products/blueprint-fields/batch", json={"productIds": list(range(1, 52))})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Batch size exceeds maximum of 50"}
    finally:
        _teardown()


def test_batch_resolves_fields(monkeypatch):
    client = _client(monkeypatch, _catalog)
    try:
        resp = client.post("/api/products/blueprint-fields/batch", json={"productIds": [1, 2]})
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["failed"] == 1
        assert body["products"] == [
            {
                "productId": 1,
                "fields": [
                    {
                        "field_name": "thc_percentage",
                        "field_label": "THC %",
                        "field_type": "text",
                        "field_value": "24",
                    }
                ],
            }
        ]
    finally:
        _teardown()


def test_preload_schedules_in_background(monkeypatch):
    scheduled: List[Dict[str, Any]] = []

    class FakePreloader:
        def schedule(self, products, expanded=True):
            scheduled.append({"ids": [p.id for p in products], "expanded": expanded})
            return "1,2" if expanded else None

    monkeypatch.setattr(products_router, "blueprint_preloader", FakePreloader())
    client = _client(monkeypatch, _catalog)
    try:
        resp = client.post(
            "/api/products/blueprint-fields/preload",
            json={"products": [{"id": 2, "categories": [{"id": 10}]}, {"id": 1}]},
        )
        assert resp.status_code == 202
        assert resp.json() == {"scheduled": True, "key": "1,2"}

        resp = client.post("/api/products/blueprint-fields/preload", json={"products": [], "expanded": False})
        assert resp.json() == {"scheduled": False, "key": None}
        assert scheduled[0] == {"ids": [2, 1], "expanded": True}
    finally:
        _teardown()


def test_search_requires_two_characters(monkeypatch):
    seen: List[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        assert request.headers["Authorization"].startswith("Basic ")
        return httpx.Response(200, json=[{"id": 1, "name": "Blue Dream", "sku": "BD-1"}, {"id": 2, "name": "Blue Cheese"}])

    client = _client(monkeypatch, handler)
    try:
        assert client.get("/api/products/search", params={"q": "b"}).json() == []
        assert seen == []

        resp = client.get("/api/products/search", params={"q": "blue"})
        assert resp.json() == [
            {"id": 1, "name": "Blue Dream", "sku": "BD-1"},
            {"id": 2, "name": "Blue Cheese", "sku": ""},
        ]
    finally:
        _teardown()


def test_get_product_passes_upstream_errors_through(monkeypatch):
    client = _client(monkeypatch, _catalog)
    try:
        resp = client.get("/api/products/999")
        assert resp.status_code == 404
        assert resp.json() == {
            "error": "Failed to fetch product",
            "details": {"code": "rest_no_route", "message": "No route"},
        }
    finally:
        _teardown()


def test_patch_blueprint_fields_falls_back_through_write_paths(monkeypatch):
    attempts: List[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path.replace("/wp-json/", "", 1)
        attempts.append(path)
        if path == "flora-fields/v1/product-fields/1":
            body = json.loads(request.content)
            assert body == {"product_id": 1, "fields": {"thc_percentage": "26"}}
            return httpx.Response(200, json={"success": True})
        return httpx.Response(403, json={"code": "forbidden"})

    client = _client(monkeypatch, handler)
    try:
        resp = client.patch("/api/products/1/blueprint-fields", json={"blueprint_fields": {"thc_percentage": "26"}})
        assert resp.status_code == 200
        assert resp.json()["method"] == "flora-fields"
        assert attempts == ["wc/v3/products/1", "flora-fields/v1/product-fields/1"]
    finally:
        _teardown()


def test_patch_blueprint_fields_reports_every_failed_method(monkeypatch):
    client = _client(monkeypatch, lambda request: httpx.Response(500, text="nope"))
    try:
        resp = client.patch("/api/products/1/blueprint-fields", json={"blueprint_fields": {"a": 1}})
        assert resp.status_code == 500
        assert resp.json()["attempted_methods"] == ["woocommerce", "flora-fields", "blueprints"]

        resp = client.patch("/api/products/1/blueprint-fields", json={"blueprint_fields": {}})
        assert resp.status_code == 400
    finally:
        _teardown()


def test_category_schema_route_uses_cached_schema(monkeypatch):
    client = _client(monkeypatch, _catalog)
    try:
        resp = client.get("/api/blueprint-fields/categories/10")
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["blueprint_id"] == 41
        assert [f["field_name"] for f in data["fields"]] == ["thc_percentage"]
        assert "fetched_at" not in data
    finally:
        _teardown()
