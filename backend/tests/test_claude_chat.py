import json

import httpx
import pytest
from fastapi.testclient import TestClient

from flora_portal.config import settings
from flora_portal.main import app
from flora_portal.models.user import WordPressUser
from flora_portal.services import auth as auth_service
from flora_portal.services import claude_chat
from flora_portal.services.claude_chat import build_messages, execute_tool, run_chat
from flora_portal.services.flora_api_client import FloraApiClient


def _override_current_user() -> WordPressUser:
    return WordPressUser(id=1, username="admin")


def test_build_messages_keeps_only_chat_turns():
    conversation = [
        {"type": "message", "isUser": True, "content": "hi"},
        {"type": "tool", "content": "ignored"},
        {"isUser": False, "content": "hello"},
    ]
    assert build_messages("next", conversation) == [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
        {"role": "user", "content": "next"},
    ]


@pytest.mark.asyncio
async def test_get_products_tool_summarizes_results():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["search"] == "dream"
        return httpx.Response(
            200,
            json={"data": [{"id": 1, "name": "Blue Dream", "categories": [{"name": "Flower"}], "total_stock": 12}]},
        )

    client = FloraApiClient(transport=httpx.MockTransport(handler))
    result = await execute_tool("get_products", {"search": "dream"}, client)

    assert result["count"] == 1
    assert result["products"][0] == {"id": 1, "name": "Blue Dream", "category": "Flower", "sku": "", "total_stock": 12}


@pytest.mark.asyncio
async def test_update_product_fields_tool():
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"success": True, "data": {"updated": 2}})

    client = FloraApiClient(transport=httpx.MockTransport(handler))
    result = await execute_tool(
        "update_product_fields", {"product_id": "7", "fields": {"strain_type": "Indica", "thca": "22"}}, client
    )

    assert result["success"] is True
    assert result["fields"] == ["strain_type", "thca"]
    assert bodies == [("/wp-json/fd/v1/products/7", {"blueprint_fields": {"strain_type": "Indica", "thca": "22"}})]

    assert await execute_tool("update_product_fields", {"product_id": "7"}, client) == {
        "error": "Product ID and fields required"
    }
    assert await execute_tool("drop_tables", {}, client) == {"error": "Unknown tool: drop_tables"}


@pytest.mark.asyncio
async def test_run_chat_executes_tools_until_done(monkeypatch):
    monkeypatch.setattr(settings, "ANTHROPIC_API_KEY", "sk-ant-test")
    replies = [
        {
            "stop_reason": "tool_use",
            "content": [
                {"type": "text", "text": "Looking up locations."},
                {"type": "tool_use", "id": "tu_1", "name": "get_locations", "input": {}},
            ],
        },
        {"stop_reason": "end_turn", "content": [{"type": "text", "text": "You have one store."}]},
    ]
    sent = []

    async def fake_call(messages):
        sent.append(list(messages))
        return replies[len(sent) - 1]

    monkeypatch.setattr(claude_chat, "_call_claude", fake_call)
    client = FloraApiClient(
        transport=httpx.MockTransport(
            lambda request: httpx.Response(200, json={"data": [{"id": 1, "name": "Charlotte", "city": "Charlotte"}]})
        )
    )

    result = await run_chat("How many stores?", client=client)

    assert result["response"] == "Looking up locations.\nYou have one store."
    assert result["tool_calls"] == [{"tool": "get_locations", "input": {}}]
    assert result["iterations"] == 2
    tool_result = sent[1][-1]["content"][0]
    assert tool_result["tool_use_id"] == "tu_1"
    assert json.loads(tool_result["content"])[0]["name"] == "Charlotte"


def test_chat_route_validation_and_configuration(monkeypatch):
    monkeypatch.setattr(settings, "ANTHROPIC_API_KEY", None)
    app.dependency_overrides[auth_service.get_current_active_user] = _override_current_user
    client = TestClient(app)
    try:
        resp = client.post("/api/chat/claude", json={"message": "  "})
        assert resp.status_code == 400
        assert resp.json() == {"success": False, "error": "Message is required"}

        resp = client.post("/api/chat/claude", json={"message": "hello"})
        assert resp.status_code == 503
    finally:
        app.dependency_overrides.pop(auth_service.get_current_active_user, None)


def test_chat_route_passes_upstream_status(monkeypatch):
    monkeypatch.setattr(settings, "ANTHROPIC_API_KEY", "sk-ant-test")

    async def failing_call(messages):
        raise claude_chat.ChatUpstreamError(429, "Claude API error: 429")

    monkeypatch.setattr(claude_chat, "_call_claude", failing_call)
    app.dependency_overrides[auth_service.get_current_active_user] = _override_current_user
    client = TestClient(app)
    try:
        resp = client.post("/api/chat/claude", json={"message": "hello"})
        assert resp.status_code == 429
        assert resp.json()["error"] == "Claude API error: 429"
    finally:
        app.dependency_overrides.pop(auth_service.get_current_active_user, None)
