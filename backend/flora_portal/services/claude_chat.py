"""Inventory assistant backed by the Anthropic Messages API.

The assistant can read products, locations, inventory and blueprint
definitions, and write blueprint field values, through a small set of tools
that proxy to the Flora API. Tool calls are executed server-side in a loop
until the model stops asking for tools or the iteration cap is reached.
"""

from __future__ import annotations

import json
import time
from typing import Any, Dict, List, Optional

import httpx

from flora_portal.config import settings
from flora_portal.services.blueprint_fields import blueprint_field_service
from flora_portal.services.flora_api_client import (
    FloraApiClient,
    UpstreamUnavailable,
    flora_client,
    safe_json,
)
from flora_portal.utils.logger import logger, upstream_logger

ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
MAX_TOKENS = 2000
MAX_ITERATIONS = 8

SYSTEM_PROMPT = """You are the inventory analyst for Flora Distribution's internal portal.
Use the tools to look up products, locations, inventory and blueprint fields.
When asked to fill in product details, find the product first, then call
update_product_fields once with every field you want to set. Field values are
grouped by blueprint automatically. Report exactly what you changed."""

TOOLS: List[Dict[str, Any]] = [
    {
        "name": "get_products",
        "description": "Search and retrieve products. Use search parameter to find by name.",
        "input_schema": {
            "type": "object",
            "properties": {"search": {"type": "string", "description": "Product name to search for"}},
        },
    },
    {
        "name": "get_all_fields",
        "description": "Get all available blueprint field definitions.",
        "input_schema": {"type": "object", "properties": {}},
    },
    {
        "name": "update_product_fields",
        "description": "Update blueprint field values for a product.",
        "input_schema": {
            "type": "object",
            "properties": {
                "product_id": {"type": "string", "description": "Numeric product ID"},
                "fields": {
                    "type": "object",
                    "description": 'Field values, e.g. {"strain_type": "Indica", "thca_percentage": "22"}',
                },
            },
            "required": ["product_id", "fields"],
        },
    },
    {
        "name": "get_inventory",
        "description": "Get inventory levels across all locations.",
        "input_schema": {"type": "object", "properties": {}},
    },
    {
        "name": "get_locations",
        "description": "List store and warehouse locations.",
        "input_schema": {"type": "object", "properties": {}},
    },
    {
        "name": "get_blueprints",
        "description": "List blueprint definitions.",
        "input_schema": {"type": "object", "properties": {}},
    },
]


class ChatNotConfigured(RuntimeError):
    pass


class ChatUpstreamError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


async def _get(client: FloraApiClient, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
    try:
        resp = await client.get(path, params=params)
    except UpstreamUnavailable as exc:
        return {"error": str(exc)}
    if not resp.is_success:
        return {"error": f"HTTP {resp.status_code}"}
    return safe_json(resp)


async def execute_tool(name: str, tool_input: Dict[str, Any], client: FloraApiClient = flora_client) -> Any:
    tool_input = tool_input or {}

    if name == "get_products":
        params = {"search": tool_input["search"]} if tool_input.get("search") else None
        payload = await _get(client, "flora-im/v1/products", params)
        if isinstance(payload, dict) and isinstance(payload.get("data"), list):
            products = payload["data"]
            return {
                "success": True,
                "count": len(products),
                "products": [
                    {
                        "id": p.get("id"),
                        "name": p.get("name"),
                        "category": ((p.get("categories") or [{}])[0] or {}).get("name", "Unknown"),
                        "sku": p.get("sku") or "",
                        "total_stock": p.get("total_stock") or 0,
                    }
                    for p in products[:20]
                    if isinstance(p, dict)
                ],
            }
        return payload

    if name == "get_inventory":
        return await _get(client, "flora-im/v1/inventory")

    if name == "get_locations":
        payload = await _get(client, "flora-im/v1/locations")
        locations = payload.get("data") if isinstance(payload, dict) and "data" in payload else payload
        if isinstance(locations, list):
            return [
                {"id": l.get("id"), "name": l.get("name"), "city": l.get("city"), "state": l.get("state")}
                for l in locations
                if isinstance(l, dict)
            ]
        return payload

    if name == "get_blueprints":
        return await _get(client, "fd/v1/blueprints")

    if name == "get_all_fields":
        fields = await _get(client, "fd/v1/fields")
        if isinstance(fields, list):
            return [
                {
                    "id": f.get("id"),
                    "field_name": f.get("field_name"),
                    "field_label": f.get("field_label"),
                    "field_type": f.get("field_type"),
                }
                for f in fields
                if isinstance(f, dict)
            ]
        return fields

    if name == "update_product_fields":
        product_id = tool_input.get("product_id")
        fields = tool_input.get("fields")
        if not product_id or not isinstance(fields, dict):
            return {"error": "Product ID and fields required"}
        try:
            resp = await client.put(f"fd/v1/products/{product_id}", json={"blueprint_fields": fields})
        except UpstreamUnavailable as exc:
            return {"success": False, "error": str(exc)}
        result = safe_json(resp) or {}
        if resp.is_success and isinstance(result, dict) and result.get("success"):
            blueprint_field_service.invalidate_products([int(product_id)])
            return {
                "success": True,
                "message": f"Successfully updated {len(fields)} blueprint fields",
                "product_id": product_id,
                "fields": list(fields.keys()),
                "data": result.get("data"),
            }
        message = result.get("message") if isinstance(result, dict) else None
        return {"success": False, "error": message or "Update failed", "details": result}

    return {"error": f"Unknown tool: {name}"}


def build_messages(message: str, conversation: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    history = []
    for item in conversation or []:
        if item.get("type") not in (None, "message"):
            continue
        history.append({"role": "user" if item.get("isUser") else "assistant", "content": item.get("content", "")})
    history.append({"role": "user", "content": message})
    return history


async def _call_claude(messages: List[Dict[str, Any]]) -> Dict[str, Any]:
    started = time.monotonic()
    try:
        async with httpx.AsyncClient(timeout=120.0) as client:
            resp = await client.post(
                ANTHROPIC_URL,
                headers={
                    "x-api-key": settings.ANTHROPIC_API_KEY,
                    "anthropic-version": ANTHROPIC_VERSION,
                    "content-type": "application/json",
                },
                json={
                    "model": settings.ANTHROPIC_MODEL,
                    "max_tokens": MAX_TOKENS,
                    "system": SYSTEM_PROMPT,
                    "tools": TOOLS,
                    "messages": messages,
                },
            )
    except httpx.RequestError as exc:  # pragma: no cover - network failures
        upstream_logger.log_call("POST", ANTHROPIC_URL, error=str(exc))
        raise ChatUpstreamError(502, f"Failed to contact Anthropic: {exc}") from exc

    upstream_logger.log_call(
        "POST", ANTHROPIC_URL, status_code=resp.status_code, duration_ms=(time.monotonic() - started) * 1000
    )
    if resp.status_code >= 400:
        logger.error("Anthropic HTTP %s: %s", resp.status_code, resp.text[:500])
        raise ChatUpstreamError(resp.status_code, f"Claude API error: {resp.status_code}")
    return resp.json()


async def run_chat(
    message: str,
    conversation: Optional[List[Dict[str, Any]]] = None,
    client: FloraApiClient = flora_client,
) -> Dict[str, Any]:
    if not settings.ANTHROPIC_API_KEY:
        raise ChatNotConfigured("ANTHROPIC_API_KEY is not configured")

    messages = build_messages(message, conversation)
    tool_calls: List[Dict[str, Any]] = []
    text_parts: List[str] = []
    iterations = 0

    while iterations < MAX_ITERATIONS:
        iterations += 1
        data = await _call_claude(messages)
        content = data.get("content") or []
        text_parts.extend(block.get("text", "") for block in content if block.get("type") == "text")

        tool_uses = [block for block in content if block.get("type") == "tool_use"]
        if data.get("stop_reason") != "tool_use" or not tool_uses:
            break

        messages.append({"role": "assistant", "content": content})
        results = []
        for block in tool_uses:
            logger.info("Claude tool call: %s", block.get("name"))
            output = await execute_tool(block.get("name", ""), block.get("input") or {}, client)
            tool_calls.append({"tool": block.get("name"), "input": block.get("input")})
            results.append(
                {
                    "type": "tool_result",
                    "tool_use_id": block.get("id"),
                    "content": json.dumps(output, default=str),
                }
            )
        messages.append({"role": "user", "content": results})
    else:
        logger.warning("Claude chat stopped after %s iterations", MAX_ITERATIONS)

    return {
        "success": True,
        "response": "\n".join(part for part in text_parts if part).strip(),
        "tool_calls": tool_calls,
        "iterations": iterations,
    }
