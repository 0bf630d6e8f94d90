from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Request

from flora_portal.models.user import WordPressUser
from flora_portal.services.auth import get_current_active_user
from flora_portal.services.blueprint_fields import blueprint_field_service
from flora_portal.services.flora_api_client import flora_client
from flora_portal.utils.responses import upstream_json


router = APIRouter(prefix="/api/blueprint-fields", tags=["blueprints"])


@router.get("")
async def list_fields(
    request: Request,
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    """Field library; query parameters are forwarded to the plugin."""
    resp = await flora_client.get("fd/v2/fields", params=dict(request.query_params))
    return upstream_json(resp, "Failed to fetch fields")


@router.post("")
async def create_field(
    payload: Dict[str, Any] = Body(...),
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    resp = await flora_client.post("fd/v2/fields", json=payload)
    return upstream_json(resp, "Failed to create field")


@router.get("/categories/{category_id}")
async def get_category_schema(
    category_id: int,
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
) -> dict:
    """Blueprint assigned to a category and its field definitions (cached)."""
    schema = await blueprint_field_service.get_schema(category_id)
    return {"success": True, "data": schema.model_dump(exclude={"fetched_at"})}


@router.get("/{blueprint_id}")
async def get_blueprint_fields(
    blueprint_id: int,
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    resp = await flora_client.get(f"fd/v1/blueprints/{blueprint_id}/fields")
    return upstream_json(resp, "Failed to fetch blueprint fields")
