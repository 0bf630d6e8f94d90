from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query

from flora_portal.models.user import WordPressUser
from flora_portal.services.auth import get_current_active_user
from flora_portal.services.blueprint_fields import blueprint_field_service
from flora_portal.services.flora_api_client import flora_client
from flora_portal.utils.responses import NO_STORE_HEADERS, upstream_json


router = APIRouter(prefix="/api/flora/categories", tags=["categories"])


@router.get("")
async def list_categories(
    page: int = Query(1, ge=1),
    per_page: int = Query(100, ge=1, le=100),
    parent: Optional[int] = Query(None),
    search: Optional[str] = Query(None),
    orderby: str = Query("name"),
    order: str = Query("asc"),
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    resp = await flora_client.get(
        "wc/v3/products/categories",
        params={
            "page": page,
            "per_page": per_page,
            "parent": parent,
            "search": search,
            "orderby": orderby,
            "order": order,
        },
    )
    return upstream_json(resp, "Failed to fetch categories")


@router.get("/{category_id}/fields")
async def get_category_fields(
    category_id: int,
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    resp = await flora_client.get(f"fd/v3/categories/{category_id}/fields")
    return upstream_json(resp, "Failed to fetch category fields", headers=NO_STORE_HEADERS)


@router.post("/{category_id}/fields")
async def update_category_fields(
    category_id: int,
    payload: Dict[str, Any] = Body(...),
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    resp = await flora_client.post(f"fd/v3/categories/{category_id}/fields", json=payload)
    response = upstream_json(resp, "Failed to update category fields")
    blueprint_field_service.invalidate_category(category_id)
    return response
