from __future__ import annotations

import math
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel

from flora_portal.models.user import WordPressUser
from flora_portal.services.auth import get_current_active_user
from flora_portal.services.flora_api_client import flora_client, raise_for_upstream, safe_json
from flora_portal.utils.responses import error_response


router = APIRouter(prefix="/api/orders", tags=["orders"])

# Order meta keys that name the sales channel / POS location.
LOCATION_META_KEYS = (
    "source_name",
    "_wc_order_attribution_utm_source",
    "_order_source_system",
    "_order_source",
)


class OrderStatusUpdate(BaseModel):
    orderId: Optional[int] = None
    status: Optional[str] = None


def order_matches_location(order: Dict[str, Any], location: str) -> bool:
    needle = location.lower()
    metas = [
        meta
        for meta in order.get("meta_data") or []
        if isinstance(meta, dict) and meta.get("key") in LOCATION_META_KEYS
    ]
    if metas:
        return any(needle in str(meta.get("value", "")).lower() for meta in metas)
    created_via = order.get("created_via")
    if created_via:
        return needle in str(created_via).lower()
    return False


@router.get("")
async def list_orders(
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=100),
    status_filter: str = Query("any", alias="status"),
    search: str = Query(""),
    customer: str = Query(""),
    orderby: str = Query("date"),
    order: str = Query("desc"),
    location: str = Query(""),
    date_from: str = Query("", description="YYYY-MM-DD, inclusive"),
    date_to: str = Query("", description="YYYY-MM-DD, inclusive"),
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
) -> dict:
    params: Dict[str, Any] = {
        "page": page,
        "per_page": per_page,
        "orderby": orderby,
        "order": order,
        "status": status_filter if status_filter != "any" else None,
        "search": search or None,
        "customer": customer or None,
        "after": f"{date_from}T00:00:00" if date_from else None,
        "before": f"{date_to}T23:59:59" if date_to else None,
    }
    resp = await flora_client.get("wc/v3/orders", params=params)
    raise_for_upstream(resp, f"WooCommerce API error: {resp.status_code}")

    orders: List[Dict[str, Any]] = safe_json(resp) or []
    if location:
        orders = [o for o in orders if order_matches_location(o, location)]
        total = len(orders)
        pages = math.ceil(total / per_page)
    else:
        total = int(resp.headers.get("X-WP-Total") or len(orders))
        pages = int(resp.headers.get("X-WP-TotalPages") or 1)

    return {
        "success": True,
        "data": orders,
        "meta": {"total": total, "pages": pages, "current_page": page, "per_page": per_page},
    }


@router.put("")
async def update_order_status(
    payload: OrderStatusUpdate,
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    if not payload.orderId or not payload.status:
        return error_response(status.HTTP_400_BAD_REQUEST, "Order ID and status are required")
    resp = await flora_client.put(f"wc/v3/orders/{payload.orderId}", json={"status": payload.status})
    raise_for_upstream(resp, f"WooCommerce API error: {resp.status_code}")
    return {"success": True, "data": safe_json(resp)}
