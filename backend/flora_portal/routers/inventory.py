from __future__ import annotations

import json
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query, Request, status
from fastapi.responses import JSONResponse

from flora_portal.models.health import InventoryHealthReport
from flora_portal.models.inventory import SyncRequest, TransferRequest
from flora_portal.models.user import WordPressUser
from flora_portal.services.auth import get_current_active_user
from flora_portal.services.flora_api_client import (
    UpstreamUnavailable,
    flora_client,
    safe_json,
    upstream_message,
)
from flora_portal.services.audit_feed import transform_sale
from flora_portal.services.inventory_health import quick_health_check, run_health_check
from flora_portal.services.inventory_sync import NoActiveLocations, sync_products_to_locations
from flora_portal.utils.logger import logger
from flora_portal.utils.responses import NO_STORE_HEADERS, error_response, upstream_json


router = APIRouter(prefix="/api/flora", tags=["inventory"])
health_router = APIRouter(prefix="/api/inventory/health", tags=["inventory"])

_PRODUCTS_FALLBACK_META = {"total": 0, "page": 1, "per_page": 10000, "pages": 0}


def _with_credentials(body: Dict[str, Any]) -> Dict[str, Any]:
    # The inventory plugin reads credentials from the JSON body as well.
    return {**body, **flora_client.auth_params()}


@router.get("/products")
async def list_products(
    request: Request,
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    params = {
        key: value
        for key, value in request.query_params.items()
        if key not in ("consumer_key", "consumer_secret")
    }
    resp = await flora_client.get("flora-im/v1/products", params=params)
    if not resp.is_success:
        logger.error("Flora products HTTP %s: %s", resp.status_code, resp.text[:500])
        return JSONResponse(
            {"success": False, "error": "Failed to fetch products", "data": [], "meta": _PRODUCTS_FALLBACK_META},
            status_code=resp.status_code,
        )
    return safe_json(resp)


@router.post("/products")
async def create_product(
    payload: Dict[str, Any] = Body(...),
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    resp = await flora_client.post("fd/v1/products", json=payload)
    return upstream_json(resp, "Failed to create product")


@router.get("/inventory")
async def get_inventory(
    location_id: Optional[int] = Query(None),
    product_id: Optional[int] = Query(None),
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    """Inventory rows; an unavailable upstream yields an empty list."""
    try:
        resp = await flora_client.get(
            "flora-im/v1/inventory",
            params={"location_id": location_id, "product_id": product_id},
        )
    except UpstreamUnavailable as exc:
        logger.warning("Inventory fetch failed: %s", exc)
        return []
    if not resp.is_success:
        logger.warning("Inventory fetch returned HTTP %s", resp.status_code)
        return []
    return safe_json(resp) or []


@router.post("/inventory")
async def update_inventory(
    payload: Dict[str, Any] = Body(...),
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    resp = await flora_client.post("flora-im/v1/inventory", json=_with_credentials(payload))
    return upstream_json(resp, "Failed to update inventory")


@router.post("/inventory/bulk")
async def bulk_update_inventory(
    payload: Dict[str, Any] = Body(...),
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    updates = payload.get("updates")
    if not isinstance(updates, list):
        return error_response(status.HTTP_400_BAD_REQUEST, "Updates array is required")
    for update in updates:
        if (
            not isinstance(update, dict)
            or not update.get("product_id")
            or not update.get("location_id")
            or update.get("quantity") is None
        ):
            return error_response(
                status.HTTP_400_BAD_REQUEST,
                "Each update must have product_id, location_id, and quantity",
            )

    resp = await flora_client.post("flora-im/v1/inventory/bulk", json=_with_credentials(payload))
    return upstream_json(resp, "Failed to bulk update inventory")


@router.post("/sync")
async def sync_inventory(
    payload: SyncRequest,
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    if not payload.product_ids:
        return JSONResponse(
            {"success": False, "error": "product_ids array is required"},
            status_code=status.HTTP_400_BAD_REQUEST,
        )
    try:
        return await sync_products_to_locations(payload.product_ids)
    except NoActiveLocations as exc:
        return JSONResponse({"success": False, "error": str(exc)}, status_code=status.HTTP_400_BAD_REQUEST)


@router.post("/transfer")
async def transfer_stock(
    payload: TransferRequest,
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    if not (payload.product_id and payload.from_location and payload.to_location and payload.quantity):
        return error_response(
            status.HTTP_400_BAD_REQUEST,
            "Missing required fields: product_id, from_location, to_location, quantity",
        )
    if payload.from_location == payload.to_location:
        return error_response(status.HTTP_400_BAD_REQUEST, "Source and destination locations must be different")
    try:
        quantity = float(payload.quantity)
    except (TypeError, ValueError):
        quantity = 0.0
    if not quantity > 0:
        return error_response(status.HTTP_400_BAD_REQUEST, "Quantity must be a positive number")

    resp = await flora_client.post(
        "flora-im/v1/transfer",
        json=_with_credentials(
            {
                "product_id": payload.product_id,
                "from_location": payload.from_location,
                "to_location": payload.to_location,
                "quantity": quantity,
                "notes": payload.notes,
            }
        ),
    )
    if resp.is_success:
        return safe_json(resp)

    details = safe_json(resp)
    if not isinstance(details, dict):
        return error_response(resp.status_code, f"Transfer failed: {resp.status_code} - {resp.text[:300]}")

    message = upstream_message(resp, details.get("code") or f"Transfer failed: {resp.status_code}")
    if details.get("code") == "transfer_failed" or "Stock transfer failed" in message:
        message = (
            "Transfer failed: Insufficient stock at source location or database error. "
            "Please check that the source location has enough inventory."
        )
    logger.warning("Stock transfer of product %s rejected: %s", payload.product_id, message)
    return error_response(resp.status_code, message, details=details)


@router.post("/convert")
async def convert_stock(
    payload: Dict[str, Any] = Body(...),
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    required = ("from_product_id", "to_product_id", "location_id", "from_quantity", "to_quantity")
    if not all(payload.get(key) for key in required):
        return error_response(status.HTTP_400_BAD_REQUEST, f"Missing required fields: {', '.join(required)}")
    try:
        from_quantity = float(payload["from_quantity"])
        to_quantity = float(payload["to_quantity"])
    except (TypeError, ValueError):
        from_quantity = to_quantity = 0.0
    if not (from_quantity > 0 and to_quantity > 0):
        return error_response(status.HTTP_400_BAD_REQUEST, "Quantities must be positive numbers")

    resp = await flora_client.post(
        "flora-im/v1/convert",
        json=_with_credentials(
            {
                "from_product_id": payload["from_product_id"],
                "to_product_id": payload["to_product_id"],
                "location_id": payload["location_id"],
                "from_quantity": from_quantity,
                "to_quantity": to_quantity,
                "notes": payload.get("notes"),
            }
        ),
    )
    data = safe_json(resp)
    if not resp.is_success:
        logger.warning("Stock conversion HTTP %s: %s", resp.status_code, resp.text[:500])
        if isinstance(data, dict):
            message = data.get("message") or data.get("code") or f"Conversion failed: {resp.status_code}"
            return error_response(resp.status_code, message, details=data)
        return error_response(resp.status_code, f"Conversion failed: {resp.status_code} - {resp.text}")
    if data is None:
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Invalid response from conversion service")
    return data


def _lenient_json(text: str) -> Any:
    """Parse a WordPress answer that may have PHP notices printed before the JSON."""
    try:
        return json.loads(text)
    except ValueError:
        start = text.find('{"')
        if start <= 0:
            return None
        try:
            return json.loads(text[start:])
        except ValueError:
            return None


def _conversion_result(resp) -> Any:
    if not resp.is_success:
        return error_response(resp.status_code, f"Flora API error: {resp.text}")
    data = _lenient_json(resp.text)
    if data is None:
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Invalid response format from server")
    return data


@router.get("/conversions")
async def list_conversions(
    product_id: Optional[str] = Query(None),
    conversion_id: Optional[str] = Query(None),
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    if conversion_id:
        resp = await flora_client.get(f"flora-im/v1/conversions/{conversion_id}")
    else:
        resp = await flora_client.get("flora-im/v1/conversions", params={"product_id": product_id or None})
    if not resp.is_success:
        return error_response(resp.status_code, f"Flora API error: {resp.text}")
    return safe_json(resp)


@router.post("/conversions")
async def create_conversion(
    payload: Dict[str, Any] = Body(...),
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    resp = await flora_client.post("flora-im/v1/conversions", json=payload)
    return _conversion_result(resp)


@router.put("/conversions")
async def update_conversion(
    conversion_id: Optional[str] = Query(None, alias="id"),
    action: Optional[str] = Query(None),
    payload: Optional[Dict[str, Any]] = Body(None),
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    if not conversion_id:
        return error_response(status.HTTP_400_BAD_REQUEST, "Conversion ID is required")
    path = f"flora-im/v1/conversions/{conversion_id}"
    if action in ("complete", "cancel"):
        path = f"{path}/{action}"
    resp = await flora_client.put(path, json=payload or {})
    return _conversion_result(resp)


@router.get("/orders")
async def list_pos_orders(
    limit: int = Query(30, ge=1),
    location_id: Optional[str] = Query(None),
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    """Recent POS orders shaped like audit log entries."""
    try:
        resp = await flora_client.get(
            "flora-im/v1/orders",
            params={
                "limit": limit,
                "orderby": "date_created",
                "order": "DESC",
                "location_id": location_id or None,
            },
            cache_bust=True,
        )
    except UpstreamUnavailable as exc:
        logger.warning("POS orders fetch failed: %s", exc)
        return {"success": False, "data": [], "error": "Failed to fetch orders data"}
    if not resp.is_success:
        return {"success": False, "data": [], "error": f"Flora IM Orders API error: {resp.status_code}"}

    payload = safe_json(resp)
    raw_orders = payload.get("data") if isinstance(payload, dict) else None
    orders = []
    for order in raw_orders or []:
        if isinstance(order, dict):
            orders.append({**transform_sale(order), "id": f"order-{order.get('id')}"})
    return JSONResponse({"success": True, "data": orders, "total": len(orders)}, headers=NO_STORE_HEADERS)


@health_router.get("", response_model=InventoryHealthReport)
async def inventory_health(
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    return await run_health_check()


@health_router.get("/quick")
async def inventory_health_quick(
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
) -> dict:
    return {"status": (await quick_health_check()).value}
