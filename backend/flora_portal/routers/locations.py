from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, status
from fastapi.responses import JSONResponse

from flora_portal.models.user import WordPressUser
from flora_portal.services.auth import get_current_active_user
from flora_portal.services.flora_api_client import flora_client, raise_for_upstream, safe_json, upstream_message
from flora_portal.services.inventory_sync import location_updates
from flora_portal.utils.logger import logger
from flora_portal.utils.responses import NO_STORE_HEADERS, error_response, upstream_json


router = APIRouter(prefix="/api/flora/locations", tags=["locations"])


def _parse_location_id(raw: str) -> Optional[int]:
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value > 0 else None


def _invalid_location(raw: str):
    return error_response(
        status.HTTP_400_BAD_REQUEST,
        "Invalid location ID",
        details=f"Location ID must be a positive number, received: {raw}",
    )


@router.get("")
async def list_locations(
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    resp = await flora_client.get("flora-im/v1/locations")
    raise_for_upstream(resp, "Failed to fetch locations")
    data = safe_json(resp)
    if isinstance(data, dict) and "success" in data:
        return data
    return {"success": True, "data": data}


@router.get("/taxes")
async def list_location_taxes(
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    resp = await flora_client.get("flora-im/v1/locations/taxes", cache_bust=True)
    return upstream_json(resp, "Failed to fetch location taxes", headers=NO_STORE_HEADERS)


@router.put("/{location_id}")
async def update_location(
    location_id: str,
    payload: Dict[str, Any] = Body(...),
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    numeric_id = _parse_location_id(location_id)
    if numeric_id is None:
        return error_response(status.HTTP_400_BAD_REQUEST, "Invalid location ID")

    location_updates.record(numeric_id, payload)
    resp = await flora_client.put(f"flora-im/v1/locations/{numeric_id}", json=payload)
    if not resp.is_success:
        logger.error("Location %s update HTTP %s: %s", numeric_id, resp.status_code, resp.text[:500])
        return error_response(resp.status_code, f"Failed to update location in Flora API: {resp.status_code}")

    location_updates.clear(numeric_id)
    result = safe_json(resp)
    return {
        "success": True,
        "data": result.get("data") if isinstance(result, dict) else result,
        "message": "Location updated successfully",
    }


@router.get("/{location_id}/pending")
async def get_pending_location_update(
    location_id: str,
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    """Edits sent for a location whose upstream update has not succeeded yet."""
    numeric_id = _parse_location_id(location_id)
    if numeric_id is None:
        return error_response(status.HTTP_400_BAD_REQUEST, "Invalid location ID")
    return {"success": True, "data": location_updates.get(numeric_id)}


@router.delete("/{location_id}")
async def delete_location(
    location_id: str,
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    numeric_id = _parse_location_id(location_id)
    if numeric_id is None:
        return error_response(status.HTTP_400_BAD_REQUEST, "Invalid location ID")

    resp = await flora_client.delete(f"flora-im/v1/locations/{numeric_id}")
    if not resp.is_success:
        details = safe_json(resp)
        if isinstance(details, dict) and details.get("code") == "cannot_delete_default":
            return error_response(
                status.HTTP_400_BAD_REQUEST,
                "Cannot delete default location. Please set another location as default first.",
            )
        message = upstream_message(resp, resp.text[:300])
        return error_response(resp.status_code, f"Failed to delete location: {message}")

    location_updates.clear(numeric_id)
    return {"success": True, "data": safe_json(resp), "message": "Location deleted successfully"}


@router.get("/{location_id}/employees")
async def list_location_employees(
    location_id: str,
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    numeric_id = _parse_location_id(location_id)
    if numeric_id is None:
        return error_response(status.HTTP_400_BAD_REQUEST, "Invalid location ID")

    resp = await flora_client.get("flora-im/v1/employees", params={"location_id": numeric_id}, auth="admin")
    raise_for_upstream(resp, "Failed to fetch location employees")
    payload = safe_json(resp) or {}
    employees = payload.get("employees", []) if isinstance(payload, dict) else []
    staff = []
    for emp in employees:
        is_manager = emp.get("role") == "manager"
        staff.append(
            {
                "id": int(emp.get("user_id") or 0),
                "username": emp.get("user_name") or "",
                "email": emp.get("user_email") or "",
                "display_name": emp.get("user_name") or "",
                "roles": ["shop_manager"] if is_manager else ["employee"],
                "is_manager": is_manager,
                "assignment_id": emp.get("id"),
                "location_id": emp.get("location_id"),
                "assigned_at": emp.get("assigned_at"),
                "is_primary": str(emp.get("is_primary")) == "1",
            }
        )
    return {"success": True, "data": staff}


def _employee_role(payload: Dict[str, Any]) -> str:
    return "manager" if payload.get("is_manager") else "employee"


async def _find_assignment(location_id: int, user_id: int) -> Optional[Dict[str, Any]]:
    resp = await flora_client.get(
        "flora-im/v1/employees",
        params={"location_id": location_id, "user_id": user_id},
        auth="admin",
    )
    raise_for_upstream(resp, "Failed to look up employee assignment")
    payload = safe_json(resp) or {}
    employees = payload.get("employees", []) if isinstance(payload, dict) else []
    for emp in employees:
        try:
            if int(emp.get("user_id")) == user_id and int(emp.get("location_id")) == location_id:
                return emp
        except (TypeError, ValueError):
            continue
    return None


@router.post("/{location_id}/employees")
async def assign_location_employee(
    location_id: str,
    payload: Dict[str, Any] = Body(...),
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    numeric_id = _parse_location_id(location_id)
    if numeric_id is None:
        return error_response(status.HTTP_400_BAD_REQUEST, "Invalid location ID")
    user_id = payload.get("user_id")
    if not user_id:
        return error_response(status.HTTP_400_BAD_REQUEST, "user_id is required")

    role = _employee_role(payload)
    resp = await flora_client.post(
        "flora-im/v1/employees",
        json={
            "user_id": user_id,
            "location_id": numeric_id,
            "role": role,
            "is_primary": "0",
            "status": "active",
        },
        auth="admin",
    )
    raise_for_upstream(resp, "Failed to assign employee to location")
    logger.info("Assigned user %s to location %s as %s", user_id, numeric_id, role)
    return {
        "success": True,
        "message": "Employee assigned to location successfully",
        "assignment": safe_json(resp),
    }


@router.put("/{location_id}/employees/{employee_id}")
async def update_location_employee(
    location_id: str,
    employee_id: str,
    payload: Optional[Dict[str, Any]] = Body(None),
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    numeric_id = _parse_location_id(location_id)
    if numeric_id is None:
        return error_response(status.HTTP_400_BAD_REQUEST, "Invalid location ID")
    user_id = _parse_location_id(employee_id)
    if user_id is None:
        return error_response(status.HTTP_400_BAD_REQUEST, "Invalid employee ID")

    assignment = await _find_assignment(numeric_id, user_id)
    if assignment is None:
        return error_response(status.HTTP_404_NOT_FOUND, "Employee assignment not found")

    resp = await flora_client.put(
        f"flora-im/v1/employees/{assignment.get('id')}",
        json={"role": _employee_role(payload or {})},
        auth="admin",
    )
    raise_for_upstream(resp, "Failed to update employee role")
    return {
        "success": True,
        "assignment": safe_json(resp),
        "message": "Employee role updated successfully",
    }


@router.delete("/{location_id}/employees/{employee_id}")
async def remove_location_employee(
    location_id: str,
    employee_id: str,
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    numeric_id = _parse_location_id(location_id)
    if numeric_id is None:
        return error_response(status.HTTP_400_BAD_REQUEST, "Invalid location ID")
    user_id = _parse_location_id(employee_id)
    if user_id is None:
        return error_response(status.HTTP_400_BAD_REQUEST, "Invalid employee ID")

    assignment = await _find_assignment(numeric_id, user_id)
    if assignment is None:
        return error_response(status.HTTP_404_NOT_FOUND, "Employee assignment not found")

    resp = await flora_client.delete(f"flora-im/v1/employees/{assignment.get('id')}", auth="admin")
    raise_for_upstream(resp, "Failed to remove employee from location")
    logger.info("Removed user %s from location %s", user_id, numeric_id)
    return {"success": True, "message": "Employee removed from location successfully"}


@router.get("/{location_id}/taxes")
async def get_location_taxes(
    location_id: str,
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    numeric_id = _parse_location_id(location_id)
    if numeric_id is None:
        return _invalid_location(location_id)
    resp = await flora_client.get(f"flora-im/v1/locations/{numeric_id}/taxes", cache_bust=True)
    return upstream_json(resp, "Failed to fetch location taxes", headers=NO_STORE_HEADERS)


@router.post("/{location_id}/taxes")
async def assign_location_tax(
    location_id: str,
    payload: Dict[str, Any] = Body(...),
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    numeric_id = _parse_location_id(location_id)
    if numeric_id is None:
        return _invalid_location(location_id)
    tax_rate_id = payload.get("tax_rate_id")
    if not tax_rate_id:
        return error_response(status.HTTP_400_BAD_REQUEST, "tax_rate_id is required")
    try:
        tax_rate_id = int(tax_rate_id)
    except (TypeError, ValueError):
        return error_response(status.HTTP_400_BAD_REQUEST, "tax_rate_id must be a number")

    resp = await flora_client.post(
        f"flora-im/v1/locations/{numeric_id}/taxes",
        json={"tax_rate_id": tax_rate_id, "is_default": bool(payload.get("is_default", False))},
        cache_bust=True,
    )
    return upstream_json(
        resp,
        "Failed to assign tax to location",
        status_code=status.HTTP_201_CREATED,
        headers=NO_STORE_HEADERS,
    )


@router.put("/{location_id}/taxes/{tax_id}")
async def update_location_tax(
    location_id: str,
    tax_id: str,
    payload: Optional[Dict[str, Any]] = Body(None),
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    numeric_id = _parse_location_id(location_id)
    if numeric_id is None:
        return _invalid_location(location_id)
    tax_rate_id = _parse_location_id(tax_id)
    if tax_rate_id is None:
        return error_response(status.HTTP_400_BAD_REQUEST, "Invalid tax rate ID")

    is_default = bool((payload or {}).get("is_default", False))
    resp = await flora_client.put(
        f"flora-im/v1/locations/{numeric_id}/taxes/{tax_rate_id}",
        json={"is_default": is_default},
        cache_bust=True,
    )
    raise_for_upstream(resp, "Failed to update tax mapping")
    return JSONResponse(
        {
            "location_id": numeric_id,
            "tax_rate_id": tax_rate_id,
            "is_default": is_default,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        },
        headers=NO_STORE_HEADERS,
    )


@router.delete("/{location_id}/taxes/{tax_id}")
async def remove_location_tax(
    location_id: str,
    tax_id: str,
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    numeric_id = _parse_location_id(location_id)
    if numeric_id is None:
        return _invalid_location(location_id)
    tax_rate_id = _parse_location_id(tax_id)
    if tax_rate_id is None:
        return error_response(status.HTTP_400_BAD_REQUEST, "Invalid tax rate ID")

    resp = await flora_client.delete(f"flora-im/v1/locations/{numeric_id}/taxes/{tax_rate_id}", cache_bust=True)
    raise_for_upstream(resp, "Failed to remove tax from location")
    logger.info("Removed tax rate %s from location %s", tax_rate_id, numeric_id)
    return JSONResponse(
        {"success": True, "location_id": numeric_id, "tax_rate_id": tax_rate_id, "result": safe_json(resp)},
        headers=NO_STORE_HEADERS,
    )
