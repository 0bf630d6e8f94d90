from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query, Request, status
from fastapi.responses import JSONResponse

from flora_portal.models.user import WordPressUser
from flora_portal.services.auth import get_current_active_user
from flora_portal.services.flora_api_client import flora_client, safe_json
from flora_portal.services.pricing_blueprint_mapper import filter_rules_by_blueprint
from flora_portal.utils.responses import NO_STORE_HEADERS, error_response, upstream_json


router = APIRouter(prefix="/api/pricing", tags=["pricing"])


def _forwarded_params(request: Request, *drop: str) -> Dict[str, Any]:
    return {key: value for key, value in request.query_params.items() if key not in drop}


def _filter_payload(payload: Any, blueprint_id: int) -> Any:
    """Apply the blueprint filter to a bare list or a ``{rules|data: [...]}`` envelope."""
    if isinstance(payload, list):
        return filter_rules_by_blueprint(payload, blueprint_id)
    if isinstance(payload, dict):
        for key in ("rules", "data"):
            if isinstance(payload.get(key), list):
                filtered = filter_rules_by_blueprint(payload[key], blueprint_id)
                return {**payload, key: filtered, "total": len(filtered)}
    return payload


@router.get("/rules")
async def list_pricing_rules(
    request: Request,
    blueprint_id: Optional[int] = Query(None),
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    resp = await flora_client.get(
        "fd/v1/pricing-rules",
        params=_forwarded_params(request, "blueprint_id"),
        cache_bust=True,
    )
    if blueprint_id is None:
        return upstream_json(resp, "Failed to get pricing rules", headers=NO_STORE_HEADERS)

    response = upstream_json(resp, "Failed to get pricing rules")
    return JSONResponse(_filter_payload(safe_json(resp), blueprint_id), status_code=response.status_code, headers=NO_STORE_HEADERS)


@router.post("/rules")
async def create_pricing_rule(
    payload: Dict[str, Any] = Body(...),
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    resp = await flora_client.post("fd/v1/pricing-rules", json=payload, cache_bust=True)
    if resp.status_code == status.HTTP_404_NOT_FOUND:
        return error_response(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "BluePrints API not available",
            details=(
                "The Flora Fields plugin API endpoints are not accessible. "
                "Please check if the plugin is active and properly configured."
            ),
        )
    if resp.is_success and safe_json(resp) is None:
        return error_response(status.HTTP_502_BAD_GATEWAY, "Invalid response from BluePrints API", details=resp.text)
    return upstream_json(resp, "Failed to create pricing rule", headers=NO_STORE_HEADERS)


@router.put("/rules/{rule_id}")
async def update_pricing_rule(
    rule_id: int,
    payload: Dict[str, Any] = Body(...),
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    resp = await flora_client.put(f"fd/v1/pricing-rules/{rule_id}", json=payload, cache_bust=True)
    return upstream_json(resp, "Failed to update pricing rule", headers=NO_STORE_HEADERS)


@router.delete("/rules/{rule_id}")
async def delete_pricing_rule(
    rule_id: int,
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    resp = await flora_client.delete(f"fd/v1/pricing-rules/{rule_id}", cache_bust=True)
    return upstream_json(resp, "Failed to delete pricing rule", headers=NO_STORE_HEADERS)


@router.get("/product/{product_id}")
async def get_product_price(
    product_id: int,
    request: Request,
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    resp = await flora_client.get(
        f"fd/v1/price/product/{product_id}",
        params=_forwarded_params(request),
        cache_bust=True,
    )
    return upstream_json(resp, "Failed to get product price", headers=NO_STORE_HEADERS)


@router.get("/product/{product_id}/pricing")
async def get_product_pricing_forms(
    product_id: int,
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    resp = await flora_client.get(f"fd/v2/pricing/forms/{product_id}", cache_bust=True)
    return upstream_json(resp, "Failed to get product pricing", headers=NO_STORE_HEADERS)
