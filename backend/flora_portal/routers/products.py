from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query, status
from fastapi.responses import JSONResponse

from flora_portal.models.blueprint import BatchLoadResponse, BlueprintFieldsUpdate, PreloadRequest
from flora_portal.models.user import WordPressUser
from flora_portal.services.auth import get_current_active_user
from flora_portal.services.blueprint_fields import (
    BatchValidationError,
    blueprint_field_service,
    validate_product_ids,
)
from flora_portal.services.blueprint_preloader import blueprint_preloader
from flora_portal.services.flora_api_client import (
    UpstreamUnavailable,
    flora_client,
    raise_for_upstream,
    safe_json,
)
from flora_portal.utils.logger import logger
from flora_portal.utils.responses import error_response


router = APIRouter(prefix="/api/products", tags=["products"])


@router.post("/blueprint-fields/batch", response_model=BatchLoadResponse)
async def batch_load_blueprint_fields(
    payload: Optional[Dict[str, Any]] = Body(None),
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    """Resolve blueprint field values for up to BLUEPRINT_BATCH_MAX_SIZE products."""
    try:
        product_ids = validate_product_ids((payload or {}).get("productIds"))
    except BatchValidationError as exc:
        return error_response(status.HTTP_400_BAD_REQUEST, str(exc))
    return await blueprint_field_service.batch_load(product_ids)


@router.post("/blueprint-fields/preload", status_code=status.HTTP_202_ACCEPTED)
async def preload_blueprint_fields(
    request: PreloadRequest,
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
) -> dict:
    key = blueprint_preloader.schedule(request.products, expanded=request.expanded)
    return {"scheduled": key is not None, "key": key}


@router.get("/search")
async def search_products(
    q: str = Query("", description="Name or SKU fragment, at least 2 characters"),
    limit: int = Query(10, ge=1, le=100),
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
) -> List[dict]:
    query = q.strip()
    if len(query) < 2:
        return []
    resp = await flora_client.get(
        "wc/v3/products",
        params={"search": query, "per_page": limit, "status": "publish"},
        auth="basic",
    )
    raise_for_upstream(resp, "Failed to search products")
    products = safe_json(resp) or []
    return [{"id": p.get("id"), "name": p.get("name"), "sku": p.get("sku") or ""} for p in products if isinstance(p, dict)]


@router.get("/{product_id}")
async def get_product(
    product_id: int,
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
) -> dict:
    resp = await flora_client.get(f"wc/v3/products/{product_id}")
    raise_for_upstream(resp, "Failed to fetch product")
    return {"success": True, "data": safe_json(resp)}


@router.put("/{product_id}")
async def update_product(
    product_id: int,
    payload: Dict[str, Any] = Body(...),
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
) -> dict:
    resp = await flora_client.put(f"flora-fields/v1/products/{product_id}", json=payload)
    raise_for_upstream(resp, "Failed to update product")
    blueprint_field_service.invalidate_products([product_id])
    return {"success": True, "data": safe_json(resp)}


@router.get("/{product_id}/variations")
async def get_product_variations(
    product_id: int,
    page: int = Query(1, ge=1),
    per_page: int = Query(100, ge=1, le=100),
    search: str = Query(""),
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
) -> dict:
    resp = await flora_client.get(
        f"wc/v3/products/{product_id}/variations",
        params={"page": page, "per_page": per_page, "search": search or None},
    )
    raise_for_upstream(resp, "Failed to fetch variations")
    return {"success": True, "data": safe_json(resp) or []}


@router.get("/{product_id}/blueprint-fields")
async def get_product_blueprint_fields(
    product_id: int,
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    result = await blueprint_field_service.batch_load([product_id])
    if not result.products:
        return error_response(status.HTTP_404_NOT_FOUND, "Product fields could not be loaded")
    return {"success": True, "data": result.products[0]}


# Each write path is tried in order until one accepts the update.
_FIELD_UPDATE_METHODS = ("woocommerce", "flora-fields", "blueprints")


async def _try_field_update(method: str, product_id: int, fields: Dict[str, Any]):
    if method == "woocommerce":
        meta = [{"key": key, "value": value} for key, value in fields.items()]
        return await flora_client.put(f"wc/v3/products/{product_id}", json={"meta_data": meta})
    if method == "flora-fields":
        return await flora_client.put(
            f"flora-fields/v1/product-fields/{product_id}",
            params={"per_page": 100},
            json={"product_id": product_id, "fields": fields},
        )
    return await flora_client.put(f"blueprints/v1/products/{product_id}/fields", json=fields)


@router.patch("/{product_id}/blueprint-fields")
async def update_product_blueprint_fields(
    product_id: int,
    payload: BlueprintFieldsUpdate,
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    fields = payload.blueprint_fields or {}
    if not fields:
        return JSONResponse(
            {"success": False, "error": "No blueprint fields provided"},
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    for method in _FIELD_UPDATE_METHODS:
        try:
            resp = await _try_field_update(method, product_id, fields)
        except UpstreamUnavailable as exc:
            logger.warning("Blueprint field update via %s unreachable for product %s: %s", method, product_id, exc)
            continue
        if resp.is_success:
            blueprint_field_service.invalidate_products([product_id])
            logger.info("Blueprint fields for product %s updated via %s", product_id, method)
            return {
                "success": True,
                "method": method,
                "data": safe_json(resp),
                "updated_fields": list(fields.keys()),
            }
        logger.warning(
            "Blueprint field update via %s failed for product %s: HTTP %s %s",
            method,
            product_id,
            resp.status_code,
            resp.text[:200],
        )

    return JSONResponse(
        {
            "success": False,
            "error": "Failed to update blueprint fields using any available method",
            "attempted_methods": list(_FIELD_UPDATE_METHODS),
            "product_id": product_id,
            "fields": list(fields.keys()),
        },
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
