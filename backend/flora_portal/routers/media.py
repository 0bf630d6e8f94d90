from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from flora_portal.models.user import WordPressUser
from flora_portal.services.auth import get_current_active_user
from flora_portal.services.flora_api_client import flora_client, safe_json, upstream_message
from flora_portal.services.media import (
    DALLE_MAX_PROMPT_LENGTH,
    MediaNotConfigured,
    MediaProcessingError,
    generate_dalle_images,
    relight_image,
    remove_backgrounds,
    transform_media_item,
    upscale_image,
)
from flora_portal.utils.logger import logger


router = APIRouter(prefix="/api/media", tags=["media"])


class UpscaleRequest(BaseModel):
    imageUrl: Optional[str] = None
    targetWidth: int = 2048
    targetHeight: int = 2048


class RelightRequest(BaseModel):
    imageUrl: Optional[str] = None
    lightPosition: str = "top"


class RemoveBackgroundRequest(BaseModel):
    imageUrls: List[str] = Field(default_factory=list)
    quality: str = "auto"


class DalleGenerateRequest(BaseModel):
    prompt: Optional[str] = None
    size: str = "1024x1024"
    quality: str = "standard"
    style: str = "vivid"
    n: int = 1


def _failure(status_code: int, error: str, **extra: Any) -> JSONResponse:
    return JSONResponse({"success": False, "error": error, **extra}, status_code=status_code)


def _media_error(exc: Exception) -> JSONResponse:
    if isinstance(exc, MediaNotConfigured):
        return _failure(status.HTTP_503_SERVICE_UNAVAILABLE, str(exc))
    if isinstance(exc, MediaProcessingError):
        return _failure(exc.status_code, exc.message)
    raise exc


@router.post("/ai-upscale")
async def ai_upscale(
    payload: UpscaleRequest,
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    if not payload.imageUrl:
        return _failure(status.HTTP_400_BAD_REQUEST, "No image URL provided")
    try:
        data = await upscale_image(payload.imageUrl, payload.targetWidth, payload.targetHeight)
    except (MediaNotConfigured, MediaProcessingError) as exc:
        return _media_error(exc)
    return {"success": True, "data": data}


@router.post("/ai-relight")
async def ai_relight(
    payload: RelightRequest,
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    if not payload.imageUrl:
        return _failure(status.HTTP_400_BAD_REQUEST, "No image URL provided")
    try:
        data = await relight_image(payload.imageUrl, payload.lightPosition)
    except (MediaNotConfigured, MediaProcessingError) as exc:
        return _media_error(exc)
    return {"success": True, "data": data}


@router.post("/remove-bg")
async def remove_background(
    payload: RemoveBackgroundRequest,
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    if not payload.imageUrls:
        return _failure(status.HTTP_400_BAD_REQUEST, "No image URLs provided")
    try:
        result = await remove_backgrounds(payload.imageUrls, size=payload.quality)
    except (MediaNotConfigured, MediaProcessingError) as exc:
        return _media_error(exc)
    return {
        "success": True,
        "data": {
            "processed": result["results"],
            "errors": result["errors"],
            "total": len(payload.imageUrls),
            "successCount": result["processed"],
            "errorCount": result["failed"],
        },
    }


@router.post("/dalle-generate")
async def dalle_generate(
    payload: DalleGenerateRequest,
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    prompt = (payload.prompt or "").strip()
    if not prompt:
        return _failure(status.HTTP_400_BAD_REQUEST, "Prompt is required")
    if len(prompt) > DALLE_MAX_PROMPT_LENGTH:
        return _failure(status.HTTP_400_BAD_REQUEST, f"Prompt must be {DALLE_MAX_PROMPT_LENGTH} characters or less")
    try:
        images = await generate_dalle_images(prompt, payload.size, payload.quality, payload.style, payload.n)
    except (MediaNotConfigured, MediaProcessingError) as exc:
        return _media_error(exc)
    return {"success": True, "images": images}


@router.get("/library")
async def media_library(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    search: str = Query(""),
    media_type: str = Query("image"),
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    empty_pagination = {"page": page, "per_page": per_page, "total": 0, "total_pages": 0}
    resp = await flora_client.get(
        "wp/v2/media",
        params={
            "page": page,
            "per_page": per_page,
            "media_type": media_type,
            "search": search or None,
            "orderby": "date",
            "order": "desc",
        },
        auth="admin",
    )
    if not resp.is_success:
        logger.error("WordPress media fetch HTTP %s: %s", resp.status_code, resp.text[:500])
        return {
            "success": False,
            "media": [],
            "pagination": empty_pagination,
            "error": "Failed to fetch WordPress media",
        }

    items = safe_json(resp) or []
    total = int(resp.headers.get("X-WP-Total") or len(items))
    total_pages = int(resp.headers.get("X-WP-TotalPages") or (1 if items else 0))
    return {
        "success": True,
        "media": [transform_media_item(item) for item in items],
        "pagination": {"page": page, "per_page": per_page, "total": total, "total_pages": total_pages},
    }


async def _delete_media_item(media_id: int) -> Dict[str, Any]:
    resp = await flora_client.delete(f"wp/v2/media/{media_id}", params={"force": "true"}, auth="admin")
    if not resp.is_success:
        message = upstream_message(resp, f"Delete failed: {resp.status_code}")
        logger.warning("Deleting media %s failed: %s", media_id, message)
        return {"id": media_id, "error": message}
    body = safe_json(resp)
    return {"id": media_id, "deleted": True, **(body if isinstance(body, dict) else {})}


@router.delete("/delete")
async def delete_media(
    payload: Dict[str, Any] = Body(default_factory=dict),
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    media_ids = payload.get("mediaIds")
    if not isinstance(media_ids, list) or not media_ids:
        return _failure(status.HTTP_400_BAD_REQUEST, "No media IDs provided")

    results = await asyncio.gather(*(_delete_media_item(media_id) for media_id in media_ids))
    deleted = [r for r in results if "error" not in r]
    logger.info("Deleted %d of %d WordPress media items", len(deleted), len(results))
    return {
        "success": True,
        "data": {"deletedCount": len(deleted), "totalRequested": len(results), "deletedItems": list(results)},
    }
