"""Image processing through third-party AI services.

Upscaling and relighting go to Clipdrop, background removal to remove.bg,
and image generation to OpenAI (DALL-E 3). Processed images are returned to
the caller as base64 ``data:`` URLs; nothing is stored server-side.
"""

from __future__ import annotations

import base64
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx
from openai import APIStatusError, AsyncOpenAI, OpenAIError

from flora_portal.config import settings
from flora_portal.utils.logger import logger, upstream_logger

CLIPDROP_UPSCALE_URL = "https://clipdrop-api.co/image-upscaling/v1/upscale"
CLIPDROP_RELIGHT_URL = "https://clipdrop-api.co/relight/v1"
REMOVE_BG_URL = "https://api.remove.bg/v1.0/removebg"

DALLE_MODEL = "dall-e-3"
DALLE_MAX_PROMPT_LENGTH = 4000

LIGHT_POSITIONS: Dict[str, Tuple[str, str]] = {
    "top": ("0", "-1"),
    "bottom": ("0", "1"),
    "left": ("-1", "0"),
    "right": ("1", "0"),
}


class MediaNotConfigured(RuntimeError):
    """The API key for a media provider is missing."""


class MediaProcessingError(Exception):
    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def http_client(timeout: float = 60.0) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout, follow_redirects=True)


def resolve_image_url(image_url: str) -> str:
    """Absolute URL for an image; portal-relative paths use PUBLIC_BASE_URL."""
    if image_url.startswith(("http://", "https://")):
        return image_url
    base = settings.PUBLIC_BASE_URL.rstrip("/")
    if image_url.startswith("/"):
        return f"{base}{image_url}"
    return f"{base}/{image_url}"


def processed_filename(image_url: str, suffix: str) -> str:
    original = image_url.rstrip("/").split("/")[-1] or "image"
    stem = original.split("?")[0].split(".")[0] or "image"
    return f"{stem}_{suffix}.png"


def to_data_url(content: bytes, mime: str = "image/png") -> str:
    return f"data:{mime};base64,{base64.b64encode(content).decode('ascii')}"


def _require(key: Optional[str], provider: str) -> str:
    if not key:
        raise MediaNotConfigured(f"{provider} API key is not configured")
    return key


async def _download(client: httpx.AsyncClient, image_url: str) -> bytes:
    url = resolve_image_url(image_url)
    try:
        resp = await client.get(url)
    except httpx.RequestError as exc:
        raise MediaProcessingError(f"Failed to fetch image: {exc}") from exc
    if resp.status_code >= 400:
        raise MediaProcessingError(f"Failed to fetch image: {resp.status_code}")
    return resp.content


def _clipdrop_error(operation: str, text: str) -> MediaProcessingError:
    if "image exceeds the maximum height" in text or "image exceeds the maximum width" in text:
        return MediaProcessingError(
            f"Image is too large for {operation}. Please use an image smaller than the maximum allowed size.",
            status_code=400,
        )
    if "image_file" in text:
        return MediaProcessingError("Invalid image format. Please use a standard image file (JPG, PNG).", status_code=400)
    return MediaProcessingError(f"{operation} failed: {text[:500]}")


async def _post_image(
    client: httpx.AsyncClient,
    url: str,
    api_key_header: Dict[str, str],
    image: bytes,
    data: Dict[str, str],
) -> httpx.Response:
    started = time.monotonic()
    try:
        resp = await client.post(
            url,
            headers=api_key_header,
            files={"image_file": ("image.jpg", image, "image/jpeg")},
            data=data,
        )
    except httpx.RequestError as exc:  # pragma: no cover - network failures
        upstream_logger.log_call("POST", url, error=str(exc))
        raise MediaProcessingError(f"Failed to contact {url}: {exc}") from exc
    upstream_logger.log_call(
        "POST",
        url,
        params=data,
        status_code=resp.status_code,
        duration_ms=(time.monotonic() - started) * 1000,
    )
    return resp


async def upscale_image(image_url: str, target_width: int = 2048, target_height: int = 2048) -> Dict[str, Any]:
    api_key = _require(settings.CLIPDROP_API_KEY, "Clipdrop")
    async with http_client() as client:
        image = await _download(client, image_url)
        resp = await _post_image(
            client,
            CLIPDROP_UPSCALE_URL,
            {"x-api-key": api_key},
            image,
            {"target_width": str(target_width), "target_height": str(target_height)},
        )
    if resp.status_code >= 400:
        logger.error("Clipdrop upscale HTTP %s: %s", resp.status_code, resp.text[:500])
        raise _clipdrop_error("AI Upscale", resp.text)

    return {
        "originalUrl": image_url,
        "processedDataUrl": to_data_url(resp.content),
        "processedFilename": processed_filename(image_url, "upscaled"),
        "dimensions": {"width": target_width, "height": target_height},
    }


async def relight_image(image_url: str, light_position: str = "top") -> Dict[str, Any]:
    api_key = _require(settings.CLIPDROP_API_KEY, "Clipdrop")
    light_x, light_y = LIGHT_POSITIONS.get(light_position, LIGHT_POSITIONS["top"])
    async with http_client() as client:
        image = await _download(client, image_url)
        resp = await _post_image(
            client,
            CLIPDROP_RELIGHT_URL,
            {"x-api-key": api_key},
            image,
            {"light_source_x": light_x, "light_source_y": light_y},
        )
    if resp.status_code >= 400:
        logger.error("Clipdrop relight HTTP %s: %s", resp.status_code, resp.text[:500])
        raise _clipdrop_error("AI Relight", resp.text)

    return {
        "originalUrl": image_url,
        "processedDataUrl": to_data_url(resp.content),
        "processedFilename": processed_filename(image_url, "relighted"),
        "lightPosition": light_position,
    }


async def remove_backgrounds(image_urls: List[str], size: str = "auto") -> Dict[str, Any]:
    """Run remove.bg over each image in turn; failures are reported per image."""
    api_key = _require(settings.REMOVE_BG_API_KEY, "Remove.bg")
    results: List[Dict[str, Any]] = []
    errors: List[Dict[str, Any]] = []

    async with http_client(timeout=120.0) as client:
        for image_url in image_urls:
            try:
                image = await _download(client, image_url)
                resp = await _post_image(
                    client,
                    REMOVE_BG_URL,
                    {"X-Api-Key": api_key},
                    image,
                    {
                        "size": size,
                        "type": "product",
                        "type_level": "2",
                        "format": "png",
                        "channels": "rgba",
                        "semitransparency": "true",
                        "crop": "false",
                    },
                )
                if resp.status_code >= 400:
                    raise MediaProcessingError(f"Remove.bg API error: {resp.status_code} - {resp.text[:300]}")
            except MediaProcessingError as exc:
                logger.warning("Background removal failed for %s: %s", image_url, exc.message)
                errors.append({"originalUrl": image_url, "error": exc.message, "success": False})
                continue

            results.append(
                {
                    "originalUrl": image_url,
                    "processedDataUrl": to_data_url(resp.content),
                    "processedFilename": processed_filename(image_url, "no_bg"),
                    "success": True,
                    "detectedType": resp.headers.get("x-type"),
                    "creditsCharged": resp.headers.get("x-credits-charged"),
                }
            )

    return {
        "success": bool(results),
        "results": results,
        "errors": errors,
        "processed": len(results),
        "failed": len(errors),
    }


async def generate_dalle_images(
    prompt: str,
    size: str = "1024x1024",
    quality: str = "standard",
    style: str = "vivid",
    n: int = 1,
) -> List[Dict[str, Any]]:
    api_key = settings.OPENAI_API_KEY
    if not api_key:
        raise MediaNotConfigured("OpenAI API key not configured")

    prompt = prompt.strip()
    client = AsyncOpenAI(api_key=api_key)
    try:
        response = await client.images.generate(
            model=DALLE_MODEL,
            prompt=prompt,
            size=size,
            quality=quality,
            style=style,
            n=n,
            response_format="url",
        )
    except APIStatusError as exc:
        logger.error("DALL-E HTTP %s: %s", exc.status_code, exc.message)
        if exc.status_code == 429:
            raise MediaProcessingError("Rate limit exceeded. Please try again later.", status_code=429) from exc
        raise MediaProcessingError(exc.message or "Failed to generate image", status_code=exc.status_code) from exc
    except OpenAIError as exc:
        logger.error("DALL-E request failed: %s", exc)
        raise MediaProcessingError(f"Failed to generate image: {exc}") from exc

    if not response.data:
        raise MediaProcessingError("No images generated", status_code=500)

    generated_at = datetime.now(timezone.utc).isoformat()
    return [
        {
            "url": item.url,
            "revised_prompt": item.revised_prompt or prompt,
            "original_prompt": prompt,
            "size": size,
            "quality": quality,
            "style": style,
            "generated_at": generated_at,
            "index": index,
        }
        for index, item in enumerate(response.data)
    ]


def transform_media_item(item: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten a ``wp/v2/media`` item to what the media library grid shows."""
    details = item.get("media_details") or {}
    sizes = details.get("sizes") or {}
    source_url = item.get("source_url")

    def _size(name: str) -> Optional[str]:
        entry = sizes.get(name)
        if isinstance(entry, dict):
            return entry.get("source_url")
        return None

    title = item.get("title")
    if isinstance(title, dict):
        title = title.get("rendered")

    return {
        "id": item.get("id"),
        "title": title or "",
        "alt_text": item.get("alt_text") or "",
        "source_url": source_url,
        "mime_type": item.get("mime_type"),
        "date": item.get("date"),
        "width": details.get("width"),
        "height": details.get("height"),
        "file_size": details.get("filesize"),
        "thumbnail": _size("thumbnail") or source_url,
        "medium": _size("medium") or source_url,
        "large": _size("large") or source_url,
    }
