import platform
import sys
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from flora_portal.config import settings
from flora_portal.models.user import WordPressUser
from flora_portal.services.auth import get_current_active_user
from flora_portal.services.blueprint_fields import blueprint_field_service
from flora_portal.services.blueprint_preloader import blueprint_preloader
from flora_portal.services.inventory_sync import location_updates
from flora_portal.utils.build_info import get_build_info
from flora_portal.utils.logger import logger, upstream_logger


router = APIRouter(prefix="/api/dev", tags=["dev"])

CACHE_TYPES = ("all", "query", "api")


def require_dev_tools(current_user: WordPressUser = Depends(get_current_active_user)) -> WordPressUser:
    if settings.DEV_TOOLS_DISABLED:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Developer tools disabled")
    return current_user


def _flag(value) -> str:
    return "[SET]" if value else "[NOT SET]"


@router.get("/cache")
async def get_cache_stats(current_user: WordPressUser = Depends(require_dev_tools)) -> dict:  # noqa: ARG001
    return {
        "success": True,
        "data": {
            "blueprints": blueprint_field_service.cache_stats(),
            "pending_location_updates": len(location_updates),
            "last_preload_key": blueprint_preloader.last_loaded_key,
        },
    }


@router.delete("/cache")
async def clear_cache(
    cache_type: str = Query("all", alias="type"),
    current_user: WordPressUser = Depends(require_dev_tools),
) -> dict:
    if cache_type not in CACHE_TYPES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid cache type")

    logger.info("Developer cache clear (%s) requested by %s", cache_type, current_user.username)
    results = []
    if cache_type in ("all", "api"):
        blueprint_field_service.clear()
        blueprint_preloader.reset()
        upstream_logger.clear_logs()
        results.append("Blueprint field caches cleared")
        results.append("Upstream call log cleared")
    if cache_type in ("all", "query"):
        results.append("Browser query cache must be cleared client-side")

    return {
        "success": True,
        "data": {
            "type": cache_type,
            "results": results,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "clearedBy": current_user.email or current_user.username,
        },
    }


@router.get("/info")
async def system_info(
    request: Request,
    log_limit: int = Query(50, ge=0, le=1000),
    current_user: WordPressUser = Depends(require_dev_tools),  # noqa: ARG001
) -> dict:
    return {
        "success": True,
        "data": {
            "server": {
                "python": sys.version.split()[0],
                "platform": platform.system().lower(),
                "arch": platform.machine(),
                **get_build_info(),
            },
            "environment": {
                "debug": settings.DEBUG,
                "floraApiBase": settings.FLORA_API_BASE,
                "wcConsumerKey": _flag(settings.WC_CONSUMER_KEY),
                "wpAdminPassword": _flag(settings.WP_ADMIN_APP_PASSWORD),
                "supabase": _flag(settings.SUPABASE_URL),
                "openaiApiKey": _flag(settings.OPENAI_API_KEY),
                "anthropicApiKey": _flag(settings.ANTHROPIC_API_KEY),
                "removeBgApiKey": _flag(settings.REMOVE_BG_API_KEY),
                "clipdropApiKey": _flag(settings.CLIPDROP_API_KEY),
            },
            "request": {
                "userAgent": request.headers.get("user-agent"),
                "ip": request.headers.get("x-forwarded-for")
                or request.headers.get("x-real-ip")
                or (request.client.host if request.client else "unknown"),
                "host": request.headers.get("host"),
                "protocol": request.headers.get("x-forwarded-proto") or request.url.scheme,
            },
            "upstream_calls": upstream_logger.get_logs(log_limit),
        },
    }
