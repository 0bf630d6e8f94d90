from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from flora_portal.models.user import WordPressUser
from flora_portal.services.audit_feed import AuditFeedUnavailable, build_audit_feed
from flora_portal.services.auth import get_current_active_user
from flora_portal.utils.logger import logger
from flora_portal.utils.responses import NO_STORE_HEADERS


router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("")
async def get_audit_feed(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    location_id: Optional[int] = Query(None),
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    """Recent inventory changes mixed with POS sales, newest first."""
    try:
        entries = await build_audit_feed(limit=limit, offset=offset, location_id=location_id)
    except AuditFeedUnavailable as exc:
        logger.error("Audit feed unavailable: %s", exc)
        return JSONResponse({"success": False, "data": [], "error": str(exc)}, headers=NO_STORE_HEADERS)
    return JSONResponse({"success": True, "data": entries, "total": len(entries)}, headers=NO_STORE_HEADERS)
