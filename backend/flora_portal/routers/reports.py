from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from flora_portal.models.user import WordPressUser
from flora_portal.services.auth import get_current_active_user
from flora_portal.services.sales_report import (
    SalesReportNotConfigured,
    SalesReportUnavailable,
    build_sales_by_day,
    parse_report_date,
)
from flora_portal.utils.logger import logger
from flora_portal.utils.responses import error_response


router = APIRouter(prefix="/api/reports", tags=["reports"])


@router.get("/sales-by-day")
async def sales_by_day(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    current_user: WordPressUser = Depends(get_current_active_user),  # noqa: ARG001
):
    if not start_date or not end_date:
        return error_response(status.HTTP_400_BAD_REQUEST, "Start date and end date are required")
    try:
        start = parse_report_date(start_date)
        end = parse_report_date(end_date)
    except ValueError:
        return error_response(status.HTTP_400_BAD_REQUEST, "Invalid date format. Use YYYY-MM-DD")

    try:
        return await build_sales_by_day(start, end)
    except SalesReportNotConfigured as exc:
        logger.error("Sales report: %s", exc)
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))
    except SalesReportUnavailable as exc:
        logger.error("Sales report fetch failed: %s", exc)
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to fetch sales data from Flora API")
