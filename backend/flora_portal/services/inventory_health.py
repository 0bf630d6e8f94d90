import asyncio
import time
from datetime import datetime, timezone
from typing import List

from flora_portal.models.health import HealthCheckResult, HealthStatus, InventoryHealthReport
from flora_portal.services.flora_api_client import (
    FloraApiClient,
    UpstreamUnavailable,
    flora_client,
    safe_json,
)
from flora_portal.utils.logger import logger

FLORA_API = "flora_api"
INVENTORY_MATRIX = "inventory_matrix"

_RECOMMENDATIONS = {
    FLORA_API: "Flora API is down - check plugin activation and server status",
    INVENTORY_MATRIX: "Inventory matrix plugin is down - check plugin activation and authentication",
}
ALL_HEALTHY = "All systems healthy - no action required"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _result(component: str, status: HealthStatus, message: str, started: float) -> HealthCheckResult:
    return HealthCheckResult(
        component=component,
        status=status,
        message=message,
        timestamp=_now(),
        response_time_ms=int((time.monotonic() - started) * 1000),
    )


async def check_flora_api(client: FloraApiClient = flora_client) -> HealthCheckResult:
    """Ping the locations endpoint; an empty location list is a warning."""
    started = time.monotonic()
    try:
        resp = await client.get("flora-im/v1/locations", auth="basic", timeout=10.0)
    except UpstreamUnavailable as exc:
        return _result(FLORA_API, HealthStatus.CRITICAL, f"Flora API unreachable: {exc.message}", started)

    if not resp.is_success:
        return _result(FLORA_API, HealthStatus.CRITICAL, f"Flora API error: {resp.status_code}", started)

    payload = safe_json(resp)
    if not isinstance(payload, dict) or not payload.get("success") or not payload.get("data"):
        return _result(FLORA_API, HealthStatus.WARNING, "Flora API returns no locations", started)

    count = len(payload["data"])
    return _result(FLORA_API, HealthStatus.HEALTHY, f"Flora API healthy ({count} locations)", started)


async def check_inventory_matrix(client: FloraApiClient = flora_client) -> HealthCheckResult:
    started = time.monotonic()
    try:
        resp = await client.get("flora-inventory-matrix/v1/health", auth="basic", timeout=10.0)
    except UpstreamUnavailable as exc:
        return _result(
            INVENTORY_MATRIX,
            HealthStatus.CRITICAL,
            f"Inventory matrix plugin unreachable: {exc.message}",
            started,
        )

    if not resp.is_success:
        return _result(
            INVENTORY_MATRIX,
            HealthStatus.CRITICAL,
            f"Inventory matrix plugin API error: {resp.status_code}",
            started,
        )

    payload = safe_json(resp)
    if not isinstance(payload, dict) or not payload.get("success"):
        return _result(
            INVENTORY_MATRIX,
            HealthStatus.WARNING,
            "Inventory matrix plugin returns invalid data format",
            started,
        )

    return _result(INVENTORY_MATRIX, HealthStatus.HEALTHY, "Inventory matrix plugin healthy", started)


def overall_status(checks: List[HealthCheckResult]) -> HealthStatus:
    statuses = {check.status for check in checks}
    if HealthStatus.CRITICAL in statuses:
        return HealthStatus.CRITICAL
    if HealthStatus.WARNING in statuses:
        return HealthStatus.WARNING
    return HealthStatus.HEALTHY


def recommendations_for(checks: List[HealthCheckResult]) -> List[str]:
    recommendations = [
        _RECOMMENDATIONS[check.component]
        for check in checks
        if check.status == HealthStatus.CRITICAL and check.component in _RECOMMENDATIONS
    ]
    if not recommendations:
        recommendations.append(ALL_HEALTHY)
    return recommendations


async def run_health_check(client: FloraApiClient = flora_client) -> InventoryHealthReport:
    checks = list(await asyncio.gather(check_flora_api(client), check_inventory_matrix(client)))
    overall = overall_status(checks)
    if overall != HealthStatus.HEALTHY:
        logger.warning(
            "Inventory health %s: %s",
            overall.value,
            "; ".join(check.message for check in checks),
        )
    return InventoryHealthReport(
        overall=overall,
        checks=checks,
        recommendations=recommendations_for(checks),
        timestamp=_now(),
    )


async def quick_health_check(client: FloraApiClient = flora_client) -> HealthStatus:
    report = await run_health_check(client)
    return report.overall
