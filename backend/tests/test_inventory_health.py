import httpx
import pytest

from flora_portal.models.health import HealthStatus
from flora_portal.services.flora_api_client import FloraApiClient
from flora_portal.services.inventory_health import (
    ALL_HEALTHY,
    FLORA_API,
    INVENTORY_MATRIX,
    check_flora_api,
    check_inventory_matrix,
    quick_health_check,
    run_health_check,
)


def _client(routes):
    """Client whose upstream answers ``routes[path]``; a callable raises instead."""

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path.replace("/wp-json/", "", 1)
        answer = routes.get(path)
        if answer is None:
            return httpx.Response(404)
        if isinstance(answer, Exception):
            raise answer
        return answer

    return FloraApiClient(transport=httpx.MockTransport(handler))


HEALTHY_LOCATIONS = httpx.Response(200, json={"success": True, "data": [{"id": 1}, {"id": 2}]})
HEALTHY_MATRIX = httpx.Response(200, json={"success": True})


@pytest.mark.asyncio
async def test_flora_api_healthy_reports_location_count():
    result = await check_flora_api(_client({"flora-im/v1/locations": HEALTHY_LOCATIONS}))

    assert result.component == FLORA_API
    assert result.status == HealthStatus.HEALTHY
    assert result.message == "Flora API healthy (2 locations)"


@pytest.mark.asyncio
async def test_flora_api_without_locations_is_a_warning():
    client = _client({"flora-im/v1/locations": httpx.Response(200, json={"success": True, "data": []})})

    result = await check_flora_api(client)

    assert result.status == HealthStatus.WARNING
    assert result.message == "Flora API returns no locations"


@pytest.mark.asyncio
async def test_flora_api_http_error_is_critical():
    result = await check_flora_api(_client({"flora-im/v1/locations": httpx.Response(500)}))

    assert result.status == HealthStatus.CRITICAL
    assert result.message == "Flora API error: 500"


@pytest.mark.asyncio
async def test_flora_api_unreachable_is_critical():
    client = _client({"flora-im/v1/locations": httpx.ConnectError("refused")})

    result = await check_flora_api(client)

    assert result.status == HealthStatus.CRITICAL
    assert result.message.startswith("Flora API unreachable")


@pytest.mark.asyncio
async def test_inventory_matrix_invalid_payload_is_a_warning():
    client = _client({"flora-inventory-matrix/v1/health": httpx.Response(200, json={"ok": True})})

    result = await check_inventory_matrix(client)

    assert result.component == INVENTORY_MATRIX
    assert result.status == HealthStatus.WARNING


@pytest.mark.asyncio
async def test_report_is_healthy_when_every_check_passes():
    client = _client(
        {
            "flora-im/v1/locations": HEALTHY_LOCATIONS,
            "flora-inventory-matrix/v1/health": HEALTHY_MATRIX,
        }
    )

    report = await run_health_check(client)

    assert report.overall == HealthStatus.HEALTHY
    assert [c.component for c in report.checks] == [FLORA_API, INVENTORY_MATRIX]
    assert report.recommendations == [ALL_HEALTHY]


@pytest.mark.asyncio
async def test_report_recommends_action_for_critical_components():
    client = _client(
        {
            "flora-im/v1/locations": httpx.Response(200, json={"success": True, "data": []}),
            "flora-inventory-matrix/v1/health": httpx.Response(503),
        }
    )

    report = await run_health_check(client)

    assert report.overall == HealthStatus.CRITICAL
    assert report.recommendations == [
        "Inventory matrix plugin is down - check plugin activation and authentication"
    ]


@pytest.mark.asyncio
async def test_quick_check_returns_overall_status():
    client = _client({"flora-im/v1/locations": HEALTHY_LOCATIONS})

    assert await quick_health_check(client) == HealthStatus.CRITICAL
