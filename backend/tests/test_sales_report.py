from datetime import date
from typing import List

import httpx
import pytest
from fastapi.testclient import TestClient

from flora_portal.config import settings
from flora_portal.main import app
from flora_portal.models.user import WordPressUser
from flora_portal.services import auth as auth_service
from flora_portal.services.flora_api_client import FloraApiClient, flora_client
from flora_portal.services.sales_report import SalesReportUnavailable, fetch_completed_orders, summarize_sales


ORDERS = [
    {
        "id": 1,
        "date_created": "2024-03-02T11:00:00",
        "total": "55.00",
        "total_tax": "5.00",
        "discount_total": "-2.50",
        "payment_method_title": "Cash",
        "line_items": [
            {"quantity": 2, "subtotal": "30.00", "meta_data": [{"key": "_cost", "value": "6"}]},
            {"quantity": 1, "subtotal": "20.00", "meta_data": []},
        ],
    },
    {
        "id": 2,
        "date_created": "2024-03-02T15:30:00",
        "total": "10.00",
        "total_tax": "0",
        "discount_total": "0",
        "payment_method_title": "Credit Card (Clover)",
        "line_items": [{"quantity": 1, "subtotal": "10.00"}],
    },
    {
        "id": 3,
        "date_created": "2024-03-01T09:00:00",
        "total": "12.00",
        "total_tax": "1.00",
        "discount_total": "0",
        "payment_method_title": "",
        "line_items": [{"quantity": 3, "subtotal": "11.00", "meta_data": [{"key": "cost", "value": "0"}]}],
    },
    {"id": 4, "date_created": "2024-02-28T09:00:00", "total": "99.00", "line_items": []},
]


def _override_current_user() -> WordPressUser:
    return WordPressUser(id=1, username="admin")


def test_summarize_sales_builds_one_row_per_day_newest_first():
    rows = summarize_sales(ORDERS, date(2024, 3, 1), date(2024, 3, 3))

    assert [row["Date"][:10] for row in rows] == ["2024-03-03", "2024-03-02", "2024-03-01"]
    assert rows[0]["Invoices Sold"] == 0
    assert rows[0]["Gross Margin"] == 0

    busy = rows[1]
    assert busy["Invoices Sold"] == 2
    assert busy["Gross Sales"] == 65.0
    assert busy["Subtotal"] == 60.0
    assert busy["Total Cost"] == 12.0
    assert busy["Gross Profit"] == 48.0
    assert busy["Gross Margin"] == 80.0
    assert busy["Total Discount"] == 2.5
    assert busy["Total Item Count"] == 3
    assert busy["Total Quantity"] == 4
    assert busy["Items Per Transaction"] == 1.5
    assert busy["Transaction Average"] == 32.5
    assert busy["Cash"] == 55.0
    assert busy["CARD"] == 10.0
    assert busy["Sales Tax"] == 5.0


def test_days_without_recorded_cost_report_full_margin():
    quiet = summarize_sales(ORDERS, date(2024, 3, 1), date(2024, 3, 1))[0]

    assert quiet["Total Cost"] == 0
    assert quiet["Gross Profit"] == 11.0
    assert quiet["Gross Margin"] == 100.0
    assert quiet["Integrated Card Payment (US)"] == 12.0
    assert quiet["Qty Per Transaction"] == 3.0


@pytest.mark.asyncio
async def test_fetch_completed_orders_pages_until_empty():
    pages: List[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        page = request.url.params["page"]
        pages.append(page)
        assert request.url.params["status"] == "completed"
        assert request.url.params["after"] == "2024-03-01T00:00:00"
        assert request.headers["authorization"].startswith("Basic ")
        return httpx.Response(200, json=ORDERS[:2] if page == "1" else [])

    client = FloraApiClient(transport=httpx.MockTransport(handler))
    orders = await fetch_completed_orders(date(2024, 3, 1), date(2024, 3, 2), client=client)

    assert [o["id"] for o in orders] == [1, 2]
    assert pages == ["1", "2"]


@pytest.mark.asyncio
async def test_fetch_completed_orders_raises_on_upstream_error():
    client = FloraApiClient(transport=httpx.MockTransport(lambda request: httpx.Response(401, json={})))

    with pytest.raises(SalesReportUnavailable):
        await fetch_completed_orders(date(2024, 3, 1), date(2024, 3, 2), client=client)


def test_sales_by_day_route(monkeypatch):
    monkeypatch.setattr(settings, "WC_CONSUMER_KEY", "ck_test")
    monkeypatch.setattr(settings, "WC_CONSUMER_SECRET", "cs_test")

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params["page"] == "1":
            return httpx.Response(200, json=ORDERS)
        return httpx.Response(200, json=[])

    monkeypatch.setattr(flora_client, "transport", httpx.MockTransport(handler))
    app.dependency_overrides[auth_service.get_current_active_user] = _override_current_user
    client = TestClient(app)
    try:
        resp = client.get("/api/reports/sales-by-day", params={"startDate": "2024-03-01"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Start date and end date are required"}

        resp = client.get("/api/reports/sales-by-day", params={"startDate": "03/01/2024", "endDate": "2024-03-02"})
        assert resp.json() == {"error": "Invalid date format. Use YYYY-MM-DD"}

        rows = client.get("/api/reports/sales-by-day", params={"startDate": "2024-03-01", "endDate": "2024-03-02"}).json()
        assert [row["Invoices Sold"] for row in rows] == [2, 1]

        monkeypatch.setattr(flora_client, "transport", httpx.MockTransport(lambda request: httpx.Response(500)))
        resp = client.get("/api/reports/sales-by-day", params={"startDate": "2024-03-01", "endDate": "2024-03-02"})
        assert resp.status_code == 500
        assert resp.json() == {"error": "Failed to fetch sales data from Flora API"}
    finally:
        app.dependency_overrides.pop(auth_service.get_current_active_user, None)
