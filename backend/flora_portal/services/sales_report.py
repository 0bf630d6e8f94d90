"""Daily sales summary built from completed WooCommerce orders."""

from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List

from flora_portal.config import settings
from flora_portal.services.flora_api_client import (
    FloraApiClient,
    UpstreamUnavailable,
    flora_client,
    safe_json,
)
from flora_portal.utils.logger import logger

MAX_PAGES = 50
PAGE_SIZE = 100
COST_META_KEYS = ("_cost", "cost", "_wholesale_price")

# Per-store tax columns the report layout expects; only "Sales Tax" is filled.
TAX_COLUMNS = (
    "Blowing Rock Tax Rate",
    "Elizabethton county tax",
    "Sales Tax",
    "Salisbury Tax Rate",
    "Tennessee hemp tax",
    "Tennessee state tax",
)


class SalesReportUnavailable(Exception):
    pass


class SalesReportNotConfigured(Exception):
    pass


def parse_report_date(raw: str) -> date:
    return datetime.strptime(raw, "%Y-%m-%d").date()


def _number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _empty_day(day: date) -> Dict[str, Any]:
    row: Dict[str, Any] = {
        "Date": datetime(day.year, day.month, day.day, tzinfo=timezone.utc).isoformat(),
        "Invoices Sold": 0,
        "Invoices Ref": 0,
        "Net Sold": 0,
        "Gift Card Sales": 0.0,
        "Gross Sales": 0.0,
        "Subtotal": 0.0,
        "Total Tax": 0.0,
        "Total Invoiced": 0.0,
        "Total Cost": 0.0,
        "Gross Profit": 0.0,
        "Gross Margin": 0.0,
        "Total Discount": 0.0,
        "Items Per Transaction": 0.0,
        "Total Item Count": 0,
        "Qty Per Transaction": 0.0,
        "Total Quantity": 0,
        "Transaction Average": 0.0,
        "CARD": 0.0,
        "Cash": 0.0,
        "Integrated Card Payment (US)": 0.0,
    }
    for column in TAX_COLUMNS:
        row[column] = 0.0
    row["Tips"] = 0.0
    return row


def _item_cost(item: Dict[str, Any]) -> float:
    """Unit cost recorded on the line item, or 0 when none was recorded."""
    for meta in item.get("meta_data") or []:
        if isinstance(meta, dict) and meta.get("key") in COST_META_KEYS:
            cost = _number(meta.get("value"))
            return cost if cost > 0 else 0.0
    return 0.0


def _payment_column(order: Dict[str, Any]) -> str:
    method = str(order.get("payment_method_title") or "").lower()
    if "cash" in method:
        return "Cash"
    if "card" in method or "credit" in method:
        return "CARD"
    return "Integrated Card Payment (US)"


def summarize_sales(orders: List[Dict[str, Any]], start: date, end: date) -> List[Dict[str, Any]]:
    """One row per day in ``start..end``, newest first.

    Gross profit is the line subtotal minus recorded cost. Days without any
    recorded cost report the full subtotal as profit.
    """
    days: Dict[str, Dict[str, Any]] = {}
    day = start
    while day <= end:
        days[day.isoformat()] = _empty_day(day)
        day += timedelta(days=1)

    for order in orders:
        row = days.get(str(order.get("date_created") or "")[:10])
        if row is None:
            continue
        total = _number(order.get("total"))
        tax = _number(order.get("total_tax"))
        line_items = order.get("line_items") or []

        subtotal = 0.0
        cost = 0.0
        quantity = 0
        for item in line_items:
            item_quantity = int(_number(item.get("quantity")))
            quantity += item_quantity
            subtotal += _number(item.get("subtotal"))
            cost += _item_cost(item) * item_quantity

        row["Invoices Sold"] += 1
        row["Net Sold"] += 1
        row["Gross Sales"] += total
        row["Subtotal"] += subtotal
        row["Total Tax"] += tax
        row["Total Invoiced"] += total
        row["Total Discount"] += abs(_number(order.get("discount_total")))
        row["Total Item Count"] += len(line_items)
        row["Total Quantity"] += quantity
        row["Total Cost"] += cost
        row[_payment_column(order)] += total
        row["Sales Tax"] += tax

    for row in days.values():
        invoices = row["Invoices Sold"]
        if invoices:
            row["Items Per Transaction"] = row["Total Item Count"] / invoices
            row["Qty Per Transaction"] = row["Total Quantity"] / invoices
            row["Transaction Average"] = row["Gross Sales"] / invoices

        if row["Total Cost"] > 0:
            row["Gross Profit"] = row["Subtotal"] - row["Total Cost"]
            if row["Subtotal"] > 0:
                row["Gross Margin"] = row["Gross Profit"] / row["Subtotal"] * 100
        else:
            row["Gross Profit"] = row["Subtotal"]
            row["Gross Margin"] = 100.0 if row["Subtotal"] > 0 else 0.0

        for key, value in row.items():
            if isinstance(value, float):
                row[key] = round(value, 2)

    return sorted(days.values(), key=lambda r: r["Date"], reverse=True)


async def fetch_completed_orders(start: date, end: date, client: FloraApiClient = flora_client) -> List[Dict[str, Any]]:
    """All completed orders in the range, paging until an empty page."""
    orders: List[Dict[str, Any]] = []
    for page in range(1, MAX_PAGES + 1):
        try:
            resp = await client.get(
                "wc/v3/orders",
                params={
                    "after": f"{start.isoformat()}T00:00:00",
                    "before": f"{end.isoformat()}T23:59:59",
                    "status": "completed",
                    "per_page": PAGE_SIZE,
                    "page": page,
                },
                auth="basic",
            )
        except UpstreamUnavailable as exc:
            raise SalesReportUnavailable(str(exc)) from exc
        if not resp.is_success:
            raise SalesReportUnavailable(f"Orders API error: {resp.status_code}")
        batch = safe_json(resp)
        if not isinstance(batch, list) or not batch:
            return orders
        orders.extend(o for o in batch if isinstance(o, dict))
    logger.warning("Sales report stopped after %s pages of orders", MAX_PAGES)
    return orders


async def build_sales_by_day(start: date, end: date, client: FloraApiClient = flora_client) -> List[Dict[str, Any]]:
    if not (settings.WC_CONSUMER_KEY and settings.WC_CONSUMER_SECRET):
        raise SalesReportNotConfigured("API credentials not configured")
    orders = await fetch_completed_orders(start, end, client=client)
    logger.info("Sales report %s..%s: %s completed orders", start, end, len(orders))
    return summarize_sales(orders, start, end)
