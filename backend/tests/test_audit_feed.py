from datetime import datetime, timedelta, timezone

import httpx
import pytest

from flora_portal.services.audit_feed import (
    AuditFeedUnavailable,
    build_audit_feed,
    collect_product_ids,
    is_meaningful,
    mix_entries,
    transform_audit_entry,
    transform_sale,
)
from flora_portal.services.flora_api_client import FloraApiClient


def _ts(minutes_ago: int) -> str:
    return (datetime.now(timezone.utc) - timedelta(minutes=minutes_ago)).strftime("%Y-%m-%d %H:%M:%S")


POS_ORDER = {
    "id": 501,
    "number": "501",
    "date_created": _ts(5),
    "total": "45.00",
    "payment_method_title": "Cash",
    "employee_id": 7,
    "employee_name": "Jordan",
    "billing": {"first_name": "Sam", "last_name": "Lee"},
    "meta_data": [{"key": "_pos_location_name", "value": "Charlotte"}, {"key": "_flora_location_id", "value": "3"}],
    "line_items": [
        {"name": "Blue Dream", "meta_data": [{"key": "_actual_quantity", "value": "3.5"}, {"key": "_actual_price", "value": "45"}]}
    ],
}


def _entry(entry_id, operation, user_name, minutes_ago, change=1.0):
    return {
        "id": entry_id,
        "operation": operation,
        "action": operation,
        "user_name": user_name,
        "change_amount": change,
        "created_at": _ts(minutes_ago),
    }


def test_transform_sale_summarizes_pos_order():
    sale = transform_sale(POS_ORDER)

    assert sale["operation"] == "sale"
    assert sale["product_name"] == "Blue Dream"
    assert sale["location_id"] == 3
    assert sale["location_name"] == "Charlotte"
    assert sale["change_amount"] == -3.5
    assert sale["notes"] == "Cash sale to Sam Lee"
    assert sale["user_name"] == "Jordan"
    assert sale["details"]["items"] == [{"name": "Blue Dream", "quantity": "3.5", "price": "45"}]


def test_transform_audit_entry_parses_json_details_and_names():
    entry = {
        "id": 9,
        "action": "inventory_update",
        "product_id": "12",
        "location_id": "3",
        "old_quantity": "10",
        "new_quantity": "7",
        "quantity_change": "-3",
        "created_at": _ts(1),
        "details": '{"user_name": "Alex", "location_name": "Charlotte", "reason": "Recount"}',
    }

    result = transform_audit_entry(entry, {12: "Blue Dream"})

    assert result["product_name"] == "Blue Dream"
    assert result["location_name"] == "Charlotte"
    assert result["old_quantity"] == 10.0
    assert result["new_quantity"] == 7.0
    assert result["change_amount"] == -3.0
    assert result["user_name"] == "Alex"
    assert result["notes"] == "Recount"


def test_transform_conversion_uses_product_names_for_both_sides():
    entry = {
        "id": 10,
        "action": "stock_conversion",
        "details": {"from_product_id": 1, "to_product_id": 2, "from_quantity": 28, "to_quantity": 14},
    }

    result = transform_audit_entry(entry, {1: "Bulk Flower", 2: "Pre-rolls"})

    assert result["operation"] == "stock_conversion"
    assert result["from_product_name"] == "Bulk Flower"
    assert result["to_product_name"] == "Pre-rolls"


def test_collect_product_ids_reads_entries_and_details():
    entries = [
        {"product_id": 5},
        {"object_id": "6", "details": '{"from_product_id": 7, "to_product_id": "8"}'},
        {"product_id": 0},
    ]
    assert collect_product_ids(entries) == {5, 6, 7, 8}


def test_is_meaningful_drops_no_op_updates():
    assert not is_meaningful(_entry(1, "inventory_update", "System", 1, change=0))
    assert is_meaningful(_entry(2, "assign_tax", "System", 1, change=0))
    assert is_meaningful(_entry(3, "sale", "Jordan", 1, change=0))
    assert is_meaningful(_entry(4, "inventory_update", "System", 1, change=-2))


def test_mix_entries_balances_sales_user_and_system_activity():
    entries = (
        [_entry(i, "sale", "Jordan", i) for i in range(1, 6)]
        + [_entry(10 + i, "inventory_update", "Alex", i) for i in range(1, 6)]
        + [_entry(20 + i, "inventory_update", "System", i) for i in range(1, 6)]
    )

    mixed = mix_entries(entries, limit=5)

    operations = [(e["operation"], e["user_name"]) for e in mixed]
    assert operations.count(("sale", "Jordan")) == 2
    assert operations.count(("inventory_update", "Alex")) == 2
    assert operations.count(("inventory_update", "System")) == 1
    stamps = [e["created_at"] for e in mixed]
    assert stamps == sorted(stamps, reverse=True)
    assert all("relative_time" in e for e in mixed)


def test_mix_entries_fills_with_system_when_other_groups_are_short():
    entries = [_entry(1, "sale", "Jordan", 1)] + [_entry(20 + i, "inventory_update", "System", i) for i in range(10)]

    mixed = mix_entries(entries, limit=5)

    assert len(mixed) == 5
    assert sum(1 for e in mixed if e["operation"] == "sale") == 1


@pytest.mark.asyncio
async def test_build_audit_feed_merges_audit_log_and_pos_sales():
    audit_rows = [
        {"id": 1, "action": "inventory_update", "product_id": 12, "quantity_change": "2", "created_at": _ts(2)},
        {"id": 2, "action": "inventory_update", "product_id": 12, "quantity_change": "0", "created_at": _ts(3)},
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path.replace("/wp-json/", "", 1)
        if path == "flora-im/v1/audit":
            assert "_t" in request.url.params
            return httpx.Response(200, json=audit_rows)
        if path == "flora-im/v1/orders":
            return httpx.Response(200, json={"data": [POS_ORDER]})
        if path == "wc/v3/products":
            return httpx.Response(200, json=[{"id": 12, "name": "Blue Dream"}])
        return httpx.Response(404)

    client = FloraApiClient(transport=httpx.MockTransport(handler))

    feed = await build_audit_feed(limit=10, client=client)

    assert [e["id"] for e in feed] == [1, 501]
    assert feed[0]["product_name"] == "Blue Dream"


@pytest.mark.asyncio
async def test_build_audit_feed_raises_when_audit_log_fails():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    client = FloraApiClient(transport=httpx.MockTransport(handler))

    with pytest.raises(AuditFeedUnavailable):
        await build_audit_feed(client=client)
