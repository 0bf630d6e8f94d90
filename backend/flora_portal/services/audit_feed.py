"""Activity feed combining the inventory audit log with POS sales.

The plugin's audit log is dominated by automated entries, so the feed
over-fetches it, drops entries that changed nothing, and mixes the result:
about 40% sales, 40% user actions, the rest system activity.
"""

from __future__ import annotations

import asyncio
import json
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from flora_portal.services.flora_api_client import (
    FloraApiClient,
    UpstreamUnavailable,
    flora_client,
    safe_json,
)
from flora_portal.utils.logger import logger
from flora_portal.utils.timestamps import format_relative_time, parse_timestamp

ALWAYS_SHOWN_ACTIONS = {
    "stock_transfer",
    "stock_conversion",
    "stock_conversion_to",
    "cost_updated",
    "assign_tax",
    "remove_tax",
}


class AuditFeedUnavailable(Exception):
    pass


def _int(value: Any, default: int = 0) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def _float(value: Any) -> Optional[float]:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(result) else result


def _details(entry: Dict[str, Any]) -> Dict[str, Any]:
    raw = entry.get("details")
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw:
        try:
            parsed = json.loads(raw)
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def _meta(items: Any, key: str, default: Any = None) -> Any:
    for meta in items or []:
        if isinstance(meta, dict) and meta.get("key") == key:
            return meta.get("value")
    return default


def collect_product_ids(entries: List[Dict[str, Any]]) -> Set[int]:
    ids: Set[int] = set()
    for entry in entries:
        product_id = _int(entry.get("product_id")) or _int(entry.get("object_id"))
        if product_id > 0:
            ids.add(product_id)
        details = _details(entry)
        for key in ("product_id", "from_product_id", "to_product_id"):
            value = _int(details.get(key))
            if value > 0:
                ids.add(value)
    return ids


def transform_sale(order: Dict[str, Any]) -> Dict[str, Any]:
    line_items = order.get("line_items") or []
    meta_data = order.get("meta_data") or []
    billing = order.get("billing") or {}
    employee_name = order.get("employee_name") or "Unknown Staff"
    location_name = _meta(meta_data, "_pos_location_name") or "Unknown Location"
    payment_method = order.get("payment_method_title") or order.get("payment_method") or "Unknown"
    customer_name = f"{billing.get('first_name') or ''} {billing.get('last_name') or ''}".strip() or "POS Customer"
    total_items = sum(_float(_meta(item.get("meta_data"), "_actual_quantity", 0)) or 0 for item in line_items)

    if len(line_items) == 1:
        product_name = line_items[0].get("name")
    else:
        product_name = f"{len(line_items)} items"

    return {
        "id": _int(order.get("id")),
        "product_id": 0,
        "location_id": _int(_meta(meta_data, "_flora_location_id", 0)),
        "product_name": product_name,
        "location_name": location_name,
        "old_quantity": 0,
        "new_quantity": 0,
        "change_amount": -total_items,
        "operation": "sale",
        "action": "sale",
        "reference_id": _int(order.get("id")),
        "reference_type": "order",
        "notes": f"{payment_method} sale to {customer_name}",
        "user_id": _int(order.get("employee_id")),
        "user_name": employee_name,
        "user_agent": "POS System",
        "created_at": order.get("date_created"),
        "details": {
            "order_id": order.get("id"),
            "order_number": order.get("number"),
            "customer_name": customer_name,
            "employee_name": employee_name,
            "location_name": location_name,
            "total": order.get("total"),
            "payment_method": payment_method,
            "items": [
                {
                    "name": item.get("name"),
                    "quantity": _meta(item.get("meta_data"), "_actual_quantity", 0),
                    "price": _meta(item.get("meta_data"), "_actual_price", 0),
                }
                for item in line_items
            ],
        },
    }


def transform_audit_entry(entry: Dict[str, Any], product_names: Dict[int, str]) -> Dict[str, Any]:
    details = _details(entry)
    action = entry.get("action") or "inventory_update"
    product_id = _int(entry.get("product_id")) or _int(details.get("product_id")) or _int(entry.get("object_id"))
    location_id = _int(entry.get("location_id")) or _int(details.get("location_id"))

    old_qty = _float(entry.get("old_quantity"))
    if old_qty is None:
        old_qty = _float(details.get("old_quantity"))
    new_qty = _float(entry.get("new_quantity")) or _float(details.get("new_quantity")) or 0.0
    change = _float(entry.get("quantity_change")) or _float(details.get("quantity_change")) or 0.0
    if old_qty is None:
        old_qty = new_qty - change if change else 0.0

    user_name = details.get("user_name") or entry.get("user_name") or "System"

    result: Dict[str, Any] = {
        "id": _int(entry.get("id")),
        "product_id": product_id,
        "location_id": location_id,
        "product_name": product_names.get(product_id) or details.get("product_name") or f"Product {product_id}",
        "product_image": details.get("product_image"),
        "location_name": details.get("location_name") or f"Location {location_id}",
        "old_quantity": old_qty,
        "new_quantity": new_qty,
        "change_amount": change,
        "operation": action,
        "action": action,
        "reference_id": _int(entry.get("reference_id")) or None,
        "reference_type": entry.get("reference_type"),
        "notes": details.get("reason") or entry.get("reason"),
        "user_id": _int(entry.get("user_id")),
        "user_name": user_name,
        "user_agent": entry.get("user_agent") or details.get("user_agent"),
        "batch_id": entry.get("batch_id"),
        "created_at": entry.get("created_at"),
        "details": details,
    }

    if action == "stock_transfer":
        result.update(
            from_location_id=details.get("from_location_id"),
            from_location_name=details.get("from_location_name"),
            to_location_id=details.get("to_location_id"),
            to_location_name=details.get("to_location_name"),
            transfer_quantity=details.get("quantity") or 0,
        )

    if action in ("stock_conversion", "stock_conversion_to"):
        from_id = _int(details.get("from_product_id"))
        to_id = _int(details.get("to_product_id"))
        result.update(
            operation="stock_conversion",
            from_product_id=from_id or None,
            from_product_name=product_names.get(from_id) or details.get("from_product_name"),
            to_product_id=to_id or None,
            to_product_name=product_names.get(to_id) or details.get("to_product_name"),
            from_quantity=details.get("from_quantity") or 0,
            to_quantity=details.get("to_quantity") or 0,
            conversion_ratio=details.get("conversion_ratio") or 0,
        )
        side = "from" if action == "stock_conversion" else "to"
        result["product_name"] = details.get(f"{side}_product_name") or result["product_name"]
        result["product_image"] = details.get(f"{side}_product_image") or result["product_image"]

    return result


def is_meaningful(entry: Dict[str, Any]) -> bool:
    return (
        entry["operation"] == "sale"
        or abs(entry.get("change_amount") or 0) > 0
        or entry["operation"] in ALWAYS_SHOWN_ACTIONS
        or entry["action"] in ALWAYS_SHOWN_ACTIONS
    )


_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _sort_key(entry: Dict[str, Any]) -> datetime:
    return parse_timestamp(entry.get("created_at")) or _EPOCH


def mix_entries(entries: List[Dict[str, Any]], limit: int) -> List[Dict[str, Any]]:
    sales = [e for e in entries if e["operation"] == "sale"]
    users = [e for e in entries if e["operation"] != "sale" and e.get("user_name") not in (None, "", "System")]
    system = [e for e in entries if e["operation"] != "sale" and e.get("user_name") in (None, "", "System")]
    for group in (sales, users, system):
        group.sort(key=_sort_key, reverse=True)

    sales_limit = min(len(sales), math.ceil(limit * 0.4))
    user_limit = min(len(users), math.ceil(limit * 0.4))
    system_limit = max(0, limit - sales_limit - user_limit)

    mixed = sales[:sales_limit] + users[:user_limit] + system[:system_limit]
    mixed.sort(key=_sort_key, reverse=True)
    for entry in mixed:
        entry["relative_time"] = format_relative_time(entry.get("created_at"))
    return mixed


async def _product_names(client: FloraApiClient, ids: Set[int]) -> Dict[int, str]:
    if not ids:
        return {}
    try:
        resp = await client.get(
            "wc/v3/products",
            params={"include": ",".join(str(i) for i in sorted(ids)), "per_page": 100},
        )
    except UpstreamUnavailable as exc:
        logger.warning("Audit feed: product name lookup failed: %s", exc)
        return {}
    products = safe_json(resp) if resp.is_success else None
    if not isinstance(products, list):
        return {}
    return {p["id"]: p["name"] for p in products if isinstance(p, dict) and p.get("id") and p.get("name")}


async def build_audit_feed(
    limit: int = 50,
    offset: int = 0,
    location_id: Optional[int] = None,
    client: FloraApiClient = flora_client,
) -> List[Dict[str, Any]]:
    audit_params: Dict[str, Any] = {
        "limit": max(limit * 5, 500),
        "offset": offset,
        "orderby": "created_at",
        "order": "DESC",
        "location_id": location_id,
    }
    audit_resp, orders_resp = await asyncio.gather(
        client.get("flora-im/v1/audit", params=audit_params, cache_bust=True),
        client.get("flora-im/v1/orders", params={"limit": 50, "orderby": "date_created", "order": "DESC"}),
        return_exceptions=True,
    )
    if isinstance(audit_resp, BaseException):
        raise AuditFeedUnavailable(str(audit_resp))
    if not audit_resp.is_success:
        raise AuditFeedUnavailable(f"Audit API error: {audit_resp.status_code}")

    raw_audit = safe_json(audit_resp)
    raw_audit = [e for e in raw_audit if isinstance(e, dict)] if isinstance(raw_audit, list) else []

    sales: List[Dict[str, Any]] = []
    if not isinstance(orders_resp, BaseException) and orders_resp.is_success:
        orders_payload = safe_json(orders_resp)
        if isinstance(orders_payload, dict) and isinstance(orders_payload.get("data"), list):
            sales = [transform_sale(o) for o in orders_payload["data"] if isinstance(o, dict)]
    elif isinstance(orders_resp, BaseException):
        logger.warning("Audit feed: POS orders unavailable: %s", orders_resp)

    names = await _product_names(client, collect_product_ids(raw_audit))
    entries = sales + [transform_audit_entry(e, names) for e in raw_audit]
    return mix_entries([e for e in entries if is_meaningful(e)], limit)
