"""Inventory record initialization and the pending location-update map."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Sequence

from flora_portal.services.flora_api_client import (
    FloraApiClient,
    UpstreamUnavailable,
    flora_client,
    raise_for_upstream,
    safe_json,
)
from flora_portal.utils.logger import logger


class NoActiveLocations(Exception):
    pass


def _location_list(payload: Any) -> List[Dict[str, Any]]:
    if isinstance(payload, dict):
        payload = payload.get("data")
    if not isinstance(payload, list):
        return []
    return [loc for loc in payload if isinstance(loc, dict)]


def is_active_location(location: Dict[str, Any]) -> bool:
    return location.get("is_active") in ("1", 1, True)


async def fetch_active_locations(client: FloraApiClient = flora_client) -> List[Dict[str, Any]]:
    resp = await client.get("flora-im/v1/locations")
    raise_for_upstream(resp, "Failed to fetch locations")
    return [loc for loc in _location_list(safe_json(resp)) if is_active_location(loc)]


async def sync_products_to_locations(
    product_ids: Sequence[int],
    client: FloraApiClient = flora_client,
) -> Dict[str, Any]:
    """Create a zero-quantity inventory record for every product at every
    active location that does not have one yet.

    Runs sequentially, one product/location pair at a time.
    """
    locations = await fetch_active_locations(client)
    if not locations:
        raise NoActiveLocations("No active locations found")

    results = []
    total_initialized = 0
    total_errors = 0

    for product_id in product_ids:
        product_result = {"product_id": product_id, "initialized_locations": [], "errors": []}

        for location in locations:
            name = location.get("name") or location.get("id")
            try:
                check = await client.get(
                    "flora-im/v1/inventory",
                    params={"product_id": product_id, "location_id": location.get("id")},
                )
                if not check.is_success:
                    product_result["errors"].append(f"Failed to check inventory at {name}: {check.status_code}")
                    total_errors += 1
                    continue

                existing = safe_json(check)
                if isinstance(existing, list) and existing:
                    continue

                created = await client.post(
                    "flora-im/v1/inventory",
                    json={"product_id": product_id, "location_id": location.get("id"), "quantity": 0},
                )
                if created.is_success:
                    product_result["initialized_locations"].append(
                        {"location_id": location.get("id"), "location_name": location.get("name")}
                    )
                    total_initialized += 1
                else:
                    product_result["errors"].append(
                        f"Failed to create inventory at {name}: {created.text[:100]}"
                    )
                    total_errors += 1
            except UpstreamUnavailable as exc:
                product_result["errors"].append(f"Error processing {name}: {exc.message}")
                total_errors += 1

        results.append(product_result)

    pairs = len(product_ids) * len(locations)
    stats = {
        "total_products": len(product_ids),
        "total_locations": len(locations),
        "total_initialized": total_initialized,
        "total_errors": total_errors,
        "success_rate": (total_initialized / pairs * 100) if pairs else 0.0,
        "results": results,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    logger.info(
        "Inventory sync: %s records created, %s errors across %s locations",
        total_initialized,
        total_errors,
        len(locations),
    )
    return {
        "success": total_initialized > 0,
        "message": f"Sync completed: {total_initialized} inventory records created, {total_errors} errors",
        "data": stats,
    }


class LocationUpdateCache:
    """Pending location edits keyed by location id.

    Process-local and unbounded; an entry is dropped once the upstream update
    for that location succeeds.
    """

    def __init__(self):
        self._updates: Dict[int, Dict[str, Any]] = {}

    def record(self, location_id: int, changes: Dict[str, Any]) -> None:
        self._updates.setdefault(location_id, {}).update(changes)

    def get(self, location_id: int) -> Dict[str, Any]:
        return dict(self._updates.get(location_id, {}))

    def clear(self, location_id: int) -> None:
        self._updates.pop(location_id, None)

    def __len__(self) -> int:
        return len(self._updates)


location_updates = LocationUpdateCache()
