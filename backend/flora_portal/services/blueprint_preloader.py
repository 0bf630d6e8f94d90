"""Debounced warm-up of the blueprint field caches.

The product list UI fires a preload every time a group of rows is expanded.
Bursts of those calls collapse into one batch load per category after the
debounce window; a set of products that was already loaded is skipped.
"""

from __future__ import annotations

import asyncio
from typing import Dict, List, Optional, Sequence

from flora_portal.config import settings
from flora_portal.models.blueprint import Product
from flora_portal.services.blueprint_fields import BlueprintFieldService, blueprint_field_service
from flora_portal.utils.logger import logger


def preload_key(products: Sequence[Product]) -> str:
    return ",".join(str(pid) for pid in sorted(p.id for p in products))


class BlueprintPreloader:

    def __init__(
        self,
        service: BlueprintFieldService = blueprint_field_service,
        debounce_seconds: Optional[float] = None,
    ):
        self.service = service
        self._debounce_seconds = debounce_seconds
        self._timer: Optional[asyncio.Task] = None
        self._debouncing = False
        self.last_loaded_key: Optional[str] = None

    @property
    def debounce_seconds(self) -> float:
        if self._debounce_seconds is not None:
            return self._debounce_seconds
        return settings.BLUEPRINT_PRELOAD_DEBOUNCE_SECONDS

    def schedule(self, products: Sequence[Product], expanded: bool = True) -> Optional[str]:
        """Schedule a preload; returns the load key, or None if nothing was scheduled."""
        if not expanded or not products:
            return None

        key = preload_key(products)
        if key == self.last_loaded_key:
            return None

        # Only a preload still waiting out its debounce is superseded; one that
        # has started loading runs to completion.
        if self._debouncing and self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._debouncing = True
        self._timer = asyncio.create_task(self._fire(key, list(products)))
        return key

    async def _fire(self, key: str, products: List[Product]) -> None:
        await asyncio.sleep(self.debounce_seconds)
        if self._timer is asyncio.current_task():
            self._debouncing = False

        groups: Dict[int, List[int]] = {}
        for product in products:
            category_id = product.primary_category_id
            if category_id is None:
                continue
            groups.setdefault(category_id, []).append(product.id)

        chunk = settings.BLUEPRINT_BATCH_MAX_SIZE
        loads = []
        for category_id, ids in groups.items():
            for start in range(0, len(ids), chunk):
                loads.append(self.service.batch_load(ids[start:start + chunk]))

        results = await asyncio.gather(*loads, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                logger.warning("Blueprint preload %s: batch failed: %s", key, result)

        self.last_loaded_key = key
        logger.info("Blueprint preload complete: %s products in %s categories", len(products), len(groups))

    async def flush(self) -> None:
        """Wait for the pending preload, if any, to finish."""
        timer = self._timer
        if timer is None or timer.done():
            return
        await asyncio.wait([timer])

    def cancel(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()

    def reset(self) -> None:
        self.cancel()
        self._timer = None
        self._debouncing = False
        self.last_loaded_key = None


blueprint_preloader = BlueprintPreloader()
