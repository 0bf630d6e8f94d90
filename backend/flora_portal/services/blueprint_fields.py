"""Blueprint field resolution for WooCommerce products.

A blueprint is a set of custom field definitions attached to a product
category by the Flora plugin. Resolving a product's blueprint fields takes
three hops: the product itself (for its categories and meta_data), the
category's blueprint assignment, and the blueprint's field definitions.

:class:`BlueprintFieldService` batches those hops so that rendering a list
of N products costs one product fetch each plus one schema lookup per
distinct category, and keeps short-lived caches of both schemas and
resolved product values.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from flora_portal.config import settings
from flora_portal.models.blueprint import (
    BatchLoadResponse,
    BlueprintField,
    BlueprintSchema,
    Product,
    ProductFieldData,
    ResolvedField,
)
from flora_portal.services.flora_api_client import (
    FloraApiClient,
    UpstreamUnavailable,
    flora_client,
    safe_json,
)
from flora_portal.utils.logger import logger


class BatchValidationError(ValueError):
    """The product id list of a batch request is unusable."""


def validate_product_ids(raw: Any, max_size: Optional[int] = None) -> List[int]:
    """Coerce a request's ``productIds`` into a de-duplicated list of ints."""
    if max_size is None:
        max_size = settings.BLUEPRINT_BATCH_MAX_SIZE
    if not isinstance(raw, list) or not raw:
        raise BatchValidationError("Invalid product IDs")
    if len(raw) > max_size:
        raise BatchValidationError(f"Batch size exceeds maximum of {max_size}")

    ids: List[int] = []
    for value in raw:
        if isinstance(value, bool):
            raise BatchValidationError("Invalid product IDs")
        try:
            product_id = int(value)
        except (TypeError, ValueError):
            raise BatchValidationError("Invalid product IDs")
        if product_id <= 0:
            raise BatchValidationError("Invalid product IDs")
        if product_id not in ids:
            ids.append(product_id)
    return ids


def resolve_fields(product: Product, schema: Optional[BlueprintSchema]) -> ProductFieldData:
    """Map each field definition onto the product's stored meta value.

    Missing or empty meta values fall back to the field's default, then to "".
    """
    fields: List[ResolvedField] = []
    for definition in (schema.fields if schema else []):
        value = product.meta_value(definition.field_name)
        if value is None or value == "":
            value = definition.default_value
        if value is None:
            value = ""
        fields.append(
            ResolvedField(
                field_name=definition.field_name,
                field_label=definition.field_label or definition.field_name,
                field_type=definition.field_type,
                field_value=value,
            )
        )
    return ProductFieldData(product_id=product.id, fields=fields)


class BlueprintFieldService:

    def __init__(
        self,
        client: FloraApiClient = flora_client,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._schemas: Dict[int, BlueprintSchema] = {}
        self._product_values: Dict[int, Tuple[float, Optional[int], ProductFieldData]] = {}
        self._pending: Dict[int, "asyncio.Future[BlueprintSchema]"] = {}
        self._generation = 0
        self.api_calls = 0

    @property
    def ttl_seconds(self) -> float:
        if self._ttl_seconds is not None:
            return self._ttl_seconds
        return settings.BLUEPRINT_CACHE_TTL_SECONDS

    def _is_fresh(self, fetched_at: float) -> bool:
        return self._clock() - fetched_at < self.ttl_seconds

    # ------------------------------------------------------------------
    # Upstream fetches
    # ------------------------------------------------------------------

    async def fetch_product(self, product_id: int) -> Optional[Product]:
        self.api_calls += 1
        try:
            resp = await self.client.get(f"wc/v3/products/{product_id}")
        except UpstreamUnavailable as exc:
            logger.warning("Blueprint batch: product %s unreachable: %s", product_id, exc)
            return None
        if not resp.is_success:
            logger.warning("Blueprint batch: product %s fetch returned HTTP %s", product_id, resp.status_code)
            return None
        try:
            return Product.model_validate(safe_json(resp))
        except ValidationError as exc:
            logger.warning("Blueprint batch: product %s has unexpected shape: %s", product_id, exc)
            return None

    async def _fetch_schema(self, category_id: int) -> BlueprintSchema:
        self.api_calls += 1
        resp = await self.client.get("fd/v1/blueprint-assignments", params={"category_id": category_id})

        blueprint_id: Optional[int] = None
        if resp.is_success:
            assignments = safe_json(resp)
            if isinstance(assignments, list) and assignments and isinstance(assignments[0], dict):
                blueprint_id = assignments[0].get("blueprint_id")
        else:
            logger.warning("Blueprint assignment lookup for category %s returned HTTP %s", category_id, resp.status_code)

        fields: List[BlueprintField] = []
        if blueprint_id:
            self.api_calls += 1
            resp = await self.client.get(f"fd/v1/blueprints/{blueprint_id}/fields")
            if resp.is_success:
                raw_fields = safe_json(resp)
                if isinstance(raw_fields, list):
                    for raw in raw_fields:
                        if isinstance(raw, dict) and raw.get("field_name"):
                            fields.append(BlueprintField.model_validate(raw))
            else:
                logger.warning("Blueprint %s field lookup returned HTTP %s", blueprint_id, resp.status_code)

        return BlueprintSchema(
            category_id=category_id,
            blueprint_id=blueprint_id,
            fields=fields,
            fetched_at=self._clock(),
        )

    async def _load_schema(self, category_id: int) -> BlueprintSchema:
        # A clear() while the fetch is in flight orphans it: the result still
        # reaches its awaiters but is not cached.
        generation = self._generation
        try:
            schema = await self._fetch_schema(category_id)
            if generation == self._generation:
                self._schemas[category_id] = schema
            return schema
        finally:
            if generation == self._generation:
                self._pending.pop(category_id, None)

    async def get_schema(self, category_id: int) -> BlueprintSchema:
        """Cached schema for a category; concurrent callers share one fetch."""
        cached = self._schemas.get(category_id)
        if cached is not None and self._is_fresh(cached.fetched_at):
            return cached

        pending = self._pending.get(category_id)
        if pending is None:
            pending = asyncio.ensure_future(self._load_schema(category_id))
            self._pending[category_id] = pending
        return await asyncio.shield(pending)

    # ------------------------------------------------------------------
    # Batch loading
    # ------------------------------------------------------------------

    def cached_product(self, product_id: int) -> Optional[ProductFieldData]:
        entry = self._product_values.get(product_id)
        if entry is None:
            return None
        fetched_at, _category_id, data = entry
        if not self._is_fresh(fetched_at):
            self._product_values.pop(product_id, None)
            return None
        return data

    async def batch_load(self, product_ids: Sequence[int]) -> BatchLoadResponse:
        """Resolve blueprint fields for ``product_ids``.

        Products that cannot be fetched, or whose category schema cannot be
        reached, are left out and counted in ``failed``.
        """
        generation = self._generation
        resolved: Dict[int, ProductFieldData] = {}
        missing: List[int] = []
        for product_id in product_ids:
            cached = self.cached_product(product_id)
            if cached is not None:
                resolved[product_id] = cached
            else:
                missing.append(product_id)

        fetched = await asyncio.gather(*(self.fetch_product(pid) for pid in missing))

        by_category: Dict[Optional[int], List[Product]] = {}
        for product in fetched:
            if product is not None:
                by_category.setdefault(product.primary_category_id, []).append(product)

        category_ids = [cid for cid in by_category if cid is not None]
        schemas = await asyncio.gather(
            *(self.get_schema(cid) for cid in category_ids),
            return_exceptions=True,
        )
        schema_by_category: Dict[Optional[int], Optional[BlueprintSchema]] = {None: None}
        for category_id, schema in zip(category_ids, schemas):
            if isinstance(schema, BaseException):
                logger.warning("Blueprint batch: category %s schema failed: %s", category_id, schema)
                continue
            schema_by_category[category_id] = schema

        now = self._clock()
        for category_id, products in by_category.items():
            if category_id not in schema_by_category:
                continue
            schema = schema_by_category[category_id]
            for product in products:
                data = resolve_fields(product, schema)
                resolved[product.id] = data
                if generation == self._generation:
                    self._product_values[product.id] = (now, category_id, data)

        ordered = [resolved[pid] for pid in product_ids if pid in resolved]
        failed = len(product_ids) - len(ordered)
        if failed:
            logger.info("Blueprint batch: %s of %s products failed", failed, len(product_ids))
        return BatchLoadResponse(success=True, products=ordered, failed=failed)

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    def invalidate_products(self, product_ids: Iterable[int]) -> None:
        for product_id in product_ids:
            self._product_values.pop(int(product_id), None)

    def invalidate_category(self, category_id: int) -> None:
        """Drop a category schema and every product value resolved against it."""
        self._schemas.pop(category_id, None)
        stale = [pid for pid, (_, cid, _) in self._product_values.items() if cid == category_id]
        for product_id in stale:
            del self._product_values[product_id]

    def cache_stats(self) -> Dict[str, int]:
        return {
            "schemas": len(self._schemas),
            "products": len(self._product_values),
            "api_calls": self.api_calls,
            "pending": len(self._pending),
        }

    def clear(self) -> None:
        self._generation += 1
        self._schemas.clear()
        self._product_values.clear()
        self._pending.clear()
        self.api_calls = 0
        logger.info("Blueprint field caches cleared")


blueprint_field_service = BlueprintFieldService()
