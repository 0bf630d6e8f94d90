import asyncio
from typing import Any, Dict, List

import httpx
import pytest

from flora_portal.models.blueprint import BlueprintField, BlueprintSchema, Product, ProductFieldData
from flora_portal.services.blueprint_fields import (
    BatchValidationError,
    BlueprintFieldService,
    resolve_fields,
    validate_product_ids,
)
from flora_portal.services.flora_api_client import FloraApiClient


PRODUCTS: Dict[int, Dict[str, Any]] = {
    1: {
        "id": 1,
        "name": "Blue Dream",
        "categories": [{"id": 10, "name": "Flower"}],
        "meta_data": [{"key": "thc_percentage", "value": "24.5"}, {"key": "strain_type", "value": ""}],
    },
    2: {
        "id": 2,
        "name": "OG Kush",
        "categories": [{"id": 10, "name": "Flower"}],
        "meta_data": [{"key": "strain_type", "value": "indica"}],
    },
    3: {
        "id": 3,
        "name": "Gummies",
        "categories": [{"id": 20, "name": "Edibles"}],
        "meta_data": [],
    },
    4: {"id": 4, "name": "Uncategorised", "categories": [], "meta_data": []},
}

FLOWER_FIELDS = [
    {"field_name": "thc_percentage", "field_label": "THC %", "field_type": "number"},
    {"field_name": "strain_type", "field_label": "Strain", "field_type": "select", "default_value": "hybrid"},
]


class FakeUpstream:
    """Records every request and answers from the fixtures above."""

    def __init__(self, fail_categories: tuple = ()):
        self.calls: List[str] = []
        self.fail_categories = fail_categories
        self.flower_fields = list(FLOWER_FIELDS)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.replace("/wp-json/", "", 1)
        self.calls.append(path)

        if path.startswith("wc/v3/products/"):
            product_id = int(path.rsplit("/", 1)[-1])
            if product_id in PRODUCTS:
                return httpx.Response(200, json=PRODUCTS[product_id])
            return httpx.Response(404, json={"code": "woocommerce_rest_product_invalid_id"})

        if path == "fd/v1/blueprint-assignments":
            category_id = int(request.url.params["category_id"])
            if category_id in self.fail_categories:
                raise httpx.ConnectError("connection refused", request=request)
            if category_id == 10:
                return httpx.Response(200, json=[{"blueprint_id": 41, "category_id": 10}])
            return httpx.Response(200, json=[])

        if path == "fd/v1/blueprints/41/fields":
            return httpx.Response(200, json=self.flower_fields)

        return httpx.Response(404, json={"code": "rest_no_route"})


def make_service(upstream: FakeUpstream, clock=None) -> BlueprintFieldService:
    client = FloraApiClient(transport=httpx.MockTransport(upstream))
    if clock is None:
        return BlueprintFieldService(client=client, ttl_seconds=300)
    return BlueprintFieldService(client=client, ttl_seconds=300, clock=clock)


def test_validate_product_ids_dedups_and_coerces():
    assert validate_product_ids([3, "1", 3, 2], max_size=50) == [3, 1, 2]


@pytest.mark.parametrize("raw", [None, [], "1,2", [1, "abc"], [0], [True]])
def test_validate_product_ids_rejects_bad_input(raw):
    with pytest.raises(BatchValidationError) as exc_info:
        validate_product_ids(raw, max_size=50)
    assert str(exc_info.value) == "Invalid product IDs"


def test_validate_product_ids_enforces_maximum():
    with pytest.raises(BatchValidationError) as exc_info:
        validate_product_ids(list(range(1, 52)), max_size=50)
    assert str(exc_info.value) == "Batch size exceeds maximum of 50"


def test_resolve_fields_falls_back_to_default_then_empty():
    product = Product.model_validate(PRODUCTS[1])
    schema = BlueprintSchema(
        category_id=10,
        blueprint_id=41,
        fields=[BlueprintField.model_validate(f) for f in FLOWER_FIELDS]
        + [BlueprintField(field_name="terpenes", field_label="Terpenes")],
    )

    data = resolve_fields(product, schema)

    values = {f.field_name: f.field_value for f in data.fields}
    assert values == {"thc_percentage": "24.5", "strain_type": "hybrid", "terpenes": ""}


def test_resolve_fields_keeps_falsy_non_empty_values():
    product = Product(id=9, meta_data=[{"key": "potency", "value": 0}])
    schema = BlueprintSchema(category_id=1, fields=[BlueprintField(field_name="potency", default_value=5)])

    assert resolve_fields(product, schema).fields[0].field_value == 0


@pytest.mark.asyncio
async def test_batch_load_groups_by_category_and_preserves_order():
    upstream = FakeUpstream()
    service = make_service(upstream)

    result = await service.batch_load([3, 1, 4, 2])

    assert result.success is True
    assert result.failed == 0
    assert [p.product_id for p in result.products] == [3, 1, 4, 2]
    by_id = {p.product_id: p for p in result.products}
    assert {f.field_name: f.field_value for f in by_id[2].fields} == {"thc_percentage": "", "strain_type": "indica"}
    assert by_id[3].fields == []
    assert by_id[4].fields == []
    # One assignment lookup per distinct category, however many products share it.
    assert upstream.calls.count("fd/v1/blueprint-assignments") == 2
    assert upstream.calls.count("fd/v1/blueprints/41/fields") == 1


@pytest.mark.asyncio
async def test_batch_load_counts_missing_products_as_failed():
    service = make_service(FakeUpstream())

    result = await service.batch_load([1, 999])

    assert [p.product_id for p in result.products] == [1]
    assert result.failed == 1


@pytest.mark.asyncio
async def test_batch_load_omits_products_whose_schema_is_unreachable():
    service = make_service(FakeUpstream(fail_categories=(20,)))

    result = await service.batch_load([1, 3])

    assert [p.product_id for p in result.products] == [1]
    assert result.failed == 1


@pytest.mark.asyncio
async def test_batch_load_serves_repeat_requests_from_cache():
    upstream = FakeUpstream()
    service = make_service(upstream)

    await service.batch_load([1, 2])
    first_call_count = len(upstream.calls)
    result = await service.batch_load([2, 1])

    assert len(upstream.calls) == first_call_count
    assert [p.product_id for p in result.products] == [2, 1]
    assert service.cache_stats()["products"] == 2


@pytest.mark.asyncio
async def test_cache_entries_expire_after_ttl():
    now = [1000.0]
    upstream = FakeUpstream()
    service = make_service(upstream, clock=lambda: now[0])

    await service.batch_load([1])
    now[0] += 301
    await service.batch_load([1])

    assert upstream.calls.count("wc/v3/products/1") == 2
    assert upstream.calls.count("fd/v1/blueprint-assignments") == 2


@pytest.mark.asyncio
async def test_invalidate_products_forces_refetch():
    upstream = FakeUpstream()
    service = make_service(upstream)

    await service.batch_load([1])
    service.invalidate_products([1])
    await service.batch_load([1])

    assert upstream.calls.count("wc/v3/products/1") == 2
    # The category schema is still cached.
    assert upstream.calls.count("fd/v1/blueprint-assignments") == 1


@pytest.mark.asyncio
async def test_concurrent_schema_requests_share_one_fetch():
    upstream = FakeUpstream()
    service = make_service(upstream)

    schemas = await asyncio.gather(service.get_schema(10), service.get_schema(10), service.get_schema(10))

    assert all(s.blueprint_id == 41 for s in schemas)
    assert upstream.calls.count("fd/v1/blueprint-assignments") == 1
    assert service.cache_stats()["pending"] == 0


@pytest.mark.asyncio
async def test_clear_resets_caches_and_counters():
    service = make_service(FakeUpstream())
    await service.batch_load([1, 3])

    service.clear()

    assert service.cache_stats() == {"schemas": 0, "products": 0, "api_calls": 0, "pending": 0}


@pytest.mark.asyncio
async def test_invalidate_category_refreshes_products_resolved_under_it():
    upstream = FakeUpstream()
    service = make_service(upstream)

    await service.batch_load([1, 3])
    upstream.flower_fields.append({"field_name": "cbd_percentage", "field_label": "CBD %"})
    service.invalidate_category(10)

    assert service.cached_product(1) is None
    assert service.cached_product(3) is not None
    result = await service.batch_load([1])
    assert [f.field_name for f in result.products[0].fields] == ["thc_percentage", "strain_type", "cbd_percentage"]


@pytest.mark.asyncio
async def test_clear_during_schema_fetch_does_not_repopulate_cache():
    release = asyncio.Event()
    upstream = FakeUpstream()

    async def slow_upstream(request: httpx.Request) -> httpx.Response:
        await release.wait()
        return upstream(request)

    service = BlueprintFieldService(client=FloraApiClient(transport=httpx.MockTransport(slow_upstream)), ttl_seconds=300)
    task = asyncio.ensure_future(service.get_schema(10))
    await asyncio.sleep(0)
    assert service.cache_stats()["pending"] == 1

    service.clear()
    assert service.cache_stats()["pending"] == 0
    release.set()
    schema = await task

    assert schema.blueprint_id == 41
    assert service.cache_stats()["schemas"] == 0
    assert service.cache_stats()["pending"] == 0


def test_product_field_data_serializes_product_id_in_camel_case():
    data = ProductFieldData(product_id=7)

    assert data.model_dump() == {"productId": 7, "fields": []}
    assert ProductFieldData.model_validate({"productId": 7}).product_id == 7
