import asyncio
from typing import List

import pytest

from flora_portal.config import settings
from flora_portal.models.blueprint import BatchLoadResponse, Product
from flora_portal.services.blueprint_preloader import BlueprintPreloader, preload_key


class RecordingService:
    def __init__(self, fail: bool = False):
        self.batches: List[List[int]] = []
        self.fail = fail

    async def batch_load(self, product_ids):
        self.batches.append(list(product_ids))
        if self.fail:
            raise RuntimeError("upstream down")
        return BatchLoadResponse(products=[], failed=0)


def _product(product_id: int, category_id=None) -> Product:
    categories = [{"id": category_id}] if category_id is not None else []
    return Product(id=product_id, categories=categories)


def test_preload_key_sorts_ids_numerically():
    products = [_product(10), _product(9), _product(100)]
    assert preload_key(products) == "9,10,100"


@pytest.mark.asyncio
async def test_schedule_groups_products_by_category():
    service = RecordingService()
    preloader = BlueprintPreloader(service=service, debounce_seconds=0)

    key = preloader.schedule([_product(1, 10), _product(2, 20), _product(3, 10), _product(4)])
    await preloader.flush()

    assert key == "1,2,3,4"
    assert sorted(service.batches) == [[1, 3], [2]]
    assert preloader.last_loaded_key == key


@pytest.mark.asyncio
async def test_schedule_is_skipped_when_collapsed_or_empty():
    service = RecordingService()
    preloader = BlueprintPreloader(service=service, debounce_seconds=0)

    assert preloader.schedule([_product(1, 10)], expanded=False) is None
    assert preloader.schedule([]) is None
    await preloader.flush()

    assert service.batches == []


@pytest.mark.asyncio
async def test_same_product_set_is_not_loaded_twice():
    service = RecordingService()
    preloader = BlueprintPreloader(service=service, debounce_seconds=0)

    preloader.schedule([_product(1, 10), _product(2, 10)])
    await preloader.flush()
    assert preloader.schedule([_product(2, 10), _product(1, 10)]) is None

    assert service.batches == [[1, 2]]


@pytest.mark.asyncio
async def test_rapid_reschedules_only_fire_the_last_one():
    service = RecordingService()
    preloader = BlueprintPreloader(service=service, debounce_seconds=0.05)

    preloader.schedule([_product(1, 10)])
    preloader.schedule([_product(1, 10), _product(2, 10)])
    preloader.schedule([_product(5, 30)])
    await preloader.flush()

    assert service.batches == [[5]]
    assert preloader.last_loaded_key == "5"


@pytest.mark.asyncio
async def test_large_categories_are_split_into_max_size_chunks(monkeypatch):
    monkeypatch.setattr(settings, "BLUEPRINT_BATCH_MAX_SIZE", 2)
    service = RecordingService()
    preloader = BlueprintPreloader(service=service, debounce_seconds=0)

    preloader.schedule([_product(i, 10) for i in range(1, 6)])
    await preloader.flush()

    assert sorted(service.batches) == [[1, 2], [3, 4], [5]]


@pytest.mark.asyncio
async def test_failed_batches_are_logged_not_raised():
    service = RecordingService(fail=True)
    preloader = BlueprintPreloader(service=service, debounce_seconds=0)

    preloader.schedule([_product(1, 10)])
    await preloader.flush()

    assert service.batches == [[1]]
    assert preloader.last_loaded_key == "1"


@pytest.mark.asyncio
async def test_reset_cancels_pending_timer():
    service = RecordingService()
    preloader = BlueprintPreloader(service=service, debounce_seconds=10)

    preloader.schedule([_product(1, 10)])
    preloader.reset()
    await asyncio.sleep(0)

    assert service.batches == []
    assert preloader.last_loaded_key is None


class BlockingService(RecordingService):
    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.completed: List[List[int]] = []

    async def batch_load(self, product_ids):
        self.batches.append(list(product_ids))
        self.started.set()
        await self.release.wait()
        self.completed.append(list(product_ids))
        return BatchLoadResponse(products=[], failed=0)


@pytest.mark.asyncio
async def test_reschedule_does_not_abort_a_load_in_progress():
    service = BlockingService()
    preloader = BlueprintPreloader(service=service, debounce_seconds=0)

    preloader.schedule([_product(1, 10)])
    await service.started.wait()
    preloader.schedule([_product(2, 20)])
    service.release.set()
    await preloader.flush()
    for _ in range(3):
        await asyncio.sleep(0)

    assert sorted(service.completed) == [[1], [2]]
    assert preloader.last_loaded_key in {"1", "2"}
