"""Suggestion aggregation: cache, threshold, merge order and supersession."""

import asyncio

import pytest

from fakes import FakeCatalog, FakeClock, FakeExternal
from productcheck.aggregator import Aggregator
from productcheck.cache import SuggestionCache
from productcheck.coordinator import RequestCoordinator
from productcheck.errors import QueryValidationError, RequestSuperseded
from productcheck.models import SearchFilters

MILO_NAMES = ["Milo Original", "Milo Energy", "Milo Cereal", "Milo Chocolate"]


def make_aggregator(catalog, externals=(), *, cache=None, coordinator=None):
    coordinator = coordinator if coordinator is not None else RequestCoordinator()
    cache = cache if cache is not None else SuggestionCache(clock=FakeClock())
    return Aggregator(catalog, list(externals), cache, coordinator), cache, coordinator


@pytest.mark.asyncio
async def test_enough_internal_matches_skip_external_sources():
    off = FakeExternal("openfoodfacts", ["Milo Drink"])
    aggregator, _, coordinator = make_aggregator(FakeCatalog(MILO_NAMES), [off])

    state = await aggregator.suggest("milo", coordinator.begin_request("milo"))

    assert state.suggestions == MILO_NAMES
    assert state.external_products == []
    assert off.search_calls == []


@pytest.mark.asyncio
async def test_few_internal_matches_append_external_in_source_order():
    off = FakeExternal("openfoodfacts", ["Indomie Chicken", "Indomie Onion"])
    fda = FakeExternal("fda", ["Indomethacin"])
    aggregator, _, coordinator = make_aggregator(FakeCatalog(["Indomie Noodles"]), [off, fda])

    state = await aggregator.suggest("indo", coordinator.begin_request("indo"))

    assert state.suggestions == ["Indomie Noodles"]
    assert [item.name for item in state.external_products] == ["Indomie Chicken", "Indomie Onion", "Indomethacin"]
    assert [item.source for item in state.external_products] == ["openfoodfacts", "openfoodfacts", "fda"]
    assert state.item_at(0) == "Indomie Noodles"
    assert state.item_at(1).name == "Indomie Chicken"
    assert state.item_at(3).source == "fda"
    assert not state.is_loading


@pytest.mark.asyncio
async def test_internal_results_are_published_before_external_arrive():
    off = FakeExternal("openfoodfacts", ["Peak Milk Powder"], delay=0.02)
    aggregator, _, coordinator = make_aggregator(FakeCatalog(["Peak Milk"]), [off])
    published = []
    coordinator.subscribe(published.append)

    await aggregator.suggest("peak", coordinator.begin_request("peak"))

    assert len(published) == 2
    assert published[0].is_loading
    assert published[0].suggestions == ["Peak Milk"]
    assert published[0].external_products == []
    assert not published[1].is_loading
    assert [item.name for item in published[1].external_products] == ["Peak Milk Powder"]


@pytest.mark.asyncio
async def test_repeat_query_is_served_from_cache():
    catalog = FakeCatalog(MILO_NAMES)
    aggregator, cache, coordinator = make_aggregator(catalog)

    first = await aggregator.suggest("Milo ", coordinator.begin_request("Milo "))
    second = await aggregator.suggest("milo", coordinator.begin_request("milo"))

    assert len(catalog.search_calls) == 1
    assert second.suggestions == first.suggestions
    assert "milo" in cache


@pytest.mark.asyncio
async def test_expired_entry_is_fetched_again():
    clock = FakeClock()
    catalog = FakeCatalog(MILO_NAMES)
    aggregator, _, coordinator = make_aggregator(catalog, cache=SuggestionCache(ttl_seconds=300, clock=clock))

    await aggregator.suggest("milo", coordinator.begin_request("milo"))
    clock.advance(300)
    await aggregator.suggest("milo", coordinator.begin_request("milo"))

    assert len(catalog.search_calls) == 2


@pytest.mark.asyncio
async def test_late_result_of_superseded_request_is_neither_published_nor_cached():
    catalog = FakeCatalog(MILO_NAMES + ["Milk Powder"], delays={"mil": 0.05})
    aggregator, cache, coordinator = make_aggregator(catalog)

    old = coordinator.begin_request("mil")
    slow = asyncio.create_task(aggregator.suggest("mil", old))
    await asyncio.sleep(0.01)

    new = coordinator.begin_request("milo")
    state = await aggregator.suggest("milo", new)

    with pytest.raises(RequestSuperseded):
        await slow
    assert state.query == "milo"
    assert coordinator.latest.query == "milo"
    assert "mil" not in cache
    assert "milo" in cache


@pytest.mark.asyncio
async def test_concurrent_identical_queries_share_one_fetch():
    catalog = FakeCatalog(MILO_NAMES, delays={"milo": 0.02})
    aggregator, _, first_client = make_aggregator(catalog)
    second_client = RequestCoordinator()

    first, second = await asyncio.gather(
        aggregator.suggest("milo", first_client.begin_request("milo"), coordinator=first_client),
        aggregator.suggest("milo", second_client.begin_request("milo"), coordinator=second_client),
    )

    assert len(catalog.search_calls) == 1
    assert first.suggestions == second.suggestions == MILO_NAMES
    assert second_client.latest.suggestions == MILO_NAMES


@pytest.mark.asyncio
async def test_shared_fetch_survives_one_waiter_going_stale():
    catalog = FakeCatalog(MILO_NAMES, delays={"milo": 0.02})
    aggregator, cache, first_client = make_aggregator(catalog)
    second_client = RequestCoordinator()

    stale = asyncio.create_task(aggregator.suggest("milo", first_client.begin_request("milo"), coordinator=first_client))
    kept = asyncio.create_task(aggregator.suggest("milo", second_client.begin_request("milo"), coordinator=second_client))
    await asyncio.sleep(0)
    first_client.begin_request("milo drink")

    state = await kept
    with pytest.raises(RequestSuperseded):
        await stale
    assert state.suggestions == MILO_NAMES
    assert "milo" in cache


@pytest.mark.asyncio
async def test_abandoned_fetch_is_forgotten_and_not_rejoined():
    catalog = FakeCatalog(MILO_NAMES, delays={"milo": 0.05})
    aggregator, cache, coordinator = make_aggregator(catalog)

    pending = asyncio.create_task(aggregator.suggest("milo", coordinator.begin_request("milo")))
    await asyncio.sleep(0.01)
    flight = aggregator._inflight["milo"]
    pending.cancel()
    with pytest.raises(asyncio.CancelledError):
        await pending

    assert flight.cancelled
    assert "milo" not in aggregator._inflight

    state = await aggregator.suggest("Milo", coordinator.begin_request("Milo"))

    assert state.suggestions == MILO_NAMES
    assert [query for query, _ in catalog.search_calls] == ["milo", "Milo"]
    assert "milo" in cache


@pytest.mark.asyncio
async def test_internal_failure_is_not_cached():
    catalog = FakeCatalog(MILO_NAMES, error=RuntimeError("catalog down"))
    off = FakeExternal("openfoodfacts", ["Milo Drink"])
    aggregator, cache, coordinator = make_aggregator(catalog, [off])

    state = await aggregator.suggest("milo", coordinator.begin_request("milo"))

    assert state.suggestions == []
    assert [item.name for item in state.external_products] == ["Milo Drink"]
    assert "milo" not in cache


@pytest.mark.asyncio
async def test_slow_external_source_degrades_to_internal_only():
    slow = FakeExternal("openfoodfacts", ["Peak Milk Powder"], delay=0.5, timeout_budget_ms=20)
    aggregator, _, coordinator = make_aggregator(FakeCatalog(["Peak Milk"]), [slow])

    state = await aggregator.suggest("peak", coordinator.begin_request("peak"))

    assert state.suggestions == ["Peak Milk"]
    assert state.external_products == []


@pytest.mark.asyncio
async def test_filters_change_cache_key_and_narrow_external_results():
    off = FakeExternal("openfoodfacts", ["Oat Bar", "Oat Cookie"], nutri_scores=["A", "D"])
    fda = FakeExternal("fda", ["Oatmeal Lotion"], categories=["medication"])
    catalog = FakeCatalog(["Oat Milk"])
    aggregator, cache, coordinator = make_aggregator(catalog, [off, fda])
    filters = SearchFilters(category="Food", nutri_score=["a", "b"])

    state = await aggregator.suggest("oat", coordinator.begin_request("oat"), filters)

    assert [item.name for item in state.external_products] == ["Oat Bar"]
    assert fda.search_calls == []
    assert catalog.search_calls == [("oat", filters)]
    assert "oat|category=food;nutri=A,B" in cache
    assert "oat" not in cache


def test_cache_key_is_order_independent_for_grades():
    assert Aggregator.cache_key("Oat", SearchFilters(nutri_score=["B", "a"])) == Aggregator.cache_key(
        " oat ", SearchFilters(nutri_score=["A", "b"])
    )
    assert Aggregator.cache_key("oat", SearchFilters()) == "oat"


@pytest.mark.asyncio
async def test_short_query_is_rejected():
    aggregator, _, coordinator = make_aggregator(FakeCatalog(MILO_NAMES))

    with pytest.raises(QueryValidationError):
        await aggregator.suggest("m", coordinator.begin_request("m"))
