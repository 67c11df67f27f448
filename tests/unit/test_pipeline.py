# unit tests for the end-to-end goals pipeline with in-memory tier sources

import asyncio
from datetime import date

import pytest

from goals.cache import TTLCache
from goals.config import Settings
from goals.pipeline import CustomerGoalsEngine, build_engine
from goals.ranking import UnknownOrderingError
from goals.scope import GoalsScope, InvalidScopeError
from goals.tiers import TierFragment

SCOPE = GoalsScope(seller_id=7, year=2026, month=3)


class InMemorySource:
    """fragment source backed by dicts, counts every computation"""

    def __init__(self, live_entities=None):
        self.calls = {"static": 0, "periodic": 0, "live": 0}
        self.reads = []
        self.failing = set()
        self.live_entities = {"B": {"sub_actual": 5}} if live_entities is None else live_entities

    def _check(self, tier):
        self.calls[tier] += 1
        if tier in self.failing:
            raise TimeoutError(f"{tier} query timed out")

    async def static_fragment(self, scope):
        self._check("static")
        return TierFragment(
            entities={
                "A": {"name": "Alpha", "classification": "A", "target": 110},
                "B": {"name": "Beta", "classification": "B", "target": 220},
                "C": {"name": "Gamma", "classification": "C", "target": 55},
            },
            summary={"total_customers": 3},
        )

    async def periodic_fragment(self, scope):
        self._check("periodic")
        return TierFragment(entities={"A": {"actual": 40}, "C": {"actual": 55}})

    async def live_fragment(self, scope):
        self._check("live")
        return TierFragment(entities=dict(self.live_entities))

    async def customer_goal(self, customer_id, year, month):
        self.reads.append(("customer", customer_id, year, month))
        if customer_id != 11:
            return None
        return {
            "entity_id": 11, "name": "Alpha", "seller_id": 7, "classification": "A",
            "target": 110, "actual": 40, "sub_actual": 9,
        }

    async def goal_rows(self, year, seller_id=None):
        self.reads.append(("ranking", year, seller_id))
        rows = [
            {"entity_id": 11, "seller_id": 7, "target": 110, "actual": 40},
            {"entity_id": 12, "seller_id": 7, "target": 220, "actual": 0},
            {"entity_id": 13, "seller_id": 8, "target": 55, "actual": 55},
        ]
        return [row for row in rows if seller_id is None or row["seller_id"] == seller_id]


@pytest.fixture
def source():
    return InMemorySource()


@pytest.fixture
def engine(source, clock):
    return build_engine(source, Settings(), TTLCache(clock=clock))


async def test_payload_shape_and_values(engine):
    payload = await engine.get_by_seller(SCOPE)

    assert payload["seller_id"] == 7
    assert payload["month"] == 3
    entities = {e["entity_id"]: e for e in payload["entities"]}
    assert entities["A"]["gap"] == 70
    assert entities["B"]["gap"] == 220
    assert entities["C"]["gap"] == 0
    assert entities["B"]["status"] == "CRITICAL"  # 5 of 20 this month
    assert payload["summary"]["entity_count"] == 3
    assert payload["summary"]["active_count"] == 1
    assert payload["ranking"]["order_by"] == "attention"
    assert [r["entity_id"] for r in payload["ranking"]["ranks"]] == ["A", "C", "B"]
    assert payload["tier_summaries"]["static"] == {"total_customers": 3}
    assert payload["cache"]["degraded"] is False


async def test_each_tier_expires_on_its_own(engine, source, clock):
    first = await engine.get_by_seller(SCOPE)
    assert (first["cache"]["static_hit"], first["cache"]["periodic_hit"], first["cache"]["live_hit"]) == (False, False, False)

    second = await engine.get_by_seller(SCOPE)
    assert (second["cache"]["static_hit"], second["cache"]["periodic_hit"], second["cache"]["live_hit"]) == (True, True, True)

    # past the live ttl (60s) only
    clock.advance(61)
    third = await engine.get_by_seller(SCOPE)
    assert (third["cache"]["static_hit"], third["cache"]["periodic_hit"], third["cache"]["live_hit"]) == (True, True, False)

    # past the periodic ttl (600s)
    clock.advance(600)
    fourth = await engine.get_by_seller(SCOPE)
    assert (fourth["cache"]["static_hit"], fourth["cache"]["periodic_hit"], fourth["cache"]["live_hit"]) == (True, False, False)

    assert source.calls == {"static": 1, "periodic": 2, "live": 3}


async def test_live_sale_shows_up_after_live_ttl(engine, source, clock):
    await engine.get_by_seller(SCOPE)

    source.live_entities = {"A": {"sub_actual": 10}, "B": {"sub_actual": 5}}
    stale = await engine.get_by_seller(SCOPE)
    assert {e["entity_id"]: e["sub_actual"] for e in stale["entities"]}["A"] == 0

    clock.advance(60)
    fresh = await engine.get_by_seller(SCOPE)
    assert {e["entity_id"]: e["sub_actual"] for e in fresh["entities"]}["A"] == 10
    assert [r["entity_id"] for r in fresh["ranking"]["ranks"]] == ["C", "B", "A"]


async def test_concurrent_requests_share_computations(engine, source):
    payloads = await asyncio.gather(*[engine.get_by_seller(SCOPE) for _ in range(8)])

    assert source.calls == {"static": 1, "periodic": 1, "live": 1}
    assert all(p["summary"] == payloads[0]["summary"] for p in payloads)


async def test_failed_tier_degrades_instead_of_failing(engine, source):
    source.failing.add("periodic")

    payload = await engine.get_by_seller(SCOPE)

    assert payload["cache"]["degraded"] is True
    assert payload["cache"]["failed_tiers"] == ["periodic"]
    assert "TimeoutError" in payload["cache"]["errors"]["periodic"]
    assert len(payload["entities"]) == 3
    assert all(e["actual"] == 0 for e in payload["entities"])

    # recovers on the next request, the failure was not cached
    source.failing.clear()
    payload = await engine.get_by_seller(SCOPE)
    assert payload["cache"]["degraded"] is False
    assert payload["cache"]["periodic_hit"] is False
    assert payload["cache"]["static_hit"] is True


async def test_failed_static_tier_gives_empty_view(engine, source):
    source.failing.add("static")

    payload = await engine.get_by_seller(SCOPE)

    assert payload["entities"] == []
    assert payload["summary"]["entity_count"] == 0
    assert payload["cache"]["failed_tiers"] == ["static"]


async def test_pagination_applies_after_ranking(engine):
    payload = await engine.get_by_seller(SCOPE, limit=1, offset=1)

    assert [e["entity_id"] for e in payload["entities"]] == ["C"]
    assert payload["entities"][0]["rank"] == 2
    assert payload["summary"]["entity_count"] == 3
    assert len(payload["ranking"]["ranks"]) == 3


async def test_mutating_payload_does_not_touch_cache(engine):
    first = await engine.get_by_seller(SCOPE)
    for entity in first["entities"]:
        entity["target"] = 0
        entity["name"] = "changed"

    second = await engine.get_by_seller(SCOPE)

    assert {e["entity_id"]: e["target"] for e in second["entities"]} == {"A": 110, "B": 220, "C": 55}
    assert second["cache"]["static_hit"] is True


async def test_bad_input_rejected_before_cache(engine, source):
    with pytest.raises(InvalidScopeError):
        await engine.get_by_seller(GoalsScope(7, 2026, 0))
    with pytest.raises(UnknownOrderingError):
        await engine.get_by_seller(SCOPE, order_by="nope")

    assert source.calls == {"static": 0, "periodic": 0, "live": 0}


async def test_invalidate_seller_forces_recompute(engine, source):
    await engine.get_by_seller(SCOPE)

    assert engine.invalidate_seller(7) == 3
    payload = await engine.get_by_seller(SCOPE)

    assert payload["cache"]["static_hit"] is False
    assert source.calls == {"static": 2, "periodic": 2, "live": 2}


async def test_policy_comes_from_settings(source, clock):
    engine = build_engine(source, Settings(sub_period_divisor=10, warn_threshold_fraction=0.2), TTLCache(clock=clock))

    payload = await engine.get_by_seller(SCOPE)
    entities = {e["entity_id"]: e for e in payload["entities"]}

    assert entities["B"]["sub_target"] == 22
    assert entities["B"]["status"] == "WARNING"  # 5 >= 0.2 * 22


async def test_invalidate_during_fetch_serves_fresh_data_next(engine, source):
    started = asyncio.Event()
    release = asyncio.Event()
    plain_live = source.live_fragment

    async def slow_live(scope):
        fragment = await plain_live(scope)
        started.set()
        await release.wait()
        return fragment

    engine.live.compute_fn = slow_live
    in_flight = asyncio.ensure_future(engine.get_by_seller(SCOPE))
    await started.wait()

    # a sale for B lands while the live query is still running
    engine.invalidate_seller(7)
    source.live_entities = {"B": {"sub_actual": 20}}
    release.set()
    stale = await in_flight
    assert {e["entity_id"]: e["sub_actual"] for e in stale["entities"]}["B"] == 5

    payload = await engine.get_by_seller(SCOPE)
    entities = {e["entity_id"]: e for e in payload["entities"]}

    assert payload["cache"]["live_hit"] is False
    assert entities["B"]["sub_actual"] == 20
    assert entities["B"]["status"] == "ON_TARGET"


async def test_get_by_customer_derives_and_classifies(engine, source):
    goal = await engine.get_by_customer(11, year=2026, month=3)

    assert goal["entity_id"] == 11
    assert goal["gap"] == 70
    assert goal["achievement_pct"] == 36
    assert goal["sub_target"] == 10
    assert goal["status"] == "WARNING"  # 9 of 10 this month
    assert source.reads == [("customer", 11, 2026, 3)]


async def test_get_by_customer_reads_directly_every_time(engine, source):
    await engine.get_by_customer(11, year=2026, month=3)
    await engine.get_by_customer(11, year=2026, month=3)

    assert len(source.reads) == 2
    assert source.calls == {"static": 0, "periodic": 0, "live": 0}


async def test_get_by_customer_defaults_and_missing(engine, source):
    assert await engine.get_by_customer(99, today=date(2026, 5, 20)) is None
    assert source.reads == [("customer", 99, 2026, 5)]


@pytest.mark.parametrize("args", [
    {"customer_id": 0, "year": 2026, "month": 3},
    {"customer_id": 11, "year": 1990, "month": 3},
    {"customer_id": 11, "year": 2026, "month": 13},
])
async def test_get_by_customer_rejects_bad_input(engine, source, args):
    with pytest.raises(InvalidScopeError):
        await engine.get_by_customer(**args)
    assert source.reads == []


async def test_get_ranking_by_achievement(engine, source):
    result = await engine.get_ranking(year=2026)

    assert result["order_by"] == "achievement"
    assert result["total"] == 3
    assert [r["entity_id"] for r in result["ranking"]] == [13, 11, 12]
    assert [r["rank"] for r in result["ranking"]] == [1, 2, 3]
    assert result["ranking"][1]["gap"] == 70
    assert source.reads == [("ranking", 2026, None)]


async def test_get_ranking_seller_filter_order_and_limit(engine, source):
    result = await engine.get_ranking(year=2026, seller_id=7, order_by="gap", limit=1)

    assert result["seller_id"] == 7
    assert result["total"] == 2
    assert [r["entity_id"] for r in result["ranking"]] == [12]


async def test_get_ranking_rejects_bad_input(engine, source):
    # attention needs monthly activity, which the ranking rows don't carry
    with pytest.raises(UnknownOrderingError):
        await engine.get_ranking(year=2026, order_by="attention")
    with pytest.raises(InvalidScopeError):
        await engine.get_ranking(year=1990)
    with pytest.raises(ValueError):
        await engine.get_ranking(year=2026, limit=0)
    assert source.reads == []


async def test_direct_reads_need_a_source(engine):
    bare = CustomerGoalsEngine(engine.static, engine.periodic, engine.live)

    with pytest.raises(RuntimeError):
        await bare.get_ranking(year=2026)
