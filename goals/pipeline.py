# customer goals engine - fetch tiers → merge → derive → classify → rank → aggregate
# combines static (long cache) + periodic (medium cache) + live (short cache) data

import asyncio
import inspect
import time
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Optional

from goals.aggregator import aggregate
from goals.cache import TTLCache
from goals.config import Settings, settings as default_settings
from goals.derived import DEFAULT_SUB_PERIOD_DIVISOR, derive, derive_annual
from goals.logger import get_logger
from goals.merger import merge
from goals.ranking import ANNUAL_ORDERINGS, DEFAULT_ORDERING, check_ordering, classify_record, rank
from goals.scope import GoalsScope, check_id, check_month, check_year
from goals.tiers import LIVE, PERIODIC, STATIC, TierFetcher

logger = get_logger("pipeline")


@dataclass(frozen=True)
class GoalsPolicy:
    """business constants that used to be literals in the queries"""
    # monthly goal = annual goal / sub_period_divisor (fixed, not calendar based)
    sub_period_divisor: int = DEFAULT_SUB_PERIOD_DIVISOR
    # warning band starts at this fraction of the goal
    warn_fraction: float = 0.8


class CustomerGoalsEngine:
    """
    per-seller customer goals view

    each tier decides on its own whether to hit the cache or recompute;
    everything after the fetch works on request-local copies
    """

    def __init__(
        self,
        static: TierFetcher,
        periodic: TierFetcher,
        live: TierFetcher,
        policy: GoalsPolicy = None,
        source=None
    ):
        self.static = static
        self.periodic = periodic
        self.live = live
        self.policy = policy or GoalsPolicy()
        # direct reads for the single-customer and ranking views
        self.source = source

    @property
    def tiers(self):
        return (self.static, self.periodic, self.live)

    async def get_by_seller(
        self,
        scope: GoalsScope,
        order_by: str = DEFAULT_ORDERING,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> Dict[str, Any]:
        """
        build the goals payload for one scope

        args:
            scope: validated seller/year/month/classification
            order_by: ranking comparator name
            limit: max customers in 'entities' (None = all); totals always cover everyone
            offset: customers to skip in rank order

        returns:
            dict with entities, summary, ranking, tier_summaries and cache diagnostics
        """
        # bad input fails here, before any cache access
        scope.validate()
        check_ordering(order_by)
        if offset < 0 or (limit is not None and limit < 0):
            raise ValueError("limit and offset must not be negative")

        start_time = time.perf_counter()

        static, periodic, live = await asyncio.gather(
            self.static.fetch_safe(scope),
            self.periodic.fetch_safe(scope),
            self.live.fetch_safe(scope),
        )

        merged = merge(static.fragment, periodic.fragment, live.fragment)
        records = [
            classify_record(
                derive(record, self.policy.sub_period_divisor),
                self.policy.warn_fraction
            )
            for record in merged
        ]
        ranking = rank(records, order_by)
        totals = aggregate(records)

        end = None if limit is None else offset + limit
        page = ranking.records[offset:end]

        failed_tiers = [outcome.name for outcome in (static, periodic, live) if outcome.failed]
        query_time_ms = int((time.perf_counter() - start_time) * 1000)

        logger.info(
            f"goals seller={scope.seller_id} year={scope.year} month={scope.month} "
            f"class={scope.classification or 'all'}: {len(records)} customers in {query_time_ms}ms "
            f"(hits static={static.cache_hit} periodic={periodic.cache_hit} live={live.cache_hit}"
            f"{', failed=' + ','.join(failed_tiers) if failed_tiers else ''})"
        )

        return {
            'seller_id': scope.seller_id,
            'year': scope.year,
            'month': scope.month,
            'classification': scope.classification,
            'entities': page,
            'summary': totals,
            'ranking': {
                'order_by': ranking.order_by,
                'ranks': ranking.ranks(),
            },
            'tier_summaries': {
                outcome.name: dict(outcome.fragment.summary)
                for outcome in (static, periodic, live)
            },
            'cache': {
                'static_hit': static.cache_hit,
                'periodic_hit': periodic.cache_hit,
                'live_hit': live.cache_hit,
                'query_time_ms': query_time_ms,
                'failed_tiers': failed_tiers,
                'errors': {
                    outcome.name: outcome.error
                    for outcome in (static, periodic, live) if outcome.failed
                },
                'degraded': bool(failed_tiers),
            },
        }

    async def get_by_customer(
        self,
        customer_id: int,
        year: int = None,
        month: int = None,
        today: date = None
    ) -> Optional[Dict[str, Any]]:
        """
        one customer's goal, read straight from the source (one row, not worth caching)

        args:
            customer_id: customer to look up
            year: goal year (default: current year)
            month: month for the monthly figures (default: current month)
            today: reference date (default: date.today())

        returns:
            merged record with derived fields and status, None if there is no goal that year
        """
        today = today or date.today()
        check_id('customer_id', customer_id)
        year = check_year(today.year if year is None else year)
        month = check_month(today.month if month is None else month)

        record = await self._read('customer_goal', customer_id, year, month)
        if record is None:
            logger.info(f"no goal for customer {customer_id} in {year}")
            return None
        return classify_record(
            derive(record, self.policy.sub_period_divisor),
            self.policy.warn_fraction
        )

    async def get_ranking(
        self,
        year: int = None,
        seller_id: Optional[int] = None,
        limit: int = 50,
        order_by: str = 'achievement',
        today: date = None
    ) -> Dict[str, Any]:
        """
        year-level ranking of customer goals, across sellers unless one is given

        args:
            year: goal year (default: current year)
            seller_id: only this seller's customers (None = everyone)
            limit: how many ranked customers to return
            order_by: achievement | gap | goal | target

        returns:
            dict with year, seller_id, order_by, total and the top 'ranking' records
        """
        today = today or date.today()
        year = check_year(today.year if year is None else year)
        if seller_id is not None:
            check_id('seller_id', seller_id)
        check_ordering(order_by, ANNUAL_ORDERINGS)
        if limit < 1:
            raise ValueError("limit must be at least 1")

        rows = await self._read('goal_rows', year, seller_id)
        ranking = rank([derive_annual(row) for row in rows], order_by)

        return {
            'year': year,
            'seller_id': seller_id,
            'order_by': ranking.order_by,
            'total': len(ranking.records),
            'ranking': ranking.records[:limit],
        }

    async def _read(self, method: str, *args):
        if self.source is None:
            raise RuntimeError(f"engine has no source to call {method}()")
        result = getattr(self.source, method)(*args)
        if inspect.isawaitable(result):
            result = await result
        return result


    def invalidate_seller(self, seller_id: int) -> int:
        """drop all cached tiers for a seller (e.g. after a new sale), returns keys removed"""
        removed = sum(tier.invalidate(seller_id) for tier in self.tiers)
        logger.info(f"cache invalidated: customer goals for seller {seller_id} ({removed} keys)")
        return removed


def build_engine(source, config: Settings = None, cache: TTLCache = None) -> CustomerGoalsEngine:
    """
    wire the three tiers to a fragment source

    args:
        source: object with static_fragment / periodic_fragment / live_fragment(scope),
            plus customer_goal / goal_rows for the uncached views
        config: settings (ttls, policy constants), default: global settings
        cache: cache instance shared by the tiers (default: a new one)

    returns:
        CustomerGoalsEngine
    """
    config = config or default_settings
    if cache is None:
        cache = TTLCache(max_entries=config.cache_max_entries)

    return CustomerGoalsEngine(
        static=TierFetcher(STATIC, cache, source.static_fragment, config.static_ttl),
        periodic=TierFetcher(PERIODIC, cache, source.periodic_fragment, config.periodic_ttl),
        live=TierFetcher(LIVE, cache, source.live_fragment, config.live_ttl),
        policy=GoalsPolicy(
            sub_period_divisor=config.sub_period_divisor,
            warn_fraction=config.warn_threshold_fraction,
        ),
        source=source,
    )
