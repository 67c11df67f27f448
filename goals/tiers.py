# tiered fetchers - one cached fragment per staleness class
#   static   (30 min): customers, goals, classification - barely changes
#   periodic (10 min): year-to-date sales, last purchase - changes daily
#   live     (1 min):  current month sales - changes every transaction
# splitting by volatility lets the expensive yearly aggregate stay cached
# while the cheap monthly one refreshes often

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Tuple, Union

from goals.cache import TTLCache
from goals.logger import get_logger
from goals.scope import GoalsScope, scope_key, seller_key_prefix

logger = get_logger("tiers")

STATIC = "static"
PERIODIC = "periodic"
LIVE = "live"
TIER_NAMES = (STATIC, PERIODIC, LIVE)

# which scope fields partition each tier (month only matters for live data)
TIER_KEY_FIELDS = {
    STATIC: ('seller_id', 'year', 'classification'),
    PERIODIC: ('seller_id', 'year', 'classification'),
    LIVE: ('seller_id', 'year', 'month', 'classification'),
}


@dataclass
class TierFragment:
    """
    raw output of one tier's compute callback

    entities: entity_id -> tier-specific sub-record
    summary: tier-level fields that aren't per entity (counts, totals)
    """
    entities: Dict[Any, Dict[str, Any]] = field(default_factory=dict)
    summary: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> "TierFragment":
        return cls()


ComputeFragment = Callable[[GoalsScope], Union[TierFragment, Awaitable[TierFragment]]]


@dataclass
class TierOutcome:
    """result of fetching one tier, including failure diagnostics"""
    name: str
    fragment: TierFragment
    cache_hit: bool = False
    failed: bool = False
    error: Optional[str] = None


class TierFetcher:
    """
    a named staleness class: cache + compute callback + ttl

    the compute callback comes from the persistence layer and must be safe to
    run repeatedly (or once per key while others wait on it)
    """

    def __init__(
        self,
        name: str,
        cache: TTLCache,
        compute_fn: ComputeFragment,
        ttl_seconds: int,
        key_fields: Sequence[str] = None
    ):
        """
        args:
            name: tier name, also the cache key partition
            cache: shared cache instance (keys are prefixed with the tier name)
            compute_fn: scope -> TierFragment, sync or async
            ttl_seconds: how long a computed fragment stays valid, must be > 0
            key_fields: scope fields in the key (default: TIER_KEY_FIELDS[name])
        """
        if isinstance(ttl_seconds, bool) or not isinstance(ttl_seconds, int) or ttl_seconds <= 0:
            raise ValueError(f"tier {name!r}: ttl_seconds must be a positive integer, got {ttl_seconds!r}")
        if key_fields is None:
            key_fields = TIER_KEY_FIELDS[name]

        self.name = name
        self.cache = cache
        self.compute_fn = compute_fn
        self.ttl_seconds = ttl_seconds
        self.key_fields = tuple(key_fields)

    def key_for(self, scope: GoalsScope) -> str:
        return scope_key(self.name, scope, self.key_fields)

    async def fetch(self, scope: GoalsScope) -> Tuple[TierFragment, bool]:
        """
        get this tier's fragment for a scope, from cache or freshly computed

        returns:
            (fragment, cache_hit)
        """
        key = self.key_for(scope)
        return await self.cache.get_or_set_with_hit(
            key,
            lambda: self.compute_fn(scope),
            self.ttl_seconds
        )

    async def fetch_safe(self, scope: GoalsScope) -> TierOutcome:
        """
        fetch, degrading a failed computation to an empty fragment

        a broken or slow data source only blanks this tier's fields instead of
        failing the whole view. the failure is reported in the outcome, never cached.
        """
        # key errors are input errors, not tier failures
        self.key_for(scope)
        try:
            fragment, hit = await self.fetch(scope)
        except Exception as e:
            logger.warning(f"tier {self.name} failed for seller={scope.seller_id} year={scope.year}: {e}")
            return TierOutcome(
                name=self.name,
                fragment=TierFragment.empty(),
                failed=True,
                error=f"{type(e).__name__}: {e}",
            )
        return TierOutcome(name=self.name, fragment=fragment, cache_hit=hit)

    def invalidate(self, seller_id: int) -> int:
        """drop every cached fragment of this tier for a seller"""
        return self.cache.invalidate_prefix(seller_key_prefix(self.name, seller_id))
