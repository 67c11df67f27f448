# request scope and cache key construction
# a scope is everything that partitions the cached data: seller, year, month, classification

from dataclasses import dataclass
from datetime import date
from typing import Optional, Sequence

# abc classification of customers (I = inactive)
CLASSIFICATIONS = ('A', 'B', 'C', 'I')

KEY_NAMESPACE = "goals"


class InvalidScopeError(ValueError):
    """request parameters can't form a valid cache partition"""


@dataclass(frozen=True)
class GoalsScope:
    """one seller's goals for a year/month, optionally filtered by classification"""
    seller_id: int
    year: int
    month: int
    classification: Optional[str] = None

    @classmethod
    def for_request(
        cls,
        seller_id: int,
        year: int = None,
        month: int = None,
        classification: str = None,
        today: date = None
    ) -> "GoalsScope":
        """
        build and validate a scope, filling year/month from today when omitted

        args:
            seller_id: seller whose customers are shown
            year: goal year (default: current year)
            month: month for live activity (default: current month)
            classification: optional A/B/C/I filter (case-insensitive, blank = all)
            today: reference date (default: date.today())

        returns:
            validated GoalsScope
        """
        today = today or date.today()
        if isinstance(classification, str):
            classification = classification.strip().upper() or None
        scope = cls(
            seller_id=seller_id,
            year=today.year if year is None else year,
            month=today.month if month is None else month,
            classification=classification,
        )
        scope.validate()
        return scope

    def validate(self):
        """raise InvalidScopeError before anything touches the cache"""
        check_id('seller_id', self.seller_id)
        check_year(self.year)
        check_month(self.month)
        if self.classification is not None and self.classification not in CLASSIFICATIONS:
            raise InvalidScopeError(
                f"classification must be one of {', '.join(CLASSIFICATIONS)}, got {self.classification!r}"
            )


def check_id(name: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidScopeError(f"{name} must be a positive integer, got {value!r}")
    return value


def check_year(year: int) -> int:
    if isinstance(year, bool) or not isinstance(year, int) or not 2020 <= year <= 2100:
        raise InvalidScopeError(f"year must be between 2020 and 2100, got {year!r}")
    return year


def check_month(month: int) -> int:
    if isinstance(month, bool) or not isinstance(month, int) or not 1 <= month <= 12:
        raise InvalidScopeError(f"month must be between 1 and 12, got {month!r}")
    return month


def seller_key_prefix(tier: str, seller_id: int) -> str:
    """prefix shared by every key of one tier for one seller"""
    # trailing ':' so seller 5 never matches seller 50
    return f"{KEY_NAMESPACE}:{tier}:seller_id={seller_id}:"


def scope_key(tier: str, scope: GoalsScope, fields: Sequence[str]) -> str:
    """
    deterministic cache key for one tier of a scope

    only the listed fields go into the key: a field that doesn't change the
    tier's data would just fragment the cache, a missing one would serve
    another request's data

    args:
        tier: tier name (static/periodic/live), keeps tiers from colliding
        scope: validated request scope
        fields: scope fields that partition this tier, seller_id first

    returns:
        key like "goals:live:seller_id=7:year=2026:month=3:classification=all"
    """
    scope.validate()
    if not fields or fields[0] != 'seller_id':
        raise InvalidScopeError(f"tier {tier!r} keys must start with seller_id, got {list(fields)}")

    parts = []
    for field in fields:
        if not hasattr(scope, field):
            raise InvalidScopeError(f"unknown scope field {field!r} for tier {tier!r}")
        value = getattr(scope, field)
        parts.append(f"{field}={'all' if value is None else value}")

    return f"{KEY_NAMESPACE}:{tier}:" + ":".join(parts)
