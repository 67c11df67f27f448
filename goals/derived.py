# derived fields - only meaningful after the merge
# recomputed on every read, never cached, so they can't drift from their inputs

import math
from typing import Any, Dict

# annual goal / 11 = monthly goal. a policy constant (see settings.sub_period_divisor),
# not derived from which month it is
DEFAULT_SUB_PERIOD_DIVISOR = 11


def round_half_up(value: float) -> int:
    """round .5 away from zero for positives (python's round() would give 2 for 2.5)"""
    if value < 0:
        return -round_half_up(-value)
    return int(math.floor(value + 0.5))


def percent_of(actual: float, target: float) -> int:
    """actual as a whole percentage of target, 0 when there is no target"""
    if target > 0:
        return round_half_up(actual / target * 100)
    return 0


def derive_annual(record: Dict[str, Any]) -> Dict[str, Any]:
    """copy of record with the year-level gap and achievement_pct added"""
    target = record.get('target') or 0
    actual = record.get('actual') or 0

    derived = dict(record)
    derived.update({
        'gap': target - actual,
        'achievement_pct': percent_of(actual, target),
    })
    return derived


def derive(record: Dict[str, Any], sub_period_divisor: int = DEFAULT_SUB_PERIOD_DIVISOR) -> Dict[str, Any]:
    """
    add gap/achievement fields to a merged record

    args:
        record: merged record with target, actual, sub_actual
        sub_period_divisor: fixed number of sub-periods the target is spread over

    returns:
        new dict with the merged fields plus:
        gap, achievement_pct, sub_target, sub_gap, sub_achievement_pct, is_active
    """
    if sub_period_divisor <= 0:
        raise ValueError(f"sub_period_divisor must be positive, got {sub_period_divisor}")

    target = record.get('target') or 0
    sub_actual = record.get('sub_actual') or 0

    sub_target = round_half_up(target / sub_period_divisor)

    derived = derive_annual(record)
    derived.update({
        'sub_target': sub_target,
        'sub_gap': sub_target - sub_actual,
        'sub_achievement_pct': percent_of(sub_actual, sub_target),
        'is_active': sub_actual > 0,
    })
    return derived
