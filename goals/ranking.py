# status classification and ranking of customer goal records

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Tuple


class Status(str, Enum):
    ON_TARGET = "ON_TARGET"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


# worst first
STATUS_SEVERITY = {Status.CRITICAL: 0, Status.WARNING: 1, Status.ON_TARGET: 2}

# A > B > C > I, anything else after
CLASS_PRIORITY = {'A': 0, 'B': 1, 'C': 2, 'I': 3}
UNKNOWN_CLASS_PRIORITY = 9

DEFAULT_ORDERING = "attention"


class UnknownOrderingError(ValueError):
    """order_by names no known comparator"""


def classify(actual: float, target: float, warn_threshold: float) -> Status:
    """
    tri-state status from value vs target

    args:
        actual: achieved value
        target: goal value
        warn_threshold: absolute floor of the warning band (e.g. 0.8 * target)

    returns:
        ON_TARGET if actual >= target,
        WARNING if warn_threshold <= actual < target,
        CRITICAL below warn_threshold
    """
    if actual >= target:
        return Status.ON_TARGET
    if actual >= warn_threshold:
        return Status.WARNING
    return Status.CRITICAL


def classify_record(record: Dict[str, Any], warn_fraction: float = 0.8) -> Dict[str, Any]:
    """copy of a derived record with a status for this month's sales vs this month's goal"""
    sub_target = record['sub_target']
    classified = dict(record)
    classified['status'] = classify(record['sub_actual'], sub_target, warn_fraction * sub_target)
    return classified


def worst_status(statuses: Iterable[Status]) -> Status:
    """most severe status of a collection (ON_TARGET when empty)"""
    return min(statuses, key=STATUS_SEVERITY.__getitem__, default=Status.ON_TARGET)


# sort keys - all end with entity_id so no two records ever tie

def _attention_key(record: Dict[str, Any]) -> Tuple:
    # inactive this month first, then bigger gap, bigger goal, better class
    return (
        1 if record['is_active'] else 0,
        -record['gap'],
        -record['target'],
        CLASS_PRIORITY.get(record.get('classification'), UNKNOWN_CLASS_PRIORITY),
        record['entity_id'],
    )


def _descending(field_name: str) -> Callable[[Dict[str, Any]], Tuple]:
    def key(record: Dict[str, Any]) -> Tuple:
        return (-(record.get(field_name) or 0), record['entity_id'])
    return key


ORDERINGS: Dict[str, Callable[[Dict[str, Any]], Tuple]] = {
    'attention': _attention_key,
    'penetration_priority': _attention_key,  # name used by the dashboard
    'gap': _descending('gap'),
    'target': _descending('target'),
    'goal': _descending('target'),
    'achievement': _descending('achievement_pct'),
}


# comparators that only need year-level fields (no monthly activity)
ANNUAL_ORDERINGS = ('achievement', 'gap', 'goal', 'target')


def check_ordering(order_by: str, allowed: Iterable[str] = None) -> str:
    allowed = ORDERINGS if allowed is None else allowed
    if order_by not in allowed:
        raise UnknownOrderingError(
            f"unknown order_by {order_by!r}, expected one of {', '.join(sorted(allowed))}"
        )
    return order_by


@dataclass
class RankingResult:
    """records in rank order, rank numbers start at 1"""
    order_by: str
    records: List[Dict[str, Any]] = field(default_factory=list)

    def ranks(self) -> List[Dict[str, Any]]:
        return [
            {'rank': record['rank'], 'entity_id': record['entity_id']}
            for record in self.records
        ]


def rank(records: List[Dict[str, Any]], order_by: str = DEFAULT_ORDERING) -> RankingResult:
    """
    order records by a named comparator and number them

    args:
        records: derived (and usually classified) records
        order_by: attention | penetration_priority | gap | target | goal | achievement

    returns:
        RankingResult with copies of the records, each with a 'rank'
    """
    key = ORDERINGS[check_ordering(order_by)]
    ordered = sorted(records, key=key)

    ranked = []
    for position, record in enumerate(ordered, start=1):
        ranked_record = dict(record)
        ranked_record['rank'] = position
        ranked.append(ranked_record)

    return RankingResult(order_by=order_by, records=ranked)
