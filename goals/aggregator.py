# portfolio totals over the merged + classified customer records

from typing import Any, Dict, List

from goals.derived import percent_of, round_half_up
from goals.ranking import CLASS_PRIORITY, UNKNOWN_CLASS_PRIORITY, Status, worst_status


def aggregate(records: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    reduce records to seller-level totals in one pass

    args:
        records: derived records (status is counted when present)

    returns:
        dict with counts, sums, activity rate, status counts and a
        per-classification breakdown
    """
    total_target = 0
    total_actual = 0
    total_sub_actual = 0
    active_count = 0
    status_counts = {status: 0 for status in Status}
    by_class: Dict[Any, Dict[str, Any]] = {}

    for record in records:
        target = record.get('target') or 0
        actual = record.get('actual') or 0
        sub_actual = record.get('sub_actual') or 0

        total_target += target
        total_actual += actual
        total_sub_actual += sub_actual
        if sub_actual > 0:
            active_count += 1
        if record.get('status') is not None:
            status_counts[Status(record['status'])] += 1

        group = by_class.setdefault(record.get('classification'), {
            'classification': record.get('classification'),
            'customers': 0,
            'total_target': 0,
            'total_actual': 0,
        })
        group['customers'] += 1
        group['total_target'] += target
        group['total_actual'] += actual

    entity_count = len(records)
    present = [status for status, count in status_counts.items() if count]
    overall_status = worst_status(present).value if present else None
    activity_rate = active_count / entity_count if entity_count else 0.0

    breakdown = sorted(
        by_class.values(),
        key=lambda group: CLASS_PRIORITY.get(group['classification'], UNKNOWN_CLASS_PRIORITY)
    )
    for group in breakdown:
        group['achievement_pct'] = percent_of(group['total_actual'], group['total_target'])

    return {
        'entity_count': entity_count,
        'total_target': total_target,
        'total_actual': total_actual,
        'total_sub_actual': total_sub_actual,
        'active_count': active_count,
        'activity_rate': activity_rate,
        'activity_pct': round_half_up(activity_rate * 100),
        'achievement_pct': percent_of(total_actual, total_target),
        'on_target': status_counts[Status.ON_TARGET],
        'warning': status_counts[Status.WARNING],
        'critical': status_counts[Status.CRITICAL],
        'overall_status': overall_status,
        'by_classification': breakdown,
    }
