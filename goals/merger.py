# metric merger - joins the three tiers into one record per customer
# the static tier is the identity source: every customer in it comes out exactly once

from typing import Any, Dict, List

from goals.tiers import TierFragment

# neutral values when a tier has nothing for a customer (no sales yet, failed tier, ...)
PERIODIC_DEFAULTS = {
    'actual': 0,                  # units sold year-to-date
    'last_purchase_date': None,
}
LIVE_DEFAULTS = {
    'sub_actual': 0,              # units sold in the current month
}

# identity and goal fields every merged record carries
STATIC_DEFAULTS = {
    'name': None,
    'classification': None,
    'target': 0,
}


def _fill(defaults: Dict[str, Any], sub_record: Dict[str, Any]) -> Dict[str, Any]:
    # only the tier's own fields, a None from sql means "nothing" too
    filled = {}
    for name, default in defaults.items():
        value = sub_record.get(name) if sub_record else None
        filled[name] = default if value is None else value
    return filled


def merge(
    static: TierFragment,
    periodic: TierFragment,
    live: TierFragment
) -> List[Dict[str, Any]]:
    """
    combine static + periodic + live fragments per entity

    fragments are dicts keyed by entity id, so each lookup is O(1).
    the returned records are new dicts; callers can mutate them without
    touching cached fragments. order is not meaningful (ranking sorts later).

    args:
        static: identity/goal fragment (authoritative entity list)
        periodic: year-to-date fragment
        live: current sub-period fragment

    returns:
        list of merged records, one per static entity
    """
    merged = []
    for entity_id, identity in static.entities.items():
        record = dict(identity)
        record.update(_fill(STATIC_DEFAULTS, identity))
        record['entity_id'] = entity_id
        record.update(_fill(PERIODIC_DEFAULTS, periodic.entities.get(entity_id)))
        record.update(_fill(LIVE_DEFAULTS, live.entities.get(entity_id)))
        merged.append(record)

    return merged
