import jsonpickle
from datetime import datetime, timezone
from typing import Dict, List, Optional


def now() -> str:
    return datetime.now(timezone.utc).isoformat()


def sort_dict_keys(d):
    """Recursively sort dictionary keys and handle nested structures.

    Args:
        d: Data structure (dict, list, or primitive type)

    Returns:
        Sorted version of the data structure
    """
    if isinstance(d, dict):
        return {
            key: sort_dict_keys(value)
            for key, value in sorted(d.items())
        }
    elif isinstance(d, list):
        return [sort_dict_keys(item) for item in d]
    else:
        return d


def canonicalize_dict(data):
    """
    Returns a canonical JSON representation of a dictionary.

    Keys are sorted recursively, so the representation stays the same
    regardless of key order.
    """
    return jsonpickle.dumps(sort_dict_keys(data), unpicklable=False)


def deep_compare_dict(data1, data2) -> bool:
    """Compare two data structures deeply, independent of key order."""
    if data1 is None and data2 is None:
        return True
    if data1 is None or data2 is None:
        return False
    if not isinstance(data1, type(data2)) and not isinstance(data2, type(data1)):
        return False
    return canonicalize_dict(data1) == canonicalize_dict(data2)


def upsert_condition(conds, newc):
    """In-memory merge by .type. Only bump lastTransitionTime when status flips."""
    conds = list(conds or [])
    for i, c in enumerate(conds):
        if c.get("type") == newc["type"]:
            ltt = c.get("lastTransitionTime") or now()
            if c.get("status") != newc["status"]:
                ltt = now()
            merged = {**c, **newc, "lastTransitionTime": ltt}
            conds[i] = merged
            break
    else:
        conds.append({**newc, "lastTransitionTime": now()})
    return conds


def get_condition(conds: Optional[List[Dict]], cond_type: str) -> Optional[Dict]:
    for cond in conds or []:
        if cond.get("type") == cond_type:
            return cond
    return None


def has_condition(conds: Optional[List[Dict]], cond_type: str) -> bool:
    return get_condition(conds, cond_type) is not None


def is_condition_true(conds: Optional[List[Dict]], cond_type: str) -> bool:
    cond = get_condition(conds, cond_type)
    return cond is not None and cond.get("status") == "True"
