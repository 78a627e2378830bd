"""Helpers for object metadata: finalizers and owner references.

Objects are plain dicts in API (camelCase) form. Every helper is a no-op when
the object is already in the requested state and reports whether it changed
anything, so callers can skip writes.
"""
from typing import Dict, List, Optional, Tuple


def has_finalizer(obj: Dict, finalizer: str) -> bool:
    return finalizer in (obj.get("metadata", {}).get("finalizers") or [])


def add_finalizer(obj: Dict, finalizer: str) -> bool:
    meta = obj.setdefault("metadata", {})
    finalizers = list(meta.get("finalizers") or [])
    if finalizer in finalizers:
        return False
    finalizers.append(finalizer)
    meta["finalizers"] = finalizers
    return True


def remove_finalizer(obj: Dict, finalizer: str) -> bool:
    meta = obj.setdefault("metadata", {})
    finalizers = list(meta.get("finalizers") or [])
    if finalizer not in finalizers:
        return False
    meta["finalizers"] = [f for f in finalizers if f != finalizer]
    return True


def controller_ref(owner: Dict) -> Dict:
    """Build a controller owner reference pointing at `owner`."""
    meta = owner["metadata"]
    return {
        "apiVersion": owner["apiVersion"],
        "kind": owner["kind"],
        "name": meta["name"],
        "uid": meta["uid"],
        "controller": True,
        "blockOwnerDeletion": True,
    }


def owner_references(obj: Dict) -> List[Dict]:
    return list(obj.get("metadata", {}).get("ownerReferences") or [])


def ensure_owner_reference(obj: Dict, ref: Dict) -> Tuple[List[Dict], bool]:
    """Return owner references of `obj` with `ref` present and whether that changed them.

    A reference with the same uid is replaced in place if it differs. Another
    controller reference is demoted so at most one controller remains.
    """
    refs = owner_references(obj)
    changed = False
    found = False
    result = []
    for existing in refs:
        if existing.get("uid") == ref["uid"]:
            found = True
            if existing != ref:
                changed = True
            result.append(dict(ref))
        elif ref.get("controller") and existing.get("controller"):
            changed = True
            result.append({**existing, "controller": False})
        else:
            result.append(existing)
    if not found:
        result.append(dict(ref))
        changed = True
    return result, changed


def remove_owner_reference(obj: Dict, owner_uid: str) -> Tuple[List[Dict], bool]:
    """Return owner references of `obj` without `owner_uid` and whether that changed them."""
    refs = owner_references(obj)
    result = [ref for ref in refs if ref.get("uid") != owner_uid]
    return result, len(result) != len(refs)


def label_selector_str(selector: Optional[Dict[str, str]]) -> Optional[str]:
    if not selector:
        return None
    return ",".join([f"{k}={v}" for k, v in selector.items()])


def matches_selector(obj: Dict, selector: Optional[Dict[str, str]]) -> bool:
    labels = obj.get("metadata", {}).get("labels") or {}
    return all(labels.get(k) == v for k, v in (selector or {}).items())
