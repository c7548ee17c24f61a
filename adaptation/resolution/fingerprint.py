from __future__ import annotations

"""
Cache key construction.

A fingerprint is `(strategy_version, subject_id, ((name, value), ...))`. The set of
context fields that goes into it is the contract between the cache and the
selector: leave a field out and two contexts that select differently can share
a key (stale result); put extra fields in and equivalent contexts stop sharing
entries (lower hit rate).

relevant.v2  one projection per constraint declared on the subject's variants.
             Equal fingerprints always select the same variant. Default.
coarse.v1    purpose, intent, breakpoint, user_role regardless of subject.
             Stale for subjects whose predicates read any other field.
full.v1      every context field. Never stale, lowest hit rate.
"""

from collections.abc import Callable, Mapping
from typing import Any

from .context import Context
from .models import RegistryEntry

Fingerprint = tuple[Any, ...]
FingerprintFn = Callable[[RegistryEntry, Context], Fingerprint]

COARSE_FIELDS = ("purpose", "intent", "breakpoint", "user_role")
DEFAULT_STRATEGY = "relevant.v2"


def hashable(value: Any) -> Any:
    if isinstance(value, (frozenset, set)):
        return ("set", tuple(sorted((hashable(v) for v in value), key=repr)))
    if isinstance(value, (tuple, list)):
        return tuple(hashable(v) for v in value)
    if isinstance(value, Mapping):
        items = ((repr(k), hashable(v)) for k, v in value.items())
        return ("map", tuple(sorted(items, key=lambda kv: kv[0])))
    try:
        hash(value)
    except TypeError:
        return ("repr", repr(value))
    # 1 == 1.0 == True would otherwise collide across types.
    return (type(value).__name__, value)


def relevant_fingerprint(entry: RegistryEntry, context: Context) -> Fingerprint:
    parts: dict[str, Any] = {}
    for variant in entry.variants.values():
        if variant.predicate is None:
            continue
        for c in variant.predicate.constraints:
            name = c.dimension
            if c.kind == "permission":
                name = f"permission:{c.permission}"
            elif c.kind == "breakpoint":
                name = f"breakpoint:{c.field}"
            if name not in parts:
                parts[name] = hashable(c.project(context))
    return ("relevant.v2", entry.subject_id, tuple(sorted(parts.items())))


def coarse_fingerprint(entry: RegistryEntry, context: Context) -> Fingerprint:
    values = []
    for name in COARSE_FIELDS:
        raw = context.breakpoint if name == "breakpoint" else context.get(name)
        values.append((name, hashable(raw)))
    return ("coarse.v1", entry.subject_id, tuple(values))


def full_fingerprint(entry: RegistryEntry, context: Context) -> Fingerprint:
    items = tuple(sorted((k, hashable(v)) for k, v in context.items()))
    return ("full.v1", entry.subject_id, items, tuple(sorted(context.superuser_roles)))


STRATEGIES: dict[str, FingerprintFn] = {
    "relevant.v2": relevant_fingerprint,
    "coarse.v1": coarse_fingerprint,
    "full.v1": full_fingerprint,
}


def get_strategy(name: str) -> FingerprintFn:
    try:
        return STRATEGIES[name]
    except KeyError:
        raise ValueError(f"unknown fingerprint strategy {name!r}; expected one of {sorted(STRATEGIES)}") from None
