from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, ClassVar, Union

from .context import BREAKPOINT_NAMES, PERMISSIONS_FIELD, ROLE_FIELD, WIDTH_FIELD, Context, breakpoint_for, is_number
from .errors import PredicateError

# Score of a variant with no predicate. Every constraint weight is above it.
DEFAULT_SCORE = 1

# Weights per constraint dimension, shared by every subject so scores compare across subjects.
WEIGHTS: dict[str, int] = {
    "permission": 30,
    "entity_type": 25,
    "purpose": 20,
    "intent": 20,
    "container_area": 15,
    "user_role": 15,
    "container_width": 10,
    "container_height": 10,
    "breakpoint": 10,
    "theme": 5,
    "has_touch": 5,
    "has_hover": 5,
}

# Fallback for dimensions not listed above.
KIND_WEIGHTS: dict[str, int] = {
    "permission": 30,
    "equals": 15,
    "range": 10,
    "one_of": 10,
    "breakpoint": 10,
    "flag": 5,
}

_MISSING = object()


def _lookup(context: Context, name: str) -> Any:
    value = context.get(name, _MISSING)
    return _MISSING if value is None else value


def _same_value(value: Any, expected: Any) -> bool:
    # Booleans only equal booleans; True == 1 must not match.
    if isinstance(value, bool) != isinstance(expected, bool):
        return False
    return value == expected


@dataclass(frozen=True)
class RangeConstraint:
    field: str
    min: float | None = None
    max: float | None = None
    kind: ClassVar[str] = "range"

    def __post_init__(self) -> None:
        if self.min is None and self.max is None:
            raise PredicateError(f"{self.field}: range needs min or max")
        for bound in (self.min, self.max):
            if bound is not None and not is_number(bound):
                raise PredicateError(f"{self.field}: range bound {bound!r} is not numeric")
            if bound is not None and math.isnan(bound):
                raise PredicateError(f"{self.field}: range bound is NaN")
        if self.min is not None and self.max is not None and self.min > self.max:
            raise PredicateError(f"{self.field}: min {self.min} > max {self.max}")

    @property
    def dimension(self) -> str:
        return self.field

    def matches(self, context: Context) -> bool:
        value = _lookup(context, self.field)
        if not is_number(value) or math.isnan(value):
            return False
        if self.min is not None and value < self.min:
            return False
        if self.max is not None and value > self.max:
            return False
        return True

    def project(self, context: Context) -> Any:
        return context.get(self.field)

    def to_trigger(self) -> Any:
        out: dict[str, Any] = {}
        if self.min is not None:
            out["min"] = self.min
        if self.max is not None:
            out["max"] = self.max
        return out


@dataclass(frozen=True)
class EqualsConstraint:
    field: str
    value: Any
    kind: ClassVar[str] = "equals"

    @property
    def dimension(self) -> str:
        return self.field

    def matches(self, context: Context) -> bool:
        value = _lookup(context, self.field)
        return value is not _MISSING and _same_value(value, self.value)

    def project(self, context: Context) -> Any:
        return context.get(self.field)

    def to_trigger(self) -> Any:
        return self.value


@dataclass(frozen=True)
class FlagConstraint:
    field: str
    value: bool
    kind: ClassVar[str] = "flag"

    @property
    def dimension(self) -> str:
        return self.field

    def matches(self, context: Context) -> bool:
        value = _lookup(context, self.field)
        return isinstance(value, bool) and value is self.value

    def project(self, context: Context) -> Any:
        return context.get(self.field)

    def to_trigger(self) -> Any:
        return self.value


@dataclass(frozen=True)
class OneOfConstraint:
    field: str
    values: tuple[Any, ...]
    kind: ClassVar[str] = "one_of"

    def __post_init__(self) -> None:
        if not self.values:
            raise PredicateError(f"{self.field}: one_of needs at least one value")

    @property
    def dimension(self) -> str:
        return self.field

    def matches(self, context: Context) -> bool:
        value = _lookup(context, self.field)
        if value is _MISSING:
            return False
        if isinstance(value, (tuple, frozenset)):
            return any(_same_value(v, allowed) for v in value for allowed in self.values)
        return any(_same_value(value, allowed) for allowed in self.values)

    def project(self, context: Context) -> Any:
        return context.get(self.field)

    def to_trigger(self) -> Any:
        return list(self.values)


@dataclass(frozen=True)
class PermissionConstraint:
    permission: str
    kind: ClassVar[str] = "permission"

    def __post_init__(self) -> None:
        if not isinstance(self.permission, str) or not self.permission.strip():
            raise PredicateError(f"permission must be a non-empty string, got {self.permission!r}")

    @property
    def dimension(self) -> str:
        return "permission"

    def matches(self, context: Context) -> bool:
        return context.has_permission(self.permission)

    def project(self, context: Context) -> Any:
        return context.has_permission(self.permission)

    def to_trigger(self) -> Any:
        return self.permission


@dataclass(frozen=True)
class BreakpointConstraint:
    buckets: frozenset[str]
    field: str = WIDTH_FIELD
    kind: ClassVar[str] = "breakpoint"

    def __post_init__(self) -> None:
        if not self.buckets:
            raise PredicateError("breakpoint needs at least one bucket")
        unknown = sorted(set(self.buckets) - BREAKPOINT_NAMES)
        if unknown:
            raise PredicateError(f"unknown breakpoint(s) {unknown}")

    @property
    def dimension(self) -> str:
        return "breakpoint"

    def matches(self, context: Context) -> bool:
        bucket = self.project(context)
        return bucket is not None and bucket in self.buckets

    def project(self, context: Context) -> Any:
        return breakpoint_for(context.get(self.field))

    def to_trigger(self) -> Any:
        ordered = [name for name in ("xs", "sm", "md", "lg", "xl", "xxl") if name in self.buckets]
        return ordered[0] if len(ordered) == 1 else ordered


Constraint = Union[
    RangeConstraint,
    EqualsConstraint,
    FlagConstraint,
    OneOfConstraint,
    PermissionConstraint,
    BreakpointConstraint,
]


def constraint_weight(constraint: Constraint) -> int:
    return WEIGHTS.get(constraint.dimension, KIND_WEIGHTS[constraint.kind])


def _parse_one(name: str, raw: Any) -> Constraint:
    if name == "permission":
        if not isinstance(raw, str):
            raise PredicateError(f"permission: expected string, got {type(raw).__name__}")
        return PermissionConstraint(raw)
    if name == "breakpoint":
        buckets = [raw] if isinstance(raw, str) else raw
        if not isinstance(buckets, (list, tuple, set, frozenset)):
            raise PredicateError(f"breakpoint: expected string or list, got {type(raw).__name__}")
        return BreakpointConstraint(frozenset(str(b) for b in buckets))
    if isinstance(raw, Mapping):
        extra = sorted(set(raw) - {"min", "max"})
        if extra:
            raise PredicateError(f"{name}: unsupported keys {extra}")
        return RangeConstraint(name, raw.get("min"), raw.get("max"))
    if isinstance(raw, bool):
        return FlagConstraint(name, raw)
    if isinstance(raw, (list, tuple, set, frozenset)):
        return OneOfConstraint(name, tuple(raw))
    if isinstance(raw, (str, int, float)):
        return EqualsConstraint(name, raw)
    raise PredicateError(f"{name}: unsupported constraint value {raw!r}")


@dataclass(frozen=True)
class Predicate:
    """Conjunction of constraints, at most one per dimension. Empty matches everything."""

    constraints: tuple[Constraint, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for c in self.constraints:
            if c.dimension in seen:
                raise PredicateError(f"duplicate constraint on {c.dimension!r}")
            seen.add(c.dimension)

    @classmethod
    def from_trigger(cls, trigger: Mapping[str, Any] | None) -> "Predicate":
        if trigger is None:
            return cls()
        if not isinstance(trigger, Mapping):
            raise PredicateError(f"trigger must be an object, got {type(trigger).__name__}")
        constraints = [_parse_one(str(name), raw) for name, raw in trigger.items() if raw is not None]
        return cls(tuple(constraints))

    @classmethod
    def of(cls, constraints: Iterable[Constraint]) -> "Predicate":
        return cls(tuple(constraints))

    def is_empty(self) -> bool:
        return not self.constraints

    @property
    def dimensions(self) -> tuple[str, ...]:
        return tuple(c.dimension for c in self.constraints)

    @property
    def fields(self) -> frozenset[str]:
        """Context fields this predicate can read."""
        out: set[str] = set()
        for c in self.constraints:
            if isinstance(c, PermissionConstraint):
                out.update((PERMISSIONS_FIELD, ROLE_FIELD))
            else:
                out.add(c.field)
        return frozenset(out)

    def to_trigger(self) -> dict[str, Any]:
        return {c.dimension: c.to_trigger() for c in self.constraints}


def matches(predicate: Predicate | None, context: Context) -> bool:
    if predicate is None:
        return True
    return all(c.matches(context) for c in predicate.constraints)


def score(predicate: Predicate | None) -> int:
    if predicate is None or predicate.is_empty():
        return DEFAULT_SCORE
    return sum(constraint_weight(c) for c in predicate.constraints)
