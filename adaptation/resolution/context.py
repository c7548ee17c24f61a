from __future__ import annotations

from collections.abc import Iterator, Mapping
from types import MappingProxyType
from typing import Any

BREAKPOINTS: tuple[tuple[str, int], ...] = (
    ("xs", 0),
    ("sm", 576),
    ("md", 768),
    ("lg", 992),
    ("xl", 1200),
    ("xxl", 1400),
)
BREAKPOINT_NAMES = frozenset(name for name, _ in BREAKPOINTS)

SUPERUSER_ROLES = frozenset({"super_admin"})
PERMISSIONS_FIELD = "user_permissions"
ROLE_FIELD = "user_role"
WIDTH_FIELD = "container_width"


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def breakpoint_for(width: Any) -> str | None:
    """Largest breakpoint whose threshold is <= width; None for non-numeric input."""
    if not is_number(width):
        return None
    bucket = BREAKPOINTS[0][0]
    for name, threshold in BREAKPOINTS:
        if width >= threshold:
            bucket = name
    return bucket


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (set, frozenset)):
        return frozenset(value)
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, frozenset):
        return sorted(value, key=str)
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


def _normalize(name: str, value: Any) -> Any:
    if name == PERMISSIONS_FIELD:
        if value is None:
            return frozenset()
        if isinstance(value, str):
            return frozenset({value})
        return frozenset(str(v) for v in value)
    return _freeze(value)


class Context(Mapping[str, Any]):
    """
    Read-only bag of named attributes describing who is asking and in what situation.

    Contexts never change after construction; `extend()` copies and overrides.
    A field that is absent (or None) fails every constraint that reads it.
    """

    __slots__ = ("_fields", "_superuser_roles")

    def __init__(
        self,
        fields: Mapping[str, Any] | None = None,
        *,
        superuser_roles: frozenset[str] | set[str] | None = None,
        **kwargs: Any,
    ) -> None:
        raw: dict[str, Any] = dict(fields or {})
        raw.update(kwargs)
        normalized = {str(k): _normalize(str(k), v) for k, v in raw.items()}
        width = normalized.get(WIDTH_FIELD)
        height = normalized.get("container_height")
        if "container_area" not in normalized and is_number(width) and is_number(height):
            normalized["container_area"] = width * height
        object.__setattr__(self, "_fields", normalized)
        roles = SUPERUSER_ROLES if superuser_roles is None else frozenset(superuser_roles)
        object.__setattr__(self, "_superuser_roles", roles)

    def __setattr__(self, name: str, value: Any) -> None:
        raise TypeError("Context is immutable; use extend()")

    def __delattr__(self, name: str) -> None:
        raise TypeError("Context is immutable; use extend()")

    def __getitem__(self, key: str) -> Any:
        return self._fields[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __repr__(self) -> str:
        return f"Context({self._fields!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Context):
            return self._fields == other._fields and self._superuser_roles == other._superuser_roles
        if isinstance(other, Mapping):
            return self._fields == dict(other)
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    @property
    def superuser_roles(self) -> frozenset[str]:
        return self._superuser_roles

    @property
    def breakpoint(self) -> str | None:
        return breakpoint_for(self._fields.get(WIDTH_FIELD))

    @property
    def permissions(self) -> frozenset[str]:
        return self._fields.get(PERMISSIONS_FIELD) or frozenset()

    def extend(self, overrides: Mapping[str, Any] | None = None, **kwargs: Any) -> "Context":
        merged = dict(self._fields)
        changed = dict(overrides or {})
        changed.update(kwargs)
        # Area is derived; drop it so it follows new dimensions unless given explicitly.
        if "container_area" not in changed and (
            WIDTH_FIELD in changed or "container_height" in changed
        ):
            merged.pop("container_area", None)
        merged.update(changed)
        return Context(merged, superuser_roles=self._superuser_roles)

    def has_permission(self, permission: str) -> bool:
        if permission in self.permissions:
            return True
        return self._fields.get(ROLE_FIELD) in self._superuser_roles

    def validate(self, required: list[str] | tuple[str, ...] = ()) -> tuple[bool, list[str]]:
        missing = [name for name in required if self._fields.get(name) is None]
        return not missing, missing

    def to_dict(self) -> dict[str, Any]:
        return {k: _thaw(v) for k, v in self._fields.items()}


def as_context(value: Context | Mapping[str, Any] | None, *, superuser_roles: frozenset[str] | None = None) -> Context:
    if isinstance(value, Context):
        return value
    return Context(value or {}, superuser_roles=superuser_roles)
