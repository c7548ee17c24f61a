from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any

from .errors import ValidationError
from .predicates import Predicate


@dataclass(frozen=True)
class Variant:
    name: str
    predicate: Predicate | None = None
    payload: Any = None

    @classmethod
    def from_dict(cls, name: str, data: Mapping[str, Any] | None) -> "Variant":
        data = data or {}
        if not isinstance(data, Mapping):
            raise ValidationError(f"variant {name!r}: expected object, got {type(data).__name__}")
        extra = sorted(set(data) - {"trigger", "payload"})
        if extra:
            raise ValidationError(f"variant {name!r}: unsupported keys {extra}")
        trigger = data.get("trigger")
        predicate = Predicate.from_trigger(trigger) if trigger is not None else None
        return cls(name=str(name), predicate=predicate, payload=data.get("payload"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "trigger": self.predicate.to_trigger() if self.predicate is not None else None,
            "payload": self.payload,
        }


@dataclass(frozen=True)
class RegistryEntry:
    subject_id: str
    variants: Mapping[str, Variant]
    default_variant_name: str
    version: int = 1
    registered_at: float = 0.0

    @property
    def relevant_fields(self) -> frozenset[str]:
        out: set[str] = set()
        for v in self.variants.values():
            if v.predicate is not None:
                out.update(v.predicate.fields)
        return frozenset(out)

    def to_dict(self) -> dict[str, Any]:
        return {
            "subject_id": self.subject_id,
            "default_variant_name": self.default_variant_name,
            "version": self.version,
            "registered_at": self.registered_at,
            "variants": [v.to_dict() for v in self.variants.values()],
        }


@dataclass(frozen=True)
class SelectionResult:
    subject_id: str
    variant_name: str
    payload: Any = None
    matched_predicate: Predicate | None = None
    score: int = 0
    from_cache: bool = False
    is_default: bool = False

    def cached(self) -> "SelectionResult":
        return replace(self, from_cache=True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "subject_id": self.subject_id,
            "variant_name": self.variant_name,
            "payload": self.payload,
            "matched_predicate": self.matched_predicate.to_trigger() if self.matched_predicate is not None else None,
            "score": self.score,
            "from_cache": self.from_cache,
            "is_default": self.is_default,
        }
