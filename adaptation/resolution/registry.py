from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from types import MappingProxyType
from typing import Any, Union

from .errors import ValidationError
from .models import RegistryEntry, Variant

_logger = logging.getLogger("resolution.registry")

VariantsInput = Union[Mapping[str, Any], Iterable[Variant]]
Listener = Callable[[str], None]


def normalize_subject_id(subject_id: Any) -> str:
    return str(subject_id or "").strip()


def _coerce_variants(subject_id: str, variants: VariantsInput | None) -> dict[str, Variant]:
    out: dict[str, Variant] = {}
    if variants is None:
        return out
    if isinstance(variants, Mapping):
        items: list[Variant] = []
        for name, v in variants.items():
            if isinstance(v, Variant):
                if v.name != name:
                    raise ValidationError(f"subject={subject_id} variant key {name!r} != name {v.name!r}")
                items.append(v)
            else:
                items.append(Variant.from_dict(str(name), v))
    else:
        items = list(variants)
    for v in items:
        if not isinstance(v, Variant):
            raise ValidationError(f"subject={subject_id} expected Variant, got {type(v).__name__}")
        if not v.name:
            raise ValidationError(f"subject={subject_id} variant name must be non-empty")
        if v.name in out:
            raise ValidationError(f"subject={subject_id} duplicate variant {v.name!r}")
        out[v.name] = v
    return out


class Registry:
    """
    Subject -> variant set mapping.

    Reads are lock-free against an immutable snapshot; writers build a new dict
    under `_write_lock` and swap it in, so readers see either the old or the
    fully installed entry. Listeners run before register/unregister return.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._entries: Mapping[str, RegistryEntry] = MappingProxyType({})
        self._write_lock = threading.Lock()
        self._listeners: list[Listener] = []
        self._version = 0
        self._clock = clock

    def add_listener(self, listener: Listener) -> None:
        with self._write_lock:
            self._listeners.append(listener)

    def _notify(self, subject_id: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(subject_id)
            except Exception:
                _logger.exception("registry listener failed for subject=%s", subject_id)

    @staticmethod
    def validate(
        subject_id: str,
        variants: VariantsInput | None,
        default_variant_name: str = "",
    ) -> tuple[str, dict[str, Variant], str]:
        subject_id = normalize_subject_id(subject_id)
        if not subject_id:
            raise ValidationError("subject id must be non-empty")
        coerced = _coerce_variants(subject_id, variants)
        default_variant_name = str(default_variant_name or "")
        if coerced and default_variant_name not in coerced:
            raise ValidationError(
                f"subject={subject_id} default={default_variant_name!r} not in variants {list(coerced)}"
            )
        return subject_id, coerced, default_variant_name

    def register(
        self,
        subject_id: str,
        variants: VariantsInput | None,
        default_variant_name: str = "",
    ) -> RegistryEntry:
        subject_id, coerced, default_variant_name = self.validate(subject_id, variants, default_variant_name)

        with self._write_lock:
            self._version += 1
            entry = RegistryEntry(
                subject_id=subject_id,
                variants=MappingProxyType(coerced),
                default_variant_name=default_variant_name,
                version=self._version,
                registered_at=self._clock(),
            )
            snapshot = dict(self._entries)
            snapshot[subject_id] = entry
            self._entries = MappingProxyType(snapshot)
            self._notify(subject_id)
        _logger.info(
            "registered subject=%s variants=%d default=%s version=%d",
            subject_id,
            len(coerced),
            default_variant_name,
            entry.version,
        )
        return entry

    def unregister(self, subject_id: str) -> bool:
        subject_id = normalize_subject_id(subject_id)
        with self._write_lock:
            if subject_id not in self._entries:
                return False
            snapshot = dict(self._entries)
            del snapshot[subject_id]
            self._entries = MappingProxyType(snapshot)
            self._notify(subject_id)
        _logger.info("unregistered subject=%s", subject_id)
        return True

    def get(self, subject_id: str) -> RegistryEntry | None:
        return self._entries.get(normalize_subject_id(subject_id))

    def subjects(self) -> list[str]:
        return list(self._entries)

    def __contains__(self, subject_id: object) -> bool:
        return normalize_subject_id(subject_id) in self._entries

    def __len__(self) -> int:
        return len(self._entries)
