from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import asdict, dataclass
from typing import Any

from adaptation.config import EngineSettings, get_engine_settings

from .cache import EvictionObserver, ResolutionCache
from .context import Context, as_context
from .errors import NotFoundError
from .models import RegistryEntry, SelectionResult
from .registry import Registry, VariantsInput, normalize_subject_id
from .selector import explain as explain_selection
from .selector import select

_logger = logging.getLogger("resolution.engine")

TIMING_WINDOW = 100


@dataclass(frozen=True)
class EngineMetrics:
    hits: int
    misses: int
    evictions: int
    registered_subjects: int
    cache_size: int
    expirations: int = 0
    invalidations: int = 0
    hit_rate: float = 0.0
    avg_resolve_ms: float = 0.0
    observer_drops: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ResolutionEngine:
    """
    Registration, lookup and invalidation over one Registry and one ResolutionCache.

    Construct one per process (or per tenant) and pass it to callers; there is no
    module-level instance.
    """

    def __init__(
        self,
        settings: EngineSettings | None = None,
        *,
        registry: Registry | None = None,
        cache: ResolutionCache | None = None,
        observer: EvictionObserver | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.settings = settings or get_engine_settings()
        self.registry = registry or Registry()
        if cache is None:
            kwargs: dict[str, Any] = {"fingerprint": self.settings.fingerprint, "observer": observer}
            if clock is not None:
                kwargs["clock"] = clock
            cache = ResolutionCache(self.settings.cache_capacity, self.settings.cache_ttl_sec, **kwargs)
        self.cache = cache
        self.registry.add_listener(self.cache.invalidate)
        self._timings: deque[float] = deque(maxlen=TIMING_WINDOW)
        self._timings_lock = threading.Lock()

    def _context(self, context: Context | Mapping[str, Any] | None) -> Context:
        return as_context(context, superuser_roles=self.settings.superuser_roles)

    def register_subject(
        self,
        subject_id: str,
        variants: VariantsInput | None,
        default_variant_name: str = "",
    ) -> RegistryEntry:
        return self.registry.register(subject_id, variants, default_variant_name)

    def register_many(self, definitions: Mapping[str, Mapping[str, Any]]) -> list[RegistryEntry]:
        """
        Register several subjects given as `{id: {"default": name, "variants": {...}}}`.

        Every definition is validated before the first one is installed.
        """
        prepared = [
            Registry.validate(subject_id, d.get("variants"), str(d.get("default", "") or ""))
            for subject_id, d in definitions.items()
        ]
        return [self.registry.register(sid, variants, default) for sid, variants, default in prepared]

    def unregister(self, subject_id: str) -> bool:
        return self.registry.unregister(subject_id)

    def get_subject(self, subject_id: str) -> RegistryEntry | None:
        return self.registry.get(subject_id)

    def invalidate_cache(self, subject_id: str) -> int:
        return self.cache.invalidate(normalize_subject_id(subject_id))

    def clear_cache(self) -> int:
        return self.cache.clear()

    def _entry(self, subject_id: str) -> RegistryEntry:
        entry = self.registry.get(subject_id)
        if entry is None:
            raise NotFoundError(f"subject={subject_id}")
        return entry

    def resolve(self, subject_id: str, context: Context | Mapping[str, Any] | None = None) -> SelectionResult:
        started = time.perf_counter()
        subject_id = normalize_subject_id(subject_id)
        ctx = self._context(context)
        try:
            # Read the generation before the registry so a concurrent mutation can't be cached.
            generation: int | None = self.cache.generation(subject_id)
        except Exception:
            _logger.exception("cache generation lookup failed for subject=%s", subject_id)
            generation = None
        entry = self._entry(subject_id)

        def compute() -> SelectionResult:
            return select(
                entry.variants,
                ctx,
                default_variant_name=entry.default_variant_name,
                subject_id=entry.subject_id,
                strict=self.settings.strict,
            )

        result = self.cache.resolve(entry, ctx, compute, generation=generation)
        with self._timings_lock:
            self._timings.append((time.perf_counter() - started) * 1000.0)
        return result

    def explain(self, subject_id: str, context: Context | Mapping[str, Any] | None = None) -> dict[str, Any]:
        entry = self._entry(subject_id)
        ctx = self._context(context)
        out = explain_selection(
            entry.variants,
            ctx,
            default_variant_name=entry.default_variant_name,
            subject_id=entry.subject_id,
        )
        out["version"] = entry.version
        out["cache_key"] = repr(self.cache.key_for(entry, ctx))
        return out

    def metrics(self) -> EngineMetrics:
        stats = self.cache.stats()
        lookups = stats.hits + stats.misses
        with self._timings_lock:
            timings = list(self._timings)
        return EngineMetrics(
            hits=stats.hits,
            misses=stats.misses,
            evictions=stats.evictions,
            registered_subjects=len(self.registry),
            cache_size=stats.size,
            expirations=stats.expirations,
            invalidations=stats.invalidations,
            hit_rate=(stats.hits / lookups) if lookups else 0.0,
            avg_resolve_ms=(sum(timings) / len(timings)) if timings else 0.0,
            observer_drops=stats.observer_drops,
        )

    def close(self) -> None:
        self.cache.close()
