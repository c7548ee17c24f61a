from __future__ import annotations

import logging
import queue
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .context import Context
from .fingerprint import DEFAULT_STRATEGY, Fingerprint, FingerprintFn, get_strategy
from .models import RegistryEntry, SelectionResult

_logger = logging.getLogger("resolution.cache")

EvictionObserver = Callable[[Any, SelectionResult, str], None]

REASON_CAPACITY = "capacity"
REASON_EXPIRED = "expired"
REASON_INVALIDATED = "invalidated"
REASON_CLEARED = "cleared"

DEFAULT_OBSERVER_QUEUE = 1024
_STOP = object()


@dataclass(frozen=True)
class CacheEntry:
    key: Any
    subject_id: str
    value: SelectionResult
    inserted_at: float


@dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    evictions: int
    expirations: int
    invalidations: int
    bypasses: int
    size: int
    capacity: int
    observer_drops: int = 0


class EvictionDispatcher:
    """
    Delivers observer callbacks on a background thread so cache callers never wait on them.

    The queue is bounded; events that arrive while it is full (or after close())
    are dropped and counted by the caller.
    """

    def __init__(self, observer: EvictionObserver, maxsize: int = DEFAULT_OBSERVER_QUEUE) -> None:
        self._observer = observer
        self._queue: queue.Queue[Any] = queue.Queue(maxsize=max(1, int(maxsize)))
        self._closed = False
        self._thread = threading.Thread(target=self._run, name="resolution-cache-observer", daemon=True)
        self._thread.start()

    @property
    def alive(self) -> bool:
        return self._thread.is_alive()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                key, value, reason = item
                try:
                    self._observer(key, value, reason)
                except Exception:
                    _logger.exception("cache observer failed reason=%s", reason)
            finally:
                self._queue.task_done()

    def submit(self, events: list[tuple[Any, SelectionResult, str]]) -> int:
        """Queue events; returns how many were dropped."""
        if self._closed:
            return len(events)
        dropped = 0
        for ev in events:
            try:
                self._queue.put_nowait(ev)
            except queue.Full:
                dropped += 1
        if dropped:
            _logger.warning("cache observer queue full; dropped %d event(s)", dropped)
        return dropped

    def drain(self) -> None:
        self._queue.join()

    def close(self, timeout: float | None = 5.0) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put(_STOP, timeout=timeout)
        except queue.Full:
            _logger.warning("cache observer queue still full at close; thread left running")
            return
        self._thread.join(timeout)


class ResolutionCache:
    """
    Bounded LRU of selection results with an absolute per-entry TTL.

    Keys are `(registry entry version,) + fingerprint`. Invalidation of a subject
    purges its keys and bumps the subject's generation; a result computed under an
    older generation is returned to its caller but never stored.
    """

    def __init__(
        self,
        capacity: int = 1000,
        ttl_seconds: float | None = 300.0,
        *,
        fingerprint: str | FingerprintFn = DEFAULT_STRATEGY,
        observer: EvictionObserver | None = None,
        observer_queue_size: int = DEFAULT_OBSERVER_QUEUE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.capacity = max(0, int(capacity))
        self.ttl_seconds = float(ttl_seconds) if ttl_seconds and ttl_seconds > 0 else None
        self._fingerprint = get_strategy(fingerprint) if isinstance(fingerprint, str) else fingerprint
        self.fingerprint_name = fingerprint if isinstance(fingerprint, str) else getattr(fingerprint, "__name__", "custom")
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: OrderedDict[Any, CacheEntry] = OrderedDict()
        self._by_subject: dict[str, set[Any]] = {}
        self._generations: dict[str, int] = {}
        self._dispatcher = (
            EvictionDispatcher(observer, observer_queue_size) if observer is not None else None
        )
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0
        self._invalidations = 0
        self._bypasses = 0
        self._observer_drops = 0

    # -- internals (caller holds _lock) -------------------------------------------------

    def _drop(self, key: Any, reason: str, events: list[tuple[Any, SelectionResult, str]]) -> None:
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        keys = self._by_subject.get(entry.subject_id)
        if keys is not None:
            keys.discard(key)
            if not keys:
                del self._by_subject[entry.subject_id]
        if reason == REASON_CAPACITY:
            self._evictions += 1
        elif reason == REASON_EXPIRED:
            self._expirations += 1
        elif reason == REASON_INVALIDATED:
            self._invalidations += 1
        events.append((key, entry.value, reason))

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return self.ttl_seconds is not None and now - entry.inserted_at >= self.ttl_seconds

    def _emit(self, events: list[tuple[Any, SelectionResult, str]]) -> None:
        # Called without _lock held.
        if not events or self._dispatcher is None:
            return
        dropped = self._dispatcher.submit(events)
        if dropped:
            with self._lock:
                self._observer_drops += dropped

    # -- public -------------------------------------------------------------------------

    def key_for(self, entry: RegistryEntry, context: Context) -> Any:
        fp: Fingerprint = self._fingerprint(entry, context)
        return (entry.version,) + tuple(fp)

    def generation(self, subject_id: str) -> int:
        with self._lock:
            return self._generations.get(subject_id, 0)

    def get(self, key: Any) -> SelectionResult | None:
        events: list[tuple[Any, SelectionResult, str]] = []
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._is_expired(entry, self._clock()):
                self._drop(key, REASON_EXPIRED, events)
                entry = None
            if entry is None:
                self._misses += 1
            else:
                self._entries.move_to_end(key)
                self._hits += 1
        self._emit(events)
        return entry.value if entry is not None else None

    def put(self, key: Any, subject_id: str, value: SelectionResult, *, generation: int | None = None) -> bool:
        if self.capacity == 0:
            return False
        events: list[tuple[Any, SelectionResult, str]] = []
        with self._lock:
            if generation is not None and self._generations.get(subject_id, 0) != generation:
                return False
            if key in self._entries:
                self._drop(key, REASON_CLEARED, [])
            self._entries[key] = CacheEntry(key, subject_id, value, self._clock())
            self._by_subject.setdefault(subject_id, set()).add(key)
            while len(self._entries) > self.capacity:
                oldest = next(iter(self._entries))
                self._drop(oldest, REASON_CAPACITY, events)
        self._emit(events)
        return True

    def resolve(
        self,
        entry: RegistryEntry,
        context: Context,
        compute: Callable[[], SelectionResult],
        *,
        generation: int | None = None,
    ) -> SelectionResult:
        try:
            if generation is None:
                generation = self.generation(entry.subject_id)
            key = self.key_for(entry, context)
            hit = self.get(key)
        except Exception:
            _logger.exception("cache lookup failed for subject=%s; computing directly", entry.subject_id)
            with self._lock:
                self._bypasses += 1
            return compute()

        if hit is not None:
            return hit.cached()

        result = compute()
        try:
            self.put(key, entry.subject_id, result, generation=generation)
        except Exception:
            _logger.exception("cache store failed for subject=%s", entry.subject_id)
            with self._lock:
                self._bypasses += 1
        return result

    def invalidate(self, subject_id: str) -> int:
        events: list[tuple[Any, SelectionResult, str]] = []
        with self._lock:
            self._generations[subject_id] = self._generations.get(subject_id, 0) + 1
            for key in list(self._by_subject.get(subject_id, ())):
                self._drop(key, REASON_INVALIDATED, events)
        self._emit(events)
        if events:
            _logger.debug("invalidated subject=%s entries=%d", subject_id, len(events))
        return len(events)

    def purge_expired(self) -> int:
        events: list[tuple[Any, SelectionResult, str]] = []
        with self._lock:
            now = self._clock()
            for key, entry in list(self._entries.items()):
                if self._is_expired(entry, now):
                    self._drop(key, REASON_EXPIRED, events)
        self._emit(events)
        return len(events)

    def clear(self) -> int:
        events: list[tuple[Any, SelectionResult, str]] = []
        with self._lock:
            for subject_id in list(self._by_subject):
                self._generations[subject_id] = self._generations.get(subject_id, 0) + 1
            for key in list(self._entries):
                self._drop(key, REASON_CLEARED, events)
        self._emit(events)
        return len(events)

    def size(self) -> int:
        self.purge_expired()
        with self._lock:
            return len(self._entries)

    def __len__(self) -> int:
        return self.size()

    def stats(self) -> CacheStats:
        size = self.size()
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                expirations=self._expirations,
                invalidations=self._invalidations,
                bypasses=self._bypasses,
                size=size,
                capacity=self.capacity,
                observer_drops=self._observer_drops,
            )

    def drain_observer(self) -> None:
        """Block until queued observer callbacks have run (tests, shutdown)."""
        if self._dispatcher is not None:
            self._dispatcher.drain()

    def close(self) -> None:
        """Stop the observer thread. Later evictions are counted as observer drops."""
        if self._dispatcher is not None:
            self._dispatcher.close()
