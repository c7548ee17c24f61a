from __future__ import annotations

import threading
import unittest

from adaptation.resolution.cache import ResolutionCache
from adaptation.resolution.context import Context
from adaptation.resolution.models import RegistryEntry, SelectionResult, Variant
from adaptation.resolution.predicates import Predicate
from adaptation.resolution.registry import Registry
from adaptation.resolution.selector import select


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _entry(subject_id: str = "card") -> RegistryEntry:
    return Registry().register(
        subject_id,
        [
            Variant("minimal", Predicate.from_trigger({"width": {"max": 200}}), "m"),
            Variant("standard", Predicate.from_trigger({"width": {"min": 200, "max": 400}}), "s"),
        ],
        "minimal",
    )


def _compute(entry: RegistryEntry, ctx: Context, calls: list[int] | None = None):
    def run() -> SelectionResult:
        if calls is not None:
            calls.append(1)
        return select(entry.variants, ctx, default_variant_name=entry.default_variant_name, subject_id=entry.subject_id)

    return run


class ResolutionCacheTests(unittest.TestCase):
    def test_second_lookup_is_a_hit(self) -> None:
        cache = ResolutionCache(10, None)
        entry = _entry()
        ctx = Context(width=150)
        calls: list[int] = []
        first = cache.resolve(entry, ctx, _compute(entry, ctx, calls))
        second = cache.resolve(entry, ctx, _compute(entry, ctx, calls))
        self.assertFalse(first.from_cache)
        self.assertTrue(second.from_cache)
        self.assertEqual(first.variant_name, second.variant_name)
        self.assertEqual(first.matched_predicate, second.matched_predicate)
        self.assertEqual(len(calls), 1)
        stats = cache.stats()
        self.assertEqual((stats.hits, stats.misses, stats.size), (1, 1, 1))

    def test_irrelevant_fields_share_a_key(self) -> None:
        cache = ResolutionCache(10, None)
        entry = _entry()
        a = cache.key_for(entry, Context(width=150, theme="dark"))
        b = cache.key_for(entry, Context(width=150, theme="light", purpose="x"))
        c = cache.key_for(entry, Context(width=151))
        self.assertEqual(a, b)
        self.assertNotEqual(a, c)

    def test_capacity_is_never_exceeded(self) -> None:
        evicted: list[tuple[object, str]] = []
        cache = ResolutionCache(3, None, observer=lambda k, v, reason: evicted.append((k, reason)))
        entry = _entry()
        for width in range(10):
            ctx = Context(width=width)
            cache.resolve(entry, ctx, _compute(entry, ctx))
            self.assertLessEqual(cache.size(), 3)
        cache.drain_observer()
        self.assertEqual(cache.stats().evictions, 7)
        self.assertEqual([r for _, r in evicted], ["capacity"] * 7)

    def test_lru_order_respects_reads(self) -> None:
        cache = ResolutionCache(2, None)
        entry = _entry()
        c0, c1, c2 = Context(width=0), Context(width=1), Context(width=2)
        cache.resolve(entry, c0, _compute(entry, c0))
        cache.resolve(entry, c1, _compute(entry, c1))
        cache.resolve(entry, c0, _compute(entry, c0))  # touch c0
        cache.resolve(entry, c2, _compute(entry, c2))  # evicts c1
        self.assertIsNotNone(cache.get(cache.key_for(entry, c0)))
        self.assertIsNone(cache.get(cache.key_for(entry, c1)))

    def test_ttl_expiry(self) -> None:
        clock = _Clock()
        reasons: list[str] = []
        cache = ResolutionCache(10, 30, clock=clock, observer=lambda k, v, r: reasons.append(r))
        entry = _entry()
        ctx = Context(width=150)
        cache.resolve(entry, ctx, _compute(entry, ctx))
        clock.now += 29
        self.assertTrue(cache.resolve(entry, ctx, _compute(entry, ctx)).from_cache)
        clock.now += 1
        self.assertFalse(cache.resolve(entry, ctx, _compute(entry, ctx)).from_cache)
        clock.now += 31
        self.assertEqual(cache.size(), 0)
        cache.drain_observer()
        self.assertEqual(reasons, ["expired", "expired"])
        self.assertEqual(cache.stats().expirations, 2)

    def test_invalidate_purges_only_that_subject(self) -> None:
        cache = ResolutionCache(10, None)
        card, panel = _entry("card"), _entry("panel")
        ctx = Context(width=150)
        cache.resolve(card, ctx, _compute(card, ctx))
        cache.resolve(panel, ctx, _compute(panel, ctx))
        self.assertEqual(cache.invalidate("card"), 1)
        self.assertEqual(cache.invalidate("card"), 0)
        self.assertFalse(cache.resolve(card, ctx, _compute(card, ctx)).from_cache)
        self.assertTrue(cache.resolve(panel, ctx, _compute(panel, ctx)).from_cache)

    def test_stale_generation_is_not_stored(self) -> None:
        cache = ResolutionCache(10, None)
        entry = _entry()
        ctx = Context(width=150)
        generation = cache.generation("card")
        cache.invalidate("card")
        result = cache.resolve(entry, ctx, _compute(entry, ctx), generation=generation)
        self.assertFalse(result.from_cache)
        self.assertEqual(cache.size(), 0)

    def test_zero_capacity_disables_storage(self) -> None:
        cache = ResolutionCache(0, None)
        entry = _entry()
        ctx = Context(width=150)
        cache.resolve(entry, ctx, _compute(entry, ctx))
        self.assertFalse(cache.resolve(entry, ctx, _compute(entry, ctx)).from_cache)
        self.assertEqual(cache.size(), 0)

    def test_fingerprint_failure_bypasses_cache(self) -> None:
        def broken(entry: RegistryEntry, ctx: Context) -> tuple:
            raise RuntimeError("fingerprint down")

        cache = ResolutionCache(10, None, fingerprint=broken)
        entry = _entry()
        ctx = Context(width=300)
        with self.assertLogs("resolution.cache", level="ERROR"):
            result = cache.resolve(entry, ctx, _compute(entry, ctx))
        self.assertEqual(result.variant_name, "standard")
        self.assertEqual(cache.stats().bypasses, 1)

    def test_observer_failure_does_not_reach_caller(self) -> None:
        def observer(key: object, value: SelectionResult, reason: str) -> None:
            raise RuntimeError("metrics sink down")

        cache = ResolutionCache(1, None, observer=observer)
        entry = _entry()
        with self.assertLogs("resolution.cache", level="ERROR"):
            for width in (1, 2, 3):
                ctx = Context(width=width)
                cache.resolve(entry, ctx, _compute(entry, ctx))
            cache.drain_observer()
        self.assertEqual(cache.size(), 1)

    def test_slow_observer_does_not_block_caller(self) -> None:
        release = threading.Event()
        cache = ResolutionCache(1, None, observer=lambda k, v, r: release.wait(5))
        entry = _entry()
        for width in (1, 2, 3, 4):
            ctx = Context(width=width)
            cache.resolve(entry, ctx, _compute(entry, ctx))
        self.assertEqual(cache.stats().evictions, 3)
        release.set()
        cache.drain_observer()

    def test_full_observer_queue_drops_and_counts(self) -> None:
        started = threading.Event()
        release = threading.Event()
        seen: list[str] = []

        def observer(key: object, value: SelectionResult, reason: str) -> None:
            seen.append(reason)
            started.set()
            release.wait(5)

        cache = ResolutionCache(1, None, observer=observer, observer_queue_size=1)
        entry = _entry()

        def fill(width: int) -> None:
            ctx = Context(width=width)
            cache.resolve(entry, ctx, _compute(entry, ctx))

        fill(1)
        fill(2)  # first eviction; the observer thread picks it up and blocks
        self.assertTrue(started.wait(5))
        fill(3)  # second eviction waits in the queue
        with self.assertLogs("resolution.cache", level="WARNING"):
            fill(4)  # third eviction finds the queue full
        self.assertEqual(cache.stats().observer_drops, 1)
        release.set()
        cache.drain_observer()
        self.assertEqual(seen, ["capacity", "capacity"])
        cache.close()

    def test_close_stops_observer_thread(self) -> None:
        reasons: list[str] = []
        cache = ResolutionCache(1, None, observer=lambda k, v, r: reasons.append(r))
        dispatcher = cache._dispatcher
        self.assertTrue(dispatcher.alive)
        entry = _entry()
        for width in (1, 2):
            ctx = Context(width=width)
            cache.resolve(entry, ctx, _compute(entry, ctx))
        cache.drain_observer()
        cache.close()
        self.assertFalse(dispatcher.alive)
        self.assertEqual(reasons, ["capacity"])

        ctx = Context(width=3)
        cache.resolve(entry, ctx, _compute(entry, ctx))
        self.assertEqual(cache.stats().observer_drops, 1)
        cache.close()

    def test_cache_without_observer_closes_cleanly(self) -> None:
        cache = ResolutionCache(1, None)
        cache.close()
        self.assertEqual(cache.stats().observer_drops, 0)

    def test_clear(self) -> None:
        cache = ResolutionCache(10, None)
        entry = _entry()
        ctx = Context(width=150)
        generation = cache.generation("card")
        cache.resolve(entry, ctx, _compute(entry, ctx))
        self.assertEqual(cache.clear(), 1)
        self.assertEqual(cache.size(), 0)
        self.assertNotEqual(cache.generation("card"), generation)


if __name__ == "__main__":
    unittest.main()
