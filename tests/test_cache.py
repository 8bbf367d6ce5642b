"""
Unit tests for the keyed TTL cache.

Covers freshness windows, request coalescing, failure handling and durable
hydration through the SQLite-backed store.
"""
import asyncio
import json

import pytest

from reportcard.cache import (
    ResourceCache,
    ResourceFamily,
    RequestCoalescer,
    UnavailableDurableStore,
    get_storage_prefix,
)
from reportcard.errors import StoreError, StoreErrorKind


def make_cache(clock, family=ResourceFamily.RATINGS, durable=None, ttl_seconds=None):
    return ResourceCache(family, ttl_seconds=ttl_seconds, durable=durable, clock=clock)


# =============================================================================
# Freshness
# =============================================================================

class TestFreshness:
    """Entries are served while age <= window, then treated as a miss."""

    def test_fresh_within_window(self, clock):
        cache = make_cache(clock, ttl_seconds=300)
        cache.set("venue-1", ["a"])

        clock.advance(299)
        assert cache.get("venue-1") == ["a"]

    def test_stale_after_window(self, clock):
        cache = make_cache(clock, ttl_seconds=300)
        cache.set("venue-1", ["a"])

        clock.advance(301)
        assert cache.get("venue-1") is None

    def test_exact_window_is_still_fresh(self, clock):
        cache = make_cache(clock, ttl_seconds=120)
        cache.set("venue-1", ["a"])

        clock.advance(120)
        assert cache.get("venue-1") == ["a"]

    def test_family_default_windows(self, clock):
        assert make_cache(clock, ResourceFamily.VENUES).ttl_seconds == 300
        assert make_cache(clock, ResourceFamily.RATINGS).ttl_seconds == 120
        assert make_cache(clock, ResourceFamily.PROFILE).ttl_seconds == 300

    def test_peek_returns_stale_value(self, clock):
        cache = make_cache(clock, ttl_seconds=10)
        cache.set("venue-1", ["a"])
        clock.advance(60)

        assert cache.get("venue-1") is None
        assert cache.peek("venue-1") == ["a"]

    def test_stale_entry_triggers_refetch(self, clock):
        cache = make_cache(clock, ttl_seconds=10)
        calls = []

        async def fetch():
            calls.append(1)
            return [len(calls)]

        async def run():
            first = await cache.get_or_fetch("venue-1", fetch)
            again = await cache.get_or_fetch("venue-1", fetch)
            clock.advance(11)
            refreshed = await cache.get_or_fetch("venue-1", fetch)
            return first, again, refreshed

        first, again, refreshed = asyncio.run(run())
        assert first == [1]
        assert again == [1]
        assert refreshed == [2]
        assert len(calls) == 2

    def test_set_none_removes_entry(self, clock):
        cache = make_cache(clock)
        cache.set("venue-1", ["a"])
        cache.set("venue-1", None)
        assert cache.peek("venue-1") is None


# =============================================================================
# Coalescing
# =============================================================================

class TestCoalescing:
    """At most one in-flight fetch per key."""

    def test_concurrent_callers_share_one_fetch(self, clock):
        cache = make_cache(clock)
        calls = []

        async def fetch():
            calls.append(1)
            await asyncio.sleep(0.01)
            return {"reviews": ["shared"]}

        async def run():
            return await asyncio.gather(*[cache.get_or_fetch("venue-1", fetch) for _ in range(10)])

        results = asyncio.run(run())
        assert len(calls) == 1
        assert all(r is results[0] for r in results)
        assert cache.get_stats()["coalesced"] == 9
        assert cache.get_stats()["coalescer"]["started"] == 1
        assert cache.get_stats()["fetches"] == 1

    def test_different_keys_fetch_independently(self, clock):
        cache = make_cache(clock)
        calls = []

        def fetch_for(key):
            async def fetch():
                calls.append(key)
                await asyncio.sleep(0.01)
                return [key]
            return fetch

        async def run():
            keys = ["a", "b", "a", "b"]
            return await asyncio.gather(*[cache.get_or_fetch(k, fetch_for(k)) for k in keys])

        results = asyncio.run(run())
        assert sorted(calls) == ["a", "b"]
        assert results == [["a"], ["b"], ["a"], ["b"]]

    def test_pending_slot_clears_after_success(self, clock):
        cache = make_cache(clock)

        async def fetch():
            await asyncio.sleep(0)
            return ["ok"]

        async def run():
            task = cache.set_pending_fetch("venue-1", fetch())
            assert cache.get_pending_fetch("venue-1") is task
            await task
            await asyncio.sleep(0)
            return cache.get_pending_fetch("venue-1")

        assert asyncio.run(run()) is None

    def test_failure_clears_pending_and_next_call_retries(self, clock):
        cache = make_cache(clock)
        calls = []

        async def failing():
            calls.append("fail")
            await asyncio.sleep(0.01)
            raise StoreError(StoreErrorKind.NETWORK, "offline")

        async def working():
            calls.append("ok")
            return ["back"]

        async def run():
            results = await asyncio.gather(
                *[cache.get_or_fetch("venue-1", failing) for _ in range(3)],
                return_exceptions=True,
            )
            assert cache.get_pending_fetch("venue-1") is None
            retried = await cache.get_or_fetch("venue-1", working)
            return results, retried

        results, retried = asyncio.run(run())
        assert all(isinstance(r, StoreError) for r in results)
        assert calls == ["fail", "ok"]
        assert retried == ["back"]

    def test_failed_refresh_keeps_last_good_value(self, clock):
        cache = make_cache(clock, ttl_seconds=10)
        cache.set("venue-1", ["good"])
        clock.advance(30)

        async def failing():
            raise StoreError(StoreErrorKind.TIMEOUT, "slow")

        with pytest.raises(StoreError):
            asyncio.run(cache.get_or_fetch("venue-1", failing))
        assert cache.peek("venue-1") == ["good"]

    def test_force_refresh_joins_in_flight_fetch(self, clock):
        cache = make_cache(clock)
        calls = []

        async def fetch():
            calls.append(1)
            await asyncio.sleep(0.01)
            return ["v"]

        async def run():
            return await asyncio.gather(
                cache.get_or_fetch("venue-1", fetch),
                cache.get_or_fetch("venue-1", fetch, force_refresh=True),
            )

        asyncio.run(run())
        assert len(calls) == 1

    def test_cancelled_waiter_does_not_cancel_shared_fetch(self, clock):
        cache = make_cache(clock)

        async def fetch():
            await asyncio.sleep(0.02)
            return ["done"]

        async def run():
            impatient = asyncio.ensure_future(cache.get_or_fetch("venue-1", fetch))
            patient = asyncio.ensure_future(cache.get_or_fetch("venue-1", fetch))
            await asyncio.sleep(0.005)
            impatient.cancel()
            return await patient

        assert asyncio.run(run()) == ["done"]

    def test_invalidate_keeps_in_flight_fetch(self, clock):
        cache = make_cache(clock)

        async def fetch():
            await asyncio.sleep(0.01)
            return ["v"]

        async def run():
            task = asyncio.ensure_future(cache.get_or_fetch("venue-1", fetch))
            await asyncio.sleep(0)
            cache.invalidate("venue-1")
            pending = cache.get_pending_fetch("venue-1")
            await task
            return pending

        assert asyncio.run(run()) is not None


class TestRequestCoalescer:
    def test_get_or_fetch_shares_result(self):
        coalescer = RequestCoalescer()
        calls = []

        async def fetch():
            calls.append(1)
            await asyncio.sleep(0.01)
            return 42

        async def run():
            return await asyncio.gather(*[coalescer.get_or_fetch("k", fetch) for _ in range(5)])

        assert asyncio.run(run()) == [42] * 5
        assert len(calls) == 1
        stats = coalescer.get_stats()
        assert stats["started"] == 1
        assert stats["coalesced"] == 4
        assert stats["active_requests"] == 0


# =============================================================================
# Durable hydration
# =============================================================================

class TestDurableHydration:
    def test_fresh_durable_entry_is_promoted(self, clock, durable):
        writer = make_cache(clock, ResourceFamily.VENUES, durable=durable)
        writer.set("all", [{"id": "venue-1"}])

        reader = make_cache(clock, ResourceFamily.VENUES, durable=durable)
        assert reader.get("all") == [{"id": "venue-1"}]
        assert reader.peek("all") == [{"id": "venue-1"}]
        assert reader.get_stats()["hits_durable"] == 1

    def test_stale_durable_entry_is_a_miss(self, clock, durable):
        writer = make_cache(clock, ResourceFamily.VENUES, durable=durable)
        writer.set("all", [{"id": "venue-1"}])
        clock.advance(301)

        reader = make_cache(clock, ResourceFamily.VENUES, durable=durable)
        assert reader.get("all") is None

    def test_corrupt_payload_is_a_miss_and_removed(self, clock, durable):
        key = f"{get_storage_prefix(ResourceFamily.VENUES)}_all"
        durable.set(key, "{not json")

        cache = make_cache(clock, ResourceFamily.VENUES, durable=durable)
        assert cache.get("all") is None
        assert durable.get(key).value is None

    def test_payload_missing_fields_is_a_miss(self, clock, durable):
        key = f"{get_storage_prefix(ResourceFamily.PROFILE)}_user-1"
        durable.set(key, json.dumps({"value": {"id": "user-1"}}))

        cache = make_cache(clock, ResourceFamily.PROFILE, durable=durable)
        assert cache.get("user-1") is None

    def test_unavailable_store_degrades_to_memory(self, clock):
        cache = make_cache(clock, ResourceFamily.VENUES, durable=UnavailableDurableStore())
        cache.set("all", ["a"])
        assert cache.get("all") == ["a"]
        cache.invalidate("all")
        assert cache.get("all") is None

    def test_quota_failure_is_not_fatal(self, clock, tmp_path):
        from reportcard.cache import SQLAlchemyDurableStore

        tiny = SQLAlchemyDurableStore(path=tmp_path / "tiny.db", max_value_bytes=8)
        cache = make_cache(clock, ResourceFamily.VENUES, durable=tiny)
        cache.set("all", ["a much longer value than eight bytes"])
        assert cache.get("all") == ["a much longer value than eight bytes"]

    def test_ratings_are_memory_only(self, clock, durable):
        cache = make_cache(clock, ResourceFamily.RATINGS, durable=durable)
        cache.set("venue-1", ["r"])
        key = f"{get_storage_prefix(ResourceFamily.RATINGS)}_venue-1"
        assert durable.get(key).value is None

    def test_invalidate_removes_durable_copy(self, clock, durable):
        cache = make_cache(clock, ResourceFamily.PROFILE, durable=durable)
        cache.set("user-1", {"id": "user-1"})
        cache.invalidate("user-1")

        other = make_cache(clock, ResourceFamily.PROFILE, durable=durable)
        assert other.get("user-1") is None

    def test_clear_only_touches_own_family(self, clock, durable):
        venues = make_cache(clock, ResourceFamily.VENUES, durable=durable)
        profiles = make_cache(clock, ResourceFamily.PROFILE, durable=durable)
        venues.set("all", ["v"])
        profiles.set("user-1", {"id": "user-1"})

        venues.clear()

        assert make_cache(clock, ResourceFamily.VENUES, durable=durable).get("all") is None
        assert make_cache(clock, ResourceFamily.PROFILE, durable=durable).get("user-1") == {"id": "user-1"}

    def test_reset_clears_entries_and_stats(self, clock):
        cache = make_cache(clock)
        cache.set("venue-1", ["a"])
        cache.get("venue-1")

        async def fetch():
            await asyncio.sleep(0)
            return ["b"]

        async def run():
            await asyncio.gather(*[cache.get_or_fetch("venue-2", fetch) for _ in range(3)])

        asyncio.run(run())
        cache.reset()

        stats = cache.get_stats()
        assert cache.peek("venue-1") is None
        assert stats["hits_memory"] == 0
        assert stats["coalesced"] == 0
        assert stats["coalescer"]["started"] == 0
