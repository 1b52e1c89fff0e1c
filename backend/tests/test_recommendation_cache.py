"""Recommendation cache over memory and database stores."""
import pytest

from shelfscout.models import CacheEntryRow
from shelfscout.schemas.recommendation import (
    CacheEntry,
    Recommendation,
    RecommendationFilters,
    RecommendationScore,
)
from shelfscout.services.recommendation_cache import (
    DatabaseKeyValueStore,
    MemoryKeyValueStore,
    RecommendationCache,
    build_cache_store,
    cache_key,
)


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


def entry(timestamp, filters=None):
    return CacheEntry(
        recommendations=[
            Recommendation(
                imdb_id="tt0482571",
                title="The Prestige",
                recommendation_type="collection_gap",
                reasoning="You own 3 movie(s) by Christopher Nolan, but missing this one",
                score=RecommendationScore(relevance=0.6, confidence=0.8, urgency=0.5),
            )
        ],
        timestamp=timestamp,
        filters=filters or RecommendationFilters(),
        trigger="user_action",
    )


@pytest.fixture(params=["memory", "database"])
def store(request, session_factory):
    if request.param == "memory":
        return MemoryKeyValueStore()
    return DatabaseKeyValueStore(session_factory)


def test_key_scheme():
    assert cache_key("user-1") == "recommendations:user-1"


def test_round_trip_within_ttl(store):
    clock = FakeClock()
    cache = RecommendationCache(store, ttl_seconds=3600, clock=clock)
    cache.put("u1", entry(clock.now))

    clock.now += 3599
    cached = cache.get("u1")

    assert cached is not None
    assert cached.recommendations[0].imdb_id == "tt0482571"
    assert cached.trigger == "user_action"


def test_expired_entry_is_a_miss(store):
    clock = FakeClock()
    cache = RecommendationCache(store, ttl_seconds=3600, clock=clock)
    cache.put("u1", entry(clock.now))

    clock.now += 3600
    assert cache.get("u1") is None


def test_filters_must_match_structurally(store):
    clock = FakeClock()
    cache = RecommendationCache(store, ttl_seconds=3600, clock=clock)
    cache.put("u1", entry(clock.now, RecommendationFilters(max_results=5, types=["similar_title"])))

    assert cache.get("u1", RecommendationFilters(types=["similar_title"], max_results=5)) is not None
    assert cache.get("u1", RecommendationFilters(max_results=6, types=["similar_title"])) is None
    assert cache.get("u1") is None


def test_unset_filters_match_default_filters(store):
    clock = FakeClock()
    cache = RecommendationCache(store, ttl_seconds=3600, clock=clock)
    cache.put("u1", entry(clock.now))
    assert cache.get("u1", None) is not None
    assert cache.get("u1", RecommendationFilters()) is not None


def test_invalidate(store):
    clock = FakeClock()
    cache = RecommendationCache(store, ttl_seconds=3600, clock=clock)
    cache.put("u1", entry(clock.now))
    cache.put("u2", entry(clock.now))

    cache.invalidate("u1")

    assert cache.get("u1") is None
    assert cache.get("u2") is not None


def test_put_replaces_whole_entry(store):
    clock = FakeClock()
    cache = RecommendationCache(store, ttl_seconds=3600, clock=clock)
    cache.put("u1", entry(clock.now))
    replacement = entry(clock.now)
    replacement.recommendations = []
    cache.put("u1", replacement)

    assert cache.get("u1").recommendations == []


def test_unreadable_payload_is_a_miss():
    store = MemoryKeyValueStore()
    store.set(cache_key("u1"), "{not json")
    assert RecommendationCache(store).get("u1") is None


def test_database_store_writes_rows(db, session_factory):
    store = DatabaseKeyValueStore(session_factory)
    store.set("recommendations:u1", "{}")
    store.set("recommendations:u1", '{"a": 1}')

    rows = db.query(CacheEntryRow).all()
    assert [(r.key, r.value) for r in rows] == [("recommendations:u1", '{"a": 1}')]

    store.delete("recommendations:u1")
    assert store.get("recommendations:u1") is None


def test_build_cache_store(session_factory):
    assert isinstance(build_cache_store("memory"), MemoryKeyValueStore)
    assert isinstance(build_cache_store("database", session_factory), DatabaseKeyValueStore)
    assert isinstance(build_cache_store("redis"), MemoryKeyValueStore)
