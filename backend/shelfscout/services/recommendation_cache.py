"""
Per-user recommendation cache.

The cache only owns the key scheme and the validity rule; the bytes live in
an injected key-value store (process memory or the database).
"""
import logging
import time
from typing import Callable, Dict, Optional, Protocol

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from shelfscout.core.config import settings
from shelfscout.models import CacheEntryRow
from shelfscout.schemas.recommendation import CacheEntry, RecommendationFilters

logger = logging.getLogger(__name__)

KEY_PREFIX = "recommendations:"
REFRESH_AT_TTL_FRACTION = 0.7


def cache_key(user_id: str) -> str:
    return f"{KEY_PREFIX}{user_id}"


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class MemoryKeyValueStore:
    """Process-local store; contents vanish on restart."""

    def __init__(self):
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class DatabaseKeyValueStore:
    """Stores values in the cache_entries table, one short-lived session per call."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get(self, key: str) -> Optional[str]:
        db: Session = self.session_factory()
        try:
            row = db.get(CacheEntryRow, key)
            return row.value if row else None
        finally:
            db.close()

    def set(self, key: str, value: str) -> None:
        db: Session = self.session_factory()
        try:
            row = db.get(CacheEntryRow, key)
            if row is None:
                db.add(CacheEntryRow(key=key, value=value))
            else:
                row.value = value
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

    def delete(self, key: str) -> None:
        db: Session = self.session_factory()
        try:
            db.query(CacheEntryRow).filter(CacheEntryRow.key == key).delete()
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()


class RecommendationCache:
    def __init__(
        self,
        store: KeyValueStore,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.ttl_seconds = settings.RECOMMENDATION_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.clock = clock

    def get(self, user_id: str, filters: Optional[RecommendationFilters] = None) -> Optional[CacheEntry]:
        """Return the cached entry if it is fresh and was built with the same filters."""
        key = cache_key(user_id)
        try:
            raw = self.store.get(key)
        except SQLAlchemyError as e:
            logger.warning("[Cache] Read failed for %s: %s", key, e)
            return None
        if raw is None:
            return None

        try:
            entry = CacheEntry.model_validate_json(raw)
        except ValidationError:
            logger.warning("[Cache] Discarding unreadable entry for %s", key)
            return None

        age = self.clock() - entry.timestamp
        if age >= self.ttl_seconds:
            logger.debug("[Cache] Entry for %s expired (age=%.1fs)", key, age)
            return None
        if not entry.filters.structurally_equal(filters):
            logger.debug("[Cache] Filter mismatch for %s", key)
            return None
        return entry

    def put(self, user_id: str, entry: CacheEntry) -> None:
        self.store.set(cache_key(user_id), entry.model_dump_json())

    def invalidate(self, user_id: str) -> None:
        self.store.delete(cache_key(user_id))

    def age(self, entry: CacheEntry) -> float:
        return max(self.clock() - entry.timestamp, 0.0)

    def is_near_expiry(self, entry: CacheEntry) -> bool:
        """True once the entry is past 70% of its TTL and worth refreshing in the background."""
        return self.age(entry) > self.ttl_seconds * REFRESH_AT_TTL_FRACTION


def build_cache_store(backend: Optional[str] = None, session_factory: Optional[sessionmaker] = None) -> KeyValueStore:
    backend = (backend or settings.CACHE_BACKEND).lower()
    if backend == "database":
        if session_factory is None:
            from shelfscout.database import SessionLocal
            session_factory = SessionLocal
        return DatabaseKeyValueStore(session_factory)
    if backend != "memory":
        logger.warning("[Cache] Unknown CACHE_BACKEND %r, using memory", backend)
    return MemoryKeyValueStore()
