"""
Per-user recommendation state and the cache-aware generation path.

Every generation takes a request id from a per-user monotonic counter. Only
the newest request may commit (cache write and visible state). An older one
that finishes late drops its results and answers with the committed set,
so a slow response never replaces a newer one on screen.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from shelfscout.core.config import settings
from shelfscout.schemas.collection import CollectionItem
from shelfscout.schemas.recommendation import (
    CacheEntry,
    Recommendation,
    RecommendationFilters,
    RecommendationStats,
    UserProfile,
)
from shelfscout.services.action_tracker import ActionTracker, ActivitySessions
from shelfscout.services.recommendation_cache import RecommendationCache
from shelfscout.services.recommendation_engine import RecommendationEngine, recommendation_stats
from shelfscout.utils.timing import now_ms

logger = logging.getLogger(__name__)

GENERATION_FAILED = "Failed to generate recommendations"


def not_enough_items_message(needed: int) -> str:
    return f"Add {needed} more movies to get recommendations!"


@dataclass
class UserRecommendationState:
    request_counter: int = 0
    recommendations: List[Recommendation] = field(default_factory=list)
    filters: Optional[RecommendationFilters] = None
    collection: List[CollectionItem] = field(default_factory=list)
    profile: Optional[UserProfile] = None
    error: Optional[str] = None
    message: Optional[str] = None
    last_generated: Optional[float] = None  # epoch seconds of the committed set
    session_id: Optional[str] = None


@dataclass
class GenerationResult:
    recommendations: List[Recommendation]
    session_id: Optional[str] = None
    cache_hit: bool = False
    committed: bool = True
    error: Optional[str] = None
    message: Optional[str] = None
    profile: Optional[UserProfile] = None
    generation_time_ms: Optional[float] = None
    refresh_due: bool = False  # cache hit past 70% of its TTL


class RecommendationService:
    def __init__(
        self,
        engine: RecommendationEngine,
        cache: RecommendationCache,
        sessions: Optional[ActivitySessions] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.engine = engine
        self.cache = cache
        self.sessions = sessions or ActivitySessions(clock=clock)
        self.clock = clock
        self._states: Dict[str, UserRecommendationState] = {}

    def state(self, user_id: str) -> UserRecommendationState:
        if user_id not in self._states:
            self._states[user_id] = UserRecommendationState()
        return self._states[user_id]

    def _begin_request(self, user_id: str) -> int:
        state = self.state(user_id)
        state.request_counter += 1
        return state.request_counter

    def _is_latest(self, user_id: str, request_id: int) -> bool:
        return self.state(user_id).request_counter == request_id

    async def generate_recommendations(
        self,
        user_id: str,
        collection: Sequence[CollectionItem],
        filters: Optional[RecommendationFilters] = None,
        force_refresh: bool = False,
        tracker: Optional[ActionTracker] = None,
    ) -> GenerationResult:
        request_id = self._begin_request(user_id)
        state = self.state(user_id)

        if len(collection) < self.engine.min_collection_size:
            message = not_enough_items_message(self.engine.min_collection_size - len(collection))
            if self._is_latest(user_id, request_id):
                state.recommendations = []
                state.collection = list(collection)
                state.filters = filters
                state.profile = None
                state.error = None
                state.message = message
            return GenerationResult(recommendations=[], message=message)

        if not force_refresh:
            entry = self.cache.get(user_id, filters)
            if entry is not None:
                logger.info(f"[SmartRecommendations] Using cached recommendations for user_id={user_id}")
                session_id = None
                if self._is_latest(user_id, request_id):
                    self._commit_state(user_id, entry.recommendations, entry.user_profile, collection, filters, entry.timestamp)
                    session_id = self.sessions.start(user_id)
                    state.session_id = session_id
                    self._record_session(tracker, user_id, session_id, entry.recommendations, filters, 0, True)
                return GenerationResult(
                    recommendations=list(entry.recommendations),
                    session_id=session_id,
                    cache_hit=True,
                    profile=entry.user_profile,
                    refresh_due=bool(entry.recommendations) and self.cache.is_near_expiry(entry),
                )

        return await self._generate_and_commit(
            user_id, request_id, collection, filters, trigger="user_action", tracker=tracker
        )

    async def refresh_recommendations(
        self,
        user_id: str,
        collection: Sequence[CollectionItem],
        filters: Optional[RecommendationFilters] = None,
        tracker: Optional[ActionTracker] = None,
    ) -> GenerationResult:
        """Regenerate ignoring the cache, reusing the last filters when none are given."""
        if filters is None:
            filters = self.state(user_id).filters
        return await self.generate_recommendations(
            user_id, collection, filters, force_refresh=True, tracker=tracker
        )

    async def generate_in_background(
        self,
        user_id: str,
        collection: Sequence[CollectionItem],
        trigger: str = "periodic",
    ) -> List[Recommendation]:
        request_id = self._begin_request(user_id)
        if len(collection) < self.engine.min_collection_size:
            logger.debug(f"[BackgroundRecommendations] Skipping user_id={user_id}, collection too small")
            return []
        result = await self._generate_and_commit(
            user_id, request_id, collection, self.state(user_id).filters, trigger=trigger
        )
        return result.recommendations

    async def _generate_and_commit(
        self,
        user_id: str,
        request_id: int,
        collection: Sequence[CollectionItem],
        filters: Optional[RecommendationFilters],
        trigger: str,
        tracker: Optional[ActionTracker] = None,
    ) -> GenerationResult:
        state = self.state(user_id)
        start = now_ms()
        try:
            recommendations, profile = await self.engine.generate_with_profile(collection, filters)
        except Exception:
            logger.exception(f"[SmartRecommendations] Generation failed for user_id={user_id}")
            if self._is_latest(user_id, request_id):
                state.error = GENERATION_FAILED
            return GenerationResult(
                recommendations=list(state.recommendations),
                session_id=state.session_id,
                committed=False,
                error=GENERATION_FAILED,
            )
        elapsed = now_ms() - start

        if not self._is_latest(user_id, request_id):
            logger.debug(
                f"[SmartRecommendations] Discarding stale request {request_id} for user_id={user_id}"
            )
            return GenerationResult(
                recommendations=list(state.recommendations),
                session_id=state.session_id,
                committed=False,
                profile=state.profile,
                generation_time_ms=elapsed,
            )

        timestamp = self.clock()
        entry = CacheEntry(
            recommendations=recommendations,
            user_profile=profile,
            timestamp=timestamp,
            filters=filters or RecommendationFilters(),
            trigger=trigger,
        )
        try:
            self.cache.put(user_id, entry)
        except SQLAlchemyError as e:
            logger.warning(f"[SmartRecommendations] Cache write failed for user_id={user_id}: {e}")

        self._commit_state(user_id, recommendations, profile, collection, filters, timestamp)
        session_id = self.sessions.start(user_id)
        state.session_id = session_id
        self._record_session(tracker, user_id, session_id, recommendations, filters, elapsed, False)

        return GenerationResult(
            recommendations=recommendations,
            session_id=session_id,
            profile=profile,
            generation_time_ms=elapsed,
        )

    def _commit_state(
        self,
        user_id: str,
        recommendations: List[Recommendation],
        profile: Optional[UserProfile],
        collection: Sequence[CollectionItem],
        filters: Optional[RecommendationFilters],
        timestamp: float,
    ) -> None:
        state = self.state(user_id)
        state.recommendations = list(recommendations)
        state.profile = profile
        state.collection = list(collection)
        state.filters = filters
        state.last_generated = timestamp
        state.error = None
        state.message = None

    def _record_session(
        self,
        tracker: Optional[ActionTracker],
        user_id: str,
        session_id: str,
        recommendations: List[Recommendation],
        filters: Optional[RecommendationFilters],
        generation_time_ms: float,
        cache_hit: bool,
    ) -> None:
        if tracker is None:
            return
        try:
            tracker.record_session(
                user_id,
                session_id,
                recommendation_count=len(recommendations),
                filters=filters,
                generation_time_ms=generation_time_ms,
                cache_hit=cache_hit,
            )
        except SQLAlchemyError as e:
            logger.warning(f"[SmartRecommendations] Could not record session {session_id}: {e}")

    def filter_recommendations(self, user_id: str, filters: RecommendationFilters) -> List[Recommendation]:
        """Re-filter the last committed set without new lookups."""
        state = self.state(user_id)
        return self.engine.filter_and_rank(state.recommendations, state.collection, filters)

    def get_stats(self, user_id: str) -> RecommendationStats:
        state = self.state(user_id)
        cache_age = None
        if state.last_generated is not None:
            cache_age = max(self.clock() - state.last_generated, 0.0)
        return recommendation_stats(state.recommendations, cache_age=cache_age)

    def invalidate(self, user_id: str) -> None:
        try:
            self.cache.invalidate(user_id)
        except SQLAlchemyError as e:
            logger.warning(f"[SmartRecommendations] Cache invalidation failed for user_id={user_id}: {e}")

    def debug_info(self, result: GenerationResult) -> Optional[dict]:
        if not settings.DEBUG:
            return None
        return {
            "cache_hit": result.cache_hit,
            "committed": result.committed,
            "generation_time_ms": result.generation_time_ms,
            "profile": result.profile.model_dump() if result.profile else None,
        }
