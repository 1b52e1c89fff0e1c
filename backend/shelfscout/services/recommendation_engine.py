from typing import List, Optional, Sequence, Tuple
from collections import Counter
import logging

from shelfscout.utils.timing import now_ms, log_elapsed
from shelfscout.core.config import settings
from shelfscout.models import RecommendationType, STRATEGY_ORDER
from shelfscout.schemas.collection import CollectionItem
from shelfscout.schemas.recommendation import (
    Recommendation,
    RecommendationFilters,
    RecommendationScore,
    RecommendationStats,
    UserProfile,
)
from shelfscout.services.metadata_client import MetadataClient
from shelfscout.services.profile_analyzer import analyze_user_profile, split_multi
from shelfscout.services.result import Err
from shelfscout.services.strategies import StrategyRunner, build_strategies

logger = logging.getLogger(__name__)

FALLBACK_IMDB_ID = "fallback"
FALLBACK_GENRE = "Action"


def rank_recommendations(recommendations: Sequence[Recommendation]) -> List[Recommendation]:
    """Sort by composite score, highest first. Ties keep their incoming order."""
    return sorted(recommendations, key=lambda rec: rec.composite_score, reverse=True)


def dedupe_recommendations(recommendations: Sequence[Recommendation]) -> List[Recommendation]:
    """Keep the first candidate seen for each imdb_id."""
    seen = set()
    unique: List[Recommendation] = []
    for rec in recommendations:
        if rec.imdb_id in seen:
            continue
        seen.add(rec.imdb_id)
        unique.append(rec)
    return unique


def filter_recommendations(
    recommendations: Sequence[Recommendation],
    collection: Sequence[CollectionItem],
    filters: RecommendationFilters,
) -> List[Recommendation]:
    """Apply owned/wishlist exclusion, type and confidence filters."""
    filtered = list(recommendations)

    if filters.exclude_owned is not False:
        owned_ids = {item.imdb_id for item in collection if item.is_owned and item.imdb_id}
        filtered = [rec for rec in filtered if rec.imdb_id not in owned_ids]

    if filters.exclude_wishlist is not False:
        wishlist_ids = {item.imdb_id for item in collection if item.is_wishlist and item.imdb_id}
        filtered = [rec for rec in filtered if rec.imdb_id not in wishlist_ids]

    if filters.types is not None:
        allowed = {RecommendationType(t).value for t in filters.types}
        filtered = [rec for rec in filtered if rec.recommendation_type in allowed]

    if filters.min_confidence is not None:
        filtered = [rec for rec in filtered if rec.score.confidence >= filters.min_confidence]

    return filtered


def build_fallback_recommendation(collection: Sequence[CollectionItem]) -> Recommendation:
    """Deterministic single suggestion built from the user's most common genre."""
    genres = Counter(g for item in collection for g in split_multi(item.genre))
    top_genre = genres.most_common(1)[0][0] if genres else FALLBACK_GENRE
    return Recommendation(
        imdb_id=FALLBACK_IMDB_ID,
        title=f"Explore more {top_genre} movies",
        genre=top_genre,
        recommendation_type=RecommendationType.SIMILAR_TITLE,
        reasoning=f"Based on your collection, you enjoy {top_genre} movies",
        score=RecommendationScore(relevance=0.5, confidence=0.3, urgency=0.2),
        source_items=[],
    )


def recommendation_stats(
    recommendations: Sequence[Recommendation],
    cache_age: Optional[float] = None,
) -> RecommendationStats:
    total = len(recommendations)
    by_type = {t.value: 0 for t in STRATEGY_ORDER}
    for rec in recommendations:
        by_type[rec.recommendation_type] = by_type.get(rec.recommendation_type, 0) + 1
    avg_confidence = sum(r.score.confidence for r in recommendations) / total if total else 0.0
    avg_relevance = sum(r.score.relevance for r in recommendations) / total if total else 0.0
    return RecommendationStats(
        total=total,
        by_type=by_type,
        avg_confidence=avg_confidence,
        avg_relevance=avg_relevance,
        cache_age=cache_age,
    )


class RecommendationEngine:
    """
    Merges the strategy runners into one ranked list.

    generate() never raises: below the minimum collection size it returns an
    empty list, and any unexpected failure turns into a single fallback
    recommendation.
    """

    def __init__(
        self,
        metadata_client: Optional[MetadataClient] = None,
        strategies: Optional[List[StrategyRunner]] = None,
        min_collection_size: Optional[int] = None,
        default_max_results: Optional[int] = None,
    ):
        if strategies is None:
            if metadata_client is None:
                raise ValueError("RecommendationEngine needs a metadata client or explicit strategies")
            strategies = build_strategies(metadata_client)
        self.strategies = strategies
        self.min_collection_size = (
            settings.MIN_COLLECTION_SIZE if min_collection_size is None else min_collection_size
        )
        self.default_max_results = (
            settings.DEFAULT_MAX_RESULTS if default_max_results is None else default_max_results
        )

    async def generate(
        self,
        collection: Sequence[CollectionItem],
        filters: Optional[RecommendationFilters] = None,
    ) -> List[Recommendation]:
        recommendations, _ = await self.generate_with_profile(collection, filters)
        return recommendations

    async def generate_with_profile(
        self,
        collection: Sequence[CollectionItem],
        filters: Optional[RecommendationFilters] = None,
    ) -> Tuple[List[Recommendation], Optional[UserProfile]]:
        filters = filters or RecommendationFilters()
        logger.info("[SmartRecommendations] Starting generation, collection size=%d", len(collection))

        if len(collection) < self.min_collection_size:
            logger.info("[SmartRecommendations] Collection too small for meaningful recommendations")
            return [], None

        try:
            return await self._generate(collection, filters)
        except Exception:
            logger.exception("[SmartRecommendations] Error generating recommendations, using fallback")
            return [build_fallback_recommendation(collection)], None

    async def _generate(
        self,
        collection: Sequence[CollectionItem],
        filters: RecommendationFilters,
    ) -> Tuple[List[Recommendation], UserProfile]:
        t0 = now_ms() if settings.DEBUG else None

        profile = analyze_user_profile(collection)
        if settings.DEBUG:
            t0 = log_elapsed(t0, "phase=profile", logger.debug)

        if filters.types is not None:
            enabled = {RecommendationType(t).value for t in filters.types}
        else:
            enabled = {t.value for t in STRATEGY_ORDER}
        candidates: List[Recommendation] = []
        for strategy in self.strategies:
            if strategy.recommendation_type.value not in enabled:
                continue
            result = await strategy.run(collection, profile)
            if isinstance(result, Err):
                logger.warning(
                    "[SmartRecommendations] %s contributed nothing: %s",
                    strategy.__class__.__name__, result.message,
                )
                continue
            candidates.extend(result.value)
            if settings.DEBUG:
                t0 = log_elapsed(t0, f"phase={strategy.recommendation_type}", logger.debug)

        results = self.filter_and_rank(candidates, collection, filters)
        logger.info(
            "[SmartRecommendations] Generated %d recommendations from %d candidates",
            len(results), len(candidates),
        )
        return results, profile

    def filter_and_rank(
        self,
        candidates: Sequence[Recommendation],
        collection: Sequence[CollectionItem],
        filters: Optional[RecommendationFilters] = None,
    ) -> List[Recommendation]:
        filters = filters or RecommendationFilters()
        unique = dedupe_recommendations(candidates)
        filtered = filter_recommendations(unique, collection, filters)
        ranked = rank_recommendations(filtered)
        return ranked[: filters.max_results or self.default_max_results]
