"""
Recommendation strategies.

Each runner looks at the collection plus the derived profile and proposes
candidates of a single recommendation type. Metadata lookups are awaited one
at a time with a fixed delay in front of each search call; a failed lookup is
logged and skipped so one bad director or genre never sinks the whole pass.
"""
import asyncio
import logging
import re
from typing import Callable, List, Optional, Sequence, Set

from shelfscout.core.config import settings
from shelfscout.models import FORMAT_HIERARCHY, MediaFormat, RecommendationType
from shelfscout.schemas.collection import CollectionItem
from shelfscout.schemas.recommendation import Recommendation, RecommendationScore, UserProfile
from shelfscout.services.metadata_client import MetadataClient, MetadataTitle
from shelfscout.services.profile_analyzer import split_multi
from shelfscout.services.result import Err, ErrorKind, Ok, Result
from shelfscout.utils.timing import time_operation

logger = logging.getLogger(__name__)

TOP_DIRECTORS = 3
GAPS_PER_DIRECTOR = 3
FRANCHISE_KEYWORDS_SEARCHED = 2
MAX_FRANCHISE_KEYWORDS = 5
GAPS_PER_FRANCHISE = 2
MAX_FORMAT_UPGRADES = 10
TOP_FAVORITES = 5
SIMILAR_PER_GENRE = 2
SIMILAR_PER_DIRECTOR = 1
MIN_DIRECTOR_COUNT_FOR_SIMILAR = 2

FRANCHISE_PATTERNS = [
    re.compile(r"^(.*?)\s+\d+$"),          # "Movie 2"
    re.compile(r"^(.*?)\s+II+$"),          # "Movie II", "Movie III"
    re.compile(r"^(.*?):\s+"),             # "Franchise: Subtitle"
    re.compile(r"^(.*?)\s+-\s+"),          # "Franchise - Subtitle"
    re.compile(r"^(.*?)\s+Part\s+\d+$"),   # "Movie Part 2"
]
COMMON_FRANCHISE_WORDS = ["Marvel", "DC", "Star Wars", "Fast", "Furious", "Avengers", "X-Men"]


def extract_franchise_keywords(titles: Sequence[str]) -> List[str]:
    """
    Pull likely franchise names out of collection titles.

    Matching is deliberately loose: a short common word can pull in unrelated
    titles, and that is accepted.
    """
    keywords = {}
    for title in titles:
        for pattern in FRANCHISE_PATTERNS:
            match = pattern.match(title)
            if match and len(match.group(1)) > 3:
                keywords.setdefault(match.group(1).strip(), None)
        for word in COMMON_FRANCHISE_WORDS:
            if word in title:
                keywords.setdefault(word, None)
    return list(keywords)[:MAX_FRANCHISE_KEYWORDS]


def suggest_format(profile: UserProfile) -> str:
    """Suggest the format the user mostly buys, nudging DVD collectors to Blu-ray."""
    if not profile.format_preferences:
        return MediaFormat.BLU_RAY.value
    preferred = profile.format_preferences[0].format
    if preferred == MediaFormat.DVD.value:
        return MediaFormat.BLU_RAY.value
    return preferred


def next_format(current: str) -> Optional[str]:
    """The next step up the format ladder, or None at the top / for unknown formats."""
    if current not in FORMAT_HIERARCHY:
        return None
    index = FORMAT_HIERARCHY.index(current)
    if index >= len(FORMAT_HIERARCHY) - 1:
        return None
    return FORMAT_HIERARCHY[index + 1]


def _fmt_rating(rating: float) -> str:
    return f"{rating:g}"


def _collection_imdb_ids(collection: Sequence[CollectionItem]) -> Set[str]:
    return {item.imdb_id for item in collection if item.imdb_id}


class StrategyRunner:
    """Base class: subclasses implement ``_generate``; ``run`` wraps it in a Result."""

    recommendation_type: RecommendationType

    def __init__(
        self,
        metadata_client: MetadataClient,
        request_delay_ms: Optional[int] = None,
        sleep: Callable = asyncio.sleep,
    ):
        self.metadata_client = metadata_client
        self.request_delay_ms = (
            settings.METADATA_REQUEST_DELAY_MS if request_delay_ms is None else request_delay_ms
        )
        self._sleep = sleep

    async def run(
        self, collection: Sequence[CollectionItem], profile: UserProfile
    ) -> Result[List[Recommendation]]:
        try:
            with time_operation(f"[{self.__class__.__name__}] run", logger.debug):
                recommendations = await self._generate(collection, profile)
        except Exception as e:
            logger.exception("[%s] Strategy failed", self.__class__.__name__)
            return Err(ErrorKind.UNEXPECTED, str(e))
        logger.info("[%s] Produced %d candidates", self.__class__.__name__, len(recommendations))
        return Ok(recommendations)

    async def _generate(
        self, collection: Sequence[CollectionItem], profile: UserProfile
    ) -> List[Recommendation]:
        raise NotImplementedError

    async def _search(self, query: str) -> List[MetadataTitle]:
        """Throttled search; failures come back as an empty list."""
        if self.request_delay_ms > 0:
            await self._sleep(self.request_delay_ms / 1000)
        result = await self.metadata_client.search_by_text(query)
        if isinstance(result, Err):
            logger.warning(
                "[%s] Search for %r failed (%s): %s",
                self.__class__.__name__, query, result.kind.value, result.message,
            )
            return []
        return result.value.titles


class CollectionGapFinder(StrategyRunner):
    """Missing titles from directors and franchises the user already collects."""

    recommendation_type = RecommendationType.COLLECTION_GAP

    async def _generate(self, collection, profile):
        recommendations: List[Recommendation] = []
        owned_ids = _collection_imdb_ids(collection)
        fmt = suggest_format(profile)
        global_avg = profile.rating_pattern.avg_rating

        for entry in profile.favorite_directors[:TOP_DIRECTORS]:
            try:
                logger.debug("[CollectionGaps] Searching for %s movies", entry.director)
                titles = await self._search(entry.director)
                gaps = [t for t in titles if t.imdb_id not in owned_ids][:GAPS_PER_DIRECTOR]
                source_items = [
                    item.id for item in collection
                    if item.director and entry.director in item.director
                ]
                for movie in gaps:
                    recommendations.append(
                        Recommendation(
                            imdb_id=movie.imdb_id,
                            title=movie.title,
                            year=movie.year,
                            poster_url=movie.poster_url,
                            recommendation_type=self.recommendation_type,
                            reasoning=(
                                f"You own {entry.count} movie(s) by {entry.director}, "
                                f"but missing this one"
                            ),
                            score=RecommendationScore(
                                relevance=min(entry.count / 5, 1.0),
                                confidence=0.8,
                                urgency=0.7 if entry.avg_rating > global_avg else 0.5,
                            ),
                            source_items=source_items,
                            suggested_format=fmt,
                        )
                    )
            except Exception:
                logger.exception("[CollectionGaps] Error searching for director %s", entry.director)

        keywords = extract_franchise_keywords([item.title for item in collection])
        for keyword in keywords[:FRANCHISE_KEYWORDS_SEARCHED]:
            try:
                logger.debug("[CollectionGaps] Searching for franchise %s", keyword)
                titles = await self._search(keyword)
                gaps = [t for t in titles if t.imdb_id not in owned_ids][:GAPS_PER_FRANCHISE]
                source_items = [
                    item.id for item in collection
                    if keyword.lower() in item.title.lower()
                ]
                for movie in gaps:
                    recommendations.append(
                        Recommendation(
                            imdb_id=movie.imdb_id,
                            title=movie.title,
                            year=movie.year,
                            poster_url=movie.poster_url,
                            recommendation_type=self.recommendation_type,
                            reasoning=f"Part of the {keyword} collection you're building",
                            score=RecommendationScore(relevance=0.7, confidence=0.6, urgency=0.4),
                            source_items=source_items,
                            suggested_format=fmt,
                        )
                    )
            except Exception:
                logger.exception("[CollectionGaps] Error searching for franchise %s", keyword)

        return recommendations


class FormatUpgradeFinder(StrategyRunner):
    """Highly rated owned titles that exist in a better format. No external calls."""

    recommendation_type = RecommendationType.FORMAT_UPGRADE

    async def _generate(self, collection, profile):
        threshold = profile.rating_pattern.high_rated_threshold
        avg_rating = profile.rating_pattern.avg_rating

        candidates = [
            item for item in collection
            if item.is_owned
            and item.personal_rating
            and item.personal_rating >= threshold
            and next_format(item.format) is not None
        ]
        logger.debug("[FormatUpgrades] Found %d upgrade candidates", len(candidates))

        recommendations: List[Recommendation] = []
        for item in candidates[:MAX_FORMAT_UPGRADES]:
            suggested = next_format(item.format)
            recommendations.append(
                Recommendation(
                    imdb_id=item.imdb_id or "",
                    title=item.title,
                    year=item.year,
                    genre=item.genre,
                    director=item.director,
                    poster_url=item.poster_url,
                    recommendation_type=self.recommendation_type,
                    reasoning=(
                        f"Upgrade your {item.format} copy to {suggested} - "
                        f"you rated this {_fmt_rating(item.personal_rating)}/10"
                    ),
                    score=RecommendationScore(
                        relevance=(item.personal_rating - avg_rating) / 10,
                        confidence=0.9,
                        urgency=0.8 if suggested == MediaFormat.UHD_4K.value else 0.6,
                    ),
                    source_items=[item.id],
                    suggested_format=suggested,
                )
            )
        return recommendations


class SimilarTitleFinder(StrategyRunner):
    """Titles sharing a genre or director with the user's favorites."""

    recommendation_type = RecommendationType.SIMILAR_TITLE

    async def _generate(self, collection, profile):
        recommendations: List[Recommendation] = []
        owned_ids = _collection_imdb_ids(collection)
        threshold = profile.rating_pattern.high_rated_threshold
        fmt = suggest_format(profile)

        favorites = sorted(
            (
                item for item in collection
                if item.is_owned and item.personal_rating and item.personal_rating >= threshold
            ),
            key=lambda item: item.personal_rating or 0,
            reverse=True,
        )[:TOP_FAVORITES]
        logger.debug("[SimilarTitles] Analyzing %d favorite movies", len(favorites))

        for favorite in favorites:
            try:
                genres = split_multi(favorite.genre)
                primary_genre = genres[0] if genres else None
                if primary_genre:
                    titles = await self._search(primary_genre)
                    similar = [t for t in titles if t.imdb_id not in owned_ids][:SIMILAR_PER_GENRE]
                    for movie in similar:
                        recommendations.append(
                            Recommendation(
                                imdb_id=movie.imdb_id,
                                title=movie.title,
                                year=movie.year,
                                poster_url=movie.poster_url,
                                recommendation_type=self.recommendation_type,
                                reasoning=(
                                    f'Similar to "{favorite.title}" ({primary_genre}) - '
                                    f"you rated it {_fmt_rating(favorite.personal_rating)}/10"
                                ),
                                score=RecommendationScore(
                                    relevance=(favorite.personal_rating or 7) / 10,
                                    confidence=0.6,
                                    urgency=0.3,
                                ),
                                source_items=[favorite.id],
                                suggested_format=fmt,
                            )
                        )

                directors = split_multi(favorite.director)
                director = directors[0] if directors else None
                entry = profile.director(director) if director else None
                if entry and entry.count >= MIN_DIRECTOR_COUNT_FOR_SIMILAR:
                    titles = await self._search(director)
                    more = [t for t in titles if t.imdb_id not in owned_ids][:SIMILAR_PER_DIRECTOR]
                    for movie in more:
                        recommendations.append(
                            Recommendation(
                                imdb_id=movie.imdb_id,
                                title=movie.title,
                                year=movie.year,
                                poster_url=movie.poster_url,
                                recommendation_type=self.recommendation_type,
                                reasoning=(
                                    f"Another {director} film - you love their work "
                                    f"({entry.count} movies)"
                                ),
                                score=RecommendationScore(
                                    relevance=min(entry.count / 5, 0.9),
                                    confidence=0.8,
                                    urgency=0.5,
                                ),
                                source_items=[favorite.id],
                                suggested_format=fmt,
                            )
                        )
            except Exception:
                logger.exception("[SimilarTitles] Error processing favorite %s", favorite.title)

        return recommendations


def build_strategies(
    metadata_client: MetadataClient,
    request_delay_ms: Optional[int] = None,
) -> List[StrategyRunner]:
    """Runners in the order their candidates are merged."""
    return [
        CollectionGapFinder(metadata_client, request_delay_ms),
        FormatUpgradeFinder(metadata_client, request_delay_ms),
        SimilarTitleFinder(metadata_client, request_delay_ms),
    ]
