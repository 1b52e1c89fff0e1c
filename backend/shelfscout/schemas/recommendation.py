from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Any
from shelfscout.models import RecommendationType

# Composite ranking weights
W_RELEVANCE = 0.4
W_CONFIDENCE = 0.4
W_URGENCY = 0.2


class RecommendationScore(BaseModel):
    relevance: float  # how relevant to the user's interests
    confidence: float  # how sure we are about the match
    urgency: float  # how time-sensitive acting on it is

    @property
    def composite(self) -> float:
        return (
            W_RELEVANCE * self.relevance
            + W_CONFIDENCE * self.confidence
            + W_URGENCY * self.urgency
        )


class Recommendation(BaseModel):
    imdb_id: str
    title: str
    year: Optional[int] = None
    genre: Optional[str] = None
    director: Optional[str] = None
    poster_url: Optional[str] = None
    recommendation_type: RecommendationType
    reasoning: str
    score: RecommendationScore
    source_items: List[str] = Field(default_factory=list)  # collection item ids behind this suggestion
    suggested_format: Optional[str] = None

    model_config = ConfigDict(use_enum_values=True)

    @property
    def composite_score(self) -> float:
        return self.score.composite


class RecommendationFilters(BaseModel):
    """Request filters. Unset fields mean "use the default behaviour"."""
    types: Optional[List[RecommendationType]] = None
    min_confidence: Optional[float] = Field(default=None, ge=0, le=1)
    max_results: Optional[int] = Field(default=None, ge=1, le=100)
    exclude_owned: Optional[bool] = None
    exclude_wishlist: Optional[bool] = None

    model_config = ConfigDict(use_enum_values=True)

    def structurally_equal(self, other: Optional["RecommendationFilters"]) -> bool:
        other = other or RecommendationFilters()
        return self.model_dump(mode="json") == other.model_dump(mode="json")


class GenrePreference(BaseModel):
    genre: str
    count: int
    avg_rating: float


class DirectorPreference(BaseModel):
    director: str
    count: int
    avg_rating: float


class FormatPreference(BaseModel):
    format: str
    count: int


class RatingPattern(BaseModel):
    avg_rating: float
    high_rated_threshold: float  # ratings at or above this count as favorites
    rating_count: int


class CollectionStats(BaseModel):
    total_items: int
    owned_items: int
    wishlist_items: int
    most_collected_decade: str


class UserProfile(BaseModel):
    favorite_genres: List[GenrePreference] = Field(default_factory=list)
    favorite_directors: List[DirectorPreference] = Field(default_factory=list)
    format_preferences: List[FormatPreference] = Field(default_factory=list)
    rating_pattern: RatingPattern
    collection_stats: CollectionStats

    def director(self, name: str) -> Optional[DirectorPreference]:
        return next((d for d in self.favorite_directors if d.director == name), None)


class RecommendationStats(BaseModel):
    total: int
    by_type: Dict[str, int]
    avg_confidence: float
    avg_relevance: float
    cache_age: Optional[float] = None  # seconds since the set was generated


class CacheEntry(BaseModel):
    recommendations: List[Recommendation]
    user_profile: Optional[UserProfile] = None
    timestamp: float  # epoch seconds
    filters: RecommendationFilters = Field(default_factory=RecommendationFilters)
    trigger: Optional[str] = None


class RecommendationsResponse(BaseModel):
    """Response wrapper that carries the session id used for action tracking."""
    session_id: Optional[str] = None
    items: List[Recommendation]
    cache_hit: bool = False
    error: Optional[str] = None
    message: Optional[str] = None  # e.g. how many more items are needed
    debug: Optional[Dict[str, Any]] = None  # Only included when DEBUG=true


class ScheduleRequest(BaseModel):
    delay: Optional[float] = Field(default=None, ge=0)
    priority: str = "low"
    trigger: str = "user_action"


class ScheduleResponse(BaseModel):
    scheduled: bool
    job_id: str
