from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Optional, List, Dict
from datetime import datetime
from shelfscout.models import RecommendationAction, FeedbackReason
from shelfscout.schemas.recommendation import Recommendation


class ActionRequest(BaseModel):
    recommendation: Recommendation
    action: RecommendationAction
    reason: Optional[FeedbackReason] = None
    comment: Optional[str] = Field(default=None, max_length=1000)
    session_id: Optional[str] = None


class ActionRecord(BaseModel):
    id: str
    user_id: str
    imdb_id: str
    title: str
    recommendation_type: str
    action: RecommendationAction
    feedback_reason: Optional[FeedbackReason] = None
    feedback_comment: Optional[str] = None
    session_id: Optional[str] = None
    suggested_format: Optional[str] = None
    recommendation_score: Optional[float] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class HasActedResponse(BaseModel):
    has_acted: bool


class FeedbackReasonCount(BaseModel):
    reason: str
    count: int


class TypeConversion(BaseModel):
    shown: int
    converted: int
    rate: float


class ActionStats(BaseModel):
    total_actions: int
    actions_by_type: Dict[str, int]
    conversion_rate: float  # 0-1
    top_feedback_reasons: List[FeedbackReasonCount]
    recommendations_by_type: Dict[str, TypeConversion]


class RecommendationPreferences(BaseModel):
    """Stored preferences; a user with no row gets these defaults."""
    user_id: str
    preferred_genres: List[str] = Field(default_factory=list)
    avoided_genres: List[str] = Field(default_factory=list)
    preferred_directors: List[str] = Field(default_factory=list)
    avoided_directors: List[str] = Field(default_factory=list)
    preferred_formats: List[str] = Field(default_factory=list)
    min_rating: Optional[float] = None
    max_price: Optional[float] = None
    collection_gap_weight: float = 0.3
    format_upgrade_weight: float = 0.3
    similar_title_weight: float = 0.4
    dismissal_patterns: Optional[Dict[str, Any]] = None
    conversion_patterns: Optional[Dict[str, Any]] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator(
        "preferred_genres", "avoided_genres", "preferred_directors", "avoided_directors", "preferred_formats",
        mode="before",
    )
    @classmethod
    def _none_as_empty(cls, value):
        return value or []


class RecommendationPreferencesUpdate(BaseModel):
    """Partial update: only the fields sent are written."""
    preferred_genres: Optional[List[str]] = None
    avoided_genres: Optional[List[str]] = None
    preferred_directors: Optional[List[str]] = None
    avoided_directors: Optional[List[str]] = None
    preferred_formats: Optional[List[str]] = None
    min_rating: Optional[float] = Field(default=None, ge=0, le=10)
    max_price: Optional[float] = Field(default=None, ge=0)
    collection_gap_weight: Optional[float] = Field(default=None, ge=0, le=1)
    format_upgrade_weight: Optional[float] = Field(default=None, ge=0, le=1)
    similar_title_weight: Optional[float] = Field(default=None, ge=0, le=1)
    dismissal_patterns: Optional[Dict[str, Any]] = None
    conversion_patterns: Optional[Dict[str, Any]] = None
