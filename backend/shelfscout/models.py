from sqlalchemy import Column, String, Integer, Text, Boolean, DateTime, Float, JSON, UniqueConstraint
import uuid
from datetime import datetime
import enum
import sqlalchemy as sa
from shelfscout.database import Base


def _uuid_str() -> str:
    return str(uuid.uuid4())


class MediaFormat(str, enum.Enum):
    DVD = "DVD"
    BLU_RAY = "Blu-ray"
    UHD_4K = "4K UHD"
    BLU_RAY_3D = "3D Blu-ray"


# Lowest to highest quality; upgrades move one step to the right.
FORMAT_HIERARCHY = [
    MediaFormat.DVD.value,
    MediaFormat.BLU_RAY.value,
    MediaFormat.UHD_4K.value,
    MediaFormat.BLU_RAY_3D.value,
]


class CollectionType(str, enum.Enum):
    OWNED = "owned"
    WISHLIST = "wishlist"


class RecommendationType(str, enum.Enum):
    COLLECTION_GAP = "collection_gap"
    FORMAT_UPGRADE = "format_upgrade"
    SIMILAR_TITLE = "similar_title"


# Order in which strategies run; dedup keeps the earliest.
STRATEGY_ORDER = [
    RecommendationType.COLLECTION_GAP,
    RecommendationType.FORMAT_UPGRADE,
    RecommendationType.SIMILAR_TITLE,
]


class RecommendationAction(str, enum.Enum):
    ADD_TO_WISHLIST = "add_to_wishlist"
    MARK_AS_OWNED = "mark_as_owned"
    NOT_INTERESTED = "not_interested"
    VIEWED = "viewed"


class FeedbackReason(str, enum.Enum):
    NOT_MY_GENRE = "not_my_genre"
    ALREADY_SEEN = "already_seen"
    TOO_EXPENSIVE = "too_expensive"
    NOT_AVAILABLE = "not_available"
    POOR_QUALITY = "poor_quality"
    OTHER = "other"


class PhysicalMediaItem(Base):
    """One physical copy (or wishlist entry) in a user's collection."""
    __tablename__ = "physical_media_collections"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    user_id = Column(String, nullable=False, index=True)
    imdb_id = Column(String, nullable=True, index=True)
    title = Column(String, nullable=False)
    year = Column(Integer, nullable=True)
    genre = Column(String, nullable=True)
    director = Column(String, nullable=True)
    format = Column(String, nullable=False, default=MediaFormat.BLU_RAY.value)
    personal_rating = Column(Float, nullable=True)
    collection_type = Column(String, nullable=False, default=CollectionType.OWNED.value)
    poster_url = Column(String, nullable=True)
    condition = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class RecommendationActionRecord(Base):
    """
    Append-only log of what users did with a recommendation.
    Rows are only inserted and queried, never updated.
    """
    __tablename__ = "recommendation_actions"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    user_id = Column(String, nullable=False, index=True)
    imdb_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    recommendation_type = Column(String, nullable=False)
    recommendation_score = Column(Float, nullable=True)
    action = Column(String, nullable=False, index=True)
    reasoning = Column(Text, nullable=True)
    suggested_format = Column(String, nullable=True)
    session_id = Column(String, nullable=True)
    feedback_reason = Column(String, nullable=True)
    feedback_comment = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint(
            "user_id", "imdb_id", "recommendation_type", "action",
            name="uq_recommendation_actions_user_title_type_action",
        ),
        sa.Index("idx_recommendation_actions_user_title", "user_id", "imdb_id", "recommendation_type"),
    )


class RecommendationSession(Base):
    __tablename__ = "recommendation_sessions"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    user_id = Column(String, nullable=False, index=True)
    session_id = Column(String, nullable=False, index=True)
    recommendation_count = Column(Integer, nullable=False, default=0)
    filters_applied = Column(JSON, nullable=True)
    generation_time_ms = Column(Integer, nullable=True)
    cache_hit = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("user_id", "session_id", name="uq_recommendation_sessions_user_session"),
    )


class CacheEntryRow(Base):
    """Generic string-keyed JSON value storage backing the recommendation cache."""
    __tablename__ = "cache_entries"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class UserRecommendationPreferences(Base):
    """One row per user: explicit likes and dislikes plus per-strategy weights."""
    __tablename__ = "user_recommendation_preferences"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    user_id = Column(String, nullable=False, unique=True, index=True)

    preferred_genres = Column(JSON, nullable=True)
    avoided_genres = Column(JSON, nullable=True)
    preferred_directors = Column(JSON, nullable=True)
    avoided_directors = Column(JSON, nullable=True)
    preferred_formats = Column(JSON, nullable=True)
    min_rating = Column(Float, nullable=True)
    max_price = Column(Float, nullable=True)

    collection_gap_weight = Column(Float, nullable=False, default=0.3)
    format_upgrade_weight = Column(Float, nullable=False, default=0.3)
    similar_title_weight = Column(Float, nullable=False, default=0.4)

    # What the user tends to dismiss or add, e.g. {"genres": {"Horror": 3}}
    dismissal_patterns = Column(JSON, nullable=True)
    conversion_patterns = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
