"""
Action tracking for recommendations.

Records what a user did with a suggestion (wishlist, owned, dismissed,
viewed), keeps the collection in step for the positive actions, and answers
the conversion questions the UI asks. Records are append-only.
"""
import logging
import random
import string
import time
from collections import Counter
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shelfscout.core.config import settings
from shelfscout.models import (
    FeedbackReason,
    MediaFormat,
    RecommendationAction,
    RecommendationActionRecord,
    RecommendationSession,
    RecommendationType,
    CollectionType,
    UserRecommendationPreferences,
)
from shelfscout.schemas.action import (
    ActionRecord,
    ActionStats,
    FeedbackReasonCount,
    RecommendationPreferences,
    RecommendationPreferencesUpdate,
    TypeConversion,
)
from shelfscout.schemas.collection import CollectionItemCreate
from shelfscout.schemas.recommendation import Recommendation, RecommendationFilters
from shelfscout.services.collection_store import CollectionStore

logger = logging.getLogger(__name__)

SESSION_RETENTION_DAYS = 7
SESSION_ID_SUFFIX_LEN = 9

CONVERTING_ACTIONS = (
    RecommendationAction.ADD_TO_WISHLIST.value,
    RecommendationAction.MARK_AS_OWNED.value,
)

STRATEGY_WEIGHT_FIELDS = ("collection_gap_weight", "format_upgrade_weight", "similar_title_weight")


class ActionTrackerError(Exception):
    pass


class CollectionInsertError(ActionTrackerError):
    """The collection item behind a wishlist/owned action could not be created."""


class InvalidFeedbackError(ActionTrackerError):
    """A dismissal arrived without a recognised reason."""


def generate_session_id(clock: Callable[[], float] = time.time) -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=SESSION_ID_SUFFIX_LEN))
    return f"session_{int(clock() * 1000)}_{suffix}"


class ActivitySessions:
    """
    In-memory registry of the live session id per user.

    A session groups the views and actions that follow one generate() call.
    It ends after ACTIVITY_SESSION_TIMEOUT_MINUTES without activity.
    """

    def __init__(self, timeout_minutes: Optional[float] = None, clock: Callable[[], float] = time.time):
        minutes = settings.ACTIVITY_SESSION_TIMEOUT_MINUTES if timeout_minutes is None else timeout_minutes
        self.timeout_seconds = minutes * 60
        self.clock = clock
        self._sessions: Dict[str, Tuple[str, float]] = {}

    def start(self, user_id: str) -> str:
        session_id = generate_session_id(self.clock)
        self._sessions[user_id] = (session_id, self.clock())
        return session_id

    def current(self, user_id: str) -> str:
        now = self.clock()
        live = self._sessions.get(user_id)
        if live is None or now - live[1] > self.timeout_seconds:
            return self.start(user_id)
        self._sessions[user_id] = (live[0], now)
        return live[0]


class ActionTracker:
    def __init__(
        self,
        db: Session,
        collection_store: Optional[CollectionStore] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.db = db
        self.collection_store = collection_store
        self.clock = clock

    def record_action(
        self,
        user_id: str,
        recommendation: Recommendation,
        action: RecommendationAction,
        reason: Optional[FeedbackReason] = None,
        comment: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> ActionRecord:
        """
        Persist one action against a recommendation.

        Raises:
            InvalidFeedbackError: not_interested without a known reason
            CollectionInsertError: the wishlist/owned item could not be created;
                no action record is written in that case
        """
        action = RecommendationAction(action).value
        rec_type = RecommendationType(recommendation.recommendation_type).value

        feedback_reason = None
        feedback_comment = None
        if action == RecommendationAction.NOT_INTERESTED.value:
            feedback_reason = self._validate_reason(reason)
            if feedback_reason == FeedbackReason.OTHER.value:
                feedback_comment = comment or None

        existing = self._find(user_id, recommendation.imdb_id, rec_type, action)
        if existing:
            logger.debug(
                f"[ActionTracker] Duplicate action ignored: user_id={user_id}, "
                f"imdb_id={recommendation.imdb_id}, action={action}"
            )
            return ActionRecord.model_validate(existing)

        if action in CONVERTING_ACTIONS:
            self._add_to_collection(user_id, recommendation, action)

        record = RecommendationActionRecord(
            user_id=user_id,
            imdb_id=recommendation.imdb_id,
            title=recommendation.title,
            recommendation_type=rec_type,
            recommendation_score=recommendation.composite_score,
            action=action,
            reasoning=recommendation.reasoning,
            suggested_format=recommendation.suggested_format,
            session_id=session_id,
            feedback_reason=feedback_reason,
            feedback_comment=feedback_comment,
            created_at=self.clock(),
        )
        try:
            self.db.add(record)
            self.db.commit()
        except IntegrityError:
            # Same action inserted concurrently between the lookup and the commit
            self.db.rollback()
            existing = self._find(user_id, recommendation.imdb_id, rec_type, action)
            if existing is None:
                raise
            return ActionRecord.model_validate(existing)

        self.db.refresh(record)
        logger.info(
            f"[ActionTracker] Recorded {action} for user_id={user_id}, imdb_id={recommendation.imdb_id}"
        )
        return ActionRecord.model_validate(record)

    def _validate_reason(self, reason) -> str:
        if reason is None:
            raise InvalidFeedbackError("A reason is required when dismissing a recommendation")
        try:
            return FeedbackReason(reason).value
        except ValueError as e:
            raise InvalidFeedbackError(f"Unknown feedback reason: {reason}") from e

    def _find(self, user_id: str, imdb_id: str, rec_type: str, action: str) -> Optional[RecommendationActionRecord]:
        return self.db.query(RecommendationActionRecord).filter(
            RecommendationActionRecord.user_id == user_id,
            RecommendationActionRecord.imdb_id == imdb_id,
            RecommendationActionRecord.recommendation_type == rec_type,
            RecommendationActionRecord.action == action,
        ).first()

    def _add_to_collection(self, user_id: str, recommendation: Recommendation, action: str) -> None:
        if self.collection_store is None:
            raise CollectionInsertError("No collection store configured")
        collection_type = (
            CollectionType.WISHLIST if action == RecommendationAction.ADD_TO_WISHLIST.value
            else CollectionType.OWNED
        )
        item = CollectionItemCreate(
            imdb_id=recommendation.imdb_id,
            title=recommendation.title,
            year=recommendation.year,
            genre=recommendation.genre,
            director=recommendation.director,
            format=recommendation.suggested_format or MediaFormat.BLU_RAY.value,
            collection_type=collection_type,
            poster_url=recommendation.poster_url,
            notes=f"Added from recommendation: {recommendation.reasoning}",
        )
        try:
            self.collection_store.insert(user_id, item)
        except Exception as e:
            logger.warning(
                f"[ActionTracker] Collection insert failed for user_id={user_id}, "
                f"imdb_id={recommendation.imdb_id}: {e}"
            )
            raise CollectionInsertError(str(e)) from e

    def has_acted_on(self, user_id: str, imdb_id: str, recommendation_type) -> bool:
        """True once the user did anything other than just view the suggestion."""
        rec_type = RecommendationType(recommendation_type).value
        return self.db.query(RecommendationActionRecord.id).filter(
            RecommendationActionRecord.user_id == user_id,
            RecommendationActionRecord.imdb_id == imdb_id,
            RecommendationActionRecord.recommendation_type == rec_type,
            RecommendationActionRecord.action != RecommendationAction.VIEWED.value,
        ).first() is not None

    def _action_counts(self, user_id: str) -> Dict[str, int]:
        rows = (
            self.db.query(RecommendationActionRecord.action, func.count(RecommendationActionRecord.id))
            .filter(RecommendationActionRecord.user_id == user_id)
            .group_by(RecommendationActionRecord.action)
            .all()
        )
        return {action: count for action, count in rows}

    def conversion_rate(self, user_id: str) -> float:
        counts = self._action_counts(user_id)
        total = sum(counts.values())
        if not total:
            return 0.0
        converted = sum(counts.get(a, 0) for a in CONVERTING_ACTIONS)
        return converted / total

    def action_stats(self, user_id: str) -> ActionStats:
        records = self.db.query(RecommendationActionRecord).filter(
            RecommendationActionRecord.user_id == user_id
        ).all()

        actions_by_type = Counter(r.action for r in records)
        total = len(records)
        converted = sum(actions_by_type.get(a, 0) for a in CONVERTING_ACTIONS)

        reasons = Counter(r.feedback_reason for r in records if r.feedback_reason)
        top_reasons = [
            FeedbackReasonCount(reason=reason, count=count)
            for reason, count in reasons.most_common()
        ]

        by_type: Dict[str, TypeConversion] = {}
        for rec_type in RecommendationType:
            typed = [r for r in records if r.recommendation_type == rec_type.value]
            shown = len(typed)
            type_converted = sum(1 for r in typed if r.action in CONVERTING_ACTIONS)
            by_type[rec_type.value] = TypeConversion(
                shown=shown,
                converted=type_converted,
                rate=type_converted / shown if shown else 0.0,
            )

        return ActionStats(
            total_actions=total,
            actions_by_type=dict(actions_by_type),
            conversion_rate=converted / total if total else 0.0,
            top_feedback_reasons=top_reasons,
            recommendations_by_type=by_type,
        )

    def action_history(self, user_id: str, limit: int = 50, offset: int = 0) -> List[ActionRecord]:
        rows = (
            self.db.query(RecommendationActionRecord)
            .filter(RecommendationActionRecord.user_id == user_id)
            .order_by(RecommendationActionRecord.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return [ActionRecord.model_validate(row) for row in rows]

    def record_session(
        self,
        user_id: str,
        session_id: str,
        recommendation_count: int,
        filters: Optional[RecommendationFilters] = None,
        generation_time_ms: Optional[float] = None,
        cache_hit: bool = False,
    ) -> None:
        now = self.clock()
        row = RecommendationSession(
            user_id=user_id,
            session_id=session_id,
            recommendation_count=recommendation_count,
            filters_applied=filters.model_dump(mode="json", exclude_none=True) if filters else None,
            generation_time_ms=int(generation_time_ms) if generation_time_ms is not None else None,
            cache_hit=cache_hit,
            created_at=now,
            expires_at=now + timedelta(days=SESSION_RETENTION_DAYS),
        )
        try:
            self.db.add(row)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.debug(f"[ActionTracker] Session already recorded: user_id={user_id}, session_id={session_id}")

    def cleanup_expired_sessions(self) -> int:
        deleted = self.db.query(RecommendationSession).filter(
            RecommendationSession.expires_at < self.clock()
        ).delete(synchronize_session=False)
        self.db.commit()
        if deleted:
            logger.info(f"[ActionTracker] Removed {deleted} expired recommendation sessions")
        return deleted

    def _preferences_row(self, user_id: str) -> Optional[UserRecommendationPreferences]:
        return (
            self.db.query(UserRecommendationPreferences)
            .filter(UserRecommendationPreferences.user_id == user_id)
            .first()
        )

    def get_preferences(self, user_id: str) -> Optional[RecommendationPreferences]:
        """Stored preferences, or None when the user has never saved any."""
        row = self._preferences_row(user_id)
        return RecommendationPreferences.model_validate(row) if row else None

    def update_preferences(self, user_id: str, update: RecommendationPreferencesUpdate) -> RecommendationPreferences:
        """Upsert: create the row on first save, otherwise overwrite only the fields sent."""
        changes = {
            name: value
            for name, value in update.model_dump(exclude_unset=True).items()
            if value is not None or name not in STRATEGY_WEIGHT_FIELDS
        }
        row = self._preferences_row(user_id)
        if row is None:
            row = UserRecommendationPreferences(user_id=user_id, created_at=self.clock())
            self.db.add(row)
        for name, value in changes.items():
            setattr(row, name, value)
        row.updated_at = self.clock()
        try:
            self.db.commit()
        except IntegrityError:
            # Another request created the row first
            self.db.rollback()
            row = self._preferences_row(user_id)
            for name, value in changes.items():
                setattr(row, name, value)
            row.updated_at = self.clock()
            self.db.commit()
        self.db.refresh(row)
        logger.info(f"[ActionTracker] Saved preferences for user_id={user_id}: {sorted(changes)}")
        return RecommendationPreferences.model_validate(row)
