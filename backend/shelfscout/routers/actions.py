"""
Action router: what the user did with a recommendation.
"""
from typing import List
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from shelfscout.core.auth import AuthenticatedUser, get_current_user
from shelfscout.dependencies import get_action_tracker, get_recommendation_service, get_scheduler
from shelfscout.models import RecommendationType
from shelfscout.scheduler import RecommendationScheduler
from shelfscout.schemas.action import ActionRecord, ActionRequest, ActionStats, HasActedResponse
from shelfscout.services.action_tracker import (
    CONVERTING_ACTIONS,
    ActionTracker,
    CollectionInsertError,
    InvalidFeedbackError,
)
from shelfscout.services.recommendation_service import RecommendationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/recommendations/actions", tags=["recommendation-actions"])


@router.post("", response_model=ActionRecord, status_code=status.HTTP_201_CREATED)
async def record_action(
    request: ActionRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    tracker: ActionTracker = Depends(get_action_tracker),
    service: RecommendationService = Depends(get_recommendation_service),
    scheduler: RecommendationScheduler = Depends(get_scheduler),
):
    session_id = request.session_id or service.sessions.current(user.id)
    try:
        record = tracker.record_action(
            user.id,
            request.recommendation,
            request.action,
            reason=request.reason,
            comment=request.comment,
            session_id=session_id,
        )
    except InvalidFeedbackError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except CollectionInsertError:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="collection_insert_failed")

    if record.action in CONVERTING_ACTIONS:
        # The collection changed, so the cached set is out of date
        service.invalidate(user.id)
        scheduler.schedule(user.id, trigger="collection_change")
    return record


@router.get("/has-acted", response_model=HasActedResponse)
def has_acted(
    imdb_id: str = Query(...),
    recommendation_type: RecommendationType = Query(...),
    user: AuthenticatedUser = Depends(get_current_user),
    tracker: ActionTracker = Depends(get_action_tracker),
):
    return HasActedResponse(has_acted=tracker.has_acted_on(user.id, imdb_id, recommendation_type))


@router.get("/stats", response_model=ActionStats)
def action_stats(
    user: AuthenticatedUser = Depends(get_current_user),
    tracker: ActionTracker = Depends(get_action_tracker),
):
    return tracker.action_stats(user.id)


@router.get("/history", response_model=List[ActionRecord])
def action_history(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: AuthenticatedUser = Depends(get_current_user),
    tracker: ActionTracker = Depends(get_action_tracker),
):
    return tracker.action_history(user.id, limit=limit, offset=offset)
