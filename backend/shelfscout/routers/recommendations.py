from typing import List, Optional
import logging

from fastapi import APIRouter, Body, Depends, Query

from shelfscout.core.auth import AuthenticatedUser, get_current_user
from shelfscout.core.config import settings
from shelfscout.dependencies import (
    get_action_tracker,
    get_collection_store,
    get_recommendation_service,
    get_scheduler,
)
from shelfscout.models import RecommendationType
from shelfscout.scheduler import RecommendationScheduler
from shelfscout.schemas.action import RecommendationPreferences, RecommendationPreferencesUpdate
from shelfscout.schemas.collection import CollectionItem
from shelfscout.schemas.recommendation import (
    RecommendationFilters,
    RecommendationStats,
    RecommendationsResponse,
    ScheduleRequest,
    ScheduleResponse,
)
from shelfscout.services.action_tracker import ActionTracker
from shelfscout.services.collection_store import CollectionStore
from shelfscout.services.recommendation_service import GenerationResult, RecommendationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/recommendations", tags=["recommendations"])


def _to_response(service: RecommendationService, result: GenerationResult) -> RecommendationsResponse:
    return RecommendationsResponse(
        session_id=result.session_id,
        items=result.recommendations,
        cache_hit=result.cache_hit,
        error=result.error,
        message=result.message,
        debug=service.debug_info(result),
    )


def _queue_refresh_if_due(
    scheduler: RecommendationScheduler,
    user_id: str,
    collection: List[CollectionItem],
    result: GenerationResult,
) -> None:
    """Near-expiry cache hits are served as-is and refreshed in the background."""
    if not result.refresh_due:
        return
    scheduler.schedule(
        user_id,
        collection,
        delay=settings.CACHE_REFRESH_DELAY_SECONDS,
        priority="low",
        trigger="cache_expiry",
    )


@router.get("", response_model=RecommendationsResponse)
async def get_recommendations(
    types: Optional[List[RecommendationType]] = Query(None),
    min_confidence: Optional[float] = Query(None, ge=0, le=1),
    max_results: Optional[int] = Query(None, ge=1, le=100),
    exclude_owned: Optional[bool] = Query(None),
    exclude_wishlist: Optional[bool] = Query(None),
    user: AuthenticatedUser = Depends(get_current_user),
    store: CollectionStore = Depends(get_collection_store),
    tracker: ActionTracker = Depends(get_action_tracker),
    service: RecommendationService = Depends(get_recommendation_service),
    scheduler: RecommendationScheduler = Depends(get_scheduler),
):
    filters = RecommendationFilters(
        types=types,
        min_confidence=min_confidence,
        max_results=max_results,
        exclude_owned=exclude_owned,
        exclude_wishlist=exclude_wishlist,
    )
    logger.info("Fetching recommendations for user %s", user.id)
    collection = store.list(user.id)
    result = await service.generate_recommendations(user.id, collection, filters, tracker=tracker)
    _queue_refresh_if_due(scheduler, user.id, collection, result)
    return _to_response(service, result)


@router.post("", response_model=RecommendationsResponse)
async def post_recommendations(
    filters: Optional[RecommendationFilters] = Body(None),
    user: AuthenticatedUser = Depends(get_current_user),
    store: CollectionStore = Depends(get_collection_store),
    tracker: ActionTracker = Depends(get_action_tracker),
    service: RecommendationService = Depends(get_recommendation_service),
    scheduler: RecommendationScheduler = Depends(get_scheduler),
):
    collection = store.list(user.id)
    result = await service.generate_recommendations(user.id, collection, filters, tracker=tracker)
    _queue_refresh_if_due(scheduler, user.id, collection, result)
    return _to_response(service, result)


@router.post("/refresh", response_model=RecommendationsResponse)
async def refresh_recommendations(
    filters: Optional[RecommendationFilters] = Body(None),
    user: AuthenticatedUser = Depends(get_current_user),
    store: CollectionStore = Depends(get_collection_store),
    tracker: ActionTracker = Depends(get_action_tracker),
    service: RecommendationService = Depends(get_recommendation_service),
):
    logger.info("Refreshing recommendations for user %s", user.id)
    result = await service.refresh_recommendations(user.id, store.list(user.id), filters, tracker=tracker)
    return _to_response(service, result)


@router.post("/filter", response_model=RecommendationsResponse)
def filter_recommendations(
    filters: RecommendationFilters,
    user: AuthenticatedUser = Depends(get_current_user),
    service: RecommendationService = Depends(get_recommendation_service),
):
    items = service.filter_recommendations(user.id, filters)
    return RecommendationsResponse(session_id=service.state(user.id).session_id, items=items)


@router.get("/stats", response_model=RecommendationStats)
def get_recommendation_stats(
    user: AuthenticatedUser = Depends(get_current_user),
    service: RecommendationService = Depends(get_recommendation_service),
):
    return service.get_stats(user.id)


@router.post("/schedule", response_model=ScheduleResponse)
async def schedule_recommendations(
    payload: Optional[ScheduleRequest] = Body(None),
    user: AuthenticatedUser = Depends(get_current_user),
    scheduler: RecommendationScheduler = Depends(get_scheduler),
):
    payload = payload or ScheduleRequest()
    job_id = scheduler.schedule(
        user.id,
        delay=payload.delay,
        priority=payload.priority,
        trigger=payload.trigger,
    )
    return ScheduleResponse(scheduled=True, job_id=job_id)


@router.get("/preferences", response_model=RecommendationPreferences)
def get_preferences(
    user: AuthenticatedUser = Depends(get_current_user),
    tracker: ActionTracker = Depends(get_action_tracker),
):
    return tracker.get_preferences(user.id) or RecommendationPreferences(user_id=user.id)


@router.put("/preferences", response_model=RecommendationPreferences)
def update_preferences(
    payload: RecommendationPreferencesUpdate,
    user: AuthenticatedUser = Depends(get_current_user),
    tracker: ActionTracker = Depends(get_action_tracker),
):
    return tracker.update_preferences(user.id, payload)
