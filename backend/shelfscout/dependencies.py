from fastapi import Depends, Request
from sqlalchemy.orm import Session

from shelfscout.database import get_db
from shelfscout.scheduler import RecommendationScheduler
from shelfscout.services.action_tracker import ActionTracker
from shelfscout.services.collection_store import SqlCollectionStore
from shelfscout.services.recommendation_service import RecommendationService


def get_recommendation_service(request: Request) -> RecommendationService:
    return request.app.state.recommendation_service


def get_scheduler(request: Request) -> RecommendationScheduler:
    return request.app.state.scheduler


def get_collection_store(db: Session = Depends(get_db)) -> SqlCollectionStore:
    return SqlCollectionStore(db)


def get_action_tracker(
    db: Session = Depends(get_db),
    store: SqlCollectionStore = Depends(get_collection_store),
) -> ActionTracker:
    return ActionTracker(db, store)
