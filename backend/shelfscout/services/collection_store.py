"""Access to a user's physical media collection."""
import logging
from typing import List, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shelfscout.models import PhysicalMediaItem
from shelfscout.schemas.collection import CollectionItem, CollectionItemCreate

logger = logging.getLogger(__name__)


class CollectionStoreError(Exception):
    """The collection backend rejected a read or write."""


class CollectionStore(Protocol):
    def list(self, user_id: str) -> List[CollectionItem]:
        ...

    def insert(self, user_id: str, item: CollectionItemCreate) -> CollectionItem:
        ...


class SqlCollectionStore:
    def __init__(self, db: Session):
        self.db = db

    def list(self, user_id: str) -> List[CollectionItem]:
        rows = (
            self.db.query(PhysicalMediaItem)
            .filter(PhysicalMediaItem.user_id == user_id)
            .order_by(PhysicalMediaItem.created_at.asc())
            .all()
        )
        return [CollectionItem.model_validate(row) for row in rows]

    def insert(self, user_id: str, item: CollectionItemCreate) -> CollectionItem:
        row = PhysicalMediaItem(user_id=user_id, **item.model_dump())
        try:
            self.db.add(row)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning("[Collection] Insert failed for user_id=%s title=%r: %s", user_id, item.title, e)
            raise CollectionStoreError(str(e)) from e
        self.db.refresh(row)
        return CollectionItem.model_validate(row)


def load_collection(user_id: str, session_factory) -> List[CollectionItem]:
    """Read a collection snapshot outside of a request (background jobs)."""
    db: Session = session_factory()
    try:
        return SqlCollectionStore(db).list(user_id)
    finally:
        db.close()
