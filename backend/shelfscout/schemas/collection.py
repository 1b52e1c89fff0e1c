from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from shelfscout.models import CollectionType, MediaFormat


class CollectionItem(BaseModel):
    """Read-only view of one collection entry as the recommendation engine sees it."""
    id: str
    imdb_id: Optional[str] = None
    title: str
    year: Optional[int] = None
    genre: Optional[str] = None
    director: Optional[str] = None
    format: str = MediaFormat.BLU_RAY.value
    personal_rating: Optional[float] = None
    collection_type: Optional[CollectionType] = CollectionType.OWNED
    poster_url: Optional[str] = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    @property
    def is_owned(self) -> bool:
        # Items without an explicit type count as owned
        return (self.collection_type or CollectionType.OWNED.value) == CollectionType.OWNED.value

    @property
    def is_wishlist(self) -> bool:
        return self.collection_type == CollectionType.WISHLIST.value


class CollectionItemCreate(BaseModel):
    imdb_id: Optional[str] = None
    title: str
    year: Optional[int] = None
    genre: Optional[str] = None
    director: Optional[str] = None
    format: str = MediaFormat.BLU_RAY.value
    personal_rating: Optional[float] = Field(default=None, ge=0, le=10)
    collection_type: CollectionType = CollectionType.OWNED
    poster_url: Optional[str] = None
    condition: Optional[str] = None
    notes: Optional[str] = None

    model_config = ConfigDict(use_enum_values=True)
