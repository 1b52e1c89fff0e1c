"""Pytest configuration for backend tests."""
import sys
from pathlib import Path
from typing import Dict, List

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from shelfscout.database import Base

# Import the entire models module so every table is registered with Base.metadata
import shelfscout.models  # noqa: F401
from shelfscout.schemas.collection import CollectionItem
from shelfscout.services.metadata_client import MetadataTitle, SearchResults
from shelfscout.services.result import Err, ErrorKind, Ok


@pytest.fixture(scope="function")
def engine():
    """In-memory SQLite shared across connections for the duration of one test."""
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture(scope="function")
def db(session_factory) -> Session:
    session = session_factory()
    yield session
    session.close()


class FakeMetadataClient:
    """
    Canned search results keyed by query text.

    Unknown queries return an empty result; queries listed in ``failures``
    return the given error kind. Every call is counted.
    """

    def __init__(self, results: Dict[str, List[MetadataTitle]] = None, failures: Dict[str, ErrorKind] = None):
        self.results = results or {}
        self.failures = failures or {}
        self.calls: List[str] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def search_by_text(self, query):
        self.calls.append(query)
        if query in self.failures:
            return Err(self.failures[query], f"failed: {query}")
        return Ok(SearchResults(titles=list(self.results.get(query, []))))

    async def get_details(self, imdb_id):
        self.calls.append(f"details:{imdb_id}")
        return Ok({"imdbID": imdb_id})


def title(imdb_id: str, name: str, year: int = 2000) -> MetadataTitle:
    return MetadataTitle(imdb_id=imdb_id, title=name, year=year)


def item(item_id: str, imdb_id: str, name: str, **kwargs) -> CollectionItem:
    return CollectionItem(id=item_id, imdb_id=imdb_id, title=name, **kwargs)


@pytest.fixture
def nolan_collection() -> List[CollectionItem]:
    """Three owned Nolan Blu-rays plus one wishlist entry."""
    return [
        item("c1", "tt0372784", "Batman Begins", year=2005, genre="Action, Drama",
             director="Christopher Nolan", format="Blu-ray", personal_rating=9),
        item("c2", "tt0468569", "The Dark Knight", year=2008, genre="Action, Crime",
             director="Christopher Nolan", format="Blu-ray", personal_rating=6),
        item("c3", "tt1375666", "Inception", year=2010, genre="Sci-Fi, Action",
             director="Christopher Nolan", format="Blu-ray", personal_rating=9),
        item("w1", "tt0816692", "Interstellar", year=2014, genre="Sci-Fi",
             director="Christopher Nolan", format="4K UHD", collection_type="wishlist"),
    ]


@pytest.fixture
def nolan_metadata() -> FakeMetadataClient:
    return FakeMetadataClient(
        results={
            "Christopher Nolan": [
                title("tt0468569", "The Dark Knight", 2008),   # owned
                title("tt0816692", "Interstellar", 2014),      # wishlisted
                title("tt0482571", "The Prestige", 2006),
                title("tt0209144", "Memento", 2000),
                title("tt1345836", "The Dark Knight Rises", 2012),
                title("tt5013056", "Dunkirk", 2017),
            ],
            "Action": [
                title("tt0133093", "The Matrix", 1999),
                title("tt0372784", "Batman Begins", 2005),     # owned
                title("tt0172495", "Gladiator", 2000),
            ],
            "Sci-Fi": [
                title("tt0083658", "Blade Runner", 1982),
                title("tt0133093", "The Matrix", 1999),
            ],
        }
    )
