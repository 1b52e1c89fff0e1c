"""Strategy runners against a fake metadata client."""
import asyncio

import pytest

from conftest import FakeMetadataClient, item, title
from shelfscout.models import RecommendationType
from shelfscout.services.profile_analyzer import analyze_user_profile
from shelfscout.services.result import Err, ErrorKind, Ok
from shelfscout.services.strategies import (
    CollectionGapFinder,
    FormatUpgradeFinder,
    SimilarTitleFinder,
    extract_franchise_keywords,
    next_format,
    suggest_format,
)


def run(runner, collection):
    return asyncio.run(runner.run(collection, analyze_user_profile(collection)))


def test_collection_gaps_by_director(nolan_collection, nolan_metadata):
    result = run(CollectionGapFinder(nolan_metadata, request_delay_ms=0), nolan_collection)

    assert isinstance(result, Ok)
    recs = result.value
    assert [r.title for r in recs] == ["The Prestige", "Memento", "The Dark Knight Rises"]
    first = recs[0]
    assert first.recommendation_type == RecommendationType.COLLECTION_GAP.value
    assert first.score.relevance == pytest.approx(0.6)
    assert first.score.confidence == pytest.approx(0.8)
    # Nolan's average (8) is not above the global average (8)
    assert first.score.urgency == pytest.approx(0.5)
    assert first.source_items == ["c1", "c2", "c3", "w1"]
    assert first.suggested_format == "Blu-ray"
    assert nolan_metadata.calls == ["Christopher Nolan"]


def test_franchise_gaps_search_first_two_keywords():
    collection = [
        item("a", "tt1", "Alien 2", personal_rating=5),
        item("b", "tt2", "Mission: Impossible", personal_rating=5),
        item("c", "tt3", "Toy Story II", personal_rating=5),
    ]
    client = FakeMetadataClient(results={
        "Alien": [title("tt1", "Alien 2"), title("tt10", "Alien"), title("tt11", "Aliens"), title("tt12", "Alien 3")],
        "Mission": [title("tt20", "Mission: Impossible 2")],
    })

    recs = run(CollectionGapFinder(client, request_delay_ms=0), collection).value

    assert client.calls == ["Alien", "Mission"]
    assert [r.imdb_id for r in recs] == ["tt10", "tt11", "tt20"]
    assert all(r.score.relevance == pytest.approx(0.7) for r in recs)
    assert recs[0].source_items == ["a"]


def test_failed_director_search_is_skipped(nolan_collection):
    client = FakeMetadataClient(failures={"Christopher Nolan": ErrorKind.RATE_LIMITED})
    result = run(CollectionGapFinder(client, request_delay_ms=0), nolan_collection)
    assert isinstance(result, Ok)
    assert result.value == []


def test_format_upgrades_for_high_rated_items(nolan_collection, nolan_metadata):
    result = run(FormatUpgradeFinder(nolan_metadata, request_delay_ms=0), nolan_collection)

    recs = result.value
    assert [r.source_items for r in recs] == [["c1"], ["c3"]]
    for rec in recs:
        assert rec.suggested_format == "4K UHD"
        assert rec.score.confidence == pytest.approx(0.9)
        assert rec.score.urgency == pytest.approx(0.8)
        assert rec.score.relevance == pytest.approx(0.1)
    assert "Upgrade your Blu-ray copy to 4K UHD" in recs[0].reasoning
    # No lookups for upgrades
    assert nolan_metadata.call_count == 0


def test_format_upgrade_skips_top_format_and_unknown_formats():
    collection = [
        item("a", "tt1", "A", format="3D Blu-ray", personal_rating=9),
        item("b", "tt2", "B", format="VHS", personal_rating=9),
        item("c", "tt3", "C", format="4K UHD", personal_rating=9),
        item("d", "tt4", "D", format="DVD", personal_rating=5),
    ]
    recs = run(FormatUpgradeFinder(FakeMetadataClient(), request_delay_ms=0), collection).value
    assert [(r.imdb_id, r.suggested_format) for r in recs] == [("tt3", "3D Blu-ray")]
    assert recs[0].score.urgency == pytest.approx(0.6)


def test_three_item_collection_rated_9_8_9_gets_no_upgrades():
    collection = [
        item("j1", "tt9000001", "First", director="Jane Doe", format="Blu-ray", personal_rating=9),
        item("j2", "tt9000002", "Second", director="Jane Doe", format="Blu-ray", personal_rating=8),
        item("j3", "tt9000003", "Third", director="Jane Doe", format="Blu-ray", personal_rating=9),
    ]
    profile = analyze_user_profile(collection)
    assert profile.rating_pattern.avg_rating == pytest.approx(26 / 3)
    assert profile.rating_pattern.high_rated_threshold == pytest.approx(29 / 3)

    result = run(FormatUpgradeFinder(FakeMetadataClient(), request_delay_ms=0), collection)

    # 9 < 9.67, so even the top-rated items stay on Blu-ray
    assert isinstance(result, Ok)
    assert result.value == []


def test_similar_titles(nolan_collection, nolan_metadata):
    recs = run(SimilarTitleFinder(nolan_metadata, request_delay_ms=0), nolan_collection).value

    assert nolan_metadata.calls == ["Action", "Christopher Nolan", "Sci-Fi", "Christopher Nolan"]
    assert [r.title for r in recs] == [
        "The Matrix", "Gladiator", "The Prestige",
        "Blade Runner", "The Matrix", "The Prestige",
    ]
    genre_match, director_match = recs[0], recs[2]
    assert genre_match.score.relevance == pytest.approx(0.9)
    assert genre_match.score.confidence == pytest.approx(0.6)
    assert genre_match.score.urgency == pytest.approx(0.3)
    assert director_match.score.relevance == pytest.approx(0.6)
    assert director_match.score.confidence == pytest.approx(0.8)
    assert director_match.source_items == ["c1"]


def test_runner_failure_becomes_err(nolan_collection):
    class Broken(FormatUpgradeFinder):
        async def _generate(self, collection, profile):
            raise RuntimeError("boom")

    result = run(Broken(FakeMetadataClient(), request_delay_ms=0), nolan_collection)
    assert isinstance(result, Err)
    assert result.kind == ErrorKind.UNEXPECTED


def test_searches_are_throttled(nolan_collection, nolan_metadata):
    delays = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    runner = CollectionGapFinder(nolan_metadata, request_delay_ms=300, sleep=fake_sleep)
    run(runner, nolan_collection)
    assert delays == [0.3]


def test_extract_franchise_keywords():
    titles = [
        "Toy Story 2",
        "Star Wars: A New Hope",
        "Harry Potter - Deathly Hallows",
        "Up 2",
        "Back to the Future Part 2",
        "Fast Five",
        "Avengers: Endgame",
    ]
    keywords = extract_franchise_keywords(titles)
    assert keywords[:3] == ["Toy Story", "Star Wars", "Harry Potter"]
    # "Up" is too short to count
    assert "Up" not in keywords
    assert len(keywords) == 5


def test_format_helpers(nolan_collection):
    assert next_format("DVD") == "Blu-ray"
    assert next_format("3D Blu-ray") is None
    assert next_format("LaserDisc") is None

    assert suggest_format(analyze_user_profile([])) == "Blu-ray"
    dvds = [item(str(i), f"tt{i}", f"M{i}", format="DVD") for i in range(3)]
    assert suggest_format(analyze_user_profile(dvds)) == "Blu-ray"
    uhd = [item(str(i), f"tt{i}", f"M{i}", format="4K UHD") for i in range(3)]
    assert suggest_format(analyze_user_profile(uhd)) == "4K UHD"
