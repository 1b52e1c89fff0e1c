"""Derive a preference profile from a user's collection. Pure, no I/O."""
from collections import Counter, defaultdict
from typing import Dict, List, Sequence

from shelfscout.schemas.collection import CollectionItem
from shelfscout.schemas.recommendation import (
    CollectionStats,
    DirectorPreference,
    FormatPreference,
    GenrePreference,
    RatingPattern,
    UserProfile,
)

DEFAULT_AVG_RATING = 7.0
MIN_HIGH_RATED_THRESHOLD = 8.0
DEFAULT_DECADE = "2000s"
TOP_N = 10


def split_multi(value) -> List[str]:
    """Split a comma-separated genre/director field into trimmed names."""
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _tally(items: Sequence[CollectionItem], field: str) -> Dict[str, Dict[str, list]]:
    # Insertion order is kept so equal counts rank by first appearance
    tally: Dict[str, Dict[str, list]] = defaultdict(lambda: {"count": 0, "ratings": []})
    for item in items:
        for name in split_multi(getattr(item, field)):
            entry = tally[name]
            entry["count"] += 1
            if item.personal_rating:
                entry["ratings"].append(item.personal_rating)
    return tally


def _avg(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def analyze_user_profile(collection: Sequence[CollectionItem]) -> UserProfile:
    owned = [item for item in collection if item.is_owned]
    wishlist = [item for item in collection if item.is_wishlist]

    genre_tally = _tally(owned, "genre")
    favorite_genres = sorted(
        (
            GenrePreference(genre=name, count=data["count"], avg_rating=_avg(data["ratings"]))
            for name, data in genre_tally.items()
        ),
        key=lambda g: g.count,
        reverse=True,
    )[:TOP_N]

    director_tally = _tally(owned, "director")
    favorite_directors = sorted(
        (
            DirectorPreference(director=name, count=data["count"], avg_rating=_avg(data["ratings"]))
            for name, data in director_tally.items()
        ),
        key=lambda d: d.count,
        reverse=True,
    )[:TOP_N]

    format_counts = Counter(item.format for item in owned)
    format_preferences = [
        FormatPreference(format=fmt, count=count)
        for fmt, count in sorted(format_counts.items(), key=lambda kv: kv[1], reverse=True)
    ]

    ratings = [item.personal_rating for item in owned if item.personal_rating]
    avg_rating = _avg(ratings) if ratings else DEFAULT_AVG_RATING
    high_rated_threshold = max(avg_rating + 1, MIN_HIGH_RATED_THRESHOLD)

    decades = Counter((item.year // 10) * 10 for item in owned if item.year)
    if decades:
        # most_common keeps first-seen order on ties
        most_collected_decade = f"{decades.most_common(1)[0][0]}s"
    else:
        most_collected_decade = DEFAULT_DECADE

    return UserProfile(
        favorite_genres=favorite_genres,
        favorite_directors=favorite_directors,
        format_preferences=format_preferences,
        rating_pattern=RatingPattern(
            avg_rating=avg_rating,
            high_rated_threshold=high_rated_threshold,
            rating_count=len(ratings),
        ),
        collection_stats=CollectionStats(
            total_items=len(collection),
            owned_items=len(owned),
            wishlist_items=len(wishlist),
            most_collected_decade=most_collected_decade,
        ),
    )
