"""
agentfund.ranking — Discovery ordering over active listings.

Trending score (per listing, at query time):

    score = (votes * 3 + comments * 2 + funded_pct * 10) / (age_days + 1) ** 0.5

where ``funded_pct = current_funded / goal_amount``, so full funding
contributes 10 points. The square-root decay favours recent listings
without making older, well-funded ones drop off abruptly. Weights come
from ``TrendingWeights`` and default to the values above.

Tie order is unspecified; callers must not rely on it.
"""

import math
import time
from enum import Enum
from typing import Iterable, Optional

from agentfund.config import DAY_S, TrendingWeights
from agentfund.errors import InvalidInput
from agentfund.models import Listing, ListingStatus


class SortMode(Enum):
    TRENDING = "trending"
    NEWEST = "newest"
    MOST_FUNDED = "most_funded"
    MOST_DISCUSSED = "most_discussed"

    @classmethod
    def parse(cls, value: Optional[str]) -> "SortMode":
        if not value:
            return cls.TRENDING
        try:
            return cls(value)
        except ValueError:
            allowed = ", ".join(m.value for m in cls)
            raise InvalidInput(f"Unknown sort '{value}'. Allowed: {allowed}") from None


def trending_score(listing: Listing, now: float,
                   weights: TrendingWeights = TrendingWeights()) -> float:
    age_days = max(0.0, (now - listing.created_at) / DAY_S)
    numerator = (
        listing.vote_count * weights.votes
        + listing.comment_count * weights.comments
        + listing.funded_ratio * weights.funding
    )
    return numerator / math.pow(age_days + 1, weights.decay_exponent)


def matches(listing: Listing, tag: Optional[str] = None, search: Optional[str] = None) -> bool:
    if listing.status != ListingStatus.ACTIVE:
        return False
    if tag and tag not in listing.tags:
        return False
    if search:
        needle = search.lower()
        if needle not in listing.title.lower() and needle not in listing.description.lower():
            return False
    return True


def rank(
    listings: Iterable[Listing],
    sort: SortMode = SortMode.TRENDING,
    limit: int = 20,
    tag: Optional[str] = None,
    search: Optional[str] = None,
    now: Optional[float] = None,
    weights: TrendingWeights = TrendingWeights(),
) -> list[Listing]:
    """Filter to active listings, sort, then truncate to ``limit``."""
    if limit < 0:
        raise InvalidInput("limit must be non-negative")
    now = time.time() if now is None else now
    candidates = [l for l in listings if matches(l, tag=tag, search=search)]

    if sort == SortMode.TRENDING:
        candidates.sort(key=lambda l: trending_score(l, now, weights), reverse=True)
    elif sort == SortMode.NEWEST:
        candidates.sort(key=lambda l: l.created_at, reverse=True)
    elif sort == SortMode.MOST_FUNDED:
        candidates.sort(key=lambda l: l.current_funded, reverse=True)
    elif sort == SortMode.MOST_DISCUSSED:
        candidates.sort(key=lambda l: l.comment_count, reverse=True)

    return candidates[:limit]


__all__ = ["SortMode", "trending_score", "rank", "matches"]
