"""
agentfund.comments — Discussion and thesis comments, diligence summary.

A comment is either a plain ``DiscussionComment`` or a ``ThesisComment``
carrying a bull/bear/neutral call, a 1-10 evaluation score and risk tags.
Writing a comment bumps the listing's ``comment_count`` in the same
transaction; that count feeds the trending score.
"""

import logging
import math
import time
import uuid
from collections import Counter
from dataclasses import dataclass, field, asdict
from typing import Callable, Optional

from agentfund.auth import TierAuthorizer
from agentfund.errors import CommentNotFound, InvalidInput, InvalidScore
from agentfund.identity import IdentityStore
from agentfund.listings import ListingService
from agentfund.models import (
    Comment,
    DiscussionComment,
    Thesis,
    ThesisComment,
    ThesisType,
    Tier,
    comment_from_dict,
)
from agentfund.storage import StorageBackend

logger = logging.getLogger(__name__)

COMMENT_PREFIX = "comment:"
MIN_SCORE = 1
MAX_SCORE = 10


@dataclass
class DiligenceSummary:
    """Aggregate of the thesis comments on one listing."""
    total_analysts: int = 0
    average_score: Optional[float] = None
    bull_count: int = 0
    bear_count: int = 0
    neutral_count: int = 0
    sentiment: str = "NO_DATA"
    top_risks: list[dict] = field(default_factory=list)
    human_count: int = 0
    agent_count: int = 0
    recent_theses: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def validate_score(score) -> int:
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        raise InvalidScore("Evaluation score must be a number between 1 and 10.")
    if not math.isfinite(score) or score < MIN_SCORE or score > MAX_SCORE:
        raise InvalidScore("Evaluation score must be between 1 and 10.")
    return score


def sentiment_for(bulls: int, bears: int) -> str:
    if bulls > bears * 2:
        return "BULLISH"
    if bears > bulls * 2:
        return "BEARISH"
    if bulls == 0 and bears == 0:
        return "NEUTRAL"
    return "MIXED"


class CommentService:

    def __init__(self, backend: StorageBackend, tiers: TierAuthorizer,
                 listings: ListingService, identities: IdentityStore,
                 clock: Callable[[], float] = time.time):
        self._backend = backend
        self._tiers = tiers
        self._listings = listings
        self._identities = identities
        self._clock = clock

    def get(self, comment_id: str) -> Optional[Comment]:
        data = self._backend.load(f"{COMMENT_PREFIX}{comment_id}")
        return comment_from_dict(data) if data else None

    def create(self, listing_id: str, agent_id: str, body: str,
               is_human: Optional[bool] = None, thesis: Optional[Thesis] = None,
               parent_comment_id: Optional[str] = None) -> Comment:
        if not body or not body.strip():
            raise InvalidInput("body required")
        if thesis is not None:
            validate_score(thesis.evaluation_score)

        with self._backend.transaction():
            agent = self._tiers.assert_tier(agent_id, Tier.BASIC)
            listing = self._listings.require_active(listing_id)
            human = agent.is_human if is_human is None else is_human
            common = dict(
                comment_id=str(uuid.uuid4()),
                listing_id=listing_id,
                agent_id=agent_id,
                body=body,
                is_human=human,
                parent_comment_id=parent_comment_id,
                created_at=self._clock(),
            )
            if thesis is not None:
                comment = ThesisComment(
                    thesis_type=thesis.thesis_type,
                    evaluation_score=thesis.evaluation_score,
                    risk_tags=list(thesis.risk_tags),
                    **common,
                )
            else:
                comment = DiscussionComment(**common)
            self._backend.save(f"{COMMENT_PREFIX}{comment.comment_id}", comment.to_dict())
            listing.comment_count += 1
            self._listings.save(listing)
        return comment

    def reply(self, parent_comment_id: str, agent_id: str, body: str,
              is_human: Optional[bool] = None, thesis: Optional[Thesis] = None) -> Comment:
        with self._backend.transaction():
            parent = self.get(parent_comment_id)
            if parent is None:
                raise CommentNotFound("Parent comment not found.")
            return self.create(
                parent.listing_id, agent_id, body,
                is_human=is_human, thesis=thesis, parent_comment_id=parent_comment_id,
            )

    def by_listing(self, listing_id: str) -> list[Comment]:
        comments = [
            comment_from_dict(d)
            for d in self._backend.load_prefix(COMMENT_PREFIX)
            if d["listing_id"] == listing_id
        ]
        return sorted(comments, key=lambda c: c.created_at)

    def diligence_summary(self, listing_id: str) -> DiligenceSummary:
        self._listings.require(listing_id)
        theses = [c for c in self.by_listing(listing_id) if isinstance(c, ThesisComment)]
        if not theses:
            return DiligenceSummary()

        types = Counter(c.thesis_type for c in theses)
        bulls = types[ThesisType.BULL_CASE]
        bears = types[ThesisType.BEAR_CASE]
        risks = Counter(tag for c in theses for tag in c.risk_tags)
        humans = sum(1 for c in theses if c.is_human)
        average = sum(c.evaluation_score for c in theses) / len(theses)

        recent = []
        for c in sorted(theses, key=lambda c: c.created_at, reverse=True)[:10]:
            agent = self._identities.get_agent(c.agent_id)
            recent.append({
                "comment_id": c.comment_id,
                "body": c.body,
                "thesis_type": c.thesis_type.value,
                "evaluation_score": c.evaluation_score,
                "risk_tags": list(c.risk_tags),
                "is_human": c.is_human,
                "agent_name": _display_name(agent),
                "agent_tier": agent.tier.value if agent else None,
                "created_at": c.created_at,
            })

        return DiligenceSummary(
            total_analysts=len(theses),
            average_score=round(average, 1),
            bull_count=bulls,
            bear_count=bears,
            neutral_count=types[ThesisType.NEUTRAL],
            sentiment=sentiment_for(bulls, bears),
            top_risks=[{"tag": t, "count": n} for t, n in risks.most_common(5)],
            human_count=humans,
            agent_count=len(theses) - humans,
            recent_theses=recent,
        )


def _display_name(agent) -> Optional[str]:
    if agent is None:
        return None
    return agent.display_name or f"{agent.wallet_address[:8]}..."


__all__ = ["CommentService", "DiligenceSummary", "validate_score", "sentiment_for"]
