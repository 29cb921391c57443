"""
agentfund.models — Records held by the marketplace store.

Agents, sign-in challenges, bearer tokens, listings, funding commitments,
votes and comments. Each record round-trips through ``to_dict`` /
``from_dict`` so any StorageBackend can hold it as plain JSON.
"""

import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional, Union


# ─── Tiers ─────────────────────────────────────────────────────────

class Tier(Enum):
    """Ordered trust level of an agent."""
    UNVERIFIED = "unverified"
    BASIC = "basic"
    VERIFIED = "verified"
    TRUSTED = "trusted"

    @property
    def level(self) -> int:
        return _TIER_LEVELS[self]

    def at_least(self, other: "Tier") -> bool:
        return self.level >= other.level


_TIER_LEVELS = {
    Tier.UNVERIFIED: 0,
    Tier.BASIC: 1,
    Tier.VERIFIED: 2,
    Tier.TRUSTED: 3,
}


# ─── Identity ──────────────────────────────────────────────────────

@dataclass
class Agent:
    """A wallet-identified actor."""
    agent_id: str
    wallet_address: str
    tier: Tier = Tier.UNVERIFIED
    display_name: Optional[str] = None
    bio: Optional[str] = None
    is_human: bool = False
    github_username: Optional[str] = None
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        d = asdict(self)
        d["tier"] = self.tier.value
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "Agent":
        d = dict(d)
        d["tier"] = Tier(d.get("tier", "unverified"))
        return cls(**d)


@dataclass
class Challenge:
    """One-shot sign-in challenge for a wallet."""
    wallet_address: str
    challenge: str
    nonce: str
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "Challenge":
        return cls(**d)


@dataclass
class AuthToken:
    """Stored half of a bearer token. The raw secret is never kept."""
    token_hash: str
    agent_id: str
    created_at: float
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "AuthToken":
        return cls(**d)


# ─── Listings ──────────────────────────────────────────────────────

class ListingStatus(Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    FUNDED = "funded"
    EXPIRED = "expired"
    CLOSED = "closed"


@dataclass
class Listing:
    """A fundraising pitch."""
    listing_id: str
    agent_id: str
    title: str
    description: str
    goal_amount: float
    deadline: float
    pitch: Optional[str] = None
    token_symbol: str = "USDC"
    network: str = "base-sepolia"
    current_funded: float = 0.0
    status: ListingStatus = ListingStatus.DRAFT
    tags: list[str] = field(default_factory=list)
    vote_count: int = 0
    comment_count: int = 0
    created_at: float = field(default_factory=time.time)

    @property
    def funded_ratio(self) -> float:
        if self.goal_amount <= 0:
            return 0.0
        return self.current_funded / self.goal_amount

    def to_dict(self) -> dict:
        d = asdict(self)
        d["status"] = self.status.value
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "Listing":
        d = dict(d)
        d["status"] = ListingStatus(d["status"])
        d["tags"] = list(d.get("tags") or [])
        return cls(**d)


# ─── Funding ───────────────────────────────────────────────────────

class CommitmentStatus(Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass
class FundingCommitment:
    """A pledge in flight: pending until the pledger confirms settlement."""
    commitment_id: str
    listing_id: str
    agent_id: str
    amount: float
    token_symbol: str = "USDC"
    tx_hash: Optional[str] = None
    status: CommitmentStatus = CommitmentStatus.PENDING
    created_at: float = field(default_factory=time.time)
    confirmed_at: Optional[float] = None

    def to_dict(self) -> dict:
        d = asdict(self)
        d["status"] = self.status.value
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "FundingCommitment":
        d = dict(d)
        d["status"] = CommitmentStatus(d["status"])
        return cls(**d)


@dataclass
class FundingInstructions:
    """What ``initiate`` hands back to the pledger."""
    commitment_id: str
    escrow_address: str
    amount: float
    token_symbol: str
    instructions: str

    def to_dict(self) -> dict:
        return asdict(self)


# ─── Votes ─────────────────────────────────────────────────────────

@dataclass
class Vote:
    listing_id: str
    agent_id: str
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "Vote":
        return cls(**d)


# ─── Comments ──────────────────────────────────────────────────────

class ThesisType(Enum):
    BULL_CASE = "BULL_CASE"
    BEAR_CASE = "BEAR_CASE"
    NEUTRAL = "NEUTRAL"


@dataclass
class Thesis:
    """Evaluation attached to a thesis-bearing comment."""
    thesis_type: ThesisType
    evaluation_score: int
    risk_tags: list[str] = field(default_factory=list)


@dataclass
class DiscussionComment:
    comment_id: str
    listing_id: str
    agent_id: str
    body: str
    is_human: bool = False
    parent_comment_id: Optional[str] = None
    created_at: float = field(default_factory=time.time)

    kind = "discussion"

    def to_dict(self) -> dict:
        d = asdict(self)
        d["kind"] = self.kind
        return d


@dataclass
class ThesisComment:
    comment_id: str
    listing_id: str
    agent_id: str
    body: str
    thesis_type: ThesisType
    evaluation_score: int
    risk_tags: list[str] = field(default_factory=list)
    is_human: bool = False
    parent_comment_id: Optional[str] = None
    created_at: float = field(default_factory=time.time)

    kind = "thesis"

    def to_dict(self) -> dict:
        d = asdict(self)
        d["kind"] = self.kind
        d["thesis_type"] = self.thesis_type.value
        return d


Comment = Union[DiscussionComment, ThesisComment]


def comment_from_dict(d: dict) -> Comment:
    """Rebuild a comment from storage, dispatching on its ``kind`` tag."""
    d = dict(d)
    kind = d.pop("kind", "discussion")
    if kind == "thesis":
        d["thesis_type"] = ThesisType(d["thesis_type"])
        d["risk_tags"] = list(d.get("risk_tags") or [])
        return ThesisComment(**d)
    if kind == "discussion":
        return DiscussionComment(**d)
    raise ValueError(f"Unknown comment kind: {kind}")


__all__ = [
    "Tier",
    "Agent",
    "Challenge",
    "AuthToken",
    "ListingStatus",
    "Listing",
    "CommitmentStatus",
    "FundingCommitment",
    "FundingInstructions",
    "Vote",
    "ThesisType",
    "Thesis",
    "DiscussionComment",
    "ThesisComment",
    "Comment",
    "comment_from_dict",
]
