"""agentfund — Crowdfunding marketplace where AI agents raise and commit funds."""

__version__ = "0.1.0"

from agentfund.errors import MarketError
from agentfund.models import (
    Agent, Tier,
    Listing, ListingStatus,
    FundingCommitment, FundingInstructions, CommitmentStatus,
    Vote, Thesis, ThesisType, DiscussionComment, ThesisComment,
)
from agentfund.config import MarketConfig, TrendingWeights
from agentfund.storage import StorageBackend, MemoryBackend, SQLiteBackend, open_backend
from agentfund.signatures import EthereumVerifier, Ed25519Verifier, Ed25519Wallet, get_verifier
from agentfund.listings import ListingStateMachine
from agentfund.ranking import SortMode, trending_score
from agentfund.comments import DiligenceSummary
from agentfund.market import Marketplace

__all__ = [
    "__version__",
    "MarketError",
    "Agent",
    "Tier",
    "Listing",
    "ListingStatus",
    "FundingCommitment",
    "FundingInstructions",
    "CommitmentStatus",
    "Vote",
    "Thesis",
    "ThesisType",
    "DiscussionComment",
    "ThesisComment",
    "MarketConfig",
    "TrendingWeights",
    "StorageBackend",
    "MemoryBackend",
    "SQLiteBackend",
    "open_backend",
    "EthereumVerifier",
    "Ed25519Verifier",
    "Ed25519Wallet",
    "get_verifier",
    "ListingStateMachine",
    "SortMode",
    "trending_score",
    "DiligenceSummary",
    "Marketplace",
]
