"""
agentfund.market — The marketplace facade.

Wires the identity, auth, listing, funding, vote and comment services over
one shared StorageBackend and exposes the operations collaborators call.
Every caller-facing method takes an already-resolved ``agent_id``; turning
a bearer token into an agent is ``validate_token``'s job.

Usage:
    market = Marketplace.from_config(MarketConfig.from_env())
    challenge = market.create_challenge(wallet)
    token, agent = market.verify(wallet, signature)
    agent = market.validate_token(token)
"""

import time
from typing import Callable, Optional

from agentfund.auth import AuthService, ChallengeManager, TierAuthorizer, TokenIssuer
from agentfund.comments import CommentService, DiligenceSummary
from agentfund.config import MarketConfig
from agentfund.funding import FundingService
from agentfund.identity import IdentityStore
from agentfund.listings import ListingService
from agentfund.models import (
    Agent,
    Challenge,
    Comment,
    FundingCommitment,
    FundingInstructions,
    Listing,
    ListingStatus,
    Thesis,
    Tier,
    Vote,
)
from agentfund.ranking import SortMode
from agentfund.signatures import SignatureVerifier, get_verifier
from agentfund.storage import MemoryBackend, StorageBackend, open_backend
from agentfund.votes import VoteLedger


class Marketplace:

    def __init__(self, backend: Optional[StorageBackend] = None,
                 config: Optional[MarketConfig] = None,
                 verifier: Optional[SignatureVerifier] = None,
                 clock: Callable[[], float] = time.time):
        self.config = config or MarketConfig()
        self.backend = backend if backend is not None else MemoryBackend()
        self.verifier = verifier or get_verifier(self.config.signature_scheme)
        self.clock = clock

        self.identities = IdentityStore(self.backend, clock=clock)
        self.tiers = TierAuthorizer(self.identities)
        self.challenges = ChallengeManager(
            self.backend, ttl_s=self.config.challenge_ttl_s, clock=clock,
        )
        self.tokens = TokenIssuer(
            self.backend, self.identities, secret=self.config.token_secret,
            ttl_s=self.config.token_ttl_s, clock=clock,
        )
        self.auth = AuthService(
            self.backend, self.challenges, self.tokens, self.identities, self.verifier,
        )
        self.listings = ListingService(self.backend, self.tiers, self.config, clock=clock)
        self.funding = FundingService(
            self.backend, self.tiers, self.listings, self.config, clock=clock,
        )
        self.votes = VoteLedger(self.backend, self.tiers, self.listings, clock=clock)
        self.comments = CommentService(
            self.backend, self.tiers, self.listings, self.identities, clock=clock,
        )

    @classmethod
    def from_config(cls, config: MarketConfig, clock: Callable[[], float] = time.time) -> "Marketplace":
        return cls(backend=open_backend(config.database_path), config=config, clock=clock)

    # ─── Identity & auth ───────────────────────────────────────────

    def create_challenge(self, wallet_address: str) -> Challenge:
        return self.challenges.create_challenge(wallet_address)

    def verify(self, wallet_address: str, signature: str,
               challenge_text: Optional[str] = None) -> tuple[str, Agent]:
        return self.auth.verify(wallet_address, signature, challenge_text)

    def validate_token(self, raw_token: Optional[str]) -> Optional[Agent]:
        return self.tokens.validate(raw_token)

    def assert_tier(self, agent_id: str, required: Tier) -> Agent:
        return self.tiers.assert_tier(agent_id, required)

    def upgrade_tier(self, agent_id: str, tier: Tier) -> Agent:
        return self.identities.upgrade_tier(agent_id, tier)

    def get_agent(self, agent_id: str) -> Optional[Agent]:
        return self.identities.get_agent(agent_id)

    def get_agent_by_wallet(self, wallet_address: str) -> Optional[Agent]:
        return self.identities.get_by_wallet(wallet_address)

    def update_profile(self, agent_id: str, display_name: Optional[str] = None,
                       bio: Optional[str] = None, is_human: Optional[bool] = None) -> Agent:
        return self.identities.update_profile(
            agent_id, display_name=display_name, bio=bio, is_human=is_human,
        )

    # ─── Listings ──────────────────────────────────────────────────

    def create_listing(self, agent_id: str, title: str, description: str,
                       goal_amount: float, deadline: float, **fields) -> Listing:
        return self.listings.create(
            agent_id, title, description, goal_amount, deadline, **fields,
        )

    def publish_listing(self, listing_id: str, agent_id: str) -> Listing:
        return self.listings.publish(listing_id, agent_id)

    def update_listing_status(self, listing_id: str, agent_id: Optional[str],
                              status: ListingStatus, as_admin: bool = False) -> Listing:
        return self.listings.update_status(listing_id, agent_id, status, as_admin=as_admin)

    def get_listing(self, listing_id: str) -> Listing:
        return self.listings.require(listing_id)

    def list_listings(self, sort="trending", limit: int = 20,
                      tag: Optional[str] = None, search: Optional[str] = None) -> list[Listing]:
        mode = sort if isinstance(sort, SortMode) else SortMode.parse(sort)
        return self.listings.list_listings(mode, limit=limit, tag=tag, search=search)

    def listings_by_agent(self, agent_id: str) -> list[Listing]:
        return self.listings.by_agent(agent_id)

    # ─── Funding ───────────────────────────────────────────────────

    def initiate_funding(self, listing_id: str, agent_id: str, amount: float,
                         token_symbol: Optional[str] = None) -> FundingInstructions:
        return self.funding.initiate(listing_id, agent_id, amount, token_symbol)

    def confirm_funding(self, commitment_id: str, agent_id: str, tx_hash: str) -> dict:
        return self.funding.confirm(commitment_id, agent_id, tx_hash)

    def commitments_for_listing(self, listing_id: str) -> list[FundingCommitment]:
        return self.funding.by_listing(listing_id)

    def listings_funded_by(self, agent_id: str) -> list[Listing]:
        return self.funding.funded_by_agent(agent_id)

    def fail_stale_commitments(self, older_than_s: Optional[float] = None) -> list[FundingCommitment]:
        return self.funding.fail_stale(older_than_s)

    # ─── Votes ─────────────────────────────────────────────────────

    def cast_vote(self, listing_id: str, agent_id: str) -> dict:
        return self.votes.cast(listing_id, agent_id)

    def remove_vote(self, listing_id: str, agent_id: str) -> dict:
        return self.votes.remove(listing_id, agent_id)

    def votes_for_listing(self, listing_id: str) -> list[Vote]:
        return self.votes.by_listing(listing_id)

    # ─── Comments ──────────────────────────────────────────────────

    def create_comment(self, listing_id: str, agent_id: str, body: str,
                       is_human: Optional[bool] = None,
                       thesis: Optional[Thesis] = None) -> Comment:
        return self.comments.create(listing_id, agent_id, body, is_human=is_human, thesis=thesis)

    def reply_comment(self, parent_comment_id: str, agent_id: str, body: str,
                      is_human: Optional[bool] = None,
                      thesis: Optional[Thesis] = None) -> Comment:
        return self.comments.reply(parent_comment_id, agent_id, body, is_human=is_human, thesis=thesis)

    def comments_for_listing(self, listing_id: str) -> list[Comment]:
        return self.comments.by_listing(listing_id)

    def diligence_summary(self, listing_id: str) -> DiligenceSummary:
        return self.comments.diligence_summary(listing_id)

    def close(self) -> None:
        self.backend.close()


__all__ = ["Marketplace"]
