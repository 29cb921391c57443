"""
agentfund.funding — Two-phase funding commitments.

    initiate ──> PENDING ──confirm──> CONFIRMED
                    └──fail_stale (operator)──> FAILED

``initiate`` records the intent and returns escrow instructions; pending
pledges are not counted. ``confirm`` is called by the pledger once the
transfer has been sent: in one transaction it marks the commitment
confirmed and adds its amount to the listing, flipping the listing to
``funded`` when the total reaches the goal. A commitment that is no longer
pending cannot be confirmed again, so no amount is ever counted twice.

Settlement is client-asserted: ``tx_hash`` is stored, not checked on-chain.
"""

import logging
import math
import time
import uuid
from typing import Callable, Optional

from agentfund.auth import TierAuthorizer
from agentfund.config import MarketConfig
from agentfund.errors import (
    AlreadyProcessed,
    CommitmentNotFound,
    DeadlinePassed,
    InvalidInput,
    NotYourCommitment,
)
from agentfund.listings import ListingService
from agentfund.models import (
    CommitmentStatus,
    FundingCommitment,
    FundingInstructions,
    Listing,
    ListingStatus,
    Tier,
)
from agentfund.storage import StorageBackend

logger = logging.getLogger(__name__)

COMMITMENT_PREFIX = "commitment:"


class FundingService:
    """Initiates and confirms funding commitments against listings."""

    def __init__(self, backend: StorageBackend, tiers: TierAuthorizer,
                 listings: ListingService, config: Optional[MarketConfig] = None,
                 clock: Callable[[], float] = time.time):
        self._backend = backend
        self._tiers = tiers
        self._listings = listings
        self._config = config or MarketConfig()
        self._clock = clock

    def get(self, commitment_id: str) -> Optional[FundingCommitment]:
        data = self._backend.load(f"{COMMITMENT_PREFIX}{commitment_id}")
        return FundingCommitment.from_dict(data) if data else None

    def initiate(self, listing_id: str, agent_id: str, amount: float,
                 token_symbol: Optional[str] = None) -> FundingInstructions:
        if amount is None or not math.isfinite(amount) or amount <= 0:
            raise InvalidInput("amount must be positive")

        with self._backend.transaction():
            self._tiers.assert_tier(agent_id, Tier.VERIFIED)
            listing = self._listings.require_active(listing_id)
            if self._clock() >= listing.deadline:
                raise DeadlinePassed("Listing deadline has passed.")

            symbol = token_symbol or listing.token_symbol
            commitment = FundingCommitment(
                commitment_id=str(uuid.uuid4()),
                listing_id=listing_id,
                agent_id=agent_id,
                amount=float(amount),
                token_symbol=symbol,
                status=CommitmentStatus.PENDING,
                created_at=self._clock(),
            )
            self._save(commitment)

        escrow = self._config.escrow_address
        logger.info("Commitment initiated", extra={
            "commitment_id": commitment.commitment_id,
            "listing_id": listing_id,
            "agent_id": agent_id,
            "amount": commitment.amount,
        })
        return FundingInstructions(
            commitment_id=commitment.commitment_id,
            escrow_address=escrow,
            amount=commitment.amount,
            token_symbol=symbol,
            instructions=(
                f"Send {_fmt_amount(commitment.amount)} {symbol} to {escrow} on "
                f"{listing.network}. Then call /api/funding/confirm with the tx hash."
            ),
        )

    def confirm(self, commitment_id: str, agent_id: str, tx_hash: str) -> dict:
        if not tx_hash:
            raise InvalidInput("txHash required")

        with self._backend.transaction():
            commitment = self.get(commitment_id)
            if commitment is None:
                raise CommitmentNotFound("Commitment not found.")
            if commitment.agent_id != agent_id:
                raise NotYourCommitment("Not your commitment.")
            if commitment.status != CommitmentStatus.PENDING:
                raise AlreadyProcessed("Commitment already processed.")

            listing = self._listings.require(commitment.listing_id)
            commitment.status = CommitmentStatus.CONFIRMED
            commitment.tx_hash = tx_hash
            commitment.confirmed_at = self._clock()
            self._save(commitment)
            became_funded = self._credit(listing, commitment.amount)

        logger.info("Commitment confirmed", extra={
            "commitment_id": commitment_id,
            "listing_id": listing.listing_id,
            "amount": commitment.amount,
            "current_funded": listing.current_funded,
        })
        if became_funded:
            logger.info("Listing funded", extra={
                "listing_id": listing.listing_id,
                "current_funded": listing.current_funded,
                "goal_amount": listing.goal_amount,
            })
        return {"confirmed": True}

    def by_listing(self, listing_id: str) -> list[FundingCommitment]:
        commitments = [
            FundingCommitment.from_dict(d)
            for d in self._backend.load_prefix(COMMITMENT_PREFIX)
            if d["listing_id"] == listing_id
        ]
        return sorted(commitments, key=lambda c: c.created_at, reverse=True)

    def funded_by_agent(self, agent_id: str) -> list[Listing]:
        """Listings an agent has pledged to, in any commitment state."""
        listing_ids = []
        for d in self._backend.load_prefix(COMMITMENT_PREFIX):
            if d["agent_id"] == agent_id and d["listing_id"] not in listing_ids:
                listing_ids.append(d["listing_id"])
        listings = (self._listings.get(lid) for lid in listing_ids)
        return [l for l in listings if l is not None]

    def fail_stale(self, older_than_s: Optional[float] = None) -> list[FundingCommitment]:
        """Mark pending commitments older than the cutoff as failed.

        Operator tool: nothing calls it on a schedule. Listing totals are
        untouched since pending pledges were never counted.
        """
        ttl = self._config.pending_commitment_ttl_s if older_than_s is None else older_than_s
        cutoff = self._clock() - ttl
        failed = []
        with self._backend.transaction():
            for d in self._backend.load_prefix(COMMITMENT_PREFIX):
                commitment = FundingCommitment.from_dict(d)
                if commitment.status == CommitmentStatus.PENDING and commitment.created_at < cutoff:
                    commitment.status = CommitmentStatus.FAILED
                    self._save(commitment)
                    failed.append(commitment)
        if failed:
            logger.info("Stale commitments failed", extra={"count": len(failed)})
        return failed

    def _credit(self, listing: Listing, amount: float) -> bool:
        """Add a confirmed amount to the listing. Returns True if it just became funded."""
        listing.current_funded += amount
        became_funded = False
        if listing.status == ListingStatus.ACTIVE and listing.current_funded >= listing.goal_amount:
            listing.status = ListingStatus.FUNDED
            became_funded = True
        self._listings.save(listing)
        return became_funded

    def _save(self, commitment: FundingCommitment) -> None:
        self._backend.save(f"{COMMITMENT_PREFIX}{commitment.commitment_id}", commitment.to_dict())


def _fmt_amount(amount: float) -> str:
    return str(int(amount)) if float(amount).is_integer() else str(amount)


__all__ = ["FundingService"]
