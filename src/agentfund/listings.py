"""
agentfund.listings — Listing lifecycle.

    draft ──[owner publishes]──> active
    active ──[funded total >= goal]──> funded      (automatic, on confirm)
    active ──[owner / admin]──> closed | expired
    funded ──[owner / admin]──> closed

``expired`` and ``closed`` are terminal. No deadline sweep runs here; an
external scheduler expires listings through ``update_status``.
"""

import logging
import math
import time
import uuid
from typing import Callable, Optional

from agentfund.auth import TierAuthorizer
from agentfund.config import MarketConfig, TrendingWeights
from agentfund.errors import (
    InvalidInput,
    InvalidTransition,
    ListingNotActive,
    ListingNotFound,
    NotOwner,
)
from agentfund.models import Listing, ListingStatus, Tier
from agentfund.ranking import SortMode, rank
from agentfund.storage import StorageBackend

logger = logging.getLogger(__name__)

LISTING_PREFIX = "listing:"

_TRANSITIONS: dict[ListingStatus, set[ListingStatus]] = {
    ListingStatus.DRAFT: {ListingStatus.ACTIVE},
    ListingStatus.ACTIVE: {ListingStatus.FUNDED, ListingStatus.EXPIRED, ListingStatus.CLOSED},
    ListingStatus.FUNDED: {ListingStatus.CLOSED},
    ListingStatus.EXPIRED: set(),
    ListingStatus.CLOSED: set(),
}

# Statuses an owner or admin may request explicitly; FUNDED is automatic only.
_EXPLICIT_TARGETS = {ListingStatus.ACTIVE, ListingStatus.EXPIRED, ListingStatus.CLOSED}


class ListingStateMachine:
    """Validates listing status transitions. Performs no I/O."""

    @staticmethod
    def validate_transition(listing: Listing, target: ListingStatus) -> list[str]:
        """Check if a transition is valid. Returns errors (empty = OK)."""
        current = listing.status
        allowed = _TRANSITIONS.get(current, set())
        if target not in allowed:
            allowed_str = ", ".join(sorted(s.value for s in allowed))
            return [
                f"Invalid listing transition: {current.value} -> {target.value}. "
                f"Allowed from {current.value}: [{allowed_str}]"
            ]
        return []

    @staticmethod
    def is_terminal(status: ListingStatus) -> bool:
        return not _TRANSITIONS.get(status)

    @staticmethod
    def valid_transitions(status: ListingStatus) -> set[ListingStatus]:
        return set(_TRANSITIONS.get(status, set()))


class ListingService:
    """Creates listings and drives their explicit status changes."""

    def __init__(self, backend: StorageBackend, tiers: TierAuthorizer,
                 config: Optional[MarketConfig] = None,
                 clock: Callable[[], float] = time.time):
        self._backend = backend
        self._tiers = tiers
        self._config = config or MarketConfig()
        self._clock = clock

    # ─── Reads ─────────────────────────────────────────────────────

    def get(self, listing_id: str) -> Optional[Listing]:
        data = self._backend.load(f"{LISTING_PREFIX}{listing_id}")
        return Listing.from_dict(data) if data else None

    def require(self, listing_id: str) -> Listing:
        listing = self.get(listing_id)
        if listing is None:
            raise ListingNotFound("Listing not found.")
        return listing

    def require_active(self, listing_id: str) -> Listing:
        listing = self.require(listing_id)
        if listing.status != ListingStatus.ACTIVE:
            raise ListingNotActive(f"Listing is not active (status: {listing.status.value}).")
        return listing

    def all(self) -> list[Listing]:
        return [Listing.from_dict(d) for d in self._backend.load_prefix(LISTING_PREFIX)]

    def by_agent(self, agent_id: str) -> list[Listing]:
        return sorted(
            (l for l in self.all() if l.agent_id == agent_id),
            key=lambda l: l.created_at, reverse=True,
        )

    def list_listings(self, sort: SortMode = SortMode.TRENDING, limit: int = 20,
                      tag: Optional[str] = None, search: Optional[str] = None,
                      weights: Optional[TrendingWeights] = None) -> list[Listing]:
        return rank(
            self.all(), sort=sort, limit=limit, tag=tag, search=search,
            now=self._clock(), weights=weights or self._config.trending,
        )

    # ─── Writes ────────────────────────────────────────────────────

    def create(self, agent_id: str, title: str, description: str,
               goal_amount: float, deadline: float, pitch: Optional[str] = None,
               token_symbol: Optional[str] = None, network: Optional[str] = None,
               tags: Optional[list[str]] = None) -> Listing:
        if not title or not title.strip():
            raise InvalidInput("title required")
        if goal_amount is None or not math.isfinite(goal_amount) or goal_amount <= 0:
            raise InvalidInput("goalAmount must be positive")
        if deadline is None or not math.isfinite(deadline):
            raise InvalidInput("deadline must be a finite timestamp")

        with self._backend.transaction():
            self._tiers.assert_tier(agent_id, Tier.VERIFIED)
            listing = Listing(
                listing_id=str(uuid.uuid4()),
                agent_id=agent_id,
                title=title.strip(),
                description=description or "",
                pitch=pitch,
                goal_amount=float(goal_amount),
                token_symbol=token_symbol or self._config.default_currency,
                network=network or self._config.default_network,
                deadline=float(deadline),
                status=ListingStatus.DRAFT,
                tags=list(tags or []),
                created_at=self._clock(),
            )
            self.save(listing)
        logger.info("Listing created", extra={"listing_id": listing.listing_id, "agent_id": agent_id})
        return listing

    def publish(self, listing_id: str, agent_id: str) -> Listing:
        """Owner moves a draft to active."""
        with self._backend.transaction():
            listing = self.require(listing_id)
            if listing.agent_id != agent_id:
                raise NotOwner("Not the listing owner.")
            self._apply(listing, ListingStatus.ACTIVE)
        return listing

    def update_status(self, listing_id: str, agent_id: Optional[str],
                      status: ListingStatus, as_admin: bool = False) -> Listing:
        """Explicit status change by the owner, or by an operator with ``as_admin``."""
        if status not in _EXPLICIT_TARGETS:
            raise InvalidTransition(f"Status '{status.value}' cannot be set explicitly.")
        with self._backend.transaction():
            listing = self.require(listing_id)
            if not as_admin and listing.agent_id != agent_id:
                raise NotOwner("Not the listing owner.")
            self._apply(listing, status)
        return listing

    def save(self, listing: Listing) -> None:
        self._backend.save(f"{LISTING_PREFIX}{listing.listing_id}", listing.to_dict())

    def _apply(self, listing: Listing, target: ListingStatus) -> None:
        errors = ListingStateMachine.validate_transition(listing, target)
        if errors:
            raise InvalidTransition(errors[0])
        previous = listing.status
        listing.status = target
        self.save(listing)
        logger.info("Listing transition", extra={
            "listing_id": listing.listing_id,
            "from_status": previous.value,
            "to_status": target.value,
        })


__all__ = ["ListingStateMachine", "ListingService"]
