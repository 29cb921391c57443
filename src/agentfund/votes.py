"""
agentfund.votes — Idempotent per-(agent, listing) endorsements.

A listing's ``vote_count`` always equals its number of vote rows: each
insert or delete and the matching counter change share one transaction.
"""

import logging
import time
from typing import Callable

from agentfund.auth import TierAuthorizer
from agentfund.listings import ListingService
from agentfund.models import Tier, Vote
from agentfund.storage import StorageBackend

logger = logging.getLogger(__name__)

VOTE_PREFIX = "vote:"


class VoteLedger:

    def __init__(self, backend: StorageBackend, tiers: TierAuthorizer,
                 listings: ListingService, clock: Callable[[], float] = time.time):
        self._backend = backend
        self._tiers = tiers
        self._listings = listings
        self._clock = clock

    def cast(self, listing_id: str, agent_id: str) -> dict:
        with self._backend.transaction():
            self._tiers.assert_tier(agent_id, Tier.BASIC)
            listing = self._listings.require_active(listing_id)
            key = self._key(listing_id, agent_id)
            if self._backend.exists(key):
                return {"already_voted": True}
            vote = Vote(listing_id=listing_id, agent_id=agent_id, created_at=self._clock())
            self._backend.save(key, vote.to_dict())
            listing.vote_count += 1
            self._listings.save(listing)
        logger.debug("Vote cast", extra={"listing_id": listing_id, "agent_id": agent_id})
        return {"already_voted": False}

    def remove(self, listing_id: str, agent_id: str) -> dict:
        with self._backend.transaction():
            if not self._backend.delete(self._key(listing_id, agent_id)):
                return {"removed": False}
            listing = self._listings.get(listing_id)
            if listing is not None and listing.vote_count > 0:
                listing.vote_count -= 1
                self._listings.save(listing)
        return {"removed": True}

    def has_voted(self, listing_id: str, agent_id: str) -> bool:
        return self._backend.exists(self._key(listing_id, agent_id))

    def by_listing(self, listing_id: str) -> list[Vote]:
        return [Vote.from_dict(d) for d in self._backend.load_prefix(f"{VOTE_PREFIX}{listing_id}:")]

    @staticmethod
    def _key(listing_id: str, agent_id: str) -> str:
        return f"{VOTE_PREFIX}{listing_id}:{agent_id}"


__all__ = ["VoteLedger"]
