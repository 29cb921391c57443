"""
agentfund.identity — Agent records keyed by wallet address.

The Identity Store owns agent rows. Agents are created on first sign-in
with tier ``unverified``; tiers only ever move upward, through
``upgrade_tier`` (called by the identity-linking collaborator).
"""

import logging
import time
import uuid
from typing import Callable, Optional

from agentfund.errors import AgentNotFound, InvalidInput
from agentfund.models import Agent, Tier
from agentfund.storage import StorageBackend

logger = logging.getLogger(__name__)

AGENT_PREFIX = "agent:"
WALLET_PREFIX = "wallet:"


def normalize_wallet(address: str) -> str:
    """Wallet addresses are compared lower-cased."""
    normalized = (address or "").strip().lower()
    if not normalized:
        raise InvalidInput("walletAddress required")
    return normalized


class IdentityStore:
    """Agent persistence plus the wallet → agent index."""

    def __init__(self, backend: StorageBackend, clock: Callable[[], float] = time.time):
        self._backend = backend
        self._clock = clock

    def get_agent(self, agent_id: str) -> Optional[Agent]:
        data = self._backend.load(f"{AGENT_PREFIX}{agent_id}")
        return Agent.from_dict(data) if data else None

    def require(self, agent_id: str) -> Agent:
        agent = self.get_agent(agent_id)
        if agent is None:
            raise AgentNotFound(f"Agent '{agent_id}' not found.")
        return agent

    def get_by_wallet(self, wallet_address: str) -> Optional[Agent]:
        index = self._backend.load(f"{WALLET_PREFIX}{normalize_wallet(wallet_address)}")
        if index is None:
            return None
        return self.get_agent(index["agent_id"])

    def get_or_create(self, wallet_address: str, tier: Tier = Tier.UNVERIFIED) -> Agent:
        wallet = normalize_wallet(wallet_address)
        with self._backend.transaction():
            existing = self.get_by_wallet(wallet)
            if existing is not None:
                return existing
            agent = Agent(
                agent_id=str(uuid.uuid4()),
                wallet_address=wallet,
                tier=tier,
                created_at=self._clock(),
            )
            self._save(agent)
            self._backend.save(f"{WALLET_PREFIX}{wallet}", {"agent_id": agent.agent_id})
        logger.info("Agent created", extra={"agent_id": agent.agent_id, "wallet": wallet})
        return agent

    def update_profile(self, agent_id: str, display_name: Optional[str] = None,
                       bio: Optional[str] = None, is_human: Optional[bool] = None) -> Agent:
        with self._backend.transaction():
            agent = self.require(agent_id)
            if display_name is not None:
                agent.display_name = display_name
            if bio is not None:
                agent.bio = bio
            if is_human is not None:
                agent.is_human = is_human
            self._save(agent)
        return agent

    def upgrade_tier(self, agent_id: str, tier: Tier) -> Agent:
        """Raise an agent's tier. Never lowers it."""
        with self._backend.transaction():
            agent = self.require(agent_id)
            if tier.level <= agent.tier.level:
                return agent
            previous = agent.tier
            agent.tier = tier
            self._save(agent)
        logger.info("Tier upgraded", extra={
            "agent_id": agent_id, "from_tier": previous.value, "to_tier": tier.value,
        })
        return agent

    def _save(self, agent: Agent) -> None:
        self._backend.save(f"{AGENT_PREFIX}{agent.agent_id}", agent.to_dict())
