"""
agentfund.config — Runtime configuration read from environment variables.
"""

import logging
import os
import secrets
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DAY_S = 24 * 60 * 60


@dataclass(frozen=True)
class TrendingWeights:
    """Empirical weights of the trending score. Kept configurable."""
    votes: float = 3.0
    comments: float = 2.0
    funding: float = 10.0
    decay_exponent: float = 0.5

    @classmethod
    def parse(cls, raw: str) -> "TrendingWeights":
        """Parse ``"votes,comments,funding,decay"``."""
        parts = [p.strip() for p in raw.split(",")]
        if len(parts) != 4:
            raise ValueError(
                f"AGENTFUND_TRENDING_WEIGHTS needs 4 comma-separated numbers, got {raw!r}"
            )
        votes, comments, funding, decay = (float(p) for p in parts)
        return cls(votes=votes, comments=comments, funding=funding, decay_exponent=decay)


@dataclass(frozen=True)
class MarketConfig:
    token_secret: bytes = field(default_factory=lambda: secrets.token_bytes(32), repr=False)
    escrow_address: str = "0x_ESCROW_ADDRESS_HERE"
    challenge_ttl_s: float = 5 * 60
    token_ttl_s: float = 30 * DAY_S
    pending_commitment_ttl_s: float = 7 * DAY_S
    database_path: str = ""
    signature_scheme: str = "ethereum"
    default_currency: str = "USDC"
    default_network: str = "base-sepolia"
    trending: TrendingWeights = field(default_factory=TrendingWeights)

    @classmethod
    def from_env(cls) -> "MarketConfig":
        env = os.environ
        secret = env.get("AGENTFUND_TOKEN_SECRET", "")
        if secret:
            token_secret = secret.encode()
        else:
            logger.warning(
                "AGENTFUND_TOKEN_SECRET not set; tokens will not survive a restart"
            )
            token_secret = secrets.token_bytes(32)

        trending = TrendingWeights()
        if env.get("AGENTFUND_TRENDING_WEIGHTS"):
            trending = TrendingWeights.parse(env["AGENTFUND_TRENDING_WEIGHTS"])

        return cls(
            token_secret=token_secret,
            escrow_address=env.get("ESCROW_WALLET_ADDRESS", "0x_ESCROW_ADDRESS_HERE"),
            challenge_ttl_s=float(env.get("AGENTFUND_CHALLENGE_TTL", 5 * 60)),
            token_ttl_s=float(env.get("AGENTFUND_TOKEN_TTL", 30 * DAY_S)),
            pending_commitment_ttl_s=float(env.get("AGENTFUND_PENDING_TTL", 7 * DAY_S)),
            database_path=env.get("AGENTFUND_DB", ""),
            signature_scheme=env.get("AGENTFUND_SIGNATURE_SCHEME", "ethereum"),
            default_currency=env.get("AGENTFUND_DEFAULT_CURRENCY", "USDC"),
            default_network=env.get("AGENTFUND_DEFAULT_NETWORK", "base-sepolia"),
            trending=trending,
        )
