"""
agentfund.auth — Wallet challenge-response sign-in, bearer tokens, tier gate.

Sign-in flow:
1. ``ChallengeManager.create_challenge(wallet)`` issues a one-shot message
   (5 minute lifetime, at most one live challenge per wallet).
2. The wallet signs the message; ``AuthService.verify`` recovers the signer,
   checks it is the challenged wallet, consumes the challenge, gets or
   creates the agent and issues a bearer token.
3. ``TokenIssuer.validate`` resolves a raw token to its agent on every
   authenticated call. Only an HMAC of the token is stored.

Step 2 runs inside a single store transaction: either the challenge is
consumed *and* a token stored, or nothing changes.
"""

import hashlib
import hmac
import logging
import secrets
import time
from typing import Callable, Optional

from agentfund.errors import (
    ChallengeExpired,
    ChallengeNotFound,
    InsufficientTier,
    SignatureMismatch,
)
from agentfund.identity import IdentityStore, normalize_wallet
from agentfund.models import Agent, AuthToken, Challenge, Tier
from agentfund.signatures import SignatureVerifier
from agentfund.storage import StorageBackend

logger = logging.getLogger(__name__)

CHALLENGE_PREFIX = "challenge:"
TOKEN_PREFIX = "token:"
TOKEN_PREFIX_RAW = "af_"

CHALLENGE_TEMPLATE = (
    "Sign this message to authenticate with AgentFund.\n"
    "Wallet: {wallet}\n"
    "Nonce: {nonce}\n"
    "Timestamp: {timestamp}"
)


# ─── Challenges ────────────────────────────────────────────────────

class ChallengeManager:
    """Issues and consumes one-shot sign-in challenges per wallet."""

    def __init__(self, backend: StorageBackend, ttl_s: float = 300,
                 clock: Callable[[], float] = time.time):
        self._backend = backend
        self._ttl_s = ttl_s
        self._clock = clock

    def create_challenge(self, wallet_address: str) -> Challenge:
        """Issue a fresh challenge, replacing any earlier one for the wallet."""
        wallet = normalize_wallet(wallet_address)
        now = self._clock()
        nonce = secrets.token_hex(16)
        challenge = Challenge(
            wallet_address=wallet,
            challenge=CHALLENGE_TEMPLATE.format(
                wallet=wallet, nonce=nonce, timestamp=int(now * 1000),
            ),
            nonce=nonce,
            created_at=now,
            expires_at=now + self._ttl_s,
        )
        with self._backend.transaction():
            self._backend.delete(self._key(wallet))
            self._backend.save(self._key(wallet), challenge.to_dict())
        logger.info("Challenge issued", extra={"wallet": wallet})
        return challenge

    def get_live(self, wallet_address: str) -> Challenge:
        """Return the wallet's challenge if present and unexpired."""
        wallet = normalize_wallet(wallet_address)
        data = self._backend.load(self._key(wallet))
        if data is None:
            raise ChallengeNotFound("No challenge found. Request a new one.")
        challenge = Challenge.from_dict(data)
        if challenge.is_expired(self._clock()):
            raise ChallengeExpired("Challenge expired.")
        return challenge

    def consume(self, wallet_address: str) -> bool:
        return self._backend.delete(self._key(normalize_wallet(wallet_address)))

    @staticmethod
    def _key(wallet: str) -> str:
        return f"{CHALLENGE_PREFIX}{wallet}"


# ─── Tokens ────────────────────────────────────────────────────────

class TokenIssuer:
    """Issues opaque bearer tokens and resolves them back to agents."""

    def __init__(self, backend: StorageBackend, identities: IdentityStore,
                 secret: bytes, ttl_s: float = 30 * 24 * 3600,
                 clock: Callable[[], float] = time.time):
        self._backend = backend
        self._identities = identities
        self._secret = secret
        self._ttl_s = ttl_s
        self._clock = clock

    def hash_token(self, raw_token: str) -> str:
        return hmac.new(self._secret, raw_token.encode(), hashlib.sha256).hexdigest()

    def issue(self, agent_id: str) -> str:
        """Store a new token for ``agent_id`` and return the raw secret once."""
        raw = f"{TOKEN_PREFIX_RAW}{secrets.token_urlsafe(32)}"
        now = self._clock()
        record = AuthToken(
            token_hash=self.hash_token(raw),
            agent_id=agent_id,
            created_at=now,
            expires_at=now + self._ttl_s,
        )
        self._backend.save(f"{TOKEN_PREFIX}{record.token_hash}", record.to_dict())
        return raw

    def validate(self, raw_token: Optional[str]) -> Optional[Agent]:
        """Resolve a raw token to its agent; None if unknown or expired."""
        if not raw_token:
            return None
        token_hash = self.hash_token(raw_token)
        data = self._backend.load(f"{TOKEN_PREFIX}{token_hash}")
        if data is None:
            return None
        record = AuthToken.from_dict(data)
        if not hmac.compare_digest(record.token_hash, token_hash):
            return None
        if not record.is_valid(self._clock()):
            return None
        return self._identities.get_agent(record.agent_id)


# ─── Auth protocol ─────────────────────────────────────────────────

class AuthService:
    """Exchanges a signed challenge for a bearer token."""

    def __init__(self, backend: StorageBackend, challenges: ChallengeManager,
                 tokens: TokenIssuer, identities: IdentityStore,
                 verifier: SignatureVerifier):
        self._backend = backend
        self._challenges = challenges
        self._tokens = tokens
        self._identities = identities
        self._verifier = verifier

    def verify(self, wallet_address: str, signature: str,
               challenge_text: Optional[str] = None) -> tuple[str, Agent]:
        """Exchange a signature over the live challenge for a bearer token.

        A client that echoes the ``challenge_text`` it signed gets
        ChallengeNotFound when that text has since been replaced.

        The challenge is consumed and committed before the agent and token
        are written, so a failure while issuing leaves nothing to replay.
        """
        wallet = normalize_wallet(wallet_address)
        with self._backend.transaction():
            challenge = self._challenges.get_live(wallet)
            if challenge_text is not None and challenge_text != challenge.challenge:
                raise ChallengeNotFound("Challenge was replaced. Sign the latest one.")
            recovered = self._verifier.recover(challenge.challenge, signature)
            if recovered != wallet:
                logger.warning("Signature mismatch", extra={"wallet": wallet})
                raise SignatureMismatch("Signature does not match wallet.")
            self._challenges.consume(wallet)

        with self._backend.transaction():
            agent = self._identities.get_or_create(wallet)
            token = self._tokens.issue(agent.agent_id)
        logger.info("Token issued", extra={"agent_id": agent.agent_id, "wallet": wallet})
        return token, agent


# ─── Tier gate ─────────────────────────────────────────────────────

class TierAuthorizer:
    """Gates operations by minimum trust tier."""

    def __init__(self, identities: IdentityStore):
        self._identities = identities

    def assert_tier(self, agent_id: str, required: Tier) -> Agent:
        agent = self._identities.require(agent_id)
        if agent.tier.level < required.level:
            raise InsufficientTier(
                f"Requires {required.value} tier. Your tier: {agent.tier.value}."
            )
        return agent


__all__ = [
    "ChallengeManager",
    "TokenIssuer",
    "AuthService",
    "TierAuthorizer",
    "CHALLENGE_TEMPLATE",
]
