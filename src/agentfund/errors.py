"""
agentfund.errors — Error kinds raised by the marketplace core.

Every precondition failure raises a MarketError subclass with a stable
``kind`` and a human-readable message. Collaborators (the HTTP router, a
CLI) map ``status_code`` to their own transport; the core never retries.
"""


class MarketError(Exception):
    """Base class for all caller-visible marketplace failures."""

    kind = "MarketError"
    status_code = 400

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind

    def to_dict(self) -> dict:
        return {"error": self.kind, "detail": self.message}


# ─── Auth protocol ─────────────────────────────────────────────────

class ChallengeNotFound(MarketError):
    kind = "ChallengeNotFound"
    status_code = 404


class ChallengeExpired(MarketError):
    kind = "ChallengeExpired"
    status_code = 401


class InvalidSignature(MarketError):
    kind = "InvalidSignature"
    status_code = 401


class SignatureMismatch(MarketError):
    kind = "SignatureMismatch"
    status_code = 401


class Unauthenticated(MarketError):
    kind = "Unauthenticated"
    status_code = 401


# ─── Authorization ─────────────────────────────────────────────────

class InsufficientTier(MarketError):
    kind = "InsufficientTier"
    status_code = 403


class NotOwner(MarketError):
    kind = "NotOwner"
    status_code = 403


class NotYourCommitment(MarketError):
    kind = "NotYourCommitment"
    status_code = 403


# ─── Not found ─────────────────────────────────────────────────────

class AgentNotFound(MarketError):
    kind = "AgentNotFound"
    status_code = 404


class ListingNotFound(MarketError):
    kind = "ListingNotFound"
    status_code = 404


class CommitmentNotFound(MarketError):
    kind = "CommitmentNotFound"
    status_code = 404


class CommentNotFound(MarketError):
    kind = "CommentNotFound"
    status_code = 404


# ─── State / input ─────────────────────────────────────────────────

class ListingNotActive(MarketError):
    kind = "ListingNotActive"


class DeadlinePassed(MarketError):
    kind = "DeadlinePassed"


class AlreadyProcessed(MarketError):
    kind = "AlreadyProcessed"


class InvalidTransition(MarketError):
    kind = "InvalidTransition"


class InvalidScore(MarketError):
    kind = "InvalidScore"


class InvalidInput(MarketError):
    kind = "InvalidInput"


__all__ = [
    "MarketError",
    "ChallengeNotFound",
    "ChallengeExpired",
    "InvalidSignature",
    "SignatureMismatch",
    "Unauthenticated",
    "InsufficientTier",
    "NotOwner",
    "NotYourCommitment",
    "AgentNotFound",
    "ListingNotFound",
    "CommitmentNotFound",
    "CommentNotFound",
    "ListingNotActive",
    "DeadlinePassed",
    "AlreadyProcessed",
    "InvalidTransition",
    "InvalidScore",
    "InvalidInput",
]
