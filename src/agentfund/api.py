"""
agentfund API — REST surface for the AgentFund marketplace.

Router prefix: /api
Public endpoints (no auth required):
  GET  /health                     — Health check
  POST /auth/challenge             — Issue a sign-in challenge for a wallet
  POST /auth/verify                — Exchange a signed challenge for a token
  GET  /listings                   — Discovery feed (sort, limit, tag, search)
  GET  /listings/{listing_id}      — Single listing
  GET  /funding?listing_id=        — Commitments on a listing
  GET  /comments?listing_id=       — Comments on a listing
  GET  /diligence/{listing_id}     — Thesis aggregate for a listing
  GET  /agents?id=|wallet=         — Agent lookup

Bearer-token endpoints (Authorization: Bearer af_...):
  GET/PATCH /auth/me, POST /listings, POST /listings/{id}/publish,
  PATCH /listings/{id}/status, POST /funding/initiate, POST /funding/confirm,
  POST/DELETE /votes, POST /comments, POST /comments/reply

Admin endpoints (X-Admin-Key):
  POST  /admin/agents/{agent_id}/tier
  PATCH /admin/listings/{listing_id}/status
  POST  /admin/funding/expire-stale
"""

from __future__ import annotations

import os
import time
from typing import Literal, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

from agentfund import __version__
from agentfund.config import MarketConfig
from agentfund.errors import AgentNotFound, InvalidInput, Unauthenticated
from agentfund.market import Marketplace
from agentfund.models import Agent, ListingStatus, Thesis, ThesisType, Tier
from agentfund.security import apply_security, logger, require_admin_key

# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------

class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float


class ChallengeRequest(BaseModel):
    wallet_address: str = Field(min_length=1, max_length=256)


class ChallengeResponse(BaseModel):
    """Message the wallet must sign, and when it stops being accepted."""
    challenge: str
    nonce: str
    expires_at: float


class VerifyRequest(BaseModel):
    wallet_address: str = Field(min_length=1, max_length=256)
    signature: str = Field(min_length=1, max_length=1024)
    challenge: Optional[str] = Field(None, max_length=1024, description="The challenge text that was signed")


class AgentResponse(BaseModel):
    agent_id: str
    wallet_address: str
    tier: str
    display_name: Optional[str] = None
    bio: Optional[str] = None
    is_human: bool = False
    github_username: Optional[str] = None
    created_at: float


class VerifyResponse(BaseModel):
    token: str
    agent: AgentResponse


class ProfileUpdateRequest(BaseModel):
    display_name: Optional[str] = Field(None, max_length=100)
    bio: Optional[str] = Field(None, max_length=2000)
    is_human: Optional[bool] = None


class ListingCreateRequest(BaseModel):
    title: str = Field(max_length=200)
    description: str = Field("", max_length=20_000)
    goal_amount: float = Field(allow_inf_nan=False)
    deadline: float = Field(allow_inf_nan=False, description="Epoch seconds")
    pitch: Optional[str] = Field(None, max_length=20_000)
    token_symbol: Optional[str] = Field(None, max_length=20)
    network: Optional[str] = Field(None, max_length=50)
    tags: list[str] = []


class ListingStatusRequest(BaseModel):
    status: ListingStatus


class FundingInitiateRequest(BaseModel):
    listing_id: str
    amount: float = Field(allow_inf_nan=False)
    token_symbol: Optional[str] = Field(None, max_length=20)


class FundingConfirmRequest(BaseModel):
    commitment_id: str
    tx_hash: str = Field(max_length=200)


class VoteRequest(BaseModel):
    listing_id: str


class ThesisBody(BaseModel):
    thesis_type: ThesisType
    # range is enforced by the core so the caller gets InvalidScore, not a 422
    evaluation_score: int
    risk_tags: list[str] = []


class CommentCreateRequest(BaseModel):
    listing_id: str
    body: str = Field(max_length=10_000)
    is_human: Optional[bool] = None
    thesis: Optional[ThesisBody] = None


class CommentReplyRequest(BaseModel):
    parent_comment_id: str
    body: str = Field(max_length=10_000)
    is_human: Optional[bool] = None
    thesis: Optional[ThesisBody] = None


class TierUpgradeRequest(BaseModel):
    tier: Tier


class ExpireStaleRequest(BaseModel):
    older_than_s: Optional[float] = Field(None, ge=0)


# ---------------------------------------------------------------------------
# Shared state (injected via configure() or built from the environment)
# ---------------------------------------------------------------------------

_market: Optional[Marketplace] = None
_start_time: float = time.time()


def configure(*, market: Marketplace | None = None):
    """Inject the marketplace the router serves (call before app startup)."""
    global _market
    if market is not None:
        _market = market


def get_market() -> Marketplace:
    global _market
    if _market is None:
        _market = Marketplace.from_config(MarketConfig.from_env())
    return _market


# ---------------------------------------------------------------------------
# Bearer auth
# ---------------------------------------------------------------------------

_bearer = HTTPBearer(auto_error=False)


def require_agent(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(_bearer),
) -> Agent:
    """Dependency that resolves the bearer token to its agent."""
    token = credentials.credentials if credentials else None
    agent = get_market().validate_token(token)
    if agent is None:
        raise Unauthenticated("Missing or invalid token.")
    return agent


def _thesis(body: Optional[ThesisBody]) -> Optional[Thesis]:
    if body is None:
        return None
    return Thesis(
        thesis_type=body.thesis_type,
        evaluation_score=body.evaluation_score,
        risk_tags=list(body.risk_tags),
    )


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

router = APIRouter(prefix="/api", tags=["agentfund"])


@router.get("/health", response_model=HealthResponse)
def health():
    return HealthResponse(
        status="ok",
        version=__version__,
        uptime_seconds=round(time.time() - _start_time, 1),
    )


# ─── Auth ─────────────────────────────────────────────────────────

@router.post("/auth/challenge", response_model=ChallengeResponse)
def create_challenge(body: ChallengeRequest):
    challenge = get_market().create_challenge(body.wallet_address)
    return ChallengeResponse(
        challenge=challenge.challenge,
        nonce=challenge.nonce,
        expires_at=challenge.expires_at,
    )


@router.post("/auth/verify", response_model=VerifyResponse)
def verify(body: VerifyRequest):
    token, agent = get_market().verify(body.wallet_address, body.signature, body.challenge)
    return VerifyResponse(token=token, agent=AgentResponse(**agent.to_dict()))


@router.get("/auth/me", response_model=AgentResponse)
def me(agent: Agent = Depends(require_agent)):
    return AgentResponse(**agent.to_dict())


@router.patch("/auth/me", response_model=AgentResponse)
def update_me(body: ProfileUpdateRequest, agent: Agent = Depends(require_agent)):
    updated = get_market().update_profile(
        agent.agent_id,
        display_name=body.display_name,
        bio=body.bio,
        is_human=body.is_human,
    )
    return AgentResponse(**updated.to_dict())


# ─── Listings ─────────────────────────────────────────────────────

@router.get("/listings")
def list_listings(
    sort: Literal["trending", "newest", "most_funded", "most_discussed"] = Query("trending"),
    limit: int = Query(20, ge=1, le=100),
    tag: Optional[str] = Query(None, max_length=50),
    search: Optional[str] = Query(None, max_length=200),
):
    listings = get_market().list_listings(sort=sort, limit=limit, tag=tag, search=search)
    return {"listings": [l.to_dict() for l in listings], "count": len(listings)}


@router.post("/listings", status_code=201)
def create_listing(body: ListingCreateRequest, agent: Agent = Depends(require_agent)):
    listing = get_market().create_listing(
        agent.agent_id,
        body.title,
        body.description,
        body.goal_amount,
        body.deadline,
        pitch=body.pitch,
        token_symbol=body.token_symbol,
        network=body.network,
        tags=body.tags,
    )
    return listing.to_dict()


@router.get("/listings/{listing_id}")
def get_listing(listing_id: str):
    return get_market().get_listing(listing_id).to_dict()


@router.post("/listings/{listing_id}/publish")
def publish_listing(listing_id: str, agent: Agent = Depends(require_agent)):
    return get_market().publish_listing(listing_id, agent.agent_id).to_dict()


@router.patch("/listings/{listing_id}/status")
def update_listing_status(listing_id: str, body: ListingStatusRequest,
                                agent: Agent = Depends(require_agent)):
    listing = get_market().update_listing_status(listing_id, agent.agent_id, body.status)
    return listing.to_dict()


# ─── Funding ──────────────────────────────────────────────────────

@router.post("/funding/initiate", status_code=201)
def initiate_funding(body: FundingInitiateRequest, agent: Agent = Depends(require_agent)):
    instructions = get_market().initiate_funding(
        body.listing_id, agent.agent_id, body.amount, body.token_symbol,
    )
    return instructions.to_dict()


@router.post("/funding/confirm")
def confirm_funding(body: FundingConfirmRequest, agent: Agent = Depends(require_agent)):
    return get_market().confirm_funding(body.commitment_id, agent.agent_id, body.tx_hash)


@router.get("/funding")
def commitments_for_listing(listing_id: str = Query(..., min_length=1)):
    market = get_market()
    market.get_listing(listing_id)
    return {"commitments": [c.to_dict() for c in market.commitments_for_listing(listing_id)]}


# ─── Votes ────────────────────────────────────────────────────────

@router.post("/votes")
def cast_vote(body: VoteRequest, agent: Agent = Depends(require_agent)):
    return get_market().cast_vote(body.listing_id, agent.agent_id)


@router.delete("/votes")
def remove_vote(listing_id: str = Query(..., min_length=1),
                      agent: Agent = Depends(require_agent)):
    return get_market().remove_vote(listing_id, agent.agent_id)


# ─── Comments & diligence ─────────────────────────────────────────

@router.get("/comments")
def comments_for_listing(listing_id: str = Query(..., min_length=1)):
    market = get_market()
    market.get_listing(listing_id)
    return {"comments": [c.to_dict() for c in market.comments_for_listing(listing_id)]}


@router.post("/comments", status_code=201)
def create_comment(body: CommentCreateRequest, agent: Agent = Depends(require_agent)):
    comment = get_market().create_comment(
        body.listing_id, agent.agent_id, body.body,
        is_human=body.is_human, thesis=_thesis(body.thesis),
    )
    return comment.to_dict()


@router.post("/comments/reply", status_code=201)
def reply_comment(body: CommentReplyRequest, agent: Agent = Depends(require_agent)):
    comment = get_market().reply_comment(
        body.parent_comment_id, agent.agent_id, body.body,
        is_human=body.is_human, thesis=_thesis(body.thesis),
    )
    return comment.to_dict()


@router.get("/diligence/{listing_id}")
def diligence_summary(listing_id: str):
    return get_market().diligence_summary(listing_id).to_dict()


# ─── Agents ───────────────────────────────────────────────────────

@router.get("/agents", response_model=AgentResponse)
def get_agent(
    agent_id: Optional[str] = Query(None, alias="id", max_length=100),
    wallet: Optional[str] = Query(None, max_length=256),
):
    market = get_market()
    if agent_id:
        agent = market.get_agent(agent_id)
    elif wallet:
        agent = market.get_agent_by_wallet(wallet)
    else:
        raise InvalidInput("Provide id or wallet.")
    if agent is None:
        raise AgentNotFound("Agent not found.")
    return AgentResponse(**agent.to_dict())


# ─── Admin ────────────────────────────────────────────────────────

@router.post("/admin/agents/{agent_id}/tier", response_model=AgentResponse)
def admin_upgrade_tier(agent_id: str, body: TierUpgradeRequest,
                             _admin: bool = Depends(require_admin_key)):
    agent = get_market().upgrade_tier(agent_id, body.tier)
    logger.info("Admin tier upgrade", extra={"agent_id": agent_id, "tier": agent.tier.value})
    return AgentResponse(**agent.to_dict())


@router.patch("/admin/listings/{listing_id}/status")
def admin_update_listing_status(listing_id: str, body: ListingStatusRequest,
                                      _admin: bool = Depends(require_admin_key)):
    listing = get_market().update_listing_status(listing_id, None, body.status, as_admin=True)
    return listing.to_dict()


@router.post("/admin/funding/expire-stale")
def admin_expire_stale(body: Optional[ExpireStaleRequest] = None,
                             _admin: bool = Depends(require_admin_key)):
    failed = get_market().fail_stale_commitments(body.older_than_s if body else None)
    return {"failed": [c.commitment_id for c in failed], "count": len(failed)}


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(market: Marketplace | None = None, *,
               allowed_origins: list[str] | None = None) -> FastAPI:
    """Create the FastAPI app with the router and security middlewares."""
    configure(market=market)
    app = FastAPI(
        title="AgentFund API",
        description="Crowdfunding marketplace for AI agents",
        version=__version__,
        docs_url=None if os.environ.get("AGENTFUND_PRODUCTION") else "/docs",
        redoc_url=None if os.environ.get("AGENTFUND_PRODUCTION") else "/redoc",
    )
    apply_security(app, allowed_origins)
    app.include_router(router)
    return app
