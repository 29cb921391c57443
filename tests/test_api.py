"""Tests for the agentfund HTTP API."""

import inspect
import os

import pytest
from eth_account import Account
from fastapi.routing import APIRoute
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from agentfund.api import create_app
from agentfund.market import Marketplace
from agentfund.storage import MemoryBackend

from conftest import DAY, T0, FakeClock, sign

ADMIN = {"X-Admin-Key": os.environ["ADMIN_API_KEY"]}


@pytest.fixture
def api_clock():
    return FakeClock()


@pytest.fixture
def app(config, api_clock):
    return create_app(Marketplace(backend=MemoryBackend(), config=config, clock=api_clock))


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def sign_in(client, account=None):
    """Run the challenge/verify flow; returns (auth headers, agent json)."""
    account = account or Account.create()
    r = client.post("/api/auth/challenge", json={"wallet_address": account.address})
    assert r.status_code == 200
    challenge = r.json()["challenge"]
    r = client.post("/api/auth/verify", json={
        "wallet_address": account.address,
        "signature": sign(account, challenge),
    })
    assert r.status_code == 200, r.text
    body = r.json()
    return {"Authorization": f"Bearer {body['token']}"}, body["agent"]


def upgrade(client, agent_id, tier):
    r = client.post(f"/api/admin/agents/{agent_id}/tier", json={"tier": tier}, headers=ADMIN)
    assert r.status_code == 200, r.text
    return r.json()


def new_active_listing(client, headers, goal=500, **fields):
    payload = {
        "title": "GPU cluster",
        "description": "Inference capacity",
        "goal_amount": goal,
        "deadline": T0 + 30 * DAY,
        "tags": ["infra"],
    }
    payload.update(fields)
    r = client.post("/api/listings", json=payload, headers=headers)
    assert r.status_code == 201, r.text
    listing_id = r.json()["listing_id"]
    r = client.post(f"/api/listings/{listing_id}/publish", headers=headers)
    assert r.status_code == 200, r.text
    return listing_id


@pytest.fixture
def founder(client):
    headers, agent = sign_in(client)
    upgrade(client, agent["agent_id"], "verified")
    return headers


# ─── Health & middleware ───────────────────────────────────────────

def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_route_handlers_are_sync(app):
    # blocking store calls must run in the threadpool, not on the event loop
    routes = [r for r in app.routes if isinstance(r, APIRoute)]
    assert routes
    assert not [r.path for r in routes if inspect.iscoroutinefunction(r.endpoint)]


def test_security_headers_and_request_id(client):
    r = client.get("/api/health", headers={"X-Request-ID": "abc123"})
    assert r.headers["X-Request-ID"] == "abc123"
    assert r.headers["X-Content-Type-Options"] == "nosniff"
    assert r.headers["X-Frame-Options"] == "DENY"


def test_oversized_body_rejected(client):
    r = client.post(
        "/api/auth/challenge",
        content=b"x" * (2 * 1024 * 1024),
        headers={"content-type": "application/json", "content-length": str(2 * 1024 * 1024)},
    )
    assert r.status_code == 413


# ─── Auth ──────────────────────────────────────────────────────────

class TestAuth:

    def test_sign_in_and_me(self, client):
        headers, agent = sign_in(client)
        assert agent["tier"] == "unverified"
        r = client.get("/api/auth/me", headers=headers)
        assert r.status_code == 200
        assert r.json()["agent_id"] == agent["agent_id"]

    def test_me_without_token(self, client):
        r = client.get("/api/auth/me")
        assert r.status_code == 401
        assert r.json()["error"] == "Unauthenticated"

    def test_me_with_bad_token(self, client):
        r = client.get("/api/auth/me", headers={"Authorization": "Bearer af_bogus"})
        assert r.status_code == 401

    def test_verify_without_challenge(self, client):
        account = Account.create()
        r = client.post("/api/auth/verify", json={
            "wallet_address": account.address, "signature": sign(account, "x"),
        })
        assert r.status_code == 404
        assert r.json() == {"error": "ChallengeNotFound", "detail": "No challenge found. Request a new one."}

    def test_expired_challenge(self, client, api_clock):
        account = Account.create()
        challenge = client.post("/api/auth/challenge", json={"wallet_address": account.address}).json()
        api_clock.advance(6 * 60)
        r = client.post("/api/auth/verify", json={
            "wallet_address": account.address, "signature": sign(account, challenge["challenge"]),
        })
        assert r.status_code == 401
        assert r.json()["error"] == "ChallengeExpired"

    def test_signature_mismatch(self, client):
        owner, intruder = Account.create(), Account.create()
        challenge = client.post("/api/auth/challenge", json={"wallet_address": owner.address}).json()
        r = client.post("/api/auth/verify", json={
            "wallet_address": owner.address, "signature": sign(intruder, challenge["challenge"]),
        })
        assert r.status_code == 401
        assert r.json()["error"] == "SignatureMismatch"

    def test_challenge_body_validated(self, client):
        assert client.post("/api/auth/challenge", json={}).status_code == 422
        assert client.post("/api/auth/challenge", json={"wallet_address": ""}).status_code == 422

    def test_update_profile(self, client):
        headers, _ = sign_in(client)
        r = client.patch("/api/auth/me", json={"display_name": "Scout", "is_human": True}, headers=headers)
        assert r.status_code == 200
        assert r.json()["display_name"] == "Scout"
        assert r.json()["is_human"] is True


# ─── Listings ──────────────────────────────────────────────────────

class TestListings:

    def test_unverified_cannot_create(self, client):
        headers, _ = sign_in(client)
        r = client.post("/api/listings", json={
            "title": "x", "goal_amount": 100, "deadline": T0 + DAY,
        }, headers=headers)
        assert r.status_code == 403
        assert r.json() == {
            "error": "InsufficientTier",
            "detail": "Requires verified tier. Your tier: unverified.",
        }

    def test_create_publish_and_list(self, client, founder):
        listing_id = new_active_listing(client, founder)
        r = client.get(f"/api/listings/{listing_id}")
        assert r.status_code == 200
        body = r.json()
        assert body["status"] == "active"
        assert body["token_symbol"] == "USDC"
        assert body["network"] == "base-sepolia"

        r = client.get("/api/listings", params={"sort": "newest", "tag": "infra"})
        assert r.status_code == 200
        assert [l["listing_id"] for l in r.json()["listings"]] == [listing_id]

    def test_invalid_goal(self, client, founder):
        r = client.post("/api/listings", json={
            "title": "x", "goal_amount": 0, "deadline": T0 + DAY,
        }, headers=founder)
        assert r.status_code == 400
        assert r.json()["error"] == "InvalidInput"

    @pytest.mark.parametrize("field", ["goal_amount", "deadline"])
    def test_non_finite_listing_numbers_rejected(self, client, founder, field):
        payload = {"title": "x", "goal_amount": 100, "deadline": T0 + DAY}
        payload[field] = "NaN"
        assert client.post("/api/listings", json=payload, headers=founder).status_code == 422

    def test_query_validation(self, client):
        assert client.get("/api/listings", params={"sort": "random"}).status_code == 422
        assert client.get("/api/listings", params={"limit": 0}).status_code == 422
        assert client.get("/api/listings", params={"limit": 101}).status_code == 422

    def test_unknown_listing(self, client):
        r = client.get("/api/listings/missing")
        assert r.status_code == 404
        assert r.json()["error"] == "ListingNotFound"

    def test_owner_closes_then_invalid_transition(self, client, founder):
        listing_id = new_active_listing(client, founder)
        r = client.patch(f"/api/listings/{listing_id}/status", json={"status": "closed"}, headers=founder)
        assert r.status_code == 200
        assert r.json()["status"] == "closed"
        r = client.patch(f"/api/listings/{listing_id}/status", json={"status": "active"}, headers=founder)
        assert r.status_code == 400
        assert r.json()["error"] == "InvalidTransition"

    def test_non_owner_cannot_change_status(self, client, founder):
        listing_id = new_active_listing(client, founder)
        other, agent = sign_in(client)
        upgrade(client, agent["agent_id"], "verified")
        r = client.patch(f"/api/listings/{listing_id}/status", json={"status": "closed"}, headers=other)
        assert r.status_code == 403
        assert r.json()["error"] == "NotOwner"


# ─── Funding ───────────────────────────────────────────────────────

class TestFunding:

    def test_two_phase_scenario(self, client, founder):
        listing_id = new_active_listing(client, founder, goal=500)
        backer, agent = sign_in(client)
        upgrade(client, agent["agent_id"], "verified")

        for amount, expected_status in [(150, "active"), (400, "funded")]:
            r = client.post("/api/funding/initiate", json={"listing_id": listing_id, "amount": amount},
                            headers=backer)
            assert r.status_code == 201, r.text
            instructions = r.json()
            assert instructions["escrow_address"] == "0xESCROW"
            r = client.post("/api/funding/confirm", json={
                "commitment_id": instructions["commitment_id"], "tx_hash": "0xtx",
            }, headers=backer)
            assert r.status_code == 200
            assert r.json() == {"confirmed": True}
            assert client.get(f"/api/listings/{listing_id}").json()["status"] == expected_status

        listing = client.get(f"/api/listings/{listing_id}").json()
        assert listing["current_funded"] == 550

        commitments = client.get("/api/funding", params={"listing_id": listing_id}).json()["commitments"]
        assert len(commitments) == 2
        assert {c["status"] for c in commitments} == {"confirmed"}

    def test_double_confirm(self, client, founder):
        listing_id = new_active_listing(client, founder)
        r = client.post("/api/funding/initiate", json={"listing_id": listing_id, "amount": 10}, headers=founder)
        payload = {"commitment_id": r.json()["commitment_id"], "tx_hash": "0xtx"}
        assert client.post("/api/funding/confirm", json=payload, headers=founder).status_code == 200
        r = client.post("/api/funding/confirm", json=payload, headers=founder)
        assert r.status_code == 400
        assert r.json()["error"] == "AlreadyProcessed"

    @pytest.mark.parametrize("amount", ["NaN", "Infinity", "-Infinity"])
    def test_non_finite_amount_rejected(self, client, founder, amount):
        listing_id = new_active_listing(client, founder)
        r = client.post("/api/funding/initiate", json={"listing_id": listing_id, "amount": amount},
                        headers=founder)
        assert r.status_code == 422
        assert client.get("/api/funding", params={"listing_id": listing_id}).json()["commitments"] == []
        assert client.get(f"/api/listings/{listing_id}").status_code == 200

    def test_confirm_requires_token(self, client):
        r = client.post("/api/funding/confirm", json={"commitment_id": "c", "tx_hash": "0x"})
        assert r.status_code == 401


# ─── Votes, comments, diligence ────────────────────────────────────

class TestEngagement:

    def test_votes(self, client, founder):
        listing_id = new_active_listing(client, founder)
        voter, agent = sign_in(client)
        r = client.post("/api/votes", json={"listing_id": listing_id}, headers=voter)
        assert r.status_code == 403

        upgrade(client, agent["agent_id"], "basic")
        assert client.post("/api/votes", json={"listing_id": listing_id}, headers=voter).json() == {"already_voted": False}
        assert client.post("/api/votes", json={"listing_id": listing_id}, headers=voter).json() == {"already_voted": True}
        assert client.get(f"/api/listings/{listing_id}").json()["vote_count"] == 1

        r = client.delete("/api/votes", params={"listing_id": listing_id}, headers=voter)
        assert r.json() == {"removed": True}
        assert client.get(f"/api/listings/{listing_id}").json()["vote_count"] == 0

    def test_comments_and_diligence(self, client, founder):
        listing_id = new_active_listing(client, founder)
        r = client.post("/api/comments", json={
            "listing_id": listing_id,
            "body": "Strong team, thin moat",
            "thesis": {"thesis_type": "BULL_CASE", "evaluation_score": 8, "risk_tags": ["moat"]},
        }, headers=founder)
        assert r.status_code == 201, r.text
        assert r.json()["kind"] == "thesis"
        parent_id = r.json()["comment_id"]

        r = client.post("/api/comments/reply", json={"parent_comment_id": parent_id, "body": "Agreed"},
                        headers=founder)
        assert r.status_code == 201
        assert r.json()["kind"] == "discussion"

        comments = client.get("/api/comments", params={"listing_id": listing_id}).json()["comments"]
        assert len(comments) == 2

        summary = client.get(f"/api/diligence/{listing_id}").json()
        assert summary["total_analysts"] == 1
        assert summary["sentiment"] == "BULLISH"
        assert summary["top_risks"] == [{"tag": "moat", "count": 1}]

    def test_score_out_of_range(self, client, founder):
        listing_id = new_active_listing(client, founder)
        r = client.post("/api/comments", json={
            "listing_id": listing_id,
            "body": "x",
            "thesis": {"thesis_type": "BEAR_CASE", "evaluation_score": 11},
        }, headers=founder)
        assert r.status_code == 400
        assert r.json()["error"] == "InvalidScore"

    def test_unknown_thesis_type(self, client, founder):
        listing_id = new_active_listing(client, founder)
        r = client.post("/api/comments", json={
            "listing_id": listing_id,
            "body": "x",
            "thesis": {"thesis_type": "MOON", "evaluation_score": 5},
        }, headers=founder)
        assert r.status_code == 422


# ─── Agents & admin ────────────────────────────────────────────────

class TestAgentsAndAdmin:

    def test_agent_lookup(self, client):
        account = Account.create()
        _, agent = sign_in(client, account)
        assert client.get("/api/agents", params={"id": agent["agent_id"]}).json()["wallet_address"] == account.address.lower()
        assert client.get("/api/agents", params={"wallet": account.address}).json()["agent_id"] == agent["agent_id"]
        assert client.get("/api/agents", params={"id": "missing"}).status_code == 404
        assert client.get("/api/agents").status_code == 400

    def test_admin_key_required(self, client):
        _, agent = sign_in(client)
        url = f"/api/admin/agents/{agent['agent_id']}/tier"
        assert client.post(url, json={"tier": "trusted"}).status_code == 401
        assert client.post(url, json={"tier": "trusted"}, headers={"X-Admin-Key": "wrong"}).status_code == 403

    def test_tier_never_downgrades(self, client):
        _, agent = sign_in(client)
        assert upgrade(client, agent["agent_id"], "trusted")["tier"] == "trusted"
        assert upgrade(client, agent["agent_id"], "basic")["tier"] == "trusted"

    def test_admin_status_change(self, client, founder):
        listing_id = new_active_listing(client, founder)
        r = client.patch(f"/api/admin/listings/{listing_id}/status", json={"status": "expired"}, headers=ADMIN)
        assert r.status_code == 200
        assert r.json()["status"] == "expired"

    def test_expire_stale(self, client, founder, api_clock):
        listing_id = new_active_listing(client, founder)
        client.post("/api/funding/initiate", json={"listing_id": listing_id, "amount": 10}, headers=founder)
        api_clock.advance(8 * DAY)
        r = client.post("/api/admin/funding/expire-stale", headers=ADMIN)
        assert r.status_code == 200
        assert r.json()["count"] == 1
        r = client.post("/api/admin/funding/expire-stale", json={"older_than_s": 0}, headers=ADMIN)
        assert r.json()["count"] == 0


# ─── Async client ──────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_health_async(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        r = await c.get("/api/health")
    assert r.status_code == 200
    assert r.json()["version"]


@pytest.mark.asyncio
async def test_listings_feed_async(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        r = await c.get("/api/listings")
    assert r.status_code == 200
    assert r.json() == {"listings": [], "count": 0}
