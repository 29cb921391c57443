"""Global test configuration — runs before any test module imports."""
import os

# Must be set BEFORE any agentfund imports that read the environment
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key-global")
os.environ.setdefault("AGENTFUND_TOKEN_SECRET", "test-token-secret")
os.environ.setdefault("AGENTFUND_LOG_LEVEL", "WARNING")

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

from agentfund.config import MarketConfig
from agentfund.market import Marketplace
from agentfund.models import Tier
from agentfund.storage import MemoryBackend, SQLiteBackend

T0 = 1_700_000_000.0
DAY = 24 * 60 * 60


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = T0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def sign(account, message: str) -> str:
    signed = account.sign_message(encode_defunct(text=message))
    return "0x" + bytes(signed.signature).hex()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return MarketConfig(token_secret=b"test-token-secret", escrow_address="0xESCROW")


@pytest.fixture
def market(clock, config):
    m = Marketplace(backend=MemoryBackend(), config=config, clock=clock)
    yield m
    m.close()


@pytest.fixture
def sqlite_market(tmp_path, clock, config):
    m = Marketplace(backend=SQLiteBackend(str(tmp_path / "market.db")), config=config, clock=clock)
    yield m
    m.close()


@pytest.fixture
def make_agent(market):
    """Create an agent at the given tier, skipping the sign-in flow."""
    counter = iter(range(1, 10_000))

    def _make(tier: Tier = Tier.VERIFIED, wallet: str = None):
        wallet = wallet or f"0x{next(counter):040x}"
        agent = market.identities.get_or_create(wallet)
        if tier != Tier.UNVERIFIED:
            agent = market.upgrade_tier(agent.agent_id, tier)
        return agent

    return _make


@pytest.fixture
def active_listing(market, make_agent, clock):
    """A published listing with goal 500 and a 30-day deadline."""
    owner = make_agent(Tier.VERIFIED)
    listing = market.create_listing(
        owner.agent_id, "GPU cluster", "Inference capacity for agents",
        goal_amount=500, deadline=clock() + 30 * DAY, tags=["infra"],
    )
    return market.publish_listing(listing.listing_id, owner.agent_id)


@pytest.fixture
def account():
    return Account.create()
