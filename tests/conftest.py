import asyncio
import itertools

import base58
import pytest
from fastapi.testclient import TestClient

from donation_relay.core.config import Settings
from donation_relay.core.database import create_db_engine
from donation_relay.core.errors import RelayNetworkError
from donation_relay.donations.models import QueueDonationRequest
from donation_relay.donations.store import DonationQueueStore
from donation_relay.main import create_app
from donation_relay.notes import codec

VAULT = base58.b58encode(bytes(range(1, 33))).decode()
OTHER_VAULT = base58.b58encode(bytes(range(33, 65))).decode()

MINUTE_MS = 60 * 1000


class FakeClock:
    def __init__(self, start=1_700_000_000_000):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


class FakeRelay:
    """Relay gateway double: records every call, fails or hangs on request."""

    def __init__(self, balance=10**9):
        self.balance = balance
        self.calls = []
        self.failures = {}  # (commitment, leg) -> exception
        self.hang = set()  # (commitment, leg) that never answer
        self.closed = False
        self._counter = itertools.count(1)

    async def get_balance(self):
        return self.balance

    async def redeem(self, leg, item, amount, recipient):
        self.calls.append((item.id, leg, amount, recipient))
        key = (item.commitment, leg)
        if key in self.hang:
            await asyncio.Event().wait()
        if key in self.failures:
            raise self.failures[key]
        return f"sig-{leg}-{next(self._counter)}"

    async def aclose(self):
        self.closed = True

    def fail(self, commitment, leg, error=None):
        self.failures[(commitment, leg)] = error or RelayNetworkError("connection reset")


async def no_sleep(seconds):
    no_sleep.calls.append(seconds)


no_sleep.calls = []


def make_request(commitment=None, amount=100, campaign_id="camp-1", vault=VAULT):
    note = codec.generate(amount)
    return QueueDonationRequest(
        commitment=commitment or note.commitment_hex,
        nullifier=codec.to_hex(note.nullifier),
        secretHash=codec.to_hex(note.secret_hash),
        amount=amount,
        campaignId=campaign_id,
        campaignVault=vault,
        donorSignature="ab" * 64,
    )


def request_body(**overrides):
    request = make_request()
    body = request.model_dump(by_alias=True)
    body.update(overrides)
    return body


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'relayer.db'}",
        wallet_database_url=f"sqlite:///{tmp_path / 'wallet.db'}",
        inter_item_delay=0,
        delay_jitter=0,
        relay_timeout=1.0,
        scheduler_interval=0,
        fee_rate=0.005,
        fee_min=0,
        fee_max=None,
        min_relayer_balance=1000,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(settings, clock):
    return DonationQueueStore(create_db_engine(settings.database_url), clock=clock)


@pytest.fixture
def relay():
    return FakeRelay()


@pytest.fixture
def app(settings, relay, clock):
    app = create_app(settings, relay=relay, sleep=no_sleep)
    app.state.service.store.clock = clock
    return app


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c
