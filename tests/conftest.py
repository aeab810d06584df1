import sys
from datetime import datetime
from pathlib import Path

import pytest
import pytest_asyncio
from slack_sdk.signature import SignatureVerifier

root = Path(__file__).resolve().parents[1] / "slacord"
if str(root) not in sys.path:
    sys.path.insert(0, str(root))

from slacord.config import AppConfig
from slacord.db.session import close_db, get_session, init_db
from slacord.relay.dispatcher import Dispatcher
from slacord.relay.retention import RetentionRouter
from slacord.services import RelayServices

from fakes import SIGNING_SECRET, FakeSink, FakeSlack


@pytest_asyncio.fixture
async def db():
    await close_db()
    await init_db("sqlite+aiosqlite://")
    yield get_session
    await close_db()


@pytest.fixture
def slack():
    return FakeSlack()


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def make_services(slack, sink):
    def _make(*, now: datetime | None = None, retention_days: int = 90) -> RelayServices:
        kwargs = {"clock": (lambda: now)} if now is not None else {}
        return RelayServices(
            config=AppConfig(),
            slack=slack,
            discord=sink,
            dispatcher=Dispatcher(get_session, sink, slack),
            retention=RetentionRouter(slack, retention_days, **kwargs),
            signature_verifier=SignatureVerifier(SIGNING_SECRET),
        )

    return _make
