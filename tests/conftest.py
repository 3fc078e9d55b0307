"""
Pytest configuration and fixtures for donor dispatch tests.
"""
import os
from datetime import datetime, timedelta
from typing import AsyncGenerator, Dict, List, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession

# Set test environment BEFORE importing app modules
os.environ["TESTING"] = "1"

# Clear any cached settings to ensure test config is used
from donor_dispatch.config import get_settings
get_settings.cache_clear()

import donor_dispatch.models  # noqa: F401  (register tables)
from donor_dispatch.database import Base, get_db, engine
from donor_dispatch.main import app
from donor_dispatch.models.donor import Donor, compound_token_id
from donor_dispatch.client.scheduler import ScheduledCall, Scheduler
from donor_dispatch.services.auth import AuthService
from donor_dispatch.services.push import PushProvider, TokenResult, get_push_provider


NOW = datetime(2025, 6, 1, 12, 0, 0)


class FakePushProvider(PushProvider):
    """
    Records every multicast call.

    fail_tokens: tokens reported as failed with their error code.
    raise_on_call: 1-based call numbers that raise instead of answering.
    """

    def __init__(self, fail_tokens: Optional[Dict[str, str]] = None, raise_on_call=()):
        self.calls: List[dict] = []
        self.fail_tokens = fail_tokens or {}
        self.raise_on_call = set(raise_on_call)

    async def send(self, tokens, title, body, data, token_data=None) -> List[TokenResult]:
        self.calls.append({
            "tokens": list(tokens),
            "title": title,
            "body": body,
            "data": dict(data),
            "token_data": dict(token_data or {}),
        })
        if len(self.calls) in self.raise_on_call:
            raise RuntimeError("provider unavailable")
        return [
            TokenResult(token=t, success=False, error_code=self.fail_tokens[t])
            if t in self.fail_tokens
            else TokenResult(token=t, success=True, message_id=f"msg-{t[-6:]}")
            for t in tokens
        ]

    @property
    def sent_tokens(self) -> List[str]:
        return [t for call in self.calls for t in call["tokens"]]


class VirtualScheduler(Scheduler):
    """Scheduler driven by a virtual clock; advance() runs whatever falls due."""

    def __init__(self):
        self.now = 0.0
        self.calls: List[ScheduledCall] = []
        self.delays: List[float] = []

    def call_later(self, delay, callback) -> ScheduledCall:
        call = ScheduledCall(self.now + delay, callback)
        self.calls.append(call)
        self.delays.append(delay)
        return call

    @property
    def pending(self) -> List[ScheduledCall]:
        return [c for c in self.calls if not c.cancelled]

    async def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = sorted((c for c in self.pending if c.when <= target), key=lambda c: c.when)
            if not due:
                break
            call = due[0]
            self.calls.remove(call)
            self.now = call.when
            await call.callback()
        self.now = target


def make_token(suffix: str) -> str:
    """A syntactically valid FCM-style token."""
    return f"fcm-{suffix}:APA91b{suffix}"


def make_donor(donor_id: str, blood_group: str = "O-", district: str = "Dhaka", **overrides) -> Donor:
    fields = dict(
        id=donor_id,
        name=f"Donor {donor_id}",
        phone="+8801700000000",
        blood_group=blood_group,
        district=district,
        push_token=make_token(donor_id),
        has_push_token=True,
        device_id=f"device-{donor_id}",
        compound_token_id=compound_token_id(donor_id, f"device-{donor_id}"),
        device_type="android",
        is_available=True,
        is_active=True,
        is_logged_in=True,
        notification_enabled=True,
        last_donation_date=None,
        last_donation=None,
    )
    fields.update(overrides)
    return Donor(**fields)


def days_ago(days: int) -> datetime:
    return NOW - timedelta(days=days)


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test with transaction rollback."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    async with engine.connect() as conn:
        trans = await conn.begin()
        session = AsyncSession(bind=conn, expire_on_commit=False)
        try:
            yield session
        finally:
            await session.close()
            await trans.rollback()


@pytest.fixture
def push_provider() -> FakePushProvider:
    return FakePushProvider()


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession, push_provider: FakePushProvider) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with database session and push provider overrides."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_push_provider] = lambda: push_provider

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def dhaka_donors(db_session: AsyncSession) -> List[Donor]:
    """A+, B+, two O- and an AB- donor in Dhaka; u1 is one of the O- donors."""
    donors = [
        make_donor("u1", "O-"),
        make_donor("d-a-pos", "A+"),
        make_donor("d-b-pos", "B+"),
        make_donor("d-o-neg", "O-", last_donation_date=datetime.utcnow() - timedelta(days=200)),
        make_donor("d-ab-neg", "AB-"),
    ]
    db_session.add_all(donors)
    await db_session.commit()
    return donors


def get_auth_header(user_id: str) -> dict:
    """Generate auth header for a user."""
    token = AuthService.create_access_token(data={"sub": user_id})
    return {"Authorization": f"Bearer {token}"}
