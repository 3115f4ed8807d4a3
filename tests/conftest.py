# tests/conftest.py
from __future__ import annotations

from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from bot.core.states import Session
from bot.services.auth_flow import AuthStateMachine
from bot.services.community_service import CommunityService
from bot.services.community_wizard import CommunityWizard
from bot.services.identity_service import IdentityService
from bot.services.magic_link import MagicLinkClient
from bot.services.rate_limiter import RateLimiter
from bot.services.session_service import SessionStore
from database.db import Database


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
async def database(tmp_path):
    # File-backed so concurrent sessions get separate connections.
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await database.create_tables()
    try:
        yield database
    finally:
        await database.close()


@pytest.fixture()
def identities(database, clock) -> IdentityService:
    return IdentityService(database, cache_seconds=300, clock=clock)


@pytest.fixture()
def sessions(database, clock) -> SessionStore:
    return SessionStore(database, ttl_seconds=3600, clock=clock)


@pytest.fixture()
def magic_link_limiter(database, clock) -> RateLimiter:
    return RateLimiter(database, "rl_magic", points=3, duration=3600, clock=clock)


@pytest.fixture()
def message_limiter(database, clock) -> RateLimiter:
    return RateLimiter(database, "rl_msg", points=30, duration=60, clock=clock)


@pytest.fixture()
def magic_links() -> AsyncMock:
    client = AsyncMock(spec=MagicLinkClient)
    client.send_magic_link.return_value = True
    return client


@pytest.fixture()
def auth_flow(identities, magic_links, magic_link_limiter, sessions, clock) -> AuthStateMachine:
    return AuthStateMachine(
        identities,
        magic_links,
        magic_link_limiter,
        sessions=sessions,
        link_ttl_seconds=3600,
        clock=clock,
    )


@pytest.fixture()
def communities(database, identities) -> CommunityService:
    return CommunityService(database, identities=identities)


@pytest.fixture()
def wizard(communities) -> CommunityWizard:
    return CommunityWizard(communities)


@pytest.fixture()
def make_linked(identities):
    """Factory: link `telegram_id` to `email` and return (user, session with cached identity)."""

    async def _make(telegram_id: int, email: str, role: str | None = None):
        user = await identities.link_identity(telegram_id, email, username=f"user{telegram_id}")
        if role is not None:
            user = await identities.set_role(user.id, role)
        session = Session(telegram_id=telegram_id, cached_identity=identities.to_cached(user))
        return user, session

    return _make
