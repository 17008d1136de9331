"""Test fixtures for moc-studio.

Provides:
- clock: A controllable UTC clock shared by every service under test
- settings: Settings with a fixed token secret and the MCP mount disabled
- services: The Services container wired to the test clock
- db / uow: A freshly seeded in-memory database and a Unit of Work over it
- login: Factory that signs a seeded user in and returns their AuthContext
- admin_ctx, manager_ctx, engineer_ctx, tech_ctx, hse_ctx, committee_ctx:
  Ready-made sessions, one per operational role
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Callable

import pytest

os.environ.setdefault("MOC_ENABLE_MCP", "false")

from application import AuthContext, IssueSessionUseCase, Services  # noqa: E402
from infrastructure import InMemoryDatabase, InMemoryUnitOfWork  # noqa: E402
from settings import Settings  # noqa: E402

TEST_SECRET = "moc-studio-test-secret-0123456789abcdef"

SEEDED_EMAILS = {
    "admin": "admin@mocstudio.io",
    "manager": "manager@mocstudio.io",
    "engineer": "engineer@mocstudio.io",
    "tech": "tech@mocstudio.io",
    "hse": "hse@mocstudio.io",
    "committee": "committee@mocstudio.io",
}


class FakeClock:
    """A clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture()
def clock() -> FakeClock:
    """Return a clock frozen at a fixed instant.

    Returns:
        FakeClock starting at 2024-06-01 12:00 UTC.
    """
    return FakeClock(datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture()
def settings() -> Settings:
    """Return Settings independent of the host environment.

    Returns:
        Settings with a known secret and default TTLs.
    """
    return Settings(_env_file=None, token_secret=TEST_SECRET, enable_mcp=False)


@pytest.fixture()
def services(settings: Settings, clock: FakeClock) -> Services:
    """Build the Services container on the test clock.

    Args:
        settings: Injected settings fixture.
        clock: Injected clock fixture.

    Returns:
        Services sharing one controllable clock.
    """
    return Services.build(settings, clock=clock)


@pytest.fixture()
def db() -> InMemoryDatabase:
    """Return a freshly seeded in-memory database."""
    return InMemoryDatabase()


@pytest.fixture()
def uow(db: InMemoryDatabase) -> InMemoryUnitOfWork:
    """Return a Unit of Work over the test database."""
    return InMemoryUnitOfWork(db)


@pytest.fixture()
def login(services: Services, uow: InMemoryUnitOfWork) -> Callable[[str], AuthContext]:
    """Sign a user in by email and return the resulting AuthContext.

    Args:
        services: Injected services fixture.
        uow: Injected Unit of Work fixture.

    Returns:
        A function mapping an email to an AuthContext carrying a fresh access token.
    """
    def _login(email: str) -> AuthContext:
        session = IssueSessionUseCase(services).execute(email, uow)
        return AuthContext(access_token=session.access_token)
    return _login


@pytest.fixture()
def admin_ctx(login) -> AuthContext:
    return login(SEEDED_EMAILS["admin"])


@pytest.fixture()
def manager_ctx(login) -> AuthContext:
    return login(SEEDED_EMAILS["manager"])


@pytest.fixture()
def engineer_ctx(login) -> AuthContext:
    return login(SEEDED_EMAILS["engineer"])


@pytest.fixture()
def tech_ctx(login) -> AuthContext:
    return login(SEEDED_EMAILS["tech"])


@pytest.fixture()
def hse_ctx(login) -> AuthContext:
    return login(SEEDED_EMAILS["hse"])


@pytest.fixture()
def committee_ctx(login) -> AuthContext:
    return login(SEEDED_EMAILS["committee"])
