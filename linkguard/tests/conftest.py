"""
Pytest configuration and fixtures for linkguard tests.

Service and route tests run on in-memory storage with a fixed clock.
Postgres repo tests (test_postgres_repos.py) skip unless DATABASE_URL is set.
"""

from __future__ import annotations

import secrets
from datetime import UTC, datetime

import httpx
import pytest
import pytest_asyncio

from linkguard.config import SecurityConfig
from linkguard.main import create_app
from linkguard.services.magic_link_guard import MagicLinkGuard
from linkguard.storage import SecurityStores, memory_stores

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


def new_token() -> str:
    """A realistic 64-character token id."""
    return secrets.token_hex(32)


@pytest.fixture
def config() -> SecurityConfig:
    return SecurityConfig()


@pytest.fixture
def stores() -> SecurityStores:
    return memory_stores()


@pytest.fixture
def guard(stores, config) -> MagicLinkGuard:
    return MagicLinkGuard(stores, config)


@pytest_asyncio.fixture
async def async_client(guard):
    """Async HTTP client against an app running on in-memory storage."""
    app = create_app(guard)
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
