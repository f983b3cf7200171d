"""
tests/conftest.py -- Shared fixtures for the access gate test suite.

This module provides:
  - FakeDirectory: in-process stand-in for the Graph directory client
  - db / store / resolver / credentials: wired against a file-backed SQLite DB
  - api_client: TestClient with the real routes and a patched lifespan

Design: file-backed SQLite in tmp_path rather than ':memory:'. The concurrency
tests run the resolver from several threads and need every pooled connection
to see the same database; a tmp file (WAL mode) gives that, plus real unique
constraint enforcement between connections.

DEBUG is set before any core import so get_settings() falls back to a dev
server context instead of raising when RADIUS_SERVER_ID is not exported.
"""

from __future__ import annotations

import os
import threading
from collections.abc import Generator
from contextlib import asynccontextmanager
from typing import Optional

os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

import bootstrap
from access.credentials import CredentialStore
from access.resolver import AuthorizationResolver
from access.store import AccessStore
from core.config import Settings
from core.models import IdentityRecord
from db.client import DatabaseClient
from db.schema import ensure_schema

SERVER_ID = "site-A"
ADMIN_KEY = "k" * 40


class FakeDirectory:
    """Thread-safe directory double that records every lookup.

    Matches principal names case-insensitively and returns the canonical
    spelling, as Graph does.
    """

    def __init__(self, users: Optional[dict[str, Optional[str]]] = None, enabled: bool = True) -> None:
        self.users = dict(users or {})
        self.enabled = enabled
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def lookup(self, principal_name: str) -> Optional[IdentityRecord]:
        with self._lock:
            self.calls.append(principal_name)
        if not self.enabled:
            return None
        for canonical, display_name in self.users.items():
            if canonical.lower() == principal_name.lower():
                return IdentityRecord(principal_name=canonical, display_name=display_name)
        return None

    def list_users(self) -> list[IdentityRecord]:
        if not self.enabled:
            return []
        return [IdentityRecord(principal_name=k, display_name=v) for k, v in self.users.items()]


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'grants.db'}"


@pytest.fixture
def db(db_url) -> Generator[DatabaseClient, None, None]:
    client = DatabaseClient(db_url)
    ensure_schema(client)
    yield client
    client.close()


@pytest.fixture
def store(db) -> AccessStore:
    return AccessStore(db, SERVER_ID)


@pytest.fixture
def make_directory():
    """Factory for FakeDirectory instances with custom users or a disabled state."""
    return FakeDirectory


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory({"alice@example.com": "Alice"})


@pytest.fixture
def resolver(store, directory) -> AuthorizationResolver:
    return AuthorizationResolver(store, directory)


@pytest.fixture
def credentials(store) -> CredentialStore:
    return CredentialStore(store)


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(services: bootstrap.Services, admin_key: str):
    """Return a lifespan that wires pre-built services into app.state.

    Skips bootstrap.start() so tests never read the process environment or
    talk to Azure AD.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.services = services
        app.state.resolver = services.resolver
        app.state.credentials = services.credentials
        app.state.admin_api_key = admin_key
        yield

    return test_lifespan


@pytest.fixture
def api_client(db_url) -> Generator[tuple[TestClient, bootstrap.Services], None, None]:
    """Yield (client, services) with the admin key already sent on every request."""
    from api.main import app

    settings = Settings(radius_server_id=SERVER_ID, database_url=db_url, admin_api_key=ADMIN_KEY)
    services = bootstrap.start(settings, directory=FakeDirectory({"alice@example.com": "Alice"}))
    app.router.lifespan_context = _patch_lifespan(services, ADMIN_KEY)

    with TestClient(app, raise_server_exceptions=True, headers={"X-API-Key": ADMIN_KEY}) as client:
        yield client, services

    services.close()
