"""
tests/conftest.py -- Shared test fixtures for AdBond unit and integration tests.

This module provides:
  - RecordingTransport / FailingTransport: mail transports that never touch
    the network; the first records every message, the second always fails
  - make_stores(): isolated in-memory DBs for entities + users
  - make_workflow(): a VerificationWorkflow wired to test stores and a transport
  - network_registration() / new_network(): a valid "Acme Media" payload
  - stores / workflow: function-scoped fixtures for unit tests
  - api_client: module-scoped TestClient with an admin JWT for API tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any auth module import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from typing import Any

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.models import User
from auth.store import UserStore
from auth.tokens import create_access_token, hash_password
from core.errors import NotificationFailure
from entities.models import NewEntity
from entities.provisioning import AccountProvisioner
from entities.store import EntityStore
from entities.verification import VerificationWorkflow
from notify.mailer import Notifier

ADMIN_INBOX = "admin-inbox@adbond.net"


# ---------------------------------------------------------------------------
# Mail transports
# ---------------------------------------------------------------------------


class RecordingTransport:
    """Collects every message instead of sending it."""

    def __init__(self) -> None:
        self.sent: list[dict[str, str]] = []

    def send(self, to: str, subject: str, html: str) -> str:
        self.sent.append({"to": to, "subject": subject, "html": html})
        return f"msg-{len(self.sent)}"

    def to(self, address: str) -> list[dict[str, str]]:
        return [m for m in self.sent if m["to"] == address]

    def subjects(self) -> list[str]:
        return [m["subject"] for m in self.sent]

    def clear(self) -> None:
        self.sent.clear()


class FailingTransport:
    """Fails every send the way ResendTransport reports an unreachable provider."""

    def __init__(self, error_code: str = "connection") -> None:
        self.error_code = error_code
        self.attempts = 0

    def send(self, to: str, subject: str, html: str) -> str:
        self.attempts += 1
        raise NotificationFailure("Could not reach email provider", self.error_code)


# ---------------------------------------------------------------------------
# Store and workflow helpers
# ---------------------------------------------------------------------------


def make_stores(db_suffix: str) -> tuple[EntityStore, UserStore]:
    """Create isolated named shared-memory SQLite stores.

    Args:
        db_suffix: Unique string appended to the DB name so test modules and
                   tests don't share state.
    """
    db_url = f"sqlite:///file:test_adbond_{db_suffix}?mode=memory&cache=shared&uri=true"
    return EntityStore(db_url), UserStore(db_url)


def make_workflow(
    entity_store: EntityStore,
    user_store: UserStore,
    transport: Any,
    allow_approval_revocation: bool = True,
) -> VerificationWorkflow:
    notifier = Notifier(transport, admin_email=ADMIN_INBOX, frontend_url="https://app.adbond.test")
    return VerificationWorkflow(
        entity_store,
        AccountProvisioner(user_store, ttl_hours=24),
        notifier,
        allow_approval_revocation=allow_approval_revocation,
    )


def network_registration(**overrides: Any) -> dict[str, Any]:
    """A complete, valid network registration body."""
    body: dict[str, Any] = {
        "entity_type": "network",
        "name": "Acme Media",
        "email": "ops@acme.test",
        "website": "https://acme.test",
        "contact_info": {"telegram": "@acme"},
        "description": "Performance network focused on finance and nutra offers across tier-1 GEOs.",
        "entity_metadata": {
            "network_name": "Acme",
            "signup_url": "https://acme.test/signup",
            "tracking_platform": "Everflow",
            "supported_models": ["CPA"],
            "verticals": ["finance"],
            "payment_terms": "Net30",
        },
    }
    body.update(overrides)
    return body


def new_network(**overrides: Any) -> NewEntity:
    return NewEntity(**network_registration(**overrides))


# ---------------------------------------------------------------------------
# Function-scoped fixtures -- unit tests
# ---------------------------------------------------------------------------


@pytest.fixture
def stores() -> Generator[tuple[EntityStore, UserStore], None, None]:
    entity_store, user_store = make_stores(uuid.uuid4().hex)
    yield entity_store, user_store
    entity_store.close()
    user_store.close()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def workflow(stores, transport) -> VerificationWorkflow:
    entity_store, user_store = stores
    return make_workflow(entity_store, user_store, transport)


# ---------------------------------------------------------------------------
# Lifespan patch and module-scoped API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(entity_store: EntityStore, user_store: UserStore, workflow: VerificationWorkflow):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores and a workflow with a recording transport
    into app.state so no real database or email provider is used.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.entity_store = entity_store
        app.state.user_store = user_store
        app.state.workflow = workflow
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, str, RecordingTransport], None, None]:
    """Yield (client, token, admin_id, transport) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use isolated in-memory stores. The
    admin user is created before the client starts. Rate limiting is
    switched off: test modules register more entities per minute than the
    production limits allow.
    """
    entity_store, user_store = make_stores(request.module.__name__.rsplit(".", 1)[-1])
    transport = RecordingTransport()
    workflow = make_workflow(entity_store, user_store, transport)

    admin = User(
        email="admin@adbond.test",
        hashed_password=hash_password("adminpass123"),
        role="admin",
        first_name="Ada",
    )
    uid = user_store.create_user(admin)
    token = create_access_token(user_id=uid, email="admin@adbond.test", role="admin", expire_seconds=3600)

    app.router.lifespan_context = _patch_lifespan(entity_store, user_store, workflow)
    limiter.enabled = False

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, uid, transport

    limiter.enabled = True
    entity_store.close()
    user_store.close()


def auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
