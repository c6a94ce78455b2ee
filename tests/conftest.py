"""
Shared fixtures.

The database is an in-process mongomock-motor instance, so no MongoDB server
is needed. Settings are read from the environment set below.
"""

import itertools
import os
from datetime import datetime, timedelta, timezone

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Set

import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from petchat.config import get_settings
get_settings.cache_clear()

from petchat import main
from petchat.database import connection
from petchat.exceptions import ConnectionLost
from petchat.repositories.user_repository import UserRepository
from petchat.services import chat_service as chat_service_module
from petchat.services.gateway import build_gateway, ensure_indexes
from petchat.utils.security import create_access_token


class RecordingConnection:
    """Connection handle that keeps every pushed frame in memory."""

    def __init__(self, user_id: str) -> None:
        self.id = f"rec-{user_id}-{id(self)}"
        self.user_id = user_id
        self.registered = False
        self.rooms: Set[str] = set()
        self.closed = False
        self.frames: List[Dict[str, Any]] = []

    def push(self, payload: Dict[str, Any]) -> None:
        if self.closed:
            raise ConnectionLost(self.id)
        self.frames.append(payload)

    def of_type(self, frame_type: str) -> List[Dict[str, Any]]:
        return [f for f in self.frames if f["type"] == frame_type]

    def last(self, frame_type: str) -> Optional[Dict[str, Any]]:
        matches = self.of_type(frame_type)
        return matches[-1] if matches else None


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def db():
    return AsyncMongoMockClient()["petchat_test"]


@pytest.fixture
async def users(db):
    repo = UserRepository(db)
    return SimpleNamespace(
        alice=await repo.create_user("alice@example.com", "Alice", "/uploads/alice.png"),
        bob=await repo.create_user("bob@example.com", "Bob"),
        carol=await repo.create_user("carol@example.com", "Carol", "https://cdn.example.com/carol.jpg"),
    )


@pytest.fixture
async def gateway(db, settings):
    await ensure_indexes(db)
    return build_gateway(db, settings)


@pytest.fixture
def clock(monkeypatch):
    """Message clock that advances one second per message."""
    start = datetime(2100, 1, 1, tzinfo=timezone.utc)
    ticks = itertools.count()
    monkeypatch.setattr(chat_service_module, "utcnow", lambda: start + timedelta(seconds=next(ticks)))


@pytest.fixture
def client(monkeypatch, db):
    """TestClient whose app talks to the mongomock database."""

    async def fake_connect():
        monkeypatch.setattr(connection, "_db", db)

    monkeypatch.setattr(main, "connect_to_mongo", fake_connect)
    with TestClient(main.app) as test_client:
        yield test_client


@pytest.fixture
def api_users(client):
    repo = UserRepository(connection.get_database())

    def seed(email: str, name: str) -> SimpleNamespace:
        user_id = client.portal.call(repo.create_user, email, name)
        token = create_access_token(user_id)
        return SimpleNamespace(
            id=user_id,
            token=token,
            headers={"Authorization": f"Bearer {token}"},
        )

    return SimpleNamespace(
        alice=seed("alice@example.com", "Alice"),
        bob=seed("bob@example.com", "Bob"),
        carol=seed("carol@example.com", "Carol"),
    )
