"""Shared test fixtures and configuration for backend tests."""
import asyncio
from typing import Any, List

import pytest
from fastapi.testclient import TestClient

from roomcast.archive import MessageArchive
from roomcast.auth.service import TokenService, UserStore
from roomcast.config import AppConfig, reset_config, set_config
from roomcast.main import app

TEST_SECRET = "roomcast-test-secret-key-with-enough-bytes"


class FakeChannel:
    """Records every frame sent to a connection."""

    def __init__(self) -> None:
        self.frames: List[dict] = []

    async def send_json(self, data: Any) -> None:
        self.frames.append(data)

    def events(self) -> List[str]:
        return [f["event"] for f in self.frames]

    def payloads(self, event: str) -> List[Any]:
        return [f["data"] for f in self.frames if f["event"] == event]

    def last(self, event: str) -> Any:
        found = self.payloads(event)
        assert found, f"no {event} frame in {self.events()}"
        return found[-1]

    def clear(self) -> None:
        self.frames.clear()


class BrokenChannel(FakeChannel):
    """A channel whose transport is gone."""

    async def send_json(self, data: Any) -> None:
        raise RuntimeError("connection reset")


class StalledChannel(FakeChannel):
    """A client that stopped reading: sends never complete."""

    def __init__(self) -> None:
        super().__init__()
        self.attempts = 0

    async def send_json(self, data: Any) -> None:
        self.attempts += 1
        await asyncio.Event().wait()


def assert_consistent(state) -> None:
    """Every connection sits in at most one room and its edge agrees with it."""
    seen = {}
    for room in state.rooms.names():
        for cid in state.rooms.members(room):
            assert cid not in seen, f"{cid} is in both {seen[cid]} and {room}"
            seen[cid] = room
            assert state.memberships.room_of(cid) == room
    assert len(seen) == len(state.memberships)


@pytest.fixture(autouse=True)
def test_config():
    """Use in-memory databases and a known signing key for every test."""
    config = AppConfig()
    config.secrets.jwt.secret_key = TEST_SECRET
    config.auth.db_path = ":memory:"
    config.archive.db_path = ":memory:"
    config.archive.purge_interval_seconds = 0
    set_config(config)
    yield config
    reset_config()


@pytest.fixture(autouse=True)
def in_memory_stores():
    """Give each test fresh in-memory archive and user store singletons."""
    MessageArchive.reset_instance()
    UserStore.reset_instance()
    MessageArchive.get_instance(db_path=":memory:")
    UserStore.get_instance(db_path=":memory:")
    yield
    MessageArchive.reset_instance()
    UserStore.reset_instance()


@pytest.fixture
def api_client():
    """Provide a TestClient with the app lifespan running.

    Entering the client keeps one event loop for every WebSocket opened
    during the test, so all connections share the same coordinator.
    """
    with TestClient(app) as client:
        yield client


@pytest.fixture
def token_service():
    return TokenService(secret_key=TEST_SECRET)


@pytest.fixture
def channel():
    """Factory for recording channels."""
    return FakeChannel
