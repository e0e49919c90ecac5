"""Shared test fixtures and configuration for backend tests."""
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from roomchat.chat.service import ChatService
from roomchat.config import (
    AppConfig,
    RetentionSettings,
    StorageSettings,
    reset_config,
    set_config,
)
from roomchat.main import app
from roomchat.messages.store import MessageStore


class FakeClock:
    """Virtual clock returning a controllable UTC time."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeWebSocket:
    """Records every frame sent to it; can be told to fail like a dead socket."""

    def __init__(self) -> None:
        self.sent = []
        self.fail = False

    async def send_json(self, data) -> None:
        if self.fail:
            raise RuntimeError("connection closed")
        self.sent.append(data)

    def events(self):
        return [frame["event"] for frame in self.sent]

    def of(self, event):
        return [frame["data"] for frame in self.sent if frame["event"] == event]


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(clock):
    """An in-memory MessageStore driven by the virtual clock."""
    s = MessageStore(db_path=":memory:", clock=clock)
    yield s
    s.close()


@pytest.fixture
def chat(store):
    """A ChatService wired to the in-memory store."""
    return ChatService.create(store)


@pytest.fixture
def connect(chat):
    """Factory registering a FakeWebSocket under a connection id."""

    def _connect(connection_id: str) -> FakeWebSocket:
        ws = FakeWebSocket()
        chat.connections.register(connection_id, ws)
        return ws

    return _connect


@pytest.fixture
def api_client():
    """Provide a TestClient running the app lifespan on an in-memory store."""
    MessageStore.reset_instance()
    set_config(AppConfig(
        storage=StorageSettings(db_path=":memory:"),
        retention=RetentionSettings(enabled=False),
    ))
    with TestClient(app) as client:
        yield client
    reset_config()
