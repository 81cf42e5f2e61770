"""Pytest configuration and fixtures."""

from typing import Any

import pytest

from relaybot.config.schema import Config
from relaybot.gateway.base import ConnectionHandle, Gateway
from relaybot.session.store import AuthState, SessionStore


class FakeHandle(ConnectionHandle):
    """In-memory connection handle that records every gateway operation."""

    def __init__(self, user_id: str = "254700000001@s.whatsapp.net"):
        super().__init__()
        self.user_id = user_id
        self.sent: list[tuple[str, dict[str, Any], dict[str, Any] | None]] = []
        self.statuses: list[str] = []
        self.read: list[list[dict[str, Any]]] = []
        self.joined: list[str] = []
        self.followed: list[str] = []
        self.closed = False
        self.fail_status = 0
        self.fail_follow = False

    async def send_message(self, recipient, content, options=None):
        self.sent.append((recipient, content, options))
        return {"key": {"id": f"msg-{len(self.sent)}"}}

    async def update_profile_status(self, text):
        if self.fail_status > 0:
            self.fail_status -= 1
            raise RuntimeError("status rejected")
        self.statuses.append(text)

    async def read_messages(self, keys):
        self.read.append(list(keys))

    async def decode_identity(self, jid):
        return jid.split(":")[0].split("@")[0] + "@s.whatsapp.net"

    async def join_group(self, invite_code):
        self.joined.append(invite_code)
        return f"{invite_code}@g.us"

    async def follow_channel(self, channel_id):
        if self.fail_follow:
            raise RuntimeError("follow refused")
        self.followed.append(channel_id)

    async def close(self):
        self.closed = True


class FakeGateway(Gateway):
    """Gateway that hands out FakeHandles; connects after `fail_after` successes raise."""

    def __init__(self, fail_after: int | None = None):
        self.handles: list[FakeHandle] = []
        self.auth_states: list[AuthState] = []
        self.print_qr: list[bool] = []
        self.fail_after = fail_after
        self.attempts = 0

    async def connect(self, auth_state, print_qr=False):
        self.attempts += 1
        if self.fail_after is not None and len(self.handles) >= self.fail_after:
            raise ConnectionRefusedError("bridge unavailable")
        self.auth_states.append(auth_state)
        self.print_qr.append(print_qr)
        handle = FakeHandle()
        self.handles.append(handle)
        return handle


class FakeBlobStore:
    def __init__(self, payload: bytes = b'{"me": {"id": "1@s.whatsapp.net"}}'):
        self.payload = payload
        self.calls: list[tuple[str, str]] = []

    async def fetch(self, object_id, key):
        self.calls.append((object_id, key))
        return self.payload


class FakePasteService:
    def __init__(self, payload: bytes = b'{"registered": true}'):
        self.payload = payload
        self.calls: list[str] = []

    async def fetch(self, key):
        self.calls.append(key)
        return self.payload


@pytest.fixture
def config() -> Config:
    return Config()


@pytest.fixture
def store(tmp_path) -> SessionStore:
    s = SessionStore(tmp_path / "session")
    s.persist(b'{"me": {"id": "254700000001@s.whatsapp.net"}, "registered": true}')
    return s


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()
