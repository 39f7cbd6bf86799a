"""Pytest configuration and shared fixtures."""

import asyncio
from pathlib import Path
from typing import Optional

import pytest
import pytest_asyncio
from aiohttp.test_utils import unused_port

from sessiond.credentials import CredentialStore
from sessiond.pairing.orchestrator import PairingOrchestrator
from sessiond.protocols import ConnectionState, ConnectionUpdate
from sessiond.registry import JsonSessionRegistry

TEST_NUMBER = "254700111222"
TEST_LINK = "https://store.example/file/AbC123#k3y"
TEST_CREDENTIALS = b'{"me": {"id": "254700111222:1@s.whatsapp.net"}}'


@pytest.fixture
def aiohttp_unused_port():
    """Return a function that finds an unused port (not provided by pytest-aiohttp>=1)."""
    return unused_port


@pytest.fixture(autouse=True)
def reset_logging_state():
    """Reset logging state before each test."""
    from sessiond.logging import reset_logging

    reset_logging()
    yield
    reset_logging()


class FakeHandshake:
    """Scripted handshake.

    Pairing-code requests pop from ``codes``: a string is returned, an
    exception instance is raised, and an exhausted script returns "".
    """

    def __init__(self, registered: bool = False, codes: Optional[list] = None):
        self.registered = registered
        self.codes = list(codes or [])
        self.code_requests = 0
        self.sent: list[tuple[str, str]] = []
        self.send_error: Optional[Exception] = None
        self.close_count = 0
        self.listening = asyncio.Event()
        self._connection_listener = None
        self._credentials_listener = None

    @property
    def closed(self) -> bool:
        return self.close_count > 0

    def on_connection_update(self, listener) -> None:
        self._connection_listener = listener
        self.listening.set()

    def on_credentials_update(self, listener) -> None:
        self._credentials_listener = listener

    async def request_pairing_code(self, subject_id: str) -> str:
        self.code_requests += 1
        item = self.codes.pop(0) if self.codes else ""
        if isinstance(item, Exception):
            raise item
        return item

    async def send_text(self, subject_id: str, text: str) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((subject_id, text))

    async def close(self) -> None:
        self.close_count += 1

    async def emit_credentials(self, data: bytes = TEST_CREDENTIALS) -> None:
        await self._credentials_listener(data)

    async def emit(
        self,
        state: ConnectionState,
        reason: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        await self._connection_listener(
            ConnectionUpdate(state=state, reason=reason, status_code=status_code)
        )


class FakeTransport:
    """Transport handing out a prepared handshake."""

    def __init__(self, handshake: FakeHandshake, error: Optional[Exception] = None):
        self.handshake = handshake
        self.error = error
        self.requests = []

    async def open(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.handshake


class FakeArchive:
    """In-memory blob archive.

    When ``gate`` is set, uploads block on it after being recorded.
    """

    def __init__(self, link: str = TEST_LINK, error: Optional[Exception] = None):
        self.link = link
        self.error = error
        self.uploads: list[tuple[bytes, str]] = []
        self.gate: Optional[asyncio.Event] = None
        self.upload_started = asyncio.Event()

    async def upload(self, data: bytes, name: str) -> str:
        if self.error is not None:
            raise self.error
        self.uploads.append((data, name))
        self.upload_started.set()
        if self.gate is not None:
            await self.gate.wait()
        return self.link


@pytest.fixture
def handshake() -> FakeHandshake:
    """Handshake for an unregistered number with no scripted codes."""
    return FakeHandshake()


@pytest.fixture
def transport(handshake) -> FakeTransport:
    return FakeTransport(handshake)


@pytest.fixture
def archive() -> FakeArchive:
    return FakeArchive()


@pytest.fixture
def credential_store(tmp_path: Path) -> CredentialStore:
    return CredentialStore(tmp_path / "sessions")


@pytest.fixture
def registry(tmp_path: Path) -> JsonSessionRegistry:
    return JsonSessionRegistry(tmp_path / "registry.json")


@pytest_asyncio.fixture
async def make_orchestrator(transport, credential_store, archive, registry):
    """Factory for orchestrators with fast timers; stopped after the test."""
    created = []

    def _make(**overrides) -> PairingOrchestrator:
        options = {
            "transport": transport,
            "credential_store": credential_store,
            "archive": archive,
            "registry": registry,
            "pairing_code_delay": 0,
            "response_timeout": 5.0,
            "handshake_timeout": 60.0,
        }
        options.update(overrides)
        orchestrator = PairingOrchestrator(**options)
        created.append(orchestrator)
        return orchestrator

    yield _make

    for orchestrator in created:
        await orchestrator.stop()
    # Let callers answered by stop() finish
    await asyncio.sleep(0)
