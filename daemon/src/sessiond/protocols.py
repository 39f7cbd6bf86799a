"""Protocols and enums for sessiond.

Capability interfaces for the collaborators the pairing orchestrator
drives but does not implement:

- PairingTransport / Handshake: the chat network's device-linking exchange
- BlobArchive: remote object storage for credential blobs
- SessionRegistry: append-only list of issued session references
"""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, Protocol

if TYPE_CHECKING:
    from sessiond.config import Config
    from sessiond.pairing.session import PairingRequest
    from sessiond.registry import ArchiveRecord


class ConnectionState(Enum):
    """State of a handshake's connection to the chat network."""

    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


@dataclass(frozen=True)
class ConnectionUpdate:
    """A connection-state change emitted by a handshake.

    Attributes:
        state: New connection state.
        reason: Human-readable close reason (CLOSED only).
        status_code: Transport disconnect code, if the transport reports one.
    """

    state: ConnectionState
    reason: Optional[str] = None
    status_code: Optional[int] = None


ConnectionListener = Callable[[ConnectionUpdate], Awaitable[None]]
CredentialListener = Callable[[bytes], Awaitable[None]]


class Handshake(Protocol):
    """One in-progress device-linking attempt for a subject."""

    @property
    def registered(self) -> bool:
        """True if the subject already has linked credentials."""
        ...

    def on_connection_update(self, listener: ConnectionListener) -> None:
        """Register the listener for connection-state changes."""
        ...

    def on_credentials_update(self, listener: CredentialListener) -> None:
        """Register the listener called with the full credential blob on change."""
        ...

    async def request_pairing_code(self, subject_id: str) -> str:
        """Request a short human-enterable pairing code."""
        ...

    async def send_text(self, subject_id: str, text: str) -> None:
        """Send a one-line text message to the subject."""
        ...

    async def close(self) -> None:
        """Tear the handshake down."""
        ...


class PairingTransport(Protocol):
    """Opens handshakes against the chat network."""

    async def open(self, request: "PairingRequest") -> Handshake:
        """Open a handshake for the request's subject and session path."""
        ...


class BlobArchive(Protocol):
    """Remote storage for credential blobs."""

    async def upload(self, data: bytes, name: str) -> str:
        """Upload bytes and return a dereferenceable link.

        Raises:
            ArchiveError: If the upload fails.
        """
        ...


class SessionRegistry(Protocol):
    """Append-only registry of issued session references."""

    async def append(self, record: "ArchiveRecord") -> None:
        """Durably append a record."""
        ...

    async def list(self) -> list["ArchiveRecord"]:
        """Return all records in insertion order."""
        ...


TransportFactory = Callable[["Config"], PairingTransport]
