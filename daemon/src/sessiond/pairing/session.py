"""Pairing session state machine.

Represents one in-flight pairing for a subject with validated state
transitions.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Optional

from sessiond.pairing.outcome import ResponseSlot
from sessiond.protocols import Handshake


class PairingState(Enum):
    """Pairing session states."""

    INIT = auto()
    AWAITING_REGISTRATION = auto()
    HANDSHAKE_OPEN = auto()
    ARCHIVED = auto()
    DONE = auto()
    TIMED_OUT = auto()
    FAILED = auto()


_VALID_TRANSITIONS = {
    PairingState.INIT: {PairingState.AWAITING_REGISTRATION, PairingState.FAILED},
    PairingState.AWAITING_REGISTRATION: {
        PairingState.HANDSHAKE_OPEN,
        PairingState.TIMED_OUT,
        PairingState.FAILED,
    },
    PairingState.HANDSHAKE_OPEN: {PairingState.ARCHIVED, PairingState.FAILED},
    # Caller got "waiting" before the handshake opened
    PairingState.TIMED_OUT: {PairingState.HANDSHAKE_OPEN, PairingState.FAILED},
    PairingState.ARCHIVED: {PairingState.DONE, PairingState.FAILED},
    PairingState.DONE: set(),
    PairingState.FAILED: set(),
}


@dataclass(frozen=True)
class PairingRequest:
    """An inbound pairing request.

    Attributes:
        subject_id: Normalized, digits-only subject identifier.
        session_path: Session directory owned by this request's handshake.
    """

    subject_id: str
    session_path: Path


@dataclass
class PairingSession:
    """An in-flight pairing.

    Attributes:
        request: The request that started the pairing.
        slot: Write-once reply for the caller.
        state: Current pairing state.
        registered: Whether the transport reported the subject as already
            registered (None until the handshake is open).
        handshake: Transport handshake (set once opened).
        opened: Whether an open event has been accepted. Archival runs
            at most once per session.
        pairing_code: Code issued for this handshake, replayed to callers
            that re-request after "waiting".
        created_at: Unix timestamp when the session was created.
    """

    request: PairingRequest
    slot: ResponseSlot = field(default_factory=ResponseSlot)
    state: PairingState = PairingState.INIT
    registered: Optional[bool] = None
    handshake: Optional[Handshake] = None
    opened: bool = False
    pairing_code: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    tasks: set[asyncio.Task] = field(default_factory=set, repr=False)

    @property
    def subject_id(self) -> str:
        """Subject identifier of the request."""
        return self.request.subject_id

    def is_terminal(self) -> bool:
        """True once the session reached DONE or FAILED."""
        return self.state in (PairingState.DONE, PairingState.FAILED)

    def can_transition_to(self, new_state: PairingState) -> bool:
        """Check whether a transition is valid from the current state."""
        return new_state in _VALID_TRANSITIONS[self.state]

    def transition_to(self, new_state: PairingState) -> None:
        """Transition to a new state with validation.

        Args:
            new_state: Target state.

        Raises:
            ValueError: If transition is not valid from current state.
        """
        if not self.can_transition_to(new_state):
            raise ValueError(f"Invalid transition: {self.state} -> {new_state}")
        self.state = new_state
