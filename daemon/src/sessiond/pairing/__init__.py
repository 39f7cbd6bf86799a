"""Pairing module for sessiond.

Provides the pairing flow including:
- Pairing session state machine
- Write-once reply slot and caller-facing outcomes
- Orchestration of handshake, credential archival, and registry append
"""

from .orchestrator import PairingOrchestrator
from .outcome import ErrorKind, Outcome, OutcomeStatus, ResponseSlot
from .session import PairingRequest, PairingSession, PairingState

__all__ = [
    "ErrorKind",
    "Outcome",
    "OutcomeStatus",
    "PairingOrchestrator",
    "PairingRequest",
    "PairingSession",
    "PairingState",
    "ResponseSlot",
]
