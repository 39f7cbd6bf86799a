"""Pairing outcomes and the write-once reply slot."""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class OutcomeStatus(Enum):
    """Non-error reply kinds."""

    PAIRING_CODE_SENT = "pairing_code_sent"
    ALREADY_REGISTERED = "already_registered"
    PAIRED = "paired"
    WAITING = "waiting"
    FAILED = "failed"


class ErrorKind(Enum):
    """Stable error tags reported to callers."""

    INVALID_INPUT = "invalid_input"
    INVALID_NUMBER = "invalid_number"
    CONFLICT = "conflict"
    CREDENTIAL_MISSING = "credential_missing"
    UPLOAD_FAILED = "upload_failed"
    PAIRING_CODE_GENERATION_FAILED = "pairing_code_generation_failed"
    LOGGED_OUT = "logged_out"
    INTERNAL_ERROR = "internal_error"


_ERROR_HTTP_STATUS = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.INVALID_NUMBER: 400,
    ErrorKind.LOGGED_OUT: 400,
    ErrorKind.CONFLICT: 409,
    ErrorKind.CREDENTIAL_MISSING: 500,
    ErrorKind.INTERNAL_ERROR: 500,
    ErrorKind.UPLOAD_FAILED: 502,
    ErrorKind.PAIRING_CODE_GENERATION_FAILED: 502,
}

_STATUS_HTTP_STATUS = {
    OutcomeStatus.PAIRING_CODE_SENT: 202,
    OutcomeStatus.ALREADY_REGISTERED: 202,
    OutcomeStatus.WAITING: 202,
    OutcomeStatus.PAIRED: 200,
}


@dataclass(frozen=True)
class Outcome:
    """The single reply delivered for a pairing request."""

    status: OutcomeStatus
    code: Optional[str] = None
    reference: Optional[str] = None
    archive_link: Optional[str] = None
    error: Optional[ErrorKind] = None
    details: Optional[str] = None

    @classmethod
    def pairing_code_sent(cls, code: str) -> "Outcome":
        return cls(OutcomeStatus.PAIRING_CODE_SENT, code=code)

    @classmethod
    def already_registered(cls) -> "Outcome":
        return cls(OutcomeStatus.ALREADY_REGISTERED)

    @classmethod
    def paired(cls, reference: str, archive_link: str) -> "Outcome":
        return cls(OutcomeStatus.PAIRED, reference=reference, archive_link=archive_link)

    @classmethod
    def waiting(cls) -> "Outcome":
        return cls(OutcomeStatus.WAITING)

    @classmethod
    def failed(cls, error: ErrorKind, details: Optional[str] = None) -> "Outcome":
        return cls(OutcomeStatus.FAILED, error=error, details=details)

    @property
    def is_error(self) -> bool:
        return self.status is OutcomeStatus.FAILED

    @property
    def http_status(self) -> int:
        """HTTP status code for this outcome."""
        if self.error is not None:
            return _ERROR_HTTP_STATUS[self.error]
        return _STATUS_HTTP_STATUS[self.status]

    def to_dict(self) -> dict[str, Any]:
        """JSON body for this outcome."""
        if self.error is not None:
            body: dict[str, Any] = {"error": self.error.value}
            if self.details:
                body["details"] = self.details
            return body

        body = {"status": self.status.value}
        if self.status is OutcomeStatus.PAIRING_CODE_SENT:
            body["code"] = self.code
        elif self.status is OutcomeStatus.PAIRED:
            body["reference"] = self.reference
            body["archive_link"] = self.archive_link
        return body


class ResponseSlot:
    """Write-once delivery target for one pairing request.

    Several sources race to answer a caller (pairing-code loop, connection
    listener, safety timer). offer() checks and commits without yielding
    to the event loop, so exactly one outcome is ever committed and every
    later offer is dropped.
    """

    def __init__(self) -> None:
        self._outcome: Optional[Outcome] = None
        self._committed = asyncio.Event()

    @property
    def filled(self) -> bool:
        return self._outcome is not None

    @property
    def outcome(self) -> Optional[Outcome]:
        return self._outcome

    def offer(self, outcome: Outcome) -> bool:
        """Commit an outcome if none has been committed yet.

        Returns:
            True if this outcome won the slot, False if it was dropped.
        """
        if self._outcome is not None:
            return False
        self._outcome = outcome
        self._committed.set()
        return True

    async def wait(self) -> Outcome:
        """Wait for the committed outcome.

        Raises:
            RuntimeError: If the slot was released without an outcome.
        """
        await self._committed.wait()
        if self._outcome is None:
            raise RuntimeError("Response slot released without an outcome")
        return self._outcome
