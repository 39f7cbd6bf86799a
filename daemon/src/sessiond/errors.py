"""Base exceptions for sessiond."""


class SessiondError(Exception):
    """Base exception for all sessiond errors."""

    pass


class ValidationError(SessiondError):
    """Malformed caller input."""

    pass


class StorageError(SessiondError):
    """Local storage operation error."""

    pass


class ArchiveError(SessiondError):
    """Remote archive upload error."""

    pass


class TransportError(SessiondError):
    """Pairing transport error."""

    pass


class PairingConflictError(SessiondError):
    """A pairing for the same subject is already in flight."""

    def __init__(self, subject_id: str):
        self.subject_id = subject_id
        super().__init__("Pairing already in progress for this number")
