"""Credential storage for in-progress handshakes.

Each subject owns one session directory holding the credential blob the
handshake persists. Files are written atomically with owner-only
permissions (600 for files, 700 for directories).
"""

import asyncio
import logging
import os
import shutil
from pathlib import Path

from sessiond.errors import StorageError
from sessiond.logging import mask_subject

logger = logging.getLogger(__name__)

CREDENTIALS_FILE = "creds.json"


class CredentialStore:
    """Reads and writes credential blobs under a sessions root directory.

    Attributes:
        root: Directory holding one session directory per subject.
        prefix: Session directory name prefix.
    """

    def __init__(self, root: Path | str, prefix: str = "sila_") -> None:
        self.root = Path(root).expanduser()
        self.prefix = prefix

    def session_path(self, subject_id: str) -> Path:
        """Get the session directory for a subject.

        Args:
            subject_id: Normalized, digits-only subject identifier.

        Raises:
            StorageError: If the identifier is not digits-only.
        """
        if not subject_id.isdigit():
            raise StorageError(f"Invalid subject ID: {subject_id!r}")
        return self.root / f"{self.prefix}{subject_id}"

    async def write(self, session_path: Path, data: bytes) -> None:
        """Persist the credential blob for a session.

        Raises:
            StorageError: If the blob cannot be written.
        """
        try:
            await asyncio.to_thread(self._write_sync, session_path, data)
        except OSError as e:
            raise StorageError(f"Failed to write credentials: {e}") from e

    def _write_sync(self, session_path: Path, data: bytes) -> None:
        session_path.mkdir(parents=True, exist_ok=True)
        os.chmod(session_path, 0o700)

        path = session_path / CREDENTIALS_FILE
        temp_path = path.with_suffix(".tmp")
        fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        try:
            os.write(fd, data)
        finally:
            os.close(fd)
        temp_path.replace(path)

    async def read(self, session_path: Path) -> bytes | None:
        """Read the credential blob for a session.

        Returns:
            The blob, or None if nothing has been persisted (or it is empty).

        Raises:
            StorageError: If the blob exists but cannot be read.
        """
        path = session_path / CREDENTIALS_FILE
        try:
            data = await asyncio.to_thread(self._read_sync, path)
        except OSError as e:
            raise StorageError(f"Failed to read credentials: {e}") from e
        return data or None

    @staticmethod
    def _read_sync(path: Path) -> bytes | None:
        if not path.exists():
            return None
        return path.read_bytes()

    async def clear(self, subject_id: str) -> bool:
        """Remove a subject's session directory.

        Returns:
            True if a directory was removed, False if none existed.
        """
        session_path = self.session_path(subject_id)
        if not session_path.exists():
            return False
        try:
            await asyncio.to_thread(shutil.rmtree, session_path)
        except OSError as e:
            raise StorageError(f"Failed to clear session: {e}") from e
        logger.info(f"Cleared session for {mask_subject(subject_id)}")
        return True
