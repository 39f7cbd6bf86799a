"""Append-only registry of issued session references, persisted to JSON."""

import asyncio
import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List

from sessiond.errors import StorageError

logger = logging.getLogger(__name__)


def utc_timestamp() -> str:
    """Current UTC time as ISO 8601 with a "Z" suffix."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class ArchiveRecord:
    """An issued session reference.

    Attributes:
        reference: Reference code handed to the caller.
        subject_id: Digits-only subject identifier.
        archive_link: Link to the archived credential blob.
        created_at: ISO 8601 UTC creation time.
    """

    reference: str
    subject_id: str
    archive_link: str
    created_at: str = field(default_factory=utc_timestamp)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "ArchiveRecord":
        """Create from dictionary."""
        return cls(
            reference=d["reference"],
            subject_id=d["subject_id"],
            archive_link=d["archive_link"],
            created_at=d["created_at"],
        )


class JsonSessionRegistry:
    """JSON file-backed session registry.

    Appends are serialized with a lock and each write replaces the file
    atomically, so concurrent pairings never interleave partial writes.
    Records are never updated or removed.
    """

    def __init__(self, path: Path | str):
        """Initialize registry.

        Args:
            path: Path to JSON file for persistence.
        """
        self.path = Path(path).expanduser()
        self._records: List[ArchiveRecord] = []
        self._loaded = False
        self._lock = asyncio.Lock()

    async def load(self) -> None:
        """Load records from file. Safe to call more than once."""
        async with self._lock:
            await self._ensure_loaded()

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._records = await asyncio.to_thread(self._load_sync)
        self._loaded = True

    def _load_sync(self) -> List[ArchiveRecord]:
        if not self.path.exists():
            logger.debug(f"No registry file at {self.path}")
            return []

        try:
            data = json.loads(self.path.read_text())
        except json.JSONDecodeError as e:
            raise StorageError(f"Failed to parse registry file: {e}") from e
        except OSError as e:
            raise StorageError(f"Failed to read registry file: {e}") from e

        records = []
        for item in data.get("sessions", []):
            try:
                records.append(ArchiveRecord.from_dict(item))
            except (KeyError, TypeError) as e:
                logger.warning(f"Skipping malformed registry entry: {e}")

        logger.debug(f"Loaded {len(records)} registry records")
        return records

    async def append(self, record: ArchiveRecord) -> None:
        """Durably append a record.

        The record is only kept in memory once the file write succeeded.

        Raises:
            StorageError: If the registry cannot be written.
        """
        async with self._lock:
            await self._ensure_loaded()
            records = [*self._records, record]
            try:
                await asyncio.to_thread(self._save_sync, records)
            except OSError as e:
                raise StorageError(f"Failed to write registry file: {e}") from e
            self._records = records

    def _save_sync(self, records: List[ArchiveRecord]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

        content = json.dumps({"sessions": [r.to_dict() for r in records]}, indent=2)

        temp_path = self.path.with_suffix(".tmp")
        temp_path.write_text(content)
        temp_path.replace(self.path)

        logger.debug(f"Saved {len(records)} registry records")

    async def list(self) -> List[ArchiveRecord]:
        """Return all records in insertion order."""
        async with self._lock:
            await self._ensure_loaded()
            return list(self._records)
