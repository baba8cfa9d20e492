"""Durable snapshots of the AI result cache.

A snapshot is one versioned JSON document written atomically, so a crash
during a save leaves the previous snapshot intact.
"""

import json
import os
import tempfile
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from docfusion.errors import CacheError
from docfusion.utils.logger import get_logger

logger = get_logger(__name__)

SNAPSHOT_VERSION = 1


class SnapshotStore(ABC):
    """Where cache snapshots are persisted."""

    @abstractmethod
    def load(self) -> dict[str, Any] | None:
        """Return the stored snapshot, or ``None`` if there is none."""

    @abstractmethod
    def save(self, snapshot: dict[str, Any]) -> None:
        """Persist a snapshot, replacing the previous one."""


class JsonSnapshotStore(SnapshotStore):
    """Snapshot store backed by a JSON file.

    Args:
        path: Snapshot file location; parent directories are created.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> dict[str, Any] | None:
        """Read the snapshot file.

        Unreadable, corrupt or version-mismatched snapshots are logged and
        treated as absent.

        Returns:
            Parsed snapshot, or ``None``.
        """
        if not self.path.exists():
            return None
        try:
            with open(self.path, encoding="utf-8") as f:
                snapshot = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning(
                "Ignoring unreadable cache snapshot %s: %s", self.path, exc
            )
            return None

        if not isinstance(snapshot, dict):
            logger.warning("Ignoring malformed cache snapshot %s", self.path)
            return None
        if snapshot.get("version") != SNAPSHOT_VERSION:
            logger.warning(
                "Ignoring cache snapshot %s with version %r",
                self.path,
                snapshot.get("version"),
            )
            return None
        return snapshot

    def save(self, snapshot: dict[str, Any]) -> None:
        """Write the snapshot through a temporary file and an atomic rename.

        Raises:
            CacheError: If the file cannot be written.
        """
        payload = {
            **snapshot,
            "version": SNAPSHOT_VERSION,
            "saved_at": datetime.now(UTC).isoformat(),
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(payload, f, indent=2)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise CacheError(
                f"Failed to write cache snapshot {self.path}: {exc}"
            ) from exc
        logger.debug(
            "Saved cache snapshot with %d entries", len(snapshot.get("entries", {}))
        )


class MemorySnapshotStore(SnapshotStore):
    """Snapshot store that keeps the last snapshot in memory."""

    def __init__(self, snapshot: dict[str, Any] | None = None) -> None:
        self.snapshot = snapshot
        self.saves = 0

    def load(self) -> dict[str, Any] | None:
        return self.snapshot

    def save(self, snapshot: dict[str, Any]) -> None:
        self.snapshot = {**snapshot, "version": SNAPSHOT_VERSION}
        self.saves += 1
