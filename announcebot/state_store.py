"""JSON-backed sent ledger with atomic writes.

The ledger is the single source of truth for "already handled": a fingerprint
is present iff a delivery attempt for the corresponding message has been
initiated. Reading is soft (anything unreadable loads as empty), writing is
hard (any failure raises ``StateUnavailableError``).
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
from collections.abc import Iterable
from pathlib import Path

from .exceptions import StateUnavailableError

logger = logging.getLogger(__name__)


class SentLedger:
    """Persistent set of fingerprints of already dispatched announcements.

    The on-disk format is a JSON array of fingerprint strings.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        """Create a ledger bound to ``path``. Nothing is read until ``load()``."""
        self._path = Path(path)
        self._sent: set[str] = set()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def fingerprints(self) -> frozenset[str]:
        """Snapshot of the in-memory set."""
        return frozenset(self._sent)

    def __contains__(self, fingerprint: object) -> bool:
        return fingerprint in self._sent

    def __len__(self) -> int:
        return len(self._sent)

    def load(self) -> set[str]:
        """Load the ledger from disk, replacing the in-memory set.

        A missing file, an unreadable file, invalid JSON or a non-array root
        all yield an empty set. Non-string items are dropped.
        """
        if not self._path.exists():
            logger.debug("Sent ledger not found; starting empty: %s", self._path)
            self._sent = set()
            return set(self._sent)

        try:
            with self._path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
            if not isinstance(data, list):
                raise ValueError("sent ledger JSON root must be an array")  # noqa: TRY004
        except (OSError, ValueError) as exc:
            logger.warning("Failed to read sent ledger %s, starting empty: %s", self._path, exc)
            self._sent = set()
            return set(self._sent)

        self._sent = {item for item in data if isinstance(item, str) and item}
        dropped = len(data) - len(self._sent)
        if dropped:
            logger.debug("Dropped %d malformed or duplicate ledger items", dropped)
        logger.debug("Loaded sent ledger %s (%d fingerprints)", self._path, len(self._sent))
        return set(self._sent)

    def save(self, fingerprints: Iterable[str] | None = None) -> None:
        """Persist ``fingerprints`` (default: the in-memory set) atomically.

        Writes to a temporary file in the same directory, fsyncs, then
        replaces the ledger file.

        Raises:
            StateUnavailableError: if the ledger cannot be written.
        """
        if fingerprints is not None:
            self._sent = set(fingerprints)
        data = sorted(self._sent)

        tmp_path: Path | None = None
        try:
            with tempfile.NamedTemporaryFile(
                "w",
                dir=self._path.parent,
                prefix=f".{self._path.name}.",
                suffix=".tmp",
                delete=False,
                encoding="utf-8",
            ) as tf:
                tmp_path = Path(tf.name)
                json.dump(data, tf)
                tf.flush()
                os.fsync(tf.fileno())
            tmp_path.replace(self._path)
        except OSError as exc:
            if tmp_path is not None:
                with contextlib.suppress(OSError):
                    tmp_path.unlink()
            raise StateUnavailableError(
                f"Cannot write sent ledger {self._path}: {exc}"
            ) from exc

        logger.debug("Persisted sent ledger %s (%d fingerprints)", self._path, len(data))

    def verify_writable(self) -> None:
        """Re-save the current set so an unwritable ledger fails before any side effect."""
        self.save()
        logger.debug("Sent ledger %s is writable", self._path)

    def record(self, fingerprint: str) -> None:
        """Add ``fingerprint`` and persist immediately.

        Raises:
            ValueError: if fingerprint is empty.
            StateUnavailableError: if persisting fails. The fingerprint stays
                in memory so the current run never dispatches it twice.
        """
        if not fingerprint or not isinstance(fingerprint, str):
            raise ValueError("fingerprint must be a non-empty string")
        self._sent.add(fingerprint)
        self.save()
        logger.info("Recorded fingerprint %s", fingerprint[:12])
