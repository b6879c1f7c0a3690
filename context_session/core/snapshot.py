"""SnapshotStore: raw backend memory to/from a byte stream.

The persisted format is exactly the backend's state blob: no header, no
version tag, no checksum. Compatibility is the backend's concern.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import BinaryIO, Union

from ..types import ModelBackend, NoActiveSession, SnapshotIOError, StateMismatch
from .window import TokenWindowTracker

logger = logging.getLogger(__name__)

SnapshotTarget = Union[str, Path, BinaryIO]


class SnapshotStore:
    """Save/restore backend memory and rebuild the tracker from it."""

    def __init__(self, tracker: TokenWindowTracker) -> None:
        self._tracker = tracker

    def save(self, backend: ModelBackend | None, target: SnapshotTarget) -> int:
        """Write the backend's state blob to ``target``. Returns bytes written."""
        if backend is None:
            raise NoActiveSession("save called but no backend is loaded")

        state_size = backend.get_state_size()
        blob = backend.get_state_bytes()
        if len(blob) != state_size:
            logger.warning(
                "Backend reported state size %d but produced %d bytes", state_size, len(blob)
            )

        try:
            if isinstance(target, (str, Path)):
                path = Path(target)
                logger.info("Saving KV cache to %s", path)
                with path.open("wb") as f:
                    f.write(blob)
            else:
                target.write(blob)
        except OSError as e:
            logger.error("Failed to write snapshot: %s", e)
            raise SnapshotIOError(f"could not write snapshot: {e}") from e

        logger.info("KV cache saved (%d bytes, %d tokens).", len(blob), self._tracker.occupied)
        return len(blob)

    def load(self, backend: ModelBackend | None, source: SnapshotTarget) -> int:
        """Restore backend memory from ``source`` and reconcile the tracker.

        Returns the restored occupancy. The tracker is untouched when reading
        fails; after a StateMismatch the backend memory must be considered
        corrupt.
        """
        if backend is None:
            raise NoActiveSession("load called but no backend is loaded")

        logger.debug(
            "Pre-load: capacity=%d, current state size=%d bytes",
            self._tracker.capacity, backend.get_state_size(),
        )
        blob = self._read(source)
        logger.debug("Pre-load: snapshot is %d bytes", len(blob))

        consumed = backend.set_state_bytes(blob)
        if consumed != len(blob):
            logger.error(
                "Failed to load state. Bytes read mismatch: expected %d, got %d",
                len(blob), consumed,
            )
            raise StateMismatch(supplied=len(blob), consumed=consumed)

        memory = backend.get_memory_handle()
        max_pos = memory.max_position(self._tracker.sequence_id) if memory is not None else None
        occupied = 0 if max_pos is None or max_pos < 0 else max_pos + 1
        # The true anchor is not recoverable from backend state; anchor the whole window.
        self._tracker.restore(occupied, anchor_length=occupied)
        logger.info("KV cache loaded. Window now holds %d tokens.", occupied)
        return occupied

    @staticmethod
    def _read(source: SnapshotTarget) -> bytes:
        try:
            if isinstance(source, (str, Path)):
                path = Path(source)
                logger.info("Loading KV cache from %s", path)
                return path.read_bytes()
            return bytes(source.read())
        except OSError as e:
            logger.error("Failed to read snapshot: %s", e)
            raise SnapshotIOError(f"could not read snapshot: {e}") from e
