"""SnapshotDirectory: per-conversation snapshot files + JSON index."""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from ..types import SnapshotEntry

if TYPE_CHECKING:
    from ..session import SessionController

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def _dt_to_str(dt: datetime) -> str:
    return dt.isoformat()


def _str_to_dt(s: str) -> datetime:
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _safe(part: str) -> str:
    return _UNSAFE.sub("_", part) or "_"


def _entry_to_dict(entry: SnapshotEntry) -> dict:
    return {
        "conversation_id": entry.conversation_id,
        "model_name": entry.model_name,
        "path": entry.path,
        "size": entry.size,
        "occupied": entry.occupied,
        "saved_at": _dt_to_str(entry.saved_at),
    }


def _dict_to_entry(data: dict) -> SnapshotEntry:
    return SnapshotEntry(
        conversation_id=data["conversation_id"],
        model_name=data["model_name"],
        path=data["path"],
        size=data.get("size", 0),
        occupied=data.get("occupied", 0),
        saved_at=_str_to_dt(data["saved_at"]) if "saved_at" in data else datetime.now(timezone.utc),
    )


class SnapshotDirectory:
    """Keep one raw snapshot file per (conversation, model) under ``root``.

    A snapshot is only valid for the model that produced it, so a
    conversation may hold several, one per model. ``_index.json`` maps
    conversation id -> model name -> entry.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self._index_path = self.root / "_index.json"
        self._index: dict[str, dict[str, SnapshotEntry]] = {}
        self._ensure_root()
        self._load_index()

    def _ensure_root(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def _load_index(self) -> None:
        self._index = {}
        if not self._index_path.is_file():
            return
        try:
            data = json.loads(self._index_path.read_text())
            for raw in data:
                entry = _dict_to_entry(raw)
                self._index.setdefault(entry.conversation_id, {})[entry.model_name] = entry
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            logger.warning("Snapshot index %s is unreadable; starting empty", self._index_path)
            self._index = {}

    def _save_index(self) -> None:
        entries = [_entry_to_dict(e) for e in self.list_entries()]
        self._index_path.write_text(json.dumps(entries, indent=2))

    def path_for(self, conversation_id: str, model_name: str) -> Path:
        return self.root / f"conv_{_safe(conversation_id)}_{_safe(model_name)}_kvcache.bin"

    def get_entry(self, conversation_id: str, model_name: str) -> SnapshotEntry | None:
        return self._index.get(conversation_id, {}).get(model_name)

    def list_entries(self, conversation_id: str | None = None) -> list[SnapshotEntry]:
        if conversation_id is not None:
            return list(self._index.get(conversation_id, {}).values())
        return [e for models in self._index.values() for e in models.values()]

    def save(self, session: SessionController, conversation_id: str, model_name: str) -> Path:
        """Snapshot ``session`` for this conversation/model and record it."""
        path = self.path_for(conversation_id, model_name)
        logger.debug("Saving snapshot for conversation %s (%s)", conversation_id, model_name)
        size = session.save_state(path)
        entry = SnapshotEntry(
            conversation_id=conversation_id,
            model_name=model_name,
            path=str(path),
            size=size,
            occupied=session.status().occupied,
        )
        self._index.setdefault(conversation_id, {})[model_name] = entry
        self._save_index()
        return path

    def load(self, session: SessionController, conversation_id: str, model_name: str) -> bool:
        """Restore ``session`` from the recorded snapshot.

        Returns False when nothing usable is recorded; callers fall back to
        ``session.replay``. Load errors propagate.
        """
        entry = self.get_entry(conversation_id, model_name)
        if entry is None:
            return False
        path = Path(entry.path)
        if not path.is_file():
            logger.warning("Snapshot file %s is missing; dropping index entry", path)
            self.delete(conversation_id, model_name)
            return False
        session.load_state(path)
        return True

    def delete(self, conversation_id: str, model_name: str | None = None) -> int:
        """Remove snapshots for a conversation (one model, or all). Returns count deleted."""
        models = self._index.get(conversation_id)
        if not models:
            return 0
        names = [model_name] if model_name is not None else list(models)
        deleted = 0
        for name in names:
            entry = models.pop(name, None)
            if entry is None:
                continue
            Path(entry.path).unlink(missing_ok=True)
            deleted += 1
        if not models:
            del self._index[conversation_id]
        self._save_index()
        return deleted
