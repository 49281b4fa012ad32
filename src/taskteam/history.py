"""RunHistory — persisted, searchable record of completed runs."""

import logging
import random
import string
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from taskteam.core.types import WorkerOutput
from taskteam.storage import read_json, write_json_atomic

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_DIR = Path.home() / ".taskteam" / "history"

_ID_ALPHABET = string.ascii_lowercase + string.digits


@dataclass
class HistoryEntry:
    id: str
    timestamp: str
    task: str
    summary: str
    workers: list[str] = field(default_factory=list)
    outputs: list[WorkerOutput] = field(default_factory=list)
    duration: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "task": self.task,
            "summary": self.summary,
            "workers": list(self.workers),
            "outputs": [o.to_dict() for o in self.outputs],
            "duration": self.duration,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HistoryEntry":
        return cls(
            id=data["id"],
            timestamp=data["timestamp"],
            task=data["task"],
            summary=data.get("summary", ""),
            workers=list(data.get("workers") or []),
            outputs=[WorkerOutput.from_dict(o) for o in data.get("outputs") or []],
            duration=data.get("duration"),
        )


class RunHistory:
    """One JSON file per completed run in ``history_dir``, newest first by id."""

    def __init__(self, history_dir: str | Path | None = None) -> None:
        self.history_dir = Path(history_dir).expanduser() if history_dir else DEFAULT_HISTORY_DIR
        self.history_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, entry_id: str) -> Path:
        return self.history_dir / f"{entry_id}.json"

    @staticmethod
    def generate_id() -> str:
        stamp = datetime.now(UTC).strftime("%Y%m%d-%H%M%S-%f")
        return f"{stamp}-{''.join(random.choices(_ID_ALPHABET, k=4))}"

    def save(
        self,
        task: str,
        summary: str,
        workers: list[str],
        outputs: list[WorkerOutput],
        duration: float | None = None,
    ) -> HistoryEntry:
        entry = HistoryEntry(
            id=self.generate_id(),
            timestamp=datetime.now(UTC).isoformat(),
            task=task,
            summary=summary,
            workers=list(workers),
            outputs=list(outputs),
            duration=duration,
        )
        write_json_atomic(self._path(entry.id), entry.to_dict())
        logger.info("Saved run history %s", entry.id)
        return entry

    def get(self, entry_id: str) -> HistoryEntry | None:
        data = read_json(self._path(entry_id))
        if not isinstance(data, dict):
            return None
        try:
            return HistoryEntry.from_dict(data)
        except (KeyError, TypeError) as e:
            logger.warning("Malformed history entry %s: %s", entry_id, e)
            return None

    def _ids(self) -> list[str]:
        return sorted((p.stem for p in self.history_dir.glob("*.json")), reverse=True)

    def search(self, query: str, limit: int = 10) -> list[HistoryEntry]:
        """Entries whose task or summary contains *query*, case-insensitively."""
        needle = query.lower()
        matches = [
            e for e in self.list(limit=100)
            if needle in e.task.lower() or needle in e.summary.lower()
        ]
        return matches[:limit]

    def list(self, limit: int = 20) -> list[HistoryEntry]:
        entries = (self.get(entry_id) for entry_id in self._ids())
        return [e for e in entries if e is not None][:limit]

    def delete(self, entry_id: str) -> bool:
        path = self._path(entry_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    def cleanup(self, keep_recent: int = 100, older_than_days: float | None = None) -> int:
        """Keep the newest *keep_recent* entries and drop any older than the cutoff."""
        cutoff = datetime.now(UTC) - timedelta(days=older_than_days) if older_than_days else None
        deleted = 0
        for index, entry_id in enumerate(self._ids()):
            expired = False
            if cutoff is not None:
                entry = self.get(entry_id)
                expired = entry is not None and datetime.fromisoformat(entry.timestamp) < cutoff
            if (index >= keep_recent or expired) and self.delete(entry_id):
                deleted += 1
        return deleted
