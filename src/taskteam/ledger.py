"""TaskLedger — durable JSON snapshots of task graphs for pause and resume.

Each record lives in ``<state_dir>/<id>.json`` and is rewritten whole on
every mutation through a temp file and ``os.replace``, so readers never see
a partial write. Ids begin with a UTC timestamp, which makes lexical order
match creation order.

A ledger id must have a single writer; reads and writes are not locked.
"""

import logging
import random
import string
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any

from taskteam.core.types import ExecutionPolicy, Plan, Subtask, WorkerOutput, WorkerSpec
from taskteam.storage import read_json, write_json_atomic

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = Path.home() / ".taskteam" / "tasks"

_ID_ALPHABET = string.ascii_lowercase + string.digits


class TaskStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL = (TaskStatus.COMPLETED, TaskStatus.FAILED)

# Legal subtask status moves; running -> running covers a rerun after a crash.
SUBTASK_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.RUNNING}),
    TaskStatus.RUNNING: frozenset({TaskStatus.RUNNING, TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}


def _now() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class SubtaskState:
    id: str
    status: TaskStatus = TaskStatus.PENDING
    output: WorkerOutput | None = None
    error: str | None = None
    started_at: str | None = None
    completed_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "output": self.output.to_dict() if self.output else None,
            "error": self.error,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SubtaskState":
        output = data.get("output")
        return cls(
            id=data["id"],
            status=TaskStatus(data.get("status", "pending")),
            output=WorkerOutput.from_dict(output) if output else None,
            error=data.get("error"),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
        )


@dataclass
class LedgerRecord:
    id: str
    task: str
    context: str | None
    status: TaskStatus
    workers: list[WorkerSpec]
    subtasks: list[Subtask]
    subtask_states: dict[str, SubtaskState]
    policy: ExecutionPolicy
    needs_review: bool
    summary: str = ""
    completed_outputs: list[WorkerOutput] = field(default_factory=list)
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)
    pause_reason: str | None = None
    error: str | None = None

    def to_plan(self) -> Plan:
        return Plan(
            summary=self.summary,
            workers=list(self.workers),
            subtasks=list(self.subtasks),
            policy=self.policy,
            needs_review=self.needs_review,
        )

    def completed_ids(self) -> set[str]:
        return {sid for sid, s in self.subtask_states.items() if s.status == TaskStatus.COMPLETED}

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "task": self.task,
            "context": self.context,
            "status": self.status.value,
            "summary": self.summary,
            "workers": [w.to_dict() for w in self.workers],
            "subtasks": [s.to_dict() for s in self.subtasks],
            "subtask_states": {k: v.to_dict() for k, v in self.subtask_states.items()},
            "completed_outputs": [o.to_dict() for o in self.completed_outputs],
            "policy": self.policy.value,
            "needs_review": self.needs_review,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "pause_reason": self.pause_reason,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LedgerRecord":
        return cls(
            id=data["id"],
            task=data["task"],
            context=data.get("context"),
            status=TaskStatus(data["status"]),
            summary=data.get("summary", ""),
            workers=[WorkerSpec.from_dict(w) for w in data.get("workers", [])],
            subtasks=[Subtask.from_dict(s) for s in data.get("subtasks", [])],
            subtask_states={
                k: SubtaskState.from_dict(v) for k, v in data.get("subtask_states", {}).items()
            },
            completed_outputs=[WorkerOutput.from_dict(o) for o in data.get("completed_outputs", [])],
            policy=ExecutionPolicy(data.get("policy", "mixed")),
            needs_review=bool(data.get("needs_review", False)),
            created_at=data["created_at"],
            updated_at=data["updated_at"],
            pause_reason=data.get("pause_reason"),
            error=data.get("error"),
        )


class TaskLedger:
    """File-backed store of ``LedgerRecord`` objects.

    Operations against an unknown id return ``None`` instead of raising, so
    callers can treat absence as "nothing to resume".
    """

    def __init__(self, state_dir: str | Path | None = None) -> None:
        self.state_dir = Path(state_dir).expanduser() if state_dir else DEFAULT_STATE_DIR
        self.state_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, record_id: str) -> Path:
        return self.state_dir / f"{record_id}.json"

    @staticmethod
    def generate_id() -> str:
        stamp = datetime.now(UTC).strftime("%Y%m%d-%H%M%S-%f")
        suffix = "".join(random.choices(_ID_ALPHABET, k=4))
        return f"task-{stamp}-{suffix}"

    def create(self, task: str, context: str | None, plan: Plan) -> LedgerRecord:
        record = LedgerRecord(
            id=self.generate_id(),
            task=task,
            context=context,
            status=TaskStatus.PENDING,
            summary=plan.summary,
            workers=list(plan.workers),
            subtasks=list(plan.subtasks),
            subtask_states={s.id: SubtaskState(id=s.id) for s in plan.subtasks},
            policy=plan.policy,
            needs_review=plan.needs_review,
        )
        self.save(record)
        logger.info("Created ledger record %s (%d subtasks)", record.id, len(record.subtasks))
        return record

    def get(self, record_id: str) -> LedgerRecord | None:
        data = read_json(self._path(record_id))
        if not isinstance(data, dict):
            return None
        try:
            return LedgerRecord.from_dict(data)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Malformed ledger record %s: %s", record_id, e)
            return None

    def save(self, record: LedgerRecord) -> None:
        """Bump ``updated_at`` and atomically overwrite the record file."""
        record.updated_at = _now()
        write_json_atomic(self._path(record.id), record.to_dict())

    def set_status(self, record_id: str, status: TaskStatus) -> LedgerRecord | None:
        record = self.get(record_id)
        if record is None:
            return None
        record.status = status
        self.save(record)
        return record

    def update_subtask(
        self,
        record_id: str,
        subtask_id: str,
        *,
        status: TaskStatus | None = None,
        output: WorkerOutput | None = None,
        error: str | None = None,
    ) -> LedgerRecord | None:
        """Apply a subtask transition, stamping times and collecting outputs.

        Status may only move pending -> running -> completed or failed. An
        illegal move is refused with ``None`` and leaves the record untouched.
        """
        record = self.get(record_id)
        if record is None:
            return None
        state = record.subtask_states.get(subtask_id)
        if state is None:
            return None

        if status is not None and status not in SUBTASK_TRANSITIONS.get(state.status, frozenset()):
            logger.warning(
                "Refusing subtask %s transition %s -> %s in %s",
                subtask_id,
                state.status.value,
                status.value,
                record_id,
            )
            return None

        if status is not None:
            state.status = status
            if status == TaskStatus.RUNNING and not state.started_at:
                state.started_at = _now()
            if status in TERMINAL:
                state.completed_at = _now()
        if error is not None:
            state.error = error
        if output is not None:
            state.output = output
            record.completed_outputs.append(output)

        self.save(record)
        return record

    def pause(self, record_id: str, reason: str | None = None) -> LedgerRecord | None:
        """Pause a running record; anything else is refused with ``None``."""
        record = self.get(record_id)
        if record is None:
            return None
        if record.status != TaskStatus.RUNNING:
            logger.warning("Cannot pause %s: status is %s", record_id, record.status.value)
            return None
        record.status = TaskStatus.PAUSED
        record.pause_reason = reason
        self.save(record)
        return record

    def resume(self, record_id: str) -> LedgerRecord | None:
        """Resume a paused record; anything else is refused with ``None``."""
        record = self.get(record_id)
        if record is None:
            return None
        if record.status != TaskStatus.PAUSED:
            logger.warning("Cannot resume %s: status is %s", record_id, record.status.value)
            return None
        record.status = TaskStatus.RUNNING
        record.pause_reason = None
        self.save(record)
        return record

    def complete(self, record_id: str) -> LedgerRecord | None:
        return self.set_status(record_id, TaskStatus.COMPLETED)

    def fail(self, record_id: str, error: str) -> LedgerRecord | None:
        record = self.get(record_id)
        if record is None:
            return None
        record.status = TaskStatus.FAILED
        record.error = error
        self.save(record)
        return record

    def pending_subtasks(self, record: LedgerRecord) -> list[Subtask]:
        return [
            s for s in record.subtasks
            if record.subtask_states.get(s.id, SubtaskState(s.id)).status == TaskStatus.PENDING
        ]

    def can_execute_subtask(self, record: LedgerRecord, subtask_id: str) -> bool:
        """True when every dependency of *subtask_id* is currently completed."""
        subtask = next((s for s in record.subtasks if s.id == subtask_id), None)
        if subtask is None:
            return False
        completed = record.completed_ids()
        return all(dep in completed for dep in subtask.dependencies)

    @staticmethod
    def progress(record: LedgerRecord) -> int:
        """Percentage of subtasks completed."""
        if not record.subtasks:
            return 0
        return round(len(record.completed_ids()) / len(record.subtasks) * 100)

    def list(self, status: TaskStatus | None = None) -> list[LedgerRecord]:
        """All readable records, newest first, optionally filtered by status."""
        records: list[LedgerRecord] = []
        for path in sorted(self.state_dir.glob("task-*.json"), reverse=True):
            record = self.get(path.stem)
            if record is None:
                continue
            if status is None or record.status == status:
                records.append(record)
        return records

    def delete(self, record_id: str) -> bool:
        path = self._path(record_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    def cleanup(self, older_than_days: float = 7) -> int:
        """Delete completed records last updated before the cutoff; return the count."""
        cutoff = datetime.now(UTC) - timedelta(days=older_than_days)
        deleted = 0
        for record in self.list(TaskStatus.COMPLETED):
            if datetime.fromisoformat(record.updated_at) < cutoff and self.delete(record.id):
                deleted += 1
        logger.info("Cleaned up %d completed ledger records", deleted)
        return deleted
