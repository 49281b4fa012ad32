"""Tests for TaskLedger."""

import json
from datetime import UTC, datetime, timedelta

import pytest

from taskteam.core.types import ExecutionPolicy, Plan, Subtask, WorkerOutput, WorkerSpec
from taskteam.ledger import TaskLedger, TaskStatus


@pytest.fixture
def ledger(tmp_path) -> TaskLedger:
    return TaskLedger(tmp_path / "tasks")


def finish(ledger, record_id, subtask_id, status=TaskStatus.COMPLETED, **kwargs):
    ledger.update_subtask(record_id, subtask_id, status=TaskStatus.RUNNING)
    return ledger.update_subtask(record_id, subtask_id, status=status, **kwargs)


def make_plan() -> Plan:
    return Plan(
        summary="build it",
        workers=[WorkerSpec(id="w1", name="Builder", role="You build.")],
        subtasks=[
            Subtask("A", "first", "w1"),
            Subtask("B", "second", "w1", dependencies=("A",)),
            Subtask("C", "third", "w1", dependencies=("A", "B")),
        ],
        policy=ExecutionPolicy.SEQUENTIAL,
        needs_review=False,
    )


class TestCreateAndGet:
    def test_create_persists_pending_record(self, ledger):
        record = ledger.create("task", "ctx", make_plan())
        assert record.status == TaskStatus.PENDING
        assert set(record.subtask_states) == {"A", "B", "C"}
        assert all(s.status == TaskStatus.PENDING for s in record.subtask_states.values())
        assert (ledger.state_dir / f"{record.id}.json").exists()

    def test_round_trip(self, ledger):
        record = ledger.create("task", "ctx", make_plan())
        loaded = ledger.get(record.id)
        assert loaded.task == "task"
        assert loaded.context == "ctx"
        assert loaded.policy == ExecutionPolicy.SEQUENTIAL
        assert loaded.subtasks == record.subtasks
        assert loaded.workers == record.workers
        assert loaded.to_plan().subtasks[1].dependencies == ("A",)

    def test_unknown_id_returns_none(self, ledger):
        assert ledger.get("task-missing") is None
        assert ledger.pause("task-missing") is None
        assert ledger.resume("task-missing") is None
        assert ledger.complete("task-missing") is None
        assert ledger.update_subtask("task-missing", "A", status=TaskStatus.RUNNING) is None

    def test_corrupt_file_returns_none(self, ledger):
        (ledger.state_dir / "task-broken.json").write_text("{not json")
        assert ledger.get("task-broken") is None
        assert ledger.list() == []

    def test_ids_sort_in_creation_order(self, ledger):
        ids = [ledger.create(f"t{i}", None, make_plan()).id for i in range(5)]
        assert sorted(ids) == ids
        assert [r.id for r in ledger.list()] == list(reversed(ids))

    def test_file_contents_are_json(self, ledger):
        record = ledger.create("task", None, make_plan())
        data = json.loads((ledger.state_dir / f"{record.id}.json").read_text())
        assert data["status"] == "pending"
        assert data["subtask_states"]["A"]["status"] == "pending"
        assert data["completed_outputs"] == []

    def test_no_temp_files_left_behind(self, ledger):
        record = ledger.create("task", None, make_plan())
        ledger.set_status(record.id, TaskStatus.RUNNING)
        assert [p.name for p in ledger.state_dir.iterdir()] == [f"{record.id}.json"]


class TestSubtaskUpdates:
    def test_running_stamps_start(self, ledger):
        record = ledger.create("task", None, make_plan())
        updated = ledger.update_subtask(record.id, "A", status=TaskStatus.RUNNING)
        state = updated.subtask_states["A"]
        assert state.status == TaskStatus.RUNNING
        assert state.started_at is not None
        assert state.completed_at is None

    def test_completion_stamps_finish_and_collects_output(self, ledger):
        record = ledger.create("task", None, make_plan())
        ledger.update_subtask(record.id, "A", status=TaskStatus.RUNNING)
        output = WorkerOutput(worker_id="w1", worker_name="Builder", content="done")
        ledger.update_subtask(record.id, "A", status=TaskStatus.COMPLETED, output=output)

        loaded = ledger.get(record.id)
        assert loaded.subtask_states["A"].completed_at is not None
        assert loaded.subtask_states["A"].output == output
        assert loaded.completed_outputs == [output]

    def test_failure_keeps_error(self, ledger):
        record = ledger.create("task", None, make_plan())
        finish(ledger, record.id, "A", TaskStatus.FAILED, error="boom")
        state = ledger.get(record.id).subtask_states["A"]
        assert state.status == TaskStatus.FAILED
        assert state.error == "boom"
        assert state.completed_at is not None

    def test_unknown_subtask_returns_none(self, ledger):
        record = ledger.create("task", None, make_plan())
        assert ledger.update_subtask(record.id, "Z", status=TaskStatus.RUNNING) is None

    def test_updates_bump_updated_at(self, ledger):
        record = ledger.create("task", None, make_plan())
        updated = ledger.update_subtask(record.id, "A", status=TaskStatus.RUNNING)
        assert updated.updated_at >= record.updated_at
        assert updated.created_at == record.created_at


class TestTransitions:
    def test_completed_cannot_return_to_pending(self, ledger):
        record = ledger.create("task", None, make_plan())
        finish(ledger, record.id, "A")
        assert ledger.update_subtask(record.id, "A", status=TaskStatus.PENDING) is None
        assert ledger.get(record.id).subtask_states["A"].status == TaskStatus.COMPLETED

    def test_pending_cannot_fail_directly(self, ledger):
        record = ledger.create("task", None, make_plan())
        assert ledger.update_subtask(record.id, "A", status=TaskStatus.FAILED, error="x") is None
        state = ledger.get(record.id).subtask_states["A"]
        assert state.status == TaskStatus.PENDING
        assert state.error is None

    def test_failed_is_final(self, ledger):
        record = ledger.create("task", None, make_plan())
        finish(ledger, record.id, "A", TaskStatus.FAILED, error="boom")
        assert ledger.update_subtask(record.id, "A", status=TaskStatus.COMPLETED) is None
        assert ledger.get(record.id).completed_outputs == []

    def test_rerun_keeps_running_and_start_time(self, ledger):
        record = ledger.create("task", None, make_plan())
        first = ledger.update_subtask(record.id, "A", status=TaskStatus.RUNNING)
        again = ledger.update_subtask(record.id, "A", status=TaskStatus.RUNNING)
        assert again is not None
        assert again.subtask_states["A"].status == TaskStatus.RUNNING
        assert again.subtask_states["A"].started_at == first.subtask_states["A"].started_at

    def test_refusal_is_logged(self, ledger, caplog):
        record = ledger.create("task", None, make_plan())
        with caplog.at_level("WARNING", logger="taskteam.ledger"):
            ledger.update_subtask(record.id, "B", status=TaskStatus.COMPLETED)
        assert "Refusing subtask B transition pending -> completed" in caplog.text


class TestPauseResume:
    def test_pause_running_then_resume(self, ledger):
        record = ledger.create("task", None, make_plan())
        ledger.set_status(record.id, TaskStatus.RUNNING)

        paused = ledger.pause(record.id, "user request")
        assert paused.status == TaskStatus.PAUSED
        assert paused.pause_reason == "user request"

        resumed = ledger.resume(record.id)
        assert resumed.status == TaskStatus.RUNNING
        assert resumed.pause_reason is None

    def test_pause_requires_running(self, ledger):
        record = ledger.create("task", None, make_plan())
        assert ledger.pause(record.id) is None
        assert ledger.get(record.id).status == TaskStatus.PENDING

    def test_resume_requires_paused(self, ledger):
        record = ledger.create("task", None, make_plan())
        ledger.set_status(record.id, TaskStatus.RUNNING)
        assert ledger.resume(record.id) is None
        assert ledger.get(record.id).status == TaskStatus.RUNNING

    def test_complete_and_fail(self, ledger):
        a = ledger.create("a", None, make_plan())
        b = ledger.create("b", None, make_plan())
        assert ledger.complete(a.id).status == TaskStatus.COMPLETED
        failed = ledger.fail(b.id, "all endpoints failed")
        assert failed.status == TaskStatus.FAILED
        assert ledger.get(b.id).error == "all endpoints failed"


class TestRecovery:
    def test_pending_subtasks(self, ledger):
        record = ledger.create("task", None, make_plan())
        record = finish(ledger, record.id, "A")
        assert [s.id for s in ledger.pending_subtasks(record)] == ["B", "C"]

    def test_can_execute_subtask(self, ledger):
        record = ledger.create("task", None, make_plan())
        assert ledger.can_execute_subtask(record, "A")
        assert not ledger.can_execute_subtask(record, "B")
        record = finish(ledger, record.id, "A")
        assert ledger.can_execute_subtask(record, "B")
        assert not ledger.can_execute_subtask(record, "C")
        assert not ledger.can_execute_subtask(record, "missing")

    def test_progress(self, ledger):
        record = ledger.create("task", None, make_plan())
        assert TaskLedger.progress(record) == 0
        record = finish(ledger, record.id, "A")
        assert TaskLedger.progress(record) == 33


class TestListAndCleanup:
    def test_list_filters_by_status(self, ledger):
        a = ledger.create("a", None, make_plan())
        ledger.create("b", None, make_plan())
        ledger.complete(a.id)
        assert [r.id for r in ledger.list(TaskStatus.COMPLETED)] == [a.id]
        assert len(ledger.list(TaskStatus.PENDING)) == 1
        assert len(ledger.list()) == 2

    def test_delete(self, ledger):
        record = ledger.create("a", None, make_plan())
        assert ledger.delete(record.id) is True
        assert ledger.delete(record.id) is False
        assert ledger.get(record.id) is None

    def test_cleanup_removes_only_old_completed(self, ledger):
        old = ledger.create("old", None, make_plan())
        recent = ledger.create("recent", None, make_plan())
        stale_running = ledger.create("running", None, make_plan())
        ledger.complete(old.id)
        ledger.complete(recent.id)
        ledger.set_status(stale_running.id, TaskStatus.RUNNING)

        ten_days_ago = (datetime.now(UTC) - timedelta(days=10)).isoformat()
        for record_id in (old.id, stale_running.id):
            path = ledger.state_dir / f"{record_id}.json"
            data = json.loads(path.read_text())
            data["updated_at"] = ten_days_ago
            path.write_text(json.dumps(data))

        assert ledger.cleanup(older_than_days=7) == 1
        assert ledger.get(old.id) is None
        assert ledger.get(recent.id) is not None
        assert ledger.get(stale_running.id) is not None
