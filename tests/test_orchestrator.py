"""Tests for Orchestrator: caching, planning fallback, and the ledger lifecycle."""

import json

import pytest

from taskteam.cache import ResultCache
from taskteam.core.types import ChatMessage, ExecutionPolicy, Plan, Subtask, Tier, WorkerOutput, WorkerSpec
from taskteam.endpoints.base import Endpoint, EndpointConfig
from taskteam.endpoints.registry import CapabilityRegistry
from taskteam.endpoints.resilient import RetryPolicy
from taskteam.errors import ProviderError, TerminalProviderError
from taskteam.history import RunHistory
from taskteam.ledger import TaskLedger, TaskStatus
from taskteam.orchestrator import Orchestrator
from taskteam.planner import FALLBACK_WORKER, PLANNER_PROMPT, Planner
from taskteam.stats import UsageStats

PLAN = {
    "summary": "cache design",
    "workers": [{"id": "w1", "name": "Builder", "role": "You build things.", "tier": "medium"}],
    "subtasks": [
        {"id": "A", "description": "design", "worker_id": "w1"},
        {"id": "B", "description": "build", "worker_id": "w1", "dependencies": ["A"]},
    ],
    "policy": "sequential",
    "needs_review": False,
}


class LeadEndpoint(Endpoint):
    """Answers planning prompts with a fixed plan and anything else with a summary."""

    name = "lead"

    def __init__(self, plan_reply: str = json.dumps(PLAN), summary: str = "final summary"):
        self.plan_reply = plan_reply
        self.summary = summary
        self.calls: list[str] = []

    async def invoke(self, transcript: list[ChatMessage]) -> str:
        if transcript[0].content == PLANNER_PROMPT:
            self.calls.append("analyze")
            return self.plan_reply
        self.calls.append("summarize")
        return self.summary


class WorkerEndpoint(Endpoint):
    name = "worker"

    def __init__(self, *, fail_on=(), on_invoke=None):
        self.fail_on = set(fail_on)
        self.on_invoke = on_invoke
        self.tasks: list[str] = []
        self.prompts: list[str] = []

    async def invoke(self, transcript: list[ChatMessage]) -> str:
        prompt = transcript[-1].content
        task = prompt.removeprefix("Task: ").split("\n\nContext:")[0]
        self.prompts.append(prompt)
        self.tasks.append(task)
        if self.on_invoke:
            self.on_invoke(task)
        if task in self.fail_on:
            raise ProviderError(f"rejected {task}", status=400)
        return f"done: {task}"


def make_orchestrator(
    worker: WorkerEndpoint, lead: LeadEndpoint, *, ledger=None, on_progress=None, history=None, stats=None
):
    models = {t.value: EndpointConfig(provider="anthropic", model=f"model-{t.value}") for t in Tier}
    registry = CapabilityRegistry(
        models,
        {t: t.value for t in Tier},
        enable_fallback=False,
        retry=RetryPolicy(max_retries=0, base_delay=0, max_delay=0),
        endpoint_factory=lambda cfg: worker,
        stats=stats,
    )
    return Orchestrator(
        registry,
        Planner(lead),
        cache=ResultCache(),
        ledger=ledger,
        history=history,
        on_progress=on_progress,
    )


@pytest.fixture
def ledger(tmp_path) -> TaskLedger:
    return TaskLedger(tmp_path / "tasks")


class TestExecute:
    @pytest.mark.asyncio
    async def test_runs_plan_and_summarizes(self):
        worker, lead = WorkerEndpoint(), LeadEndpoint()
        result = await make_orchestrator(worker, lead).execute("design a cache")

        assert result.summary == "final summary"
        assert not result.from_cache
        assert [o.content for o in result.outputs] == ["done: design", "done: build"]
        assert lead.calls == ["analyze", "summarize"]
        assert worker.tasks == ["design", "build"]
        assert "[w1]: done: design" in worker.prompts[1]
        assert any(m.kind == "output" for m in result.transcript)

    @pytest.mark.asyncio
    async def test_second_identical_request_hits_cache(self):
        worker, lead = WorkerEndpoint(), LeadEndpoint()
        orchestrator = make_orchestrator(worker, lead)

        first = await orchestrator.execute("design a cache", "")
        second = await orchestrator.execute("design a cache", "")

        assert second.from_cache
        assert second.summary == first.summary
        assert lead.calls.count("analyze") == 1
        assert len(worker.tasks) == 2

    @pytest.mark.asyncio
    async def test_progress_percentages(self):
        events: list = []
        orchestrator = make_orchestrator(
            WorkerEndpoint(), LeadEndpoint(), on_progress=lambda msg, pct=None: events.append((msg, pct))
        )
        await orchestrator.execute("design a cache")
        assert [pct for _, pct in events if pct is not None] == [10, 20, 30, 80, 90, 100]

    @pytest.mark.asyncio
    async def test_unparseable_plan_uses_fallback_worker(self):
        worker = WorkerEndpoint()
        lead = LeadEndpoint(plan_reply="Sorry, I am not sure.")
        result = await make_orchestrator(worker, lead).execute("Design A Cache, please")

        assert worker.tasks == ["Design A Cache, please"]
        assert result.outputs[0].worker_id == FALLBACK_WORKER.id

    @pytest.mark.asyncio
    async def test_terminal_failure_is_not_cached(self):
        worker, lead = WorkerEndpoint(fail_on={"build"}), LeadEndpoint()
        orchestrator = make_orchestrator(worker, lead)
        with pytest.raises(TerminalProviderError):
            await orchestrator.execute("design a cache")
        assert len(orchestrator.cache) == 0
        assert "summarize" not in lead.calls

    @pytest.mark.asyncio
    async def test_resumable_without_ledger(self):
        with pytest.raises(ValueError):
            await make_orchestrator(WorkerEndpoint(), LeadEndpoint()).execute("x", resumable=True)


class TestResumableExecution:
    @pytest.mark.asyncio
    async def test_completed_run_is_recorded(self, ledger):
        orchestrator = make_orchestrator(WorkerEndpoint(), LeadEndpoint(), ledger=ledger)
        result = await orchestrator.execute("design a cache", resumable=True)

        record = ledger.get(result.record_id)
        assert record.status == TaskStatus.COMPLETED
        assert record.completed_ids() == {"A", "B"}
        assert [o.content for o in record.completed_outputs] == ["done: design", "done: build"]

    @pytest.mark.asyncio
    async def test_terminal_failure_marks_record_failed(self, ledger):
        orchestrator = make_orchestrator(WorkerEndpoint(fail_on={"build"}), LeadEndpoint(), ledger=ledger)
        with pytest.raises(TerminalProviderError):
            await orchestrator.execute("design a cache", resumable=True)

        (record,) = ledger.list()
        assert record.status == TaskStatus.FAILED
        assert "All endpoints failed" in record.error
        assert record.subtask_states["A"].status == TaskStatus.COMPLETED
        assert record.subtask_states["B"].status == TaskStatus.FAILED

    @pytest.mark.asyncio
    async def test_pause_then_resume(self, ledger):
        def pause_after_design(task: str) -> None:
            if task == "design":
                ledger.pause(ledger.list()[0].id, "lunch")

        first_worker, lead = WorkerEndpoint(on_invoke=pause_after_design), LeadEndpoint()
        paused = await make_orchestrator(first_worker, lead, ledger=ledger).execute(
            "design a cache", resumable=True
        )

        assert paused.paused
        assert first_worker.tasks == ["design"]
        assert lead.calls == ["analyze"]
        record = ledger.get(paused.record_id)
        assert record.status == TaskStatus.PAUSED
        assert record.pause_reason == "lunch"
        assert record.completed_ids() == {"A"}

        second_worker = WorkerEndpoint()
        resumed = await make_orchestrator(second_worker, LeadEndpoint(), ledger=ledger).resume(
            paused.record_id
        )

        assert not resumed.paused
        assert second_worker.tasks == ["build"]
        assert "[w1]: done: design" in second_worker.prompts[0]
        assert [o.content for o in resumed.outputs] == ["done: design", "done: build"]
        assert ledger.get(paused.record_id).status == TaskStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_resume_interrupted_record(self, ledger):
        plan = Plan(
            summary="s",
            workers=[WorkerSpec(id="w1", name="Builder", role="r")],
            subtasks=[Subtask("A", "design", "w1"), Subtask("B", "build", "w1", dependencies=("A",))],
            policy=ExecutionPolicy.MIXED,
            needs_review=False,
        )
        record = ledger.create("design a cache", None, plan)
        ledger.set_status(record.id, TaskStatus.RUNNING)
        ledger.update_subtask(record.id, "A", status=TaskStatus.RUNNING)
        ledger.update_subtask(
            record.id,
            "A",
            status=TaskStatus.COMPLETED,
            output=WorkerOutput(worker_id="w1", worker_name="Builder", content="done: design"),
        )

        worker = WorkerEndpoint()
        result = await make_orchestrator(worker, LeadEndpoint(), ledger=ledger).resume(record.id)

        assert worker.tasks == ["build"]
        assert result.summary == "final summary"
        assert ledger.get(record.id).status == TaskStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_resume_unknown_or_finished_returns_none(self, ledger):
        orchestrator = make_orchestrator(WorkerEndpoint(), LeadEndpoint(), ledger=ledger)
        assert await orchestrator.resume("task-missing") is None

        done = await orchestrator.execute("design a cache", resumable=True)
        assert await orchestrator.resume(done.record_id) is None


class TestHistoryAndStats:
    @pytest.mark.asyncio
    async def test_completed_run_is_saved_to_history(self, tmp_path):
        history = RunHistory(tmp_path / "history")
        orchestrator = make_orchestrator(WorkerEndpoint(), LeadEndpoint(), history=history)

        await orchestrator.execute("design a cache")
        await orchestrator.execute("design a cache")

        [entry] = history.list()
        assert entry.task == "design a cache"
        assert entry.summary == "final summary"
        assert entry.workers == ["Builder"]
        assert [o.content for o in entry.outputs] == ["done: design", "done: build"]
        assert entry.duration is not None and entry.duration >= 0

    @pytest.mark.asyncio
    async def test_failed_run_is_not_saved(self, tmp_path):
        history = RunHistory(tmp_path / "history")
        orchestrator = make_orchestrator(WorkerEndpoint(fail_on={"build"}), LeadEndpoint(), history=history)
        with pytest.raises(TerminalProviderError):
            await orchestrator.execute("design a cache")
        assert history.list() == []

    @pytest.mark.asyncio
    async def test_worker_calls_are_counted(self):
        stats = UsageStats()
        orchestrator = make_orchestrator(WorkerEndpoint(), LeadEndpoint(), stats=stats)
        await orchestrator.execute("design a cache")

        assert orchestrator.stats is stats
        worker_stats = stats.model_stats("worker")
        assert (worker_stats.total_calls, worker_stats.failed_calls) == (2, 0)


class TestAsk:
    @pytest.mark.asyncio
    async def test_ask_uses_tier_endpoint(self):
        worker = WorkerEndpoint()
        orchestrator = make_orchestrator(worker, LeadEndpoint())
        assert await orchestrator.ask("fast", "You answer questions.", "what is 2+2") == "done: what is 2+2"
