"""Orchestrator — cache, planning, execution, summarisation, history, and the ledger variant."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from taskteam.cache import ResultCache
from taskteam.config import Settings
from taskteam.core.executor import Executor
from taskteam.core.space import CollaborationSpace, Message
from taskteam.core.types import Plan, Tier, WorkerOutput, WorkerSpec
from taskteam.core.worker import Worker
from taskteam.endpoints.registry import CapabilityRegistry
from taskteam.errors import TerminalProviderError
from taskteam.history import RunHistory
from taskteam.ledger import LedgerRecord, TaskLedger, TaskStatus
from taskteam.planner import Planner
from taskteam.stats import UsageStats

logger = logging.getLogger(__name__)

ProgressCallback = Callable[..., None]


@dataclass
class ExecutionResult:
    summary: str
    outputs: list[WorkerOutput] = field(default_factory=list)
    transcript: list[Message] = field(default_factory=list)
    from_cache: bool = False
    record_id: str | None = None
    paused: bool = False


class Orchestrator:
    """Entry point: ``await execute(task, context)``.

    Results are served from the cache when possible. With ``resumable=True``
    the plan and every subtask transition are written to the ledger so the
    run can be paused and later continued with ``resume()``.
    Completed runs are appended to ``history`` when one is given, and every
    endpoint attempt lands in the registry's ``stats``.
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        planner: Planner,
        *,
        cache: ResultCache | None = None,
        ledger: TaskLedger | None = None,
        history: RunHistory | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self.registry = registry
        self.planner = planner
        self.cache = cache if cache is not None else ResultCache()
        self.ledger = ledger
        self.history = history
        self.on_progress = on_progress
        self.executor = Executor(registry, on_progress=on_progress, ledger=ledger)

    @property
    def stats(self) -> UsageStats | None:
        return self.registry.stats

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        on_progress: ProgressCallback | None = None,
        use_cache: bool = True,
    ) -> "Orchestrator":
        registry = settings.build_registry(stats=UsageStats())
        planner = Planner(registry.endpoint_named(settings.lead, on_progress=on_progress))
        cache = ResultCache(
            max_size=settings.cache.max_size,
            ttl=settings.cache.ttl,
            enabled=settings.cache.enabled and use_cache,
        )
        return cls(
            registry,
            planner,
            cache=cache,
            ledger=TaskLedger(settings.ledger.state_dir),
            history=RunHistory(settings.history.history_dir) if settings.history.enabled else None,
            on_progress=on_progress,
        )

    def _report(self, message: str, percent: int | None = None) -> None:
        logger.info(message)
        if self.on_progress:
            self.on_progress(message, percent)

    async def execute(
        self,
        task: str,
        context: str | None = None,
        *,
        resumable: bool = False,
    ) -> ExecutionResult:
        started = time.monotonic()
        cached = self.cache.get(task, context)
        if cached is not None:
            self._report("Cache hit, returning stored result", 100)
            return ExecutionResult(summary=cached, from_cache=True)

        space = CollaborationSpace()
        space.publish("system", f"New task: {task}", "info")
        self._report("Analyzing task...", 10)

        plan = await self.planner.analyze(task, context)
        space.publish("planner", f"Plan ready: {plan.summary}", "info")
        self._report(
            f"Plan ready: {len(plan.workers)} workers, {len(plan.subtasks)} subtasks", 20
        )

        record_id = None
        if resumable:
            if self.ledger is None:
                raise ValueError("resumable execution needs a ledger")
            record = self.ledger.create(task, context, plan)
            self.ledger.set_status(record.id, TaskStatus.RUNNING)
            record_id = record.id

        return await self._run(task, context, plan, space, record_id, started=started)

    async def resume(self, record_id: str) -> ExecutionResult | None:
        """Continue a paused or interrupted ledger record.

        Returns ``None`` when the record is unknown or already finished.
        """
        if self.ledger is None:
            raise ValueError("resume needs a ledger")
        started = time.monotonic()
        record = self.ledger.get(record_id)
        if record is None or record.status in (TaskStatus.COMPLETED, TaskStatus.FAILED):
            return None

        if record.status == TaskStatus.PAUSED:
            self.ledger.resume(record_id)
        else:
            # pending or running after a crash
            self.ledger.set_status(record_id, TaskStatus.RUNNING)

        space = self._restore_space(record)
        self._report(
            f"Resuming {record_id}: {len(self.ledger.pending_subtasks(record))} subtasks pending",
            TaskLedger.progress(record),
        )
        return await self._run(
            record.task,
            record.context,
            record.to_plan(),
            space,
            record_id,
            completed=record.completed_ids(),
            prior_outputs=record.completed_outputs,
            started=started,
        )

    @staticmethod
    def _restore_space(record: LedgerRecord) -> CollaborationSpace:
        space = CollaborationSpace()
        space.publish("system", f"Resumed task: {record.task}", "info")
        for output in record.completed_outputs:
            space.publish(output.worker_id, output.content, "output")
        return space

    async def _run(
        self,
        task: str,
        context: str | None,
        plan: Plan,
        space: CollaborationSpace,
        record_id: str | None,
        *,
        completed: set[str] | None = None,
        prior_outputs: list[WorkerOutput] | None = None,
        started: float | None = None,
    ) -> ExecutionResult:
        try:
            outputs = await self.executor.run(
                plan,
                space,
                record_id=record_id,
                completed=completed or (),
                prior_outputs=prior_outputs or (),
            )
            if record_id is not None and self._is_paused(record_id):
                self._report(f"Task {record_id} paused", None)
                return ExecutionResult(
                    summary="",
                    outputs=outputs,
                    transcript=space.history(),
                    record_id=record_id,
                    paused=True,
                )

            self._report("Summarizing results...", 90)
            summary = await self.planner.summarize(outputs)
        except TerminalProviderError as e:
            if record_id is not None and self.ledger is not None:
                self.ledger.fail(record_id, str(e))
            raise

        if record_id is not None and self.ledger is not None:
            self.ledger.complete(record_id)
        self.cache.set(task, summary, context)
        if self.history is not None:
            self.history.save(
                task,
                summary,
                [w.name for w in plan.workers],
                outputs,
                duration=time.monotonic() - started if started is not None else None,
            )
        self._report("Task complete", 100)

        return ExecutionResult(
            summary=summary,
            outputs=outputs,
            transcript=space.history(),
            record_id=record_id,
        )

    def _is_paused(self, record_id: str) -> bool:
        record = self.ledger.get(record_id) if self.ledger else None
        return record is not None and record.status == TaskStatus.PAUSED

    async def ask(self, tier: Tier | str, role: str, question: str) -> str:
        """One-off question to an ad hoc worker of the given tier."""
        spec = WorkerSpec(id="dynamic", name="Expert", role=role, tier=Tier.parse(tier))
        worker = Worker(spec, self.registry.endpoint_for(spec.tier, on_progress=self.on_progress))
        return await worker.respond(question)
