"""Executor — runs a subtask graph through workers under an execution policy."""

import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence

from taskteam.core.graph import Graph
from taskteam.core.space import CollaborationSpace
from taskteam.core.types import ExecutionPolicy, Plan, Subtask, Tier, WorkerOutput, WorkerSpec
from taskteam.core.worker import Worker
from taskteam.endpoints.registry import CapabilityRegistry
from taskteam.errors import (
    CyclicDependencyError,
    MissingWorkerError,
    TerminalProviderError,
    UnsatisfiedDependencyError,
)
from taskteam.ledger import TaskLedger, TaskStatus

logger = logging.getLogger(__name__)

ProgressCallback = Callable[..., None]

REVIEWER_SPEC = WorkerSpec(
    id="reviewer",
    name="Code Reviewer",
    role=(
        "You are a senior code reviewer. Review the work you are given, focusing on:\n"
        "- Code quality and maintainability\n"
        "- Potential bugs and security issues\n"
        "- Performance improvements\n"
        "- Best practices\n\n"
        "Give concrete, actionable suggestions."
    ),
    tier=Tier.MEDIUM,
    skills=("review", "security", "quality"),
)


class Executor:
    """Build workers for a plan and run its subtasks.

    ``parallel`` launches everything at once and ignores edges. ``sequential``
    walks a depth-first topological order, skipping subtasks whose
    dependencies did not complete. ``mixed`` runs ready frontiers one wave at a
    time and halts with partial outputs if the remaining graph has a cycle.

    When a ledger is attached, every subtask transition is persisted and a
    ``paused`` record stops further dispatch.
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        *,
        on_progress: ProgressCallback | None = None,
        ledger: TaskLedger | None = None,
    ) -> None:
        self.registry = registry
        self.on_progress = on_progress
        self.ledger = ledger

    def _report(self, message: str, percent: int | None = None) -> None:
        logger.info(message)
        if self.on_progress:
            self.on_progress(message, percent)

    def create_worker(self, spec: WorkerSpec) -> Worker:
        endpoint = self.registry.endpoint_for(spec.tier, on_progress=self.on_progress)
        self._report(f"Created worker {spec.name} -> {self.registry.model_name(spec.tier)}")
        return Worker(spec, endpoint)

    def build_workers(self, specs: Iterable[WorkerSpec]) -> dict[str, Worker]:
        return {spec.id: self.create_worker(spec) for spec in specs}

    async def run(
        self,
        plan: Plan,
        space: CollaborationSpace,
        *,
        record_id: str | None = None,
        completed: Iterable[str] = (),
        prior_outputs: Sequence[WorkerOutput] = (),
    ) -> list[WorkerOutput]:
        """Execute *plan* and return outputs in completion order.

        ``completed`` and ``prior_outputs`` seed a resumed run with work that
        already finished. A ``TerminalProviderError`` aborts the run.
        """
        workers = self.build_workers(plan.workers)
        for spec in plan.workers:
            space.publish("system", f"Created worker: {spec.name} ({spec.tier.value})", "info")

        done = set(completed)
        remaining = [s for s in plan.subtasks if s.id not in done]
        self._report(f"Executing {len(remaining)} subtasks ({plan.policy.value})", 30)

        outputs = list(prior_outputs)
        if plan.policy == ExecutionPolicy.PARALLEL:
            outputs += await self._run_parallel(remaining, workers, space, record_id)
        elif plan.policy == ExecutionPolicy.SEQUENTIAL:
            outputs += await self._run_sequential(plan.subtasks, workers, space, record_id, done)
        else:
            outputs += await self._run_wavefront(plan.subtasks, workers, space, record_id, done)
        self._report(f"{len(outputs)} subtask outputs ready", 80)

        if self._paused(record_id):
            return outputs

        if plan.needs_review and outputs:
            outputs.append(await self.review(outputs, space))
        return outputs

    async def _run_parallel(
        self,
        subtasks: Sequence[Subtask],
        workers: dict[str, Worker],
        space: CollaborationSpace,
        record_id: str | None,
    ) -> list[WorkerOutput]:
        """Run every subtask concurrently and wait for all of them to settle."""
        total = len(subtasks)
        results = await asyncio.gather(
            *(
                self._run_subtask(subtask, workers, space, record_id, index, total)
                for index, subtask in enumerate(subtasks, start=1)
            ),
            return_exceptions=True,
        )
        outputs: list[WorkerOutput] = []
        for result in results:
            if isinstance(result, BaseException):
                raise result
            if result is not None:
                outputs.append(result)
        return outputs

    async def _run_sequential(
        self,
        subtasks: Sequence[Subtask],
        workers: dict[str, Worker],
        space: CollaborationSpace,
        record_id: str | None,
        done: set[str],
    ) -> list[WorkerOutput]:
        outputs: list[WorkerOutput] = []
        ordered = [s for s in Graph.from_subtasks(subtasks).topological_order() if s.id not in done]
        total = len(ordered)

        for index, subtask in enumerate(ordered, start=1):
            if self._paused(record_id):
                logger.info("Ledger %s paused, stopping before %s", record_id, subtask.id)
                break
            try:
                self._check_dependencies(subtask, done)
            except UnsatisfiedDependencyError as e:
                logger.warning("%s", e)
                space.publish("system", str(e), "info")
                continue

            output = await self._run_subtask(subtask, workers, space, record_id, index, total)
            if output is not None:
                outputs.append(output)
                done.add(subtask.id)

        return outputs

    async def _run_wavefront(
        self,
        subtasks: Sequence[Subtask],
        workers: dict[str, Worker],
        space: CollaborationSpace,
        record_id: str | None,
        done: set[str],
    ) -> list[WorkerOutput]:
        outputs: list[WorkerOutput] = []
        graph = Graph.from_subtasks(subtasks)
        wave = 0

        while len(done) < len(graph):
            if self._paused(record_id):
                logger.info("Ledger %s paused, stopping before wave %d", record_id, wave + 1)
                break
            try:
                ready = graph.ready(done)
            except CyclicDependencyError as e:
                logger.warning("%s", e)
                space.publish("system", str(e), "info")
                break

            wave += 1
            logger.info("Wave %d: %s", wave, [s.id for s in ready])
            outputs += await self._run_parallel(ready, workers, space, record_id)
            # Skipped subtasks count as settled so their dependents still run.
            done.update(s.id for s in ready)

        return outputs

    def _check_dependencies(self, subtask: Subtask, done: set[str]) -> None:
        missing = [dep for dep in subtask.dependencies if dep not in done]
        if missing:
            raise UnsatisfiedDependencyError(subtask.id, missing)

    def _resolve_worker(self, subtask: Subtask, workers: dict[str, Worker]) -> Worker:
        worker = workers.get(subtask.worker_id)
        if worker is None:
            raise MissingWorkerError(subtask.id, subtask.worker_id)
        return worker

    async def _run_subtask(
        self,
        subtask: Subtask,
        workers: dict[str, Worker],
        space: CollaborationSpace,
        record_id: str | None,
        index: int,
        total: int,
    ) -> WorkerOutput | None:
        try:
            worker = self._resolve_worker(subtask, workers)
        except MissingWorkerError as e:
            logger.warning("%s", e)
            space.publish("system", str(e), "info")
            return None

        self._report(f"[{index}/{total}] {worker.name} working on {subtask.id}")
        self._track(record_id, subtask.id, status=TaskStatus.RUNNING)
        try:
            output = await worker.execute(subtask.description, space.build_context())
        except TerminalProviderError as e:
            self._track(record_id, subtask.id, status=TaskStatus.FAILED, error=str(e))
            raise

        self._report(f"{worker.name} finished {subtask.id}")
        space.publish(worker.id, output.content, "output")
        self._track(record_id, subtask.id, status=TaskStatus.COMPLETED, output=output)
        return output

    async def review(self, outputs: Sequence[WorkerOutput], space: CollaborationSpace) -> WorkerOutput:
        """Have an ad hoc reviewer critique the concatenation of all outputs."""
        self._report("Reviewing outputs...", 85)
        reviewer = self.create_worker(REVIEWER_SPEC)
        combined = "\n\n---\n\n".join(f"[{o.worker_name}]\n{o.content}" for o in outputs)
        content = await reviewer.review(combined, "Review all of the work above")
        space.publish(reviewer.id, content, "review")
        return WorkerOutput(worker_id=reviewer.id, worker_name=reviewer.name, content=content)

    def _track(self, record_id: str | None, subtask_id: str, **changes) -> None:
        if self.ledger is not None and record_id is not None:
            self.ledger.update_subtask(record_id, subtask_id, **changes)

    def _paused(self, record_id: str | None) -> bool:
        if self.ledger is None or record_id is None:
            return False
        record = self.ledger.get(record_id)
        return record is not None and record.status == TaskStatus.PAUSED
