"""Dependency-graph orchestration of model-backed workers."""

from taskteam.cache import ResultCache
from taskteam.core.executor import Executor
from taskteam.core.graph import Graph
from taskteam.core.types import ExecutionPolicy, Plan, Subtask, Tier, WorkerOutput, WorkerSpec
from taskteam.endpoints.resilient import ResilientEndpoint, RetryPolicy
from taskteam.history import RunHistory
from taskteam.ledger import TaskLedger, TaskStatus
from taskteam.orchestrator import ExecutionResult, Orchestrator
from taskteam.stats import UsageStats

__all__ = [
    "ExecutionPolicy",
    "ExecutionResult",
    "Executor",
    "Graph",
    "Orchestrator",
    "Plan",
    "ResilientEndpoint",
    "ResultCache",
    "RetryPolicy",
    "RunHistory",
    "Subtask",
    "TaskLedger",
    "TaskStatus",
    "Tier",
    "UsageStats",
    "WorkerOutput",
    "WorkerSpec",
]
