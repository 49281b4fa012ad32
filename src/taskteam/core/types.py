"""Shared data types: tiers, policies, workers, subtasks, plans, and outputs."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

_TIER_ALIASES = {
    "fast": "low",
    "balanced": "medium",
    "powerful": "high",
}


class Tier(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def parse(cls, value: "str | Tier") -> "Tier":
        """Accept ``low``/``medium``/``high`` and the ``fast``/``balanced``/``powerful`` aliases."""
        if isinstance(value, Tier):
            return value
        name = str(value).strip().lower()
        return cls(_TIER_ALIASES.get(name, name))


class ExecutionPolicy(Enum):
    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"
    MIXED = "mixed"


@dataclass(frozen=True)
class ChatMessage:
    role: Literal["system", "user", "assistant"]
    content: str


@dataclass(frozen=True)
class WorkerSpec:
    """Data description of a worker created for a single task graph."""

    id: str
    name: str
    role: str
    tier: Tier = Tier.MEDIUM
    skills: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "tier": self.tier.value,
            "skills": list(self.skills),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WorkerSpec":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or data["id"]),
            role=str(data.get("role", "")),
            tier=Tier.parse(data.get("tier", "medium")),
            skills=tuple(str(s) for s in data.get("skills") or ()),
        )


@dataclass(frozen=True)
class Subtask:
    id: str
    description: str
    worker_id: str
    dependencies: tuple[str, ...] = ()
    priority: int = 3

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "worker_id": self.worker_id,
            "dependencies": list(self.dependencies),
            "priority": self.priority,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Subtask":
        return cls(
            id=str(data["id"]),
            description=str(data.get("description", "")),
            worker_id=str(data["worker_id"]),
            dependencies=tuple(str(d) for d in data.get("dependencies") or ()),
            priority=int(data.get("priority", 3)),
        )


@dataclass(frozen=True)
class FileArtifact:
    path: str
    content: str


@dataclass
class WorkerOutput:
    worker_id: str
    worker_name: str
    content: str
    files: tuple[FileArtifact, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "worker_id": self.worker_id,
            "worker_name": self.worker_name,
            "content": self.content,
            "files": [{"path": f.path, "content": f.content} for f in self.files],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WorkerOutput":
        return cls(
            worker_id=data["worker_id"],
            worker_name=data["worker_name"],
            content=data["content"],
            files=tuple(FileArtifact(f["path"], f["content"]) for f in data.get("files") or ()),
        )


@dataclass
class Plan:
    """Decomposition of a task into workers and a subtask graph."""

    summary: str
    workers: list[WorkerSpec] = field(default_factory=list)
    subtasks: list[Subtask] = field(default_factory=list)
    policy: ExecutionPolicy = ExecutionPolicy.MIXED
    needs_review: bool = True
    notes: str | None = None
