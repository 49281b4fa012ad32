"""Exception taxonomy for orchestration, providers, and configuration."""


class TaskTeamError(Exception):
    """Base class for all taskteam errors."""


class ConfigError(TaskTeamError):
    """Raised when configuration is missing or invalid."""


class MissingWorkerError(TaskTeamError):
    """A subtask references a worker that was never created."""

    def __init__(self, subtask_id: str, worker_id: str) -> None:
        super().__init__(f"Worker {worker_id!r} for subtask {subtask_id!r} does not exist, skipping")
        self.subtask_id = subtask_id
        self.worker_id = worker_id


class UnsatisfiedDependencyError(TaskTeamError):
    """A subtask's prerequisites did not all complete."""

    def __init__(self, subtask_id: str, missing: list[str]) -> None:
        super().__init__(f"Subtask {subtask_id!r} has unmet dependencies {missing}, skipping")
        self.subtask_id = subtask_id
        self.missing = missing


class CyclicDependencyError(TaskTeamError):
    """No pending subtask can become ready; the remaining graph has a cycle."""

    def __init__(self, pending: list[str]) -> None:
        super().__init__(f"Cyclic dependency among subtasks {pending}, halting execution")
        self.pending = pending


class ProviderError(TaskTeamError):
    """A remote endpoint call failed.

    ``status`` is the HTTP status when the provider returned one; ``code`` is a
    provider or network error code such as ``rate_limit_exceeded`` or
    ``ECONNRESET``.
    """

    def __init__(self, message: str, *, status: int | None = None, code: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.code = code


class TransientProviderError(ProviderError):
    """Retryable failure that never reached an HTTP response (network, timeout)."""


class TerminalProviderError(TaskTeamError):
    """Every endpoint in a fallback chain failed."""

    def __init__(self, message: str, last_error: BaseException | None = None) -> None:
        super().__init__(message)
        self.last_error = last_error
