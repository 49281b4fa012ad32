"""UsageStats — per-model call counts, success rates, and durations."""

from collections import deque
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class CallRecord:
    model: str
    duration: float
    success: bool
    error: str | None = None


@dataclass(frozen=True)
class ModelStats:
    model: str
    total_calls: int
    success_calls: int
    failed_calls: int
    success_rate: float
    avg_duration: float
    min_duration: float
    max_duration: float
    total_duration: float


class UsageStats:
    """Bounded in-memory log of endpoint attempts.

    Every attempt counts, retries included. Durations are in seconds and are
    aggregated over successful calls only.
    """

    def __init__(self, max_records: int = 1000) -> None:
        self._records: deque[CallRecord] = deque(maxlen=max_records)

    def record(self, model: str, duration: float, success: bool, error: str | None = None) -> None:
        self._records.append(CallRecord(model, duration, success, error))

    def model_stats(self, model: str) -> ModelStats | None:
        records = [r for r in self._records if r.model == model]
        if not records:
            return None
        durations = [r.duration for r in records if r.success]
        return ModelStats(
            model=model,
            total_calls=len(records),
            success_calls=len(durations),
            failed_calls=len(records) - len(durations),
            success_rate=len(durations) / len(records),
            avg_duration=sum(durations) / len(durations) if durations else 0.0,
            min_duration=min(durations, default=0.0),
            max_duration=max(durations, default=0.0),
            total_duration=sum(durations),
        )

    def models(self) -> list[ModelStats]:
        """Per-model stats, busiest first."""
        names = dict.fromkeys(r.model for r in self._records)
        stats = [self.model_stats(name) for name in names]
        return sorted((s for s in stats if s), key=lambda s: s.total_calls, reverse=True)

    def totals(self) -> dict[str, Any]:
        durations = [r.duration for r in self._records if r.success]
        return {
            "total_calls": len(self._records),
            "total_success": len(durations),
            "total_failed": len(self._records) - len(durations),
            "total_duration": sum(durations),
            "avg_duration": sum(durations) / len(durations) if durations else 0.0,
        }

    def recent(self, count: int = 10) -> list[CallRecord]:
        return list(self._records)[-count:]

    def __len__(self) -> int:
        return len(self._records)
