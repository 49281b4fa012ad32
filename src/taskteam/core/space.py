"""CollaborationSpace — shared message board flowing through a task run."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Literal

MessageKind = Literal["output", "review", "info"]


@dataclass(frozen=True)
class Message:
    id: int
    sender: str
    content: str
    kind: MessageKind
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class CollaborationSpace:
    """Ordered transcript shared by every worker in one graph run.

    The orchestrator and executor ``publish()`` notices, outputs, and reviews.
    ``build_context()`` renders the board for the next worker, and
    ``history()`` is the run transcript returned to callers.
    """

    def __init__(self) -> None:
        self._messages: list[Message] = []

    def publish(self, sender: str, content: str, kind: MessageKind = "output") -> Message:
        message = Message(
            id=len(self._messages) + 1,
            sender=sender,
            content=content,
            kind=kind,
        )
        self._messages.append(message)
        return message

    def build_context(self) -> str:
        """Render every message as ``[sender]: content`` blocks."""
        return "\n\n".join(f"[{m.sender}]: {m.content}" for m in self._messages)

    def history(self) -> list[Message]:
        """Return a shallow copy of the transcript."""
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __repr__(self) -> str:
        return f"CollaborationSpace(messages={len(self._messages)})"
