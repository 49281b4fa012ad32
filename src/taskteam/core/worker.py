"""Worker — one data-described delegate bound to an endpoint for a single run."""

import re

from taskteam.core.types import ChatMessage, FileArtifact, WorkerOutput, WorkerSpec
from taskteam.endpoints.base import Endpoint

_FENCE_RE = re.compile(r"```(\S+)\n(.*?)```", re.DOTALL)

# Fence tags that name a language or format rather than a file.
NON_FILE_TAGS = frozenset(
    {"json", "bash", "shell", "sh", "zsh", "text", "txt", "markdown", "md", "plaintext"}
)

SYSTEM_TEMPLATE = """{role}

You are {name} on this team. Complete the task from your area of expertise.

Output requirements:
1. Code must be complete and runnable
2. Include necessary comments
3. Follow best practices
4. When producing several files, tag each fenced block with its file name, e.g. ```path/to/file.py"""

REVIEW_TEMPLATE = """Review the following work, point out problems, and suggest improvements:

```
{content}
```
{background}
Focus on:
1. Correctness
2. Security vulnerabilities
3. Performance
4. Best practices"""


def extract_files(content: str) -> tuple[FileArtifact, ...]:
    """Collect fenced blocks whose tag looks like a file name (contains ``.`` or ``/``)."""
    files: list[FileArtifact] = []
    for tag, body in _FENCE_RE.findall(content):
        if tag.lower() in NON_FILE_TAGS:
            continue
        if "." in tag or "/" in tag:
            files.append(FileArtifact(path=tag, content=body.strip()))
    return tuple(files)


class Worker:
    """Runs subtasks for one ``WorkerSpec`` through its endpoint.

    The worker owns only its own transcript. ``execute`` starts a fresh one;
    ``respond`` and ``review`` continue it.
    """

    def __init__(self, spec: WorkerSpec, endpoint: Endpoint) -> None:
        self.spec = spec
        self.endpoint = endpoint
        self.transcript: list[ChatMessage] = []

    @property
    def id(self) -> str:
        return self.spec.id

    @property
    def name(self) -> str:
        return self.spec.name

    def system_prompt(self) -> str:
        return SYSTEM_TEMPLATE.format(role=self.spec.role, name=self.spec.name)

    async def execute(self, task: str, context: str | None = None) -> WorkerOutput:
        user = f"Task: {task}\n\nContext: {context}" if context else f"Task: {task}"
        transcript = [
            ChatMessage("system", self.system_prompt()),
            ChatMessage("user", user),
        ]
        reply = await self.endpoint.invoke(list(transcript))
        # Published only once complete, so concurrent calls never interleave.
        self.transcript = [*transcript, ChatMessage("assistant", reply)]
        return WorkerOutput(
            worker_id=self.id,
            worker_name=self.name,
            content=reply,
            files=extract_files(reply),
        )

    async def respond(self, message: str) -> str:
        history = self.transcript or [ChatMessage("system", self.system_prompt())]
        transcript = [*history, ChatMessage("user", message)]
        reply = await self.endpoint.invoke(transcript)
        self.transcript = [*transcript, ChatMessage("assistant", reply)]
        return reply

    async def review(self, content: str, background: str | None = None) -> str:
        prompt = REVIEW_TEMPLATE.format(
            content=content,
            background=f"\nBackground: {background}\n" if background else "",
        )
        return await self.respond(prompt)

    def __repr__(self) -> str:
        return f"Worker({self.spec.id!r}, tier={self.spec.tier.value})"
