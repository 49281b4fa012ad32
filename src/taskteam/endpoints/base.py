"""Endpoint ABC and EndpointConfig."""

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Literal

from taskteam.core.types import ChatMessage

ProviderKind = Literal["anthropic", "openai", "ollama"]

PROVIDERS: tuple[str, ...] = ("anthropic", "openai", "ollama")


@dataclass(frozen=True)
class EndpointConfig:
    """Named configuration for one remote text-generation model.

    ``api_key_env`` names the environment variable holding the credential;
    when unset the provider SDK falls back to its own default variable.
    """

    provider: ProviderKind
    model: str
    base_url: str | None = None
    api_key_env: str | None = None
    temperature: float = 0.7
    max_tokens: int = 8192

    def api_key(self) -> str | None:
        if self.api_key_env:
            return os.environ.get(self.api_key_env)
        return None


class Endpoint(ABC):
    """Anything that turns a conversation transcript into a reply."""

    name: str = "endpoint"

    @abstractmethod
    async def invoke(self, transcript: list[ChatMessage]) -> str: ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"
