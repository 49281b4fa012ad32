"""OpenAIEndpoint — chat completions for OpenAI and OpenAI-compatible servers."""

import openai

from taskteam.core.types import ChatMessage
from taskteam.endpoints.base import Endpoint, EndpointConfig
from taskteam.errors import ProviderError, TransientProviderError

OLLAMA_DEFAULT_URL = "http://localhost:11434/v1"


class OpenAIEndpoint(Endpoint):
    """Send a transcript through ``AsyncOpenAI.chat.completions.create``.

    Also serves Ollama, which exposes the same API; for the ``ollama``
    provider the base URL defaults to the local server and a placeholder key
    is used because the server ignores it.
    """

    def __init__(self, config: EndpointConfig) -> None:
        self.config = config
        self.name = config.model
        self._client: openai.AsyncOpenAI | None = None

    def _get_client(self) -> openai.AsyncOpenAI:
        if self._client is None:
            api_key = self.config.api_key()
            base_url = self.config.base_url
            if self.config.provider == "ollama":
                api_key = api_key or "ollama"
                base_url = base_url or OLLAMA_DEFAULT_URL
            self._client = openai.AsyncOpenAI(api_key=api_key, base_url=base_url)
        return self._client

    async def invoke(self, transcript: list[ChatMessage]) -> str:
        try:
            response = await self._get_client().chat.completions.create(
                model=self.config.model,
                messages=[{"role": m.role, "content": m.content} for m in transcript],
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
        except openai.APIStatusError as e:
            raise ProviderError(str(e), status=e.status_code, code=getattr(e, "code", None)) from e
        except openai.APIConnectionError as e:
            raise TransientProviderError(str(e)) from e

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""
