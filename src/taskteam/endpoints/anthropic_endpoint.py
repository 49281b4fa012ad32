"""AnthropicEndpoint — Anthropic Messages API via the async SDK."""

import anthropic

from taskteam.core.types import ChatMessage
from taskteam.endpoints.base import Endpoint, EndpointConfig
from taskteam.errors import ProviderError, TransientProviderError


class AnthropicEndpoint(Endpoint):
    """Send a transcript through ``AsyncAnthropic.messages.create``.

    The client is created lazily on first use. System messages are lifted
    into the ``system`` parameter; SDK errors are translated into
    ``ProviderError`` carrying the HTTP status.
    """

    def __init__(self, config: EndpointConfig) -> None:
        self.config = config
        self.name = config.model
        self._client: anthropic.AsyncAnthropic | None = None

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            kwargs: dict = {}
            if key := self.config.api_key():
                kwargs["api_key"] = key
            if self.config.base_url:
                kwargs["base_url"] = self.config.base_url
            self._client = anthropic.AsyncAnthropic(**kwargs)
        return self._client

    async def invoke(self, transcript: list[ChatMessage]) -> str:
        system = "\n\n".join(m.content for m in transcript if m.role == "system")
        kwargs: dict = {
            "model": self.config.model,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "messages": [
                {"role": m.role, "content": m.content} for m in transcript if m.role != "system"
            ],
        }
        if system:
            kwargs["system"] = system

        try:
            response = await self._get_client().messages.create(**kwargs)
        except anthropic.APIStatusError as e:
            code = e.body.get("error", {}).get("type") if isinstance(e.body, dict) else None
            raise ProviderError(str(e), status=e.status_code, code=code) from e
        except anthropic.APIConnectionError as e:
            raise TransientProviderError(str(e)) from e

        return "".join(block.text for block in response.content if block.type == "text")
