"""Capability registry — resolve a tier to a resilient endpoint chain."""

from collections.abc import Callable, Mapping, Sequence

from taskteam.core.types import Tier
from taskteam.endpoints.anthropic_endpoint import AnthropicEndpoint
from taskteam.endpoints.base import PROVIDERS, Endpoint, EndpointConfig
from taskteam.endpoints.openai_endpoint import OpenAIEndpoint
from taskteam.endpoints.resilient import ProgressCallback, ResilientEndpoint, RetryPolicy
from taskteam.errors import ConfigError
from taskteam.stats import UsageStats

EndpointFactory = Callable[[EndpointConfig], Endpoint]

# Order used when deriving fallbacks from the other tiers.
FALLBACK_TIER_ORDER = (Tier.HIGH, Tier.MEDIUM, Tier.LOW)


def create_endpoint(config: EndpointConfig) -> Endpoint:
    """Build the concrete endpoint for ``config.provider``."""
    if config.provider == "anthropic":
        return AnthropicEndpoint(config)
    if config.provider in ("openai", "ollama"):
        return OpenAIEndpoint(config)
    raise ConfigError(f"Unsupported provider {config.provider!r}; expected one of {PROVIDERS}")


class CapabilityRegistry:
    """Maps capability tiers to named endpoint configurations.

    ``pool`` picks the primary model name per tier. ``fallbacks`` optionally
    lists explicit fallback model names per tier; otherwise the chain is
    completed with the other tiers' models (high, medium, low), skipping
    duplicates. With ``enable_fallback=False`` each chain is just the primary,
    still wrapped for retries. Every chain records its attempts into ``stats``
    when one is given.
    """

    def __init__(
        self,
        models: Mapping[str, EndpointConfig],
        pool: Mapping[Tier, str],
        *,
        fallbacks: Mapping[Tier, Sequence[str]] | None = None,
        enable_fallback: bool = True,
        retry: RetryPolicy | None = None,
        endpoint_factory: EndpointFactory = create_endpoint,
        stats: UsageStats | None = None,
    ) -> None:
        self.models = dict(models)
        self.pool = dict(pool)
        self.fallbacks = {tier: list(names) for tier, names in (fallbacks or {}).items()}
        self.enable_fallback = enable_fallback
        self.retry = retry or RetryPolicy()
        self._factory = endpoint_factory
        self.stats = stats
        self._validate()

    def _validate(self) -> None:
        for tier in Tier:
            if tier not in self.pool:
                raise ConfigError(f"No model configured for tier {tier.value!r}")
        names = list(self.pool.values()) + [n for chain in self.fallbacks.values() for n in chain]
        for name in names:
            if name not in self.models:
                raise ConfigError(f"Model {name!r} is not defined in models")

    def chain_names(self, tier: Tier) -> list[str]:
        """Model names for *tier*, primary first."""
        primary = self.pool[tier]
        if not self.enable_fallback:
            return [primary]
        if tier in self.fallbacks:
            candidates = self.fallbacks[tier]
        else:
            candidates = [self.pool[t] for t in FALLBACK_TIER_ORDER if t is not tier]
        chain = [primary]
        for name in candidates:
            if name not in chain:
                chain.append(name)
        return chain

    def model_name(self, tier: Tier) -> str:
        """Model identifier of the tier's primary endpoint."""
        return self.models[self.pool[tier]].model

    def endpoint_for(self, tier: Tier, on_progress: ProgressCallback | None = None) -> ResilientEndpoint:
        endpoints = [self._factory(self.models[name]) for name in self.chain_names(tier)]
        return ResilientEndpoint(endpoints, policy=self.retry, on_progress=on_progress, stats=self.stats)

    def endpoint_named(self, name: str, on_progress: ProgressCallback | None = None) -> ResilientEndpoint:
        """Chain for a named model, e.g. the planner's lead, backed by the pool models."""
        if name not in self.models:
            raise ConfigError(f"Model {name!r} is not defined in models")
        chain = [name]
        if self.enable_fallback:
            chain += [n for n in (self.pool[t] for t in FALLBACK_TIER_ORDER) if n not in chain]
        endpoints = [self._factory(self.models[n]) for n in dict.fromkeys(chain)]
        return ResilientEndpoint(endpoints, policy=self.retry, on_progress=on_progress, stats=self.stats)
