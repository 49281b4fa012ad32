"""Settings — YAML configuration for models, tiers, retries, cache, ledger, and history."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from taskteam.core.types import Tier
from taskteam.endpoints.base import PROVIDERS, EndpointConfig
from taskteam.endpoints.registry import CapabilityRegistry, EndpointFactory, create_endpoint
from taskteam.endpoints.resilient import RetryPolicy
from taskteam.errors import ConfigError
from taskteam.history import DEFAULT_HISTORY_DIR
from taskteam.ledger import DEFAULT_STATE_DIR
from taskteam.stats import UsageStats

logger = logging.getLogger(__name__)

CONFIG_ENV = "TASKTEAM_CONFIG"
STATE_DIR_ENV = "TASKTEAM_STATE_DIR"
DEFAULT_CONFIG_PATH = Path.home() / ".taskteam" / "config.yaml"

DEFAULT_MODELS: dict[str, dict[str, Any]] = {
    "haiku": {"provider": "anthropic", "model": "claude-haiku-4-5"},
    "sonnet": {"provider": "anthropic", "model": "claude-sonnet-4-5-20250929"},
    "opus": {"provider": "anthropic", "model": "claude-opus-4-1"},
}
DEFAULT_POOL = {"low": "haiku", "medium": "sonnet", "high": "opus"}


@dataclass
class CacheSettings:
    enabled: bool = True
    max_size: int = 100
    ttl: float = 30 * 60


@dataclass
class LedgerSettings:
    state_dir: Path = DEFAULT_STATE_DIR
    cleanup_days: float = 7


@dataclass
class HistorySettings:
    enabled: bool = True
    history_dir: Path = DEFAULT_HISTORY_DIR
    keep_recent: int = 100


@dataclass
class Settings:
    models: dict[str, EndpointConfig]
    pool: dict[Tier, str]
    lead: str
    fallbacks: dict[Tier, list[str]] = field(default_factory=dict)
    enable_fallback: bool = True
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    cache: CacheSettings = field(default_factory=CacheSettings)
    ledger: LedgerSettings = field(default_factory=LedgerSettings)
    history: HistorySettings = field(default_factory=HistorySettings)

    def build_registry(
        self,
        endpoint_factory: EndpointFactory = create_endpoint,
        stats: UsageStats | None = None,
    ) -> CapabilityRegistry:
        return CapabilityRegistry(
            self.models,
            self.pool,
            fallbacks=self.fallbacks,
            enable_fallback=self.enable_fallback,
            retry=self.retry,
            endpoint_factory=endpoint_factory,
            stats=stats,
        )


def _endpoint_config(name: str, data: Any) -> EndpointConfig:
    if not isinstance(data, dict):
        raise ConfigError(f"Model {name!r} must be a mapping")
    provider = data.get("provider")
    if provider not in PROVIDERS:
        raise ConfigError(f"Model {name!r}: unsupported provider {provider!r}")
    if not data.get("model"):
        raise ConfigError(f"Model {name!r}: 'model' is required")
    return EndpointConfig(
        provider=provider,
        model=str(data["model"]),
        base_url=data.get("base_url"),
        api_key_env=data.get("api_key_env"),
        temperature=float(data.get("temperature", 0.7)),
        max_tokens=int(data.get("max_tokens", 8192)),
    )


def _tier_map(raw: Any, what: str) -> dict[Tier, Any]:
    if not isinstance(raw, dict):
        raise ConfigError(f"'{what}' must be a mapping of tier to model name")
    try:
        return {Tier.parse(k): v for k, v in raw.items()}
    except ValueError as e:
        raise ConfigError(f"'{what}': {e}") from e


def parse_settings(data: dict[str, Any]) -> Settings:
    """Validate a config mapping and build ``Settings``."""
    models_raw = data.get("models") or DEFAULT_MODELS
    models = {name: _endpoint_config(name, cfg) for name, cfg in models_raw.items()}

    pool = {tier: str(name) for tier, name in _tier_map(data.get("pool") or DEFAULT_POOL, "pool").items()}
    missing = [t.value for t in Tier if t not in pool]
    if missing:
        raise ConfigError(f"'pool' is missing tiers: {missing}")

    fallbacks = {
        tier: [str(n) for n in names]
        for tier, names in _tier_map(data.get("fallbacks") or {}, "fallbacks").items()
    }

    lead = str(data.get("lead") or pool[Tier.MEDIUM])
    for name in [lead, *pool.values(), *(n for chain in fallbacks.values() for n in chain)]:
        if name not in models:
            raise ConfigError(f"Model {name!r} is referenced but not defined in 'models'")

    retry_raw = data.get("retry") or {}
    cache_raw = data.get("cache") or {}
    ledger_raw = data.get("ledger") or {}
    history_raw = data.get("history") or {}
    state_dir = os.environ.get(STATE_DIR_ENV) or ledger_raw.get("state_dir")

    try:
        return Settings(
            models=models,
            pool=pool,
            lead=lead,
            fallbacks=fallbacks,
            enable_fallback=bool(data.get("enable_fallback", True)),
            retry=RetryPolicy(**retry_raw),
            cache=CacheSettings(**cache_raw),
            ledger=LedgerSettings(
                state_dir=Path(state_dir).expanduser() if state_dir else DEFAULT_STATE_DIR,
                cleanup_days=float(ledger_raw.get("cleanup_days", 7)),
            ),
            history=HistorySettings(
                enabled=bool(history_raw.get("enabled", True)),
                history_dir=Path(history_raw["history_dir"]).expanduser()
                if history_raw.get("history_dir")
                else DEFAULT_HISTORY_DIR,
                keep_recent=int(history_raw.get("keep_recent", 100)),
            ),
        )
    except TypeError as e:
        raise ConfigError(f"Invalid setting: {e}") from e


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from *path*, ``$TASKTEAM_CONFIG``, or the default location.

    A missing default file yields the built-in defaults; a missing explicit
    file is an error.
    """
    explicit = path or os.environ.get(CONFIG_ENV)
    config_path = Path(explicit).expanduser() if explicit else DEFAULT_CONFIG_PATH

    if not config_path.exists():
        if explicit:
            raise ConfigError(f"Config file not found: {config_path}")
        logger.debug("No config at %s, using defaults", config_path)
        return parse_settings({})

    try:
        data = yaml.safe_load(config_path.read_text()) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{config_path} must contain a mapping")
    return parse_settings(data)
