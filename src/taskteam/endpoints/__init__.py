"""Capability endpoints for the supported providers."""

from taskteam.endpoints.anthropic_endpoint import AnthropicEndpoint
from taskteam.endpoints.base import Endpoint, EndpointConfig
from taskteam.endpoints.openai_endpoint import OpenAIEndpoint
from taskteam.endpoints.registry import CapabilityRegistry, create_endpoint
from taskteam.endpoints.resilient import ResilientEndpoint, RetryPolicy

__all__ = [
    "AnthropicEndpoint",
    "CapabilityRegistry",
    "Endpoint",
    "EndpointConfig",
    "OpenAIEndpoint",
    "ResilientEndpoint",
    "RetryPolicy",
    "create_endpoint",
]
