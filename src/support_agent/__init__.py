"""Grounded support agent package."""

from .agent.gateway import AgentError
from .config import AgentConfig, GatewayConfig, RetrievalConfig, TracingConfig

__all__ = ["AgentConfig", "AgentError", "GatewayConfig", "RetrievalConfig", "TracingConfig"]
