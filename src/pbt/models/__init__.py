"""Convenience exports for coding-agent client implementations."""

from .agent_client import (
    AgentClient,
    AgentClientError,
    AgentConnectionError,
    AgentEmptyResponseError,
    AgentInvocationError,
    AgentRequest,
    AgentRetryError,
    AgentTimeoutError,
    AgentTransientError,
)
from .claude_cli import ClaudeCliClient

__all__ = [
    "AgentClient",
    "AgentClientError",
    "AgentConnectionError",
    "AgentEmptyResponseError",
    "AgentInvocationError",
    "AgentRequest",
    "AgentRetryError",
    "AgentTimeoutError",
    "AgentTransientError",
    "ClaudeCliClient",
]
