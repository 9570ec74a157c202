"""Mentat: a coding agent confined to one workspace directory.

Library entry points: Session drives the conversation, ToolRegistry and
PathValidator provide the sandboxed file tools, AnthropicClient talks to
the model service.
"""

from .client import AnthropicClient
from .errors import AgentError, ConfigError, ModelServiceError
from .sandbox import PathValidator, PathValidationError
from .session import Result, Session
from .tools import ToolRegistry

__all__ = [
    "AgentError",
    "AnthropicClient",
    "ConfigError",
    "ModelServiceError",
    "PathValidationError",
    "PathValidator",
    "Result",
    "Session",
    "ToolRegistry",
]
