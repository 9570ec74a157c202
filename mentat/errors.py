"""Exception types shared by the agent loop, the client and the CLI."""


class AgentError(Exception):
    """Base class for failures reported to the user instead of a traceback."""


class ConfigError(AgentError):
    """Raised for invalid configuration (missing API key, bad base URL, etc.)."""


class ModelServiceError(AgentError):
    """Raised when a model-service call fails: transport, HTTP status or malformed body."""
