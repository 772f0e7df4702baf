"""Exception taxonomy shared by the agent loop, providers and tools."""


class AgentError(Exception):
    """Raised by the agent loop or setup helpers for reportable runtime failures."""


class ConfigError(AgentError):
    """Raised for invalid configuration (missing credential, bad config file, etc.)."""


class ProviderError(AgentError):
    """Raised when an inference call fails: transport, HTTP status or response shape.

    status and body are kept when available so callers can show the raw
    provider reply.
    """

    def __init__(self, message: str, status: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status = status
        self.body = body


class ToolError(AgentError):
    """Base class for tool failures. Always recovered into a ToolResult."""


class ToolNotFoundError(ToolError):
    pass


class InvalidParameterError(ToolError):
    pass


class ToolIoError(ToolError):
    pass


class AmbiguousMarkerError(ToolError):
    """The start or end marker did not resolve to a single location."""


class MarkerNotFoundError(AmbiguousMarkerError):
    pass


class MarkerNotUniqueError(AmbiguousMarkerError):
    pass


class ContextMismatchError(ToolError):
    """The text around the markers did not match the expected context."""

    def __init__(self, message: str, side: str):
        super().__init__(message)
        self.side = side
