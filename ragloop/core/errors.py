"""
Application errors for the agentic loop and clean API error handling.

Only ConfigurationError, SchemaValidationError and ServiceUnavailableError end a
turn. TransientServiceError is contained inside the loop (fed back to the model
or treated as "no new knowledge"); StreamError keeps the partial answer.
"""


class AgentError(Exception):
    """Base class for errors raised while processing a user turn."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ServiceUnavailableError(AgentError):
    """Raised when a required service (LLM, vector store, embeddings API) is unavailable or misconfigured."""


class ConfigurationError(AgentError):
    """Raised when no search collection is selected for the session."""


class TransientServiceError(AgentError):
    """Raised when a search or generation call fails."""


class SchemaValidationError(AgentError):
    """Raised when structured evaluation output does not match the decision schema."""


class StreamError(AgentError):
    """Raised when the final answer stream fails part-way."""


class SessionBusyError(AgentError):
    """Raised when a session is already processing a message."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session {session_id!r} is already processing a message")


class HistoryConflictError(AgentError):
    """Raised when the session history changed between read and conditioned write."""

    def __init__(self, session_id: str, expected: int, actual: int) -> None:
        self.session_id = session_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"History for session {session_id!r} moved from version {expected} to {actual}"
        )
