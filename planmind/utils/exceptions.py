"""Error taxonomy shared across retrieval and orchestration.

Only ``CacheConsistencyError`` is meant to escape a conversation turn; the
others are caught at capability boundaries and turned into degraded but
coherent responses.
"""

from __future__ import annotations


class PlanMindError(Exception):
    """Base class for all PlanMind errors."""


class ClientDataValidationError(PlanMindError):
    """Malformed client data. Never retried; carries user-facing guidance."""

    def __init__(self, message: str, *, field: str | None = None, guidance: str = ""):
        super().__init__(message)
        self.field = field
        self.guidance = guidance or message


class TransientServiceError(PlanMindError):
    """Timeout or rate limit from an external service; retried with backoff."""

    def __init__(self, message: str, *, service: str = "unknown"):
        super().__init__(message)
        self.service = service


class SchemaViolationError(PlanMindError):
    """Structured model output failed validation against its schema."""

    def __init__(self, message: str, *, raw_output: str = ""):
        super().__init__(message)
        self.raw_output = raw_output


class ProviderError(PlanMindError):
    """Non-retryable failure reported by a model provider.

    Covers rejected requests such as an exceeded context window or invalid
    credentials. The provider message is kept on the chained cause only.
    """

    def __init__(self, message: str, *, service: str = "unknown"):
        super().__init__(message)
        self.service = service


class CacheConsistencyError(PlanMindError):
    """A version/value invariant was broken. Indicates a defect."""


# Exceptions raised by client libraries that count as transient.
TRANSIENT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    TransientServiceError,
    TimeoutError,
    ConnectionError,
)

# Failures a capability absorbs into a degraded response.
DEGRADABLE_EXCEPTIONS: tuple[type[BaseException], ...] = (
    TransientServiceError,
    SchemaViolationError,
    ProviderError,
    TimeoutError,
    ConnectionError,
)

__all__ = [
    "DEGRADABLE_EXCEPTIONS",
    "TRANSIENT_EXCEPTIONS",
    "CacheConsistencyError",
    "ClientDataValidationError",
    "PlanMindError",
    "ProviderError",
    "SchemaViolationError",
    "TransientServiceError",
]
