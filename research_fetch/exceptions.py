"""Domain-specific exceptions for the research fetch engine."""

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from research_fetch.models import ResearchOutcome


class ResearchEngineError(Exception):
    """Base exception for research engine errors."""


class ConfigurationError(ResearchEngineError):
    """Raised when a required setting is missing or invalid."""

    def __init__(self, setting: str, reason: str) -> None:
        self.setting = setting
        self.reason = reason
        super().__init__(f"Invalid configuration for '{setting}': {reason}")


class PlanningError(ResearchEngineError):
    """Raised when research plan creation fails."""

    def __init__(self, question: str, reason: str) -> None:
        self.question = question
        self.reason = reason
        super().__init__(f"Failed to create research plan for '{question}': {reason}")


class UpstreamError(ResearchEngineError):
    """Raised when an external collaborator call fails."""

    def __init__(
        self,
        service: str,
        reason: str,
        *,
        status_code: int | None = None,
        retryable: bool | None = None,
    ) -> None:
        self.service = service
        self.reason = reason
        self.status_code = status_code
        # Transport failures (no status) and 5xx responses are transient
        if retryable is None:
            retryable = status_code is None or status_code >= 500
        self.retryable = retryable
        status = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"{service} request failed{status}: {reason}")


class UpstreamRateLimitError(UpstreamError):
    """Raised when an external collaborator rejects a call with a rate limit."""

    def __init__(self, service: str, reason: str = "rate limit exceeded") -> None:
        super().__init__(service, reason, status_code=429, retryable=True)


class OperationTimeoutError(ResearchEngineError):
    """Raised when an operation exceeds its timeout. Never retried."""

    def __init__(self, operation: str, timeout_ms: int) -> None:
        self.operation = operation
        self.timeout_ms = timeout_ms
        super().__init__(f"{operation} timed out after {timeout_ms}ms")


class OperationCanceledError(ResearchEngineError):
    """Raised when a session cancellation interrupts an operation."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"{operation} was canceled")


class ResolutionError(ResearchEngineError):
    """Raised when a query cannot be resolved to URLs by the search collaborator."""

    def __init__(self, query: str, reason: str) -> None:
        self.query = query
        self.reason = reason
        super().__init__(f"Failed to resolve '{query}': {reason}")


class FetchErrorKind(str, Enum):
    """Reasons a single URL fetch can fail."""

    INVALID = "invalid"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    UPSTREAM_ERROR = "upstream_error"
    EMPTY_CONTENT = "empty_content"


class FetchError(ResearchEngineError):
    """Raised when content for a URL cannot be fetched."""

    def __init__(self, url: str, kind: FetchErrorKind, reason: str) -> None:
        self.url = url
        self.kind = kind
        self.reason = reason
        super().__init__(f"Failed to fetch '{url}' ({kind.value}): {reason}")


class RefinementError(ResearchEngineError):
    """Raised when the refinement collaborator fails.

    Results gathered before the failure stay available on ``outcome``.
    """

    def __init__(self, iteration: int, reason: str, outcome: "ResearchOutcome | None" = None) -> None:
        self.iteration = iteration
        self.reason = reason
        self.outcome = outcome
        super().__init__(f"Failed to refine research after iteration {iteration}: {reason}")


class SummaryError(ResearchEngineError):
    """Raised when research summary generation fails."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Failed to summarize research: {reason}")


class SessionBusyError(ResearchEngineError):
    """Raised when a session operation is attempted while research is running."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Cannot {operation} while a research session is running")
