"""Tests for research engine exceptions."""

import pytest

from research_fetch.exceptions import (
    ConfigurationError,
    FetchError,
    FetchErrorKind,
    OperationCanceledError,
    OperationTimeoutError,
    PlanningError,
    RefinementError,
    ResearchEngineError,
    ResolutionError,
    SessionBusyError,
    SummaryError,
    UpstreamError,
    UpstreamRateLimitError,
)
from research_fetch.models import ResearchOutcome, SessionState


class TestResearchEngineError:
    """Tests for base ResearchEngineError."""

    def test__base_error__is_exception(self) -> None:
        error = ResearchEngineError("test message")
        assert isinstance(error, Exception)
        assert str(error) == "test message"

    @pytest.mark.parametrize(
        "error",
        [
            ConfigurationError(setting="SERPAPI_API_KEY", reason="missing"),
            PlanningError(question="q", reason="r"),
            UpstreamError("serpapi", "down"),
            UpstreamRateLimitError("firecrawl"),
            OperationTimeoutError("fetch", 100),
            OperationCanceledError("fetch"),
            ResolutionError(query="q", reason="r"),
            FetchError("https://a.com/", FetchErrorKind.TIMEOUT, "slow"),
            RefinementError(iteration=1, reason="r"),
            SummaryError(reason="r"),
            SessionBusyError("reset"),
        ],
    )
    def test__domain_errors__catchable_as_base(self, error: ResearchEngineError) -> None:
        with pytest.raises(ResearchEngineError):
            raise error


class TestPlanningError:
    """Tests for PlanningError."""

    def test__planning_error__stores_attributes(self) -> None:
        error = PlanningError(question="test question", reason="test reason")
        assert error.question == "test question"
        assert error.reason == "test reason"

    def test__planning_error__formats_message(self) -> None:
        error = PlanningError(question="PKI events", reason="model unavailable")
        assert str(error) == "Failed to create research plan for 'PKI events': model unavailable"


class TestUpstreamError:
    """Tests for UpstreamError and UpstreamRateLimitError."""

    def test__upstream_error__formats_message_with_status(self) -> None:
        error = UpstreamError("serpapi", "bad gateway", status_code=502)
        assert str(error) == "serpapi request failed (HTTP 502): bad gateway"

    @pytest.mark.parametrize(
        ("status_code", "retryable"),
        [(None, True), (500, True), (503, True), (400, False), (404, False)],
    )
    def test__upstream_error__retryable_defaults_from_status(self, status_code: int | None, retryable: bool) -> None:
        assert UpstreamError("serpapi", "x", status_code=status_code).retryable is retryable

    def test__upstream_error__explicit_retryable_wins(self) -> None:
        assert UpstreamError("serpapi", "x", status_code=500, retryable=False).retryable is False

    def test__rate_limit_error__is_retryable_429(self) -> None:
        error = UpstreamRateLimitError("firecrawl")
        assert isinstance(error, UpstreamError)
        assert error.status_code == 429
        assert error.retryable is True


class TestFetchError:
    """Tests for FetchError."""

    def test__fetch_error__stores_kind(self) -> None:
        error = FetchError("https://a.com/", FetchErrorKind.EMPTY_CONTENT, "no content")
        assert error.url == "https://a.com/"
        assert error.kind == FetchErrorKind.EMPTY_CONTENT

    def test__fetch_error__formats_message(self) -> None:
        error = FetchError("https://a.com/", FetchErrorKind.RATE_LIMITED, "window full")
        assert str(error) == "Failed to fetch 'https://a.com/' (rate_limited): window full"


class TestSessionErrors:
    """Tests for refinement, summary and session errors."""

    def test__refinement_error__carries_partial_outcome(self) -> None:
        outcome = ResearchOutcome(state=SessionState.FAILED)
        error = RefinementError(iteration=2, reason="timeout", outcome=outcome)
        assert error.outcome is outcome
        assert str(error) == "Failed to refine research after iteration 2: timeout"

    def test__summary_error__formats_message(self) -> None:
        assert str(SummaryError(reason="model unavailable")) == "Failed to summarize research: model unavailable"

    def test__session_busy_error__formats_message(self) -> None:
        assert str(SessionBusyError("reset")) == "Cannot reset while a research session is running"

    def test__timeout_and_cancel__format_messages(self) -> None:
        assert str(OperationTimeoutError("fetch", 30000)) == "fetch timed out after 30000ms"
        assert str(OperationCanceledError("search")) == "search was canceled"

    def test__configuration_error__formats_message(self) -> None:
        error = ConfigurationError(setting="SERPAPI_API_KEY", reason="environment variable is not set")
        assert error.setting == "SERPAPI_API_KEY"
        assert str(error) == "Invalid configuration for 'SERPAPI_API_KEY': environment variable is not set"
