"""Functional tests for the logger module."""

import json
import re
from typing import Any

import pytest
from pytest import LogCaptureFixture, MonkeyPatch

from research_fetch.logging import (
    HumanReadableFormatter,
    bind_context_vars,
    clear_context_fields,
    configure_structlog,
    get_context_vars,
    get_correlation_id,
    get_logger,
    new_correlation_id,
    session_log_context,
    unbind_context_vars,
)

# ============================================================================
# Helpers
# ============================================================================


def parse_log_json(caplog: LogCaptureFixture, index: int = 0) -> dict[str, Any]:
    try:
        return json.loads(caplog.records[index].message)
    except (json.JSONDecodeError, IndexError) as e:
        records = [r.message for r in caplog.records]
        raise AssertionError(f"Failed to parse log {index}: {e}. Records: {records}")


def assert_json_log_structure(log_data: dict[str, Any]) -> None:
    required_fields = {"timestamp", "level", "logger", "message", "context"}
    missing_fields = required_fields - log_data.keys()
    assert not missing_fields, f"Missing required fields: {missing_fields}"


@pytest.fixture(autouse=True)
def setup_logger():
    configure_structlog()
    yield
    clear_context_fields()


# ============================================================================
# Context Tests
# ============================================================================


def test__correlation_id__appears_in_logs(caplog: LogCaptureFixture):
    bind_context_vars(correlation_id="3f2a9c1d")

    get_logger("research_fetch.orchestrator").info("orchestrator.round.started", iteration=1)

    log_data = parse_log_json(caplog)
    assert log_data["extra"]["correlation_id"] == "3f2a9c1d"
    assert log_data["extra"]["iteration"] == 1


def test__correlation_id__propagates_across_loggers(caplog: LogCaptureFixture):
    bind_context_vars(correlation_id="propagate")

    get_logger("research_fetch.resolver").info("resolver.resolved")
    get_logger("research_fetch.fetcher").info("fetcher.fetched")
    get_logger("research_fetch.scheduler").info("scheduler.batch.completed")

    for i in range(3):
        assert parse_log_json(caplog, i)["extra"]["correlation_id"] == "propagate"


def test__context__isolates_between_sessions(caplog: LogCaptureFixture):
    bind_context_vars(correlation_id="session1", session_id="s-1")
    get_logger("handler").info("First session")

    clear_context_fields()

    bind_context_vars(correlation_id="session2")
    get_logger("handler").info("Second session")

    first_log = parse_log_json(caplog, 0)
    second_log = parse_log_json(caplog, 1)
    assert first_log["extra"]["session_id"] == "s-1"
    assert second_log["extra"]["correlation_id"] == "session2"
    assert "session_id" not in second_log["extra"]


def test__unbind_context_vars__removes_field():
    bind_context_vars(correlation_id="abc", session_id="s-1")
    unbind_context_vars("session_id")
    assert get_context_vars() == {"correlation_id": "abc"}
    assert get_correlation_id() == "abc"


def test__session_log_context__binds_session_as_its_own_correlation():
    with session_log_context("s-42"):
        assert get_context_vars() == {"correlation_id": "s-42", "session_id": "s-42"}
    assert get_context_vars() == {}


def test__session_log_context__keeps_outer_correlation(caplog: LogCaptureFixture):
    bind_context_vars(correlation_id="req-1")

    with session_log_context("s-42"):
        get_logger("research_fetch.orchestrator").info("orchestrator.session.started")

    log_data = parse_log_json(caplog)
    assert log_data["extra"]["correlation_id"] == "req-1"
    assert log_data["extra"]["session_id"] == "s-42"
    assert get_context_vars() == {"correlation_id": "req-1"}


def test__session_log_context__unbinds_when_block_raises():
    with pytest.raises(RuntimeError):
        with session_log_context("s-42"):
            raise RuntimeError("boom")
    assert "session_id" not in get_context_vars()


def test__get_correlation_id__defaults_to_unknown():
    assert get_correlation_id() == "unknown"


def test__new_correlation_id__is_short_and_unique():
    ids = {new_correlation_id() for _ in range(50)}
    assert len(ids) == 50
    assert all(len(value) == 8 for value in ids)


# ============================================================================
# Output Format Tests
# ============================================================================


def test__custom_fields__go_to_extra_section(caplog: LogCaptureFixture):
    get_logger("research_fetch.fetcher").warning("fetcher.rate_limited", url="https://example.com/", attempt=2)

    log_data = parse_log_json(caplog)

    assert_json_log_structure(log_data)
    assert log_data["context"] == "research"
    assert log_data["level"] == "warning"
    extra = log_data["extra"]
    assert extra["url"] == "https://example.com/"
    assert extra["attempt"] == 2
    assert not ({"timestamp", "level", "message", "logger", "context"} & extra.keys())


def test__json_output__renders_non_serializable_values(caplog: LogCaptureFixture):
    get_logger("test").info("set value", urls={"https://a.com/"})
    assert parse_log_json(caplog)["extra"]["urls"] == "{'https://a.com/'}"


@pytest.mark.parametrize(
    "testing,should_be_json",
    [
        (False, True),
        (True, False),
    ],
)
def test__output_format__changes_based_on_testing_flag(caplog: LogCaptureFixture, testing: bool, should_be_json: bool):
    configure_structlog(testing=testing)
    bind_context_vars(correlation_id="format-test")

    get_logger("format").info("Format test", field="value")

    log_message = caplog.records[0].message
    if should_be_json:
        log_data = parse_log_json(caplog)
        assert_json_log_structure(log_data)
        assert log_data["extra"]["correlation_id"] == "format-test"
    else:
        with pytest.raises(json.JSONDecodeError):
            json.loads(log_message)
        assert "Format test" in log_message
        assert "field=value" in log_message
        assert "[id:format-t]" in log_message
        # Shown once, as the id suffix only
        assert "correlation_id=" not in log_message


def test__human_readable_formatter__formats_complete_log(caplog: LogCaptureFixture):
    configure_structlog(testing=True)
    bind_context_vars(correlation_id="complete-test-789")

    get_logger("research_fetch.research.refiner").warning("refiner.completed", improved_targets=3)

    output = caplog.records[0].message
    assert "[WARNING]" in output
    assert "research.refiner:" in output
    assert "refiner.completed" in output
    assert "improved_targets=3" in output
    assert "[id:complete]" in output
    assert re.match(r"^\d{2}:\d{2}:\d{2}", output)


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("research_fetch.orchestrator", "orchestrator"),
        ("research_fetch.research.agents", "research.agents"),
        ("uvicorn.error", "uvicorn.error"),
    ],
)
def test__format_logger_name__strips_package_prefix(name: str, expected: str):
    assert HumanReadableFormatter().format_logger_name(name) == expected


def test__long_values__truncated_in_human_readable_output(caplog: LogCaptureFixture):
    configure_structlog(testing=True)
    very_long_value = "x" * 100

    get_logger("test").info("Long value test", long_field=very_long_value)

    output = caplog.records[0].message
    assert "long_field=" in output
    assert "..." in output
    assert very_long_value not in output


# ============================================================================
# Configuration Tests
# ============================================================================


def test__log_level__filters_messages(monkeypatch: MonkeyPatch, caplog: LogCaptureFixture):
    monkeypatch.setenv("LOGGING_LEVEL", "WARNING")
    configure_structlog()

    logger = get_logger("test")
    logger.debug("Should not appear")
    logger.info("Should not appear")
    logger.warning("Should appear")
    logger.error("Should appear")

    assert len(caplog.records) == 2


def test__invalid_log_level__defaults_to_info(monkeypatch: MonkeyPatch, caplog: LogCaptureFixture):
    monkeypatch.setenv("LOGGING_LEVEL", "INVALID")
    configure_structlog()

    logger = get_logger("test")
    logger.debug("Debug message")
    logger.info("Info message")

    assert len(caplog.records) == 1
    assert parse_log_json(caplog)["message"] == "Info message"


def test__research_log_level__takes_precedence(monkeypatch: MonkeyPatch, caplog: LogCaptureFixture):
    monkeypatch.setenv("RESEARCH_LOG_LEVEL", "ERROR")
    monkeypatch.setenv("LOGGING_LEVEL", "DEBUG")
    configure_structlog()

    logger = get_logger("test")
    logger.warning("Should not appear")
    logger.error("Should appear")

    assert len(caplog.records) == 1


def test__human_readable_formatter__shows_session_under_outer_correlation(caplog: LogCaptureFixture):
    configure_structlog(testing=True)
    bind_context_vars(correlation_id="request-1234", session_id="session-5678")

    get_logger("research_fetch.orchestrator").info("orchestrator.round.started")

    output = caplog.records[0].message
    assert output.endswith("[id:request- session:session-]")
    assert "session_id=" not in output
