"""Tests for engine and session configuration."""

import pytest
from pydantic import ValidationError

from research_fetch.config import EngineConfig, ResearchParams
from research_fetch.exceptions import ConfigurationError


class TestEngineConfig:
    """Tests for EngineConfig."""

    def test__defaults__match_documented_values(self) -> None:
        config = EngineConfig()
        assert config.batch_size == 2
        assert config.inter_batch_delay_ms == 2000
        assert config.per_fetch_timeout_ms == 30_000
        assert config.max_calls_per_window == 10
        assert config.rate_limiter_window_ms == 60_000
        assert config.max_retries == 2
        assert config.formats == ["markdown"]
        assert config.excluded_domains == ["google.com"]
        assert config.disallowed_url_prefixes == ["google.com/search", "google.com/url"]

    def test__country_codes__normalized_to_dotted_lowercase(self) -> None:
        assert EngineConfig(country_codes=["UK", ".de", " "]).country_codes == [".uk", ".de"]

    def test__batch_size__must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            EngineConfig(batch_size=0)

    def test__from_env__reads_prefixed_variables(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RESEARCH_BATCH_SIZE", "3")
        monkeypatch.setenv("RESEARCH_INTER_BATCH_DELAY_MS", "500")
        monkeypatch.setenv("RESEARCH_FALLBACK_SOURCES", "https://a.com, https://b.com")
        monkeypatch.setenv("RESEARCH_PLAN_MODEL", "test")

        config = EngineConfig.from_env()

        assert config.batch_size == 3
        assert config.inter_batch_delay_ms == 500
        assert config.fallback_sources == ["https://a.com", "https://b.com"]
        assert config.max_retries == 2

    def test__from_env__invalid_value_raises_configuration_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RESEARCH_BATCH_SIZE", "many")
        with pytest.raises(ConfigurationError) as exc_info:
            EngineConfig.from_env()
        assert exc_info.value.setting == "RESEARCH_BATCH_SIZE"

    def test__from_env__defaults_to_process_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RESEARCH_MAX_URLS_PER_TARGET", "5")
        assert EngineConfig.from_env().max_urls_per_target == 5


class TestResearchParams:
    """Tests for ResearchParams."""

    def test__defaults(self) -> None:
        params = ResearchParams()
        assert params.max_iterations == 2
        assert params.max_results_total == 20
        assert params.session_timeout_ms is None

    @pytest.mark.parametrize("value", [0, 11])
    def test__max_iterations__bounded(self, value: int) -> None:
        with pytest.raises(ValidationError):
            ResearchParams(max_iterations=value)


class TestEngineConfigEnvironment:
    """Tests for environment-driven settings."""

    def test__country_codes__read_as_csv_and_normalized(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RESEARCH_COUNTRY_CODES", "UK, .de")
        assert EngineConfig().country_codes == [".uk", ".de"]

    def test__explicit_arguments__override_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RESEARCH_BATCH_SIZE", "5")
        assert EngineConfig(batch_size=1).batch_size == 1

    def test__rate_limit_max_waits__defaults_to_three(self) -> None:
        assert EngineConfig().rate_limit_max_waits == 3
