"""Engine and session configuration."""

from typing import Annotated, Any

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from research_fetch.exceptions import ConfigurationError

ENV_PREFIX = "RESEARCH_"
MAX_ITERATIONS_LIMIT = 10

DEFAULT_EXCLUDED_DOMAINS = ["google.com"]
DEFAULT_DISALLOWED_URL_PREFIXES = ["google.com/search", "google.com/url"]

# Environment values for these are comma-separated, not JSON
CsvList = Annotated[list[str], NoDecode]


class EngineConfig(BaseSettings):
    """Limits and timeouts for the external collaborators of one orchestrator.

    Each field can be set with a ``RESEARCH_<FIELD>`` environment variable.
    """

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, extra="ignore")

    batch_size: int = Field(default=2, ge=1, le=10, description="Concurrent fetches per batch")
    inter_batch_delay_ms: int = Field(default=2000, ge=0, description="Pause between fetch batches")
    inter_target_delay_ms: int = Field(default=0, ge=0, description="Pause between search calls for targets")
    per_fetch_timeout_ms: int = Field(default=30_000, ge=1, description="Timeout of one content extraction call")
    search_timeout_ms: int = Field(default=15_000, ge=1, description="Timeout of one search call")
    refinement_timeout_ms: int = Field(default=60_000, ge=1, description="Timeout of one refinement call")
    rate_limiter_window_ms: int = Field(default=60_000, ge=1, description="Sliding window of the fetch limiter")
    max_calls_per_window: int = Field(default=10, ge=1, description="Content extraction calls per window")
    rate_limit_max_waits: int = Field(
        default=3,
        ge=0,
        description="Times a URL denied by the fetch limiter waits for the window before it is dropped",
    )
    max_retries: int = Field(default=2, ge=0, le=10, description="Retries after the first attempt")
    retry_base_delay_ms: int = Field(default=1000, ge=0, description="Backoff base, doubled on each retry")
    max_urls_per_target: int = Field(default=3, ge=1, description="URLs fetched per search target")
    search_results_per_query: int = Field(default=10, ge=1, le=100, description="Results requested per search")
    formats: CsvList = Field(default_factory=lambda: ["markdown"], min_length=1)
    country_codes: CsvList = Field(
        default_factory=list,
        description="Extra TLDs that make a target domain-like, e.g. 'uk', '.de'",
    )
    excluded_domains: CsvList = Field(
        default_factory=lambda: list(DEFAULT_EXCLUDED_DOMAINS),
        description="Hosts ranked after all other search results",
    )
    disallowed_url_prefixes: CsvList = Field(
        default_factory=lambda: list(DEFAULT_DISALLOWED_URL_PREFIXES),
        description="host+path prefixes that are never fetched (search result and redirect pages)",
    )
    fallback_sources: CsvList = Field(
        default_factory=list,
        description="URLs tried when a free-text query resolves to nothing",
    )

    @field_validator(
        "formats", "country_codes", "excluded_domains", "disallowed_url_prefixes", "fallback_sources", mode="before"
    )
    @classmethod
    def _split_csv(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("country_codes")
    @classmethod
    def _normalize_country_codes(cls, value: list[str]) -> list[str]:
        return [f".{code.strip().lstrip('.').lower()}" for code in value if code.strip()]

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Build a config from RESEARCH_* environment variables over the defaults.

        Raises:
            ConfigurationError: Naming the first variable that failed validation.
        """
        try:
            return cls()
        except ValidationError as e:
            setting = ".".join(str(part) for part in e.errors()[0]["loc"])
            raise ConfigurationError(setting=f"{ENV_PREFIX}{setting.upper()}", reason=str(e)) from e


class ResearchParams(BaseModel):
    """Parameters of one research session."""

    max_iterations: int = Field(
        default=2, ge=1, le=MAX_ITERATIONS_LIMIT, description="Rounds before the session is exhausted"
    )
    max_results_total: int = Field(default=20, ge=1, description="Cap on results accumulated in the session")
    research_goals: list[str] = Field(default_factory=list, description="Information goals for refinement")
    date_window: str | None = Field(
        default=None,
        description="Free-text date range appended to search queries",
        examples=["2024"],
    )
    research_context: str | None = Field(
        default=None,
        description="Free-text domain hint appended to search queries",
        examples=["PKI industry"],
    )
    session_timeout_ms: int | None = Field(
        default=None,
        ge=1,
        description="Whole-session timeout; behaves like cancel() when it fires",
    )
