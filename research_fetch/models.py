"""Pydantic models for the research fetch engine."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TargetKind(str, Enum):
    """How a search target string is turned into URLs."""

    DIRECT_URL = "direct_url"
    DOMAIN = "domain"
    SITE_QUERY = "site_query"
    FREE_TEXT = "free_text"


class SessionState(str, Enum):
    """States of the research iteration state machine."""

    IDLE = "idle"
    RESOLVING = "resolving"
    FETCHING = "fetching"
    REVIEWING = "reviewing"
    DONE = "done"
    EXHAUSTED = "exhausted"
    CANCELED = "canceled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset({SessionState.DONE, SessionState.EXHAUSTED, SessionState.CANCELED, SessionState.FAILED})


class SearchTarget(BaseModel):
    """A classified search target."""

    model_config = ConfigDict(frozen=True)

    text: str = Field(
        min_length=1,
        description="Target string as given by the planner or refinement collaborator",
        examples=["site:conferenceindex.org identity management 2024"],
    )
    kind: TargetKind = Field(description="Classification of the target string")


class ResolvedURL(BaseModel):
    """A normalized URL tagged with the search target it came from."""

    model_config = ConfigDict(frozen=True)

    url: str = Field(description="Normalized absolute URL", examples=["https://example.com/events"])
    source_target: str = Field(description="Original search target string")


class ScrapingResult(BaseModel):
    """Extracted content for one successfully fetched URL."""

    model_config = ConfigDict(frozen=True)

    url: str = Field(description="Normalized URL that was fetched")
    content: str = Field(min_length=1, description="Extracted page content (markdown)")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Page metadata reported by the extractor")
    source_target: str = Field(description="Search target that led to this URL")
    fetched_at: datetime = Field(default_factory=utc_now, description="When the content was fetched (UTC)")


class RefinementRequest(BaseModel):
    """Payload handed to the refinement collaborator after each round."""

    search_targets: list[str] = Field(description="Targets researched in the round under review")
    current_results: list[ScrapingResult] = Field(
        default_factory=list, description="All results accumulated in the session so far"
    )
    research_goals: list[str] = Field(default_factory=list, description="Information goals of the research")
    iteration: int = Field(ge=1, description="1-based number of the round under review")
    context: str | None = Field(default=None, description="Free-text domain hint for the research")


class RefinementResult(BaseModel):
    """Analysis of a round and the targets proposed for the next one."""

    analysis: str = Field(
        description="Assessment of the gathered results and remaining information gaps",
        examples=["Event listings cover 2024 only; vendor announcements for Q1 2025 are missing."],
    )
    improved_targets: list[str] = Field(
        default_factory=list,
        description="Next round's search targets; empty when research is complete",
        examples=[["site:eventbrite.com PKI conference 2025", "https://www.entrust.com/about/events/"]],
    )
    extraction_focus: str | None = Field(
        default=None,
        description="What to look for in the next round's sources",
        examples=["Event names, dates, and locations"],
    )
    search_priority: list[str] = Field(
        default_factory=list,
        description="Priority label per improved target (high, medium, low)",
        examples=[["high", "medium"]],
    )


class ResearchIteration(BaseModel):
    """Record of one resolve, fetch and refine round."""

    iteration: int = Field(ge=1, description="1-based round number")
    targets: list[SearchTarget] = Field(description="Targets researched in this round")
    results: list[ScrapingResult] = Field(default_factory=list, description="Results gathered in this round")
    analysis: str | None = Field(default=None, description="Refinement analysis of this round")
    extraction_focus: str | None = Field(default=None, description="Extraction focus proposed by refinement")
    improved_targets: list[str] = Field(default_factory=list, description="Targets proposed for the next round")


class ResearchOutcome(BaseModel):
    """Final state of a research session."""

    state: SessionState = Field(description="Terminal state reached by the session")
    results: list[ScrapingResult] = Field(default_factory=list, description="All accumulated results")
    iterations: list[ResearchIteration] = Field(default_factory=list, description="Ordered round history")
    cancel_reason: str | None = Field(default=None, description="Why the session was canceled, if it was")
    duration_ms: int = Field(default=0, ge=0, description="Wall-clock session duration (milliseconds)")

    @field_validator("state")
    @classmethod
    def _state_is_terminal(cls, value: SessionState) -> SessionState:
        if not value.is_terminal:
            raise ValueError(f"session outcome needs a terminal state, got {value.value!r}")
        return value

    def results_by_target(self) -> dict[str, list[ScrapingResult]]:
        """Group results by the search target they originated from."""
        grouped: dict[str, list[ScrapingResult]] = {}
        for result in self.results:
            grouped.setdefault(result.source_target, []).append(result)
        return grouped


# --- Planning and summary collaborators ---


class ResearchPlan(BaseModel):
    """Structured research plan produced from a free-form question."""

    intent: str = Field(
        description="Concise summary of what the user wants to know",
        examples=["Identify the industry events a competitor attended over the past year"],
    )
    search_focus: list[str] = Field(
        min_length=1,
        max_length=8,
        description="1-8 search targets: direct URLs, domains, site: queries or specific search queries",
        examples=[["https://www.entrust.com/about/events/", "site:conferenceindex.org PKI 2024"]],
    )
    information_goals: list[str] = Field(
        default_factory=list,
        description="Specific pieces of information the research should obtain",
        examples=[["Event names and dates", "Speaking slots and booth presence"]],
    )
    original_question: str = Field(description="The question exactly as asked")
    context: str = Field(
        default="",
        description="Industry, company names and date range that sharpen search relevance",
        examples=["PKI / digital identity industry, 2024"],
    )


class ResearchSummary(BaseModel):
    """Final answer synthesized from all research iterations."""

    final_answer: str = Field(description="Answer to the original question grounded in the gathered sources")
    confidence: float = Field(ge=0.0, le=1.0, description="Confidence in the answer from 0.0 to 1.0")
    sources: list[str] = Field(default_factory=list, description="URLs the answer relies on")


class PhaseTimings(BaseModel):
    """Timing metrics for each workflow phase."""

    planning_ms: int = Field(ge=0, description="Time spent creating the research plan (milliseconds)")
    research_ms: int = Field(ge=0, description="Time spent in resolve/fetch/refine rounds (milliseconds)")
    summary_ms: int = Field(ge=0, description="Time spent summarizing the research (milliseconds)")
    total_ms: int = Field(ge=0, description="Total workflow execution time (milliseconds)")


class ResearchResult(BaseModel):
    """Complete result of a research workflow run."""

    question: str = Field(min_length=1, description="Original research question")
    plan: ResearchPlan = Field(description="Plan produced by the planning agent")
    outcome: ResearchOutcome = Field(description="Results and round history of the research session")
    summary: ResearchSummary = Field(description="Final synthesized answer")
    timings: PhaseTimings = Field(description="Performance metrics for each workflow phase")
