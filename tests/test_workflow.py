"""Tests for research workflow orchestration."""

from unittest.mock import AsyncMock, patch

import pytest
from pydantic_ai import Agent
from pydantic_ai.models.test import TestModel

from research_fetch.clients import CrawlRequest, CrawlResponse, SearchResponse
from research_fetch.config import EngineConfig, ResearchParams
from research_fetch.events import SSEEvent, SSEEventType
from research_fetch.exceptions import PlanningError, RefinementError, SummaryError
from research_fetch.models import (
    PhaseTimings,
    RefinementRequest,
    RefinementResult,
    ResearchOutcome,
    ResearchPlan,
    ResearchResult,
    ResearchSummary,
    SessionState,
)
from research_fetch.workflow import build_summary_prompt, run_research_workflow

# --- Fixture Factories ---


class FakeSearch:
    async def search(self, query: str, num_results: int) -> SearchResponse:
        return SearchResponse(organic_results=[])


class FakeContent:
    async def scrape(self, request: CrawlRequest) -> CrawlResponse:
        return CrawlResponse(success=True, content=f"Content of {request.url}")


class FakeRefiner:
    """Refinement collaborator that ends research after the first round."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.requests: list[RefinementRequest] = []

    async def refine(self, request: RefinementRequest) -> RefinementResult:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return RefinementResult(analysis="Sources cover the question.")


def _make_plan_agent(context: str = "PKI industry") -> Agent[None, ResearchPlan]:
    """Create test agent for planning phase."""
    plan = ResearchPlan(
        intent="Find events",
        search_focus=["example.com", "https://events.example.org/2024"],
        information_goals=["Event names", "Event dates"],
        original_question="test question",
        context=context,
    )
    return Agent(TestModel(custom_output_args=plan.model_dump()), output_type=ResearchPlan)


def _make_summary_agent() -> Agent[None, ResearchSummary]:
    """Create test agent for summary phase."""
    summary = ResearchSummary(final_answer="Two events found.", confidence=0.8, sources=["https://example.com/"])
    return Agent(TestModel(custom_output_args=summary.model_dump()), output_type=ResearchSummary)


def _config() -> EngineConfig:
    return EngineConfig(inter_batch_delay_ms=0, retry_base_delay_ms=0, max_retries=0)


async def _run(question: str = "test question", **overrides) -> ResearchResult:
    kwargs = {
        "plan_agent": _make_plan_agent(),
        "summary_agent": _make_summary_agent(),
        "refiner": FakeRefiner(),
        "search_client": FakeSearch(),
        "content_client": FakeContent(),
        "config": _config(),
    }
    kwargs.update(overrides)
    return await run_research_workflow(question, **kwargs)


# --- Tests ---


@pytest.mark.asyncio
async def test__full_pipeline__returns_research_result() -> None:
    result = await _run()

    assert isinstance(result, ResearchResult)
    assert result.question == "test question"
    assert result.plan.intent == "Find events"
    assert result.outcome.state == SessionState.DONE
    assert [r.url for r in result.outcome.results] == ["https://example.com/", "https://events.example.org/2024"]
    assert result.summary.final_answer == "Two events found."


@pytest.mark.asyncio
async def test__full_pipeline__returns_correct_timings() -> None:
    result = await _run()

    assert isinstance(result.timings, PhaseTimings)
    assert result.timings.planning_ms >= 0
    assert result.timings.research_ms >= 0
    assert result.timings.summary_ms >= 0
    assert result.timings.total_ms >= result.timings.planning_ms


@pytest.mark.asyncio
async def test__plan_goals_and_context__reach_refinement() -> None:
    refiner = FakeRefiner()

    await _run(refiner=refiner)

    assert refiner.requests[0].research_goals == ["Event names", "Event dates"]
    assert refiner.requests[0].context == "PKI industry"


@pytest.mark.asyncio
async def test__explicit_params__take_precedence_over_plan() -> None:
    refiner = FakeRefiner()
    params = ResearchParams(research_goals=["Speakers"], research_context="identity")

    await _run(refiner=refiner, params=params)

    assert refiner.requests[0].research_goals == ["Speakers"]
    assert refiner.requests[0].context == "identity"


@pytest.mark.asyncio
async def test__planning_failure__raises_planning_error() -> None:
    plan_agent = _make_plan_agent()
    plan_agent.run = AsyncMock(side_effect=RuntimeError("Plan failed"))

    with pytest.raises(PlanningError, match="Plan failed"):
        await _run(plan_agent=plan_agent)


@pytest.mark.asyncio
async def test__refinement_failure__propagates_with_partial_outcome() -> None:
    refiner = FakeRefiner(error=RuntimeError("model overloaded"))

    with pytest.raises(RefinementError) as exc_info:
        await _run(refiner=refiner)

    assert exc_info.value.outcome is not None
    assert exc_info.value.outcome.state == SessionState.FAILED
    assert len(exc_info.value.outcome.results) == 2


@pytest.mark.asyncio
async def test__summary_failure__raises_summary_error() -> None:
    summary_agent = _make_summary_agent()
    summary_agent.run = AsyncMock(side_effect=RuntimeError("Summary failed"))

    with pytest.raises(SummaryError, match="Summary failed"):
        await _run(summary_agent=summary_agent)


@pytest.mark.asyncio
async def test__event_callback__receives_phases_around_session_events() -> None:
    events: list[SSEEvent] = []

    async def _collect(event: SSEEvent) -> None:
        events.append(event)

    await _run(event_callback=_collect)

    phases = [(e.event, e.data["phase"]) for e in events if e.event in (SSEEventType.PHASE_START, SSEEventType.PHASE_COMPLETE)]
    assert phases == [
        (SSEEventType.PHASE_START, "planning"),
        (SSEEventType.PHASE_COMPLETE, "planning"),
        (SSEEventType.PHASE_START, "research"),
        (SSEEventType.PHASE_COMPLETE, "research"),
        (SSEEventType.PHASE_START, "summary"),
        (SSEEventType.PHASE_COMPLETE, "summary"),
    ]
    types = [e.event for e in events]
    assert types.index(SSEEventType.PHASE_START, 2) < types.index(SSEEventType.SESSION_STARTED)
    assert types.index(SSEEventType.SESSION_FINISHED) < types.index(SSEEventType.PHASE_COMPLETE, 3)


@pytest.mark.asyncio
async def test__default_collaborators__used_when_none_provided() -> None:
    with (
        patch("research_fetch.workflow.get_plan_agent", return_value=_make_plan_agent()) as mock_plan,
        patch("research_fetch.workflow.get_summary_agent", return_value=_make_summary_agent()) as mock_summary,
        patch("research_fetch.workflow.AgentRefiner", return_value=FakeRefiner()) as mock_refiner,
        patch("research_fetch.workflow.SerpApiClient.from_env", return_value=FakeSearch()) as mock_search,
        patch("research_fetch.workflow.FirecrawlClient.from_env", return_value=FakeContent()) as mock_content,
        patch("research_fetch.workflow.EngineConfig.from_env", return_value=_config()) as mock_config,
    ):
        await run_research_workflow("test question")

        mock_plan.assert_called_once()
        mock_summary.assert_called_once()
        mock_refiner.assert_called_once()
        mock_search.assert_called_once()
        mock_content.assert_called_once()
        mock_config.assert_called_once()


@pytest.mark.asyncio
async def test__custom_agents__override_defaults() -> None:
    with (
        patch("research_fetch.workflow.get_plan_agent") as mock_plan,
        patch("research_fetch.workflow.get_summary_agent") as mock_summary,
    ):
        await _run()

        mock_plan.assert_not_called()
        mock_summary.assert_not_called()


class TestBuildSummaryPrompt:
    """Tests for the summary prompt."""

    def test__no_results__marks_sources_missing(self) -> None:
        plan = ResearchPlan(intent="i", search_focus=["q"], original_question="q")
        prompt = build_summary_prompt("q", plan, ResearchOutcome(state=SessionState.DONE))

        assert "(no sources found)" in prompt
        assert "Round analyses:\n(none)" in prompt
