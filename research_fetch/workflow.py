"""Research workflow: planning, orchestrated fetch rounds, summary."""

from time import perf_counter
from typing import Any

from pydantic_ai import Agent

from research_fetch.clients import ContentCollaborator, FirecrawlClient, SearchCollaborator, SerpApiClient
from research_fetch.config import EngineConfig, ResearchParams
from research_fetch.events import EventCallback, PhaseCompleteEvent, PhaseStartEvent, SSEEvent
from research_fetch.exceptions import PlanningError, SummaryError
from research_fetch.logging import bind_context_vars, get_logger, new_correlation_id
from research_fetch.models import PhaseTimings, ResearchOutcome, ResearchPlan, ResearchResult, ResearchSummary
from research_fetch.orchestrator import Refiner, ResearchOrchestrator
from research_fetch.research.agents import get_plan_agent, get_summary_agent
from research_fetch.research.refiner import AgentRefiner

log = get_logger("research_fetch.workflow")

SUMMARY_CONTENT_CHARS = 2000


def build_summary_prompt(question: str, plan: ResearchPlan, outcome: ResearchOutcome) -> str:
    sources = "\n\n".join(
        f"Source: {result.url}\nContent: {result.content[:SUMMARY_CONTENT_CHARS]}" for result in outcome.results
    )
    analyses = "\n".join(
        f"Round {iteration.iteration}: {iteration.analysis}" for iteration in outcome.iterations if iteration.analysis
    )
    return (
        f"Original question: {question}\n"
        f"Research plan: {plan.model_dump_json()}\n"
        f"Round analyses:\n{analyses or '(none)'}\n\n"
        f"Sources ({len(outcome.results)}):\n{sources or '(no sources found)'}\n\n"
        "Answer the original question based on these sources."
    )


async def run_research_workflow(
    question: str,
    *,
    plan_agent: Agent[Any, ResearchPlan] | None = None,
    summary_agent: Agent[Any, ResearchSummary] | None = None,
    refiner: Refiner | None = None,
    search_client: SearchCollaborator | None = None,
    content_client: ContentCollaborator | None = None,
    config: EngineConfig | None = None,
    params: ResearchParams | None = None,
    event_callback: EventCallback | None = None,
) -> ResearchResult:
    """Plan a question, research the plan's targets in rounds, and summarize.

    Args:
        question: Research question to investigate.
        plan_agent: Override default planning agent (for testing).
        summary_agent: Override default summary agent (for testing).
        refiner: Override the agent-backed refinement collaborator.
        search_client: Search collaborator; SerpAPI from the environment by default.
        content_client: Content collaborator; Firecrawl from the environment by default.
        config: Engine limits; read from RESEARCH_* environment variables by default.
        params: Session parameters. Goals and context default to the plan's.
        event_callback: Receives phase and research progress events.

    Returns:
        ResearchResult with plan, research outcome, summary and timings.

    Raises:
        ConfigurationError: When a collaborator setting is missing or invalid.
        PlanningError: When plan creation fails.
        RefinementError: When a research round cannot be refined.
        SummaryError: When the final summary fails.
    """
    bind_context_vars(correlation_id=new_correlation_id())

    _plan_agent = plan_agent or get_plan_agent()
    _summary_agent = summary_agent or get_summary_agent()
    _refiner = refiner or AgentRefiner()
    _search_client = search_client or SerpApiClient.from_env()
    _content_client = content_client or FirecrawlClient.from_env()
    _config = config or EngineConfig.from_env()

    async def _emit(event: SSEEvent) -> None:
        if event_callback is not None:
            await event_callback(event)

    workflow_start = perf_counter()
    log.info("workflow.started", question=question)

    # Phase 1: Planning
    await _emit(PhaseStartEvent(data={"phase": "planning"}))
    phase_start = perf_counter()
    try:
        plan_result = await _plan_agent.run(question)
        plan = plan_result.output
    except Exception as e:
        log.error("workflow.planning.failed", error=str(e))
        raise PlanningError(question=question, reason=str(e)) from e
    planning_ms = int((perf_counter() - phase_start) * 1000)
    log.info("workflow.planning.completed", duration_ms=planning_ms, search_focus=len(plan.search_focus))
    await _emit(
        PhaseCompleteEvent(
            data={
                "phase": "planning",
                "duration_ms": planning_ms,
                "output_summary": {"search_focus": len(plan.search_focus), "goals": len(plan.information_goals)},
            }
        )
    )

    # Phase 2: Research rounds
    await _emit(PhaseStartEvent(data={"phase": "research"}))
    phase_start = perf_counter()
    session_params = params or ResearchParams()
    updates: dict[str, Any] = {}
    if not session_params.research_goals:
        updates["research_goals"] = list(plan.information_goals)
    if session_params.research_context is None and plan.context:
        updates["research_context"] = plan.context
    session_params = session_params.model_copy(update=updates)

    orchestrator = ResearchOrchestrator(_search_client, _content_client, _refiner, _config)
    if event_callback is not None:
        orchestrator.subscribe(event_callback)
    outcome = await orchestrator.run(plan.search_focus, session_params)
    research_ms = int((perf_counter() - phase_start) * 1000)
    log.info(
        "workflow.research.completed",
        duration_ms=research_ms,
        state=outcome.state.value,
        rounds=len(outcome.iterations),
        results=len(outcome.results),
    )
    await _emit(
        PhaseCompleteEvent(
            data={
                "phase": "research",
                "duration_ms": research_ms,
                "output_summary": {
                    "state": outcome.state.value,
                    "rounds": len(outcome.iterations),
                    "results": len(outcome.results),
                },
            }
        )
    )

    # Phase 3: Summary
    await _emit(PhaseStartEvent(data={"phase": "summary"}))
    phase_start = perf_counter()
    try:
        summary_result = await _summary_agent.run(build_summary_prompt(question, plan, outcome))
        summary = summary_result.output
    except Exception as e:
        log.error("workflow.summary.failed", error=str(e))
        raise SummaryError(reason=str(e)) from e
    summary_ms = int((perf_counter() - phase_start) * 1000)
    log.info("workflow.summary.completed", duration_ms=summary_ms, confidence=summary.confidence)
    await _emit(
        PhaseCompleteEvent(
            data={
                "phase": "summary",
                "duration_ms": summary_ms,
                "output_summary": {"confidence": summary.confidence, "sources": len(summary.sources)},
            }
        )
    )

    total_ms = int((perf_counter() - workflow_start) * 1000)
    log.info("workflow.completed", total_ms=total_ms)

    return ResearchResult(
        question=question,
        plan=plan,
        outcome=outcome,
        summary=summary,
        timings=PhaseTimings(
            planning_ms=planning_ms,
            research_ms=research_ms,
            summary_ms=summary_ms,
            total_ms=total_ms,
        ),
    )
