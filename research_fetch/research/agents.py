"""PydanticAI agents for planning, refining and summarizing research."""

import os
from functools import lru_cache
from typing import Any

from pydantic_ai import Agent

from research_fetch.models import RefinementResult, ResearchPlan, ResearchSummary

DEFAULT_PLAN_MODEL = os.getenv("RESEARCH_PLAN_MODEL", "anthropic:claude-sonnet-4-5")
DEFAULT_REFINEMENT_MODEL = os.getenv("RESEARCH_REFINEMENT_MODEL", "anthropic:claude-sonnet-4-5")
DEFAULT_SUMMARY_MODEL = os.getenv("RESEARCH_SUMMARY_MODEL", "anthropic:claude-sonnet-4-5")


def create_plan_agent(model: Any = DEFAULT_PLAN_MODEL) -> Agent[None, ResearchPlan]:
    """Uncached factory - use with TestModel for tests."""
    return Agent(
        model,
        instructions="""You are a research planning expert. Given a question, create a
        structured research plan whose search focus can be fetched directly.
        Your plan should:
        - State the intent of the question in one sentence
        - Give at most 8 search targets, preferring direct URLs of authoritative
          pages, bare domains, and site: queries over generic search phrases
        - Use specific search queries only when no source is known
        - List the concrete information goals the research must answer
        - Capture industry, company names and date range as context
        Copy the question verbatim into original_question.""",
        output_type=ResearchPlan,
        instrument=True,
        name="plan_agent",
    )


@lru_cache(maxsize=1)
def get_plan_agent(model: str = DEFAULT_PLAN_MODEL) -> Agent[None, ResearchPlan]:
    """Cached getter for production."""
    return create_plan_agent(model)


def create_refinement_agent(model: Any = DEFAULT_REFINEMENT_MODEL) -> Agent[None, RefinementResult]:
    """Uncached factory - use with TestModel for tests."""
    return Agent(
        model,
        instructions="""You are a research analyst reviewing one round of web research.
        Given the searched targets, the extracted sources and the research goals:
        - Assess which goals the sources answer and which gaps remain
        - Propose improved targets for the next round: direct URLs, domains or
          site: queries that are likely to fill the gaps
        - Do not repeat targets that were already searched
        - Return an empty improved_targets list when the goals are answered
        - Give one priority (high, medium, low) per improved target
        - Say what to extract from the next round's sources
        Stay grounded in the provided sources.""",
        output_type=RefinementResult,
        instrument=True,
        name="refinement_agent",
    )


@lru_cache(maxsize=1)
def get_refinement_agent(model: str = DEFAULT_REFINEMENT_MODEL) -> Agent[None, RefinementResult]:
    """Cached getter for production."""
    return create_refinement_agent(model)


def create_summary_agent(model: Any = DEFAULT_SUMMARY_MODEL) -> Agent[None, ResearchSummary]:
    """Uncached factory - use with TestModel for tests."""
    return Agent(
        model,
        instructions="""You are a research synthesizer. Answer the original question
        from the sources gathered across all research rounds.
        Your answer should:
        - Address every information goal, saying plainly when one is not answered
        - Cite the URLs the answer relies on in sources
        - Give a confidence score (0.0-1.0) reflecting source coverage and agreement
        Do not invent information. Stay grounded in the provided sources.""",
        output_type=ResearchSummary,
        instrument=True,
        name="summary_agent",
    )


@lru_cache(maxsize=1)
def get_summary_agent(model: str = DEFAULT_SUMMARY_MODEL) -> Agent[None, ResearchSummary]:
    """Cached getter for production."""
    return create_summary_agent(model)


def clear_agent_cache() -> None:
    """Clear all agent caches."""
    get_plan_agent.cache_clear()
    get_refinement_agent.cache_clear()
    get_summary_agent.cache_clear()
