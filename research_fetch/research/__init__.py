"""LLM collaborators for planning, refinement and summary."""

from research_fetch.research.agents import (
    clear_agent_cache,
    create_plan_agent,
    create_refinement_agent,
    create_summary_agent,
    get_plan_agent,
    get_refinement_agent,
    get_summary_agent,
)
from research_fetch.research.refiner import AgentRefiner, score_relevance

__all__ = [
    # Agent factories
    "create_plan_agent",
    "create_refinement_agent",
    "create_summary_agent",
    # Agent getters
    "get_plan_agent",
    "get_refinement_agent",
    "get_summary_agent",
    # Cache management
    "clear_agent_cache",
    # Refinement
    "AgentRefiner",
    "score_relevance",
]
