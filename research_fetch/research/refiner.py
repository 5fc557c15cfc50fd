"""Agent-backed refinement collaborator."""

import re
from collections.abc import Sequence
from typing import Any

from pydantic_ai import Agent

from research_fetch.logging import get_logger
from research_fetch.models import RefinementRequest, RefinementResult, ScrapingResult
from research_fetch.research.agents import get_refinement_agent

log = get_logger("research_fetch.research.refiner")

QUERY_WEIGHT = 0.6
GOALS_WEIGHT = 0.4
MIN_TERM_LENGTH = 4

_WORD = re.compile(r"\w+")


def _terms(text: str) -> list[str]:
    return [word for word in _WORD.findall(text.lower()) if len(word) >= MIN_TERM_LENGTH]


def _term_ratio(content: str, terms: Sequence[str]) -> float:
    if not terms:
        return 0.0
    return sum(1 for term in terms if term in content) / len(terms)


def score_relevance(content: str, query: str, goals: Sequence[str] = ()) -> float:
    """Keyword overlap score in [0, 1].

    The share of query terms found in the content weighs 0.6 and the share
    of goal terms 0.4. Only terms of four or more characters count.
    """
    text = content.lower()
    goal_terms = [term for goal in goals for term in _terms(goal)]
    return QUERY_WEIGHT * _term_ratio(text, _terms(query)) + GOALS_WEIGHT * _term_ratio(text, goal_terms)


class AgentRefiner:
    """Reviews a round with the refinement agent.

    Only the ``max_results`` most relevant results are sent, each with its
    content cut to ``max_content_chars``.
    """

    def __init__(
        self,
        agent: Agent[Any, RefinementResult] | None = None,
        *,
        max_results: int = 20,
        max_content_chars: int = 1000,
    ) -> None:
        self._agent = agent
        self.max_results = max_results
        self.max_content_chars = max_content_chars

    @property
    def agent(self) -> Agent[Any, RefinementResult]:
        return self._agent or get_refinement_agent()

    def rank(self, request: RefinementRequest) -> list[ScrapingResult]:
        query = " ".join(request.search_targets)
        scored = [
            (score_relevance(result.content, query, request.research_goals), position, result)
            for position, result in enumerate(request.current_results)
        ]
        scored.sort(key=lambda item: (-item[0], item[1]))
        return [result for _, _, result in scored[: self.max_results]]

    def build_prompt(self, request: RefinementRequest) -> str:
        sources = "\n\n".join(
            f"Source: {result.url}\nTarget: {result.source_target}\nContent: {result.content[: self.max_content_chars]}"
            for result in self.rank(request)
        )
        goals = "\n".join(f"- {goal}" for goal in request.research_goals) or "- (none given)"
        return (
            f"Research round: {request.iteration}\n"
            f"Searched targets: {', '.join(request.search_targets)}\n"
            f"Research goals:\n{goals}\n"
            f"Context: {request.context or 'none'}\n\n"
            f"Sources ({len(request.current_results)} gathered):\n{sources or '(no sources found)'}\n\n"
            "Analyze these results and propose improved targets for the next round."
        )

    async def refine(self, request: RefinementRequest) -> RefinementResult:
        result = await self.agent.run(self.build_prompt(request))
        refinement = result.output
        log.info(
            "refiner.completed",
            iteration=request.iteration,
            improved_targets=len(refinement.improved_targets),
        )
        return refinement
