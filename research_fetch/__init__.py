"""Research Fetch - iterative web research with rate-limited content extraction"""

__version__ = "0.1.0"

from research_fetch.classifier import classify, classify_target
from research_fetch.clients import CrawlRequest, CrawlResponse, FirecrawlClient, SearchResponse, SerpApiClient
from research_fetch.config import EngineConfig, ResearchParams
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
from research_fetch.models import (
    PhaseTimings,
    RefinementRequest,
    RefinementResult,
    ResearchIteration,
    ResearchOutcome,
    ResearchPlan,
    ResearchResult,
    ResearchSummary,
    ResolvedURL,
    ScrapingResult,
    SearchTarget,
    SessionState,
    TargetKind,
)
from research_fetch.orchestrator import Refiner, ResearchOrchestrator
from research_fetch.research import AgentRefiner, clear_agent_cache
from research_fetch.server import get_app
from research_fetch.workflow import run_research_workflow

__all__ = [
    # Models
    "TargetKind",
    "SessionState",
    "SearchTarget",
    "ResolvedURL",
    "ScrapingResult",
    "RefinementRequest",
    "RefinementResult",
    "ResearchIteration",
    "ResearchOutcome",
    "ResearchPlan",
    "ResearchSummary",
    "PhaseTimings",
    "ResearchResult",
    # Configuration
    "EngineConfig",
    "ResearchParams",
    # Classification
    "classify",
    "classify_target",
    # Collaborators
    "SerpApiClient",
    "FirecrawlClient",
    "SearchResponse",
    "CrawlRequest",
    "CrawlResponse",
    "Refiner",
    "AgentRefiner",
    "clear_agent_cache",
    # Orchestration
    "ResearchOrchestrator",
    # Exceptions
    "ResearchEngineError",
    "ConfigurationError",
    "PlanningError",
    "UpstreamError",
    "UpstreamRateLimitError",
    "OperationTimeoutError",
    "OperationCanceledError",
    "ResolutionError",
    "FetchError",
    "FetchErrorKind",
    "RefinementError",
    "SummaryError",
    "SessionBusyError",
    # Workflow
    "run_research_workflow",
    # Server
    "get_app",
]
