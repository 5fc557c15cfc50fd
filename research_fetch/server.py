"""FastAPI application for the research fetch service."""

import asyncio
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field, ValidationError

from research_fetch import __version__
from research_fetch.events import CompleteEvent, ErrorEvent, HeartbeatEvent, SSEEvent, SSEEventType
from research_fetch.exceptions import ResearchEngineError
from research_fetch.models import ResearchResult
from research_fetch.workflow import run_research_workflow

log = structlog.get_logger("research_fetch.server")

# SSE Configuration
HEARTBEAT_INTERVAL = 30  # seconds
MAX_DURATION = 600  # seconds
MAX_QUEUE_SIZE = 100


# --- Request/Response schemas ---


class ResearchRequest(BaseModel):
    """Incoming research request."""

    question: str = Field(
        min_length=1,
        max_length=1000,
        description="Research question to investigate (1-1000 characters)",
        examples=["Which industry events did Entrust attend in 2024?"],
    )


class ErrorResponse(BaseModel):
    """Structured error response."""

    error: str = Field(
        description="Error type (PlanningError, RefinementError, SummaryError, ConfigurationError, ValidationError, InternalServerError)",
        examples=["RefinementError"],
    )
    detail: str = Field(
        description="User-friendly error message explaining what went wrong",
        examples=["Unable to refine research. Please try again."],
    )


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service health status", examples=["ok"])
    version: str = Field(
        default="",
        description="Service version (only included in /health endpoint)",
        examples=["0.1.0"],
    )


# --- Exception handlers ---

# Map domain exception types to user-friendly messages
_SAFE_ERROR_MESSAGES: dict[str, str] = {
    "PlanningError": "Unable to create research plan. Please try a different question.",
    "RefinementError": "Unable to refine research. Please try again.",
    "SummaryError": "Unable to summarize research. Please try again.",
    "ConfigurationError": "Research service is not configured correctly.",
    "SessionBusyError": "A research session is already running. Please try again later.",
}


def _get_safe_error_message(exc: Exception) -> str:
    return _SAFE_ERROR_MESSAGES.get(type(exc).__name__, "An error occurred processing your request.")


async def _handle_engine_error(request: Request, exc: ResearchEngineError) -> JSONResponse:
    error_type = type(exc).__name__
    log.warning("request.engine_error", error_type=error_type, detail=str(exc))
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(error=error_type, detail=_get_safe_error_message(exc)).model_dump(),
    )


async def _handle_validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    log.warning("request.validation_error", detail=str(exc))
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(error="ValidationError", detail=str(exc)).model_dump(),
    )


async def _handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    log.exception("request.unexpected_error", error=str(exc))
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(error="InternalServerError", detail="An unexpected error occurred.").model_dump(),
    )


# --- App factory ---


def get_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="Research Fetch Service",
        description="""
Iterative web research: plan a question, fetch sources in rounds, summarize.

## Workflow

1. **Planning** - An agent turns the question into search targets and information goals
2. **Research** - Targets are resolved to URLs and fetched in rate-limited batches;
   after each round a refinement agent proposes the next targets
3. **Summary** - An agent answers the question from the gathered sources
        """,
        version=__version__,
    )

    application.add_exception_handler(ResearchEngineError, _handle_engine_error)  # type: ignore[arg-type]
    application.add_exception_handler(ValidationError, _handle_validation_error)  # type: ignore[arg-type]
    application.add_exception_handler(Exception, _handle_unexpected_error)

    @application.post(
        "/research",
        response_model=ResearchResult,
        status_code=status.HTTP_200_OK,
        summary="Execute Research Workflow",
        description="Plans the question, runs the research rounds and returns the summarized result.",
        tags=["Research"],
        response_description="Plan, research outcome, summary and timings",
        responses={
            422: {"description": "Planning, refinement, summary or configuration failed", "model": ErrorResponse},
            500: {"description": "Internal server error", "model": ErrorResponse},
        },
    )
    async def research(body: ResearchRequest) -> ResearchResult:
        return await run_research_workflow(body.question)

    @application.post(
        "/research/stream",
        response_class=StreamingResponse,
        responses={
            200: {
                "description": "Server-Sent Events stream of research progress",
                "content": {"text/event-stream": {"example": "event: round_started\ndata: {...}\n\n"}},
            },
            422: {"model": ErrorResponse},
        },
        summary="Execute research with streaming progress updates",
        description="""
Execute the research workflow with real-time progress updates via SSE.

**Event Types:**
- `phase_start` / `phase_complete`: planning, research and summary phases
- `session_started`, `round_started`, `target_resolved`, `target_failed`,
  `batch_completed`, `round_finished`, `session_finished`: research progress
- `heartbeat`: Keep-alive comment every 30s (`: keepalive`)
- `complete`: Final result with full ResearchResult
- `error`: Error occurred in specific phase

**Connection:** Closes after completion or a 10-minute timeout. Disconnecting cancels the research.
        """,
        tags=["Research"],
    )
    async def research_stream(request: Request, research_request: ResearchRequest) -> StreamingResponse:
        """Execute research workflow with SSE progress streaming."""

        async def event_generator() -> AsyncIterator[str]:
            event_queue: asyncio.Queue[SSEEvent] = asyncio.Queue(maxsize=MAX_QUEUE_SIZE)
            workflow_complete = asyncio.Event()
            current_phase = "planning"

            async def event_callback(event: SSEEvent) -> None:
                nonlocal current_phase
                if event.event == SSEEventType.PHASE_START:
                    current_phase = str(event.data.get("phase", current_phase))
                try:
                    await asyncio.wait_for(event_queue.put(event), timeout=5.0)
                except asyncio.TimeoutError:
                    log.warning("stream.event_queue_full", event_type=event.event.value)

            async def run_workflow_task() -> None:
                try:
                    result = await run_research_workflow(
                        research_request.question,
                        event_callback=event_callback,
                    )
                    await event_queue.put(CompleteEvent(data=result.model_dump(mode="json")))
                except Exception as e:
                    log.error("stream.workflow_error", error=str(e), phase=current_phase, exc_info=True)
                    await event_queue.put(
                        ErrorEvent(
                            data={
                                "error": _get_safe_error_message(e),
                                "error_type": e.__class__.__name__,
                                "phase": current_phase,
                            }
                        )
                    )
                finally:
                    workflow_complete.set()

            workflow_task = asyncio.create_task(run_workflow_task())

            loop = asyncio.get_running_loop()
            start_time = loop.time()
            next_heartbeat = start_time + HEARTBEAT_INTERVAL

            try:
                while not workflow_complete.is_set() or not event_queue.empty():
                    current_time = loop.time()
                    elapsed = current_time - start_time

                    if elapsed > MAX_DURATION:
                        log.warning("stream.timeout", elapsed=elapsed, max=MAX_DURATION)
                        workflow_task.cancel()
                        yield ErrorEvent(
                            data={
                                "error": "Research timeout - workflow exceeded 10 minutes",
                                "error_type": "TimeoutError",
                                "phase": current_phase,
                            }
                        ).format()
                        break

                    if await request.is_disconnected():
                        log.info("stream.client_disconnected", elapsed=elapsed)
                        workflow_task.cancel()
                        break

                    # Advance by a fixed interval so heartbeats do not drift
                    if current_time >= next_heartbeat:
                        yield HeartbeatEvent().format()
                        next_heartbeat += HEARTBEAT_INTERVAL

                    try:
                        event = await asyncio.wait_for(event_queue.get(), timeout=0.1)
                        yield event.format()
                    except asyncio.TimeoutError:
                        continue

            finally:
                workflow_task.cancel()
                try:
                    await asyncio.wait_for(workflow_task, timeout=10.0)
                except asyncio.CancelledError:
                    log.info("stream.workflow_cancelled")
                except asyncio.TimeoutError:
                    log.error("stream.workflow_cancellation_timeout")

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",
                "Connection": "keep-alive",
            },
        )

    @application.get(
        "/health",
        response_model=HealthResponse,
        status_code=status.HTTP_200_OK,
        summary="Health Check",
        description="Returns service status and version.",
        tags=["Health"],
    )
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", version=__version__)

    @application.get(
        "/health/liveness",
        response_model=HealthResponse,
        status_code=status.HTTP_200_OK,
        summary="Liveness Check",
        description="Returns 200 OK while the service is running and accepting requests.",
        tags=["Health"],
    )
    async def liveness() -> HealthResponse:
        return HealthResponse(status="alive")

    @application.get(
        "/health/readiness",
        response_model=HealthResponse,
        status_code=status.HTTP_200_OK,
        summary="Readiness Check",
        description="Returns 200 OK when the service can handle research requests.",
        tags=["Health"],
    )
    async def readiness() -> HealthResponse:
        return HealthResponse(status="ready")

    return application


app = get_app()
