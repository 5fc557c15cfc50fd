"""Typed progress events for research sessions, renderable as SSE."""

import json
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class SSEEventType(str, Enum):
    """Progress event types."""

    SESSION_STARTED = "session_started"
    ROUND_STARTED = "round_started"
    TARGET_RESOLVED = "target_resolved"
    TARGET_FAILED = "target_failed"
    BATCH_COMPLETED = "batch_completed"
    ROUND_FINISHED = "round_finished"
    SESSION_FINISHED = "session_finished"
    PHASE_START = "phase_start"
    PHASE_COMPLETE = "phase_complete"
    HEARTBEAT = "heartbeat"
    COMPLETE = "complete"
    ERROR = "error"


class SSEEvent(BaseModel):
    """Base progress event."""

    event: SSEEventType = Field(description="Event type identifier")
    data: dict[str, Any] = Field(description="Event payload data")

    def format(self) -> str:
        """Format as SSE message: 'event: type\\ndata: json\\n\\n'."""
        return f"event: {self.event.value}\ndata: {json.dumps(self.data, default=str)}\n\n"


EventCallback = Callable[[SSEEvent], Awaitable[None]]


class SessionStartedEvent(SSEEvent):
    event: SSEEventType = SSEEventType.SESSION_STARTED
    data: dict[str, Any] = Field(
        description="Session identifier and initial targets",
        examples=[{"session_id": "3f2a9c1d", "targets": ["example.com", "industry trends 2024"]}],
    )


class RoundStartedEvent(SSEEvent):
    event: SSEEventType = SSEEventType.ROUND_STARTED
    data: dict[str, Any] = Field(
        description="Round number and its targets",
        examples=[{"iteration": 1, "targets": ["example.com", "industry trends 2024"]}],
    )


class TargetResolvedEvent(SSEEvent):
    event: SSEEventType = SSEEventType.TARGET_RESOLVED
    data: dict[str, Any] = Field(
        description="Classification and URL count of one target",
        examples=[{"iteration": 1, "target": "industry trends 2024", "kind": "free_text", "url_count": 2}],
    )


class TargetFailedEvent(SSEEvent):
    """Non-fatal: the target is skipped and the round continues."""

    event: SSEEventType = SSEEventType.TARGET_FAILED
    data: dict[str, Any] = Field(
        description="Target that could not be resolved",
        examples=[{"iteration": 1, "target": "industry trends 2024", "error": "search unavailable"}],
    )


class BatchCompletedEvent(SSEEvent):
    event: SSEEventType = SSEEventType.BATCH_COMPLETED
    data: dict[str, Any] = Field(
        description="Fetch batch progress",
        examples=[{"iteration": 1, "batch": 1, "total_batches": 2, "succeeded": 1, "failed": 1, "accumulated": 1}],
    )


class RoundFinishedEvent(SSEEvent):
    event: SSEEventType = SSEEventType.ROUND_FINISHED
    data: dict[str, Any] = Field(
        description="Round result counts and refinement output",
        examples=[
            {
                "iteration": 1,
                "round_results": 2,
                "total_results": 2,
                "improved_targets": ["site:eventbrite.com PKI 2025"],
            }
        ],
    )


class SessionFinishedEvent(SSEEvent):
    event: SSEEventType = SSEEventType.SESSION_FINISHED
    data: dict[str, Any] = Field(
        description="Terminal state of the session",
        examples=[{"state": "exhausted", "rounds": 2, "total_results": 6}],
    )


class PhaseStartEvent(SSEEvent):
    """Emitted when a workflow phase begins."""

    event: SSEEventType = SSEEventType.PHASE_START
    data: dict[str, str] = Field(description="Phase identifier", examples=[{"phase": "planning"}])


class PhaseCompleteEvent(SSEEvent):
    """Emitted when a workflow phase completes."""

    event: SSEEventType = SSEEventType.PHASE_COMPLETE
    data: dict[str, Any] = Field(
        description="Phase completion details with duration and summary",
        examples=[{"phase": "planning", "duration_ms": 3500, "output_summary": {"search_focus": 5}}],
    )


class HeartbeatEvent(SSEEvent):
    """Keep-alive, formatted as an SSE comment so clients need no handler."""

    event: SSEEventType = SSEEventType.HEARTBEAT
    data: dict[str, Any] = Field(default_factory=dict, description="Empty data for heartbeat")

    def format(self) -> str:
        return ": keepalive\n\n"


class CompleteEvent(SSEEvent):
    """Emitted when the research workflow completes successfully."""

    event: SSEEventType = SSEEventType.COMPLETE
    data: dict[str, Any] = Field(description="Full ResearchResult serialized")


class ErrorEvent(SSEEvent):
    """Emitted when the workflow fails."""

    event: SSEEventType = SSEEventType.ERROR
    data: dict[str, str] = Field(
        description="Error details with phase context",
        examples=[{"error": "Unable to refine research.", "phase": "research", "error_type": "RefinementError"}],
    )
