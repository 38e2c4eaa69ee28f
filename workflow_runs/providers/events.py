"""
In-process event publishers.

``RecordingEventPublisher`` keeps every payload per run id, which is what the
CLI and tests use to observe lifecycle events. ``LoggingEventPublisher`` emits
each event as a structured log line.
"""

from collections import defaultdict

import structlog

from workflow_runs.models.results import OperationResult
from workflow_runs.models.types import EventPayload
from workflow_runs.providers.base import EventPublisher

log = structlog.get_logger(__name__)


class RecordingEventPublisher(EventPublisher):
    """Publisher that records payloads in memory, keyed by run id."""

    def __init__(self) -> None:
        self.published: dict[str, list[EventPayload]] = defaultdict(list)

    async def publish(self, run_id: str, payload: EventPayload) -> OperationResult[None]:
        self.published[run_id].append(payload)
        return OperationResult.success()

    def events_for(self, run_id: str) -> list[str]:
        """Event names published for a run, in publication order."""
        return [payload["event"] for payload in self.published.get(run_id, [])]


class LoggingEventPublisher(EventPublisher):
    """Publisher that writes each event to the structured log."""

    async def publish(self, run_id: str, payload: EventPayload) -> OperationResult[None]:
        log.info(
            "workflow_run_event",
            run_id=run_id,
            lifecycle_event=payload["event"],
            from_status=payload["from_status"],
            to_status=payload["to_status"],
            current_step=payload["current_step"],
            correlation_id=payload["correlation_id"],
        )
        return OperationResult.success()
