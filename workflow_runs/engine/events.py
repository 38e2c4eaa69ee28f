"""
Lifecycle event publication.

Events are published after a run has been persisted and never roll a
transition back. Each failed publication becomes a typed diagnostic that the
state machine appends to ``error["event_channel_diagnostics"]`` on the run.

Topic:
    ``workflow_runs:run:<run_id>``: per-run lifecycle and step events
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Any
from uuid import uuid4

import structlog

from workflow_runs.enums import RunEvent, RunStatus
from workflow_runs.exceptions import ExternalServiceError
from workflow_runs.models.domain import WorkflowRun, normalize_workflow_version
from workflow_runs.models.results import OperationResult
from workflow_runs.models.types import EventPayload
from workflow_runs.providers.base import EventPublisher
from workflow_runs.utils.normalize import (
    as_mapping,
    isoformat,
    mapping_list,
    normalize_step,
    sanitize_reason_type,
    string_or,
    utc_now,
)

log = structlog.get_logger(__name__)

DIAGNOSTICS_KEY = "event_channel_diagnostics"
TOPIC_PREFIX = "workflow_runs:run:"


def run_topic(run_id: str) -> str:
    return f"{TOPIC_PREFIX}{run_id}"


def build_event_payload(
    run: WorkflowRun,
    event: RunEvent,
    from_status: RunStatus | None,
    to_status: RunStatus,
    current_step: str,
    timestamp: datetime,
    correlation_id: str,
) -> EventPayload:
    """Build the payload handed to the publisher for one event."""
    return {
        "event": event.value,
        "run_id": string_or(run.run_id, "unknown"),
        "workflow_name": string_or(run.workflow_name, "unknown"),
        "workflow_version": normalize_workflow_version(run.workflow_version),
        "timestamp": isoformat(timestamp),
        "correlation_id": correlation_id,
        "from_status": from_status.value if from_status is not None else None,
        "to_status": to_status.value,
        "current_step": normalize_step(current_step),
    }


def publication_diagnostic(run_id: str, event: str, reason: Any) -> dict[str, Any]:
    """Typed diagnostic describing one failed publication."""
    return {
        "error_type": "workflow_run_event_publication_failed",
        "channel": "run_topic",
        "operation": "broadcast_run_event",
        "topic": run_topic(run_id),
        "event": event,
        "reason_type": sanitize_reason_type(reason),
        "message": "Run topic event publication failed.",
        "timestamp": isoformat(utc_now()),
    }


def append_diagnostics(error: Any, diagnostics: list[dict[str, Any]]) -> dict[str, Any]:
    """Return ``error`` with ``diagnostics`` appended to its event channel diagnostics."""
    updated = as_mapping(error)
    updated[DIAGNOSTICS_KEY] = mapping_list(updated.get(DIAGNOSTICS_KEY)) + diagnostics
    return updated


class EventPublicationAdapter:
    """Publish lifecycle events and turn publication failures into diagnostics.

    Publisher failures of any shape (a failed result, an exception, or an
    unexpected return value) are reported the same way: a diagnostic is
    returned to the caller and an error is logged. Publication of the
    remaining events continues.
    """

    def __init__(self, publisher: EventPublisher) -> None:
        self.publisher = publisher

    async def publish(
        self,
        run: WorkflowRun,
        events: Iterable[RunEvent],
        from_status: RunStatus | None,
        to_status: RunStatus,
        current_step: str,
        timestamp: datetime,
    ) -> list[dict[str, Any]]:
        """Publish ``events`` for one transition, sharing a correlation id.

        Returns:
            Diagnostics for the events that could not be published, in order.
        """
        correlation_id = str(uuid4())
        diagnostics: list[dict[str, Any]] = []

        for event in events:
            payload = build_event_payload(run, event, from_status, to_status, current_step, timestamp, correlation_id)
            reason = await self._publish_one(payload)
            if reason is None:
                continue

            diagnostic = publication_diagnostic(payload["run_id"], payload["event"], reason)
            log.error(
                "event_channel_diagnostic",
                error_type=diagnostic["error_type"],
                channel=diagnostic["channel"],
                operation=diagnostic["operation"],
                lifecycle_event=diagnostic["event"],
                reason_type=diagnostic["reason_type"],
                run_id=payload["run_id"],
            )
            diagnostics.append(diagnostic)

        return diagnostics

    async def _publish_one(self, payload: EventPayload) -> str | None:
        """Publish one payload; return the failure reason, or None on success."""
        try:
            result = await self.publisher.publish(payload["run_id"], payload)
        except ExternalServiceError as e:
            return e.reason_type or type(e).__name__
        except Exception as e:
            return type(e).__name__

        if not isinstance(result, OperationResult):
            return "invalid_publisher_result"
        if result.failure is not None:
            return result.failure.reason_type
        return None
