"""Type definitions for the JSON-shaped records carried on a workflow run.

These TypedDicts describe the audit structures that the lifecycle engine
writes into a run: transition entries, retry lineage snapshots, approval
decisions and event payloads. They are plain dicts at runtime so that they
serialize unchanged into the run store.

Example:
    A transition entry recorded when a run starts executing::

        entry: StatusTransitionEntry = {
            "from_status": "pending",
            "to_status": "running",
            "current_step": "plan_changes",
            "transitioned_at": "2026-02-15T12:00:00Z",
        }
"""

from typing import Any, NotRequired, TypedDict


class StatusTransitionEntry(TypedDict):
    """One append-only entry of ``WorkflowRun.status_transitions``."""

    from_status: str | None
    """Status before the transition; None for the synthetic creation entry."""

    to_status: str
    """Status after the transition."""

    current_step: str
    """Step the run was at once the transition applied."""

    transitioned_at: str
    """ISO 8601 timestamp of the transition."""

    metadata: NotRequired[dict[str, Any]]
    """Transition metadata, omitted when empty."""


class Actor(TypedDict):
    """Normalized identity of whoever triggered an operation."""

    id: str
    email: str | None


class ApprovalDecision(TypedDict):
    """Approval gate decision recorded in ``step_results``."""

    decision: str
    """One of "approved", "auto_approved" or "rejected"."""

    actor: Actor
    timestamp: str
    outcome: NotRequired[str]
    """For rejections: "cancelled" or "retry_route"."""

    rationale: NotRequired[str]
    retry_step: NotRequired[str]


class RetryLineageEntry(TypedDict):
    """Snapshot of an ancestor run, appended when the run is retried."""

    run_id: str
    status: str
    retry_attempt: int
    current_step: str
    completed_at: str | None
    failure_artifacts: dict[str, Any]
    """The ancestor's ``step_results`` at retry time."""

    typed_failure: dict[str, Any]
    """The ancestor's ``error`` at retry time."""

    retry_actor: Actor
    retried_at: str


class EventPayload(TypedDict):
    """Payload handed to the event publisher for one lifecycle event."""

    event: str
    run_id: str
    workflow_name: str
    workflow_version: int
    timestamp: str
    correlation_id: str
    from_status: str | None
    to_status: str
    current_step: str


class PostRequest(TypedDict):
    """Request handed to the issue poster."""

    repo_full_name: str
    issue_number: int
    body: str
