"""
Lifecycle transition table and transition building.

Allowed Transitions::

    pending           -> running | cancelled
    running           -> awaiting_approval | completed | failed | cancelled
    awaiting_approval -> running | cancelled
    completed, failed, cancelled -> (none)

A transition is computed by :class:`TransitionBuilder` into an immutable
:class:`TransitionResult` that holds every field the transition changes plus
the events to publish once it is persisted. Applying the result to a run
produces a new run record; the original is never mutated.

Example:
    >>> result = TransitionBuilder(run, RunStatus.RUNNING, current_step="plan").build()
    >>> updated = result.apply(run)
    >>> [str(event) for event in result.events]
    ['step_started']
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from workflow_runs.engine.approval_context import append_diagnostic, build_approval_context, clear_diagnostics
from workflow_runs.engine.failure_context import resolve_failure_context
from workflow_runs.enums import RunEvent, RunStatus
from workflow_runs.exceptions import InvalidTransitionError
from workflow_runs.models.domain import WorkflowRun
from workflow_runs.models.types import StatusTransitionEntry
from workflow_runs.utils.normalize import (
    as_mapping,
    isoformat,
    mapping_list,
    normalize_datetime,
    normalize_step,
    optional_string,
)

ALLOWED_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.PENDING: frozenset({RunStatus.RUNNING, RunStatus.CANCELLED}),
    RunStatus.RUNNING: frozenset(
        {RunStatus.AWAITING_APPROVAL, RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED}
    ),
    RunStatus.AWAITING_APPROVAL: frozenset({RunStatus.RUNNING, RunStatus.CANCELLED}),
    RunStatus.COMPLETED: frozenset(),
    RunStatus.FAILED: frozenset(),
    RunStatus.CANCELLED: frozenset(),
}


def allowed_transition(from_status: RunStatus | None, to_status: RunStatus | None) -> bool:
    """Whether ``from_status -> to_status`` is in the lifecycle table."""
    if from_status is None or to_status is None:
        return False
    return to_status in ALLOWED_TRANSITIONS.get(from_status, frozenset())


def transition_entry(
    from_status: RunStatus | None,
    to_status: RunStatus,
    current_step: Any,
    transitioned_at: datetime,
    transition_metadata: Mapping[str, Any] | None = None,
) -> StatusTransitionEntry:
    """Build one audit entry; ``metadata`` is only present when non-empty."""
    entry: StatusTransitionEntry = {
        "from_status": from_status.value if from_status is not None else None,
        "to_status": to_status.value,
        "current_step": normalize_step(current_step),
        "transitioned_at": isoformat(transitioned_at),
    }
    metadata = as_mapping(transition_metadata)
    if metadata:
        entry["metadata"] = copy.deepcopy(metadata)
    return entry


def approval_decision_of(transition_metadata: Mapping[str, Any] | None) -> dict[str, Any]:
    """The ``approval_decision`` map carried in transition metadata, if any."""
    return as_mapping(as_mapping(transition_metadata).get("approval_decision"))


def transition_events(
    from_status: RunStatus,
    to_status: RunStatus,
    transition_metadata: Mapping[str, Any] | None = None,
) -> list[RunEvent]:
    """Events a transition must publish, in publication order."""
    decision = optional_string(approval_decision_of(transition_metadata).get("decision"))

    if to_status is RunStatus.RUNNING:
        if from_status is RunStatus.AWAITING_APPROVAL:
            gate_event = RunEvent.APPROVAL_REJECTED if decision == "rejected" else RunEvent.APPROVAL_GRANTED
            return [gate_event, RunEvent.STEP_STARTED]
        return [RunEvent.STEP_STARTED]
    if to_status is RunStatus.AWAITING_APPROVAL:
        return [RunEvent.APPROVAL_REQUESTED]
    if to_status is RunStatus.CANCELLED and from_status is RunStatus.AWAITING_APPROVAL:
        return [RunEvent.APPROVAL_REJECTED, RunEvent.RUN_CANCELLED]
    if to_status is RunStatus.COMPLETED:
        return [RunEvent.STEP_COMPLETED, RunEvent.RUN_COMPLETED]
    if to_status is RunStatus.FAILED:
        return [RunEvent.STEP_FAILED, RunEvent.RUN_FAILED]
    if to_status is RunStatus.CANCELLED:
        return [RunEvent.RUN_CANCELLED]
    return []


@dataclass(frozen=True)
class TransitionResult:
    """Everything a single transition changes on a run.

    Attributes:
        from_status: Status before the transition
        to_status: Status after the transition
        current_step: Step after the transition
        transitioned_at: Time of the transition
        status_transitions: Full audit trail including the new entry
        step_results: Step results after approval and posting capture
        error: Error map after failure and diagnostic capture
        started_at: Start time after the transition
        completed_at: Set for terminal statuses, None otherwise
        events: Events to publish once the run is persisted
    """

    from_status: RunStatus
    to_status: RunStatus
    current_step: str
    transitioned_at: datetime
    status_transitions: tuple[dict[str, Any], ...]
    step_results: dict[str, Any]
    error: dict[str, Any] | None
    started_at: datetime
    completed_at: datetime | None
    events: tuple[RunEvent, ...]

    def apply(self, run: WorkflowRun) -> WorkflowRun:
        """Return a copy of ``run`` with this transition applied."""
        updated = run.copy()
        updated.status = self.to_status
        updated.current_step = self.current_step
        updated.status_transitions = copy.deepcopy(list(self.status_transitions))
        updated.step_results = copy.deepcopy(self.step_results)
        updated.error = copy.deepcopy(self.error)
        updated.started_at = self.started_at
        updated.completed_at = self.completed_at
        return updated


class TransitionBuilder:
    """Compute the effects of moving a run to a new status.

    The builder reads the run but never modifies it. Each ``_capture_*`` step
    works on the builder's own copies of ``step_results`` and ``error``, in
    this order: approval context, approval decision audit, posting artifact,
    failure context.
    """

    def __init__(
        self,
        run: WorkflowRun,
        to_status: RunStatus,
        current_step: str | None = None,
        transitioned_at: datetime | None = None,
        transition_metadata: Mapping[str, Any] | None = None,
    ) -> None:
        self.run = run
        self.to_status = to_status
        self.current_step = normalize_step(current_step, run.current_step)
        self.transitioned_at = normalize_datetime(transitioned_at)
        self.transition_metadata = as_mapping(transition_metadata)
        self._step_results: dict[str, Any] = copy.deepcopy(run.step_results)
        self._error: dict[str, Any] | None = copy.deepcopy(run.error)

    def build(self) -> TransitionResult:
        """Compute the transition.

        Raises:
            InvalidTransitionError: If the transition is not in the table.
        """
        from_status = self.run.status
        if not allowed_transition(from_status, self.to_status):
            raise InvalidTransitionError(str(from_status), str(self.to_status))

        transitions = mapping_list(self.run.status_transitions)
        transitions.append(
            dict(
                transition_entry(
                    from_status, self.to_status, self.current_step, self.transitioned_at, self.transition_metadata
                )
            )
        )

        self._capture_approval_context()
        self._capture_approval_decision(from_status)
        self._capture_issue_response_post()
        self._capture_failure_context(transitions)

        started_at = self.run.started_at
        if self.to_status is RunStatus.RUNNING and started_at is None:
            started_at = self.transitioned_at

        return TransitionResult(
            from_status=from_status,
            to_status=self.to_status,
            current_step=self.current_step,
            transitioned_at=self.transitioned_at,
            status_transitions=tuple(transitions),
            step_results=self._step_results,
            error=self._error,
            started_at=started_at,
            completed_at=self.transitioned_at if self.to_status.is_terminal else None,
            events=tuple(transition_events(from_status, self.to_status, self.transition_metadata)),
        )

    def _capture_approval_context(self) -> None:
        if self.to_status is not RunStatus.AWAITING_APPROVAL:
            return

        outcome = build_approval_context(self._step_results)
        if outcome.context is not None:
            self._step_results["approval_context"] = outcome.context
            self._error = clear_diagnostics(self._error)
        else:
            self._step_results.pop("approval_context", None)
            self._error = append_diagnostic(self._error, outcome.diagnostic or {})

    def _capture_approval_decision(self, from_status: RunStatus) -> None:
        if from_status is not RunStatus.AWAITING_APPROVAL:
            return
        if self.to_status not in (RunStatus.RUNNING, RunStatus.CANCELLED):
            return

        decision = approval_decision_of(self.transition_metadata)
        if not decision:
            return
        history = mapping_list(self._step_results.get("approval_decisions"))
        self._step_results["approval_decision"] = copy.deepcopy(decision)
        self._step_results["approval_decisions"] = history + [copy.deepcopy(decision)]

    def _capture_issue_response_post(self) -> None:
        artifact = as_mapping(self.transition_metadata.get("issue_response_post"))
        if artifact:
            self._step_results["post_issue_response"] = copy.deepcopy(artifact)

    def _capture_failure_context(self, transitions: list[dict[str, Any]]) -> None:
        if self.to_status is not RunStatus.FAILED:
            return

        self._error = resolve_failure_context(
            existing_error=self._error,
            step_results=self._step_results,
            status_transitions=transitions,
            current_step=self.current_step,
            transitioned_at=self.transitioned_at,
            transition_metadata=self.transition_metadata,
        )
