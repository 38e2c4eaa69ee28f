"""
Domain model for workflow runs.

A :class:`WorkflowRun` is one execution of a workflow definition: an AI coding
agent working through a multi-step task against a repository, gated by human
approval and subject to retry policies. The run is a single evolving record;
it is only ever mutated through the lifecycle state machine, and retries
create new runs rather than rewriting old ones.

Example:
    Creating a run record by hand (normally done by ``RunStateMachine.create``)::

        run = WorkflowRun(
            run_id="run-42",
            project_id="8f0c...",
            workflow_name="implement_task",
            workflow_version=3,
            started_at=utc_now(),
            trigger={"mode": "manual"},
        )
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from workflow_runs.enums import RunStatus
from workflow_runs.models.types import Actor
from workflow_runs.utils.normalize import (
    UNKNOWN,
    as_mapping,
    isoformat,
    mapping_list,
    normalize_datetime,
    normalize_step,
    optional_datetime,
    optional_positive_int,
    optional_string,
)


def normalize_actor(actor: Any) -> Actor:
    """Normalize an actor map into ``{"id", "email"}``.

    Unresolvable ids become ``"unknown"``.
    """
    source = as_mapping(actor)
    return {
        "id": optional_string(source.get("id")) or UNKNOWN,
        "email": optional_string(source.get("email")),
    }


def actor_resolved(actor: Actor) -> bool:
    """Whether an actor carries a real identity."""
    return actor.get("id") != UNKNOWN


def normalize_workflow_version(value: Any) -> int:
    """Coerce a workflow version to an int, falling back to 0."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return 0
    return 0


@dataclass
class WorkflowRun:
    """One execution instance of a workflow, tracked through its lifecycle.

    Invariants maintained by the state machine:
        - ``status_transitions`` is append-only and its last entry's
          ``to_status`` equals ``status``.
        - ``completed_at`` is set iff ``status`` is terminal.
        - ``retry_attempt`` starts at 1 and grows by one per retry.
    """

    run_id: str
    """Human-facing identifier, unique within ``project_id``."""

    project_id: str
    """Project the run belongs to."""

    workflow_name: str
    """Name of the workflow definition being executed."""

    workflow_version: int
    """Definition version pinned at creation; never changes afterwards."""

    started_at: datetime
    """When the run (or its first execution) started."""

    id: str = field(default_factory=lambda: str(uuid4()))
    """Durable surrogate key."""

    status: RunStatus = RunStatus.PENDING
    current_step: str = UNKNOWN
    status_transitions: list[dict[str, Any]] = field(default_factory=list)
    """Audit trail of transition entries, oldest first."""

    trigger: dict[str, Any] = field(default_factory=dict)
    """Trigger payload: mode, approval_policy, retry_policy, retry metadata."""

    inputs: dict[str, Any] = field(default_factory=dict)
    input_metadata: dict[str, Any] = field(default_factory=dict)
    initiating_actor: dict[str, Any] = field(default_factory=dict)
    step_results: dict[str, Any] = field(default_factory=dict)
    """Per-step outputs plus approval, retry and posting artifacts."""

    error: dict[str, Any] | None = None
    """Canonical failure record and non-fatal diagnostics."""

    retry_of_run_id: str | None = None
    retry_attempt: int = 1
    retry_lineage: list[dict[str, Any]] = field(default_factory=list)
    """Ancestor snapshots, oldest first."""

    completed_at: datetime | None = None
    inserted_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def copy(self) -> WorkflowRun:
        """Deep copy, so that transitions never alias the caller's record."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the JSON form used by run stores."""
        return {
            "id": self.id,
            "run_id": self.run_id,
            "project_id": self.project_id,
            "workflow_name": self.workflow_name,
            "workflow_version": self.workflow_version,
            "status": self.status.value,
            "current_step": self.current_step,
            "status_transitions": copy.deepcopy(self.status_transitions),
            "trigger": copy.deepcopy(self.trigger),
            "inputs": copy.deepcopy(self.inputs),
            "input_metadata": copy.deepcopy(self.input_metadata),
            "initiating_actor": copy.deepcopy(self.initiating_actor),
            "step_results": copy.deepcopy(self.step_results),
            "error": copy.deepcopy(self.error),
            "retry_of_run_id": self.retry_of_run_id,
            "retry_attempt": self.retry_attempt,
            "retry_lineage": copy.deepcopy(self.retry_lineage),
            "started_at": isoformat(self.started_at),
            "completed_at": isoformat(self.completed_at) if self.completed_at else None,
            "inserted_at": isoformat(self.inserted_at) if self.inserted_at else None,
            "updated_at": isoformat(self.updated_at) if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> WorkflowRun:
        """Rebuild a run from its JSON form, tolerating missing fields."""
        error = data.get("error")
        return cls(
            id=optional_string(data.get("id")) or str(uuid4()),
            run_id=optional_string(data.get("run_id")) or UNKNOWN,
            project_id=optional_string(data.get("project_id")) or UNKNOWN,
            workflow_name=optional_string(data.get("workflow_name")) or UNKNOWN,
            workflow_version=normalize_workflow_version(data.get("workflow_version")),
            status=RunStatus.parse(data.get("status")) or RunStatus.PENDING,
            current_step=normalize_step(data.get("current_step")),
            status_transitions=mapping_list(data.get("status_transitions")),
            trigger=as_mapping(data.get("trigger")),
            inputs=as_mapping(data.get("inputs")),
            input_metadata=as_mapping(data.get("input_metadata")),
            initiating_actor=as_mapping(data.get("initiating_actor")),
            step_results=as_mapping(data.get("step_results")),
            error=dict(error) if isinstance(error, Mapping) else None,
            retry_of_run_id=optional_string(data.get("retry_of_run_id")),
            retry_attempt=optional_positive_int(data.get("retry_attempt")) or 1,
            retry_lineage=mapping_list(data.get("retry_lineage")),
            started_at=normalize_datetime(data.get("started_at")),
            completed_at=optional_datetime(data.get("completed_at")),
            inserted_at=optional_datetime(data.get("inserted_at")),
            updated_at=optional_datetime(data.get("updated_at")),
        )
