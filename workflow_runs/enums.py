"""Enumerations for workflow run statuses, lifecycle events and posting modes."""

from enum import Enum


class RunStatus(str, Enum):
    """Lifecycle status of a workflow run.

    ``PENDING`` is the initial status. ``COMPLETED``, ``FAILED`` and
    ``CANCELLED`` are terminal and have no outgoing transitions.
    """

    PENDING = "pending"
    RUNNING = "running"
    AWAITING_APPROVAL = "awaiting_approval"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        """Whether the status ends the run."""
        return self in TERMINAL_STATUSES

    @classmethod
    def parse(cls, value: object) -> "RunStatus | None":
        """Parse a status from an enum member or string, returning None if unknown."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip())
            except ValueError:
                return None
        return None


TERMINAL_STATUSES = frozenset({RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED})
RETRYABLE_STATUSES = frozenset({RunStatus.FAILED, RunStatus.CANCELLED})


class RunEvent(str, Enum):
    """Named lifecycle events handed to the event publisher."""

    RUN_STARTED = "run_started"
    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    STEP_FAILED = "step_failed"
    RUN_COMPLETED = "run_completed"
    RUN_FAILED = "run_failed"
    RUN_CANCELLED = "run_cancelled"
    APPROVAL_REQUESTED = "approval_requested"
    APPROVAL_GRANTED = "approval_granted"
    APPROVAL_REJECTED = "approval_rejected"

    def __str__(self) -> str:
        return self.value


class RetryKind(str, Enum):
    """Kind of retry that produced a run."""

    FULL_RUN = "full_run"
    STEP_LEVEL = "step_level"

    def __str__(self) -> str:
        return self.value


class PostMode(str, Enum):
    """How an issue-triage run publishes its proposed response."""

    AUTO_POST = "auto_post"
    APPROVAL_REQUIRED = "approval_required"

    def __str__(self) -> str:
        return self.value
