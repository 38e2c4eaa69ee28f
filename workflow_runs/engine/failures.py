"""Typed failure factories for the lifecycle actions."""

from typing import Any

from workflow_runs.models.results import TypedFailure

APPROVAL_ACTION_ERROR_TYPE = "workflow_run_approval_action_failed"
RETRY_ACTION_ERROR_TYPE = "workflow_run_retry_action_failed"
TRANSITION_ERROR_TYPE = "workflow_run_transition_failed"

APPROVE_OPERATION = "approve_run"
REJECT_OPERATION = "reject_run"
RETRY_OPERATION = "retry_run"
STEP_RETRY_OPERATION = "retry_step"
TRANSITION_OPERATION = "transition_status"
CREATE_OPERATION = "create_run"


def format_detail(detail: str, reason: Any = None) -> str:
    """Append the underlying reason to ``detail`` when there is one."""
    if reason is None or reason == "":
        return detail
    if isinstance(reason, BaseException):
        reason = getattr(reason, "message", None) or str(reason) or type(reason).__name__
    return f"{detail} ({reason})"


def action_failure(
    operation: str,
    reason_type: str,
    detail: str,
    remediation: str,
    reason: Any = None,
    error_type: str = APPROVAL_ACTION_ERROR_TYPE,
    policy: dict[str, Any] | None = None,
) -> TypedFailure:
    return TypedFailure(
        error_type=error_type,
        operation=operation,
        reason_type=reason_type,
        detail=format_detail(detail, reason),
        remediation=remediation,
        policy=policy,
    )


def approval_action_failure(reason_type: str, detail: str, remediation: str, reason: Any = None) -> TypedFailure:
    return action_failure(APPROVE_OPERATION, reason_type, detail, remediation, reason)


def rejection_action_failure(reason_type: str, detail: str, remediation: str, reason: Any = None) -> TypedFailure:
    return action_failure(REJECT_OPERATION, reason_type, detail, remediation, reason)


def retry_action_failure(
    reason_type: str,
    detail: str,
    remediation: str,
    reason: Any = None,
    policy: dict[str, Any] | None = None,
) -> TypedFailure:
    return action_failure(
        RETRY_OPERATION, reason_type, detail, remediation, reason, RETRY_ACTION_ERROR_TYPE, policy
    )


def step_retry_action_failure(
    reason_type: str,
    detail: str,
    remediation: str,
    reason: Any = None,
    policy: dict[str, Any] | None = None,
) -> TypedFailure:
    return action_failure(
        STEP_RETRY_OPERATION, reason_type, detail, remediation, reason, RETRY_ACTION_ERROR_TYPE, policy
    )


def invalid_transition_failure(from_status: str, to_status: str) -> TypedFailure:
    return action_failure(
        TRANSITION_OPERATION,
        "invalid_lifecycle_transition",
        f"Invalid lifecycle transition from {from_status} to {to_status}.",
        "Reload run detail and apply a transition allowed from the current status.",
        error_type=TRANSITION_ERROR_TYPE,
    )


def transition_store_failure(reason: str) -> TypedFailure:
    return action_failure(
        TRANSITION_OPERATION,
        "run_store_error",
        "Run transition could not be persisted.",
        "Check run store availability, then retry the transition.",
        reason,
        error_type=TRANSITION_ERROR_TYPE,
    )
