"""
Typed failure records and operation results.

Every public lifecycle operation returns an :class:`OperationResult` instead of
raising. A failed result carries a :class:`TypedFailure`, the structured record
that the run detail UI renders and that gets stored into ``WorkflowRun.error``
when a failure belongs to the run itself.

Example:
    >>> result = await machine.retry(run, {"actor": {"id": "u1"}})
    >>> if not result.ok:
    ...     print(result.failure.reason_type)
    ... else:
    ...     print(result.value.run_id)
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from workflow_runs.exceptions import WorkflowRunsError
from workflow_runs.utils.normalize import isoformat, optional_string, sanitize_reason_type, utc_now

T = TypeVar("T")

_CORE_FIELDS = ("error_type", "operation", "reason_type", "detail", "remediation", "timestamp")


def _now_iso() -> str:
    return isoformat(utc_now())


@dataclass
class TypedFailure:
    """Structured failure returned across the public boundary.

    Attributes:
        error_type: Failure family, e.g. ``workflow_run_retry_action_failed``
        operation: Operation that failed, e.g. ``retry_run``
        reason_type: Machine-readable reason, e.g. ``policy_violation``
        detail: Human-readable description
        remediation: What the operator should do next
        timestamp: ISO 8601 time the failure was produced
        field_errors: Per-field validation problems, if any
        policy: Resolved policy that caused the failure, if any
        extra: Additional context (failed_step, run_id, ...)
    """

    error_type: str
    operation: str
    reason_type: str
    detail: str
    remediation: str
    timestamp: str = field(default_factory=_now_iso)
    field_errors: list[dict[str, Any]] = field(default_factory=list)
    policy: dict[str, Any] | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.reason_type = sanitize_reason_type(self.reason_type)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-ready dict; empty optional fields are omitted."""
        data: dict[str, Any] = dict(self.extra)
        data.update(
            {
                "error_type": self.error_type,
                "operation": self.operation,
                "reason_type": self.reason_type,
                "detail": self.detail,
                "remediation": self.remediation,
                "timestamp": self.timestamp,
            }
        )
        if self.field_errors:
            data["field_errors"] = list(self.field_errors)
        if self.policy is not None:
            data["policy"] = dict(self.policy)
        return data

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any], **defaults: str) -> TypedFailure:
        """Build a failure from a loosely shaped mapping.

        Args:
            mapping: Source record, e.g. a provider's error map.
            **defaults: Fallback values for any of the core fields.
        """
        values = {name: optional_string(mapping.get(name)) or defaults.get(name) for name in _CORE_FIELDS}
        extra = {key: value for key, value in mapping.items() if key not in _CORE_FIELDS}
        field_errors = extra.pop("field_errors", None)
        policy = extra.pop("policy", None)
        return cls(
            error_type=values["error_type"] or "unknown_error",
            operation=values["operation"] or "unknown_operation",
            reason_type=values["reason_type"] or "unknown",
            detail=values["detail"] or "",
            remediation=values["remediation"] or "",
            timestamp=values["timestamp"] or _now_iso(),
            field_errors=list(field_errors) if isinstance(field_errors, list) else [],
            policy=dict(policy) if isinstance(policy, Mapping) else None,
            extra=extra,
        )


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """Outcome of a lifecycle operation or collaborator call.

    Exactly one of ``value``/``failure`` is meaningful; use :attr:`ok` to tell
    them apart (``value`` may legitimately be None for side-effect-only calls).
    """

    value: T | None = None
    failure: TypedFailure | None = None

    @property
    def ok(self) -> bool:
        """True when the operation succeeded."""
        return self.failure is None

    @classmethod
    def success(cls, value: T | None = None) -> OperationResult[T]:
        return cls(value=value)

    @classmethod
    def failed(cls, failure: TypedFailure) -> OperationResult[T]:
        return cls(failure=failure)

    def unwrap(self) -> T:
        """Return the value or raise if the result is a failure.

        Raises:
            WorkflowRunsError: If the result holds a failure.
        """
        if self.failure is not None:
            raise WorkflowRunsError(f"{self.failure.operation} failed: {self.failure.detail}")
        return self.value  # type: ignore[return-value]
