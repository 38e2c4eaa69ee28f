"""
Failure context reconciliation for runs entering ``failed``.

When a run fails, several places may hold pieces of the story: the metadata
passed with the transition, artifacts left in ``step_results`` by the failing
step, and whatever was already recorded in ``error``. The resolver merges
them into one canonical record so the run detail page can always show what
failed, why, which step last succeeded and what to do next.

Source Precedence (first non-blank string per field wins):
    1. ``transition_metadata["failure_context"]``
    2. ``transition_metadata["typed_failure"]``
    3. ``transition_metadata["error"]``
    4. ``transition_metadata`` itself
    5. ``step_results["failure_context"]``
    6. ``step_results["failure_report"]``
    7. the run's existing ``error``

Example:
    >>> record = resolve_failure_context(
    ...     existing_error=None,
    ...     step_results={},
    ...     status_transitions=[{"to_status": "running", "current_step": "plan"}],
    ...     current_step="implement",
    ...     transitioned_at=utc_now(),
    ...     transition_metadata={"failure_context": {"error_type": "agent_timeout"}},
    ... )
    >>> record["last_successful_step"]
    'plan'
"""

from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any

from workflow_runs.enums import RunStatus
from workflow_runs.utils.normalize import (
    UNKNOWN,
    as_mapping,
    isoformat,
    mapping_list,
    normalize_step,
    optional_iso8601,
    optional_string,
    sanitize_reason_type,
)

DEFAULT_FAILURE_ERROR_TYPE = "workflow_run_failed"
DEFAULT_FAILURE_DETAIL = "Workflow run failed before full failure context was captured."
DEFAULT_FAILURE_REMEDIATION = (
    "Inspect failure artifacts and run timeline, then retry from run detail after resolving the failing step."
)

# Statuses whose transition entries prove a step got underway successfully.
_PROGRESS_STATUSES = frozenset(
    {RunStatus.RUNNING.value, RunStatus.AWAITING_APPROVAL.value, RunStatus.COMPLETED.value}
)


def failure_sources(
    transition_metadata: Mapping[str, Any] | None,
    step_results: Mapping[str, Any] | None,
    existing_error: Mapping[str, Any] | None,
) -> list[dict[str, Any]]:
    """Collect the candidate maps in precedence order."""
    metadata = as_mapping(transition_metadata)
    results = as_mapping(step_results)
    return [
        as_mapping(metadata.get("failure_context")),
        as_mapping(metadata.get("typed_failure")),
        as_mapping(metadata.get("error")),
        metadata,
        as_mapping(results.get("failure_context")),
        as_mapping(results.get("failure_report")),
        as_mapping(existing_error),
    ]


def first_string(sources: Sequence[Mapping[str, Any]], *keys: str) -> str | None:
    """First non-blank string for ``keys``.

    Keys are tried in order across all sources: every source is checked for
    the first key before any source is checked for the second.
    """
    for key in keys:
        for source in sources:
            value = optional_string(source.get(key))
            if value is not None:
                return value
    return None


def infer_last_successful_step(status_transitions: Any, failed_step: str | None) -> str | None:
    """Find the most recent step that made progress before ``failed_step``.

    Scans transitions newest first, skipping failed entries, entries without a
    step, statuses that do not indicate progress, and entries at the failing
    step itself.
    """
    failed = optional_string(failed_step)
    for transition in reversed(mapping_list(status_transitions)):
        step = optional_string(transition.get("current_step"))
        to_status = optional_string(transition.get("to_status"))
        if step is None:
            continue
        if to_status == RunStatus.FAILED.value or to_status not in _PROGRESS_STATUSES:
            continue
        if failed is not None and step == failed:
            continue
        return step
    return None


def default_failure_detail(failed_step: str | None) -> str:
    step = optional_string(failed_step)
    if step is None:
        return DEFAULT_FAILURE_DETAIL
    return f"Workflow run failed while executing step {step}."


def resolve_failure_context(
    existing_error: Mapping[str, Any] | None,
    step_results: Mapping[str, Any] | None,
    status_transitions: Any,
    current_step: str | None,
    transitioned_at: datetime,
    transition_metadata: Mapping[str, Any] | None,
) -> dict[str, Any]:
    """Build the canonical failure record for a run entering ``failed``.

    Keys already present in ``existing_error`` (diagnostics, for instance) are
    kept; the resolved fields are written over them.

    Args:
        existing_error: The run's current ``error`` map.
        step_results: The run's ``step_results``.
        status_transitions: Transition history used to infer the last
            successful step.
        current_step: Step the run is failing at.
        transitioned_at: Time of the failing transition.
        transition_metadata: Metadata supplied with the transition.

    Returns:
        The new ``error`` map, with ``failure_context_complete`` and, when
        something had to be defaulted, ``missing_failure_context_fields``.
    """
    sources = failure_sources(transition_metadata, step_results, existing_error)

    error_type_source = first_string(sources, "error_type")
    error_type = error_type_source or DEFAULT_FAILURE_ERROR_TYPE

    reason_source = first_string(sources, "reason_type")
    reason_type = sanitize_reason_type(reason_source or error_type)

    failed_step_source = first_string(sources, "failed_step", "current_step", "step") or optional_string(current_step)
    failed_step = normalize_step(failed_step_source)

    last_successful_step = first_string(sources, "last_successful_step", "last_completed_step")
    if last_successful_step is None:
        last_successful_step = infer_last_successful_step(status_transitions, failed_step)

    remediation_source = first_string(sources, "remediation", "remediation_hint", "safe_retry_recommendation")
    detail = first_string(sources, "detail", "message", "summary") or default_failure_detail(failed_step_source)

    timestamp = optional_iso8601(first_string(sources, "timestamp")) or isoformat(transitioned_at)

    missing_fields = [
        name
        for name, value in (
            ("error_type", error_type_source),
            ("remediation", remediation_source),
            ("last_successful_step", last_successful_step),
        )
        if value is None
    ]

    record = as_mapping(existing_error)
    record.update(
        {
            "error_type": error_type,
            "reason_type": reason_type,
            "detail": detail,
            "remediation": remediation_source or DEFAULT_FAILURE_REMEDIATION,
            "failed_step": failed_step,
            "last_successful_step": normalize_step(last_successful_step, UNKNOWN),
            "timestamp": timestamp,
        }
    )

    if missing_fields:
        record["failure_context_complete"] = False
        record["missing_failure_context_fields"] = missing_fields
    else:
        record["failure_context_complete"] = True
        record.pop("missing_failure_context_fields", None)
    return record
