"""
Approval context construction for runs entering ``awaiting_approval``.

Before a human can approve a run they need to see what changed, how the tests
went and what might go wrong. This module assembles that payload from the
artifacts earlier steps left in ``step_results``, or produces a diagnostic
that keeps the run blocked when an upstream step reported that the payload
could not be generated.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from workflow_runs.utils.normalize import (
    as_mapping,
    first_present,
    isoformat,
    mapping_list,
    optional_string,
    utc_now,
)

DIFF_SUMMARY_PLACEHOLDER = "Diff summary unavailable. Generate a git diff summary and retry."
TEST_SUMMARY_PLACEHOLDER = "Test summary unavailable. Capture test output and retry."
RISK_NOTES_PLACEHOLDER = ["No explicit risk notes were provided. Review the diff and test summary before approving."]

DIAGNOSTICS_KEY = "approval_context_diagnostics"


@dataclass(frozen=True)
class ApprovalContextOutcome:
    """Result of building the approval context.

    Exactly one of ``context`` and ``diagnostic`` is set.
    """

    context: dict[str, Any] | None = None
    diagnostic: dict[str, Any] | None = None


def generation_diagnostic(reason: str) -> dict[str, Any]:
    """Diagnostic recorded when the approval payload cannot be built."""
    return {
        "error_type": "approval_context_generation_failed",
        "operation": "build_approval_context",
        "reason_type": "approval_payload_blocked",
        "message": "Approval context generation failed and run remains blocked in awaiting_approval.",
        "detail": reason,
        "remediation": (
            "Publish diff summary, test summary, and risk notes from prior steps, then regenerate approval context."
        ),
        "timestamp": isoformat(utc_now()),
    }


def _summary(value: Any, placeholder: str) -> str:
    return optional_string(value) or placeholder


def _risk_notes(value: Any) -> list[str]:
    if isinstance(value, list | tuple):
        notes = [note for note in (optional_string(item) for item in value) if note is not None]
    else:
        note = optional_string(value)
        notes = [note] if note else []
    return notes or list(RISK_NOTES_PLACEHOLDER)


def build_approval_context(step_results: Any) -> ApprovalContextOutcome:
    """Build the approval payload from prior step artifacts.

    Values are read from an existing ``approval_context`` map first and from
    the top level of ``step_results`` second. A generation error reported under
    ``approval_context_generation_error`` (or ``approval_context.generation_error``)
    yields a diagnostic instead.

    Args:
        step_results: The run's step results.

    Returns:
        Outcome holding either ``{diff_summary, test_summary, risk_notes}`` or
        a diagnostic map.
    """
    if not isinstance(step_results, Mapping):
        return ApprovalContextOutcome(
            diagnostic=generation_diagnostic("Step results are unavailable for approval payload generation.")
        )

    source = as_mapping(step_results.get("approval_context"))
    reason = optional_string(
        first_present(
            step_results,
            "approval_context_generation_error",
            default=first_present(source, "generation_error"),
        )
    )
    if reason is not None:
        return ApprovalContextOutcome(diagnostic=generation_diagnostic(reason))

    def lookup(key: str) -> Any:
        return first_present(source, key, default=step_results.get(key))

    return ApprovalContextOutcome(
        context={
            "diff_summary": _summary(lookup("diff_summary"), DIFF_SUMMARY_PLACEHOLDER),
            "test_summary": _summary(lookup("test_summary"), TEST_SUMMARY_PLACEHOLDER),
            "risk_notes": _risk_notes(lookup("risk_notes")),
        }
    )


def append_diagnostic(error: Mapping[str, Any] | None, diagnostic: Mapping[str, Any]) -> dict[str, Any]:
    """Return ``error`` with ``diagnostic`` appended to its approval diagnostics."""
    updated = as_mapping(error)
    updated[DIAGNOSTICS_KEY] = mapping_list(updated.get(DIAGNOSTICS_KEY)) + [dict(diagnostic)]
    return updated


def clear_diagnostics(error: Mapping[str, Any] | None) -> dict[str, Any] | None:
    """Return ``error`` without approval diagnostics; None if nothing remains."""
    updated = as_mapping(error)
    updated.pop(DIAGNOSTICS_KEY, None)
    return updated or None


def outstanding_diagnostics(error: Any) -> list[dict[str, Any]]:
    return mapping_list(as_mapping(error).get(DIAGNOSTICS_KEY))


def approval_context_blocked(step_results: Any, error: Any) -> bool:
    """Whether approval must be refused.

    Approval is blocked when no approval context was recorded or any approval
    context diagnostic is outstanding.
    """
    context = as_mapping(as_mapping(step_results).get("approval_context"))
    return not context or bool(outstanding_diagnostics(error))
