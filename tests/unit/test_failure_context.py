"""Tests for failure context reconciliation."""

from workflow_runs.engine.failure_context import (
    DEFAULT_FAILURE_DETAIL,
    DEFAULT_FAILURE_ERROR_TYPE,
    DEFAULT_FAILURE_REMEDIATION,
    infer_last_successful_step,
    resolve_failure_context,
)
from workflow_runs.utils.normalize import isoformat, utc_now

TRANSITIONS = [
    {"from_status": None, "to_status": "pending", "current_step": "queued"},
    {"from_status": "pending", "to_status": "running", "current_step": "plan"},
    {"from_status": "running", "to_status": "awaiting_approval", "current_step": "review"},
    {"from_status": "awaiting_approval", "to_status": "running", "current_step": "implement"},
]


def resolve(**overrides):
    values = {
        "existing_error": None,
        "step_results": {},
        "status_transitions": TRANSITIONS,
        "current_step": "implement",
        "transitioned_at": utc_now(),
        "transition_metadata": {},
    }
    values.update(overrides)
    return resolve_failure_context(**values)


class TestInferLastSuccessfulStep:
    def test_skips_failing_step(self):
        assert infer_last_successful_step(TRANSITIONS, "implement") == "review"

    def test_skips_failed_and_pending_entries(self):
        transitions = TRANSITIONS[:2] + [{"to_status": "failed", "current_step": "verify"}]
        assert infer_last_successful_step(transitions, "verify") == "plan"

    def test_none_when_no_progress(self):
        assert infer_last_successful_step(TRANSITIONS[:1], "queued") is None
        assert infer_last_successful_step("garbage", "x") is None


class TestSourcePrecedence:
    def test_transition_metadata_beats_step_results_and_existing_error(self):
        record = resolve(
            existing_error={"error_type": "stale", "remediation": "old"},
            step_results={"failure_report": {"error_type": "from_report", "detail": "report detail"}},
            transition_metadata={"failure_context": {"error_type": "agent_timeout"}},
        )

        assert record["error_type"] == "agent_timeout"
        assert record["detail"] == "report detail"
        assert record["remediation"] == "old"

    def test_typed_failure_beats_error_and_metadata_root(self):
        record = resolve(
            transition_metadata={
                "typed_failure": {"reason_type": "rate limited"},
                "error": {"reason_type": "ignored"},
                "reason_type": "also_ignored",
            }
        )
        assert record["reason_type"] == "rate_limited"

    def test_failure_context_in_step_results_beats_failure_report(self):
        record = resolve(
            step_results={
                "failure_context": {"last_successful_step": "verify"},
                "failure_report": {"last_successful_step": "plan"},
            }
        )
        assert record["last_successful_step"] == "verify"

    def test_key_aliases(self):
        record = resolve(
            transition_metadata={
                "error": {
                    "message": "Agent exited 1.",
                    "last_completed_step": "plan",
                    "safe_retry_recommendation": "Retry from plan.",
                    "step": "deploy",
                }
            }
        )
        assert record["detail"] == "Agent exited 1."
        assert record["last_successful_step"] == "plan"
        assert record["remediation"] == "Retry from plan."
        assert record["failed_step"] == "deploy"

    def test_blank_values_fall_through(self):
        record = resolve(
            transition_metadata={"failure_context": {"error_type": "  "}},
            existing_error={"error_type": "from_existing"},
        )
        assert record["error_type"] == "from_existing"


class TestDefaults:
    def test_everything_missing(self):
        now = utc_now()
        record = resolve(status_transitions=[], current_step=None, transitioned_at=now)

        assert record["error_type"] == DEFAULT_FAILURE_ERROR_TYPE
        assert record["reason_type"] == DEFAULT_FAILURE_ERROR_TYPE
        assert record["detail"] == DEFAULT_FAILURE_DETAIL
        assert record["remediation"] == DEFAULT_FAILURE_REMEDIATION
        assert record["failed_step"] == "unknown"
        assert record["last_successful_step"] == "unknown"
        assert record["timestamp"] == isoformat(now)
        assert record["failure_context_complete"] is False
        assert record["missing_failure_context_fields"] == ["error_type", "remediation", "last_successful_step"]

    def test_detail_names_failed_step(self):
        record = resolve()
        assert record["detail"] == "Workflow run failed while executing step implement."

    def test_reason_type_derived_from_error_type(self):
        record = resolve(transition_metadata={"error_type": "agent crashed!"})
        assert record["reason_type"] == "agent_crashed_"

    def test_timestamp_from_sources(self):
        record = resolve(transition_metadata={"timestamp": "2026-02-15T14:00:00+02:00"})
        assert record["timestamp"] == "2026-02-15T12:00:00Z"


class TestCompleteness:
    def test_complete_record_drops_missing_fields(self):
        record = resolve(
            existing_error={"missing_failure_context_fields": ["error_type"], "approval_context_diagnostics": [{}]},
            transition_metadata={"error_type": "agent_timeout", "remediation": "Retry."},
        )

        assert record["failure_context_complete"] is True
        assert "missing_failure_context_fields" not in record
        assert record["approval_context_diagnostics"] == [{}]
        assert record["last_successful_step"] == "review"
