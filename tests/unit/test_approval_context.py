"""Tests for approval context construction and the approval block check."""

from workflow_runs.engine.approval_context import (
    DIAGNOSTICS_KEY,
    DIFF_SUMMARY_PLACEHOLDER,
    RISK_NOTES_PLACEHOLDER,
    TEST_SUMMARY_PLACEHOLDER,
    append_diagnostic,
    approval_context_blocked,
    build_approval_context,
    clear_diagnostics,
)


class TestBuildApprovalContext:
    def test_reads_top_level_artifacts(self):
        outcome = build_approval_context(
            {"diff_summary": "3 files changed", "test_summary": "40 passed", "risk_notes": ["touches auth", " "]}
        )

        assert outcome.diagnostic is None
        assert outcome.context == {
            "diff_summary": "3 files changed",
            "test_summary": "40 passed",
            "risk_notes": ["touches auth"],
        }

    def test_existing_context_map_wins(self):
        outcome = build_approval_context(
            {"approval_context": {"diff_summary": "from context"}, "diff_summary": "from top level"}
        )
        assert outcome.context["diff_summary"] == "from context"

    def test_placeholders(self):
        outcome = build_approval_context({})
        assert outcome.context == {
            "diff_summary": DIFF_SUMMARY_PLACEHOLDER,
            "test_summary": TEST_SUMMARY_PLACEHOLDER,
            "risk_notes": RISK_NOTES_PLACEHOLDER,
        }

    def test_generation_error(self):
        outcome = build_approval_context({"approval_context_generation_error": "git diff failed"})

        assert outcome.context is None
        assert outcome.diagnostic["error_type"] == "approval_context_generation_failed"
        assert outcome.diagnostic["operation"] == "build_approval_context"
        assert outcome.diagnostic["reason_type"] == "approval_payload_blocked"
        assert outcome.diagnostic["detail"] == "git diff failed"

    def test_nested_generation_error(self):
        outcome = build_approval_context({"approval_context": {"generation_error": "test runner missing"}})
        assert outcome.diagnostic["detail"] == "test runner missing"

    def test_non_mapping_step_results(self):
        outcome = build_approval_context(None)
        assert outcome.context is None
        assert "unavailable" in outcome.diagnostic["detail"]


class TestDiagnostics:
    def test_append_and_clear(self):
        error = append_diagnostic({"error_type": "x"}, {"detail": "first"})
        error = append_diagnostic(error, {"detail": "second"})

        assert [d["detail"] for d in error[DIAGNOSTICS_KEY]] == ["first", "second"]
        assert clear_diagnostics(error) == {"error_type": "x"}

    def test_clear_to_none(self):
        assert clear_diagnostics({DIAGNOSTICS_KEY: [{}]}) is None
        assert clear_diagnostics(None) is None


class TestApprovalContextBlocked:
    def test_not_blocked_with_context(self):
        assert approval_context_blocked({"approval_context": {"diff_summary": "x"}}, None) is False

    def test_blocked_without_context(self):
        assert approval_context_blocked({}, None) is True

    def test_blocked_by_outstanding_diagnostic(self):
        step_results = {"approval_context": {"diff_summary": "x"}}
        assert approval_context_blocked(step_results, {DIAGNOSTICS_KEY: [{"detail": "boom"}]}) is True
