"""Tests for the lifecycle transition table and TransitionBuilder."""

from itertools import product

import pytest

from workflow_runs.engine.transitions import (
    ALLOWED_TRANSITIONS,
    TransitionBuilder,
    allowed_transition,
    transition_entry,
    transition_events,
)
from workflow_runs.enums import TERMINAL_STATUSES, RunEvent, RunStatus
from workflow_runs.exceptions import InvalidTransitionError
from workflow_runs.utils.normalize import isoformat, utc_now

LEGAL = {
    (RunStatus.PENDING, RunStatus.RUNNING),
    (RunStatus.PENDING, RunStatus.CANCELLED),
    (RunStatus.RUNNING, RunStatus.AWAITING_APPROVAL),
    (RunStatus.RUNNING, RunStatus.COMPLETED),
    (RunStatus.RUNNING, RunStatus.FAILED),
    (RunStatus.RUNNING, RunStatus.CANCELLED),
    (RunStatus.AWAITING_APPROVAL, RunStatus.RUNNING),
    (RunStatus.AWAITING_APPROVAL, RunStatus.CANCELLED),
}


class TestTransitionTable:
    @pytest.mark.parametrize(("from_status", "to_status"), list(product(RunStatus, RunStatus)))
    def test_exactly_the_legal_pairs_are_allowed(self, from_status, to_status):
        assert allowed_transition(from_status, to_status) is ((from_status, to_status) in LEGAL)

    @pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES))
    def test_terminal_statuses_have_no_exits(self, status):
        assert ALLOWED_TRANSITIONS[status] == frozenset()

    def test_unknown_statuses(self):
        assert allowed_transition(None, RunStatus.RUNNING) is False
        assert allowed_transition(RunStatus.RUNNING, None) is False


class TestTransitionEntry:
    def test_metadata_omitted_when_empty(self):
        now = utc_now()
        entry = transition_entry(RunStatus.PENDING, RunStatus.RUNNING, "plan", now, {})

        assert entry == {
            "from_status": "pending",
            "to_status": "running",
            "current_step": "plan",
            "transitioned_at": isoformat(now),
        }

    def test_synthetic_creation_entry(self):
        entry = transition_entry(None, RunStatus.PENDING, None, utc_now(), {"source": "api"})
        assert entry["from_status"] is None
        assert entry["current_step"] == "unknown"
        assert entry["metadata"] == {"source": "api"}


class TestTransitionEvents:
    @pytest.mark.parametrize(
        ("from_status", "to_status", "metadata", "expected"),
        [
            (RunStatus.PENDING, RunStatus.RUNNING, None, [RunEvent.STEP_STARTED]),
            (RunStatus.RUNNING, RunStatus.AWAITING_APPROVAL, None, [RunEvent.APPROVAL_REQUESTED]),
            (
                RunStatus.AWAITING_APPROVAL,
                RunStatus.RUNNING,
                {"approval_decision": {"decision": "approved"}},
                [RunEvent.APPROVAL_GRANTED, RunEvent.STEP_STARTED],
            ),
            (
                RunStatus.AWAITING_APPROVAL,
                RunStatus.RUNNING,
                {"approval_decision": {"decision": "rejected"}},
                [RunEvent.APPROVAL_REJECTED, RunEvent.STEP_STARTED],
            ),
            (
                RunStatus.AWAITING_APPROVAL,
                RunStatus.CANCELLED,
                None,
                [RunEvent.APPROVAL_REJECTED, RunEvent.RUN_CANCELLED],
            ),
            (RunStatus.RUNNING, RunStatus.COMPLETED, None, [RunEvent.STEP_COMPLETED, RunEvent.RUN_COMPLETED]),
            (RunStatus.RUNNING, RunStatus.FAILED, None, [RunEvent.STEP_FAILED, RunEvent.RUN_FAILED]),
            (RunStatus.PENDING, RunStatus.CANCELLED, None, [RunEvent.RUN_CANCELLED]),
        ],
    )
    def test_events(self, from_status, to_status, metadata, expected):
        assert transition_events(from_status, to_status, metadata) == expected


class TestTransitionBuilder:
    def test_illegal_transition_raises(self, build_run):
        run = build_run(status=RunStatus.COMPLETED)
        with pytest.raises(InvalidTransitionError) as exc_info:
            TransitionBuilder(run, RunStatus.RUNNING).build()
        assert exc_info.value.from_status == "completed"
        assert exc_info.value.to_status == "running"

    def test_build_does_not_mutate_run(self, build_run):
        run = build_run(step_results={"diff_summary": "2 files"})
        before = run.to_dict()

        result = TransitionBuilder(run, RunStatus.AWAITING_APPROVAL, current_step="approval_gate").build()
        updated = result.apply(run)

        assert run.to_dict() == before
        assert updated.status is RunStatus.AWAITING_APPROVAL
        assert updated.current_step == "approval_gate"
        assert updated is not run

    def test_step_defaults_to_previous(self, build_run):
        result = TransitionBuilder(build_run(current_step="implement"), RunStatus.COMPLETED).build()
        assert result.current_step == "implement"

    def test_appends_one_entry(self, build_run):
        run = build_run(status_transitions=[{"from_status": None, "to_status": "pending"}])
        now = utc_now()

        result = TransitionBuilder(run, RunStatus.CANCELLED, transitioned_at=now).build()

        assert len(result.status_transitions) == 2
        assert result.status_transitions[-1]["from_status"] == "running"
        assert result.status_transitions[-1]["to_status"] == "cancelled"
        assert result.status_transitions[-1]["transitioned_at"] == isoformat(now)

    def test_terminal_sets_completed_at(self, build_run):
        now = utc_now()
        result = TransitionBuilder(build_run(), RunStatus.COMPLETED, transitioned_at=now).build()
        assert result.completed_at == now

    def test_non_terminal_clears_completed_at(self, build_run):
        run = build_run(status=RunStatus.AWAITING_APPROVAL, completed_at=utc_now())
        result = TransitionBuilder(run, RunStatus.RUNNING).build()
        assert result.completed_at is None

    def test_awaiting_approval_captures_context(self, build_run):
        run = build_run(step_results={"diff_summary": "2 files", "test_summary": "12 passed", "risk_notes": "none"})

        result = TransitionBuilder(run, RunStatus.AWAITING_APPROVAL).build()

        assert result.step_results["approval_context"] == {
            "diff_summary": "2 files",
            "test_summary": "12 passed",
            "risk_notes": ["none"],
        }
        assert result.error is None

    def test_awaiting_approval_records_diagnostic(self, build_run):
        run = build_run(step_results={"approval_context_generation_error": "diff tool crashed"})

        result = TransitionBuilder(run, RunStatus.AWAITING_APPROVAL).build()

        assert "approval_context" not in result.step_results
        diagnostics = result.error["approval_context_diagnostics"]
        assert len(diagnostics) == 1
        assert diagnostics[0]["detail"] == "diff tool crashed"

    def test_approval_decision_recorded(self, build_run):
        decision = {"decision": "approved", "actor": {"id": "u1", "email": None}, "timestamp": "t"}
        run = build_run(
            status=RunStatus.AWAITING_APPROVAL,
            step_results={"approval_decisions": [{"decision": "rejected"}]},
        )

        result = TransitionBuilder(run, RunStatus.RUNNING, transition_metadata={"approval_decision": decision}).build()

        assert result.step_results["approval_decision"] == decision
        assert result.step_results["approval_decisions"] == [{"decision": "rejected"}, decision]
        assert result.events == (RunEvent.APPROVAL_GRANTED, RunEvent.STEP_STARTED)

    def test_approval_decision_ignored_outside_gate(self, build_run):
        result = TransitionBuilder(
            build_run(status=RunStatus.PENDING),
            RunStatus.RUNNING,
            transition_metadata={"approval_decision": {"decision": "auto_approved"}},
        ).build()
        assert "approval_decision" not in result.step_results

    def test_issue_response_post_artifact(self, build_run):
        artifact = {"status": "posted", "comment_id": 1}
        result = TransitionBuilder(
            build_run(), RunStatus.COMPLETED, transition_metadata={"issue_response_post": artifact}
        ).build()
        assert result.step_results["post_issue_response"] == artifact

    def test_failed_resolves_failure_context(self, build_run):
        run = build_run(
            status_transitions=[
                {"from_status": None, "to_status": "pending", "current_step": "queued"},
                {"from_status": "pending", "to_status": "running", "current_step": "plan"},
            ]
        )

        result = TransitionBuilder(
            run,
            RunStatus.FAILED,
            current_step="implement",
            transition_metadata={"failure_context": {"error_type": "agent_timeout", "remediation": "Retry later."}},
        ).build()

        assert result.error["error_type"] == "agent_timeout"
        assert result.error["failed_step"] == "implement"
        assert result.error["last_successful_step"] == "plan"
        assert result.error["failure_context_complete"] is True
