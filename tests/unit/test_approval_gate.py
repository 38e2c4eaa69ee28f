"""Tests for approve and reject at the approval gate."""

import pytest

from workflow_runs.engine.state_machine import RunStateMachine
from workflow_runs.enums import RunStatus
from workflow_runs.providers.events import RecordingEventPublisher
from workflow_runs.providers.file_store import FileRunStore

APPROVAL_ARTIFACTS = {"diff_summary": "2 files changed", "test_summary": "18 passed", "risk_notes": ["touches auth"]}
APPROVED_AT = "2026-02-15T13:00:00Z"


@pytest.fixture
def gated_run(machine: RunStateMachine, create_run, drive):
    """Coroutine producing a stored run waiting at the approval gate."""

    async def make(step_results=None, **overrides):
        run = await create_run(machine, step_results=step_results or dict(APPROVAL_ARTIFACTS), **overrides)
        return await drive(machine, run, (RunStatus.RUNNING, "implement"), (RunStatus.AWAITING_APPROVAL, "review"))

    return make


class TestApprove:
    @pytest.mark.asyncio
    async def test_approve_resumes_run(
        self, machine: RunStateMachine, publisher: RecordingEventPublisher, gated_run
    ):
        run = await gated_run()
        assert run.step_results["approval_context"]["diff_summary"] == "2 files changed"

        result = await machine.approve(
            run,
            {"actor": {"id": "reviewer-1", "email": "r@example.com"}, "approved_at": APPROVED_AT},
        )

        assert result.ok
        approved = result.unwrap()
        assert approved.status is RunStatus.RUNNING
        assert approved.current_step == "review"
        decision = approved.step_results["approval_decision"]
        assert decision == {
            "decision": "approved",
            "actor": {"id": "reviewer-1", "email": "r@example.com"},
            "timestamp": APPROVED_AT,
        }
        assert approved.step_results["approval_decisions"] == [decision]
        assert approved.status_transitions[-1]["metadata"] == {"approval_decision": decision}
        assert publisher.events_for("run-1")[-2:] == ["approval_granted", "step_started"]

    @pytest.mark.asyncio
    async def test_approve_with_explicit_step(self, machine: RunStateMachine, gated_run):
        run = await gated_run()
        approved = (await machine.approve(run, {"current_step": "deploy"})).unwrap()

        assert approved.current_step == "deploy"
        assert approved.step_results["approval_decision"]["actor"] == {"id": "unknown", "email": None}

    @pytest.mark.asyncio
    async def test_blank_step_falls_back_to_resume_execution(self, machine: RunStateMachine, gated_run):
        run = await gated_run()
        approved = (await machine.approve(run, {"current_step": ""})).unwrap()
        assert approved.current_step == "resume_execution"

    @pytest.mark.asyncio
    async def test_approve_requires_awaiting_approval(self, machine: RunStateMachine, create_run):
        run = await create_run(machine)

        result = await machine.approve(run, {})

        assert result.failure.error_type == "workflow_run_approval_action_failed"
        assert result.failure.operation == "approve_run"
        assert result.failure.reason_type == "invalid_run_status"
        assert result.failure.detail == "Approve action is only allowed when run status is awaiting_approval."

    @pytest.mark.asyncio
    async def test_approve_blocked_by_generation_failure(
        self, machine: RunStateMachine, publisher: RecordingEventPublisher, gated_run
    ):
        run = await gated_run(step_results={"approval_context_generation_error": "diff tool crashed"})
        assert run.status is RunStatus.AWAITING_APPROVAL
        assert "approval_context" not in run.step_results
        events_before = list(publisher.events_for("run-1"))

        result = await machine.approve(run, {"actor": {"id": "reviewer-1"}})
        reloaded = await machine.reload(run)

        assert result.failure.reason_type == "approval_context_blocked"
        assert result.failure.detail == "Approve action is blocked because approval context generation failed."
        assert result.failure.remediation == (
            "Regenerate diff summary, test summary, and risk notes before retrying approval."
        )
        assert reloaded.status is RunStatus.AWAITING_APPROVAL
        assert "approval_decision" not in reloaded.step_results
        assert publisher.events_for("run-1") == events_before

    @pytest.mark.asyncio
    async def test_approve_blocked_without_approval_context(
        self, machine: RunStateMachine, store: FileRunStore, publisher: RecordingEventPublisher, build_run
    ):
        await store.create(build_run(status=RunStatus.AWAITING_APPROVAL, current_step="review", step_results={}))
        run = await store.find_by_project_and_run_id("project-1", "run-1")

        result = await machine.approve(run, {"actor": {"id": "reviewer-1"}})
        reloaded = await machine.reload(run)

        assert result.failure.reason_type == "approval_context_blocked"
        assert result.failure.detail == (
            "Approve action is blocked because no approval context was recorded for this run."
        )
        assert reloaded.status is RunStatus.AWAITING_APPROVAL
        assert reloaded.status_transitions == run.status_transitions
        assert publisher.events_for("run-1") == []

    @pytest.mark.asyncio
    async def test_invalid_run_reference(self, machine: RunStateMachine):
        result = await machine.approve({"run_id": "run-1"}, {})
        assert result.failure.reason_type == "invalid_run"
        assert result.failure.detail == "Run reference is invalid and cannot be approved."


class TestReject:
    @pytest.mark.asyncio
    async def test_reject_cancels_by_default(
        self, machine: RunStateMachine, publisher: RecordingEventPublisher, gated_run
    ):
        run = await gated_run()

        result = await machine.reject(
            run, {"actor": {"id": "reviewer-1"}, "rejected_at": APPROVED_AT, "rationale": "  Too risky  "}
        )

        rejected = result.unwrap()
        assert rejected.status is RunStatus.CANCELLED
        assert rejected.current_step == "review"
        assert rejected.completed_at is not None
        assert rejected.step_results["approval_decision"] == {
            "decision": "rejected",
            "actor": {"id": "reviewer-1", "email": None},
            "timestamp": APPROVED_AT,
            "outcome": "cancelled",
            "rationale": "Too risky",
        }
        assert publisher.events_for("run-1")[-2:] == ["approval_rejected", "run_cancelled"]

    @pytest.mark.asyncio
    async def test_reject_routes_to_retry_step(
        self, machine: RunStateMachine, publisher: RecordingEventPublisher, gated_run
    ):
        trigger = {"approval_policy": {"on_reject": {"action": "retry_route", "retry_step": "implement"}}}
        run = await gated_run(trigger=trigger)

        rejected = (await machine.reject(run, {"actor": {"id": "reviewer-1"}})).unwrap()

        assert rejected.status is RunStatus.RUNNING
        assert rejected.current_step == "implement"
        decision = rejected.step_results["approval_decision"]
        assert decision["outcome"] == "retry_route"
        assert decision["retry_step"] == "implement"
        assert "rationale" not in decision
        assert publisher.events_for("run-1")[-2:] == ["approval_rejected", "step_started"]

    @pytest.mark.asyncio
    async def test_invalid_rejection_policy(self, machine: RunStateMachine, gated_run):
        run = await gated_run(trigger={"approval_policy": {"on_reject": "retry"}})

        result = await machine.reject(run, {})
        reloaded = await machine.reload(run)

        assert result.failure.operation == "reject_run"
        assert result.failure.reason_type == "policy_invalid"
        assert result.failure.detail == "Reject action policy selected retry routing but did not declare a retry step."
        assert reloaded.status is RunStatus.AWAITING_APPROVAL

    @pytest.mark.asyncio
    async def test_reject_requires_awaiting_approval(self, machine: RunStateMachine, failed_run):
        run = await failed_run(machine)
        result = await machine.reject(run, {})
        assert result.failure.reason_type == "invalid_run_status"
        assert result.failure.detail == "Reject action is only allowed when run status is awaiting_approval."

    @pytest.mark.asyncio
    async def test_decisions_accumulate(self, machine: RunStateMachine, drive, gated_run):
        trigger = {"approval_policy": {"on_reject": {"action": "reroute", "step": "implement"}}}
        run = await gated_run(trigger=trigger)

        run = (await machine.reject(run, {"actor": {"id": "reviewer-1"}})).unwrap()
        run = await drive(machine, run, (RunStatus.AWAITING_APPROVAL, "review"))
        run = (await machine.approve(run, {"actor": {"id": "reviewer-2"}})).unwrap()

        assert [d["decision"] for d in run.step_results["approval_decisions"]] == ["rejected", "approved"]
        assert run.step_results["approval_decision"]["actor"]["id"] == "reviewer-2"
