"""Tests for trigger policy decoding."""

import pytest

from workflow_runs.config.policies import ApprovalPolicy, RejectionRoute, RetryPolicy
from workflow_runs.enums import PostMode
from workflow_runs.exceptions import PolicyInvalidError


class TestRetryPolicyLookup:
    """Where the retry policy is read from on the trigger."""

    def test_direct_retry_policy(self):
        policy = RetryPolicy.from_trigger({"retry_policy": {"mode": "Step_Only"}})
        assert policy.raw == {"mode": "Step_Only"}
        assert policy.mode == "step_only"

    def test_nested_under_policy(self):
        policy = RetryPolicy.from_trigger({"policy": {"retry": {"full_run": False}}})
        assert policy.raw == {"full_run": False}
        assert policy.full_run_allowed is False

    def test_nested_retry_policy_beats_nested_retry(self):
        trigger = {"policy": {"retry_policy": {"mode": "disabled"}, "retry": {"mode": "full"}}}
        assert RetryPolicy.from_trigger(trigger).mode == "disabled"

    def test_missing_policy_is_empty(self):
        policy = RetryPolicy.from_trigger({"source": "manual"})
        assert policy.raw == {}
        assert policy.full_run_allowed is True
        assert policy.step_retry_declared is False

    def test_non_mapping_trigger(self):
        assert RetryPolicy.from_trigger(None).raw == {}


class TestFullRunAllowed:
    @pytest.mark.parametrize("mode", ["disabled", "disallow", "blocked", "step_only", "step_level_only"])
    def test_blocking_modes(self, mode):
        assert RetryPolicy.from_mapping({"mode": mode}).full_run_allowed is False

    @pytest.mark.parametrize("flag", [False, "false", "no", "0", 0])
    def test_explicit_flag(self, flag):
        assert RetryPolicy.from_mapping({"allow_full_run": flag}).full_run_allowed is False

    def test_flag_cannot_override_blocking_mode(self):
        assert RetryPolicy.from_mapping({"mode": "disabled", "full_run": True}).full_run_allowed is False

    def test_unrecognized_flag_defaults_to_allowed(self):
        assert RetryPolicy.from_mapping({"full_run": "sometimes"}).full_run_allowed is True


class TestStepRetryDeclaration:
    def test_declared_by_mode(self):
        policy = RetryPolicy.from_mapping({"mode": "full_and_step"})
        assert policy.step_retry_declared is True
        assert policy.full_run_allowed is True

    def test_declared_by_step(self):
        policy = RetryPolicy.from_mapping({"retry_step": "test"})
        assert policy.step_retry_declared is True
        assert policy.declared_retry_step == "test"

    def test_declared_by_allowed_steps(self):
        policy = RetryPolicy.from_mapping({"allowed_steps": "plan, test ,plan"})
        assert policy.step_retry_declared is True
        assert policy.allowed_steps == ["plan", "test"]

    def test_explicit_flag_wins_over_inference(self):
        policy = RetryPolicy.from_mapping({"step_retry": "false", "retry_step": "test"})
        assert policy.step_retry_declared is False

    def test_nested_step_policy(self):
        policy = RetryPolicy.from_mapping(
            {"retry_steps": ["plan"], "step_retry_policy": {"step": "verify", "allowed_steps": ["verify", "plan"]}}
        )
        assert policy.declared_retry_step == "verify"
        assert policy.allowed_steps == ["plan", "verify"]
        assert policy.step_retry_declared is True

    def test_direct_step_beats_nested(self):
        policy = RetryPolicy.from_mapping({"default_step": "plan", "step_level": {"retry_step": "verify"}})
        assert policy.declared_retry_step == "plan"

    def test_nothing_declared(self):
        policy = RetryPolicy.from_mapping({"mode": "full"})
        assert policy.step_retry_declared is False
        assert policy.declared_retry_step is None
        assert policy.allowed_steps == []


class TestApprovalPolicy:
    def test_default_requires_approval(self):
        policy = ApprovalPolicy.from_trigger({})
        assert policy.post_mode is PostMode.APPROVAL_REQUIRED
        assert policy.on_reject == "cancel"

    @pytest.mark.parametrize("mode", ["auto_post", "Auto-Post", "auto"])
    def test_auto_post_aliases(self, mode):
        policy = ApprovalPolicy.from_trigger({"approval_policy": {"mode": mode}})
        assert policy.post_mode is PostMode.AUTO_POST

    @pytest.mark.parametrize("mode", ["approval_required", "manual", "manual-gate"])
    def test_manual_aliases(self, mode):
        policy = ApprovalPolicy.from_trigger({"approval_policy": {"post_behavior": mode}})
        assert policy.post_mode is PostMode.APPROVAL_REQUIRED

    def test_auto_post_flag(self):
        assert ApprovalPolicy.from_mapping({"auto_post": True}).post_mode is PostMode.AUTO_POST

    def test_auto_post_flag_must_be_true_boolean(self):
        assert ApprovalPolicy.from_mapping({"auto_post": "true"}).post_mode is PostMode.APPROVAL_REQUIRED

    def test_whole_policy_map_is_fallback(self):
        policy = ApprovalPolicy.from_trigger({"policy": {"mode": "auto_post"}})
        assert policy.post_mode is PostMode.AUTO_POST

    def test_nested_approval_map(self):
        policy = ApprovalPolicy.from_trigger({"policy": {"approval": {"on_reject": "retry"}}})
        assert policy.on_reject == "retry"


class TestRejectionRoute:
    def test_default_cancels(self):
        assert ApprovalPolicy.from_mapping({}).rejection_route() == RejectionRoute(action="cancel")

    def test_route_map(self):
        policy = ApprovalPolicy.from_mapping({"on_reject": {"action": "reroute", "route_step": " implement "}})
        assert policy.rejection_route() == RejectionRoute(action="retry_route", retry_step="implement")

    def test_cancel_map(self):
        policy = ApprovalPolicy.from_mapping({"on_reject": {"action": "cancel", "retry_step": "implement"}})
        assert policy.rejection_route().action == "cancel"

    def test_route_map_without_step(self):
        policy = ApprovalPolicy.from_mapping({"on_reject": {"action": "retry_route"}})
        with pytest.raises(PolicyInvalidError, match="no retry step was provided"):
            policy.rejection_route()

    def test_bare_retry_action(self):
        policy = ApprovalPolicy.from_mapping({"on_reject": "retry"})
        with pytest.raises(PolicyInvalidError, match="did not declare a retry step"):
            policy.rejection_route()

    def test_unknown_action(self):
        policy = ApprovalPolicy.from_mapping({"on_reject": {"action": "explode"}})
        with pytest.raises(PolicyInvalidError) as exc_info:
            policy.rejection_route()
        assert exc_info.value.remediation == "Review workflow rejection policy settings, then retry rejection."
