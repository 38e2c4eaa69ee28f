"""
Trigger policy decoding.

Workflow triggers carry free-form ``retry_policy`` and ``approval_policy`` maps
written by whoever started the run. This module decodes them into explicit
Pydantic models with a documented precedence for every alias, so the state
machine never performs ad hoc dictionary lookups.

Retry policy lookup order:
    ``trigger.retry_policy`` -> ``trigger.policy.retry_policy`` ->
    ``trigger.policy.retry`` -> ``{}``

Approval policy lookup order:
    ``trigger.approval_policy`` -> ``trigger.policy.approval_policy`` ->
    ``trigger.policy.approval`` -> ``trigger.policy``

Example:
    >>> policy = RetryPolicy.from_trigger({"retry_policy": {"mode": "step_only", "retry_step": "test"}})
    >>> policy.full_run_allowed, policy.step_retry_declared, policy.declared_retry_step
    (False, True, 'test')
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from workflow_runs.enums import PostMode
from workflow_runs.exceptions import PolicyInvalidError
from workflow_runs.utils.normalize import (
    as_mapping,
    boolean,
    first_present,
    normalize_step,
    optional_bool,
    optional_string,
)

FULL_RUN_BLOCKING_MODES = frozenset({"disabled", "disallow", "blocked", "step_only", "step_level_only"})
STEP_RETRY_MODES = frozenset({"step_only", "step_level", "step_level_only", "full_and_step", "full_run_and_step"})

_POST_MODE_ALIASES: dict[str, PostMode] = {
    "auto_post": PostMode.AUTO_POST,
    "auto-post": PostMode.AUTO_POST,
    "auto": PostMode.AUTO_POST,
    "approval_required": PostMode.APPROVAL_REQUIRED,
    "approval-required": PostMode.APPROVAL_REQUIRED,
    "manual": PostMode.APPROVAL_REQUIRED,
    "manual_gate": PostMode.APPROVAL_REQUIRED,
    "manual-gate": PostMode.APPROVAL_REQUIRED,
}

_REJECTION_ACTIONS: dict[str, str] = {
    "cancel": "cancel",
    "retry_route": "retry_route",
    "route_retry": "retry_route",
    "route_to_retry": "retry_route",
    "reroute": "retry_route",
    "retry": "retry_route",
}


def _nested_policy(trigger: Mapping[str, Any], direct_key: str, *nested_keys: str, fallback_whole: bool) -> dict:
    direct = first_present(trigger, direct_key)
    if isinstance(direct, Mapping):
        return dict(direct)

    nested = as_mapping(first_present(trigger, "policy"))
    for key in nested_keys:
        candidate = first_present(nested, key)
        if isinstance(candidate, Mapping):
            return dict(candidate)
    return nested if fallback_whole else {}


def _normalize_mode(value: Any) -> str | None:
    mode = optional_string(value)
    return mode.lower() if mode else None


def _step_targets(value: Any) -> list[str]:
    if isinstance(value, str):
        candidates: list[Any] = value.split(",")
    elif isinstance(value, list | tuple):
        candidates = list(value)
    else:
        return []

    targets: list[str] = []
    for candidate in candidates:
        step = optional_string(candidate)
        if step and step not in targets:
            targets.append(step)
    return targets


def _configured_step(policy: Mapping[str, Any]) -> str | None:
    return optional_string(first_present(policy, "retry_step", "step", "default_step"))


def _configured_steps(policy: Mapping[str, Any]) -> list[str]:
    return _step_targets(first_present(policy, "allowed_steps", "retry_steps", "steps", default=[]))


def _nested_step_policy(policy: Mapping[str, Any]) -> dict[str, Any]:
    for key in ("step_retry_policy", "step_retry", "step_level"):
        candidate = first_present(policy, key)
        if isinstance(candidate, Mapping):
            return dict(candidate)
    return {}


class RetryPolicy(BaseModel):
    """Structured view of a trigger's retry policy.

    Attributes:
        raw: The policy map exactly as found on the trigger
        mode: Lower-cased ``mode`` value, if any
        full_run_allowed: Whether a full-run retry may be started
        step_retry_declared: Whether the policy declares step-level retry
        declared_retry_step: Default step target, direct or nested
        allowed_steps: Permitted step targets, direct and nested, de-duplicated
    """

    model_config = ConfigDict(frozen=True)

    raw: dict[str, Any] = Field(default_factory=dict)
    mode: str | None = None
    full_run_allowed: bool = True
    step_retry_declared: bool = False
    declared_retry_step: str | None = None
    allowed_steps: list[str] = Field(default_factory=list)

    @classmethod
    def from_trigger(cls, trigger: Any) -> RetryPolicy:
        """Locate and decode the retry policy on a run trigger."""
        trigger_map = as_mapping(trigger)
        return cls.from_mapping(
            _nested_policy(trigger_map, "retry_policy", "retry_policy", "retry", fallback_whole=False)
        )

    @classmethod
    def from_mapping(cls, policy: Mapping[str, Any]) -> RetryPolicy:
        """Decode a retry policy map."""
        raw = dict(policy)
        mode = _normalize_mode(first_present(raw, "mode"))

        full_run_flag = boolean(first_present(raw, "full_run", "allow_full_run", default=True), True)
        full_run_allowed = full_run_flag and mode not in FULL_RUN_BLOCKING_MODES

        nested = _nested_step_policy(raw)
        declared_step = _configured_step(raw) or _configured_step(nested)
        allowed_steps: list[str] = []
        for step in _configured_steps(raw) + _configured_steps(nested):
            if step not in allowed_steps:
                allowed_steps.append(step)

        step_flag = optional_bool(
            first_present(raw, "step_retry", "step_level", "allow_step_retry", "allow_step_level")
        )
        if step_flag is not None:
            step_declared = step_flag
        else:
            step_declared = mode in STEP_RETRY_MODES or declared_step is not None or bool(allowed_steps)

        return cls(
            raw=raw,
            mode=mode,
            full_run_allowed=full_run_allowed,
            step_retry_declared=step_declared,
            declared_retry_step=declared_step,
            allowed_steps=allowed_steps,
        )


class RejectionRoute(BaseModel):
    """Where a rejected run goes next."""

    model_config = ConfigDict(frozen=True)

    action: Literal["cancel", "retry_route"] = "cancel"
    retry_step: str | None = None


class ApprovalPolicy(BaseModel):
    """Structured view of a trigger's approval policy.

    Attributes:
        raw: The policy map exactly as found on the trigger
        post_mode: How issue-triage runs publish their response
        on_reject: Raw rejection policy (string action or map)
    """

    model_config = ConfigDict(frozen=True)

    raw: dict[str, Any] = Field(default_factory=dict)
    post_mode: PostMode = PostMode.APPROVAL_REQUIRED
    on_reject: Any = "cancel"

    @classmethod
    def from_trigger(cls, trigger: Any) -> ApprovalPolicy:
        """Locate and decode the approval policy on a run trigger."""
        trigger_map = as_mapping(trigger)
        return cls.from_mapping(
            _nested_policy(trigger_map, "approval_policy", "approval_policy", "approval", fallback_whole=True)
        )

    @classmethod
    def from_mapping(cls, policy: Mapping[str, Any]) -> ApprovalPolicy:
        """Decode an approval policy map."""
        raw = dict(policy)
        mode_value = optional_string(first_present(raw, "mode", "post_behavior"))
        post_mode = _POST_MODE_ALIASES.get(mode_value.lower()) if mode_value else None

        if post_mode is not PostMode.AUTO_POST and first_present(raw, "auto_post", default=False) is True:
            post_mode = PostMode.AUTO_POST

        return cls(
            raw=raw,
            post_mode=post_mode or PostMode.APPROVAL_REQUIRED,
            on_reject=first_present(raw, "on_reject", default="cancel"),
        )

    def rejection_route(self) -> RejectionRoute:
        """Resolve the rejection route.

        Returns:
            The configured route; ``cancel`` when nothing is configured.

        Raises:
            PolicyInvalidError: If the action is unknown or a retry route has
                no step.
        """
        on_reject = self.on_reject
        if isinstance(on_reject, Mapping):
            action = self._rejection_action(first_present(on_reject, "action"))
            if action == "cancel":
                return RejectionRoute()
            step = optional_string(first_present(on_reject, "retry_step", "route_step", "step"))
            if step is None:
                raise PolicyInvalidError(
                    "Reject action policy configured a retry route but no retry step was provided.",
                    "Update workflow rejection policy with a retry route step, then retry rejection.",
                )
            return RejectionRoute(action="retry_route", retry_step=normalize_step(step))

        action = self._rejection_action(on_reject)
        if action == "retry_route":
            raise PolicyInvalidError(
                "Reject action policy selected retry routing but did not declare a retry step.",
                "Update workflow rejection policy with a retry route step, then retry rejection.",
            )
        return RejectionRoute()

    @staticmethod
    def _rejection_action(value: Any) -> str:
        action = optional_string(value)
        if action is None:
            return "cancel"
        resolved = _REJECTION_ACTIONS.get(action)
        if resolved is None:
            raise PolicyInvalidError(
                "Reject action policy is invalid and cannot determine a rejection route.",
                "Review workflow rejection policy settings, then retry rejection.",
            )
        return resolved
