"""
Issue-triage posting workflow.

Issue-triage runs end by posting the bot's proposed response as a comment on
the GitHub issue that triggered them. Depending on the trigger's approval
policy the post happens immediately (auto-post) or only after a human approves
it at the approval gate.

Lifecycle::

    auto-post:          pending -> running(post_github_comment) -> completed | failed
    approval required:  pending -> running(request_approval) -> awaiting_approval(approval_gate)
                        ... approve -> running(post_github_comment) -> completed | failed

Posting failures do not make the operation fail: the run itself moves to
``failed`` with a typed failure and a ``status: failed`` artifact under
``step_results["post_issue_response"]``.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import datetime
from typing import TYPE_CHECKING, Any

import structlog

from workflow_runs.config.policies import ApprovalPolicy
from workflow_runs.config.settings import IssueTriageConfig
from workflow_runs.enums import PostMode, RunStatus
from workflow_runs.exceptions import ExternalServiceError
from workflow_runs.models.domain import WorkflowRun
from workflow_runs.models.results import OperationResult, TypedFailure
from workflow_runs.models.types import ApprovalDecision, PostRequest
from workflow_runs.providers.base import IssuePoster
from workflow_runs.utils.logging_config import bind_run_context
from workflow_runs.utils.normalize import (
    as_mapping,
    first_present,
    isoformat,
    optional_iso8601,
    optional_positive_int,
    optional_string,
    reject_none,
    utc_now,
)

if TYPE_CHECKING:
    from workflow_runs.engine.state_machine import RunStateMachine

log = structlog.get_logger(__name__)

REQUEST_APPROVAL_STEP = "request_approval"
APPROVAL_GATE_STEP = "approval_gate"
POST_STEP = "post_github_comment"
POST_OPERATION = "post_issue_triage_response"
POST_FAILURE_ERROR_TYPE = "issue_triage_response_post_failed"
DEFAULT_LAST_SUCCESSFUL_STEP = "compose_issue_response"
DEFAULT_POST_DETAIL = "Issue Bot could not post the approved response to GitHub."
DEFAULT_POST_REMEDIATION = (
    "Verify GitHub credentials and provider availability, then retry posting the Issue Bot response."
)

AUTH_REASON_TYPES = frozenset({"authentication", "forbidden", "auth", "auth_error", "github_authentication_failed"})

_GITHUB_ISSUE_URL = re.compile(r"https?://github\.com/([^/\s]+/[^/\s]+)/issues/(\d+)")


def parse_issue_reference_repo(issue_reference: Any) -> str | None:
    """Repository full name from ``owner/repo#123`` or a GitHub issue URL."""
    if not isinstance(issue_reference, str):
        return None
    if "#" in issue_reference:
        candidate = optional_string(issue_reference.split("#", 1)[0])
        if candidate and "/" in candidate and "://" not in candidate:
            return candidate
        return None
    match = _GITHUB_ISSUE_URL.search(issue_reference)
    return match.group(1) if match else None


def parse_issue_reference_number(issue_reference: Any) -> int | None:
    """Issue number from ``owner/repo#123`` or a GitHub issue URL."""
    if not isinstance(issue_reference, str):
        return None
    if "#" in issue_reference:
        return optional_positive_int(issue_reference.split("#", 1)[1])
    match = _GITHUB_ISSUE_URL.search(issue_reference)
    return optional_positive_int(match.group(2)) if match else None


def issue_reference(run: WorkflowRun) -> str | None:
    return optional_string(as_mapping(run.inputs).get("issue_reference"))


def source_issue(run: WorkflowRun) -> dict[str, Any]:
    return as_mapping(as_mapping(run.trigger).get("source_issue"))


def repo_full_name(run: WorkflowRun) -> str | None:
    source_row = as_mapping(as_mapping(run.trigger).get("source_row"))
    return optional_string(source_row.get("project_github_full_name")) or parse_issue_reference_repo(
        issue_reference(run)
    )


def issue_number(run: WorkflowRun) -> int | None:
    return optional_positive_int(source_issue(run).get("number")) or parse_issue_reference_number(
        issue_reference(run)
    )


def post_mode(run: WorkflowRun) -> PostMode:
    return ApprovalPolicy.from_trigger(run.trigger).post_mode


def post_failure(detail: str, run: WorkflowRun) -> dict[str, Any]:
    """Failure record for a post that never reached the provider."""
    return reject_none(
        {
            "error_type": POST_FAILURE_ERROR_TYPE,
            "reason_type": "provider_error",
            "operation": POST_OPERATION,
            "detail": detail,
            "remediation": DEFAULT_POST_REMEDIATION,
            "failed_step": POST_STEP,
            "last_successful_step": DEFAULT_LAST_SUCCESSFUL_STEP,
            "run_id": optional_string(run.run_id),
            "issue_reference": issue_reference(run),
            "source_issue": source_issue(run),
            "timestamp": isoformat(utc_now()),
        }
    )


def failure_reason_type(provider_reason_type: str | None) -> str:
    if provider_reason_type and provider_reason_type.strip().lower() in AUTH_REASON_TYPES:
        return "auth_error"
    return "provider_error"


def normalize_post_failure(reason: Any, run: WorkflowRun) -> dict[str, Any]:
    """Normalize whatever the poster reported into the posting failure record."""
    if not isinstance(reason, Mapping):
        return post_failure(DEFAULT_POST_DETAIL, run)

    provider_reason_type = optional_string(reason.get("reason_type"))
    return reject_none(
        {
            "error_type": optional_string(reason.get("error_type")) or POST_FAILURE_ERROR_TYPE,
            "reason_type": failure_reason_type(provider_reason_type),
            "provider_reason_type": provider_reason_type,
            "operation": POST_OPERATION,
            "detail": optional_string(reason.get("detail")) or DEFAULT_POST_DETAIL,
            "remediation": optional_string(reason.get("remediation")) or DEFAULT_POST_REMEDIATION,
            "failed_step": POST_STEP,
            "last_successful_step": DEFAULT_LAST_SUCCESSFUL_STEP,
            "run_id": optional_string(run.run_id),
            "issue_reference": issue_reference(run),
            "source_issue": source_issue(run),
            "timestamp": isoformat(utc_now()),
        }
    )


def build_post_request(run: WorkflowRun) -> OperationResult[PostRequest]:
    """Resolve repository, issue number and body; fail fast on anything missing."""
    response_artifact = as_mapping(as_mapping(run.step_results).get("compose_issue_response"))
    body = optional_string(response_artifact.get("proposed_response"))
    number = issue_number(run)
    repo = repo_full_name(run)

    if repo is None:
        detail = "GitHub repository reference is missing from run metadata."
    elif number is None:
        detail = "Issue number is missing from run metadata."
    elif body is None:
        detail = "Proposed response artifact is missing and cannot be posted."
    else:
        return OperationResult.success({"repo_full_name": repo, "issue_number": number, "body": body})

    return OperationResult.failed(TypedFailure.from_mapping(post_failure(detail, run)))


def _poster_failure(detail: str) -> dict[str, Any]:
    return {
        "error_type": POST_FAILURE_ERROR_TYPE,
        "reason_type": "provider_error",
        "operation": POST_OPERATION,
        "detail": detail,
        "remediation": DEFAULT_POST_REMEDIATION,
    }


async def safe_post(poster: IssuePoster | None, request: PostRequest) -> tuple[dict[str, Any] | None, Any]:
    """Invoke the poster, containing every way it can misbehave.

    Returns:
        ``(post_result, None)`` on success or ``(None, failure_reason)``.
    """
    if poster is None:
        return None, _poster_failure("Issue Bot response poster is invalid.")

    try:
        result = await poster.post(request)
    except ExternalServiceError as e:
        return None, {
            "error_type": POST_FAILURE_ERROR_TYPE,
            "reason_type": e.reason_type,
            "detail": f"Issue Bot response poster failed ({e.message}).",
        }
    except Exception as e:
        return None, _poster_failure(f"Issue Bot response poster crashed ({e}).")

    if isinstance(result, OperationResult):
        if result.failure is not None:
            return None, result.failure.to_dict()
        if isinstance(result.value, Mapping):
            return dict(result.value), None
    return None, _poster_failure(f"Issue Bot response poster returned invalid result {result!r}.")


def success_artifact(
    post_result: Mapping[str, Any], run: WorkflowRun, decision: Mapping[str, Any], approved_at: datetime
) -> dict[str, Any]:
    def field(key: str, fallback_key: str) -> Any:
        return first_present(post_result, key, default=post_result.get(fallback_key))

    return reject_none(
        {
            "status": "posted",
            "provider": "github",
            "posted": True,
            "approval_mode": post_mode(run).value,
            "approval_decision": optional_string(decision.get("decision")),
            "comment_url": optional_string(field("comment_url", "html_url")),
            "comment_api_url": optional_string(field("comment_api_url", "url")),
            "comment_id": optional_positive_int(field("comment_id", "id")),
            "posted_at": optional_iso8601(field("posted_at", "created_at")) or isoformat(approved_at),
            "issue_reference": issue_reference(run),
            "source_issue": source_issue(run),
            "repo_full_name": repo_full_name(run),
        }
    )


def failure_artifact(
    typed_failure: Mapping[str, Any], run: WorkflowRun, decision: Mapping[str, Any], approved_at: datetime
) -> dict[str, Any]:
    return reject_none(
        {
            "status": "failed",
            "provider": "github",
            "posted": False,
            "approval_mode": post_mode(run).value,
            "approval_decision": optional_string(decision.get("decision")),
            "attempted_at": isoformat(approved_at),
            "issue_reference": issue_reference(run),
            "source_issue": source_issue(run),
            "repo_full_name": repo_full_name(run),
            "typed_failure": dict(typed_failure),
        }
    )


class IssueTriagePostingWorkflow:
    """Drive issue-triage runs through approval and posting.

    All status changes go through the state machine, so every hop is
    validated, persisted and published like any other transition.
    """

    def __init__(self, machine: RunStateMachine, poster: IssuePoster | None, config: IssueTriageConfig) -> None:
        self.machine = machine
        self.poster = poster
        self.config = config

    def applies_to(self, run: WorkflowRun) -> bool:
        return optional_string(run.workflow_name) == self.config.workflow_name

    async def advance(self, run: WorkflowRun) -> OperationResult[WorkflowRun]:
        """Advance an issue-triage run toward posting.

        Auto-post runs are approved on the spot and posted. Other runs are
        routed to the approval gate. Runs of other workflows are returned
        unchanged.
        """
        persisted = await self.machine.reload(run)
        if not self.applies_to(persisted):
            return OperationResult.success(persisted)

        with bind_run_context(persisted.project_id, persisted.run_id, POST_OPERATION):
            mode = post_mode(persisted)
            log.info("issue_triage_advancing", post_mode=mode.value, status=str(persisted.status))

            if mode is PostMode.AUTO_POST:
                approved_at = utc_now()
                decision: ApprovalDecision = {
                    "decision": "auto_approved",
                    "actor": {"id": self.config.auto_approver_id, "email": None},
                    "timestamp": isoformat(approved_at),
                }
                return await self.finalize_posting(persisted, decision, approved_at)

            return await self._route_to_approval_gate(persisted)

    async def _route_to_approval_gate(self, run: WorkflowRun) -> OperationResult[WorkflowRun]:
        if run.status is RunStatus.AWAITING_APPROVAL:
            return OperationResult.success(run)

        transitioned_at = utc_now()
        running = await self.ensure_status(run, RunStatus.RUNNING, REQUEST_APPROVAL_STEP, transitioned_at)
        if not running.ok:
            return running
        return await self.ensure_status(
            running.unwrap(), RunStatus.AWAITING_APPROVAL, APPROVAL_GATE_STEP, transitioned_at
        )

    async def ensure_status(
        self,
        run: WorkflowRun,
        target: RunStatus,
        current_step: str,
        transitioned_at: datetime,
        transition_metadata: Mapping[str, Any] | None = None,
    ) -> OperationResult[WorkflowRun]:
        """Transition to ``target`` unless the run is already there."""
        if run.status is target:
            return OperationResult.success(run)
        return await self.machine.transition_status(
            run,
            target,
            current_step=current_step,
            transitioned_at=transitioned_at,
            transition_metadata=transition_metadata,
        )

    async def finalize_posting(
        self, run: WorkflowRun, decision: Mapping[str, Any], approved_at: datetime
    ) -> OperationResult[WorkflowRun]:
        """Move the run to the posting step, post, and record the outcome."""
        running_result = await self.ensure_status(
            run, RunStatus.RUNNING, POST_STEP, approved_at, {"approval_decision": dict(decision)}
        )
        if not running_result.ok:
            return running_result
        running = running_result.unwrap()

        request = build_post_request(running)
        if request.failure is not None:
            log.warning("issue_triage_post_request_incomplete", detail=request.failure.detail)
            return await self._fail_posting(running, decision, approved_at, request.failure.to_dict())

        post_result, reason = await safe_post(self.poster, request.unwrap())
        if post_result is None:
            typed_failure = normalize_post_failure(reason, running)
            log.warning(
                "issue_triage_post_failed",
                reason_type=typed_failure["reason_type"],
                provider_reason_type=typed_failure.get("provider_reason_type"),
            )
            return await self._fail_posting(running, decision, approved_at, typed_failure)

        artifact = success_artifact(post_result, running, decision, approved_at)
        log.info("issue_triage_response_posted", comment_id=artifact.get("comment_id"))
        return await self.machine.transition_status(
            running,
            RunStatus.COMPLETED,
            current_step=POST_STEP,
            transitioned_at=approved_at,
            transition_metadata={"issue_response_post": artifact},
        )

    async def _fail_posting(
        self,
        run: WorkflowRun,
        decision: Mapping[str, Any],
        approved_at: datetime,
        typed_failure: Mapping[str, Any],
    ) -> OperationResult[WorkflowRun]:
        artifact = failure_artifact(typed_failure, run, decision, approved_at)
        return await self.machine.transition_status(
            run,
            RunStatus.FAILED,
            current_step=POST_STEP,
            transitioned_at=approved_at,
            transition_metadata={
                "typed_failure": dict(typed_failure),
                "failure_context": dict(typed_failure),
                "issue_response_post": artifact,
            },
        )
