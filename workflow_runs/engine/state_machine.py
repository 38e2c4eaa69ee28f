"""
Workflow run lifecycle state machine.

``RunStateMachine`` is the only writer of workflow runs. Every public operation
follows the same shape: reload the run, validate, compute the change, persist
it in one write, then publish lifecycle events. Operations never raise for
expected problems; they return an :class:`OperationResult` whose failure is a
:class:`TypedFailure`.

Operations:
    create: Insert a new pending run
    transition_status: Move a run along the lifecycle table
    approve / reject: Resolve the approval gate
    retry / retry_step: Start a new run from a failed or cancelled one
    step_retry_contract: Resolve the step-level retry target without retrying
    advance_issue_triage_run: Drive issue-triage runs toward posting

Example:
    >>> machine = RunStateMachine(FileRunStore(".workflow-runs/state"), publisher=RecordingEventPublisher())
    >>> run = (await machine.create({"run_id": "run-1", "project_id": "p1", "workflow_name": "fix"})).unwrap()
    >>> run = (await machine.transition_status(run, RunStatus.RUNNING, current_step="plan")).unwrap()
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any

import structlog

from workflow_runs.config.policies import ApprovalPolicy, RetryPolicy
from workflow_runs.config.settings import LifecycleSettings
from workflow_runs.engine.approval_context import approval_context_blocked, outstanding_diagnostics
from workflow_runs.engine.events import EventPublicationAdapter, append_diagnostics
from workflow_runs.engine.failure_history import FailureHistoryEntry, query_failure_history, store_loader
from workflow_runs.engine.failures import (
    CREATE_OPERATION,
    approval_action_failure,
    invalid_transition_failure,
    rejection_action_failure,
    retry_action_failure,
    step_retry_action_failure,
    transition_store_failure,
)
from workflow_runs.engine.issue_triage import IssueTriagePostingWorkflow
from workflow_runs.engine.retry import (
    RetryIdentifierGenerator,
    build_retry_lineage,
    next_retry_attempt,
    resolve_step_retry_contract,
)
from workflow_runs.engine.transitions import TransitionBuilder, transition_entry
from workflow_runs.enums import RETRYABLE_STATUSES, RetryKind, RunEvent, RunStatus
from workflow_runs.exceptions import InvalidTransitionError, PolicyInvalidError, RunConflictError, WorkflowRunsError
from workflow_runs.models.domain import WorkflowRun, actor_resolved, normalize_actor, normalize_workflow_version
from workflow_runs.models.results import OperationResult, TypedFailure
from workflow_runs.models.types import Actor
from workflow_runs.providers.base import EventPublisher, IssuePoster, RunLookup, RunStore
from workflow_runs.providers.events import LoggingEventPublisher
from workflow_runs.utils.logging_config import bind_run_context
from workflow_runs.utils.normalize import (
    UNKNOWN,
    as_mapping,
    first_present,
    isoformat,
    mapping_list,
    normalize_datetime,
    normalize_step,
    optional_positive_int,
    optional_string,
    string_or,
)

log = structlog.get_logger(__name__)

APPROVAL_RESUME_STEP = "resume_execution"
RETRY_INITIAL_STEP = "queued"
CREATE_ERROR_TYPE = "workflow_run_create_failed"
BLOCKED_GENERATION_FAILED_DETAIL = "Approve action is blocked because approval context generation failed."
BLOCKED_CONTEXT_MISSING_DETAIL = "Approve action is blocked because no approval context was recorded for this run."


class RunStateMachine:
    """Lifecycle operations over a run store.

    Args:
        store: Run persistence
        lookup: Lookup used for retry identifier probing; defaults to ``store``
        publisher: Lifecycle event transport; defaults to logging each event
        poster: GitHub issue poster used by issue-triage runs
        settings: Engine settings; defaults to ``LifecycleSettings()``
    """

    def __init__(
        self,
        store: RunStore,
        lookup: RunLookup | None = None,
        publisher: EventPublisher | None = None,
        poster: IssuePoster | None = None,
        settings: LifecycleSettings | None = None,
    ) -> None:
        self.store = store
        self.lookup = lookup or store
        self.settings = settings or LifecycleSettings()
        self.events = EventPublicationAdapter(publisher or LoggingEventPublisher())
        self.identifiers = RetryIdentifierGenerator(self.lookup, self.settings.retry.max_identifier_probes)
        self.issue_triage = IssueTriagePostingWorkflow(self, poster, self.settings.issue_triage)

    # ------------------------------------------------------------------ create

    async def create(self, attrs: Mapping[str, Any]) -> OperationResult[WorkflowRun]:
        """Create a new run in ``pending``.

        ``run_id``, ``project_id`` and ``workflow_name`` are required. The run
        starts with the synthetic ``None -> pending`` transition entry and a
        ``run_started`` event is published once it is stored.
        """
        attrs = as_mapping(attrs)
        missing = [key for key in ("run_id", "project_id", "workflow_name") if optional_string(attrs.get(key)) is None]
        if missing:
            return OperationResult.failed(
                TypedFailure(
                    error_type=CREATE_ERROR_TYPE,
                    operation=CREATE_OPERATION,
                    reason_type="invalid_run_attributes",
                    detail=f"Run attributes are missing required fields: {', '.join(missing)}.",
                    remediation="Provide run_id, project_id and workflow_name, then create the run again.",
                    field_errors=[{"field": key, "error": "required"} for key in missing],
                )
            )

        run = self._build_run(attrs)
        with bind_run_context(run.project_id, run.run_id, CREATE_OPERATION):
            try:
                created = await self._insert(run)
            except RunConflictError as e:
                return OperationResult.failed(
                    TypedFailure(
                        error_type=CREATE_ERROR_TYPE,
                        operation=CREATE_OPERATION,
                        reason_type="run_id_conflict",
                        detail=f"A run with id {run.run_id!r} already exists in this project.",
                        remediation="Choose a different run_id, then create the run again.",
                        extra={"run_id": e.run_id, "project_id": e.project_id},
                    )
                )
            except WorkflowRunsError as e:
                return OperationResult.failed(
                    TypedFailure(
                        error_type=CREATE_ERROR_TYPE,
                        operation=CREATE_OPERATION,
                        reason_type="run_store_error",
                        detail=f"Run could not be stored ({e.message}).",
                        remediation="Check run store availability, then create the run again.",
                    )
                )
            except Exception as e:
                log.error("run_create_crashed", error=str(e), exc_info=True)
                return OperationResult.failed(
                    TypedFailure(
                        error_type=CREATE_ERROR_TYPE,
                        operation=CREATE_OPERATION,
                        reason_type="run_store_error",
                        detail=f"Run could not be stored ({str(e) or type(e).__name__}).",
                        remediation="Check run store availability, then create the run again.",
                    )
                )
            return OperationResult.success(created)

    def _build_run(self, attrs: Mapping[str, Any]) -> WorkflowRun:
        started_at = normalize_datetime(attrs.get("started_at"))
        current_step = normalize_step(attrs.get("current_step"))
        error = attrs.get("error")
        return WorkflowRun(
            run_id=string_or(attrs.get("run_id"), UNKNOWN),
            project_id=string_or(attrs.get("project_id"), UNKNOWN),
            workflow_name=string_or(attrs.get("workflow_name"), UNKNOWN),
            workflow_version=normalize_workflow_version(attrs.get("workflow_version")),
            status=RunStatus.PENDING,
            current_step=current_step,
            status_transitions=[dict(transition_entry(None, RunStatus.PENDING, current_step, started_at))],
            trigger=as_mapping(attrs.get("trigger")),
            inputs=as_mapping(attrs.get("inputs")),
            input_metadata=as_mapping(attrs.get("input_metadata")),
            initiating_actor=as_mapping(attrs.get("initiating_actor")),
            step_results=as_mapping(attrs.get("step_results")),
            error=dict(error) if isinstance(error, Mapping) else None,
            retry_of_run_id=optional_string(attrs.get("retry_of_run_id")),
            retry_attempt=optional_positive_int(attrs.get("retry_attempt")) or 1,
            retry_lineage=mapping_list(attrs.get("retry_lineage")),
            started_at=started_at,
        )

    async def _insert(self, run: WorkflowRun) -> WorkflowRun:
        """Store a new run and publish ``run_started``.

        Raises:
            RunConflictError: If the run id is taken.
            RunStoreError: If the store cannot write the run.
        """
        created = await self.store.create(run)
        log.info("run_started", workflow_name=created.workflow_name, retry_attempt=created.retry_attempt)
        diagnostics = await self.events.publish(
            created, [RunEvent.RUN_STARTED], None, RunStatus.PENDING, created.current_step, created.started_at
        )
        return await self._record_event_diagnostics(created, diagnostics)

    # ------------------------------------------------------------- transitions

    async def transition_status(
        self,
        run: WorkflowRun,
        to_status: RunStatus | str,
        current_step: str | None = None,
        transitioned_at: datetime | None = None,
        transition_metadata: Mapping[str, Any] | None = None,
    ) -> OperationResult[WorkflowRun]:
        """Move ``run`` to ``to_status``.

        Illegal transitions return an ``invalid_lifecycle_transition`` failure
        and leave the run and the store untouched.

        Args:
            run: Run to transition.
            to_status: Target status.
            current_step: Step after the transition; keeps the run's step when None.
            transitioned_at: Transition time; defaults to now.
            transition_metadata: Approval decisions, failure context or posting
                artifacts to capture with the transition.

        Returns:
            The persisted run.
        """
        target = RunStatus.parse(to_status)
        if target is None:
            return OperationResult.failed(invalid_transition_failure(str(run.status), str(to_status)))

        try:
            result = TransitionBuilder(run, target, current_step, transitioned_at, transition_metadata).build()
        except InvalidTransitionError as e:
            log.warning("run_transition_rejected", run_id=run.run_id, from_status=e.from_status, to_status=e.to_status)
            return OperationResult.failed(invalid_transition_failure(e.from_status, e.to_status))

        try:
            persisted = await self.store.persist(result.apply(run))
        except WorkflowRunsError as e:
            log.error("run_transition_persist_failed", run_id=run.run_id, error=e.message)
            return OperationResult.failed(transition_store_failure(e.message))
        except Exception as e:
            log.error("run_transition_persist_crashed", run_id=run.run_id, error=str(e), exc_info=True)
            return OperationResult.failed(transition_store_failure(str(e) or type(e).__name__))

        log.info(
            "run_transitioned",
            run_id=persisted.run_id,
            from_status=str(result.from_status),
            to_status=str(result.to_status),
            current_step=result.current_step,
        )
        diagnostics = await self.events.publish(
            persisted,
            result.events,
            result.from_status,
            result.to_status,
            result.current_step,
            result.transitioned_at,
        )
        return OperationResult.success(await self._record_event_diagnostics(persisted, diagnostics))

    async def _record_event_diagnostics(self, run: WorkflowRun, diagnostics: list[dict[str, Any]]) -> WorkflowRun:
        if not diagnostics:
            return run

        updated = run.copy()
        updated.error = append_diagnostics(updated.error, diagnostics)
        try:
            return await self.store.persist(updated)
        except WorkflowRunsError as e:
            log.error("event_diagnostics_persist_failed", run_id=run.run_id, error=e.message)
            return updated
        except Exception as e:
            log.error("event_diagnostics_persist_crashed", run_id=run.run_id, error=str(e), exc_info=True)
            return updated

    async def reload(self, run: WorkflowRun) -> WorkflowRun:
        """Fetch the stored version of ``run``; fall back to ``run`` itself."""
        project_id = optional_string(run.project_id)
        run_id = optional_string(run.run_id)
        if project_id is None or run_id is None:
            return run

        try:
            persisted = await self.lookup.find_by_project_and_run_id(project_id, run_id)
        except WorkflowRunsError as e:
            log.warning("run_reload_failed", project_id=project_id, run_id=run_id, error=e.message)
            return run
        except Exception as e:
            log.error("run_reload_crashed", project_id=project_id, run_id=run_id, error=str(e), exc_info=True)
            return run
        return persisted or run

    # ----------------------------------------------------------- approval gate

    async def approve(self, run: WorkflowRun, params: Mapping[str, Any] | None = None) -> OperationResult[WorkflowRun]:
        """Approve a run waiting at the approval gate.

        Params:
            actor: ``{"id", "email"}`` of the approver
            approved_at: Approval time; defaults to now
            current_step: Step to resume at; defaults to the run's step
        """
        if not isinstance(run, WorkflowRun):
            return OperationResult.failed(
                approval_action_failure(
                    "invalid_run",
                    "Run reference is invalid and cannot be approved.",
                    "Reload run detail and retry approval.",
                )
            )

        params = as_mapping(params)
        persisted = await self.reload(run)
        approved_at = normalize_datetime(params.get("approved_at"))
        actor = normalize_actor(params.get("actor"))
        current_step = normalize_step(
            first_present(params, "current_step", default=persisted.current_step), APPROVAL_RESUME_STEP
        )
        decision = {"decision": "approved", "actor": actor, "timestamp": isoformat(approved_at)}

        with bind_run_context(persisted.project_id, persisted.run_id, "approve_run"):
            if persisted.status is not RunStatus.AWAITING_APPROVAL:
                return OperationResult.failed(
                    approval_action_failure(
                        "invalid_run_status",
                        "Approve action is only allowed when run status is awaiting_approval.",
                        "Reload run detail and retry once run enters awaiting_approval.",
                    )
                )
            if approval_context_blocked(persisted.step_results, persisted.error):
                generation_failed = bool(outstanding_diagnostics(persisted.error))
                log.warning(
                    "approval_blocked", reason_type="approval_context_blocked", generation_failed=generation_failed
                )
                return OperationResult.failed(
                    approval_action_failure(
                        "approval_context_blocked",
                        BLOCKED_GENERATION_FAILED_DETAIL if generation_failed else BLOCKED_CONTEXT_MISSING_DETAIL,
                        "Regenerate diff summary, test summary, and risk notes before retrying approval.",
                    )
                )

            log.info("run_approved", actor_id=actor["id"], resume_step=current_step)
            if self.issue_triage.applies_to(persisted):
                return await self.issue_triage.finalize_posting(persisted, decision, approved_at)

            result = await self.transition_status(
                persisted,
                RunStatus.RUNNING,
                current_step=current_step,
                transitioned_at=approved_at,
                transition_metadata={"approval_decision": decision},
            )
            if result.failure is not None:
                return OperationResult.failed(
                    approval_action_failure(
                        "status_transition_failed",
                        "Approve action could not be applied while run remained blocked.",
                        "Retry approval from run detail after resolving the blocking condition.",
                        result.failure.detail,
                    )
                )
            return result

    async def reject(self, run: WorkflowRun, params: Mapping[str, Any] | None = None) -> OperationResult[WorkflowRun]:
        """Reject a run waiting at the approval gate.

        The trigger's ``approval_policy.on_reject`` decides whether the run is
        cancelled (the default) or routed back to ``running`` at a retry step.

        Params:
            actor: ``{"id", "email"}`` of the reviewer
            rejected_at: Rejection time; defaults to now
            rationale: Free-text reason recorded on the decision
        """
        if not isinstance(run, WorkflowRun):
            return OperationResult.failed(
                rejection_action_failure(
                    "invalid_run",
                    "Run reference is invalid and cannot be rejected.",
                    "Reload run detail and retry rejection.",
                )
            )

        params = as_mapping(params)
        persisted = await self.reload(run)
        rejected_at = normalize_datetime(params.get("rejected_at"))
        actor = normalize_actor(params.get("actor"))
        rationale = optional_string(params.get("rationale"))

        with bind_run_context(persisted.project_id, persisted.run_id, "reject_run"):
            if persisted.status is not RunStatus.AWAITING_APPROVAL:
                return OperationResult.failed(
                    rejection_action_failure(
                        "invalid_run_status",
                        "Reject action is only allowed when run status is awaiting_approval.",
                        "Reload run detail and retry once run enters awaiting_approval.",
                    )
                )

            try:
                route = ApprovalPolicy.from_trigger(persisted.trigger).rejection_route()
            except PolicyInvalidError as e:
                log.warning("rejection_policy_invalid", detail=e.message)
                return OperationResult.failed(rejection_action_failure("policy_invalid", e.message, e.remediation))

            if route.action == "retry_route" and route.retry_step is not None:
                to_status, current_step, outcome = RunStatus.RUNNING, route.retry_step, "retry_route"
            else:
                to_status, outcome = RunStatus.CANCELLED, "cancelled"
                current_step = normalize_step(persisted.current_step)

            decision: dict[str, Any] = {
                "decision": "rejected",
                "actor": actor,
                "timestamp": isoformat(rejected_at),
                "outcome": outcome,
            }
            if rationale:
                decision["rationale"] = rationale
            if to_status is RunStatus.RUNNING:
                decision["retry_step"] = current_step

            log.info("run_rejected", actor_id=actor["id"], outcome=outcome)
            result = await self.transition_status(
                persisted,
                to_status,
                current_step=current_step,
                transitioned_at=rejected_at,
                transition_metadata={"approval_decision": decision},
            )
            if result.failure is not None:
                return OperationResult.failed(
                    rejection_action_failure(
                        "status_transition_failed",
                        "Reject action could not be applied while run remained blocked.",
                        "Retry rejection from run detail after resolving the blocking condition.",
                        result.failure.detail,
                    )
                )
            return result

    # ------------------------------------------------------------------ retry

    async def retry(self, run: WorkflowRun, params: Mapping[str, Any] | None = None) -> OperationResult[WorkflowRun]:
        """Start a full-run retry of a failed or cancelled run.

        Params:
            actor: ``{"id", "email"}`` of whoever requested the retry
            retry_started_at: Start time of the new run; defaults to now
        """
        if not isinstance(run, WorkflowRun):
            return OperationResult.failed(
                retry_action_failure(
                    "invalid_run",
                    "Run reference is invalid and cannot be retried.",
                    "Reload run detail and retry once the failed run is available.",
                )
            )

        params = as_mapping(params)
        persisted = await self.reload(run)
        started_at = normalize_datetime(params.get("retry_started_at"))
        actor = normalize_actor(params.get("actor"))

        with bind_run_context(persisted.project_id, persisted.run_id, "retry_run"):
            if persisted.status not in RETRYABLE_STATUSES:
                return OperationResult.failed(
                    retry_action_failure(
                        "invalid_run_status",
                        "Full-run retry is only allowed when run status is failed or cancelled.",
                        "Retry this action after the run reaches a terminal failure state.",
                    )
                )

            policy = RetryPolicy.from_trigger(persisted.trigger)
            if not policy.full_run_allowed:
                if policy.mode:
                    detail = f'Full-run retry is disallowed by workflow policy mode "{policy.mode}".'
                else:
                    detail = "Full-run retry is disallowed by workflow policy."
                log.warning("retry_policy_violation", retry_mode=policy.mode)
                return OperationResult.failed(
                    retry_action_failure(
                        "policy_violation",
                        detail,
                        "Update workflow retry policy to permit full-run retry, or start a fresh manual run.",
                        policy=policy.raw,
                    )
                )

            return await self._start_retry_run(
                persisted,
                actor,
                started_at,
                policy,
                kind=RetryKind.FULL_RUN,
                current_step=RETRY_INITIAL_STEP,
            )

    async def retry_step(
        self, run: WorkflowRun, params: Mapping[str, Any] | None = None
    ) -> OperationResult[WorkflowRun]:
        """Start a step-level retry of a failed or cancelled run.

        Params:
            actor: ``{"id", "email"}`` of whoever requested the retry
            retry_started_at: Start time of the new run; defaults to now
            retry_step: Requested restart step; defaults to the policy's step
        """
        if not isinstance(run, WorkflowRun):
            return OperationResult.failed(
                step_retry_action_failure(
                    "invalid_run",
                    "Run reference is invalid and cannot start a step-level retry.",
                    "Reload run detail and retry once the failed run is available.",
                )
            )

        params = as_mapping(params)
        persisted = await self.reload(run)
        started_at = normalize_datetime(params.get("retry_started_at"))
        actor = normalize_actor(params.get("actor"))

        with bind_run_context(persisted.project_id, persisted.run_id, "retry_step"):
            if persisted.status not in RETRYABLE_STATUSES:
                return OperationResult.failed(
                    step_retry_action_failure(
                        "invalid_run_status",
                        "Step-level retry is only allowed when run status is failed or cancelled.",
                        "Retry this action after the run reaches a terminal failure state.",
                    )
                )

            policy = RetryPolicy.from_trigger(persisted.trigger)
            contract = resolve_step_retry_contract(policy, params.get("retry_step"))
            if contract.failure is not None:
                log.warning("step_retry_rejected", reason_type=contract.failure.reason_type)
                return OperationResult.failed(contract.failure)

            return await self._start_retry_run(
                persisted,
                actor,
                started_at,
                policy,
                kind=RetryKind.STEP_LEVEL,
                current_step=contract.unwrap().retry_step,
            )

    async def step_retry_contract(self, run: WorkflowRun) -> OperationResult[dict[str, Any]]:
        """Resolve ``{retry_policy, retry_step}`` for a step-level retry of ``run``."""
        if not isinstance(run, WorkflowRun):
            return OperationResult.failed(
                step_retry_action_failure(
                    "invalid_run",
                    "Run reference is invalid and step-level retry contract cannot be resolved.",
                    "Reload run detail and retry once the failed run is available.",
                )
            )

        persisted = await self.reload(run)
        contract = resolve_step_retry_contract(RetryPolicy.from_trigger(persisted.trigger))
        if contract.failure is not None:
            return OperationResult.failed(contract.failure)
        return OperationResult.success(contract.unwrap().to_dict())

    async def _start_retry_run(
        self,
        source: WorkflowRun,
        actor: Actor,
        started_at: datetime,
        policy: RetryPolicy,
        kind: RetryKind,
        current_step: str,
    ) -> OperationResult[WorkflowRun]:
        """Create the retry run, regenerating its id if a concurrent retry took it."""
        attempt = next_retry_attempt(source)
        source_run_id = string_or(source.run_id, UNKNOWN)

        retry_metadata: dict[str, Any] = {"policy": kind.value}
        retry_context: dict[str, Any] = {
            "policy": kind.value,
            "retry_of_run_id": source_run_id,
            "retry_attempt": attempt,
        }
        if kind is RetryKind.STEP_LEVEL:
            retry_metadata["retry_step"] = current_step
            retry_context["retry_step"] = current_step
        retry_metadata.update(
            {
                "source_run_id": source_run_id,
                "attempt": attempt,
                "actor": actor,
                "timestamp": isoformat(started_at),
            }
        )

        trigger = as_mapping(source.trigger)
        trigger["retry"] = retry_metadata
        if policy.raw:
            trigger["retry_policy"] = dict(policy.raw)

        attrs: dict[str, Any] = {
            "project_id": source.project_id,
            "workflow_name": source.workflow_name,
            "workflow_version": source.workflow_version,
            "trigger": trigger,
            "inputs": as_mapping(source.inputs),
            "input_metadata": as_mapping(source.input_metadata),
            "initiating_actor": dict(actor) if actor_resolved(actor) else as_mapping(source.initiating_actor),
            "current_step": current_step,
            "step_results": {"retry_context": retry_context},
            "started_at": started_at,
            "retry_of_run_id": source.run_id,
            "retry_attempt": attempt,
            "retry_lineage": build_retry_lineage(source, actor, started_at),
        }

        if kind is RetryKind.STEP_LEVEL:
            failure_factory, detail, remediation = (
                step_retry_action_failure,
                "Step-level retry could not start a new run attempt.",
                "Retry from run detail after resolving step-level retry preconditions.",
            )
        else:
            failure_factory, detail, remediation = (
                retry_action_failure,
                "Full-run retry could not start a new run attempt.",
                "Retry from run detail after resolving run creation preconditions.",
            )

        last_error: WorkflowRunsError | None = None
        for _ in range(self.settings.retry.id_conflict_attempts):
            run_id = await self.identifiers.next_retry_run_id(source, attempt)
            try:
                created = await self._insert(self._build_run({**attrs, "run_id": run_id}))
            except RunConflictError as e:
                log.warning("retry_run_id_conflict", candidate=run_id)
                last_error = e
                continue
            except WorkflowRunsError as e:
                log.error("retry_run_create_failed", candidate=run_id, error=e.message)
                return OperationResult.failed(failure_factory("run_creation_failed", detail, remediation, e))
            except Exception as e:
                log.error("retry_run_create_crashed", candidate=run_id, error=str(e), exc_info=True)
                return OperationResult.failed(failure_factory("run_creation_failed", detail, remediation, e))

            log.info("run_retried", retry_kind=kind.value, new_run_id=created.run_id, retry_attempt=attempt)
            return OperationResult.success(created)

        return OperationResult.failed(failure_factory("run_creation_failed", detail, remediation, last_error))

    # ------------------------------------------------------------ issue triage

    async def advance_issue_triage_run(self, run: WorkflowRun) -> OperationResult[WorkflowRun]:
        """Advance an issue-triage run toward posting its response."""
        return await self.issue_triage.advance(run)

    # --------------------------------------------------------- failure history

    async def query_failure_history(
        self, params: Mapping[str, Any] | None = None
    ) -> OperationResult[list[FailureHistoryEntry]]:
        """List failed runs in a time window, newest first."""
        return await query_failure_history(store_loader(self.store), params)


__all__ = ["APPROVAL_RESUME_STEP", "RETRY_INITIAL_STEP", "RunStateMachine"]
