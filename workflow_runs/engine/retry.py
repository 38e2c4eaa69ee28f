"""
Retry engine: attempt numbering, run identifiers, lineage and step contracts.

A retry never rewrites the failed run. It creates a new run whose
``retry_attempt`` is one higher, whose id derives from the root of the retry
chain, and whose ``retry_lineage`` snapshots every ancestor.

Identifier Scheme:
    ``<root>-retry-<attempt>``, then ``<root>-retry-<attempt>-2`` up to
    ``-<max_probes>`` when earlier candidates are taken. ``<root>`` is the
    first lineage entry's run id, so ids do not grow with chain length.

Example:
    >>> generator = RetryIdentifierGenerator(store)
    >>> attempt = next_retry_attempt(run)  # run.retry_attempt == 1
    >>> await generator.next_retry_run_id(run, attempt)
    'nightly-42-retry-2'
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog

from workflow_runs.config.policies import RetryPolicy
from workflow_runs.engine.failures import step_retry_action_failure
from workflow_runs.exceptions import WorkflowRunsError
from workflow_runs.models.domain import WorkflowRun
from workflow_runs.models.results import OperationResult
from workflow_runs.models.types import Actor, RetryLineageEntry
from workflow_runs.providers.base import RunLookup
from workflow_runs.utils.normalize import (
    UNKNOWN,
    as_mapping,
    isoformat,
    mapping_list,
    normalize_step,
    optional_positive_int,
    optional_string,
    string_or,
)

log = structlog.get_logger(__name__)

DEFAULT_MAX_PROBES = 100


def next_retry_attempt(run: WorkflowRun) -> int:
    """Attempt number for the next retry of ``run``."""
    attempt = optional_positive_int(run.retry_attempt)
    return attempt + 1 if attempt is not None else 2


def retry_root_run_id(run: WorkflowRun) -> str:
    """Run id at the root of ``run``'s retry chain."""
    own_id = string_or(run.run_id, "run")
    lineage = mapping_list(run.retry_lineage)
    if not lineage:
        return own_id
    return optional_string(lineage[0].get("run_id")) or own_id


def retry_candidate_id(root: str, attempt: int, probe: int) -> str:
    """Candidate id for the given zero-based probe index."""
    if probe == 0:
        return f"{root}-retry-{attempt}"
    return f"{root}-retry-{attempt}-{probe + 1}"


class RetryIdentifierGenerator:
    """Generate run ids for retries, probing the lookup for free candidates.

    When every probed candidate is taken the bare candidate is returned; the
    run store's uniqueness constraint then rejects the create and the caller
    decides how to proceed.
    """

    def __init__(self, lookup: RunLookup, max_probes: int = DEFAULT_MAX_PROBES) -> None:
        self.lookup = lookup
        self.max_probes = max_probes

    async def next_retry_run_id(self, run: WorkflowRun, attempt: int) -> str:
        root = retry_root_run_id(run)
        project_id = optional_string(run.project_id)
        if project_id is None:
            return retry_candidate_id(root, attempt, 0)

        for probe in range(self.max_probes):
            candidate = retry_candidate_id(root, attempt, probe)
            try:
                existing = await self.lookup.find_by_project_and_run_id(project_id, candidate)
            except WorkflowRunsError as e:
                log.warning("retry_id_probe_failed", project_id=project_id, candidate=candidate, error=e.message)
                return candidate
            except Exception as e:
                log.error(
                    "retry_id_probe_crashed", project_id=project_id, candidate=candidate, error=str(e), exc_info=True
                )
                return candidate
            if existing is None:
                return candidate

        log.warning("retry_id_probes_exhausted", project_id=project_id, root=root, attempt=attempt)
        return retry_candidate_id(root, attempt, 0)


def retry_lineage_entry(run: WorkflowRun, actor: Actor, retried_at: datetime) -> RetryLineageEntry:
    """Snapshot of ``run`` taken at the moment it is retried."""
    return {
        "run_id": string_or(run.run_id, UNKNOWN),
        "status": string_or(run.status, UNKNOWN),
        "retry_attempt": optional_positive_int(run.retry_attempt) or 1,
        "current_step": normalize_step(run.current_step),
        "completed_at": isoformat(run.completed_at) if run.completed_at else None,
        "failure_artifacts": as_mapping(run.step_results),
        "typed_failure": as_mapping(run.error),
        "retry_actor": actor,
        "retried_at": isoformat(retried_at),
    }


def build_retry_lineage(run: WorkflowRun, actor: Actor, retried_at: datetime) -> list[dict[str, Any]]:
    """Existing lineage plus a snapshot of ``run``, oldest first."""
    return mapping_list(run.retry_lineage) + [dict(retry_lineage_entry(run, actor, retried_at))]


@dataclass(frozen=True)
class StepRetryContract:
    """Resolved step-level retry: the policy and the step to restart from."""

    retry_policy: dict[str, Any]
    retry_step: str

    def to_dict(self) -> dict[str, Any]:
        return {"retry_policy": dict(self.retry_policy), "retry_step": self.retry_step}


def resolve_step_retry_contract(
    policy: RetryPolicy, requested_step: Any = None
) -> OperationResult[StepRetryContract]:
    """Decide whether a step-level retry is allowed and where it starts.

    The target is the requested step, else the policy's declared step, else
    the first allowed step. Failures carry the raw policy.
    """
    if not policy.step_retry_declared:
        return OperationResult.failed(
            step_retry_action_failure(
                "policy_violation",
                "Step-level retry is disallowed because workflow contract does not declare step retry capability.",
                "Update workflow retry policy to declare step-level retry, or use full-run retry.",
                policy=policy.raw,
            )
        )

    allowed = policy.allowed_steps
    retry_step = optional_string(requested_step) or policy.declared_retry_step or (allowed[0] if allowed else None)

    if retry_step is None:
        return OperationResult.failed(
            step_retry_action_failure(
                "policy_invalid",
                "Step-level retry is declared but no retry step target is configured.",
                "Declare retry_policy.retry_step or retry_policy.allowed_steps before retrying.",
                policy=policy.raw,
            )
        )

    if allowed and retry_step not in allowed:
        return OperationResult.failed(
            step_retry_action_failure(
                "policy_violation",
                f'Step-level retry step "{retry_step}" is not allowed by workflow contract.',
                f"Retry with one of the contract-declared step targets: {', '.join(allowed)}.",
                policy=policy.raw,
            )
        )

    return OperationResult.success(StepRetryContract(retry_policy=policy.raw, retry_step=retry_step))
