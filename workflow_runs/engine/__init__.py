"""Workflow run lifecycle engine.

Key Components:
    - RunStateMachine: Lifecycle operations (create, transition, approve,
      reject, retry, step retry, issue-triage posting)
    - TransitionBuilder: Computes one legal status transition
    - EventPublicationAdapter: Publishes lifecycle events after persistence
    - RetryIdentifierGenerator: Collision-free retry run ids
    - IssueTriagePostingWorkflow: Posts issue-triage responses to GitHub

Example:
    >>> from workflow_runs.engine import RunStateMachine
    >>> machine = RunStateMachine(store)
    >>> result = await machine.retry(failed_run, {"actor": {"id": "u1"}})
"""

from workflow_runs.engine.events import EventPublicationAdapter
from workflow_runs.engine.issue_triage import IssueTriagePostingWorkflow
from workflow_runs.engine.retry import RetryIdentifierGenerator, StepRetryContract
from workflow_runs.engine.state_machine import RunStateMachine
from workflow_runs.engine.transitions import TransitionBuilder, TransitionResult

__all__ = [
    "EventPublicationAdapter",
    "IssueTriagePostingWorkflow",
    "RetryIdentifierGenerator",
    "RunStateMachine",
    "StepRetryContract",
    "TransitionBuilder",
    "TransitionResult",
]
