"""Core data models for the workflow-runs lifecycle engine.

Key Models:
    - WorkflowRun: One execution of a workflow definition
    - TypedFailure: Structured failure record returned across the public boundary
    - OperationResult: Success-or-failure wrapper returned by every operation

Record Types:
    - StatusTransitionEntry, ApprovalDecision, RetryLineageEntry, EventPayload

Example:
    >>> from workflow_runs.models.domain import WorkflowRun
    >>> from workflow_runs.models.results import OperationResult
    >>> result = await machine.create({"run_id": "run-1", ...})
    >>> run: WorkflowRun = result.unwrap()
"""
