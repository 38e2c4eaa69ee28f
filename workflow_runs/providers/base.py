"""
Abstract base classes for providers.

This module defines the collaborator interfaces the lifecycle engine talks to:
run persistence, run lookup for identifier probing, lifecycle event
publication and the GitHub issue poster used by issue-triage runs.

All methods are async so that implementations can perform non-blocking I/O.
"""

from abc import ABC, abstractmethod
from typing import Any

from workflow_runs.enums import RunStatus
from workflow_runs.models.domain import WorkflowRun
from workflow_runs.models.results import OperationResult
from workflow_runs.models.types import EventPayload, PostRequest


class RunLookup(ABC):
    """Read access to runs by their human-facing identifier."""

    @abstractmethod
    async def find_by_project_and_run_id(self, project_id: str, run_id: str) -> WorkflowRun | None:
        """Find a run by project and run id.

        Args:
            project_id: Project the run belongs to.
            run_id: Human-facing run identifier.

        Returns:
            The stored run, or None when no such run exists.
        """
        pass


class RunStore(RunLookup):
    """Durable storage for workflow runs.

    Implementations must enforce uniqueness of ``(project_id, run_id)`` on
    create. Writes are whole-record: ``persist`` replaces the stored run with
    the one given.
    """

    @abstractmethod
    async def create(self, run: WorkflowRun) -> WorkflowRun:
        """Insert a new run.

        Returns:
            The stored run, with ``inserted_at``/``updated_at`` populated.

        Raises:
            RunConflictError: If ``(project_id, run_id)`` is already taken.
            RunStoreError: If the run cannot be written.
        """
        pass

    @abstractmethod
    async def persist(self, run: WorkflowRun) -> WorkflowRun:
        """Replace an existing run record.

        Returns:
            The stored run, with ``updated_at`` refreshed.

        Raises:
            RunNotFoundError: If the run was never created.
            RunStoreError: If the run cannot be written.
        """
        pass

    @abstractmethod
    async def list_runs(self, status: RunStatus | None = None) -> list[WorkflowRun]:
        """List stored runs, optionally filtered by status."""
        pass


class EventPublisher(ABC):
    """Transport for lifecycle events."""

    @abstractmethod
    async def publish(self, run_id: str, payload: EventPayload) -> OperationResult[None]:
        """Publish one event on the run's topic.

        Implementations report transport problems either by returning a failed
        result or by raising; callers handle both.
        """
        pass


class IssuePoster(ABC):
    """Posts comments on GitHub issues."""

    @abstractmethod
    async def post(self, request: PostRequest) -> OperationResult[dict[str, Any]]:
        """Post ``request["body"]`` as a comment on the referenced issue.

        Returns:
            On success, the provider's comment record (``comment_url``,
            ``comment_id``, ``posted_at`` or their GitHub API equivalents).
            On failure, a result whose failure carries the provider's reason.
        """
        pass
