"""Pytest configuration and shared fixtures."""

from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from workflow_runs.config.settings import LifecycleSettings
from workflow_runs.engine.state_machine import RunStateMachine
from workflow_runs.enums import RunStatus
from workflow_runs.models.domain import WorkflowRun
from workflow_runs.models.results import OperationResult
from workflow_runs.models.types import PostRequest
from workflow_runs.providers.base import IssuePoster
from workflow_runs.providers.events import RecordingEventPublisher
from workflow_runs.providers.file_store import FileRunStore

T0 = datetime(2026, 2, 15, 12, 0, 0, tzinfo=UTC)


class FakeIssuePoster(IssuePoster):
    """Poster that records requests and replays a configured outcome."""

    def __init__(self, result: Any = None, raises: Exception | None = None) -> None:
        self.requests: list[PostRequest] = []
        self.result = result
        self.raises = raises

    async def post(self, request: PostRequest) -> OperationResult[dict[str, Any]]:
        self.requests.append(request)
        if self.raises is not None:
            raise self.raises
        if self.result is not None:
            return self.result
        return OperationResult.success(
            {
                "id": 9001,
                "html_url": "https://github.com/acme/widgets/issues/42#issuecomment-9001",
                "url": "https://api.github.com/repos/acme/widgets/issues/comments/9001",
                "created_at": "2026-02-15T12:05:00Z",
            }
        )


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    """Temporary state directory."""
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    return state_dir


@pytest.fixture
def store(state_dir: Path) -> FileRunStore:
    """File run store backed by the temporary state directory."""
    return FileRunStore(state_dir)


@pytest.fixture
def publisher() -> RecordingEventPublisher:
    return RecordingEventPublisher()


@pytest.fixture
def poster() -> FakeIssuePoster:
    return FakeIssuePoster()


@pytest.fixture
def settings() -> LifecycleSettings:
    return LifecycleSettings()


@pytest.fixture
def machine(
    store: FileRunStore,
    publisher: RecordingEventPublisher,
    poster: FakeIssuePoster,
    settings: LifecycleSettings,
) -> RunStateMachine:
    """State machine wired to the file store, recording publisher and fake poster."""
    return RunStateMachine(store, publisher=publisher, poster=poster, settings=settings)


def _build_run(**overrides: Any) -> WorkflowRun:
    """Detached run record for tests that do not go through the store."""
    values: dict[str, Any] = {
        "run_id": "run-1",
        "project_id": "project-1",
        "workflow_name": "implement_task",
        "workflow_version": 2,
        "started_at": T0,
        "status": RunStatus.RUNNING,
        "current_step": "implement",
    }
    values.update(overrides)
    return WorkflowRun(**values)


def _run_attrs(**overrides: Any) -> dict[str, Any]:
    """Attributes accepted by ``RunStateMachine.create``."""
    attrs: dict[str, Any] = {
        "run_id": "run-1",
        "project_id": "project-1",
        "workflow_name": "implement_task",
        "workflow_version": 2,
        "current_step": "queued",
        "started_at": T0,
        "trigger": {"source": "manual"},
        "inputs": {"task": "add login"},
        "initiating_actor": {"id": "user-1", "email": "user-1@example.com"},
    }
    attrs.update(overrides)
    return attrs


async def _create_run(machine: RunStateMachine, **overrides: Any) -> WorkflowRun:
    result = await machine.create(_run_attrs(**overrides))
    assert result.ok, result.failure
    return result.unwrap()


async def _drive(machine: RunStateMachine, run: WorkflowRun, *steps: tuple[RunStatus, str]) -> WorkflowRun:
    """Apply a sequence of ``(status, step)`` transitions, asserting each succeeds."""
    for status, step in steps:
        result = await machine.transition_status(run, status, current_step=step)
        assert result.ok, result.failure
        run = result.unwrap()
    return run


async def _failed_run(machine: RunStateMachine, **overrides: Any) -> WorkflowRun:
    """A stored run that ran ``plan`` then failed at ``implement``."""
    run = await _create_run(machine, **overrides)
    run = await _drive(machine, run, (RunStatus.RUNNING, "plan"))
    result = await machine.transition_status(
        run,
        RunStatus.FAILED,
        current_step="implement",
        transition_metadata={
            "failure_context": {
                "error_type": "agent_timeout",
                "detail": "Agent timed out.",
                "remediation": "Increase the timeout.",
            }
        },
    )
    assert result.ok, result.failure
    return result.unwrap()


@pytest.fixture
def build_run():
    """Factory for detached runs (status running at step ``implement``)."""
    return _build_run


@pytest.fixture
def run_attrs():
    """Factory for ``RunStateMachine.create`` attributes."""
    return _run_attrs


@pytest.fixture
def create_run():
    """Coroutine creating a stored pending run through the state machine."""
    return _create_run


@pytest.fixture
def drive():
    """Coroutine applying ``(status, step)`` transitions in order."""
    return _drive


@pytest.fixture
def failed_run():
    """Coroutine producing a stored run that ran ``plan`` and failed at ``implement``."""
    return _failed_run


@pytest.fixture
def make_poster():
    """Factory for fake issue posters."""
    return FakeIssuePoster
