"""
File-backed run store with atomic writes.

Each run is persisted as one JSON file under
``{state_dir}/{project_id}/{run_id}.json`` (both path segments are
percent-encoded). The store ensures data integrity through:

- Atomic file writes using temporary files and rename operations
- Per-run locking so that a read never observes a half-applied write
- A uniqueness check on ``(project_id, run_id)`` when creating runs

Concurrency Model:
    Each run has its own asyncio lock, held only for the duration of a single
    read or write. Locks do not span lifecycle operations; the state machine
    performs reload, compute and write as separate steps.

Example:
    >>> store = FileRunStore(".workflow-runs/state")
    >>> run = await store.create(run)
    >>> run.status = RunStatus.RUNNING
    >>> await store.persist(run)
"""

import asyncio
import json
from pathlib import Path
from typing import Any
from urllib.parse import quote

import aiofiles
import structlog

from workflow_runs.enums import RunStatus
from workflow_runs.exceptions import RunConflictError, RunNotFoundError, RunStoreError
from workflow_runs.models.domain import WorkflowRun
from workflow_runs.providers.base import RunStore
from workflow_runs.utils.normalize import utc_now

log = structlog.get_logger(__name__)


class FileRunStore(RunStore):
    """Persist workflow runs as JSON files.

    Attributes:
        state_dir: Directory where run files are stored.

    Thread Safety:
        Designed for single-threaded asyncio usage. Lock creation is guarded
        by a meta-lock so concurrent coroutines share one lock per run.
    """

    def __init__(self, state_dir: str | Path) -> None:
        """Initialize the store, creating ``state_dir`` if needed.

        Args:
            state_dir: Directory for run files.
        """
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._locks_lock = asyncio.Lock()

    async def _get_lock(self, project_id: str, run_id: str) -> asyncio.Lock:
        async with self._locks_lock:
            key = (project_id, run_id)
            if key not in self._locks:
                self._locks[key] = asyncio.Lock()
            return self._locks[key]

    def _run_path(self, project_id: str, run_id: str) -> Path:
        """Compute the path of a run's file.

        Example:
            >>> store._run_path("proj-1", "run-42")
            Path(".workflow-runs/state/proj-1/run-42.json")
        """
        return self.state_dir / quote(project_id, safe="") / f"{quote(run_id, safe='')}.json"

    async def find_by_project_and_run_id(self, project_id: str, run_id: str) -> WorkflowRun | None:
        lock = await self._get_lock(project_id, run_id)
        async with lock:
            return await self._read_run(self._run_path(project_id, run_id))

    async def create(self, run: WorkflowRun) -> WorkflowRun:
        lock = await self._get_lock(run.project_id, run.run_id)
        async with lock:
            path = self._run_path(run.project_id, run.run_id)
            if path.exists():
                log.warning("run_create_conflict", project_id=run.project_id, run_id=run.run_id)
                raise RunConflictError("Run id already exists", project_id=run.project_id, run_id=run.run_id)

            stored = run.copy()
            now = utc_now()
            stored.inserted_at = now
            stored.updated_at = now
            await self._write_run(path, stored)
            log.debug("run_created", project_id=run.project_id, run_id=run.run_id)
            return stored

    async def persist(self, run: WorkflowRun) -> WorkflowRun:
        lock = await self._get_lock(run.project_id, run.run_id)
        async with lock:
            path = self._run_path(run.project_id, run.run_id)
            if not path.exists():
                raise RunNotFoundError("Run does not exist", project_id=run.project_id, run_id=run.run_id)

            stored = run.copy()
            stored.inserted_at = stored.inserted_at or utc_now()
            stored.updated_at = utc_now()
            await self._write_run(path, stored)
            log.debug("run_persisted", project_id=run.project_id, run_id=run.run_id, status=str(run.status))
            return stored

    async def list_runs(self, status: RunStatus | None = None) -> list[WorkflowRun]:
        runs: list[WorkflowRun] = []
        for path in sorted(self.state_dir.glob("*/*.json")):
            run = await self._read_run(path)
            if run is None:
                continue
            if status is None or run.status == status:
                runs.append(run)
        return runs

    async def _read_run(self, path: Path) -> WorkflowRun | None:
        if not path.exists():
            return None

        try:
            async with aiofiles.open(path) as f:
                content = await f.read()
            data: Any = json.loads(content)
        except (OSError, json.JSONDecodeError) as e:
            raise RunStoreError(f"Cannot read run file {path.name}: {e}") from e

        if not isinstance(data, dict):
            raise RunStoreError(f"Run file {path.name} does not contain a JSON object")
        return WorkflowRun.from_dict(data)

    async def _write_run(self, path: Path, run: WorkflowRun) -> None:
        """Write a run atomically using a temporary file.

        The temporary file lives next to the target so that the rename stays
        on one filesystem.
        """
        tmp_path = path.with_suffix(".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(tmp_path, "w") as f:
                await f.write(json.dumps(run.to_dict(), indent=2, default=str))
            tmp_path.replace(path)
        except OSError as e:
            raise RunStoreError(f"Cannot write run file: {e}", project_id=run.project_id, run_id=run.run_id) from e
