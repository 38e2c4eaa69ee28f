"""
Failure context history for trend review.

Lists failed runs inside a time window, newest first, each reduced to the
fields an operator needs to spot recurring failures: error type, last
successful step and remediation hint.

Query Params:
    window_start: ISO 8601 string or datetime; defaults to 30 days ago
    window_end: ISO 8601 string or datetime; defaults to now
    limit: 1..500; defaults to 200

Invalid params produce a ``dashboard_failure_history_query_validation_failed``
failure with ``field_errors``. Loader problems produce a
``dashboard_failure_history_query_failed`` failure. Neither returns partial
results.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, TypedDict

import structlog

from workflow_runs.enums import RunStatus
from workflow_runs.exceptions import WorkflowRunsError
from workflow_runs.models.domain import WorkflowRun
from workflow_runs.models.results import OperationResult, TypedFailure
from workflow_runs.providers.base import RunStore
from workflow_runs.utils.normalize import (
    as_mapping,
    first_present,
    optional_datetime,
    optional_string,
    utc_now,
)

log = structlog.get_logger(__name__)

DEFAULT_WINDOW_DAYS = 30
DEFAULT_LIMIT = 200
MAX_LIMIT = 500
DEFAULT_ERROR_TYPE = "workflow_run_failed"
DEFAULT_LAST_SUCCESSFUL_STEP = "unknown"
DEFAULT_REMEDIATION_HINT = "Inspect failure artifacts and run timeline, then retry after resolving the failing step."

QUERY_OPERATION = "query_failure_context_history"
VALIDATION_ERROR_TYPE = "dashboard_failure_history_query_validation_failed"
QUERY_ERROR_TYPE = "dashboard_failure_history_query_failed"
VALIDATION_REMEDIATION = (
    "Provide valid `window_start` and `window_end` values (ISO8601 or DateTime) and retry the query."
)
QUERY_REMEDIATION = "Retry failure history query. If this persists, inspect workflow run persistence health."


class FailureHistoryEntry(TypedDict):
    run_id: str
    project_id: str | None
    workflow_name: str
    failed_at: datetime
    error_type: str
    last_successful_step: str
    remediation_hint: str


@dataclass(frozen=True)
class FailureHistoryQuery:
    """Validated query parameters."""

    window_start: datetime
    window_end: datetime
    limit: int = DEFAULT_LIMIT

    def contains(self, moment: datetime) -> bool:
        return self.window_start <= moment <= self.window_end


FailureHistoryLoader = Callable[[FailureHistoryQuery], Awaitable[list[Any]]]


def _field_error(field: str, error_type: str, detail: str) -> dict[str, str]:
    return {"field": field, "error_type": error_type, "detail": detail}


def _limit_error() -> dict[str, str]:
    return _field_error("limit", "invalid", f"Expected a positive integer between 1 and {MAX_LIMIT}.")


def validation_failure(field_errors: list[dict[str, str]]) -> TypedFailure:
    return TypedFailure(
        error_type=VALIDATION_ERROR_TYPE,
        operation=QUERY_OPERATION,
        reason_type="invalid_query_parameters",
        detail="Failure history query parameters are invalid.",
        remediation=VALIDATION_REMEDIATION,
        field_errors=field_errors,
        extra={"partial_results": []},
    )


def query_failure(detail: str, reason_type: str) -> TypedFailure:
    return TypedFailure(
        error_type=QUERY_ERROR_TYPE,
        operation=QUERY_OPERATION,
        reason_type=reason_type,
        detail=detail,
        remediation=QUERY_REMEDIATION,
        extra={"partial_results": []},
    )


def _parse_limit(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            return None
    if isinstance(value, int) and 1 <= value <= MAX_LIMIT:
        return value
    return None


def parse_query(params: Mapping[str, Any] | None = None) -> OperationResult[FailureHistoryQuery]:
    """Validate query params, applying the default window and limit.

    Validation stops at the first invalid field, in the order window_start,
    window_end, limit, then the window ordering check.
    """
    if params is not None and not isinstance(params, Mapping):
        return OperationResult.failed(
            validation_failure([_field_error("params", "invalid_type", "Query params must be a mapping.")])
        )

    params = params or {}
    now = utc_now()
    datetime_detail = "Expected an ISO8601 datetime or DateTime value."

    window_start = optional_datetime(
        first_present(params, "window_start", default=now - timedelta(days=DEFAULT_WINDOW_DAYS))
    )
    if window_start is None:
        return OperationResult.failed(
            validation_failure([_field_error("window_start", "invalid_datetime", datetime_detail)])
        )

    window_end = optional_datetime(first_present(params, "window_end", default=now))
    if window_end is None:
        return OperationResult.failed(
            validation_failure([_field_error("window_end", "invalid_datetime", datetime_detail)])
        )

    limit = _parse_limit(first_present(params, "limit", default=DEFAULT_LIMIT))
    if limit is None:
        return OperationResult.failed(validation_failure([_limit_error()]))

    if window_start > window_end:
        return OperationResult.failed(
            validation_failure(
                [
                    _field_error(
                        "window_start",
                        "out_of_range",
                        "`window_start` must be less than or equal to `window_end`.",
                    ),
                    _field_error(
                        "window_end",
                        "out_of_range",
                        "`window_end` must be greater than or equal to `window_start`.",
                    ),
                ]
            )
        )

    return OperationResult.success(FailureHistoryQuery(window_start, window_end, limit))


def failed_at(run: WorkflowRun) -> datetime:
    """When ``run`` failed: completed_at, then error timestamp, updated_at, started_at."""
    error = as_mapping(run.error)
    return (
        run.completed_at
        or optional_datetime(error.get("timestamp"))
        or run.updated_at
        or optional_datetime(run.started_at)
        or utc_now()
    )


def failure_history_entry(run: WorkflowRun) -> FailureHistoryEntry:
    error = as_mapping(run.error)
    return {
        "run_id": optional_string(run.run_id) or "unknown-run",
        "project_id": optional_string(run.project_id),
        "workflow_name": optional_string(run.workflow_name) or "unknown_workflow",
        "failed_at": failed_at(run),
        "error_type": optional_string(error.get("error_type")) or DEFAULT_ERROR_TYPE,
        "last_successful_step": optional_string(error.get("last_successful_step")) or DEFAULT_LAST_SUCCESSFUL_STEP,
        "remediation_hint": optional_string(error.get("remediation"))
        or optional_string(error.get("remediation_hint"))
        or DEFAULT_REMEDIATION_HINT,
    }


def normalize_entry(entry: Any) -> FailureHistoryEntry:
    """Coerce a loader-provided entry into a complete history entry."""
    if isinstance(entry, WorkflowRun):
        return failure_history_entry(entry)

    entry = as_mapping(entry)
    return {
        "run_id": optional_string(entry.get("run_id")) or "unknown-run",
        "project_id": optional_string(entry.get("project_id")),
        "workflow_name": optional_string(entry.get("workflow_name")) or "unknown_workflow",
        "failed_at": optional_datetime(entry.get("failed_at")) or utc_now(),
        "error_type": optional_string(entry.get("error_type")) or DEFAULT_ERROR_TYPE,
        "last_successful_step": optional_string(entry.get("last_successful_step")) or DEFAULT_LAST_SUCCESSFUL_STEP,
        "remediation_hint": optional_string(entry.get("remediation_hint"))
        or optional_string(entry.get("remediation"))
        or DEFAULT_REMEDIATION_HINT,
    }


def store_loader(store: RunStore) -> FailureHistoryLoader:
    """Loader reading failed runs from a run store."""

    async def load(query: FailureHistoryQuery) -> list[FailureHistoryEntry]:
        runs = await store.list_runs(status=RunStatus.FAILED)
        entries = [failure_history_entry(run) for run in runs]
        entries = [entry for entry in entries if query.contains(entry["failed_at"])]
        entries.sort(key=lambda entry: entry["failed_at"], reverse=True)
        return entries[: query.limit]

    return load


async def query_failure_history(
    loader: FailureHistoryLoader,
    params: Mapping[str, Any] | None = None,
) -> OperationResult[list[FailureHistoryEntry]]:
    """Run a failure history query.

    Args:
        loader: Async callable returning entries (or runs) for a validated query.
        params: Raw query params.

    Returns:
        Entries sorted newest first, or a typed failure.
    """
    query = parse_query(params)
    if query.failure is not None:
        log.warning("failure_history_query_invalid", field_errors=query.failure.field_errors)
        return OperationResult.failed(query.failure)

    try:
        entries = await loader(query.unwrap())
    except WorkflowRunsError as e:
        log.error("failure_history_query_failed", error=e.message)
        return OperationResult.failed(query_failure(f"Failure history query failed ({e.message}).", "query_failed"))
    except Exception as e:
        log.error("failure_history_loader_crashed", error=str(e), exc_info=True)
        return OperationResult.failed(query_failure(f"Failure history loader crashed ({e}).", "loader_crashed"))

    if isinstance(entries, OperationResult):
        if entries.failure is not None:
            return OperationResult.failed(entries.failure)
        entries = entries.value

    if not isinstance(entries, list):
        return OperationResult.failed(
            query_failure(
                f"Failure history loader returned an invalid result ({entries!r}).",
                "loader_result_invalid",
            )
        )

    normalized = sorted((normalize_entry(entry) for entry in entries), key=lambda e: e["failed_at"], reverse=True)
    log.debug("failure_history_queried", entry_count=len(normalized))
    return OperationResult.success(normalized)
