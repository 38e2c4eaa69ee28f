"""CLI entry point for the workflow run lifecycle engine."""

import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import click
import structlog

from workflow_runs.config.settings import LifecycleSettings
from workflow_runs.engine.state_machine import RunStateMachine
from workflow_runs.exceptions import ConfigurationError, WorkflowRunsError
from workflow_runs.models.domain import WorkflowRun
from workflow_runs.models.results import OperationResult
from workflow_runs.providers.events import LoggingEventPublisher
from workflow_runs.providers.file_store import FileRunStore
from workflow_runs.providers.github_poster import GitHubIssuePoster
from workflow_runs.utils.logging_config import configure_logging
from workflow_runs.utils.normalize import isoformat, reject_none

log = structlog.get_logger(__name__)


class CommandFailed(WorkflowRunsError):
    """A lifecycle operation returned a typed failure."""

    def __init__(self, message: str, remediation: str | None = None) -> None:
        super().__init__(message)
        self.remediation = remediation


@click.group()
@click.option("--config", type=click.Path(dir_okay=False), help="Path to YAML configuration file")
@click.option("--state-dir", help="Run store directory (overrides configuration)")
@click.option("--log-level", help="Logging level (overrides configuration)")
@click.pass_context
def cli(ctx: click.Context, config: str | None, state_dir: str | None, log_level: str | None) -> None:
    """workflow-runs: Workflow run lifecycle management CLI."""
    try:
        settings = LifecycleSettings.from_yaml(config) if config else LifecycleSettings()
    except ConfigurationError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)

    configure_logging(log_level or settings.log_level, json_output=False)
    ctx.obj = {"settings": settings, "state_dir": Path(state_dir) if state_dir else settings.state_dir}


def _machine(ctx: click.Context) -> RunStateMachine:
    settings = ctx.obj["settings"]
    return RunStateMachine(
        FileRunStore(ctx.obj["state_dir"]),
        publisher=LoggingEventPublisher(),
        poster=GitHubIssuePoster.from_config(settings.github),
        settings=settings,
    )


def _run_command(name: str, operation: Callable[[], Awaitable[None]]) -> None:
    try:
        asyncio.run(operation())
    except CommandFailed as e:
        click.echo(f"Error: {e.message}", err=True)
        if e.remediation:
            click.echo(f"Remediation: {e.remediation}", err=True)
        sys.exit(1)
    except WorkflowRunsError as e:
        click.echo(f"Error: {e.message}", err=True)
        log.debug(f"{name}_error", exc_info=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        sys.exit(130)
    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        log.error(f"{name}_unexpected", exc_info=True)
        sys.exit(1)


def _parse_json_option(value: str | None, option: str) -> dict[str, Any]:
    if not value:
        return {}
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"invalid JSON ({e.msg})", param_hint=option) from e
    if not isinstance(parsed, dict):
        raise click.BadParameter("expected a JSON object", param_hint=option)
    return parsed


def _actor(actor_id: str | None, actor_email: str | None) -> dict[str, Any] | None:
    if actor_id is None and actor_email is None:
        return None
    return reject_none({"id": actor_id, "email": actor_email})


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _unwrap(result: OperationResult[Any]) -> Any:
    if result.failure is not None:
        raise CommandFailed(result.failure.detail, result.failure.remediation)
    return result.value


async def _load_run(machine: RunStateMachine, project_id: str, run_id: str) -> WorkflowRun:
    run = await machine.store.find_by_project_and_run_id(project_id, run_id)
    if run is None:
        raise CommandFailed(f"Run {run_id} not found in project {project_id}.")
    return run


def _run_arguments(command: Callable[..., Any]) -> Callable[..., Any]:
    command = click.argument("run_id")(command)
    return click.argument("project_id")(command)


def _actor_options(command: Callable[..., Any]) -> Callable[..., Any]:
    command = click.option("--actor-email", help="Email of the acting user")(command)
    return click.option("--actor-id", help="Id of the acting user")(command)


@cli.command()
@click.option("--run-id", required=True, help="Run identifier, unique within the project")
@click.option("--project-id", required=True, help="Owning project")
@click.option("--workflow-name", required=True, help="Workflow definition name")
@click.option("--workflow-version", type=int, default=1, help="Workflow definition version")
@click.option("--step", "current_step", help="Initial step")
@click.option("--trigger", help="Trigger as a JSON object (policies, source issue, ...)")
@click.option("--inputs", help="Run inputs as a JSON object")
@click.pass_context
def create(
    ctx: click.Context,
    run_id: str,
    project_id: str,
    workflow_name: str,
    workflow_version: int,
    current_step: str | None,
    trigger: str | None,
    inputs: str | None,
) -> None:
    """Create a new pending run."""
    attrs = {
        "run_id": run_id,
        "project_id": project_id,
        "workflow_name": workflow_name,
        "workflow_version": workflow_version,
        "current_step": current_step,
        "trigger": _parse_json_option(trigger, "--trigger"),
        "inputs": _parse_json_option(inputs, "--inputs"),
    }

    async def operation() -> None:
        run = _unwrap(await _machine(ctx).create(attrs))
        _echo_json(run.to_dict())

    _run_command("create", operation)


@cli.command()
@_run_arguments
@click.pass_context
def show(ctx: click.Context, project_id: str, run_id: str) -> None:
    """Show a stored run."""

    async def operation() -> None:
        run = await _load_run(_machine(ctx), project_id, run_id)
        _echo_json(run.to_dict())

    _run_command("show", operation)


@cli.command()
@_run_arguments
@click.argument("status")
@click.option("--step", "current_step", help="Step after the transition")
@click.option("--metadata", help="Transition metadata as a JSON object")
@click.pass_context
def transition(
    ctx: click.Context,
    project_id: str,
    run_id: str,
    status: str,
    current_step: str | None,
    metadata: str | None,
) -> None:
    """Move a run to STATUS."""
    transition_metadata = _parse_json_option(metadata, "--metadata")

    async def operation() -> None:
        machine = _machine(ctx)
        run = await _load_run(machine, project_id, run_id)
        result = await machine.transition_status(
            run, status, current_step=current_step, transition_metadata=transition_metadata
        )
        _echo_json(_unwrap(result).to_dict())

    _run_command("transition", operation)


@cli.command()
@_run_arguments
@_actor_options
@click.option("--step", "current_step", help="Step to resume at")
@click.pass_context
def approve(
    ctx: click.Context,
    project_id: str,
    run_id: str,
    actor_id: str | None,
    actor_email: str | None,
    current_step: str | None,
) -> None:
    """Approve a run waiting at the approval gate."""
    params = reject_none({"actor": _actor(actor_id, actor_email), "current_step": current_step})

    async def operation() -> None:
        machine = _machine(ctx)
        run = await _load_run(machine, project_id, run_id)
        _echo_json(_unwrap(await machine.approve(run, params)).to_dict())

    _run_command("approve", operation)


@cli.command()
@_run_arguments
@_actor_options
@click.option("--rationale", help="Why the run was rejected")
@click.pass_context
def reject(
    ctx: click.Context,
    project_id: str,
    run_id: str,
    actor_id: str | None,
    actor_email: str | None,
    rationale: str | None,
) -> None:
    """Reject a run waiting at the approval gate."""
    params = reject_none({"actor": _actor(actor_id, actor_email), "rationale": rationale})

    async def operation() -> None:
        machine = _machine(ctx)
        run = await _load_run(machine, project_id, run_id)
        _echo_json(_unwrap(await machine.reject(run, params)).to_dict())

    _run_command("reject", operation)


@cli.command()
@_run_arguments
@_actor_options
@click.pass_context
def retry(ctx: click.Context, project_id: str, run_id: str, actor_id: str | None, actor_email: str | None) -> None:
    """Start a full-run retry of a failed or cancelled run."""
    params = reject_none({"actor": _actor(actor_id, actor_email)})

    async def operation() -> None:
        machine = _machine(ctx)
        run = await _load_run(machine, project_id, run_id)
        _echo_json(_unwrap(await machine.retry(run, params)).to_dict())

    _run_command("retry", operation)


@cli.command("retry-step")
@_run_arguments
@_actor_options
@click.option("--step", "retry_step", help="Step to restart from; defaults to the policy's step")
@click.pass_context
def retry_step(
    ctx: click.Context,
    project_id: str,
    run_id: str,
    actor_id: str | None,
    actor_email: str | None,
    retry_step: str | None,
) -> None:
    """Start a step-level retry of a failed or cancelled run."""
    params = reject_none({"actor": _actor(actor_id, actor_email), "retry_step": retry_step})

    async def operation() -> None:
        machine = _machine(ctx)
        run = await _load_run(machine, project_id, run_id)
        _echo_json(_unwrap(await machine.retry_step(run, params)).to_dict())

    _run_command("retry_step", operation)


@cli.command("step-retry-contract")
@_run_arguments
@click.pass_context
def step_retry_contract(ctx: click.Context, project_id: str, run_id: str) -> None:
    """Show where a step-level retry of a run would restart."""

    async def operation() -> None:
        machine = _machine(ctx)
        run = await _load_run(machine, project_id, run_id)
        _echo_json(_unwrap(await machine.step_retry_contract(run)))

    _run_command("step_retry_contract", operation)


@cli.command("advance-triage")
@_run_arguments
@click.pass_context
def advance_triage(ctx: click.Context, project_id: str, run_id: str) -> None:
    """Post an issue-triage response, or route the run to the approval gate.

    Posting uses the GitHub token from the ``github`` configuration section
    (or WORKFLOW_RUNS_GITHUB__TOKEN).
    """

    async def operation() -> None:
        machine = _machine(ctx)
        run = await _load_run(machine, project_id, run_id)
        _echo_json(_unwrap(await machine.advance_issue_triage_run(run)).to_dict())

    _run_command("advance_triage", operation)


@cli.command()
@click.option("--window-start", help="ISO 8601 start of the window (default: 30 days ago)")
@click.option("--window-end", help="ISO 8601 end of the window (default: now)")
@click.option("--limit", help="Maximum number of entries (1-500, default: 200)")
@click.pass_context
def failures(ctx: click.Context, window_start: str | None, window_end: str | None, limit: str | None) -> None:
    """List failed runs, newest first."""
    params = reject_none({"window_start": window_start, "window_end": window_end, "limit": limit})

    async def operation() -> None:
        entries = _unwrap(await _machine(ctx).query_failure_history(params))
        if not entries:
            click.echo("No failed runs found.")
            return
        _echo_json([{**entry, "failed_at": isoformat(entry["failed_at"])} for entry in entries])

    _run_command("failures", operation)


if __name__ == "__main__":
    cli()
