"""Custom exception hierarchy for the workflow-runs lifecycle core.

Exceptions are raised by collaborators (run stores, publishers, posters) and
by configuration loading. The state machine never lets them cross its public
boundary: every operation catches them at the call site and converts them into
a typed failure record (see ``workflow_runs.models.results``).

Exception Hierarchy:
    WorkflowRunsError (base)
    ├── ConfigurationError
    │   └── PolicyInvalidError
    ├── InvalidTransitionError
    ├── RunStoreError
    │   ├── RunConflictError
    │   └── RunNotFoundError
    └── ExternalServiceError

Example Usage:
    >>> from workflow_runs.exceptions import RunConflictError
    >>> try:
    ...     await store.create(run)
    ... except RunConflictError as e:
    ...     log.warning("run_id_taken", run_id=e.run_id)
"""


class WorkflowRunsError(Exception):
    """Base exception for all workflow-runs errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        """Initialize exception.

        Args:
            message: Error message
        """
        self.message = message
        super().__init__(message)


class ConfigurationError(WorkflowRunsError):
    """Configuration-related errors.

    Raised when configuration files are invalid, missing, or contain
    incompatible settings.

    Examples:
        - Configuration file not found
        - Invalid YAML syntax
        - Missing environment variable referenced from the config file
    """

    pass


class PolicyInvalidError(ConfigurationError):
    """A trigger-supplied policy cannot be interpreted.

    Attributes:
        message: Human-readable error description
        remediation: What to change in the policy to fix it
    """

    def __init__(self, message: str, remediation: str) -> None:
        """Initialize exception.

        Args:
            message: Error message
            remediation: Suggested policy fix
        """
        self.remediation = remediation
        super().__init__(message)


class InvalidTransitionError(WorkflowRunsError):
    """A lifecycle transition outside the allowed table was requested.

    Attributes:
        message: Human-readable error description
        from_status: Status the run is in
        to_status: Status that was requested
    """

    def __init__(self, from_status: str, to_status: str) -> None:
        """Initialize exception.

        Args:
            from_status: Current run status
            to_status: Requested run status
        """
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"invalid lifecycle transition from {from_status} to {to_status}")


class RunStoreError(WorkflowRunsError):
    """Run persistence errors.

    Raised by run store implementations when a run record cannot be read,
    created, or written.

    Attributes:
        message: Human-readable error description
        project_id: Project the run belongs to (if known)
        run_id: Human-facing run identifier (if known)
    """

    def __init__(
        self,
        message: str,
        project_id: str | None = None,
        run_id: str | None = None,
    ) -> None:
        """Initialize exception.

        Args:
            message: Error message
            project_id: Project the run belongs to
            run_id: Run identifier involved in the failure
        """
        self.project_id = project_id
        self.run_id = run_id

        parts = [message]
        if project_id:
            parts.append(f"project: {project_id}")
        if run_id:
            parts.append(f"run: {run_id}")

        full_message = message if len(parts) == 1 else f"{message} ({', '.join(parts[1:])})"
        super().__init__(full_message)
        # Preserve original message
        self.message = message


class RunConflictError(RunStoreError):
    """A run with the same ``(project_id, run_id)`` already exists."""

    pass


class RunNotFoundError(RunStoreError):
    """The requested run does not exist in the store."""

    pass


class ExternalServiceError(WorkflowRunsError):
    """External collaborator communication errors.

    Raised by event publishers and issue posters when the service behind them
    fails (HTTP errors, broker outages, timeouts).

    Attributes:
        message: Human-readable error description
        reason_type: Machine-readable reason (e.g. "authentication", "timeout")
    """

    def __init__(self, message: str, reason_type: str | None = None) -> None:
        """Initialize exception.

        Args:
            message: Error message
            reason_type: Machine-readable failure reason
        """
        self.reason_type = reason_type
        full_message = message if not reason_type else f"{message} (reason: {reason_type})"
        super().__init__(full_message)
        self.message = message
