"""Tests for workflow_runs.exceptions module."""

import pytest

from workflow_runs.exceptions import (
    ConfigurationError,
    ExternalServiceError,
    InvalidTransitionError,
    PolicyInvalidError,
    RunConflictError,
    RunNotFoundError,
    RunStoreError,
    WorkflowRunsError,
)


class TestWorkflowRunsError:
    """Test base WorkflowRunsError class."""

    def test_init_with_message(self):
        """Test initialization with message."""
        error = WorkflowRunsError("Test error message")

        assert error.message == "Test error message"
        assert str(error) == "Test error message"

    def test_exception_can_be_raised(self):
        """Test that exception can be raised and caught."""
        with pytest.raises(WorkflowRunsError) as exc_info:
            raise WorkflowRunsError("Test error")

        assert exc_info.value.message == "Test error"


class TestPolicyInvalidError:
    """Test PolicyInvalidError class."""

    def test_is_configuration_error(self):
        error = PolicyInvalidError("bad policy", "fix the policy")
        assert isinstance(error, ConfigurationError)
        assert isinstance(error, WorkflowRunsError)

    def test_carries_remediation(self):
        error = PolicyInvalidError("bad policy", "fix the policy")
        assert error.message == "bad policy"
        assert error.remediation == "fix the policy"


class TestInvalidTransitionError:
    """Test InvalidTransitionError class."""

    def test_message_names_both_statuses(self):
        error = InvalidTransitionError("completed", "running")

        assert error.from_status == "completed"
        assert error.to_status == "running"
        assert error.message == "invalid lifecycle transition from completed to running"


class TestRunStoreError:
    """Test RunStoreError and its subclasses."""

    def test_message_with_context(self):
        """Test that project and run ids are appended to the string form only."""
        error = RunStoreError("Cannot write run", project_id="p1", run_id="r1")

        assert error.message == "Cannot write run"
        assert str(error) == "Cannot write run (project: p1, run: r1)"

    def test_message_without_context(self):
        error = RunStoreError("Cannot write run")
        assert str(error) == "Cannot write run"
        assert error.project_id is None
        assert error.run_id is None

    @pytest.mark.parametrize("error_class", [RunConflictError, RunNotFoundError])
    def test_subclasses_are_store_errors(self, error_class):
        error = error_class("boom", project_id="p1", run_id="r1")
        assert isinstance(error, RunStoreError)
        assert error.run_id == "r1"


class TestExternalServiceError:
    """Test ExternalServiceError class."""

    def test_with_reason_type(self):
        error = ExternalServiceError("GitHub API unavailable", reason_type="timeout")

        assert error.message == "GitHub API unavailable"
        assert error.reason_type == "timeout"
        assert str(error) == "GitHub API unavailable (reason: timeout)"

    def test_without_reason_type(self):
        error = ExternalServiceError("GitHub API unavailable")
        assert error.reason_type is None
        assert str(error) == "GitHub API unavailable"
