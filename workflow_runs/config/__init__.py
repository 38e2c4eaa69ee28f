"""Configuration for the workflow-runs lifecycle engine.

Key Components:
    - LifecycleSettings: Engine settings with YAML and environment loading
    - RetryPolicy: Decoded trigger retry policy
    - ApprovalPolicy: Decoded trigger approval policy

Example:
    >>> from workflow_runs.config import LifecycleSettings
    >>> settings = LifecycleSettings.from_yaml("workflow-runs.yaml")
    >>> settings.retry.id_conflict_attempts
    3
"""

from workflow_runs.config.policies import ApprovalPolicy, RejectionRoute, RetryPolicy
from workflow_runs.config.settings import LifecycleSettings

__all__ = ["ApprovalPolicy", "LifecycleSettings", "RejectionRoute", "RetryPolicy"]
