"""Collaborator interfaces and the bundled implementations.

Key Components:
    - RunStore / RunLookup: Run persistence interfaces
    - EventPublisher: Lifecycle event transport interface
    - IssuePoster: GitHub issue comment interface
    - FileRunStore: JSON-file run store with atomic writes
    - GitHubIssuePoster: Issue comment poster over the GitHub REST API
    - RecordingEventPublisher / LoggingEventPublisher: In-process publishers
"""

from workflow_runs.providers.base import EventPublisher, IssuePoster, RunLookup, RunStore
from workflow_runs.providers.events import LoggingEventPublisher, RecordingEventPublisher
from workflow_runs.providers.file_store import FileRunStore
from workflow_runs.providers.github_poster import GitHubIssuePoster

__all__ = [
    "EventPublisher",
    "FileRunStore",
    "GitHubIssuePoster",
    "IssuePoster",
    "LoggingEventPublisher",
    "RecordingEventPublisher",
    "RunLookup",
    "RunStore",
]
