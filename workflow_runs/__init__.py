"""Workflow run lifecycle engine for AI coding agent workflows."""

__version__ = "0.1.0"
