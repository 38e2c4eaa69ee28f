"""Shared helpers: payload normalization and structured logging setup."""
