"""Centralized exceptions for yuque-mirror."""

from __future__ import annotations


class YuqueMirrorError(Exception):
    """Base exception for all yuque-mirror errors."""

    def __init__(self, message: str, suggestion: str | None = None) -> None:
        self.suggestion = suggestion
        super().__init__(message)


class ConfigError(YuqueMirrorError):
    """Raised when settings cannot be loaded or fail validation."""


class SourceReadError(YuqueMirrorError):
    """Raised when the record set cannot be obtained or is corrupt.

    Fatal: the cycle aborts before any task is scheduled and nothing is
    persisted.
    """


class YuqueAPIError(SourceReadError):
    """Raised when the remote API answers with an error or is unreachable."""

    def __init__(self, status_code: int, message: str, suggestion: str | None = None) -> None:
        self.status_code = status_code
        super().__init__(message, suggestion)


class TaskError(YuqueMirrorError):
    """Base for isolated, per-path task failures."""

    def __init__(self, path: str, message: str) -> None:
        self.path = path
        super().__init__(f"{path}: {message}")


class RenderError(TaskError):
    """Raised when a single document fails to render."""


class FilesystemTaskError(TaskError):
    """Raised when a create/write/delete on the output area fails."""


class ReconciliationError(YuqueMirrorError):
    """Raised when the output area cannot be enumerated for orphan cleanup."""
