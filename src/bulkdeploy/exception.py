"""Centralized customized exceptions for bulkdeploy.

All project-specific exceptions live in this module. Internal code should
prefer explicit imports:

    from bulkdeploy.exception import NotFoundError
"""

from __future__ import annotations

__all__ = [
    "SpecError",
    "NotFoundError",
    "InvalidVersionError",
    "ConnectorError",
    "ImportJobTimeoutError",
]


class SpecError(ValueError):
    """Raised when a deployment/connection file is invalid (schema or semantic)."""


class NotFoundError(LookupError):
    """Raised when a solution, solution file or manifest entry cannot be found."""


class InvalidVersionError(ValueError):
    """Raised when a solution version string is not dot-separated numeric."""

    def __init__(self, version: str):
        super().__init__(f"Invalid solution version: {version!r}")
        self.version = version


class ConnectorError(RuntimeError):
    """Base error for connector failures (connect, auth, remote call)."""


class ImportJobTimeoutError(TimeoutError):
    """Raised when an import job does not complete within the configured max wait."""

    def __init__(self, *, job_id: str, max_wait: float, progress: int):
        super().__init__(
            f"Import job {job_id} did not complete within {max_wait:g}s (last progress={progress}%)"
        )
        self.job_id = job_id
        self.max_wait = float(max_wait)
        self.progress = int(progress)
