"""Exceptions raised by the submission engine.

Only setup errors ever escape SubmissionCoordinator.submit(). Everything that
goes wrong once records are on the wire ends up in the AggregateResult.
"""

from __future__ import annotations

from typing import Any


class SubmissionError(Exception):
    """Base class for submission engine errors."""


class NoRecordsError(SubmissionError, ValueError):
    """Raised when submit() is called with nothing to submit."""

    def __init__(self, message: str = "At least one record is required for submission") -> None:
        super().__init__(message)


class SubmissionInProgressError(SubmissionError, RuntimeError):
    """Raised when submit() is called while another run is still in flight."""

    def __init__(self, message: str = "Another submission is already running") -> None:
        super().__init__(message)


class BatchRejectedError(SubmissionError):
    """The backend answered a whole unit of work with a non-2xx status.

    `payload` holds the parsed JSON error document when the body was JSON,
    otherwise the raw response text.
    """

    def __init__(self, status_code: int, payload: Any = None, message: str | None = None) -> None:
        self.status_code = status_code
        self.payload = payload
        super().__init__(message or f"Request rejected with HTTP {status_code}")
