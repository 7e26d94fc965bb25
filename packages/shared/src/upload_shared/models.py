"""Pydantic base models shared across components.

These are the contract types that flow between callers, the submission
engine, and Temporal activities. Pydantic validates at every boundary, so a
malformed request fails fast with a clear error instead of half-submitting a
batch of business documents.
"""

from pydantic import BaseModel


class PlatformResult(BaseModel):
    """Standard result envelope returned by activities.

    Every activity returns this (or a subclass) so callers have a consistent
    way to check success/failure without catching exceptions for expected
    business failures such as an empty upload.
    """

    success: bool
    message: str
    data: dict[str, str | int | float | bool | None] | None = None
