"""Submission boundary models: the contract between callers and the engine.

These types cross the Temporal activity boundary and are what the upload UIs
receive back once a run is over. The engine builds them; callers only read.

Design choices:
  - Records are plain dicts. Upload tools hand over rows parsed from
    spreadsheets, and Temporal serializes everything to JSON anyway.
  - ServiceConfig.auth_env_var names an environment variable, not the
    credential itself. Secrets never travel through Temporal's data converter.
  - Result models are frozen. A snapshot handed to a caller cannot be
    mutated back into the aggregator that produced it.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from upload_shared.models import PlatformResult


class MessageType(StrEnum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class SubmissionMode(StrEnum):
    """How the records of one batch travel to the backend."""

    BATCH = "batch"  # one multipart $batch request per batch
    SINGLE = "single"  # one POST per record, dispatched concurrently
    SEQUENTIAL = "sequential"  # one POST per record, one at a time


class ServiceConfig(BaseModel):
    """Describes the OData service a submission targets."""

    service_id: str
    service_url: str
    resource: str
    auth_env_var: str | None = None
    auth_scheme: Literal["basic", "bearer"] = "basic"
    timeout_seconds: float = 30.0
    rate_limit_per_second: float | None = 5.0
    entity_id_field: str | None = None
    source: str = "ODataService"


# ============================================================================
# Outcome models, produced by the ResultAggregator
# ============================================================================


class StandardMessage(BaseModel):
    """Normalized, transport-agnostic record of one outcome."""

    model_config = ConfigDict(frozen=True)

    type: MessageType = MessageType.INFO
    code: str
    message: str
    details: Any = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    source: str = "Application"
    entity_id: str = ""
    batch_index: int | None = None


class RecordOutcome(BaseModel):
    """What happened to one submitted record."""

    model_config = ConfigDict(frozen=True)

    record: Any
    index: int | None = None  # position in the submitted record list
    batch_index: int | None = None
    success: bool
    http_status: int | None = None
    message: str = ""
    code: str = ""
    raw_details: Any = None


class AggregateResult(BaseModel):
    """Caller-visible summary of one submission run."""

    model_config = ConfigDict(frozen=True)

    total_records: int = 0
    success_count: int = 0
    failure_count: int = 0
    success_entries: list[RecordOutcome] = []
    failed_records: list[RecordOutcome] = []
    all_messages: list[StandardMessage] = []
    cancelled: bool = False
    duration_ms: int = 0

    @property
    def processed_records(self) -> int:
        return self.success_count + self.failure_count

    @property
    def has_failures(self) -> bool:
        return self.failure_count > 0

    @property
    def status(self) -> str:
        """One of: completed, partial, failed, cancelled."""
        if self.cancelled:
            return "cancelled"
        if self.failure_count == 0:
            return "completed"
        if self.success_count == 0:
            return "failed"
        return "partial"


# ============================================================================
# Activity request/result pair
# ============================================================================


class SubmitRequest(BaseModel):
    """Parameters for a submit_records activity call."""

    service: ServiceConfig
    records: list[dict[str, Any]]
    batch_size: int = Field(default=10, ge=1)
    group_by: list[str] | None = None  # record fields forming the grouping key
    mode: SubmissionMode = SubmissionMode.BATCH
    inter_record_delay: float = Field(default=0.0, ge=0.0)


class SubmitResult(PlatformResult):
    """Returned by submit_records. Carries the aggregated outcome."""

    service_id: str = ""
    result: AggregateResult | None = None
