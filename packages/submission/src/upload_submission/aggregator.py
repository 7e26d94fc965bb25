"""ResultAggregator: counters, per-record outcomes and messages for one run.

A fresh aggregator is built for every submission, so nothing carries over
between runs. Callers never see the aggregator itself, only the frozen
AggregateResult returned by snapshot().
"""

from __future__ import annotations

from typing import Any

from upload_shared.submission_models import (
    AggregateResult,
    MessageType,
    RecordOutcome,
    StandardMessage,
)

from upload_submission.errors import BatchRejectedError
from upload_submission.grouping import Batch, Record
from upload_submission.messages import (
    ErrorInfo,
    create_standard_message,
    describe_success,
    normalize_error,
)
from upload_submission.multipart import PartOutcome


class ResultAggregator:
    def __init__(
        self,
        total_records: int,
        *,
        source: str = "Application",
        entity_id_field: str | None = None,
    ) -> None:
        self.total_records = total_records
        self.source = source
        self.entity_id_field = entity_id_field
        self._success_count = 0
        self._failure_count = 0
        self._success_entries: list[RecordOutcome] = []
        self._failed_records: list[RecordOutcome] = []
        self._messages: list[StandardMessage] = []

    @property
    def success_count(self) -> int:
        return self._success_count

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def processed_records(self) -> int:
        return self._success_count + self._failure_count

    def entity_id(self, record: Record) -> str:
        if not self.entity_id_field:
            return ""
        value = record.get(self.entity_id_field)
        return "" if value is None else str(value)

    def record_success(
        self,
        record: Record,
        response: Any = None,
        *,
        index: int | None = None,
        batch_index: int | None = None,
    ) -> RecordOutcome:
        entity_id = self.entity_id(record)
        code, message = describe_success(response, entity_id)
        if isinstance(response, PartOutcome):
            http_status, raw_details = response.status, response.body
        else:
            http_status, raw_details = None, response

        outcome = RecordOutcome(
            record=record,
            index=index,
            batch_index=batch_index,
            success=True,
            http_status=http_status,
            message=message,
            code=code,
            raw_details=raw_details,
        )
        self._success_count += 1
        self._success_entries.append(outcome)
        self._messages.append(
            create_standard_message(
                MessageType.SUCCESS,
                code,
                message,
                source=self.source,
                entity_id=entity_id,
                batch_index=batch_index,
            )
        )
        return outcome

    def record_failure(
        self,
        record: Record,
        error: Any,
        *,
        index: int | None = None,
        batch_index: int | None = None,
    ) -> RecordOutcome:
        info = normalize_error(error)
        outcome = self._failure_outcome(record, error, info, index, batch_index)
        self._failure_count += 1
        self._failed_records.append(outcome)
        return outcome

    def record_batch_failure(self, batch: Batch, error: Any) -> list[RecordOutcome]:
        """Fail every record of the batch with the same error."""
        info = normalize_error(error)
        outcomes = [
            self._failure_outcome(record, error, info, index, batch.index)
            for index, record in batch.entries()
        ]
        self._failure_count += len(outcomes)
        self._failed_records.extend(outcomes)
        return outcomes

    def _failure_outcome(
        self,
        record: Record,
        error: Any,
        info: ErrorInfo,
        index: int | None,
        batch_index: int | None,
    ) -> RecordOutcome:
        entity_id = self.entity_id(record)
        self._messages.append(
            create_standard_message(
                MessageType.ERROR,
                info.code,
                info.message,
                details=info.details,
                source=self.source,
                entity_id=entity_id,
                batch_index=batch_index,
            )
        )
        return RecordOutcome(
            record=record,
            index=index,
            batch_index=batch_index,
            success=False,
            http_status=info.status,
            message=info.message,
            code=info.code,
            raw_details=_raw_details(error, info),
        )

    def snapshot(self, *, cancelled: bool = False, duration_ms: int = 0) -> AggregateResult:
        return AggregateResult(
            total_records=self.total_records,
            success_count=self._success_count,
            failure_count=self._failure_count,
            success_entries=list(self._success_entries),
            failed_records=list(self._failed_records),
            all_messages=list(self._messages),
            cancelled=cancelled,
            duration_ms=duration_ms,
        )


def _raw_details(error: Any, info: ErrorInfo) -> Any:
    if isinstance(error, PartOutcome):
        return error.body
    if isinstance(error, BatchRejectedError):
        return error.payload
    return info.details
