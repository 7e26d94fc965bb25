"""SubmissionCoordinator: drives one upload run from records to result.

State machine:

    IDLE → TOKEN_FETCH → SUBMITTING → COMPLETED | CANCELLED | FAILED

Batches are processed strictly one after another, in the order the grouper
produced them. Later batches may rely on side effects of earlier ones (shared
document numbering), and sequential processing keeps progress accounting
race-free.

Failure policy:
  - Setup errors (no records, bad batch size, missing credential, a run
    already in flight) raise before anything touches the network.
  - HTTP 403 on a unit of work (a $batch request, or one record in the
    single-record modes) triggers one token refresh and one retry of that
    same unit. A second 403 is scored like any other failure.
  - Every other failure is scored against the records it affects and the
    loop moves on to the next batch. One bad batch never blocks the rest.
  - Cancellation is cooperative and checked before each batch starts. A batch
    already on the wire finishes and is scored first. A cancelled run is a
    normal result with cancelled=True.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import httpx
from upload_shared.submission_models import AggregateResult, SubmissionMode

from upload_submission.aggregator import ResultAggregator
from upload_submission.errors import (
    BatchRejectedError,
    NoRecordsError,
    SubmissionInProgressError,
)
from upload_submission.grouping import (
    Batch,
    BatchGrouper,
    ByKey,
    FixedSize,
    KeyFunction,
    PartitionMode,
    Record,
)
from upload_submission.messages import ErrorInfo
from upload_submission.multipart import MultipartCodec, PartOutcome, extract_boundary
from upload_submission.progress import ProgressSnapshot, ProgressTracker
from upload_submission.tokens import SessionTokenManager, Token
from upload_submission.transport import SubmissionTransport, as_part, response_payload

logger = logging.getLogger(__name__)

# (batch_index, total_batches, batch_size)
BatchStartCallback = Callable[[int, int, int], Any]
# (batch_index, total_batches, processed_records, total_records)
ProgressCallback = Callable[[int, int, int, int], Any]


class CoordinatorState(StrEnum):
    IDLE = "idle"
    TOKEN_FETCH = "token_fetch"
    SUBMITTING = "submitting"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


_ACTIVE_STATES = {CoordinatorState.TOKEN_FETCH, CoordinatorState.SUBMITTING}


@dataclass
class SubmissionOptions:
    batch_size: int = 10
    group_by: KeyFunction | None = None
    on_batch_start: BatchStartCallback | None = None
    on_progress: ProgressCallback | None = None
    mode: SubmissionMode = SubmissionMode.BATCH
    inter_record_delay: float = 0.0  # SEQUENTIAL mode only

    def partition_mode(self) -> PartitionMode:
        if self.group_by is not None:
            return ByKey(self.group_by)
        return FixedSize(self.batch_size)


async def _invoke(callback: Callable[..., Any] | None, *args: Any) -> None:
    if callback is None:
        return
    try:
        result = callback(*args)
        if inspect.isawaitable(result):
            await result
    except Exception:
        # callback errors are logged and never end the run
        logger.exception(f"Callback {getattr(callback, '__name__', callback)!r} failed")


class SubmissionCoordinator:
    def __init__(
        self,
        transport: SubmissionTransport,
        codec: MultipartCodec,
        *,
        tokens: SessionTokenManager | None = None,
        grouper: BatchGrouper | None = None,
        source: str = "ODataService",
        entity_id_field: str | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._transport = transport
        self._codec = codec
        self._tokens = tokens or SessionTokenManager(transport)
        self._grouper = grouper or BatchGrouper()
        self.source = source
        self.entity_id_field = entity_id_field
        self._clock = clock
        self._sleep = sleep
        self._refresh_lock = asyncio.Lock()

        self._state = CoordinatorState.IDLE
        self._cancel_requested = False
        self._current_batch: int | None = None
        self._tracker: ProgressTracker | None = None

    @property
    def state(self) -> CoordinatorState:
        return self._state

    @property
    def tokens(self) -> SessionTokenManager:
        return self._tokens

    @property
    def current_batch(self) -> int | None:
        return self._current_batch

    @property
    def progress(self) -> ProgressSnapshot | None:
        return self._tracker.latest if self._tracker else None

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    def cancel(self) -> None:
        """Stop before the next batch. The batch in flight still completes."""
        if not self._cancel_requested:
            logger.info("Submission cancellation requested")
        self._cancel_requested = True

    async def submit(
        self,
        records: Sequence[Record],
        options: SubmissionOptions | None = None,
    ) -> AggregateResult:
        if self._state in _ACTIVE_STATES:
            raise SubmissionInProgressError()

        options = options or SubmissionOptions()
        try:
            if not records:
                raise NoRecordsError()
            batches = self._grouper.partition(records, options.partition_mode())
            return await self._run(records, batches, options)
        except BaseException:
            self._state = CoordinatorState.FAILED
            raise

    async def _run(
        self,
        records: Sequence[Record],
        batches: list[Batch],
        options: SubmissionOptions,
    ) -> AggregateResult:
        self._cancel_requested = False
        self._current_batch = None
        aggregator = ResultAggregator(
            len(records), source=self.source, entity_id_field=self.entity_id_field
        )
        self._tracker = ProgressTracker(len(batches), len(records), clock=self._clock)
        started_at = self._clock()
        total_batches = len(batches)

        logger.info(
            f"Submitting {len(records)} records in {total_batches} batches "
            f"(mode={options.mode})"
        )
        self._state = CoordinatorState.TOKEN_FETCH
        self._tokens.reset_probe()
        await self._tokens.ensure_token()

        self._state = CoordinatorState.SUBMITTING
        cancelled = False
        for batch in batches:
            if self._cancel_requested:
                cancelled = True
                logger.info(
                    f"Submission cancelled before batch {batch.index + 1}/{total_batches}"
                )
                break

            self._current_batch = batch.index
            await _invoke(options.on_batch_start, batch.index, total_batches, len(batch))
            logger.info(f"Processing batch {batch.index + 1}/{total_batches} ({len(batch)} records)")

            await self._process_batch(batch, aggregator, options)

            snapshot = self._tracker.update(
                batch.index,
                aggregator.processed_records,
                aggregator.success_count,
                aggregator.failure_count,
            )
            logger.debug(snapshot.describe())
            await _invoke(
                options.on_progress,
                batch.index,
                total_batches,
                aggregator.processed_records,
                aggregator.total_records,
            )

        duration_ms = int((self._clock() - started_at) * 1000)
        result = aggregator.snapshot(cancelled=cancelled, duration_ms=duration_ms)
        self._state = CoordinatorState.CANCELLED if cancelled else CoordinatorState.COMPLETED
        logger.info(
            f"Submission {result.status}: {result.success_count} succeeded, "
            f"{result.failure_count} failed of {result.total_records} in {duration_ms}ms"
        )
        return result

    async def _process_batch(
        self,
        batch: Batch,
        aggregator: ResultAggregator,
        options: SubmissionOptions,
    ) -> None:
        try:
            if options.mode == SubmissionMode.BATCH:
                await self._submit_as_batch(batch, aggregator)
            elif options.mode == SubmissionMode.SINGLE:
                await self._submit_concurrently(batch, aggregator)
            else:
                await self._submit_sequentially(batch, aggregator, options.inter_record_delay)
        except Exception as e:
            logger.error(f"Batch {batch.index + 1} failed: {e}")
            aggregator.record_batch_failure(batch, e)

    # ------------------------------------------------------------------
    # Token handling
    # ------------------------------------------------------------------

    async def _with_token_retry(
        self,
        send: Callable[[str | None], Awaitable[httpx.Response]],
    ) -> httpx.Response:
        """Send one unit of work, refreshing the token once on HTTP 403."""
        token = await self._tokens.ensure_token()
        generation = self._tokens.fetch_count
        response = await send(token.value)
        if response.status_code != 403:
            return response

        logger.warning("HTTP 403 received, refreshing CSRF token and retrying once")
        token = await self._refresh_token(generation)
        try:
            return await send(token.value)
        finally:
            self._tokens.clear_retried()

    async def _refresh_token(self, generation: int) -> Token:
        # concurrent 403s from SINGLE mode share one refresh
        async with self._refresh_lock:
            if self._tokens.fetch_count != generation:
                return self._tokens.token
            self._tokens.mark_retried()
            self._tokens.invalidate()
            return await self._tokens.ensure_token()

    # ------------------------------------------------------------------
    # Submission modes
    # ------------------------------------------------------------------

    async def _submit_as_batch(self, batch: Batch, aggregator: ResultAggregator) -> None:
        encoded = self._codec.encode(batch)
        response = await self._with_token_retry(
            lambda token: self._transport.post_batch(encoded, token)
        )
        if not response.is_success:
            raise BatchRejectedError(response.status_code, response_payload(response))

        boundary = extract_boundary(response.headers.get("content-type"))
        parts = self._codec.decode(response.text, boundary)
        if not parts:
            raise BatchRejectedError(
                response.status_code,
                response_payload(response),
                "Batch response contained no response parts",
            )

        if len(parts) == 1 and len(batch) > 1 and not parts[0].ok:
            # the changeset was rolled back as a whole
            logger.warning(f"Batch {batch.index + 1} changeset rejected (HTTP {parts[0].status})")
            aggregator.record_batch_failure(batch, parts[0])
            return
        if len(parts) > len(batch):
            logger.warning(
                f"Batch {batch.index + 1} returned {len(parts)} parts for "
                f"{len(batch)} records, ignoring the surplus"
            )

        slots = self._codec.correlate(parts, len(batch))
        for (index, record), part in zip(batch.entries(), slots, strict=True):
            self._score(aggregator, record, part, index, batch.index)

    async def _send_record(self, record: Record) -> PartOutcome:
        body = self._codec.serialize(record)
        response = await self._with_token_retry(
            lambda token: self._transport.post_record(body, token)
        )
        return as_part(response)

    async def _submit_concurrently(self, batch: Batch, aggregator: ResultAggregator) -> None:
        results = await asyncio.gather(
            *(self._send_record(record) for record in batch.records),
            return_exceptions=True,
        )
        for (index, record), result in zip(batch.entries(), results, strict=True):
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result
            self._score(aggregator, record, result, index, batch.index)

    async def _submit_sequentially(
        self,
        batch: Batch,
        aggregator: ResultAggregator,
        delay: float,
    ) -> None:
        for position, (index, record) in enumerate(batch.entries()):
            if position and delay > 0:
                await self._sleep(delay)
            try:
                result: PartOutcome | Exception = await self._send_record(record)
            except Exception as e:
                result = e
            self._score(aggregator, record, result, index, batch.index)

    def _score(
        self,
        aggregator: ResultAggregator,
        record: Record,
        result: PartOutcome | Exception | None,
        index: int | None,
        batch_index: int,
    ) -> None:
        if result is None:
            aggregator.record_failure(
                record,
                ErrorInfo("MISSING_RESPONSE", "No response part returned for record"),
                index=index,
                batch_index=batch_index,
            )
        elif isinstance(result, PartOutcome) and result.ok and not result.parse_failed:
            aggregator.record_success(record, result, index=index, batch_index=batch_index)
        else:
            if isinstance(result, Exception):
                logger.error(f"Record {index} failed: {result}")
            aggregator.record_failure(record, result, index=index, batch_index=batch_index)
