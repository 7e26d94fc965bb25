"""Submission activities: Temporal activity functions for OData uploads.

These run on the submission worker (SUBMISSION_QUEUE). Upload flows dispatch
to this queue once their records are parsed and validated.

  submit_records  submit records in batches, return the aggregated outcome

The activity builds a transport and coordinator per call, heartbeats progress
after every batch, and always closes the HTTP client afterward. Expected
failures (nothing to submit, missing credential) come back as a failed
SubmitResult. Anything unexpected propagates for Temporal to retry.
Cancelling the activity stops the run after the batch in flight and returns
the partial, cancelled result.
"""

import asyncio
import contextlib

from temporalio import activity
from upload_shared.submission_models import SubmitRequest, SubmitResult

from upload_submission.coordinator import SubmissionCoordinator, SubmissionOptions
from upload_submission.errors import SubmissionError
from upload_submission.grouping import composite_key
from upload_submission.multipart import MultipartCodec
from upload_submission.transport import ODataTransport


@activity.defn
async def submit_records(request: SubmitRequest) -> SubmitResult:
    """Submit pre-validated records to an OData service.

    Long uploads run for minutes, so progress is heartbeated after each batch
    to keep Temporal from timing out the activity.
    """
    service = request.service
    activity.logger.info(
        f"Submitting {len(request.records)} records to {service.service_id} "
        f"'{service.resource}' (mode={request.mode})"
    )

    transport = ODataTransport(service)
    coordinator = SubmissionCoordinator(
        transport,
        MultipartCodec(service.resource),
        source=service.source,
        entity_id_field=service.entity_id_field,
    )

    def heartbeat(batch_index: int, total_batches: int, processed: int, total: int) -> None:
        snapshot = coordinator.progress
        detail = snapshot.describe() if snapshot else f"{processed}/{total} records"
        # no activity context when called outside a worker
        with contextlib.suppress(Exception):
            activity.heartbeat(detail)

    options = SubmissionOptions(
        batch_size=request.batch_size,
        group_by=composite_key(*request.group_by) if request.group_by else None,
        on_progress=heartbeat,
        mode=request.mode,
        inter_record_delay=request.inter_record_delay,
    )

    run = asyncio.create_task(coordinator.submit(request.records, options))
    try:
        try:
            result = await asyncio.shield(run)
        except asyncio.CancelledError:
            # the batch on the wire finishes and is scored before the run stops
            activity.logger.info("Activity cancelled, stopping after the batch in flight")
            coordinator.cancel()
            result = await run
    except (SubmissionError, ValueError) as e:
        return SubmitResult(
            success=False,
            message=f"Submission failed: {e}",
            service_id=service.service_id,
        )
    finally:
        await transport.close()

    return SubmitResult(
        success=result.status == "completed",
        message=(
            f"Submission {result.status}: {result.success_count} succeeded, "
            f"{result.failure_count} failed of {result.total_records}"
        ),
        service_id=service.service_id,
        result=result,
        data={
            "status": result.status,
            "success_count": result.success_count,
            "failure_count": result.failure_count,
            "total_records": result.total_records,
            "duration_ms": result.duration_ms,
        },
    )
