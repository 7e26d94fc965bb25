"""Component registry: maps component names to their workflows and activities.

The runner looks up the CLI argument here to decide what to register on a
worker. Each entry names:

- task_queue: which Temporal task queue the worker polls
- workflows: workflow classes to register
- activities: activity functions to register

All deployments share one image; the component argument is the only
difference between them.
"""

from dataclasses import dataclass, field
from typing import Any

from upload_shared.task_queues import SUBMISSION_QUEUE
from upload_submission.activities import submit_records


@dataclass
class ComponentConfig:
    """Configuration for a single component's worker."""

    task_queue: str
    workflows: list[Any] = field(default_factory=list)
    activities: list[Any] = field(default_factory=list)


COMPONENTS: dict[str, ComponentConfig] = {
    "submission": ComponentConfig(
        task_queue=SUBMISSION_QUEUE,
        activities=[submit_records],
    ),
}
