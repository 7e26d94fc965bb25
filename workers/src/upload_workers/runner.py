"""Worker runner entrypoint.

Usage:
  python -m upload_workers.runner <component-name>
  COMPONENT=submission python -m upload_workers.runner

Environment:
  COMPONENT               component to run when no CLI argument is given
  LOG_LEVEL               root log level (default INFO)
  WORKER_MAX_ACTIVITIES   concurrent activity slots (default 4). Each slot is
                          one upload run hammering the ERP backend, so this
                          is kept low.

The worker polls the component's task queue until interrupted (SIGINT/SIGTERM).
"""

import asyncio
import logging
import os
import sys
from collections.abc import Mapping, Sequence

from temporalio.worker import Worker
from upload_shared.temporal_client import connect

from upload_workers.registry import COMPONENTS

logger = logging.getLogger(__name__)

DEFAULT_MAX_ACTIVITIES = 4


def resolve_component(argv: Sequence[str], environ: Mapping[str, str]) -> str:
    """CLI argument first, then the COMPONENT variable. Empty if neither is set."""
    if len(argv) >= 2:
        return argv[1]
    return environ.get("COMPONENT", "")


def max_concurrent_activities(environ: Mapping[str, str]) -> int:
    raw = environ.get("WORKER_MAX_ACTIVITIES", "")
    if not raw:
        return DEFAULT_MAX_ACTIVITIES
    value = int(raw)
    if value < 1:
        raise ValueError(f"WORKER_MAX_ACTIVITIES must be at least 1, got {value}")
    return value


def configure_logging(environ: Mapping[str, str]) -> None:
    logging.basicConfig(
        level=environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def run_worker(component_name: str) -> None:
    """Start a Temporal worker for the specified component."""
    if component_name not in COMPONENTS:
        available = ", ".join(sorted(COMPONENTS.keys()))
        logger.error(f"Unknown component '{component_name}'. Available: {available}")
        sys.exit(1)

    config = COMPONENTS[component_name]
    slots = max_concurrent_activities(os.environ)
    client = await connect()

    logger.info(
        f"Starting worker for '{component_name}' on queue '{config.task_queue}' "
        f"(activities={len(config.activities)}, slots={slots})"
    )

    worker = Worker(
        client,
        task_queue=config.task_queue,
        workflows=config.workflows,
        activities=config.activities,
        max_concurrent_activities=slots,
    )
    await worker.run()


def main() -> None:
    configure_logging(os.environ)
    component_name = resolve_component(sys.argv, os.environ)

    if not component_name:
        print("Usage: python -m upload_workers.runner <component>")
        print("  or: COMPONENT=<component> python -m upload_workers.runner")
        print(f"Components: {', '.join(sorted(COMPONENTS.keys()))}")
        sys.exit(1)

    asyncio.run(run_worker(component_name))


if __name__ == "__main__":
    main()
