"""Task queue name constants for each component.

Every component runs on its own Temporal worker with a dedicated task queue,
so a long upload run on the submission worker never starves other work.

These constants are the single source of truth for queue names. Both the
worker runner and anything that dispatches activities reference them.
"""

# Resource access: talks to the remote OData services
SUBMISSION_QUEUE = "submission-queue"
