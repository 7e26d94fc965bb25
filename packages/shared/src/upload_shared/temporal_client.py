"""Temporal client connection factory.

Two connection modes, picked from the environment:

1. Local dev: connect to TEMPORAL_ADDRESS (default `localhost:7233`), the dev
   server started by `temporal server start-dev`. No auth.

2. Temporal Cloud: TEMPORAL_API_KEY is set. Connects with TLS and API key
   auth to TEMPORAL_REGIONAL_ENDPOINT. Cloud API key auth only works against
   the regional endpoint, not the `<ns>.tmprl.cloud` namespace endpoint.

Both modes use the Pydantic data converter, since every activity argument and
result in this platform is a Pydantic model.
"""

import os

from temporalio.client import Client
from temporalio.contrib.pydantic import pydantic_data_converter


async def connect() -> Client:
    """Create a connected Temporal client for the current environment."""
    namespace = os.environ.get("TEMPORAL_NAMESPACE", "default")
    api_key = os.environ.get("TEMPORAL_API_KEY")

    if api_key:
        address = os.environ.get("TEMPORAL_REGIONAL_ENDPOINT")
        if not address:
            raise ValueError(
                "TEMPORAL_API_KEY is set but TEMPORAL_REGIONAL_ENDPOINT is missing. "
                "Set it to the regional endpoint from the Temporal Cloud 'Connect' dialog."
            )
        return await Client.connect(
            address,
            namespace=namespace,
            api_key=api_key,
            tls=True,
            data_converter=pydantic_data_converter,
        )

    address = os.environ.get("TEMPORAL_ADDRESS", "localhost:7233")
    return await Client.connect(
        address,
        namespace=namespace,
        data_converter=pydantic_data_converter,
    )
