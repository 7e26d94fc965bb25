"""OData transport: the only module that talks HTTP.

Three calls, matching what the backend exposes:

  fetch_token  HEAD <service root> with `X-CSRF-Token: Fetch`
  post_record  POST <service root>/<resource> with a JSON body
  post_batch   POST <service root>/$batch with a multipart body

The transport never interprets statuses. A 403 or a 400 comes back as a
normal httpx.Response and the coordinator decides what it means. Two concerns
are handled here because they are purely about getting bytes on the wire:

  - Pacing via RequestPacer (config.rate_limit_per_second)
  - Connection-level retries via tenacity. The HEAD probe is idempotent and
    retries on any transport error. POSTs create business documents, so they
    only retry when the connection was never established and the backend
    cannot have seen the request.

One httpx.AsyncClient lives as long as the transport. It keeps the session
cookies from the token probe, which the backend ties the CSRF token to.
"""

from __future__ import annotations

import json
import os
from typing import Any, Protocol

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from upload_shared.submission_models import ServiceConfig

from upload_submission.multipart import EncodedBatch, PartOutcome
from upload_submission.pacing import RequestPacer

CSRF_HEADER = "X-CSRF-Token"


class SubmissionTransport(Protocol):
    """What the coordinator and token manager need from a transport."""

    async def fetch_token(self) -> httpx.Response: ...

    async def post_record(self, body: str, token: str | None) -> httpx.Response: ...

    async def post_batch(self, encoded: EncodedBatch, token: str | None) -> httpx.Response: ...


class ODataTransport:
    def __init__(
        self,
        config: ServiceConfig,
        pacer: RequestPacer | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.pacer = pacer or RequestPacer(rate=config.rate_limit_per_second)
        self._http_transport = http_transport
        self._client: httpx.AsyncClient | None = None
        self.request_count: int = 0

    @property
    def resource(self) -> str:
        return self.config.resource.strip("/")

    def _resolve_credential(self) -> str | None:
        """Read the credential from the environment variable named in config."""
        env_var = self.config.auth_env_var
        if not env_var:
            return None
        value = os.environ.get(env_var, "")
        if not value:
            raise ValueError(f"Environment variable '{env_var}' is not set or empty")
        return value

    def _auth(self, credential: str | None) -> tuple[httpx.Auth | None, dict[str, str]]:
        if credential is None:
            return None, {}
        if self.config.auth_scheme == "bearer":
            return None, {"Authorization": f"Bearer {credential}"}
        user, sep, password = credential.partition(":")
        if not sep:
            raise ValueError(
                f"Basic auth credential in '{self.config.auth_env_var}' must be 'user:password'"
            )
        return httpx.BasicAuth(user, password), {}

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            auth, auth_headers = self._auth(self._resolve_credential())
            self._client = httpx.AsyncClient(
                base_url=self.config.service_url,
                auth=auth,
                headers={"Accept": "application/json", **auth_headers},
                timeout=self.config.timeout_seconds,
                transport=self._http_transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @retry(
        retry=retry_if_exception_type((httpx.TransportError, httpx.TimeoutException)),
        wait=wait_exponential(multiplier=1, min=1, max=30),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def _probe(self, client: httpx.AsyncClient) -> httpx.Response:
        await self.pacer.wait()
        self.request_count += 1
        return await client.request("HEAD", "", headers={CSRF_HEADER: "Fetch"})

    @retry(
        retry=retry_if_exception_type((httpx.ConnectError, httpx.ConnectTimeout)),
        wait=wait_exponential(multiplier=1, min=1, max=30),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def _post(
        self,
        client: httpx.AsyncClient,
        url: str,
        content: str,
        headers: dict[str, str],
    ) -> httpx.Response:
        await self.pacer.wait()
        self.request_count += 1
        return await client.request("POST", url, content=content.encode("utf-8"), headers=headers)

    async def fetch_token(self) -> httpx.Response:
        client = await self._get_client()
        return await self._probe(client)

    async def post_record(self, body: str, token: str | None) -> httpx.Response:
        client = await self._get_client()
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if token:
            headers[CSRF_HEADER] = token
        return await self._post(client, self.resource, body, headers)

    async def post_batch(self, encoded: EncodedBatch, token: str | None) -> httpx.Response:
        client = await self._get_client()
        headers = {"Content-Type": encoded.content_type, "Accept": "multipart/mixed"}
        if token:
            headers[CSRF_HEADER] = token
        return await self._post(client, "$batch", encoded.body, headers)


def response_payload(response: httpx.Response) -> Any:
    """Parsed JSON body of a response, or its text when it is not JSON."""
    text = response.text
    if not text.strip():
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


def as_part(response: httpx.Response) -> PartOutcome:
    """View a single-record response the same way as a $batch part."""
    payload = response_payload(response)
    return PartOutcome(
        status=response.status_code,
        reason=response.reason_phrase,
        headers={k.lower(): v for k, v in response.headers.items()},
        body=payload,
        raw_body=response.text,
        parse_failed=isinstance(payload, str),
    )
