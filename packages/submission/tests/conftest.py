"""Shared test fixtures for submission engine tests.

Provides:
  - Mock HTTP transport for httpx that routes token probes and POSTs
  - Builders for multipart $batch replies
  - A ServiceConfig pointing at a fake OData service
  - Sample upload records
  - Zero-wait tenacity retries so retry tests run instantly

Test modules get the mock transport class through the `mock_transport`
fixture rather than importing this file.
"""

import inspect
import json
import re
from collections.abc import Callable
from typing import Any
from unittest.mock import patch

import httpx
import pytest
from tenacity import wait_none
from upload_shared.submission_models import ServiceConfig
from upload_submission.coordinator import SubmissionCoordinator
from upload_submission.multipart import MultipartCodec
from upload_submission.transport import ODataTransport

SERVICE_URL = "https://erp.example.com/sap/opu/odata/sap/API_RECORD_SRV/"
REPLY_BOUNDARY = "batchresponse_abc"
CHANGESET_BOUNDARY = "changesetresponse_xyz"

Reply = httpx.Response | Exception | Callable[[httpx.Request], Any]


class MockTransport(httpx.AsyncBaseTransport):
    """Mock HTTP transport for an OData service.

    HEAD requests are token probes. While `head` is empty each probe answers
    with a fresh token: token-1, token-2, ... POST requests pop the next
    entry from `post`; once exhausted they get a 500.

    Entries may be an httpx.Response, an exception to raise, or a callable
    taking the request and returning either (sync or async).
    """

    def __init__(
        self,
        post: list[Reply] | None = None,
        head: list[Reply] | None = None,
    ) -> None:
        self.post_replies = list(post or [])
        self.head_replies = list(head or [])
        self.requests: list[httpx.Request] = []
        self.tokens_issued = 0

    @property
    def posts(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "POST"]

    @property
    def heads(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "HEAD"]

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "HEAD":
            if not self.head_replies:
                self.tokens_issued += 1
                return httpx.Response(200, headers={"X-CSRF-Token": f"token-{self.tokens_issued}"})
            reply = self.head_replies.pop(0)
        elif self.post_replies:
            reply = self.post_replies.pop(0)
        else:
            return httpx.Response(500, json={"error": {"message": "No more mock responses"}})

        if callable(reply) and not isinstance(reply, httpx.Response):
            reply = reply(request)
            if inspect.isawaitable(reply):
                reply = await reply
        if isinstance(reply, Exception):
            raise reply
        reply.stream = httpx.ByteStream(reply.content)
        return reply


def render_batch_reply(
    parts: list[tuple[int, Any]],
    *,
    nested: bool = True,
    content_ids: bool = True,
    closing: bool = True,
) -> str:
    """Body of a $batch reply with one inner HTTP response per (status, body).

    Dict bodies are sent as JSON, strings verbatim, None as an empty body.
    """
    reasons = {200: "OK", 201: "Created", 204: "No Content", 400: "Bad Request", 403: "Forbidden"}
    inner_boundary = CHANGESET_BOUNDARY if nested else REPLY_BOUNDARY
    lines: list[str] = []
    if nested:
        lines += [
            f"--{REPLY_BOUNDARY}",
            f"Content-Type: multipart/mixed; boundary={CHANGESET_BOUNDARY}",
            "",
        ]
    for content_id, (status, body) in enumerate(parts, start=1):
        lines += [f"--{inner_boundary}", "Content-Type: application/http"]
        lines += ["Content-Transfer-Encoding: binary"]
        if content_ids:
            lines.append(f"Content-ID: {content_id}")
        lines += ["", f"HTTP/1.1 {status} {reasons.get(status, 'Error')}"]
        if body is None:
            lines.append("")
            continue
        text = json.dumps(body) if isinstance(body, dict) else body
        lines += ["Content-Type: application/json", "", text]
    if nested:
        lines += [f"--{CHANGESET_BOUNDARY}--", ""]
    if closing:
        lines.append(f"--{REPLY_BOUNDARY}--")
    return "\r\n".join(lines) + "\r\n"


def sent_record_count(request: httpx.Request) -> int:
    return len(re.findall(r"^Content-ID: \d+", request.content.decode(), re.MULTILINE))


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    """Tenacity retries happen immediately in tests."""
    monkeypatch.setattr(ODataTransport._probe.retry, "wait", wait_none())
    monkeypatch.setattr(ODataTransport._post.retry, "wait", wait_none())


@pytest.fixture
def mock_transport() -> type[MockTransport]:
    return MockTransport


@pytest.fixture
def batch_reply() -> Callable[..., httpx.Response]:
    """Build a 202 multipart $batch reply, see render_batch_reply."""

    def build(parts: list[tuple[int, Any]], **kwargs: Any) -> httpx.Response:
        return httpx.Response(
            202,
            headers={"Content-Type": f"multipart/mixed; boundary={REPLY_BOUNDARY}"},
            content=render_batch_reply(parts, **kwargs).encode(),
        )

    return build


@pytest.fixture
def batch_body() -> Callable[..., str]:
    return render_batch_reply


@pytest.fixture
def echo_success(batch_reply) -> Callable[[httpx.Request], httpx.Response]:
    """Answers a $batch request with one 201 part per record it carried."""

    def reply(request: httpx.Request) -> httpx.Response:
        count = sent_record_count(request)
        return batch_reply([(201, {"d": {"DocumentNo": f"DOC{i}"}}) for i in range(count)])

    return reply


@pytest.fixture
def service_config() -> ServiceConfig:
    return ServiceConfig(
        service_id="test-erp",
        service_url=SERVICE_URL,
        resource="A_Record",
        rate_limit_per_second=None,
        entity_id_field="SequenceNo",
    )


@pytest.fixture
def records() -> list[dict[str, Any]]:
    """25 upload rows, the classic 10/10/5 batch split."""
    return [
        {"SequenceNo": str(i + 1), "Material": f"MAT-{i % 3}", "Quantity": i + 1}
        for i in range(25)
    ]


@pytest.fixture
def make_coordinator(service_config) -> Callable[..., SubmissionCoordinator]:
    """Coordinator wired to an ODataTransport backed by the given mock."""

    def build(transport: MockTransport, **kwargs: Any) -> SubmissionCoordinator:
        odata = ODataTransport(service_config, http_transport=transport)
        kwargs.setdefault("entity_id_field", service_config.entity_id_field)
        return SubmissionCoordinator(odata, MultipartCodec(service_config.resource), **kwargs)

    return build


@pytest.fixture
def mock_env():
    """Set fake OData credentials in environment variables."""
    env = {
        "ERP_BASIC_AUTH": "uploader:s3cret",
        "ERP_BEARER_TOKEN": "test-bearer-token",
    }
    with patch.dict("os.environ", env):
        yield env
