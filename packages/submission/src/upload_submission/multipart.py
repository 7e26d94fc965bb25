"""MultipartCodec: OData $batch request encoding and response decoding.

Request layout (CRLF line endings):

    --batch_<id>
    Content-Type: multipart/mixed; boundary=changeset_<id>

    --changeset_<id>
    Content-Type: application/http
    Content-Transfer-Encoding: binary
    Content-ID: 1

    POST <Resource> HTTP/1.1
    Content-Type: application/json
    Accept: application/json

    {...record JSON...}
    --changeset_<id>--
    --batch_<id>--

Every record of a batch goes into one changeset, so the backend commits or
rolls back the whole batch together. Content-IDs run 1..n in record order.

Responses are decoded leniently. Backends differ on whether changeset
responses are nested inside the batch part, whether a trailing boundary is
sent, and how much whitespace separates status line, headers and body. A
response that is a plain JSON error document (the backend rejected the whole
request before looking at any part) decodes to zero parts.
"""

from __future__ import annotations

import json
import re
import time
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from upload_submission.grouping import Batch, Record

CRLF = "\r\n"

_STATUS_LINE = re.compile(r"^HTTP/\d(?:\.\d)?\s+(\d{3})(?:\s+(.*))?$")
_HEADER_LINE = re.compile(r"^([A-Za-z0-9][A-Za-z0-9!#$%&'*+.^_`|~-]*)\s*:\s*(.*)$")
_BOUNDARY_PARAM = re.compile(r"boundary\s*=\s*\"?([^\";]+)\"?", re.IGNORECASE)


def extract_boundary(content_type: str | None) -> str | None:
    """Pull the boundary parameter out of a multipart Content-Type header."""
    if not content_type:
        return None
    match = _BOUNDARY_PARAM.search(content_type)
    return match.group(1).strip() if match else None


def _generate_id() -> str:
    return f"{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


@dataclass(frozen=True)
class EncodedBatch:
    body: str
    boundary: str
    changeset_boundary: str

    @property
    def content_type(self) -> str:
        return f"multipart/mixed; boundary={self.boundary}"


@dataclass(frozen=True)
class PartOutcome:
    """One inner HTTP response of a $batch reply."""

    status: int
    reason: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    raw_body: str = ""
    parse_failed: bool = False
    content_id: str | None = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class MultipartCodec:
    """Encodes batches into $batch payloads and decodes the replies.

    `transform` turns a record into the JSON body the backend expects
    (e.g. flat spreadsheet columns into a deep-insert structure). It
    defaults to sending the record as-is.
    """

    def __init__(
        self,
        resource: str,
        transform: Callable[[Record], Any] | None = None,
    ) -> None:
        self.resource = resource.strip("/")
        self.transform = transform or dict

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def encode(self, batch: Batch | Sequence[Record]) -> EncodedBatch:
        records = batch.records if isinstance(batch, Batch) else batch
        batch_boundary = f"batch_{_generate_id()}"
        changeset_boundary = f"changeset_{_generate_id()}"

        lines = [
            f"--{batch_boundary}",
            f"Content-Type: multipart/mixed; boundary={changeset_boundary}",
            "",
        ]
        for content_id, record in enumerate(records, start=1):
            lines += [
                f"--{changeset_boundary}",
                "Content-Type: application/http",
                "Content-Transfer-Encoding: binary",
                f"Content-ID: {content_id}",
                "",
                f"POST {self.resource} HTTP/1.1",
                "Content-Type: application/json",
                "Accept: application/json",
                "",
                self.serialize(record),
            ]
        lines += [f"--{changeset_boundary}--", f"--{batch_boundary}--", ""]

        return EncodedBatch(
            body=CRLF.join(lines),
            boundary=batch_boundary,
            changeset_boundary=changeset_boundary,
        )

    def serialize(self, record: Record) -> str:
        """JSON body for one record. Dates and decimals go out as strings."""
        return json.dumps(self.transform(record), default=str)

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------

    def decode(self, payload: str, boundary: str | None) -> list[PartOutcome]:
        if not boundary or not payload:
            return []
        return self._decode_multipart(payload, boundary)

    def _decode_multipart(self, text: str, boundary: str) -> list[PartOutcome]:
        outcomes: list[PartOutcome] = []
        for segment in text.split(f"--{boundary}"):
            if segment.startswith("--"):
                # closing delimiter, the rest is epilogue
                continue
            lines = segment.strip().splitlines()
            if not lines:
                continue

            mime_headers, rest = _read_headers(lines)
            content_type = mime_headers.get("content-type", "")
            nested = extract_boundary(content_type)
            if nested and "multipart" in content_type.lower():
                outcomes.extend(self._decode_multipart("\n".join(rest), nested))
                continue

            part = self._decode_http_part(lines, mime_headers)
            if part is not None:
                outcomes.append(part)
        return outcomes

    @staticmethod
    def _decode_http_part(lines: list[str], mime_headers: dict[str, str]) -> PartOutcome | None:
        for status_at, line in enumerate(lines):
            match = _STATUS_LINE.match(line.strip())
            if match:
                break
        else:
            return None

        headers, body_lines = _read_headers(lines[status_at + 1 :])
        raw_body = "\n".join(body_lines).strip()

        body: Any = None
        parse_failed = False
        if raw_body:
            try:
                body = json.loads(raw_body)
            except ValueError:
                body = raw_body
                parse_failed = True

        return PartOutcome(
            status=int(match.group(1)),
            reason=(match.group(2) or "").strip(),
            headers=headers,
            body=body,
            raw_body=raw_body,
            parse_failed=parse_failed,
            content_id=mime_headers.get("content-id") or headers.get("content-id"),
        )

    @staticmethod
    def correlate(parts: Sequence[PartOutcome], count: int) -> list[PartOutcome | None]:
        """Line parts up with the `count` records they answer.

        Uses Content-IDs when every part carries a distinct one in 1..count,
        otherwise falls back to position. Slots without a part are None.
        """
        try:
            ids = [int(p.content_id) for p in parts]  # type: ignore[arg-type]
        except (TypeError, ValueError):
            ids = []

        if ids and len(set(ids)) == len(ids) and all(1 <= i <= count for i in ids):
            slots: list[PartOutcome | None] = [None] * count
            for content_id, part in zip(ids, parts, strict=True):
                slots[content_id - 1] = part
            return slots

        return [parts[i] if i < len(parts) else None for i in range(count)]


def _read_headers(lines: Sequence[str]) -> tuple[dict[str, str], list[str]]:
    """Split leading `Name: value` lines from the rest.

    Headers end at the first blank line or the first line that is not a
    header. Blank lines between headers and body are dropped. Header names
    are lower-cased.
    """
    headers: dict[str, str] = {}
    index = 0
    while index < len(lines):
        line = lines[index].strip()
        if not line or _STATUS_LINE.match(line):
            break
        match = _HEADER_LINE.match(line)
        if not match:
            break
        headers[match.group(1).lower()] = match.group(2).strip()
        index += 1

    while index < len(lines) and not lines[index].strip():
        index += 1
    return headers, list(lines[index:])
