"""Message normalization: one StandardMessage per record outcome.

Backends and transports report failures in many shapes:

  - OData error documents: {"error": {"code", "message", "innererror":
    {"errordetails": [...]}, "details": [...]}}, where message may be a
    string or {"lang", "value"}
  - $batch parts whose body is not JSON at all
  - whole-request rejections (BatchRejectedError)
  - httpx transport exceptions and arbitrary Python exceptions
  - plain strings

normalize_error() folds all of them into an ErrorInfo. When the top-level
message is empty or one of the backend's generic phrases, the first detail
message is the one users need to see ("Cost center 4711 is blocked" instead of
"An error occurred"), so it takes over.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any

import httpx
from upload_shared.submission_models import MessageType, StandardMessage

from upload_submission.errors import BatchRejectedError
from upload_submission.multipart import PartOutcome

GENERIC_MESSAGES = ("An error occurred", "Error occurred", "Operation completed")

_UNKNOWN_CODES = {"UNKNOWN", "UNKNOWN_ERROR", "UNKNOWN_ODATA_ERROR", "SUCCESS", ""}

_DEFAULTS = {
    MessageType.SUCCESS: ("SUCCESS", "Operation successful."),
    MessageType.ERROR: ("ERROR", "Operation failed."),
    MessageType.WARNING: ("WARNING", "Operation completed with warnings."),
    MessageType.INFO: ("INFO", "Operation processed."),
}


@dataclass(frozen=True)
class ErrorInfo:
    code: str
    message: str
    details: list[dict[str, str]] = field(default_factory=list)
    status: int | None = None


def is_generic(message: str | None) -> bool:
    if not message:
        return True
    return any(phrase.lower() in message.lower() for phrase in GENERIC_MESSAGES)


def normalize_error(error: Any) -> ErrorInfo:
    """Extract a human-readable message and a code from any error shape."""
    if isinstance(error, ErrorInfo):
        return error
    if isinstance(error, PartOutcome):
        return _from_part(error)
    if isinstance(error, BatchRejectedError):
        return _from_rejection(error)
    if isinstance(error, httpx.TimeoutException):
        return ErrorInfo("TIMEOUT", f"Request timed out: {error}" if str(error) else "Request timed out")
    if isinstance(error, httpx.HTTPError):
        return ErrorInfo("TRANSPORT_ERROR", str(error) or type(error).__name__)
    if isinstance(error, Exception):
        code = getattr(error, "code", None) or type(error).__name__
        return ErrorInfo(str(code), str(error) or type(error).__name__)
    if isinstance(error, str):
        return _from_string(error)
    if isinstance(error, Mapping):
        return _from_mapping(error)
    return ErrorInfo("UNKNOWN_ERROR", "An unknown error occurred during the operation.")


def _from_part(part: PartOutcome) -> ErrorInfo:
    if part.parse_failed:
        snippet = part.raw_body[:200]
        return ErrorInfo(
            "PARSE_ERROR",
            f"Failed to parse response body (HTTP {part.status})",
            [{"message": f"Raw response snippet: {snippet}"}],
            status=part.status,
        )
    if part.body:
        info = normalize_error(part.body)
        if info.code in _UNKNOWN_CODES:
            info = replace(info, code=f"HTTP_{part.status}")
        return replace(info, status=part.status)
    reason = part.reason or "Request failed"
    return ErrorInfo(f"HTTP_{part.status}", f"{reason} (HTTP {part.status})", status=part.status)


def _from_rejection(error: BatchRejectedError) -> ErrorInfo:
    if error.payload:
        info = normalize_error(error.payload)
        if info.code in _UNKNOWN_CODES:
            info = replace(info, code=f"HTTP_{error.status_code}")
        return replace(info, status=error.status_code)
    return ErrorInfo(f"HTTP_{error.status_code}", str(error), status=error.status_code)


def _from_string(text: str) -> ErrorInfo:
    stripped = text.strip()
    if stripped.startswith("{"):
        try:
            return normalize_error(json.loads(stripped))
        except ValueError:
            pass
    return ErrorInfo("STRING_ERROR", stripped or "Empty error message")


def _from_mapping(payload: Mapping[str, Any]) -> ErrorInfo:
    if "error" in payload:
        return _from_odata(payload["error"])
    if "message" in payload:
        return _from_odata(payload)
    return ErrorInfo(
        "UNKNOWN_ERROR",
        "Received response, but could not find standard OData error structure.",
        [{"message": f"Response data: {json.dumps(payload, default=str)[:500]}"}],
    )


def _from_odata(error: Any) -> ErrorInfo:
    if isinstance(error, str):
        return ErrorInfo("UNKNOWN_ODATA_ERROR", error)
    if not isinstance(error, Mapping):
        return ErrorInfo("UNKNOWN_ODATA_ERROR", "No OData error message provided.")

    code = str(error.get("code") or "UNKNOWN_ODATA_ERROR")
    raw_message = error.get("message")
    if isinstance(raw_message, Mapping):
        raw_message = raw_message.get("value")
    message = str(raw_message or "")

    raw_details: list[Any] = []
    if isinstance(error.get("details"), list):
        raw_details.extend(error["details"])
    inner = error.get("innererror")
    if isinstance(inner, Mapping) and isinstance(inner.get("errordetails"), list):
        raw_details.extend(inner["errordetails"])
    details = [_format_detail(d) for d in raw_details]

    if details and details[0]["message"] and is_generic(message):
        message = details[0]["message"]
        if details[0]["code"] and code in _UNKNOWN_CODES:
            code = details[0]["code"]

    return ErrorInfo(code, message or "No specific message provided.", details)


def _format_detail(detail: Any) -> dict[str, str]:
    if isinstance(detail, str):
        return {"code": "", "message": detail, "target": "", "severity": "info"}
    if not isinstance(detail, Mapping):
        return {"code": "", "message": str(detail), "target": "", "severity": "error"}
    message = detail.get("message")
    if isinstance(message, Mapping):
        message = message.get("value")
    return {
        "code": str(detail.get("code") or ""),
        "message": str(message or json.dumps(detail, default=str)),
        "target": str(detail.get("propertyref") or detail.get("target") or ""),
        "severity": str(detail.get("severity") or "error"),
    }


def describe_success(response: Any, entity_id: str = "") -> tuple[str, str]:
    """Code and message for a successful record.

    SAP gateways put business messages for successful calls into the
    `sap-message` header as JSON; those are preferred when present.
    """
    if isinstance(response, PartOutcome):
        header = response.headers.get("sap-message")
        if header:
            try:
                sap_message = json.loads(header)
            except ValueError:
                sap_message = None
            if isinstance(sap_message, Mapping) and sap_message.get("message"):
                return str(sap_message.get("code") or "SUCCESS"), str(sap_message["message"])

    if entity_id:
        return "SUCCESS", f"Record {entity_id} submitted successfully"
    return "SUCCESS", "Record submitted successfully"


def create_standard_message(
    type: MessageType | str = MessageType.INFO,
    code: str | None = None,
    message: str | None = None,
    details: Any = "",
    source: str = "Application",
    entity_id: str = "",
    batch_index: int | None = None,
) -> StandardMessage:
    """Build a StandardMessage, filling code/message defaults per type."""
    message_type = MessageType(str(type).lower())
    default_code, default_message = _DEFAULTS[message_type]
    return StandardMessage(
        type=message_type,
        code=code or default_code,
        message=message or default_message,
        details=details,
        source=source,
        entity_id=entity_id,
        batch_index=batch_index,
    )
