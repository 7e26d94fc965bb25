"""SessionTokenManager: acquires and refreshes the backend's CSRF token.

The backend hands out a token in response to a `X-CSRF-Token: Fetch` probe
and expects it back on every modifying request. A missing token is not
fatal here. Some gateways do not enforce CSRF at all, and if the token really
was required the submission itself comes back with 403 and the coordinator
runs its one-time refresh.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum

import httpx

from upload_submission.transport import CSRF_HEADER, SubmissionTransport

logger = logging.getLogger(__name__)


class TokenState(StrEnum):
    PRESENT = "present"
    ABSENT = "absent"
    RETRIED = "retried"


@dataclass(frozen=True)
class Token:
    value: str | None
    state: TokenState


class SessionTokenManager:
    """Holds the CSRF token for one coordinator.

    Probes are serialized, so concurrent callers share one HEAD request. An
    unsuccessful probe is remembered and not repeated until `invalidate()` or
    `reset_probe()` is called.
    """

    def __init__(self, transport: SubmissionTransport) -> None:
        self._transport = transport
        self._value: str | None = None
        self._retried = False
        self._probed = False
        self._lock = asyncio.Lock()
        self.fetch_count = 0

    @property
    def retried(self) -> bool:
        return self._retried

    @property
    def token(self) -> Token:
        if self._value is None:
            return Token(None, TokenState.ABSENT)
        return Token(self._value, TokenState.RETRIED if self._retried else TokenState.PRESENT)

    async def ensure_token(self) -> Token:
        """Return the held token, probing the backend for one if needed."""
        if self._value is not None or self._probed:
            return self.token

        async with self._lock:
            # another caller probed while this one waited
            if self._value is not None or self._probed:
                return self.token
            await self._probe()
        return self.token

    async def _probe(self) -> None:
        self.fetch_count += 1
        try:
            response = await self._transport.fetch_token()
        except httpx.HTTPError as e:
            logger.warning(f"CSRF token probe failed, proceeding without token: {e}")
            self._probed = True
            return

        self._probed = True
        value = response.headers.get(CSRF_HEADER)
        if response.is_success and value and value.lower() != "required":
            self._value = value
            logger.info("CSRF token fetched")
        else:
            logger.warning(
                f"No CSRF token obtained (HTTP {response.status_code}), proceeding without token"
            )

    def invalidate(self) -> None:
        self._value = None
        self._probed = False

    def reset_probe(self) -> None:
        """Allow one new probe if the last one came back without a token."""
        if self._value is None:
            self._probed = False

    def mark_retried(self) -> None:
        self._retried = True

    def clear_retried(self) -> None:
        self._retried = False
