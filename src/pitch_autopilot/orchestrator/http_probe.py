"""Liveness probe for published apps."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15.0
DEFAULT_USER_AGENT = "pitch-autopilot-health/1.0"


@dataclass(slots=True)
class ProbeResult:
    """Result of one probe."""

    url: str
    status_code: int
    is_healthy: bool
    elapsed_ms: int = 0
    error: str | None = None


class HttpProbe:
    """HEAD request with a GET fallback for servers that reject HEAD."""

    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=5.0),
            headers={"User-Agent": user_agent},
            transport=transport,
            follow_redirects=True,
        )

    def probe(self, url: str) -> ProbeResult:
        started = time.monotonic()
        try:
            response = self._client.head(url)
            if response.status_code == httpx.codes.METHOD_NOT_ALLOWED:
                response = self._client.get(url)
        except httpx.TimeoutException:
            logger.warning("Timeout probing %s", url)
            return ProbeResult(url=url, status_code=0, is_healthy=False, error="timeout")
        except httpx.HTTPError as exc:
            logger.warning("HTTP error probing %s: %s", url, exc)
            return ProbeResult(url=url, status_code=0, is_healthy=False, error=str(exc))

        return ProbeResult(
            url=url,
            status_code=response.status_code,
            is_healthy=response.is_success,
            elapsed_ms=int((time.monotonic() - started) * 1000),
            error=None if response.is_success else f"HTTP {response.status_code}",
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpProbe:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
