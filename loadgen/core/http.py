from __future__ import annotations

import asyncio
import time
from typing import Any, Mapping

import httpx

from loadgen.core.metrics import MetricsCollector
from loadgen.logger import Logger, session_logger

# Status codes that are retried when retries are enabled.
_RETRY_STATUS_CODES = frozenset({429, 502, 503, 504})
_BACKOFF_BASE_SECONDS = 1.0
_BACKOFF_MAX_SECONDS = 30.0

USER_AGENT = "loadgen/0.1"


class HttpClient:
    """Async HTTP client for scenario functions.

    Every request records the built-in metrics ``http_reqs``,
    ``http_req_duration`` (ms) and ``http_req_failed``.  A status >= 400
    counts as failed; transport errors are recorded as failed and re-raised
    so the scenario can decide how to continue.
    """

    def __init__(
        self,
        metrics: MetricsCollector,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout_seconds: float = 30.0,
        max_retries: int = 0,
        backoff_base: float = _BACKOFF_BASE_SECONDS,
        backoff_max: float = _BACKOFF_MAX_SECONDS,
        vu_id: int | None = None,
        logger: Logger | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._metrics = metrics
        self._logger = logger or session_logger
        self._vu_id = vu_id
        self._max_retries = max_retries
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max

        headers = {
            "User-Agent": USER_AGENT,
            "Content-Type": "application/json",
        }
        if api_key:
            headers["X-API-Key"] = api_key

        self._http = httpx.AsyncClient(
            base_url=base_url or "",
            timeout=httpx.Timeout(timeout_seconds),
            follow_redirects=True,
            headers=headers,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "HttpClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, json: Any = None, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, json=json, **kwargs)

    async def request(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        tags: Mapping[str, Any] | None = None,
    ) -> httpx.Response:
        start = time.monotonic()
        try:
            response = await self._request_with_retry(method, url, json=json, params=params, headers=headers)
        except Exception as exc:
            duration_ms = (time.monotonic() - start) * 1000.0
            self._record(duration_ms, ok=False, tags=tags)
            self._logger.warning(
                "http.request_error",
                event="http.request_error",
                vu_id=self._vu_id,
                method=method,
                url=url,
                duration_ms=duration_ms,
                error_type=_classify_exception(exc),
                error=str(exc),
            )
            raise

        duration_ms = (time.monotonic() - start) * 1000.0
        error_type = _classify_http_error(response.status_code)
        self._record(duration_ms, ok=error_type is None, tags=tags)

        if error_type is not None:
            self._logger.warning(
                "http.request_failed",
                event="http.request_failed",
                vu_id=self._vu_id,
                method=method,
                url=url,
                status_code=response.status_code,
                duration_ms=duration_ms,
                error_type=error_type,
            )
        return response

    def _record(self, duration_ms: float, *, ok: bool, tags: Mapping[str, Any] | None) -> None:
        self._metrics.add_counter("http_reqs", 1, tags=tags)
        self._metrics.add_trend("http_req_duration", duration_ms, tags=tags)
        if ok:
            self._metrics.add_trend("http_req_duration{expected_response:true}", duration_ms)
        self._metrics.add_rate("http_req_failed", not ok, tags=tags)

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send with exponential back-off on retryable status codes (429, 5xx)."""
        attempt = 0
        while True:
            resp = await self._http.request(method, url, **kwargs)
            if resp.status_code not in _RETRY_STATUS_CODES or attempt >= self._max_retries:
                return resp

            delay = _backoff_delay(
                attempt,
                base=self._backoff_base,
                cap=self._backoff_max,
                retry_after=resp.headers.get("Retry-After"),
            )
            self._logger.info(
                "http.retry",
                event="http.retry",
                vu_id=self._vu_id,
                url=url,
                status_code=resp.status_code,
                attempt=attempt + 1,
                delay_seconds=round(delay, 2),
            )
            await asyncio.sleep(delay)
            attempt += 1


# ---------------------------------------------------------------------------
# Helpers: error classification and back-off
# ---------------------------------------------------------------------------

def _classify_http_error(status_code: int) -> str | None:
    """Map an HTTP status code to a canonical error_type, or None if success."""
    if 200 <= status_code < 400:
        return None
    if status_code == 401:
        return "auth_unauthorized"
    if status_code == 403:
        return "auth_forbidden"
    if status_code == 404:
        return "not_found"
    if status_code == 429:
        return "rate_limited"
    if 400 <= status_code < 500:
        return "client_error"
    if 500 <= status_code < 600:
        return "server_error"
    return f"http_{status_code}"


def _classify_exception(exc: BaseException) -> str:
    """Map a network-level exception to a canonical error_type."""
    if isinstance(exc, httpx.TimeoutException):
        return "network_timeout"
    if isinstance(exc, httpx.ConnectError):
        return "network_connect"
    if isinstance(exc, (httpx.RemoteProtocolError, httpx.LocalProtocolError)):
        return "network_protocol"
    if isinstance(exc, httpx.HTTPError):
        return "network_error"
    return type(exc).__name__


def _backoff_delay(
    attempt: int,
    *,
    base: float = _BACKOFF_BASE_SECONDS,
    cap: float = _BACKOFF_MAX_SECONDS,
    retry_after: str | None = None,
) -> float:
    """Compute back-off delay, honouring Retry-After header when present."""
    if retry_after is not None:
        try:
            return min(float(retry_after), cap)
        except ValueError:
            pass
    return min(base * (2 ** attempt), cap)
