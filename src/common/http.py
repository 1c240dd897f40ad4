from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional, Type

import httpx
import structlog

from .rate_limiter import RateLimitError, SlidingWindowRateLimiter


RETRYABLE_STATUSES = (429, 500, 502, 503, 504)

log = structlog.get_logger(__name__)


class ServiceError(RuntimeError):
    """Base error for the JSON HTTP collaborators (ledger gateway, relayer, directory...)."""


class ServiceApiError(ServiceError):
    """Service answered with a non-retryable status or an unexpected body."""


class JsonServiceClient:
    """
    Small base for the JSON-over-HTTP collaborators used by this project.

    Notes
    - One local sliding-window throttle per client instance.
    - `_request(..., retry=True)` retries timeouts, transport errors and
      429/5xx with exponential backoff (honoring `Retry-After` when numeric).
    - `_request(..., retry=False)` makes exactly one attempt; used for calls
      that change remote state and must never be replayed implicitly.
    - Subclasses set `error_cls` / `api_error_cls` so callers see their own
      error family.
    """

    error_cls: Type[ServiceError] = ServiceError
    api_error_cls: Type[ServiceError] = ServiceApiError
    service_name = "service"

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 15.0,
        max_per_second: int = 10,
        max_attempts: int = 4,
        headers: Optional[Dict[str, str]] = None,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not base_url:
            raise ValueError(f"{self.service_name} base_url is required")
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._sleep = sleep
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=self._timeout, headers=headers or {})
        if client is not None and headers:
            self._client.headers.update(headers)
        self._limiter = SlidingWindowRateLimiter(
            max_calls=max_per_second, per_seconds=1.0, sleep=sleep
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_body: Any = None,
        retry: bool = True,
    ) -> Any:
        try:
            self._limiter.acquire(blocking=True)
        except RateLimitError as rl:
            raise self.error_cls("Local rate limiter prevented request") from rl

        attempts = self._max_attempts if retry else 1
        attempt = 0
        backoff = 0.5
        last_exc: Optional[Exception] = None
        while attempt < attempts:
            try:
                resp = self._client.request(method, f"{self._base_url}{path}", params=params, json=json_body)
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                last_exc = exc
                delay = backoff
            else:
                if 200 <= resp.status_code < 300:
                    if not resp.content:
                        return None
                    try:
                        return resp.json()
                    except ValueError as exc:
                        raise self.api_error_cls(
                            f"Failed to parse JSON from {self.service_name}"
                        ) from exc

                if resp.status_code not in RETRYABLE_STATUSES:
                    self._raise_for_status(resp)

                last_exc = self.api_error_cls(
                    f"HTTP {resp.status_code} from {self.service_name}"
                )
                delay = backoff
                retry_after = resp.headers.get("Retry-After")
                if retry_after:
                    try:
                        delay = float(retry_after)
                    except ValueError:
                        pass

            attempt += 1
            if attempt >= attempts:
                break
            log.debug(
                "http_retry",
                service=self.service_name,
                path=path,
                attempt=attempt,
                error=str(last_exc),
            )
            self._sleep(min(delay, 10.0))
            backoff = min(backoff * 2, 8.0)

        if last_exc is not None:
            if not retry:
                raise self.error_cls(f"{self.service_name} request failed: {last_exc}") from last_exc
            raise self.error_cls(f"{self.service_name} request failed after retries") from last_exc
        raise self.error_cls(f"{self.service_name} request failed (unknown error)")

    def _raise_for_status(self, resp: httpx.Response) -> None:
        """Raise the client's API error for a non-retryable response; subclasses refine."""
        raise self.api_error_cls(
            f"HTTP {resp.status_code} from {self.service_name}: {resp.text[:200]}"
        )


__all__ = [
    "JsonServiceClient",
    "ServiceError",
    "ServiceApiError",
    "RETRYABLE_STATUSES",
]
