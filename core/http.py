"""Resilient HTTP client: rate limit, circuit breaker, retry, deadline."""

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from config.settings import settings
from .auth import CredentialProvider
from .circuit_breaker import CircuitBreaker
from .rate_limiter import TokenBucket
from .retry import HTTPError, RetryOptions, parse_retry_after, run_with_retry

logger = logging.getLogger(__name__)


class ResponseTooLargeError(Exception):
    """Response body exceeded the configured size cap."""


class ResilientClient:
    """
    JSON-over-HTTP client shared by every external API wrapper.

    Each attempt passes the circuit breaker, takes a rate-limit token and runs
    under a deadline. Attempts are driven by `run_with_retry`, so only
    transient failures are retried.
    """

    def __init__(
        self,
        name: str,
        base_url: str,
        credentials: Optional[CredentialProvider] = None,
        rate_limiter: Optional[TokenBucket] = None,
        breaker: Optional[CircuitBreaker] = None,
        retry_options: Optional[RetryOptions] = None,
        timeout: Optional[float] = None,
        max_response_bytes: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.name = name
        self.base_url = base_url.rstrip("/")
        self.credentials = credentials
        self.rate_limiter = rate_limiter or TokenBucket(
            rate=settings.rate_limit_per_second,
            burst=settings.rate_limit_burst,
        )
        self.breaker = breaker or CircuitBreaker(
            name,
            failure_threshold=settings.breaker_failure_threshold,
            reset_timeout=settings.breaker_reset_seconds,
            half_open_max_calls=settings.breaker_half_open_max_calls,
        )
        self.retry_options = retry_options or RetryOptions.from_settings()
        self.timeout = timeout or settings.http_timeout_seconds
        self.max_response_bytes = max_response_bytes or settings.http_max_response_bytes
        self._transport = transport
        self.headers = {"Accept": "application/json", **(headers or {})}
        self._http_client: Optional[httpx.AsyncClient] = None

        # Stats
        self._requests = 0
        self._errors = 0

    async def start(self):
        """Open the underlying connection pool."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers=self.headers,
            )
            logger.info(f"{self.name} client started ({self.base_url})")

    async def stop(self):
        """Close the connection pool."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.info(f"{self.name} client stopped")

    async def get_json(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        authenticated: bool = False,
    ) -> Any:
        """GET `path` and decode the JSON body."""
        if self._http_client is None:
            raise RuntimeError(f"{self.name} client not started")

        clean_params = {k: v for k, v in (params or {}).items() if v is not None and v != ""}

        async def attempt() -> Any:
            self.breaker.before_call()
            try:
                await self.rate_limiter.acquire()
                self._requests += 1
                data = await asyncio.wait_for(
                    self._get_once(path, clean_params, authenticated),
                    timeout=self.timeout,
                )
            except HTTPError as e:
                self._errors += 1
                # A 4xx other than 429 still means the upstream answered
                if e.retryable:
                    self.breaker.record_failure()
                else:
                    self.breaker.record_success()
                raise
            except asyncio.CancelledError:
                self.breaker.release()
                raise
            except Exception:
                self._errors += 1
                self.breaker.record_failure()
                raise
            self.breaker.record_success()
            return data

        return await run_with_retry(
            attempt,
            self.retry_options,
            name=f"{self.name} GET {path}",
        )

    async def _get_once(
        self,
        path: str,
        params: Dict[str, Any],
        authenticated: bool,
    ) -> Any:
        headers = {}
        if authenticated and self.credentials:
            headers.update(self.credentials.auth_headers())

        response = await self._http_client.get(path, params=params, headers=headers)

        declared = response.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > self.max_response_bytes:
            raise ResponseTooLargeError(f"{self.name} response of {declared} bytes")
        if len(response.content) > self.max_response_bytes:
            raise ResponseTooLargeError(f"{self.name} response of {len(response.content)} bytes")

        if response.status_code >= 400:
            raise HTTPError(
                response.status_code,
                response.text,
                retry_after=parse_retry_after(response.headers.get("retry-after")),
                provider=self.name,
            )

        return response.json()

    def get_stats(self) -> dict:
        """Get client statistics."""
        return {
            "requests": self._requests,
            "errors": self._errors,
            "breaker": self.breaker.get_stats(),
            "rate_limiter": self.rate_limiter.get_stats(),
        }
