"""Tests for retry, circuit breaker, rate limiter and the resilient HTTP client."""

import asyncio
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from unittest.mock import AsyncMock

import httpx
import pytest

from core.circuit_breaker import CircuitBreaker, CircuitOpenError, CircuitState
from core.http import ResilientClient, ResponseTooLargeError
from core.rate_limiter import TokenBucket
from core.retry import HTTPError, RetryOptions, is_retryable, parse_retry_after, run_with_retry
from core.ttl_cache import TTLCache


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestRetryPolicy:
    """Tests for run_with_retry."""

    @pytest.mark.asyncio
    async def test_retries_transient_then_succeeds(self):
        """A 503 followed by success returns the result after one sleep."""
        operation = AsyncMock(side_effect=[HTTPError(503, "busy"), {"ok": True}])
        sleep = AsyncMock()

        result = await run_with_retry(operation, RetryOptions(max_retries=3), sleep=sleep)

        assert result == {"ok": True}
        assert operation.await_count == 2
        assert sleep.await_count == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_budget(self):
        """Total attempts are 1 + max_retries."""
        operation = AsyncMock(side_effect=HTTPError(502, "bad gateway"))
        sleep = AsyncMock()

        with pytest.raises(HTTPError):
            await run_with_retry(operation, RetryOptions(max_retries=2), sleep=sleep)

        assert operation.await_count == 3
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_non_retryable_status_fails_fast(self):
        """4xx other than 429 is not retried."""
        operation = AsyncMock(side_effect=HTTPError(404, "missing"))
        sleep = AsyncMock()

        with pytest.raises(HTTPError) as exc_info:
            await run_with_retry(operation, RetryOptions(max_retries=3), sleep=sleep)

        assert exc_info.value.status_code == 404
        assert operation.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retry_after_overrides_jitter(self):
        """A 429 with Retry-After waits that long, capped at max_delay."""
        operation = AsyncMock(side_effect=[HTTPError(429, "slow down", retry_after=2.0), "done"])
        sleep = AsyncMock()

        await run_with_retry(
            operation,
            RetryOptions(max_retries=1, base_delay=0.1, max_delay=5.0),
            sleep=sleep,
        )
        sleep.assert_awaited_once_with(2.0)

        operation = AsyncMock(side_effect=[HTTPError(429, "slow down", retry_after=60.0), "done"])
        sleep = AsyncMock()
        await run_with_retry(
            operation,
            RetryOptions(max_retries=1, base_delay=0.1, max_delay=5.0),
            sleep=sleep,
        )
        sleep.assert_awaited_once_with(5.0)

    @pytest.mark.asyncio
    async def test_timeout_is_not_retried(self):
        """Timeouts propagate on the first attempt."""
        operation = AsyncMock(side_effect=httpx.ReadTimeout("slow"))
        sleep = AsyncMock()

        with pytest.raises(httpx.ReadTimeout):
            await run_with_retry(operation, RetryOptions(max_retries=3), sleep=sleep)

        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        """CancelledError is never swallowed."""
        operation = AsyncMock(side_effect=asyncio.CancelledError())

        with pytest.raises(asyncio.CancelledError):
            await run_with_retry(operation, RetryOptions(max_retries=3), sleep=AsyncMock())

    def test_delay_is_bounded(self):
        """Jittered delay stays within [0, min(base * backoff^n, max)]."""
        opts = RetryOptions(max_retries=5, base_delay=0.5, max_delay=3.0, backoff=2.0)
        for attempt in range(6):
            ceiling = min(0.5 * 2.0 ** attempt, 3.0)
            for _ in range(20):
                assert 0.0 <= opts.delay_for(attempt) <= ceiling

    def test_is_retryable(self):
        """Transport errors and transient statuses are retryable."""
        assert is_retryable(HTTPError(500))
        assert is_retryable(HTTPError(429))
        assert not is_retryable(HTTPError(400))
        assert is_retryable(httpx.ConnectError("refused"))
        assert not is_retryable(ValueError("bad json"))


class TestParseRetryAfter:
    """Tests for Retry-After parsing."""

    def test_seconds(self):
        assert parse_retry_after("7") == 7.0

    def test_http_date(self):
        """HTTP dates are converted to seconds from now."""
        now = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
        header = format_datetime(now + timedelta(seconds=30), usegmt=True)
        assert parse_retry_after(header, now=now) == pytest.approx(30.0)

    def test_past_date_is_zero(self):
        now = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
        header = format_datetime(now - timedelta(minutes=5), usegmt=True)
        assert parse_retry_after(header, now=now) == 0.0

    def test_garbage(self):
        assert parse_retry_after(None) is None
        assert parse_retry_after("") is None
        assert parse_retry_after("soon") is None


class TestCircuitBreaker:
    """Tests for CircuitBreaker transitions."""

    def setup_method(self):
        self.clock = FakeClock()
        self.breaker = CircuitBreaker(
            "test",
            failure_threshold=3,
            reset_timeout=30.0,
            half_open_max_calls=1,
            clock=self.clock,
        )

    def _fail(self, times: int):
        for _ in range(times):
            self.breaker.before_call()
            self.breaker.record_failure()

    def test_opens_after_threshold_exceeded(self):
        """Failures up to the threshold keep the circuit closed; one more opens it."""
        self._fail(3)
        assert self.breaker.state == CircuitState.CLOSED

        self._fail(1)
        assert self.breaker.state == CircuitState.OPEN

        with pytest.raises(CircuitOpenError):
            self.breaker.before_call()

    def test_success_resets_consecutive_failures(self):
        self._fail(3)
        self.breaker.record_success()
        self._fail(3)
        assert self.breaker.state == CircuitState.CLOSED

    def test_half_open_trial_success_closes(self):
        """After the reset timeout one trial call is admitted; success closes."""
        self._fail(4)
        self.clock.now += 30.0
        assert self.breaker.state == CircuitState.HALF_OPEN

        self.breaker.before_call()
        with pytest.raises(CircuitOpenError):
            self.breaker.before_call()

        self.breaker.record_success()
        assert self.breaker.state == CircuitState.CLOSED

    def test_half_open_trial_failure_reopens(self):
        self._fail(4)
        self.clock.now += 31.0
        self.breaker.before_call()
        self.breaker.record_failure()

        assert self.breaker.state == CircuitState.OPEN
        assert self.breaker.get_stats()["trips"] == 2

    def test_release_frees_half_open_slot(self):
        """A trial call that ends without an outcome frees its slot for the next call."""
        self._fail(4)
        self.clock.now += 30.0
        self.breaker.before_call()
        self.breaker.release()

        self.breaker.before_call()
        self.breaker.record_success()
        assert self.breaker.state == CircuitState.CLOSED


class TestTokenBucket:
    """Tests for TokenBucket."""

    def test_burst_then_wait(self):
        """Burst tokens are free; the next one costs 1/rate seconds."""
        clock = FakeClock()
        bucket = TokenBucket(rate=2.0, burst=2, clock=clock)

        assert bucket.try_acquire() == 0.0
        assert bucket.try_acquire() == 0.0
        assert bucket.try_acquire() == pytest.approx(0.5)

        clock.now += 0.5
        assert bucket.try_acquire() == 0.0

    def test_refill_caps_at_burst(self):
        clock = FakeClock()
        bucket = TokenBucket(rate=10.0, burst=3, clock=clock)
        clock.now += 100
        assert bucket.available == 3.0

    def test_rejects_non_positive_rate(self):
        with pytest.raises(ValueError):
            TokenBucket(rate=0, burst=1)


class TestTTLCache:
    """Tests for TTLCache.get_or_fetch."""

    @pytest.mark.asyncio
    async def test_concurrent_fetches_share_one_call(self):
        """Concurrent misses for the same key run one fetch."""
        cache = TTLCache(ttl=60)
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return "value"

        results = await asyncio.gather(*[cache.get_or_fetch("k", fetch) for _ in range(5)])

        assert results == ["value"] * 5
        assert calls == 1

    @pytest.mark.asyncio
    async def test_cancelled_owner_does_not_strand_waiters(self):
        """A waiter on a cancelled fetch fetches again instead of hanging."""
        cache = TTLCache(ttl=60)
        never = asyncio.Event()

        async def stuck_fetch():
            await never.wait()
            return "stale"

        async def fresh_fetch():
            return "fresh"

        owner = asyncio.create_task(cache.get_or_fetch("k", stuck_fetch))
        await asyncio.sleep(0)
        waiter = asyncio.create_task(cache.get_or_fetch("k", fresh_fetch))
        await asyncio.sleep(0)

        owner.cancel()

        assert await asyncio.wait_for(waiter, timeout=1.0) == "fresh"
        assert owner.cancelled()
        assert cache.get("k") == "fresh"

    @pytest.mark.asyncio
    async def test_errors_are_not_cached(self):
        cache = TTLCache(ttl=60)
        fetch = AsyncMock(side_effect=[RuntimeError("down"), "value"])

        with pytest.raises(RuntimeError):
            await cache.get_or_fetch("k", fetch)
        assert await cache.get_or_fetch("k", fetch) == "value"

    def test_expiry(self):
        clock = FakeClock()
        cache = TTLCache(ttl=10, clock=clock)
        cache.set("k", "v")
        clock.now += 11
        assert cache.get("k") is None


def make_client(handler, max_retries: int = 2, **kwargs) -> ResilientClient:
    return ResilientClient(
        "test",
        "http://test.local",
        transport=httpx.MockTransport(handler),
        rate_limiter=TokenBucket(rate=1000.0, burst=100),
        breaker=kwargs.pop("breaker", CircuitBreaker("test", failure_threshold=5)),
        retry_options=RetryOptions(max_retries=max_retries, base_delay=0.0, max_delay=0.0),
        timeout=5.0,
        **kwargs,
    )


class TestResilientClient:
    """Tests for ResilientClient against httpx.MockTransport."""

    @pytest.mark.asyncio
    async def test_get_json_drops_empty_params(self):
        """None and empty params are not sent."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"ok": True})

        client = make_client(handler)
        await client.start()
        try:
            data = await client.get_json("/swaps", {"limit": 10, "poolType": None, "assetAddress": ""})
        finally:
            await client.stop()

        assert data == {"ok": True}
        assert seen["params"] == {"limit": "10"}

    @pytest.mark.asyncio
    async def test_retries_server_errors(self):
        """A 500 followed by a 200 succeeds."""
        responses = iter([httpx.Response(500, text="oops"), httpx.Response(200, json=[1, 2])])

        client = make_client(lambda request: next(responses))
        await client.start()
        try:
            assert await client.get_json("/x") == [1, 2]
        finally:
            await client.stop()

        assert client.get_stats()["errors"] == 1

    @pytest.mark.asyncio
    async def test_client_error_raises_http_error(self):
        client = make_client(lambda request: httpx.Response(404, text="no such pool"))
        await client.start()
        try:
            with pytest.raises(HTTPError) as exc_info:
                await client.get_json("/spark/pool/abc")
        finally:
            await client.stop()

        assert exc_info.value.status_code == 404
        assert exc_info.value.provider == "test"

    @pytest.mark.asyncio
    async def test_oversized_response_rejected(self):
        client = make_client(
            lambda request: httpx.Response(200, content=b"x" * 2048),
            max_response_bytes=1024,
        )
        await client.start()
        try:
            with pytest.raises(ResponseTooLargeError):
                await client.get_json("/big")
        finally:
            await client.stop()

    @pytest.mark.asyncio
    async def test_open_circuit_rejects_without_request(self):
        """Once the breaker opens, calls fail without touching the network."""
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(503, text="down")

        breaker = CircuitBreaker("test", failure_threshold=1, reset_timeout=60.0)
        client = make_client(handler, max_retries=0, breaker=breaker)
        await client.start()
        try:
            for _ in range(2):
                with pytest.raises(HTTPError):
                    await client.get_json("/x")
            with pytest.raises(CircuitOpenError):
                await client.get_json("/x")
        finally:
            await client.stop()

        assert calls == 2

    @pytest.mark.asyncio
    async def test_client_errors_close_half_open_circuit(self):
        """A 404 during half-open counts as an answer, so the circuit recovers."""
        clock = FakeClock()
        statuses = iter([503, 503, 404, 404, 404, 200])

        def handler(request: httpx.Request) -> httpx.Response:
            status = next(statuses)
            if status == 200:
                return httpx.Response(200, json={"ok": True})
            return httpx.Response(status, text="nope")

        breaker = CircuitBreaker(
            "test", failure_threshold=1, reset_timeout=30.0, half_open_max_calls=3, clock=clock,
        )
        client = make_client(handler, max_retries=0, breaker=breaker)
        await client.start()
        try:
            for _ in range(2):
                with pytest.raises(HTTPError):
                    await client.get_json("/x")
            assert breaker.state == CircuitState.OPEN

            clock.now += 31.0
            for _ in range(3):
                with pytest.raises(HTTPError) as exc_info:
                    await client.get_json("/x")
                assert exc_info.value.status_code == 404
            assert breaker.state == CircuitState.CLOSED

            assert await client.get_json("/x") == {"ok": True}
        finally:
            await client.stop()

    @pytest.mark.asyncio
    async def test_oversized_half_open_response_reopens_circuit(self):
        """Any other half-open error counts as a failure and reopens the circuit."""
        clock = FakeClock()
        responses = iter([
            httpx.Response(503, text="down"),
            httpx.Response(503, text="down"),
            httpx.Response(200, content=b"x" * 2048),
        ])

        breaker = CircuitBreaker(
            "test", failure_threshold=1, reset_timeout=30.0, half_open_max_calls=3, clock=clock,
        )
        client = make_client(
            lambda request: next(responses),
            max_retries=0,
            breaker=breaker,
            max_response_bytes=1024,
        )
        await client.start()
        try:
            for _ in range(2):
                with pytest.raises(HTTPError):
                    await client.get_json("/x")

            clock.now += 31.0
            with pytest.raises(ResponseTooLargeError):
                await client.get_json("/x")
        finally:
            await client.stop()

        assert breaker.state == CircuitState.OPEN
        assert breaker.get_stats()["trips"] == 2

    @pytest.mark.asyncio
    async def test_authenticated_requests_carry_bearer(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json={})

        credentials = AsyncMock()
        credentials.auth_headers = lambda: {"Authorization": "Bearer tok"}

        client = make_client(handler, credentials=credentials)
        await client.start()
        try:
            await client.get_json("/swaps", authenticated=True)
            assert seen["auth"] == "Bearer tok"
            await client.get_json("/swaps")
            assert seen["auth"] is None
        finally:
            await client.stop()

    @pytest.mark.asyncio
    async def test_not_started(self):
        client = make_client(lambda request: httpx.Response(200, json={}))
        with pytest.raises(RuntimeError):
            await client.get_json("/x")
