"""
Tests for the retry engine
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from e2e_orchestrator.models import RetryPolicy
from e2e_orchestrator.retry import (
    retry, retry_assertion, retry_click, retry_fill, retry_navigation
)


class FakeClock:
    """Records requested sleeps instead of sleeping"""

    def __init__(self):
        self.sleeps = []

    async def sleep(self, seconds: float):
        self.sleeps.append(seconds)


class Flaky:
    """Operation failing a fixed number of times before succeeding"""

    def __init__(self, failures: int, result='ok'):
        self.failures = failures
        self.result = result
        self.calls = 0
        self.errors = []

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            error = RuntimeError(f"attempt {self.calls} failed")
            self.errors.append(error)
            raise error
        return self.result


class TestRetryPolicy:
    def test_delay_schedule(self):
        policy = RetryPolicy(retries=5, delay=1000, backoff=2, max_delay=5000)
        assert [policy.delay_for(i) for i in range(1, 6)] == [1000, 2000, 4000, 5000, 5000]

    @pytest.mark.parametrize("kwargs", [
        {'retries': -1},
        {'delay': 0},
        {'backoff': 0.5},
        {'delay': 2000, 'max_delay': 1000},
    ])
    def test_invalid_policy(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)


class TestRetry:
    """retry() attempts, delays and error propagation"""

    @pytest.mark.asyncio
    async def test_first_attempt_success_does_not_sleep(self):
        clock = FakeClock()
        operation = Flaky(0)
        assert await retry(operation, sleep=clock.sleep) == 'ok'
        assert operation.calls == 1
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_recovers_after_failures(self):
        clock = FakeClock()
        operation = Flaky(2, result=42)
        assert await retry(operation, RetryPolicy(retries=3), sleep=clock.sleep) == 42
        assert operation.calls == 3
        assert clock.sleeps == [1.0, 1.5]

    @pytest.mark.asyncio
    async def test_exhaustion_reraises_last_error_unmodified(self):
        clock = FakeClock()
        operation = Flaky(10)
        with pytest.raises(RuntimeError) as exc_info:
            await retry(operation, RetryPolicy(retries=3), sleep=clock.sleep)
        assert operation.calls == 4
        assert exc_info.value is operation.errors[-1]
        assert clock.sleeps == [1.0, 1.5, 2.25]

    @pytest.mark.asyncio
    async def test_delays_capped_by_max_delay(self):
        clock = FakeClock()
        policy = RetryPolicy(retries=5, delay=4000, backoff=2, max_delay=10000)
        with pytest.raises(RuntimeError):
            await retry(Flaky(10), policy, sleep=clock.sleep)
        assert clock.sleeps == [4.0, 8.0, 10.0, 10.0, 10.0]

    @pytest.mark.asyncio
    async def test_zero_retries_single_attempt(self):
        clock = FakeClock()
        operation = Flaky(1)
        with pytest.raises(RuntimeError):
            await retry(operation, RetryPolicy(retries=0), sleep=clock.sleep)
        assert operation.calls == 1
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_retry_condition_stops_early(self):
        clock = FakeClock()
        operation = Flaky(10)
        with pytest.raises(RuntimeError) as exc_info:
            await retry(operation, RetryPolicy(retries=3), sleep=clock.sleep,
                        retry_condition=lambda e: 'attempt 1' not in str(e))
        assert operation.calls == 1
        assert exc_info.value is operation.errors[0]

    @pytest.mark.asyncio
    async def test_on_retry_callback(self):
        seen = []
        await retry(Flaky(2), RetryPolicy(retries=2), sleep=FakeClock().sleep,
                    on_retry=lambda attempt, error: seen.append((attempt, str(error))))
        assert seen == [(1, 'attempt 1 failed'), (2, 'attempt 2 failed')]


class TestRetryHelpers:
    """Locator and page wrappers"""

    @pytest.mark.asyncio
    async def test_retry_click_waits_then_clicks(self):
        locator = MagicMock()
        locator.wait_for = AsyncMock()
        locator.click = AsyncMock(side_effect=[RuntimeError("detached"), None])
        clock = FakeClock()

        await retry_click(locator, RetryPolicy(retries=1), sleep=clock.sleep)

        assert locator.wait_for.await_count == 2
        locator.wait_for.assert_awaited_with(state="visible", timeout=10000)
        assert locator.click.await_count == 2
        assert clock.sleeps == [1.0]

    @pytest.mark.asyncio
    async def test_retry_fill(self):
        locator = MagicMock()
        locator.wait_for = AsyncMock()
        locator.fill = AsyncMock()
        await retry_fill(locator, 'user@example.com', timeout=500)
        locator.fill.assert_awaited_once_with('user@example.com', timeout=500)

    @pytest.mark.asyncio
    async def test_retry_navigation_returns_response(self):
        page = MagicMock()
        response = object()
        page.goto = AsyncMock(return_value=response)
        result = await retry_navigation(page, 'http://localhost:3000/')
        assert result is response
        page.goto.assert_awaited_once_with('http://localhost:3000/', timeout=30000, wait_until='networkidle')

    @pytest.mark.asyncio
    async def test_retry_assertion_sync_and_async(self):
        values = iter([1, 2, 3])

        def check():
            assert next(values) == 3

        await retry_assertion(check, RetryPolicy(retries=2), sleep=FakeClock().sleep)

        async def async_check():
            return 'done'

        assert await retry_assertion(async_check) == 'done'
