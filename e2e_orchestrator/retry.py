"""
Bounded retry with exponential backoff for flaky browser operations
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar
import logging

from e2e_orchestrator.models import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar('T')

DEFAULT_POLICY = RetryPolicy()


async def retry(operation: Callable[[], Awaitable[T]],
                policy: Optional[RetryPolicy] = None,
                *,
                description: str = "operation",
                sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                retry_condition: Optional[Callable[[BaseException], bool]] = None,
                on_retry: Optional[Callable[[int, BaseException], Any]] = None) -> T:
    """
    Run an async operation up to policy.retries + 1 times

    Args:
        operation: Zero-argument coroutine function
        policy: Retry policy (defaults to 3 retries, 1000ms, x1.5, cap 10000ms)
        description: Label used in log messages
        sleep: Awaitable sleep taking seconds; replace with a fake clock in tests
        retry_condition: Return False to stop retrying for a given error
        on_retry: Called with (attempt, error) before each backoff sleep

    Returns:
        The first successful result

    Raises:
        The last error raised by the operation, unmodified
    """
    policy = policy or DEFAULT_POLICY
    attempts = policy.retries + 1

    for attempt in range(1, attempts + 1):
        try:
            result = await operation()
            if attempt > 1:
                logger.info(f"{description} succeeded on attempt {attempt}/{attempts}")
            return result
        except Exception as e:
            if attempt >= attempts:
                logger.error(f"{description} failed after {attempts} attempts: {e}")
                raise
            if retry_condition is not None and not retry_condition(e):
                logger.warning(f"{description} failed with a non-retryable error: {e}")
                raise

            delay_ms = policy.delay_for(attempt)
            logger.warning(f"{description} failed (attempt {attempt}/{attempts}), "
                           f"retrying in {delay_ms:.0f}ms: {e}")
            if on_retry is not None:
                on_retry(attempt, e)
            await sleep(delay_ms / 1000)


async def retry_click(locator, policy: Optional[RetryPolicy] = None, timeout: int = 10000, **kwargs):
    """Wait for a locator to be visible, then click it, retrying the pair"""
    async def click():
        await locator.wait_for(state="visible", timeout=timeout)
        await locator.click(timeout=timeout)

    return await retry(click, policy, description=f"click {locator}", **kwargs)


async def retry_fill(locator, value: str, policy: Optional[RetryPolicy] = None,
                     timeout: int = 10000, **kwargs):
    """Wait for a locator to be visible, then fill it, retrying the pair"""
    async def fill():
        await locator.wait_for(state="visible", timeout=timeout)
        await locator.fill(value, timeout=timeout)

    return await retry(fill, policy, description=f"fill {locator}", **kwargs)


async def retry_navigation(page, url: str, policy: Optional[RetryPolicy] = None,
                           timeout: int = 30000, wait_until: str = "networkidle", **kwargs):
    """Navigate with retries; returns the Playwright Response"""
    async def navigate():
        return await page.goto(url, timeout=timeout, wait_until=wait_until)

    return await retry(navigate, policy, description=f"navigate to {url}", **kwargs)


async def retry_assertion(assertion: Callable[[], Any], policy: Optional[RetryPolicy] = None, **kwargs):
    """Retry a sync or async assertion until it stops raising"""
    async def check():
        result = assertion()
        if asyncio.iscoroutine(result):
            result = await result
        return result

    return await retry(check, policy, description="assertion", **kwargs)
