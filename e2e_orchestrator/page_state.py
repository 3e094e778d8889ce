"""
Waits that bring a page into a stable state before it is inspected
"""

import time
from typing import Union
import logging

from playwright.async_api import Locator, Page

from e2e_orchestrator.models import StandardViewport, Viewport

logger = logging.getLogger(__name__)

LOADING_INDICATORS = (
    '[aria-busy="true"]',
    '[class*="loading"]',
    '[class*="spinner"]',
    '[role="progressbar"]',
)

NETWORK_IDLE_BUFFER = 500
LOADED_DOUBLE_CHECK = 500
VIEWPORT_SETTLE = 100


class PageLoadTimeoutError(Exception):
    """Raised when loading indicators never disappear"""


class ElementStabilityError(Exception):
    """Raised when an element keeps moving past its timeout"""


def resolve_viewport(viewport: Union[StandardViewport, Viewport, str]) -> Viewport:
    if isinstance(viewport, Viewport):
        return viewport
    return StandardViewport(viewport).size


async def set_viewport(page: Page, viewport: Union[StandardViewport, Viewport, str]) -> Viewport:
    """
    Resize the page viewport and let responsive layout settle

    Args:
        page: Playwright page object
        viewport: Named standard viewport or explicit dimensions

    Returns:
        Dimensions applied
    """
    size = resolve_viewport(viewport)
    logger.debug(f"Setting viewport to {size.width}x{size.height}")
    await page.set_viewport_size(size.to_dict())
    await page.wait_for_timeout(VIEWPORT_SETTLE)
    return size


async def wait_for_animations_complete(page: Page, timeout: float = 5000, interval: int = 100) -> bool:
    """
    Poll DOM snapshots until two consecutive ones are identical.
    Best effort: never raises.

    Args:
        page: Playwright page object
        timeout: Upper bound in milliseconds
        interval: Delay between snapshots in milliseconds

    Returns:
        True if the DOM settled within the timeout
    """
    deadline = time.monotonic() + timeout / 1000
    try:
        previous = await page.content()
        while time.monotonic() < deadline:
            await page.wait_for_timeout(interval)
            current = await page.content()
            if current == previous:
                return True
            previous = current
    except Exception as e:
        logger.warning(f"Could not confirm animations completed: {e}")
        return False
    logger.warning(f"DOM still changing after {timeout:.0f}ms, continuing")
    return False


async def wait_for_network_idle(page: Page, timeout: float = 10000) -> bool:
    """Wait for network idle plus a short buffer; best effort"""
    start = time.monotonic()
    try:
        await page.wait_for_load_state("networkidle", timeout=timeout)
        logger.debug(f"Network became idle after {(time.monotonic() - start) * 1000:.0f}ms")
        await page.wait_for_timeout(NETWORK_IDLE_BUFFER)
        return True
    except Exception as e:
        logger.warning(f"Network did not become idle within {timeout:.0f}ms: {e}")
        return False


async def is_page_loading(page: Page) -> bool:
    """True while any common loading indicator is present"""
    try:
        for selector in LOADING_INDICATORS:
            if await page.locator(selector).count() > 0:
                return True
        return False
    except Exception as e:
        logger.error(f"Error checking page loading state: {e}")
        return False


async def wait_for_page_loaded(page: Page, timeout: float = 30000, poll_interval: int = 100):
    """
    Wait until no loading indicator is present, confirmed twice

    Raises:
        PageLoadTimeoutError: Indicators still present after timeout
    """
    deadline = time.monotonic() + timeout / 1000
    while time.monotonic() < deadline:
        if not await is_page_loading(page):
            await page.wait_for_timeout(LOADED_DOUBLE_CHECK)
            if not await is_page_loading(page):
                return
        await page.wait_for_timeout(poll_interval)
    raise PageLoadTimeoutError(f"Timed out: page did not finish loading within {timeout:.0f}ms")


async def wait_for_element_stability(locator: Locator, timeout: float = 10000, interval: int = 100):
    """
    Wait until an element's bounding box stops changing

    Raises:
        ElementStabilityError: Box still changing after timeout
    """
    deadline = time.monotonic() + timeout / 1000
    last_box = None
    while time.monotonic() < deadline:
        try:
            box = await locator.bounding_box()
        except Exception as e:
            logger.debug(f"Element not measurable yet: {e}")
            box = None
        if box is not None and box == last_box:
            return
        last_box = box
        await locator.page.wait_for_timeout(interval)
    raise ElementStabilityError(f"Timed out: element did not stabilize within {timeout:.0f}ms")
