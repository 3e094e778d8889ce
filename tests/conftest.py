"""
Shared fixtures and Playwright doubles for the test suite.

FakePage implements the slice of the Playwright Page API the harness
touches: screenshots, content, viewport, waits, locators, evaluate and
event listeners. Waits return immediately and are recorded instead.
"""

import io
from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest
from PIL import Image

from e2e_orchestrator.artifacts import ArtifactPipeline
from e2e_orchestrator.filesystem_guard import FilesystemGuard
from e2e_orchestrator.models import (
    CIProvider, EnvironmentInfo, OperatingSystem, TestMode
)
from e2e_orchestrator.modes import ModeResolver

SAMPLE_HTML = """<html>
<head><title>Checkout</title><script>window.x = 1;</script></head>
<body>
  <h1>Your cart</h1>
  <h2>Payment</h2>
  <form><input name="card"><select name="month"></select><button>Pay</button></form>
  <a href="/help">Help</a>
</body>
</html>"""


def make_png(color: Tuple[int, int, int] = (255, 255, 255), size: Tuple[int, int] = (20, 20)) -> bytes:
    """Solid-colour PNG bytes"""
    buffer = io.BytesIO()
    Image.new('RGB', size, color).save(buffer, format='PNG')
    return buffer.getvalue()


def make_environment(is_ci: bool = False, platform: str = 'linux', **overrides) -> EnvironmentInfo:
    values = dict(
        is_ci=is_ci,
        ci_provider=CIProvider.GITHUB_ACTIONS if is_ci else CIProvider.LOCAL,
        os=OperatingSystem.LINUX,
        platform=platform,
        hostname='test-host',
        runtime_version='Python 3.x',
        start_time=datetime(2024, 1, 1, 12, 0, 0),
        run_id='run-1-1',
    )
    values.update(overrides)
    return EnvironmentInfo(**values)


def mode_config(mode: TestMode):
    return ModeResolver.get_config(mode)


class FakeBrowserType:
    def __init__(self, name: str):
        self.name = name


class FakeBrowser:
    def __init__(self, name: str = 'chromium', version: str = '120.0.6099.28'):
        self.browser_type = FakeBrowserType(name)
        self.version = version


class FakeBrowserContext:
    def __init__(self, browser: Optional[FakeBrowser]):
        self.browser = browser


class FakeVideo:
    def __init__(self, path: str):
        self._path = path

    async def path(self) -> str:
        return self._path


class FakeLocator:
    def __init__(self, page: 'FakePage', selector: str):
        self.page = page
        self.selector = selector

    async def count(self) -> int:
        return 1 if self.selector in self.page.loading_selectors else 0


class FakePage:
    """In-memory stand-in for playwright.async_api.Page"""

    def __init__(self, html: str = SAMPLE_HTML, image: Optional[bytes] = None,
                 url: str = 'http://localhost:3000/checkout',
                 browser: Optional[FakeBrowser] = None,
                 evaluate_result: Any = None):
        self.html = html
        self.image = image if image is not None else make_png()
        self.url = url
        self.context = FakeBrowserContext(browser or FakeBrowser())
        self.video = None
        self.evaluate_result = evaluate_result
        self.evaluate_error: Optional[Exception] = None
        self.screenshot_error: Optional[Exception] = None
        self.content_error: Optional[Exception] = None
        self.loading_selectors: set = set()
        self.viewport: Optional[Dict[str, int]] = None
        self.screenshot_calls: List[Dict[str, Any]] = []
        self.waits: List[float] = []
        self.load_states: List[str] = []
        self.listeners: Dict[str, List[Any]] = defaultdict(list)

    async def screenshot(self, **kwargs) -> bytes:
        self.screenshot_calls.append(kwargs)
        if self.screenshot_error is not None:
            raise self.screenshot_error
        return self.image

    async def content(self) -> str:
        if self.content_error is not None:
            raise self.content_error
        return self.html

    async def set_viewport_size(self, size: Dict[str, int]):
        self.viewport = size

    async def wait_for_timeout(self, timeout: float):
        self.waits.append(timeout)

    async def wait_for_load_state(self, state: str = 'load', timeout: Optional[float] = None):
        self.load_states.append(state)

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector)

    async def evaluate(self, script: str, *args):
        if self.evaluate_error is not None:
            raise self.evaluate_error
        return self.evaluate_result

    def on(self, event: str, handler):
        self.listeners[event].append(handler)

    def remove_listener(self, event: str, handler):
        self.listeners[event].remove(handler)

    def emit(self, event: str, payload: Any):
        for handler in list(self.listeners[event]):
            handler(payload)


@pytest.fixture
def fake_page() -> FakePage:
    return FakePage()


@pytest.fixture
def fs() -> FilesystemGuard:
    return FilesystemGuard()


@pytest.fixture
def local_environment() -> EnvironmentInfo:
    return make_environment(is_ci=False)


@pytest.fixture
def ci_environment() -> EnvironmentInfo:
    return make_environment(is_ci=True, ci_pipeline_id='12345', ci_job_id='e2e')


@pytest.fixture
def artifacts_root(tmp_path) -> Path:
    return tmp_path / 'artifacts'


@pytest.fixture
def pipeline(local_environment, fs, artifacts_root) -> ArtifactPipeline:
    return ArtifactPipeline(local_environment, fs, root_dir=artifacts_root)


@pytest.fixture
def context(pipeline):
    return pipeline.new_context('checkout @critical completes payment', file='tests/test_checkout.py', line=12)
