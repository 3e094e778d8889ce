"""
Visual regression comparison with environment-aware thresholds
"""

import io
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, List, Optional, Sequence, Tuple, Union
import logging

from PIL import Image, ImageChops
from playwright.async_api import Page

from e2e_orchestrator.artifacts import ArtifactPipeline
from e2e_orchestrator.filesystem_guard import FilesystemGuard
from e2e_orchestrator.models import (
    EnvironmentInfo, StandardViewport, TestContext, TestModeConfig,
    ThresholdPreset, UpdateMode, Viewport
)
from e2e_orchestrator.modes import is_ci_mode
from e2e_orchestrator.page_state import (
    set_viewport, wait_for_animations_complete, wait_for_element_stability, wait_for_network_idle,
    wait_for_page_loaded
)

logger = logging.getLogger(__name__)

# (local, CI) columns per preset
THRESHOLD_PRESETS = {
    'default': (ThresholdPreset(0.2, 0.01), ThresholdPreset(0.35, 0.05)),
    'strict': (ThresholdPreset(0.1, 0.005), ThresholdPreset(0.25, 0.03)),
    'lenient': (ThresholdPreset(0.3, 0.03), ThresholdPreset(0.45, 0.08)),
}

DIFF_HIGHLIGHT = (255, 0, 80)


class VisualComparisonError(AssertionError):
    """Screenshot differs from its baseline beyond the allowed tolerance"""

    def __init__(self, message: str, result: Optional['ComparisonResult'] = None):
        super().__init__(message)
        self.result = result


@dataclass
class VisualComparisonOptions:
    """Per-call options for a screenshot comparison; durations in ms"""
    viewport: Optional[Union[StandardViewport, Viewport, str]] = None
    timeout: Optional[int] = None
    mask: Sequence[Any] = field(default_factory=list)
    stable_elements: Sequence[Any] = field(default_factory=list)
    threshold_preset: str = 'default'
    animation_timeout: Optional[float] = None
    network_timeout: Optional[float] = None
    page_load_timeout: float = 30000
    stability_delay: Optional[int] = None
    save_debug_screenshot: bool = True
    full_page: bool = False


@dataclass
class ComparisonResult:
    """Outcome of one comparison"""
    name: str
    baseline_path: Optional[str] = None
    passed: bool = True
    skipped: bool = False
    soft_failed: bool = False
    baseline_written: bool = False
    diff_ratio: float = 0.0
    threshold: Optional[ThresholdPreset] = None
    actual_path: Optional[str] = None
    diff_path: Optional[str] = None
    message: str = ""


def get_threshold_preset(preset: str, ci: bool) -> ThresholdPreset:
    """Look up a named preset in its local or CI column"""
    if preset not in THRESHOLD_PRESETS:
        raise ValueError(f"Unknown threshold preset '{preset}', expected one of {sorted(THRESHOLD_PRESETS)}")
    local, ci_preset = THRESHOLD_PRESETS[preset]
    return ci_preset if ci else local


def screenshot_name(name: str, viewport: Optional[Union[StandardViewport, Viewport, str]],
                    platform: str, is_ci: bool) -> str:
    """
    Baseline file name qualified by viewport, platform and CI

    Args:
        name: Base name of the screenshot
        viewport: Standard viewport name or explicit dimensions
        platform: sys.platform style string
        is_ci: Append the -ci suffix

    Returns:
        '{name}[-{viewport}]-{platform}[-ci].png'
    """
    viewport_suffix = ''
    if isinstance(viewport, Viewport):
        viewport_suffix = f"-{viewport.width}x{viewport.height}"
    elif viewport:
        viewport_suffix = f"-{StandardViewport(viewport).value}"
    env_suffix = '-ci' if is_ci else ''
    return f"{name}{viewport_suffix}-{platform}{env_suffix}.png"


def compare_images(actual: Image.Image, expected: Image.Image,
                   threshold: float) -> Tuple[float, Optional[Image.Image]]:
    """
    Pixel comparison of two images

    A pixel differs when any channel moves by more than threshold * 255.

    Args:
        actual: Freshly captured image
        expected: Baseline image
        threshold: Per-pixel tolerance in [0, 1]

    Returns:
        (ratio of differing pixels, diff image); size mismatch yields (1.0, None)
    """
    actual = actual.convert('RGB')
    expected = expected.convert('RGB')
    if actual.size != expected.size:
        return 1.0, None

    width, height = actual.size
    red, green, blue = ImageChops.difference(actual, expected).split()
    channel_max = ImageChops.lighter(ImageChops.lighter(red, green), blue)
    cutoff = int(threshold * 255)
    mask = channel_max.point(lambda v: 255 if v > cutoff else 0)
    changed = mask.histogram()[255]

    dimmed = actual.point(lambda v: v // 3)
    highlight = Image.new('RGB', actual.size, DIFF_HIGHLIGHT)
    diff_image = Image.composite(highlight, dimmed, mask)
    return changed / float(width * height), diff_image


class VisualComparator:
    """Stabilizes a page, then compares a screenshot against its baseline"""

    def __init__(self, mode_config: TestModeConfig, environment: EnvironmentInfo,
                 fs: FilesystemGuard, snapshots_dir: Union[str, Path],
                 soft_fail_in_ci: bool = True,
                 update_mode: Optional[UpdateMode] = None,
                 default_timeout: int = 15000,
                 stability_delay: int = 200,
                 animation_poll_interval: int = 100,
                 element_stability_timeout: int = 5000,
                 pipeline: Optional[ArtifactPipeline] = None):
        """
        Initialize visual comparator

        Args:
            mode_config: Active test mode configuration
            environment: Detected environment
            fs: Filesystem guard used for baselines and diffs
            snapshots_dir: Directory holding baseline images
            soft_fail_in_ci: On CI, log failed comparisons instead of raising
            update_mode: Baseline update policy (defaults to the mode's)
            default_timeout: Screenshot timeout when options give none
            stability_delay: Extra wait before the screenshot
            animation_poll_interval: Spacing of DOM snapshots while settling
            element_stability_timeout: Wait for each of options.stable_elements to stop moving
            pipeline: Artifact pipeline for debug and failure screenshots
        """
        self.mode_config = mode_config
        self.environment = environment
        self.fs = fs
        self.snapshots_dir = Path(snapshots_dir)
        self.soft_fail_in_ci = soft_fail_in_ci
        self.update_mode = update_mode if update_mode is not None else mode_config.visual_test_update_mode
        self.default_timeout = default_timeout
        self.stability_delay = stability_delay
        self.animation_poll_interval = animation_poll_interval
        self.element_stability_timeout = element_stability_timeout
        self.pipeline = pipeline or ArtifactPipeline(environment, fs)

    def resolve_threshold(self, preset: str = 'default') -> ThresholdPreset:
        """Preset for the active mode; the default preset uses the mode's threshold"""
        resolved = get_threshold_preset(preset, is_ci_mode(self.mode_config.mode))
        if preset == 'default':
            resolved = replace(resolved, threshold=self.mode_config.visual_test_threshold)
        return resolved

    def baseline_path(self, name: str, viewport=None) -> Path:
        return self.snapshots_dir / screenshot_name(
            name, viewport, self.environment.platform, self.environment.is_ci)

    async def compare(self, page: Page, name: str,
                      options: Optional[VisualComparisonOptions] = None,
                      context: Optional[TestContext] = None) -> ComparisonResult:
        """
        Compare the page against its baseline

        Args:
            page: Playwright page object
            name: Base screenshot name
            options: Comparison options
            context: Test context receiving debug and failure screenshots

        Returns:
            ComparisonResult; soft_failed is set when a CI failure was tolerated

        Raises:
            VisualComparisonError: Difference above tolerance and not soft-failed
        """
        opts = options or VisualComparisonOptions()
        timeout = opts.timeout or self.default_timeout

        if not self.mode_config.visual_testing_enabled:
            logger.info(f"Skipping visual comparison for '{name}' in {self.mode_config.mode.value} mode")
            if opts.viewport:
                await set_viewport(page, opts.viewport)
            if opts.save_debug_screenshot:
                await self._save_screenshot(page, context, f"debug-ci-skipped-{name}")
            return ComparisonResult(name=name, skipped=True, message="Visual testing disabled")

        try:
            logger.debug(f"Preparing visual comparison for '{name}'")
            if opts.viewport:
                await set_viewport(page, opts.viewport)

            await wait_for_animations_complete(
                page,
                timeout=opts.animation_timeout if opts.animation_timeout is not None else timeout / 3,
                interval=self.animation_poll_interval,
            )
            await wait_for_network_idle(
                page, opts.network_timeout if opts.network_timeout is not None else timeout / 3)
            await wait_for_page_loaded(page, timeout=opts.page_load_timeout)
            for locator in opts.stable_elements:
                await wait_for_element_stability(
                    locator, timeout=self.element_stability_timeout, interval=self.animation_poll_interval)

            delay = opts.stability_delay if opts.stability_delay is not None else self.stability_delay
            await page.wait_for_timeout(delay)

            if opts.save_debug_screenshot:
                await self._save_screenshot(page, context, f"debug-{name}")

            result = await self._match_baseline(page, name, opts, timeout, context)
            if result.passed:
                logger.info(f"Visual comparison passed for '{Path(result.baseline_path).name}'")
                return result

            if self.environment.is_ci and self.soft_fail_in_ci:
                update_mode = self.update_mode.value if self.update_mode else 'none'
                logger.warning(f"Visual comparison failed in CI (update mode: {update_mode}): {result.message}")
                logger.info("Options to resolve this:")
                logger.info("1. Set VISUAL_TESTS_ENABLED_IN_CI=0 to disable visual tests in CI")
                logger.info("2. Set PLAYWRIGHT_UPDATE_SNAPSHOTS=all to update all baselines")
                logger.info("3. Set PLAYWRIGHT_UPDATE_SNAPSHOTS=on-failure to update failing baselines")
                logger.info("4. Set visual.soft_fail_in_ci: false to make drift fail the test")
                return replace(result, soft_failed=True)

            raise VisualComparisonError(result.message, result)
        except Exception as e:
            logger.error(f"Visual comparison failed for '{name}': {e}")
            timestamp = datetime.now().isoformat().replace(':', '-').replace('.', '-')
            await self._save_screenshot(page, context, f"failure-{name}-{timestamp}")
            raise

    async def compare_viewports(self, page: Page, name: str,
                                viewports: Iterable[Union[StandardViewport, str]] = (StandardViewport.DESKTOP,),
                                options: Optional[VisualComparisonOptions] = None,
                                context: Optional[TestContext] = None) -> List[ComparisonResult]:
        """Run compare() once per viewport"""
        viewports = list(viewports)
        opts = options or VisualComparisonOptions()

        if not self.mode_config.visual_testing_enabled:
            logger.info(f"Skipping multi-viewport visual test for '{name}'")
            if viewports and opts.save_debug_screenshot:
                first = StandardViewport(viewports[0])
                await set_viewport(page, first)
                await self._save_screenshot(page, context, f"debug-ci-skipped-{name}-{first.value}")
            return []

        results = []
        for viewport in viewports:
            logger.debug(f"Testing viewport: {viewport}")
            results.append(await self.compare(page, name, replace(opts, viewport=viewport), context))
        return results

    async def generate_baseline(self, page: Page, name: str,
                                options: Optional[VisualComparisonOptions] = None) -> Path:
        """
        Capture a new baseline unconditionally, overwriting any existing one

        Returns:
            Path of the written baseline
        """
        opts = options or VisualComparisonOptions()
        if self.environment.is_ci:
            logger.warning(f"Generating baseline screenshot in CI for '{name}'; existing baselines are overwritten")
        else:
            logger.info(f"Generating baseline screenshot for '{name}'")

        if opts.viewport:
            await set_viewport(page, opts.viewport)
        await wait_for_animations_complete(page, interval=self.animation_poll_interval)
        await wait_for_network_idle(page)
        await wait_for_page_loaded(page, timeout=opts.page_load_timeout)
        await page.wait_for_timeout(self.stability_delay)

        image = await page.screenshot(
            full_page=opts.full_page, timeout=opts.timeout or self.default_timeout)
        path = self.fs.write_file(self.baseline_path(name, opts.viewport), image)
        logger.info(f"Baseline screenshot generated: {path}")
        return path

    async def _match_baseline(self, page: Page, name: str, opts: VisualComparisonOptions,
                              timeout: int, context: Optional[TestContext]) -> ComparisonResult:
        thresholds = self.resolve_threshold(opts.threshold_preset)
        baseline = self.baseline_path(name, opts.viewport)
        actual_bytes = await page.screenshot(
            full_page=opts.full_page,
            timeout=timeout,
            mask=list(opts.mask) or None,
            animations="disabled",
        )
        result = ComparisonResult(name=name, baseline_path=str(baseline), threshold=thresholds)

        if not baseline.exists():
            self.fs.write_file(baseline, actual_bytes)
            if self.update_mode is None:
                return replace(result, passed=False, baseline_written=True,
                               message=f"Baseline {baseline.name} did not exist; wrote actual screenshot")
            logger.info(f"Wrote missing baseline {baseline.name}")
            return replace(result, baseline_written=True, message="Baseline created")

        if self.update_mode == UpdateMode.ALL:
            self.fs.write_file(baseline, actual_bytes)
            logger.info(f"Updated baseline {baseline.name}")
            return replace(result, baseline_written=True, message="Baseline updated")

        with Image.open(baseline) as expected:
            actual = Image.open(io.BytesIO(actual_bytes))
            ratio, diff_image = compare_images(actual, expected, thresholds.threshold)
            size_mismatch = diff_image is None and actual.size != expected.size
            sizes = (actual.size, expected.size)

        if ratio <= thresholds.max_diff_pixel_ratio:
            return replace(result, diff_ratio=ratio)

        if self.update_mode == UpdateMode.ON_FAILURE:
            self.fs.write_file(baseline, actual_bytes)
            logger.warning(f"Baseline {baseline.name} differed by {ratio:.2%}; updated on failure")
            return replace(result, diff_ratio=ratio, baseline_written=True, message="Baseline updated on failure")

        stem = baseline.stem
        actual_path = self.pipeline.save_artifact(context, 'screenshots', f"{stem}-actual.png", actual_bytes)
        diff_path = None
        if diff_image is not None:
            buffer = io.BytesIO()
            diff_image.save(buffer, format='PNG')
            diff_path = self.pipeline.save_artifact(context, 'screenshots', f"{stem}-diff.png", buffer.getvalue())

        if size_mismatch:
            message = (f"Screenshot size {sizes[0][0]}x{sizes[0][1]} does not match baseline "
                       f"{sizes[1][0]}x{sizes[1][1]} for {baseline.name}")
        else:
            message = (f"{ratio:.2%} of pixels differ from {baseline.name} "
                       f"(allowed {thresholds.max_diff_pixel_ratio:.2%} at threshold {thresholds.threshold})")
        return replace(result, passed=False, diff_ratio=ratio,
                       actual_path=str(actual_path) if actual_path else None,
                       diff_path=str(diff_path) if diff_path else None,
                       message=message)

    async def _save_screenshot(self, page: Page, context: Optional[TestContext], name: str):
        if context is None:
            logger.debug(f"No test context; not saving screenshot {name}")
            return None
        return await self.pipeline.capture_screenshot(page, context, name)
