"""
Per-test debugger: named steps, evidence capture on error and a run log
"""

import time
from contextlib import asynccontextmanager
from datetime import datetime
from enum import Enum
from typing import List, Optional, Sequence
import logging

from playwright.async_api import Page

from e2e_orchestrator.artifacts import ARTIFACT_SUBDIRS, ArtifactPipeline
from e2e_orchestrator.browser_metrics import MetricsCollector
from e2e_orchestrator.environment_probe import EnvironmentProbe
from e2e_orchestrator.filesystem_guard import FilesystemError
from e2e_orchestrator.models import FailureInfo, TestContext
from e2e_orchestrator.recorders import ConsoleRecorder, NetworkRecorder

logger = logging.getLogger(__name__)


class DebugLevel(str, Enum):
    """How much evidence the debugger collects"""
    ESSENTIAL = "essential"
    STANDARD = "standard"
    COMPREHENSIVE = "comprehensive"
    MAXIMUM = "maximum"


DETAILED_LEVELS = (DebugLevel.COMPREHENSIVE, DebugLevel.MAXIMUM)


class TestDebugger:
    """
    Wraps one test with evidence collection.

    Use guard() as the outermost context manager around a test body: it
    initializes collection, captures a failure bundle for any exception,
    re-raises the exception unchanged and always runs finalization.
    """
    __test__ = False

    def __init__(self, page: Page, context: TestContext, pipeline: ArtifactPipeline,
                 debug_level: DebugLevel = DebugLevel.STANDARD,
                 capture_performance_metrics: bool = True,
                 metrics_interval: int = 5000,
                 verbose: bool = True,
                 artifact_directories: Sequence[str] = ARTIFACT_SUBDIRS + ('logs',)):
        """
        Initialize test debugger

        Args:
            page: Playwright page object
            context: Per-test context
            pipeline: Artifact pipeline for the run
            debug_level: Requested level; CI upgrades standard to comprehensive
            capture_performance_metrics: Sample browser metrics while the test runs
            metrics_interval: Sampling interval in milliseconds
            verbose: Mirror debugger log lines to the logger at INFO
            artifact_directories: Subdirectories validated at start
        """
        self.page = page
        self.context = context
        self.pipeline = pipeline
        self.is_ci = pipeline.environment.is_ci
        if self.is_ci and debug_level == DebugLevel.STANDARD:
            debug_level = DebugLevel.COMPREHENSIVE
        self.debug_level = debug_level
        self.capture_performance_metrics = capture_performance_metrics
        self.metrics_interval = metrics_interval
        self.verbose = verbose
        self.artifact_directories = tuple(artifact_directories)
        self.logs: List[str] = []
        self.failures: List[FailureInfo] = []
        self.current_step: Optional[str] = None
        self.metrics: Optional[MetricsCollector] = None
        self._initialized = False
        self._finalized = False
        self._handled = set()

        self.log(f"Debugger attached to test: {context.title}")
        self.log(f"Debug level: {self.debug_level.value}")
        self.log(f"Running in CI: {'Yes' if self.is_ci else 'No'}")

    def log(self, message: str, is_error: bool = False):
        entry = f"[{datetime.now().isoformat()}] {'ERROR: ' if is_error else ''}{message}"
        self.logs.append(entry)
        if is_error:
            logger.error(message)
        elif self.verbose:
            logger.info(message)
        else:
            logger.debug(message)

    async def initialize(self):
        """Start recorders and metrics; failures here never fail the test"""
        if self._initialized:
            return
        try:
            browser_type, version = EnvironmentProbe.browser_info(self.page.context.browser)
            self.log(f"Browser: {browser_type.value} {version or ''}".rstrip())

            self._ensure_artifact_directories()

            if self.is_ci:
                self.pipeline.fs.apply_ci_optimizations(self.context.output_dir, self.pipeline.environment)

            console = ConsoleRecorder(self.page, echo=self.debug_level in DETAILED_LEVELS).start()
            self.context.recorders['console'] = console
            self.context.register_finalizer(console.stop)

            if self.debug_level != DebugLevel.ESSENTIAL:
                network = NetworkRecorder(self.page).start()
                self.context.recorders['network'] = network
                self.context.register_finalizer(network.stop)

            if self.capture_performance_metrics and self.debug_level != DebugLevel.ESSENTIAL:
                self.metrics = await MetricsCollector(
                    self.page, self.context.title, interval=self.metrics_interval).start()
                self.context.recorders['metrics'] = self.metrics
                self.context.register_finalizer(self.metrics.stop)
                self.log("Performance metrics collection started")

            self.pipeline.capture_environment_diagnostics(self.context)
            self._initialized = True
            self.log("Debugger initialization complete")
        except Exception as e:
            self.log(f"Initialization failed: {e}", is_error=True)

    def _ensure_artifact_directories(self):
        try:
            results = self.pipeline.fs.validate_artifact_structure(
                self.context.output_dir, self.artifact_directories)
        except FilesystemError as e:
            self.log(f"Failed to create artifact directories: {e.detailed_message()}", is_error=True)
            return
        if self.debug_level in DETAILED_LEVELS:
            for result in results:
                self.log(f"Directory {result.path}: {'OK' if result.has_permission else 'ISSUE'} "
                         f"(R:{'Yes' if result.readable else 'No'}, W:{'Yes' if result.writable else 'No'}, "
                         f"X:{'Yes' if result.executable else 'No'})")

    async def handle_error(self, error: BaseException, step_name: Optional[str] = None) -> Optional[FailureInfo]:
        """Capture a failure bundle once per exception object"""
        if id(error) in self._handled:
            return None
        self._handled.add(id(error))
        where = f" in step '{step_name}'" if step_name else ""
        self.log(f"Error encountered{where}: {error}", is_error=True)
        info = await self.pipeline.capture_failure(error, self.page, self.context, step_name)
        self.failures.append(info)
        self.log(f"Failure classified as {info.failure_type.value} (id {info.id})")
        return info

    @asynccontextmanager
    async def step(self, name: str):
        """Named step; errors are captured with the step name and re-raised"""
        previous = self.current_step
        self.current_step = name
        self.log(f"Starting step: {name}")
        start = time.monotonic()
        try:
            yield
            self.log(f"Completed step: {name} ({(time.monotonic() - start) * 1000:.0f}ms)")
        except Exception as e:
            await self.handle_error(e, name)
            raise
        finally:
            self.current_step = previous

    async def save_debug_log(self):
        path = self.pipeline.save_artifact(
            self.context, 'logs', f"test-debugger-{int(time.time() * 1000)}.log", "\n".join(self.logs))
        if path:
            self.context.attach('test-debugger.log', str(path), 'text/plain')
            logger.debug(f"Debug log saved to {path}")
        return path

    async def finalize(self, status: Optional[str] = None):
        """Stop metrics, persist them and the debugger log"""
        if self._finalized:
            return
        self._finalized = True
        if status:
            self.log(f"Test result: {status}")
        if self.metrics is not None:
            await self.metrics.stop()
            path = self.metrics.save(self.context, self.pipeline, f"metrics-{int(time.time() * 1000)}")
            if path:
                self.context.attach('performance-metrics.json', str(path), 'application/json')
        self.log("Debugger finalization complete")
        await self.save_debug_log()

    @asynccontextmanager
    async def guard(self):
        """
        Outermost wrapper for a test body

        Captures a failure bundle for any exception, re-raises it unmodified
        and always finalizes and runs the context's finalizers.
        """
        await self.initialize()
        status = "passed"
        try:
            yield self
        except Exception as e:
            status = "failed"
            await self.handle_error(e, self.current_step)
            raise
        finally:
            try:
                await self.finalize(status)
            finally:
                await self.context.run_finalizers()
