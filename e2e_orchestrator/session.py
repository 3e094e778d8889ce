"""
Process-level harness: environment, mode and collaborators resolved once
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
import logging

from playwright.async_api import Page

from e2e_orchestrator.artifacts import ArtifactPipeline
from e2e_orchestrator.config_loader import ConfigLoader
from e2e_orchestrator.debugger import DebugLevel, TestDebugger
from e2e_orchestrator.environment_probe import EnvironmentProbe
from e2e_orchestrator.environment_validator import EnvironmentValidator
from e2e_orchestrator.failure_classifier import FailureClassifier
from e2e_orchestrator.filesystem_guard import FilesystemGuard
from e2e_orchestrator.models import (
    EnvironmentInfo, RetryPolicy, TestContext, TestModeConfig, UpdateMode
)
from e2e_orchestrator.modes import ModeResolver
from e2e_orchestrator.segmentation import TagFilter
from e2e_orchestrator.timeouts import TimeoutOperation, TimeoutTable
from e2e_orchestrator.visual import VisualComparator

logger = logging.getLogger(__name__)


@dataclass
class HarnessSession:
    """
    Everything a worker process needs, built once and passed explicitly.

    One session per worker; nothing here is shared across processes.
    """
    settings: Dict[str, Any]
    probe: EnvironmentProbe
    environment: EnvironmentInfo
    mode_config: TestModeConfig
    fs: FilesystemGuard
    tag_filter: TagFilter
    classifier: FailureClassifier
    timeouts: TimeoutTable
    pipeline: ArtifactPipeline
    update_mode: Optional[UpdateMode] = None
    extras: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(cls, env: Optional[Mapping[str, str]] = None,
               config_path: Optional[str] = None,
               settings: Optional[Dict[str, Any]] = None,
               classifier: Optional[FailureClassifier] = None,
               platform: Optional[str] = None) -> 'HarnessSession':
        """
        Probe the environment, resolve the mode and wire collaborators

        Args:
            env: Environment mapping (defaults to os.environ)
            config_path: YAML configuration file
            settings: Pre-loaded settings; skips loading config_path
            classifier: Custom failure classifier
            platform: sys.platform override

        Returns:
            HarnessSession
        """
        env = dict(os.environ if env is None else env)
        settings = settings if settings is not None else ConfigLoader.load_config(config_path, env)
        probe = EnvironmentProbe(env, platform=platform)
        environment = probe.detect()
        mode_config = ModeResolver(probe).resolve_config()
        fs = FilesystemGuard()
        classifier = classifier or FailureClassifier()

        artifact_settings = settings.get('artifacts', {})
        pipeline = ArtifactPipeline(
            environment,
            fs,
            classifier,
            root_dir=artifact_settings.get('root_dir', 'test-results/e2e-artifacts'),
            create_html_reports=artifact_settings.get('create_html_reports', True),
            capture_html=artifact_settings.get('capture_html', True),
        )

        session = cls(
            settings=settings,
            probe=probe,
            environment=environment,
            mode_config=mode_config,
            fs=fs,
            tag_filter=TagFilter(mode_config),
            classifier=classifier,
            timeouts=TimeoutTable(environment.is_ci, mode_config.mode),
            pipeline=pipeline,
            update_mode=cls._resolve_update_mode(probe, mode_config),
        )
        logger.info(f"Test mode: {mode_config.mode.value} ({mode_config.description})")
        logger.debug(f"Environment: {environment.ci_provider.value}, {environment.os.value}, "
                     f"run {environment.run_id}")
        return session

    @staticmethod
    def _resolve_update_mode(probe: EnvironmentProbe, mode_config: TestModeConfig) -> Optional[UpdateMode]:
        """An explicit PLAYWRIGHT_UPDATE_SNAPSHOTS wins over the mode's update mode"""
        explicit = probe.get('PLAYWRIGHT_UPDATE_SNAPSHOTS')
        if explicit:
            try:
                return UpdateMode(explicit)
            except ValueError:
                logger.warning(f"Invalid snapshot update mode '{explicit}', using mode default")
        return mode_config.visual_test_update_mode

    @property
    def artifacts_root(self) -> Path:
        return self.pipeline.root_dir

    def apply_environment(self, target=None):
        return ModeResolver.apply_environment(self.mode_config, target)

    def retry_policy(self, **overrides) -> RetryPolicy:
        """Retry policy from settings, with per-call overrides"""
        values = dict(self.settings.get('retry', {}))
        values.update(overrides)
        return RetryPolicy(**values)

    def new_context(self, title: str, file: Optional[str] = None, line: Optional[int] = None,
                    retry: int = 0, attach_hook=None) -> TestContext:
        return self.pipeline.new_context(title, file=file, line=line, retry=retry, attach_hook=attach_hook)

    def visual_comparator(self, snapshots_dir: Optional[str] = None) -> VisualComparator:
        visual = self.settings.get('visual', {})
        return VisualComparator(
            self.mode_config,
            self.environment,
            self.fs,
            snapshots_dir or visual.get('snapshots_dir', 'tests/snapshots'),
            soft_fail_in_ci=visual.get('soft_fail_in_ci', True),
            update_mode=self.update_mode,
            default_timeout=visual.get('default_timeout', 15000),
            stability_delay=visual.get('stability_delay', 200),
            animation_poll_interval=visual.get('animation_poll_interval', 100),
            element_stability_timeout=self.timeouts.get(TimeoutOperation.ELEMENT_STABILITY),
            pipeline=self.pipeline,
        )

    def debugger(self, page: Page, context: TestContext) -> TestDebugger:
        diagnostics = self.settings.get('diagnostics', {})
        interval = diagnostics.get('metrics_interval') or \
            self.probe.get_diagnostics_config().performance_metrics_interval
        return TestDebugger(
            page,
            context,
            self.pipeline,
            debug_level=DebugLevel(diagnostics.get('debug_level', 'standard')),
            capture_performance_metrics=diagnostics.get('capture_performance_metrics', True),
            metrics_interval=interval,
            verbose=self.mode_config.verbose_logging,
        )

    def validator(self) -> EnvironmentValidator:
        validation = self.settings.get('validation', {})
        return EnvironmentValidator(
            self.probe,
            self.fs,
            self.artifacts_root,
            required_subdirs=validation.get('required_subdirs', ()),
            required_ci_vars=validation.get('required_ci_vars', ()),
        )
