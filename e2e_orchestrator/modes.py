"""
Test mode resolution: maps the environment to one execution profile per run
"""

import os
from dataclasses import replace
from types import MappingProxyType
from typing import Any, Dict, List, MutableMapping, Optional
import logging

from e2e_orchestrator.environment_probe import EnvironmentProbe
from e2e_orchestrator.models import TestMode, TestModeConfig, TestTag, UpdateMode

logger = logging.getLogger(__name__)


def _env(**values: str) -> MappingProxyType:
    return MappingProxyType(dict(values))


DEFAULT_CONFIG = TestModeConfig(
    mode=TestMode.LOCAL_DEVELOPMENT,
    description="Default configuration",
)

CI_TIMEOUTS = dict(test_timeout=60000, action_timeout=30000, navigation_timeout=60000)

MODE_CONFIGS: Dict[TestMode, TestModeConfig] = {
    TestMode.LOCAL_DEVELOPMENT: replace(
        DEFAULT_CONFIG,
        mode=TestMode.LOCAL_DEVELOPMENT,
        description="Local development with fast feedback and visual testing enabled",
        environment_variables=_env(VISUAL_TESTS_ENABLED_IN_CI="0"),
    ),
    TestMode.CI_FUNCTIONAL: replace(
        DEFAULT_CONFIG,
        mode=TestMode.CI_FUNCTIONAL,
        description="CI functional tests only, visual tests excluded",
        exclude_tags=frozenset({TestTag.VISUAL.value}),
        retries=1,
        capture_videos=True,
        capture_traces="on",
        performance_threshold_multiplier=1.5,
        visual_testing_enabled=False,
        visual_test_threshold=0.35,
        environment_variables=_env(
            VISUAL_TESTS_ENABLED_IN_CI="0",
            PLAYWRIGHT_TEST_GREP_INVERT="@visual",
        ),
        **CI_TIMEOUTS,
    ),
    TestMode.CI_VISUAL: replace(
        DEFAULT_CONFIG,
        mode=TestMode.CI_VISUAL,
        description="CI visual regression tests only",
        include_tags=frozenset({TestTag.VISUAL.value}),
        retries=1,
        capture_screenshots_on_success=True,
        capture_videos=True,
        capture_traces="on",
        performance_threshold_multiplier=1.5,
        visual_testing_enabled=True,
        visual_test_update_mode=UpdateMode.MISSING,
        visual_test_threshold=0.35,
        environment_variables=_env(
            VISUAL_TESTS_ENABLED_IN_CI="1",
            PLAYWRIGHT_TEST_GREP="@visual",
            PLAYWRIGHT_UPDATE_SNAPSHOTS="missing",
        ),
        **CI_TIMEOUTS,
    ),
    TestMode.CI_FULL: replace(
        DEFAULT_CONFIG,
        mode=TestMode.CI_FULL,
        description="CI full suite across all browsers",
        retries=2,
        capture_videos=True,
        capture_traces="on",
        performance_threshold_multiplier=1.5,
        browsers=("chromium", "firefox", "webkit"),
        visual_testing_enabled=True,
        visual_test_update_mode=UpdateMode.MISSING,
        visual_test_threshold=0.35,
        environment_variables=_env(
            VISUAL_TESTS_ENABLED_IN_CI="1",
            RUN_ALL_BROWSERS="1",
        ),
        **CI_TIMEOUTS,
    ),
    TestMode.CI_LIGHTWEIGHT: replace(
        DEFAULT_CONFIG,
        mode=TestMode.CI_LIGHTWEIGHT,
        description="CI smoke run of functional tests on constrained runners",
        include_tags=frozenset({TestTag.FUNCTIONAL.value}),
        exclude_tags=frozenset({TestTag.VISUAL.value, TestTag.PERFORMANCE.value}),
        retries=1,
        capture_traces="on-first-retry",
        performance_threshold_multiplier=2.0,
        test_timeout=45000,
        action_timeout=20000,
        navigation_timeout=45000,
        visual_testing_enabled=False,
        visual_test_threshold=0.35,
        verbose_logging=False,
        environment_variables=_env(
            VISUAL_TESTS_ENABLED_IN_CI="0",
            PLAYWRIGHT_TEST_GREP="@functional",
            PLAYWRIGHT_TEST_GREP_INVERT="@visual\\|@performance",
            LIGHTWEIGHT_TESTS="true",
        ),
    ),
}


def is_ci_mode(mode: TestMode) -> bool:
    return mode != TestMode.LOCAL_DEVELOPMENT


class ModeResolver:
    """Chooses the test mode from the environment and looks up its config"""

    def __init__(self, probe: Optional[EnvironmentProbe] = None):
        """
        Initialize mode resolver

        Args:
            probe: Environment probe to read variables from (defaults to os.environ)
        """
        self.probe = probe or EnvironmentProbe()

    def resolve(self) -> TestMode:
        """
        Determine the mode. An explicit valid TEST_MODE wins; otherwise CI
        runs are routed by their selection flags and local runs use
        local-development.
        """
        explicit = self.probe.get('TEST_MODE')
        if explicit:
            try:
                return TestMode(explicit)
            except ValueError:
                logger.warning(f"Ignoring unknown TEST_MODE '{explicit}'")

        if not self.probe.is_ci():
            return TestMode.LOCAL_DEVELOPMENT

        if (self.probe.get('PLAYWRIGHT_TEST_GREP') == '@visual'
                or self.probe.get('VISUAL_TESTS_ENABLED_IN_CI') == '1'):
            return TestMode.CI_VISUAL
        if self.probe.get('LIGHTWEIGHT_TESTS') == 'true':
            return TestMode.CI_LIGHTWEIGHT
        if self.probe.get('RUN_ALL_BROWSERS') == '1':
            return TestMode.CI_FULL
        return TestMode.CI_FUNCTIONAL

    @staticmethod
    def get_config(mode: TestMode) -> TestModeConfig:
        """Pure lookup of the canonical config for a mode"""
        return MODE_CONFIGS[TestMode(mode)]

    def resolve_config(self) -> TestModeConfig:
        return self.get_config(self.resolve())

    @staticmethod
    def apply_environment(config: TestModeConfig,
                          target: Optional[MutableMapping[str, str]] = None) -> List[str]:
        """
        Export a mode's variables so child processes resolve the same mode

        Args:
            config: Mode configuration to export
            target: Mapping to write into (defaults to os.environ)

        Returns:
            Names of the variables whose value changed
        """
        target = os.environ if target is None else target
        values = dict(config.environment_variables)
        values.update({
            'TEST_MODE': config.mode.value,
            'PLAYWRIGHT_RETRIES': str(config.retries),
            'PLAYWRIGHT_TIMEOUT': str(config.test_timeout),
            'PLAYWRIGHT_ACTION_TIMEOUT': str(config.action_timeout),
            'PLAYWRIGHT_NAVIGATION_TIMEOUT': str(config.navigation_timeout),
        })

        changed = []
        for name, value in values.items():
            if target.get(name) != value:
                target[name] = value
                changed.append(name)
        if changed:
            logger.debug(f"Applied {config.mode.value} environment: {', '.join(changed)}")
        return changed

    @staticmethod
    def summary(config: TestModeConfig) -> Dict[str, Any]:
        """Flat description of a config for logs and the CLI"""
        return {
            'mode': config.mode.value,
            'description': config.description,
            'include_tags': sorted(config.include_tags),
            'exclude_tags': sorted(config.exclude_tags),
            'retries': config.retries,
            'browsers': list(config.browsers),
            'timeouts': {
                'test': config.test_timeout,
                'action': config.action_timeout,
                'navigation': config.navigation_timeout,
            },
            'visual_testing_enabled': config.visual_testing_enabled,
            'visual_test_update_mode': (config.visual_test_update_mode.value
                                        if config.visual_test_update_mode else None),
            'visual_test_threshold': config.visual_test_threshold,
            'capture': {
                'screenshots_on_failure': config.capture_screenshots_on_failure,
                'screenshots_on_success': config.capture_screenshots_on_success,
                'videos': config.capture_videos,
                'traces': config.capture_traces,
            },
            'performance_threshold_multiplier': config.performance_threshold_multiplier,
            'verbose_logging': config.verbose_logging,
            'environment_variables': dict(config.environment_variables),
        }
