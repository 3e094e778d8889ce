"""
Environment detection: CI provider, host platform and system resources
"""

import os
import platform as platform_module
import random
import socket
import sys
import time
from dataclasses import asdict, dataclass, replace
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Tuple
import logging

import psutil

from e2e_orchestrator.models import (
    BrowserType, CIProvider, EnvironmentInfo, OperatingSystem
)

logger = logging.getLogger(__name__)


RELEVANT_ENV_VARS = (
    # CI
    'CI', 'GITHUB_ACTIONS', 'GITHUB_WORKFLOW', 'GITHUB_RUN_ID', 'GITHUB_JOB', 'GITHUB_SHA',
    'CIRCLECI', 'CIRCLE_BRANCH', 'CIRCLE_BUILD_NUM', 'CIRCLE_JOB',
    'TRAVIS', 'TRAVIS_BUILD_ID', 'TRAVIS_JOB_ID',
    'JENKINS_URL', 'BUILD_NUMBER', 'BUILD_BUILDID',
    # Playwright
    'PLAYWRIGHT_BROWSERS_PATH', 'PWDEBUG', 'PLAYWRIGHT_SKIP_BROWSER_DOWNLOAD',
    'PLAYWRIGHT_TEST_GREP', 'PLAYWRIGHT_TEST_GREP_INVERT',
    # Run selection
    'TEST_MODE', 'RUN_ALL_BROWSERS', 'LIGHTWEIGHT_TESTS', 'VISUAL_TESTS_ENABLED_IN_CI',
    'HEADLESS', 'DEBUG',
)

TRUTHY = ('1', 'true', 'yes', 'on')


@dataclass(frozen=True)
class DiagnosticsConfig:
    """Evidence collection defaults that differ between local and CI runs"""
    capture_screenshots_on_failure: bool
    capture_screenshots_on_success: bool
    capture_videos: bool
    verbose_logging: bool
    capture_network_traffic: bool
    capture_console_messages: bool
    collect_performance_metrics: bool
    performance_metrics_interval: int
    max_retries: int
    test_timeout: int
    artifact_path: str


LOCAL_DIAGNOSTICS = DiagnosticsConfig(
    capture_screenshots_on_failure=True,
    capture_screenshots_on_success=False,
    capture_videos=False,
    verbose_logging=True,
    capture_network_traffic=True,
    capture_console_messages=True,
    collect_performance_metrics=False,
    performance_metrics_interval=5000,
    max_retries=0,
    test_timeout=30000,
    artifact_path="test-results/e2e-artifacts",
)

CI_DIAGNOSTICS = replace(
    LOCAL_DIAGNOSTICS,
    capture_screenshots_on_success=True,
    capture_videos=True,
    collect_performance_metrics=True,
    performance_metrics_interval=1000,
    max_retries=2,
    test_timeout=60000,
)


class EnvironmentProbe:
    """
    Reads the process environment once and answers questions about it.

    The environment mapping is snapshotted at construction so callers can
    probe an arbitrary environment without touching os.environ.
    """

    def __init__(self, env: Optional[Mapping[str, str]] = None,
                 platform: Optional[str] = None):
        """
        Initialize environment probe

        Args:
            env: Environment variables to inspect (defaults to os.environ)
            platform: Platform string in sys.platform form (defaults to sys.platform)
        """
        self.env: Dict[str, str] = dict(os.environ if env is None else env)
        self.platform = platform or sys.platform
        self._info: Optional[EnvironmentInfo] = None

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.env.get(name, default)

    def is_ci(self) -> bool:
        """True when CI is "true"/"1" or GITHUB_ACTIONS is set"""
        return self.env.get('CI') in ('true', '1') or bool(self.env.get('GITHUB_ACTIONS'))

    def detect_provider(self) -> CIProvider:
        """Identify the CI provider from its marker variables; never raises"""
        if not self.is_ci():
            return CIProvider.LOCAL
        if self.env.get('GITHUB_ACTIONS'):
            return CIProvider.GITHUB_ACTIONS
        if self.env.get('CIRCLECI'):
            return CIProvider.CIRCLE_CI
        if self.env.get('JENKINS_URL'):
            return CIProvider.JENKINS
        if self.env.get('TRAVIS'):
            return CIProvider.TRAVIS
        if self.env.get('SYSTEM_TEAMFOUNDATIONCOLLECTIONURI'):
            return CIProvider.AZURE_PIPELINES
        return CIProvider.UNKNOWN

    def detect_os(self) -> OperatingSystem:
        if self.platform == 'win32':
            return OperatingSystem.WINDOWS
        if self.platform == 'darwin':
            return OperatingSystem.MACOS
        if self.platform.startswith('linux'):
            return OperatingSystem.LINUX
        return OperatingSystem.OTHER

    def get_ci_ids(self) -> Tuple[Optional[str], Optional[str]]:
        """
        Get provider-specific identifiers

        Returns:
            (pipeline_id, job_id), both None outside a known provider
        """
        keys = {
            CIProvider.GITHUB_ACTIONS: ('GITHUB_RUN_ID', 'GITHUB_JOB'),
            CIProvider.CIRCLE_CI: ('CIRCLE_WORKFLOW_ID', 'CIRCLE_BUILD_NUM'),
            CIProvider.JENKINS: ('BUILD_TAG', 'BUILD_NUMBER'),
            CIProvider.TRAVIS: ('TRAVIS_BUILD_ID', 'TRAVIS_JOB_ID'),
            CIProvider.AZURE_PIPELINES: ('BUILD_BUILDID', 'SYSTEM_JOBID'),
        }.get(self.detect_provider())
        if not keys:
            return None, None
        return self.env.get(keys[0]), self.env.get(keys[1])

    def is_debug(self) -> bool:
        return self.env.get('DEBUG', '').lower() in TRUTHY

    def is_headless(self) -> bool:
        return self.is_ci() or self.env.get('HEADLESS') in ('true', '1')

    def relevant_environment_variables(self) -> Dict[str, str]:
        return {name: self.env[name] for name in RELEVANT_ENV_VARS if name in self.env}

    def get_diagnostics_config(self) -> DiagnosticsConfig:
        return CI_DIAGNOSTICS if self.is_ci() else LOCAL_DIAGNOSTICS

    @staticmethod
    def get_system_resources() -> Dict[str, Any]:
        """
        Snapshot host resources. Each field degrades to None on failure.

        Returns:
            Dictionary with cpu_cores, total_memory, free_memory, hostname,
            load_average and disk usage
        """
        resources: Dict[str, Any] = {
            'cpu_cores': None,
            'total_memory': None,
            'free_memory': None,
            'hostname': None,
            'load_average': None,
            'disk_total': None,
            'disk_free': None,
        }
        try:
            resources['cpu_cores'] = psutil.cpu_count(logical=True)
        except Exception as e:
            logger.debug(f"Could not read CPU count: {e}")
        try:
            memory = psutil.virtual_memory()
            resources['total_memory'] = memory.total
            resources['free_memory'] = memory.available
        except Exception as e:
            logger.debug(f"Could not read memory info: {e}")
        try:
            resources['hostname'] = socket.gethostname()
        except Exception as e:
            logger.debug(f"Could not read hostname: {e}")
        try:
            resources['load_average'] = list(psutil.getloadavg())
        except Exception as e:
            logger.debug(f"Could not read load average: {e}")
        try:
            disk = psutil.disk_usage(os.getcwd())
            resources['disk_total'] = disk.total
            resources['disk_free'] = disk.free
        except Exception as e:
            logger.debug(f"Could not read disk usage: {e}")
        return resources

    @staticmethod
    def generate_run_id() -> str:
        return f"run-{int(time.time() * 1000)}-{random.randint(0, 9999)}"

    def detect(self) -> EnvironmentInfo:
        """Build the EnvironmentInfo once and return the cached value afterwards"""
        if self._info is not None:
            return self._info

        pipeline_id, job_id = self.get_ci_ids()
        resources = self.get_system_resources()
        self._info = EnvironmentInfo(
            is_ci=self.is_ci(),
            ci_provider=self.detect_provider(),
            ci_pipeline_id=pipeline_id,
            ci_job_id=job_id,
            os=self.detect_os(),
            platform=self.platform,
            hostname=resources['hostname'] or 'unknown',
            cpu_cores=resources['cpu_cores'],
            total_memory=resources['total_memory'],
            free_memory=resources['free_memory'],
            runtime_version=f"Python {platform_module.python_version()}",
            start_time=datetime.now(),
            run_id=self.generate_run_id(),
            debug=self.is_debug(),
            environment_variables=self.relevant_environment_variables(),
        )
        logger.debug(f"Detected environment: {self._info.ci_provider.value} on {self._info.os.value}")
        return self._info

    @staticmethod
    def browser_info(browser: Any) -> Tuple[BrowserType, Optional[str]]:
        """
        Map a Playwright Browser to its engine and version without raising

        Args:
            browser: Playwright Browser (or None)

        Returns:
            (BrowserType, version)
        """
        if browser is None:
            return BrowserType.UNKNOWN, None
        try:
            name = browser.browser_type.name
            browser_type = BrowserType(name) if name in BrowserType._value2member_map_ else BrowserType.UNKNOWN
        except Exception:
            browser_type = BrowserType.UNKNOWN
        try:
            version = browser.version
        except Exception:
            version = None
        return browser_type, version

    def with_browser(self, browser: Any) -> EnvironmentInfo:
        """Return a copy of the cached info carrying the browser details"""
        browser_type, version = self.browser_info(browser)
        return replace(self.detect(), browser_type=browser_type, browser_version=version)

    def diagnose(self) -> Dict[str, Any]:
        """Everything worth printing when an environment misbehaves"""
        info = self.detect()
        return {
            'environment': info.to_dict(),
            'resources': self.get_system_resources(),
            'headless': self.is_headless(),
            'diagnostics_config': asdict(self.get_diagnostics_config()),
        }
