"""
Data models shared by the orchestration and diagnostics layers
"""

import time
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Tuple
import logging

logger = logging.getLogger(__name__)


class CIProvider(str, Enum):
    """Continuous integration provider"""
    UNKNOWN = "unknown"
    GITHUB_ACTIONS = "github-actions"
    CIRCLE_CI = "circle-ci"
    JENKINS = "jenkins"
    TRAVIS = "travis"
    AZURE_PIPELINES = "azure-pipelines"
    LOCAL = "local"


class OperatingSystem(str, Enum):
    """Host operating system"""
    WINDOWS = "windows"
    MACOS = "macos"
    LINUX = "linux"
    OTHER = "other"


class BrowserType(str, Enum):
    """Browser engine driving the page"""
    CHROMIUM = "chromium"
    FIREFOX = "firefox"
    WEBKIT = "webkit"
    UNKNOWN = "unknown"


class TestMode(str, Enum):
    """Execution profile selected once per run"""
    __test__ = False

    LOCAL_DEVELOPMENT = "local-development"
    CI_FUNCTIONAL = "ci-functional"
    CI_VISUAL = "ci-visual"
    CI_FULL = "ci-full"
    CI_LIGHTWEIGHT = "ci-lightweight"


class TestTag(str, Enum):
    """Tags used to segment tests"""
    __test__ = False

    VISUAL = "@visual"
    FUNCTIONAL = "@functional"
    PERFORMANCE = "@performance"
    A11Y = "@a11y"
    FLAKY = "@flaky"
    CRITICAL = "@critical"
    SLOW = "@slow"


class UpdateMode(str, Enum):
    """Baseline update policy for visual comparisons"""
    ALL = "all"
    MISSING = "missing"
    ON_FAILURE = "on-failure"


class FailureType(str, Enum):
    """Failure category assigned by the classifier"""
    TIMEOUT = "timeout"
    NETWORK = "network-error"
    ELEMENT_NOT_FOUND = "element-not-found"
    ASSERTION = "assertion"
    NAVIGATION = "navigation"
    INTERACTION = "element-interaction"
    PERMISSION = "permission-error"
    JS_ERROR = "js-error"
    ENVIRONMENT = "environment-error"
    UNKNOWN = "unknown"


class FilesystemErrorCode(str, Enum):
    """Error codes raised by the filesystem guard"""
    PATH_NOT_FOUND = "PATH_NOT_FOUND"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    PATH_NOT_DIRECTORY = "PATH_NOT_DIRECTORY"
    PATH_ALREADY_EXISTS = "PATH_ALREADY_EXISTS"
    WRITE_ERROR = "WRITE_ERROR"
    READ_ERROR = "READ_ERROR"
    INVALID_PATH = "INVALID_PATH"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


@dataclass(frozen=True)
class Viewport:
    """Viewport dimensions in CSS pixels"""
    width: int
    height: int

    def to_dict(self) -> Dict[str, int]:
        return {'width': self.width, 'height': self.height}


class StandardViewport(str, Enum):
    """Named viewports used by visual comparisons"""
    MOBILE = "mobile"
    TABLET = "tablet"
    DESKTOP = "desktop"
    LARGE_DESKTOP = "large-desktop"

    @property
    def size(self) -> Viewport:
        return STANDARD_VIEWPORT_SIZES[self]


STANDARD_VIEWPORT_SIZES: Dict[StandardViewport, Viewport] = {
    StandardViewport.MOBILE: Viewport(375, 667),
    StandardViewport.TABLET: Viewport(768, 1024),
    StandardViewport.DESKTOP: Viewport(1280, 800),
    StandardViewport.LARGE_DESKTOP: Viewport(1920, 1080),
}


@dataclass(frozen=True)
class ThresholdPreset:
    """Pixel comparison tolerance"""
    threshold: float
    max_diff_pixel_ratio: float


@dataclass(frozen=True)
class EnvironmentInfo:
    """Snapshot of the host the run executes on"""
    is_ci: bool
    ci_provider: CIProvider
    os: OperatingSystem
    platform: str
    hostname: str
    runtime_version: str
    start_time: datetime
    run_id: str
    ci_pipeline_id: Optional[str] = None
    ci_job_id: Optional[str] = None
    cpu_cores: Optional[int] = None
    total_memory: Optional[int] = None
    free_memory: Optional[int] = None
    browser_type: Optional[BrowserType] = None
    browser_version: Optional[str] = None
    debug: bool = False
    environment_variables: Mapping[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Serialise to plain JSON-compatible values"""
        return {
            'is_ci': self.is_ci,
            'ci_provider': self.ci_provider.value,
            'ci_pipeline_id': self.ci_pipeline_id,
            'ci_job_id': self.ci_job_id,
            'os': self.os.value,
            'platform': self.platform,
            'hostname': self.hostname,
            'cpu_cores': self.cpu_cores,
            'total_memory': self.total_memory,
            'free_memory': self.free_memory,
            'runtime_version': self.runtime_version,
            'start_time': self.start_time.isoformat(),
            'run_id': self.run_id,
            'browser_type': self.browser_type.value if self.browser_type else None,
            'browser_version': self.browser_version,
            'debug': self.debug,
            'environment_variables': dict(self.environment_variables),
        }


@dataclass(frozen=True)
class TestModeConfig:
    """Resolved execution profile for one mode"""
    __test__ = False

    mode: TestMode
    description: str
    include_tags: FrozenSet[str] = frozenset()
    exclude_tags: FrozenSet[str] = frozenset()
    retries: int = 0
    capture_screenshots_on_failure: bool = True
    capture_screenshots_on_success: bool = False
    capture_videos: bool = False
    capture_traces: str = "on-first-retry"
    performance_threshold_multiplier: float = 1.0
    browsers: Tuple[str, ...] = ("chromium",)
    test_timeout: int = 30000
    action_timeout: int = 15000
    navigation_timeout: int = 30000
    visual_testing_enabled: bool = True
    visual_test_update_mode: Optional[UpdateMode] = None
    visual_test_threshold: float = 0.2
    verbose_logging: bool = True
    environment_variables: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with exponential backoff; all durations in milliseconds"""
    retries: int = 3
    delay: int = 1000
    backoff: float = 1.5
    max_delay: int = 10000

    def __post_init__(self):
        if self.retries < 0:
            raise ValueError(f"retries must be >= 0, got {self.retries}")
        if self.delay <= 0:
            raise ValueError(f"delay must be > 0, got {self.delay}")
        if self.backoff < 1:
            raise ValueError(f"backoff must be >= 1, got {self.backoff}")
        if self.max_delay < self.delay:
            raise ValueError(f"max_delay must be >= delay, got {self.max_delay}")

    def delay_for(self, attempt: int) -> float:
        """Delay in ms to wait after the given failed attempt (1-based)"""
        return min(self.delay * self.backoff ** (attempt - 1), self.max_delay)


@dataclass(frozen=True)
class PermissionResult:
    """Result of a permission probe; never cached"""
    path: str
    readable: bool = False
    writable: bool = False
    executable: bool = False
    is_directory: bool = False
    is_file: bool = False
    error: Optional[str] = None

    @property
    def has_permission(self) -> bool:
        return self.readable and self.writable


@dataclass(frozen=True)
class FailureInfo:
    """Immutable forensic record of one test failure"""
    id: str
    timestamp: datetime
    test_title: str
    failure_message: str
    failure_type: FailureType
    environment: Dict[str, Any]
    test_metadata: Dict[str, Any]
    resources: Dict[str, Any]
    artifacts: Dict[str, Optional[str]]
    failure_stack: Optional[str] = None
    step_name: Optional[str] = None
    page_url: Optional[str] = None
    page_summary: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        data['failure_type'] = self.failure_type.value
        return data


@dataclass
class Attachment:
    """A file handed to the host runner's report"""
    name: str
    path: str
    content_type: str


@dataclass
class TestContext:
    """
    Per-test state: artifact directory, attachments and finalizers.

    Finalizers run in reverse registration order and are how background
    work (metrics collection, recorders) is guaranteed to stop.
    """
    __test__ = False

    title: str
    output_dir: Path
    file: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None
    retry: int = 0
    start_time: float = field(default_factory=time.monotonic)
    attachments: List[Attachment] = field(default_factory=list)
    attach_hook: Optional[Callable[[Attachment], None]] = None
    recorders: Dict[str, Any] = field(default_factory=dict)
    page: Optional[Any] = None
    failures: List[FailureInfo] = field(default_factory=list)
    _finalizers: List[Callable[[], Any]] = field(default_factory=list, repr=False)

    @property
    def attempt(self) -> int:
        return self.retry + 1

    @property
    def duration_ms(self) -> int:
        return int((time.monotonic() - self.start_time) * 1000)

    def attach(self, name: str, path: str, content_type: str) -> Attachment:
        """Record an attachment and forward it to the host hook if present"""
        attachment = Attachment(name=name, path=str(path), content_type=content_type)
        self.attachments.append(attachment)
        if self.attach_hook is not None:
            self.attach_hook(attachment)
        return attachment

    def register_finalizer(self, finalizer: Callable[[], Any]):
        """Register a callable (sync or async) to run when the test ends"""
        self._finalizers.append(finalizer)

    async def run_finalizers(self):
        """Run every registered finalizer once; errors are logged, not raised"""
        while self._finalizers:
            finalizer = self._finalizers.pop()
            try:
                result = finalizer()
                if hasattr(result, '__await__'):
                    await result
            except Exception as e:
                logger.warning(f"Finalizer failed for '{self.title}': {e}")
