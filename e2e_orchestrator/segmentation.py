"""
Tag-based test segmentation and per-test timeout adjustment
"""

from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional, Union
import logging

from e2e_orchestrator.models import TestModeConfig, TestTag

logger = logging.getLogger(__name__)

SLOW_MULTIPLIER = 1.5
CRITICAL_MULTIPLIER = 1.2


class TestStability(str, Enum):
    """How often a test fails for reasons unrelated to the code under test"""
    __test__ = False

    STABLE = "stable"
    MODERATELY_FLAKY = "moderately-flaky"
    HIGHLY_FLAKY = "highly-flaky"


STABILITY_RETRIES = {
    TestStability.STABLE: (0, 1),
    TestStability.MODERATELY_FLAKY: (1, 2),
    TestStability.HIGHLY_FLAKY: (2, 3),
}


def stability_retries(stability: TestStability, is_ci: bool) -> int:
    """Retry budget for a stability class (local, CI)"""
    local, ci = STABILITY_RETRIES[stability]
    return ci if is_ci else local


def normalize_tag(tag: Union[str, TestTag]) -> str:
    value = tag.value if isinstance(tag, TestTag) else str(tag).strip()
    return value if value.startswith('@') else f"@{value}"


def extract_tags(title: str) -> FrozenSet[str]:
    """Whitespace-separated tokens of a title that start with '@'"""
    return frozenset(token for token in title.split() if token.startswith('@') and len(token) > 1)


def tag_title(title: str, tags: Iterable[Union[str, TestTag]]) -> str:
    """Prefix a title with tags so title-based filtering sees them"""
    prefix = ' '.join(normalize_tag(t) for t in tags)
    return f"{prefix} {title}" if prefix else title


def _as_tags(title_or_tags: Union[str, Iterable[Union[str, TestTag]]]) -> FrozenSet[str]:
    if isinstance(title_or_tags, str):
        return extract_tags(title_or_tags)
    return frozenset(normalize_tag(t) for t in title_or_tags)


class TagFilter:
    """Decides which tests run under a mode"""

    def __init__(self, config: TestModeConfig):
        """
        Initialize tag filter

        Args:
            config: Active test mode configuration
        """
        self.config = config

    def skip_reason(self, title_or_tags: Union[str, Iterable[Union[str, TestTag]]]) -> Optional[str]:
        """
        Explain why a test is skipped under the active mode

        Args:
            title_or_tags: Test title containing @tags, or an iterable of tags

        Returns:
            Reason string, or None when the test should run
        """
        tags = _as_tags(title_or_tags)
        mode = self.config.mode.value

        if TestTag.VISUAL.value in tags and not self.config.visual_testing_enabled:
            return f"Visual testing is disabled in {mode} mode"

        excluded = tags & self.config.exclude_tags
        if excluded:
            return f"Excluded by {', '.join(sorted(excluded))} in {mode} mode"

        if self.config.include_tags and not tags & self.config.include_tags:
            return f"Requires one of {', '.join(sorted(self.config.include_tags))} in {mode} mode"

        return None

    def should_skip(self, title_or_tags: Union[str, Iterable[Union[str, TestTag]]]) -> bool:
        return self.skip_reason(title_or_tags) is not None

    def get_adjusted_timeouts(self, title_or_tags: Union[str, Iterable[Union[str, TestTag]]] = ()) -> Dict[str, int]:
        """
        Mode timeouts scaled for @slow (x1.5) or @critical (x1.2) tests.
        Only the larger multiplier applies.

        Returns:
            Dictionary with test, action and navigation timeouts in ms
        """
        tags = _as_tags(title_or_tags)
        if TestTag.SLOW.value in tags:
            multiplier = SLOW_MULTIPLIER
        elif TestTag.CRITICAL.value in tags:
            multiplier = CRITICAL_MULTIPLIER
        else:
            multiplier = 1.0

        return {
            'test': round(self.config.test_timeout * multiplier),
            'action': round(self.config.action_timeout * multiplier),
            'navigation': round(self.config.navigation_timeout * multiplier),
        }
