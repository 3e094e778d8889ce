"""
Failure classification by ordered substring patterns
"""

import traceback
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple
import logging

from e2e_orchestrator.models import FailureType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FailurePattern:
    """A failure type and the case-sensitive needles that identify it"""
    failure_type: FailureType
    needles: Tuple[str, ...]

    def matches(self, text: str) -> bool:
        return any(needle in text for needle in self.needles)


# First match wins
DEFAULT_PATTERNS: Tuple[FailurePattern, ...] = (
    FailurePattern(FailureType.TIMEOUT, (
        'timeout', 'timed out', 'Timeout', 'Timed out', 'TimeoutError',
    )),
    FailurePattern(FailureType.NETWORK, (
        'net::ERR_', 'ECONNREFUSED', 'network error', 'Navigation failed',
        'ConnectionRefusedError', 'ConnectionResetError',
    )),
    FailurePattern(FailureType.ELEMENT_NOT_FOUND, (
        'Cannot find element', 'waiting for selector', 'waiting for locator', 'element not found',
    )),
    FailurePattern(FailureType.ASSERTION, (
        'expect(', 'AssertionError',
    )),
    FailurePattern(FailureType.NAVIGATION, (
        'navigation failed', 'page.goto', 'Page.goto',
    )),
    FailurePattern(FailureType.INTERACTION, (
        'click', 'type', 'press', 'fill',
    )),
    FailurePattern(FailureType.PERMISSION, (
        'EACCES', 'permission denied', 'Permission denied', 'PermissionError',
    )),
    FailurePattern(FailureType.JS_ERROR, (
        'ReferenceError', 'TypeError', 'SyntaxError', 'Cannot read property',
    )),
    FailurePattern(FailureType.ENVIRONMENT, (
        'environment', 'CI environment', 'system error',
    )),
)

GENERAL_SUGGESTIONS = [
    "Check the screenshot and video recordings to see the state of the UI at failure time",
    "Examine the test's file and line number to understand the context of the failure",
    "Consider whether the failure is consistent or intermittent",
]

SUGGESTIONS = {
    FailureType.TIMEOUT: [
        "Increase the timeout value for the action or test",
        "Check for long-running animations or network requests",
        "Verify that the expected condition will actually be met",
        "Consider if the selector is correct and the element appears in the DOM",
    ],
    FailureType.ELEMENT_NOT_FOUND: [
        "Verify the selector is correct and matches the expected element",
        "Check if the element is being added to the DOM asynchronously",
        "Consider if the element is inside an iframe or shadow DOM",
        "Try using a more robust selector (data-testid is recommended)",
    ],
    FailureType.NETWORK: [
        "Check if the server is running and accessible",
        "Examine if there are CORS issues or certificate problems",
        "Verify network conditions and firewall settings",
        "Look for network timeouts or connection resets",
    ],
    FailureType.ASSERTION: [
        "Verify the expected value matches the actual value",
        "Consider if the assertion needs to wait for a state change",
        "Check if there are timing issues with the assertion",
        "Look for inconsistencies between environments (CI vs local)",
    ],
    FailureType.INTERACTION: [
        "Check if the element is visible, enabled and not covered by another element",
        "Verify the element is in the viewport and not off-screen",
        "Look for animation or transition issues affecting interaction",
        "Consider if the element changes state during interaction",
    ],
    FailureType.PERMISSION: [
        "Check file and directory permissions",
        "Verify the test has the necessary permissions for the operation",
        "Look for environment-specific permission issues (CI vs local)",
        "Consider if there are permission issues with artifact directories",
    ],
    FailureType.JS_ERROR: [
        "Examine the exact error type and message",
        "Check for undefined properties or null references",
        "Look for type errors or syntax issues",
        "Consider if there are browser compatibility issues",
    ],
    FailureType.ENVIRONMENT: [
        "Check system resource availability (memory, disk space)",
        "Verify environment variables are set correctly",
        "Look for CI-specific configuration issues",
        "Consider differences between CI and local environments",
    ],
    FailureType.NAVIGATION: [
        "Verify the URL is correct and accessible",
        "Check for redirect issues or navigation timeouts",
        "Look for HTTPS/certificate problems",
        "Consider if there are authentication or session issues",
    ],
}

CI_SUGGESTIONS = [
    "Check CI runner resource constraints (memory, CPU)",
    "Verify artifact paths and permissions in CI environment",
    "Look for differences in browser behavior between CI and local",
    "Consider timeouts and performance differences in CI",
]


def format_stack(error: BaseException) -> str:
    """
    Frame locations plus exception type names, without source lines.

    Source lines are left out so that code such as ``timeout=5000`` in a
    frame does not leak into classification.
    """
    parts = []
    current: Optional[BaseException] = error
    seen = set()
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        frames = traceback.extract_tb(current.__traceback__)
        parts.extend(f'  File "{f.filename}", line {f.lineno}, in {f.name}' for f in frames)
        parts.append(f"{type(current).__name__}: {current}")
        current = current.__cause__ or current.__context__
    return "\n".join(parts)


class FailureClassifier:
    """Maps an exception to a FailureType using an ordered pattern list"""

    def __init__(self, patterns: Optional[Sequence[FailurePattern]] = None):
        self.patterns: Tuple[FailurePattern, ...] = tuple(patterns or DEFAULT_PATTERNS)

    def classify(self, error: BaseException) -> FailureType:
        """
        Classify an error by its message and stack text

        Args:
            error: The exception raised by the test

        Returns:
            First matching FailureType, or UNKNOWN
        """
        return self.classify_text(f"{error}\n{format_stack(error)}")

    def classify_text(self, text: str) -> FailureType:
        for pattern in self.patterns:
            if pattern.matches(text):
                return pattern.failure_type
        return FailureType.UNKNOWN

    def extended(self, patterns: Sequence[FailurePattern],
                 before: Optional[FailureType] = None) -> 'FailureClassifier':
        """
        New classifier with extra patterns

        Args:
            patterns: Patterns to add
            before: Insert ahead of the first pattern of this type (appends if None)
        """
        existing: List[FailurePattern] = list(self.patterns)
        index = len(existing)
        if before is not None:
            index = next((i for i, p in enumerate(existing) if p.failure_type == before), index)
        return FailureClassifier(existing[:index] + list(patterns) + existing[index:])


def troubleshooting_suggestions(failure_type: FailureType, is_ci: bool) -> List[str]:
    """General, type-specific and CI-specific hints for a failure"""
    suggestions = list(GENERAL_SUGGESTIONS)
    suggestions.extend(SUGGESTIONS.get(failure_type, []))
    if is_ci:
        suggestions.extend(CI_SUGGESTIONS)
    return suggestions
