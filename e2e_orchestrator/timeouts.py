"""
Per-operation timeouts scaled for the execution environment
"""

from enum import Enum
from typing import Dict, Optional
import logging

from e2e_orchestrator.models import TestMode

logger = logging.getLogger(__name__)


class TimeoutOperation(str, Enum):
    """Operations with their own timeout budget"""
    ELEMENT_WAIT = "element_wait"
    FORM_READY = "form_ready"
    NETWORK_IDLE = "network_idle"
    NAVIGATION = "navigation"
    API_CALL = "api_call"
    ELEMENT_STABILITY = "element_stability"


BASE_TIMEOUTS: Dict[TimeoutOperation, int] = {
    TimeoutOperation.ELEMENT_WAIT: 10000,
    TimeoutOperation.FORM_READY: 15000,
    TimeoutOperation.NETWORK_IDLE: 20000,
    TimeoutOperation.NAVIGATION: 30000,
    TimeoutOperation.API_CALL: 15000,
    TimeoutOperation.ELEMENT_STABILITY: 5000,
}

MAX_TIMEOUTS: Dict[TimeoutOperation, int] = {
    TimeoutOperation.ELEMENT_WAIT: 60000,
    TimeoutOperation.FORM_READY: 90000,
    TimeoutOperation.NETWORK_IDLE: 120000,
    TimeoutOperation.NAVIGATION: 120000,
    TimeoutOperation.API_CALL: 60000,
    TimeoutOperation.ELEMENT_STABILITY: 30000,
}

LOCAL_MULTIPLIER = 1.0
CI_MULTIPLIER = 2.5
CI_LIGHTWEIGHT_MULTIPLIER = 2.0
CI_FULL_MULTIPLIER = 3.0

# Cap for ad-hoc values passed through adjust()
MAX_ADJUSTED_TIMEOUT = 120000


class TimeoutTable:
    """Operation timeouts for one run"""

    def __init__(self, is_ci: bool, mode: TestMode,
                 overrides: Optional[Dict[TimeoutOperation, int]] = None):
        """
        Initialize timeout table

        Args:
            is_ci: Whether the run executes on a CI runner
            mode: Active test mode
            overrides: Fixed values for individual operations
        """
        self.is_ci = is_ci
        self.mode = mode
        self.overrides = dict(overrides or {})

    @property
    def multiplier(self) -> float:
        if not self.is_ci:
            return LOCAL_MULTIPLIER
        if self.mode == TestMode.CI_LIGHTWEIGHT:
            return CI_LIGHTWEIGHT_MULTIPLIER
        if self.mode == TestMode.CI_FULL:
            return CI_FULL_MULTIPLIER
        return CI_MULTIPLIER

    def get(self, operation: TimeoutOperation, multiplier: Optional[float] = None) -> int:
        """
        Timeout for an operation, bounded by its maximum

        Args:
            operation: Operation to time
            multiplier: Explicit multiplier replacing the environment one

        Returns:
            Timeout in milliseconds
        """
        operation = TimeoutOperation(operation)
        if operation in self.overrides:
            return self.overrides[operation]
        factor = self.multiplier if multiplier is None else multiplier
        return min(round(BASE_TIMEOUTS[operation] * factor), MAX_TIMEOUTS[operation])

    def all(self) -> Dict[str, int]:
        return {op.value: self.get(op) for op in TimeoutOperation}

    def adjust(self, base_timeout: int, multiplier: Optional[float] = None) -> int:
        """Scale an arbitrary timeout on CI; local runs get it unchanged"""
        if not self.is_ci:
            return base_timeout
        factor = self.multiplier if multiplier is None else multiplier
        return min(round(base_timeout * factor), MAX_ADJUSTED_TIMEOUT)

    def log_configuration(self):
        logger.info(f"Timeouts for {'CI' if self.is_ci else 'local'} run "
                    f"({self.mode.value}, x{self.multiplier}):")
        for op in TimeoutOperation:
            logger.info(f"  {op.value}: {self.get(op)}ms (base: {BASE_TIMEOUTS[op]}ms)")
