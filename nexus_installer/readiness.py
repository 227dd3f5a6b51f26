"""Bounded retry-with-sleep convergence for external dependencies.

The poller only decides *whether* a dependency converged. What a timeout means
for the run (abort or warn) is declared on the check and enforced by the step
engine.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)


class TimeoutPolicy(str, Enum):
    HARD_FAIL = "hard_fail"
    SOFT_WARN = "soft_warn"


class ReadinessOutcome(str, Enum):
    READY = "ready"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class ReadinessCheck:
    name: str
    predicate: Callable[[], bool]
    interval: float = 1.0
    max_attempts: int = 10
    timeout_policy: TimeoutPolicy = TimeoutPolicy.HARD_FAIL

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.interval < 0:
            raise ValueError("interval must not be negative")


@dataclass(frozen=True)
class ReadinessResult:
    check: str
    outcome: ReadinessOutcome
    attempts: int
    elapsed: float

    @property
    def ready(self) -> bool:
        return self.outcome is ReadinessOutcome.READY


class ReadinessPoller:
    def __init__(
        self,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sleep = sleep
        self._clock = clock

    def wait(self, check: ReadinessCheck) -> ReadinessResult:
        logger.info(
            "Waiting for %s (up to %s attempts, %.1fs apart)",
            check.name,
            check.max_attempts,
            check.interval,
        )
        started = self._clock()
        for attempt in range(1, check.max_attempts + 1):
            if check.predicate():
                elapsed = self._clock() - started
                logger.info("%s ready after %s attempt(s) (%.1fs)", check.name, attempt, elapsed)
                return ReadinessResult(check.name, ReadinessOutcome.READY, attempt, elapsed)
            logger.debug("%s not ready (attempt %s/%s)", check.name, attempt, check.max_attempts)
            if attempt < check.max_attempts:
                self._sleep(check.interval)

        elapsed = self._clock() - started
        logger.warning("%s not ready after %s attempts (%.1fs)", check.name, check.max_attempts, elapsed)
        return ReadinessResult(check.name, ReadinessOutcome.TIMED_OUT, check.max_attempts, elapsed)
