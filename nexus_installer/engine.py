from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import logging
from pathlib import Path
from typing import Any, Callable, Sequence

from nexus_installer.errors import ConfigurationException, FatalStepFailure, ReadinessTimeout, StepWarning
from nexus_installer.prompts import PromptProvider, ScriptedPrompts
from nexus_installer.readiness import ReadinessCheck, ReadinessPoller, TimeoutPolicy

logger = logging.getLogger(__name__)


class FailurePolicy(str, Enum):
    FATAL = "fatal"
    WARN = "warn"
    IGNORE = "ignore"


class CheckStatus(str, Enum):
    PASSED = "passed"
    WARNED = "warned"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class CheckResult:
    name: str
    status: CheckStatus
    message: str = ""
    section: str | None = None


@dataclass
class InstallationReport:
    results: list[CheckResult] = field(default_factory=list)
    warnings: list[StepWarning] = field(default_factory=list)
    fatal: FatalStepFailure | None = None
    log_path: Path | None = None
    details: dict[str, Any] = field(default_factory=dict)
    # Names of steps whose apply ran during this invocation.
    applied: list[str] = field(default_factory=list)

    def record(
        self,
        name: str,
        status: CheckStatus,
        message: str = "",
        *,
        section: str | None = None,
    ) -> CheckResult:
        result = CheckResult(name=name, status=status, message=message, section=section)
        self.results.append(result)
        return result

    def _count(self, status: CheckStatus) -> int:
        return sum(1 for result in self.results if result.status is status)

    @property
    def passed(self) -> int:
        return self._count(CheckStatus.PASSED)

    @property
    def failed(self) -> int:
        return self._count(CheckStatus.FAILED)

    @property
    def warned(self) -> int:
        return self._count(CheckStatus.WARNED)

    @property
    def healthy(self) -> bool:
        return self.fatal is None and self.failed == 0

    @property
    def exit_code(self) -> int:
        return self.failed

    def status_of(self, name: str) -> CheckStatus | None:
        for result in reversed(self.results):
            if result.name == name:
                return result.status
        return None

    def extend(self, other: InstallationReport) -> None:
        self.results.extend(other.results)
        self.warnings.extend(other.warnings)
        self.details.update(other.details)
        if self.fatal is None:
            self.fatal = other.fatal

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "failed": self.failed,
            "warned": self.warned,
            "fatal": str(self.fatal) if self.fatal else None,
            "log_path": str(self.log_path) if self.log_path else None,
            "results": [
                {
                    "name": result.name,
                    "status": result.status.value,
                    "message": result.message,
                    "section": result.section,
                }
                for result in self.results
            ],
            "details": self.details,
        }


@dataclass
class Step:
    """An idempotent unit of provisioning work.

    ``probe`` must be side-effect free and returns True when the step's
    postcondition already holds. ``apply`` performs the work and raises on
    failure; it must tolerate a previous partial run.
    """

    name: str
    probe: Callable[[], bool]
    apply: Callable[[], object]
    policy: FailurePolicy = FailurePolicy.FATAL
    readiness: ReadinessCheck | None = None
    confirm: str | None = None
    requires: str | None = None
    section: str | None = None


def validate_plan(plan: Sequence[Step]) -> None:
    seen: set[str] = set()
    for step in plan:
        if step.name in seen:
            raise ConfigurationException(f"Duplicate step name in plan: {step.name}")
        if step.requires is not None and step.requires not in seen:
            raise ConfigurationException(
                f"Step {step.name!r} requires {step.requires!r}, which does not run before it"
            )
        seen.add(step.name)


_BLOCKING_STATUSES = (CheckStatus.SKIPPED, CheckStatus.FAILED)


class StepEngine:
    def __init__(
        self,
        *,
        prompts: PromptProvider | None = None,
        poller: ReadinessPoller | None = None,
    ) -> None:
        self._prompts = prompts or ScriptedPrompts()
        self._poller = poller or ReadinessPoller()

    def run(self, plan: Sequence[Step], *, report: InstallationReport | None = None) -> InstallationReport:
        validate_plan(plan)
        report = report if report is not None else InstallationReport()
        section: str | None = None

        for index, step in enumerate(plan):
            if step.section and step.section != section:
                section = step.section
                logger.info("=== %s ===", section)

            if step.requires and report.status_of(step.requires) in _BLOCKING_STATUSES:
                logger.info("[-] %s: skipped (%s not done)", step.name, step.requires)
                report.record(step.name, CheckStatus.SKIPPED, f"requires {step.requires}", section=step.section)
                continue

            try:
                if step.probe():
                    logger.info("[ok] %s: already satisfied", step.name)
                    report.record(step.name, CheckStatus.PASSED, "already satisfied", section=step.section)
                    continue

                if step.confirm is not None and not self._prompts.confirm(step.confirm):
                    logger.info("[-] %s: declined", step.name)
                    report.record(step.name, CheckStatus.SKIPPED, "declined", section=step.section)
                    continue

                logger.info("[->] %s", step.name)
                report.applied.append(step.name)
                step.apply()
                self._await_readiness(step)
            except StepWarning as warning:
                if warning.step_name is None:
                    warning.step_name = step.name
                self._warn(report, step, warning)
                continue
            except Exception as exc:
                if self._fail(report, step, exc, remaining=len(plan) - index - 1):
                    break
                continue

            logger.info("[ok] %s", step.name)
            report.record(step.name, CheckStatus.PASSED, "applied", section=step.section)

        return report

    def _await_readiness(self, step: Step) -> None:
        check = step.readiness
        if check is None:
            return
        result = self._poller.wait(check)
        if result.ready:
            return
        timeout = ReadinessTimeout(result.check, result.attempts)
        if check.timeout_policy is TimeoutPolicy.SOFT_WARN:
            raise StepWarning(timeout, step.name)
        raise timeout

    @staticmethod
    def _warn(report: InstallationReport, step: Step, warning: StepWarning) -> None:
        logger.warning("[!] %s: %s", step.name, warning.cause)
        report.warnings.append(warning)
        report.record(step.name, CheckStatus.WARNED, str(warning.cause), section=step.section)

    def _fail(self, report: InstallationReport, step: Step, exc: Exception, *, remaining: int) -> bool:
        logger.debug("Failure detail for %s", step.name, exc_info=exc)
        if step.policy is FailurePolicy.FATAL:
            logger.error("[x] %s failed: %s", step.name, exc)
            report.record(step.name, CheckStatus.FAILED, str(exc), section=step.section)
            report.fatal = exc if isinstance(exc, FatalStepFailure) else FatalStepFailure(step.name, exc)
            if remaining:
                logger.error("Aborting; %s remaining step(s) not run", remaining)
            if report.log_path is not None:
                logger.error("See log: %s", report.log_path)
            return True
        if step.policy is FailurePolicy.WARN:
            self._warn(report, step, StepWarning(exc, step.name))
            return False
        logger.debug("Ignoring failure of %s: %s", step.name, exc)
        report.record(step.name, CheckStatus.SKIPPED, f"ignored: {exc}", section=step.section)
        return False
