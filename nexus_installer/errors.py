from __future__ import annotations


class InstallerException(Exception):
    pass


class ConfigurationException(InstallerException):
    pass


class PreflightError(InstallerException):
    pass


class ReadinessTimeout(InstallerException):
    def __init__(self, check_name: str, attempts: int) -> None:
        self.check_name = check_name
        self.attempts = attempts
        super().__init__(f"{check_name} did not become ready after {attempts} attempts")


class StepWarning(InstallerException):
    """Non-fatal step outcome; recorded in the report and the run continues.

    Raised from a step's apply to downgrade a failure to a warning regardless
    of the step's failure policy (optional component absent, deferred work).
    """

    def __init__(self, cause: str | BaseException, step_name: str | None = None) -> None:
        self.cause = cause
        self.step_name = step_name
        super().__init__(str(cause))

    def __str__(self) -> str:
        if self.step_name:
            return f"{self.step_name}: {self.cause}"
        return str(self.cause)


class FatalStepFailure(InstallerException):
    """A fatal step failed; no later step was executed."""

    def __init__(self, step_name: str, cause: str | BaseException) -> None:
        self.step_name = step_name
        self.cause = cause
        super().__init__(f"{step_name}: {cause}")
