from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
import subprocess
from typing import Callable

from nexus_installer.errors import InstallerException

CommandRunner = Callable[[list[str]], subprocess.CompletedProcess[str]]

logger = logging.getLogger(__name__)

_TRANSCRIPT_TAIL_LINES = 5


@dataclass(frozen=True)
class CommandResult:
    command: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandError(InstallerException):
    def __init__(self, *, message: str, result: CommandResult) -> None:
        self.result = result
        super().__init__(self._build_message(message))

    def _build_message(self, message: str) -> str:
        detail = (self.result.stderr or self.result.stdout).strip()
        if len(detail) > 400:
            detail = f"{detail[:397]}..."
        cmd = " ".join(self.result.command)
        return f"{message} (returncode={self.result.returncode}, command={cmd!r}, detail={detail!r})"


def default_runner(command: list[str]) -> subprocess.CompletedProcess[str]:
    try:
        return subprocess.run(command, capture_output=True, text=True, check=False)
    except FileNotFoundError as exc:
        # Missing binaries look like any other failed command to callers.
        return subprocess.CompletedProcess(args=command, returncode=127, stdout="", stderr=str(exc))


def _log_output(result: CommandResult) -> None:
    output = "\n".join(part for part in (result.stdout.strip(), result.stderr.strip()) if part)
    if not output:
        return
    lines = output.splitlines()
    for line in lines[-_TRANSCRIPT_TAIL_LINES:]:
        logger.debug("  | %s", line)


def probe_command(command: list[str], *, runner: CommandRunner | None = None) -> CommandResult:
    """Run a read-only command and return its result without raising on failure."""
    active_runner = runner or default_runner
    completed = active_runner(command)
    result = CommandResult(
        command=command,
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )
    logger.debug("Probe %r exited %s", " ".join(command), result.returncode)
    return result


def run_command(
    command: list[str],
    *,
    runner: CommandRunner | None = None,
    error_message: str,
) -> CommandResult:
    active_runner = runner or default_runner
    logger.debug("Running %r", " ".join(command))
    completed = active_runner(command)
    result = CommandResult(
        command=command,
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )
    _log_output(result)
    if result.returncode != 0:
        raise CommandError(message=error_message, result=result)
    return result


def resolve_binary(name: str, *search_dirs: Path | None) -> str:
    """Return the first existing ``dir/name`` among ``search_dirs``, else the bare name for PATH lookup."""
    for directory in search_dirs:
        if directory is None:
            continue
        candidate = directory / name
        if candidate.exists():
            return str(candidate)
    return name
