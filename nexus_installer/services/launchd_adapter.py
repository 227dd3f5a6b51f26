from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from pathlib import Path
import plistlib
from typing import Any, Callable, Protocol

from nexus_installer.proc import CommandError, CommandRunner, probe_command, run_command

logger = logging.getLogger(__name__)


def user_domain(uid: int | None = None) -> str:
    return f"gui/{os.getuid() if uid is None else uid}"


@dataclass(frozen=True)
class ServiceDescriptor:
    """Persistent, restart-on-failure background process definition."""

    label: str
    program_arguments: list[str]
    working_directory: Path
    environment: dict[str, str]
    stdout_path: Path
    stderr_path: Path
    throttle_interval: int = 5
    run_at_load: bool = True
    soft_open_files: int = 4096
    hard_open_files: int = 8192
    nice: int = 0

    def to_plist(self) -> dict[str, Any]:
        return {
            "Label": self.label,
            "ProgramArguments": list(self.program_arguments),
            "WorkingDirectory": str(self.working_directory),
            "EnvironmentVariables": dict(self.environment),
            "RunAtLoad": self.run_at_load,
            # Restart only on non-successful exit.
            "KeepAlive": {"SuccessfulExit": False},
            "ThrottleInterval": self.throttle_interval,
            "StandardOutPath": str(self.stdout_path),
            "StandardErrorPath": str(self.stderr_path),
            "SoftResourceLimits": {"NumberOfFiles": self.soft_open_files},
            "HardResourceLimits": {"NumberOfFiles": self.hard_open_files},
            "Nice": self.nice,
        }


class ServiceSupervisor(Protocol):
    def render(self, descriptor: ServiceDescriptor) -> bytes: ...

    def is_loaded(self, label: str) -> bool: ...

    def is_current(self, descriptor: ServiceDescriptor, path: Path) -> bool: ...

    def register(self, descriptor: ServiceDescriptor, path: Path) -> None: ...

    def unregister(self, label: str, path: Path) -> None: ...


class LaunchdSupervisor:
    """Per-user launchd agents (``~/Library/LaunchAgents``)."""

    def __init__(self, *, runner: CommandRunner | None = None, uid: Callable[[], int] = os.getuid) -> None:
        self._runner = runner
        self._uid = uid

    @property
    def domain(self) -> str:
        return user_domain(self._uid())

    @staticmethod
    def render(descriptor: ServiceDescriptor) -> bytes:
        return plistlib.dumps(descriptor.to_plist(), sort_keys=False)

    def is_loaded(self, label: str) -> bool:
        result = probe_command(["launchctl", "list"], runner=self._runner)
        if not result.ok:
            return False
        for line in result.stdout.splitlines():
            columns = line.split()
            if columns and columns[-1] == label:
                return True
        return False

    def is_current(self, descriptor: ServiceDescriptor, path: Path) -> bool:
        if not path.exists():
            return False
        return path.read_bytes() == self.render(descriptor)

    def register(self, descriptor: ServiceDescriptor, path: Path) -> None:
        if self.is_loaded(descriptor.label):
            logger.info("Stopping existing %s agent", descriptor.label)
            self._bootout(descriptor.label, path)

        path.parent.mkdir(parents=True, exist_ok=True)
        descriptor.stdout_path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.render(descriptor))
        logger.info("Wrote service descriptor %s", path)

        try:
            run_command(
                ["launchctl", "bootstrap", self.domain, str(path)],
                runner=self._runner,
                error_message=f"Failed to bootstrap {descriptor.label}",
            )
        except CommandError as exc:
            logger.debug("launchctl bootstrap failed, trying legacy load: %s", exc)
            run_command(
                ["launchctl", "load", str(path)],
                runner=self._runner,
                error_message=f"Failed to load {descriptor.label}",
            )
        logger.info("%s loaded; it will start at login and restart on crash", descriptor.label)

    def unregister(self, label: str, path: Path) -> None:
        if self.is_loaded(label):
            self._bootout(label, path)
        else:
            logger.info("%s was not running", label)
        if path.exists():
            path.unlink()
            logger.info("Removed %s", path)

    def _bootout(self, label: str, path: Path) -> None:
        try:
            run_command(
                ["launchctl", "bootout", f"{self.domain}/{label}"],
                runner=self._runner,
                error_message=f"Failed to boot out {label}",
            )
        except CommandError:
            if not path.exists():
                raise
            run_command(
                ["launchctl", "unload", str(path)],
                runner=self._runner,
                error_message=f"Failed to unload {label}",
            )
