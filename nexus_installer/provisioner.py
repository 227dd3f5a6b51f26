from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from pathlib import Path
import platform
import shutil
from typing import Callable

import httpx

from nexus_installer.config import InstallerSettings
from nexus_installer.prompts import PromptProvider
from nexus_installer.proc import CommandRunner
from nexus_installer.readiness import ReadinessPoller
from nexus_installer.services.backend_adapter import BackendAdapter
from nexus_installer.services.brew_adapter import BrewAdapter
from nexus_installer.services.environment import EnvironmentFile, SigningSecret
from nexus_installer.services.frontend_adapter import NpmAdapter
from nexus_installer.services.git_adapter import GitAdapter
from nexus_installer.services.launchd_adapter import LaunchdSupervisor, ServiceSupervisor
from nexus_installer.services.ollama_adapter import OllamaAdapter
from nexus_installer.services.ports import PortAdapter
from nexus_installer.services.postgres_adapter import PostgresAdapter
from nexus_installer.services.python_env import PythonEnvAdapter
from nexus_installer.services.redis_adapter import RedisAdapter

logger = logging.getLogger(__name__)


def _disk_free_bytes(path: Path) -> int:
    return shutil.disk_usage(path).free


class Host:
    """Facade over every external collaborator the plans touch on this machine."""

    def __init__(
        self,
        settings: InstallerSettings,
        *,
        runner: CommandRunner | None = None,
        http: httpx.Client | None = None,
        supervisor: ServiceSupervisor | None = None,
        which: Callable[[str], str | None] = shutil.which,
        system: Callable[[], str] = platform.system,
        machine: Callable[[], str] = platform.machine,
        disk_free: Callable[[Path], int] = _disk_free_bytes,
        kill: Callable[[int, int], None] = os.kill,
        brew_prefix: Path | None = None,
    ) -> None:
        self.settings = settings
        self.runner = runner
        self.which = which
        self.system = system
        self.machine = machine
        self._disk_free = disk_free
        self._owns_http = http is None
        self.http = http or httpx.Client(timeout=10.0)

        if brew_prefix is None:
            brew_prefix = Path("/opt/homebrew") if machine() == "arm64" else Path("/usr/local")
        self.brew_prefix = brew_prefix
        self.brew = BrewAdapter(prefix=self.brew_prefix, runner=runner, http=self.http, which=which)
        self.postgres = PostgresAdapter(
            bin_dir=self.postgres_bin_dir,
            user=settings.database_user,
            runner=runner,
        )
        self.redis = RedisAdapter(bin_dir=self.brew.bin_dir, runner=runner)
        self.ollama = OllamaAdapter(
            base_url=settings.ollama_url,
            http=self.http,
            bin_dir=self.brew.bin_dir,
            runner=runner,
        )
        self.backend = BackendAdapter(base_url=settings.service_url, http=self.http)
        self.git = GitAdapter(runner=runner)
        self.python_env = PythonEnvAdapter(runner=runner)
        self.npm = NpmAdapter(bin_dir=self.brew.bin_dir, runner=runner)
        self.supervisor = supervisor or LaunchdSupervisor(runner=runner)
        self.ports = PortAdapter(runner=runner, kill=kill)
        self.env_file = EnvironmentFile(settings.env_file)
        self.secret = SigningSecret(settings.secret_file)

    @property
    def postgres_bin_dir(self) -> Path:
        # postgresql@17 is keg-only: its binaries are not linked into the brew bin dir.
        return self.brew_prefix / "opt" / self.settings.postgres_formula / "bin"

    @property
    def postgres_data_dir(self) -> Path:
        return self.brew_prefix / "var" / self.settings.postgres_formula

    @property
    def playwright_cache_dir(self) -> Path:
        return self.settings.home_dir / "Library" / "Caches" / "ms-playwright"

    def python_interpreter(self) -> str:
        brewed = self.brew.opt_prefix(self.settings.python_formula) / "bin" / self.settings.python_binary
        if brewed.exists():
            return str(brewed)
        return self.which("python3") or "python3"

    def free_disk_gb(self) -> float:
        return self._disk_free(self.settings.home_dir) / (1024**3)

    def close(self) -> None:
        if self._owns_http:
            self.http.close()


@dataclass
class RunContext:
    """Per-invocation state shared by the steps of one plan run; never persisted."""

    settings: InstallerSettings
    host: Host
    prompts: PromptProvider
    poller: ReadinessPoller
    env_created: bool = False
    admin_key: str | None = None
