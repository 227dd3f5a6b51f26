from __future__ import annotations

import logging
from pathlib import Path
import shutil
from typing import Callable

import httpx

from nexus_installer.errors import InstallerException
from nexus_installer.proc import CommandRunner, probe_command, resolve_binary, run_command

logger = logging.getLogger(__name__)


class BrewAdapter:
    """Homebrew package manager and ``brew services`` operations."""

    def __init__(
        self,
        *,
        prefix: Path,
        runner: CommandRunner | None = None,
        http: httpx.Client | None = None,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        self.prefix = prefix
        self._runner = runner
        self._http = http
        self._which = which

    @property
    def bin_dir(self) -> Path:
        return self.prefix / "bin"

    def _brew(self) -> str:
        return resolve_binary("brew", self.bin_dir)

    def available(self) -> bool:
        return self._which("brew") is not None or (self.bin_dir / "brew").exists()

    def install_homebrew(self, script_url: str) -> None:
        logger.info("Installing Homebrew from %s", script_url)
        client = self._http or httpx.Client(timeout=60.0)
        try:
            response = client.get(script_url, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise InstallerException(f"Unable to download the Homebrew installer: {exc}") from exc
        finally:
            if self._http is None:
                client.close()
        # Without NONINTERACTIVE the script waits for RETURN on stdin.
        run_command(
            ["/usr/bin/env", "NONINTERACTIVE=1", "/bin/bash", "-c", response.text],
            runner=self._runner,
            error_message="Homebrew installer failed",
        )
        if not self.available():
            raise InstallerException(f"Homebrew installer finished but no brew executable is in {self.bin_dir}")
        logger.info("Homebrew installed")

    def is_installed(self, formula: str) -> bool:
        return probe_command([self._brew(), "list", formula], runner=self._runner).ok

    def install(self, formula: str) -> None:
        logger.info("Installing %s", formula)
        run_command(
            [self._brew(), "install", formula],
            runner=self._runner,
            error_message=f"Failed to install {formula}",
        )
        logger.info("%s installed", formula)

    def uninstall(self, formula: str) -> None:
        logger.info("Uninstalling %s", formula)
        run_command(
            [self._brew(), "uninstall", formula],
            runner=self._runner,
            error_message=f"Failed to uninstall {formula}",
        )

    def opt_prefix(self, formula: str) -> Path:
        # Stable symlink Homebrew maintains for keg-only formulae.
        return self.prefix / "opt" / formula

    def service_start(self, formula: str) -> None:
        run_command(
            [self._brew(), "services", "start", formula],
            runner=self._runner,
            error_message=f"Failed to start service {formula}",
        )

    def service_restart(self, formula: str) -> None:
        run_command(
            [self._brew(), "services", "restart", formula],
            runner=self._runner,
            error_message=f"Failed to restart service {formula}",
        )

    def service_stop(self, formula: str) -> None:
        result = probe_command([self._brew(), "services", "stop", formula], runner=self._runner)
        if not result.ok:
            logger.debug("brew services stop %s exited %s", formula, result.returncode)
