from __future__ import annotations

import json
import logging
from pathlib import Path

from nexus_installer.proc import CommandRunner, probe_command, run_command

logger = logging.getLogger(__name__)


class PythonEnvAdapter:
    """Virtual environment creation and package installation for the backend."""

    def __init__(self, *, runner: CommandRunner | None = None) -> None:
        self._runner = runner

    def create(self, *, interpreter: str, venv_dir: Path) -> None:
        logger.info("Creating virtual environment at %s", venv_dir)
        run_command(
            [interpreter, "-m", "venv", str(venv_dir)],
            runner=self._runner,
            error_message=f"Failed to create virtual environment {venv_dir}",
        )

    def version(self, interpreter: str) -> str | None:
        result = probe_command([interpreter, "--version"], runner=self._runner)
        if not result.ok:
            return None
        return (result.stdout or result.stderr).strip() or None

    def pending_requirements(self, *, python: Path, requirements: Path) -> list[str] | None:
        """Names pip would install for ``requirements``; None when pip cannot tell."""
        result = probe_command(
            [str(python), "-m", "pip", "install", "--dry-run", "--quiet", "--report", "-", "-r", str(requirements)],
            runner=self._runner,
        )
        if not result.ok:
            return None
        try:
            report = json.loads(result.stdout or "{}")
        except json.JSONDecodeError:
            return None
        pending = []
        for item in report.get("install", []) if isinstance(report, dict) else []:
            metadata = item.get("metadata", {}) if isinstance(item, dict) else {}
            pending.append(str(metadata.get("name", "?")))
        return pending

    def install_requirements(self, *, python: Path, requirements: Path) -> None:
        logger.info("Upgrading pip")
        run_command(
            [str(python), "-m", "pip", "install", "--upgrade", "pip", "setuptools", "wheel"],
            runner=self._runner,
            error_message="Failed to upgrade pip",
        )
        logger.info("Installing Python dependencies (this may take a few minutes)")
        run_command(
            [str(python), "-m", "pip", "install", "-r", str(requirements)],
            runner=self._runner,
            error_message=f"Failed to install {requirements}",
        )

    def can_import(self, *, python: Path, module: str) -> bool:
        return probe_command([str(python), "-c", f"import {module}"], runner=self._runner).ok

    @staticmethod
    def playwright_chromium_present(cache_dir: Path) -> bool:
        return cache_dir.is_dir() and any(cache_dir.glob("chromium-*"))

    def install_playwright_chromium(self, *, python: Path) -> None:
        logger.info("Installing Playwright Chromium for web rendering")
        run_command(
            [str(python), "-m", "playwright", "install", "chromium"],
            runner=self._runner,
            error_message="Failed to install Playwright Chromium",
        )
