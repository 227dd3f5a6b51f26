from __future__ import annotations

import logging
from pathlib import Path

from nexus_installer.proc import CommandRunner, resolve_binary, run_command

logger = logging.getLogger(__name__)


class NpmAdapter:
    def __init__(self, *, bin_dir: Path | None = None, runner: CommandRunner | None = None) -> None:
        self.bin_dir = bin_dir
        self._runner = runner

    def build(self, source_dir: Path) -> None:
        npm = resolve_binary("npm", self.bin_dir)
        logger.info("Building %s", source_dir.name)
        run_command(
            [npm, "--prefix", str(source_dir), "install"],
            runner=self._runner,
            error_message=f"npm install failed in {source_dir}",
        )
        run_command(
            [npm, "--prefix", str(source_dir), "run", "build"],
            runner=self._runner,
            error_message=f"npm run build failed in {source_dir}",
        )
