from __future__ import annotations

import logging
from pathlib import Path

from nexus_installer.proc import CommandRunner, probe_command, run_command

logger = logging.getLogger(__name__)


class GitAdapter:
    def __init__(self, *, runner: CommandRunner | None = None) -> None:
        self._runner = runner

    @staticmethod
    def is_clone(root: Path) -> bool:
        return (root / ".git").exists()

    def clone(self, *, url: str, branch: str, root: Path) -> None:
        logger.info("Cloning %s (%s) into %s", url, branch, root)
        run_command(
            ["git", "clone", "--branch", branch, url, str(root)],
            runner=self._runner,
            error_message=f"Failed to clone {url}",
        )

    def local_head(self, root: Path) -> str | None:
        result = probe_command(["git", "-C", str(root), "rev-parse", "HEAD"], runner=self._runner)
        if not result.ok:
            return None
        return result.stdout.strip() or None

    def remote_head(self, root: Path, branch: str) -> str | None:
        result = probe_command(
            ["git", "-C", str(root), "ls-remote", "origin", f"refs/heads/{branch}"],
            runner=self._runner,
        )
        if not result.ok or not result.stdout.strip():
            return None
        return result.stdout.split()[0]

    def up_to_date(self, root: Path, branch: str) -> bool:
        local = self.local_head(root)
        return local is not None and local == self.remote_head(root, branch)

    def pull(self, *, root: Path, branch: str) -> None:
        logger.info("Pulling latest changes for %s", root)
        run_command(
            ["git", "-C", str(root), "pull", "origin", branch],
            runner=self._runner,
            error_message=f"Failed to update {root}",
        )
