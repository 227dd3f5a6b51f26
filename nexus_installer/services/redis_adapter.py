from __future__ import annotations

from pathlib import Path

from nexus_installer.proc import CommandRunner, probe_command, resolve_binary


class RedisAdapter:
    def __init__(self, *, bin_dir: Path | None = None, runner: CommandRunner | None = None) -> None:
        self.bin_dir = bin_dir
        self._runner = runner

    def ping(self) -> bool:
        result = probe_command([resolve_binary("redis-cli", self.bin_dir), "ping"], runner=self._runner)
        return result.ok and "PONG" in result.stdout
