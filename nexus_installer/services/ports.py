from __future__ import annotations

import logging
import os
import signal
from typing import Callable

from nexus_installer.proc import CommandRunner, probe_command

logger = logging.getLogger(__name__)


class PortAdapter:
    def __init__(
        self,
        *,
        runner: CommandRunner | None = None,
        kill: Callable[[int, int], None] = os.kill,
    ) -> None:
        self._runner = runner
        self._kill = kill

    def listeners(self, port: int) -> list[int]:
        result = probe_command(["lsof", "-ti", f":{port}"], runner=self._runner)
        if not result.ok:
            return []
        return [int(token) for token in result.stdout.split() if token.isdigit()]

    def terminate(self, port: int) -> list[int]:
        stopped = []
        for pid in self.listeners(port):
            try:
                self._kill(pid, signal.SIGTERM)
            except ProcessLookupError:
                logger.debug("Process %s already exited", pid)
                continue
            stopped.append(pid)
            logger.info("Sent SIGTERM to process %s on port %s", pid, port)
        return stopped
