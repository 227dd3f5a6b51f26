from __future__ import annotations

import logging
from pathlib import Path

from nexus_installer.proc import CommandError, CommandRunner, probe_command, resolve_binary, run_command

logger = logging.getLogger(__name__)


class PostgresAdapter:
    """PostgreSQL client tools, invoked from the keg-only bin directory when present."""

    def __init__(self, *, bin_dir: Path | None, user: str, runner: CommandRunner | None = None) -> None:
        self.bin_dir = bin_dir
        self.user = user
        self._runner = runner

    def _bin(self, name: str) -> str:
        return resolve_binary(name, self.bin_dir)

    def accepts_connections(self) -> bool:
        return probe_command([self._bin("pg_isready"), "-q"], runner=self._runner).ok

    def schema_ready(self) -> bool:
        """True once the server answers catalog queries, not only TCP/socket connects."""
        return probe_command([self._bin("psql"), "-U", self.user, "-lqt"], runner=self._runner).ok

    def query_databases(self) -> list[str] | None:
        """Database names, or None when the server cannot be asked."""
        result = probe_command([self._bin("psql"), "-U", self.user, "-lqt"], runner=self._runner)
        if not result.ok:
            return None
        names = []
        for line in result.stdout.splitlines():
            name = line.split("|", 1)[0].strip()
            if name:
                names.append(name)
        return names

    def list_databases(self) -> list[str]:
        return self.query_databases() or []

    def database_exists(self, name: str) -> bool:
        return name in self.list_databases()

    def create_database(self, name: str) -> None:
        logger.info("Creating database '%s'", name)
        run_command(
            [self._bin("createdb"), "-U", self.user, name],
            runner=self._runner,
            error_message=f"Failed to create database {name}",
        )
        logger.info("Database '%s' created", name)

    def drop_database(self, name: str) -> None:
        logger.info("Dropping database '%s'", name)
        try:
            run_command(
                [self._bin("dropdb"), "-U", self.user, name],
                runner=self._runner,
                error_message=f"Failed to drop database {name}",
            )
        except CommandError as exc:
            if "does not exist" in exc.result.stderr.lower():
                logger.debug("Database already absent: %s", name)
                return
            raise

    @staticmethod
    def data_dir_initialized(data_dir: Path) -> bool:
        return data_dir.is_dir() and any(data_dir.iterdir())

    def initdb(self, data_dir: Path) -> None:
        logger.info("Initializing PostgreSQL data directory %s", data_dir)
        run_command(
            [
                self._bin("initdb"),
                "-D",
                str(data_dir),
                "--locale=en_US.UTF-8",
                "-E",
                "UTF-8",
                f"--username={self.user}",
                "--auth=trust",
            ],
            runner=self._runner,
            error_message=f"Failed to initialize {data_dir}",
        )

    def manual_start(self, data_dir: Path) -> None:
        logger.info("Starting PostgreSQL directly with pg_ctl")
        run_command(
            [self._bin("pg_ctl"), "-D", str(data_dir), "-l", str(data_dir / "server.log"), "start"],
            runner=self._runner,
            error_message="pg_ctl start failed",
        )
