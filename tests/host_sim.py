from __future__ import annotations

import json
from pathlib import Path
import subprocess

import httpx

from nexus_installer.config import InstallerSettings
from nexus_installer.provisioner import Host

REMOTE_HEAD = "3f1c2a9d8e7b6a5f4e3d2c1b0a9f8e7d6c5b4a39"
GIB = 1024**3


def _result(*, args: list[str], returncode: int = 0, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(args=args, returncode=returncode, stdout=stdout, stderr=stderr)


class SimulatedMac:
    """Stateful stand-in for every command and HTTP endpoint the installer touches.

    Files the real tools would create (clone, venv, builds, plist) are created
    under the test's tmp_path so filesystem probes behave as on a real host.
    """

    def __init__(self, settings: InstallerSettings, brew_prefix: Path) -> None:
        self.settings = settings
        self.brew_prefix = brew_prefix
        self.calls: list[list[str]] = []
        self.installed: set[str] = set()
        self.running: set[str] = set()
        self.databases: set[str] = {"postgres", "template0", "template1"}
        self.models: set[str] = set()
        self.loaded: set[str] = set()
        self.killed: list[int] = []
        # Processes listening on the service port outside launchd.
        self.stray_pids: list[int] = []
        self.local_head: str | None = None
        self.remote_head = REMOTE_HEAD
        self.python_packages_installed = False
        self.free_bytes = 100 * GIB
        self.system_name = "Darwin"
        # Formulae whose install / service start exits non-zero.
        self.broken_installs: set[str] = set()
        self.broken_services: set[str] = set()
        # Services that start but never become reachable.
        self.stuck_services: set[str] = set()

        (brew_prefix / "bin").mkdir(parents=True, exist_ok=True)
        (brew_prefix / "bin" / "brew").touch()

    # ------------------------------------------------------------------ host

    def host(self) -> Host:
        return Host(
            self.settings,
            runner=self.run,
            http=httpx.Client(transport=httpx.MockTransport(self.handle)),
            which=self.which,
            system=lambda: self.system_name,
            machine=lambda: "arm64",
            disk_free=lambda path: self.free_bytes,
            kill=self.kill,
            brew_prefix=self.brew_prefix,
        )

    def which(self, name: str) -> str | None:
        if name in ("git", "python3"):
            return f"/usr/bin/{name}"
        return None

    def kill(self, pid: int, sig: int) -> None:
        self.killed.append(pid)
        if pid in self.stray_pids:
            self.stray_pids.remove(pid)

    def commands(self, name: str) -> list[list[str]]:
        return [cmd for cmd in self.calls if Path(cmd[0]).name == name]

    def is_up(self, formula: str) -> bool:
        return formula in self.running and formula not in self.stuck_services

    # ------------------------------------------------------------------ http

    def handle(self, request: httpx.Request) -> httpx.Response:
        port = request.url.port
        if request.url.host == "raw.githubusercontent.com":
            return httpx.Response(200, text="#!/bin/bash\necho installing Homebrew\n")
        if port == 11434 and request.url.path == "/api/tags":
            if not self.is_up("ollama"):
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"models": [{"name": name} for name in sorted(self.models)]})
        if port == self.settings.service_port and request.url.path == "/health":
            if self.settings.service_label not in self.loaded:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"status": "ok", "version": "1.0"})
        return httpx.Response(404)

    # -------------------------------------------------------------- commands

    def run(self, cmd: list[str]) -> subprocess.CompletedProcess[str]:
        self.calls.append(cmd)
        name = Path(cmd[0]).name
        handler = getattr(self, "_" + name.replace("-", "_"), None)
        if name.startswith("python"):
            handler = self._python
        if handler is None:
            raise AssertionError(f"unexpected command: {cmd}")
        return handler(cmd)

    def _xcode_select(self, cmd: list[str]) -> subprocess.CompletedProcess[str]:
        return _result(args=cmd, stdout="/Library/Developer/CommandLineTools")

    def _env(self, cmd: list[str]) -> subprocess.CompletedProcess[str]:
        args = cmd[1:]
        assignments = []
        while args and "=" in args[0]:
            assignments.append(args.pop(0))
        if not args or Path(args[0]).name != "bash":
            raise AssertionError(f"unexpected command: {cmd}")
        if "NONINTERACTIVE=1" not in assignments:
            return _result(args=cmd, returncode=1, stdout="Press RETURN/ENTER to continue or any other key to abort:")
        (self.brew_prefix / "bin" / "brew").touch()
        return _result(args=cmd, stdout="==> Installation successful!")

    def _brew(self, cmd: list[str]) -> subprocess.CompletedProcess[str]:
        verb = cmd[1]
        if verb == "list":
            return _result(args=cmd, returncode=0 if cmd[2] in self.installed else 1)
        if verb == "install":
            formula = cmd[2]
            if formula in self.broken_installs:
                return _result(args=cmd, returncode=1, stderr=f"Error: {formula}: no bottle available")
            self.installed.add(formula)
            self._materialize_formula(formula)
            return _result(args=cmd)
        if verb == "uninstall":
            self.installed.discard(cmd[2])
            return _result(args=cmd)
        if verb == "services":
            action, formula = cmd[2], cmd[3]
            if action in ("start", "restart"):
                if formula in self.broken_services or formula not in self.installed:
                    return _result(args=cmd, returncode=1, stderr=f"Error: Formula `{formula}` failed to start")
                self.running.add(formula)
                return _result(args=cmd)
            if action == "stop":
                self.running.discard(formula)
                return _result(args=cmd)
        raise AssertionError(f"unexpected command: {cmd}")

    def _materialize_formula(self, formula: str) -> None:
        bin_dir = self.brew_prefix / "opt" / formula / "bin"
        bin_dir.mkdir(parents=True, exist_ok=True)
        if formula.startswith("postgresql"):
            for tool in ("pg_isready", "psql", "createdb", "dropdb", "initdb", "pg_ctl"):
                (bin_dir / tool).touch()
        if formula.startswith("python@"):
            (bin_dir / self.settings.python_binary).touch()

    def _initdb(self, cmd: list[str]) -> subprocess.CompletedProcess[str]:
        data_dir = Path(cmd[cmd.index("-D") + 1])
        data_dir.mkdir(parents=True, exist_ok=True)
        (data_dir / "PG_VERSION").write_text("17\n")
        return _result(args=cmd)

    def _pg_isready(self, cmd: list[str]) -> subprocess.CompletedProcess[str]:
        return _result(args=cmd, returncode=0 if self.is_up("postgresql@17") else 2)

    def _pg_ctl(self, cmd: list[str]) -> subprocess.CompletedProcess[str]:
        return _result(args=cmd, returncode=1, stderr="pg_ctl: could not start server")

    def _psql(self, cmd: list[str]) -> subprocess.CompletedProcess[str]:
        if not self.is_up("postgresql@17"):
            return _result(args=cmd, returncode=2, stderr="psql: error: connection to server failed")
        rows = "\n".join(f" {name} | {self.settings.database_user} | UTF8 | en_US.UTF-8 |" for name in sorted(self.databases))
        return _result(args=cmd, stdout=rows + "\n")

    def _createdb(self, cmd: list[str]) -> subprocess.CompletedProcess[str]:
        self.databases.add(cmd[-1])
        return _result(args=cmd)

    def _dropdb(self, cmd: list[str]) -> subprocess.CompletedProcess[str]:
        if cmd[-1] not in self.databases:
            return _result(args=cmd, returncode=1, stderr=f'dropdb: error: database "{cmd[-1]}" does not exist')
        self.databases.discard(cmd[-1])
        return _result(args=cmd)

    def _redis_cli(self, cmd: list[str]) -> subprocess.CompletedProcess[str]:
        if not self.is_up("redis"):
            return _result(args=cmd, returncode=1, stderr="Could not connect to Redis at 127.0.0.1:6379")
        return _result(args=cmd, stdout="PONG\n")

    def _ollama(self, cmd: list[str]) -> subprocess.CompletedProcess[str]:
        assert cmd[1] == "pull", cmd
        self.models.add(cmd[2])
        return _result(args=cmd, stdout="success\n")

    def _git(self, cmd: list[str]) -> subprocess.CompletedProcess[str]:
        if cmd[1] == "clone":
            root = Path(cmd[-1])
            for relative in (".git", "backend", "chat-ui", "admin-ui"):
                (root / relative).mkdir(parents=True, exist_ok=True)
            (root / "backend" / "main.py").write_text("app = None\n")
            (root / "requirements.txt").write_text("fastapi\nredis\n")
            self.local_head = self.remote_head
            return _result(args=cmd)
        verb = cmd[3]
        if verb == "rev-parse":
            return _result(args=cmd, returncode=0 if self.local_head else 128, stdout=f"{self.local_head or ''}\n")
        if verb == "ls-remote":
            return _result(args=cmd, stdout=f"{self.remote_head}\t{cmd[-1]}\n")
        if verb == "pull":
            self.local_head = self.remote_head
            return _result(args=cmd)
        raise AssertionError(f"unexpected command: {cmd}")

    def _python(self, cmd: list[str]) -> subprocess.CompletedProcess[str]:
        args = cmd[1:]
        if args == ["--version"]:
            return _result(args=cmd, stdout="Python 3.12.7\n")
        if args[:2] == ["-m", "venv"]:
            python = Path(args[2]) / "bin" / "python"
            python.parent.mkdir(parents=True, exist_ok=True)
            python.touch()
            return _result(args=cmd)
        if args[:3] == ["-m", "pip", "install"]:
            if "--dry-run" in args:
                pending = [] if self.python_packages_installed else ["fastapi", "redis"]
                report = {"install": [{"metadata": {"name": name}} for name in pending]}
                return _result(args=cmd, stdout=json.dumps(report))
            if "-r" in args:
                self.python_packages_installed = True
            return _result(args=cmd)
        if args[:2] == ["-m", "playwright"]:
            cache = self.settings.home_dir / "Library" / "Caches" / "ms-playwright" / "chromium-1140"
            cache.mkdir(parents=True, exist_ok=True)
            return _result(args=cmd)
        if args[0] == "-c":
            return _result(args=cmd, returncode=0 if self.python_packages_installed else 1)
        raise AssertionError(f"unexpected command: {cmd}")

    def _npm(self, cmd: list[str]) -> subprocess.CompletedProcess[str]:
        source = Path(cmd[2])
        if cmd[3:] == ["run", "build"]:
            build = source.parent / "frontend" / f"{source.name.split('-')[0]}-build"
            build.mkdir(parents=True, exist_ok=True)
            (build / "index.html").write_text("<html></html>")
        return _result(args=cmd)

    def _launchctl(self, cmd: list[str]) -> subprocess.CompletedProcess[str]:
        verb = cmd[1]
        if verb == "list":
            rows = ["PID\tStatus\tLabel"] + [f"4242\t0\t{label}" for label in sorted(self.loaded)]
            return _result(args=cmd, stdout="\n".join(rows) + "\n")
        if verb in ("bootstrap", "load"):
            self.loaded.add(Path(cmd[-1]).stem)
            return _result(args=cmd)
        if verb == "bootout":
            label = cmd[2].rsplit("/", 1)[-1]
            if label not in self.loaded:
                return _result(args=cmd, returncode=3, stderr="Boot-out failed: 3: No such process")
            self.loaded.discard(label)
            return _result(args=cmd)
        if verb == "unload":
            self.loaded.discard(Path(cmd[-1]).stem)
            return _result(args=cmd)
        raise AssertionError(f"unexpected command: {cmd}")

    def _lsof(self, cmd: list[str]) -> subprocess.CompletedProcess[str]:
        pids = [str(pid) for pid in self.stray_pids]
        if self.settings.service_label in self.loaded:
            pids.insert(0, "4242")
        if not pids:
            return _result(args=cmd, returncode=1)
        return _result(args=cmd, stdout="\n".join(pids) + "\n")
