from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Callable

from nexus_installer.config import InstallerSettings
from nexus_installer.engine import CheckStatus, InstallationReport
from nexus_installer.provisioner import Host
from nexus_installer.readiness import ReadinessCheck, ReadinessPoller, TimeoutPolicy
from nexus_installer.services.launchd_adapter import user_domain

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HealthCheck:
    name: str
    predicate: Callable[[], bool]
    section: str
    hint: str = ""
    # Optional checks warn instead of failing.
    optional: bool = False


class Verifier:
    """Read-only health report for an installed Nexus stack."""

    def __init__(self, host: Host, settings: InstallerSettings, *, poller: ReadinessPoller | None = None) -> None:
        self.host = host
        self.settings = settings
        self._poller = poller or ReadinessPoller()

    def _server_responding(self, wait: bool) -> bool:
        if not wait:
            return self.host.backend.responding()
        check = ReadinessCheck(
            name="Nexus server",
            predicate=self.host.backend.responding,
            interval=2.0,
            max_attempts=15,
            timeout_policy=TimeoutPolicy.SOFT_WARN,
        )
        return self._poller.wait(check).ready

    def checks(self, *, wait_for_server: bool = False) -> list[HealthCheck]:
        host, settings = self.host, self.settings
        root = settings.install_root
        port = settings.service_port
        label = settings.service_label

        checks = [
            HealthCheck(
                "PostgreSQL running",
                host.postgres.accepts_connections,
                "Running Services",
                f"brew services start {settings.postgres_formula}",
            ),
            HealthCheck(
                "Redis running",
                host.redis.ping,
                "Running Services",
                f"brew services start {settings.redis_formula}",
            ),
            HealthCheck(
                "Ollama running",
                host.ollama.reachable,
                "Running Services",
                f"brew services start {settings.ollama_formula}",
            ),
            HealthCheck(
                f"Nexus server (port {port})",
                lambda: self._server_responding(wait_for_server),
                "Running Services",
                f"check {settings.logs_dir / 'launchd-stderr.log'}",
            ),
            HealthCheck(
                f"Database '{settings.database_name}' exists",
                lambda: host.postgres.database_exists(settings.database_name),
                "Running Services",
                f"createdb {settings.database_name}",
            ),
            HealthCheck(
                "Backend code",
                (settings.backend_dir / "main.py").is_file,
                "Installed Files",
                str(settings.backend_dir),
            ),
            HealthCheck("Python venv", settings.venv_python.exists, "Installed Files", str(settings.venv_dir)),
        ]
        for bundle in settings.frontends:
            checks.append(
                HealthCheck(f"{bundle.name} build", (root / bundle.build_dir).is_dir, "Installed Files", bundle.build_dir)
            )
        checks.extend(
            [
                HealthCheck("Configuration file present", host.env_file.exists, "Installed Files", str(settings.env_file)),
                HealthCheck("Signing secret present", host.secret.exists, "Installed Files", str(settings.secret_file)),
                HealthCheck("Logs directory", settings.logs_dir.is_dir, "Installed Files", str(settings.logs_dir)),
                HealthCheck(
                    "Service descriptor",
                    settings.service_descriptor.is_file,
                    "Daemon Status",
                    str(settings.service_descriptor),
                ),
                HealthCheck(
                    "Daemon loaded",
                    lambda: host.supervisor.is_loaded(label),
                    "Daemon Status",
                    f"launchctl bootstrap {user_domain()} {settings.service_descriptor}",
                ),
            ]
        )
        for model in settings.models:
            checks.append(
                HealthCheck(
                    f"Model {model} available",
                    lambda model=model: host.ollama.has_model(model),
                    "Models",
                    f"ollama pull {model}",
                    optional=True,
                )
            )
        for package in settings.python_packages:
            checks.append(
                HealthCheck(
                    f"Python package {package}",
                    lambda package=package: host.python_env.can_import(python=settings.venv_python, module=package),
                    "Python Packages",
                    f"pip install {package}",
                )
            )
        return checks

    def check(self, *, wait_for_server: bool = False) -> InstallationReport:
        report = InstallationReport()
        section: str | None = None
        for item in self.checks(wait_for_server=wait_for_server):
            if item.section != section:
                section = item.section
                logger.info("--- %s ---", section)
            if item.predicate():
                logger.info("[ok] %s", item.name)
                report.record(item.name, CheckStatus.PASSED, section=item.section)
            elif item.optional:
                logger.warning("[!] %s: not available (%s)", item.name, item.hint)
                report.record(item.name, CheckStatus.WARNED, item.hint, section=item.section)
            else:
                logger.error("[x] %s (%s)", item.name, item.hint)
                report.record(item.name, CheckStatus.FAILED, item.hint, section=item.section)

        server = report.status_of(f"Nexus server (port {self.settings.service_port})")
        if server is CheckStatus.PASSED:
            report.details["health"] = self.host.backend.health()
        return report
