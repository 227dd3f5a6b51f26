"""Uninstall plan: the provisioning plan's destructive counterpart.

Every step is confirm-gated and non-fatal, so declining or failing one removal
leaves the rest of the teardown to run.
"""
from __future__ import annotations

from functools import partial
import logging
import shutil

from nexus_installer.engine import FailurePolicy, InstallationReport, Step, StepEngine
from nexus_installer.errors import InstallerException
from nexus_installer.provisioner import RunContext

logger = logging.getLogger(__name__)

SERVICE_STEP = "Nexus background service"
DEPENDENCIES_GATE = "Remove system dependencies"


def _skip() -> None:
    return None


def build_teardown_plan(ctx: RunContext) -> list[Step]:
    host, settings = ctx.host, ctx.settings
    supervisor = host.supervisor
    label = settings.service_label
    descriptor = settings.service_descriptor
    root = settings.install_root
    port = settings.service_port
    database = settings.database_name
    managed = [dep for dep in settings.dependencies if dep.service]

    def service_absent() -> bool:
        return not supervisor.is_loaded(label) and not descriptor.exists()

    def database_absent() -> bool:
        if not host.brew.is_installed(settings.postgres_formula):
            return True
        names = host.postgres.query_databases()
        if names is None:
            raise InstallerException(f"Cannot tell whether database '{database}' exists: PostgreSQL is not responding")
        return database not in names

    def remove_root() -> None:
        shutil.rmtree(root)
        logger.info("Removed %s", root)

    steps = [
        Step(
            name=SERVICE_STEP,
            probe=service_absent,
            apply=partial(supervisor.unregister, label, descriptor),
            policy=FailurePolicy.WARN,
            confirm="Stop and remove the Nexus background service?",
            section="Background Service",
        ),
        Step(
            name=f"Processes on port {port}",
            probe=lambda: not host.ports.listeners(port),
            apply=partial(host.ports.terminate, port),
            policy=FailurePolicy.WARN,
            section="Background Service",
        ),
        Step(
            name="Install root",
            probe=lambda: not root.exists(),
            apply=remove_root,
            policy=FailurePolicy.WARN,
            confirm=f"Delete {root}? This removes code, venv and local data.",
            section="Files",
        ),
        Step(
            name=f"Database '{database}'",
            probe=database_absent,
            apply=partial(host.postgres.drop_database, database),
            policy=FailurePolicy.WARN,
            confirm=f"Drop the '{database}' database? All conversation history will be lost.",
            section="Database",
        ),
        Step(
            name=DEPENDENCIES_GATE,
            probe=lambda: not any(host.brew.is_installed(dep.formula) for dep in managed),
            apply=_skip,
            policy=FailurePolicy.WARN,
            confirm="Remove system dependencies installed via Homebrew? Other applications may use them.",
            section="System Dependencies",
        ),
    ]

    for dep in managed:

        def remove(formula=dep.formula) -> None:
            host.brew.service_stop(formula)
            host.brew.uninstall(formula)

        steps.append(
            Step(
                name=f"Uninstall {dep.formula}",
                probe=lambda formula=dep.formula: not host.brew.is_installed(formula),
                apply=remove,
                policy=FailurePolicy.WARN,
                confirm=f"Remove {dep.label}?",
                requires=DEPENDENCIES_GATE,
                section="System Dependencies",
            )
        )
    return steps


def teardown(ctx: RunContext, *, report: InstallationReport | None = None) -> InstallationReport:
    engine = StepEngine(prompts=ctx.prompts, poller=ctx.poller)
    return engine.run(build_teardown_plan(ctx), report=report)
