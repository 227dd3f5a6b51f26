"""Ordered provisioning plan for the Nexus stack.

Order encodes dependency: every step may assume the postconditions of all the
steps before it. Each step's failure policy says whether the steps after it can
still do useful work without it.
"""
from __future__ import annotations

from functools import partial
import logging

from nexus_installer.config import HOMEBREW_INSTALL_SCRIPT_URL, InstallerSettings
from nexus_installer.engine import FailurePolicy, InstallationReport, Step, StepEngine
from nexus_installer.errors import (
    ConfigurationException,
    FatalStepFailure,
    InstallerException,
    PreflightError,
    StepWarning,
)
from nexus_installer.proc import CommandError, probe_command
from nexus_installer.provisioner import Host, RunContext
from nexus_installer.readiness import ReadinessCheck, TimeoutPolicy
from nexus_installer.services.launchd_adapter import ServiceDescriptor
from nexus_installer.verifier import Verifier

logger = logging.getLogger(__name__)

SCHEMA_READY_STEP = "PostgreSQL ready for schema operations"


def _fail_with(exc: Exception):
    def apply() -> None:
        raise exc

    return apply


def _noop() -> None:
    return None


def preflight_steps(ctx: RunContext) -> list[Step]:
    host, settings = ctx.host, ctx.settings
    section = "Pre-flight Checks"

    def xcode_present() -> bool:
        return probe_command(["xcode-select", "-p"], runner=host.runner).ok

    def install_xcode() -> None:
        logger.info("Installing Xcode Command Line Tools")
        probe_command(["xcode-select", "--install"], runner=host.runner)
        ctx.prompts.pause("Press Enter after the Xcode Command Line Tools installation completes...")
        if not xcode_present():
            raise PreflightError("Xcode Command Line Tools are still missing")

    def enough_disk() -> bool:
        free = host.free_disk_gb()
        logger.debug("Free disk space: %.1fGB", free)
        return free >= settings.min_free_gb

    def not_enough_disk() -> None:
        raise PreflightError(
            f"Need at least {settings.min_free_gb}GB free disk space (have {host.free_disk_gb():.0f}GB)"
        )

    return [
        Step(
            name="macOS host",
            probe=lambda: host.system() == "Darwin",
            apply=_fail_with(PreflightError("This installer is for macOS only")),
            section=section,
        ),
        Step(name="Xcode Command Line Tools", probe=xcode_present, apply=install_xcode, section=section),
        Step(
            name="git available",
            probe=lambda: host.which("git") is not None,
            apply=_fail_with(PreflightError("Git not found. Install the Xcode Command Line Tools first.")),
            section=section,
        ),
        Step(name="Free disk space", probe=enough_disk, apply=not_enough_disk, section=section),
    ]


def package_steps(ctx: RunContext) -> list[Step]:
    host, settings = ctx.host, ctx.settings
    steps = [
        Step(
            name="Homebrew",
            probe=host.brew.available,
            apply=partial(host.brew.install_homebrew, HOMEBREW_INSTALL_SCRIPT_URL),
            section="Homebrew",
        )
    ]
    for dep in settings.dependencies:
        steps.append(
            Step(
                name=f"Install {dep.formula}",
                probe=partial(host.brew.is_installed, dep.formula),
                apply=partial(host.brew.install, dep.formula),
                policy=FailurePolicy.FATAL if dep.required else FailurePolicy.WARN,
                section="System Dependencies",
            )
        )

    data_dir = host.postgres_data_dir
    steps.append(
        Step(
            name="PostgreSQL data directory initialized",
            probe=partial(host.postgres.data_dir_initialized, data_dir),
            apply=partial(host.postgres.initdb, data_dir),
            policy=FailurePolicy.WARN,
            section="System Dependencies",
        )
    )
    return steps


def service_steps(ctx: RunContext) -> list[Step]:
    host, settings = ctx.host, ctx.settings
    section = "Services"
    return [
        Step(
            name="PostgreSQL accepting connections",
            probe=host.postgres.accepts_connections,
            apply=partial(host.brew.service_start, settings.postgres_formula),
            readiness=ReadinessCheck(
                name="PostgreSQL accepting connections",
                predicate=host.postgres.accepts_connections,
                interval=1.0,
                max_attempts=20,
                timeout_policy=TimeoutPolicy.HARD_FAIL,
            ),
            section=section,
        ),
        Step(
            name="Redis responding",
            probe=host.redis.ping,
            apply=partial(host.brew.service_start, settings.redis_formula),
            readiness=ReadinessCheck(
                name="Redis responding",
                predicate=host.redis.ping,
                interval=0.5,
                max_attempts=10,
                timeout_policy=TimeoutPolicy.HARD_FAIL,
            ),
            section=section,
        ),
        Step(
            name="Ollama API responding",
            probe=host.ollama.reachable,
            apply=partial(host.brew.service_start, settings.ollama_formula),
            policy=FailurePolicy.WARN,
            readiness=ReadinessCheck(
                name="Ollama API responding",
                predicate=host.ollama.reachable,
                interval=2.0,
                max_attempts=15,
                timeout_policy=TimeoutPolicy.SOFT_WARN,
            ),
            section=section,
        ),
    ]


def source_steps(ctx: RunContext) -> list[Step]:
    host, settings = ctx.host, ctx.settings
    root = settings.install_root
    section = "Nexus Source Code"
    return [
        Step(
            name="Repository cloned",
            probe=partial(host.git.is_clone, root),
            apply=partial(host.git.clone, url=settings.repo_url, branch=settings.branch, root=root),
            section=section,
        ),
        Step(
            name="Repository up to date",
            probe=partial(host.git.up_to_date, root, settings.branch),
            apply=partial(host.git.pull, root=root, branch=settings.branch),
            section=section,
        ),
    ]


def python_steps(ctx: RunContext) -> list[Step]:
    host, settings = ctx.host, ctx.settings
    requirements = settings.install_root / "requirements.txt"
    section = "Python Environment"

    def create_venv() -> None:
        interpreter = host.python_interpreter()
        logger.info("Using Python: %s", host.python_env.version(interpreter) or interpreter)
        host.python_env.create(interpreter=interpreter, venv_dir=settings.venv_dir)

    def requirements_satisfied() -> bool:
        if not requirements.is_file():
            return False
        pending = host.python_env.pending_requirements(python=settings.venv_python, requirements=requirements)
        if pending:
            logger.debug("Pending Python packages: %s", ", ".join(pending))
        return pending == []

    def install_requirements() -> None:
        if not requirements.is_file():
            raise ConfigurationException(f"{requirements} not found")
        host.python_env.install_requirements(python=settings.venv_python, requirements=requirements)

    return [
        Step(
            name="Python virtual environment",
            probe=settings.venv_python.exists,
            apply=create_venv,
            section=section,
        ),
        Step(
            name="Python dependencies",
            probe=requirements_satisfied,
            apply=install_requirements,
            section=section,
        ),
        Step(
            name="Playwright Chromium",
            probe=partial(host.python_env.playwright_chromium_present, host.playwright_cache_dir),
            apply=partial(host.python_env.install_playwright_chromium, python=settings.venv_python),
            policy=FailurePolicy.WARN,
            section=section,
        ),
    ]


def frontend_steps(ctx: RunContext) -> list[Step]:
    host, settings = ctx.host, ctx.settings
    steps = []
    for bundle in settings.frontends:
        source = settings.install_root / bundle.source_dir
        output = settings.install_root / bundle.build_dir

        def build(bundle=bundle, source=source, output=output) -> None:
            if not source.is_dir():
                raise StepWarning(f"{bundle.source_dir}/ directory not found - skipping")
            host.npm.build(source)
            if not output.is_dir():
                raise InstallerException(f"{bundle.name} build did not produce {output}")
            logger.info("%s built -> %s", bundle.name, bundle.build_dir)

        steps.append(
            Step(
                name=f"Build {bundle.name}",
                probe=output.is_dir,
                apply=build,
                section="Frontend UIs",
            )
        )
    return steps


def database_steps(ctx: RunContext) -> list[Step]:
    host, settings = ctx.host, ctx.settings
    postgres = host.postgres
    data_dir = host.postgres_data_dir
    section = "PostgreSQL Database"

    # Accepting connections (checked during service start) does not imply the
    # first-start initialization has finished; poll catalog queries separately.
    supervised = ReadinessCheck(
        name=SCHEMA_READY_STEP,
        predicate=postgres.schema_ready,
        interval=1.0,
        max_attempts=30,
    )
    manual = ReadinessCheck(
        name=f"{SCHEMA_READY_STEP} (manual start)",
        predicate=postgres.schema_ready,
        interval=1.0,
        max_attempts=5,
    )

    def bring_up() -> None:
        if not postgres.accepts_connections():
            logger.info("PostgreSQL not ready - attempting to restart it")
            try:
                host.brew.service_restart(settings.postgres_formula)
            except CommandError as exc:
                logger.warning("brew services restart failed: %s", exc)
        if ctx.poller.wait(supervised).ready:
            return

        logger.error("PostgreSQL is not responding after %s attempts; trying pg_ctl", supervised.max_attempts)
        try:
            postgres.manual_start(data_dir)
        except CommandError as exc:
            logger.warning("pg_ctl start failed: %s", exc)
        if ctx.poller.wait(manual).ready:
            return

        pg_bin = host.postgres_bin_dir
        raise FatalStepFailure(
            SCHEMA_READY_STEP,
            "PostgreSQL could not be started. Debug with: "
            f"{pg_bin / 'pg_isready'}; brew services list; cat {data_dir / 'server.log'}",
        )

    name = settings.database_name
    return [
        Step(name=SCHEMA_READY_STEP, probe=postgres.schema_ready, apply=bring_up, section=section),
        Step(
            name=f"Database '{name}'",
            probe=partial(postgres.database_exists, name),
            apply=partial(postgres.create_database, name),
            section=section,
        ),
    ]


def model_steps(ctx: RunContext) -> list[Step]:
    host, settings = ctx.host, ctx.settings
    ollama = host.ollama
    section = "Ollama Models"
    steps = [
        Step(
            name="Ollama reachable for model pulls",
            probe=ollama.reachable,
            apply=_noop,
            policy=FailurePolicy.WARN,
            readiness=ReadinessCheck(
                name="Ollama API",
                predicate=ollama.reachable,
                interval=2.0,
                max_attempts=15,
                timeout_policy=TimeoutPolicy.SOFT_WARN,
            ),
            section=section,
        )
    ]
    for model in settings.models:

        def pull(model=model) -> None:
            if not ollama.reachable():
                raise StepWarning("Ollama not responding - the model will be pulled on first use")
            ollama.pull(model)

        steps.append(
            Step(
                name=f"Model {model}",
                probe=partial(ollama.has_model, model),
                apply=pull,
                policy=FailurePolicy.WARN,
                section=section,
            )
        )
    return steps


def environment_steps(ctx: RunContext) -> list[Step]:
    host, settings = ctx.host, ctx.settings
    env_file = host.env_file
    root = settings.install_root
    section = "Environment Configuration"

    def write_env() -> None:
        env_file.write_initial(pg_user=settings.database_user, template_path=settings.env_template)
        ctx.env_created = True

    def admin_key() -> None:
        ctx.admin_key = env_file.generate_admin_key()

    def create_dirs() -> None:
        for relative in settings.runtime_dirs:
            (root / relative).mkdir(parents=True, exist_ok=True)

    return [
        Step(name="Configuration file", probe=env_file.exists, apply=write_env, section=section),
        Step(name="Request signing secret", probe=host.secret.exists, apply=host.secret.generate, section=section),
        Step(
            name="Admin API key",
            probe=lambda: env_file.exists() and not env_file.has_placeholder_admin_key(),
            apply=admin_key,
            section=section,
        ),
        Step(
            name="Runtime directories",
            probe=lambda: all((root / relative).is_dir() for relative in settings.runtime_dirs),
            apply=create_dirs,
            section=section,
        ),
    ]


def credential_steps(ctx: RunContext) -> list[Step]:
    host, settings = ctx.host, ctx.settings
    env_file = host.env_file
    steps = []
    for credential in settings.credentials:

        def captured(credential=credential) -> bool:
            # Single-pass capture: only a configuration file written by this
            # run is offered for onboarding.
            if not env_file.exists():
                return False
            return bool(env_file.get(credential.key)) or not ctx.env_created

        def capture(credential=credential) -> None:
            value = ctx.prompts.ask(f"{credential.label} ({credential.purpose}); press Enter to skip", secret=True)
            if not value:
                logger.info("Skipped %s", credential.key)
                return
            env_file.set_value(credential.key, value)
            logger.info("%s configured", credential.label)

        steps.append(
            Step(
                name=f"Credential {credential.key}",
                probe=captured,
                apply=capture,
                policy=FailurePolicy.WARN,
                section="API Key Setup",
            )
        )
    return steps


def build_service_descriptor(settings: InstallerSettings, host: Host) -> ServiceDescriptor:
    venv_bin = settings.venv_dir / "bin"
    path = ":".join(
        [
            str(venv_bin),
            str(host.postgres_bin_dir),
            str(host.brew.bin_dir),
            "/usr/local/bin",
            "/usr/bin",
            "/bin",
        ]
    )
    return ServiceDescriptor(
        label=settings.service_label,
        program_arguments=[
            str(settings.venv_python),
            "-m",
            "uvicorn",
            "app:create_app",
            "--factory",
            "--host",
            settings.service_host,
            "--port",
            str(settings.service_port),
        ],
        working_directory=settings.backend_dir,
        environment={
            "PATH": path,
            "VIRTUAL_ENV": str(settings.venv_dir),
            "PYTHONPATH": str(settings.backend_dir),
        },
        stdout_path=settings.logs_dir / "launchd-stdout.log",
        stderr_path=settings.logs_dir / "launchd-stderr.log",
        throttle_interval=settings.throttle_interval,
    )


def daemon_steps(ctx: RunContext) -> list[Step]:
    host, settings = ctx.host, ctx.settings
    supervisor = host.supervisor
    descriptor = build_service_descriptor(settings, host)
    path = settings.service_descriptor
    profile = settings.shell_profile
    pg_bin = host.postgres_bin_dir
    marker = f"{settings.postgres_formula}/bin"

    def profile_has_path() -> bool:
        if not pg_bin.is_dir():
            return False
        return profile.is_file() and marker in profile.read_text(encoding="utf-8", errors="replace")

    def add_profile_path() -> None:
        if not pg_bin.is_dir():
            raise StepWarning(f"PostgreSQL bin directory {pg_bin} not found; {profile} left unchanged")
        with profile.open("a", encoding="utf-8") as handle:
            handle.write(f'\n# PostgreSQL (Nexus)\nexport PATH="{pg_bin}:$PATH"\n')
        logger.info("Added PostgreSQL to %s; open a new terminal for psql/pg_isready", profile)

    return [
        Step(
            name="Nexus background service",
            probe=lambda: supervisor.is_current(descriptor, path) and supervisor.is_loaded(descriptor.label),
            apply=partial(supervisor.register, descriptor, path),
            policy=FailurePolicy.WARN,
            section="System Daemon",
        ),
        Step(
            name="Shell profile PATH",
            probe=profile_has_path,
            apply=add_profile_path,
            policy=FailurePolicy.WARN,
            section="System Daemon",
        ),
    ]


def build_provisioning_plan(ctx: RunContext) -> list[Step]:
    return [
        *preflight_steps(ctx),
        *package_steps(ctx),
        *service_steps(ctx),
        *source_steps(ctx),
        *python_steps(ctx),
        *frontend_steps(ctx),
        *database_steps(ctx),
        *model_steps(ctx),
        *environment_steps(ctx),
        *credential_steps(ctx),
        *daemon_steps(ctx),
    ]


def provision(ctx: RunContext, *, report: InstallationReport | None = None) -> InstallationReport:
    """Run the provisioning plan, then verify the result unless a fatal step aborted it."""
    engine = StepEngine(prompts=ctx.prompts, poller=ctx.poller)
    report = engine.run(build_provisioning_plan(ctx), report=report)
    if report.fatal is not None:
        return report

    logger.info("=== Verification ===")
    verification = Verifier(ctx.host, ctx.settings, poller=ctx.poller).check(wait_for_server=True)
    report.details["verification"] = {
        "passed": verification.passed,
        "failed": verification.failed,
        "warned": verification.warned,
    }
    report.extend(verification)
    return report
