from __future__ import annotations

from contextlib import contextmanager
import logging
from pathlib import Path
from typing import Iterator, NoReturn

import typer
import yaml

from nexus_installer.config import InstallerSettings, load_settings
from nexus_installer.engine import CheckStatus, InstallationReport
from nexus_installer.errors import InstallerException
from nexus_installer.logging_config import attach_transcript, configure_logging, detach_transcript, transcript_path
from nexus_installer.plans.provision import provision
from nexus_installer.plans.teardown import teardown
from nexus_installer.prompts import PromptProvider, TerminalPrompts
from nexus_installer.provisioner import Host, RunContext
from nexus_installer.readiness import ReadinessPoller
from nexus_installer.services.launchd_adapter import user_domain
from nexus_installer.verifier import Verifier

configure_logging()
logger = logging.getLogger(__name__)

app = typer.Typer(help="Nexus Agent installer for macOS", pretty_exceptions_show_locals=False)

_MARKS = {
    CheckStatus.PASSED: ("✓", typer.colors.GREEN),
    CheckStatus.WARNED: ("⚠", typer.colors.YELLOW),
    CheckStatus.FAILED: ("✗", typer.colors.RED),
    CheckStatus.SKIPPED: ("-", None),
}


def build_host(settings: InstallerSettings) -> Host:
    return Host(settings)


def build_prompts() -> PromptProvider:
    return TerminalPrompts()


def build_poller() -> ReadinessPoller:
    return ReadinessPoller()


def _exit_for_domain_error(exc: InstallerException) -> NoReturn:
    typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


def _load_settings() -> InstallerSettings:
    try:
        return load_settings()
    except InstallerException as exc:
        _exit_for_domain_error(exc)


def _echo_report(report: InstallationReport) -> None:
    section: str | None = None
    for result in report.results:
        if result.section and result.section != section:
            section = result.section
            typer.echo(f"\n{section}")
        mark, color = _MARKS[result.status]
        line = f"  {mark} {result.name}"
        if result.message and result.status is not CheckStatus.PASSED:
            line = f"{line} ({result.message})"
        typer.secho(line, fg=color)
    typer.echo("")
    typer.echo(f"Passed: {report.passed}  Warnings: {report.warned}  Failed: {report.failed}")


def _echo_summary(ctx: RunContext, report: InstallationReport) -> None:
    settings = ctx.settings
    typer.echo("")
    typer.secho("Nexus Agent", bold=True)
    typer.echo(f"  Chat UI:        {settings.service_url}")
    typer.echo(f"  Admin UI:       {settings.service_url}/admin")
    typer.echo(f"  Install dir:    {settings.install_root}")
    typer.echo(f"  Config:         {settings.env_file}")
    typer.echo(f"  Logs:           {settings.logs_dir}")
    if report.log_path is not None:
        typer.echo(f"  Install log:    {report.log_path}")
    if ctx.admin_key:
        typer.secho(f"  Admin API key:  {ctx.admin_key}", fg=typer.colors.YELLOW)
        typer.echo("  Save this key; it will not be shown again.")
    descriptor = settings.service_descriptor
    typer.echo("")
    typer.echo("Manage the daemon:")
    domain = user_domain()
    typer.echo(f"  Stop:    launchctl bootout {domain}/{settings.service_label}")
    typer.echo(f"  Start:   launchctl bootstrap {domain} {descriptor}")
    typer.echo(f"  Logs:    tail -f {settings.logs_dir / 'launchd-stderr.log'}")
    typer.echo("Manage services:")
    typer.echo("  brew services list")
    typer.echo(f"  brew services restart {settings.postgres_formula}")


@contextmanager
def _transcript(log_path: Path) -> Iterator[None]:
    handler = attach_transcript(log_path)
    try:
        yield
    finally:
        detach_transcript(handler)


@app.command("install")
def install() -> None:
    """Provision the full Nexus stack on this Mac."""
    settings = _load_settings()
    log_path = transcript_path("nexus-install", directory=settings.log_dir)
    with _transcript(log_path):
        _install(settings, log_path)


def _install(settings: InstallerSettings, log_path: Path) -> None:
    typer.secho("Nexus Agent installer", bold=True)
    typer.echo(f"Installs PostgreSQL, Redis, Ollama and Nexus into {settings.install_root}")
    typer.echo(f"Log: {log_path}")
    if not typer.confirm("Begin installation?", default=True):
        typer.echo("Cancelled.")
        raise typer.Exit(code=0)

    host = build_host(settings)
    ctx = RunContext(settings=settings, host=host, prompts=build_prompts(), poller=build_poller())
    try:
        report = provision(ctx, report=InstallationReport(log_path=log_path))
    except InstallerException as exc:
        _exit_for_domain_error(exc)
    finally:
        host.close()

    _echo_report(report)
    if report.fatal is not None:
        typer.secho(f"Installation aborted: {report.fatal}", fg=typer.colors.RED, err=True)
        typer.echo(f"See log: {log_path}", err=True)
        raise typer.Exit(code=1)

    _echo_summary(ctx, report)
    if not report.healthy:
        typer.secho("Installation completed with some issues.", fg=typer.colors.YELLOW)
        typer.echo(f"Check the log for details: {log_path}")
        raise typer.Exit(code=1)
    typer.secho("Installation complete.", fg=typer.colors.GREEN)


@app.command("verify")
def verify(
    as_yaml: bool = typer.Option(False, "--yaml", help="Print the report as YAML."),
) -> None:
    """Check the health of an existing installation; exits with the failure count."""
    settings = _load_settings()
    host = build_host(settings)
    try:
        report = Verifier(host, settings, poller=build_poller()).check()
    finally:
        host.close()

    if as_yaml:
        typer.echo(yaml.safe_dump(report.to_dict(), sort_keys=False))
    else:
        _echo_report(report)
        if report.failed:
            typer.secho("Some checks failed; see the hints above.", fg=typer.colors.RED)
        else:
            typer.secho("Nexus is healthy.", fg=typer.colors.GREEN)
    raise typer.Exit(code=report.exit_code)


@app.command("uninstall")
def uninstall() -> None:
    """Remove Nexus from this Mac, confirming each destructive step."""
    settings = _load_settings()
    log_path = transcript_path("nexus-uninstall", directory=settings.log_dir)
    with _transcript(log_path):
        _uninstall(settings, log_path)


def _uninstall(settings: InstallerSettings, log_path: Path) -> None:
    typer.secho("Nexus Agent uninstaller", bold=True)
    typer.echo("You will be asked before each of these is removed:")
    typer.echo(f"  - background service {settings.service_label}")
    typer.echo(f"  - {settings.install_root}")
    typer.echo(f"  - database '{settings.database_name}'")
    typer.echo("  - PostgreSQL, Redis and Ollama (Homebrew)")
    if not typer.confirm("Continue with uninstall?", default=False):
        typer.echo("Cancelled.")
        raise typer.Exit(code=0)

    host = build_host(settings)
    ctx = RunContext(settings=settings, host=host, prompts=build_prompts(), poller=build_poller())
    try:
        report = teardown(ctx, report=InstallationReport(log_path=log_path))
    finally:
        host.close()

    _echo_report(report)
    if report.warned:
        typer.secho(f"Uninstall finished with warnings; see {log_path}", fg=typer.colors.YELLOW)
    else:
        typer.secho("Uninstall complete.", fg=typer.colors.GREEN)
    raise typer.Exit(code=1 if report.failed else 0)


def install_main() -> None:
    typer.run(install)


def verify_main() -> None:
    typer.run(verify)


def uninstall_main() -> None:
    typer.run(uninstall)


if __name__ == "__main__":
    app()
