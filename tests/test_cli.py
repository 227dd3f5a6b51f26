from __future__ import annotations

import os

import yaml

from nexus_installer.prompts import ScriptedPrompts


def test_cli_install_verify_uninstall_flow(cli_runner, mac, settings, monkeypatch) -> None:
    runner, cli = cli_runner
    monkeypatch.setattr(cli, "build_prompts", lambda: ScriptedPrompts({"Anthropic API Key": "sk-ant-cli"}))

    result = runner.invoke(cli.app, ["install"], input="y\n")
    assert result.exit_code == 0, result.output
    assert "Installation complete." in result.output
    assert "Admin API key:" in result.output
    assert f"launchctl bootout gui/{os.getuid()}/{settings.service_label}" in result.output
    assert f"launchctl bootstrap gui/{os.getuid()} {settings.service_descriptor}" in result.output
    assert "launchctl unload" not in result.output
    assert "Failed: 0" in result.output

    result = runner.invoke(cli.app, ["verify"])
    assert result.exit_code == 0, result.output
    assert "Nexus is healthy." in result.output

    monkeypatch.setattr(cli, "build_prompts", lambda: ScriptedPrompts(confirm_default=False))
    result = runner.invoke(cli.app, ["uninstall"], input="y\n")
    assert result.exit_code == 0, result.output
    assert settings.install_root.is_dir()


def test_cli_install_cancelled(cli_runner, mac) -> None:
    runner, cli = cli_runner

    result = runner.invoke(cli.app, ["install"], input="n\n")

    assert result.exit_code == 0
    assert "Cancelled." in result.output
    assert mac.calls == []


def test_cli_install_fatal_exits_non_zero(cli_runner, mac, settings, monkeypatch) -> None:
    runner, cli = cli_runner
    monkeypatch.setattr(cli, "build_prompts", lambda: ScriptedPrompts())
    mac.broken_installs.add("redis")

    result = runner.invoke(cli.app, ["install"], input="y\n")

    assert result.exit_code == 1
    assert "Installation aborted: Install redis" in result.output
    assert "See log:" in result.output
    logs = list(settings.log_dir.glob("nexus-install-*.log"))
    assert len(logs) == 1
    assert "Install redis" in logs[0].read_text()


def test_cli_verify_exit_code_counts_failures(cli_runner) -> None:
    runner, cli = cli_runner

    result = runner.invoke(cli.app, ["verify", "--yaml"])

    data = yaml.safe_load(result.output)
    assert data["failed"] > 0
    assert result.exit_code == data["failed"]
    assert data["results"][0]["name"] == "PostgreSQL running"
