from __future__ import annotations

import importlib

import pytest
from typer.testing import CliRunner

from nexus_installer.config import load_settings
from nexus_installer.prompts import ScriptedPrompts
from nexus_installer.provisioner import RunContext
from nexus_installer.readiness import ReadinessPoller
from host_sim import SimulatedMac


class FakeClock:
    """Deterministic sleep/clock pair for the readiness poller."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def poller(clock) -> ReadinessPoller:
    return ReadinessPoller(sleep=clock.sleep, clock=clock)


@pytest.fixture
def settings(tmp_path):
    home = tmp_path / "home"
    home.mkdir()
    return load_settings(
        environ={},
        install_root=tmp_path / "Nexus",
        home_dir=home,
        database_user="tester",
        log_dir=tmp_path / "logs",
        shell="/bin/zsh",
        models=["nomic-embed-text:latest"],
    )


@pytest.fixture
def mac(settings, tmp_path) -> SimulatedMac:
    return SimulatedMac(settings, brew_prefix=tmp_path / "homebrew")


@pytest.fixture
def host(mac):
    host = mac.host()
    yield host
    host.close()


@pytest.fixture
def make_context(settings, host, poller):
    def _make(prompts: ScriptedPrompts | None = None) -> RunContext:
        return RunContext(
            settings=settings,
            host=host,
            prompts=prompts or ScriptedPrompts(),
            poller=poller,
        )

    return _make


@pytest.fixture()
def cli_runner(settings, mac, poller, monkeypatch):
    monkeypatch.setenv("NO_COLOR", "1")

    import nexus_installer.cli as cli

    importlib.reload(cli)
    monkeypatch.setattr(cli, "_load_settings", lambda: settings)
    monkeypatch.setattr(cli, "build_host", lambda _settings: mac.host())
    monkeypatch.setattr(cli, "build_poller", lambda: poller)

    return CliRunner(), cli
