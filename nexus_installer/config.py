from __future__ import annotations

import getpass
import os
from pathlib import Path
import tempfile
from typing import Mapping

from pydantic import BaseModel, Field, field_validator

from nexus_installer.errors import ConfigurationException

DEFAULT_REPO_URL = "https://github.com/lennyfinn1974/plaitfrm.git"
HOMEBREW_INSTALL_SCRIPT_URL = "https://raw.githubusercontent.com/Homebrew/install/HEAD/install.sh"
ADMIN_KEY_PLACEHOLDER = "change-me-to-a-random-secret"


class SystemDependency(BaseModel):
    formula: str
    label: str
    # Fatal dependencies halt the install; the rest degrade functionality.
    required: bool = False
    service: bool = False


class FrontendBundle(BaseModel):
    name: str
    source_dir: str
    build_dir: str


class Credential(BaseModel):
    key: str
    label: str
    purpose: str


def _default_dependencies() -> list[SystemDependency]:
    return [
        SystemDependency(formula="python@3.12", label="Python 3.12"),
        SystemDependency(formula="node", label="Node.js"),
        SystemDependency(formula="postgresql@17", label="PostgreSQL", required=True, service=True),
        SystemDependency(formula="redis", label="Redis", required=True, service=True),
        SystemDependency(formula="ollama", label="Ollama", service=True),
    ]


def _default_frontends() -> list[FrontendBundle]:
    return [
        FrontendBundle(name="Chat UI", source_dir="chat-ui", build_dir="frontend/chat-build"),
        FrontendBundle(name="Admin UI", source_dir="admin-ui", build_dir="frontend/admin-build"),
    ]


def _default_credentials() -> list[Credential]:
    return [
        Credential(key="ANTHROPIC_API_KEY", label="Anthropic API Key", purpose="enables Claude cloud fallback"),
        Credential(key="BRAVE_API_KEY", label="Brave Search API Key", purpose="enables web search"),
        Credential(key="TELEGRAM_BOT_TOKEN", label="Telegram Bot Token", purpose="enables Telegram integration"),
        Credential(key="GITHUB_TOKEN", label="GitHub Token", purpose="enables GitHub plugin"),
    ]


class InstallerSettings(BaseModel):
    install_root: Path = Field(default_factory=lambda: Path.home() / "Nexus")
    home_dir: Path = Field(default_factory=Path.home)
    repo_url: str = DEFAULT_REPO_URL
    branch: str = "main"

    dependencies: list[SystemDependency] = Field(default_factory=_default_dependencies)
    python_formula: str = "python@3.12"
    python_binary: str = "python3.12"
    postgres_formula: str = "postgresql@17"
    redis_formula: str = "redis"
    ollama_formula: str = "ollama"

    database_name: str = "nexus"
    database_user: str = Field(default_factory=getpass.getuser)

    ollama_url: str = "http://localhost:11434"
    models: list[str] = Field(default_factory=lambda: ["nomic-embed-text:latest", "kimi-k2.5:cloud"])

    service_label: str = "com.nexus.agent"
    service_host: str = "0.0.0.0"
    service_port: int = 8080
    launch_agents_dir: Path | None = None
    throttle_interval: int = 5

    frontends: list[FrontendBundle] = Field(default_factory=_default_frontends)
    credentials: list[Credential] = Field(default_factory=_default_credentials)
    runtime_dirs: list[str] = Field(default_factory=lambda: ["backend/logs", "data", "skills", "docs_input"])
    python_packages: list[str] = Field(default_factory=lambda: ["fastapi", "sqlalchemy", "redis", "anthropic"])
    env_template: Path | None = None

    min_free_gb: int = 5
    log_dir: Path = Field(default_factory=lambda: Path(tempfile.gettempdir()))
    shell: str = Field(default_factory=lambda: os.environ.get("SHELL", "/bin/zsh"))

    @field_validator("service_port")
    @classmethod
    def _valid_port(cls, value: int) -> int:
        if not 0 < value < 65536:
            raise ValueError("service_port must be between 1 and 65535")
        return value

    @property
    def env_file(self) -> Path:
        # The backend resolves .env relative to the parent of its working
        # directory (backend/), i.e. the install root.
        return self.install_root / ".env"

    @property
    def secret_file(self) -> Path:
        return self.install_root / ".nexus_secret"

    @property
    def venv_dir(self) -> Path:
        return self.install_root / "venv"

    @property
    def venv_python(self) -> Path:
        return self.venv_dir / "bin" / "python"

    @property
    def backend_dir(self) -> Path:
        return self.install_root / "backend"

    @property
    def logs_dir(self) -> Path:
        return self.backend_dir / "logs"

    @property
    def service_descriptor(self) -> Path:
        agents_dir = self.launch_agents_dir or (self.home_dir / "Library" / "LaunchAgents")
        return agents_dir / f"{self.service_label}.plist"

    @property
    def service_url(self) -> str:
        return f"http://localhost:{self.service_port}"

    @property
    def shell_profile(self) -> Path:
        name = ".bash_profile" if "bash" in self.shell else ".zshrc"
        return self.home_dir / name


def load_settings(environ: Mapping[str, str] | None = None, **overrides) -> InstallerSettings:
    """Build settings from the environment; NEXUS_HOME overrides the install root."""
    env = os.environ if environ is None else environ
    values: dict = {}
    install_root = env.get("NEXUS_HOME")
    if install_root:
        values["install_root"] = Path(install_root).expanduser()
    values.update(overrides)
    try:
        return InstallerSettings(**values)
    except ValueError as exc:
        raise ConfigurationException(f"Invalid installer settings: {exc}") from exc
