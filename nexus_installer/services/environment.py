"""The materialized configuration for the Nexus backend.

Both artifacts are written at most once: when present they are authoritative,
so a reinstall never clobbers secrets or API keys the user already set.
"""
from __future__ import annotations

import base64
import logging
import os
from pathlib import Path
import secrets

from dotenv import dotenv_values, set_key

from nexus_installer.config import ADMIN_KEY_PLACEHOLDER
from nexus_installer.errors import ConfigurationException

logger = logging.getLogger(__name__)

PG_USER_MARKER = "__PG_USER__"

DEFAULT_ENV_TEMPLATE = f"""\
# Nexus Agent - Environment Configuration
# Generated by nexus-installer

HOST=0.0.0.0
PORT=8080
ALLOWED_ORIGINS=http://localhost:8080,http://127.0.0.1:8080

# Database
DATABASE_URL=postgresql+asyncpg://{PG_USER_MARKER}@localhost/nexus?ssl=disable

# Redis
REDIS_URL=redis://localhost:6379

# Admin Access Key (change this!)
ADMIN_API_KEY={ADMIN_KEY_PLACEHOLDER}

# === Optional API Keys ===
# Anthropic Claude (cloud fallback model)
ANTHROPIC_API_KEY=

# Brave Search
BRAVE_API_KEY=

# Mem0 (cloud memory service)
MEM0_API_KEY=

# Telegram Bot
TELEGRAM_BOT_TOKEN=

# GitHub
GITHUB_TOKEN=
"""

_OWNER_ONLY = 0o600


def render_env_template(template: str, *, pg_user: str) -> str:
    return template.replace(PG_USER_MARKER, pg_user)


class EnvironmentFile:
    def __init__(self, path: Path) -> None:
        self.path = path

    def exists(self) -> bool:
        return self.path.is_file()

    def values(self) -> dict[str, str]:
        if not self.exists():
            return {}
        return {key: value or "" for key, value in dotenv_values(self.path).items()}

    def get(self, key: str) -> str:
        return self.values().get(key, "")

    def write_initial(self, *, pg_user: str, template_path: Path | None = None) -> None:
        if self.exists():
            raise ConfigurationException(f"{self.path} already exists; refusing to overwrite")
        if template_path is not None:
            try:
                template = template_path.read_text(encoding="utf-8")
            except OSError as exc:
                raise ConfigurationException(f"Unable to read env template {template_path}: {exc}") from exc
        else:
            template = DEFAULT_ENV_TEMPLATE
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, _OWNER_ONLY)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(render_env_template(template, pg_user=pg_user))
        os.chmod(self.path, _OWNER_ONLY)
        logger.info("Wrote %s", self.path)

    def set_value(self, key: str, value: str, *, overwrite: bool = False) -> bool:
        """Set ``key`` in place; an existing non-empty value is kept unless ``overwrite``."""
        if not self.exists():
            raise ConfigurationException(f"{self.path} does not exist")
        current = self.get(key)
        if current and not overwrite:
            logger.debug("%s already set in %s; keeping it", key, self.path)
            return False
        set_key(self.path, key, value, quote_mode="never")
        os.chmod(self.path, _OWNER_ONLY)
        return True

    def has_placeholder_admin_key(self) -> bool:
        return self.get("ADMIN_API_KEY") == ADMIN_KEY_PLACEHOLDER

    def generate_admin_key(self) -> str:
        admin_key = secrets.token_hex(16)
        set_key(self.path, "ADMIN_API_KEY", admin_key, quote_mode="never")
        os.chmod(self.path, _OWNER_ONLY)
        logger.info("Admin API key generated")
        return admin_key


class SigningSecret:
    """Random key the backend reads at startup to sign request tokens."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def exists(self) -> bool:
        return self.path.is_file() and self.path.stat().st_size > 0

    def generate(self) -> None:
        if self.exists():
            raise ConfigurationException(f"{self.path} already exists; refusing to overwrite")
        encoded = base64.b64encode(secrets.token_bytes(32)).decode("ascii")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, _OWNER_ONLY)
        with os.fdopen(fd, "w", encoding="ascii") as handle:
            handle.write(encoded + "\n")
        os.chmod(self.path, _OWNER_ONLY)
        logger.info("Request signing secret generated")
