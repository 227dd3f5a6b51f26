from __future__ import annotations

import logging
from pathlib import Path

import httpx

from nexus_installer.proc import CommandRunner, resolve_binary, run_command

logger = logging.getLogger(__name__)


class OllamaAdapter:
    """Model-server API (``/api/tags``) and the ``ollama pull`` CLI."""

    def __init__(
        self,
        *,
        base_url: str,
        http: httpx.Client,
        bin_dir: Path | None = None,
        runner: CommandRunner | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._http = http
        self.bin_dir = bin_dir
        self._runner = runner

    @property
    def tags_url(self) -> str:
        return f"{self.base_url}/api/tags"

    def _tags(self) -> dict | None:
        try:
            response = self._http.get(self.tags_url, timeout=5.0)
        except httpx.HTTPError as exc:
            logger.debug("Ollama not reachable at %s: %s", self.tags_url, exc)
            return None
        if response.status_code != 200:
            logger.debug("Ollama tags returned HTTP %s", response.status_code)
            return None
        try:
            payload = response.json()
        except ValueError:
            return {}
        return payload if isinstance(payload, dict) else {}

    def reachable(self) -> bool:
        return self._tags() is not None

    def list_models(self) -> list[str]:
        payload = self._tags() or {}
        models = payload.get("models")
        if not isinstance(models, list):
            return []
        return [m["name"] for m in models if isinstance(m, dict) and isinstance(m.get("name"), str)]

    def has_model(self, name: str) -> bool:
        wanted = {name} if ":" in name else {name, f"{name}:latest"}
        return any(model in wanted for model in self.list_models())

    def pull(self, name: str) -> None:
        logger.info("Pulling model %s (this may take a while)", name)
        run_command(
            [resolve_binary("ollama", self.bin_dir), "pull", name],
            runner=self._runner,
            error_message=f"Failed to pull model {name}",
        )
        logger.info("%s ready", name)
