from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class BackendAdapter:
    """Liveness endpoint of the installed Nexus server."""

    def __init__(self, *, base_url: str, http: httpx.Client) -> None:
        self.base_url = base_url.rstrip("/")
        self._http = http

    @property
    def health_url(self) -> str:
        return f"{self.base_url}/health"

    def responding(self) -> bool:
        try:
            response = self._http.get(self.health_url, timeout=5.0)
        except httpx.HTTPError as exc:
            logger.debug("Nexus not responding at %s: %s", self.health_url, exc)
            return False
        return response.is_success

    def health(self) -> dict[str, Any] | None:
        try:
            response = self._http.get(self.health_url, timeout=5.0)
        except httpx.HTTPError:
            return None
        if not response.is_success:
            return None
        try:
            payload = response.json()
        except ValueError:
            return {"raw": response.text}
        return payload if isinstance(payload, dict) else {"raw": payload}
