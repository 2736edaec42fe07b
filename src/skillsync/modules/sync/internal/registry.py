"""HTTP client for the remote skill registry."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional, Protocol

import requests
from pydantic import ValidationError

from skillsync.shared.config import Config
from skillsync.shared.errors import RegistryError
from skillsync.shared.types import to_iso

from ..public.types import HealthStatus, RegistryPage, RemoteSkill

logger = logging.getLogger(__name__)

HEALTH_TIMEOUT_SECONDS = 5.0
USER_AGENT = "skillsync/0.1"


class SkillRegistry(Protocol):
    """What the sync engine needs from a registry."""

    def is_offline(self) -> bool: ...

    def check_health(self) -> HealthStatus: ...

    def list_skills(
        self, offset: int, limit: int, updated_since: Optional[datetime] = None
    ) -> RegistryPage: ...


class RegistryClient:
    """Blocking client; callers on an event loop run it in a worker thread."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        offline: bool = False,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.offline = offline
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json", "User-Agent": USER_AGENT})
        if api_key:
            self.session.headers["Authorization"] = f"Bearer {api_key}"

    @classmethod
    def from_config(cls, config: Config) -> "RegistryClient":
        return cls(
            config.registry_url,
            api_key=config.registry_api_key,
            timeout=config.registry_timeout_seconds,
            offline=config.registry_offline,
        )

    def is_offline(self) -> bool:
        return self.offline

    def check_health(self) -> HealthStatus:
        if self.offline:
            return "healthy"
        try:
            resp = self.session.get(
                f"{self.base_url}/health",
                timeout=min(self.timeout, HEALTH_TIMEOUT_SECONDS),
            )
        except requests.RequestException as exc:
            logger.warning("Registry health check failed: %s", exc)
            return "unhealthy"
        if resp.ok:
            return "healthy"
        return "unhealthy" if resp.status_code >= 500 else "degraded"

    def list_skills(
        self, offset: int, limit: int, updated_since: Optional[datetime] = None
    ) -> RegistryPage:
        if self.offline:
            raise RegistryError("Registry client is in offline mode")

        params: dict[str, Any] = {"offset": offset, "limit": limit}
        if updated_since is not None:
            params["updated_since"] = to_iso(updated_since)

        url = f"{self.base_url}/skills"
        try:
            resp = self.session.get(url, params=params, timeout=self.timeout)
        except requests.Timeout as exc:
            raise RegistryError(f"Registry request timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            raise RegistryError(f"Registry request failed: {exc}") from exc

        if not resp.ok:
            raise RegistryError(
                f"Registry returned HTTP {resp.status_code} for {url}",
                status_code=resp.status_code,
            )
        try:
            payload = resp.json()
        except ValueError as exc:
            raise RegistryError("Registry returned invalid JSON") from exc
        return parse_page(payload, offset=offset, limit=limit)

    def close(self) -> None:
        self.session.close()


def parse_page(payload: Any, *, offset: int, limit: int) -> RegistryPage:
    """Accept ``{"data": [...], "total": n}`` (or ``items``)."""
    if not isinstance(payload, dict):
        raise RegistryError("Registry page must be a JSON object")
    raw_items = payload.get("data", payload.get("items"))
    if not isinstance(raw_items, list):
        raise RegistryError("Registry page is missing its item list")
    try:
        items = [RemoteSkill.model_validate(item) for item in raw_items]
    except ValidationError as exc:
        raise RegistryError(f"Malformed skill descriptor: {exc.errors()[0]['msg']}") from exc
    total = payload.get("total")
    if not isinstance(total, int):
        total = offset + len(items)
    return RegistryPage(
        items=items,
        total=total,
        offset=payload.get("offset", offset),
        limit=payload.get("limit", limit),
    )
