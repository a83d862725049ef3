from __future__ import annotations
from typing import Any, Dict, List
import requests
from traffic_advisor.config import get_settings
from traffic_advisor.errors import CollaboratorUnavailable
from .base import FleetDirectory, logger


class ControlPlaneClient(FleetDirectory):
    """HTTP client for the control plane; every call is bounded by the collaborator timeout."""

    name = "control-plane"

    def __init__(self, base_url: str | None = None, timeout: float | None = None, session: requests.Session | None = None):
        settings = get_settings()
        self.base_url = (base_url or settings.control_plane_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.collaborator_timeout_sec
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, **kwargs) -> Any:
        resp = self.session.request(method, f"{self.base_url}{path}", timeout=self.timeout, **kwargs)
        if resp.status_code >= 500:
            raise CollaboratorUnavailable(f"control plane responded {resp.status_code} for {path}")
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.json() if resp.content else None

    def list_applications(self) -> List[Dict[str, Any]]:
        data = self.instrumented("list_applications", self._request, "GET", "/applications")
        return data or []

    def get_latest_application_state(self, application_id: str) -> Dict[str, Any] | None:
        data = self.instrumented(
            "get_latest_application_state",
            self._request,
            "GET",
            "/application-states",
            params={"where.applicationId.eq": application_id, "orderby.createdAt": "desc", "limit": 1},
        )
        if not data:
            return None
        latest = data[0] if isinstance(data, list) else data
        return latest.get("state") or {}

    def emit_application_config(self, application_id: str) -> None:
        self.instrumented("emit_application_config", self._request, "POST", f"/applications/{application_id}/config/emit")
        logger.info("application config emitted for %s", application_id)
