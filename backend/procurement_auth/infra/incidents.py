from __future__ import annotations

import logging
import traceback
from datetime import datetime, timezone

import httpx

from ..config import Settings

logger = logging.getLogger("procurement.incidents")

ISSUE_PATH = "/rest/api/3/issue"
INCIDENT_LABELS = ["backend-error", "maritime-procurement"]


class IncidentReporter:
    """Files server errors as issues in the tracker. Never raises."""

    def __init__(
        self,
        *,
        base_url: str,
        project_key: str,
        username: str | None = None,
        api_token: str | None = None,
        timeout_seconds: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._project_key = project_key
        self._auth = (username, api_token) if username and api_token else None
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> IncidentReporter | None:
        if not settings.is_production or not settings.incident_tracker_url:
            return None
        return cls(
            base_url=settings.incident_tracker_url,
            project_key=settings.incident_project_key,
            username=settings.incident_tracker_user,
            api_token=settings.incident_tracker_token,
        )

    def build_issue(
        self,
        exc: BaseException,
        *,
        status_code: int,
        method: str,
        path: str,
        client_ip: str | None = None,
        user_agent: str | None = None,
    ) -> dict:
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        description = "\n".join(
            [
                "Error details:",
                f"- Message: {exc}",
                f"- URL: {path}",
                f"- Method: {method}",
                f"- IP: {client_ip or 'n/a'}",
                f"- User Agent: {user_agent or 'n/a'}",
                f"- Timestamp: {datetime.now(timezone.utc).isoformat()}",
                "",
                stack,
            ]
        )
        return {
            "fields": {
                "project": {"key": self._project_key},
                "summary": f"Backend Error: {exc}"[:255],
                "description": description,
                "issuetype": {"name": "Bug"},
                "priority": {"name": "High" if status_code >= 500 else "Medium"},
                "labels": list(INCIDENT_LABELS),
            }
        }

    async def report(self, exc: BaseException, **request_info) -> bool:
        issue = self.build_issue(exc, **request_info)
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(
                    f"{self._base_url}{ISSUE_PATH}", json=issue, auth=self._auth
                )
                response.raise_for_status()
        except httpx.HTTPError as exc_info:
            logger.error("Failed to send incident to tracker: %s", exc_info)
            return False
        logger.info("Incident sent to tracker path=%s", request_info.get("path"))
        return True
