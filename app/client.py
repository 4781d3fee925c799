"""Async HTTP client for the Episodely API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Raised when the API answers with a non-success status."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class EpisodelyClient:
    """Thin wrapper over ``httpx.AsyncClient`` that keeps the session cookie."""

    def __init__(self, http_client: httpx.AsyncClient):
        self._client = http_client

    async def request(
        self, method: str, path: str, *, json: Any = None, **kwargs: Any
    ) -> Any:
        """Send a request and return the decoded JSON body.

        ``204`` responses return ``None``. Failures raise ``ApiError`` carrying
        the server's ``error`` message.
        """

        response = await self._client.request(method, path, json=json, **kwargs)
        if response.status_code == 204:
            return None
        try:
            data = response.json()
        except ValueError:
            data = None
        if response.is_error:
            message = "Request failed"
            if isinstance(data, dict) and data.get("error"):
                message = str(data["error"])
            logger.debug("%s %s failed with %s: %s", method, path, response.status_code, message)
            raise ApiError(message, response.status_code)
        return data

    async def login(self, username: str, password: str) -> None:
        await self.request(
            "POST", "/api/auth/login", json={"username": username, "password": password}
        )

    async def select_profile(self, profile_id: int) -> None:
        await self.request("POST", "/api/profiles/select", json={"profileId": profile_id})

    async def list_shows(self) -> list[dict[str, Any]]:
        data = await self.request("GET", "/api/shows")
        return list((data or {}).get("categories") or [])

    async def show_detail(self, show_id: int) -> dict[str, Any]:
        return await self.request("GET", f"/api/shows/{show_id}")

    async def toggle_episode(self, episode_id: int, watched: bool) -> None:
        await self.request(
            "POST", f"/api/episodes/{episode_id}/watch", json={"watched": watched}
        )

    async def toggle_season(self, show_id: int, season: int, watched: bool) -> None:
        await self.request(
            "POST",
            f"/api/shows/{show_id}/seasons/{season}/watch",
            json={"watched": watched},
        )

    async def set_status(self, show_id: int, status: str | None) -> None:
        await self.request(
            "POST", f"/api/shows/{show_id}/status", json={"status": status}
        )

    async def calendar(self, days: int | None = None) -> list[dict[str, Any]]:
        params = {"days": days} if days is not None else None
        data = await self.request("GET", "/api/calendar", params=params)
        return list((data or {}).get("episodes") or [])

    async def export(self) -> dict[str, Any]:
        return await self.request("GET", "/api/export")

    async def import_payload(self, payload: Any) -> int:
        data = await self.request("POST", "/api/import", json=payload)
        return int((data or {}).get("importedCount") or 0)
