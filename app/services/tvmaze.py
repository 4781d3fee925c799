"""Utilities for communicating with the TVmaze catalog API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from ..config import Settings
from ..errors import ExternalServiceError
from ..models import CatalogEpisode, CatalogShow

logger = logging.getLogger(__name__)


class TVMazeClient:
    """Thin wrapper around the public TVmaze HTTP API."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client
        self._max_retries = settings.tvmaze_retry_limit

    def _headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "User-Agent": f"{self._settings.app_name} (episodely)",
        }

    async def _get(self, path: str, *, params: dict[str, Any] | None = None) -> Any:
        attempt = 0
        while True:
            try:
                response = await self._client.get(
                    path, headers=self._headers(), params=params
                )
            except httpx.HTTPError as exc:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = min(2 ** (attempt - 1), 5) * 0.5
                    logger.info(
                        "Transient error talking to TVmaze (%s). Retrying %s in %.1fs",
                        exc.__class__.__name__,
                        path,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                logger.warning("TVmaze request %s failed: %s", path, exc)
                raise ExternalServiceError(f"TVmaze unreachable: {exc}") from exc

            if 500 <= response.status_code < 600 and attempt < self._max_retries:
                attempt += 1
                backoff = min(2 ** (attempt - 1), 5) * 0.5
                logger.info(
                    "TVmaze %s for %s. Retrying in %.1fs",
                    response.status_code,
                    path,
                    backoff,
                )
                await asyncio.sleep(backoff)
                continue
            break

        if response.status_code >= 400:
            raise ExternalServiceError(
                f"TVmaze error {response.status_code}: {response.text}"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ExternalServiceError("TVmaze returned a non-JSON response") from exc

    async def search_shows(self, query: str) -> list[CatalogShow]:
        """Return catalog shows matching ``query`` in relevance order."""

        data = await self._get("/search/shows", params={"q": query})
        if not isinstance(data, list):
            logger.warning("Unexpected TVmaze search response structure")
            return []
        results: list[CatalogShow] = []
        for entry in data:
            show = entry.get("show") if isinstance(entry, dict) else None
            if isinstance(show, dict) and show.get("id") is not None:
                results.append(CatalogShow.from_tvmaze(show))
        return results

    async def fetch_show(self, catalog_id: int) -> CatalogShow:
        data = await self._get(f"/shows/{catalog_id}")
        if not isinstance(data, dict) or data.get("id") is None:
            raise ExternalServiceError(f"TVmaze returned no show for {catalog_id}")
        return CatalogShow.from_tvmaze(data)

    async def fetch_episodes(self, catalog_id: int) -> list[CatalogEpisode]:
        """Return every episode of a show, specials included."""

        data = await self._get(
            f"/shows/{catalog_id}/episodes", params={"specials": 1}
        )
        if not isinstance(data, list):
            raise ExternalServiceError(
                f"TVmaze returned no episodes for {catalog_id}"
            )
        return [
            CatalogEpisode.from_tvmaze(entry)
            for entry in data
            if isinstance(entry, dict) and entry.get("id") is not None
        ]
