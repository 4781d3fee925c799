"""Tests for the async API client."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from app.client import ApiError, EpisodelyClient


def test_client_surfaces_server_error_message() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": "Episode not found"})

    async def runner() -> None:
        async with httpx.AsyncClient(
            transport=httpx.MockTransport(handler), base_url="http://testserver"
        ) as http_client:
            client = EpisodelyClient(http_client)
            with pytest.raises(ApiError) as exc_info:
                await client.toggle_episode(5, True)

        assert exc_info.value.status_code == 404
        assert exc_info.value.message == "Episode not found"

    asyncio.run(runner())


def test_client_falls_back_to_generic_message() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="<html>oops</html>")

    async def runner() -> None:
        async with httpx.AsyncClient(
            transport=httpx.MockTransport(handler), base_url="http://testserver"
        ) as http_client:
            with pytest.raises(ApiError, match="Request failed"):
                await EpisodelyClient(http_client).list_shows()

    asyncio.run(runner())


def test_client_sends_expected_requests() -> None:
    seen: list[tuple[str, str, object]] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        seen.append((request.method, request.url.path, body))
        if request.url.path == "/api/calendar":
            assert request.url.params["days"] == "7"
            return httpx.Response(200, json={"days": 7, "episodes": [{"id": 1}]})
        if request.url.path == "/api/import":
            return httpx.Response(200, json={"ok": True, "importedCount": 2})
        return httpx.Response(200, json={"ok": True})

    async def runner() -> None:
        async with httpx.AsyncClient(
            transport=httpx.MockTransport(handler), base_url="http://testserver"
        ) as http_client:
            client = EpisodelyClient(http_client)
            await client.toggle_season(3, 2, False)
            await client.set_status(3, "stopped")
            assert await client.calendar(7) == [{"id": 1}]
            assert await client.import_payload([1, 2]) == 2

    asyncio.run(runner())
    assert seen[0] == ("POST", "/api/shows/3/seasons/2/watch", {"watched": False})
    assert seen[1] == ("POST", "/api/shows/3/status", {"status": "stopped"})
    assert seen[3] == ("POST", "/api/import", [1, 2])
