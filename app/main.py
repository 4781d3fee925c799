"""Entry point for the FastAPI-powered Episodely service."""

from __future__ import annotations

import json
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, TypeVar

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .config import Settings, settings
from .database import Database
from .errors import EpisodelyError, ValidationError
from .models import (
    AddShowRequest,
    Credentials,
    PasswordChange,
    ProfileCreate,
    ProfileSelect,
    StatusOverrideUpdate,
    WatchToggle,
)
from .services.accounts import AccountService, SessionContext
from .services.catalog_sync import CatalogRefresher
from .services.library import LibraryService
from .services.transfer import TransferService, parse_import_payload
from .services.tvmaze import TVMazeClient
from .utils import coerce_int
from .watch_state import STOPPED_OVERRIDE

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

app: FastAPI


def create_app(app_settings: Settings | None = None) -> FastAPI:
    config = app_settings or settings

    @asynccontextmanager
    async def lifespan(fastapi_app: FastAPI):
        exit_stack = AsyncExitStack()
        tvmaze_http = await exit_stack.enter_async_context(
            httpx.AsyncClient(
                base_url=str(config.tvmaze_api_url),
                timeout=httpx.Timeout(20.0, connect=10.0),
            )
        )
        database = Database(config.database_url)
        await database.create_all()

        tvmaze = TVMazeClient(config, tvmaze_http)
        accounts = AccountService(config, database.session_factory)
        purged = await accounts.purge_expired_sessions()
        if purged:
            logger.info("Purged %s expired sessions", purged)
        library = LibraryService(config, tvmaze, database.session_factory)
        transfer = TransferService(
            config, library, accounts, database.session_factory
        )
        refresher = CatalogRefresher(config, library)

        fastapi_app.state.database = database
        fastapi_app.state.accounts = accounts
        fastapi_app.state.library = library
        fastapi_app.state.transfer = transfer
        fastapi_app.state.refresher = refresher
        await refresher.start()
        await transfer.start()

        try:
            yield
        finally:  # pragma: no cover - teardown path exercised at runtime
            await transfer.stop()
            await refresher.stop()
            await database.dispose()
            await exit_stack.aclose()

    fastapi_app = FastAPI(
        title=config.app_name,
        description="Track watched episodes per profile and see what to watch next",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    fastapi_app.state.settings = config
    register_error_handlers(fastapi_app)
    register_routes(fastapi_app)
    return fastapi_app


def register_error_handlers(fastapi_app: FastAPI) -> None:
    @fastapi_app.exception_handler(EpisodelyError)
    async def _episodely_error(_: Request, exc: EpisodelyError) -> JSONResponse:
        return JSONResponse({"error": exc.message}, status_code=exc.status_code)

    @fastapi_app.exception_handler(RequestValidationError)
    async def _request_validation_error(
        _: Request, exc: RequestValidationError
    ) -> JSONResponse:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        message = first.get("msg", "Invalid request")
        return JSONResponse(
            {"error": f"{location}: {message}" if location else message},
            status_code=400,
        )


def _service(fastapi_app: FastAPI, name: str) -> Any:
    service = getattr(fastapi_app.state, name, None)
    if service is None:
        raise RuntimeError(f"{name} service not initialised")
    return service


def get_accounts(fastapi_app: FastAPI) -> AccountService:
    return _service(fastapi_app, "accounts")


def get_library(fastapi_app: FastAPI) -> LibraryService:
    return _service(fastapi_app, "library")


def get_transfer(fastapi_app: FastAPI) -> TransferService:
    return _service(fastapi_app, "transfer")


def _settings_for(fastapi_app: FastAPI) -> Settings:
    return getattr(fastapi_app.state, "settings", settings)


async def _read_json(request: Request) -> Any:
    body = await request.body()
    if not body:
        return {}
    try:
        return json.loads(body)
    except json.JSONDecodeError as exc:
        raise ValidationError("Request body must be valid JSON") from exc


async def _parse_body(request: Request, model: type[ModelT]) -> ModelT:
    payload = await _read_json(request)
    if not isinstance(payload, dict):
        raise ValidationError("Invalid payload")
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        message = first.get("msg", "Invalid payload")
        raise ValidationError(
            f"{location}: {message}" if location else message
        ) from exc


def register_routes(fastapi_app: FastAPI) -> None:
    async def _session(request: Request) -> SessionContext:
        cookie_name = _settings_for(fastapi_app).session_cookie_name
        return await get_accounts(fastapi_app).resolve_session(
            request.cookies.get(cookie_name)
        )

    async def _active_profile(request: Request) -> int:
        context = await _session(request)
        return context.require_profile()

    def _with_session_cookie(payload: dict[str, Any], session_id: str) -> JSONResponse:
        config = _settings_for(fastapi_app)
        response = JSONResponse(payload)
        response.set_cookie(
            config.session_cookie_name,
            session_id,
            max_age=config.session_ttl_seconds,
            httponly=True,
            samesite="lax",
            secure=config.environment == "production",
        )
        return response

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/health")
    async def api_health() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.post("/api/auth/register")
    async def register(request: Request) -> JSONResponse:
        body = await _parse_body(request, Credentials)
        session_id = await get_accounts(fastapi_app).register(
            body.username, body.password
        )
        return _with_session_cookie({"ok": True}, session_id)

    @fastapi_app.post("/api/auth/login")
    async def login(request: Request) -> JSONResponse:
        body = await _parse_body(request, Credentials)
        session_id = await get_accounts(fastapi_app).login(
            body.username, body.password
        )
        return _with_session_cookie({"ok": True}, session_id)

    @fastapi_app.post("/api/auth/logout")
    async def logout(request: Request) -> JSONResponse:
        config = _settings_for(fastapi_app)
        session_id = request.cookies.get(config.session_cookie_name)
        if session_id:
            await get_accounts(fastapi_app).logout(session_id)
        response = JSONResponse({"ok": True})
        response.delete_cookie(config.session_cookie_name)
        return response

    @fastapi_app.get("/api/auth/me")
    async def me(request: Request) -> dict[str, Any]:
        context = await _session(request)
        return {
            "user": {"id": context.user_id, "username": context.username},
            "profileId": context.profile_id,
        }

    @fastapi_app.post("/api/auth/password")
    async def change_password(request: Request) -> dict[str, bool]:
        context = await _session(request)
        body = await _parse_body(request, PasswordChange)
        await get_accounts(fastapi_app).change_password(
            context, body.current_password, body.new_password
        )
        return {"ok": True}

    @fastapi_app.get("/api/profiles")
    async def list_profiles(request: Request) -> dict[str, Any]:
        context = await _session(request)
        profiles = await get_accounts(fastapi_app).list_profiles(context.user_id)
        return {"profiles": profiles, "activeProfileId": context.profile_id}

    @fastapi_app.post("/api/profiles")
    async def create_profile(request: Request) -> dict[str, Any]:
        context = await _session(request)
        body = await _parse_body(request, ProfileCreate)
        return await get_accounts(fastapi_app).create_profile(
            context.user_id, body.name
        )

    @fastapi_app.post("/api/profiles/select")
    async def select_profile(request: Request) -> dict[str, bool]:
        context = await _session(request)
        body = await _parse_body(request, ProfileSelect)
        await get_accounts(fastapi_app).select_profile(context, body.profile_id)
        return {"ok": True}

    @fastapi_app.delete("/api/profiles/{profile_id}")
    async def delete_profile(request: Request, profile_id: int) -> dict[str, bool]:
        context = await _session(request)
        await get_accounts(fastapi_app).delete_profile(context, profile_id)
        return {"ok": True}

    @fastapi_app.get("/api/shows")
    async def list_shows(request: Request) -> dict[str, Any]:
        profile_id = await _active_profile(request)
        categories = await get_library(fastapi_app).list_categories(profile_id)
        return {"categories": categories}

    @fastapi_app.post("/api/shows")
    async def add_show(request: Request) -> dict[str, Any]:
        profile_id = await _active_profile(request)
        body = await _parse_body(request, AddShowRequest)
        show_id = await get_library(fastapi_app).add_show(
            profile_id, body.catalog_show_id
        )
        return {"ok": True, "showId": show_id}

    @fastapi_app.get("/api/shows/{show_id}")
    async def show_detail(request: Request, show_id: int) -> dict[str, Any]:
        profile_id = await _active_profile(request)
        return await get_library(fastapi_app).get_show_detail(profile_id, show_id)

    @fastapi_app.delete("/api/shows/{show_id}")
    async def remove_show(request: Request, show_id: int) -> dict[str, bool]:
        profile_id = await _active_profile(request)
        library = get_library(fastapi_app)
        link = await library.get_link(profile_id, show_id)
        if link.status != STOPPED_OVERRIDE:
            raise ValidationError("Only stopped shows can be removed")
        await library.remove_show(profile_id, show_id)
        return {"ok": True}

    @fastapi_app.post("/api/shows/{show_id}/status")
    async def set_show_status(request: Request, show_id: int) -> dict[str, bool]:
        profile_id = await _active_profile(request)
        body = await _parse_body(request, StatusOverrideUpdate)
        await get_library(fastapi_app).set_status_override(
            profile_id, show_id, body.status
        )
        return {"ok": True}

    @fastapi_app.post("/api/shows/{show_id}/seasons/{season}/watch")
    async def toggle_season(
        request: Request, show_id: int, season: int
    ) -> dict[str, bool]:
        profile_id = await _active_profile(request)
        body = await _parse_body(request, WatchToggle)
        await get_library(fastapi_app).toggle_season(
            profile_id, show_id, season, body.watched
        )
        return {"ok": True}

    @fastapi_app.post("/api/episodes/{episode_id}/watch")
    async def toggle_episode(request: Request, episode_id: int) -> dict[str, bool]:
        profile_id = await _active_profile(request)
        body = await _parse_body(request, WatchToggle)
        await get_library(fastapi_app).toggle_episode(
            profile_id, episode_id, body.watched
        )
        return {"ok": True}

    @fastapi_app.get("/api/calendar")
    async def calendar(request: Request) -> dict[str, Any]:
        profile_id = await _active_profile(request)
        raw_days = request.query_params.get("days")
        days = None
        if raw_days is not None:
            days = coerce_int(raw_days)
            if days is None or days < 1:
                raise ValidationError("days must be a positive integer")
        episodes = await get_library(fastapi_app).calendar(profile_id, days=days)
        if days is None:
            days = _settings_for(fastapi_app).calendar_days
        return {"days": days, "episodes": episodes}

    @fastapi_app.get("/api/tvmaze/search")
    async def search(request: Request) -> dict[str, Any]:
        profile_id = await _active_profile(request)
        query = request.query_params.get("q", "")
        results = await get_library(fastapi_app).search(profile_id, query)
        return {"results": results}

    @fastapi_app.get("/api/export")
    async def export(request: Request) -> dict[str, Any]:
        profile_id = await _active_profile(request)
        document = await get_transfer(fastapi_app).export_profile(profile_id)
        return document.to_payload()

    @fastapi_app.post("/api/import")
    async def import_shows(request: Request) -> dict[str, Any]:
        profile_id = await _active_profile(request)
        content_type = request.headers.get("content-type", "")
        if "json" in content_type:
            payload: Any = await _read_json(request)
        else:
            payload = await request.body()
        shows = parse_import_payload(payload)
        imported = await get_transfer(fastapi_app).import_shows(profile_id, shows)
        return {"ok": True, "importedCount": imported}


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
