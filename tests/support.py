"""Database seeding helpers and a fake catalog shared by the test modules."""

from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import cast

from app.config import Settings
from app.database import Database
from app.db_models import Episode, Profile, ProfileShow, Show, User, WatchMark
from app.errors import ExternalServiceError
from app.models import CatalogEpisode, CatalogShow
from app.services.library import LibraryService
from app.services.tvmaze import TVMazeClient

AS_OF = date(2024, 4, 10)


class FakeTVMaze:
    """In-memory stand-in for the catalog client."""

    def __init__(self) -> None:
        self.shows: dict[int, CatalogShow] = {}
        self.episodes: dict[int, list[CatalogEpisode]] = {}
        self.failing: set[int] = set()
        self.fetch_calls: list[int] = []

    def add(
        self,
        catalog_id: int,
        name: str,
        episodes: list[dict[str, object]],
        *,
        status: str = "Running",
    ) -> None:
        self.shows[catalog_id] = CatalogShow(
            catalog_id=catalog_id, name=name, status=status, premiered="2020-01-01"
        )
        self.episodes[catalog_id] = [CatalogEpisode(**entry) for entry in episodes]

    async def search_shows(self, query: str) -> list[CatalogShow]:
        return [show for show in self.shows.values() if query.lower() in show.name.lower()]

    async def fetch_show(self, catalog_id: int) -> CatalogShow:
        self.fetch_calls.append(catalog_id)
        if catalog_id in self.failing or catalog_id not in self.shows:
            raise ExternalServiceError(f"TVmaze error 404: show {catalog_id}")
        return self.shows[catalog_id]

    async def fetch_episodes(self, catalog_id: int) -> list[CatalogEpisode]:
        if catalog_id in self.failing:
            raise ExternalServiceError(f"TVmaze error 500: episodes {catalog_id}")
        return list(self.episodes.get(catalog_id, []))


def build_settings(**overrides: object) -> Settings:
    base: dict[str, object] = {"CATALOG_REFRESH_ENABLED": False}
    base.update(overrides)
    return Settings(_env_file=None, **base)  # type: ignore[arg-type]


async def open_database(tmp_path: Path, name: str = "episodely.db") -> Database:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / name}")
    await database.create_all()
    return database


def build_library(
    database: Database,
    tvmaze: FakeTVMaze | None = None,
    *,
    as_of: date = AS_OF,
) -> LibraryService:
    return LibraryService(
        build_settings(),
        cast(TVMazeClient, tvmaze or FakeTVMaze()),
        database.session_factory,
        clock=lambda: as_of,
    )


async def create_profile(
    database: Database, *, username: str = "viewer", name: str = "Main"
) -> int:
    async with database.session_factory() as session:
        user = User(username=username, password_hash="scrypt$00$00")
        session.add(user)
        await session.flush()
        profile = Profile(user_id=user.id, name=name)
        session.add(profile)
        await session.commit()
        return profile.id


async def create_show(
    database: Database,
    *,
    tvmaze_id: int,
    name: str,
    status: str = "Running",
    premiered: str | None = None,
) -> int:
    async with database.session_factory() as session:
        show = Show(tvmaze_id=tvmaze_id, name=name, status=status, premiered=premiered)
        session.add(show)
        await session.commit()
        return show.id


async def create_episode(
    database: Database,
    *,
    show_id: int,
    tvmaze_id: int,
    season: int = 1,
    number: int | None = 1,
    name: str | None = None,
    airdate: str | None = None,
    airtime: str | None = None,
) -> int:
    async with database.session_factory() as session:
        episode = Episode(
            show_id=show_id,
            tvmaze_id=tvmaze_id,
            season=season,
            number=number,
            name=name or f"S{season}E{number}",
            airdate=airdate,
            airtime=airtime,
        )
        session.add(episode)
        await session.commit()
        return episode.id


async def link_profile_show(
    database: Database,
    profile_id: int,
    show_id: int,
    *,
    status: str | None = None,
    created_at: str = "2024-04-01T12:00:00Z",
) -> None:
    async with database.session_factory() as session:
        session.add(
            ProfileShow(
                profile_id=profile_id,
                show_id=show_id,
                status=status,
                created_at=created_at,
            )
        )
        await session.commit()


async def mark_watched(
    database: Database,
    profile_id: int,
    episode_id: int,
    *,
    watched_at: str = "2024-04-02T12:00:00Z",
) -> None:
    async with database.session_factory() as session:
        session.add(
            WatchMark(profile_id=profile_id, episode_id=episode_id, watched_at=watched_at)
        )
        await session.commit()
