"""Profile show library: categorised listing, detail, watch marks and calendar."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy import and_, delete, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import MAX_CALENDAR_DAYS, Settings
from ..db_models import Episode, ProfileShow, Show, WatchMark
from ..errors import NotFoundError, ValidationError
from ..models import CatalogEpisode, CatalogShow
from ..utils import release_year, today, utc_timestamp
from ..watch_state import (
    STOPPED_OVERRIDE,
    EpisodeFacts,
    ShowProgress,
    categorize,
    compute_show_progress,
)
from .tvmaze import TVMazeClient

logger = logging.getLogger(__name__)

TBD_AIRTIME = "TBD"


@dataclass(slots=True)
class TrackedShow:
    """A linked show with its episodes and the progress derived from them."""

    show: Show
    link: ProfileShow
    episodes: list[tuple[Episode, WatchMark | None]]
    progress: ShowProgress


def episode_facts(episode: Episode, mark: WatchMark | None) -> EpisodeFacts:
    return EpisodeFacts(
        id=episode.id,
        season=episode.season,
        number=episode.number,
        name=episode.name,
        airdate=episode.airdate,
        airtime=episode.airtime,
        watched=mark is not None,
    )


def episode_payload(episode: Episode, mark: WatchMark | None) -> dict[str, Any]:
    return {
        "id": episode.id,
        "tvmazeId": episode.tvmaze_id,
        "season": episode.season,
        "number": episode.number,
        "name": episode.name,
        "summary": episode.summary,
        "airdate": episode.airdate,
        "airtime": episode.airtime,
        "runtime": episode.runtime,
        "image": {
            "medium": episode.image_medium,
            "original": episode.image_original,
        },
        "watched": mark is not None,
        "watchedAt": mark.watched_at if mark is not None else None,
    }


def show_payload(tracked: TrackedShow) -> dict[str, Any]:
    show = tracked.show
    progress = tracked.progress
    return {
        "id": show.id,
        "tvmazeId": show.tvmaze_id,
        "name": show.name,
        "summary": show.summary,
        "status": show.status,
        "premiered": show.premiered,
        "ended": show.ended,
        "releaseYear": release_year(show.premiered),
        "imdbId": show.imdb_id,
        "image": {"medium": show.image_medium, "original": show.image_original},
        "addedAt": tracked.link.created_at,
        "profileStatus": tracked.link.status,
        "state": progress.state,
        "stats": progress.stats.to_payload(),
        "nextEpisode": (
            progress.next_episode.to_payload() if progress.next_episode else None
        ),
    }


def season_payloads(
    episodes: Sequence[tuple[Episode, WatchMark | None]],
) -> list[dict[str, Any]]:
    """Group episodes by season with per-season watch counters."""

    grouped: dict[int, list[tuple[Episode, WatchMark | None]]] = {}
    for episode, mark in episodes:
        grouped.setdefault(episode.season, []).append((episode, mark))

    seasons: list[dict[str, Any]] = []
    for season_number in sorted(grouped):
        rows = sorted(
            grouped[season_number],
            key=lambda row: (row[0].number is None, row[0].number or 0, row[0].id),
        )
        total = len(rows)
        watched = sum(1 for _, mark in rows if mark is not None)
        seasons.append(
            {
                "season": season_number,
                "episodes": [episode_payload(episode, mark) for episode, mark in rows],
                "watchedCount": watched,
                "totalCount": total,
                "watched": total > 0 and watched == total,
            }
        )
    return seasons


class LibraryService:
    """Reads and mutates a profile's tracked shows and watch marks."""

    def __init__(
        self,
        settings: Settings,
        tvmaze_client: TVMazeClient,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Callable[[], date] = today,
    ):
        self._settings = settings
        self._tvmaze = tvmaze_client
        self._session_factory = session_factory
        self._clock = clock

    def as_of(self) -> date:
        """Return the release cutoff date for the current request."""

        return self._clock()

    async def list_categories(
        self, profile_id: int, *, as_of: date | None = None
    ) -> list[dict[str, Any]]:
        """Return the profile's shows bucketed by derived watch state."""

        as_of = as_of or self.as_of()
        async with self._session_factory() as session:
            tracked = await self._load_tracked(session, profile_id, as_of=as_of)
        return categorize(show_payload(entry) for entry in tracked)

    async def get_show_detail(
        self, profile_id: int, show_id: int, *, as_of: date | None = None
    ) -> dict[str, Any]:
        as_of = as_of or self.as_of()
        async with self._session_factory() as session:
            tracked = await self._load_tracked(
                session, profile_id, show_ids=[show_id], as_of=as_of
            )
        if not tracked:
            raise NotFoundError("Show not found")
        entry = tracked[0]
        return {
            "show": show_payload(entry),
            "seasons": season_payloads(entry.episodes),
        }

    async def get_show_state(
        self, profile_id: int, show_id: int, *, as_of: date | None = None
    ) -> ShowProgress | None:
        async with self._session_factory() as session:
            tracked = await self._load_tracked(
                session, profile_id, show_ids=[show_id], as_of=as_of or self.as_of()
            )
        return tracked[0].progress if tracked else None

    async def get_link(self, profile_id: int, show_id: int) -> ProfileShow:
        async with self._session_factory() as session:
            link = await session.get(ProfileShow, (profile_id, show_id))
        if link is None:
            raise NotFoundError("Show not found")
        return link

    async def toggle_episode(
        self, profile_id: int, episode_id: int, watched: bool
    ) -> None:
        """Mark or unmark one episode; repeated calls are idempotent."""

        async with self._session_factory() as session:
            stmt = (
                select(Episode.id)
                .join(
                    ProfileShow,
                    and_(
                        ProfileShow.show_id == Episode.show_id,
                        ProfileShow.profile_id == profile_id,
                    ),
                )
                .where(Episode.id == episode_id)
            )
            if (await session.execute(stmt)).scalar_one_or_none() is None:
                raise NotFoundError("Episode not found")
            if watched:
                await self._upsert_marks(
                    session, profile_id, [episode_id], utc_timestamp()
                )
            else:
                await session.execute(
                    delete(WatchMark).where(
                        WatchMark.profile_id == profile_id,
                        WatchMark.episode_id == episode_id,
                    )
                )
            await session.commit()

    async def toggle_season(
        self, profile_id: int, show_id: int, season: int, watched: bool
    ) -> int:
        """Set every episode of a season to ``watched`` in one transaction.

        Returns the number of episodes in the season.
        """

        async with self._session_factory() as session:
            async with session.begin():
                link = await session.get(ProfileShow, (profile_id, show_id))
                if link is None:
                    raise NotFoundError("Show not found")
                result = await session.execute(
                    select(Episode.id).where(
                        Episode.show_id == show_id, Episode.season == season
                    )
                )
                episode_ids = [row[0] for row in result.all()]
                if not episode_ids:
                    return 0
                if watched:
                    await self._upsert_marks(
                        session, profile_id, episode_ids, utc_timestamp()
                    )
                else:
                    await session.execute(
                        delete(WatchMark).where(
                            WatchMark.profile_id == profile_id,
                            WatchMark.episode_id.in_(episode_ids),
                        )
                    )
        logger.debug(
            "Profile %s set season %s of show %s watched=%s (%s episodes)",
            profile_id,
            season,
            show_id,
            watched,
            len(episode_ids),
        )
        return len(episode_ids)

    async def set_status_override(
        self, profile_id: int, show_id: int, value: str | None
    ) -> None:
        if value is not None and value != STOPPED_OVERRIDE:
            raise ValidationError("Invalid status")
        async with self._session_factory() as session:
            result = await session.execute(
                update(ProfileShow)
                .where(
                    ProfileShow.profile_id == profile_id,
                    ProfileShow.show_id == show_id,
                )
                .values(status=value)
            )
            if result.rowcount == 0:
                raise NotFoundError("Show not found")
            await session.commit()

    async def remove_show(self, profile_id: int, show_id: int) -> None:
        """Unlink a show and drop the profile's watch marks for it atomically."""

        async with self._session_factory() as session:
            async with session.begin():
                link = await session.get(ProfileShow, (profile_id, show_id))
                if link is None:
                    raise NotFoundError("Show not found")
                episode_ids = select(Episode.id).where(Episode.show_id == show_id)
                await session.execute(
                    delete(WatchMark).where(
                        WatchMark.profile_id == profile_id,
                        WatchMark.episode_id.in_(episode_ids),
                    )
                )
                await session.delete(link)
        logger.info("Profile %s removed show %s", profile_id, show_id)

    async def add_show(
        self, profile_id: int, catalog_show_id: int, *, added_at: str | None = None
    ) -> int:
        """Fetch a show from the catalog, upsert it and link it to the profile."""

        show_id = await self.sync_catalog_show(catalog_show_id)
        async with self._session_factory() as session:
            stmt = sqlite_insert(ProfileShow).values(
                profile_id=profile_id,
                show_id=show_id,
                created_at=added_at or utc_timestamp(),
                status=None,
            )
            if added_at:
                stmt = stmt.on_conflict_do_update(
                    index_elements=[ProfileShow.profile_id, ProfileShow.show_id],
                    set_={"created_at": added_at},
                )
            else:
                stmt = stmt.on_conflict_do_nothing()
            await session.execute(stmt)
            await session.commit()
        return show_id

    async def sync_catalog_show(self, catalog_show_id: int) -> int:
        """Upsert a show and its episodes by catalog id and return the local id."""

        catalog_show = await self._tvmaze.fetch_show(catalog_show_id)
        catalog_episodes = await self._tvmaze.fetch_episodes(catalog_show_id)
        async with self._session_factory() as session:
            show_id = await self.upsert_catalog_records(
                session, catalog_show, catalog_episodes
            )
            await session.commit()
        return show_id

    @staticmethod
    async def upsert_catalog_records(
        session: AsyncSession,
        catalog_show: CatalogShow,
        catalog_episodes: Iterable[CatalogEpisode],
    ) -> int:
        show_values = {
            "tvmaze_id": catalog_show.catalog_id,
            "name": catalog_show.name,
            "summary": catalog_show.summary,
            "status": catalog_show.status,
            "premiered": catalog_show.premiered,
            "ended": catalog_show.ended,
            "image_medium": catalog_show.image_medium,
            "image_original": catalog_show.image_original,
            "imdb_id": catalog_show.imdb_id,
        }
        stmt = sqlite_insert(Show).values(**show_values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Show.tvmaze_id],
            set_={
                **{key: stmt.excluded[key] for key in show_values if key != "tvmaze_id"},
                "updated_at": datetime.utcnow(),
            },
        )
        await session.execute(stmt)
        show_id = (
            await session.execute(
                select(Show.id).where(Show.tvmaze_id == catalog_show.catalog_id)
            )
        ).scalar_one()

        for catalog_episode in catalog_episodes:
            episode_values = {
                "show_id": show_id,
                "tvmaze_id": catalog_episode.catalog_id,
                "season": catalog_episode.season,
                "number": catalog_episode.number,
                "name": catalog_episode.name,
                "summary": catalog_episode.summary,
                "airdate": catalog_episode.airdate,
                "airtime": catalog_episode.airtime,
                "runtime": catalog_episode.runtime,
                "image_medium": catalog_episode.image_medium,
                "image_original": catalog_episode.image_original,
            }
            episode_stmt = sqlite_insert(Episode).values(**episode_values)
            episode_stmt = episode_stmt.on_conflict_do_update(
                index_elements=[Episode.tvmaze_id],
                set_={
                    key: episode_stmt.excluded[key]
                    for key in episode_values
                    if key != "tvmaze_id"
                },
            )
            await session.execute(episode_stmt)
        return show_id

    async def search(self, profile_id: int, query: str) -> list[dict[str, Any]]:
        """Search the catalog, flagging shows the profile already tracks."""

        query = (query or "").strip()
        if not query:
            raise ValidationError("Missing search query")
        results = await self._tvmaze.search_shows(query)
        catalog_ids = [result.catalog_id for result in results]

        existing: dict[int, str] = {}
        if catalog_ids:
            async with self._session_factory() as session:
                rows = await session.execute(
                    select(Show.id, Show.tvmaze_id)
                    .join(ProfileShow, ProfileShow.show_id == Show.id)
                    .where(
                        ProfileShow.profile_id == profile_id,
                        Show.tvmaze_id.in_(catalog_ids),
                    )
                )
                local_ids = {show_id: tvmaze_id for show_id, tvmaze_id in rows.all()}
                if local_ids:
                    tracked = await self._load_tracked(
                        session,
                        profile_id,
                        show_ids=list(local_ids),
                        as_of=self.as_of(),
                    )
                    existing = {
                        entry.show.tvmaze_id: entry.progress.state for entry in tracked
                    }

        return [
            {
                "id": result.catalog_id,
                "name": result.name,
                "summary": result.summary,
                "status": result.status,
                "premiered": result.premiered,
                "ended": result.ended,
                "image": {
                    "medium": result.image_medium,
                    "original": result.image_original,
                },
                "existingState": existing.get(result.catalog_id),
            }
            for result in results
        ]

    async def calendar(
        self, profile_id: int, *, days: int | None = None, as_of: date | None = None
    ) -> list[dict[str, Any]]:
        """Return upcoming episodes of tracked shows within ``days`` of ``as_of``.

        Episodes without an air date, and those whose air time reads ``TBD``,
        are left out.
        """

        as_of = as_of or self.as_of()
        window = days if days is not None else self._settings.calendar_days
        if window < 1:
            raise ValidationError("days must be a positive integer")
        if window > MAX_CALENDAR_DAYS:
            raise ValidationError(f"days must be at most {MAX_CALENDAR_DAYS}")
        start = as_of.isoformat()
        end = (as_of + timedelta(days=window)).isoformat()

        async with self._session_factory() as session:
            tracked = await self._load_tracked(session, profile_id, as_of=as_of)

        upcoming: list[dict[str, Any]] = []
        for entry in tracked:
            for episode, mark in entry.episodes:
                if not episode.airdate:
                    continue
                if (episode.airtime or "").strip() == TBD_AIRTIME:
                    continue
                if not start <= episode.airdate <= end:
                    continue
                payload = episode_payload(episode, mark)
                payload.update(
                    {
                        "showId": entry.show.id,
                        "showName": entry.show.name,
                        "showImage": {
                            "medium": entry.show.image_medium,
                            "original": entry.show.image_original,
                        },
                        "showState": entry.progress.state,
                    }
                )
                upcoming.append(payload)

        upcoming.sort(
            key=lambda item: (
                item["airdate"],
                item["airtime"] or "",
                item["showName"].casefold(),
                item["season"],
                item["number"] or 0,
            )
        )
        return upcoming

    async def linked_catalog_ids(self) -> list[int]:
        """Return the catalog ids of every show linked to any profile."""

        async with self._session_factory() as session:
            result = await session.execute(
                select(Show.tvmaze_id)
                .join(ProfileShow, ProfileShow.show_id == Show.id)
                .distinct()
                .order_by(Show.tvmaze_id)
            )
            return [row[0] for row in result.all()]

    async def _load_tracked(
        self,
        session: AsyncSession,
        profile_id: int,
        *,
        as_of: date,
        show_ids: Sequence[int] | None = None,
    ) -> list[TrackedShow]:
        stmt = (
            select(Show, ProfileShow)
            .join(ProfileShow, ProfileShow.show_id == Show.id)
            .where(ProfileShow.profile_id == profile_id)
        )
        if show_ids is not None:
            stmt = stmt.where(Show.id.in_(show_ids))
        links = (await session.execute(stmt)).all()
        if not links:
            return []

        episode_stmt = (
            select(Episode, WatchMark)
            .outerjoin(
                WatchMark,
                and_(
                    WatchMark.episode_id == Episode.id,
                    WatchMark.profile_id == profile_id,
                ),
            )
            .where(Episode.show_id.in_([show.id for show, _ in links]))
            .order_by(Episode.season, Episode.number, Episode.id)
        )
        by_show: dict[int, list[tuple[Episode, WatchMark | None]]] = {}
        for episode, mark in (await session.execute(episode_stmt)).all():
            by_show.setdefault(episode.show_id, []).append((episode, mark))

        tracked: list[TrackedShow] = []
        for show, link in links:
            rows = by_show.get(show.id, [])
            progress = compute_show_progress(
                show.status,
                [episode_facts(episode, mark) for episode, mark in rows],
                link.status,
                as_of,
            )
            tracked.append(
                TrackedShow(show=show, link=link, episodes=rows, progress=progress)
            )
        return tracked

    @staticmethod
    async def _upsert_marks(
        session: AsyncSession,
        profile_id: int,
        episode_ids: Sequence[int],
        watched_at: str,
    ) -> None:
        stmt = sqlite_insert(WatchMark).values(
            [
                {
                    "profile_id": profile_id,
                    "episode_id": episode_id,
                    "watched_at": watched_at,
                }
                for episode_id in episode_ids
            ]
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[WatchMark.profile_id, WatchMark.episode_id],
            set_={"watched_at": stmt.excluded.watched_at},
        )
        await session.execute(stmt)
