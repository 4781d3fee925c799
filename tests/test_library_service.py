"""Library service tests against a temporary SQLite database."""

from __future__ import annotations

import asyncio
from datetime import date

import pytest
from sqlalchemy import func, select

from app.db_models import Episode, ProfileShow, Show, WatchMark
from app.errors import NotFoundError, ValidationError

from support import (
    FakeTVMaze,
    build_library,
    create_episode,
    create_profile,
    create_show,
    link_profile_show,
    mark_watched,
    open_database,
)


async def _seed_two_episode_show(database, profile_id: int) -> tuple[int, int, int]:
    show_id = await create_show(database, tvmaze_id=100, name="Severance")
    first = await create_episode(
        database, show_id=show_id, tvmaze_id=1001, number=1, airdate="2024-01-01"
    )
    second = await create_episode(
        database, show_id=show_id, tvmaze_id=1002, number=2, airdate="2024-01-08"
    )
    await link_profile_show(database, profile_id, show_id)
    return show_id, first, second


async def _marks(database, profile_id: int) -> list[tuple[int, str]]:
    async with database.session_factory() as session:
        result = await session.execute(
            select(WatchMark.episode_id, WatchMark.watched_at)
            .where(WatchMark.profile_id == profile_id)
            .order_by(WatchMark.episode_id)
        )
        return [tuple(row) for row in result.all()]


def test_toggle_episode_is_idempotent(tmp_path) -> None:
    async def runner() -> None:
        database = await open_database(tmp_path)
        try:
            profile_id = await create_profile(database)
            _, first, second = await _seed_two_episode_show(database, profile_id)
            library = build_library(database)

            await library.toggle_episode(profile_id, first, True)
            await library.toggle_episode(profile_id, first, True)
            marks = await _marks(database, profile_id)
            assert [episode_id for episode_id, _ in marks] == [first]

            await library.toggle_episode(profile_id, second, False)
            assert [episode_id for episode_id, _ in await _marks(database, profile_id)] == [first]

            await library.toggle_episode(profile_id, first, False)
            await library.toggle_episode(profile_id, first, False)
            assert await _marks(database, profile_id) == []
        finally:
            await database.dispose()

    asyncio.run(runner())


def test_toggle_episode_requires_linked_show(tmp_path) -> None:
    async def runner() -> None:
        database = await open_database(tmp_path)
        try:
            owner = await create_profile(database, username="owner")
            stranger = await create_profile(database, username="stranger")
            _, first, _ = await _seed_two_episode_show(database, owner)
            library = build_library(database)

            with pytest.raises(NotFoundError, match="Episode not found"):
                await library.toggle_episode(stranger, first, True)
            with pytest.raises(NotFoundError):
                await library.toggle_episode(owner, 9999, True)
            assert await _marks(database, stranger) == []
        finally:
            await database.dispose()

    asyncio.run(runner())


def test_toggle_season_marks_every_episode_with_one_timestamp(tmp_path) -> None:
    async def runner() -> None:
        database = await open_database(tmp_path)
        try:
            profile_id = await create_profile(database)
            show_id, first, second = await _seed_two_episode_show(database, profile_id)
            other_season = await create_episode(
                database, show_id=show_id, tvmaze_id=2001, season=2, airdate="2024-02-01"
            )
            library = build_library(database)

            count = await library.toggle_season(profile_id, show_id, 1, True)
            marks = await _marks(database, profile_id)

            assert count == 2
            assert [episode_id for episode_id, _ in marks] == [first, second]
            assert len({watched_at for _, watched_at in marks}) == 1
            assert other_season not in [episode_id for episode_id, _ in marks]

            assert await library.toggle_season(profile_id, show_id, 1, False) == 2
            assert await _marks(database, profile_id) == []
            assert await library.toggle_season(profile_id, show_id, 7, True) == 0
        finally:
            await database.dispose()

    asyncio.run(runner())


def test_toggle_season_on_unlinked_show_changes_nothing(tmp_path) -> None:
    async def runner() -> None:
        database = await open_database(tmp_path)
        try:
            owner = await create_profile(database, username="owner")
            stranger = await create_profile(database, username="stranger")
            show_id, _, _ = await _seed_two_episode_show(database, owner)
            library = build_library(database)

            with pytest.raises(NotFoundError, match="Show not found"):
                await library.toggle_season(stranger, show_id, 1, True)
            assert await _marks(database, stranger) == []
        finally:
            await database.dispose()

    asyncio.run(runner())


def test_show_detail_groups_seasons_and_derives_state(tmp_path) -> None:
    async def runner() -> None:
        database = await open_database(tmp_path)
        try:
            profile_id = await create_profile(database)
            show_id, first, _ = await _seed_two_episode_show(database, profile_id)
            await mark_watched(database, profile_id, first)
            library = build_library(database)

            detail = await library.get_show_detail(profile_id, show_id)

            assert detail["show"]["state"] == "watching"
            assert detail["show"]["nextEpisode"]["airdate"] == "2024-01-08"
            season = detail["seasons"][0]
            assert season["season"] == 1
            assert season["watchedCount"] == 1
            assert season["totalCount"] == 2
            assert season["watched"] is False
            assert season["episodes"][0]["watchedAt"] == "2024-04-02T12:00:00Z"

            with pytest.raises(NotFoundError):
                await library.get_show_detail(profile_id, show_id + 1)
        finally:
            await database.dispose()

    asyncio.run(runner())


def test_list_categories_buckets_each_linked_show(tmp_path) -> None:
    async def runner() -> None:
        database = await open_database(tmp_path)
        try:
            profile_id = await create_profile(database)
            queued_id, _, _ = await _seed_two_episode_show(database, profile_id)
            ended_id = await create_show(
                database, tvmaze_id=200, name="Chernobyl", status="Ended"
            )
            finale = await create_episode(
                database, show_id=ended_id, tvmaze_id=2101, airdate="2019-05-06"
            )
            await link_profile_show(database, profile_id, ended_id)
            await mark_watched(database, profile_id, finale)
            library = build_library(database)

            categories = await library.list_categories(profile_id)
            by_id = {category["id"]: category for category in categories}

            assert [show["id"] for show in by_id["queued"]["shows"]] == [queued_id]
            assert [show["id"] for show in by_id["completed"]["shows"]] == [ended_id]
            assert by_id["watch-next"]["shows"] == []
            assert len(categories) == 6
        finally:
            await database.dispose()

    asyncio.run(runner())


def test_status_override_validates_and_recomputes(tmp_path) -> None:
    async def runner() -> None:
        database = await open_database(tmp_path)
        try:
            profile_id = await create_profile(database)
            show_id, _, _ = await _seed_two_episode_show(database, profile_id)
            library = build_library(database)

            with pytest.raises(ValidationError, match="Invalid status"):
                await library.set_status_override(profile_id, show_id, "paused")
            with pytest.raises(NotFoundError):
                await library.set_status_override(profile_id, show_id + 1, "stopped")

            await library.set_status_override(profile_id, show_id, "stopped")
            stopped = await library.get_show_state(profile_id, show_id)
            assert stopped is not None and stopped.state == "stopped"

            await library.set_status_override(profile_id, show_id, None)
            cleared = await library.get_show_state(profile_id, show_id)
            assert cleared is not None and cleared.state == "queued"
        finally:
            await database.dispose()

    asyncio.run(runner())


def test_remove_show_drops_link_and_marks(tmp_path) -> None:
    async def runner() -> None:
        database = await open_database(tmp_path)
        try:
            profile_id = await create_profile(database)
            other_profile = await create_profile(database, username="other")
            show_id, first, second = await _seed_two_episode_show(database, profile_id)
            await link_profile_show(database, other_profile, show_id)
            await mark_watched(database, profile_id, first)
            await mark_watched(database, other_profile, second)
            library = build_library(database)

            await library.remove_show(profile_id, show_id)

            assert await _marks(database, profile_id) == []
            assert [episode_id for episode_id, _ in await _marks(database, other_profile)] == [second]
            async with database.session_factory() as session:
                assert await session.get(ProfileShow, (profile_id, show_id)) is None
            with pytest.raises(NotFoundError):
                await library.remove_show(profile_id, show_id)
        finally:
            await database.dispose()

    asyncio.run(runner())


def test_add_show_upserts_catalog_rows_without_duplicates(tmp_path) -> None:
    async def runner() -> None:
        database = await open_database(tmp_path)
        try:
            profile_id = await create_profile(database)
            tvmaze = FakeTVMaze()
            tvmaze.add(
                42,
                "The Expanse",
                [
                    {"catalog_id": 4201, "season": 1, "number": 1, "airdate": "2015-12-14"},
                    {"catalog_id": 4202, "season": 1, "number": 2, "airdate": "2015-12-15"},
                ],
            )
            library = build_library(database, tvmaze)

            show_id = await library.add_show(profile_id, 42)
            tvmaze.shows[42] = tvmaze.shows[42].model_copy(update={"status": "Ended"})
            again = await library.add_show(profile_id, 42)

            assert again == show_id
            async with database.session_factory() as session:
                show_count = await session.scalar(select(func.count()).select_from(Show))
                episode_count = await session.scalar(
                    select(func.count()).select_from(Episode)
                )
                show = await session.get(Show, show_id)
            assert show_count == 1
            assert episode_count == 2
            assert show is not None and show.status == "Ended"
        finally:
            await database.dispose()

    asyncio.run(runner())


def test_search_reports_state_of_tracked_shows(tmp_path) -> None:
    async def runner() -> None:
        database = await open_database(tmp_path)
        try:
            profile_id = await create_profile(database)
            tvmaze = FakeTVMaze()
            tvmaze.add(100, "Severance", [])
            tvmaze.add(101, "Severance Pay", [])
            await _seed_two_episode_show(database, profile_id)
            library = build_library(database, tvmaze)

            results = await library.search(profile_id, "severance")

            states = {result["id"]: result["existingState"] for result in results}
            assert states == {100: "queued", 101: None}
            with pytest.raises(ValidationError):
                await library.search(profile_id, "   ")
        finally:
            await database.dispose()

    asyncio.run(runner())


def test_calendar_skips_undated_and_tbd_episodes(tmp_path) -> None:
    async def runner() -> None:
        database = await open_database(tmp_path)
        try:
            profile_id = await create_profile(database)
            show_id = await create_show(database, tvmaze_id=300, name="Andor")
            await create_episode(
                database, show_id=show_id, tvmaze_id=3001, number=1,
                airdate="2024-04-12", airtime="21:00",
            )
            await create_episode(
                database, show_id=show_id, tvmaze_id=3002, number=2,
                airdate="2024-04-11", airtime="TBD",
            )
            await create_episode(
                database, show_id=show_id, tvmaze_id=3003, number=3, airdate=None
            )
            await create_episode(
                database, show_id=show_id, tvmaze_id=3004, number=4,
                airdate="2024-06-01", airtime="21:00",
            )
            await create_episode(
                database, show_id=show_id, tvmaze_id=3005, number=5,
                airdate="2024-04-10", airtime="20:00",
            )
            await link_profile_show(database, profile_id, show_id)
            library = build_library(database, as_of=date(2024, 4, 10))

            upcoming = await library.calendar(profile_id, days=7)

            assert [entry["tvmazeId"] for entry in upcoming] == [3005, 3001]
            assert upcoming[0]["showName"] == "Andor"
            assert upcoming[0]["showState"] == "queued"
            with pytest.raises(ValidationError):
                await library.calendar(profile_id, days=0)
            with pytest.raises(ValidationError, match="at most 365"):
                await library.calendar(profile_id, days=10_000_000)
            assert len(await library.calendar(profile_id, days=365)) == 3
        finally:
            await database.dispose()

    asyncio.run(runner())


def test_linked_catalog_ids_ignores_unlinked_shows(tmp_path) -> None:
    async def runner() -> None:
        database = await open_database(tmp_path)
        try:
            profile_id = await create_profile(database)
            await _seed_two_episode_show(database, profile_id)
            await create_show(database, tvmaze_id=999, name="Orphan")
            library = build_library(database)

            assert await library.linked_catalog_ids() == [100]
        finally:
            await database.dispose()

    asyncio.run(runner())
