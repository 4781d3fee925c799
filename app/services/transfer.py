"""Import and export of a profile's tracked shows and watch marks."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import suppress
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..db_models import Episode, ProfileShow, Show, WatchMark
from ..errors import ValidationError
from ..models import EXPORT_VERSION, ExportDocument, ExportedEpisode, ExportedShow
from ..utils import coerce_int, utc_timestamp
from .accounts import AccountService
from .library import LibraryService

logger = logging.getLogger(__name__)


def _shows_from_ids(values: list[Any]) -> list[ExportedShow]:
    shows: list[ExportedShow] = []
    for value in values:
        catalog_id = coerce_int(value.strip() if isinstance(value, str) else value)
        if catalog_id is None:
            raise ValidationError(f"Invalid show id in import: {value!r}")
        shows.append(ExportedShow(catalog_show_id=catalog_id))
    return shows


def parse_import_payload(raw: Any) -> list[ExportedShow]:
    """Normalise any accepted import shape into a list of shows.

    Accepts the export document, a JSON array of catalog ids, or a
    newline-delimited text list of ids.
    """

    if isinstance(raw, bytes):
        raw = raw.decode("utf-8-sig")
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            raise ValidationError("Import payload is empty")
        try:
            raw = json.loads(text)
        except json.JSONDecodeError:
            lines = [line.strip() for line in text.splitlines()]
            return _shows_from_ids([line for line in lines if line])
        if isinstance(raw, int) and not isinstance(raw, bool):
            return _shows_from_ids([raw])

    if isinstance(raw, list):
        if all(isinstance(entry, dict) for entry in raw) and raw:
            raw = {"shows": raw}
        else:
            return _shows_from_ids(raw)

    if not isinstance(raw, dict) or not isinstance(raw.get("shows"), list):
        raise ValidationError("Import payload must include a shows list")
    version = raw.get("version", EXPORT_VERSION)
    if version != EXPORT_VERSION:
        raise ValidationError(f"Unsupported export version: {version}")
    try:
        document = ExportDocument.model_validate(raw)
    except PydanticValidationError as exc:
        raise ValidationError("Import payload is malformed") from exc
    return document.shows


class TransferService:
    """Builds export documents and replays them into a profile."""

    def __init__(
        self,
        settings: Settings,
        library: LibraryService,
        accounts: AccountService,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        self._settings = settings
        self._library = library
        self._accounts = accounts
        self._session_factory = session_factory
        self._backup_task: asyncio.Task[None] | None = None

    async def export_profile(self, profile_id: int) -> ExportDocument:
        async with self._session_factory() as session:
            links = (
                await session.execute(
                    select(Show, ProfileShow)
                    .join(ProfileShow, ProfileShow.show_id == Show.id)
                    .where(ProfileShow.profile_id == profile_id)
                    .order_by(Show.name, Show.id)
                )
            ).all()
            marks = (
                await session.execute(
                    select(Episode.show_id, Episode.tvmaze_id, WatchMark.watched_at)
                    .join(WatchMark, WatchMark.episode_id == Episode.id)
                    .where(WatchMark.profile_id == profile_id)
                    .order_by(Episode.season, Episode.number, Episode.id)
                )
            ).all()

        watched: dict[int, list[ExportedEpisode]] = {}
        for show_id, catalog_episode_id, watched_at in marks:
            watched.setdefault(show_id, []).append(
                ExportedEpisode(
                    catalog_episode_id=catalog_episode_id, watched_at=watched_at
                )
            )

        return ExportDocument(
            version=EXPORT_VERSION,
            exported_at=utc_timestamp(),
            shows=[
                ExportedShow(
                    catalog_show_id=show.tvmaze_id,
                    name=show.name,
                    added_at=link.created_at,
                    watched_episodes=watched.get(show.id, []),
                )
                for show, link in links
            ],
        )

    async def import_shows(self, profile_id: int, shows: list[ExportedShow]) -> int:
        """Add every show and replay its watch marks; returns the show count."""

        imported = 0
        for entry in shows:
            show_id = await self._library.add_show(
                profile_id, entry.catalog_show_id, added_at=entry.added_at
            )
            if entry.watched_episodes:
                await self._apply_marks(profile_id, show_id, entry.watched_episodes)
            imported += 1
        logger.info("Imported %s shows into profile %s", imported, profile_id)
        return imported

    async def _apply_marks(
        self, profile_id: int, show_id: int, episodes: list[ExportedEpisode]
    ) -> None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Episode.tvmaze_id, Episode.id).where(Episode.show_id == show_id)
            )
            local_ids = {catalog_id: episode_id for catalog_id, episode_id in result.all()}
            fallback_time = utc_timestamp()
            rows = []
            for episode in episodes:
                episode_id = local_ids.get(episode.catalog_episode_id)
                if episode_id is None:
                    logger.warning(
                        "Skipping unknown catalog episode %s for show %s",
                        episode.catalog_episode_id,
                        show_id,
                    )
                    continue
                rows.append(
                    {
                        "profile_id": profile_id,
                        "episode_id": episode_id,
                        "watched_at": episode.watched_at or fallback_time,
                    }
                )
            if rows:
                stmt = sqlite_insert(WatchMark).values(rows)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[WatchMark.profile_id, WatchMark.episode_id],
                    set_={"watched_at": stmt.excluded.watched_at},
                )
                await session.execute(stmt)
            await session.commit()

    async def start(self) -> None:
        """Launch periodic export backups when an export directory is configured."""

        if self._settings.export_dir is None or self._backup_task is not None:
            return
        self._backup_task = asyncio.create_task(self._backup_loop())

    async def stop(self) -> None:
        if self._backup_task is None:
            return
        self._backup_task.cancel()
        with suppress(asyncio.CancelledError):
            await self._backup_task
        self._backup_task = None

    async def _backup_loop(self) -> None:
        while True:
            try:
                await self.run_export_backups_once()
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception("Export backup failed: %s", exc)
            await asyncio.sleep(self._settings.export_backup_interval_seconds)

    async def run_export_backups_once(self, export_dir: Path | None = None) -> list[Path]:
        """Write one import-compatible export per profile, replacing older ones."""

        root = export_dir or self._settings.export_dir
        if root is None:
            return []
        written: list[Path] = []
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        for user_id, profile_id in await self._accounts.list_profile_owners():
            document = await self.export_profile(profile_id)
            target_dir = Path(root) / f"user-{user_id}" / f"profile-{profile_id}"
            target_dir.mkdir(parents=True, exist_ok=True)
            target = target_dir / f"export-{stamp}.json"
            target.write_text(
                json.dumps(document.to_payload(), indent=2), encoding="utf-8"
            )
            for stale in target_dir.glob("*.json"):
                if stale != target:
                    stale.unlink()
            written.append(target)
        logger.info("Wrote %s export backups to %s", len(written), root)
        return written
