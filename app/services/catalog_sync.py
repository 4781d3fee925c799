"""Background refresh of catalog metadata for tracked shows."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError

from ..config import Settings
from ..errors import EpisodelyError
from .library import LibraryService

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RefreshReport:
    """Outcome of a single refresh pass."""

    refreshed: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)


class CatalogRefresher:
    """Periodically re-syncs every linked show from the catalog.

    Only one pass runs at a time. A trigger arriving while a pass is in
    progress is dropped rather than queued.
    """

    def __init__(self, settings: Settings, library: LibraryService):
        self._settings = settings
        self._library = library
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Launch the periodic refresh loop."""

        if not self._settings.catalog_refresh_enabled:
            logger.info("Catalog refresh disabled")
            return
        if self._task is None:
            self._task = asyncio.create_task(self._refresh_loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self._settings.catalog_refresh_interval_seconds)
            try:
                await self.run_once()
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception("Scheduled catalog refresh failed: %s", exc)

    async def run_once(self) -> RefreshReport | None:
        """Refresh every linked show; returns ``None`` if a pass is already running."""

        if self._running:
            logger.info("Catalog refresh already in progress, skipping trigger")
            return None
        self._running = True
        try:
            return await self._refresh_all()
        finally:
            self._running = False

    async def _refresh_all(self) -> RefreshReport:
        report = RefreshReport()
        catalog_ids = await self._library.linked_catalog_ids()
        logger.info("Refreshing catalog metadata for %s shows", len(catalog_ids))
        for catalog_id in catalog_ids:
            try:
                await self._library.sync_catalog_show(catalog_id)
            except EpisodelyError as exc:
                logger.warning(
                    "Catalog refresh for show %s failed: %s", catalog_id, exc.message
                )
                report.failed.append(catalog_id)
                continue
            except SQLAlchemyError as exc:
                logger.warning(
                    "Catalog refresh for show %s could not be stored: %s", catalog_id, exc
                )
                report.failed.append(catalog_id)
                continue
            report.refreshed.append(catalog_id)
        logger.info(
            "Catalog refresh finished: %s refreshed, %s failed",
            len(report.refreshed),
            len(report.failed),
        )
        return report
