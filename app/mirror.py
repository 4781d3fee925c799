"""Client-side optimistic copy of a show's watch state.

After a toggle is sent the mirror recomputes the affected show with the same
derivation used by the server, so the detail view and the category listing
move immediately. The authoritative response always replaces the prediction;
a failed mutation restores exactly what the show looked like before.

Mutations are sequenced with a monotonic token per show. Only the newest
mutation for a show may apply its response or roll back, so late responses
never overwrite newer optimistic state. When a mutation fails while another
one for the same show is in flight, the snapshots can no longer be trusted;
the show is marked dirty and refetched once every mutation has settled.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import date
from typing import Any

import httpx

from .client import ApiError, EpisodelyClient
from .utils import today
from .watch_state import (
    EpisodeFacts,
    apply_episode_toggle,
    apply_season_toggle,
    category_for_state,
    compute_show_progress,
)

logger = logging.getLogger(__name__)

Detail = dict[str, Any]
Categories = list[dict[str, Any]]


def flatten_episodes(detail: Detail) -> list[EpisodeFacts]:
    return [
        EpisodeFacts.from_payload(episode)
        for season in detail.get("seasons") or []
        for episode in season.get("episodes") or []
    ]


def rebuild_detail(detail: Detail, episodes: Sequence[EpisodeFacts], as_of: date) -> Detail:
    """Return ``detail`` with new watch flags and a freshly derived show state."""

    watched = {episode.id: episode.watched for episode in episodes}
    seasons = []
    for season in detail.get("seasons") or []:
        season_episodes = [
            {**episode, "watched": watched.get(episode["id"], episode.get("watched", False))}
            for episode in season.get("episodes") or []
        ]
        total = season.get("totalCount", len(season_episodes))
        watched_count = sum(1 for episode in season_episodes if episode["watched"])
        seasons.append(
            {
                **season,
                "episodes": season_episodes,
                "watchedCount": watched_count,
                "totalCount": total,
                "watched": total > 0 and watched_count == total,
            }
        )

    show = detail.get("show") or {}
    progress = compute_show_progress(
        show.get("status"), episodes, show.get("profileStatus"), as_of
    )
    return {
        **detail,
        "show": {
            **show,
            "state": progress.state,
            "stats": progress.stats.to_payload(),
            "nextEpisode": (
                progress.next_episode.to_payload() if progress.next_episode else None
            ),
        },
        "seasons": seasons,
    }


def remove_show_card(
    categories: Categories, show_id: int
) -> tuple[Categories, dict[str, Any] | None, str | None]:
    """Return categories without the show, plus its card and bucket."""

    card: dict[str, Any] | None = None
    bucket: str | None = None
    stripped: Categories = []
    for category in categories:
        shows = []
        for show in category.get("shows") or []:
            if show.get("id") == show_id:
                card, bucket = show, category.get("id")
                continue
            shows.append(show)
        stripped.append({**category, "shows": shows})
    return stripped, card, bucket


def place_show_card(
    categories: Categories, card: dict[str, Any], bucket: str
) -> Categories:
    """Insert ``card`` into ``bucket`` keeping shows sorted by name."""

    placed: Categories = []
    for category in categories:
        if category.get("id") != bucket:
            placed.append(category)
            continue
        shows = [*category.get("shows", []), card]
        shows.sort(key=lambda show: str(show.get("name") or "").casefold())
        placed.append({**category, "shows": shows})
    return placed


def move_show_card(categories: Categories, show: dict[str, Any]) -> Categories:
    """Move a show's card to the bucket matching its derived state."""

    stripped, existing, _ = remove_show_card(categories, show["id"])
    if existing is None:
        return categories
    card = {
        **existing,
        **show,
        "profileStatus": show.get("profileStatus", existing.get("profileStatus")),
    }
    return place_show_card(stripped, card, category_for_state(card["state"]))


@dataclass(slots=True)
class _Snapshot:
    """How a show looked immediately before one optimistic mutation."""

    detail: Detail | None
    card: dict[str, Any] | None
    bucket: str | None


class OptimisticMirror:
    """Holds the detail view and listing and applies toggles predictively."""

    def __init__(
        self,
        client: EpisodelyClient,
        *,
        clock: Callable[[], date] = today,
    ):
        self._client = client
        self._clock = clock
        self._tokens = itertools.count(1)
        self._latest: dict[int, int] = {}
        self._predicted: dict[int, dict[str, Any]] = {}
        self._pending: dict[int, int] = {}
        self._dirty: set[int] = set()
        self.detail: Detail | None = None
        self.categories: Categories = []

    async def load_shows(self) -> Categories:
        self._apply_categories(await self._client.list_shows())
        return self.categories

    async def load_show(self, show_id: int) -> Detail:
        self.detail = await self._client.show_detail(show_id)
        return self.detail

    async def toggle_episode(self, episode_id: int, watched: bool) -> None:
        await self._mutate(
            self._current_show_id(),
            lambda episodes: apply_episode_toggle(episodes, episode_id, watched),
            lambda: self._client.toggle_episode(episode_id, watched),
        )

    async def toggle_season(self, season: int, watched: bool) -> None:
        show_id = self._current_show_id()
        if show_id is None:
            return
        await self._mutate(
            show_id,
            lambda episodes: apply_season_toggle(episodes, season, watched),
            lambda: self._client.toggle_season(show_id, season, watched),
        )

    def _current_show_id(self) -> int | None:
        if not self.detail:
            return None
        return (self.detail.get("show") or {}).get("id")

    async def _mutate(
        self,
        show_id: int | None,
        change: Callable[[list[EpisodeFacts]], list[EpisodeFacts]],
        send: Callable[[], Awaitable[None]],
    ) -> None:
        if show_id is None:
            await send()
            await self.load_shows()
            return

        token = next(self._tokens)
        self._latest[show_id] = token
        _, card, bucket = remove_show_card(self.categories, show_id)
        snapshot = _Snapshot(detail=self.detail, card=card, bucket=bucket)

        if self.detail is not None:
            predicted = rebuild_detail(
                self.detail, change(flatten_episodes(self.detail)), self._clock()
            )
            self.detail = predicted
            self._predicted[show_id] = predicted["show"]
            self.categories = move_show_card(self.categories, predicted["show"])

        self._pending[show_id] = self._pending.get(show_id, 0) + 1
        try:
            await send()
        except (ApiError, httpx.HTTPError):
            self._settle(show_id)
            latest = self._latest.get(show_id) == token
            if latest:
                self._rollback(show_id, snapshot)
            if not latest or self._pending.get(show_id):
                # Other snapshots in flight may still carry this prediction.
                self._dirty.add(show_id)
            if show_id in self._dirty and not self._pending.get(show_id):
                try:
                    await self._refresh(show_id)
                except (ApiError, httpx.HTTPError):
                    logger.warning(
                        "Could not refresh show %s after a failed update",
                        show_id,
                        exc_info=True,
                    )
            raise

        self._settle(show_id)
        settled_dirty = show_id in self._dirty and not self._pending.get(show_id)
        if self._latest.get(show_id) != token and not settled_dirty:
            logger.debug("Ignoring stale response for show %s", show_id)
            return
        await self._refresh(show_id)

    def _settle(self, show_id: int) -> None:
        remaining = self._pending.get(show_id, 0) - 1
        if remaining > 0:
            self._pending[show_id] = remaining
        else:
            self._pending.pop(show_id, None)

    async def _refresh(self, show_id: int) -> None:
        """Replace the show's view with the server's, unless a newer mutation started."""

        token = self._latest.get(show_id)
        try:
            detail = await self._client.show_detail(show_id)
            categories = await self._client.list_shows()
        finally:
            if self._latest.get(show_id) == token:
                self._predicted.pop(show_id, None)
        if self._latest.get(show_id) != token:
            return
        self._dirty.discard(show_id)
        if self._current_show_id() == show_id:
            self.detail = detail
        self._apply_categories(categories)

    def _rollback(self, show_id: int, snapshot: _Snapshot) -> None:
        self._predicted.pop(show_id, None)
        if self._current_show_id() == show_id:
            self.detail = snapshot.detail
        stripped, _, _ = remove_show_card(self.categories, show_id)
        if snapshot.card is not None and snapshot.bucket is not None:
            stripped = place_show_card(stripped, snapshot.card, snapshot.bucket)
        self.categories = stripped

    def _apply_categories(self, categories: Categories) -> None:
        """Adopt an authoritative listing, keeping other shows' pending predictions."""

        for predicted in self._predicted.values():
            categories = move_show_card(categories, predicted)
        self.categories = categories
