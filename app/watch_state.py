"""Watch-state derivation and show categorisation.

Everything in this module is pure: the derived state of a show is computed
from the show's lifecycle status, its episodes' air dates and watch flags,
the profile's status override and an explicit ``as_of`` date. Nothing reads
the clock, so the server and the optimistic client mirror agree whenever they
are handed the same inputs.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Literal

WatchState = Literal[
    "queued",
    "watch-next",
    "watching",
    "up-to-date",
    "completed",
    "stopped",
]

WATCH_STATES: tuple[WatchState, ...] = (
    "queued",
    "watch-next",
    "watching",
    "up-to-date",
    "completed",
    "stopped",
)

STOPPED_OVERRIDE = "stopped"


@dataclass(frozen=True)
class CategoryDefinition:
    """Describes one of the fixed buckets shown in the show listing."""

    key: WatchState
    label: str


CATEGORIES: tuple[CategoryDefinition, ...] = (
    CategoryDefinition(key="watch-next", label="Watch Next"),
    CategoryDefinition(key="watching", label="Watching"),
    CategoryDefinition(key="queued", label="Not Started"),
    CategoryDefinition(key="up-to-date", label="Up To Date"),
    CategoryDefinition(key="completed", label="Finished"),
    CategoryDefinition(key="stopped", label="Stopped Watching"),
)


@dataclass(slots=True)
class EpisodeFacts:
    """The subset of an episode the derivation cares about."""

    id: int
    season: int
    number: int | None = None
    name: str | None = None
    airdate: str | None = None
    airtime: str | None = None
    watched: bool = False

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "EpisodeFacts":
        return cls(
            id=int(data["id"]),
            season=int(data.get("season") or 0),
            number=data.get("number"),
            name=data.get("name"),
            airdate=data.get("airdate") or None,
            airtime=data.get("airtime") or None,
            watched=bool(data.get("watched")),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "season": self.season,
            "number": self.number,
            "name": self.name,
            "airdate": self.airdate,
            "airtime": self.airtime,
            "watched": self.watched,
        }


@dataclass(slots=True)
class ShowStats:
    total_episodes: int = 0
    watched_episodes: int = 0
    released_episodes: int = 0
    released_unwatched: int = 0
    has_future: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "totalEpisodes": self.total_episodes,
            "watchedEpisodes": self.watched_episodes,
            "releasedEpisodes": self.released_episodes,
            "releasedUnwatched": self.released_unwatched,
            "hasFuture": self.has_future,
        }


@dataclass(slots=True)
class ShowProgress:
    """Derived, never persisted, view of a profile's progress on a show."""

    state: WatchState
    next_episode: EpisodeFacts | None = None
    stats: ShowStats = field(default_factory=ShowStats)


def _as_date_text(value: str | date | None) -> str:
    if value is None:
        return ""
    if isinstance(value, date):
        return value.isoformat()
    return value[:10]


def is_released(airdate: str | date | None, as_of: date) -> bool:
    """Return whether an episode airing on ``airdate`` is out as of ``as_of``.

    Only the calendar date matters. A missing air date is never released.
    """

    text = _as_date_text(airdate)
    if not text:
        return False
    return text <= as_of.isoformat()


def _has_partially_watched_season(
    episodes: Sequence[EpisodeFacts], as_of: date
) -> bool:
    seasons: dict[int, list[EpisodeFacts]] = {}
    for episode in episodes:
        seasons.setdefault(episode.season, []).append(episode)

    for season_episodes in seasons.values():
        released = [ep for ep in season_episodes if is_released(ep.airdate, as_of)]
        if not released:
            continue
        watched_released = sum(1 for ep in released if ep.watched)
        if 0 < watched_released < len(released):
            return True
    return False


def _earliest(episodes: Iterable[EpisodeFacts]) -> EpisodeFacts | None:
    ordered = sorted(episodes, key=lambda ep: ep.airdate or "")
    return ordered[0] if ordered else None


def compute_show_progress(
    show_status: str | None,
    episodes: Sequence[EpisodeFacts],
    status_override: str | None,
    as_of: date,
) -> ShowProgress:
    """Derive the watch state, next episode and counters for a show.

    The rules are evaluated in order and the first match wins; the final
    fallback keeps the function total for every combination of inputs.
    """

    released = [ep for ep in episodes if is_released(ep.airdate, as_of)]
    released_unwatched = [ep for ep in released if not ep.watched]
    partially_watched = _has_partially_watched_season(episodes, as_of)
    watched_count = sum(1 for ep in episodes if ep.watched)
    started = watched_count > 0
    has_released = bool(released)
    future = [
        ep for ep in episodes if ep.airdate and not is_released(ep.airdate, as_of)
    ]
    is_ended = (show_status or "").lower() == "ended"
    all_released_watched = has_released and not released_unwatched
    all_episodes_watched = bool(episodes) and all(ep.watched for ep in episodes)

    state: WatchState
    if status_override == STOPPED_OVERRIDE:
        state = "stopped"
    elif partially_watched:
        state = "watching"
    elif started and released_unwatched:
        state = "watch-next"
    elif not started and has_released:
        state = "queued"
    elif started and all_released_watched and not is_ended:
        state = "up-to-date"
    elif is_ended and all_episodes_watched:
        state = "completed"
    elif not has_released:
        state = "queued"
    else:
        state = "up-to-date"

    next_episode = _earliest(released_unwatched)
    if next_episode is None:
        next_episode = _earliest(ep for ep in future if not ep.watched)

    stats = ShowStats(
        total_episodes=len(episodes),
        watched_episodes=watched_count,
        released_episodes=len(released),
        released_unwatched=len(released_unwatched),
        has_future=bool(future),
    )
    return ShowProgress(state=state, next_episode=next_episode, stats=stats)


def category_for_state(state: str) -> WatchState:
    """Return the bucket key a derived state belongs to."""

    for definition in CATEGORIES:
        if definition.key == state:
            return definition.key
    return "completed"


def _show_sort_key(show: Mapping[str, Any]) -> str:
    return str(show.get("name") or "").casefold()


def categorize(shows: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """Bucket show payloads by their ``state`` into the fixed category order.

    Every category is present even when empty; shows within a bucket are
    sorted by name.
    """

    buckets: dict[str, list[Mapping[str, Any]]] = {
        definition.key: [] for definition in CATEGORIES
    }
    for show in shows:
        buckets[category_for_state(str(show.get("state")))].append(show)

    return [
        {
            "id": definition.key,
            "label": definition.label,
            "shows": sorted(buckets[definition.key], key=_show_sort_key),
        }
        for definition in CATEGORIES
    ]


def apply_episode_toggle(
    episodes: Sequence[EpisodeFacts], episode_id: int, watched: bool
) -> list[EpisodeFacts]:
    """Return a copy of ``episodes`` with one episode's watch flag set."""

    return [
        replace(ep, watched=watched) if ep.id == episode_id else ep
        for ep in episodes
    ]


def apply_season_toggle(
    episodes: Sequence[EpisodeFacts], season: int, watched: bool
) -> list[EpisodeFacts]:
    """Return a copy of ``episodes`` with a whole season's watch flags set."""

    return [
        replace(ep, watched=watched) if ep.season == season else ep
        for ep in episodes
    ]
