"""
Shared fakes for the statistics tests: an in-memory catalog provider and
an episode counter that answers from a dict.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest

from services.episode_counts import EpisodeCount
from services.media import (
    EPISODE,
    MediaItem,
    MediaStream,
    Season,
    Series,
    User,
    WatchState,
)

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def movie(movie_id: str, **kwargs) -> MediaItem:
    kwargs.setdefault("name", f"Movie {movie_id}")
    kwargs.setdefault("sort_name", kwargs["name"])
    return MediaItem(id=movie_id, **kwargs)


def episode(
    episode_id: str,
    series_id: str,
    season: int = 1,
    index: Optional[int] = 1,
    **kwargs,
) -> MediaItem:
    kwargs.setdefault("name", f"Episode {episode_id}")
    kwargs.setdefault("sort_name", kwargs["name"])
    kwargs.setdefault("parent_id", f"{series_id}-s{season}")
    return MediaItem(
        id=episode_id,
        item_type=EPISODE,
        series_id=series_id,
        parent_index_number=season,
        index_number=index,
        **kwargs,
    )


def season(series_id: str, number: int = 1) -> Season:
    return Season(id=f"{series_id}-s{number}", parent_id=series_id, index_number=number)


def series(series_id: str, tvdb: Optional[str] = None, **kwargs) -> Series:
    kwargs.setdefault("name", f"Show {series_id}")
    kwargs.setdefault("sort_name", kwargs["name"])
    provider_ids = {"Tvdb": tvdb} if tvdb else {}
    return Series(id=series_id, provider_ids=provider_ids, **kwargs)


def video(width: Optional[int] = 1920, codec: str = "h264", title: str = "1080p H264") -> MediaStream:
    return MediaStream(type="video", codec=codec, width=width, display_title=title)


class FakeCatalogProvider:
    def __init__(
        self,
        movies=(),
        series=(),
        seasons=(),
        episodes=(),
        collections=(),
        users=(),
        user_data: Optional[Dict[str, Dict[str, WatchState]]] = None,
    ) -> None:
        self._movies = list(movies)
        self._series = list(series)
        self._seasons = list(seasons)
        self._episodes = list(episodes)
        self._collections = list(collections)
        self._users = list(users)
        self._user_data = user_data or {}
        self.calls: List[str] = []

    def movies(self):
        self.calls.append("movies")
        return list(self._movies)

    def series(self):
        self.calls.append("series")
        return list(self._series)

    def seasons(self):
        return list(self._seasons)

    def episodes(self):
        self.calls.append("episodes")
        return list(self._episodes)

    def collections(self):
        return list(self._collections)

    def users(self):
        self.calls.append("users")
        return list(self._users)

    def user_data(self, user_id: str) -> Dict[str, WatchState]:
        return dict(self._user_data.get(user_id, {}))


class FakeEpisodeCounter:
    def __init__(self, totals: Dict[str, int], failing=(), specials=None) -> None:
        self.totals = totals
        self.failing = set(failing)
        self.specials = specials or {}
        self.lookups: List[str] = []

    def episode_count(self, show_id: str, cancel=None) -> EpisodeCount:
        self.lookups.append(show_id)
        if show_id in self.failing:
            return EpisodeCount(failed=True)
        return EpisodeCount(
            episodes=self.totals.get(show_id, 0),
            specials=self.specials.get(show_id, 0),
        )


def seen(*item_ids: str, when: Optional[datetime] = None) -> Dict[str, WatchState]:
    return {i: WatchState(played=True, last_played=when) for i in item_ids}


def visible(*item_ids: str) -> Dict[str, WatchState]:
    return {i: WatchState() for i in item_ids}


@pytest.fixture()
def alice() -> User:
    return User(id="u1", name="alice")


@pytest.fixture()
def bob() -> User:
    return User(id="u2", name="bob")
