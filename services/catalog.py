"""
In-process snapshot of the media catalog and every user's watch state.

The snapshot is loaded once per statistics run and never mutated
afterwards. Every per-user view takes the user as an argument; passing
``None`` evaluates the predicate across all known users (true when any
user satisfies it).
"""

from __future__ import annotations

import threading
from collections import defaultdict
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from services.media import (
    Collection,
    MediaItem,
    Season,
    Series,
    User,
    WatchState,
)

_UNWATCHED = WatchState()


class CatalogSnapshot:
    def __init__(
        self,
        movies: Iterable[MediaItem] = (),
        series: Iterable[Series] = (),
        seasons: Iterable[Season] = (),
        episodes: Iterable[MediaItem] = (),
        collections: Iterable[Collection] = (),
        users: Iterable[User] = (),
        user_data: Optional[Dict[str, Dict[str, WatchState]]] = None,
    ) -> None:
        self._all_movies: Tuple[MediaItem, ...] = tuple(movies)
        self._series: Tuple[Series, ...] = tuple(series)
        self._seasons: Dict[str, Season] = {s.id: s for s in seasons}
        self._all_episodes: Tuple[MediaItem, ...] = tuple(episodes)
        self._collections: Tuple[Collection, ...] = tuple(collections)
        self._users: Tuple[User, ...] = tuple(users)
        self._user_data: Dict[str, Dict[str, WatchState]] = {
            uid: dict(states) for uid, states in (user_data or {}).items()
        }

        self._series_by_id = {s.id: s for s in self._series}
        self._movies = tuple(m for m in self._all_movies if not m.is_virtual)
        self._owned_episodes = tuple(
            e for e in self._all_episodes if not e.is_virtual
        )

        grouped: Dict[str, List[MediaItem]] = defaultdict(list)
        for episode in self._owned_episodes:
            series_id = self.series_id_of(episode)
            if series_id is not None:
                grouped[series_id].append(episode)
        self._episodes_by_series = {k: tuple(v) for k, v in grouped.items()}

        self._memo: Dict[Tuple[str, Optional[str]], Tuple[Any, ...]] = {}
        self._lock = threading.Lock()

    @classmethod
    def load(cls, provider: Any) -> "CatalogSnapshot":
        """
        Fetch everything the statistics need from a catalog provider, once.

        :param provider: Object exposing movies(), series(), seasons(),
            episodes(), collections(), users() and user_data(user_id)
        :returns CatalogSnapshot: Immutable snapshot for one run
        """
        users = list(provider.users())
        user_data = {u.id: dict(provider.user_data(u.id)) for u in users}
        return cls(
            movies=provider.movies(),
            series=provider.series(),
            seasons=provider.seasons(),
            episodes=provider.episodes(),
            collections=provider.collections(),
            users=users,
            user_data=user_data,
        )

    # Entities

    @property
    def movies(self) -> Tuple[MediaItem, ...]:
        """Owned movies, virtual placeholders excluded."""
        return self._movies

    @property
    def all_movies(self) -> Tuple[MediaItem, ...]:
        return self._all_movies

    @property
    def series(self) -> Tuple[Series, ...]:
        return self._series

    @property
    def episodes(self) -> Tuple[MediaItem, ...]:
        return self._all_episodes

    @property
    def owned_episodes(self) -> Tuple[MediaItem, ...]:
        return self._owned_episodes

    @property
    def collections(self) -> Tuple[Collection, ...]:
        return self._collections

    @property
    def users(self) -> Tuple[User, ...]:
        return self._users

    @property
    def active_users(self) -> Tuple[User, ...]:
        return tuple(u for u in self._users if u.is_active)

    def get_series(self, series_id: Optional[str]) -> Optional[Series]:
        if series_id is None:
            return None
        return self._series_by_id.get(series_id)

    def get_season(self, season_id: Optional[str]) -> Optional[Season]:
        if season_id is None:
            return None
        return self._seasons.get(season_id)

    def series_id_of(self, episode: MediaItem) -> Optional[str]:
        """
        Walk episode -> season -> series. Falls back to the series id the
        episode carries when the season is unknown.
        """
        season = self._seasons.get(episode.parent_id) if episode.parent_id else None
        if season is not None and season.parent_id in self._series_by_id:
            return season.parent_id
        return episode.series_id

    def episodes_of(self, series_id: str) -> Tuple[MediaItem, ...]:
        """Owned episodes whose parent chain resolves to ``series_id``."""
        return self._episodes_by_series.get(series_id, ())

    # Watch state

    def watch_state(self, item: Any, user: User) -> WatchState:
        return self._user_data.get(user.id, {}).get(item.id, _UNWATCHED)

    def is_played(self, item: Any, user: Optional[User] = None) -> bool:
        if user is not None:
            return self.watch_state(item, user).played
        return any(self.watch_state(item, u).played for u in self._users)

    def is_visible(self, item: Any, user: Optional[User] = None) -> bool:
        if user is not None:
            return item.id in self._user_data.get(user.id, {})
        return any(item.id in self._user_data.get(u.id, {}) for u in self._users)

    def last_played(
        self, item: Any, user: Optional[User] = None
    ) -> Tuple[Optional[datetime], Optional[User]]:
        """
        Most recent play of ``item`` and who played it.

        With no user the latest play across all users wins; the first user
        in catalog order wins ties.
        """
        candidates = [user] if user is not None else list(self._users)
        best: Optional[datetime] = None
        best_user: Optional[User] = None
        for u in candidates:
            state = self.watch_state(item, u)
            if not state.played or state.last_played is None:
                continue
            if best is None or state.last_played > best:
                best = state.last_played
                best_user = u
        return best, best_user

    # Per-user views, memoised

    def _cached(
        self, name: str, user: Optional[User], build: Callable[[], Iterable[Any]]
    ) -> Tuple[Any, ...]:
        key = (name, user.id if user is not None else None)
        with self._lock:
            cached = self._memo.get(key)
        if cached is not None:
            return cached
        value = tuple(build())
        with self._lock:
            return self._memo.setdefault(key, value)

    def movies_for(self, user: Optional[User] = None) -> Tuple[MediaItem, ...]:
        """
        Owned movies in scope: all of them library-wide, the visible ones
        for a single user.
        """
        if user is None:
            return self._movies
        return self._cached(
            "movies", user, lambda: (m for m in self._movies if self.is_visible(m, user))
        )

    def episodes_for(self, user: Optional[User] = None) -> Tuple[MediaItem, ...]:
        if user is None:
            return self._owned_episodes
        return self._cached(
            "episodes",
            user,
            lambda: (e for e in self._owned_episodes if self.is_visible(e, user)),
        )

    def series_for(self, user: Optional[User] = None) -> Tuple[Series, ...]:
        if user is None:
            return self._series
        return self._cached(
            "series", user, lambda: (s for s in self._series if self.is_visible(s, user))
        )

    def collections_for(self, user: Optional[User] = None) -> Tuple[Collection, ...]:
        if user is None:
            return self._collections
        return self._cached(
            "collections",
            user,
            lambda: (c for c in self._collections if self.is_visible(c, user)),
        )

    def viewed_movies(self, user: Optional[User] = None) -> Tuple[MediaItem, ...]:
        return self._cached(
            "viewed_movies",
            user,
            lambda: (m for m in self._movies if self.is_played(m, user)),
        )

    def viewed_episodes(self, user: Optional[User] = None) -> Tuple[MediaItem, ...]:
        return self._cached(
            "viewed_episodes",
            user,
            lambda: (e for e in self._owned_episodes if self.is_played(e, user)),
        )
