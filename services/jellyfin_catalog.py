"""
Catalog provider backed by the Jellyfin REST API.
"""

from __future__ import annotations

from typing import Any, Dict, List

from services.jellyfin import JellyfinClient
from services.mappers import (
    map_all,
    map_collection,
    map_media_item,
    map_season,
    map_series,
    map_user,
    map_watch_state,
)
from services.media import Collection, MediaItem, Season, Series, User, WatchState


class CatalogUnavailableError(RuntimeError):
    """Raised when Jellyfin cannot supply part of the catalog."""


class JellyfinCatalogProvider:
    def __init__(self, client: JellyfinClient) -> None:
        self.client = client

    def _items(self, result: Dict[str, Any], what: str) -> List[Dict[str, Any]]:
        if not result.get("ok"):
            raise CatalogUnavailableError(
                f"Fetching {what} failed: {result.get('message') or result.get('status')}"
            )
        data = result.get("data")
        if isinstance(data, dict):
            return list(data.get("Items") or [])
        if isinstance(data, list):
            return data
        return []

    def movies(self) -> List[MediaItem]:
        items = self._items(self.client.items(("Movie",)), "movies")
        return map_all(map_media_item, items)

    def series(self) -> List[Series]:
        items = self._items(self.client.items(("Series",)), "series")
        return map_all(map_series, items)

    def seasons(self) -> List[Season]:
        items = self._items(self.client.items(("Season",), fields=("SortName",)), "seasons")
        return map_all(map_season, items)

    def episodes(self) -> List[MediaItem]:
        items = self._items(self.client.items(("Episode",)), "episodes")
        return map_all(map_media_item, items)

    def collections(self) -> List[Collection]:
        items = self._items(self.client.items(("BoxSet",), fields=("SortName",)), "collections")
        return map_all(map_collection, items)

    def users(self) -> List[User]:
        return map_all(map_user, self._items(self.client.users(), "users"))

    def user_data(self, user_id: str) -> Dict[str, WatchState]:
        """
        Watch state for every item the user can see. An item missing from
        the result is not visible to that user.
        """
        items = self._items(self.client.user_items(user_id), f"items for user {user_id}")
        states: Dict[str, WatchState] = {}
        for it in items:
            jf_id = (it.get("Id") or "").strip()
            if jf_id:
                states[jf_id] = map_watch_state(it.get("UserData"))
        return states
