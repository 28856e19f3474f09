"""
Catalog records shared by the snapshot, the ledger and the statistics.

These are plain value objects. Watch state is kept apart from the items
because many users share one catalog.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

TICKS_PER_SECOND = 10_000_000

MOVIE = "Movie"
EPISODE = "Episode"

STATUS_CONTINUING = "Continuing"
STATUS_ENDED = "Ended"
STATUS_UNKNOWN = "Unknown"


@dataclass
class MediaStream:
    type: str
    codec: Optional[str] = None
    width: Optional[int] = None
    display_title: Optional[str] = None


@dataclass
class MediaItem:
    """
    A movie or an episode.

    Episode-only fields stay None on movies. ``parent_id`` is the season
    the episode belongs to, ``parent_index_number`` the season number.
    """
    id: str
    name: str
    item_type: str = MOVIE
    sort_name: Optional[str] = None
    premiere_date: Optional[datetime] = None
    production_year: Optional[int] = None
    date_created: Optional[datetime] = None
    run_time_ticks: Optional[int] = None
    community_rating: Optional[float] = None
    total_bitrate: Optional[int] = None
    studios: List[str] = field(default_factory=list)
    genres: List[str] = field(default_factory=list)
    media_streams: List[MediaStream] = field(default_factory=list)
    path: Optional[str] = None
    size: Optional[int] = None
    is_virtual: bool = False
    series_id: Optional[str] = None
    series_name: Optional[str] = None
    parent_id: Optional[str] = None
    index_number: Optional[int] = None
    index_number_end: Optional[int] = None
    parent_index_number: Optional[int] = None

    @property
    def is_episode(self) -> bool:
        return self.item_type == EPISODE

    @property
    def is_special(self) -> bool:
        """
        Season 0 holds the specials.
        """
        return self.parent_index_number == 0

    @property
    def video_stream(self) -> Optional[MediaStream]:
        for stream in self.media_streams:
            if stream is not None and stream.type == "video":
                return stream
        return None


@dataclass
class Series:
    id: str
    name: str
    sort_name: Optional[str] = None
    status: str = STATUS_UNKNOWN
    premiere_date: Optional[datetime] = None
    community_rating: Optional[float] = None
    studios: List[str] = field(default_factory=list)
    genres: List[str] = field(default_factory=list)
    provider_ids: Dict[str, str] = field(default_factory=dict)

    @property
    def tvdb_id(self) -> Optional[str]:
        value = (self.provider_ids.get("Tvdb") or "").strip()
        return value or None


@dataclass
class Season:
    id: str
    parent_id: Optional[str] = None
    index_number: Optional[int] = None


@dataclass
class Collection:
    id: str
    name: str


@dataclass
class User:
    id: str
    name: str
    is_active: bool = True


@dataclass
class WatchState:
    played: bool = False
    last_played: Optional[datetime] = None
