"""
Transform Jellyfin API objects into catalog records.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from services.media import (
    EPISODE,
    MOVIE,
    STATUS_CONTINUING,
    STATUS_ENDED,
    STATUS_UNKNOWN,
    Collection,
    MediaItem,
    MediaStream,
    Season,
    Series,
    User,
    WatchState,
)

_FRACTION_RE = re.compile(r"\.(\d+)")


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse a Jellyfin timestamp ("2023-05-01T20:15:00.0000000Z") into an
    aware UTC datetime. Returns None for empty or unparsable values.
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # .NET writes seven fractional digits; fromisoformat wants at most six
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    if parsed.year <= 1:
        return None
    return parsed.astimezone(timezone.utc)


def _int(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _float(value: Any) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _names(entries: Any) -> List[str]:
    names = []
    for entry in entries or []:
        name = entry.get("Name") if isinstance(entry, dict) else entry
        if isinstance(name, str) and name:
            names.append(name)
    return names


def map_stream(jf_stream: Dict[str, Any]) -> MediaStream:
    return MediaStream(
        type=str(jf_stream.get("Type") or "").lower(),
        codec=jf_stream.get("Codec"),
        width=_int(jf_stream.get("Width")),
        display_title=jf_stream.get("DisplayTitle"),
    )


def map_media_item(jf_item: Dict[str, Any]) -> Optional[MediaItem]:
    """
    Transform a Jellyfin Movie or Episode into a MediaItem.
    """
    jf_id = (jf_item.get("Id") or "").strip()
    if not jf_id:
        return None

    sources = jf_item.get("MediaSources") or []
    streams = jf_item.get("MediaStreams")
    if not streams and sources:
        streams = sources[0].get("MediaStreams")

    size = None
    sizes = [s.get("Size") for s in sources if isinstance(s.get("Size"), int)]
    if sizes:
        size = sum(sizes)

    bitrate = None
    if sources:
        bitrate = _int(sources[0].get("Bitrate"))

    item_type = EPISODE if jf_item.get("Type") == EPISODE else MOVIE

    return MediaItem(
        id=jf_id,
        name=(jf_item.get("Name") or "").strip(),
        item_type=item_type,
        sort_name=jf_item.get("SortName"),
        premiere_date=parse_datetime(jf_item.get("PremiereDate")),
        production_year=_int(jf_item.get("ProductionYear")),
        date_created=parse_datetime(jf_item.get("DateCreated")),
        run_time_ticks=_int(jf_item.get("RunTimeTicks")),
        community_rating=_float(jf_item.get("CommunityRating")),
        total_bitrate=bitrate,
        studios=_names(jf_item.get("Studios")),
        genres=_names(jf_item.get("Genres")),
        media_streams=[map_stream(s) for s in streams or [] if isinstance(s, dict)],
        path=jf_item.get("Path"),
        size=size,
        is_virtual=jf_item.get("LocationType") == "Virtual",
        series_id=jf_item.get("SeriesId"),
        series_name=jf_item.get("SeriesName"),
        parent_id=jf_item.get("SeasonId") or jf_item.get("ParentId"),
        index_number=_int(jf_item.get("IndexNumber")),
        index_number_end=_int(jf_item.get("IndexNumberEnd")),
        parent_index_number=_int(jf_item.get("ParentIndexNumber")),
    )


def map_series(jf_series: Dict[str, Any]) -> Optional[Series]:
    jf_id = (jf_series.get("Id") or "").strip()
    if not jf_id:
        return None

    status = jf_series.get("Status")
    if status not in (STATUS_CONTINUING, STATUS_ENDED):
        status = STATUS_UNKNOWN

    return Series(
        id=jf_id,
        name=(jf_series.get("Name") or "").strip(),
        sort_name=jf_series.get("SortName"),
        status=status,
        premiere_date=parse_datetime(jf_series.get("PremiereDate")),
        community_rating=_float(jf_series.get("CommunityRating")),
        studios=_names(jf_series.get("Studios")),
        genres=_names(jf_series.get("Genres")),
        provider_ids=dict(jf_series.get("ProviderIds") or {}),
    )


def map_season(jf_season: Dict[str, Any]) -> Optional[Season]:
    jf_id = (jf_season.get("Id") or "").strip()
    if not jf_id:
        return None
    return Season(
        id=jf_id,
        parent_id=jf_season.get("SeriesId") or jf_season.get("ParentId"),
        index_number=_int(jf_season.get("IndexNumber")),
    )


def map_collection(jf_boxset: Dict[str, Any]) -> Optional[Collection]:
    jf_id = (jf_boxset.get("Id") or "").strip()
    if not jf_id:
        return None
    return Collection(id=jf_id, name=(jf_boxset.get("Name") or "").strip())


def map_user(jf_user: Dict[str, Any]) -> Optional[User]:
    """
    A user counts as active when remote access is enabled and the account
    is not disabled.
    """
    jf_id = (jf_user.get("Id") or "").strip()
    name = (jf_user.get("Name") or "").strip()
    if not jf_id or not name:
        return None

    policy = jf_user.get("Policy") or {}
    return User(
        id=jf_id,
        name=name,
        is_active=bool(policy.get("EnableRemoteAccess", True))
        and not policy.get("IsDisabled", False),
    )


def map_watch_state(user_data: Optional[Dict[str, Any]]) -> WatchState:
    user_data = user_data or {}
    return WatchState(
        played=bool(user_data.get("Played", False)),
        last_played=parse_datetime(user_data.get("LastPlayedDate")),
    )


def map_all(mapper, jf_objects: List[Dict[str, Any]]) -> List[Any]:
    """
    Apply ``mapper`` to each object, dropping the ones it rejects.
    """
    results = []
    for obj in jf_objects:
        mapped = mapper(obj)
        if mapped is not None:
            results.append(mapped)
    return results
