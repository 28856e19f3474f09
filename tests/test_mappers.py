from datetime import datetime, timezone

from services.mappers import (
    map_all,
    map_media_item,
    map_series,
    map_user,
    map_watch_state,
    parse_datetime,
)
from services.media import EPISODE, MOVIE, STATUS_UNKNOWN


def test_parse_datetime_handles_dotnet_timestamps() -> None:
    assert parse_datetime("2023-05-01T20:15:00.1234567Z") == datetime(
        2023, 5, 1, 20, 15, 0, 123456, tzinfo=timezone.utc
    )
    assert parse_datetime("2023-05-01T20:15:00Z") == datetime(
        2023, 5, 1, 20, 15, tzinfo=timezone.utc
    )
    assert parse_datetime("0001-01-01T00:00:00.0000000Z") is None
    assert parse_datetime("not a date") is None
    assert parse_datetime(None) is None


def test_map_movie_collects_sources_and_streams() -> None:
    item = map_media_item({
        "Id": "m1",
        "Name": " Heat ",
        "Type": "Movie",
        "CommunityRating": 8.3,
        "ProductionYear": 1995,
        "Genres": ["Crime", "Drama"],
        "Studios": [{"Name": "Warner Bros."}],
        "MediaSources": [
            {
                "Size": 1000,
                "Bitrate": 8000000,
                "MediaStreams": [
                    {"Type": "Video", "Codec": "h264", "Width": 1920, "DisplayTitle": "1080p H264"},
                    {"Type": "Audio", "Codec": "aac"},
                ],
            },
            {"Size": 500},
        ],
        "LocationType": "FileSystem",
    })

    assert item.item_type == MOVIE
    assert item.name == "Heat"
    assert item.size == 1500
    assert item.total_bitrate == 8000000
    assert item.studios == ["Warner Bros."]
    assert item.video_stream.width == 1920
    assert item.is_virtual is False


def test_map_episode_links_season() -> None:
    item = map_media_item({
        "Id": "e1",
        "Name": "Pilot",
        "Type": "Episode",
        "SeriesId": "s1",
        "SeasonId": "s1-season",
        "ParentIndexNumber": 0,
        "IndexNumber": 2,
        "IndexNumberEnd": 3,
        "LocationType": "Virtual",
    })

    assert item.item_type == EPISODE
    assert item.parent_id == "s1-season"
    assert item.is_special
    assert item.is_virtual
    assert item.index_number_end == 3


def test_map_series_normalises_status() -> None:
    show = map_series({"Id": "s1", "Name": "Lost", "Status": "Hiatus", "ProviderIds": {"Tvdb": "73739"}})

    assert show.status == STATUS_UNKNOWN
    assert show.tvdb_id == "73739"


def test_map_user_activity() -> None:
    active = map_user({"Id": "u1", "Name": "alice", "Policy": {"EnableRemoteAccess": True}})
    local = map_user({"Id": "u2", "Name": "bob", "Policy": {"EnableRemoteAccess": False}})
    disabled = map_user({"Id": "u3", "Name": "carol", "Policy": {"IsDisabled": True}})

    assert active.is_active
    assert not local.is_active
    assert not disabled.is_active
    assert map_user({"Id": "u4"}) is None


def test_map_watch_state_and_map_all() -> None:
    state = map_watch_state({"Played": True, "LastPlayedDate": "2024-01-02T03:04:05Z"})
    assert state.played
    assert state.last_played.year == 2024
    assert map_watch_state(None).played is False

    movies = map_all(map_media_item, [{"Id": "m1", "Name": "A"}, {"Name": "no id"}])
    assert [m.id for m in movies] == ["m1"]
