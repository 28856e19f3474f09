import json
import threading
from datetime import date

from services.episode_counts import EPISODES_FILE, EpisodeCount, TvdbCacheEpisodeCounter


def _write(tmp_path, show_id: str, payload) -> None:
    folder = tmp_path / show_id
    folder.mkdir()
    text = payload if isinstance(payload, str) else json.dumps(payload)
    (folder / EPISODES_FILE).write_text(text, encoding="utf-8")


def test_counts_aired_episodes_and_specials(tmp_path) -> None:
    _write(tmp_path, "81189", {
        "episodes": [
            {"seasonNumber": 1, "aired": "2008-01-20"},
            {"seasonNumber": 1, "aired": "2008-01-27"},
            {"seasonNumber": 2, "aired": "2030-01-01"},
            {"seasonNumber": 2, "aired": None},
            {"seasonNumber": 0, "aired": "2009-02-17"},
        ]
    })
    counter = TvdbCacheEpisodeCounter(str(tmp_path), today=date(2024, 6, 15))

    assert counter.episode_count("81189") == EpisodeCount(episodes=2, specials=1)


def test_missing_file_is_a_failed_count(tmp_path) -> None:
    counter = TvdbCacheEpisodeCounter(str(tmp_path))

    result = counter.episode_count("404")

    assert result.failed
    assert result.episodes == 0


def test_malformed_data_is_a_failed_count(tmp_path) -> None:
    _write(tmp_path, "1", "{not json")
    _write(tmp_path, "2", {"episodes": [{"seasonNumber": 1, "aired": "soon"}]})
    counter = TvdbCacheEpisodeCounter(str(tmp_path), today=date(2024, 6, 15))

    assert counter.episode_count("1").failed
    assert counter.episode_count("2").failed


def test_no_cache_dir_configured_fails() -> None:
    assert TvdbCacheEpisodeCounter("").episode_count("1").failed


def test_cancelled_lookup_does_not_read(tmp_path) -> None:
    _write(tmp_path, "1", {"episodes": [{"seasonNumber": 1, "aired": "2000-01-01"}]})
    cancel = threading.Event()
    cancel.set()

    result = TvdbCacheEpisodeCounter(str(tmp_path)).episode_count("1", cancel)

    assert result.failed
    assert result.episodes == 0
