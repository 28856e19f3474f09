from conftest import NOW, FakeEpisodeCounter, episode, seen, series

from services.catalog import CatalogSnapshot
from services.episode_ledger import EpisodeLedger, EpisodeLedgerEntry
from services.media import User
from services.show_progress import (
    LEAST_WATCHED_SHOWS,
    MOST_WATCHED_SHOWS,
    ShowProgressRanker,
)


def _ranker(snapshot: CatalogSnapshot, totals) -> ShowProgressRanker:
    ledger = EpisodeLedger.build(snapshot, FakeEpisodeCounter(totals), now=NOW)
    return ShowProgressRanker(snapshot, ledger, NOW)


def _episodes(series_id: str, count: int):
    return [episode(f"{series_id}e{i}", series_id, index=i) for i in range(1, count + 1)]


def _ids(series_id: str, count: int):
    return [f"{series_id}e{i}" for i in range(1, count + 1)]


def test_percent_seen_is_averaged_over_users(alice: User, bob: User) -> None:
    snapshot = CatalogSnapshot(
        series=[series("s1", tvdb="100")],
        episodes=_episodes("s1", 10),
        users=[alice, bob],
        user_data={
            alice.id: seen(*_ids("s1", 8)),
            bob.id: seen(*_ids("s1", 4)),
        },
    )
    ranker = _ranker(snapshot, {"100": 10})

    rows = ranker.rank([alice, bob])

    assert len(rows) == 1
    assert rows[0].percent_seen == 60.0
    assert rows[0].percent_collected == 100.0


def test_seen_is_clamped_to_collected(alice: User) -> None:
    snapshot = CatalogSnapshot(
        series=[series("s1", tvdb="100")],
        episodes=[episode("s1e1", "s1", index=1, index_number_end=4)],
        users=[alice],
        user_data={alice.id: seen("s1e1")},
    )
    ledger = EpisodeLedger(
        {"s1": EpisodeLedgerEntry(total_episodes=10, collected_episodes=2)}
    )
    row = ShowProgressRanker(snapshot, ledger, NOW).user_progress(alice)[0]

    assert row.collected_episodes == 2
    assert row.seen_episodes == 2
    assert row.percent_seen == 100.0
    assert row.percent_collected == 20.0
    assert row.total_episodes == 10


def test_series_without_total_are_not_ranked(alice: User) -> None:
    snapshot = CatalogSnapshot(
        series=[series("s1", tvdb="100"), series("s2")],
        episodes=_episodes("s1", 2) + _episodes("s2", 2),
        users=[alice],
        user_data={alice.id: seen(*_ids("s2", 2))},
    )
    ranker = _ranker(snapshot, {"100": 2})

    assert [r.id for r in ranker.rank([alice])] == ["s1"]
    progress = {r.id: r for r in ranker.user_progress(alice)}
    assert progress["s2"].percent_collected == 0.0
    assert progress["s2"].total_episodes == 0
    assert ranker.finished_count(alice) == 0


def test_most_and_least_watched_order(alice: User) -> None:
    snapshot = CatalogSnapshot(
        series=[
            series("a", tvdb="1", name="Alpha"),
            series("b", tvdb="2", name="Bravo"),
            series("c", tvdb="3", name="Charlie"),
            series("d", tvdb="4", name="Delta"),
        ],
        episodes=_episodes("a", 4) + _episodes("b", 4) + _episodes("c", 4) + _episodes("d", 4),
        users=[alice],
        user_data={alice.id: seen(*(_ids("a", 1) + _ids("b", 4) + _ids("c", 2)))},
    )
    ranker = _ranker(snapshot, {"1": 4, "2": 4, "3": 4, "4": 4})

    most = ranker.most_watched([alice])
    assert most.title == MOST_WATCHED_SHOWS
    assert (most.value_line_one, most.value_line_two, most.value_line_three) == (
        "Bravo",
        "Charlie",
        "Alpha",
    )

    least = ranker.least_watched([alice])
    assert least.title == LEAST_WATCHED_SHOWS
    assert (least.value_line_one, least.value_line_two, least.value_line_three) == (
        "Delta",
        "Alpha",
        "Charlie",
    )


def test_rankings_pad_with_blanks(alice: User) -> None:
    snapshot = CatalogSnapshot(
        series=[series("s1", tvdb="100", name="Only")],
        episodes=_episodes("s1", 1),
        users=[alice],
    )
    result = _ranker(snapshot, {"100": 1}).most_watched([alice])

    assert result.value_line_one == "Only"
    assert result.value_line_two == ""
    assert result.value_line_three == ""


def test_no_users_gives_empty_ranking() -> None:
    snapshot = CatalogSnapshot(series=[series("s1", tvdb="100")], episodes=_episodes("s1", 1))
    ranker = _ranker(snapshot, {"100": 1})

    assert ranker.rank([]) == []
    assert ranker.most_watched([]).value_line_one == ""


def test_user_progress_is_sorted_and_includes_specials(alice: User) -> None:
    snapshot = CatalogSnapshot(
        series=[series("z", name="Zulu"), series("a", tvdb="9", name="Able")],
        episodes=_episodes("a", 2) + [episode("sp", "a", season=0, index=1)],
        users=[alice],
        user_data={alice.id: seen("ae1", "sp")},
    )
    rows = _ranker(snapshot, {"9": 2}).user_progress(alice)

    assert [r.name for r in rows] == ["Able", "Zulu"]
    assert rows[0].seen_episodes == 1
    assert rows[0].seen_specials == 1
    assert rows[0].collected_specials == 1
    assert rows[0].percent_seen == 50.0
    assert rows[0].to_dict()["Watched"] == 50.0


def test_finished_count_needs_every_episode(alice: User) -> None:
    snapshot = CatalogSnapshot(
        series=[series("s1", tvdb="1"), series("s2", tvdb="2")],
        episodes=_episodes("s1", 3) + _episodes("s2", 3),
        users=[alice],
        user_data={alice.id: seen(*(_ids("s1", 3) + _ids("s2", 2)))},
    )
    ranker = _ranker(snapshot, {"1": 3, "2": 3})

    assert ranker.finished_count(alice) == 1
