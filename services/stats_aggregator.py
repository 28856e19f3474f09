"""
Statistics computed from a catalog snapshot and an episode ledger.

Every public method takes the user explicitly (``None`` aggregates across
all users) and returns one StatResult. Nothing here mutates the snapshot
or the ledger, so one aggregator may serve several threads at once.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from services.aggregation import (
    NO_DATA,
    StatResult,
    attempt,
    check_max_length,
    clock,
    days_ago,
    describe_ticks,
    first_by,
    percentage,
    plural,
    resolution_bucket,
    split_ticks,
    top_counts,
    years_months_ago,
)
from services.catalog import CatalogSnapshot
from services.episode_ledger import EpisodeLedger, episode_span
from services.media import MediaItem, User
from services.show_progress import ShowProgressRanker

logger = logging.getLogger(__name__)

BYTES_PER_GB = 1073741824
LAST_SEEN_COUNT = 8
MOST_ACTIVE_COUNT = 5

FAVORITE_MOVIE_GENRES = "Favorite Movie Genres"
FAVORITE_SHOW_GENRES = "Favorite Show Genres"
LAST_SEEN_MOVIES = "Last Seen Movies"
LAST_SEEN_SHOWS = "Last Seen TV Series"
TOTAL_WATCHED = "Total Time Watched"
TOTAL_WATCHABLE_TIME = "Total Watchable Time"
FAVORITE_YEARS = "Favorite Movie Years"
MOST_ACTIVE_USERS = "Most Active Users"
TOTAL_MOVIES = "Total Movies"
TOTAL_MOVIES_WATCHED = "Total Movies Watched"
TOTAL_COLLECTIONS = "Total Collections"
TOTAL_SHOWS = "Total TV Series"
TOTAL_EPISODES = "Total Episodes"
TOTAL_EPISODES_WATCHED = "Total Episodes Watched"
TOTAL_SHOWS_FINISHED = "Total Series Finished"
MEDIA_QUALITIES = "Media Qualities"
MEDIA_CODECS = "Media Codecs"
LONGEST_MOVIE = "Longest Movie Runtime"
LONGEST_SHOW = "Longest TV Series Runtime"
BIGGEST_MOVIE = "Largest Movie"
BIGGEST_SHOW = "Largest TV Series Total Size"
OLDEST_PREMIERED_MOVIE = "Oldest Premiered Movie"
NEWEST_PREMIERED_MOVIE = "Newest Premiered Movie"
OLDEST_PREMIERED_SHOW = "Oldest Premiered Show"
NEWEST_PREMIERED_SHOW = "Newest Premiered Show"
NEWEST_ADDED_MOVIE = "Newest Added Movie"
NEWEST_ADDED_EPISODE = "Newest Added Episode"
HIGHEST_MOVIE_RATING = "Highest Movie Rating"
LOWEST_MOVIE_RATING = "Lowest Movie Rating"
HIGHEST_BITRATE = "Highest Movie Bitrate"
LOWEST_BITRATE = "Lowest Movie Bitrate"
TOTAL_STUDIOS = "Total Studios"
TOTAL_NETWORKS = "Total Networks"
TOTAL_USERS = "Total Users"

HELP_MOST_ACTIVE_USERS = (
    "Top 5 users that are the most active on the server. "
    "This includes viewing movies and episodes."
)
HELP_TOTAL_MOVIES = "Total movies this user can see in their library."
HELP_TOTAL_MOVIES_WATCHED = "Total movies this user has watched."
HELP_TOTAL_EPISODES_WATCHED = "Total episodes this user has watched."
HELP_QUALITIES = (
    "Entries with Resolution Not Available can be located in the log file "
    "after debug logging has been enabled by searching media_qualities."
)
HELP_CODECS = (
    "Entries with Unknown can be located in the log file after debug "
    "logging has been enabled by searching media_codecs."
)
HELP_TOTAL_SHOWS_FINISHED = (
    "Total shows this user has finished watching. Only normal episodes, "
    "so no specials are needed to be watched."
)
HELP_TOTAL_SHOWS = "Total TV Series this user can see in their library."
HELP_TOTAL_EPISODES = "Total episodes this user can see in their library."
HELP_TOTAL_COLLECTIONS = "Total collections this user can see in their library."
HELP_FAVORITE_YEARS = "Top 5 years the user watched movies."
HELP_FAVORITE_MOVIE_GENRES = "Top 3 movie genres the user can see."
HELP_FAVORITE_SHOW_GENRES = "Top 3 show genres the user can see."

HALF = "half"
LARGE = "large"


def _help(user: Optional[User], text: str) -> Optional[str]:
    return text if user is not None else None


def _table(header: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
    head = "".join(f"<td>{h}</td>" for h in ("",) + tuple(header))
    body = "".join(
        "<tr>" + "".join(f"<td>{cell}</td>" for cell in row) + "</tr>"
        for row in rows
    )
    return f"<table><tr>{head}</tr>{body}</table>"


def _number(value: float) -> str:
    return f"{value:g}"


def _two_digits(value: Optional[int]) -> str:
    return f"{value:02d}" if value is not None else "??"


class StatsAggregator:
    def __init__(
        self,
        snapshot: CatalogSnapshot,
        ledger: EpisodeLedger,
        now: Optional[datetime] = None,
        file_size: Callable[[str], int] = os.path.getsize,
    ) -> None:
        self.snapshot = snapshot
        self.ledger = ledger
        self.now = now or datetime.now(timezone.utc)
        self.progress = ShowProgressRanker(snapshot, ledger, self.now)
        self._file_size = file_size

    # Helpers

    def _size_of(self, item: MediaItem) -> int:
        """
        Host-reported size when present, else the size of the file on disk.
        """
        if item.size is not None:
            return int(item.size)
        if not item.path:
            raise ValueError(f"{item.name} has no path")
        return int(self._file_size(item.path))

    def _measure(
        self, items: Iterable[MediaItem], label: str
    ) -> Tuple[List[Tuple[MediaItem, int]], int]:
        """
        Sizes for every item that could be measured, plus the number of
        items skipped.
        """
        measured: List[Tuple[MediaItem, int]] = []
        skipped = 0
        for item in items:
            outcome = attempt(self._size_of, item)
            if outcome.ok:
                measured.append((item, outcome.value))
            else:
                skipped += 1
                logger.debug("%s skipped %s: %s", label, item.name, outcome.error)
        return measured, skipped

    def _played_or_all(
        self, items: Iterable[Any], user: Optional[User], only_played: bool
    ) -> List[Any]:
        if user is None:
            return [
                i for i in items if not only_played or self.snapshot.is_played(i)
            ]
        return [
            i for i in items
            if self.snapshot.is_visible(i, user)
            and (not only_played or self.snapshot.is_played(i, user))
        ]

    @staticmethod
    def _extremum(
        title: str,
        item: Optional[Any],
        line_one: Callable[[Any], str],
        line_two: Optional[Callable[[Any], str]] = None,
        skipped: int = 0,
    ) -> StatResult:
        if item is None:
            return StatResult(title=title, value_line_one=NO_DATA, size=HALF, skipped=skipped)
        return StatResult(
            title=title,
            value_line_one=check_max_length(line_one(item)),
            value_line_two=check_max_length(
                line_two(item) if line_two is not None else item.name
            ),
            size=HALF,
            id=item.id,
            skipped=skipped,
        )

    # Favourites

    def favorite_years(self, user: Optional[User] = None) -> StatResult:
        years = (
            m.production_year
            for m in self.snapshot.viewed_movies(user)
            if m.production_year is not None
        )
        top = top_counts(years, 5)
        return StatResult(
            title=FAVORITE_YEARS,
            value_line_one=", ".join(str(year) for year, _ in top),
            extra_information=_help(user, HELP_FAVORITE_YEARS),
            size=HALF,
        )

    def _favorite_genres(
        self, items: Iterable[Any], user: Optional[User], title: str, help_text: str
    ) -> StatResult:
        genres = (
            genre
            for item in items
            if self.snapshot.is_visible(item, user)
            for genre in (item.genres or [])
        )
        top = top_counts(genres, 3)
        return StatResult(
            title=title,
            value_line_one=", ".join(genre for genre, _ in top),
            extra_information=_help(user, help_text),
            size=HALF,
        )

    def favorite_movie_genres(self, user: Optional[User] = None) -> StatResult:
        return self._favorite_genres(
            self.snapshot.movies, user, FAVORITE_MOVIE_GENRES, HELP_FAVORITE_MOVIE_GENRES
        )

    def favorite_show_genres(self, user: Optional[User] = None) -> StatResult:
        return self._favorite_genres(
            self.snapshot.series, user, FAVORITE_SHOW_GENRES, HELP_FAVORITE_SHOW_GENRES
        )

    # Last seen

    def _last_seen(
        self,
        items: Iterable[MediaItem],
        user: Optional[User],
        title: str,
        describe: Callable[[MediaItem], str],
    ) -> StatResult:
        played = []
        for item in items:
            when, who = self.snapshot.last_played(item, user)
            if when is not None:
                played.append((item, when, who))
        played.sort(key=lambda entry: entry[1], reverse=True)

        lines = []
        for item, when, who in played[:LAST_SEEN_COUNT]:
            line = f"{describe(item)} - {when:%Y-%m-%d}"
            if user is None and who is not None:
                line += f" - Viewed by {who.name}"
            lines.append(line)
        return StatResult(title=title, value_line_one="<br/>".join(lines), size=LARGE)

    def last_seen_movies(self, user: Optional[User] = None) -> StatResult:
        return self._last_seen(
            self.snapshot.viewed_movies(user), user, LAST_SEEN_MOVIES, lambda m: m.name
        )

    def last_seen_shows(self, user: Optional[User] = None) -> StatResult:
        def describe(episode: MediaItem) -> str:
            series = self.snapshot.get_series(self.snapshot.series_id_of(episode))
            series_name = series.name if series else (episode.series_name or "")
            return (
                f"{series_name} - S{_two_digits(episode.parent_index_number)}"
                f":E{_two_digits(episode.index_number)} - {episode.name}"
            )

        return self._last_seen(
            self.snapshot.viewed_episodes(user), user, LAST_SEEN_SHOWS, describe
        )

    # Time

    def _time(
        self, items: Iterable[MediaItem], user: Optional[User], only_played: bool
    ) -> StatResult:
        ticks = sum(
            i.run_time_ticks or 0 for i in self._played_or_all(items, user, only_played)
        )
        return StatResult(
            title=TOTAL_WATCHED if only_played else TOTAL_WATCHABLE_TIME,
            value_line_one=describe_ticks(ticks),
            size=HALF,
            raw=ticks,
        )

    def movie_time(self, user: Optional[User] = None, only_played: bool = True) -> StatResult:
        return self._time(self.snapshot.movies, user, only_played)

    def show_time(self, user: Optional[User] = None, only_played: bool = True) -> StatResult:
        return self._time(self.snapshot.owned_episodes, user, only_played)

    def overall_time(self, user: Optional[User] = None, only_played: bool = True) -> StatResult:
        return self._time(
            self.snapshot.movies + self.snapshot.owned_episodes, user, only_played
        )

    # Totals

    def total_movies(self, user: Optional[User] = None) -> StatResult:
        return StatResult(
            title=TOTAL_MOVIES,
            value_line_one=str(len(self.snapshot.movies_for(user))),
            extra_information=_help(user, HELP_TOTAL_MOVIES),
        )

    def total_shows(self, user: Optional[User] = None) -> StatResult:
        return StatResult(
            title=TOTAL_SHOWS,
            value_line_one=str(len(self.snapshot.series_for(user))),
            value_line_two=TOTAL_EPISODES,
            value_line_three=str(len(self.snapshot.episodes_for(user))),
            extra_information=_help(user, HELP_TOTAL_SHOWS),
        )

    def total_owned_episodes(self, user: Optional[User] = None) -> StatResult:
        return StatResult(
            title=TOTAL_EPISODES,
            value_line_one=str(len(self.snapshot.episodes_for(user))),
            extra_information=_help(user, HELP_TOTAL_EPISODES),
        )

    def total_collections(self, user: Optional[User] = None) -> StatResult:
        return StatResult(
            title=TOTAL_COLLECTIONS,
            value_line_one=str(len(self.snapshot.collections_for(user))),
            extra_information=_help(user, HELP_TOTAL_COLLECTIONS),
        )

    def total_movies_watched(self, user: Optional[User] = None) -> StatResult:
        viewed = len(self.snapshot.viewed_movies(user))
        owned = len(self.snapshot.movies_for(user))
        return StatResult(
            title=TOTAL_MOVIES_WATCHED,
            value_line_one=f"{viewed} ({percentage(viewed, owned)}%)",
            extra_information=_help(user, HELP_TOTAL_MOVIES_WATCHED),
        )

    def total_episodes_watched(self, user: Optional[User] = None) -> StatResult:
        seen = sum(episodes for episodes, _ in self.progress.seen_counts(user).values())
        owned = sum(
            episode_span(e) for e in self.snapshot.episodes_for(user) if not e.is_special
        )
        return StatResult(
            title=TOTAL_EPISODES_WATCHED,
            value_line_one=f"{seen} ({percentage(seen, owned)}%)",
            extra_information=_help(user, HELP_TOTAL_EPISODES_WATCHED),
        )

    def total_finished_shows(self, user: Optional[User] = None) -> StatResult:
        return StatResult(
            title=TOTAL_SHOWS_FINISHED,
            value_line_one=str(self.progress.finished_count(user)),
            extra_information=_help(user, HELP_TOTAL_SHOWS_FINISHED),
        )

    def total_movie_studios(self, user: Optional[User] = None) -> StatResult:
        studios = {s for m in self.snapshot.movies_for(user) for s in (m.studios or [])}
        return StatResult(title=TOTAL_STUDIOS, value_line_one=str(len(studios)))

    def total_show_studios(self, user: Optional[User] = None) -> StatResult:
        networks = {s for x in self.snapshot.series_for(user) for s in (x.studios or [])}
        return StatResult(title=TOTAL_NETWORKS, value_line_one=str(len(networks)))

    def total_users(self, user: Optional[User] = None) -> StatResult:
        return StatResult(title=TOTAL_USERS, value_line_one=str(len(self.snapshot.users)))

    # Users

    def most_active_users(self, ticks_by_user: Dict[str, int]) -> StatResult:
        """
        :param ticks_by_user: Total watched ticks keyed by user name
        """
        ranked = sorted(ticks_by_user.items(), key=lambda kv: kv[1], reverse=True)
        rows = []
        for name, ticks in ranked[:MOST_ACTIVE_COUNT]:
            days, hours, minutes, _ = split_ticks(ticks)
            rows.append((name, days, hours, minutes))
        return StatResult(
            title=MOST_ACTIVE_USERS,
            value_line_one=_table(("Days", "Hours", "Minutes"), rows),
            extra_information=HELP_MOST_ACTIVE_USERS,
            size=HALF,
        )

    # Quality

    def _stream_table(
        self,
        user: Optional[User],
        label: str,
        sort_key: Callable[[MediaItem], Optional[str]],
        classify: Callable[[MediaItem], str],
    ) -> Tuple[str, int]:
        counts: Dict[str, List[int]] = {}
        skipped = 0
        sources = (
            (0, self.snapshot.movies_for(user)),
            (1, self.snapshot.episodes_for(user)),
        )
        for column, items in sources:
            for item in sorted((i for i in items if sort_key(i) is not None), key=sort_key):
                outcome = attempt(classify, item)
                if not outcome.ok:
                    skipped += 1
                    logger.debug("%s-error %s: %s", label, item.name, outcome.error)
                    continue
                key = outcome.value.strip()
                counts.setdefault(key, [0, 0])[column] += 1
                logger.debug("%s %s %s", label, item.name, key)
        rows = [(key, movies, episodes) for key, (movies, episodes) in counts.items()]
        return _table(("Movies", "Episodes"), rows), skipped

    def media_qualities(self, user: Optional[User] = None) -> StatResult:
        def classify(item: MediaItem) -> str:
            stream = item.video_stream
            return resolution_bucket(stream.width if stream else None)

        table, skipped = self._stream_table(
            user, "media_qualities", lambda i: i.name, classify
        )
        return StatResult(
            title=MEDIA_QUALITIES,
            value_line_one=table,
            extra_information=HELP_QUALITIES,
            size=HALF,
            skipped=skipped,
        )

    def media_codecs(self, user: Optional[User] = None) -> StatResult:
        def classify(item: MediaItem) -> str:
            stream = item.video_stream
            return (stream.codec if stream else None) or "Unknown"

        table, skipped = self._stream_table(
            user, "media_codecs", lambda i: i.sort_name, classify
        )
        return StatResult(
            title=MEDIA_CODECS,
            value_line_one=table,
            extra_information=HELP_CODECS,
            size=HALF,
            skipped=skipped,
        )

    def movie_quality_list(self, user: Optional[User] = None) -> Dict[str, Any]:
        """
        Movies grouped by the first word of their video stream title.
        """
        groups: Dict[str, List[Dict[str, Any]]] = {}
        movies = (m for m in self.snapshot.movies_for(user) if m.sort_name is not None)
        for movie in sorted(movies, key=lambda m: m.sort_name):
            stream = movie.video_stream
            title = (stream.display_title or "").split(" ")[0] if stream else ""
            groups.setdefault(title or "Unknown", []).append(
                {"Id": movie.id, "Name": movie.name, "Year": movie.production_year}
            )
        return {
            "Count": len(groups),
            "Movies": [{"Title": k, "Movies": v} for k, v in groups.items()],
        }

    # Size

    def biggest_movie(self, user: Optional[User] = None) -> StatResult:
        measured, skipped = self._measure(self.snapshot.movies_for(user), "biggest_movie")
        best = first_by(measured, key=lambda pair: pair[1], predicate=lambda pair: pair[1] > 0)
        if best is None:
            return self._extremum(BIGGEST_MOVIE, None, str, skipped=skipped)
        movie, size = best
        return self._extremum(
            BIGGEST_MOVIE, movie, lambda _: f"{size / BYTES_PER_GB:.1f} Gb", skipped=skipped
        )

    def biggest_show(self, user: Optional[User] = None) -> StatResult:
        totals = []
        skipped = 0
        for series in self.snapshot.series_for(user):
            episodes = [e for e in self.snapshot.episodes_of(series.id) if e.path or e.size]
            measured, missed = self._measure(episodes, "biggest_show")
            skipped += missed
            totals.append((series, sum(size for _, size in measured)))
        best = first_by(totals, key=lambda pair: pair[1], predicate=lambda pair: pair[1] > 0)
        if best is None:
            return self._extremum(BIGGEST_SHOW, None, str, skipped=skipped)
        series, size = best
        return self._extremum(
            BIGGEST_SHOW, series, lambda _: f"{size / BYTES_PER_GB:.1f} Gb", skipped=skipped
        )

    # Runtime

    def longest_movie(self, user: Optional[User] = None) -> StatResult:
        movie = first_by(self.snapshot.movies_for(user), key=lambda m: m.run_time_ticks)
        return self._extremum(LONGEST_MOVIE, movie, lambda m: clock(m.run_time_ticks))

    def longest_show(self, user: Optional[User] = None) -> StatResult:
        totals = [
            (series, sum(e.run_time_ticks or 0 for e in self.snapshot.episodes_of(series.id)))
            for series in self.snapshot.series_for(user)
        ]
        best = first_by(totals, key=lambda pair: pair[1], predicate=lambda pair: pair[1] > 0)
        if best is None:
            return self._extremum(LONGEST_SHOW, None, str)
        series, ticks = best
        days = split_ticks(ticks)[0]
        text = f"{plural('day', days)} {clock(ticks)}" if days else clock(ticks)
        return self._extremum(LONGEST_SHOW, series, lambda _: text)

    # Dates

    def oldest_movie(self, user: Optional[User] = None) -> StatResult:
        movie = first_by(
            self.snapshot.movies_for(user), key=lambda m: m.premiere_date, highest=False
        )
        return self._extremum(
            OLDEST_PREMIERED_MOVIE, movie, lambda m: years_months_ago(m.premiere_date, self.now)
        )

    def newest_movie(self, user: Optional[User] = None) -> StatResult:
        movie = first_by(self.snapshot.movies_for(user), key=lambda m: m.premiere_date)
        return self._extremum(
            NEWEST_PREMIERED_MOVIE, movie, lambda m: days_ago(m.premiere_date, self.now)
        )

    def oldest_show(self, user: Optional[User] = None) -> StatResult:
        series = first_by(
            self.snapshot.series_for(user), key=lambda s: s.premiere_date, highest=False
        )
        return self._extremum(
            OLDEST_PREMIERED_SHOW, series, lambda s: years_months_ago(s.premiere_date, self.now)
        )

    def newest_show(self, user: Optional[User] = None) -> StatResult:
        series = first_by(self.snapshot.series_for(user), key=lambda s: s.premiere_date)
        return self._extremum(
            NEWEST_PREMIERED_SHOW, series, lambda s: days_ago(s.premiere_date, self.now)
        )

    def newest_added_movie(self, user: Optional[User] = None) -> StatResult:
        movie = first_by(self.snapshot.movies_for(user), key=lambda m: m.date_created)
        return self._extremum(
            NEWEST_ADDED_MOVIE, movie, lambda m: days_ago(m.date_created, self.now)
        )

    def newest_added_episode(self, user: Optional[User] = None) -> StatResult:
        episode = first_by(self.snapshot.episodes_for(user), key=lambda e: e.date_created)

        def describe(e: MediaItem) -> str:
            series = self.snapshot.get_series(self.snapshot.series_id_of(e))
            series_name = series.name if series else (e.series_name or "")
            return f"{series_name} S{e.parent_index_number} E{e.index_number}"

        return self._extremum(
            NEWEST_ADDED_EPISODE, episode, lambda e: days_ago(e.date_created, self.now), describe
        )

    # Ratings and bitrate

    def highest_rating(self, user: Optional[User] = None) -> StatResult:
        movie = first_by(self.snapshot.movies_for(user), key=lambda m: m.community_rating)
        return self._extremum(
            HIGHEST_MOVIE_RATING, movie, lambda m: f"{_number(m.community_rating)} / 10"
        )

    def lowest_rating(self, user: Optional[User] = None) -> StatResult:
        movie = first_by(
            self.snapshot.movies_for(user),
            key=lambda m: m.community_rating,
            highest=False,
            predicate=lambda m: m.community_rating != 0,
        )
        return self._extremum(
            LOWEST_MOVIE_RATING, movie, lambda m: f"{_number(m.community_rating)} / 10"
        )

    def highest_bitrate(self, user: Optional[User] = None) -> StatResult:
        movie = first_by(self.snapshot.movies_for(user), key=lambda m: m.total_bitrate)
        return self._extremum(
            HIGHEST_BITRATE, movie, lambda m: f"{round(m.total_bitrate / 1000)} Kbps"
        )

    def lowest_bitrate(self, user: Optional[User] = None) -> StatResult:
        movie = first_by(
            self.snapshot.movies_for(user),
            key=lambda m: m.total_bitrate,
            highest=False,
            predicate=lambda m: m.total_bitrate > 0,
        )
        return self._extremum(
            LOWEST_BITRATE, movie, lambda m: f"{round(m.total_bitrate / 1000)} Kbps"
        )

    # Rankings

    def _ranking_users(self, user: Optional[User]) -> List[User]:
        return [user] if user is not None else list(self.snapshot.active_users)

    def most_watched_shows(self, user: Optional[User] = None) -> StatResult:
        return self.progress.most_watched(self._ranking_users(user))

    def least_watched_shows(self, user: Optional[User] = None) -> StatResult:
        return self.progress.least_watched(self._ranking_users(user))
