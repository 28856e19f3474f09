"""
Per-user show completion and the cross-user most/least watched rankings.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from services.aggregation import StatResult, percentage
from services.catalog import CatalogSnapshot
from services.episode_ledger import EpisodeLedger, episode_span, has_aired
from services.media import Series, User

logger = logging.getLogger(__name__)

MOST_WATCHED_SHOWS = "Most Watched Shows"
LEAST_WATCHED_SHOWS = "Least Watched Shows"
HELP_MOST_WATCHED_SHOWS = (
    "Most watched shows based on episodes finished, not series completed."
)
HELP_LEAST_WATCHED_SHOWS = (
    "Least watched shows based on episodes finished, not series completed."
)


@dataclass
class ShowProgressRow:
    id: str
    name: str
    sort_name: Optional[str]
    score: Optional[float]
    status: str
    start_year: Optional[str]
    total_episodes: int
    collected_episodes: int
    seen_episodes: int
    total_specials: int
    collected_specials: int
    seen_specials: int
    percent_seen: float
    percent_collected: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "Id": self.id,
            "Name": self.name,
            "SortName": self.sort_name,
            "Score": self.score,
            "Status": self.status,
            "StartYear": self.start_year,
            "TotalEpisodes": self.total_episodes,
            "CollectedEpisodes": self.collected_episodes,
            "SeenEpisodes": self.seen_episodes,
            "TotalSpecials": self.total_specials,
            "CollectedSpecials": self.collected_specials,
            "SeenSpecials": self.seen_specials,
            "PercentSeen": self.percent_seen,
            "PercentCollected": self.percent_collected,
            # Keys the show overview page still reads
            "Watched": self.percent_seen,
            "Collected": self.percent_collected,
            "Episodes": self.collected_episodes,
            "Specials": self.collected_specials,
            "Total": self.total_episodes,
        }


class ShowProgressRanker:
    def __init__(
        self,
        snapshot: CatalogSnapshot,
        ledger: EpisodeLedger,
        now: Optional[datetime] = None,
    ) -> None:
        self.snapshot = snapshot
        self.ledger = ledger
        self.now = now or datetime.now(timezone.utc)

    def _ordered_series(self) -> List[Series]:
        return sorted(self.snapshot.series, key=lambda s: s.sort_name or s.name or "")

    def seen_counts(self, user: Optional[User]) -> Dict[str, Tuple[int, int]]:
        """
        Watched episode and special spans per series id for ``user`` (any
        user when None).
        """
        seen: Dict[str, List[int]] = defaultdict(lambda: [0, 0])
        for episode in self.snapshot.viewed_episodes(user):
            if not has_aired(episode, self.now):
                continue
            series_id = self.snapshot.series_id_of(episode)
            if series_id is None:
                continue
            seen[series_id][1 if episode.is_special else 0] += episode_span(episode)
        return {k: (v[0], v[1]) for k, v in seen.items()}

    def _row(self, series: Series, seen: Tuple[int, int]) -> ShowProgressRow:
        entry = self.ledger.get(series.id)
        collected = entry.collected_episodes
        seen_episodes = min(seen[0], collected)
        seen_specials = min(seen[1], entry.collected_specials)
        return ShowProgressRow(
            id=series.id,
            name=series.name,
            sort_name=series.sort_name,
            score=series.community_rating,
            status=series.status,
            start_year=(
                str(series.premiere_date.year) if series.premiere_date else None
            ),
            total_episodes=entry.reconciled_total(),
            collected_episodes=collected,
            seen_episodes=seen_episodes,
            total_specials=entry.total_specials,
            collected_specials=entry.collected_specials,
            seen_specials=seen_specials,
            percent_seen=percentage(seen_episodes, collected),
            percent_collected=entry.percent_collected(),
        )

    def user_progress(self, user: User) -> List[ShowProgressRow]:
        """
        Every series for one user, sorted by sort name. Not averaged;
        series without a known total show 0 percent collected.
        """
        seen = self.seen_counts(user)
        return [
            self._row(series, seen.get(series.id, (0, 0)))
            for series in self._ordered_series()
        ]

    def rank(self, users: Sequence[User]) -> List[ShowProgressRow]:
        """
        One row per series with a known total, its percent seen averaged
        over ``users``. Rows keep sort-name order.
        """
        users = list(users)
        if not users:
            return []

        ranked = [
            s for s in self._ordered_series() if self.ledger.get(s.id).has_total
        ]
        rows: Dict[str, ShowProgressRow] = {}
        sums: Dict[str, float] = defaultdict(float)
        for user in users:
            seen = self.seen_counts(user)
            for series in ranked:
                row = self._row(series, seen.get(series.id, (0, 0)))
                sums[series.id] += row.percent_seen
                rows.setdefault(series.id, row)

        for series_id, row in rows.items():
            row.percent_seen = round(sums[series_id] / len(users), 1)
        return list(rows.values())

    def _top_three(self, title: str, help_text: str, rows: List[ShowProgressRow]) -> StatResult:
        names = [row.name for row in rows[:3]]
        names += [""] * (3 - len(names))
        for row in rows:
            logger.debug("%s %s %s", title, row.name, row.percent_seen)
        return StatResult(
            title=title,
            value_line_one=names[0],
            value_line_two=names[1],
            value_line_three=names[2],
            extra_information=help_text,
        )

    def most_watched(self, users: Sequence[User]) -> StatResult:
        rows = sorted(self.rank(users), key=lambda r: r.percent_seen, reverse=True)
        return self._top_three(MOST_WATCHED_SHOWS, HELP_MOST_WATCHED_SHOWS, rows)

    def least_watched(self, users: Sequence[User]) -> StatResult:
        rows = sorted(self.rank(users), key=lambda r: r.percent_seen)
        return self._top_three(LEAST_WATCHED_SHOWS, HELP_LEAST_WATCHED_SHOWS, rows)

    def finished_count(self, user: Optional[User]) -> int:
        """
        Series whose known total has been fully watched. Series with an
        unknown total are skipped.
        """
        seen = self.seen_counts(user)
        count = 0
        for series in self.snapshot.series:
            entry = self.ledger.get(series.id)
            if not entry.has_total:
                continue
            watched = seen.get(series.id, (0, 0))[0]
            if watched >= max(entry.total_episodes, 1):
                count += 1
        return count
