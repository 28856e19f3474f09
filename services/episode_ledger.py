"""
Per-series ledger reconciling locally collected episodes against the
authoritative totals reported by the episode count provider.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from services.aggregation import percentage
from services.catalog import CatalogSnapshot
from services.episode_counts import EpisodeCount
from services.media import MediaItem

logger = logging.getLogger(__name__)


def episode_span(episode: MediaItem) -> int:
    """
    Number of episode slots a file covers.

    A multi-episode file spans ``index_number..index_number_end``. A
    missing or inverted end counts as one; a missing start counts as zero.
    """
    start = episode.index_number
    if start is None:
        return 0
    end = episode.index_number_end
    if end is None or end < start:
        return 1
    return end - start + 1


def has_aired(item: Any, now: datetime) -> bool:
    """Undated items count as aired."""
    return item.premiere_date is None or item.premiere_date <= now


@dataclass(frozen=True)
class EpisodeLedgerEntry:
    total_episodes: int = 0
    total_specials: int = 0
    collected_episodes: int = 0
    collected_specials: int = 0

    @property
    def has_total(self) -> bool:
        return self.total_episodes > 0

    def reconciled_total(self) -> int:
        """
        The reported total, raised to what is collected when the source is
        stale. Stays 0 while the total is unknown.
        """
        if not self.has_total:
            return 0
        return max(self.total_episodes, self.collected_episodes)

    def percent_collected(self) -> float:
        return percentage(self.collected_episodes, self.reconciled_total())


class EpisodeLedger:
    def __init__(
        self,
        entries: Mapping[str, EpisodeLedgerEntry],
        calculation_failed: bool = False,
        cancelled: bool = False,
    ) -> None:
        self._entries = MappingProxyType(dict(entries))
        self.calculation_failed = calculation_failed
        self.cancelled = cancelled

    @property
    def entries(self) -> Mapping[str, EpisodeLedgerEntry]:
        return self._entries

    def get(self, series_id: str) -> EpisodeLedgerEntry:
        return self._entries.get(series_id) or EpisodeLedgerEntry()

    def __len__(self) -> int:
        return len(self._entries)

    @classmethod
    def build(
        cls,
        snapshot: CatalogSnapshot,
        counter: Any,
        cancel: Optional[threading.Event] = None,
        now: Optional[datetime] = None,
    ) -> "EpisodeLedger":
        """
        Accumulate collected counts from the snapshot, then look up each
        distinct TVDB id once.

        A set ``cancel`` event stops the remaining lookups; the entries
        accumulated so far are kept and the ledger is flagged cancelled.

        :param snapshot: Catalog snapshot for this run
        :param counter: Object exposing episode_count(show_id, cancel)
        :param cancel: Optional cancellation signal
        :param now: Reference time for the aired check
        :returns EpisodeLedger: Immutable ledger
        """
        now = now or datetime.now(timezone.utc)
        collected: Dict[str, int] = defaultdict(int)
        specials: Dict[str, int] = defaultdict(int)

        for episode in snapshot.owned_episodes:
            if not has_aired(episode, now):
                continue
            series_id = snapshot.series_id_of(episode)
            if series_id is None:
                continue
            if episode.is_special:
                specials[series_id] += episode_span(episode)
            else:
                collected[series_id] += episode_span(episode)

        lookups: Dict[str, EpisodeCount] = {}
        failed = False
        cancelled = False
        for series in snapshot.series:
            tvdb_id = series.tvdb_id
            if not tvdb_id or tvdb_id in lookups:
                continue
            if cancel is not None and cancel.is_set():
                cancelled = True
                logger.info("Episode count lookups cancelled after %d shows", len(lookups))
                break
            count = counter.episode_count(tvdb_id, cancel)
            lookups[tvdb_id] = count
            if count.failed:
                failed = True

        entries: Dict[str, EpisodeLedgerEntry] = {}
        for series in snapshot.series:
            count = lookups.get(series.tvdb_id or "") or EpisodeCount()
            entries[series.id] = EpisodeLedgerEntry(
                total_episodes=max(0, count.episodes),
                total_specials=max(0, count.specials),
                collected_episodes=collected.get(series.id, 0),
                collected_specials=specials.get(series.id, 0),
            )

        if failed:
            logger.error("One or more episode count lookups failed")
        return cls(entries, calculation_failed=failed, cancelled=cancelled)
