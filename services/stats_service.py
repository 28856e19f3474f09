from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from services.aggregation import StatResult
from services.catalog import CatalogSnapshot
from services.episode_counts import TvdbCacheEpisodeCounter
from services.episode_ledger import EpisodeLedger
from services.jellyfin_catalog import CatalogUnavailableError
from services.media import User
from services.repository import Repository
from services.show_progress import ShowProgressRanker
from services.stats_aggregator import StatsAggregator

logger = logging.getLogger(__name__)


class StatsRunError(Exception):
    """A run cannot produce trustworthy results and must not persist any."""


class RunCancelled(StatsRunError):
    pass


@dataclass
class UserStat:
    user_name: str
    overall_stats: List[StatResult]
    movie_stats: List[StatResult]
    show_stats: List[StatResult]
    show_progresses: List[Dict[str, Any]]

    @property
    def skipped(self) -> int:
        return sum(
            s.skipped
            for s in self.overall_stats + self.movie_stats + self.show_stats
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "UserName": self.user_name,
            "OverallStats": [s.to_dict() for s in self.overall_stats],
            "MovieStats": [s.to_dict() for s in self.movie_stats],
            "ShowStats": [s.to_dict() for s in self.show_stats],
            "ShowProgresses": self.show_progresses,
        }


@dataclass
class RunResult:
    """
    Structured result from a statistics run.
    """
    success: bool
    duration_ms: int
    users_processed: int = 0
    series_in_ledger: int = 0
    calculation_failed: bool = False
    cancelled: bool = False
    skipped_items: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "duration_ms": self.duration_ms,
            "users_processed": self.users_processed,
            "series_in_ledger": self.series_in_ledger,
            "calculation_failed": self.calculation_failed,
            "cancelled": self.cancelled,
            "skipped_items": self.skipped_items,
            "errors": self.errors,
        }


def user_stat(aggregator: StatsAggregator, user: User) -> Tuple[UserStat, int]:
    """
    Every per-user statistic plus the user's total watched ticks, which
    feed the most active users table.
    """
    overall = aggregator.overall_time(user)
    stat = UserStat(
        user_name=user.name,
        overall_stats=[
            overall,
            aggregator.overall_time(user, only_played=False),
        ],
        movie_stats=[
            aggregator.total_movies(user),
            aggregator.total_collections(user),
            aggregator.total_movies_watched(user),
            aggregator.favorite_years(user),
            aggregator.favorite_movie_genres(user),
            aggregator.movie_time(user),
            aggregator.movie_time(user, only_played=False),
            aggregator.last_seen_movies(user),
        ],
        show_stats=[
            aggregator.total_shows(user),
            aggregator.total_owned_episodes(user),
            aggregator.total_episodes_watched(user),
            aggregator.total_finished_shows(user),
            aggregator.favorite_show_genres(user),
            aggregator.show_time(user),
            aggregator.show_time(user, only_played=False),
            aggregator.last_seen_shows(user),
        ],
        show_progresses=[
            row.to_dict() for row in aggregator.progress.user_progress(user)
        ],
    )
    return stat, overall.raw or 0


def general_stats(
    aggregator: StatsAggregator, ticks_by_user: Dict[str, int]
) -> Dict[str, StatResult]:
    """
    Library-wide statistics, keyed the way the dashboard looks them up.
    """
    return {
        "MovieQualities": aggregator.media_qualities(),
        "MovieCodecs": aggregator.media_codecs(),
        "MostActiveUsers": aggregator.most_active_users(ticks_by_user),
        "TotalUsers": aggregator.total_users(),
        "TotalMovies": aggregator.total_movies(),
        "TotalBoxsets": aggregator.total_collections(),
        "TotalMovieStudios": aggregator.total_movie_studios(),
        "BiggestMovie": aggregator.biggest_movie(),
        "LongestMovie": aggregator.longest_movie(),
        "OldestMovie": aggregator.oldest_movie(),
        "NewestMovie": aggregator.newest_movie(),
        "HighestRating": aggregator.highest_rating(),
        "LowestRating": aggregator.lowest_rating(),
        "NewestAddedMovie": aggregator.newest_added_movie(),
        "HighestBitrateMovie": aggregator.highest_bitrate(),
        "LowestBitrateMovie": aggregator.lowest_bitrate(),
        "TotalShows": aggregator.total_shows(),
        "TotalOwnedEpisodes": aggregator.total_owned_episodes(),
        "TotalShowStudios": aggregator.total_show_studios(),
        "MostWatchedShows": aggregator.most_watched_shows(),
        "LeastWatchedShows": aggregator.least_watched_shows(),
        "BiggestShow": aggregator.biggest_show(),
        "LongestShow": aggregator.longest_show(),
        "OldestShow": aggregator.oldest_show(),
        "NewestShow": aggregator.newest_show(),
        "NewestAddedEpisode": aggregator.newest_added_episode(),
    }


@dataclass
class StatsService:
    catalog_provider: Any
    repository: Repository
    settings_service: Any = None
    episode_counter: Any = None
    max_workers: Optional[int] = None
    clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)

    def _counter(self) -> Any:
        if self.episode_counter is not None:
            return self.episode_counter
        cache_dir = ""
        if self.settings_service is not None:
            cache_dir = self.settings_service.get().get("tvdb_cache_dir") or ""
        return TvdbCacheEpisodeCounter(cache_dir)

    def _workers(self, users: Sequence[User]) -> int:
        workers = self.max_workers
        if workers is None and self.settings_service is not None:
            workers = self.settings_service.get().get("max_workers")
        return max(1, min(int(workers or 1), len(users)))

    def _prepare(
        self, cancel: Optional[threading.Event]
    ) -> Tuple[CatalogSnapshot, List[User], EpisodeLedger, datetime]:
        """
        Snapshot the catalog and build the ledger. Raises StatsRunError
        for anything that makes the run pointless.
        """
        try:
            snapshot = CatalogSnapshot.load(self.catalog_provider)
        except CatalogUnavailableError as exc:
            raise StatsRunError(str(exc)) from exc

        users = list(snapshot.active_users)
        if not users:
            raise StatsRunError("No active users found")

        now = self.clock()
        ledger = EpisodeLedger.build(snapshot, self._counter(), cancel=cancel, now=now)
        if ledger.cancelled:
            raise RunCancelled("Cancelled while looking up episode counts")
        return snapshot, users, ledger, now

    @staticmethod
    def _check_cancel(cancel: Optional[threading.Event]) -> None:
        if cancel is not None and cancel.is_set():
            raise RunCancelled("Run cancelled")

    def _finish(
        self, task_id: int, started: float, result: RunResult
    ) -> RunResult:
        result.duration_ms = int((time.time() - started) * 1000)
        if result.cancelled:
            outcome = "CANCELLED"
        else:
            outcome = "SUCCESS" if result.success else "FAILED"
        self.repository.complete_task_log(
            task_id=task_id, result=outcome, log_data=result.to_dict()
        )
        return result

    def run(
        self,
        cancel: Optional[threading.Event] = None,
        execution_type: str = "manual",
    ) -> RunResult:
        """
        Compute every statistic for all active users and replace the stored
        results. Nothing is written when the run fails or is cancelled.
        """
        started = time.time()
        task_id = self.repository.create_task_log(
            name="Calculate statistics for all users",
            task_type="statistics",
            execution_type=execution_type,
        )
        result = RunResult(success=False, duration_ms=0)

        try:
            snapshot, users, ledger, now = self._prepare(cancel)
            result.series_in_ledger = len(ledger)
            result.calculation_failed = ledger.calculation_failed
            aggregator = StatsAggregator(snapshot, ledger, now=now)

            with ThreadPoolExecutor(max_workers=self._workers(users)) as pool:
                futures = [pool.submit(user_stat, aggregator, u) for u in users]
                per_user = [f.result() for f in futures]
            self._check_cancel(cancel)

            ticks_by_user = {stat.user_name: ticks for stat, ticks in per_user}
            general = general_stats(aggregator, ticks_by_user)
            quality_items = aggregator.movie_quality_list()
            self._check_cancel(cancel)

            document = {key: stat.to_dict() for key, stat in general.items()}
            document["MovieQualityItems"] = quality_items
            self.repository.replace_results(
                general=document,
                user_stats=[stat.to_dict() for stat, _ in per_user],
                last_updated=int(now.timestamp()),
                calculation_failed=ledger.calculation_failed,
            )
            if self.settings_service is not None:
                self.settings_service.set_last_stats_run(int(now.timestamp()))

            result.users_processed = len(per_user)
            result.skipped_items = (
                sum(stat.skipped for stat, _ in per_user)
                + sum(s.skipped for s in general.values())
            )
            result.success = True
            logging.info(
                "[INFO] Statistics calculated for %d users in %d series",
                result.users_processed,
                result.series_in_ledger,
            )
        except RunCancelled as exc:
            result.cancelled = True
            result.errors.append(str(exc))
            logging.info("[INFO] Statistics run cancelled")
        except StatsRunError as exc:
            result.errors.append(str(exc))
            logging.error("[ERROR] Statistics run aborted: %s", exc)
        except Exception as exc:
            result.errors.append(f"Unexpected error: {exc}")
            logger.exception("Statistics run failed")

        return self._finish(task_id, started, result)

    def refresh_show_progress(
        self,
        cancel: Optional[threading.Event] = None,
        execution_type: str = "manual",
    ) -> RunResult:
        """
        Recompute only the per-user show progress tables.
        """
        started = time.time()
        task_id = self.repository.create_task_log(
            name="Calculate statistics for TV Shows",
            task_type="statistics",
            execution_type=execution_type,
        )
        result = RunResult(success=False, duration_ms=0)

        try:
            snapshot, users, ledger, now = self._prepare(cancel)
            result.series_in_ledger = len(ledger)
            result.calculation_failed = ledger.calculation_failed
            ranker = ShowProgressRanker(snapshot, ledger, now=now)

            progress = {
                user.name: [row.to_dict() for row in ranker.user_progress(user)]
                for user in users
            }
            self._check_cancel(cancel)
            self.repository.replace_show_progress(
                progress,
                last_updated=int(now.timestamp()),
                calculation_failed=ledger.calculation_failed,
            )
            result.users_processed = len(users)
            result.success = True
        except RunCancelled as exc:
            result.cancelled = True
            result.errors.append(str(exc))
        except StatsRunError as exc:
            result.errors.append(str(exc))
            logging.error("[ERROR] Show progress refresh aborted: %s", exc)
        except Exception as exc:
            result.errors.append(f"Unexpected error: {exc}")
            logger.exception("Show progress refresh failed")

        return self._finish(task_id, started, result)
