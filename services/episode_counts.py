"""
Authoritative episode counts per show, read from the TVDB metadata cache
the media server keeps on disk.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

EPISODES_FILE = "episodes-official.json"


@dataclass(frozen=True)
class EpisodeCount:
    episodes: int = 0
    specials: int = 0
    failed: bool = False


class TvdbCacheEpisodeCounter:
    """
    Counts aired, non-special episodes for a TVDB show id.

    Expects ``<cache_dir>/<show_id>/episodes-official.json`` holding
    ``{"episodes": [{"aired": "YYYY-MM-DD", "seasonNumber": n}, ...]}``.
    Missing or malformed data never raises: the count comes back as zero
    with ``failed`` set.
    """

    def __init__(self, cache_dir: str, today: Optional[date] = None) -> None:
        self.cache_dir = Path(cache_dir) if cache_dir else None
        self._today = today

    def _now(self) -> date:
        return self._today or datetime.now(timezone.utc).date()

    def _read(self, show_id: str) -> Dict[str, Any]:
        if self.cache_dir is None:
            raise FileNotFoundError("No TVDB cache directory configured")
        path = self.cache_dir / show_id / EPISODES_FILE
        with path.open("r", encoding="utf-8") as fh:
            return json.load(fh)

    def episode_count(
        self, show_id: str, cancel: Optional[threading.Event] = None
    ) -> EpisodeCount:
        """
        :param show_id: TVDB series identifier
        :param cancel: Optional cancellation signal, checked before reading
        :returns EpisodeCount: Aired episode and special counts
        """
        if cancel is not None and cancel.is_set():
            return EpisodeCount(failed=True)

        try:
            data = self._read(show_id)
            episodes = data.get("episodes") or []
            today = self._now()
            aired = 0
            specials = 0
            for ep in episodes:
                season = ep.get("seasonNumber")
                if season == 0:
                    specials += 1
                    continue
                raw = ep.get("aired")
                if not raw:
                    continue
                if date.fromisoformat(str(raw)[:10]) <= today:
                    aired += 1
            return EpisodeCount(episodes=aired, specials=specials)
        except (OSError, ValueError, AttributeError, TypeError) as exc:
            logger.error("Episode count lookup failed for show %s: %s", show_id, exc)
            return EpisodeCount(failed=True)
