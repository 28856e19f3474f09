"""
Small aggregation and formatting primitives shared by every statistic.

Keeping tie-breaking, clamping and truncation in one place guarantees the
statistics agree with each other.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, Tuple, TypeVar

from services.media import TICKS_PER_SECOND

T = TypeVar("T")

NO_DATA = "NO DATA FOUND!"
MAX_LINE_LENGTH = 30
RESOLUTION_NOT_AVAILABLE = "Resolution Not Available"

# Errors one bad item may raise while being measured. Anything else is a bug.
ITEM_ERRORS = (OSError, ValueError, TypeError, AttributeError, KeyError)


@dataclass
class StatResult:
    """
    One stat card. ``to_dict`` produces the keys the dashboard reads.
    """
    title: str
    value_line_one: str = ""
    value_line_two: str = ""
    value_line_three: Optional[str] = None
    extra_information: Optional[str] = None
    size: Optional[str] = None
    id: Optional[str] = None
    raw: Optional[int] = None
    skipped: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "Title": self.title,
            "ValueLineOne": self.value_line_one,
            "ValueLineTwo": self.value_line_two,
        }
        if self.value_line_three is not None:
            data["ValueLineThree"] = self.value_line_three
        if self.extra_information is not None:
            data["ExtraInformation"] = self.extra_information
        if self.size is not None:
            data["Size"] = self.size
        if self.id is not None:
            data["Id"] = self.id
        if self.raw is not None:
            data["Raw"] = self.raw
        return data


@dataclass
class Outcome:
    """
    Result of measuring a single item: either a value or the error that
    made the item unusable.
    """
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def attempt(func: Callable[..., Any], *args: Any) -> Outcome:
    try:
        return Outcome(value=func(*args))
    except ITEM_ERRORS as exc:
        return Outcome(error=exc)


def first_by(
    items: Iterable[T],
    key: Callable[[T], Any],
    highest: bool = True,
    predicate: Optional[Callable[[T], bool]] = None,
) -> Optional[T]:
    """
    Pick the item with the highest (or lowest) key.

    Items whose key is None, or that fail ``predicate``, are not
    candidates. Ties go to the first candidate in iteration order.
    """
    best: Optional[T] = None
    best_key: Any = None
    for item in items:
        value = key(item)
        if value is None:
            continue
        if predicate is not None and not predicate(item):
            continue
        if best is None or (value > best_key if highest else value < best_key):
            best = item
            best_key = value
    return best


def top_counts(values: Iterable[Hashable], n: int) -> List[Tuple[Hashable, int]]:
    """
    The ``n`` most frequent values by descending count, ties in first-seen
    order.
    """
    return Counter(values).most_common(n)


def percentage(part: float, whole: float) -> float:
    """
    ``part / whole * 100`` rounded to one decimal and clamped to [0, 100].
    A zero or negative denominator gives 0.
    """
    if not whole or whole <= 0:
        return 0.0
    value = part / whole * 100
    return round(min(100.0, max(0.0, value)), 1)


def check_max_length(value: Optional[str]) -> str:
    if value is None:
        return ""
    if len(value) > MAX_LINE_LENGTH:
        return value[: MAX_LINE_LENGTH - 3] + "..."
    return value


def resolution_bucket(width: Optional[int]) -> str:
    if width is None:
        return RESOLUTION_NOT_AVAILABLE
    if width < 1200:
        return "SD"
    if width <= 1280:
        return "720p"
    if width <= 1920:
        return "1080p"
    if width <= 3840:
        return "4K"
    if width <= 7680:
        return "8K"
    return RESOLUTION_NOT_AVAILABLE


def plural(word: str, number: int) -> str:
    return f"{number} {word}" if number == 1 else f"{number} {word}s"


def split_ticks(ticks: int) -> Tuple[int, int, int, int]:
    """
    :returns Tuple[int, int, int, int]: (days, hours, minutes, seconds)
    """
    total_seconds = int(ticks or 0) // TICKS_PER_SECOND
    days, rest = divmod(total_seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, seconds = divmod(rest, 60)
    return days, hours, minutes, seconds


def describe_ticks(ticks: int) -> str:
    """
    Long human form of a duration, e.g. "2 days 3 hours 5 minutes".
    """
    days, hours, minutes, _ = split_ticks(ticks)
    parts = []
    if days:
        parts.append(plural("day", days))
    if hours:
        parts.append(plural("hour", hours))
    parts.append(plural("minute", minutes))
    return " ".join(parts)


def clock(ticks: int) -> str:
    """hh:mm:ss of the part of the duration below one day."""
    _, hours, minutes, seconds = split_ticks(ticks)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def years_months_ago(then: datetime, now: datetime) -> str:
    months = (now.year - then.year) * 12 + now.month - then.month
    years, months = divmod(max(months, 0), 12)
    text = plural("year", years)
    if months:
        text += f" and {plural('month', months)}"
    return f"{text} ago"


def days_ago(then: datetime, now: datetime) -> str:
    days = (now.date() - then.date()).days
    if days == 0:
        return "Today"
    if days < 0:
        return f"In {plural('day', -days)}"
    return f"{plural('day', days)} ago"
