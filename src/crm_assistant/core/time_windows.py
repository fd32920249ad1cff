from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from crm_assistant.config import TIMEZONE

logger = logging.getLogger(__name__)

# Last representable instant of a day / week / month (closed intervals).
_END_OFFSET = pd.Timedelta(milliseconds=1)

# Canonical window names
TODAY = "today"
YESTERDAY = "yesterday"
THIS_WEEK = "this_week"
LAST_WEEK = "last_week"
THIS_MONTH = "this_month"
LAST_MONTH = "last_month"
THIS_YEAR = "this_year"
LAST_YEAR = "last_year"

# Message keyword -> canonical window. Order matters: the first keyword found
# in a message wins.
TIME_KEYWORDS: List[Tuple[str, str]] = [
    ("bugün", TODAY),
    ("bu gün", TODAY),
    ("dün", YESTERDAY),
    ("bu hafta", THIS_WEEK),
    ("geçen hafta", LAST_WEEK),
    ("bu ay", THIS_MONTH),
    ("geçen ay", LAST_MONTH),
    ("bu yıl", THIS_YEAR),
    ("geçen yıl", LAST_YEAR),
]
_KEYWORD_TO_NAME: Dict[str, str] = dict(TIME_KEYWORDS)

# unit -> (regex, display label). Checked in this order.
PARAMETRIC_UNITS: List[Tuple[str, "re.Pattern[str]", str]] = [
    ("weeks", re.compile(r"son\s+(\d+)\s*hafta"), "Hafta"),
    ("days", re.compile(r"son\s+(\d+)\s*gün"), "Gün"),
    ("months", re.compile(r"son\s+(\d+)\s*ay"), "Ay"),
]


@dataclass(frozen=True)
class TimeWindow:
    """Closed interval [start, end] of naive local timestamps."""
    start: pd.Timestamp
    end: pd.Timestamp
    label: str = ""

    def contains(self, ts: Optional[pd.Timestamp]) -> bool:
        if ts is None:
            return False
        return self.start <= ts <= self.end


# ---------------------------------------------------------------------------
# Clock and timestamp parsing
# ---------------------------------------------------------------------------

def local_now() -> pd.Timestamp:
    """Current local wall-clock time as a naive timestamp."""
    return pd.Timestamp.now(tz=TIMEZONE).tz_localize(None)


def parse_timestamp(value: Any) -> Optional[pd.Timestamp]:
    """
    Parse a record date/datetime value into a naive local timestamp.

    Returns None for missing or unparseable values; callers exclude such
    records instead of failing the whole listing.
    """
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    try:
        ts = pd.Timestamp(value)
    except (TypeError, ValueError, OverflowError) as exc:
        logger.debug("Unparseable record date %r: %s", value, exc)
        return None
    if pd.isna(ts):
        return None
    if ts.tzinfo is not None:
        ts = ts.tz_convert(TIMEZONE).tz_localize(None)
    return ts


def in_window_mask(values: pd.Series, window: TimeWindow) -> pd.Series:
    """Boolean mask of the values whose parsed timestamp lies in the window."""
    return values.map(lambda v: window.contains(parse_timestamp(v))).astype(bool)


# ---------------------------------------------------------------------------
# Named windows
# ---------------------------------------------------------------------------

def _start_of_day(ts: pd.Timestamp) -> pd.Timestamp:
    return ts.normalize()


def _start_of_week(ts: pd.Timestamp) -> pd.Timestamp:
    # Weeks start on Monday (weekday() == 0)
    return ts.normalize() - pd.Timedelta(days=ts.weekday())


def _start_of_month(ts: pd.Timestamp) -> pd.Timestamp:
    return ts.normalize().replace(day=1)


def _start_of_year(ts: pd.Timestamp) -> pd.Timestamp:
    return ts.normalize().replace(month=1, day=1)


def resolve_named_window(keyword: str, now: Optional[pd.Timestamp] = None) -> Optional[TimeWindow]:
    """
    Map a time keyword ("bu hafta") or canonical name ("this_week") to a
    closed calendar interval relative to `now`. Unknown keywords give None.
    """
    key = (keyword or "").strip().lower()
    name = _KEYWORD_TO_NAME.get(key, key)
    now = now if now is not None else local_now()

    if name == TODAY:
        start = _start_of_day(now)
        end = start + pd.Timedelta(days=1) - _END_OFFSET
    elif name == YESTERDAY:
        start = _start_of_day(now) - pd.Timedelta(days=1)
        end = start + pd.Timedelta(days=1) - _END_OFFSET
    elif name == THIS_WEEK:
        start = _start_of_week(now)
        end = start + pd.Timedelta(days=7) - _END_OFFSET
    elif name == LAST_WEEK:
        start = _start_of_week(now) - pd.Timedelta(days=7)
        end = start + pd.Timedelta(days=7) - _END_OFFSET
    elif name == THIS_MONTH:
        start = _start_of_month(now)
        end = start + pd.DateOffset(months=1) - _END_OFFSET
    elif name == LAST_MONTH:
        start = _start_of_month(now) - pd.DateOffset(months=1)
        end = _start_of_month(now) - _END_OFFSET
    elif name == THIS_YEAR:
        start = _start_of_year(now)
        end = start + pd.DateOffset(years=1) - _END_OFFSET
    elif name == LAST_YEAR:
        start = _start_of_year(now) - pd.DateOffset(years=1)
        end = _start_of_year(now) - _END_OFFSET
    else:
        return None

    return TimeWindow(start=start, end=end, label=keyword)


def resolve_parametric_window(unit: str, count: int, now: Optional[pd.Timestamp] = None) -> TimeWindow:
    """
    "Last N days/weeks/months" ending at `now`.

    Months are calendar months (DateOffset), not 30-day blocks.
    """
    if count <= 0:
        raise ValueError(f"count must be positive, got {count}")
    now = now if now is not None else local_now()

    if unit == "days":
        start = now - pd.Timedelta(days=count)
    elif unit == "weeks":
        start = now - pd.Timedelta(days=7 * count)
    elif unit == "months":
        start = now - pd.DateOffset(months=count)
    else:
        raise ValueError(f"Unsupported window unit: {unit}")
    return TimeWindow(start=start, end=now)


def month_to_date(now: Optional[pd.Timestamp] = None) -> TimeWindow:
    """From the first day of the current calendar month up to `now`."""
    now = now if now is not None else local_now()
    return TimeWindow(start=_start_of_month(now), end=now, label="Bu Ay")


def default_window(now: Optional[pd.Timestamp] = None) -> TimeWindow:
    """Fallback when a message names no window: the last 7 days."""
    window = resolve_parametric_window("days", 7, now=now)
    return TimeWindow(start=window.start, end=window.end, label="Son 1 Hafta")


# ---------------------------------------------------------------------------
# Message scanning
# ---------------------------------------------------------------------------

def find_time_keyword(message: str) -> Optional[str]:
    for keyword, _ in TIME_KEYWORDS:
        if keyword in message:
            return keyword
    return None


def find_named_window(message: str, now: Optional[pd.Timestamp] = None) -> Optional[TimeWindow]:
    keyword = find_time_keyword(message)
    if keyword is None:
        return None
    return resolve_named_window(keyword, now=now)


def find_parametric_window(message: str, now: Optional[pd.Timestamp] = None) -> Optional[TimeWindow]:
    """Detect "son N hafta|gün|ay" in a message (weeks, then days, then months)."""
    for unit, pattern, label in PARAMETRIC_UNITS:
        m = pattern.search(message)
        if not m:
            continue
        count = int(m.group(1))
        if count <= 0:
            return None
        window = resolve_parametric_window(unit, count, now=now)
        return TimeWindow(start=window.start, end=window.end, label=f"Son {count} {label}")
    return None
