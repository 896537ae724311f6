"""
Date helpers for timeline events.

Event dates are free-form strings from the model. The accepted shapes are
``YYYY-MM-DD``, ``YYYY-MM`` and ``YYYY`` (other separators such as ``/``,
``.`` or ``2023年1月5日`` work too, since only the digit groups matter).
A lone eight-digit group is read as compact ``YYYYMMDD``.
"""

import re
from collections.abc import Iterable
from datetime import date, timedelta
from typing import Literal

from oneline.schemas import DateFilter, TimelineEvent

DatePrecision = Literal["day", "month", "year"]

_DIGIT_GROUPS_RE = re.compile(r"\d+")

_PRESET_DAYS = {
    "last7days": 7,
    "last30days": 30,
    "last90days": 90,
}


def _date_parts(date_str: str) -> list[int]:
    groups = _DIGIT_GROUPS_RE.findall(date_str or "")
    if len(groups) == 1 and len(groups[0]) == 8:
        # Compact YYYYMMDD
        compact = groups[0]
        groups = [compact[:4], compact[4:6], compact[6:]]
    return [int(group) for group in groups][:3]


def date_sort_key(date_str: str) -> tuple[int, int, int, int]:
    """
    Chronological sort key built from the digit groups of a date string.

    Parts are compared numerically, which amounts to padding the year to
    four digits and month/day to two, so ``2023-1`` and ``2023-01`` sort
    together. Missing parts count as 0, placing ``2023`` before
    ``2023-01`` before ``2023-01-01``. Dates without digits sort last.
    """
    parts = _date_parts(date_str)
    if not parts:
        return (1, 0, 0, 0)
    parts += [0] * (3 - len(parts))
    return (0, parts[0], parts[1], parts[2])


def date_precision(date_str: str) -> DatePrecision | None:
    parts = _date_parts(date_str)
    if not parts:
        return None
    return ("year", "month", "day")[len(parts) - 1]


def event_start_date(date_str: str) -> date | None:
    """First calendar day covered by a date string, or None if unparseable."""
    parts = _date_parts(date_str)
    if not parts:
        return None
    year = parts[0]
    month = parts[1] if len(parts) > 1 else 1
    day = parts[2] if len(parts) > 2 else 1
    try:
        return date(year, month, day)
    except ValueError:
        return None


def sort_events(
    events: Iterable[TimelineEvent], direction: Literal["asc", "desc"] = "asc"
) -> list[TimelineEvent]:
    """Stable sort by date; undated events stay at the end in both directions."""
    events = list(events)
    dated = [e for e in events if date_sort_key(e.date)[0] == 0]
    undated = [e for e in events if date_sort_key(e.date)[0] == 1]
    dated.sort(key=lambda e: date_sort_key(e.date), reverse=direction == "desc")
    return dated + undated


def filter_events_by_date(
    events: Iterable[TimelineEvent],
    date_filter: DateFilter,
    today: date | None = None,
) -> list[TimelineEvent]:
    """
    Keep the events that fall inside the selected window.

    Presets count back from ``today``. Custom windows are inclusive on both
    ends and either end may be omitted. Events whose date cannot be read
    are dropped by every option except ``all``.
    """
    events = list(events)
    if date_filter.option == "all":
        return events

    today = today or date.today()
    start: date | None = None
    end: date | None = None
    if date_filter.option in _PRESET_DAYS:
        start = today - timedelta(days=_PRESET_DAYS[date_filter.option])
    else:
        if date_filter.start_date:
            start = event_start_date(date_filter.start_date)
        if date_filter.end_date:
            end = event_start_date(date_filter.end_date)

    filtered = []
    for event in events:
        event_date = event_start_date(event.date)
        if event_date is None:
            continue
        if start and event_date < start:
            continue
        if end and event_date > end:
            continue
        filtered.append(event)
    return filtered
