"""Date, range and duration parsing plus day-grid construction."""
from __future__ import annotations

import datetime as dt
from typing import Dict, Iterable, List, Optional

from .models import DateRange, Day, Entry, Project, TimeEntry

DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%d-%m-%Y", "%d/%m/%Y")
NO_DATE = "no-date"
NO_DESCRIPTION = "no description"

MONTH_KEYWORDS = ("AUTO", "AUTO-MONTH", "MONTH")
WEEK_KEYWORDS = ("AUTO-WEEK", "WEEK")


class RangeError(ValueError):
    """Raised when range text cannot be turned into a DateRange."""


def _today() -> dt.date:
    return dt.date.today()


def parse_date(value: str) -> Optional[dt.date]:
    value = (value or "").strip()
    for fmt in DATE_FORMATS:
        try:
            return dt.datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None


def normalize_date(value: str) -> str:
    parsed = parse_date(value)
    return parsed.isoformat() if parsed else value


def initial_date_range() -> DateRange:
    today = _today()
    return DateRange(start=today.replace(day=1).isoformat(), end=today.isoformat())


def parse_date_range(text: str) -> DateRange:
    """Parse ``YYYY-MM-DD..YYYY-MM-DD`` or one of the AUTO keywords.

    Raises RangeError with a message suitable for the status line.
    """
    today = _today()
    keyword = (text or "").strip().upper()
    if keyword in MONTH_KEYWORDS:
        return DateRange(start=today.replace(day=1).isoformat(), end=today.isoformat())
    if keyword in WEEK_KEYWORDS:
        monday = today - dt.timedelta(days=today.weekday())
        return DateRange(start=monday.isoformat(), end=today.isoformat())

    parts = (text or "").split("..")
    if len(parts) != 2:
        raise RangeError("bad format, use YYYY-MM-DD..YYYY-MM-DD, AUTO, AUTO-WEEK or AUTO-MONTH")
    start_raw, end_raw = parts[0].strip(), parts[1].strip()
    start = parse_date(start_raw)
    if start is None:
        raise RangeError(f"invalid start date: {start_raw}")
    end = parse_date(end_raw)
    if end is None:
        raise RangeError(f"invalid end date: {end_raw}")
    if start > end:
        raise RangeError(f"start date after end date: {start_raw}..{end_raw}")
    return DateRange(start=start.isoformat(), end=end.isoformat())


def parse_minutes(text: str) -> int:
    """Return minutes for ``H:MM``/``HH:MM`` or a bare minute count; 0 means invalid."""
    text = (text or "").strip()
    if ":" in text:
        parts = text.split(":")
        if len(parts) != 2:
            return 0
        try:
            hours = int(parts[0].strip())
            mins = int(parts[1].strip())
        except ValueError:
            return 0
        total = hours * 60 + mins
    else:
        try:
            total = int(text)
        except ValueError:
            return 0
    return total if total > 0 else 0


def format_minutes(minutes: int) -> str:
    hours, mins = divmod(max(0, int(minutes)), 60)
    return f"{hours:02d}:{mins:02d}"


def _range_days(grouped: Dict[str, List[Entry]], start: dt.date, end: dt.date) -> List[Day]:
    days: List[Day] = []
    current = end
    while current >= start:
        key = current.isoformat()
        days.append(Day(date=key, entries=list(grouped.get(key, []))))
        current -= dt.timedelta(days=1)
    return days


def build_empty_days(date_range: DateRange) -> List[Day]:
    start = parse_date(date_range.start)
    end = parse_date(date_range.end)
    if start is None or end is None:
        return []
    return _range_days({}, start, end)


def _resolve_project_name(entry: TimeEntry, names: Dict[int, str]) -> str:
    if entry.project_id:
        return names.get(entry.project_id, f"Project {entry.project_id}")
    if entry.project_ref_name.strip():
        return entry.project_ref_name.strip()
    if entry.project_ref_id:
        return names.get(entry.project_ref_id, f"Project {entry.project_ref_id}")
    if entry.project_name.strip():
        return entry.project_name.strip()
    return "Project"


def build_days(time_entries: Iterable[TimeEntry], projects: Iterable[Project], start: str, end: str) -> List[Day]:
    """Group raw time entries into Day rows.

    When both bounds parse, every date in the range is present (descending),
    including dates without entries.
    """
    names = {p.id: p.name for p in projects}
    grouped: Dict[str, List[Entry]] = {}
    for te in time_entries:
        date_key = normalize_date(te.date) if te.date.strip() else NO_DATE
        note = te.description if te.description.strip() else NO_DESCRIPTION
        grouped.setdefault(date_key, []).append(
            Entry(project=_resolve_project_name(te, names), hours=te.minutes / 60.0, note=note)
        )

    start_d = parse_date(start)
    end_d = parse_date(end)
    if start_d is not None and end_d is not None:
        return _range_days(grouped, start_d, end_d)
    days = [Day(date=k, entries=v) for k, v in grouped.items()]
    days.sort(key=lambda d: d.date, reverse=True)
    return days
