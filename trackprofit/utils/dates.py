"""
Date window helpers

All windows are UTC calendar days, inclusive on both ends.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator, Optional

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta

from trackprofit.errors import InvalidInput

DEFAULT_PRESET = "last_30_days"

PRESETS = (
    "today",
    "yesterday",
    "last_7_days",
    "last_30_days",
    "this_month",
    "last_month",
    "last_3_months",
    "last_6_months",
    "this_year",
    "last_year",
    "max_range",
    "custom",
)


@dataclass(frozen=True)
class DateWindow:
    start: date
    end: date

    @property
    def start_at(self) -> datetime:
        return datetime.combine(self.start, time.min)

    @property
    def end_at(self) -> datetime:
        """Last representable instant of the final day (23:59:59.999999)."""
        return datetime.combine(self.end, time.max)

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def iter_days(self) -> Iterator[date]:
        for offset in range(self.days):
            yield self.start + timedelta(days=offset)

    def contains(self, moment: Optional[datetime]) -> bool:
        return moment is not None and self.start_at <= moment <= self.end_at

    def to_dict(self) -> dict:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


def utc_today() -> date:
    return datetime.utcnow().date()


def parse_day(value, field: str) -> date:
    """Parse an ISO date or datetime string into a calendar day."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        return value
    elif value is None or not str(value).strip():
        raise InvalidInput(f"{field} is required", field=field)
    else:
        try:
            parsed = date_parser.isoparse(str(value).strip())
        except (ValueError, OverflowError):
            raise InvalidInput(f"{field} must be an ISO date (YYYY-MM-DD)", field=field)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.date()


def resolve_preset(preset: str, today: Optional[date] = None) -> DateWindow:
    """Map a named preset to its window, anchored on ``today`` (UTC)."""
    today = today or utc_today()
    month_start = today.replace(day=1)

    if preset == "today":
        return DateWindow(today, today)
    if preset == "yesterday":
        day = today - timedelta(days=1)
        return DateWindow(day, day)
    if preset == "last_7_days":
        return DateWindow(today - timedelta(days=6), today)
    if preset == "last_30_days":
        return DateWindow(today - timedelta(days=29), today)
    if preset == "this_month":
        return DateWindow(month_start, today)
    if preset == "last_month":
        start = month_start - relativedelta(months=1)
        return DateWindow(start, month_start - timedelta(days=1))
    if preset == "last_3_months":
        return DateWindow(today - relativedelta(months=3), today)
    if preset == "last_6_months":
        return DateWindow(today - relativedelta(months=6), today)
    if preset == "this_year":
        return DateWindow(today.replace(month=1, day=1), today)
    if preset == "last_year":
        return DateWindow(date(today.year - 1, 1, 1), date(today.year - 1, 12, 31))
    if preset == "max_range":
        return DateWindow(today - relativedelta(months=37), today)

    raise InvalidInput(f"Unknown date preset '{preset}'", field="preset")


def resolve_window(
    preset: Optional[str] = None,
    start=None,
    end=None,
    max_months: int = 37,
    today: Optional[date] = None,
) -> DateWindow:
    """
    Build the query window from either a preset or an explicit start/end.

    Explicit dates win over a preset. Windows reaching further back than
    ``max_months`` are clamped.
    """
    today = today or utc_today()

    if start is not None or end is not None or preset == "custom":
        start_day = parse_day(start, "start")
        end_day = parse_day(end, "end")
        if end_day < start_day:
            raise InvalidInput("end must not be before start", field="end")
        if end_day > today:
            raise InvalidInput("end must not be in the future", field="end")
        window = DateWindow(start_day, end_day)
    else:
        window = resolve_preset(preset or DEFAULT_PRESET, today)

    earliest = today - relativedelta(months=max_months)
    if window.start < earliest:
        window = DateWindow(earliest, max(window.end, earliest))
    return window


def parse_timestamp(value) -> Optional[datetime]:
    """Parse a provider timestamp into a naive UTC datetime.

    Accepts ISO 8601 (with or without offset) and compact ``YYYYMMDD``.
    Returns None for blanks and unparseable values.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            if len(text) == 8 and text.isdigit():
                parsed = datetime.strptime(text, "%Y%m%d")
            else:
                parsed = date_parser.parse(text)
        except (ValueError, OverflowError):
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
