"""
Date range helpers shared by the insights stages.

Ranges are inclusive on both ends and carried as ``YYYY-MM-DD`` strings,
which is what the Graph API expects inside ``time_range``.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, Iterator, List, Optional

import pytz
import structlog

from campaign_insights.errors import ValidationError

logger = structlog.get_logger(__name__)

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
DEFAULT_LOOKBACK_DAYS = 7


@dataclass(frozen=True)
class DateRange:
    """Represents a date range for API queries."""
    start_date: str  # YYYY-MM-DD format
    end_date: str    # YYYY-MM-DD format

    @property
    def start(self) -> date:
        return date.fromisoformat(self.start_date)

    @property
    def end(self) -> date:
        return date.fromisoformat(self.end_date)

    def to_meta_time_range(self) -> Dict[str, str]:
        """Convert to Meta API time_range format."""
        return {
            "since": self.start_date,
            "until": self.end_date
        }

    @classmethod
    def from_dates(cls, start: date, end: date) -> "DateRange":
        return cls(start_date=start.isoformat(), end_date=end.isoformat())

    def extended(self, days: int = 1) -> "DateRange":
        """Widen the range by ``days`` on each side."""
        return DateRange.from_dates(
            self.start - timedelta(days=days),
            self.end + timedelta(days=days),
        )

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def days(self) -> Iterator[date]:
        current = self.start
        while current <= self.end:
            yield current
            current += timedelta(days=1)

    @property
    def duration_days(self) -> int:
        """Number of days in this range."""
        return (self.end - self.start).days + 1


def _parse_bound(value: Optional[str], name: str) -> Optional[date]:
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    if not DATE_PATTERN.match(value):
        raise ValidationError(f"{name} must be formatted YYYY-MM-DD, got {value!r}")
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise ValidationError(f"{name} is not a valid calendar date: {value!r}") from e


def parse_request_range(
    from_date: Optional[str],
    to_date: Optional[str],
    default_days: int = DEFAULT_LOOKBACK_DAYS,
    today: Optional[date] = None,
) -> DateRange:
    """
    Build the request window from caller-supplied bounds.

    A missing end is today; a missing start is ``default_days`` before the
    end. Malformed or inverted bounds raise ``ValidationError``.
    """
    today = today or date.today()
    start = _parse_bound(from_date, "from")
    end = _parse_bound(to_date, "to")

    if end is None:
        end = today
    if start is None:
        start = end - timedelta(days=default_days)

    if start > end:
        raise ValidationError(f"from ({start.isoformat()}) is after to ({end.isoformat()})")

    return DateRange.from_dates(start, end)


def split_date_range(date_range: DateRange, max_days: int = 14) -> List[DateRange]:
    """
    Split a range into consecutive windows of at most ``max_days`` days.

    Ranges whose span (end - start) does not exceed ``max_days`` come back as
    a single window. Windows never overlap and the last one is clipped to the
    range end.
    """
    if max_days < 1:
        raise ValueError("max_days must be positive")

    start, end = date_range.start, date_range.end
    if (end - start).days <= max_days:
        return [date_range]

    windows = []
    current = start
    while current <= end:
        window_end = min(current + timedelta(days=max_days - 1), end)
        windows.append(DateRange.from_dates(current, window_end))
        current = window_end + timedelta(days=1)
    return windows


def to_business_date(timestamp: Optional[str], timezone: str = "UTC") -> str:
    """
    Convert an upstream ISO timestamp (``2024-03-01T08:00:00-0800``) to a
    ``YYYY-MM-DD`` date in the business timezone.

    Bare dates and unparseable values are returned unchanged.
    """
    if not timestamp:
        return ""
    if DATE_PATTERN.match(timestamp):
        return timestamp

    try:
        tz = pytz.timezone(timezone)
    except pytz.UnknownTimeZoneError:
        logger.warning("unknown_business_timezone", timezone=timezone)
        tz = pytz.utc

    normalized = timestamp.replace("Z", "+00:00")
    # Graph API offsets come without a colon (+0000)
    if re.search(r"[+-]\d{4}$", normalized):
        normalized = f"{normalized[:-2]}:{normalized[-2:]}"

    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        logger.warning("unparseable_timestamp", timestamp=timestamp)
        return timestamp

    if parsed.tzinfo is None:
        parsed = pytz.utc.localize(parsed)
    return parsed.astimezone(tz).date().isoformat()
