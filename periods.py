import calendar
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Union
from zoneinfo import ZoneInfo

from config import get_settings
from errors import InputValidationError


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def parse_date(value: Union[str, date, datetime], *, field: str = "date") -> date:
    """Accept ISO dates, ISO datetimes (time of day is dropped) and ``DD.MM.YYYY``."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = str(value).strip()
    if not raw:
        raise InputValidationError("Date is required", field=field)
    try:
        return date.fromisoformat(raw)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    try:
        return datetime.strptime(raw, "%d.%m.%Y").date()
    except ValueError as exc:
        raise InputValidationError("Invalid date format", field=field) from exc


def validate_month(month: int, *, field: str = "month") -> int:
    if not 1 <= month <= 12:
        raise InputValidationError("Month must be between 1 and 12", field=field)
    return month


def month_period(year: int, month: int) -> Period:
    validate_month(month)
    if not date.min.year <= year <= date.max.year:
        raise InputValidationError(
            f"Year must be between {date.min.year} and {date.max.year}", field="year"
        )
    last_day = calendar.monthrange(year, month)[1]
    return Period(
        f"{year:04d}-{month:02d}", date(year, month, 1), date(year, month, last_day)
    )


def resolve_period(
    start: Optional[date],
    end: Optional[date],
    month: Optional[int],
    year: Optional[int],
) -> Optional[Period]:
    """Pick the date window for a transaction listing.

    An explicit range wins over month/year. Either bound of the range may be
    open. Returns ``None`` when no date filter applies.
    """
    if start or end:
        if start and end and start > end:
            raise InputValidationError(
                "Start date must be before end date", field="start"
            )
        return Period("custom", start or date.min, end or date.max)
    if month is not None and year is not None:
        return month_period(year, month)
    if month is not None or year is not None:
        raise InputValidationError(
            "Month and year must be given together",
            field="month" if month is None else "year",
        )
    return None
