from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterator, Optional

MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)


@dataclass(frozen=True)
class Period:
    """Half-open ``[start, end)`` window of timestamps."""

    slug: str
    start: datetime
    end: datetime


def clamp_month(month: int) -> int:
    return max(1, min(12, int(month)))


def month_period(year: int, month: int) -> Period:
    start = datetime(year, month, 1)
    if month == 12:
        end = datetime(year + 1, 1, 1)
    else:
        end = datetime(year, month + 1, 1)
    return Period(f"{year:04d}-{month:02d}", start, end)


def month_range(from_month: int, to_month: int) -> tuple[int, int]:
    """Clamp both ends to 1..12. A reversed range stays reversed and is empty."""
    return clamp_month(from_month), clamp_month(to_month)


def iter_months(from_month: int, to_month: int) -> Iterator[int]:
    low, high = month_range(from_month, to_month)
    return iter(range(low, high + 1))


def resolve_month(
    year: Optional[int], month: Optional[int], *, today: Optional[date] = None
) -> tuple[int, int]:
    today = today or date.today()
    resolved_year = year if year is not None else today.year
    resolved_month = clamp_month(month) if month is not None else today.month
    return resolved_year, resolved_month
