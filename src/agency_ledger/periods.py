# Agency Ledger - Financial management backend for small agencies
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Period helpers for Agency Ledger.

This module defines a Period value object and helpers to derive calendar
reporting periods (a given month, month-to-date, year-to-date, last month)
from CLI arguments. Reporting periods are always calendar based: the engine
does not support custom fiscal years.
"""

from calendar import monthrange
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterator, Optional

from .exceptions import ValidationError


@dataclass(frozen=True)
class Period:
    """Represents a reporting period (inclusive bounds) with a label."""

    start: date
    end: date
    label: str

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


def current_date() -> date:
    """Return today's date as a date object (isolated for easier testing)."""
    return datetime.today().date()


def validate_range(start: Optional[date], end: Optional[date]) -> None:
    """Reject ranges with a missing bound or whose end is before their start."""
    if start is None or end is None:
        missing = "start" if start is None else "end"
        raise ValidationError(f"Invalid period: {missing} date is required.")
    if end < start:
        raise ValidationError(
            f"Invalid period: end date {end.isoformat()} is before "
            f"start date {start.isoformat()}."
        )


def validate_month(year: int, month: int) -> None:
    if not 1 <= month <= 12:
        raise ValidationError(f"Invalid month: {month!r}, expected 1..12.")
    if not 1 <= year <= 9999:
        raise ValidationError(f"Invalid year: {year!r}.")


def shift_month(year: int, month: int, offset: int) -> tuple[int, int]:
    """Return (year, month) moved by `offset` calendar months."""
    index = year * 12 + (month - 1) + offset
    return index // 12, index % 12 + 1


def month_period(year: int, month: int) -> Period:
    """Full calendar month, from its first to its last day."""
    validate_month(year, month)
    last_day = monthrange(year, month)[1]
    return Period(
        start=date(year, month, 1),
        end=date(year, month, last_day),
        label=f"{year}-{month:02d}",
    )


def iter_month_starts(start: date, end: date) -> Iterator[date]:
    """
    Yield the first day of every month from `start`'s month while <= `end`.

    The first yielded value is the first day of `start`'s month, even when
    `start` itself falls later in that month.
    """
    current = date(start.year, start.month, 1)
    while current <= end:
        yield current
        year, month = shift_month(current.year, current.month, 1)
        current = date(year, month, 1)


def period_mtd(today: Optional[date] = None) -> Period:
    """Month-to-date."""
    today = today or current_date()
    return Period(start=today.replace(day=1), end=today, label="Month to date")


def period_ytd(today: Optional[date] = None) -> Period:
    """Year-to-date."""
    today = today or current_date()
    return Period(start=date(today.year, 1, 1), end=today, label="Year to date")


def period_this_month(today: Optional[date] = None) -> Period:
    today = today or current_date()
    return month_period(today.year, today.month)


def period_last_month(today: Optional[date] = None) -> Period:
    """Full previous calendar month."""
    today = today or current_date()
    year, month = shift_month(today.year, today.month, -1)
    period = month_period(year, month)
    return Period(start=period.start, end=period.end, label="Last month")


def determine_period_from_args(args, today: Optional[date] = None) -> Period:
    """
    Determine the reporting period to use based on CLI args.

    Priority (highest to lowest):

        1. args.from_date / args.to_date (custom period)
        2. args.year / args.month (a calendar month)
        3. args.period (this-month, mtd, ytd, last-month)
        4. the current calendar month by default
    """
    today = today or current_date()

    # 1) Custom from/to dates
    from_raw: Optional[str] = getattr(args, "from_date", None)
    to_raw: Optional[str] = getattr(args, "to_date", None)

    if from_raw or to_raw:
        try:
            start = date.fromisoformat(from_raw) if from_raw else today.replace(day=1)
            end = date.fromisoformat(to_raw) if to_raw else today
        except ValueError as exc:
            raise ValidationError(
                "Invalid custom period dates, expected YYYY-MM-DD format."
            ) from exc

        validate_range(start, end)
        return Period(start=start, end=end, label=f"Custom period ({start} → {end})")

    # 2) Explicit calendar month
    month = getattr(args, "month", None)
    if month is not None:
        year = getattr(args, "year", None) or today.year
        return month_period(year, month)

    # 3) Named period
    name = getattr(args, "period", None)
    if name:
        if name == "this-month":
            return period_this_month(today)
        if name == "mtd":
            return period_mtd(today)
        if name == "ytd":
            return period_ytd(today)
        if name == "last-month":
            return period_last_month(today)
        raise ValidationError(f"Unknown period: {name!r}")

    # 4) Default: current calendar month
    return period_this_month(today)
