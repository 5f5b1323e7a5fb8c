from datetime import date
from types import SimpleNamespace

import pytest

import agency_ledger.periods as periods
from agency_ledger.exceptions import ValidationError


def _args(**kwargs) -> SimpleNamespace:
    values = {"from_date": None, "to_date": None, "year": None, "month": None, "period": None}
    values.update(kwargs)
    return SimpleNamespace(**values)


def test_period_contains_inclusive_bounds() -> None:
    """Period.contains should accept both the start and the end day."""
    p = periods.Period(start=date(2025, 2, 1), end=date(2025, 4, 1), label="Test period")

    assert p.contains(date(2025, 2, 1))
    assert p.contains(date(2025, 4, 1))
    assert not p.contains(date(2025, 1, 31))
    assert not p.contains(date(2025, 4, 2))


def test_month_period_handles_leap_years() -> None:
    feb_2024 = periods.month_period(2024, 2)
    assert feb_2024.end == date(2024, 2, 29)
    assert feb_2024.label == "2024-02"
    assert periods.month_period(2025, 2).end == date(2025, 2, 28)


@pytest.mark.parametrize("month", [0, 13, -1])
def test_month_period_rejects_invalid_month(month) -> None:
    with pytest.raises(ValidationError):
        periods.month_period(2025, month)


def test_validate_range_allows_single_day_and_rejects_inverted() -> None:
    periods.validate_range(date(2025, 1, 1), date(2025, 1, 1))
    with pytest.raises(ValidationError):
        periods.validate_range(date(2025, 1, 2), date(2025, 1, 1))


@pytest.mark.parametrize(
    "start, end",
    [(None, date(2025, 1, 31)), (date(2025, 1, 1), None), (None, None)],
)
def test_validate_range_requires_both_bounds(start, end) -> None:
    with pytest.raises(ValidationError, match="date is required"):
        periods.validate_range(start, end)


def test_shift_month_across_years() -> None:
    assert periods.shift_month(2025, 12, 1) == (2026, 1)
    assert periods.shift_month(2025, 1, -1) == (2024, 12)
    assert periods.shift_month(2025, 3, -15) == (2023, 12)


def test_iter_month_starts_includes_start_month_and_end_month() -> None:
    months = list(periods.iter_month_starts(date(2025, 11, 20), date(2026, 2, 1)))
    assert months == [
        date(2025, 11, 1),
        date(2025, 12, 1),
        date(2026, 1, 1),
        date(2026, 2, 1),
    ]


def test_named_periods() -> None:
    today = date(2025, 3, 15)

    mtd = periods.period_mtd(today)
    assert (mtd.start, mtd.end) == (date(2025, 3, 1), today)

    ytd = periods.period_ytd(today)
    assert (ytd.start, ytd.end) == (date(2025, 1, 1), today)

    last = periods.period_last_month(date(2025, 1, 10))
    assert (last.start, last.end, last.label) == (
        date(2024, 12, 1),
        date(2024, 12, 31),
        "Last month",
    )


def test_determine_period_priority() -> None:
    """Custom dates win over year/month, which win over a named period."""
    today = date(2025, 3, 15)

    custom = periods.determine_period_from_args(
        _args(from_date="2025-01-05", to_date="2025-02-10", month=6, period="ytd"),
        today=today,
    )
    assert (custom.start, custom.end) == (date(2025, 1, 5), date(2025, 2, 10))
    assert custom.label.startswith("Custom period")

    month = periods.determine_period_from_args(_args(month=6, period="ytd"), today=today)
    assert month.label == "2025-06"

    named = periods.determine_period_from_args(_args(period="last-month"), today=today)
    assert named.start == date(2025, 2, 1)

    default = periods.determine_period_from_args(_args(), today=today)
    assert (default.start, default.end) == (date(2025, 3, 1), date(2025, 3, 31))


def test_determine_period_open_ended_custom_range() -> None:
    today = date(2025, 3, 15)
    p = periods.determine_period_from_args(_args(from_date="2025-03-10"), today=today)
    assert (p.start, p.end) == (date(2025, 3, 10), today)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"from_date": "2025/01/01"},
        {"from_date": "2025-03-10", "to_date": "2025-03-01"},
        {"period": "fortnight"},
    ],
)
def test_determine_period_rejects_invalid_args(kwargs) -> None:
    with pytest.raises(ValidationError):
        periods.determine_period_from_args(_args(**kwargs), today=date(2025, 3, 15))


def test_current_date_can_be_monkeypatched(monkeypatch) -> None:
    monkeypatch.setattr(periods, "current_date", lambda: date(2030, 7, 4))
    p = periods.determine_period_from_args(_args())
    assert p.label == "2030-07"
