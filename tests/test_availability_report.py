"""Unit tests for the monthly availability report."""
from datetime import date

from processor.availability_report import (
    FULLY_BOOKED_MESSAGE,
    build_monthly_report,
    free_days,
    group_consecutive,
)
from processor.models import DayStatus, Department


def blocked(*days):
    return {day: DayStatus.BLOCKED for day in days}


def test_free_days_excludes_blocked_and_past():
    """Test that past and blocked days are not listed."""
    snapshot = {'dept-1': blocked('2024-06-10', '2024-06-11')}

    days = free_days(snapshot, 'dept-1', 2024, 6, today=date(2024, 6, 8))

    assert days[:3] == [8, 9, 12]
    assert 7 not in days
    assert days[-1] == 30


def test_free_days_future_month_with_unknown_department():
    """Test an unsynced department is free on every future day."""
    days = free_days({}, 'dept-9', 2024, 2, today=date(2024, 1, 1))

    assert days == list(range(1, 30))


def test_free_days_past_month_is_empty():
    """Test a month entirely before today has no free days."""
    assert free_days({}, 'dept-1', 2024, 5, today=date(2024, 6, 1)) == []


def test_group_consecutive():
    """Test runs of consecutive days collapse into ranges."""
    assert group_consecutive([1, 2, 3, 5, 7, 8]) == [(1, 3), (5, 5), (7, 8)]
    assert group_consecutive([]) == []


def test_build_monthly_report():
    """Test report sections per department."""
    departments = [
        Department('dept-1', 'Departamento 1', 'https://example.com/1.ics'),
        Department('dept-2', 'Departamento 2', 'https://example.com/2.ics'),
    ]
    snapshot = {
        'dept-1': blocked(*[f"2024-06-{day:02d}" for day in range(6, 20)]),
        'dept-2': blocked(*[f"2024-06-{day:02d}" for day in range(1, 31)]),
    }

    report = build_monthly_report(snapshot, departments, 2024, 6, today=date(2024, 6, 1))

    first, second = report.split('\n\n')
    assert first.startswith('DEPARTAMENTO 1\n')
    assert 'Free days: 1-5, 20-30' in first
    assert second.startswith('DEPARTAMENTO 2\n')
    assert FULLY_BOOKED_MESSAGE in second
