"""Monthly free-day listing for each department."""
import logging
from datetime import date
from typing import List, Tuple

from processor.models import AvailabilitySnapshot, Department, DisplayState
from processor.snapshot import get_display_state, month_days

logger = logging.getLogger(__name__)

FULLY_BOOKED_MESSAGE = 'Fully booked or dates already passed (0 free days to book).'


def free_days(
    snapshot: AvailabilitySnapshot,
    department_id: str,
    year: int,
    month: int,
    today: date
) -> List[int]:
    """
    Day numbers of a month that can still be booked.

    Past days are never free, whatever the snapshot says.

    Args:
        snapshot: Availability snapshot
        department_id: Department to report on
        year: Year of the month
        month: Month number (1-12)
        today: Reference day

    Returns:
        Sorted list of day-of-month numbers
    """
    return [
        day.day
        for day in month_days(year, month)
        if get_display_state(snapshot, department_id, day, today) == DisplayState.FREE
    ]


def group_consecutive(days: List[int]) -> List[Tuple[int, int]]:
    """Collapse sorted day numbers into (first, last) runs."""
    runs: List[Tuple[int, int]] = []
    for day in days:
        if runs and day == runs[-1][1] + 1:
            runs[-1] = (runs[-1][0], day)
        else:
            runs.append((day, day))
    return runs


def format_runs(runs: List[Tuple[int, int]]) -> str:
    """
    Render day runs as text.

    Args:
        runs: (first, last) pairs from group_consecutive

    Returns:
        Comma-separated runs, e.g. "1-5, 20"
    """
    return ', '.join(
        str(first) if first == last else f"{first}-{last}"
        for first, last in runs
    )


def build_monthly_report(
    snapshot: AvailabilitySnapshot,
    departments: List[Department],
    year: int,
    month: int,
    today: date
) -> str:
    """
    Plain-text summary of free days per department.

    Args:
        snapshot: Availability snapshot
        departments: Departments in display order
        year: Year of the month
        month: Month number (1-12)
        today: Reference day

    Returns:
        Report text, one section per department
    """
    sections = []
    for department in departments:
        days = free_days(snapshot, department.department_id, year, month, today)
        if days:
            summary = f"Free days: {format_runs(group_consecutive(days))}"
        else:
            summary = FULLY_BOOKED_MESSAGE
        sections.append(
            f"{department.name.upper()}\n"
            f"{'-' * 18}\n"
            f"• {summary}"
        )

    logger.info(
        f"Built availability report for {year}-{month:02d} "
        f"covering {len(departments)} departments"
    )
    return '\n\n'.join(sections)
