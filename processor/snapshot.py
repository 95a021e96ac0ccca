"""Merging and lookup over the multi-department availability snapshot."""
import calendar
import logging
from datetime import date
from typing import Dict, Iterable, List, Mapping

from processor.models import (
    AvailabilitySnapshot,
    DayStatus,
    DisplayState,
    FeedResult,
    OccupancyMap,
)

logger = logging.getLogger(__name__)

ON_FETCH_FAILURE_CLEAR = 'clear'
ON_FETCH_FAILURE_PRESERVE = 'preserve'
FETCH_FAILURE_POLICIES = (ON_FETCH_FAILURE_CLEAR, ON_FETCH_FAILURE_PRESERVE)


def _blocked_only(occupancy: Mapping[str, DayStatus]) -> OccupancyMap:
    """
    Copy an occupancy map, keeping only BLOCKED entries.

    Args:
        occupancy: Occupancy map from a feed

    Returns:
        New map holding only the BLOCKED dates
    """
    return {
        day: DayStatus.BLOCKED
        for day, status in occupancy.items()
        if status == DayStatus.BLOCKED
    }


def merge_snapshot(
    snapshot: AvailabilitySnapshot,
    batch: Mapping[str, OccupancyMap]
) -> AvailabilitySnapshot:
    """
    Apply a sync batch to a snapshot.

    Each department in the batch is replaced in full, which is how
    cancelled bookings disappear. Departments outside the batch are
    carried over untouched. The input snapshot is not modified; the
    caller swaps in the returned value in one step.

    Args:
        snapshot: Current availability snapshot
        batch: Freshly parsed occupancy map per department

    Returns:
        New availability snapshot
    """
    merged: AvailabilitySnapshot = {
        department_id: dict(occupancy)
        for department_id, occupancy in snapshot.items()
    }

    for department_id, occupancy in batch.items():
        merged[department_id] = _blocked_only(occupancy)

    return merged


def merge_feed_results(
    snapshot: AvailabilitySnapshot,
    results: Iterable[FeedResult],
    on_fetch_failure: str = ON_FETCH_FAILURE_CLEAR
) -> AvailabilitySnapshot:
    """
    Build a sync batch from feed results and merge it.

    With the 'clear' policy a failed fetch contributes an empty map and
    wipes that department's bookings, exactly like a feed with no
    events. With 'preserve' the previous map is kept, and a department
    seen for the first time still gets an empty entry.

    Args:
        snapshot: Current availability snapshot
        results: One FeedResult per department in this sync
        on_fetch_failure: 'clear' or 'preserve'

    Returns:
        New availability snapshot

    Raises:
        ValueError: If on_fetch_failure is not a known policy
    """
    if on_fetch_failure not in FETCH_FAILURE_POLICIES:
        raise ValueError(f"Unknown fetch failure policy: {on_fetch_failure}")

    batch: Dict[str, OccupancyMap] = {}
    for result in results:
        if (
            result.fetch_failed
            and on_fetch_failure == ON_FETCH_FAILURE_PRESERVE
            and result.department_id in snapshot
        ):
            logger.warning(
                f"Keeping previous availability for {result.department_id} "
                f"after failed fetch"
            )
            continue
        batch[result.department_id] = result.occupancy

    return merge_snapshot(snapshot, batch)


def get_day_status(
    snapshot: AvailabilitySnapshot,
    department_id: str,
    day: str
) -> DayStatus:
    """Status of one day; anything not recorded is FREE."""
    return snapshot.get(department_id, {}).get(day, DayStatus.FREE)


def get_display_state(
    snapshot: AvailabilitySnapshot,
    department_id: str,
    day: date,
    today: date
) -> DisplayState:
    """
    Status of one day as shown to guests.

    Args:
        snapshot: Availability snapshot
        department_id: Department to look up
        day: Day to display
        today: Reference day; anything earlier is PAST

    Returns:
        DisplayState for the day
    """
    if day < today:
        return DisplayState.PAST
    if get_day_status(snapshot, department_id, day.isoformat()) == DayStatus.BLOCKED:
        return DisplayState.BLOCKED
    return DisplayState.FREE


def month_days(year: int, month: int) -> List[date]:
    """All days of a month in order."""
    _, days_in_month = calendar.monthrange(year, month)
    return [date(year, month, day) for day in range(1, days_in_month + 1)]


def month_view(
    snapshot: AvailabilitySnapshot,
    department_id: str,
    year: int,
    month: int,
    today: date
) -> Dict[str, DisplayState]:
    """Display state for every day of a month, keyed by canonical date."""
    return {
        day.isoformat(): get_display_state(snapshot, department_id, day, today)
        for day in month_days(year, month)
    }
