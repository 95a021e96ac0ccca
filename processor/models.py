"""Data models for availability processing."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class DayStatus(str, Enum):
    """Occupancy status of a single day. Absence of an entry means FREE."""
    FREE = 'FREE'
    BLOCKED = 'BLOCKED'


class DisplayState(str, Enum):
    """Status of a day as shown to guests. PAST is never stored."""
    FREE = 'FREE'
    BLOCKED = 'BLOCKED'
    PAST = 'PAST'


OccupancyMap = Dict[str, DayStatus]
AvailabilitySnapshot = Dict[str, OccupancyMap]


@dataclass
class EventBlock:
    """Raw DTSTART/DTEND values captured from one VEVENT."""
    start_raw: Optional[str]
    end_raw: Optional[str] = None


@dataclass
class ParseResult:
    """Best-effort occupancy map plus the anomalies noticed while parsing."""
    occupancy: OccupancyMap = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    events_found: int = 0


@dataclass
class Department:
    """A bookable unit with its own iCal export."""
    department_id: str
    name: str
    ical_url: str

    @classmethod
    def from_dict(cls, data: dict) -> 'Department':
        """
        Build a Department from a configuration entry.

        Args:
            data: Dict with 'id', 'name' and 'ical_url' keys

        Returns:
            Department object

        Raises:
            ValueError: If 'id' or 'ical_url' is missing
        """
        department_id = str(data.get('id') or '').strip()
        ical_url = str(data.get('ical_url') or '').strip()
        if not department_id or not ical_url:
            raise ValueError(f"Department entry needs 'id' and 'ical_url': {data}")
        return cls(
            department_id=department_id,
            name=str(data.get('name') or department_id),
            ical_url=ical_url
        )


@dataclass
class FeedResult:
    """Result of retrieving and parsing one department feed."""
    department_id: str
    occupancy: OccupancyMap
    warnings: List[str] = field(default_factory=list)
    fetch_failed: bool = False
    error: Optional[str] = None


@dataclass
class SyncResult:
    """
    Result of sync operation.

    synced holds departments whose feed was fetched; failed ones are
    listed only in failed, and also in preserved when their previous map
    was kept.
    """
    synced: List[str]
    failed: List[str]
    preserved: List[str]
    blocked_dates: Dict[str, int]
    warnings: Dict[str, List[str]]
