"""iCal feed parser that turns booking exports into occupied dates."""
import logging
import re
from datetime import date, timedelta
from typing import List, Optional, Tuple

from processor.models import DayStatus, EventBlock, OccupancyMap, ParseResult

logger = logging.getLogger(__name__)

LINE_BREAK = re.compile(r'\r\n|\n|\r')
NON_DIGIT = re.compile(r'[^0-9]')


def normalize_ical_date(raw: Optional[str]) -> Optional[str]:
    """
    Normalize a DTSTART/DTEND value to YYYY-MM-DD.

    Accepts "20240610" and "20240610T140000Z" alike; the time of day is
    discarded. The check is purely syntactic, so "20231301" becomes
    "2023-13-01".

    Args:
        raw: Property value as found after the first colon

    Returns:
        Canonical date string or None if the value does not hold 8 digits
    """
    if not raw:
        return None

    digits = NON_DIGIT.sub('', raw.split('T', 1)[0])
    if len(digits) != 8:
        return None

    return f"{digits[0:4]}-{digits[4:6]}-{digits[6:8]}"


def to_calendar_date(canonical: str) -> Optional[date]:
    """Convert a canonical date string to a date, or None if no such day exists."""
    try:
        return date.fromisoformat(canonical)
    except ValueError:
        return None


def expand_date_range(start_raw: str, end_raw: str) -> List[str]:
    """
    Expand an event into the nights it occupies.

    The end date is exclusive: it is the departure morning, so a stay
    from 2024-06-10 to 2024-06-13 occupies the 10th, 11th and 12th.

    Args:
        start_raw: Raw DTSTART value
        end_raw: Raw DTEND value

    Returns:
        Ordered list of canonical dates, empty if either bound is
        unusable or end is not after start
    """
    start_str = normalize_ical_date(start_raw)
    end_str = normalize_ical_date(end_raw)
    if not start_str or not end_str:
        return []

    start = to_calendar_date(start_str)
    end = to_calendar_date(end_str)
    if start is None or end is None:
        return []

    dates = []
    current = start
    while current < end:
        dates.append(current.isoformat())
        current += timedelta(days=1)

    return dates


class IcalParser:
    """Best-effort parser for the DTSTART/DTEND pairs of VEVENT blocks."""

    BEGIN_EVENT = 'BEGIN:VEVENT'
    END_EVENT = 'END:VEVENT'
    START_PROPERTY = 'DTSTART'
    END_PROPERTY = 'DTEND'

    def parse(self, text: str) -> ParseResult:
        """
        Parse raw feed text into an occupancy map.

        Never raises: malformed blocks and values are skipped and
        reported in the result's warnings.

        Args:
            text: Raw iCal feed content

        Returns:
            ParseResult with BLOCKED dates and any warnings
        """
        lines = self.tokenize(text)
        blocks, warnings = self.extract_event_blocks(lines)
        occupancy, reduce_warnings = self.reduce_occupancy(blocks)
        warnings.extend(reduce_warnings)

        for warning in warnings:
            logger.warning(f"Feed anomaly: {warning}")

        logger.debug(
            f"Parsed {len(blocks)} events into {len(occupancy)} blocked dates"
        )
        return ParseResult(
            occupancy=occupancy,
            warnings=warnings,
            events_found=len(blocks)
        )

    def tokenize(self, text: str) -> List[str]:
        """
        Split feed text on CRLF, LF or CR.

        Args:
            text: Raw feed content

        Returns:
            Lines in order; empty input gives no lines
        """
        if not text:
            return []
        return LINE_BREAK.split(text)

    def extract_event_blocks(
        self, lines: List[str]
    ) -> Tuple[List[EventBlock], List[str]]:
        """
        Collect DTSTART/DTEND values from each VEVENT.

        Properties are matched by prefix so that parameterised forms
        such as "DTSTART;VALUE=DATE:20240610" are accepted.

        Args:
            lines: Tokenized feed lines

        Returns:
            Tuple of (event blocks, warnings)
        """
        blocks = []
        warnings = []
        in_event = False
        start_raw = None
        end_raw = None

        for number, line in enumerate(lines, start=1):
            if line.startswith(self.BEGIN_EVENT):
                if in_event:
                    warnings.append(
                        f"line {number}: event started before previous event ended"
                    )
                in_event = True
                start_raw = None
                end_raw = None
            elif line.startswith(self.END_EVENT):
                if not in_event:
                    continue
                in_event = False
                if start_raw:
                    blocks.append(EventBlock(start_raw=start_raw, end_raw=end_raw or None))
                else:
                    warnings.append(f"line {number}: event has no {self.START_PROPERTY}")
            elif in_event:
                if line.startswith(self.START_PROPERTY):
                    start_raw = self._property_value(line)
                if line.startswith(self.END_PROPERTY):
                    end_raw = self._property_value(line)

        if in_event:
            warnings.append("feed ended inside an unterminated event")

        return blocks, warnings

    def reduce_occupancy(
        self, blocks: List[EventBlock]
    ) -> Tuple[OccupancyMap, List[str]]:
        """
        Fold event blocks into a single map of BLOCKED dates.

        Args:
            blocks: Event blocks from one feed

        Returns:
            Tuple of (occupancy map, warnings)
        """
        occupancy: OccupancyMap = {}
        warnings = []

        for block in blocks:
            for day in self._block_dates(block, warnings):
                occupancy[day] = DayStatus.BLOCKED

        return occupancy, warnings

    def _block_dates(self, block: EventBlock, warnings: List[str]) -> List[str]:
        start = normalize_ical_date(block.start_raw)
        if not start or to_calendar_date(start) is None:
            warnings.append(f"unusable {self.START_PROPERTY} value: {block.start_raw!r}")
            return []

        # No end: the event covers its start day only
        if block.end_raw is None:
            return [start]

        end = normalize_ical_date(block.end_raw)
        if not end or to_calendar_date(end) is None:
            warnings.append(f"unusable {self.END_PROPERTY} value: {block.end_raw!r}")
            return []

        dates = expand_date_range(block.start_raw, block.end_raw)
        if not dates:
            warnings.append(f"event ends on or before its start: {start} to {end}")
        return dates

    def _property_value(self, line: str) -> str:
        """Return everything after the first colon, or '' if there is none."""
        _, separator, value = line.partition(':')
        return value if separator else ''
