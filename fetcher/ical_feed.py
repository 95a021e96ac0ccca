"""Retrieval of per-department iCal booking feeds."""
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional
from urllib.parse import quote

import requests

from processor.ical_parser import IcalParser
from processor.models import Department, FeedResult

logger = logging.getLogger(__name__)


class IcalFeedFetcher:
    """Fetches iCal exports, optionally through a relay, and parses them."""

    def __init__(
        self,
        timeout: int = 30,
        proxy_url: str = '',
        max_retries: int = 3,
        parser: Optional[IcalParser] = None
    ):
        """
        Initialize the feed fetcher.

        Args:
            timeout: HTTP request timeout in seconds (default: 30)
            proxy_url: Relay prefix the encoded feed URL is appended to,
                e.g. "https://corsproxy.io/?" (default: direct fetch)
            max_retries: Attempts per feed before giving up (default: 3)
            parser: Parser used for fetched feeds
        """
        self.timeout = timeout
        self.proxy_url = proxy_url
        self.max_retries = max(1, max_retries)
        self.parser = parser or IcalParser()

    def fetch_department(self, department: Department) -> FeedResult:
        """
        Fetch and parse one department's feed.

        Never raises for transport problems: a failed fetch yields an
        empty occupancy map with fetch_failed set, which is
        indistinguishable from a feed without bookings once merged under
        the 'clear' policy.

        Args:
            department: Department whose feed to fetch

        Returns:
            FeedResult for the department
        """
        try:
            text = self.fetch_feed_text(department.ical_url)
        except requests.RequestException as e:
            logger.error(
                f"Failed to fetch feed for {department.department_id}: {e}",
                exc_info=True
            )
            return FeedResult(
                department_id=department.department_id,
                occupancy={},
                fetch_failed=True,
                error=str(e)
            )

        result = self.parser.parse(text)
        logger.info(
            f"Department {department.department_id}: {result.events_found} events, "
            f"{len(result.occupancy)} blocked dates, {len(result.warnings)} warnings"
        )
        return FeedResult(
            department_id=department.department_id,
            occupancy=result.occupancy,
            warnings=result.warnings
        )

    def fetch_all(
        self,
        departments: List[Department],
        max_workers: Optional[int] = None
    ) -> List[FeedResult]:
        """
        Fetch every department feed concurrently and wait for all of them.

        Args:
            departments: Departments to sync
            max_workers: Thread pool size (default: one per department)

        Returns:
            FeedResults in the same order as departments
        """
        if not departments:
            return []

        workers = max_workers or len(departments)
        logger.info(
            f"Fetching {len(departments)} department feeds with {workers} workers"
        )
        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(self.fetch_department, departments))

    def build_request_url(self, ical_url: str) -> str:
        """Return the URL to request, routed through the relay when configured."""
        if not self.proxy_url:
            return ical_url
        return f"{self.proxy_url}{quote(ical_url, safe='')}"

    def fetch_feed_text(self, ical_url: str) -> str:
        """
        Fetch raw feed text with retry logic.

        Args:
            ical_url: Feed locator

        Returns:
            Feed content as string

        Raises:
            requests.RequestException: If all retry attempts fail
        """
        request_url = self.build_request_url(ical_url)
        base_delay = 1  # seconds

        for attempt in range(self.max_retries):
            try:
                logger.info(
                    f"Fetching feed (attempt {attempt + 1}/{self.max_retries})"
                )
                response = requests.get(request_url, timeout=self.timeout)
                response.raise_for_status()
                return response.text

            except requests.RequestException as e:
                if attempt < self.max_retries - 1:
                    delay = base_delay * (2 ** attempt)
                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{self.max_retries}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {self.max_retries} retry attempts failed. Last error: {e}"
                    )
                    raise
