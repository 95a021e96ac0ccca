"""Unit tests for IcalFeedFetcher."""
from unittest.mock import Mock, patch

import pytest
import responses
from requests.exceptions import RequestException, Timeout

from fetcher.ical_feed import IcalFeedFetcher
from processor.models import DayStatus, Department

FEED_URL = "https://ical.example.com/dept-1.ics"

SAMPLE_FEED = (
    "BEGIN:VCALENDAR\r\n"
    "VERSION:2.0\r\n"
    "BEGIN:VEVENT\r\n"
    "DTSTART;VALUE=DATE:20240610\r\n"
    "DTEND;VALUE=DATE:20240613\r\n"
    "SUMMARY:CLOSED - Not available\r\n"
    "END:VEVENT\r\n"
    "END:VCALENDAR\r\n"
)


@pytest.fixture
def department():
    return Department(department_id='dept-1', name='Departamento 1', ical_url=FEED_URL)


@pytest.fixture(autouse=True)
def no_sleep():
    """Skip retry backoff delays."""
    with patch('fetcher.ical_feed.time.sleep') as mock_sleep:
        yield mock_sleep


class TestIcalFeedFetcher:
    """Test cases for IcalFeedFetcher class."""

    @responses.activate
    def test_fetch_department_success(self, department):
        """Test successful fetch and parse of one feed."""
        responses.add(responses.GET, FEED_URL, body=SAMPLE_FEED, status=200)

        result = IcalFeedFetcher(timeout=30).fetch_department(department)

        assert result.department_id == 'dept-1'
        assert result.fetch_failed is False
        assert result.error is None
        assert result.occupancy == {
            '2024-06-10': DayStatus.BLOCKED,
            '2024-06-11': DayStatus.BLOCKED,
            '2024-06-12': DayStatus.BLOCKED,
        }

    @responses.activate
    def test_fetch_with_retry_success(self, department, no_sleep):
        """Test retry logic succeeds after initial failures."""
        responses.add(responses.GET, FEED_URL, body="Server Error", status=500)
        responses.add(responses.GET, FEED_URL, body="Server Error", status=502)
        responses.add(responses.GET, FEED_URL, body=SAMPLE_FEED, status=200)

        result = IcalFeedFetcher(timeout=30).fetch_department(department)

        assert result.fetch_failed is False
        assert len(result.occupancy) == 3
        assert len(responses.calls) == 3
        assert [c.args[0] for c in no_sleep.call_args_list] == [1, 2]

    @responses.activate
    def test_fetch_feed_text_all_retries_fail(self):
        """Test that exception is raised when all retries fail."""
        for _ in range(3):
            responses.add(responses.GET, FEED_URL, body="Server Error", status=500)

        with pytest.raises(RequestException):
            IcalFeedFetcher(timeout=30).fetch_feed_text(FEED_URL)

        assert len(responses.calls) == 3

    @responses.activate
    def test_fetch_department_failure_returns_empty_map(self, department):
        """Test a failed retrieval yields an empty, flagged result."""
        for _ in range(3):
            responses.add(responses.GET, FEED_URL, body=Timeout("Request timed out"))

        result = IcalFeedFetcher(timeout=30).fetch_department(department)

        assert result.occupancy == {}
        assert result.fetch_failed is True
        assert 'timed out' in result.error
        assert len(responses.calls) == 3

    @responses.activate
    def test_max_retries_respected(self, department):
        """Test a single-attempt fetcher does not retry."""
        responses.add(responses.GET, FEED_URL, body="Not Found", status=404)

        result = IcalFeedFetcher(max_retries=1).fetch_department(department)

        assert result.fetch_failed is True
        assert len(responses.calls) == 1

    @responses.activate
    def test_malformed_feed_reports_warnings(self, department):
        """Test parse anomalies are passed through, not raised."""
        responses.add(
            responses.GET, FEED_URL,
            body="BEGIN:VEVENT\nDTSTART:20240610\n",
            status=200
        )

        result = IcalFeedFetcher().fetch_department(department)

        assert result.fetch_failed is False
        assert result.occupancy == {}
        assert result.warnings == ['feed ended inside an unterminated event']

    @responses.activate
    def test_fetch_all_returns_results_in_department_order(self):
        """Test concurrent fetch of several departments."""
        departments = [
            Department(f'dept-{i}', f'Departamento {i}', f'https://ical.example.com/dept-{i}.ics')
            for i in range(1, 5)
        ]
        for department in departments:
            responses.add(responses.GET, department.ical_url, body=SAMPLE_FEED, status=200)

        results = IcalFeedFetcher().fetch_all(departments)

        assert [r.department_id for r in results] == ['dept-1', 'dept-2', 'dept-3', 'dept-4']
        assert all(len(r.occupancy) == 3 for r in results)

    @responses.activate
    def test_fetch_all_isolates_failures(self):
        """Test one failing feed does not affect the others."""
        good = Department('dept-1', 'Departamento 1', 'https://ical.example.com/good.ics')
        bad = Department('dept-2', 'Departamento 2', 'https://ical.example.com/bad.ics')
        responses.add(responses.GET, good.ical_url, body=SAMPLE_FEED, status=200)
        responses.add(responses.GET, bad.ical_url, body="Server Error", status=500)

        results = IcalFeedFetcher(max_retries=1).fetch_all([good, bad], max_workers=2)

        assert results[0].fetch_failed is False
        assert len(results[0].occupancy) == 3
        assert results[1].fetch_failed is True
        assert results[1].occupancy == {}

    def test_fetch_all_empty(self):
        """Test that no departments means no work."""
        assert IcalFeedFetcher().fetch_all([]) == []

    def test_build_request_url_direct(self):
        """Test the feed URL is used as-is without a relay."""
        assert IcalFeedFetcher().build_request_url(FEED_URL) == FEED_URL

    def test_build_request_url_with_relay(self):
        """Test the feed URL is encoded onto the relay prefix."""
        fetcher = IcalFeedFetcher(proxy_url="https://corsproxy.io/?")

        url = fetcher.build_request_url("https://ical.booking.com/v1/export?t=abc")

        assert url == (
            "https://corsproxy.io/?"
            "https%3A%2F%2Fical.booking.com%2Fv1%2Fexport%3Ft%3Dabc"
        )

    @patch('fetcher.ical_feed.requests.get')
    def test_fetch_through_relay(self, mock_get):
        """Test the relay URL and timeout are passed to requests."""
        mock_response = Mock()
        mock_response.text = SAMPLE_FEED
        mock_get.return_value = mock_response

        fetcher = IcalFeedFetcher(timeout=10, proxy_url="https://relay.example.com/?")
        text = fetcher.fetch_feed_text(FEED_URL)

        assert text == SAMPLE_FEED
        mock_get.assert_called_once_with(
            "https://relay.example.com/?https%3A%2F%2Fical.example.com%2Fdept-1.ics",
            timeout=10
        )
