"""AWS Lambda handler for Department Availability Sync."""
import json
import logging
import os
import time
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from fetcher.ical_feed import IcalFeedFetcher
from processor.availability_report import build_monthly_report
from processor.models import AvailabilitySnapshot, Department, FeedResult, SyncResult
from processor.snapshot import (
    FETCH_FAILURE_POLICIES,
    ON_FETCH_FAILURE_PRESERVE,
    merge_feed_results,
)
from storage.snapshot_store import SnapshotStore


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def load_departments(raw: Optional[str]) -> List[Department]:
    """
    Parse the DEPARTMENTS setting.

    Args:
        raw: JSON list of {"id", "name", "ical_url"} objects

    Returns:
        List of Department objects in configured order

    Raises:
        ValueError: If the setting is missing, not valid JSON, holds
            entries that are not objects, or has duplicate ids
    """
    if not raw:
        raise ValueError('DEPARTMENTS is not configured')

    try:
        entries = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"DEPARTMENTS is not valid JSON: {e}") from e

    if not isinstance(entries, list):
        raise ValueError('DEPARTMENTS must be a JSON list')

    for entry in entries:
        if not isinstance(entry, dict):
            raise ValueError(f"DEPARTMENTS entries must be objects: {entry!r}")

    departments = [Department.from_dict(entry) for entry in entries]
    ids = [department.department_id for department in departments]
    if len(set(ids)) != len(ids):
        raise ValueError(f"DEPARTMENTS has duplicate ids: {ids}")

    return departments


def sync_availability(
    snapshot: AvailabilitySnapshot,
    results: List[FeedResult],
    on_fetch_failure: str
) -> Tuple[AvailabilitySnapshot, SyncResult]:
    """
    Merge one round of feed results into the snapshot.

    Args:
        snapshot: Snapshot before this sync
        results: Settled FeedResults for every department in the batch
        on_fetch_failure: 'clear' or 'preserve'

    Returns:
        Tuple of (new snapshot, SyncResult)
    """
    new_snapshot = merge_feed_results(snapshot, results, on_fetch_failure)

    failed = [result.department_id for result in results if result.fetch_failed]
    preserved = [
        department_id for department_id in failed
        if on_fetch_failure == ON_FETCH_FAILURE_PRESERVE and department_id in snapshot
    ]
    synced = [
        result.department_id for result in results
        if not result.fetch_failed
    ]

    sync_result = SyncResult(
        synced=synced,
        failed=failed,
        preserved=preserved,
        blocked_dates={
            result.department_id: len(new_snapshot.get(result.department_id, {}))
            for result in results
            if result.department_id not in preserved
        },
        warnings={
            result.department_id: result.warnings
            for result in results if result.warnings
        }
    )
    return new_snapshot, sync_result


def _error_response(message: str, error: Exception, start_time: float, **extra) -> Dict[str, Any]:
    duration = time.time() - start_time
    body = {
        'message': message,
        'error': str(error),
        'error_type': type(error).__name__,
        'duration_seconds': round(duration, 2)
    }
    body.update(extra)
    return {'statusCode': 500, 'body': json.dumps(body)}


def local_today(timezone: str) -> date:
    """
    Current date at the property.

    Args:
        timezone: IANA zone name, e.g. "America/Argentina/Buenos_Aires"

    Returns:
        Today's date in that zone

    Raises:
        ZoneInfoNotFoundError: If the zone is unknown
    """
    return datetime.now(ZoneInfo(timezone)).date()


def _report_month(event: Dict[str, Any], today: date) -> Tuple[int, int]:
    """Year and month requested as "YYYY-MM", defaulting to today's month."""
    month = event.get('month')
    if not month:
        return today.year, today.month
    year_part, month_part = str(month).split('-', 1)
    year, month_number = int(year_part), int(month_part)
    if not 1 <= month_number <= 12:
        raise ValueError(f"Invalid month: {month}")
    return year, month_number


def handle_report(
    event: Dict[str, Any],
    store: SnapshotStore,
    departments: List[Department],
    start_time: float,
    timezone: str = 'UTC'
) -> Dict[str, Any]:
    """
    Build the free-day report for a month.

    Args:
        event: Invocation payload, optionally with "month" as "YYYY-MM"
        store: Snapshot store to read from
        departments: Configured departments
        start_time: Invocation start time
        timezone: IANA zone of the property; days before its local date are past

    Returns:
        Response dict with the report text
    """
    logger = logging.getLogger(__name__)

    try:
        today = local_today(timezone)
        year, month = _report_month(event, today)
        snapshot = store.load_snapshot()
        report = build_monthly_report(snapshot, departments, year, month, today)
    except Exception as e:
        logger.error(
            f"Failed to build availability report: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return _error_response(
            'Sorry, the availability report could not be generated. Please try again.',
            e,
            start_time
        )

    duration = time.time() - start_time
    return {
        'statusCode': 200,
        'body': json.dumps({
            'message': 'Report generated successfully',
            'month': f"{year}-{month:02d}",
            'report': report,
            'duration_seconds': round(duration, 2)
        })
    }


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for Department Availability Sync.

    Args:
        event: EventBridge event payload, or {"action": "report", "month": "YYYY-MM"}
        context: Lambda context object

    Returns:
        Response dict with statusCode and summary statistics
    """
    # Read configuration from environment variables
    table_name = os.environ.get('TABLE_NAME', 'department-availability')
    snapshot_id = os.environ.get('SNAPSHOT_ID', SnapshotStore.DEFAULT_SNAPSHOT_ID)
    log_level = os.environ.get('LOG_LEVEL', 'INFO')
    proxy_url = os.environ.get('PROXY_URL', '')
    timeout_seconds = int(os.environ.get('TIMEOUT_SECONDS', '30'))
    max_retries = int(os.environ.get('MAX_RETRIES', '3'))
    max_workers = int(os.environ.get('MAX_WORKERS', '0')) or None
    on_fetch_failure = os.environ.get('ON_FETCH_FAILURE', 'clear').lower()
    timezone = os.environ.get('TIMEZONE', 'UTC')

    # Initialize logging
    setup_logging(log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()
    event = event or {}
    action = event.get('action', 'sync')
    logger.info(
        "Lambda execution started",
        extra={
            'action': action,
            'table_name': table_name,
            'snapshot_id': snapshot_id,
            'on_fetch_failure': on_fetch_failure
        }
    )

    try:
        departments = load_departments(os.environ.get('DEPARTMENTS'))
        if on_fetch_failure not in FETCH_FAILURE_POLICIES:
            raise ValueError(f"ON_FETCH_FAILURE must be one of {FETCH_FAILURE_POLICIES}")
    except ValueError as e:
        logger.error(f"Invalid configuration: {str(e)}", exc_info=True)
        return _error_response('Invalid configuration', e, start_time)

    try:
        store = SnapshotStore(table_name=table_name, snapshot_id=snapshot_id)

        if action == 'report':
            return handle_report(event, store, departments, start_time, timezone)

        fetcher = IcalFeedFetcher(
            timeout=timeout_seconds,
            proxy_url=proxy_url,
            max_retries=max_retries
        )

        try:
            logger.info("Loading availability snapshot")
            snapshot = store.load_snapshot()
        except Exception as e:
            logger.error(
                f"Failed to load snapshot from DynamoDB: {str(e)}",
                extra={'error_type': type(e).__name__},
                exc_info=True
            )
            return _error_response('Failed to load availability snapshot', e, start_time)

        # All feeds settle before anything is merged
        logger.info(f"Fetching feeds for {len(departments)} departments")
        results = fetcher.fetch_all(departments, max_workers=max_workers)

        logger.info("Merging feed results into snapshot")
        new_snapshot, sync_result = sync_availability(snapshot, results, on_fetch_failure)

        try:
            logger.info("Saving availability snapshot to DynamoDB")
            store.save_snapshot(new_snapshot)
        except Exception as e:
            logger.error(
                f"Error saving snapshot to DynamoDB: {str(e)}",
                extra={'error_type': type(e).__name__},
                exc_info=True
            )
            return _error_response(
                'Failed to save availability snapshot',
                e,
                start_time,
                note='Previous snapshot remains in DynamoDB'
            )

        duration = time.time() - start_time
        warning_count = sum(len(w) for w in sync_result.warnings.values())

        logger.info(
            "Lambda execution completed successfully",
            extra={
                'duration_seconds': round(duration, 2),
                'departments_synced': len(sync_result.synced),
                'departments_failed': len(sync_result.failed),
                'departments_preserved': len(sync_result.preserved),
                'feed_warnings': warning_count
            }
        )

        return {
            'statusCode': 200,
            'body': json.dumps({
                'message': 'Sync completed successfully',
                'statistics': {
                    'departments_synced': sync_result.synced,
                    'departments_failed': sync_result.failed,
                    'departments_preserved': sync_result.preserved,
                    'blocked_dates': sync_result.blocked_dates,
                    'feed_warnings': warning_count,
                    'duration_seconds': round(duration, 2)
                },
                'warnings': sync_result.warnings
            })
        }

    except Exception as e:
        duration = time.time() - start_time

        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )

        return _error_response('Sync failed', e, start_time)
