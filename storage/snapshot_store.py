"""DynamoDB persistence for the availability snapshot."""
import logging
import time

import boto3
from botocore.exceptions import ClientError

from processor.models import AvailabilitySnapshot, DayStatus

logger = logging.getLogger(__name__)


class SnapshotStore:
    """
    Loads and saves the availability snapshot as a single DynamoDB item.

    A single put keeps each save atomic, but DynamoDB caps an item at
    400 KB. Every department and blocked date shares that budget, so a
    feed with years of owner blocks can push the snapshot past the limit;
    save_snapshot then raises ClientError on every sync until the feed
    shrinks.
    """

    DEFAULT_SNAPSHOT_ID = 'calendar_availability'

    def __init__(self, table_name: str, snapshot_id: str = DEFAULT_SNAPSHOT_ID):
        """
        Initialize DynamoDB client and table reference.

        Args:
            table_name: Name of the DynamoDB table
            snapshot_id: Key of the snapshot item
        """
        self.table_name = table_name
        self.snapshot_id = snapshot_id
        self.dynamodb = boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        logger.info(
            f"Initialized SnapshotStore for table: {table_name}, "
            f"snapshot: {snapshot_id}"
        )

    def load_snapshot(self) -> AvailabilitySnapshot:
        """
        Read the stored snapshot.

        Returns:
            Availability snapshot, empty if nothing has been saved yet

        Raises:
            ClientError: If the read fails
        """
        try:
            response = self.table.get_item(Key={'snapshot_id': self.snapshot_id})
        except ClientError as e:
            logger.error(f"Error reading snapshot {self.snapshot_id}: {e}")
            raise

        item = response.get('Item')
        if not item:
            logger.info(f"No stored snapshot {self.snapshot_id}, starting empty")
            return {}

        snapshot = self._item_to_snapshot(item)
        logger.info(f"Loaded snapshot with {len(snapshot)} departments")
        return snapshot

    def save_snapshot(self, snapshot: AvailabilitySnapshot) -> int:
        """
        Replace the stored snapshot with a single put.

        Args:
            snapshot: Snapshot to persist

        Returns:
            Unix timestamp written as last_updated

        Raises:
            ClientError: If the write fails; the previous item is kept
        """
        last_updated = int(time.time())
        item = self._snapshot_to_item(snapshot, last_updated)

        try:
            self.table.put_item(Item=item)
        except ClientError as e:
            logger.error(f"Error writing snapshot {self.snapshot_id}: {e}")
            raise

        logger.info(f"Saved snapshot with {len(snapshot)} departments")
        return last_updated

    def _item_to_snapshot(self, item: dict) -> AvailabilitySnapshot:
        """
        Convert DynamoDB item to a snapshot.

        Only BLOCKED entries are kept; anything else stored under a date
        is treated as FREE and dropped.

        Args:
            item: DynamoDB item dictionary

        Returns:
            Availability snapshot
        """
        snapshot: AvailabilitySnapshot = {}
        for department_id, dates in item.get('availability', {}).items():
            snapshot[department_id] = {
                day: DayStatus.BLOCKED
                for day, status in dates.items()
                if status == DayStatus.BLOCKED.value
            }
        return snapshot

    def _snapshot_to_item(self, snapshot: AvailabilitySnapshot, last_updated: int) -> dict:
        """
        Convert a snapshot to a DynamoDB item.

        Args:
            snapshot: Availability snapshot
            last_updated: Unix timestamp of this save

        Returns:
            DynamoDB item dictionary
        """
        return {
            'snapshot_id': self.snapshot_id,
            'availability': {
                department_id: {
                    day: DayStatus(status).value
                    for day, status in dates.items()
                }
                for department_id, dates in snapshot.items()
            },
            'last_updated': last_updated
        }
