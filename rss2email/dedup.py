"""Seen-item tracking for rss2email, backed by DynamoDB."""

import hashlib
from datetime import datetime, timedelta

import boto3
from botocore.exceptions import ClientError

from .logging_config import create_execution_logger
from .models import FeedItem

SEEN_TTL_DAYS = 90


class Deduplicator:
    """Records which feed items have already been delivered."""

    def __init__(
        self,
        table_name: str,
        aws_region: str = "us-east-1",
        execution_id: str | None = None,
    ):
        """Initialize the Deduplicator with DynamoDB configuration.

        Args:
            table_name: Name of the DynamoDB table holding seen items
            aws_region: AWS region for DynamoDB client
            execution_id: Execution ID for logging context
        """
        self.table_name = table_name
        self.aws_region = aws_region
        self.logger = create_execution_logger("deduplicator", execution_id)
        self.dynamodb = boto3.resource("dynamodb", region_name=aws_region)
        self.table = self.dynamodb.Table(table_name)

        self.logger.info(
            "Deduplicator initialized", table_name=table_name, aws_region=aws_region
        )

    def generate_item_id(self, feed_url: str, item: FeedItem) -> str:
        """Generate a unique identifier for a feed item.

        Uses the GUID if available, otherwise a SHA256 hash of
        feed_url + link + published date.
        """
        if item.guid:
            return item.guid

        published = item.published.isoformat() if item.published else ""
        hash_input = f"{feed_url}{item.link}{published}"
        return hashlib.sha256(hash_input.encode("utf-8")).hexdigest()

    def is_duplicate(self, item_id: str) -> bool:
        """Check whether an item has already been delivered.

        Lookup errors are logged and the item is treated as new.
        """
        try:
            response = self.table.get_item(Key={"item_id": item_id})
        except ClientError as e:
            self.logger.error(
                f"Error checking for seen item {item_id}: {e}",
                item_id=item_id[:16] + "...",
                error=str(e),
            )
            return False

        return "Item" in response

    def store_item(self, item_id: str, feed_url: str, item: FeedItem) -> None:
        """Mark an item as delivered, expiring after SEEN_TTL_DAYS.

        Raises:
            ClientError: If DynamoDB rejects the write
        """
        ttl_timestamp = int((datetime.now() + timedelta(days=SEEN_TTL_DAYS)).timestamp())

        try:
            self.table.put_item(
                Item={
                    "item_id": item_id,
                    "feed_url": feed_url,
                    "link": item.link,
                    "title": item.title,
                    "processed_at": datetime.now().isoformat(),
                    "ttl": ttl_timestamp,
                }
            )
        except ClientError as e:
            self.logger.error(
                f"Error storing item {item_id}: {e}",
                item_id=item_id[:16] + "...",
                item_title=item.title,
                error=str(e),
            )
            raise

        self.logger.debug(
            "Stored seen item",
            item_id=item_id[:16] + "...",
            item_title=item.title,
            ttl_timestamp=ttl_timestamp,
        )
