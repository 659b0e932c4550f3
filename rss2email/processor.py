"""Poll-cycle processing for rss2email."""

import re
from typing import Any

from bs4 import BeautifulSoup, Comment
from botocore.exceptions import ClientError

from .config import Config
from .dedup import Deduplicator
from .emailer import DeliveryError, Emailer, Transport
from .feedlist import FeedList
from .fetcher import Fetcher, FetchError
from .logging_config import create_execution_logger
from .template import TemplateError, TemplateRenderer


BLOCK_TAGS = [
    "address", "blockquote", "dd", "div", "dl", "dt", "h1", "h2", "h3", "h4",
    "h5", "h6", "hr", "li", "ol", "p", "pre", "table", "tr", "ul",
]


def html_to_text(content: str) -> str:
    """Convert item HTML into plain text for the text/plain body part.

    Scripts, styles and comments are dropped, runs of whitespace collapse to
    one space, and block elements become paragraphs separated by a blank line.
    """
    if not content:
        return ""

    if "<" not in content and ">" not in content:
        lines = (" ".join(line.split()) for line in content.splitlines())
        return "\n\n".join(line for line in lines if line)

    soup = BeautifulSoup(content, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()

    for string in soup.find_all(string=True):
        string.replace_with(re.sub(r"\s+", " ", string))
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for tag in soup.find_all(BLOCK_TAGS):
        tag.insert_before("\n")
        tag.insert_after("\n")

    lines = (line.strip() for line in soup.get_text().splitlines())
    return "\n\n".join(line for line in lines if line)


class Processor:
    """Runs one poll cycle: fetch every feed and mail out unseen items."""

    def __init__(
        self,
        config: Config,
        feedlist: FeedList,
        deduplicator: Deduplicator,
        fetcher: Fetcher | None = None,
        renderer: TemplateRenderer | None = None,
        transport: Transport | None = None,
        execution_id: str | None = None,
    ):
        self.config = config
        self.feedlist = feedlist
        self.deduplicator = deduplicator
        self.fetcher = fetcher or feedlist.fetcher
        self.renderer = renderer or TemplateRenderer(
            config.template_path, execution_id=execution_id
        )
        self.transport = transport
        self.execution_id = execution_id
        self.logger = create_execution_logger("processor", execution_id)

    def run(self, recipients: list[str] | None = None) -> dict[str, Any]:
        """Process every feed in the list once.

        A feed that cannot be fetched, or an item that cannot be delivered, is
        recorded in the returned metrics and the cycle carries on. Items that
        fail to send stay unseen so the next cycle retries them.

        Raises:
            ValueError: If there is nobody to send to
        """
        recipients = recipients if recipients is not None else self.config.recipients
        if not recipients:
            raise ValueError("No recipients configured, set RSS2EMAIL_RECIPIENTS")

        metrics: dict[str, Any] = {
            "feeds_processed": 0,
            "items_found": 0,
            "items_seen": 0,
            "messages_sent": 0,
            "errors": [],
        }

        self.logger.log_cycle_start(feed_count=len(self.feedlist.entries()))

        for url in self.feedlist.entries():
            try:
                feed = self.fetcher.fetch_feed(url)
            except FetchError as e:
                self.logger.error(str(e), feed_url=url, error=str(e))
                metrics["errors"].append(str(e))
                continue

            metrics["feeds_processed"] += 1
            metrics["items_found"] += len(feed.items)
            new_items = 0

            for item in feed.items:
                item_id = self.deduplicator.generate_item_id(url, item)
                if self.deduplicator.is_duplicate(item_id):
                    metrics["items_seen"] += 1
                    continue
                new_items += 1

                emailer = Emailer(
                    feed,
                    item,
                    config=self.config,
                    renderer=self.renderer,
                    transport=self.transport,
                    execution_id=self.execution_id,
                )
                try:
                    emailer.send(recipients, html_to_text(item.content), item.content)
                    self.deduplicator.store_item(item_id, url, item)
                except (DeliveryError, TemplateError, ClientError) as e:
                    error_msg = f"Failed to process item '{item.title}' from {url}: {e}"
                    self.logger.log_delivery(item.title, len(recipients), error=e)
                    self.logger.error(error_msg, feed_url=url, item_title=item.title)
                    metrics["errors"].append(error_msg)
                    continue

                metrics["messages_sent"] += len(recipients)
                self.logger.log_delivery(item.title, len(recipients))

            self.logger.log_feed_result(url, len(feed.items), new_items)

        self.logger.log_cycle_end(metrics, success=not metrics["errors"])
        return metrics
