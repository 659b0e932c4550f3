"""Unit tests for the poll-cycle processor."""

from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError

from rss2email.config import Config
from rss2email.dedup import Deduplicator
from rss2email.emailer import DeliveryError, Transport
from rss2email.feedlist import FeedList
from rss2email.fetcher import Fetcher, FetchError
from rss2email.models import Feed, FeedItem
from rss2email.processor import Processor, html_to_text

GOOD_URL = "https://example.com/feed"
BAD_URL = "https://down.example/feed"


def make_feed():
    items = [
        FeedItem(title="Seen", link=f"{GOOD_URL}/seen", published=None, content="<p>Old</p>", guid="seen"),
        FeedItem(title="New one", link=f"{GOOD_URL}/1", published=None, content="<p>First</p>", guid="new-1"),
        FeedItem(title="New two", link=f"{GOOD_URL}/2", published=None, content="Second", guid="new-2"),
    ]
    return Feed(url=GOOD_URL, title="Example", link="https://example.com/", items=items)


class TestHtmlToText:
    """Plain-text body generation."""

    def test_html_is_flattened(self):
        html = "<h1>Title</h1><p>Some   <b>bold</b>\n text</p><script>alert(1)</script>"

        assert html_to_text(html) == "Title\n\nSome bold text"

    def test_plain_text_is_kept(self):
        assert html_to_text("Line one\n\n  Line   two ") == "Line one\n\nLine two"

    def test_empty(self):
        assert html_to_text("") == ""
        assert html_to_text(None) == ""


class TestProcessor:
    """Unit tests for Processor.run."""

    def setup_method(self):
        self.fetcher = Mock(spec=Fetcher)
        self.fetcher.fetch_feed.side_effect = self._fetch_feed
        self.deduplicator = Mock(spec=Deduplicator)
        self.deduplicator.generate_item_id.side_effect = lambda url, item: item.guid
        self.deduplicator.is_duplicate.side_effect = lambda item_id: item_id == "seen"
        self.transport = Mock(spec=Transport)
        self.transport.name = "stub"

    @staticmethod
    def _fetch_feed(url):
        if url == GOOD_URL:
            return make_feed()
        raise FetchError(url, f"error processing {url} - connection refused")

    def make_processor(self, tmp_path, urls, recipients=("alice@example.com",)):
        feeds_path = tmp_path / "feeds"
        feeds_path.write_text("".join(f"{url}\n" for url in urls), encoding="utf-8")
        config = Config(
            home=tmp_path,
            feeds_path=feeds_path,
            template_path=tmp_path / "email.tmpl",
            recipients=list(recipients),
        )
        feedlist = FeedList(feeds_path, fetcher=self.fetcher)
        return Processor(config, feedlist, self.deduplicator, transport=self.transport)

    def test_only_unseen_items_are_sent(self, tmp_path):
        processor = self.make_processor(tmp_path, [GOOD_URL])

        metrics = processor.run()

        assert metrics == {
            "feeds_processed": 1,
            "items_found": 3,
            "items_seen": 1,
            "messages_sent": 2,
            "errors": [],
        }
        assert self.transport.deliver.call_count == 2
        stored = [c.args[0] for c in self.deduplicator.store_item.call_args_list]
        assert stored == ["new-1", "new-2"]

    def test_every_recipient_is_mailed(self, tmp_path):
        processor = self.make_processor(
            tmp_path, [GOOD_URL], recipients=("alice@example.com", "bob@example.com")
        )

        metrics = processor.run()

        assert metrics["messages_sent"] == 4
        recipients = [c.args[0] for c in self.transport.deliver.call_args_list]
        assert recipients == ["alice@example.com", "bob@example.com"] * 2

    def test_message_carries_text_and_html(self, tmp_path):
        processor = self.make_processor(tmp_path, [GOOD_URL])

        processor.run()

        message = self.transport.deliver.call_args_list[0].args[1]
        assert b"Subject: [rss2email] New one" in message
        assert b"<p>First</p>" in message

    def test_fetch_failure_does_not_stop_cycle(self, tmp_path):
        processor = self.make_processor(tmp_path, [BAD_URL, GOOD_URL])

        metrics = processor.run()

        assert metrics["feeds_processed"] == 1
        assert metrics["messages_sent"] == 2
        assert len(metrics["errors"]) == 1
        assert BAD_URL in metrics["errors"][0]

    def test_failed_delivery_leaves_item_unseen(self, tmp_path):
        self.transport.deliver.side_effect = [DeliveryError("rejected"), None]
        processor = self.make_processor(tmp_path, [GOOD_URL])

        metrics = processor.run()

        assert metrics["messages_sent"] == 1
        assert len(metrics["errors"]) == 1
        assert "New one" in metrics["errors"][0]
        stored = [c.args[0] for c in self.deduplicator.store_item.call_args_list]
        assert stored == ["new-2"]

    def test_store_failure_is_recorded(self, tmp_path):
        self.deduplicator.store_item.side_effect = ClientError(
            {"Error": {"Code": "AccessDeniedException"}}, "PutItem"
        )
        processor = self.make_processor(tmp_path, [GOOD_URL])

        metrics = processor.run()

        assert len(metrics["errors"]) == 2

    def test_no_recipients_fails_before_fetching(self, tmp_path):
        processor = self.make_processor(tmp_path, [GOOD_URL], recipients=())

        with pytest.raises(ValueError, match="recipients"):
            processor.run()

        self.fetcher.fetch_feed.assert_not_called()

    def test_explicit_recipients_override_config(self, tmp_path):
        processor = self.make_processor(tmp_path, [GOOD_URL], recipients=())

        metrics = processor.run(["carol@example.com"])

        assert metrics["messages_sent"] == 2
        assert self.transport.deliver.call_args.args[0] == "carol@example.com"
