"""Unit tests for feed fetching and parsing."""

from datetime import UTC, datetime
from unittest.mock import Mock

import pytest
import requests

from rss2email.fetcher import (
    MAX_ATTEMPTS,
    RETRY_DELAY,
    USER_AGENT,
    FeedParseError,
    Fetcher,
    FetchError,
    parse_feed,
)

RSS_FEED = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Example Blog</title>
    <link>https://example.com/</link>
    <description>Posts</description>
    <item>
      <title>First post</title>
      <link>https://example.com/first</link>
      <guid>https://example.com/first</guid>
      <pubDate>Mon, 01 Jan 2024 10:00:00 GMT</pubDate>
      <description>&lt;p&gt;Hello &lt;b&gt;world&lt;/b&gt;&lt;/p&gt;</description>
    </item>
    <item>
      <title>Undated post</title>
      <link>https://example.com/undated</link>
      <description>No date here</description>
    </item>
  </channel>
</rss>
"""

LATIN1_FEED = """<?xml version="1.0" encoding="ISO-8859-1"?>
<rss version="2.0">
  <channel>
    <title>Caf\u00e9 cr\u00e8me</title>
    <link>https://cafe.example.com/</link>
    <description>Men\u00fa</description>
    <item>
      <title>Cr\u00eapes du jour</title>
      <link>https://cafe.example.com/crepes</link>
      <description>Tr\u00e8s bon</description>
    </item>
  </channel>
</rss>
""".encode("latin-1")

ATOM_FEED = b"""<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Atom Example</title>
  <link href="https://atom.example.com/"/>
  <id>urn:uuid:60a76c80-d399-11d9-b93C-0003939e0af6</id>
  <updated>2024-01-01T10:00:00Z</updated>
  <entry>
    <title>Atom entry</title>
    <link href="https://atom.example.com/entry"/>
    <id>urn:uuid:1225c695-cfb8-4ebb-aaaa-80da344efa6a</id>
    <published>2024-01-02T08:30:00Z</published>
    <updated>2024-01-02T08:30:00Z</updated>
    <content type="html">&lt;div&gt;Body&lt;/div&gt;</content>
  </entry>
</feed>
"""


def make_session(*responses):
    """Build a session stub whose get() yields the given bodies or errors."""
    session = Mock()
    session.headers = {}

    results = []
    for response in responses:
        if isinstance(response, Exception):
            results.append(response)
        else:
            results.append(
                Mock(content=response, status_code=200, raise_for_status=Mock())
            )
    session.get.side_effect = results
    return session


class TestParseFeed:
    """Unit tests for the feedparser adapter."""

    def test_rss_feed_is_normalized(self):
        feed = parse_feed(RSS_FEED.decode("utf-8"), "https://example.com/feed")

        assert feed.url == "https://example.com/feed"
        assert feed.title == "Example Blog"
        assert feed.link == "https://example.com/"
        assert len(feed.items) == 2

        first = feed.items[0]
        assert first.title == "First post"
        assert first.link == "https://example.com/first"
        assert first.guid == "https://example.com/first"
        assert first.content == "<p>Hello <b>world</b></p>"
        assert first.published == datetime(2024, 1, 1, 10, 0, tzinfo=UTC)
        assert first.raw is not None

        assert feed.items[1].published is None
        assert feed.items[1].guid is None

    def test_atom_feed_is_normalized(self):
        feed = parse_feed(ATOM_FEED.decode("utf-8"))

        assert feed.title == "Atom Example"
        entry = feed.items[0]
        assert entry.link == "https://atom.example.com/entry"
        assert entry.content == "<div>Body</div>"
        assert entry.guid == "urn:uuid:1225c695-cfb8-4ebb-aaaa-80da344efa6a"
        assert entry.published == datetime(2024, 1, 2, 8, 30, tzinfo=UTC)

    def test_non_feed_is_rejected(self):
        with pytest.raises(FeedParseError, match="https://example.com/page"):
            parse_feed("<html><body>Not a feed</body></html>", "https://example.com/page")

    def test_url_like_text_is_not_fetched(self):
        with pytest.raises(FeedParseError):
            parse_feed("https://example.com/feed")


class TestFetcher:
    """Unit tests for Fetcher and its retry behaviour."""

    def test_user_agent_is_set(self):
        session = make_session(RSS_FEED)
        Fetcher(session=session)

        assert session.headers["User-Agent"] == USER_AGENT

    def test_fetch_returns_raw_bytes(self):
        session = make_session(RSS_FEED)
        fetcher = Fetcher(session=session, timeout=12)

        body = fetcher.fetch("https://example.com/feed")

        assert body == RSS_FEED
        session.get.assert_called_once_with("https://example.com/feed", timeout=12)

    def test_declared_charset_is_honoured(self):
        fetcher = Fetcher(session=make_session(LATIN1_FEED), sleep=Mock())

        feed = fetcher.fetch_feed("https://cafe.example.com/feed")

        assert feed.title == "Caf\u00e9 cr\u00e8me"
        assert feed.items[0].title == "Cr\u00eapes du jour"
        assert feed.items[0].content == "Tr\u00e8s bon"

    def test_fetch_feed_first_attempt_succeeds(self):
        sleep = Mock()
        fetcher = Fetcher(session=make_session(RSS_FEED), sleep=sleep)

        feed = fetcher.fetch_feed("https://example.com/feed")

        assert feed.title == "Example Blog"
        sleep.assert_called_once_with(0)

    def test_fetch_feed_recovers_after_failures(self):
        sleep = Mock()
        session = make_session(
            requests.ConnectionError("refused"),
            b"garbage",
            RSS_FEED,
        )
        fetcher = Fetcher(session=session, sleep=sleep)

        feed = fetcher.fetch_feed("https://example.com/feed")

        assert feed.title == "Example Blog"
        assert session.get.call_count == 3
        assert [c.args[0] for c in sleep.call_args_list] == pytest.approx([0, 0.2, 0.4])

    def test_always_failing_source_exhausts_attempts(self):
        sleep = Mock()
        session = Mock()
        session.headers = {}
        session.get.side_effect = requests.ConnectionError("refused")
        fetcher = Fetcher(session=session, sleep=sleep)

        with pytest.raises(FetchError) as excinfo:
            fetcher.fetch_feed("https://down.example.com/feed")

        assert session.get.call_count == MAX_ATTEMPTS == 5
        delays = [c.args[0] for c in sleep.call_args_list]
        assert delays == pytest.approx([i * RETRY_DELAY for i in range(MAX_ATTEMPTS)])
        assert sum(delays) == pytest.approx(2.0)

        error = excinfo.value
        assert error.url == "https://down.example.com/feed"
        assert "https://down.example.com/feed" in str(error)
        assert "refused" in str(error)
        assert isinstance(error.__cause__, requests.ConnectionError)

    def test_parse_failures_are_retried_like_network_failures(self):
        sleep = Mock()
        session = make_session(*([b"not a feed"] * MAX_ATTEMPTS))
        fetcher = Fetcher(session=session, sleep=sleep)

        with pytest.raises(FetchError) as excinfo:
            fetcher.fetch_feed("https://example.com/page")

        assert session.get.call_count == MAX_ATTEMPTS
        assert isinstance(excinfo.value.__cause__, FeedParseError)

    def test_http_error_status_is_a_failure(self):
        response = Mock(content=b"", status_code=404)
        response.raise_for_status.side_effect = requests.HTTPError("404 Not Found")
        session = Mock()
        session.headers = {}
        session.get.return_value = response
        fetcher = Fetcher(session=session, sleep=Mock())

        with pytest.raises(FetchError, match="404"):
            fetcher.fetch_feed("https://example.com/missing")
