"""Feed fetching and parsing for rss2email."""

import io
import time
from collections.abc import Callable
from datetime import UTC, datetime

import feedparser
import requests
from dateutil import parser as date_parser

from .logging_config import create_execution_logger
from .models import Feed, FeedItem

# Some sites (reddit among them) reject generic spider user-agents.
USER_AGENT = "rss2email (https://github.com/skx/rss2email)"

MAX_ATTEMPTS = 5
RETRY_DELAY = 0.2  # seconds, multiplied by the attempt index


class FeedParseError(ValueError):
    """Raised when fetched content is not a recognisable feed."""


class FetchError(RuntimeError):
    """Raised when a feed could not be fetched and parsed after all retries."""

    def __init__(self, url: str, message: str):
        super().__init__(message)
        self.url = url


def parse_feed(document: bytes | str, url: str = "") -> Feed:
    """Parse a raw feed document into a Feed.

    Bytes are handed to feedparser untouched so it can honour the charset the
    feed declares. Text is encoded as UTF-8 first.

    Args:
        document: Raw RSS/Atom document
        url: Address the document was fetched from

    Returns:
        Normalized Feed object

    Raises:
        FeedParseError: If feedparser does not recognise the document
    """
    # A file object stops feedparser treating the text as a URL or path.
    if isinstance(document, str):
        document = document.encode("utf-8")
    parsed = feedparser.parse(io.BytesIO(document))

    if not parsed.get("version"):
        reason = parsed.get("bozo_exception") or "unrecognised feed format"
        raise FeedParseError(f"error parsing {url} contents: {reason}")

    channel = parsed.feed
    return Feed(
        url=url,
        title=channel.get("title", ""),
        link=channel.get("link", ""),
        items=[normalize_item(entry) for entry in parsed.entries],
        raw=parsed,
    )


def normalize_item(entry) -> FeedItem:
    """Normalize a raw feedparser entry into a FeedItem."""
    content = ""
    if entry.get("content"):
        content = entry.content[0].get("value", "")
    elif entry.get("summary"):
        content = entry.summary
    elif entry.get("description"):
        content = entry.description

    return FeedItem(
        title=entry.get("title", ""),
        link=entry.get("link", ""),
        published=_published_at(entry),
        content=content,
        guid=entry.get("id") or entry.get("guid") or None,
        raw=entry,
    )


def _published_at(entry) -> datetime | None:
    """Extract the publish time of an entry as an aware UTC datetime."""
    published_parsed = entry.get("published_parsed")
    if published_parsed:
        return datetime(*published_parsed[:6], tzinfo=UTC)

    published = entry.get("published")
    if not published:
        return None

    try:
        value = date_parser.parse(published)
    except (ValueError, TypeError, OverflowError):
        return None

    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class Fetcher:
    """Fetches feeds over HTTP, retrying with a linearly growing delay."""

    def __init__(
        self,
        timeout: int = 30,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
        execution_id: str | None = None,
    ):
        """Initialize Fetcher.

        Args:
            timeout: HTTP request timeout in seconds
            session: Optional requests session to use
            sleep: Function used to wait between attempts
            execution_id: Execution ID for logging context
        """
        self.timeout = timeout
        self.sleep = sleep
        self.logger = create_execution_logger("fetcher", execution_id)
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT})

    def fetch(self, url: str) -> bytes:
        """Fetch the raw body of a URL, undecoded.

        Raises:
            requests.RequestException: If the download fails
        """
        response = self.session.get(url, timeout=self.timeout)
        response.raise_for_status()
        self.logger.debug(
            "Feed downloaded",
            feed_url=url,
            status_code=response.status_code,
            content_length=len(response.content),
        )
        return response.content

    def fetch_feed(self, url: str) -> Feed:
        """Fetch and parse a feed, retrying up to MAX_ATTEMPTS times.

        Network and parse failures are treated alike. Before attempt i the
        fetcher waits i * RETRY_DELAY seconds, so the first attempt is
        immediate.

        Raises:
            FetchError: If every attempt failed; chained from the last error
        """
        last_error: Exception | None = None

        for attempt in range(MAX_ATTEMPTS):
            self.sleep(attempt * RETRY_DELAY)

            try:
                return parse_feed(self.fetch(url), url)
            except (requests.RequestException, FeedParseError) as e:
                last_error = e
                self.logger.warning(
                    f"Attempt {attempt + 1} for {url} failed: {e}",
                    feed_url=url,
                    attempt=attempt + 1,
                    error=str(e),
                )

        raise FetchError(url, f"error processing {url} - {last_error}") from last_error
