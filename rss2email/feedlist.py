"""Feed list management for rss2email.

The feed list is a plain text file holding one feed URL per line. Blank lines
and lines starting with ``#`` are kept as comments attached to the URL that
follows them, so user annotations survive add/remove cycles.
"""

from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TextIO

from .config import default_feeds_path
from .fetcher import Fetcher, FetchError
from .logging_config import create_execution_logger
from .models import Feed, SourceEntry

COMMENT_MARKER = "#"


class FeedListError(RuntimeError):
    """Raised when the feed list cannot be persisted."""


class FeedAddError(RuntimeError):
    """A feed URL that could not be added to the list."""

    def __init__(self, url: str, message: str):
        super().__init__(message)
        self.url = url


def describe_feed(feed: Feed, now: datetime | None = None) -> str:
    """Summarize a feed as an entry count and the age range of its items.

    Returns e.g. "3 entries, aged 1-10 days". Ages are whole days. If any item
    has no publish time only the count is reported.
    """
    if now is None:
        now = datetime.now(UTC)

    noun = "entry" if len(feed.items) == 1 else "entries"
    info = f"{len(feed.items)} {noun}"

    newest: int | None = None
    oldest: int | None = None
    for item in feed.items:
        if item.published is None:
            return info

        age = int((now - item.published) / timedelta(days=1))
        if oldest is None or age > oldest:
            oldest = age
        if newest is None or age < newest:
            newest = age

    if newest is None:
        return info

    return f"{info}, aged {newest}-{oldest} days"


class FeedList:
    """Ordered, deduplicated list of feed URLs backed by a text file."""

    def __init__(
        self,
        path: str | Path | None = None,
        fetcher: Fetcher | None = None,
        execution_id: str | None = None,
    ):
        """Initialize the feed list and load it from disk.

        Args:
            path: Feed list file, defaults to ~/.rss2email/feeds
            fetcher: Fetcher used to validate added feeds and gather statistics
            execution_id: Execution ID for logging context
        """
        self.path = Path(path) if path else default_feeds_path()
        self.fetcher = fetcher or Fetcher(execution_id=execution_id)
        self.logger = create_execution_logger("feedlist", execution_id)
        self.soft_errors: list[Exception] = []
        self._entries: list[SourceEntry] = []
        self.load()

    def load(self) -> None:
        """(Re)load entries from the backing file.

        A missing file leaves the list empty. Repeated URLs keep their first
        occurrence only.

        Raises:
            FeedListError: If the file exists but cannot be read as UTF-8 text
        """
        self._entries = []

        try:
            with open(self.path, encoding="utf-8") as f:
                lines = f.readlines()
        except FileNotFoundError:
            self.logger.debug("Feed list not found, starting empty", path=str(self.path))
            return
        except (OSError, UnicodeDecodeError) as e:
            raise FeedListError(f"error reading {self.path} - {e}") from e

        seen = set()
        comments: list[str] = []
        for raw_line in lines:
            line = raw_line.strip()

            if not line or line.startswith(COMMENT_MARKER):
                comments.append(line)
                continue

            entry = SourceEntry(url=line, comments=comments)
            comments = []

            if entry.url in seen:
                self.logger.debug("Dropping repeated feed", feed_url=entry.url)
                continue

            seen.add(entry.url)
            self._entries.append(entry)

    def entries(self) -> list[str]:
        """Return the configured feed URLs in order."""
        return [entry.url for entry in self._entries]

    def add(self, *urls: str) -> list[FeedAddError]:
        """Add feeds to the list, skipping ones already present.

        Each new URL is fetched first; its title becomes the comment above it.
        URLs that cannot be fetched are not added. Call save() to persist.

        Returns:
            One error per URL that could not be added
        """
        seen = set(self.entries())
        errors: list[FeedAddError] = []

        for url in urls:
            if url in seen:
                continue

            try:
                feed = self.fetcher.fetch_feed(url)
            except FetchError as e:
                self.logger.warning(f"Feed not added: {e}", feed_url=url, error=str(e))
                errors.append(FeedAddError(url, f"{url}: not added, {e}"))
                continue

            comments = [""]
            if feed.title:
                comments.append(f"{COMMENT_MARKER} {feed.title}")

            self._entries.append(SourceEntry(url=url, comments=comments))
            seen.add(url)
            self.logger.info("Feed added", feed_url=url)

        return errors

    def delete(self, url: str) -> None:
        """Remove a feed from the list. Call save() to persist."""
        self._entries = [entry for entry in self._entries if entry.url != url]

    def save(self) -> None:
        """Write the list, including comments, to its backing file.

        The file is rewritten in place; a failure part-way through can leave
        it truncated.

        Raises:
            FeedListError: If the directory or file cannot be written
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                self.write_all(f, verbose=False)
        except OSError as e:
            raise FeedListError(f"error writing to {self.path} - {e}") from e

        self.logger.info(
            "Feed list saved", path=str(self.path), feed_count=len(self._entries)
        )

    def feed_info(self, url: str) -> str:
        """Describe the live feed at url, or return "" if it cannot be fetched."""
        try:
            feed = self.fetcher.fetch_feed(url)
        except FetchError as e:
            self.soft_errors.append(e)
            self.logger.warning(
                f"Statistics unavailable for {url}: {e}", feed_url=url, error=str(e)
            )
            return ""

        return describe_feed(feed)

    def write_all(self, writer: TextIO, verbose: bool = False) -> None:
        """Write every entry with its comments.

        With verbose set each URL is preceded by a comment describing the
        live feed; feeds that cannot be fetched get no such line and are
        recorded in soft_errors, which each verbose write starts afresh.
        """
        if verbose:
            self.soft_errors = []

        for entry in self._entries:
            for comment in entry.comments:
                writer.write(f"{comment}\n")

            if verbose:
                info = self.feed_info(entry.url)
                if info:
                    writer.write(f"{COMMENT_MARKER} {info}\n")

            writer.write(f"{entry.url}\n")
