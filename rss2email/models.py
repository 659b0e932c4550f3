"""Data models for rss2email."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class SourceEntry:
    """A feed URL plus the comment lines that preceded it in the feed list."""

    url: str
    comments: list[str] = field(default_factory=list)


@dataclass
class FeedItem:
    """Represents a single RSS/Atom feed item."""

    title: str
    link: str
    published: datetime | None
    content: str
    guid: str | None = None
    raw: Any = None


@dataclass
class Feed:
    """Represents a parsed RSS/Atom feed."""

    url: str
    title: str
    link: str
    items: list[FeedItem] = field(default_factory=list)
    raw: Any = None


@dataclass
class NotificationContext:
    """Values exposed to the email template for one item and recipient."""

    feed: str
    feed_title: str
    subject: str
    link: str
    text: str  # quoted-printable
    html: str  # quoted-printable
    from_address: str
    to_address: str
    rss_feed: Feed | None = None
    rss_item: FeedItem | None = None
