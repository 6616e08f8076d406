"""Shared test fixtures for RSS Feed Notifier tests."""

import os
import tempfile
from datetime import datetime

import pytest

from rssfeed_notifier.database import Database
from rssfeed_notifier.dispatcher import DeliveryError, Dispatcher
from rssfeed_notifier.models import FeedItem, ParsedFeed, Subscription


SAMPLE_RSS_XML = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:media="http://search.yahoo.com/mrss/">
  <channel>
    <title>Test Feed</title>
    <link>https://example.com</link>
    <description>A test RSS feed</description>
    <image>
      <url>https://example.com/logo.png</url>
      <title>Test Feed</title>
      <link>https://example.com</link>
    </image>
    <item>
      <title>First Article</title>
      <link>https://example.com/article-1</link>
      <guid>article-1</guid>
      <author>jane@example.com (Jane)</author>
      <description>&lt;p&gt;Description of the &lt;b&gt;first&lt;/b&gt; article&lt;/p&gt;</description>
      <pubDate>Fri, 13 Feb 2026 10:00:00 GMT</pubDate>
      <media:content url="https://example.com/media-1.jpg" medium="image"/>
    </item>
    <item>
      <title>Second Article</title>
      <link>https://example.com/article-2</link>
      <guid>article-2</guid>
      <description>Description of the second article</description>
      <pubDate>Fri, 13 Feb 2026 11:00:00 GMT</pubDate>
    </item>
  </channel>
</rss>"""

SAMPLE_ATOM_XML = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Test Atom Feed</title>
  <link href="https://example.com"/>
  <subtitle>A test Atom feed</subtitle>
  <entry>
    <title>Atom Entry 1</title>
    <link href="https://example.com/entry-1"/>
    <link rel="related" href="https://pypi.org/project/example" title="PyPI"/>
    <id>urn:uuid:entry-1</id>
    <summary>Summary of entry 1</summary>
    <updated>2026-02-13T10:00:00Z</updated>
  </entry>
</feed>"""

SAMPLE_NOT_A_FEED_XML = """<?xml version="1.0" encoding="UTF-8"?>
<html>
  <body>This is not a feed</body>
</html>"""


@pytest.fixture
def tmp_db_path():
    """Provide a temporary SQLite database path."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        path = f.name
    yield path
    for suffix in ("", "-wal", "-shm"):
        try:
            os.unlink(path + suffix)
        except OSError:
            pass


@pytest.fixture
def db(tmp_db_path):
    """A connected database with the schema created."""
    database = Database(tmp_db_path)
    database.connect()
    yield database
    database.close()


@pytest.fixture
def sample_rss_xml():
    """Sample valid RSS 2.0 XML."""
    return SAMPLE_RSS_XML


@pytest.fixture
def sample_atom_xml():
    """Sample valid Atom XML."""
    return SAMPLE_ATOM_XML


@pytest.fixture
def sample_not_a_feed_xml():
    """Sample XML that is not a feed."""
    return SAMPLE_NOT_A_FEED_XML


class FakeFetcher:
    """Stands in for fetch_and_parse, returning a preset feed or raising."""

    def __init__(self, feed: ParsedFeed | None = None, error: Exception | None = None):
        self.feed = feed
        self.error = error
        self.calls: list[str] = []

    def __call__(self, url: str, timeout: float = 10.0) -> ParsedFeed:
        self.calls.append(url)
        if self.error is not None:
            raise self.error
        return self.feed


class RecordingSink:
    """Delivery sink that records sends and can be told to fail."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list = []

    def send(self, target, payload) -> None:
        if self.fail:
            raise DeliveryError("Missing Access")
        self.sent.append((target, payload))


def make_feed(*items: FeedItem, title: str = "Test Feed") -> ParsedFeed:
    return ParsedFeed(
        title=title,
        description=None,
        site_link="https://example.com",
        image_url=None,
        items=list(items),
    )


def make_item(key: str = "def", **kwargs) -> FeedItem:
    kwargs.setdefault("title", "New Rust release")
    kwargs.setdefault("link", f"https://x/{key}")
    return FeedItem(key=key, **kwargs)


@pytest.fixture
def add_subscription(db):
    """Factory that stores a subscription with sensible defaults."""

    def _add(**kwargs) -> Subscription:
        kwargs.setdefault("guild_id", "g1")
        kwargs.setdefault("channel_id", "c1")
        kwargs.setdefault("feed_url", "https://example.com/feed.xml")
        sub = db.add_subscription(Subscription(**kwargs))
        assert sub is not None
        return sub

    return _add


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def dispatcher(sink):
    return Dispatcher(sink)


@pytest.fixture
def now():
    return datetime(2026, 2, 13, 12, 0, 0)

