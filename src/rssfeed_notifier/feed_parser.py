"""RSS/Atom feed fetching and parsing using requests and feedparser."""

import re
from datetime import datetime
from time import struct_time
from urllib.parse import urlparse

import feedparser
import requests

from rssfeed_notifier.models import FeedItem, ParsedFeed

DEFAULT_TIMEOUT = 10.0
USER_AGENT = "rssfeed-notifier/0.1"

_TAG_RE = re.compile(r"<[^>]*>")


class FeedParseError(Exception):
    """Raised when a feed cannot be fetched or parsed."""


def fetch_and_parse(url: str, timeout: float = DEFAULT_TIMEOUT) -> ParsedFeed:
    """Fetch and parse an RSS or Atom feed from a URL.

    Args:
        url: The feed URL to fetch and parse.
        timeout: Seconds to wait for the server before giving up.

    Returns:
        ParsedFeed with feed metadata and items in document order.

    Raises:
        FeedParseError: If the URL is invalid, unreachable, or not a valid feed.
    """
    _validate_url(url)

    try:
        response = requests.get(
            url,
            timeout=timeout,
            headers={"User-Agent": USER_AGENT},
            allow_redirects=True,
        )
    except requests.Timeout:
        raise FeedParseError(f"Timed out after {timeout:g}s fetching feed")
    except requests.RequestException as e:
        raise FeedParseError(f"Could not reach URL: {e}")

    if response.status_code in (401, 403):
        raise FeedParseError(
            "Feed requires authentication. Ensure the URL is publicly accessible."
        )

    if response.status_code >= 400:
        raise FeedParseError(f"Could not reach URL: HTTP {response.status_code}")

    return parse_document(response.content)


def parse_document(content: bytes | str) -> ParsedFeed:
    """Parse an already fetched feed document."""
    parsed = feedparser.parse(content)

    if not parsed.feed.get("title") and not parsed.entries:
        raise FeedParseError("URL does not point to a valid RSS or Atom feed")

    warnings: list[str] = []
    if parsed.bozo:
        warnings.append(f"Feed has formatting issues: {parsed.bozo_exception}")

    image = parsed.feed.get("image") or {}

    return ParsedFeed(
        title=parsed.feed.get("title"),
        description=parsed.feed.get("description") or parsed.feed.get("subtitle"),
        site_link=parsed.feed.get("link"),
        image_url=image.get("href") or image.get("url"),
        items=[build_item(entry) for entry in parsed.entries],
        warnings=warnings,
    )


def build_item(entry: dict) -> FeedItem:
    """Normalize a feedparser entry into a FeedItem."""
    title = entry.get("title") or None
    link = entry.get("link") or None
    summary = entry.get("summary") or entry.get("description") or ""

    body = summary
    for content in entry.get("content") or []:
        if content.get("value"):
            body = content["value"]
            break

    snippet = strip_tags(summary).strip() if summary else None

    key = entry.get("id") or entry.get("guid") or link or title

    return FeedItem(
        key=key or None,
        title=title,
        link=link,
        published_at=_parse_date(entry),
        snippet=snippet or None,
        body=body or None,
        author=entry.get("author") or None,
        hints={
            "media_content": list(entry.get("media_content") or []),
            "media_thumbnail": list(entry.get("media_thumbnail") or []),
            "media_group": list(entry.get("media_group") or []),
            "enclosures": list(entry.get("enclosures") or []),
            "links": list(entry.get("links") or []),
        },
    )


def strip_tags(text: str) -> str:
    """Remove HTML tags from a string."""
    return _TAG_RE.sub("", text)


def _validate_url(url: str) -> None:
    """Validate that the URL has a valid format."""
    try:
        result = urlparse(url)
    except ValueError:
        raise FeedParseError("Invalid URL format")
    if not result.scheme or not result.netloc:
        raise FeedParseError("Invalid URL format")
    if result.scheme not in ("http", "https"):
        raise FeedParseError("Invalid URL format: only http and https are supported")


def _parse_date(entry: dict) -> datetime | None:
    """Parse publication date from a feedparser entry."""
    for field in ("published_parsed", "updated_parsed"):
        time_struct = entry.get(field)
        if isinstance(time_struct, struct_time):
            try:
                return datetime(*time_struct[:6])
            except (ValueError, OverflowError):
                continue
    return None
