"""Helpers that turn YouTube channels and subreddits into feed URLs."""

import re

import requests

from rssfeed_notifier.feed_parser import DEFAULT_TIMEOUT, USER_AGENT, FeedParseError

YOUTUBE_FEED_URL = "https://www.youtube.com/feeds/videos.xml?channel_id={channel_id}"
REDDIT_SORTS = ("hot", "new", "top", "rising")
REDDIT_PERIODS = ("hour", "day", "week", "month", "year", "all")

_CHANNEL_ID_RE = re.compile(r"^UC[\w-]{22}$")
_CHANNEL_PATH_RE = re.compile(r"/channel/(UC[\w-]{22})")
_PAGE_PATTERNS = (
    re.compile(r"channel_id=([^\"&]+)"),
    re.compile(r'"channelId":"(UC[\w-]+)"'),
)


def youtube_feed_url(channel: str, timeout: float = DEFAULT_TIMEOUT) -> str:
    """Resolve a channel id, channel URL, @handle or handle URL to a feed URL.

    Handles and vanity URLs need the channel page to be fetched so the
    channel id can be read out of it.

    Raises:
        FeedParseError: If the channel id cannot be determined.
    """
    channel = channel.strip()

    if _CHANNEL_ID_RE.match(channel):
        return YOUTUBE_FEED_URL.format(channel_id=channel)

    match = _CHANNEL_PATH_RE.search(channel)
    if match:
        return YOUTUBE_FEED_URL.format(channel_id=match.group(1))

    if channel.startswith("@"):
        page_url = f"https://www.youtube.com/{channel}"
    elif not channel.startswith("http"):
        page_url = f"https://www.youtube.com/@{channel}"
    else:
        page_url = channel

    try:
        response = requests.get(
            page_url, timeout=timeout, headers={"User-Agent": USER_AGENT}
        )
        response.raise_for_status()
    except requests.RequestException as e:
        raise FeedParseError(f"Could not load channel page: {e}")

    for pattern in _PAGE_PATTERNS:
        match = pattern.search(response.text)
        if match:
            return YOUTUBE_FEED_URL.format(channel_id=match.group(1))

    raise FeedParseError("Could not find channel ID. Make sure the URL is correct.")


def reddit_feed_url(subreddit: str, sort: str = "hot", period: str | None = None) -> str:
    """Build the RSS URL for a subreddit listing."""
    name = subreddit.strip()
    if name.startswith("r/"):
        name = name[2:]
    name = name.rstrip("/").strip()
    if not name:
        raise ValueError("Subreddit name is required")
    if sort not in REDDIT_SORTS:
        raise ValueError(f"Unknown sort '{sort}', expected one of {', '.join(REDDIT_SORTS)}")

    url = f"https://www.reddit.com/r/{name}/{sort}.rss"
    if sort == "top" and period:
        if period not in REDDIT_PERIODS:
            raise ValueError(
                f"Unknown period '{period}', expected one of {', '.join(REDDIT_PERIODS)}"
            )
        url += f"?t={period}"
    return url
