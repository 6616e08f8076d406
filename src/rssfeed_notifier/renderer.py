"""Turns feed items into Discord notification payloads."""

import re
from datetime import datetime
from urllib.parse import quote, urlparse

from rssfeed_notifier.feed_parser import strip_tags
from rssfeed_notifier.models import (
    FeedItem,
    GuildSettings,
    LinkButton,
    Payload,
    Subscription,
)

DEFAULT_COLOR = 0x3498DB
ALERT_COLOR = 0xFF9800
TITLE_MAX = 256
DESCRIPTION_MAX = 300
MAX_RELATED_LINKS = 3
MAX_BUTTONS = 5

DOMAIN_COLORS = {
    "github.com": "238636",
    "twitter.com": "1DA1F2",
    "x.com": "000000",
    "reddit.com": "FF4500",
    "youtube.com": "FF0000",
    "medium.com": "000000",
    "dev.to": "0A0A0A",
    "hackernews.com": "FF6600",
    "news.ycombinator.com": "FF6600",
    "stackoverflow.com": "F48024",
    "linkedin.com": "0A66C2",
    "facebook.com": "1877F2",
    "instagram.com": "E4405F",
    "twitch.tv": "9146FF",
    "discord.com": "5865F2",
}

RELATED_LINK_EMOJI = {
    "github": "\U0001F419",
    "gitlab": "\U0001F98A",
    "npm": "\U0001F4E6",
    "pypi": "\U0001F40D",
    "crates": "\U0001F4E6",
    "docs": "\U0001F4DA",
    "link": "\U0001F517",
}

_IMAGE_EXT_RE = re.compile(r"\.(jpg|jpeg|png|gif|webp)$", re.IGNORECASE)
_IMG_TAG_RE = re.compile(r"""<img[^>]+src=["']([^"']+)["']""", re.IGNORECASE)
_OG_IMAGE_RE = re.compile(
    r"""property=["']og:image["'][^>]+content=["']([^"']+)["']""", re.IGNORECASE
)
_BARE_IMAGE_RE = re.compile(
    r"""https?://[^\s"'<>]+\.(jpg|jpeg|png|gif|webp)(\?[^\s"'<>]*)?""", re.IGNORECASE
)
_GITHUB_REPO_RE = re.compile(r"https?://github\.com/([a-zA-Z0-9_-]+/[a-zA-Z0-9_.-]+)")
_TRACKING_MARKERS = ("pixel", "tracking", "1x1")


def render(
    sub: Subscription,
    item: FeedItem,
    feed_title: str | None = None,
    feed_image: str | None = None,
    settings: GuildSettings | None = None,
    now: datetime | None = None,
) -> Payload:
    """Build the notification payload for one item.

    Items without a publish date are stamped with ``now``.
    """
    settings = settings or GuildSettings.defaults(sub.guild_id)

    payload = Payload(
        title=truncate(item.title or "New Post", TITLE_MAX),
        url=item.link,
        description=truncate(item.snippet or item.body or "", DESCRIPTION_MAX),
        color=resolve_color(sub, settings),
        timestamp=item.published_at or now or datetime.utcnow(),
        footer_text=sub.feed_name or feed_title or "RSS Feed",
        footer_icon=feed_image,
        author=item.author,
        image_url=extract_image(item),
        content=f"<@&{sub.role_id}>" if sub.role_id else None,
    )

    if sub.show_buttons and settings.buttons_enabled and item.link:
        payload.buttons = build_buttons(item)

    return payload


def render_error_alert(
    sub: Subscription, error_count: int, now: datetime | None = None
) -> Payload:
    """Build the alert sent to a guild's alert channel for a failing feed."""
    return Payload(
        title=truncate(f"⚠️ Feed failing: {sub.display_name}", TITLE_MAX),
        url=sub.feed_url,
        description=truncate(
            f"Subscription #{sub.id} has failed {error_count} checks in a row.\n"
            f"Last error: {sub.last_error or 'unknown'}",
            DESCRIPTION_MAX,
        ),
        color=ALERT_COLOR,
        timestamp=now or datetime.utcnow(),
        footer_text="RSS Feed health",
    )


def resolve_color(sub: Subscription, settings: GuildSettings | None = None) -> int:
    """Subscription color, then domain color, then guild default, then blue."""
    for candidate in (
        sub.color,
        color_for_domain(sub.feed_url),
        settings.default_color if settings else None,
    ):
        value = _parse_color(candidate)
        if value is not None:
            return value
    return DEFAULT_COLOR


def color_for_domain(url: str | None) -> str | None:
    if not url:
        return None
    try:
        hostname = urlparse(url).hostname or ""
    except ValueError:
        return None
    if hostname.startswith("www."):
        hostname = hostname[4:]
    return DOMAIN_COLORS.get(hostname)


def extract_image(item: FeedItem) -> str | None:
    """Find the best image for an item, in fixed priority order."""
    hints = item.hints or {}

    for key in ("media_content", "media_thumbnail", "media_group"):
        url = _first_url(hints.get(key))
        if url:
            return url

    for enclosure in hints.get("enclosures") or []:
        url = enclosure.get("href") or enclosure.get("url")
        if not url:
            continue
        if (enclosure.get("type") or "").startswith("image/") or _IMAGE_EXT_RE.search(url):
            return url

    content = item.body or ""

    match = _IMG_TAG_RE.search(content)
    if match and not any(marker in match.group(1) for marker in _TRACKING_MARKERS):
        return match.group(1)

    match = _OG_IMAGE_RE.search(content)
    if match:
        return match.group(1)

    match = _BARE_IMAGE_RE.search(content)
    if match:
        return match.group(0)

    for text in (content, item.link or ""):
        match = _GITHUB_REPO_RE.search(text)
        if match:
            return f"https://opengraph.githubassets.com/1/{match.group(1)}"

    return None


def extract_related_links(item: FeedItem) -> list[dict]:
    """Collect up to three related links from feed metadata and the body."""
    related: list[dict] = []
    seen = {item.link}

    for link in (item.hints or {}).get("links") or []:
        href = link.get("href")
        if not href or href in seen:
            continue
        if link.get("rel") == "related" or "github.com" in href:
            link_type = related_link_type(href)
            related.append({"url": href, "title": link.get("title") or link_type, "type": link_type})
            seen.add(href)

    for match in _GITHUB_REPO_RE.finditer(item.body or ""):
        url = match.group(0)
        if url not in seen:
            related.append({"url": url, "title": "GitHub", "type": "github"})
            seen.add(url)

    return related[:MAX_RELATED_LINKS]


def related_link_type(url: str) -> str:
    if "github.com" in url:
        return "github"
    if "gitlab.com" in url:
        return "gitlab"
    if "npmjs.com" in url:
        return "npm"
    if "pypi.org" in url:
        return "pypi"
    if "crates.io" in url:
        return "crates"
    if "docs." in url:
        return "docs"
    return "link"


def build_buttons(item: FeedItem) -> list[LinkButton]:
    """Read, related links, then Share; at most five buttons."""
    buttons = [LinkButton(label="Read", url=item.link)]
    for related in extract_related_links(item):
        buttons.append(
            LinkButton(
                label=truncate(related["title"], 80),
                url=related["url"],
                emoji=RELATED_LINK_EMOJI.get(related["type"], RELATED_LINK_EMOJI["link"]),
            )
        )
    share_url = (
        "https://twitter.com/intent/tweet"
        f"?url={quote(item.link, safe='')}&text={quote(item.title or '', safe='')}"
    )
    buttons.append(LinkButton(label="Share", url=share_url))
    return buttons[:MAX_BUTTONS]


def truncate(text: str, max_length: int) -> str:
    """Strip HTML tags and cut to ``max_length`` characters with an ellipsis."""
    clean = strip_tags(text)
    if len(clean) <= max_length:
        return clean
    return clean[: max_length - 3] + "..."


def _first_url(entries) -> str | None:
    if isinstance(entries, dict):
        entries = [entries]
    for entry in entries or []:
        if isinstance(entry, dict) and entry.get("url"):
            return entry["url"]
    return None


def _parse_color(value: str | None) -> int | None:
    if not value:
        return None
    try:
        return int(value.lstrip("#"), 16)
    except ValueError:
        return None
