"""Data models for RSS Feed Notifier."""

from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any


class _Unset:
    """Marker for patch fields that should be left as they are."""

    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()

DEFAULT_ALERT_THRESHOLD = 3


@dataclass
class Subscription:
    """Binds one feed to one delivery target within a guild."""

    guild_id: str
    channel_id: str
    feed_url: str
    feed_name: str | None = None
    last_item_guid: str | None = None
    paused: bool = False
    include_keywords: str | None = None
    exclude_keywords: str | None = None
    use_regex: bool = False
    max_posts_per_hour: int | None = None
    posts_this_hour: int = 0
    hour_started_at: datetime | None = None
    webhook_url: str | None = None
    webhook_name: str | None = None
    webhook_avatar: str | None = None
    error_count: int = 0
    last_error: str | None = None
    last_check_at: datetime | None = None
    color: str | None = None
    role_id: str | None = None
    category: str | None = None
    show_buttons: bool = True
    created_at: datetime = field(default_factory=datetime.utcnow)
    id: int | None = None

    @property
    def display_name(self) -> str:
        return self.feed_name or self.feed_url


@dataclass
class SubscriptionPatch:
    """Partial update for a subscription.

    Fields left as ``UNSET`` are not touched; ``None`` clears the column.
    """

    channel_id: Any = UNSET
    feed_name: Any = UNSET
    paused: Any = UNSET
    include_keywords: Any = UNSET
    exclude_keywords: Any = UNSET
    use_regex: Any = UNSET
    max_posts_per_hour: Any = UNSET
    webhook_url: Any = UNSET
    webhook_name: Any = UNSET
    webhook_avatar: Any = UNSET
    color: Any = UNSET
    role_id: Any = UNSET
    category: Any = UNSET
    show_buttons: Any = UNSET

    def changes(self) -> dict[str, Any]:
        """Return the column/value pairs that are set on this patch."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        }


@dataclass
class GuildSettings:
    """Guild-wide defaults for notifications and error alerts."""

    guild_id: str
    alert_channel_id: str | None = None
    alert_threshold: int = DEFAULT_ALERT_THRESHOLD
    default_color: str | None = None
    buttons_enabled: bool = True
    created_at: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def defaults(cls, guild_id: str) -> "GuildSettings":
        return cls(guild_id=guild_id)


@dataclass
class GuildSettingsPatch:
    """Partial update for guild settings (``UNSET`` = leave, ``None`` = clear)."""

    alert_channel_id: Any = UNSET
    alert_threshold: Any = UNSET
    default_color: Any = UNSET
    buttons_enabled: Any = UNSET

    def changes(self) -> dict[str, Any]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        }


@dataclass
class NotificationRecord:
    """One delivered notification, used for stats and duplicate detection."""

    guild_id: str
    subscription_id: int
    item_guid: str
    item_title: str | None = None
    item_link: str | None = None
    posted_at: datetime = field(default_factory=datetime.utcnow)
    id: int | None = None


@dataclass
class FeedItem:
    """Normalized view of a single feed entry. Never persisted."""

    key: str | None
    title: str | None = None
    link: str | None = None
    published_at: datetime | None = None
    snippet: str | None = None
    body: str | None = None
    author: str | None = None
    # media_content, media_thumbnail, media_group, enclosures, links
    hints: dict = field(default_factory=dict)


@dataclass
class ParsedFeed:
    """Result of fetching and parsing an RSS/Atom feed."""

    title: str | None
    description: str | None
    site_link: str | None
    image_url: str | None
    items: list[FeedItem]
    warnings: list[str] = field(default_factory=list)

    @property
    def latest(self) -> FeedItem | None:
        return self.items[0] if self.items else None


@dataclass
class CheckResult:
    """Outcome of checking one subscription."""

    posted: bool
    error: str | None = None


@dataclass
class LinkButton:
    """A link affordance rendered under a notification."""

    label: str
    url: str
    emoji: str | None = None


@dataclass
class Payload:
    """A rendered notification ready for delivery."""

    title: str
    color: int
    timestamp: datetime
    footer_text: str
    url: str | None = None
    description: str = ""
    footer_icon: str | None = None
    author: str | None = None
    image_url: str | None = None
    content: str | None = None
    buttons: list[LinkButton] = field(default_factory=list)

    def to_discord(self) -> dict:
        """Build the Discord message body (content, embeds, components)."""
        embed: dict[str, Any] = {
            "title": self.title,
            "color": self.color,
            "timestamp": self.timestamp.isoformat(),
            "footer": {"text": self.footer_text},
        }
        if self.url:
            embed["url"] = self.url
        if self.description:
            embed["description"] = self.description
        if self.footer_icon:
            embed["footer"]["icon_url"] = self.footer_icon
        if self.author:
            embed["author"] = {"name": self.author}
        if self.image_url:
            embed["image"] = {"url": self.image_url}

        message: dict[str, Any] = {"embeds": [embed]}
        if self.content:
            message["content"] = self.content
        if self.buttons:
            # type 1 = action row, type 2 = button, style 5 = link
            row = []
            for button in self.buttons:
                component: dict[str, Any] = {
                    "type": 2,
                    "style": 5,
                    "label": button.label,
                    "url": button.url,
                }
                if button.emoji:
                    component["emoji"] = {"name": button.emoji}
                row.append(component)
            message["components"] = [{"type": 1, "components": row}]
        return message
