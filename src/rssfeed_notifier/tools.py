"""Agent tool implementations for RSS Feed Notifier."""

import json
import re

from langchain_core.tools import tool

from rssfeed_notifier.checker import FeedChecker
from rssfeed_notifier.database import Database
from rssfeed_notifier.feed_parser import FeedParseError
from rssfeed_notifier.feed_urls import reddit_feed_url, youtube_feed_url
from rssfeed_notifier.models import (
    GuildSettings,
    GuildSettingsPatch,
    Subscription,
    SubscriptionPatch,
)

_COLOR_RE = re.compile(r"^#?[0-9A-Fa-f]{6}$")

# Module-level context, set during agent initialization
_db: Database | None = None
_checker: FeedChecker | None = None
_guild_id: str = "default"


def set_context(db: Database, checker: FeedChecker, guild_id: str = "default") -> None:
    """Set the database, checker and guild scope used by all tools."""
    global _db, _checker, _guild_id
    _db = db
    _checker = checker
    _guild_id = guild_id


def _get_db() -> Database:
    """Get the database instance, raising if not set."""
    if _db is None:
        raise RuntimeError("Database not initialized. Call set_context() first.")
    return _db


def _get_checker() -> FeedChecker:
    if _checker is None:
        raise RuntimeError("Feed checker not initialized. Call set_context() first.")
    return _checker


def _error(message: str, **extra) -> str:
    return json.dumps({"status": "error", "message": message, **extra})


def _find_subscription(subscription_id: int) -> Subscription | None:
    """Look up a subscription, hiding those that belong to another guild."""
    sub = _get_db().get_subscription(subscription_id)
    if sub is None or sub.guild_id != _guild_id:
        return None
    return sub


def _subscription_summary(sub: Subscription) -> dict:
    return {
        "id": sub.id,
        "name": sub.display_name,
        "url": sub.feed_url,
        "channel_id": sub.channel_id,
        "category": sub.category,
        "status": _health(sub),
    }


def _health(sub: Subscription) -> str:
    if sub.paused:
        return "paused"
    if sub.error_count > 0:
        return "erroring"
    return "healthy"


def _normalize_color(color: str) -> str | None:
    """Validate a hex color. Returns it without '#', or raises ValueError."""
    if not _COLOR_RE.match(color):
        raise ValueError("Invalid color format. Use hex like #FF5733")
    return color.lstrip("#").upper()


@tool
def subscribe_to_feed(
    url: str,
    channel_id: str,
    name: str = "",
    color: str = "",
    role_id: str = "",
    category: str = "",
) -> str:
    """Subscribe a channel to an RSS or Atom feed.

    Args:
        url: The URL of the RSS or Atom feed.
        channel_id: The channel that should receive new items.
        name: Optional display name for the feed.
        color: Optional embed color as hex, e.g. #FF5733.
        role_id: Optional role to mention with each notification.
        category: Optional category for grouping subscriptions.
    """
    db = _get_db()

    try:
        normalized_color = _normalize_color(color) if color else None
    except ValueError as e:
        return _error(str(e))

    # Validate the feed is reachable before storing it
    try:
        checker = _get_checker()
        parsed = checker.fetch(url, timeout=checker.feed_timeout)
    except FeedParseError as e:
        return _error(f"Invalid RSS feed: {e}")

    sub = Subscription(
        guild_id=_guild_id,
        channel_id=channel_id,
        feed_url=url,
        feed_name=name or parsed.title or None,
        color=normalized_color,
        role_id=role_id or None,
        category=category or None,
    )
    saved = db.add_subscription(sub)
    if saved is None:
        return _error("This feed is already subscribed in that channel")

    result = {"status": "subscribed", "subscription": _subscription_summary(saved)}
    if parsed.warnings:
        result["warnings"] = parsed.warnings
    return json.dumps(result)


@tool
def list_subscriptions(category: str = "") -> str:
    """List the feed subscriptions in this server.

    Args:
        category: Optional category to list only one group of feeds.
    """
    db = _get_db()
    subs = db.get_subscriptions(_guild_id, category=category or None)
    return json.dumps({
        "subscriptions": [_subscription_summary(s) for s in subs],
        "categories": db.get_categories(_guild_id),
        "total": len(subs),
    })


@tool
def unsubscribe(subscription_id: int) -> str:
    """Remove a feed subscription by its id.

    Args:
        subscription_id: The id shown by list_subscriptions.
    """
    sub = _find_subscription(subscription_id)
    if sub is None:
        return _error("Subscription not found")
    _get_db().remove_subscription(_guild_id, subscription_id)
    return json.dumps({"status": "unsubscribed", "name": sub.display_name})


@tool
def edit_subscription(
    subscription_id: int,
    channel_id: str | None = None,
    name: str | None = None,
    color: str | None = None,
    role_id: str | None = None,
    category: str | None = None,
    include_keywords: str | None = None,
    exclude_keywords: str | None = None,
    use_regex: bool | None = None,
    max_posts_per_hour: int | None = None,
    show_buttons: bool | None = None,
) -> str:
    """Change settings of a subscription. Omitted settings are left unchanged.

    Pass an empty string to clear a text setting, and 0 to remove the rate limit.

    Args:
        subscription_id: The id shown by list_subscriptions.
        channel_id: Move notifications to another channel.
        name: Display name for the feed.
        color: Embed color as hex, e.g. #FF5733.
        role_id: Role to mention with each notification.
        category: Category for grouping subscriptions.
        include_keywords: Comma-separated keywords; at least one must appear.
        exclude_keywords: Comma-separated keywords; none may appear.
        use_regex: Treat keywords as regular expressions.
        max_posts_per_hour: Maximum notifications per hour.
        show_buttons: Show Read/Share buttons under notifications.
    """
    if _find_subscription(subscription_id) is None:
        return _error("Subscription not found")

    patch = SubscriptionPatch()
    if channel_id:
        patch.channel_id = channel_id
    for field_name, value in (
        ("feed_name", name),
        ("role_id", role_id),
        ("category", category),
        ("include_keywords", include_keywords),
        ("exclude_keywords", exclude_keywords),
    ):
        if value is not None:
            setattr(patch, field_name, value.strip() or None)
    if color is not None:
        try:
            patch.color = _normalize_color(color) if color else None
        except ValueError as e:
            return _error(str(e))
    if use_regex is not None:
        patch.use_regex = use_regex
    if max_posts_per_hour is not None:
        if max_posts_per_hour < 0:
            return _error("max_posts_per_hour must be 0 or more")
        patch.max_posts_per_hour = max_posts_per_hour or None
    if show_buttons is not None:
        patch.show_buttons = show_buttons

    if not patch.changes():
        return _error("Nothing to update")

    _get_db().update_subscription(subscription_id, patch)
    return json.dumps({"status": "updated", "changes": sorted(patch.changes())})


@tool
def set_webhook(
    subscription_id: int, url: str = "", name: str = "", avatar_url: str = ""
) -> str:
    """Deliver a subscription through a webhook with a custom name and avatar.

    Call with an empty url to go back to posting in the channel directly.

    Args:
        subscription_id: The id shown by list_subscriptions.
        url: Discord webhook URL.
        name: Sender name shown on notifications.
        avatar_url: Sender avatar image URL.
    """
    if _find_subscription(subscription_id) is None:
        return _error("Subscription not found")

    if url and not re.match(r"^https://(\w+\.)?discord(app)?\.com/api/webhooks/", url):
        return _error("Invalid webhook URL")

    patch = SubscriptionPatch(
        webhook_url=url or None,
        webhook_name=(name or None) if url else None,
        webhook_avatar=(avatar_url or None) if url else None,
    )
    _get_db().update_subscription(subscription_id, patch)
    return json.dumps({"status": "webhook_set" if url else "webhook_removed"})


def _set_paused(subscription_id: int, paused: bool) -> str:
    sub = _find_subscription(subscription_id)
    if sub is None:
        return _error("Subscription not found")
    if sub.paused == paused:
        return _error("Subscription is already " + ("paused" if paused else "active"))
    _get_db().update_subscription(subscription_id, SubscriptionPatch(paused=paused))
    return json.dumps({
        "status": "paused" if paused else "resumed",
        "name": sub.display_name,
    })


@tool
def pause_subscription(subscription_id: int) -> str:
    """Pause a subscription so it is no longer checked.

    Args:
        subscription_id: The id shown by list_subscriptions.
    """
    return _set_paused(subscription_id, True)


@tool
def resume_subscription(subscription_id: int) -> str:
    """Resume a paused subscription.

    Args:
        subscription_id: The id shown by list_subscriptions.
    """
    return _set_paused(subscription_id, False)


@tool
def test_subscription(subscription_id: int) -> str:
    """Check a feed right now and post its latest item, even if already seen.

    Args:
        subscription_id: The id shown by list_subscriptions.
    """
    sub = _find_subscription(subscription_id)
    if sub is None:
        return _error("Subscription not found")

    result = _get_checker().check_one(sub, force_post=True)
    if result.error:
        return _error(result.error)
    return json.dumps({
        "status": "posted" if result.posted else "not_posted",
        "name": sub.display_name,
    })


@tool
def feed_status(subscription_id: int = 0) -> str:
    """Show feed health: one subscription in detail, or an overview of all.

    Args:
        subscription_id: Optional id for a detailed report on one feed.
    """
    db = _get_db()

    if subscription_id:
        sub = _find_subscription(subscription_id)
        if sub is None:
            return _error("Subscription not found")
        report = {
            "id": sub.id,
            "name": sub.display_name,
            "status": _health(sub),
            "error_count": sub.error_count,
            "channel_id": sub.channel_id,
            "last_check_at": sub.last_check_at.isoformat() if sub.last_check_at else None,
        }
        if sub.last_error:
            report["last_error"] = sub.last_error
        if sub.max_posts_per_hour:
            report["rate_limit"] = f"{sub.posts_this_hour}/{sub.max_posts_per_hour} posts this hour"
        if sub.include_keywords:
            report["include_keywords"] = sub.include_keywords
        if sub.exclude_keywords:
            report["exclude_keywords"] = sub.exclude_keywords
        return json.dumps(report)

    subs = db.get_subscriptions(_guild_id)
    erroring = [s for s in subs if _health(s) == "erroring"]
    return json.dumps({
        "healthy": sum(1 for s in subs if _health(s) == "healthy"),
        "paused": sum(1 for s in subs if s.paused),
        "errors": len(erroring),
        "feeds_with_errors": [
            {"id": s.id, "name": s.display_name, "error_count": s.error_count}
            for s in erroring
        ],
    })


@tool
def feed_stats(days: int = 7) -> str:
    """Show how many notifications were posted, per feed and per day.

    Args:
        days: Number of days to analyze (default 7).
    """
    if days < 1:
        return _error("days must be at least 1")
    stats = _get_db().get_post_stats(_guild_id, days=days)
    return json.dumps({"days": days, **stats})


@tool
def export_subscriptions() -> str:
    """Export this server's subscriptions as a JSON array."""
    return _get_db().export_subscriptions(_guild_id)


@tool
def import_subscriptions(data: str) -> str:
    """Import subscriptions from a JSON array produced by export_subscriptions.

    Args:
        data: JSON array of subscription objects with channel_id and feed_url.
    """
    try:
        entries = json.loads(data)
    except json.JSONDecodeError as e:
        return _error(f"Invalid JSON: {e}")
    if not isinstance(entries, list):
        return _error("Expected a JSON array of subscriptions")

    result = _get_db().import_subscriptions(_guild_id, entries)
    return json.dumps({
        "status": "imported",
        "success": result.success,
        "failed": result.failed,
        "errors": result.errors[:10],
    })


@tool
def update_settings(
    alert_channel_id: str | None = None,
    alert_threshold: int | None = None,
    default_color: str | None = None,
    buttons_enabled: bool | None = None,
) -> str:
    """View or change server-wide settings. Call with no arguments to view them.

    Args:
        alert_channel_id: Channel that receives alerts about failing feeds ("" to clear).
        alert_threshold: Consecutive errors before an alert is sent.
        default_color: Default embed color as hex ("" to clear).
        buttons_enabled: Show Read/Share buttons under notifications.
    """
    db = _get_db()
    patch = GuildSettingsPatch()
    if alert_channel_id is not None:
        patch.alert_channel_id = alert_channel_id or None
    if alert_threshold is not None:
        if alert_threshold < 1:
            return _error("alert_threshold must be at least 1")
        patch.alert_threshold = alert_threshold
    if default_color is not None:
        try:
            patch.default_color = _normalize_color(default_color) if default_color else None
        except ValueError as e:
            return _error(str(e))
    if buttons_enabled is not None:
        patch.buttons_enabled = buttons_enabled

    if patch.changes():
        settings = db.upsert_guild_settings(_guild_id, patch)
        status = "updated"
    else:
        settings = db.get_guild_settings(_guild_id) or GuildSettings.defaults(_guild_id)
        status = "current"

    return json.dumps({
        "status": status,
        "alert_channel_id": settings.alert_channel_id,
        "alert_threshold": settings.alert_threshold,
        "default_color": settings.default_color,
        "buttons_enabled": settings.buttons_enabled,
    })


@tool
def cleanup_channel(channel_id: str, dry_run: bool = False) -> str:
    """Remove all subscriptions (and their history) for a deleted channel.

    Args:
        channel_id: The channel whose subscriptions should be removed.
        dry_run: Only report what would be removed.
    """
    db = _get_db()
    subs = [s for s in db.get_subscriptions(_guild_id) if s.channel_id == channel_id]
    if not subs:
        return json.dumps({"status": "nothing_to_clean", "removed": 0})

    names = [s.display_name for s in subs]
    if dry_run:
        return json.dumps({"status": "dry_run", "would_remove": names})

    ids = [s.id for s in subs]
    db.remove_post_history_by_subscription_ids(ids)
    removed = db.remove_subscriptions_by_ids(ids)
    return json.dumps({"status": "cleaned", "removed": removed, "names": names})


@tool
def youtube_feed(channel: str) -> str:
    """Find the RSS feed URL of a YouTube channel.

    Args:
        channel: Channel id, channel URL, or @handle.
    """
    try:
        url = youtube_feed_url(channel)
    except FeedParseError as e:
        return _error(str(e))
    return json.dumps({"status": "found", "feed_url": url})


@tool
def reddit_feed(subreddit: str, sort: str = "hot", period: str = "") -> str:
    """Build the RSS feed URL for a subreddit.

    Args:
        subreddit: Subreddit name, with or without the r/ prefix.
        sort: One of hot, new, top, rising.
        period: For top only: hour, day, week, month, year or all.
    """
    try:
        url = reddit_feed_url(subreddit, sort=sort, period=period or None)
    except ValueError as e:
        return _error(str(e))
    return json.dumps({"status": "found", "feed_url": url})
