"""Guild-wide duplicate detection based on notification history."""

from datetime import datetime

from rssfeed_notifier.database import Database
from rssfeed_notifier.models import FeedItem, NotificationRecord, Subscription


def is_duplicate(db: Database, guild_id: str, link: str | None) -> bool:
    """Return True if this link was already announced in the guild."""
    if not link:
        return False
    return db.is_duplicate_post(guild_id, link)


def record_notification(
    db: Database, sub: Subscription, item: FeedItem, now: datetime
) -> bool:
    """Store a history row for a delivered item.

    Returns False when the guild already has a row for the same link.
    """
    return db.add_post_history(
        NotificationRecord(
            guild_id=sub.guild_id,
            subscription_id=sub.id,
            item_guid=item.key,
            item_title=item.title,
            item_link=item.link,
            posted_at=now,
        )
    )
