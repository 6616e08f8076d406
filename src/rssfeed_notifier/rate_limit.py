"""Per-subscription hourly rate limiting."""

from datetime import datetime, timedelta

from rssfeed_notifier.database import Database
from rssfeed_notifier.models import Subscription

WINDOW = timedelta(hours=1)


def try_consume(db: Database, sub: Subscription, now: datetime) -> bool:
    """Take one slot from the subscription's hourly budget.

    Returns False when the budget for the current window is spent. State is
    only written when a slot is taken or the window rolls over.
    """
    if not sub.max_posts_per_hour:
        return True

    if sub.hour_started_at is None or now - sub.hour_started_at > WINDOW:
        count, started_at = 1, now
    elif sub.posts_this_hour >= sub.max_posts_per_hour:
        return False
    else:
        count, started_at = sub.posts_this_hour + 1, sub.hour_started_at

    db.update_rate_window(sub.id, count, started_at)
    sub.posts_this_hour = count
    sub.hour_started_at = started_at
    return True
