"""Feed check pipeline: fetch, gate, render, deliver, record."""

import logging
from datetime import datetime

from rssfeed_notifier import filters
from rssfeed_notifier.database import Database
from rssfeed_notifier.dedupe import is_duplicate, record_notification
from rssfeed_notifier.dispatcher import Dispatcher
from rssfeed_notifier.feed_parser import DEFAULT_TIMEOUT, fetch_and_parse
from rssfeed_notifier.models import CheckResult, GuildSettings, Subscription
from rssfeed_notifier.rate_limit import try_consume
from rssfeed_notifier.renderer import render, render_error_alert

logger = logging.getLogger(__name__)

RATE_LIMIT_ERROR = "Rate limit exceeded"


class FeedChecker:
    """Checks subscriptions for new items and dispatches notifications."""

    def __init__(
        self,
        db: Database,
        dispatcher: Dispatcher,
        fetch=fetch_and_parse,
        clock=datetime.utcnow,
        feed_timeout: float = DEFAULT_TIMEOUT,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.fetch = fetch
        self.clock = clock
        self.feed_timeout = feed_timeout

    def check_all(
        self, subscriptions: list[Subscription] | None = None, should_stop=None
    ) -> int:
        """Check every non-paused subscription in turn. Returns count of posts.

        ``should_stop`` is polled between subscriptions; once it returns True
        the remaining subscriptions are left for the next cycle.
        """
        if subscriptions is None:
            subscriptions = self.db.get_active_subscriptions()

        posted = 0
        for sub in subscriptions:
            if should_stop is not None and should_stop():
                logger.info("Feed check interrupted, %d posted so far", posted)
                break
            if sub.paused:
                continue
            try:
                result = self.check_one(sub)
            except Exception:
                logger.exception("Unexpected error checking subscription #%s", sub.id)
                continue
            if result.posted:
                posted += 1
        return posted

    def check_one(self, sub: Subscription, force_post: bool = False) -> CheckResult:
        """Check one subscription.

        With ``force_post`` the latest item is sent even if it was seen
        before, and the duplicate check is skipped.
        """
        now = self.clock()

        try:
            feed = self.fetch(sub.feed_url, timeout=self.feed_timeout)
        except Exception as e:
            return self._record_fetch_error(sub, str(e) or type(e).__name__, now)

        self.db.clear_feed_error(sub.id)
        sub.error_count = 0
        sub.last_error = None

        item = feed.latest
        if item is None or not item.key:
            return CheckResult(posted=False)

        if item.key == sub.last_item_guid and not force_post:
            return CheckResult(posted=False)

        if not sub.last_item_guid and not force_post:
            logger.info("Subscription #%s: baseline set to %s", sub.id, item.key)
            self._advance_marker(sub, item.key, now)
            return CheckResult(posted=False)

        if not filters.passes(sub, item):
            logger.debug("Subscription #%s: %s filtered out", sub.id, item.key)
            self._advance_marker(sub, item.key, now)
            return CheckResult(posted=False)

        if not force_post and is_duplicate(self.db, sub.guild_id, item.link):
            logger.debug("Subscription #%s: %s already posted in guild", sub.id, item.link)
            self._advance_marker(sub, item.key, now)
            return CheckResult(posted=False)

        if not try_consume(self.db, sub, now):
            logger.info("Subscription #%s: rate limit reached, holding %s", sub.id, item.key)
            return CheckResult(posted=False, error=RATE_LIMIT_ERROR)

        settings = self.db.get_guild_settings(sub.guild_id)
        try:
            payload = render(sub, item, feed.title, feed.image_url, settings, now=now)
            delivered = self.dispatcher.deliver(sub, payload)
        except Exception:
            logger.exception("Subscription #%s: could not render %s", sub.id, item.key)
            delivered = False

        if delivered:
            record_notification(self.db, sub, item, now)
            logger.info("Subscription #%s: posted %s", sub.id, item.title or item.key)

        # Advanced even when delivery failed so the same payload is not retried.
        self._advance_marker(sub, item.key, now)
        return CheckResult(posted=delivered)

    def _advance_marker(self, sub: Subscription, key: str, now: datetime) -> None:
        self.db.update_last_item_guid(sub.id, key, now)
        sub.last_item_guid = key
        sub.last_check_at = now

    def _record_fetch_error(
        self, sub: Subscription, message: str, now: datetime
    ) -> CheckResult:
        logger.warning("Feed '%s' error: %s", sub.display_name, message)
        error_count = self.db.record_feed_error(sub.id, message, now)
        sub.error_count = error_count
        sub.last_error = message
        sub.last_check_at = now

        settings = self.db.get_guild_settings(sub.guild_id) or GuildSettings.defaults(
            sub.guild_id
        )
        if settings.alert_channel_id and error_count == settings.alert_threshold:
            self.dispatcher.send_alert(
                settings.alert_channel_id, render_error_alert(sub, error_count, now=now)
            )

        return CheckResult(posted=False, error=message)
