"""Tests for the agent tools."""

import json

import pytest

from conftest import FakeFetcher, make_feed, make_item
from rssfeed_notifier import tools
from rssfeed_notifier.checker import FeedChecker
from rssfeed_notifier.feed_parser import FeedParseError


@pytest.fixture
def fetcher():
    return FakeFetcher(make_feed(make_item("abc"), title="Rust Blog"))


@pytest.fixture
def checker(db, dispatcher, fetcher, now):
    checker = FeedChecker(db, dispatcher, fetch=fetcher, clock=lambda: now)
    tools.set_context(db, checker, guild_id="g1")
    return checker


def _call(tool, **kwargs) -> dict:
    return json.loads(tool.invoke(kwargs))


class TestSubscribe:
    def test_subscribe_uses_feed_title(self, db, checker, fetcher):
        result = _call(tools.subscribe_to_feed, url="https://blog.rust-lang.org/feed.xml", channel_id="c1")

        assert result["status"] == "subscribed"
        assert result["subscription"]["name"] == "Rust Blog"
        assert fetcher.calls == ["https://blog.rust-lang.org/feed.xml"]
        stored = db.get_subscriptions("g1")[0]
        assert stored.last_item_guid is None

    def test_subscribe_normalizes_color(self, db, checker):
        _call(tools.subscribe_to_feed, url="https://a/feed", channel_id="c1", color="#ff5733")
        assert db.get_subscriptions("g1")[0].color == "FF5733"

    def test_invalid_color(self, checker, fetcher):
        result = _call(tools.subscribe_to_feed, url="https://a/feed", channel_id="c1", color="red")
        assert result["status"] == "error"
        assert fetcher.calls == []

    def test_invalid_feed(self, db, checker, fetcher):
        fetcher.error = FeedParseError("URL does not point to a valid RSS or Atom feed")
        result = _call(tools.subscribe_to_feed, url="https://a/page", channel_id="c1")
        assert "Invalid RSS feed" in result["message"]
        assert db.get_subscriptions("g1") == []

    def test_duplicate(self, checker):
        _call(tools.subscribe_to_feed, url="https://a/feed", channel_id="c1")
        result = _call(tools.subscribe_to_feed, url="https://a/feed", channel_id="c1")
        assert "already subscribed" in result["message"]


class TestManage:
    def test_list_by_category(self, checker, add_subscription):
        add_subscription(feed_url="https://a/1", category="tech")
        add_subscription(feed_url="https://a/2")
        add_subscription(guild_id="other", feed_url="https://a/3")

        result = _call(tools.list_subscriptions, category="tech")
        assert result["total"] == 1
        assert result["categories"] == ["tech"]
        assert _call(tools.list_subscriptions)["total"] == 2

    def test_unsubscribe_other_guild_is_not_found(self, db, checker, add_subscription):
        sub = add_subscription(guild_id="other")
        result = _call(tools.unsubscribe, subscription_id=sub.id)
        assert result["status"] == "error"
        assert db.get_subscription(sub.id) is not None

    def test_unsubscribe(self, db, checker, add_subscription):
        sub = add_subscription()
        assert _call(tools.unsubscribe, subscription_id=sub.id)["status"] == "unsubscribed"
        assert db.get_subscription(sub.id) is None

    def test_edit_sets_and_clears(self, db, checker, add_subscription):
        sub = add_subscription(include_keywords="rust", max_posts_per_hour=5)

        result = _call(
            tools.edit_subscription,
            subscription_id=sub.id,
            include_keywords="",
            exclude_keywords="beta",
            max_posts_per_hour=0,
        )

        assert result["status"] == "updated"
        stored = db.get_subscription(sub.id)
        assert stored.include_keywords is None
        assert stored.exclude_keywords == "beta"
        assert stored.max_posts_per_hour is None

    def test_edit_nothing(self, checker, add_subscription):
        sub = add_subscription()
        assert _call(tools.edit_subscription, subscription_id=sub.id)["message"] == "Nothing to update"

    def test_set_and_remove_webhook(self, db, checker, add_subscription):
        sub = add_subscription()
        hook = "https://discord.com/api/webhooks/1/abc"

        assert _call(tools.set_webhook, subscription_id=sub.id, url=hook, name="News")["status"] == "webhook_set"
        assert db.get_subscription(sub.id).webhook_name == "News"

        assert _call(tools.set_webhook, subscription_id=sub.id)["status"] == "webhook_removed"
        stored = db.get_subscription(sub.id)
        assert stored.webhook_url is None
        assert stored.webhook_name is None

    def test_invalid_webhook(self, checker, add_subscription):
        sub = add_subscription()
        result = _call(tools.set_webhook, subscription_id=sub.id, url="https://evil.example/hook")
        assert result["message"] == "Invalid webhook URL"

    def test_pause_and_resume(self, db, checker, add_subscription):
        sub = add_subscription()
        assert _call(tools.pause_subscription, subscription_id=sub.id)["status"] == "paused"
        assert db.get_subscription(sub.id).paused is True
        assert _call(tools.pause_subscription, subscription_id=sub.id)["status"] == "error"
        assert _call(tools.resume_subscription, subscription_id=sub.id)["status"] == "resumed"
        assert db.get_subscription(sub.id).paused is False


class TestChecks:
    def test_test_subscription_posts_seen_item(self, checker, add_subscription, sink):
        sub = add_subscription(last_item_guid="abc")
        result = _call(tools.test_subscription, subscription_id=sub.id)
        assert result["status"] == "posted"
        assert len(sink.sent) == 1

    def test_test_subscription_reports_error(self, checker, fetcher, add_subscription):
        fetcher.error = FeedParseError("Could not reach URL: HTTP 404")
        sub = add_subscription()
        result = _call(tools.test_subscription, subscription_id=sub.id)
        assert result["message"] == "Could not reach URL: HTTP 404"

    def test_feed_status_overview(self, db, checker, add_subscription, now):
        add_subscription(feed_url="https://a/1")
        add_subscription(feed_url="https://a/2", paused=True)
        bad = add_subscription(feed_url="https://a/3")
        db.record_feed_error(bad.id, "timeout", now)

        result = _call(tools.feed_status)
        assert result["healthy"] == 1
        assert result["paused"] == 1
        assert result["errors"] == 1
        assert result["feeds_with_errors"][0]["id"] == bad.id

    def test_feed_status_detail(self, db, checker, add_subscription, now):
        sub = add_subscription(max_posts_per_hour=3)
        db.record_feed_error(sub.id, "timeout", now)
        result = _call(tools.feed_status, subscription_id=sub.id)
        assert result["status"] == "erroring"
        assert result["last_error"] == "timeout"
        assert result["rate_limit"] == "0/3 posts this hour"

    def test_feed_stats_rejects_zero_days(self, checker):
        assert _call(tools.feed_stats, days=0)["status"] == "error"


class TestSettingsAndData:
    def test_view_default_settings(self, checker):
        result = _call(tools.update_settings)
        assert result["status"] == "current"
        assert result["alert_threshold"] == 3
        assert result["buttons_enabled"] is True

    def test_update_settings(self, db, checker):
        result = _call(tools.update_settings, alert_channel_id="alerts", default_color="00ff00")
        assert result["status"] == "updated"
        settings = db.get_guild_settings("g1")
        assert settings.alert_channel_id == "alerts"
        assert settings.default_color == "00FF00"

    def test_export_import(self, db, checker, add_subscription):
        add_subscription(feed_url="https://a/1", feed_name="A")
        exported = tools.export_subscriptions.invoke({})
        db.remove_subscriptions_by_ids([s.id for s in db.get_subscriptions("g1")])

        result = _call(tools.import_subscriptions, data=exported)
        assert result["success"] == 1
        assert db.get_subscriptions("g1")[0].feed_name == "A"

    def test_import_rejects_non_array(self, checker):
        assert "array" in _call(tools.import_subscriptions, data='{"a": 1}')["message"]
        assert "Invalid JSON" in _call(tools.import_subscriptions, data="not json")["message"]

    def test_cleanup_channel(self, db, checker, add_subscription):
        add_subscription(channel_id="gone", feed_url="https://a/1")
        add_subscription(channel_id="gone", feed_url="https://a/2")
        keep = add_subscription(channel_id="c1", feed_url="https://a/3")

        dry = _call(tools.cleanup_channel, channel_id="gone", dry_run=True)
        assert len(dry["would_remove"]) == 2
        assert len(db.get_subscriptions("g1")) == 3

        result = _call(tools.cleanup_channel, channel_id="gone")
        assert result["removed"] == 2
        assert [s.id for s in db.get_subscriptions("g1")] == [keep.id]

    def test_reddit_feed(self, checker):
        result = _call(tools.reddit_feed, subreddit="r/python", sort="top", period="day")
        assert result["feed_url"] == "https://www.reddit.com/r/python/top.rss?t=day"
        assert _call(tools.reddit_feed, subreddit="python", sort="best")["status"] == "error"
