"""Tests for Discord delivery."""

from datetime import datetime
from unittest.mock import MagicMock

import pytest
import requests

from conftest import RecordingSink
from rssfeed_notifier.dispatcher import (
    DISCORD_API,
    ChannelTarget,
    DeliveryError,
    Dispatcher,
    DiscordSink,
    WebhookTarget,
)
from rssfeed_notifier.models import LinkButton, Payload, Subscription


def _payload(**kwargs) -> Payload:
    kwargs.setdefault("title", "Hello")
    kwargs.setdefault("color", 0x3498DB)
    kwargs.setdefault("footer_text", "Feed")
    kwargs.setdefault("timestamp", datetime(2026, 2, 13, 12, 0, 0))
    return Payload(**kwargs)


def _sub(**kwargs) -> Subscription:
    kwargs.setdefault("id", 7)
    kwargs.setdefault("guild_id", "g1")
    kwargs.setdefault("channel_id", "c1")
    kwargs.setdefault("feed_url", "https://a/feed")
    return Subscription(**kwargs)


@pytest.fixture
def session():
    return MagicMock()


class TestDiscordSink:
    def test_webhook_post(self, session):
        sink = DiscordSink(session=session)
        payload = _payload(buttons=[LinkButton(label="Read", url="https://x")])

        sink.send(WebhookTarget(url="https://hook", username="Bot", avatar_url="https://av"), payload)

        args, kwargs = session.post.call_args
        assert args[0] == "https://hook"
        assert kwargs["params"] == {"wait": "true", "with_components": "true"}
        assert kwargs["json"]["username"] == "Bot"
        assert kwargs["json"]["avatar_url"] == "https://av"
        assert kwargs["headers"] is None

    def test_webhook_without_buttons(self, session):
        DiscordSink(session=session).send(WebhookTarget(url="https://hook"), _payload())

        _, kwargs = session.post.call_args
        assert kwargs["params"] == {"wait": "true"}
        assert "username" not in kwargs["json"]

    def test_channel_post_uses_bot_token(self, session):
        DiscordSink(bot_token="tok", session=session).send(ChannelTarget("123"), _payload())

        args, kwargs = session.post.call_args
        assert args[0] == f"{DISCORD_API}/channels/123/messages"
        assert kwargs["headers"] == {"Authorization": "Bot tok"}
        assert kwargs["json"]["embeds"][0]["title"] == "Hello"

    def test_channel_without_token(self, session):
        with pytest.raises(DeliveryError, match="bot token"):
            DiscordSink(session=session).send(ChannelTarget("123"), _payload())
        session.post.assert_not_called()

    def test_http_error_becomes_delivery_error(self, session):
        session.post.return_value.raise_for_status.side_effect = requests.HTTPError("403 Forbidden")
        with pytest.raises(DeliveryError, match="403"):
            DiscordSink(bot_token="tok", session=session).send(ChannelTarget("123"), _payload())


class TestDispatcher:
    def test_channel_target(self):
        sink = RecordingSink()
        assert Dispatcher(sink).deliver(_sub(), _payload())
        assert sink.sent[0][0] == ChannelTarget(channel_id="c1")

    def test_webhook_preferred(self):
        sink = RecordingSink()
        sub = _sub(webhook_url="https://hook", webhook_name="N", webhook_avatar="https://av")
        Dispatcher(sink).deliver(sub, _payload())
        assert sink.sent[0][0] == WebhookTarget(url="https://hook", username="N", avatar_url="https://av")

    def test_failure_returns_false(self, caplog):
        assert Dispatcher(RecordingSink(fail=True)).deliver(_sub(), _payload()) is False
        assert "Missing Access" in caplog.text

    def test_alert(self):
        sink = RecordingSink()
        assert Dispatcher(sink).send_alert("alerts", _payload())
        assert sink.sent[0][0] == ChannelTarget(channel_id="alerts")
        assert Dispatcher(RecordingSink(fail=True)).send_alert("alerts", _payload()) is False

    def test_webhook_failure_logs_webhook_not_channel(self, caplog):
        sub = _sub(webhook_url="https://discord.com/api/webhooks/1/secret", webhook_name="News")
        assert Dispatcher(RecordingSink(fail=True)).deliver(sub, _payload()) is False
        assert "webhook News" in caplog.text
        assert "channel c1" not in caplog.text
        assert "secret" not in caplog.text
