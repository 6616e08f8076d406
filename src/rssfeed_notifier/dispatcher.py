"""Delivery of rendered notifications to Discord channels and webhooks."""

import logging
from dataclasses import dataclass

import requests

from rssfeed_notifier.models import Payload, Subscription

logger = logging.getLogger(__name__)

DISCORD_API = "https://discord.com/api/v10"
DEFAULT_TIMEOUT = 10.0


class DeliveryError(Exception):
    """Raised when a notification cannot be delivered."""


@dataclass
class WebhookTarget:
    url: str
    username: str | None = None
    avatar_url: str | None = None


@dataclass
class ChannelTarget:
    channel_id: str


def describe_target(target: WebhookTarget | ChannelTarget) -> str:
    """Name a target for logs without exposing the webhook token."""
    if isinstance(target, WebhookTarget):
        return f"webhook {target.username or '(default name)'}"
    return f"channel {target.channel_id}"


class DiscordSink:
    """Sends messages through the Discord REST API."""

    def __init__(
        self,
        bot_token: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ):
        self.bot_token = bot_token
        self.timeout = timeout
        self.session = session or requests.Session()

    def send(self, target: WebhookTarget | ChannelTarget, payload: Payload) -> None:
        """Deliver a payload.

        Raises:
            DeliveryError: If the target cannot be reached or rejects the message.
        """
        body = payload.to_discord()

        if isinstance(target, WebhookTarget):
            if target.username:
                body["username"] = target.username
            if target.avatar_url:
                body["avatar_url"] = target.avatar_url
            params = {"wait": "true"}
            if "components" in body:
                params["with_components"] = "true"
            self._post(target.url, body, params=params)
        else:
            if not self.bot_token:
                raise DeliveryError("No bot token configured for channel delivery")
            self._post(
                f"{DISCORD_API}/channels/{target.channel_id}/messages",
                body,
                headers={"Authorization": f"Bot {self.bot_token}"},
            )

    def _post(self, url: str, body: dict, params=None, headers=None) -> None:
        try:
            response = self.session.post(
                url, json=body, params=params, headers=headers, timeout=self.timeout
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise DeliveryError(str(e)) from e


class Dispatcher:
    """Routes payloads to a subscription's webhook identity or channel."""

    def __init__(self, sink):
        self.sink = sink

    def deliver(self, sub: Subscription, payload: Payload) -> bool:
        """Send a notification for a subscription. Returns True on success."""
        if sub.webhook_url:
            target = WebhookTarget(
                url=sub.webhook_url,
                username=sub.webhook_name,
                avatar_url=sub.webhook_avatar,
            )
        elif sub.channel_id:
            target = ChannelTarget(channel_id=sub.channel_id)
        else:
            logger.error("Subscription #%s has no delivery target", sub.id)
            return False

        try:
            self.sink.send(target, payload)
        except DeliveryError as e:
            logger.error(
                "Error sending update for subscription #%s to %s: %s",
                sub.id,
                describe_target(target),
                e,
            )
            return False
        return True

    def send_alert(self, channel_id: str, payload: Payload) -> bool:
        """Send an operational alert to a channel. Returns True on success."""
        try:
            self.sink.send(ChannelTarget(channel_id=channel_id), payload)
        except DeliveryError as e:
            logger.error("Error sending alert to channel %s: %s", channel_id, e)
            return False
        return True
