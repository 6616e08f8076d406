"""Environment-driven configuration for RSS Feed Notifier."""

import os
from dataclasses import dataclass

DEFAULT_DB_PATH = "rssfeed_notifier.db"
CHECKPOINT_DB_PATH = "rssfeed_notifier_checkpoints.db"
DEFAULT_POLL_INTERVAL = 300  # 5 minutes
CLEANUP_INTERVAL = 24 * 60 * 60
AGENT_MODEL = "claude-sonnet-4-5-20250929"


@dataclass
class Config:
    db_path: str = DEFAULT_DB_PATH
    checkpoint_path: str = CHECKPOINT_DB_PATH
    poll_interval: int = DEFAULT_POLL_INTERVAL
    cleanup_interval: int = CLEANUP_INTERVAL
    feed_timeout: float = 10.0
    history_retention_days: int = 30
    shutdown_timeout: float = 30.0
    discord_token: str | None = None
    guild_id: str = "default"
    agent_model: str = AGENT_MODEL
    log_level: str = "INFO"


def load_config(environ=None) -> Config:
    """Build a Config from environment variables, falling back to defaults."""
    env = os.environ if environ is None else environ
    return Config(
        db_path=env.get("RSS_DB_PATH", DEFAULT_DB_PATH),
        checkpoint_path=env.get("RSS_CHECKPOINT_PATH", CHECKPOINT_DB_PATH),
        poll_interval=_int(env, "RSS_POLL_INTERVAL", DEFAULT_POLL_INTERVAL),
        feed_timeout=_float(env, "FEED_TIMEOUT", 10.0),
        history_retention_days=_int(env, "HISTORY_RETENTION_DAYS", 30),
        shutdown_timeout=_float(env, "SHUTDOWN_TIMEOUT", 30.0),
        discord_token=env.get("DISCORD_TOKEN") or None,
        guild_id=env.get("RSS_GUILD_ID") or "default",
        agent_model=env.get("RSS_AGENT_MODEL") or AGENT_MODEL,
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
    )


def _int(env, name: str, default: int) -> int:
    try:
        return int(env.get(name, default))
    except (TypeError, ValueError):
        return default


def _float(env, name: str, default: float) -> float:
    try:
        return float(env.get(name, default))
    except (TypeError, ValueError):
        return default
