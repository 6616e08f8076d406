"""SQLite database operations for RSS Feed Notifier."""

import functools
import json
import re
import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from urllib.parse import urlparse

from rssfeed_notifier.models import (
    DEFAULT_ALERT_THRESHOLD,
    GuildSettings,
    GuildSettingsPatch,
    NotificationRecord,
    Subscription,
    SubscriptionPatch,
)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS subscriptions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    guild_id TEXT NOT NULL,
    channel_id TEXT NOT NULL,
    feed_url TEXT NOT NULL,
    feed_name TEXT,
    last_item_guid TEXT,
    paused INTEGER DEFAULT 0,
    include_keywords TEXT,
    exclude_keywords TEXT,
    use_regex INTEGER DEFAULT 0,
    max_posts_per_hour INTEGER,
    posts_this_hour INTEGER DEFAULT 0,
    hour_started_at TEXT,
    webhook_url TEXT,
    webhook_name TEXT,
    webhook_avatar TEXT,
    error_count INTEGER DEFAULT 0,
    last_error TEXT,
    last_check_at TEXT,
    color TEXT,
    role_id TEXT,
    category TEXT,
    show_buttons INTEGER DEFAULT 1,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE(guild_id, channel_id, feed_url)
);

CREATE TABLE IF NOT EXISTS guild_settings (
    guild_id TEXT PRIMARY KEY,
    alert_channel_id TEXT,
    alert_threshold INTEGER DEFAULT 3,
    default_color TEXT,
    buttons_enabled INTEGER DEFAULT 1,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS post_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    guild_id TEXT NOT NULL,
    subscription_id INTEGER NOT NULL,
    item_guid TEXT NOT NULL,
    item_title TEXT,
    item_link TEXT,
    posted_at TEXT NOT NULL,
    UNIQUE(guild_id, item_link)
);

CREATE INDEX IF NOT EXISTS idx_post_history_guild ON post_history(guild_id);
CREATE INDEX IF NOT EXISTS idx_post_history_link ON post_history(item_link);
CREATE INDEX IF NOT EXISTS idx_post_history_posted_at ON post_history(posted_at);
CREATE INDEX IF NOT EXISTS idx_subscriptions_guild ON subscriptions(guild_id);
CREATE INDEX IF NOT EXISTS idx_subscriptions_active ON subscriptions(paused);
"""

# Columns a SubscriptionPatch may write, mapped to their storage conversion.
_SUBSCRIPTION_PATCH_COLUMNS = {
    "channel_id": None,
    "feed_name": None,
    "paused": int,
    "include_keywords": None,
    "exclude_keywords": None,
    "use_regex": int,
    "max_posts_per_hour": None,
    "webhook_url": None,
    "webhook_name": None,
    "webhook_avatar": None,
    "color": None,
    "role_id": None,
    "category": None,
    "show_buttons": int,
}

_GUILD_PATCH_COLUMNS = {
    "alert_channel_id": None,
    "alert_threshold": None,
    "default_color": None,
    "buttons_enabled": int,
}

_COLOR_RE = re.compile(r"^#?[0-9A-Fa-f]{6}$")

EXPORT_FIELDS = (
    "channel_id",
    "feed_url",
    "feed_name",
    "color",
    "role_id",
    "category",
    "include_keywords",
    "exclude_keywords",
    "use_regex",
    "max_posts_per_hour",
    "paused",
)


@dataclass
class ImportResult:
    """Summary of a subscription import."""

    success: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


def _synchronized(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)

    return wrapper


class Database:
    """SQLite database manager for subscriptions, history and guild settings.

    One connection is shared by the poller thread and the chat tools, so
    every operation holds a reentrant lock for its statements and commit.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @_synchronized
    def connect(self) -> None:
        """Open database connection and initialize schema."""
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(SCHEMA_SQL)
        self._conn.commit()

    @_synchronized
    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    # --- Subscription operations ---

    @_synchronized
    def add_subscription(self, sub: Subscription) -> Subscription | None:
        """Insert a subscription. Returns None if it already exists."""
        try:
            cursor = self.conn.execute(
                """INSERT INTO subscriptions (guild_id, channel_id, feed_url, feed_name,
                   last_item_guid, paused, include_keywords, exclude_keywords, use_regex,
                   max_posts_per_hour, webhook_url, webhook_name, webhook_avatar,
                   color, role_id, category, show_buttons, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    sub.guild_id,
                    sub.channel_id,
                    sub.feed_url,
                    sub.feed_name,
                    sub.last_item_guid,
                    int(sub.paused),
                    sub.include_keywords,
                    sub.exclude_keywords,
                    int(sub.use_regex),
                    sub.max_posts_per_hour,
                    sub.webhook_url,
                    sub.webhook_name,
                    sub.webhook_avatar,
                    sub.color,
                    sub.role_id,
                    sub.category,
                    int(sub.show_buttons),
                    _dt_to_str(sub.created_at),
                ),
            )
        except sqlite3.IntegrityError:
            # Duplicate (guild_id, channel_id, feed_url)
            return None
        self.conn.commit()
        sub.id = cursor.lastrowid
        return sub

    @_synchronized
    def get_subscription(self, subscription_id: int) -> Subscription | None:
        """Look up a subscription by its id."""
        row = self.conn.execute(
            "SELECT * FROM subscriptions WHERE id = ?", (subscription_id,)
        ).fetchone()
        return _row_to_subscription(row) if row else None

    @_synchronized
    def get_subscriptions(
        self, guild_id: str, category: str | None = None
    ) -> list[Subscription]:
        """Return a guild's subscriptions, newest first."""
        query = "SELECT * FROM subscriptions WHERE guild_id = ?"
        params: list = [guild_id]
        if category is not None:
            query += " AND category = ?"
            params.append(category)
        query += " ORDER BY created_at DESC, id DESC"
        rows = self.conn.execute(query, params).fetchall()
        return [_row_to_subscription(r) for r in rows]

    @_synchronized
    def get_categories(self, guild_id: str) -> list[str]:
        rows = self.conn.execute(
            """SELECT DISTINCT category FROM subscriptions
               WHERE guild_id = ? AND category IS NOT NULL ORDER BY category""",
            (guild_id,),
        ).fetchall()
        return [r["category"] for r in rows]

    @_synchronized
    def get_all_subscriptions(self) -> list[Subscription]:
        rows = self.conn.execute("SELECT * FROM subscriptions ORDER BY id").fetchall()
        return [_row_to_subscription(r) for r in rows]

    @_synchronized
    def get_active_subscriptions(self) -> list[Subscription]:
        """Return all non-paused subscriptions (for polling)."""
        rows = self.conn.execute(
            "SELECT * FROM subscriptions WHERE paused = 0 ORDER BY id"
        ).fetchall()
        return [_row_to_subscription(r) for r in rows]

    @_synchronized
    def get_subscriptions_with_errors(self, threshold: int) -> list[Subscription]:
        rows = self.conn.execute(
            """SELECT * FROM subscriptions
               WHERE error_count >= ? AND paused = 0 ORDER BY id""",
            (threshold,),
        ).fetchall()
        return [_row_to_subscription(r) for r in rows]

    @_synchronized
    def update_subscription(
        self, subscription_id: int, patch: SubscriptionPatch
    ) -> bool:
        """Apply a patch. Returns True if a row was changed."""
        changes = patch.changes()
        if not changes:
            return False

        assignments = []
        values: list = []
        for column, value in changes.items():
            convert = _SUBSCRIPTION_PATCH_COLUMNS[column]
            assignments.append(f"{column} = ?")
            values.append(convert(value) if convert and value is not None else value)

        cursor = self.conn.execute(
            f"UPDATE subscriptions SET {', '.join(assignments)} WHERE id = ?",
            (*values, subscription_id),
        )
        self.conn.commit()
        return cursor.rowcount > 0

    @_synchronized
    def remove_subscription(self, guild_id: str, subscription_id: int) -> bool:
        """Delete a subscription within a guild. Returns True if deleted."""
        cursor = self.conn.execute(
            "DELETE FROM subscriptions WHERE id = ? AND guild_id = ?",
            (subscription_id, guild_id),
        )
        self.conn.commit()
        return cursor.rowcount > 0

    @_synchronized
    def remove_subscriptions_by_ids(self, subscription_ids: list[int]) -> int:
        """Bulk-delete subscriptions. Returns count of deleted rows."""
        if not subscription_ids:
            return 0
        placeholders = ",".join("?" for _ in subscription_ids)
        cursor = self.conn.execute(
            f"DELETE FROM subscriptions WHERE id IN ({placeholders})",
            subscription_ids,
        )
        self.conn.commit()
        return cursor.rowcount

    @_synchronized
    def update_last_item_guid(
        self, subscription_id: int, guid: str, timestamp: datetime
    ) -> None:
        """Advance the last-seen marker and stamp the check time."""
        self.conn.execute(
            "UPDATE subscriptions SET last_item_guid = ?, last_check_at = ? WHERE id = ?",
            (guid, _dt_to_str(timestamp), subscription_id),
        )
        self.conn.commit()

    @_synchronized
    def record_feed_error(
        self, subscription_id: int, error_message: str, timestamp: datetime
    ) -> int:
        """Increment the error count and store the message. Returns the new count."""
        self.conn.execute(
            """UPDATE subscriptions
               SET error_count = error_count + 1, last_error = ?, last_check_at = ?
               WHERE id = ?""",
            (error_message, _dt_to_str(timestamp), subscription_id),
        )
        self.conn.commit()
        row = self.conn.execute(
            "SELECT error_count FROM subscriptions WHERE id = ?", (subscription_id,)
        ).fetchone()
        return row["error_count"] if row else 0

    @_synchronized
    def clear_feed_error(self, subscription_id: int) -> None:
        """Reset error count and clear error message on successful fetch."""
        self.conn.execute(
            "UPDATE subscriptions SET error_count = 0, last_error = NULL WHERE id = ?",
            (subscription_id,),
        )
        self.conn.commit()

    @_synchronized
    def update_rate_window(
        self, subscription_id: int, count: int, started_at: datetime | None
    ) -> None:
        """Store the hourly rate-limit counter and its window start."""
        self.conn.execute(
            "UPDATE subscriptions SET posts_this_hour = ?, hour_started_at = ? WHERE id = ?",
            (count, _dt_to_str(started_at), subscription_id),
        )
        self.conn.commit()

    # --- Post history operations ---

    @_synchronized
    def add_post_history(self, record: NotificationRecord) -> bool:
        """Insert a history row. Returns False if (guild, link) already exists."""
        try:
            cursor = self.conn.execute(
                """INSERT INTO post_history (guild_id, subscription_id, item_guid,
                   item_title, item_link, posted_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    record.guild_id,
                    record.subscription_id,
                    record.item_guid,
                    record.item_title,
                    record.item_link,
                    _dt_to_str(record.posted_at),
                ),
            )
        except sqlite3.IntegrityError:
            return False
        self.conn.commit()
        record.id = cursor.lastrowid
        return True

    @_synchronized
    def is_duplicate_post(self, guild_id: str, item_link: str) -> bool:
        """Check whether a link was already posted in a guild."""
        row = self.conn.execute(
            "SELECT 1 FROM post_history WHERE guild_id = ? AND item_link = ?",
            (guild_id, item_link),
        ).fetchone()
        return row is not None

    @_synchronized
    def get_post_history(self, guild_id: str, limit: int = 50) -> list[NotificationRecord]:
        rows = self.conn.execute(
            """SELECT * FROM post_history WHERE guild_id = ?
               ORDER BY posted_at DESC LIMIT ?""",
            (guild_id, limit),
        ).fetchall()
        return [_row_to_record(r) for r in rows]

    @_synchronized
    def remove_post_history_by_subscription_ids(self, subscription_ids: list[int]) -> int:
        if not subscription_ids:
            return 0
        placeholders = ",".join("?" for _ in subscription_ids)
        cursor = self.conn.execute(
            f"DELETE FROM post_history WHERE subscription_id IN ({placeholders})",
            subscription_ids,
        )
        self.conn.commit()
        return cursor.rowcount

    @_synchronized
    def get_post_stats(
        self, guild_id: str, days: int = 7, now: datetime | None = None
    ) -> dict:
        """Aggregate posted notifications over the last ``days`` days.

        Returns a dict with ``total``, ``by_subscription`` (id, name, count)
        and ``by_day`` (date, count), newest day first.
        """
        since = _dt_to_str((now or datetime.utcnow()) - timedelta(days=days))

        total_row = self.conn.execute(
            "SELECT COUNT(*) as cnt FROM post_history WHERE guild_id = ? AND posted_at >= ?",
            (guild_id, since),
        ).fetchone()

        by_subscription = self.conn.execute(
            """SELECT s.id, COALESCE(s.feed_name, s.feed_url) as name, COUNT(p.id) as cnt
               FROM subscriptions s
               LEFT JOIN post_history p ON s.id = p.subscription_id AND p.posted_at >= ?
               WHERE s.guild_id = ?
               GROUP BY s.id
               ORDER BY cnt DESC, s.id""",
            (since, guild_id),
        ).fetchall()

        by_day = self.conn.execute(
            """SELECT substr(posted_at, 1, 10) as day, COUNT(*) as cnt
               FROM post_history
               WHERE guild_id = ? AND posted_at >= ?
               GROUP BY day
               ORDER BY day DESC""",
            (guild_id, since),
        ).fetchall()

        return {
            "total": total_row["cnt"] if total_row else 0,
            "by_subscription": [
                {"id": r["id"], "name": r["name"], "count": r["cnt"]}
                for r in by_subscription
            ],
            "by_day": [{"date": r["day"], "count": r["cnt"]} for r in by_day],
        }

    @_synchronized
    def clean_old_history(self, days: int = 30, now: datetime | None = None) -> int:
        """Delete history rows older than ``days``. Returns count of deleted rows."""
        cutoff = (now or datetime.utcnow()) - timedelta(days=days)
        cursor = self.conn.execute(
            "DELETE FROM post_history WHERE posted_at < ?", (_dt_to_str(cutoff),)
        )
        self.conn.commit()
        return cursor.rowcount

    # --- Guild settings operations ---

    @_synchronized
    def get_guild_settings(self, guild_id: str) -> GuildSettings | None:
        row = self.conn.execute(
            "SELECT * FROM guild_settings WHERE guild_id = ?", (guild_id,)
        ).fetchone()
        return _row_to_settings(row) if row else None

    @_synchronized
    def upsert_guild_settings(self, guild_id: str, patch: GuildSettingsPatch) -> GuildSettings:
        """Create or update a guild's settings and return the stored values."""
        changes = patch.changes()
        existing = self.get_guild_settings(guild_id)

        if existing is None:
            self.conn.execute(
                """INSERT INTO guild_settings (guild_id, alert_channel_id, alert_threshold,
                   default_color, buttons_enabled, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    guild_id,
                    changes.get("alert_channel_id"),
                    changes.get("alert_threshold") or DEFAULT_ALERT_THRESHOLD,
                    changes.get("default_color"),
                    int(changes.get("buttons_enabled", True) is not False),
                    _dt_to_str(datetime.utcnow()),
                ),
            )
        elif changes:
            assignments = []
            values: list = []
            for column, value in changes.items():
                convert = _GUILD_PATCH_COLUMNS[column]
                assignments.append(f"{column} = ?")
                values.append(convert(value) if convert and value is not None else value)
            self.conn.execute(
                f"UPDATE guild_settings SET {', '.join(assignments)} WHERE guild_id = ?",
                (*values, guild_id),
            )
        self.conn.commit()
        return self.get_guild_settings(guild_id)

    # --- Import / export ---

    @_synchronized
    def export_subscriptions(self, guild_id: str) -> str:
        """Serialize a guild's subscriptions as a JSON array."""
        subs = self.get_subscriptions(guild_id)
        return json.dumps(
            [{name: getattr(sub, name) for name in EXPORT_FIELDS} for sub in subs],
            indent=2,
        )

    @_synchronized
    def import_subscriptions(self, guild_id: str, data: list) -> ImportResult:
        """Create subscriptions from exported records, validating each entry."""
        result = ImportResult()

        for index, entry in enumerate(data, start=1):
            error = _validate_import_entry(entry)
            if error:
                result.errors.append(f"Entry {index}: {error}")
                result.failed += 1
                continue

            max_posts = entry.get("max_posts_per_hour")
            sub = Subscription(
                guild_id=guild_id,
                channel_id=entry["channel_id"],
                feed_url=entry["feed_url"],
                feed_name=entry.get("feed_name") or None,
                color=(entry.get("color") or "").lstrip("#") or None,
                role_id=entry.get("role_id") or None,
                category=entry.get("category") or None,
                include_keywords=entry.get("include_keywords") or None,
                exclude_keywords=entry.get("exclude_keywords") or None,
                use_regex=bool(entry.get("use_regex")),
                max_posts_per_hour=int(max_posts) if max_posts else None,
                paused=bool(entry.get("paused")),
            )
            if self.add_subscription(sub) is None:
                result.errors.append(f"Entry {index}: duplicate subscription")
                result.failed += 1
            else:
                result.success += 1

        return result


# --- Helper functions ---


def _validate_import_entry(entry) -> str | None:
    if not isinstance(entry, dict):
        return "not an object"
    channel_id = entry.get("channel_id")
    if not channel_id or not isinstance(channel_id, str):
        return "missing or invalid channel_id"
    feed_url = entry.get("feed_url")
    if not feed_url or not isinstance(feed_url, str):
        return "missing or invalid feed_url"
    parsed = urlparse(feed_url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return "invalid feed_url format"
    color = entry.get("color")
    if color and not (isinstance(color, str) and _COLOR_RE.match(color)):
        return "invalid color format (expected hex)"
    max_posts = entry.get("max_posts_per_hour")
    if max_posts is not None and not isinstance(max_posts, int):
        return "invalid max_posts_per_hour"
    return None


def _dt_to_str(dt: datetime | None) -> str | None:
    """Convert datetime to ISO string for storage."""
    return dt.isoformat() if dt else None


def _str_to_dt(s: str | None) -> datetime | None:
    """Convert stored ISO string back to datetime."""
    if not s:
        return None
    return datetime.fromisoformat(s)


def _row_to_subscription(row: sqlite3.Row) -> Subscription:
    """Convert a database row to a Subscription dataclass."""
    return Subscription(
        id=row["id"],
        guild_id=row["guild_id"],
        channel_id=row["channel_id"],
        feed_url=row["feed_url"],
        feed_name=row["feed_name"],
        last_item_guid=row["last_item_guid"],
        paused=bool(row["paused"]),
        include_keywords=row["include_keywords"],
        exclude_keywords=row["exclude_keywords"],
        use_regex=bool(row["use_regex"]),
        max_posts_per_hour=row["max_posts_per_hour"],
        posts_this_hour=row["posts_this_hour"] or 0,
        hour_started_at=_str_to_dt(row["hour_started_at"]),
        webhook_url=row["webhook_url"],
        webhook_name=row["webhook_name"],
        webhook_avatar=row["webhook_avatar"],
        error_count=row["error_count"] or 0,
        last_error=row["last_error"],
        last_check_at=_str_to_dt(row["last_check_at"]),
        color=row["color"],
        role_id=row["role_id"],
        category=row["category"],
        show_buttons=row["show_buttons"] != 0,
        created_at=_str_to_dt(row["created_at"]) or datetime.utcnow(),
    )


def _row_to_record(row: sqlite3.Row) -> NotificationRecord:
    return NotificationRecord(
        id=row["id"],
        guild_id=row["guild_id"],
        subscription_id=row["subscription_id"],
        item_guid=row["item_guid"],
        item_title=row["item_title"],
        item_link=row["item_link"],
        posted_at=_str_to_dt(row["posted_at"]) or datetime.utcnow(),
    )


def _row_to_settings(row: sqlite3.Row) -> GuildSettings:
    return GuildSettings(
        guild_id=row["guild_id"],
        alert_channel_id=row["alert_channel_id"],
        alert_threshold=row["alert_threshold"] or DEFAULT_ALERT_THRESHOLD,
        default_color=row["default_color"],
        buttons_enabled=row["buttons_enabled"] != 0,
        created_at=_str_to_dt(row["created_at"]) or datetime.utcnow(),
    )
