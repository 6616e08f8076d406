"""Include/exclude keyword filtering for feed items."""

import logging
import re

from rssfeed_notifier.models import FeedItem, Subscription

logger = logging.getLogger(__name__)


def passes(sub: Subscription, item: FeedItem) -> bool:
    """Return True if the item should be announced for this subscription.

    The search text is the lowercased title plus the snippet (or body).
    At least one include pattern must match, and no exclude pattern may match.
    """
    text = f"{item.title or ''} {item.snippet or item.body or ''}".lower()

    include = split_patterns(sub.include_keywords)
    if include and not any(matches(p, text, sub.use_regex) for p in include):
        return False

    exclude = split_patterns(sub.exclude_keywords)
    if exclude and any(matches(p, text, sub.use_regex) for p in exclude):
        return False

    return True


def split_patterns(raw: str | None) -> list[str]:
    """Split a comma-delimited keyword list, dropping blank entries."""
    if not raw:
        return []
    return [p.strip() for p in raw.split(",") if p.strip()]


def matches(pattern: str, text: str, use_regex: bool = False) -> bool:
    """Match one pattern against lowercased text.

    In regex mode a pattern that does not compile is matched literally.
    """
    if use_regex:
        try:
            return re.search(pattern, text, re.IGNORECASE) is not None
        except re.error as e:
            logger.debug("Invalid filter pattern %r (%s), matching literally", pattern, e)
    return pattern.lower() in text
