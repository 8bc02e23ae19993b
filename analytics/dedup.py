"""
View Deduplication

Decides whether a page view is new or a repeat inside the dedup window.

A prior view matches when it shares ANY identity signal with the current
request (session id, user id or IP), since one visitor is often seen
through several of them at once. The check is read-then-write without a
lock: two simultaneous requests can both be recorded.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from django.conf import settings

from . import store

logger = logging.getLogger(__name__)

DEFAULT_DEDUP_WINDOW_MINUTES = 30


@dataclass(frozen=True)
class ViewerIdentity:
    session_id: Optional[str] = None
    user_id: Optional[int] = None
    ip_address: Optional[str] = None

    @property
    def actor_key(self) -> Optional[str]:
        """Best available identity: session, then user, then IP."""
        if self.session_id:
            return f"session:{self.session_id}"
        if self.user_id:
            return f"user:{self.user_id}"
        if self.ip_address:
            return f"ip:{self.ip_address}"
        return None

    @property
    def is_anonymous(self) -> bool:
        return self.actor_key is None


@dataclass(frozen=True)
class DedupDecision:
    record: bool
    reason: str


def dedup_window() -> timedelta:
    minutes = getattr(
        settings, "BLOGPULSE_VIEW_DEDUP_WINDOW_MINUTES", DEFAULT_DEDUP_WINDOW_MINUTES
    )
    return timedelta(minutes=minutes)


def is_within_window(
    previous_at: Optional[datetime], now: datetime, window: timedelta
) -> bool:
    return previous_at is not None and now - previous_at < window


def should_record_view(
    blog_id: int, identity: ViewerIdentity, now: datetime
) -> DedupDecision:
    """
    Args:
        blog_id: The viewed blog
        identity: Whatever identity signals the request carried
        now: Time of the incoming view

    Returns:
        DedupDecision(record=False) when a matching view exists less than
        the dedup window before `now`, else record=True
    """
    if identity.is_anonymous:
        return DedupDecision(record=True, reason="no identity")

    previous = store.find_most_recent_view(blog_id, identity)
    if previous is not None and is_within_window(previous.timestamp, now, dedup_window()):
        logger.debug(
            "Suppressing repeat view of blog %s by %s", blog_id, identity.actor_key
        )
        return DedupDecision(record=False, reason="repeat within window")

    return DedupDecision(record=True, reason="new view")
