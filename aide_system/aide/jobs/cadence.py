"""
Adaptive sync cadence.

Connected users get their mailbox, calendar and CRM polled every few
seconds; everyone else on a slow background cadence.
"""


from datetime import timedelta
from typing import Protocol

from aide.core.config import settings


def next_sync_delay(is_online: bool, elapsed: timedelta | float = 0) -> timedelta:
    """Time left until the next sync, given the time elapsed since the last one."""
    if not isinstance(elapsed, timedelta):
        elapsed = timedelta(seconds=float(elapsed or 0))
    interval = timedelta(seconds=settings.ONLINE_SYNC_SECONDS if is_online else settings.OFFLINE_SYNC_SECONDS)
    return max(interval - elapsed, timedelta(0))


class PresenceTracker(Protocol):
    def is_online(self, user_id: str) -> bool: ...

    def mark_online(self, user_id: str) -> None: ...

    def mark_offline(self, user_id: str) -> None: ...


class InMemoryPresence:
    def __init__(self):
        self._online: set[str] = set()

    def is_online(self, user_id: str) -> bool:
        return user_id in self._online

    def mark_online(self, user_id: str) -> None:
        self._online.add(user_id)

    def mark_offline(self, user_id: str) -> None:
        self._online.discard(user_id)
