"""
Session store - online flag and last-seen timestamp per identity.

Sessions are never deleted; going offline only clears the flag.
"""
import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from django.utils import timezone

from .constants import PRESENCE_STALE_SECONDS

logger = logging.getLogger("signaling")


@dataclass(frozen=True)
class Session:
    identity_id: str
    is_online: bool
    last_seen_at: datetime


class SessionStore:
    def __init__(
        self,
        stale_after: int = PRESENCE_STALE_SECONDS,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self.stale_after = timedelta(seconds=stale_after)
        self._clock = clock
        self._sessions: Dict[str, Session] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, identity_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(identity_id)
            if lock is None:
                lock = self._locks[identity_id] = threading.Lock()
            return lock

    def set_online(self, identity_id: str, online: bool) -> Session:
        now = self._clock()
        with self._lock_for(identity_id):
            current = self._sessions.get(identity_id)
            if current is None:
                session = Session(identity_id, online, now)
                logger.debug(f"[SESSION] Created session for {identity_id}")
            else:
                session = replace(
                    current,
                    is_online=online,
                    last_seen_at=max(current.last_seen_at, now),
                )
            self._sessions[identity_id] = session
            return session

    def heartbeat(self, identity_id: str) -> Session:
        return self.set_online(identity_id, True)

    def get(self, identity_id: str) -> Optional[Session]:
        return self._sessions.get(identity_id)

    def is_reachable(self, identity_id: str) -> bool:
        session = self._sessions.get(identity_id)
        if session is None or not session.is_online:
            return False
        return self._clock() - session.last_seen_at <= self.stale_after

    def __len__(self):
        return len(self._sessions)
