"""
Delivery acknowledgement tracker.

Remembers the terminal outcome of each call for a short grace window so that
late or duplicated signals (a REJECT arriving after the ring timer fired, a
second ANSWER redelivered by the transport) can be recognised and dropped.
"""
import enum
import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, Tuple

from django.utils import timezone

from .constants import OUTCOME_GRACE_SECONDS

logger = logging.getLogger("signaling")


class Outcome(str, enum.Enum):
    ANSWERED = "answered"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"
    ENDED = "ended"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"

    @property
    def is_final(self) -> bool:
        return self not in (Outcome.ANSWERED, Outcome.UNKNOWN)


class OutcomeTracker:
    def __init__(
        self,
        grace: int = OUTCOME_GRACE_SECONDS,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self.grace = timedelta(seconds=grace)
        self._clock = clock
        self._outcomes: Dict[str, Tuple[Outcome, datetime]] = {}
        self._lock = threading.Lock()

    def record_outcome(self, call_id: str, outcome: Outcome) -> bool:
        """Record the outcome of a call.

        The first final outcome wins; ANSWERED may still be followed by one.
        Returns False when the outcome was not recorded.
        """
        now = self._clock()
        with self._lock:
            existing = self._outcomes.get(call_id)
            live = existing is not None and existing[1] > now
            if live and (existing[0].is_final or not outcome.is_final):
                if existing[0] != outcome:
                    logger.warning(
                        f"[TRACKER] Ignoring {outcome.value} for {call_id}, "
                        f"already {existing[0].value}"
                    )
                return False
            self._outcomes[call_id] = (outcome, now + self.grace)
            return True

    def get_outcome(self, call_id: str) -> Outcome:
        entry = self._outcomes.get(call_id)
        if entry is None or entry[1] <= self._clock():
            return Outcome.UNKNOWN
        return entry[0]

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [call_id for call_id, (_, expires_at) in self._outcomes.items() if expires_at <= now]
            for call_id in expired:
                del self._outcomes[call_id]
        return len(expired)

    def __len__(self):
        return len(self._outcomes)
