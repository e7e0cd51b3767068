from .health import health
from .presence import presence, presence_status
from .calls import (
    call_offer,
    call_answer,
    call_reject,
    call_end,
    call_signal,
    call_status,
)
from .messaging import typing, message_read, message_delivered
from .pusher_auth import pusher_auth

__all__ = [
    "health",
    "presence",
    "presence_status",
    "call_offer",
    "call_answer",
    "call_reject",
    "call_end",
    "call_signal",
    "call_status",
    "typing",
    "message_read",
    "message_delivered",
    "pusher_auth",
]
