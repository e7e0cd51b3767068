"""
Channel router - canonical channel ids, transport topic names and membership.

Channel id formats:
- conv-<lo>-<hi>: one-to-one conversation, also carries call signaling
- group-<groupId>: group typing indicators
- user-<id>: per-identity notifications (presence)
"""
import enum
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Set, Tuple

from django.utils import timezone

from .constants import CHANNEL_GC_GRACE_SECONDS, TOPIC_PREFIX
from .errors import BadRequest
from .utils import canonical_pair, identity_key

logger = logging.getLogger("signaling")

# Pusher requires these prefixes on channels that clients authenticate for
TRANSPORT_CHANNEL_PREFIXES = ("private-", "presence-")


class ChannelKind(str, enum.Enum):
    CONVERSATION = "conv"
    GROUP_TYPING = "group"
    USER = "user"


@dataclass
class Channel:
    channel_id: str
    kind: ChannelKind
    participant_ids: Set[str] = field(default_factory=set)
    emptied_at: Optional[datetime] = None
    active_at: Optional[datetime] = None
    typing: Dict[str, bool] = field(default_factory=dict)


def conversation_id(first, second) -> str:
    low, high = canonical_pair(identity_key(first), identity_key(second))
    return f"{ChannelKind.CONVERSATION.value}-{low}-{high}"


def group_channel_id(group_id) -> str:
    return f"{ChannelKind.GROUP_TYPING.value}-{identity_key(group_id, 'group_id')}"


def user_channel_id(identity_id) -> str:
    return f"{ChannelKind.USER.value}-{identity_key(identity_id)}"


def parse_channel_id(channel_id: str) -> Tuple[ChannelKind, Tuple[str, ...]]:
    """Split a channel id into its kind and the ids it is made of."""
    if not isinstance(channel_id, str):
        raise BadRequest("invalid_channel_id")
    kind_value, _, rest = channel_id.partition("-")
    parts = tuple(rest.split("-")) if rest else ()
    try:
        kind = ChannelKind(kind_value)
    except ValueError:
        raise BadRequest("invalid_channel_id", channel_id=channel_id)

    expected = 2 if kind is ChannelKind.CONVERSATION else 1
    if len(parts) != expected or not all(parts):
        raise BadRequest("invalid_channel_id", channel_id=channel_id)
    if kind is ChannelKind.CONVERSATION and canonical_pair(*parts) != parts:
        raise BadRequest("non_canonical_channel_id", channel_id=channel_id)
    return kind, parts


class ChannelRouter:
    def __init__(
        self,
        topic_prefix: str = TOPIC_PREFIX,
        gc_grace: int = CHANNEL_GC_GRACE_SECONDS,
        clock: Callable[[], datetime] = timezone.now,
    ):
        if topic_prefix not in TRANSPORT_CHANNEL_PREFIXES:
            logger.warning(f"[CHANNEL] Topic prefix {topic_prefix!r} makes topics public, subscriptions are not authorized")
        self.topic_prefix = topic_prefix
        self.gc_grace = timedelta(seconds=gc_grace)
        self._clock = clock
        self._channels: Dict[str, Channel] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def resolve_topic(self, channel_id: str) -> str:
        return f"{self.topic_prefix}{channel_id}"

    def pair_topic(self, first, second) -> str:
        return self.resolve_topic(conversation_id(first, second))

    def _lock_for(self, channel_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(channel_id)
            if lock is None:
                lock = self._locks[channel_id] = threading.Lock()
            return lock

    def _get_or_create(self, channel_id: str) -> Channel:
        with self._guard:
            now = self._clock()
            channel = self._channels.get(channel_id)
            if channel is None:
                kind, _ = parse_channel_id(channel_id)
                # created empty, so collectable until someone joins
                channel = self._channels[channel_id] = Channel(channel_id, kind, emptied_at=now)
                logger.debug(f"[CHANNEL] Created {channel_id}")
            channel.active_at = now
            return channel

    def join(self, channel_id: str, identity_id: str) -> Channel:
        with self._lock_for(channel_id):
            channel = self._get_or_create(channel_id)
            channel.participant_ids.add(identity_id)
            channel.emptied_at = None
            return channel

    def leave(self, channel_id: str, identity_id: str) -> None:
        with self._lock_for(channel_id):
            channel = self._channels.get(channel_id)
            if channel is None:
                return
            channel.participant_ids.discard(identity_id)
            channel.typing.pop(identity_id, None)
            if not channel.participant_ids and channel.emptied_at is None:
                channel.emptied_at = self._clock()

    def get(self, channel_id: str) -> Optional[Channel]:
        return self._channels.get(channel_id)

    def members(self, channel_id: str) -> Set[str]:
        channel = self._channels.get(channel_id)
        if channel is None:
            return set()
        with self._lock_for(channel_id):
            return set(channel.participant_ids)

    def is_member(self, channel_id: str, identity_id: str) -> bool:
        return identity_id in self.members(channel_id)

    def set_typing(self, channel_id: str, identity_id: str, is_typing: bool) -> None:
        with self._lock_for(channel_id):
            channel = self._get_or_create(channel_id)
            channel.typing[identity_id] = is_typing

    def may_subscribe(self, identity_id: str, transport_channel: str) -> bool:
        """
        Whether an identity may subscribe to a transport channel name.

        Only names produced by ``resolve_topic`` are accepted.
        """
        if not isinstance(transport_channel, str) or not transport_channel.startswith(self.topic_prefix):
            return False
        name = transport_channel[len(self.topic_prefix):]
        try:
            kind, parts = parse_channel_id(name)
        except BadRequest:
            return False
        if kind is ChannelKind.GROUP_TYPING:
            return self.is_member(name, identity_id)
        return identity_id in parts

    def sweep(self) -> int:
        """
        Drop channels that have been empty for longer than the grace period.

        Group typing channels have no leave, so they also go once nobody has
        typed in them for the grace period.
        """
        cutoff = self._clock() - self.gc_grace
        removed = 0
        with self._guard:
            for channel_id, channel in list(self._channels.items()):
                if not self._expired(channel, cutoff):
                    continue
                lock = self._locks.get(channel_id)
                # skip channels someone is joining right now
                if lock is not None and not lock.acquire(blocking=False):
                    continue
                try:
                    del self._channels[channel_id]
                    self._locks.pop(channel_id, None)
                    removed += 1
                finally:
                    if lock is not None:
                        lock.release()
        if removed:
            logger.info(f"[CHANNEL] Swept {removed} empty channels")
        return removed

    @staticmethod
    def _expired(channel: Channel, cutoff: datetime) -> bool:
        if channel.emptied_at is not None:
            return channel.emptied_at <= cutoff
        if channel.kind is ChannelKind.GROUP_TYPING:
            return channel.active_at is not None and channel.active_at <= cutoff
        return False

    def __len__(self):
        return len(self._channels)
