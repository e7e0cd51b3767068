"""
Signal relay - call state machine, typing indicators, receipts and presence.

Call states per identity pair:

    IDLE --offer--> RINGING --answer--> CONNECTED --end--> ENDED
                    RINGING --reject--> REJECTED
                    RINGING --timer---> TIMED_OUT
                    RINGING --caller end--> ENDED (cancelled)

Every terminal state resets the pair to IDLE. Local state is authoritative:
a transition is never undone because the transport failed to deliver it.
"""
import enum
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from django.utils import timezone

from .auth import Identity
from .channels import ChannelKind, ChannelRouter, conversation_id, parse_channel_id, user_channel_id
from .constants import RING_TIMEOUT_SECONDS, TERMINAL_RETRY_BACKOFF_SECONDS
from .errors import AlreadyInCall, BadRequest, Forbidden, Internal, InvalidTarget, TransportUnavailable
from .sessions import Session, SessionStore
from .tracker import Outcome, OutcomeTracker
from .transport import encode_payload
from .utils import canonical_pair, format_timestamp, identity_key

logger = logging.getLogger("signaling")

PairKey = Tuple[str, str]


class SignalType(str, enum.Enum):
    OFFER = "OFFER"
    ANSWER = "ANSWER"
    ICE_CANDIDATE = "ICE_CANDIDATE"
    REJECT = "REJECT"
    END = "END"
    TYPING = "TYPING"
    READ_RECEIPT = "READ_RECEIPT"
    DELIVERED = "DELIVERED"
    PRESENCE = "PRESENCE"

    @property
    def event(self) -> str:
        return SIGNAL_EVENTS[self]

    @property
    def is_terminal(self) -> bool:
        return self in (SignalType.REJECT, SignalType.END)


# Event names the web client binds to
SIGNAL_EVENTS = {
    SignalType.OFFER: "call-offer",
    SignalType.ANSWER: "call-answer",
    SignalType.ICE_CANDIDATE: "ice-candidate",
    SignalType.REJECT: "call-rejected",
    SignalType.END: "call-ended",
    SignalType.TYPING: "typing",
    SignalType.READ_RECEIPT: "message-read",
    SignalType.DELIVERED: "message-delivered",
    SignalType.PRESENCE: "online-status",
}


class CallState(str, enum.Enum):
    IDLE = "idle"
    RINGING = "ringing"
    CONNECTED = "connected"
    ENDED = "ended"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"


ACTIVE_STATES = (CallState.RINGING, CallState.CONNECTED)


@dataclass
class SignalEnvelope:
    type: SignalType
    sender_id: str
    issued_at: datetime
    target_id: Optional[str] = None
    channel_id: Optional[str] = None
    call_id: Optional[str] = None
    payload: Any = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def as_event(self) -> Dict[str, Any]:
        data = {
            "type": self.type.value,
            "senderId": self.sender_id,
            "issuedAt": format_timestamp(self.issued_at),
        }
        if self.target_id is not None:
            data["targetId"] = self.target_id
        if self.channel_id is not None:
            data["channelId"] = self.channel_id
        if self.call_id is not None:
            data["callId"] = self.call_id
        if self.payload is not None:
            data["payload"] = self.payload
        data.update(self.extra)
        return data

    def check_size(self) -> None:
        """Raise BadRequest if the event would exceed the transport limit."""
        encode_payload(self.as_event())


@dataclass
class Call:
    call_id: str
    caller_id: str
    callee_id: str
    created_at: datetime
    caller_name: str = ""
    answered_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    timer: Any = None

    def other(self, identity_id: str) -> str:
        return self.callee_id if identity_id == self.caller_id else self.caller_id

    @property
    def duration_seconds(self) -> Optional[int]:
        if self.answered_at is None or self.ended_at is None:
            return None
        return int((self.ended_at - self.answered_at).total_seconds())


@dataclass
class CallSlot:
    """Explicit call state for one identity pair, IDLE when no call is active."""
    lock: threading.Lock = field(default_factory=threading.Lock)
    state: CallState = CallState.IDLE
    call: Optional[Call] = None


@dataclass
class RelayResult:
    call_id: Optional[str]
    state: CallState
    published: bool = False
    duplicate: bool = False


class SignalRelay:
    def __init__(
        self,
        sessions: SessionStore,
        router: ChannelRouter,
        tracker: OutcomeTracker,
        transport,
        persistence=None,
        ring_timeout: float = RING_TIMEOUT_SECONDS,
        retry_backoff: float = TERMINAL_RETRY_BACKOFF_SECONDS,
        clock: Callable[[], datetime] = timezone.now,
        timer_factory=threading.Timer,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.sessions = sessions
        self.router = router
        self.tracker = tracker
        self.transport = transport
        self.persistence = persistence
        self.ring_timeout = ring_timeout
        self.retry_backoff = retry_backoff
        self._clock = clock
        self._timer_factory = timer_factory
        self._sleep = sleep

        self._slots: Dict[PairKey, CallSlot] = {}
        self._slots_guard = threading.Lock()
        # identity -> pair it is busy with, and call id -> pair; guarded by _claims_lock
        self._busy: Dict[str, PairKey] = {}
        self._calls: Dict[str, PairKey] = {}
        self._claims_lock = threading.Lock()

    # =========================================================================
    # State inspection
    # =========================================================================

    def _slot(self, key: PairKey) -> CallSlot:
        with self._slots_guard:
            slot = self._slots.get(key)
            if slot is None:
                slot = self._slots[key] = CallSlot()
            return slot

    def _acquire_slot(self, key: PairKey) -> CallSlot:
        """Return the live slot for a pair with its lock held."""
        while True:
            slot = self._slot(key)
            slot.lock.acquire()
            # swept while we were waiting for the lock
            if self._slots.get(key) is slot:
                return slot
            slot.lock.release()

    def sweep(self) -> int:
        """Forget IDLE pair slots nobody is using."""
        removed = 0
        with self._slots_guard:
            for key, slot in list(self._slots.items()):
                if slot.state is not CallState.IDLE or not slot.lock.acquire(blocking=False):
                    continue
                try:
                    if slot.state is CallState.IDLE:
                        del self._slots[key]
                        removed += 1
                finally:
                    slot.lock.release()
        return removed

    def call_state(self, first, second) -> CallState:
        slot = self._slots.get(canonical_pair(identity_key(first), identity_key(second)))
        return slot.state if slot else CallState.IDLE

    def active_call(self, identity_id: str) -> Optional[Call]:
        key = self._busy.get(identity_id)
        if key is None:
            return None
        slot = self._slots.get(key)
        return slot.call if slot else None

    # =========================================================================
    # Calls
    # =========================================================================

    def offer(self, caller: Identity, callee_id, payload: Any = None) -> RelayResult:
        callee_id = identity_key(callee_id, "target_id")
        if callee_id == caller.id:
            raise InvalidTarget("cannot_call_self")
        now = self._clock()
        envelope = SignalEnvelope(
            type=SignalType.OFFER,
            sender_id=caller.id,
            issued_at=now,
            target_id=callee_id,
            call_id=str(uuid.uuid4()),
            payload=payload,
            extra={"callerName": caller.display_name, "callerAvatar": caller.avatar_ref},
        )
        envelope.check_size()

        if not self.sessions.is_reachable(callee_id):
            raise InvalidTarget("target_unreachable", target_id=callee_id)

        key = canonical_pair(caller.id, callee_id)
        slot = self._acquire_slot(key)
        try:
            with self._claims_lock:
                if callee_id in self._busy:
                    raise AlreadyInCall(target_id=callee_id)
                if caller.id in self._busy:
                    raise AlreadyInCall("caller_busy")
                call = Call(
                    call_id=envelope.call_id,
                    caller_id=caller.id,
                    callee_id=callee_id,
                    created_at=now,
                    caller_name=caller.display_name,
                )
                self._busy[caller.id] = key
                self._busy[callee_id] = key
                self._calls[call.call_id] = key

            slot.state = CallState.RINGING
            slot.call = call
            call.timer = self._start_ring_timer(call.call_id)
        finally:
            slot.lock.release()

        channel_id = conversation_id(caller.id, callee_id)
        self.router.join(channel_id, caller.id)
        self.router.join(channel_id, callee_id)

        logger.info(f"[RELAY] {caller.id} -> {callee_id} ringing, call={call.call_id}")

        published = self._publish(envelope, channel_id)

        self._persist("create_call_record", call.call_id, channel_id, caller.id, callee_id, caller.display_name)
        return RelayResult(call.call_id, CallState.RINGING, published)

    def answer(self, callee: Identity, call_id: str, payload: Any = None) -> RelayResult:
        slot = self._slot_for_call(call_id)
        if slot is None:
            return self._late_signal(call_id, SignalType.ANSWER)

        now = self._clock()
        with slot.lock:
            call = slot.call
            if call is None or call.call_id != call_id:
                return self._late_signal(call_id, SignalType.ANSWER)
            self._check_participant(call, callee.id)
            if callee.id != call.callee_id:
                raise Forbidden("not_callee")
            if slot.state is CallState.CONNECTED:
                logger.info(f"[RELAY] Duplicate answer for {call_id}")
                return RelayResult(call_id, CallState.CONNECTED, duplicate=True)

            envelope = SignalEnvelope(
                type=SignalType.ANSWER,
                sender_id=callee.id,
                issued_at=now,
                target_id=call.caller_id,
                call_id=call_id,
                payload=payload,
            )
            envelope.check_size()

            self._cancel_ring_timer(call)
            slot.state = CallState.CONNECTED
            call.answered_at = now
            self.tracker.record_outcome(call_id, Outcome.ANSWERED)

        logger.info(f"[RELAY] Call {call_id} connected")

        published = self._publish(envelope, conversation_id(call.caller_id, call.callee_id))
        self._persist("update_call_status", call_id, CallState.CONNECTED.value, answeredAt=now)
        return RelayResult(call_id, CallState.CONNECTED, published)

    def reject(self, callee: Identity, call_id: str, reason: str = "declined") -> RelayResult:
        slot = self._slot_for_call(call_id)
        if slot is None:
            return self._late_signal(call_id, SignalType.REJECT)

        with slot.lock:
            call = slot.call
            if call is None or call.call_id != call_id:
                return self._late_signal(call_id, SignalType.REJECT)
            self._check_participant(call, callee.id)
            if callee.id != call.callee_id:
                raise Forbidden("not_callee")
            if slot.state is not CallState.RINGING:
                raise InvalidTarget("call_not_ringing", state=slot.state.value)
            self._finish(slot, CallState.REJECTED, Outcome.REJECTED)

        return self._announce_terminal(call, callee.id, SignalType.REJECT, CallState.REJECTED, reason)

    def end(self, party: Identity, call_id: str) -> RelayResult:
        """Hang up. Before an answer this cancels (caller) or declines (callee)."""
        slot = self._slot_for_call(call_id)
        if slot is None:
            return self._late_signal(call_id, SignalType.END)

        with slot.lock:
            call = slot.call
            if call is None or call.call_id != call_id:
                return self._late_signal(call_id, SignalType.END)
            self._check_participant(call, party.id)

            if slot.state is CallState.CONNECTED:
                self._finish(slot, CallState.ENDED, Outcome.ENDED)
                signal, state, reason = SignalType.END, CallState.ENDED, "hangup"
            elif party.id == call.caller_id:
                self._finish(slot, CallState.ENDED, Outcome.CANCELLED)
                signal, state, reason = SignalType.END, CallState.ENDED, "cancelled"
            else:
                self._finish(slot, CallState.REJECTED, Outcome.REJECTED)
                signal, state, reason = SignalType.REJECT, CallState.REJECTED, "declined"

        return self._announce_terminal(call, party.id, signal, state, reason)

    def ice_candidate(self, sender: Identity, target_id, candidate: Any, call_id: Optional[str] = None) -> RelayResult:
        """Relay an ICE candidate while the pair is ringing or connected, drop it otherwise."""
        target_id = identity_key(target_id, "target_id")
        key = canonical_pair(sender.id, target_id)
        slot = self._slots.get(key)
        if slot is None:
            logger.debug(f"[RELAY] Dropping ICE candidate {sender.id} -> {target_id}, no call")
            return RelayResult(call_id, CallState.IDLE)

        with slot.lock:
            state, call = slot.state, slot.call
        if state not in ACTIVE_STATES or (call_id and call.call_id != call_id):
            logger.debug(f"[RELAY] Dropping ICE candidate {sender.id} -> {target_id} in {state.value}")
            return RelayResult(call_id, state)

        envelope = SignalEnvelope(
            type=SignalType.ICE_CANDIDATE,
            sender_id=sender.id,
            issued_at=self._clock(),
            target_id=target_id,
            call_id=call.call_id,
            payload=candidate,
        )
        envelope.check_size()
        published = self._publish(envelope, conversation_id(sender.id, target_id))
        return RelayResult(call.call_id, state, published)

    def _slot_for_call(self, call_id: str) -> Optional[CallSlot]:
        if not call_id:
            raise BadRequest("missing_call_id")
        key = self._calls.get(call_id)
        return self._slots.get(key) if key else None

    def _check_participant(self, call: Call, identity_id: str) -> None:
        if identity_id not in (call.caller_id, call.callee_id):
            raise Forbidden("not_a_participant")

    def _late_signal(self, call_id: str, signal: SignalType) -> RelayResult:
        outcome = self.tracker.get_outcome(call_id)
        if outcome.is_final:
            logger.info(f"[RELAY] Dropping late {signal.value} for {call_id}, already {outcome.value}")
            return RelayResult(call_id, CallState.IDLE, duplicate=True)
        raise InvalidTarget("call_not_found", call_id=call_id)

    def _finish(self, slot: CallSlot, state: CallState, outcome: Outcome) -> None:
        """Terminal transition; caller holds ``slot.lock``."""
        call = slot.call
        self._cancel_ring_timer(call)
        slot.state = state
        call.ended_at = self._clock()
        self.tracker.record_outcome(call.call_id, outcome)
        with self._claims_lock:
            self._busy.pop(call.caller_id, None)
            self._busy.pop(call.callee_id, None)
            self._calls.pop(call.call_id, None)
        slot.state = CallState.IDLE
        slot.call = None
        logger.info(f"[RELAY] Call {call.call_id} {state.value} ({outcome.value})")

    def _announce_terminal(
        self,
        call: Call,
        sender_id: str,
        signal: SignalType,
        state: CallState,
        reason: str,
    ) -> RelayResult:
        channel_id = conversation_id(call.caller_id, call.callee_id)
        published = self._publish(
            SignalEnvelope(
                type=signal,
                sender_id=sender_id,
                issued_at=call.ended_at,
                target_id=call.other(sender_id),
                call_id=call.call_id,
                extra={"reason": reason},
            ),
            channel_id,
        )
        self.router.leave(channel_id, call.caller_id)
        self.router.leave(channel_id, call.callee_id)

        status = "cancelled" if reason == "cancelled" else state.value
        self._persist(
            "update_call_status",
            call.call_id,
            status,
            endedAt=call.ended_at,
            durationSec=call.duration_seconds,
        )
        return RelayResult(call.call_id, state, published)

    # =========================================================================
    # Ring timer
    # =========================================================================

    def _start_ring_timer(self, call_id: str):
        timer = self._timer_factory(self.ring_timeout, self._on_ring_timeout, args=(call_id,))
        timer.daemon = True
        timer.start()
        return timer

    def _cancel_ring_timer(self, call: Call) -> None:
        if call.timer is not None:
            call.timer.cancel()
            call.timer = None

    def _on_ring_timeout(self, call_id: str) -> None:
        slot = self._slot_for_call(call_id)
        if slot is None:
            return
        with slot.lock:
            call = slot.call
            # answered, rejected or replaced while the timer was firing
            if call is None or call.call_id != call_id or slot.state is not CallState.RINGING:
                return
            call.timer = None
            self._finish(slot, CallState.TIMED_OUT, Outcome.TIMED_OUT)

        # synthetic REJECT on behalf of the callee
        self._announce_terminal(call, call.callee_id, SignalType.REJECT, CallState.TIMED_OUT, "timeout")

    # =========================================================================
    # Stateless signals
    # =========================================================================

    def typing(self, sender: Identity, channel_id: str, is_typing: bool) -> bool:
        kind, parts = parse_channel_id(channel_id)
        if kind is ChannelKind.CONVERSATION:
            if sender.id not in parts:
                raise Forbidden("not_a_participant")
        elif kind is ChannelKind.GROUP_TYPING:
            self.router.join(channel_id, sender.id)
        else:
            raise BadRequest("invalid_channel_kind", channel_id=channel_id)

        self.router.set_typing(channel_id, sender.id, bool(is_typing))
        return self._publish(
            SignalEnvelope(
                type=SignalType.TYPING,
                sender_id=sender.id,
                issued_at=self._clock(),
                channel_id=channel_id,
                extra={"isTyping": bool(is_typing), "userName": sender.display_name},
            ),
            channel_id,
        )

    def read_receipt(self, reader: Identity, sender_id, message_id) -> bool:
        return self._receipt(reader, sender_id, message_id, SignalType.READ_RECEIPT, "mark_read", "readAt")

    def delivered(self, reader: Identity, sender_id, message_id) -> bool:
        return self._receipt(reader, sender_id, message_id, SignalType.DELIVERED, "mark_delivered", "deliveredAt")

    def _receipt(self, reader: Identity, sender_id, message_id, signal: SignalType, method: str, stamp: str) -> bool:
        sender_id = identity_key(sender_id, "sender_id")
        if message_id in (None, ""):
            raise BadRequest("missing_message_id")
        if sender_id == reader.id:
            raise BadRequest("cannot_acknowledge_own_message")

        now = self._clock()
        channel_id = conversation_id(reader.id, sender_id)
        published = self._publish(
            SignalEnvelope(
                type=signal,
                sender_id=reader.id,
                issued_at=now,
                target_id=sender_id,
                channel_id=channel_id,
                extra={"messageId": message_id, stamp: format_timestamp(now)},
            ),
            channel_id,
        )
        # the receipt is already out; a failed write is reported, not rolled back
        if self._persist(method, str(message_id), reader.id) is False:
            raise Internal("persistence_failed", published=published)
        return published

    def presence(self, identity: Identity, online: bool) -> Session:
        session = self.sessions.set_online(identity.id, bool(online))
        published = self._publish(
            SignalEnvelope(
                type=SignalType.PRESENCE,
                sender_id=identity.id,
                issued_at=session.last_seen_at,
                extra={
                    "userId": identity.id,
                    "isOnline": session.is_online,
                    "lastSeen": format_timestamp(session.last_seen_at),
                },
            ),
            user_channel_id(identity.id),
        )
        if self._persist("update_last_seen", identity.id, session.last_seen_at, session.is_online) is False:
            raise Internal("persistence_failed", published=published)
        return session

    # =========================================================================
    # Collaborators
    # =========================================================================

    def _publish(self, envelope: SignalEnvelope, channel_id: str) -> bool:
        """
        Publish one envelope to the channel's topic.

        Terminal signals (END, REJECT) are retried once after a short backoff;
        everything else is dropped on the first failure. Never raises
        TransportUnavailable.
        """
        topic = self.router.resolve_topic(channel_id)
        event = envelope.type.event
        attempts = 2 if envelope.type.is_terminal else 1

        for attempt in range(1, attempts + 1):
            try:
                self.transport.publish(topic, event, envelope.as_event())
                return True
            except TransportUnavailable as exc:
                if attempt < attempts:
                    logger.warning(f"[RELAY] {event} -> {topic} failed ({exc.message}), retrying")
                    self._sleep(self.retry_backoff)
                    continue
                if envelope.type.is_terminal:
                    logger.error(f"[RELAY] Giving up on {event} -> {topic}: {exc.message}")
                else:
                    logger.warning(f"[RELAY] Dropped {event} -> {topic}: {exc.message}")
        return False

    def _persist(self, method: str, *args, **kwargs):
        if self.persistence is None:
            return None
        result = getattr(self.persistence, method)(*args, **kwargs)
        if result is False:
            logger.warning(f"[RELAY] Persistence {method} failed")
        return result
