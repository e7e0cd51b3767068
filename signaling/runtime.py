"""
Process-wide signaling runtime.

Builds the stores, the relay and its collaborators once per process and runs
the expiry sweep on a background thread. The in-memory stores sit behind this
object so they can be replaced (tests, or a shared store in a multi-instance
deployment) without touching the views.
"""
import logging
import threading
from typing import Optional

from .channels import ChannelRouter
from .constants import SWEEP_INTERVAL_SECONDS
from .firebase_service import FirestoreService
from .relay import SignalRelay
from .sessions import SessionStore
from .tracker import OutcomeTracker
from .transport import PusherTransport

logger = logging.getLogger("signaling")


class Sweeper:
    """Periodically runs the runtime expiry sweep."""

    def __init__(self, runtime: "SignalingRuntime", interval: float):
        self.runtime = runtime
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="signaling-sweeper", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.runtime.sweep()
            except Exception:
                logger.exception("[SWEEPER] Sweep failed")


class SignalingRuntime:
    def __init__(
        self,
        sessions: Optional[SessionStore] = None,
        router: Optional[ChannelRouter] = None,
        tracker: Optional[OutcomeTracker] = None,
        transport=None,
        persistence=None,
        sweep_interval: float = SWEEP_INTERVAL_SECONDS,
        **relay_options,
    ):
        self.sessions = sessions or SessionStore()
        self.router = router or ChannelRouter()
        self.tracker = tracker or OutcomeTracker()
        self.transport = transport or PusherTransport()
        self.persistence = persistence if persistence is not None else FirestoreService()
        self.relay = SignalRelay(
            self.sessions,
            self.router,
            self.tracker,
            self.transport,
            self.persistence,
            **relay_options,
        )
        self.sweeper = Sweeper(self, sweep_interval) if sweep_interval > 0 else None

    def start(self) -> None:
        if self.sweeper is not None:
            self.sweeper.start()
            logger.info(f"[RUNTIME] Sweeper started, interval={self.sweeper.interval}s")

    def stop(self) -> None:
        if self.sweeper is not None:
            self.sweeper.stop()

    def sweep(self) -> dict:
        outcomes = self.tracker.sweep()
        channels = self.router.sweep()
        slots = self.relay.sweep()
        if outcomes or channels or slots:
            logger.debug(f"[RUNTIME] Swept {outcomes} outcomes, {channels} channels, {slots} call slots")
        return {"outcomes": outcomes, "channels": channels, "slots": slots}


_runtime: Optional[SignalingRuntime] = None
_runtime_lock = threading.Lock()


def _install(runtime: SignalingRuntime) -> SignalingRuntime:
    """Swap in ``runtime`` and start it; caller holds ``_runtime_lock``."""
    global _runtime
    if _runtime is not None:
        _runtime.stop()
    _runtime = runtime
    _runtime.start()
    return _runtime


def init_runtime(runtime: Optional[SignalingRuntime] = None) -> SignalingRuntime:
    """Install (and start) the process runtime, replacing any previous one."""
    with _runtime_lock:
        return _install(runtime or SignalingRuntime())


def get_runtime() -> SignalingRuntime:
    with _runtime_lock:
        if _runtime is None:
            return _install(SignalingRuntime())
        return _runtime


def shutdown_runtime() -> None:
    global _runtime
    with _runtime_lock:
        if _runtime is not None:
            _runtime.stop()
            _runtime = None
