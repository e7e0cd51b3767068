import json
from datetime import datetime, timedelta, timezone as dt_timezone

import jwt
import pytest

from signaling.auth import Identity
from signaling.channels import ChannelRouter
from signaling.errors import TransportUnavailable
from signaling.runtime import SignalingRuntime, init_runtime, shutdown_runtime
from signaling.sessions import SessionStore
from signaling.tracker import OutcomeTracker
from signaling.transport import PublishResult, PusherTransport

JWT_SECRET = "test-jwt-secret"


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=dt_timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


class FakeTimer:
    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        """Run the callback even if cancelled, like a timer thread that already woke up."""
        self.function(*self.args, **self.kwargs)


class TimerFactory:
    def __init__(self):
        self.timers = []

    def __call__(self, interval, function, args=None, kwargs=None):
        timer = FakeTimer(interval, function, args, kwargs)
        self.timers.append(timer)
        return timer

    @property
    def last(self):
        return self.timers[-1]


class RecordingTransport(PusherTransport):
    """Records publishes instead of calling Pusher; can be told to fail."""

    def __init__(self):
        super().__init__(app_id="123", key="app-key", secret="app-secret", cluster="us2")
        self.published = []
        self.attempts = []
        self.failures = 0

    def publish(self, topic, event, payload):
        self.attempts.append((topic, event, payload))
        if self.failures:
            self.failures -= 1
            raise TransportUnavailable(message="boom", reason="503", topic=topic, event=event)
        self.published.append((topic, event, payload))
        return PublishResult(True, topic, event)

    def events(self, event=None):
        return [p for p in self.published if event is None or p[1] == event]


class FakePersistence:
    def __init__(self):
        self.calls = []
        self.result = True

    def is_available(self):
        return True

    def _record(self, name, *args, **kwargs):
        self.calls.append((name, args, kwargs))
        return self.result

    def update_last_seen(self, *args, **kwargs):
        return self._record("update_last_seen", *args, **kwargs)

    def mark_read(self, *args, **kwargs):
        return self._record("mark_read", *args, **kwargs)

    def mark_delivered(self, *args, **kwargs):
        return self._record("mark_delivered", *args, **kwargs)

    def create_call_record(self, *args, **kwargs):
        return self._record("create_call_record", *args, **kwargs)

    def update_call_status(self, *args, **kwargs):
        return self._record("update_call_status", *args, **kwargs)

    def names(self):
        return [name for name, _, _ in self.calls]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def timers():
    return TimerFactory()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def persistence():
    return FakePersistence()


@pytest.fixture
def runtime(clock, timers, transport, persistence):
    rt = SignalingRuntime(
        sessions=SessionStore(clock=clock),
        router=ChannelRouter(clock=clock),
        tracker=OutcomeTracker(clock=clock),
        transport=transport,
        persistence=persistence,
        sweep_interval=0,
        ring_timeout=30,
        retry_backoff=0,
        clock=clock,
        timer_factory=timers,
        sleep=lambda seconds: None,
    )
    init_runtime(rt)
    yield rt
    shutdown_runtime()


@pytest.fixture
def relay(runtime):
    return runtime.relay


@pytest.fixture
def alice():
    return Identity(id="1", display_name="Alice", avatar_ref="avatars/1.png")


@pytest.fixture
def bob():
    return Identity(id="2", display_name="Bob")


@pytest.fixture
def carol():
    return Identity(id="3", display_name="Carol")


@pytest.fixture
def online(runtime):
    def mark(*identities):
        for identity in identities:
            runtime.sessions.set_online(identity.id, True)
    return mark


def make_token(user_id, secret=JWT_SECRET, **claims):
    payload = {"userId": user_id, "name": f"user {user_id}"}
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture
def jwt_secret(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", JWT_SECRET)
    return JWT_SECRET


@pytest.fixture
def api(client, jwt_secret, runtime):
    """POST/GET helpers authenticated as a given user id."""

    class Api:
        def post(self, path, body=None, as_user=None):
            headers = {}
            if as_user is not None:
                headers["HTTP_AUTHORIZATION"] = f"Bearer {make_token(as_user)}"
            return client.post(
                f"/api/{path}",
                data=json.dumps(body or {}),
                content_type="application/json",
                **headers,
            )

        def get(self, path, as_user=None):
            headers = {}
            if as_user is not None:
                headers["HTTP_AUTHORIZATION"] = f"Bearer {make_token(as_user)}"
            return client.get(f"/api/{path}", **headers)

    return Api()
