import hashlib
import hmac
import json

import httpx
import pytest

from signaling.errors import BadRequest, TransportUnavailable
from signaling.transport import PusherTransport


def make_transport(handler):
    return PusherTransport(
        app_id="123",
        key="app-key",
        secret="app-secret",
        cluster="eu",
        http_transport=httpx.MockTransport(handler),
    )


def test_publish_signs_request():
    seen = {}

    def handler(request):
        seen["request"] = request
        return httpx.Response(200, json={})

    result = make_transport(handler).publish("conv-1-2", "call-offer", {"type": "OFFER"})

    assert result.success
    request = seen["request"]
    assert request.url.host == "api-eu.pusher.com"
    assert request.url.path == "/apps/123/events"

    body = json.loads(request.content)
    assert body["name"] == "call-offer"
    assert body["channels"] == ["conv-1-2"]
    assert json.loads(body["data"]) == {"type": "OFFER"}

    params = dict(request.url.params)
    assert params["auth_key"] == "app-key"
    assert params["body_md5"] == hashlib.md5(request.content).hexdigest()
    signed = "&".join(f"{k}={params[k]}" for k in sorted(params) if k != "auth_signature")
    expected = hmac.new(
        b"app-secret", f"POST\n/apps/123/events\n{signed}".encode(), hashlib.sha256
    ).hexdigest()
    assert params["auth_signature"] == expected


def test_publish_raises_on_error_status():
    transport = make_transport(lambda request: httpx.Response(403, text="Forbidden"))

    result = transport.trigger("conv-1-2", "typing", {})
    assert not result.success
    assert result.error_code == "403"

    with pytest.raises(TransportUnavailable) as exc:
        transport.publish("conv-1-2", "typing", {})
    assert exc.value.details["reason"] == "403"


def test_publish_raises_on_network_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(TransportUnavailable):
        make_transport(handler).publish("conv-1-2", "typing", {})


def test_unconfigured_transport(monkeypatch):
    for name in ("PUSHER_APP_ID", "PUSHER_KEY", "PUSHER_SECRET"):
        monkeypatch.delenv(name, raising=False)
    transport = PusherTransport()

    assert not transport.is_configured()
    result = transport.trigger("conv-1-2", "typing", {})
    assert result.error_code == "not_configured"


def test_oversized_event_rejected():
    transport = make_transport(lambda request: httpx.Response(200))
    with pytest.raises(BadRequest):
        transport.publish("conv-1-2", "call-offer", {"payload": "x" * 20000})


def test_authorize_channel():
    transport = make_transport(lambda request: httpx.Response(200))
    auth = transport.authorize_channel("1234.5678", "private-conv-1-2")

    expected = hmac.new(b"app-secret", b"1234.5678:private-conv-1-2", hashlib.sha256).hexdigest()
    assert auth == {"auth": f"app-key:{expected}"}

    with pytest.raises(BadRequest):
        transport.authorize_channel("not-a-socket", "private-conv-1-2")
