"""
Pusher transport - publishes signaling events over the Pusher HTTP API.

Requests are signed with HMAC-SHA256 as described in the Pusher REST API
reference; private channel subscriptions are signed the same way.
"""
import hashlib
import hmac
import json
import logging
import os
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from .constants import MAX_PAYLOAD_BYTES, TRANSPORT_TIMEOUT_SECONDS
from .errors import BadRequest, TransportUnavailable

logger = logging.getLogger("signaling")

SOCKET_ID_RE = re.compile(r"^\d+\.\d+$")


def encode_payload(payload: Dict[str, Any]) -> str:
    data = json.dumps(payload, separators=(",", ":"), default=str)
    if len(data.encode("utf-8")) > MAX_PAYLOAD_BYTES:
        raise BadRequest("payload_too_large", limit=MAX_PAYLOAD_BYTES)
    return data


@dataclass
class PublishResult:
    """Result of a publish attempt"""
    success: bool
    topic: str
    event: str
    error: Optional[str] = None
    error_code: Optional[str] = None


class PusherTransport:
    """
    Hosted pub/sub transport.
    Events are fire-and-forget: Pusher acknowledges acceptance, not delivery.
    """

    def __init__(
        self,
        app_id: Optional[str] = None,
        key: Optional[str] = None,
        secret: Optional[str] = None,
        cluster: Optional[str] = None,
        host: Optional[str] = None,
        timeout: float = TRANSPORT_TIMEOUT_SECONDS,
        http_transport: Optional[httpx.BaseTransport] = None,
    ):
        self.app_id = app_id or os.environ.get("PUSHER_APP_ID")
        self.key = key or os.environ.get("PUSHER_KEY")
        self.secret = secret or os.environ.get("PUSHER_SECRET")
        self.cluster = cluster or os.environ.get("PUSHER_CLUSTER", "us2")
        self.host = host or os.environ.get("PUSHER_HOST") or f"api-{self.cluster}.pusher.com"
        self.timeout = timeout
        self._http_transport = http_transport

    def is_configured(self) -> bool:
        """Check if Pusher credentials are present"""
        return all([self.app_id, self.key, self.secret])

    def _sign(self, value: str) -> str:
        return hmac.new(self.secret.encode("utf-8"), value.encode("utf-8"), hashlib.sha256).hexdigest()

    def _signed_params(self, method: str, path: str, body: bytes) -> Dict[str, str]:
        params = {
            "auth_key": self.key,
            "auth_timestamp": str(int(time.time())),
            "auth_version": "1.0",
            "body_md5": hashlib.md5(body).hexdigest(),
        }
        query = "&".join(f"{name}={params[name]}" for name in sorted(params))
        params["auth_signature"] = self._sign(f"{method}\n{path}\n{query}")
        return params

    def encode_event(self, topic: str, event: str, payload: Dict[str, Any]) -> bytes:
        data = encode_payload(payload)
        return json.dumps({"name": event, "channels": [topic], "data": data}).encode("utf-8")

    def trigger(self, topic: str, event: str, payload: Dict[str, Any]) -> PublishResult:
        """
        Send one event to one channel.

        Args:
            topic: Pusher channel name
            event: Event name clients bind to
            payload: JSON-serialisable event data

        Returns:
            PublishResult with success status and details
        """
        if not self.is_configured():
            return PublishResult(
                success=False,
                topic=topic,
                event=event,
                error="Pusher not configured",
                error_code="not_configured",
            )

        path = f"/apps/{self.app_id}/events"
        body = self.encode_event(topic, event, payload)
        params = self._signed_params("POST", path, body)

        try:
            with httpx.Client(timeout=self.timeout, transport=self._http_transport) as client:
                response = client.post(
                    f"https://{self.host}{path}",
                    params=params,
                    content=body,
                    headers={"Content-Type": "application/json"},
                )
        except httpx.TimeoutException:
            logger.error(f"[PUSHER] Publish timeout: {event} -> {topic}")
            return PublishResult(False, topic, event, error="Request timeout", error_code="timeout")
        except httpx.HTTPError as e:
            logger.error(f"[PUSHER] Publish exception: {e}")
            return PublishResult(False, topic, event, error=str(e), error_code="exception")

        if response.status_code == 200:
            logger.debug(f"[PUSHER] Published {event} -> {topic}")
            return PublishResult(True, topic, event)

        reason = response.text or "Unknown error"
        logger.error(f"[PUSHER] Publish failed: {response.status_code} - {reason}")
        return PublishResult(
            False, topic, event, error=reason, error_code=str(response.status_code)
        )

    def publish(self, topic: str, event: str, payload: Dict[str, Any]) -> PublishResult:
        """Like ``trigger`` but raises TransportUnavailable on failure."""
        result = self.trigger(topic, event, payload)
        if not result.success:
            raise TransportUnavailable(
                message=result.error or "",
                reason=result.error_code,
                topic=topic,
                event=event,
            )
        return result

    def authorize_channel(self, socket_id: str, channel_name: str) -> Dict[str, str]:
        """Sign a private channel subscription for the Pusher client library."""
        if not SOCKET_ID_RE.match(socket_id or ""):
            raise BadRequest("invalid_socket_id")
        signature = self._sign(f"{socket_id}:{channel_name}")
        return {"auth": f"{self.key}:{signature}"}
