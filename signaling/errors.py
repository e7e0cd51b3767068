"""
Error taxonomy for the signaling relay.

Each error carries a short machine code (returned as ``{"error": code}``) and
the HTTP status the views answer with.
"""
from typing import Any, Dict, Optional


class SignalingError(Exception):
    status = 500
    code = "internal"

    def __init__(self, code: Optional[str] = None, message: str = "", **details):
        self.code = code or self.code
        self.message = message
        self.details = details
        super().__init__(message or self.code)

    def as_dict(self) -> Dict[str, Any]:
        body = {"error": self.code}
        if self.message:
            body["message"] = self.message
        body.update(self.details)
        return body


class BadRequest(SignalingError):
    status = 400
    code = "bad_request"


class Unauthenticated(SignalingError):
    status = 401
    code = "unauthorized"


class Forbidden(SignalingError):
    status = 403
    code = "forbidden"


class InvalidTarget(SignalingError):
    """Target has no active session, or the referenced call does not exist."""

    status = 404
    code = "invalid_target"


class AlreadyInCall(SignalingError):
    status = 409
    code = "already_in_call"


class TransportUnavailable(SignalingError):
    """The hosted pub/sub publish failed."""

    status = 503
    code = "transport_unavailable"


class Internal(SignalingError):
    status = 500
    code = "internal"
