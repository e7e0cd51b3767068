"""
Identity verification.

Tokens are HS256 JWTs issued by the account service, read from the ``token``
cookie or an ``Authorization: Bearer`` header. The relay never issues tokens.
"""
import functools
import logging
import os
from dataclasses import dataclass
from typing import Optional

import jwt
from django.http import JsonResponse

from .constants import AUTH_COOKIE_NAME, JWT_ALGORITHMS
from .errors import BadRequest
from .utils import identity_key

logger = logging.getLogger("signaling")


@dataclass(frozen=True)
class Identity:
    id: str
    display_name: str = ""
    avatar_ref: Optional[str] = None


def _request_token(request) -> Optional[str]:
    token = request.COOKIES.get(AUTH_COOKIE_NAME)
    if token:
        return token
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header[len("Bearer "):].strip() or None
    return None


def verify(request) -> Optional[Identity]:
    """Return the identity behind the request credentials, or None."""
    token = _request_token(request)
    if not token:
        return None

    secret = os.environ.get("JWT_SECRET")
    if not secret:
        logger.error("[AUTH] JWT_SECRET is not configured")
        return None

    try:
        claims = jwt.decode(token, secret, algorithms=JWT_ALGORITHMS)
    except jwt.ExpiredSignatureError:
        logger.info("[AUTH] Expired token")
        return None
    except jwt.InvalidTokenError as e:
        logger.warning(f"[AUTH] Invalid token: {e}")
        return None

    try:
        user_id = identity_key(claims.get("userId", claims.get("sub")), "user_id")
    except BadRequest:
        logger.warning("[AUTH] Token has no usable user id claim")
        return None

    return Identity(
        id=user_id,
        display_name=claims.get("name") or claims.get("username") or "",
        avatar_ref=claims.get("avatar"),
    )


def identity_required(view):
    """Reject unauthenticated requests with 401 and set ``request.identity``."""

    @functools.wraps(view)
    def wrapper(request, *args, **kwargs):
        identity = verify(request)
        if identity is None:
            return JsonResponse({"error": "unauthorized"}, status=401)
        request.identity = identity
        return view(request, *args, **kwargs)

    return wrapper
