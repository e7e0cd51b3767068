import time

import jwt
from django.test import RequestFactory

from signaling.auth import verify

from .conftest import JWT_SECRET, make_token


def test_verify_bearer_token(jwt_secret):
    request = RequestFactory().get("/", HTTP_AUTHORIZATION=f"Bearer {make_token(7, avatar='a.png')}")
    identity = verify(request)
    assert identity.id == "7"
    assert identity.display_name == "user 7"
    assert identity.avatar_ref == "a.png"


def test_verify_cookie_token(jwt_secret):
    request = RequestFactory().get("/")
    request.COOKIES["token"] = make_token("42")
    assert verify(request).id == "42"


def test_sub_claim_fallback(jwt_secret):
    token = jwt.encode({"sub": "9"}, JWT_SECRET, algorithm="HS256")
    request = RequestFactory().get("/", HTTP_AUTHORIZATION=f"Bearer {token}")
    assert verify(request).id == "9"


def test_missing_token(jwt_secret):
    assert verify(RequestFactory().get("/")) is None


def test_forged_token(jwt_secret):
    request = RequestFactory().get("/", HTTP_AUTHORIZATION=f"Bearer {make_token(7, secret='other')}")
    assert verify(request) is None


def test_expired_token(jwt_secret):
    token = make_token(7, exp=int(time.time()) - 10)
    request = RequestFactory().get("/", HTTP_AUTHORIZATION=f"Bearer {token}")
    assert verify(request) is None


def test_token_without_user_id(jwt_secret):
    token = jwt.encode({"name": "nobody"}, JWT_SECRET, algorithm="HS256")
    request = RequestFactory().get("/", HTTP_AUTHORIZATION=f"Bearer {token}")
    assert verify(request) is None


def test_no_secret_configured(monkeypatch):
    monkeypatch.delenv("JWT_SECRET", raising=False)
    request = RequestFactory().get("/", HTTP_AUTHORIZATION=f"Bearer {make_token(7)}")
    assert verify(request) is None
