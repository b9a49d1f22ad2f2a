"""Signed URL utilities."""

from __future__ import annotations

import os
from urllib.parse import urlencode

from itsdangerous import URLSafeTimedSerializer

DEFAULT_EXPIRY = int(os.environ.get("SIGNED_URL_EXPIRY", 60 * 60 * 24 * 30))


def _serializer() -> URLSafeTimedSerializer:
    secret = os.environ.get("SIGNING_SECRET", "change-me")
    return URLSafeTimedSerializer(secret_key=secret)


def public_url(path: str, **params: str) -> str:
    base = os.environ.get("PUBLIC_APP_URL", "http://localhost:8000").rstrip("/")
    query = f"?{urlencode(params)}" if params else ""
    return f"{base}{path}{query}"


def generate_token(payload: dict[str, object], purpose: str) -> str:
    serializer = _serializer()
    return serializer.dumps(payload, salt=purpose)


def load_token(token: str, purpose: str, max_age: int = DEFAULT_EXPIRY) -> dict[str, object]:
    serializer = _serializer()
    data = serializer.loads(token, max_age=max_age, salt=purpose)
    if not isinstance(data, dict):  # pragma: no cover - defensive
        raise TypeError("Invalid token payload")
    return data


def unsubscribe_url(wishlist_id: str) -> str:
    token = generate_token({"wishlist_id": wishlist_id}, "unsubscribe")
    return public_url("/apps/wishlist/unsubscribe", token=token)
