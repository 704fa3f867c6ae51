from __future__ import annotations

from itsdangerous import BadSignature, URLSafeTimedSerializer

from app.core.settings import settings


access_serializer = URLSafeTimedSerializer(settings.secret_key, salt="chatvault-access")


def sign_access_token(user_id: str, email: str) -> str:
    return access_serializer.dumps({"user_id": user_id, "email": email})


def unsign_access_token(token: str) -> dict | None:
    """Return ``{"user_id", "email"}`` for a valid token, None otherwise."""
    try:
        data = access_serializer.loads(token, max_age=settings.access_token_max_age_seconds)
    except BadSignature:
        return None
    if not isinstance(data, dict) or not data.get("user_id"):
        return None
    return {"user_id": str(data["user_id"]), "email": str(data.get("email") or "")}


def bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
