from datetime import datetime, timedelta, timezone

import jwt

from clinic_backend.core import config

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


def _encode(payload: dict, expire_minutes: int) -> str:
    now = datetime.now(timezone.utc)
    payload = {**payload, "exp": now + timedelta(minutes=expire_minutes), "iat": now}
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def create_access_token(user_id: int, role_id: int, expires_minutes: int | None = None) -> str:
    expire_minutes = expires_minutes or config.JWT_EXPIRES_MINUTES
    payload = {"sub": str(user_id), "role_id": role_id, "token_type": ACCESS_TOKEN_TYPE}
    return _encode(payload, expire_minutes)


def create_refresh_token(user_id: int, expires_minutes: int | None = None) -> str:
    expire_minutes = expires_minutes or config.JWT_REFRESH_EXPIRES_MINUTES
    return _encode({"sub": str(user_id), "token_type": REFRESH_TOKEN_TYPE}, expire_minutes)


def decode_token(token: str, expected_type: str = ACCESS_TOKEN_TYPE) -> dict:
    payload = jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
    if payload.get("token_type") != expected_type:
        raise jwt.InvalidTokenError(f"Expected a {expected_type} token")
    return payload
