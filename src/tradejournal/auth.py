from __future__ import annotations

import hashlib
import secrets
import uuid
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta

import bcrypt
import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from tradejournal.config import settings
from tradejournal.errors import InvalidOrExpiredToken
from tradejournal.models import User

bearer_scheme = HTTPBearer()

ACCESS_TOKEN_TYPE = "access"
EMAIL_CONFIRMATION_PURPOSE = "email_confirmation"
PASSWORD_RESET_PURPOSE = "password_reset"
CLOCK_SKEW_SECONDS = 30
REFRESH_SECRET_BYTES = 64


def utcnow() -> datetime:
    # Naive UTC, matching how datetimes are stored.
    return datetime.now(UTC).replace(tzinfo=None)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(password.encode(), password_hash.encode())


def generate_refresh_secret() -> str:
    return secrets.token_urlsafe(REFRESH_SECRET_BYTES)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def create_access_token(
    user: User, roles: Iterable[str], lifetime: timedelta | None = None
) -> str:
    now = datetime.now(UTC)
    if lifetime is None:
        lifetime = timedelta(minutes=settings.access_token_expire_minutes)
    payload = {
        "sub": str(user.id),
        "uid": str(user.id),
        "email": user.email or "",
        "unique_name": user.username or "",
        "roles": sorted(roles),
        "jti": uuid.uuid4().hex,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": now,
        "nbf": now,
        "exp": now + lifetime,
        "type": ACCESS_TOKEN_TYPE,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def _decode(token: str) -> dict:
    try:
        return jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            leeway=CLOCK_SKEW_SECONDS,
        )
    except jwt.ExpiredSignatureError:
        raise InvalidOrExpiredToken(reason="expired")
    except jwt.InvalidTokenError:
        raise InvalidOrExpiredToken("Invalid token.")


def decode_access_token(token: str) -> dict:
    payload = _decode(token)
    if payload.get("type") != ACCESS_TOKEN_TYPE:
        raise InvalidOrExpiredToken("Invalid token type.")
    return payload


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> uuid.UUID:
    payload = decode_access_token(credentials.credentials)
    try:
        return uuid.UUID(payload["sub"])
    except (KeyError, ValueError):
        raise InvalidOrExpiredToken("Invalid token.")


def _fingerprint(purpose: str, user: User) -> str:
    """Binds a one-time token to the state it is meant to change.

    A password reset token stops verifying once the password hash changes.
    An email confirmation token also stops verifying if the address changes.
    """
    source = user.password_hash
    if purpose == EMAIL_CONFIRMATION_PURPOSE:
        source = f"{user.email.lower()}:{source}"
    return hashlib.sha256(f"{purpose}:{source}".encode()).hexdigest()[:32]


def _create_action_token(user: User, purpose: str, lifetime: timedelta) -> str:
    now = datetime.now(UTC)
    payload = {
        "sub": str(user.id),
        "type": purpose,
        "fp": _fingerprint(purpose, user),
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": now,
        "exp": now + lifetime,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def create_email_confirmation_token(user: User) -> str:
    return _create_action_token(
        user,
        EMAIL_CONFIRMATION_PURPOSE,
        timedelta(hours=settings.email_confirmation_expire_hours),
    )


def create_password_reset_token(user: User) -> str:
    return _create_action_token(
        user,
        PASSWORD_RESET_PURPOSE,
        timedelta(minutes=settings.password_reset_expire_minutes),
    )


def verify_action_token(token: str, purpose: str, user: User) -> None:
    payload = _decode(token)
    if payload.get("type") != purpose:
        raise InvalidOrExpiredToken("Invalid token type.")
    if payload.get("sub") != str(user.id):
        raise InvalidOrExpiredToken("Invalid token.")
    if not secrets.compare_digest(str(payload.get("fp", "")), _fingerprint(purpose, user)):
        raise InvalidOrExpiredToken("Invalid token.")
