"""Authentication helpers and FastAPI security dependencies.

This module mints and verifies the JWT access tokens used by the API
and exposes the dependencies routes use to obtain the current
`Principal`. A token carries the user id and the credential strings
granted to that user at login; validation is a read-only check and
never touches the database.

Token failures raise `TokenInvalidError` / `TokenExpiredError` (401).
Credential and ownership decisions live in `policies.py` (403).
"""

import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import FrozenSet, Iterable, Optional

import jwt
from fastapi import Depends, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBasic, HTTPBasicCredentials, HTTPBearer
from passlib.context import CryptContext

from .config import Settings, get_settings
from .errors import AuthTokenError, TokenExpiredError, TokenInvalidError, ValidationError

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)
basic_scheme = HTTPBasic(auto_error=False)
logger = logging.getLogger("content_api.auth")


@dataclass(frozen=True)
class Principal:
    """The authenticated actor of a single request."""
    user_id: uuid.UUID
    credentials: FrozenSet[str]


def hash_password(password: str) -> str:
    return PWD_CTX.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return PWD_CTX.verify(password, password_hash)


def create_access_token(
    user_id: uuid.UUID,
    credentials: Iterable[str],
    settings: Settings,
    expires_delta: Optional[timedelta] = None,
) -> tuple[str, datetime]:
    """Sign an access token for `user_id` carrying `credentials`.

    Returns the encoded token and its expiry instant.
    """
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta if expires_delta is not None else timedelta(hours=settings.JWT_EXPIRE_HOURS))
    payload = {
        "user_id": str(user_id),
        "credentials": sorted(credentials),
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
    }
    token = jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    return token, expire


def validate_token(token: str, settings: Settings) -> Principal:
    """Verify signature and expiry of `token` and return its `Principal`.

    Raises `TokenExpiredError` when `exp` is in the past and
    `TokenInvalidError` for anything else that is wrong with the token
    or its claims.
    """
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require": ["exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise TokenExpiredError("token expired", scope="jwt")
    except jwt.InvalidTokenError:
        raise TokenInvalidError("invalid token", scope="jwt")

    try:
        user_id = uuid.UUID(str(payload["user_id"]))
    except (KeyError, ValueError):
        raise TokenInvalidError("invalid token payload", scope="jwt")
    creds = payload.get("credentials", [])
    if not isinstance(creds, list) or not all(isinstance(c, str) for c in creds):
        raise TokenInvalidError("invalid token payload", scope="jwt")
    return Principal(user_id=user_id, credentials=frozenset(creds))


def get_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> Principal:
    """FastAPI dependency returning the caller's `Principal`.

    Missing or non-bearer Authorization headers are reported the same
    way as invalid tokens (401).
    """
    if credentials is None or not credentials.credentials:
        raise AuthTokenError("missing or malformed JWT", scope="jwt")
    return validate_token(credentials.credentials, settings)


def require_webhook_auth(
    request: Request,
    credentials: Optional[HTTPBasicCredentials] = Security(basic_scheme),
    settings: Settings = Depends(get_settings),
) -> None:
    """Guard for the Postmark webhook: HTTP Basic auth plus an optional User-Agent pin."""
    expected_user = settings.POSTMARK_BASICAUTH_USER
    expected_password = settings.POSTMARK_BASICAUTH_PASSWORD
    if not expected_user or not expected_password:
        # unconfigured credentials reject every request
        raise AuthTokenError("webhook authentication is not configured", scope="basic auth")
    if credentials is None:
        raise AuthTokenError("missing basic auth credentials", scope="basic auth")
    user_ok = secrets.compare_digest(credentials.username.encode(), expected_user.encode())
    password_ok = secrets.compare_digest(credentials.password.encode(), expected_password.encode())
    if not (user_ok and password_ok):
        logger.warning("webhook_auth_failed client=%s", request.client.host if request.client else "unknown")
        raise AuthTokenError("invalid basic auth credentials", scope="basic auth")
    if settings.POSTMARK_USER_AGENT and request.headers.get("User-Agent") != settings.POSTMARK_USER_AGENT:
        raise ValidationError("bad User-Agent header", scope="postmark webhook")
