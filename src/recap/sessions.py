"""
Session tokens issued by Recap after a successful Spotify login.

A session token is an HS256 JWT carrying the internal user id (`sub`) and a
unique token id (`jti`). It is valid for 24 hours unless its `jti` has been
placed on the revocation list by a logout.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt

from .store import Store

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
SESSION_LIFETIME = timedelta(hours=24)
STATE_LIFETIME = timedelta(minutes=10)
STATE_AUDIENCE = "recap:oauth-state"


class SessionTokenError(Exception):
    """Malformed token or bad signature."""


class SessionExpiredError(SessionTokenError):
    pass


class SessionRevokedError(SessionTokenError):
    pass


@dataclass
class IssuedToken:
    token: str
    jti: str
    expires_at: datetime


@dataclass
class SessionClaims:
    user_id: str
    jti: str
    issued_at: datetime
    expires_at: datetime


def issue_session_token(user_id: str, secret: str, now: datetime) -> IssuedToken:
    jti = uuid.uuid4().hex
    expires_at = now + SESSION_LIFETIME
    payload = {
        "sub": user_id,
        "jti": jti,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    token = jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)
    logger.info(f"Issued session token jti={jti[:8]}... for user_id={user_id}")
    return IssuedToken(token=token, jti=jti, expires_at=expires_at)


def decode_session_token(token: str, secret: str) -> SessionClaims:
    """
    Verify signature and expiry. Does not consult the revocation list.
    """
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[JWT_ALGORITHM],
            options={"require": ["sub", "jti", "iat", "exp"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise SessionExpiredError("Session token has expired.") from exc
    except jwt.InvalidTokenError as exc:
        raise SessionTokenError(f"Invalid session token: {exc}") from exc

    return SessionClaims(
        user_id=payload["sub"],
        jti=payload["jti"],
        issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    )


def authenticate(token: str, secret: str, store: Store, now: datetime) -> SessionClaims:
    claims = decode_session_token(token, secret)
    if store.is_token_revoked(claims.jti, now):
        logger.warning(f"Rejected revoked session token jti={claims.jti[:8]}...")
        raise SessionRevokedError("Session token has been revoked.")
    return claims


def revoke(claims: SessionClaims, store: Store, now: datetime) -> None:
    store.revoke_token(claims.jti, now)
    logger.info(f"Revoked session token jti={claims.jti[:8]}... for user_id={claims.user_id}")


def issue_oauth_state(secret: str, now: datetime) -> str:
    """Signed, short-lived OAuth `state` value; nothing is kept server-side."""
    payload = {
        "aud": STATE_AUDIENCE,
        "nonce": uuid.uuid4().hex,
        "exp": int((now + STATE_LIFETIME).timestamp()),
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def verify_oauth_state(state: str, secret: str) -> bool:
    try:
        jwt.decode(state, secret, algorithms=[JWT_ALGORITHM], audience=STATE_AUDIENCE)
    except jwt.InvalidTokenError as exc:
        logger.warning(f"Rejected OAuth state: {exc}")
        return False
    return True


__all__ = [
    "IssuedToken",
    "SESSION_LIFETIME",
    "SessionClaims",
    "SessionExpiredError",
    "SessionRevokedError",
    "SessionTokenError",
    "authenticate",
    "decode_session_token",
    "issue_oauth_state",
    "issue_session_token",
    "revoke",
    "verify_oauth_state",
]
