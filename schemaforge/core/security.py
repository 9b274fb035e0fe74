"""
Bearer token handling with PyJWT.

Tokens are HS256-signed with ``Settings.jwt_secret`` and carry the user id
in ``sub`` plus an optional display ``name``. User accounts live outside
this service; the CLI mints tokens for development.
"""

from datetime import timedelta

import jwt
from pydantic import BaseModel

from schemaforge.core.config import Settings, get_settings
from schemaforge.utils.dates import utc_now
from schemaforge.utils.exceptions import AuthenticationError


class AuthenticatedUser(BaseModel):
    """Identity extracted from a verified token."""

    id: str
    name: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.id


def create_access_token(
    user_id: str,
    name: str | None = None,
    *,
    expires_minutes: int | None = None,
    settings: Settings | None = None,
) -> str:
    settings = settings or get_settings()
    now = utc_now()
    payload = {
        "sub": user_id,
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes or settings.jwt_expiration_minutes),
        "type": "access",
    }
    if name:
        payload["name"] = name
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings | None = None) -> AuthenticatedUser:
    """
    Verify signature and expiry.

    Raises:
        AuthenticationError: Expired, malformed or missing ``sub``
    """
    settings = settings or get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise AuthenticationError("Token has expired") from e
    except jwt.InvalidTokenError as e:
        raise AuthenticationError("Invalid token", details={"reason": str(e)}) from e

    if payload.get("type", "access") != "access":
        raise AuthenticationError("Not an access token")

    return AuthenticatedUser(id=str(payload["sub"]), name=payload.get("name"))
