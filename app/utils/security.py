"""JWT helpers for the bearer tokens issued by the account service."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import JWTError, jwt
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from app.config.settings import settings


class AuthenticationError(Exception):
    """Raised when a JWT cannot be decoded or is otherwise invalid."""


class TokenPayload(BaseModel):
    """Claims we rely on: the learner id lives in `sub` or `userId`."""

    sub: Optional[str] = None
    user_id: Optional[str | int] = Field(default=None, alias="userId")
    exp: datetime
    iat: datetime | None = None
    is_professor: bool = Field(default=False, alias="isProfessor")
    is_admin: bool = Field(default=False, alias="isAdmin")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @property
    def learner_reference(self) -> str | int | None:
        return self.user_id if self.user_id is not None else self.sub


def create_access_token(
    subject: str | int,
    expires_delta: Optional[timedelta] = None,
    **claims: Any,
) -> str:
    """Generate a signed JWT access token for the provided learner."""

    now = datetime.now(timezone.utc)
    expires_delta = expires_delta or timedelta(
        minutes=settings.security.access_token_expires_minutes
    )
    to_encode: dict[str, Any] = {
        "sub": str(subject),
        "userId": subject,
        "exp": now + expires_delta,
        "iat": now,
    }
    to_encode.update(claims)

    secret = settings.security.jwt_secret_key.get_secret_value()
    return jwt.encode(
        to_encode,
        secret,
        algorithm=settings.security.jwt_algorithm,
    )


def decode_access_token(token: str) -> TokenPayload:
    """Decode and validate a JWT access token, returning its payload."""

    secret = settings.security.jwt_secret_key.get_secret_value()
    try:
        payload = jwt.decode(
            token, secret, algorithms=[settings.security.jwt_algorithm]
        )
        return TokenPayload.model_validate(payload)
    except (JWTError, ValidationError) as exc:
        raise AuthenticationError("Invalid authentication token") from exc


__all__ = [
    "AuthenticationError",
    "TokenPayload",
    "create_access_token",
    "decode_access_token",
]
