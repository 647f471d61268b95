from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Union, cast

from jose import jwt

from app.core.settings import get_settings
from app.models.user import User, UserRole

settings = get_settings()

ALGORITHM = settings.security.JWT_ALGORITHM


@dataclass(frozen=True)
class Actor:
    """The principal performing an operation"""

    user_id: int
    role: UserRole

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(user_id=user.id, role=user.role)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def can_manage(self, organizer_id: int) -> bool:
        """Admins manage every event, organizers their own"""
        return self.is_admin or self.user_id == organizer_id


def create_access_token(
    subject: Union[str, Any],
    expires_delta: Optional[timedelta] = None,
    additional_claims: Optional[Dict[str, Any]] = None,
) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta
        if expires_delta
        else timedelta(minutes=settings.security.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode: Dict[str, Any] = {"exp": expire, "sub": str(subject)}

    if additional_claims:
        to_encode.update(additional_claims)

    encoded_jwt = jwt.encode(
        to_encode, settings.security.JWT_SECRET_KEY, algorithm=ALGORITHM
    )
    return cast(str, encoded_jwt)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Raises ``jose.JWTError`` for bad signatures or expired tokens"""
    payload: Dict[str, Any] = jwt.decode(
        token, settings.security.JWT_SECRET_KEY, algorithms=[ALGORITHM]
    )
    return payload
