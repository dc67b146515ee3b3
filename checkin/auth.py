"""
Session verification.

Sessions are issued by an external identity provider. This module only turns
a bearer token into a ``SessionUser`` (or nothing).
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Protocol

from jose import JWTError, jwt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionUser:
    user_id: str
    email: str
    name: Optional[str] = None


class SessionProvider(Protocol):
    def resolve(self, token: str) -> Optional[SessionUser]:
        ...


@dataclass
class InMemorySessionProvider:
    """Opaque tokens held in a dict; for development and tests."""

    sessions: Dict[str, SessionUser] = field(default_factory=dict)

    def issue(self, user: SessionUser) -> str:
        token = secrets.token_urlsafe(24)
        self.sessions[token] = user
        return token

    def resolve(self, token: str) -> Optional[SessionUser]:
        return self.sessions.get(token)


@dataclass
class JwtSessionProvider:
    """HS256 JWTs carrying ``sub``, ``email`` and ``name`` claims."""

    secret: str
    algorithm: str = "HS256"

    def issue(
        self, user: SessionUser, expires_in: timedelta = timedelta(hours=12)
    ) -> str:
        claims = {
            "sub": user.user_id,
            "email": user.email,
            "exp": datetime.now(timezone.utc) + expires_in,
        }
        if user.name:
            claims["name"] = user.name
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def resolve(self, token: str) -> Optional[SessionUser]:
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except JWTError as exc:
            logger.info("Rejected session token: %s", exc)
            return None
        user_id = payload.get("sub")
        email = payload.get("email")
        if not user_id or not email:
            return None
        return SessionUser(user_id=user_id, email=email, name=payload.get("name"))
