"""Per-request authentication and role checks.

A request carrying ``Authorization: Bearer <token>`` is allowed only if the
token verifies (signature, expiry) *and* a live session still holds it. The
second step is what makes logout and eviction effective for tokens that have
not expired yet.
"""
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from fastapi import Request

from .auth import TokenIssuer, token_issuer
from .core import AUTH_DECISIONS
from .errors import (
    ForbiddenRoleError,
    InvalidTokenError,
    SessionNotLiveError,
    UnauthorizedError,
)
from .sessions import SessionManager, session_manager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    user_id: int
    role: str
    token: str

    def as_dict(self) -> dict:
        return {'user_id': self.user_id, 'role': self.role}


def extract_bearer(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    parts = header.split(None, 1)
    if len(parts) != 2 or parts[0].lower() != 'bearer':
        return None
    token = parts[1].strip()
    return token or None


class AuthGate:
    def __init__(self, issuer: TokenIssuer, sessions: SessionManager):
        self.issuer = issuer
        self.sessions = sessions

    async def authenticate(self, request: Request) -> Optional[Identity]:
        """Resolve the caller; None means anonymous (no bearer token)."""
        token = extract_bearer(request.headers.get('authorization'))
        if token is None:
            request.state.identity = None
            return None
        try:
            payload = self.issuer.verify(token)
            user_id, role = payload.get('user_id'), payload.get('role')
            if user_id is None or role is None:
                raise InvalidTokenError()
            if not await self.sessions.validate_session(user_id, token):
                raise SessionNotLiveError()
        except UnauthorizedError as e:
            AUTH_DECISIONS.labels(outcome='unauthorized').inc()
            logger.info({'msg': 'auth_rejected', 'reason': type(e).__name__, 'path': request.url.path})
            raise
        except Exception:
            AUTH_DECISIONS.labels(outcome='unauthorized').inc()
            logger.exception('auth gate failure on %s', request.url.path)
            raise UnauthorizedError()
        identity = Identity(user_id=user_id, role=role, token=token)
        request.state.identity = identity
        return identity

    async def authorize(self, request: Request, roles: Optional[Iterable[str]] = None) -> Identity:
        """Require an authenticated caller, optionally with a role in ``roles``."""
        identity = await self.authenticate(request)
        if identity is None:
            AUTH_DECISIONS.labels(outcome='unauthorized').inc()
            raise UnauthorizedError()
        if roles is not None:
            allowed = {getattr(r, 'value', r) for r in roles}
            if identity.role not in allowed:
                AUTH_DECISIONS.labels(outcome='forbidden').inc()
                logger.info({'msg': 'role_forbidden', 'user_id': identity.user_id,
                             'role': identity.role, 'path': request.url.path})
                raise ForbiddenRoleError()
        AUTH_DECISIONS.labels(outcome='allowed').inc()
        return identity


gate = AuthGate(token_issuer, session_manager)


async def get_optional_user(request: Request) -> Optional[Identity]:
    return await gate.authenticate(request)


async def get_current_user(request: Request) -> Identity:
    return await gate.authorize(request)


def require_roles(*roles):
    """Route dependency: the caller must hold one of ``roles``.

    With no roles given, any authenticated caller passes.
    """
    allow = roles or None

    async def dependency(request: Request) -> Identity:
        return await gate.authorize(request, allow)

    return dependency

