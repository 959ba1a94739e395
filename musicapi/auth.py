import asyncio
import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt, JWTError
from passlib.context import CryptContext

from .config import Settings, get_settings
from .errors import InvalidTokenError

logger = logging.getLogger(__name__)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


class TokenIssuer:
    """Mints and verifies signed, time-limited bearer tokens.

    Verification only covers signature and expiry. Whether the token still
    belongs to a live session is the gate's job.
    """

    def __init__(self, settings: Settings):
        self._secret = settings.jwt_secret
        self._algorithm = settings.jwt_algorithm
        self._default_expiry = timedelta(minutes=settings.access_token_expire_minutes)

    def create_token(self, payload: dict, expires_delta: Optional[timedelta] = None) -> str:
        to_encode = payload.copy()
        now = datetime.now(timezone.utc)
        to_encode.update({
            'iat': now,
            'exp': now + (expires_delta or self._default_expiry),
            # two logins in the same second must still yield distinct tokens
            'jti': secrets.token_hex(16),
        })
        return jwt.encode(to_encode, self._secret, algorithm=self._algorithm)

    def verify(self, token: str) -> dict:
        try:
            return jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except JWTError as e:
            logger.info({'msg': 'token_rejected', 'reason': type(e).__name__})
            raise InvalidTokenError() from e


class PasswordHasher:
    def __init__(self, settings: Settings):
        self._ctx = CryptContext(schemes=['bcrypt'], deprecated='auto', bcrypt__rounds=settings.bcrypt_rounds)

    def hash(self, password: str) -> str:
        return self._ctx.hash(password)

    def verify(self, password: str, hashed: str) -> bool:
        return self._ctx.verify(password, hashed)

    # bcrypt is CPU bound; keep it off the event loop
    async def ahash(self, password: str) -> str:
        return await asyncio.to_thread(self.hash, password)

    async def averify(self, password: str, hashed: str) -> bool:
        return await asyncio.to_thread(self.verify, password, hashed)


token_issuer = TokenIssuer(get_settings())
pwd_hasher = PasswordHasher(get_settings())
