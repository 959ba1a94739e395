"""Bounded per-user session pool.

Each successful login records one row in ``sessions``. A user may hold at
most ``Settings.allowed_sessions`` rows; creating one more evicts the oldest.
Lookups and deletes never raise to the caller: storage errors are logged and
reported as ``False`` / ``None``, so a ``False`` means "could not confirm",
not necessarily "nothing there".
"""
import asyncio
import logging
import weakref
from typing import List, Optional

from sqlalchemy import select, delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import hash_token
from .config import Settings, get_settings
from .core import SESSION_EVICTIONS
from .errors import PersistenceError
from .models import AsyncSessionLocal
from .models.sessions import Session

logger = logging.getLogger(__name__)


class SessionRepository:
    """Queries over the sessions table. Callers own the transaction."""

    async def count_by_user(self, db: AsyncSession, user_id: int) -> int:
        res = await db.execute(select(func.count(Session.id)).where(Session.user_id == user_id))
        return res.scalar_one()

    async def find_oldest_by_user(self, db: AsyncSession, user_id: int, limit: int = 1) -> List[Session]:
        q = (
            select(Session)
            .where(Session.user_id == user_id)
            .order_by(Session.created_at.asc(), Session.id.asc())
            .limit(limit)
        )
        res = await db.execute(q)
        return list(res.scalars().all())

    async def find_by_user_and_token(self, db: AsyncSession, user_id: int, token: str) -> Optional[Session]:
        res = await db.execute(
            select(Session).where(Session.user_id == user_id, Session.token_hash == hash_token(token))
        )
        return res.scalars().first()

    async def create(self, db: AsyncSession, user_id: int, token: str) -> Session:
        row = Session(user_id=user_id, token_hash=hash_token(token))
        db.add(row)
        await db.flush()
        return row

    async def delete_by_id(self, db: AsyncSession, session_id: int) -> int:
        res = await db.execute(delete(Session).where(Session.id == session_id))
        return res.rowcount

    async def delete_by_user_and_token(self, db: AsyncSession, user_id: int, token: str) -> int:
        res = await db.execute(
            delete(Session).where(Session.user_id == user_id, Session.token_hash == hash_token(token))
        )
        return res.rowcount

    async def delete_by_user(self, db: AsyncSession, user_id: int) -> int:
        res = await db.execute(delete(Session).where(Session.user_id == user_id))
        return res.rowcount


class SessionManager:
    def __init__(self, session_factory, settings: Settings, repository: Optional[SessionRepository] = None):
        self._session_factory = session_factory
        self._repo = repository or SessionRepository()
        self.allowed_sessions = settings.allowed_sessions
        # one lock per user id, dropped once no coroutine holds a reference
        self._locks: 'weakref.WeakValueDictionary[int, asyncio.Lock]' = weakref.WeakValueDictionary()

    def _lock_for(self, user_id: int) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    async def create_session(self, user_id: int, token: str) -> Session:
        """Record a login, evicting the oldest session(s) if the user is at the cap.

        Count, evict and insert run in one transaction and are serialized per
        user within this process. Raises PersistenceError if the row is not
        written.
        """
        async with self._lock_for(user_id):
            try:
                async with self._session_factory() as db:
                    async with db.begin():
                        count = await self._repo.count_by_user(db, user_id)
                        if count >= self.allowed_sessions:
                            overflow = count - self.allowed_sessions + 1
                            oldest = await self._repo.find_oldest_by_user(db, user_id, limit=overflow)
                            if not oldest:
                                raise PersistenceError('Error in fetching data')
                            for row in oldest:
                                await self._repo.delete_by_id(db, row.id)
                            SESSION_EVICTIONS.inc(len(oldest))
                            logger.info({'msg': 'session_evicted', 'user_id': user_id,
                                         'evicted': [row.id for row in oldest]})
                        created = await self._repo.create(db, user_id, token)
                        if created.id is None:
                            raise PersistenceError('Error in creating data.')
                    return created
            except PersistenceError:
                logger.error({'msg': 'create_session_failed', 'user_id': user_id})
                raise
            except SQLAlchemyError:
                logger.exception('Error in create_session for user %s', user_id)
                raise PersistenceError()

    async def validate_session(self, user_id: int, token: str) -> bool:
        try:
            async with self._session_factory() as db:
                row = await self._repo.find_by_user_and_token(db, user_id, token)
                return row is not None
        except Exception:
            logger.exception('Error in validate_session for user %s', user_id)
            return False

    async def delete_session(self, user_id: int, token: str) -> bool:
        try:
            async with self._session_factory() as db:
                async with db.begin():
                    deleted = await self._repo.delete_by_user_and_token(db, user_id, token)
            return deleted > 0
        except Exception:
            logger.exception('Error in delete_session for user %s', user_id)
            return False

    async def delete_all_sessions(self, user_id: int) -> Optional[int]:
        """Remove every session of a user.

        Returns the number of rows removed (0 if there were none) or None
        when the delete itself failed.
        """
        try:
            async with self._session_factory() as db:
                async with db.begin():
                    deleted = await self._repo.delete_by_user(db, user_id)
            logger.info({'msg': 'sessions_revoked', 'user_id': user_id, 'count': deleted})
            return deleted
        except Exception:
            logger.exception('Error in delete_all_sessions for user %s', user_id)
            return None


session_manager = SessionManager(AsyncSessionLocal, get_settings())
