import logging
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .auth import pwd_hasher, token_issuer
from .core import LOGINS
from .errors import (
    ACTION_NOT_ALLOWED,
    BadRequestError,
    ConflictError,
    NotFoundError,
    PersistenceError,
    UnauthorizedError,
)
from .models import AsyncSessionLocal
from .models.users import User, Role
from .sessions import session_manager

logger = logging.getLogger(__name__)


async def _insert_user(email: str, password: str, role: Role) -> User:
    hashed = await pwd_hasher.ahash(password)
    async with AsyncSessionLocal() as session:
        try:
            async with session.begin():
                user = User(email=email, hashed_password=hashed, role=role)
                session.add(user)
            await session.refresh(user)
            return user
        except IntegrityError:
            raise ConflictError('Email already exists.')
        except SQLAlchemyError:
            logger.exception('Error in creating user')
            raise PersistenceError()


async def _admin_exists() -> bool:
    async with AsyncSessionLocal() as session:
        q = await session.execute(select(User.id).where(User.role == Role.ADMIN))
        return q.first() is not None


async def create_admin(email: str, password: str) -> User:
    """Public signup: only the first account, which becomes the ADMIN.

    The unique partial index on ``users.role`` is what guarantees a single
    ADMIN; the pre-check only spares the common case a bcrypt round.
    """
    if await _admin_exists():
        raise BadRequestError(ACTION_NOT_ALLOWED)
    try:
        user = await _insert_user(email, password, Role.ADMIN)
    except (ConflictError, PersistenceError):
        # lost the race against a concurrent signup
        if await _admin_exists():
            raise BadRequestError(ACTION_NOT_ALLOWED)
        raise
    logger.info({'msg': 'admin_created', 'user_id': user.id})
    return user


async def add_user(email: str, password: str, role: str) -> User:
    if await get_user_by_email(email):
        raise ConflictError('Email already exists.')
    return await _insert_user(email, password, Role(role))


async def get_user_by_email(email: str) -> Optional[User]:
    async with AsyncSessionLocal() as session:
        q = await session.execute(select(User).where(User.email == email))
        return q.scalars().first()


async def get_user_by_id(user_id: int) -> Optional[User]:
    async with AsyncSessionLocal() as session:
        q = await session.execute(select(User).where(User.id == user_id))
        return q.scalars().first()


async def list_users(limit: int, offset: int, role: Optional[Role] = None):
    async with AsyncSessionLocal() as session:
        count_q = select(func.count(User.id))
        rows_q = select(User).order_by(User.id.asc()).limit(limit).offset(offset)
        if role is not None:
            count_q = count_q.where(User.role == role)
            rows_q = rows_q.where(User.role == role)
        count = (await session.execute(count_q)).scalar_one()
        rows = (await session.execute(rows_q)).scalars().all()
        return count, rows


async def authenticate_user(email: str, password: str) -> str:
    """Check credentials, mint a token and record the session. Returns the token."""
    user = await get_user_by_email(email)
    if not user:
        LOGINS.labels(outcome='unknown_user').inc()
        raise NotFoundError('User not found.')
    if not await pwd_hasher.averify(password, user.hashed_password):
        LOGINS.labels(outcome='bad_password').inc()
        raise UnauthorizedError('Invalid credentials.')
    token = token_issuer.create_token({'user_id': user.id, 'role': user.role.value})
    await session_manager.create_session(user.id, token)
    LOGINS.labels(outcome='success').inc()
    logger.info({'msg': 'user_logged_in', 'user_id': user.id})
    return token


async def logout_user(user_id: int, token: str) -> None:
    if not await session_manager.delete_session(user_id, token):
        raise BadRequestError()
    logger.info({'msg': 'user_logged_out', 'user_id': user_id})


async def logout_everywhere(user_id: int) -> int:
    revoked = await session_manager.delete_all_sessions(user_id)
    if revoked is None:
        raise PersistenceError()
    return revoked


async def update_password(user_id: int, old_password: str, new_password: str) -> None:
    async with AsyncSessionLocal() as session:
        async with session.begin():
            q = await session.execute(select(User).where(User.id == user_id))
            user = q.scalars().first()
            if not user:
                raise NotFoundError('User not found.')
            if not await pwd_hasher.averify(old_password, user.hashed_password):
                raise BadRequestError('Old password incorrect.')
            if old_password == new_password:
                raise BadRequestError('New password can not be same as old password.')
            user.hashed_password = await pwd_hasher.ahash(new_password)


async def delete_user(user_id: int) -> None:
    """Delete a non-admin account; its sessions go with it (ON DELETE CASCADE)."""
    async with AsyncSessionLocal() as session:
        async with session.begin():
            q = await session.execute(select(User).where(User.id == user_id))
            user = q.scalars().first()
            if not user:
                raise NotFoundError('User not found.')
            if user.role == Role.ADMIN:
                raise BadRequestError(ACTION_NOT_ALLOWED)
            await session.delete(user)
    logger.info({'msg': 'user_deleted', 'user_id': user_id})
