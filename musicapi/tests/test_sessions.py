import asyncio
import dataclasses

import pytest
from sqlalchemy import select, func
from sqlalchemy.exc import OperationalError

from musicapi.auth import hash_token
from musicapi.config import get_settings
from musicapi.errors import PersistenceError
from musicapi.models import AsyncSessionLocal
from musicapi.models.sessions import Session
from musicapi.sessions import SessionManager


def _manager(cap=2, factory=AsyncSessionLocal):
    return SessionManager(factory, dataclasses.replace(get_settings(), allowed_sessions=cap))


async def _tokens_for(user_id):
    async with AsyncSessionLocal() as db:
        res = await db.execute(
            select(Session.token_hash).where(Session.user_id == user_id).order_by(Session.id)
        )
        return res.scalars().all()


async def _count(user_id):
    async with AsyncSessionLocal() as db:
        res = await db.execute(select(func.count(Session.id)).where(Session.user_id == user_id))
        return res.scalar_one()


class _BrokenFactory:
    def __call__(self):
        raise OperationalError('SELECT 1', {}, Exception('database is down'))


@pytest.mark.asyncio
async def test_third_login_evicts_the_first(make_user):
    user = await make_user()
    manager = _manager(cap=2)

    for token in ('T1', 'T2', 'T3'):
        await manager.create_session(user.id, token)

    assert await manager.validate_session(user.id, 'T1') is False
    assert await manager.validate_session(user.id, 'T2') is True
    assert await manager.validate_session(user.id, 'T3') is True
    assert await _tokens_for(user.id) == [hash_token('T2'), hash_token('T3')]


@pytest.mark.asyncio
async def test_count_never_exceeds_cap_and_oldest_goes_first(make_user):
    user = await make_user()
    manager = _manager(cap=3)

    tokens = [f'tok-{i}' for i in range(7)]
    for i, token in enumerate(tokens):
        await manager.create_session(user.id, token)
        assert await _count(user.id) == min(i + 1, 3)

    live = [t for t in tokens if await manager.validate_session(user.id, t)]
    assert live == tokens[-3:]


@pytest.mark.asyncio
async def test_cap_applies_per_user(make_user):
    alice = await make_user('alice@example.com')
    bob = await make_user('bob@example.com')
    manager = _manager(cap=1)

    await manager.create_session(alice.id, 'a1')
    await manager.create_session(bob.id, 'b1')

    assert await manager.validate_session(alice.id, 'a1') is True
    assert await manager.validate_session(bob.id, 'b1') is True
    # a token is only live for the user it was issued to
    assert await manager.validate_session(bob.id, 'a1') is False


@pytest.mark.asyncio
async def test_lowered_cap_trims_down_to_the_new_limit(make_user):
    user = await make_user()
    roomy = _manager(cap=4)
    for token in ('t1', 't2', 't3', 't4'):
        await roomy.create_session(user.id, token)

    await _manager(cap=2).create_session(user.id, 't5')

    assert await _tokens_for(user.id) == [hash_token('t4'), hash_token('t5')]


@pytest.mark.asyncio
async def test_create_session_stores_only_the_token_hash(make_user):
    user = await make_user()
    row = await _manager().create_session(user.id, 'raw-token')

    assert row.id is not None
    assert row.user_id == user.id
    assert row.token_hash == hash_token('raw-token')


@pytest.mark.asyncio
async def test_concurrent_logins_respect_the_cap(make_user):
    user = await make_user()
    manager = _manager(cap=2)

    await asyncio.gather(*(manager.create_session(user.id, f'c{i}') for i in range(6)))

    assert await _count(user.id) == 2


@pytest.mark.asyncio
async def test_delete_session_removes_exactly_one_row(make_user):
    user = await make_user()
    manager = _manager(cap=3)
    await manager.create_session(user.id, 'keep')
    await manager.create_session(user.id, 'drop')

    assert await manager.delete_session(user.id, 'drop') is True
    assert await manager.delete_session(user.id, 'drop') is False
    assert await manager.validate_session(user.id, 'drop') is False
    assert await manager.validate_session(user.id, 'keep') is True


@pytest.mark.asyncio
async def test_delete_all_sessions_reports_count(make_user):
    user = await make_user()
    manager = _manager(cap=3)
    for token in ('x', 'y', 'z'):
        await manager.create_session(user.id, token)

    assert await manager.delete_all_sessions(user.id) == 3
    assert await _count(user.id) == 0
    for token in ('x', 'y', 'z'):
        assert await manager.validate_session(user.id, token) is False
    # nothing left is not a failure
    assert await manager.delete_all_sessions(user.id) == 0


@pytest.mark.asyncio
async def test_storage_failures_fail_closed():
    manager = _manager(factory=_BrokenFactory())

    assert await manager.validate_session(1, 'tok') is False
    assert await manager.delete_session(1, 'tok') is False
    assert await manager.delete_all_sessions(1) is None
    with pytest.raises(PersistenceError) as excinfo:
        await manager.create_session(1, 'tok')
    assert 'database is down' not in str(excinfo.value)


@pytest.mark.asyncio
async def test_create_session_for_missing_user_is_a_persistence_error(clean_db):
    with pytest.raises(PersistenceError):
        await _manager().create_session(999, 'orphan')
