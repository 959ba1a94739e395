from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import NullPool

from ..config import get_settings

DATABASE_URL = get_settings().database_url

_engine_kwargs = {}
if DATABASE_URL.startswith('sqlite'):
    # aiosqlite connections are bound to the loop that opened them
    _engine_kwargs['poolclass'] = NullPool

engine = create_async_engine(DATABASE_URL, future=True, echo=False, **_engine_kwargs)
AsyncSessionLocal = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
Base = declarative_base()

if DATABASE_URL.startswith('sqlite'):
    @event.listens_for(engine.sync_engine, 'connect')
    def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
        # sessions rely on ON DELETE CASCADE from users
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA foreign_keys=ON')
        cursor.close()


async def create_tables():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_tables():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


# Import models to register tables
from .users import User, Role  # noqa: F401,E402
from .sessions import Session  # noqa: F401,E402
