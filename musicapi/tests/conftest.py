import os
import sys
import tempfile
from pathlib import Path

# Configure test environment before the package reads its settings
_test_tmp_dir = tempfile.mkdtemp(prefix='musicapi_test_')
os.environ['DATABASE_URL'] = f'sqlite+aiosqlite:///{_test_tmp_dir}/test.db'
os.environ.setdefault('JWT_SECRET', 'test-secret-key-for-testing-only')
os.environ['ALLOWED_SESSIONS'] = '2'
os.environ.setdefault('BCRYPT_ROUNDS', '4')
os.environ['METRICS_PORT'] = '0'

# Ensure the package root is on sys.path when pytest changes CWD to this tests dir
HERE = Path(__file__).resolve()
PKG_ROOT = HERE.parents[2]
if str(PKG_ROOT) not in sys.path:
    sys.path.insert(0, str(PKG_ROOT))

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from musicapi.models import AsyncSessionLocal, create_tables, drop_tables  # noqa: E402
from musicapi.models.users import User, Role  # noqa: E402


@pytest_asyncio.fixture
async def clean_db():
    await drop_tables()
    await create_tables()
    yield
    await drop_tables()


@pytest_asyncio.fixture
async def client(clean_db):
    from musicapi.main import app
    async with AsyncClient(transport=ASGITransport(app=app), base_url='http://test') as ac:
        yield ac


@pytest.fixture
def make_user(clean_db):
    """Insert a user row directly, bypassing the HTTP layer."""
    async def _make(email='user@example.com', role=Role.VIEWER):
        async with AsyncSessionLocal() as session:
            user = User(email=email, hashed_password='x', role=role)
            session.add(user)
            await session.commit()
            await session.refresh(user)
            return user
    return _make
