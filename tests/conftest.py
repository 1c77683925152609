"""
Shared fixtures.

Each test gets its own SQLite file so concurrent sessions exercise the real
locking path (BEGIN IMMEDIATE + busy timeout).
"""

import os
import tempfile

# Keep the module-level engine away from the working directory
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{tempfile.mkdtemp(prefix='refurbline-tests-')}/default.db",
)

import httpx
import pytest

from refurbline.database import build_engine, build_session_factory, get_db, init_db
from refurbline.main import app
from refurbline.services.job_lifecycle_service import JobLifecycleService


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False, pool_timeout=120)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def service(db):
    return JobLifecycleService(db)


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


