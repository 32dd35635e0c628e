"""Shared fixtures: isolated SQLite database, local storage and the API client."""

import os

os.environ["APP_ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["REDIS_DSN"] = ""
os.environ["STORAGE_PROVIDER"] = "local"
os.environ["LEGACY_ACTOR_USER_ID"] = ""
os.environ["GOOGLE_CLIENT_ID"] = "test-client-id"
os.environ["GOOGLE_CLIENT_SECRET"] = "test-client-secret"
os.environ["GOOGLE_REDIRECT_URI"] = "http://testserver/api/auth/callback/google"
os.environ["GOOGLE_CALENDAR_ID"] = "primary"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from nexusdash.cache.layer import cache_layer
from nexusdash.database import get_db
from nexusdash.main import app
from nexusdash.models import Project, ProjectMembership, Task
from nexusdash.storage.local import LocalStorageProvider
from nexusdash.storage.provider import get_storage_provider

OWNER_ID = "owner-user"
HEADERS = {"x-nexus-user-id": OWNER_ID}


@pytest.fixture
async def db_engine(tmp_path):
    # NullPool: the TestClient runs the app on its own event loop
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(
        db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def storage(tmp_path):
    return LocalStorageProvider(tmp_path / "uploads")


@pytest.fixture(autouse=True)
async def clear_cache():
    await cache_layer.clear()
    yield
    await cache_layer.clear()


@pytest.fixture
def client(session_factory, storage):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage_provider] = lambda: storage
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
async def project(db):
    project = Project(name="Launch plan", owner_id=OWNER_ID)
    db.add(project)
    await db.commit()
    db.add(ProjectMembership(project_id=project.id, user_id=OWNER_ID, role="owner"))
    await db.commit()
    return project


@pytest.fixture
async def make_task(db, project):
    async def factory(title="Write brief", status="Backlog", position=0, **fields):
        task = Task(project_id=project.id, title=title, status=status, position=position, **fields)
        db.add(task)
        await db.commit()
        return task

    return factory
