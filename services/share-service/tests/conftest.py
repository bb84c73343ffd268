"""Test configuration and fixtures for the share service."""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["PUBLIC_URL"] = "http://files.test"
os.environ["CREATE_TABLES"] = "false"
os.environ["ONLYOFFICE_ENABLED"] = "false"
os.environ["ALLOW_PUBLIC_SHARING"] = "true"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fileshare.dependencies import get_db, get_storage
from fileshare.models.database import Base, File, Folder, Role, User
from fileshare.services.auth import auth_service
from fileshare.services.storage import StorageError
from fileshare.services.system_settings import system_settings_service


class FakeStorage:
    """In-memory stand-in for the object store gateway"""

    def __init__(self):
        self.objects = {}
        self.fail_on = set()
        self.put_limit = None
        self.bucket_checks = 0

    def _check(self, operation, key=None):
        if operation in self.fail_on:
            raise StorageError(operation, key)

    async def ensure_bucket_exists(self):
        self.bucket_checks += 1

    async def put(self, key, data, mime_type="application/octet-stream"):
        await self.ensure_bucket_exists()
        self._check("put", key)
        if self.put_limit is not None and len(self.objects) >= self.put_limit:
            raise StorageError("put", key)
        self.objects[key] = (bytes(data), mime_type)

    async def get(self, key):
        self._check("get", key)
        if key not in self.objects:
            raise StorageError("get", key)
        return self.objects[key][0]

    async def delete(self, key):
        self._check("delete", key)
        self.objects.pop(key, None)

    async def presign(self, key, ttl_seconds=None):
        self._check("presign", key)
        return f"https://objects.test/fileman/{key}?X-Expires={ttl_seconds or 3600}"

    async def ping(self):
        return True

    def close(self):
        pass


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def make_user(db):
    async def _make(username, role=Role.USER):
        user = User(
            email=f"{username}@example.com",
            username=username,
            name=username.capitalize(),
            role=role.value,
        )
        db.add(user)
        await db.commit()
        return user
    return _make


@pytest.fixture
async def owner(make_user):
    return await make_user("alice")


@pytest.fixture
async def other(make_user):
    return await make_user("bob")


@pytest.fixture
async def admin(make_user):
    return await make_user("root", Role.ADMIN)


@pytest.fixture
async def system(db):
    """The system settings row; tests tweak it and commit"""
    return await system_settings_service.get(db)


@pytest.fixture
def make_folder(db):
    async def _make(name, owner, parent=None):
        folder = Folder(name=name, owner_id=owner.id, parent_id=parent.id if parent else None)
        db.add(folder)
        await db.commit()
        return folder
    return _make


@pytest.fixture
def make_file(db, storage):
    async def _make(name, owner, folder=None, data=b"hello world", mime_type="text/plain"):
        key = f"{owner.id}/{name}"
        storage.objects[key] = (data, mime_type)
        record = File(
            name=name,
            original_name=name,
            mime_type=mime_type,
            size=len(data),
            storage_key=key,
            folder_id=folder.id if folder else None,
            owner_id=owner.id,
        )
        db.add(record)
        await db.commit()
        return record
    return _make


@pytest.fixture
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {auth_service.token_for(user)}"}
    return _headers


@pytest.fixture
async def app(session_factory, storage):
    from fileshare.main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
