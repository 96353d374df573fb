import os
import tempfile

# Settings are read at import time, so these must be in place first
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="library-uploads-"))
os.environ.setdefault("MAX_UPLOAD_SIZE", "1024")

import pytest
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

import catalog
import directory
import models
from database import ensure_indexes, get_db
from main import app
from storage import LocalBlobStore, get_blob_store
from utils.security import create_access_token

PASSWORD = "secret123"


@pytest.fixture
async def db():
    database = AsyncMongoMockClient()["library_test"]
    await ensure_indexes(database)
    return database


@pytest.fixture
async def client(db, tmp_path):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_blob_store] = lambda: LocalBlobStore(str(tmp_path))
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    async def _make(role="user", membership_id=None, **fields):
        counter["n"] += 1
        data = models.AdminUserCreate(
            name=fields.pop("name", f"Member {counter['n']}"),
            phone=fields.pop("phone", f"+1-555-{counter['n']:04d}"),
            membership_id=membership_id or f"LIB{counter['n']:03d}",
            password=fields.pop("password", PASSWORD),
            role=role,
            **fields,
        )
        return await directory.create_user(db, data, role=role)

    return _make


@pytest.fixture
def make_book(db):
    async def _make(total_copies=1, **fields):
        data = models.BookCreate(
            title=fields.pop("title", "The Great Gatsby"),
            author=fields.pop("author", "F. Scott Fitzgerald"),
            isbn=fields.pop("isbn", "978-0-7432-7356-5"),
            genre=fields.pop("genre", "Fiction"),
            publication_year=fields.pop("publication_year", 1925),
            total_copies=total_copies,
            **fields,
        )
        return await catalog.create_book(db, data)

    return _make


@pytest.fixture
def auth_headers():
    def _headers(user: dict) -> dict:
        token = create_access_token({
            "sub": str(user["_id"]),
            "membership_id": user["membership_id"],
            "role": user["role"],
        })
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
async def admin(make_user):
    return await make_user(role="admin", membership_id="ADMIN", name="Admin User")


@pytest.fixture
async def member(make_user):
    return await make_user(membership_id="STUDENT001", name="John Doe")
