"""
Shared fixtures: a throwaway sqlite database per test and a TestClient wired
to it through a ``get_db`` override.
"""
import asyncio
import os

os.environ.setdefault("JWT_SECRET", "test-secret-with-enough-bytes-for-hs256")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "0")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from flowbit.core.database.engine import build_engine, build_sessionmaker, get_db, init_db
from flowbit.features.organizations.service import create_organization
from flowbit.features.users.auth import hash_password
from flowbit.features.users.models import User
from flowbit.main import app


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


@pytest.fixture
def sessionmaker(db_url):
    engine = build_engine(db_url)
    asyncio.run(init_db(engine))
    yield build_sessionmaker(engine)
    asyncio.run(engine.dispose())


@pytest_asyncio.fixture
async def db(db_url):
    engine = build_engine(db_url)
    await init_db(engine)
    async with build_sessionmaker(engine)() as session:
        yield session
    await engine.dispose()


@pytest.fixture
def client(sessionmaker):
    async def override_get_db():
        async with sessionmaker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


async def make_user(db, email: str, password: str = "password123", **kwargs) -> User:
    user = User(
        email=email,
        username=kwargs.pop("username", email.split("@")[0]),
        password_hash=hash_password(password),
        **kwargs,
    )
    db.add(user)
    await db.flush()
    return user


async def make_organization(db, owner: User, name: str, **kwargs):
    organization, membership = await create_organization(db, owner, name, **kwargs)
    await db.commit()
    return organization, membership


def register(client, email: str, organization_name: str | None = None, invite_code: str | None = None,
             password: str = "password123"):
    body = {"email": email, "username": email.split("@")[0], "password": password}
    if organization_name:
        body["organization_name"] = organization_name
    if invite_code:
        body["invite_code"] = invite_code
    return client.post("/auth/register", json=body)


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
