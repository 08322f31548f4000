import os
import uuid
from collections.abc import AsyncGenerator

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-signing-key-that-is-long-enough-for-hs256")
os.environ.setdefault("JWT_ISSUER", "tradejournal-tests")
os.environ.setdefault("JWT_AUDIENCE", "tradejournal-clients")
os.environ.setdefault("MAILGUN_API_KEY", "")

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tradejournal.auth import hash_password
from tradejournal.models import Base, User

PASSWORD = "Str0ng!Passw0rd"


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
async def db(engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    async with session_factory() as session:
        yield session
        await session.rollback()


async def make_user(db: AsyncSession, confirmed: bool = True, password: str = PASSWORD) -> User:
    suffix = uuid.uuid4().hex[:8]
    user = User(
        email=f"trader-{suffix}@test.com",
        username=f"trader_{suffix}",
        password_hash=hash_password(password),
        email_confirmed=confirmed,
        failed_login_count=0,
    )
    db.add(user)
    await db.commit()
    return user


@pytest.fixture
async def user(db) -> User:
    return await make_user(db)
