"""Shared test fixtures for the Policy Version Control API test suite."""

import os

# Settings are read at import time; point the app at SQLite before importing it
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("DATABASE_URL_SYNC", "sqlite:///:memory:")

import uuid
from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

import app.models  # noqa: F401 (register all models on Base.metadata)
from app.core.database import Base, build_engine, get_db, get_readonly_db
from app.main import app
from app.models.enums import UserRole
from app.models.policies import Policy
from app.modules.policy_versions.content import PolicyContent
from app.modules.policy_versions.schemas import PolicyMetadata
from app.schemas.auth import CurrentUser

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine]:
    """Fresh in-memory database per test."""
    engine = build_engine(TEST_DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
async def db(test_engine: AsyncEngine) -> AsyncGenerator[AsyncSession]:
    session = AsyncSession(bind=test_engine, expire_on_commit=False)
    try:
        yield session
    finally:
        await session.close()


# ── Sample data ───────────────────────────────────────────────────────────

SAMPLE_ORG_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
SAMPLE_USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000002")
OTHER_USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000003")
OTHER_ORG_ID = uuid.UUID("00000000-0000-0000-0000-000000000099")
SAMPLE_POLICY_ID = uuid.UUID("00000000-0000-0000-0000-000000000010")


def make_content(text: str) -> PolicyContent:
    return PolicyContent.from_text(text)


def make_metadata(title: str = "Policy A", **fields) -> PolicyMetadata:
    return PolicyMetadata(title=title, **fields)


def identity_headers(
    role: UserRole = UserRole.ADMIN,
    user_id: uuid.UUID = SAMPLE_USER_ID,
    org_id: uuid.UUID = SAMPLE_ORG_ID,
) -> dict[str, str]:
    return {"X-User-Id": str(user_id), "X-Org-Id": str(org_id), "X-User-Role": role.value}


@pytest.fixture
async def sample_policy(db: AsyncSession) -> Policy:
    policy = Policy(
        id=SAMPLE_POLICY_ID,
        org_id=SAMPLE_ORG_ID,
        reference="POL-001",
        created_by=SAMPLE_USER_ID,
    )
    db.add(policy)
    await db.commit()
    return policy


@pytest.fixture
def sample_current_user() -> CurrentUser:
    return CurrentUser(user_id=SAMPLE_USER_ID, org_id=SAMPLE_ORG_ID, role=UserRole.ADMIN)


@pytest.fixture
async def client(db: AsyncSession) -> AsyncGenerator[AsyncClient]:
    """AsyncClient whose requests share the test session; identity via headers."""

    async def _override_db():
        yield db

    app.dependency_overrides[get_db] = _override_db
    app.dependency_overrides[get_readonly_db] = _override_db
    try:
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
            headers=identity_headers(),
        ) as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()
