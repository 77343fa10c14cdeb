from __future__ import annotations

import os
import sys
import tempfile
import uuid
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

ROOT = Path(__file__).resolve().parents[1]
API_DIR = ROOT / "API"
if str(API_DIR) not in sys.path:
    sys.path.insert(0, str(API_DIR))

# Test-mode runtime guards:
# - throwaway SQLite file instead of the Postgres default
# - schema created by the startup hook
_DB_DIR = tempfile.mkdtemp(prefix="studytree-tests-")
os.environ.setdefault("APP_ENV", "test")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{Path(_DB_DIR) / 'api.db'}"
os.environ.setdefault("CREATE_SCHEMA_ON_START", "true")
os.environ.setdefault("JWT_SECRET", "test-only-studytree-secret-0123456789abcdef")

from app.core.jwt_auth import create_token  # noqa: E402
from app.main import app  # noqa: E402
from app.models.base import Base  # noqa: E402
from app.models.entities import Subject  # noqa: E402
from app.storage.database import build_engine  # noqa: E402


@pytest.fixture(scope="session")
def client() -> TestClient:
    with TestClient(app) as tc:
        yield tc


@pytest.fixture
def owner_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def auth_headers(owner_id) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_token(owner_id)}"}


@pytest.fixture
async def db_session():
    """Fresh in-memory database per test, foreign keys enforced."""
    engine = build_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
    await engine.dispose()


@pytest.fixture
def make_subject(db_session):
    async def _make(owner: uuid.UUID, name: str = "Biology") -> uuid.UUID:
        subject = Subject(user_id=owner, name=name, display_order=0, tree_version=0)
        db_session.add(subject)
        await db_session.commit()
        return subject.id

    return _make
