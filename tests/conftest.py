import os
from dataclasses import dataclass
from typing import Dict, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

TEST_DB_URL = os.getenv("TEST_DATABASE_URL") or "sqlite+aiosqlite:///./test_orchestra.db"
os.environ.setdefault("DATABASE_URL", TEST_DB_URL)
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-the-orchestra-suite-0123456789")
os.environ["AUDIT_LOG_PATH"] = ""
os.environ["ENABLE_SCHEDULER"] = "false"
os.environ["MODEL_PROVIDER"] = "simulation"

from orchestra.main import app  # noqa: E402
from orchestra.auth import create_access_token, hash_password  # noqa: E402
from orchestra.db.models import Base, Campaign, Deliverable, Organization, User  # noqa: E402
from orchestra.db.session import AsyncSessionLocal, engine  # noqa: E402
from orchestra.workers import job_queue, side_effects  # noqa: E402


TEST_PASSWORD = "TestPassword123!"

SOCIAL_POST = (
    "Our spring sale starts today. Every plan is twenty percent off for new teams. "
    "Learn more on our site. #spring"
)


@dataclass
class Tenant:
    organization_id: str
    user_id: str
    email: str
    token: str

    @property
    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


@pytest_asyncio.fixture
async def db():
    """Fresh schema per test; background work is drained before teardown."""
    await engine.dispose()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await job_queue.drain()
    await side_effects.stop()
    app.dependency_overrides.clear()
    await engine.dispose()


@pytest_asyncio.fixture
async def api_client(db):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


async def create_tenant(name: str, industry: Optional[str] = None, role: str = "user") -> Tenant:
    async with AsyncSessionLocal() as session:
        organization = Organization(name=f"{name.capitalize()} Inc", industry=industry)
        session.add(organization)
        await session.flush()
        user = User(
            username=name,
            email=f"{name}@example.com",
            password_hash=hash_password(TEST_PASSWORD),
            role=role,
            active=True,
            organization_id=organization.id,
        )
        session.add(user)
        await session.commit()
        return Tenant(
            organization_id=organization.id,
            user_id=user.id,
            email=user.email,
            token=create_access_token({"sub": user.email, "user_id": user.id}),
        )


@pytest_asyncio.fixture
async def tenant(db) -> Tenant:
    return await create_tenant("acme", industry="saas")


@pytest_asyncio.fixture
async def other_tenant(db) -> Tenant:
    return await create_tenant("globex", industry="ecommerce")


@pytest.fixture
def make_deliverable(db):
    """Insert a deliverable row directly, bypassing plan execution."""

    async def _make(organization_id: str, **values) -> Deliverable:
        row = Deliverable(
            organization_id=organization_id,
            type=values.pop("type", "social-media"),
            title=values.pop("title", "Spring sale post"),
            content=values.pop("content", SOCIAL_POST),
            agent_id=values.pop("agent_id", "content-creator"),
            status=values.pop("status", "draft"),
            **values,
        )
        async with AsyncSessionLocal() as session:
            session.add(row)
            await session.commit()
        return row

    return _make


@pytest.fixture
def make_campaign(db):
    async def _make(organization_id: str, **values) -> Campaign:
        row = Campaign(
            organization_id=organization_id,
            name=values.pop("name", "Spring Sale"),
            industry=values.pop("industry", "ecommerce"),
            objective=values.pop("objective", "conversions"),
            **values,
        )
        async with AsyncSessionLocal() as session:
            session.add(row)
            await session.commit()
        return row

    return _make


@pytest.fixture
def settle():
    """Wait for queued workflows and side effects to finish."""

    async def _settle():
        await job_queue.drain()
        await side_effects.drain()

    return _settle
