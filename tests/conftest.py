# tests/conftest.py
import hashlib
import hmac
import json
import os
import time
import uuid
from typing import Generator

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

os.environ.setdefault("SECRET_KEY", "test-secret-key-for-vipledger-suite")
os.environ["DATABASE_URL"] = "sqlite:///./test.db"
os.environ["ASYNC_DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("CELERY_TASK_ALWAYS_EAGER", "true")

from vipledger.main import app
from vipledger.core.config import settings
from vipledger.core.security import get_password_hash
from vipledger.db.session import Base, SessionLocal, engine as sync_engine
from vipledger.db.session_async import AsyncSessionLocal
from vipledger.domain.enums import UserRole, VIPStatus, VIPTier
from vipledger.models.user import User
from vipledger.models.vip import VIPMembership
from vipledger.services import membership_service, points_ledger

PASSWORDS = {
    UserRole.admin: "Admin1234",
    UserRole.staff: "Staff1234",
    UserRole.vip: "Vip12345",
    UserRole.artist: "Artist1234",
}


@pytest.fixture(scope="session", autouse=True)
def setup_database():
    """Create the schema once per test session."""
    import vipledger.models.nfc  # noqa: F401
    import vipledger.models.pos  # noqa: F401

    Base.metadata.drop_all(bind=sync_engine)
    Base.metadata.create_all(bind=sync_engine)
    yield
    Base.metadata.drop_all(bind=sync_engine)


@pytest.fixture(autouse=True)
def clean_tables():
    yield
    with sync_engine.begin() as connection:
        for table in reversed(Base.metadata.sorted_tables):
            connection.execute(table.delete())


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest_asyncio.fixture(scope="function")
async def client():
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def async_db_session() -> AsyncSession:
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.rollback()


# --- Users and memberships (sync, committed) ---

@pytest.fixture(scope="function")
def make_user(db_session: Session):
    def _make(role: UserRole = UserRole.vip, *, is_active: bool = True) -> User:
        user = User(
            email=f"{role.value}-{uuid.uuid4().hex[:10]}@example.com",
            full_name=f"Test {role.value.title()}",
            hashed_password=get_password_hash(PASSWORDS[role]),
            role=role,
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture(scope="function")
def make_membership(db_session: Session):
    def _make(
        user: User,
        *,
        status: VIPStatus = VIPStatus.active,
        balance: int = 0,
        lifetime: int | None = None,
        tier: VIPTier = VIPTier.silver,
    ) -> VIPMembership:
        membership = VIPMembership(
            user_id=user.id,
            tier=tier,
            points_balance=balance,
            lifetime_points=balance if lifetime is None else lifetime,
            status=status,
        )
        db_session.add(membership)
        db_session.commit()
        db_session.refresh(membership)
        return membership

    return _make


@pytest.fixture(scope="function")
def admin_user(make_user) -> User:
    return make_user(UserRole.admin)


@pytest.fixture(scope="function")
def staff_user(make_user) -> User:
    return make_user(UserRole.staff)


@pytest.fixture(scope="function")
def vip_user(make_user) -> User:
    return make_user(UserRole.vip)


@pytest.fixture(scope="function")
def vip_member(vip_user: User, make_membership) -> User:
    """A VIP user with an active, empty silver membership."""
    make_membership(vip_user)
    return vip_user


# --- Tokens ---

async def _login(client: httpx.AsyncClient, user: User) -> str:
    resp = await client.post(
        "/api/v1/auth/login",
        data={"username": user.email, "password": PASSWORDS[user.role]},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    assert resp.status_code == 200, resp.text
    return resp.json()["access_token"]


@pytest_asyncio.fixture(scope="function")
async def admin_token(client: httpx.AsyncClient, admin_user: User) -> str:
    return await _login(client, admin_user)


@pytest_asyncio.fixture(scope="function")
async def staff_token(client: httpx.AsyncClient, staff_user: User) -> str:
    return await _login(client, staff_user)


@pytest_asyncio.fixture(scope="function")
async def vip_token(client: httpx.AsyncClient, vip_member: User) -> str:
    return await _login(client, vip_member)


# --- Stripe ---

@pytest.fixture(scope="function")
def stripe_signed():
    """Build a (body, headers) pair signed the way Stripe signs webhooks."""

    def _sign(event: dict) -> tuple[str, dict[str, str]]:
        body = json.dumps(event)
        timestamp = int(time.time())
        signed = f"{timestamp}.{body}".encode("utf-8")
        digest = hmac.new(settings.STRIPE_WEBHOOK_SECRET.encode("utf-8"), signed, hashlib.sha256).hexdigest()
        return body, {"Stripe-Signature": f"t={timestamp},v1={digest}", "Content-Type": "application/json"}

    return _sign


# --- Fresh reads through the application's own session factory ---

@pytest.fixture(scope="function")
def fetch_membership():
    async def _fetch(user_id):
        async with AsyncSessionLocal() as session:
            return await membership_service.get_membership(session, user_id)

    return _fetch


@pytest.fixture(scope="function")
def fetch_ledger():
    async def _fetch(user_id):
        async with AsyncSessionLocal() as session:
            return await points_ledger.list_entries(session, user_id=user_id)

    return _fetch


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope="session")
def auth():
    return auth_headers


@pytest.fixture(scope="session")
def passwords() -> dict[UserRole, str]:
    return PASSWORDS
