from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vipledger.core.security import get_password_hash, verify_password
from vipledger.db.operations import flush_async, refresh_async
from vipledger.models.user import User
from vipledger.schemas.user import UserCreate
from vipledger.services.exceptions import ConflictError, ResourceNotFoundError


async def get_by_email(db: AsyncSession, email: str) -> User | None:
    stmt = select(User).where(User.email == email).limit(1)
    result = await db.execute(stmt)
    return result.scalars().first()


async def get_user(db: AsyncSession, user_id) -> User:
    user = await db.get(User, user_id)
    if not user:
        raise ResourceNotFoundError("User not found")
    return user


async def create_user(db: AsyncSession, data: UserCreate) -> User:
    if await get_by_email(db, data.email):
        raise ConflictError("Email already registered")
    user = User(
        email=data.email,
        full_name=data.full_name,
        hashed_password=get_password_hash(data.password),
        role=data.role,
    )
    db.add(user)
    await flush_async(db, user)
    await refresh_async(db, user)
    return user


async def authenticate(db: AsyncSession, email: str, password: str) -> User | None:
    user = await get_by_email(db, email)
    if not user or not user.hashed_password:
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user
