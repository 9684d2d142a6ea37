# vipledger/schemas/user.py
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from vipledger.domain.enums import UserRole


class UserBase(BaseModel):
    email: EmailStr
    full_name: str | None = None


class UserCreate(UserBase):
    password: str = Field(min_length=8)
    role: UserRole = UserRole.vip


class UserRead(UserBase):
    id: UUID
    role: UserRole
    is_active: bool

    model_config = ConfigDict(from_attributes=True)
