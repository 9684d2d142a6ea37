# vipledger/schemas/auth.py
from pydantic import BaseModel, Field

from vipledger.schemas.user import UserRead


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = Field(default="bearer")
    expires_in: int
    scopes: list[str] = Field(default_factory=list)
    user: UserRead


class RefreshRequest(BaseModel):
    refresh_token: str


class TokenRefresh(BaseModel):
    access_token: str
    token_type: str = Field(default="bearer")
    expires_in: int


class TokenPayload(BaseModel):
    sub: str
    type: str
    exp: int
    scopes: list[str] = Field(default_factory=list)
