# vipledger/api/deps.py
import uuid

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer, SecurityScopes
from jose import JWTError
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from vipledger.core.config import settings
from vipledger.core.security import decode_access_token
from vipledger.db.session_async import get_async_db
from vipledger.models.user import User
from vipledger.schemas.auth import TokenPayload


OAUTH_SCOPES = {
    "admin": "Full administrative access.",
    "users:me": "Read the caller's own profile and membership.",
    "vip:read": "Read memberships, point rules and the points log.",
    "vip:write": "Manage memberships and point rules.",
    "pos:read": "Read POS orders.",
    "pos:write": "Create and settle POS orders, record consumption.",
    "nfc:write": "Register NFC cards and record check-ins.",
}


oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl=f"{settings.API_V1_STR}/auth/login",
    scopes=OAUTH_SCOPES,
)


def _decode_token(token: str) -> tuple[TokenPayload, list[str]]:
    payload = decode_access_token(token)
    token_data = TokenPayload(**payload)
    return token_data, list(token_data.scopes)


async def get_current_user(
    security_scopes: SecurityScopes,
    db: AsyncSession = Depends(get_async_db),
    token: str = Depends(oauth2_scheme),
) -> User:
    cred_exc = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": f'Bearer scope="{security_scopes.scope_str}"'},
    )

    try:
        token_data, token_scopes = _decode_token(token)
    except (JWTError, ValidationError):
        raise cred_exc

    try:
        user_id = uuid.UUID(token_data.sub)
    except ValueError:
        raise cred_exc

    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        raise cred_exc

    if security_scopes.scopes and "admin" not in token_scopes:
        for scope in security_scopes.scopes:
            if scope not in token_scopes:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail="Not enough permissions",
                    headers={"WWW-Authenticate": f'Bearer scope="{security_scopes.scope_str}"'},
                )
    return user
