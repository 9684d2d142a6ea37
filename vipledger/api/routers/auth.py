from __future__ import annotations

import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request, Security, status
from fastapi.security import OAuth2PasswordRequestForm
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from vipledger.api.deps import get_current_user
from vipledger.core.config import settings
from vipledger.core.logging import get_logger, security_alert
from vipledger.core.metrics import record_login_attempt
from vipledger.core.security import (
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    scopes_for_role,
)
from vipledger.db.operations import commit_async
from vipledger.db.session_async import get_async_db
from vipledger.models.user import User
from vipledger.schemas.auth import RefreshRequest, TokenPair, TokenRefresh
from vipledger.schemas.user import UserRead
from vipledger.services.user_service import authenticate

router = APIRouter(prefix="/auth", tags=["auth"])

auth_logger = get_logger("vipledger.auth")


def _client_ip(request: Request | None) -> str | None:
    if request is None:
        return None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    client = request.client
    return client.host if client else None


@router.post("/login", response_model=TokenPair)
async def login(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_async_db),
):
    user = await authenticate(db, form_data.username, form_data.password)
    if not user or not user.is_active:
        record_login_attempt("failure")
        security_alert(
            "Failed login attempt",
            email=form_data.username,
            client_ip=_client_ip(request),
        )
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Incorrect email or password",
        )

    record_login_attempt("success")
    user_scopes = scopes_for_role(user.role)
    access = create_access_token(subject=user.id, extra={"scopes": user_scopes})
    refresh = create_refresh_token(subject=user.id, extra={"scopes": user_scopes})

    user.last_login_at = datetime.now(timezone.utc)
    db.add(user)
    await commit_async(db)

    auth_logger.info(
        "User authenticated",
        extra={
            "user_id": str(user.id),
            "role": user.role.value,
            "client_ip": _client_ip(request),
        },
    )

    return {
        "access_token": access,
        "refresh_token": refresh,
        "token_type": "bearer",
        "expires_in": settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        "scopes": user_scopes,
        "user": UserRead.model_validate(user),
    }


@router.post("/refresh", response_model=TokenRefresh)
async def refresh_token(payload: RefreshRequest, db: AsyncSession = Depends(get_async_db)):
    invalid = HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid refresh token")
    try:
        user_id = uuid.UUID(decode_refresh_token(payload.refresh_token)["sub"])
    except (JWTError, KeyError, ValueError) as exc:
        security_alert("Refresh token validation failed", reason=str(exc))
        raise invalid from exc

    # Scopes follow the current role, not the ones baked into the refresh token.
    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        security_alert("Refresh token for unknown or inactive user", user_id=str(user_id))
        raise invalid

    return {
        "access_token": create_access_token(subject=user.id, extra={"scopes": scopes_for_role(user.role)}),
        "token_type": "bearer",
        "expires_in": settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    }


@router.get("/me", response_model=UserRead)
async def read_me(current_user: User = Security(get_current_user, scopes=["users:me"])):
    return current_user
