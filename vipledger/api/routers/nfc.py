from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, Response, Security, status
from sqlalchemy.ext.asyncio import AsyncSession

from vipledger.api.deps import get_current_user
from vipledger.db.operations import commit_async
from vipledger.db.session_async import get_async_db
from vipledger.models.user import User
from vipledger.schemas.nfc import CheckInCreate, CheckInRead, CheckInRecorded, NFCCardCreate, NFCCardRead
from vipledger.services import nfc_service
from vipledger.services.exceptions import ServiceError

router = APIRouter(prefix="/nfc", tags=["nfc"])


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@router.get("/cards", response_model=List[NFCCardRead])
async def list_cards(
    user_id: Optional[UUID] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["nfc:write"]),
):
    return await nfc_service.list_cards(db, user_id=user_id, limit=limit, offset=offset)


@router.post("/cards", response_model=NFCCardRead, status_code=status.HTTP_201_CREATED)
async def register_card(
    payload: NFCCardCreate,
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["nfc:write"]),
):
    try:
        card = await nfc_service.create_card(db, payload)
        await commit_async(db)
    except ServiceError:
        await db.rollback()
        raise
    return card


@router.get("/checkins", response_model=List[CheckInRead])
async def list_checkins(
    user_id: Optional[UUID] = Query(default=None),
    event_id: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["nfc:write"]),
):
    return await nfc_service.list_checkins(db, user_id=user_id, event_id=event_id, limit=limit, offset=offset)


@router.post("/checkins", response_model=CheckInRecorded, status_code=status.HTTP_201_CREATED)
async def record_checkin(
    payload: CheckInCreate,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Security(get_current_user, scopes=["nfc:write"]),
):
    try:
        checkin, created, loyalty = await nfc_service.create_checkin(
            db,
            payload,
            ip_address=_client_ip(request),
            user_agent=request.headers.get("user-agent"),
        )
        await commit_async(db)
    except ServiceError:
        await db.rollback()
        raise
    if not created:
        response.status_code = status.HTTP_200_OK
    return {"checkin": checkin, "created": created, "loyalty": loyalty}
