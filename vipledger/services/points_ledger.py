from __future__ import annotations

from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from vipledger.db.operations import flush_async
from vipledger.domain.enums import PointsSource
from vipledger.models.vip import PointsLedgerEntry


async def find_entry(db: AsyncSession, user_id, source: PointsSource, ref_id: str | None) -> PointsLedgerEntry | None:
    if ref_id is None:
        return None
    stmt = (
        select(PointsLedgerEntry)
        .where(PointsLedgerEntry.user_id == user_id)
        .where(PointsLedgerEntry.source == source)
        .where(PointsLedgerEntry.ref_id == ref_id)
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.scalars().first()


async def append_entry(
    db: AsyncSession,
    *,
    user_id,
    source: PointsSource,
    ref_id: str | None,
    delta_points: int,
    balance_after: int,
    details: dict[str, Any] | None = None,
) -> PointsLedgerEntry:
    """Add a ledger row and flush the whole unit of work so constraint errors surface here."""
    entry = PointsLedgerEntry(
        user_id=user_id,
        source=source,
        ref_id=ref_id,
        delta_points=delta_points,
        balance_after=balance_after,
        details=details or {},
    )
    db.add(entry)
    await flush_async(db)
    return entry


async def list_entries(
    db: AsyncSession,
    *,
    user_id=None,
    source: PointsSource | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[PointsLedgerEntry]:
    stmt = select(PointsLedgerEntry).order_by(PointsLedgerEntry.created_at.desc())
    if user_id is not None:
        stmt = stmt.where(PointsLedgerEntry.user_id == user_id)
    if source is not None:
        stmt = stmt.where(PointsLedgerEntry.source == source)
    result = await db.execute(stmt.offset(offset).limit(limit))
    return list(result.scalars().all())


async def summarize_by_source(db: AsyncSession, *, user_id=None) -> list[dict[str, Any]]:
    stmt = select(
        PointsLedgerEntry.source,
        func.count(PointsLedgerEntry.id),
        func.coalesce(func.sum(PointsLedgerEntry.delta_points), 0),
    ).group_by(PointsLedgerEntry.source)
    if user_id is not None:
        stmt = stmt.where(PointsLedgerEntry.user_id == user_id)
    rows = (await db.execute(stmt)).all()
    return [
        {"source": source, "entries": int(count), "total_points": int(total)}
        for source, count, total in sorted(rows, key=lambda row: row[0].value)
    ]


async def sum_deltas(db: AsyncSession, user_id) -> int:
    stmt = select(func.coalesce(func.sum(PointsLedgerEntry.delta_points), 0)).where(
        PointsLedgerEntry.user_id == user_id
    )
    return int((await db.execute(stmt)).scalar_one())
