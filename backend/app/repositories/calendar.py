from datetime import date
from typing import Iterable

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.calendar_block import CalendarBlock


class CalendarBlockRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_blocks(
        self,
        villa_id: int,
        window_start: date,
        window_end: date,
        unavailable_only: bool = True,
    ) -> list[CalendarBlock]:
        """Rows for dates in [window_start, window_end)."""
        query = select(CalendarBlock).where(
            CalendarBlock.villa_id == villa_id,
            CalendarBlock.date >= window_start,
            CalendarBlock.date < window_end,
        )
        if unavailable_only:
            query = query.where(
                or_(CalendarBlock.is_blocked.is_(True), CalendarBlock.is_available.is_(False))
            )
        result = await self.db.execute(query.order_by(CalendarBlock.date.asc()))
        return list(result.scalars().all())

    async def upsert_blocks(
        self,
        villa_id: int,
        dates: Iterable[date],
        is_available: bool,
        is_blocked: bool,
    ) -> list[CalendarBlock]:
        """
        Write one row per date. Callers hold the villa's reservation lock, so
        the read-then-write below cannot race another writer for the villa.
        """
        wanted = sorted(set(dates))
        if not wanted:
            return []

        result = await self.db.execute(
            select(CalendarBlock).where(
                CalendarBlock.villa_id == villa_id,
                CalendarBlock.date.in_(wanted),
            )
        )
        existing = {row.date: row for row in result.scalars().all()}

        rows = []
        for day in wanted:
            row = existing.get(day)
            if row is None:
                row = CalendarBlock(villa_id=villa_id, date=day)
                self.db.add(row)
            row.is_available = is_available
            row.is_blocked = is_blocked
            rows.append(row)

        await self.db.flush()
        return rows
