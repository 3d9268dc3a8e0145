from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.villa import Villa


class VillaRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_villa(self, villa_id: int, for_update: bool = False) -> Optional[Villa]:
        """
        Load a villa. With for_update=True the row stays locked until the
        surrounding transaction ends, which serializes booking commits for
        that villa on PostgreSQL. SQLite ignores the clause.
        """
        query = select(Villa).where(Villa.id == villa_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()
