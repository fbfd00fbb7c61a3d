"""Repository for reference counters.

The only write is an atomic increment-and-read: a single
``INSERT ... ON CONFLICT DO UPDATE ... RETURNING`` statement, so two
concurrent callers can never observe the same value and the first
allocation for a scheme key creates its row.
"""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from lexbill.models.database import ReferenceCounterRow

_INSERT_BY_DIALECT: dict[str, Any] = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class CounterRepo:
    """Async repository for reference counters."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def increment(self, scheme_key: str) -> int:
        """Increment the counter for ``scheme_key`` and return the new value."""
        dialect = self._session.get_bind().dialect.name
        try:
            insert = _INSERT_BY_DIALECT[dialect]
        except KeyError:
            raise NotImplementedError(f"Counter upsert not supported on {dialect!r}") from None

        stmt = insert(ReferenceCounterRow).values(
            scheme_key=scheme_key, last_value=1, updated_at=datetime.now(UTC)
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[ReferenceCounterRow.scheme_key],
            set_={
                "last_value": ReferenceCounterRow.last_value + 1,
                "updated_at": stmt.excluded.updated_at,
            },
        ).returning(ReferenceCounterRow.last_value)

        result = await self._session.execute(stmt)
        value: int = result.scalar_one()
        return value

    async def get_value(self, scheme_key: str) -> int:
        """Return the last issued value, or 0 if nothing was issued yet."""
        stmt = select(ReferenceCounterRow.last_value).where(
            ReferenceCounterRow.scheme_key == scheme_key
        )
        result = await self._session.execute(stmt)
        value = result.scalar_one_or_none()
        return value or 0
