"""Repository for case rows.

Reads used by the billing gate and the case lifecycle service, plus the
narrow set of updates the lifecycle allows (litigation and archiving).
Internal references are written once, on insert, and never updated.
"""

from datetime import date

from sqlalchemy import CursorResult, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from lexbill.models.database import CaseRow


class CaseRepo:
    """Async repository for cases."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, case: CaseRow) -> CaseRow:
        """Insert a case and return it with generated fields."""
        self._session.add(case)
        await self._session.flush()
        return case

    async def get_by_id(self, case_id: int) -> CaseRow | None:
        """Fetch a case by its primary key."""
        stmt = select(CaseRow).where(CaseRow.id == case_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_external_reference(self, external_reference: str) -> CaseRow | None:
        stmt = select(CaseRow).where(CaseRow.external_reference == external_reference)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_internal_reference(self, internal_reference: str) -> CaseRow | None:
        stmt = select(CaseRow).where(CaseRow.internal_reference == internal_reference)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def mark_in_litigation(
        self,
        case_id: int,
        *,
        litigation_date: date,
        district: str,
    ) -> bool:
        """Move an Open case to InLitigation. Returns True if a row changed."""
        stmt = (
            update(CaseRow)
            .where(CaseRow.id == case_id, CaseRow.state == "open")
            .values(
                state="in_litigation",
                litigation_date=litigation_date,
                litigation_district=district,
            )
        )
        cursor: CursorResult[tuple[()]] = await self._session.execute(stmt)  # type: ignore[assignment]
        return cursor.rowcount > 0

    async def mark_archived(self, case_id: int, *, closure_date: date) -> bool:
        """Archive a case that is not archived yet. Returns True if a row changed."""
        stmt = (
            update(CaseRow)
            .where(CaseRow.id == case_id, CaseRow.state != "archived")
            .values(state="archived", closure_date=closure_date)
        )
        cursor: CursorResult[tuple[()]] = await self._session.execute(stmt)  # type: ignore[assignment]
        return cursor.rowcount > 0
