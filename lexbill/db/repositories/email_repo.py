"""Repository for email delivery attempts.

Append-only: a retry inserts a new attempt and leaves the failed one in
place as an audit record.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lexbill.models.database import EmailAttemptRow


class EmailAttemptRepo:
    """Async repository for email attempts."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def insert(self, attempt: EmailAttemptRow) -> EmailAttemptRow:
        """Insert an attempt and return it with its id."""
        self._session.add(attempt)
        await self._session.flush()
        return attempt

    async def get_by_id(self, attempt_id: int) -> EmailAttemptRow | None:
        stmt = select(EmailAttemptRow).where(EmailAttemptRow.id == attempt_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_by_case(
        self,
        case_id: int,
        *,
        limit: int = 200,
        offset: int = 0,
    ) -> list[EmailAttemptRow]:
        """List a case's attempts, newest first."""
        stmt = (
            select(EmailAttemptRow)
            .where(EmailAttemptRow.case_id == case_id)
            .order_by(EmailAttemptRow.attempted_at.desc(), EmailAttemptRow.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())
