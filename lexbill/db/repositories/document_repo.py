"""Repository for generated-document records.

Append-only: documents can be inserted and read, never updated or
deleted, even after the owning case is archived.
"""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from lexbill.models.database import GeneratedDocumentRow


class DocumentRepo:
    """Async repository for generated documents."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def insert(self, document: GeneratedDocumentRow) -> GeneratedDocumentRow:
        """Insert a document record and return it with its id."""
        self._session.add(document)
        await self._session.flush()
        return document

    async def get_by_id(self, document_id: int) -> GeneratedDocumentRow | None:
        stmt = select(GeneratedDocumentRow).where(GeneratedDocumentRow.id == document_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_by_case(
        self,
        case_id: int,
        *,
        limit: int = 200,
        offset: int = 0,
    ) -> list[GeneratedDocumentRow]:
        """List a case's documents, newest first."""
        stmt = (
            select(GeneratedDocumentRow)
            .where(GeneratedDocumentRow.case_id == case_id)
            .order_by(GeneratedDocumentRow.created_at.desc(), GeneratedDocumentRow.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def count_by_case(self, case_id: int) -> int:
        stmt = select(func.count()).where(GeneratedDocumentRow.case_id == case_id)
        result = await self._session.execute(stmt)
        return result.scalar_one()
