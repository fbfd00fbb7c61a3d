"""Case lifecycle service.

Creates cases (allocating their internal reference in the same
transaction as the insert) and moves them forward through
Open -> InLitigation -> Archived. States never move backwards and
Archived is terminal.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date
from typing import TYPE_CHECKING

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from lexbill.core.exceptions import (
    ConflictError,
    InvalidStateTransitionError,
    NotFoundError,
    StorageUnavailableError,
    UnknownDistrictError,
    ValidationError,
)
from lexbill.db.repositories import CaseRepo
from lexbill.db.session import get_session
from lexbill.models.database import CaseRow
from lexbill.models.domain import JUDICIAL_DISTRICTS, Case, CaseKind, CaseState
from lexbill.services.references.allocator import validate_external_reference

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from lexbill.services.references.allocator import ReferenceAllocator

logger: structlog.stdlib.BoundLogger = structlog.get_logger()


def ensure_known_district(district: str | None) -> str:
    """Return ``district`` if it is a known judicial district."""
    if not district or district not in JUDICIAL_DISTRICTS:
        raise UnknownDistrictError(
            f"Unknown judicial district {district!r}",
            details={"district": district, "known": list(JUDICIAL_DISTRICTS)},
        )
    return district


class CaseService:
    """Creates cases and applies forward-only state transitions."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        allocator: ReferenceAllocator,
    ) -> None:
        self._session_factory = session_factory
        self._allocator = allocator

    async def create_case(
        self,
        kind: CaseKind,
        client_name: str,
        *,
        external_reference: str | None = None,
        designation: str | None = None,
        entry_date: date | None = None,
    ) -> Case:
        """Validate, allocate a reference and insert a new Open case."""
        client_name = (client_name or "").strip()
        if not client_name:
            raise ValidationError("Client name is required", details={"field": "client_name"})

        entry = entry_date or date.today()

        if kind == CaseKind.INSURER_LINKED:
            if not external_reference:
                raise ValidationError(
                    "Insurer-linked cases require an external reference",
                    details={"field": "external_reference"},
                )
            validate_external_reference(external_reference)
        else:
            external_reference = None

        court_designation: str | None = None
        if kind == CaseKind.COURT_ASSIGNED:
            court_designation = (designation or "").strip()
            if not court_designation:
                raise ValidationError(
                    "Court-assigned cases require a designation number",
                    details={"field": "designation"},
                )

        try:
            async with get_session(self._session_factory) as session:
                repo = CaseRepo(session)
                if external_reference is not None:
                    if await repo.get_by_external_reference(external_reference) is not None:
                        raise ConflictError(
                            f"External reference {external_reference} is already in use",
                            details={"field": "external_reference", "value": external_reference},
                        )

                if court_designation is not None:
                    if await repo.get_by_internal_reference(court_designation) is not None:
                        raise ConflictError(
                            f"Designation {court_designation} is already in use",
                            details={"field": "designation", "value": court_designation},
                        )
                    internal_reference = court_designation
                else:
                    internal_reference = await self._allocator.allocate(
                        kind, entry.year, session=session
                    )

                row = await repo.create(
                    CaseRow(
                        kind=kind.value,
                        client_name=client_name,
                        internal_reference=internal_reference,
                        external_reference=external_reference,
                        state=CaseState.OPEN.value,
                        entry_date=entry,
                    )
                )
                case = Case.model_validate(row)
        except IntegrityError as exc:
            raise ConflictError(
                "A case with the same reference already exists",
                details={"external_reference": external_reference},
            ) from exc
        except (SQLAlchemyError, OSError) as exc:
            raise StorageUnavailableError("Case store is unavailable") from exc

        logger.info(
            "case_created",
            case_id=case.id,
            kind=case.kind.value,
            internal_reference=case.internal_reference,
        )
        return case

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        """Session block that maps store outages to StorageUnavailableError."""
        try:
            async with get_session(self._session_factory) as session:
                yield session
        except (SQLAlchemyError, OSError) as exc:
            raise StorageUnavailableError("Case store is unavailable") from exc

    async def get_case(self, case_id: int) -> Case:
        async with self._transaction() as session:
            row = await CaseRepo(session).get_by_id(case_id)
            if row is None:
                raise NotFoundError(f"Case {case_id} not found", details={"case_id": case_id})
            return Case.model_validate(row)

    async def transition_to_litigation(
        self,
        case_id: int,
        litigation_date: date,
        district: str,
    ) -> Case:
        """Move an insurer-linked case from Open to InLitigation."""
        ensure_known_district(district)

        async with self._transaction() as session:
            repo = CaseRepo(session)
            row = await repo.get_by_id(case_id)
            if row is None:
                raise NotFoundError(f"Case {case_id} not found", details={"case_id": case_id})
            if row.kind != CaseKind.INSURER_LINKED:
                raise InvalidStateTransitionError(
                    "Only insurer-linked cases can enter litigation",
                    details={"case_id": case_id, "kind": row.kind},
                )
            if row.state != CaseState.OPEN:
                raise InvalidStateTransitionError(
                    "Litigation can only start from the open state",
                    details={"case_id": case_id, "state": row.state},
                )

            updated = await repo.mark_in_litigation(
                case_id, litigation_date=litigation_date, district=district
            )
            if not updated:
                raise InvalidStateTransitionError(
                    "Case changed state while entering litigation",
                    details={"case_id": case_id},
                )
            await session.refresh(row)
            case = Case.model_validate(row)

        logger.info("case_in_litigation", case_id=case_id, district=district)
        return case

    async def archive_case(self, case_id: int, closure_date: date | None) -> Case:
        """Archive an open or in-litigation case. Archived is terminal."""
        if closure_date is None:
            raise ValidationError(
                "A closure date is required to archive a case",
                details={"field": "closure_date"},
            )

        async with self._transaction() as session:
            repo = CaseRepo(session)
            row = await repo.get_by_id(case_id)
            if row is None:
                raise NotFoundError(f"Case {case_id} not found", details={"case_id": case_id})
            if row.state == CaseState.ARCHIVED:
                raise InvalidStateTransitionError(
                    "Case is already archived",
                    details={"case_id": case_id},
                )

            if not await repo.mark_archived(case_id, closure_date=closure_date):
                raise InvalidStateTransitionError(
                    "Case was archived concurrently",
                    details={"case_id": case_id},
                )
            await session.refresh(row)
            case = Case.model_validate(row)

        logger.info("case_archived", case_id=case_id)
        return case
