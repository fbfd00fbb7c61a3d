"""Case reference allocation.

Three schemes:

- insurer-linked cases get ``IY`` + a six-digit correlative drawn from the
  single global ``internal-sequential`` counter (``IY004921``);
- private-client cases get ``IY-{YY}-{NNN}`` drawn from a counter keyed by
  the full year (``particular-2026``), so numbering restarts at 001 every
  year without a reset step and an old year's values are never reissued;
- court-assigned cases carry an externally issued designation and are not
  allocated here.

Every allocation round-trips through the store as one atomic
increment-and-read. Nothing is cached in process.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

import structlog
from sqlalchemy.exc import SQLAlchemyError

from lexbill.core.exceptions import (
    InvalidReferenceFormatError,
    StorageUnavailableError,
    UnsupportedCaseKindError,
)
from lexbill.db.repositories import CounterRepo
from lexbill.db.session import get_session
from lexbill.models.domain import CaseKind

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger: structlog.stdlib.BoundLogger = structlog.get_logger()

INTERNAL_SEQUENTIAL_KEY = "internal-sequential"

EXTERNAL_REFERENCE_PATTERN = re.compile(r"^DJ00\d{6}$")


def scheme_key_for(kind: CaseKind, year: int) -> str:
    """Return the counter key backing ``kind`` in ``year``."""
    if kind == CaseKind.INSURER_LINKED:
        return INTERNAL_SEQUENTIAL_KEY
    if kind == CaseKind.PRIVATE_CLIENT:
        return f"particular-{year}"
    raise UnsupportedCaseKindError(
        f"Case kind {kind.value!r} does not use allocated references",
        details={"kind": kind.value},
    )


def format_reference(kind: CaseKind, year: int, value: int) -> str:
    """Render a counter value as a reference string for ``kind``."""
    if kind == CaseKind.INSURER_LINKED:
        return f"IY{value:06d}"
    if kind == CaseKind.PRIVATE_CLIENT:
        return f"IY-{year % 100:02d}-{value:03d}"
    raise UnsupportedCaseKindError(
        f"Case kind {kind.value!r} does not use allocated references",
        details={"kind": kind.value},
    )


def validate_external_reference(reference: str) -> str:
    """Check an insurer reference is ``DJ00`` followed by six digits.

    Returns the reference unchanged. Uniqueness against existing cases is
    the caller's concern; a duplicate is a conflict, not a format error.
    """
    if not isinstance(reference, str) or not EXTERNAL_REFERENCE_PATTERN.match(reference):
        raise InvalidReferenceFormatError(
            "External reference must be DJ00 followed by 6 digits",
            details={"reference": reference},
        )
    return reference


class ReferenceAllocator:
    """Allocates internal case references against the persisted counters."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def allocate(
        self,
        kind: CaseKind,
        year: int,
        *,
        session: AsyncSession | None = None,
    ) -> str:
        """Allocate the next reference for a new case of ``kind``.

        When ``session`` is given the increment joins the caller's
        transaction, so a case insert that later fails rolls the counter
        back with it. Otherwise the increment commits on its own.
        """
        key = scheme_key_for(kind, year)
        try:
            if session is not None:
                value = await CounterRepo(session).increment(key)
            else:
                async with get_session(self._session_factory) as own_session:
                    value = await CounterRepo(own_session).increment(key)
        except (SQLAlchemyError, OSError) as exc:
            logger.error("reference_allocation_failed", scheme_key=key, error=str(exc))
            raise StorageUnavailableError(
                "Reference counter store is unavailable",
                details={"scheme_key": key},
            ) from exc

        reference = format_reference(kind, year, value)
        logger.info("reference_allocated", scheme_key=key, reference=reference)
        return reference
