"""Tests for database repository classes.

Each test gets a fresh schema (SQLite file by default, or the database
named by TEST_DATABASE_URL), so tests are isolated and leave no
persistent data.
"""

from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lexbill.db.repositories import CaseRepo, CounterRepo, DocumentRepo, EmailAttemptRepo
from lexbill.models.database import CaseRow, EmailAttemptRow, GeneratedDocumentRow
from tests.conftest import case_row_kwargs

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _insert_case(session: AsyncSession, **overrides: object) -> CaseRow:
    row = await CaseRepo(session).create(CaseRow(**case_row_kwargs(**overrides)))
    await session.commit()
    return row


def _make_document(case_id: int, **overrides: object) -> GeneratedDocumentRow:
    defaults: dict[str, object] = {
        "case_id": case_id,
        "document_kind": "fixed_fee_invoice",
        "storage_path": f"/tmp/docs/{case_id}/{datetime.now(UTC).timestamp()}.pdf",
        "signed": True,
        "amount": Decimal("245.63"),
        "base_fee": Decimal("203.00"),
        "vat_rate": Decimal("21"),
    }
    defaults.update(overrides)
    return GeneratedDocumentRow(**defaults)


def _make_attempt(case_id: int, document_id: int | None, **overrides: object) -> EmailAttemptRow:
    defaults: dict[str, object] = {
        "case_id": case_id,
        "document_id": document_id,
        "recipient": "facturacion@example.com",
        "subject": "DJ00123456 - MINUTA",
        "status": "sent",
    }
    defaults.update(overrides)
    return EmailAttemptRow(**defaults)


# ---------------------------------------------------------------------------
# CaseRepo
# ---------------------------------------------------------------------------


class TestCaseRepo:
    async def test_create_and_lookup(self, db_session: AsyncSession) -> None:
        row = await _insert_case(db_session, external_reference="DJ00555555")
        repo = CaseRepo(db_session)

        assert (await repo.get_by_id(row.id)) is not None
        found = await repo.get_by_external_reference("DJ00555555")
        assert found is not None and found.id == row.id
        by_internal = await repo.get_by_internal_reference(row.internal_reference)
        assert by_internal is not None and by_internal.id == row.id

    async def test_get_missing_returns_none(self, db_session: AsyncSession) -> None:
        assert await CaseRepo(db_session).get_by_id(424242) is None

    async def test_internal_reference_is_unique(self, db_session: AsyncSession) -> None:
        await _insert_case(db_session, internal_reference="IY000777")
        with pytest.raises(IntegrityError):
            await CaseRepo(db_session).create(
                CaseRow(**case_row_kwargs(internal_reference="IY000777"))
            )

    async def test_mark_in_litigation_only_from_open(self, db_session: AsyncSession) -> None:
        row = await _insert_case(db_session)
        repo = CaseRepo(db_session)

        changed = await repo.mark_in_litigation(
            row.id, litigation_date=date(2026, 3, 1), district="Estepona"
        )
        again = await repo.mark_in_litigation(
            row.id, litigation_date=date(2026, 3, 2), district="Torrox"
        )
        await db_session.commit()
        await db_session.refresh(row)

        assert changed is True
        assert again is False
        assert row.state == "in_litigation"
        assert row.litigation_district == "Estepona"

    async def test_mark_archived_is_terminal(self, db_session: AsyncSession) -> None:
        row = await _insert_case(db_session)
        repo = CaseRepo(db_session)

        assert await repo.mark_archived(row.id, closure_date=date(2026, 5, 1)) is True
        assert await repo.mark_archived(row.id, closure_date=date(2026, 5, 2)) is False
        await db_session.commit()
        await db_session.refresh(row)
        assert row.closure_date == date(2026, 5, 1)


# ---------------------------------------------------------------------------
# CounterRepo
# ---------------------------------------------------------------------------


class TestCounterRepo:
    async def test_first_increment_creates_row(self, db_session: AsyncSession) -> None:
        repo = CounterRepo(db_session)
        assert await repo.get_value("particular-2026") == 0
        assert await repo.increment("particular-2026") == 1
        assert await repo.increment("particular-2026") == 2
        assert await repo.get_value("particular-2026") == 2

    async def test_keys_are_independent(self, db_session: AsyncSession) -> None:
        repo = CounterRepo(db_session)
        await repo.increment("particular-2025")
        await repo.increment("particular-2025")
        assert await repo.increment("particular-2026") == 1


# ---------------------------------------------------------------------------
# DocumentRepo / EmailAttemptRepo
# ---------------------------------------------------------------------------


class TestDocumentRepo:
    async def test_insert_keeps_figures(self, db_session: AsyncSession) -> None:
        case = await _insert_case(db_session)
        doc = await DocumentRepo(db_session).insert(_make_document(case.id))
        await db_session.commit()

        fetched = await DocumentRepo(db_session).get_by_id(doc.id)
        assert fetched is not None
        assert fetched.amount == Decimal("245.63")
        assert fetched.signed is True

    async def test_storage_path_is_unique(self, db_session: AsyncSession) -> None:
        case = await _insert_case(db_session)
        repo = DocumentRepo(db_session)
        await repo.insert(_make_document(case.id, storage_path="/tmp/a.pdf"))
        with pytest.raises(IntegrityError):
            await repo.insert(_make_document(case.id, storage_path="/tmp/a.pdf"))

    async def test_list_newest_first(self, db_session: AsyncSession) -> None:
        case = await _insert_case(db_session)
        repo = DocumentRepo(db_session)
        base = datetime(2026, 1, 1, tzinfo=UTC)
        for offset in range(3):
            await repo.insert(
                _make_document(
                    case.id,
                    storage_path=f"/tmp/doc-{offset}.pdf",
                    created_at=base + timedelta(hours=offset),
                )
            )
        await db_session.commit()

        docs = await repo.list_by_case(case.id)
        assert [d.storage_path for d in docs] == [
            "/tmp/doc-2.pdf",
            "/tmp/doc-1.pdf",
            "/tmp/doc-0.pdf",
        ]
        assert await repo.count_by_case(case.id) == 3

    async def test_list_is_scoped_to_case(self, db_session: AsyncSession) -> None:
        first = await _insert_case(db_session)
        second = await _insert_case(db_session)
        repo = DocumentRepo(db_session)
        await repo.insert(_make_document(first.id, storage_path="/tmp/first.pdf"))
        await db_session.commit()
        assert await repo.list_by_case(second.id) == []


class TestEmailAttemptRepo:
    async def test_failed_attempt_keeps_error_detail(self, db_session: AsyncSession) -> None:
        case = await _insert_case(db_session)
        doc = await DocumentRepo(db_session).insert(_make_document(case.id))
        attempt = await EmailAttemptRepo(db_session).insert(
            _make_attempt(case.id, doc.id, status="error", error_detail="550 rejected")
        )
        await db_session.commit()

        fetched = await EmailAttemptRepo(db_session).get_by_id(attempt.id)
        assert fetched is not None
        assert fetched.status == "error"
        assert fetched.error_detail == "550 rejected"

    async def test_list_newest_first(self, db_session: AsyncSession) -> None:
        case = await _insert_case(db_session)
        doc = await DocumentRepo(db_session).insert(_make_document(case.id))
        repo = EmailAttemptRepo(db_session)
        base = datetime(2026, 1, 1, tzinfo=UTC)
        older = await repo.insert(
            _make_attempt(case.id, doc.id, status="error", attempted_at=base)
        )
        newer = await repo.insert(
            _make_attempt(case.id, doc.id, attempted_at=base + timedelta(minutes=5))
        )
        await db_session.commit()

        attempts = await repo.list_by_case(case.id)
        assert [a.id for a in attempts] == [newer.id, older.id]
