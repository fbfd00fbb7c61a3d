"""Shared test fixtures, fakes and factory functions.

Tests run against a throwaway SQLite file per test unless
TEST_DATABASE_URL points at a real database (e.g. the Docker Postgres).
Factories return valid rows or domain objects with sensible defaults.
Override any field via keyword arguments to build specific scenarios
without repeating boilerplate.
"""

import os
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from lexbill.core.config import Settings
from lexbill.core.exceptions import EmailDeliveryError, RenderError
from lexbill.db.session import create_engine, create_session_factory
from lexbill.models.database import Base, CaseRow
from lexbill.models.domain import (
    BillingConfig,
    Case,
    CaseKind,
    CaseState,
    CredentialInfo,
    DocumentKind,
    SigningCredential,
)
from lexbill.services.billing.config_provider import SettingsConfigProvider
from lexbill.services.billing.workflow import BillingWorkflowEngine
from lexbill.services.documents.renderer import ReportLabRenderer
from lexbill.services.documents.storage import DocumentStorage

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL")

# ---------------------------------------------------------------------------
# Settings / database
# ---------------------------------------------------------------------------


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings for tests: console logs, temp storage, no SMTP, no signer."""
    database_url = TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'lexbill.db'}"
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        debug=False,
        database_url=database_url,
        documents_path=str(tmp_path / "documents"),
        billing_base_fee=Decimal("203.00"),
        vat_rate=Decimal("21"),
        billing_recipient_email="facturacion@example.com",
        mileage_rates={"Marbella": Decimal("25.50"), "Torrox": Decimal("18.00")},
        smtp_host="",
        smtp_user="",
        signing_credential_path="",
        log_format="console",
        log_level="DEBUG",
    )


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncIterator[AsyncEngine]:
    """Engine with a fresh schema, dropped again after the test."""
    engine = create_engine(test_settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(db_engine)


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """A plain session; tests commit explicitly when they need to."""
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Fakes for external collaborators
# ---------------------------------------------------------------------------


class RecordingTransport:
    """Email transport that records messages and optionally fails."""

    def __init__(self, fail_with: Exception | None = None) -> None:
        self.fail_with = fail_with
        self.sent: list[dict[str, Any]] = []
        self.calls = 0

    async def send(
        self,
        recipient: str,
        subject: str,
        body: str,
        attachment: bytes,
        filename: str,
    ) -> None:
        self.calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(
            {
                "recipient": recipient,
                "subject": subject,
                "body": body,
                "attachment": attachment,
                "filename": filename,
            }
        )


class FailingRenderer:
    """Renderer whose template is always missing."""

    async def render(self, kind: DocumentKind, fields: Mapping[str, Any]) -> bytes:
        raise RenderError(f"Template for {kind.value} not found", details={"kind": kind.value})


class FakeSignerBackend:
    """Signer backend answering from canned values."""

    def __init__(
        self,
        *,
        not_before: datetime | None = None,
        not_after: datetime | None = None,
        sign_error: Exception | None = None,
    ) -> None:
        now = datetime.now(UTC)
        self.not_before = not_before or now - timedelta(days=30)
        self.not_after = not_after or now + timedelta(days=365)
        self.sign_error = sign_error
        self.signed_payloads: list[bytes] = []

    async def inspect_credential(self, credential: SigningCredential) -> CredentialInfo:
        return CredentialInfo(
            subject="CN=Abogado Prueba",
            issuer="CN=ACA Test CA",
            not_before=self.not_before,
            not_after=self.not_after,
        )

    async def sign(self, data: bytes, credential: SigningCredential) -> bytes:
        if self.sign_error is not None:
            raise self.sign_error
        self.signed_payloads.append(data)
        return data + b"\n%signed"


@pytest.fixture
def email_transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def failing_transport() -> RecordingTransport:
    return RecordingTransport(fail_with=EmailDeliveryError("SMTP 550 mailbox unavailable"))


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@pytest.fixture
def config_provider(test_settings: Settings) -> SettingsConfigProvider:
    return SettingsConfigProvider(test_settings)


@pytest.fixture
def storage(test_settings: Settings) -> DocumentStorage:
    return DocumentStorage(test_settings.documents_path)


@pytest.fixture
def make_engine(
    session_factory: async_sessionmaker[AsyncSession],
    config_provider: SettingsConfigProvider,
    storage: DocumentStorage,
) -> Callable[..., BillingWorkflowEngine]:
    """Build a workflow engine, overriding any collaborator by keyword."""

    def _make(**overrides: Any) -> BillingWorkflowEngine:
        renderer = overrides.pop("renderer", ReportLabRenderer())
        return BillingWorkflowEngine(
            overrides.pop("session_factory", session_factory),
            overrides.pop("config_provider", config_provider),
            renderer,
            overrides.pop("storage", storage),
            **overrides,
        )

    return _make


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

_COUNTER = 0


def case_row_kwargs(**overrides: object) -> dict[str, object]:
    """Column values for a valid insurer-linked Open case."""
    global _COUNTER
    _COUNTER += 1
    defaults: dict[str, object] = {
        "kind": CaseKind.INSURER_LINKED.value,
        "client_name": f"Cliente Prueba {_COUNTER}",
        "internal_reference": f"IY{900000 + _COUNTER:06d}",
        "external_reference": f"DJ00{100000 + _COUNTER:06d}",
        "state": CaseState.OPEN.value,
        "entry_date": date(2026, 1, 15),
    }
    defaults.update(overrides)
    return defaults


@pytest.fixture
def case_factory(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[Case]]:
    """Insert a case row directly (bypassing the lifecycle rules) and return it."""

    async def _create(**overrides: object) -> Case:
        async with session_factory() as session:
            row = CaseRow(**case_row_kwargs(**overrides))
            session.add(row)
            await session.commit()
            return Case.model_validate(row)

    return _create


def make_billing_config(**overrides: object) -> BillingConfig:
    """Build a valid BillingConfig with sensible defaults."""
    defaults: dict[str, object] = {
        "base_fee": Decimal("203.00"),
        "vat_rate": Decimal("21"),
        "recipient_email": "facturacion@example.com",
        "mileage_rates": {"Marbella": Decimal("25.50")},
        "signing_credential": None,
        "captured_at": datetime(2026, 3, 1, 9, 30, tzinfo=UTC),
    }
    defaults.update(overrides)
    return BillingConfig(**defaults)  # type: ignore[arg-type]


def make_case(**overrides: object) -> Case:
    """Build an in-memory Case (no database)."""
    defaults: dict[str, object] = {
        "id": 1,
        "kind": CaseKind.INSURER_LINKED,
        "client_name": "María López",
        "internal_reference": "IY000123",
        "external_reference": "DJ00123456",
        "state": CaseState.OPEN,
        "entry_date": date(2026, 1, 15),
    }
    defaults.update(overrides)
    return Case(**defaults)  # type: ignore[arg-type]
