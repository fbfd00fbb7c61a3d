"""SQLAlchemy 2.0 ORM models for all database tables.

These map directly to the relational schema. Domain enums are stored as
VARCHAR via their StrEnum string values. Timestamps get a client-side
default (so flushed rows carry them without a reload) and a server-side
default for rows inserted outside the ORM.

generated_documents and email_attempts are append-only: no repository
exposes an update or delete for them.
"""

from datetime import UTC, date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    false,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Shared base for all ORM models."""


# ---------------------------------------------------------------------------
# cases
# ---------------------------------------------------------------------------


class CaseRow(Base):
    """A legal matter. Its internal reference is assigned once, at creation."""

    __tablename__ = "cases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    client_name: Mapped[str] = mapped_column(Text, nullable=False)
    internal_reference: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    external_reference: Mapped[str | None] = mapped_column(String(20), unique=True, nullable=True)
    state: Mapped[str] = mapped_column(
        String(20), nullable=False, server_default="open", index=True
    )
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    litigation_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    litigation_district: Mapped[str | None] = mapped_column(String(50), nullable=True)
    closure_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
    )

    documents: Mapped[list["GeneratedDocumentRow"]] = relationship(back_populates="case")

    def __repr__(self) -> str:
        return f"<CaseRow id={self.id} ref={self.internal_reference!r} state={self.state!r}>"


# ---------------------------------------------------------------------------
# reference_counters
# ---------------------------------------------------------------------------


class ReferenceCounterRow(Base):
    """Last value issued for a reference scheme key.

    Year-scoped schemes embed the year in the key, so a new year starts a
    new row instead of resetting an old one.
    """

    __tablename__ = "reference_counters"

    scheme_key: Mapped[str] = mapped_column(String(50), primary_key=True)
    last_value: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<ReferenceCounterRow key={self.scheme_key!r} last={self.last_value}>"


# ---------------------------------------------------------------------------
# generated_documents
# ---------------------------------------------------------------------------


class GeneratedDocumentRow(Base):
    """One rendered billing document and the figures it was rendered with."""

    __tablename__ = "generated_documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    case_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("cases.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    document_kind: Mapped[str] = mapped_column(String(30), nullable=False)
    storage_path: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    signed: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=false())
    amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2, asdecimal=True), nullable=True)
    base_fee: Mapped[Decimal | None] = mapped_column(Numeric(10, 2, asdecimal=True), nullable=True)
    vat_rate: Mapped[Decimal | None] = mapped_column(Numeric(5, 2, asdecimal=True), nullable=True)
    district: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )

    case: Mapped["CaseRow"] = relationship(back_populates="documents")

    __table_args__ = (Index("ix_generated_documents_case_created", "case_id", "created_at"),)

    def __repr__(self) -> str:
        return (
            f"<GeneratedDocumentRow id={self.id} case={self.case_id} "
            f"kind={self.document_kind!r} signed={self.signed}>"
        )


# ---------------------------------------------------------------------------
# email_attempts
# ---------------------------------------------------------------------------


class EmailAttemptRow(Base):
    """One delivery attempt, successful or not."""

    __tablename__ = "email_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    case_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("cases.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    document_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("generated_documents.id", ondelete="RESTRICT"), nullable=True
    )
    recipient: Mapped[str] = mapped_column(String(254), nullable=False)
    subject: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    error_detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )

    __table_args__ = (Index("ix_email_attempts_case_attempted", "case_id", "attempted_at"),)

    def __repr__(self) -> str:
        return f"<EmailAttemptRow id={self.id} case={self.case_id} status={self.status!r}>"
