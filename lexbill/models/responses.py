"""API response schemas.

Every outbound response is serialized through one of these models.
Structured error responses are included; the API never leaks raw
stack traces.
"""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from lexbill.models.domain import (
    CaseKind,
    CaseState,
    DocumentKind,
    EmailStatus,
    SignatureKind,
    StepResult,
    WorkflowKind,
)

# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class DependencyHealth(BaseModel):
    """Health status of a single infrastructure dependency."""

    model_config = ConfigDict(frozen=True)

    name: str
    status: str = Field(..., description="'healthy', 'unhealthy', or 'not_configured'")
    latency_ms: float | None = None
    details: str | None = None


class HealthResponse(BaseModel):
    """Aggregate health check response."""

    model_config = ConfigDict(frozen=True)

    status: str = Field(..., description="'healthy' or 'unhealthy'")
    version: str
    uptime_seconds: float
    dependencies: list[DependencyHealth]


# ---------------------------------------------------------------------------
# Cases
# ---------------------------------------------------------------------------


class CaseResponse(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    kind: CaseKind
    client_name: str
    internal_reference: str
    external_reference: str | None = None
    state: CaseState
    entry_date: date
    litigation_date: date | None = None
    litigation_district: str | None = None
    closure_date: date | None = None


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------


class WorkflowResultResponse(BaseModel):
    """Step-by-step outcome of a billing workflow invocation."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    workflow: WorkflowKind
    case_id: int
    steps: list[StepResult]
    document_id: int
    email_attempt_id: int | None = None
    signed: bool
    amount: Decimal
    district: str | None = None
    email_retryable: bool = Field(
        ..., description="True when delivery failed and the attempt can be retried"
    )


class DocumentResponse(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    case_id: int
    document_kind: DocumentKind
    signed: bool
    amount: Decimal | None = None
    base_fee: Decimal | None = None
    vat_rate: Decimal | None = None
    district: str | None = None
    created_at: datetime
    filename: str


class EmailAttemptResponse(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    case_id: int
    document_id: int | None = None
    recipient: str
    subject: str
    status: EmailStatus
    error_detail: str | None = None
    attempted_at: datetime


class CaseHistoryResponse(BaseModel):
    """Documents and email attempts for a case, newest first."""

    model_config = ConfigDict(frozen=True)

    case_id: int
    documents: list[DocumentResponse]
    emails: list[EmailAttemptResponse]


class MileageRate(BaseModel):
    model_config = ConfigDict(frozen=True)

    district: str
    rate: Decimal | None = Field(default=None, description="None when no rate is configured")


class MileageRatesResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    rates: list[MileageRate]


class SignatureInfoResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: SignatureKind
    detail: str
    email_configured: bool


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    """Structured error payload returned for every handled failure."""

    model_config = ConfigDict(frozen=True)

    error: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable description")
    details: dict[str, object] = Field(default_factory=dict)
    retryable: bool = False
    request_id: str | None = None
