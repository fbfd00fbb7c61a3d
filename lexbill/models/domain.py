"""Core domain models and enumerations.

These are the canonical data shapes for the billing subsystem. Services
produce or consume these types, never raw rows or dicts. Frozen models are
used for value objects (cases as read by the gate, configuration snapshots,
history records) that must not change once created.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class CaseKind(StrEnum):
    """The three fixed kinds of legal matter."""

    INSURER_LINKED = "insurer_linked"
    PRIVATE_CLIENT = "private_client"
    COURT_ASSIGNED = "court_assigned"


class CaseState(StrEnum):
    """Processing state. Transitions only move forward."""

    OPEN = "open"
    IN_LITIGATION = "in_litigation"
    ARCHIVED = "archived"


class WorkflowKind(StrEnum):
    """Billable document workflows the engine can run."""

    FIXED_FEE_INVOICE = "fixed_fee_invoice"
    MILEAGE_CLAIM = "mileage_claim"


class DocumentKind(StrEnum):
    """Kind of a generated document record."""

    FIXED_FEE_INVOICE = "fixed_fee_invoice"
    MILEAGE_CLAIM = "mileage_claim"
    OTHER = "other"


class EmailStatus(StrEnum):
    """Outcome of one delivery attempt."""

    SENT = "sent"
    ERROR = "error"


class WorkflowStep(StrEnum):
    """Ordered steps of a workflow invocation."""

    VALIDATE = "validate"
    RENDER = "render"
    SIGN = "sign"
    RECORD_DOCUMENT = "record_document"
    DISPATCH_EMAIL = "dispatch_email"
    RECORD_EMAIL = "record_email"


class StepOutcome(StrEnum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class SignatureKind(StrEnum):
    """The two signing variants."""

    VISUAL = "visual"
    CRYPTOGRAPHIC = "cryptographic"


WORKFLOW_DOCUMENT_KIND: dict[WorkflowKind, DocumentKind] = {
    WorkflowKind.FIXED_FEE_INVOICE: DocumentKind.FIXED_FEE_INVOICE,
    WorkflowKind.MILEAGE_CLAIM: DocumentKind.MILEAGE_CLAIM,
}

JUDICIAL_DISTRICTS: tuple[str, ...] = (
    "Torrox",
    "Vélez-Málaga",
    "Torremolinos",
    "Fuengirola",
    "Marbella",
    "Estepona",
    "Antequera",
)


# ---------------------------------------------------------------------------
# Cases
# ---------------------------------------------------------------------------


class Case(BaseModel):
    """A legal matter as seen by the billing subsystem."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    kind: CaseKind
    client_name: str = Field(..., min_length=1)
    internal_reference: str = Field(..., min_length=1)
    external_reference: str | None = None
    state: CaseState
    entry_date: date
    litigation_date: date | None = None
    litigation_district: str | None = None
    closure_date: date | None = None


class GateDecision(BaseModel):
    """Result of authorizing a workflow against a case."""

    model_config = ConfigDict(frozen=True)

    allowed: bool
    reason: str | None = None


# ---------------------------------------------------------------------------
# Configuration snapshot
# ---------------------------------------------------------------------------


class SigningCredential(BaseModel):
    """Location and passphrase of a P12 signing credential."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(..., min_length=1)
    passphrase: str = ""


class BillingConfig(BaseModel):
    """Billing configuration captured at the start of a workflow run.

    Amount computation reads only from this snapshot, so a run is
    reproducible from the figures stored on its document record.
    """

    model_config = ConfigDict(frozen=True)

    base_fee: Decimal = Field(..., ge=0)
    vat_rate: Decimal = Field(..., ge=0, le=100)
    recipient_email: str = Field(..., min_length=3)
    mileage_rates: dict[str, Decimal] = Field(default_factory=dict)
    signing_credential: SigningCredential | None = None
    captured_at: datetime


class InvoiceAmounts(BaseModel):
    """Fixed-fee invoice figures, rounded to cents."""

    model_config = ConfigDict(frozen=True)

    base_fee: Decimal
    vat_rate: Decimal
    vat_amount: Decimal
    total: Decimal


# ---------------------------------------------------------------------------
# History records
# ---------------------------------------------------------------------------


class GeneratedDocument(BaseModel):
    """One rendering of a billable document. Never mutated once stored."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    case_id: int
    document_kind: DocumentKind
    storage_path: str
    signed: bool
    amount: Decimal | None = None
    base_fee: Decimal | None = None
    vat_rate: Decimal | None = None
    district: str | None = None
    created_at: datetime


class EmailAttempt(BaseModel):
    """One delivery attempt. A retry creates a new attempt."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    case_id: int
    document_id: int | None = None
    recipient: str
    subject: str
    status: EmailStatus
    error_detail: str | None = None
    attempted_at: datetime


class CaseHistory(BaseModel):
    """Documents and email attempts for a case, newest first."""

    model_config = ConfigDict(frozen=True)

    case_id: int
    documents: list[GeneratedDocument]
    emails: list[EmailAttempt]


# ---------------------------------------------------------------------------
# Workflow results
# ---------------------------------------------------------------------------


class StepResult(BaseModel):
    """Outcome of a single workflow step."""

    model_config = ConfigDict(frozen=True)

    step: WorkflowStep
    outcome: StepOutcome
    detail: str | None = None


class WorkflowResult(BaseModel):
    """Step-by-step account of one workflow invocation.

    Degradable failures (signing) and recorded-but-failed ones (email)
    appear here as step details; they never surface as exceptions.
    """

    model_config = ConfigDict(frozen=True)

    workflow: WorkflowKind
    case_id: int
    steps: list[StepResult]
    document_id: int
    email_attempt_id: int | None = None
    signed: bool
    amount: Decimal
    district: str | None = None

    def outcome_of(self, step: WorkflowStep) -> StepOutcome | None:
        for result in self.steps:
            if result.step == step:
                return result.outcome
        return None

    @property
    def email_retryable(self) -> bool:
        """True when an attempt was recorded but delivery failed."""
        return (
            self.email_attempt_id is not None
            and self.outcome_of(WorkflowStep.DISPATCH_EMAIL) == StepOutcome.FAILED
        )


class SignatureInfo(BaseModel):
    """Display-only description of the active signing variant."""

    model_config = ConfigDict(frozen=True)

    kind: SignatureKind
    detail: str


class CredentialInfo(BaseModel):
    """What a signer backend reports about a credential."""

    model_config = ConfigDict(frozen=True)

    subject: str | None = None
    issuer: str | None = None
    not_before: datetime
    not_after: datetime
