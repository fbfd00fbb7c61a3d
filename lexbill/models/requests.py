"""API request schemas.

Every inbound request body is validated through one of these models.
No raw dicts ever reach the service layer.
"""

from datetime import date

from pydantic import BaseModel, ConfigDict, Field

from lexbill.models.domain import CaseKind

# ---------------------------------------------------------------------------
# Cases
# ---------------------------------------------------------------------------


class CreateCaseRequest(BaseModel):
    """Open a new case. The internal reference is assigned by the server."""

    model_config = ConfigDict(frozen=True)

    kind: CaseKind
    client_name: str = Field(..., min_length=1, max_length=500)
    external_reference: str | None = Field(
        default=None,
        description="Insurer reference, required for insurer-linked cases, e.g. 'DJ00123456'",
    )
    designation: str | None = Field(
        default=None,
        max_length=50,
        description="Court designation number, required for court-assigned cases",
    )
    entry_date: date | None = Field(
        default=None,
        description="Defaults to today; its year scopes private-client numbering",
    )


class LitigationRequest(BaseModel):
    """Move a case into litigation."""

    model_config = ConfigDict(frozen=True)

    litigation_date: date
    district: str = Field(..., min_length=1, description="Judicial district, e.g. 'Marbella'")


class ArchiveRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    closure_date: date


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------


class MileageClaimRequest(BaseModel):
    """Optional district override. Defaults to the case's litigation district."""

    model_config = ConfigDict(frozen=True)

    district: str | None = None
