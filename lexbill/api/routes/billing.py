"""Billing workflow endpoints.

POST /cases/{case_id}/invoice                         — fixed-fee invoice
POST /cases/{case_id}/mileage-claim                   — mileage claim
POST /cases/{case_id}/emails/{attempt_id}/retry       — resend a failed email
GET  /cases/{case_id}/history                         — documents and emails
GET  /documents/{document_id}/download                — stored PDF
GET  /billing/mileage-rates                           — rate per district
GET  /billing/signature                               — active signing variant
"""

from pathlib import Path

from fastapi import APIRouter, Body, Depends
from starlette.responses import Response

from lexbill.api.dependencies import get_workflow_engine
from lexbill.models.domain import GeneratedDocument
from lexbill.models.requests import MileageClaimRequest
from lexbill.models.responses import (
    CaseHistoryResponse,
    DocumentResponse,
    EmailAttemptResponse,
    MileageRate,
    MileageRatesResponse,
    SignatureInfoResponse,
    WorkflowResultResponse,
)
from lexbill.services.billing.workflow import BillingWorkflowEngine


router = APIRouter(tags=["billing"])


def _document_response(document: GeneratedDocument) -> DocumentResponse:
    return DocumentResponse(
        id=document.id,
        case_id=document.case_id,
        document_kind=document.document_kind,
        signed=document.signed,
        amount=document.amount,
        base_fee=document.base_fee,
        vat_rate=document.vat_rate,
        district=document.district,
        created_at=document.created_at,
        filename=Path(document.storage_path).name,
    )


@router.post(
    "/cases/{case_id}/invoice",
    response_model=WorkflowResultResponse,
    status_code=201,
    summary="Generate fixed-fee invoice",
)
async def generate_invoice(
    case_id: int,
    engine: BillingWorkflowEngine = Depends(get_workflow_engine),
) -> WorkflowResultResponse:
    result = await engine.generate_invoice(case_id)
    return WorkflowResultResponse.model_validate(result)


@router.post(
    "/cases/{case_id}/mileage-claim",
    response_model=WorkflowResultResponse,
    status_code=201,
    summary="Generate mileage claim",
)
async def generate_mileage_claim(
    case_id: int,
    request: MileageClaimRequest | None = Body(default=None),
    engine: BillingWorkflowEngine = Depends(get_workflow_engine),
) -> WorkflowResultResponse:
    district = request.district if request is not None else None
    result = await engine.generate_mileage_claim(case_id, district)
    return WorkflowResultResponse.model_validate(result)


@router.post(
    "/cases/{case_id}/emails/{attempt_id}/retry",
    response_model=EmailAttemptResponse,
    status_code=201,
    summary="Retry failed email",
)
async def retry_email(
    case_id: int,
    attempt_id: int,
    engine: BillingWorkflowEngine = Depends(get_workflow_engine),
) -> EmailAttemptResponse:
    attempt = await engine.retry_email(case_id, attempt_id)
    return EmailAttemptResponse.model_validate(attempt)


@router.get(
    "/cases/{case_id}/history",
    response_model=CaseHistoryResponse,
    summary="Document and email history",
)
async def get_history(
    case_id: int,
    engine: BillingWorkflowEngine = Depends(get_workflow_engine),
) -> CaseHistoryResponse:
    history = await engine.get_history(case_id)
    return CaseHistoryResponse(
        case_id=history.case_id,
        documents=[_document_response(doc) for doc in history.documents],
        emails=[EmailAttemptResponse.model_validate(email) for email in history.emails],
    )


@router.get("/documents/{document_id}/download", summary="Download document PDF")
async def download_document(
    document_id: int,
    engine: BillingWorkflowEngine = Depends(get_workflow_engine),
) -> Response:
    document, data = await engine.read_document(document_id)
    filename = Path(document.storage_path).name
    return Response(
        content=data,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get(
    "/billing/mileage-rates",
    response_model=MileageRatesResponse,
    summary="Mileage rate per judicial district",
)
async def list_mileage_rates(
    engine: BillingWorkflowEngine = Depends(get_workflow_engine),
) -> MileageRatesResponse:
    return MileageRatesResponse(
        rates=[MileageRate(district=d, rate=rate) for d, rate in engine.mileage_rates()]
    )


@router.get(
    "/billing/signature",
    response_model=SignatureInfoResponse,
    summary="Active signing variant",
)
async def signature_info(
    engine: BillingWorkflowEngine = Depends(get_workflow_engine),
) -> SignatureInfoResponse:
    info = engine.signature_info()
    return SignatureInfoResponse(
        kind=info.kind,
        detail=info.detail,
        email_configured=engine.email_enabled,
    )
