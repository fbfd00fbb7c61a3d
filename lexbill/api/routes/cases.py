"""Case lifecycle endpoints.

POST /cases                      — open a case (reference allocated server-side)
GET  /cases/{case_id}            — fetch a case
POST /cases/{case_id}/litigation — Open -> InLitigation
POST /cases/{case_id}/archive    — -> Archived
"""

from fastapi import APIRouter, Depends

from lexbill.api.dependencies import get_case_service
from lexbill.models.requests import ArchiveRequest, CreateCaseRequest, LitigationRequest
from lexbill.models.responses import CaseResponse
from lexbill.services.cases.service import CaseService

router = APIRouter(prefix="/cases", tags=["cases"])


@router.post("", response_model=CaseResponse, status_code=201, summary="Create case")
async def create_case(
    request: CreateCaseRequest,
    service: CaseService = Depends(get_case_service),
) -> CaseResponse:
    case = await service.create_case(
        request.kind,
        request.client_name,
        external_reference=request.external_reference,
        designation=request.designation,
        entry_date=request.entry_date,
    )
    return CaseResponse.model_validate(case)


@router.get("/{case_id}", response_model=CaseResponse, summary="Get case")
async def get_case(
    case_id: int,
    service: CaseService = Depends(get_case_service),
) -> CaseResponse:
    return CaseResponse.model_validate(await service.get_case(case_id))


@router.post(
    "/{case_id}/litigation",
    response_model=CaseResponse,
    summary="Move case into litigation",
)
async def start_litigation(
    case_id: int,
    request: LitigationRequest,
    service: CaseService = Depends(get_case_service),
) -> CaseResponse:
    case = await service.transition_to_litigation(
        case_id, request.litigation_date, request.district
    )
    return CaseResponse.model_validate(case)


@router.post("/{case_id}/archive", response_model=CaseResponse, summary="Archive case")
async def archive_case(
    case_id: int,
    request: ArchiveRequest,
    service: CaseService = Depends(get_case_service),
) -> CaseResponse:
    return CaseResponse.model_validate(await service.archive_case(case_id, request.closure_date))
