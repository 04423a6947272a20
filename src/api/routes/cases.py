"""
Case API routes

Thin HTTP layer over CasesService: authentication, request parsing and
translation of service results into the response envelope.
"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query

from models.case import (
    CaseCreateRequest, CaseRatingRequest, CaseReassignRequest, CaseStatusUpdateRequest,
    DocumentAttachRequest
)
from models.enums import CaseStatus
from services.cases_service import CasesService, get_cases_service
from utils.auth import AuthContext, get_current_user, require_capability
from utils.pagination import PageParams, page_params
from utils.responses import list_response, success_response

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("", status_code=201)
async def create_case(
    request: CaseCreateRequest,
    actor: AuthContext = Depends(require_capability("cases:create")),
    service: CasesService = Depends(get_cases_service)
):
    """Submit a traffic ticket; a lawyer is matched immediately when one is eligible"""
    result = await service.create_case(actor, request)
    return success_response(result)


@router.get("")
async def list_cases(
    status: Optional[CaseStatus] = Query(None),
    params: PageParams = Depends(page_params),
    actor: AuthContext = Depends(get_current_user),
    service: CasesService = Depends(get_cases_service)
):
    return list_response(await service.list_cases(actor, params, status))


@router.post("/matching/retry")
async def retry_pending_matches(
    limit: int = Query(50, ge=1, le=200),
    actor: AuthContext = Depends(require_capability("cases:assign")),
    service: CasesService = Depends(get_cases_service)
):
    """Re-run matching for cases still waiting for a lawyer"""
    return success_response(await service.retry_pending(actor, limit))


@router.get("/{case_id}")
async def get_case(
    case_id: str,
    actor: AuthContext = Depends(get_current_user),
    service: CasesService = Depends(get_cases_service)
):
    return success_response(await service.get_case(actor, case_id))


@router.put("/{case_id}/status")
async def update_case_status(
    case_id: str,
    request: CaseStatusUpdateRequest,
    actor: AuthContext = Depends(require_capability("cases:update_status")),
    service: CasesService = Depends(get_cases_service)
):
    """Move a case to its next lifecycle status"""
    result = await service.update_status(actor, case_id, request)
    return success_response(result, message=f"Case status updated to {request.status.value}")


@router.put("/{case_id}/assign")
async def reassign_case(
    case_id: str,
    request: CaseReassignRequest,
    actor: AuthContext = Depends(require_capability("cases:assign")),
    service: CasesService = Depends(get_cases_service)
):
    return success_response(await service.reassign(actor, case_id, request))


@router.post("/{case_id}/match")
async def retry_case_match(
    case_id: str,
    actor: AuthContext = Depends(require_capability("cases:assign")),
    service: CasesService = Depends(get_cases_service)
):
    return success_response(await service.retry_matching(actor, case_id))


@router.post("/{case_id}/rating")
async def rate_case(
    case_id: str,
    request: CaseRatingRequest,
    actor: AuthContext = Depends(require_capability("cases:rate")),
    service: CasesService = Depends(get_cases_service)
):
    result = await service.rate_case(actor, case_id, request)
    return success_response(result, message="Thank you for rating your lawyer")


@router.post("/{case_id}/documents", status_code=201)
async def attach_document(
    case_id: str,
    request: DocumentAttachRequest,
    actor: AuthContext = Depends(require_capability("cases:attach_document")),
    service: CasesService = Depends(get_cases_service)
):
    return success_response(await service.attach_document(actor, case_id, request))
