"""
Lawyer API routes - registration, profile, directory and admin approval
"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query

from models.enums import Specialization
from models.lawyer import (
    AvailabilityUpdate, LawyerApprovalRequest, LawyerProfileUpdate, LawyerRegistrationRequest,
    LawyerSearchQuery, LawyerSortField
)
from services.lawyers_service import LawyersService, get_lawyers_service
from utils.auth import AuthContext, get_current_user, require_capability
from utils.responses import list_response, success_response

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/register", status_code=201)
async def register_lawyer(
    request: LawyerRegistrationRequest,
    actor: AuthContext = Depends(require_capability("lawyers:register")),
    service: LawyersService = Depends(get_lawyers_service)
):
    return success_response(await service.register(actor, request))


@router.get("/me")
async def get_own_profile(
    actor: AuthContext = Depends(require_capability("lawyers:manage_profile")),
    service: LawyersService = Depends(get_lawyers_service)
):
    return success_response(await service.get_own_profile(actor))


@router.put("/me")
async def update_own_profile(
    request: LawyerProfileUpdate,
    actor: AuthContext = Depends(require_capability("lawyers:manage_profile")),
    service: LawyersService = Depends(get_lawyers_service)
):
    return success_response(await service.update_profile(actor, request), message="Profile updated")


@router.put("/me/availability")
async def set_availability(
    request: AvailabilityUpdate,
    actor: AuthContext = Depends(require_capability("lawyers:manage_profile")),
    service: LawyersService = Depends(get_lawyers_service)
):
    return success_response(await service.set_availability(actor, request))


@router.get("/me/dashboard")
async def get_dashboard(
    actor: AuthContext = Depends(require_capability("lawyers:manage_profile")),
    service: LawyersService = Depends(get_lawyers_service)
):
    return success_response(await service.dashboard(actor))


@router.get("/search")
async def search_lawyers(
    state: Optional[str] = Query(None, min_length=2, max_length=2),
    specialization: Optional[Specialization] = Query(None),
    min_rating: Optional[float] = Query(None, ge=0, le=5),
    sort_by: LawyerSortField = Query(LawyerSortField.RATING),
    limit: int = Query(20, ge=1, le=50),
    _: AuthContext = Depends(get_current_user),
    service: LawyersService = Depends(get_lawyers_service)
):
    """Approved, available lawyers; bank details are never included"""
    query = LawyerSearchQuery(
        state=state.upper() if state else None,
        specialization=specialization,
        min_rating=min_rating,
        sort_by=sort_by,
        limit=limit
    )
    return list_response(await service.search(query))


@router.get("/pending")
async def list_pending_lawyers(
    actor: AuthContext = Depends(require_capability("lawyers:approve")),
    service: LawyersService = Depends(get_lawyers_service)
):
    return list_response(await service.list_pending_approval(actor))


@router.put("/{lawyer_id}/approval")
async def review_lawyer(
    lawyer_id: str,
    request: LawyerApprovalRequest,
    actor: AuthContext = Depends(require_capability("lawyers:approve")),
    service: LawyersService = Depends(get_lawyers_service)
):
    result = await service.review(actor, lawyer_id, request)
    return success_response(result, message="Lawyer approved" if request.approved else "Lawyer rejected")


@router.get("/{lawyer_id}")
async def get_lawyer(
    lawyer_id: str,
    _: AuthContext = Depends(get_current_user),
    service: LawyersService = Depends(get_lawyers_service)
):
    return success_response(await service.get_public_profile(lawyer_id))
