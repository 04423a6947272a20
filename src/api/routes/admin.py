"""
Administration routes - fine taxonomy, subscription plans, B2B billing oversight
and user quotas
"""

from fastapi import APIRouter, Depends

from models.business import PlanCreateRequest, PlanPricingRequest, PlanUpdateRequest
from models.fines import (
    FeeStructureRequest, FineTypeCreateRequest, FineTypeUpdateRequest, ViolationCreateRequest
)
from models.user import QuotaUpdateRequest
from services.billing_service import BillingService, get_billing_service
from services.fines_service import FinesService, get_fines_service
from services.users_service import UsersService, get_users_service
from utils.auth import AuthContext, require_capability
from utils.pagination import PageParams, page_params
from utils.responses import list_response, success_response

router = APIRouter()


# Fine taxonomy

@router.get("/fine-types")
async def list_fine_types(
    actor: AuthContext = Depends(require_capability("fines:manage")),
    service: FinesService = Depends(get_fines_service)
):
    """Active fine types with fee structures and violations"""
    return list_response(await service.admin_list_fine_types(actor))


@router.post("/fine-types", status_code=201)
async def create_fine_type(
    request: FineTypeCreateRequest,
    actor: AuthContext = Depends(require_capability("fines:manage")),
    service: FinesService = Depends(get_fines_service)
):
    return success_response(await service.create_fine_type(actor, request), message="Fine type created")


@router.put("/fine-types/{fine_type_id}")
async def update_fine_type(
    fine_type_id: str,
    request: FineTypeUpdateRequest,
    actor: AuthContext = Depends(require_capability("fines:manage")),
    service: FinesService = Depends(get_fines_service)
):
    return success_response(await service.update_fine_type(actor, fine_type_id, request))


@router.get("/fee-structures/{fine_type_id}")
async def get_fee_structure(
    fine_type_id: str,
    actor: AuthContext = Depends(require_capability("fines:manage")),
    service: FinesService = Depends(get_fines_service)
):
    return success_response(await service.get_fee_structure(actor, fine_type_id))


@router.post("/fee-structures")
async def set_fee_structure(
    request: FeeStructureRequest,
    actor: AuthContext = Depends(require_capability("fines:manage")),
    service: FinesService = Depends(get_fines_service)
):
    """Create or replace a fine type's fee structure"""
    return success_response(await service.set_fee_structure(actor, request))


@router.get("/fine-violations/{fine_type_id}")
async def list_violations(
    fine_type_id: str,
    actor: AuthContext = Depends(require_capability("fines:manage")),
    service: FinesService = Depends(get_fines_service)
):
    return list_response(await service.list_violations(actor, fine_type_id))


@router.post("/fine-violations", status_code=201)
async def create_violation(
    request: ViolationCreateRequest,
    actor: AuthContext = Depends(require_capability("fines:manage")),
    service: FinesService = Depends(get_fines_service)
):
    return success_response(await service.create_violation(actor, request), message="Violation created")


# Subscription plans

@router.get("/plans")
async def list_all_plans(
    actor: AuthContext = Depends(require_capability("plans:manage")),
    service: BillingService = Depends(get_billing_service)
):
    """Every plan, inactive ones included"""
    return list_response(await service.list_all_plans(actor))


@router.post("/plans", status_code=201)
async def create_plan(
    request: PlanCreateRequest,
    actor: AuthContext = Depends(require_capability("plans:manage")),
    service: BillingService = Depends(get_billing_service)
):
    return success_response(await service.create_plan(actor, request), message="Plan created")


@router.put("/plans/{plan_id}")
async def update_plan(
    plan_id: str,
    request: PlanUpdateRequest,
    actor: AuthContext = Depends(require_capability("plans:manage")),
    service: BillingService = Depends(get_billing_service)
):
    return success_response(await service.update_plan(actor, plan_id, request))


@router.put("/plans/{plan_id}/pricing")
async def update_plan_pricing(
    plan_id: str,
    request: PlanPricingRequest,
    actor: AuthContext = Depends(require_capability("plans:manage")),
    service: BillingService = Depends(get_billing_service)
):
    return success_response(await service.update_plan_pricing(actor, plan_id, request))


@router.delete("/plans/{plan_id}")
async def delete_plan(
    plan_id: str,
    actor: AuthContext = Depends(require_capability("plans:manage")),
    service: BillingService = Depends(get_billing_service)
):
    return success_response(await service.delete_plan(actor, plan_id))


# B2B billing oversight

@router.get("/subscriptions/analytics")
async def subscription_analytics(
    actor: AuthContext = Depends(require_capability("business:read_all")),
    service: BillingService = Depends(get_billing_service)
):
    return success_response(await service.subscription_analytics(actor))


@router.get("/billing/pending")
async def pending_billings(
    params: PageParams = Depends(page_params),
    actor: AuthContext = Depends(require_capability("business:read_all")),
    service: BillingService = Depends(get_billing_service)
):
    return list_response(await service.pending_billings(actor, params))


@router.post("/billing/{billing_id}/retry")
async def retry_billing_payment(
    billing_id: str,
    actor: AuthContext = Depends(require_capability("billing:retry")),
    service: BillingService = Depends(get_billing_service)
):
    """Charge an unpaid invoice to the business's saved card"""
    return success_response(await service.retry_billing_payment(actor, billing_id))


# Users

@router.put("/users/{user_id}/quota")
async def update_user_quota(
    user_id: str,
    request: QuotaUpdateRequest,
    actor: AuthContext = Depends(require_capability("users:manage_quota")),
    service: UsersService = Depends(get_users_service)
):
    return success_response(await service.update_quota(actor, user_id, request))
