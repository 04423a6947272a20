"""
B2B API routes - plans, business accounts, employees, fine usage and subscriptions
"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query

from models.business import (
    BusinessAccountCreateRequest, BusinessAccountUpdateRequest, EmployeeCreateRequest,
    EmployeeUpdateRequest, FineSubmissionRequest, MonthlyInvoiceRequest, PlanChangeRequest,
    SubscriptionCancelRequest, SubscriptionConfirmRequest
)
from services.billing_service import BillingService, get_billing_service
from utils.auth import AuthContext, get_current_user, require_capability
from utils.pagination import PageParams, page_params
from utils.responses import list_response, success_response

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/plans")
async def list_plans(service: BillingService = Depends(get_billing_service)):
    """Public plan catalogue"""
    return list_response(await service.list_plans())


@router.post("/accounts", status_code=201)
async def create_account(
    request: BusinessAccountCreateRequest,
    actor: AuthContext = Depends(require_capability("business:manage_own")),
    service: BillingService = Depends(get_billing_service)
):
    result = await service.create_account(actor, request)
    return success_response(result, message="Business account created; complete checkout to activate")


@router.get("/accounts")
async def list_accounts(
    params: PageParams = Depends(page_params),
    actor: AuthContext = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service)
):
    return list_response(await service.list_accounts(actor, params))


@router.get("/accounts/{business_id}")
async def get_account(
    business_id: str,
    actor: AuthContext = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service)
):
    return success_response(await service.get_account(actor, business_id))


@router.put("/accounts/{business_id}")
async def update_account(
    business_id: str,
    request: BusinessAccountUpdateRequest,
    actor: AuthContext = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service)
):
    return success_response(await service.update_account(actor, business_id, request))


@router.post("/accounts/{business_id}/employees", status_code=201)
async def add_employee(
    business_id: str,
    request: EmployeeCreateRequest,
    actor: AuthContext = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service)
):
    return success_response(await service.add_employee(actor, business_id, request))


@router.get("/accounts/{business_id}/employees")
async def list_employees(
    business_id: str,
    actor: AuthContext = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service)
):
    return list_response(await service.list_employees(actor, business_id))


@router.put("/accounts/{business_id}/employees/{employee_id}")
async def update_employee(
    business_id: str,
    employee_id: str,
    request: EmployeeUpdateRequest,
    actor: AuthContext = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service)
):
    return success_response(await service.update_employee(actor, business_id, employee_id, request))


@router.post("/accounts/{business_id}/fines", status_code=201)
async def submit_fine(
    business_id: str,
    request: FineSubmissionRequest,
    actor: AuthContext = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service)
):
    """Record a fine against the current month's allowance"""
    return success_response(await service.submit_fine(actor, business_id, request))


@router.get("/accounts/{business_id}/usage")
async def get_usage(
    business_id: str,
    year: Optional[int] = Query(None, ge=2000),
    month: Optional[int] = Query(None, ge=1, le=12),
    actor: AuthContext = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service)
):
    return success_response(await service.get_usage(actor, business_id, year, month))


@router.post("/accounts/{business_id}/invoices", status_code=201)
async def generate_monthly_invoice(
    business_id: str,
    request: MonthlyInvoiceRequest,
    actor: AuthContext = Depends(require_capability("business:read_all")),
    service: BillingService = Depends(get_billing_service)
):
    return success_response(await service.generate_monthly_invoice(actor, business_id, request))


@router.get("/accounts/{business_id}/billing")
async def billing_history(
    business_id: str,
    params: PageParams = Depends(page_params),
    actor: AuthContext = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service)
):
    return list_response(await service.billing_history(actor, business_id, params))


@router.post("/accounts/{business_id}/checkout")
async def create_checkout(
    business_id: str,
    actor: AuthContext = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service)
):
    return success_response(await service.create_checkout(actor, business_id))


@router.post("/subscriptions/confirm")
async def confirm_subscription(
    request: SubscriptionConfirmRequest,
    actor: AuthContext = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service)
):
    return success_response(await service.confirm_subscription(actor, request))


@router.post("/accounts/{business_id}/cancel")
async def cancel_subscription(
    business_id: str,
    request: SubscriptionCancelRequest,
    actor: AuthContext = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service)
):
    result = await service.cancel_subscription(actor, business_id, request)
    return success_response(result, message="Subscription will end at the close of the current period")


@router.get("/accounts/{business_id}/subscription")
async def subscription_status(
    business_id: str,
    actor: AuthContext = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service)
):
    return success_response(await service.subscription_status(actor, business_id))


@router.post("/accounts/{business_id}/change-plan")
async def change_plan(
    business_id: str,
    request: PlanChangeRequest,
    actor: AuthContext = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service)
):
    """Checkout session for moving to another plan; the switch applies once it is paid"""
    return success_response(await service.change_plan(actor, business_id, request))


@router.get("/accounts/{business_id}/analytics")
async def business_analytics(
    business_id: str,
    actor: AuthContext = Depends(get_current_user),
    service: BillingService = Depends(get_billing_service)
):
    return success_response(await service.business_analytics(actor, business_id))
