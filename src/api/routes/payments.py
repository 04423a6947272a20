"""
Payment API routes - case payments, refunds, payouts and financial summary
"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query

from models.enums import PaymentStatus
from models.payment import PaymentConfirmRequest, PaymentIntentRequest, RefundRejectRequest, RefundRequest
from services.payments_service import PaymentsService, get_payments_service
from utils.auth import AuthContext, get_current_user, require_capability
from utils.pagination import PageParams, page_params
from utils.responses import list_response, success_response

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/intent", status_code=201)
async def create_payment_intent(
    request: PaymentIntentRequest,
    actor: AuthContext = Depends(require_capability("payments:create")),
    service: PaymentsService = Depends(get_payments_service)
):
    """Start paying for a case; the client secret is handed to the browser SDK"""
    return success_response(await service.create_payment_intent(actor, request))


@router.post("/confirm")
async def confirm_payment(
    request: PaymentConfirmRequest,
    actor: AuthContext = Depends(require_capability("payments:create")),
    service: PaymentsService = Depends(get_payments_service)
):
    result = await service.confirm_payment(actor, request)
    return success_response(result, message="Payment confirmed")


@router.get("")
async def list_payments(
    status: Optional[PaymentStatus] = Query(None),
    params: PageParams = Depends(page_params),
    actor: AuthContext = Depends(get_current_user),
    service: PaymentsService = Depends(get_payments_service)
):
    return list_response(await service.list_payments(actor, params, status))


@router.get("/summary")
async def financial_summary(
    lawyer_id: Optional[str] = Query(None, description="Restrict to one lawyer (admin only)"),
    actor: AuthContext = Depends(get_current_user),
    service: PaymentsService = Depends(get_payments_service)
):
    return success_response(await service.financial_summary(actor, lawyer_id))


@router.get("/{payment_id}")
async def get_payment(
    payment_id: str,
    actor: AuthContext = Depends(get_current_user),
    service: PaymentsService = Depends(get_payments_service)
):
    return success_response(await service.get_payment(actor, payment_id))


@router.post("/{payment_id}/refund")
async def request_refund(
    payment_id: str,
    request: RefundRequest,
    actor: AuthContext = Depends(require_capability("payments:request_refund")),
    service: PaymentsService = Depends(get_payments_service)
):
    return success_response(await service.request_refund(actor, payment_id, request))


@router.post("/{payment_id}/refund/process")
async def process_refund(
    payment_id: str,
    actor: AuthContext = Depends(require_capability("payments:process_refund")),
    service: PaymentsService = Depends(get_payments_service)
):
    return success_response(await service.process_refund(actor, payment_id), message="Refund processed")


@router.post("/{payment_id}/refund/reject")
async def reject_refund(
    payment_id: str,
    request: RefundRejectRequest,
    actor: AuthContext = Depends(require_capability("payments:process_refund")),
    service: PaymentsService = Depends(get_payments_service)
):
    return success_response(await service.reject_refund(actor, payment_id, request), message="Refund rejected")


@router.post("/{payment_id}/payout")
async def process_payout(
    payment_id: str,
    actor: AuthContext = Depends(require_capability("payments:process_payout")),
    service: PaymentsService = Depends(get_payments_service)
):
    return success_response(await service.process_payout(actor, payment_id), message="Payout initiated")
