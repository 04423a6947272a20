"""
Invoice API routes
"""

from fastapi import APIRouter, Depends

from models.payment import InvoiceCreateRequest
from services.payments_service import PaymentsService, get_payments_service
from utils.auth import AuthContext, get_current_user
from utils.pagination import PageParams, page_params
from utils.responses import list_response, success_response

router = APIRouter()


@router.post("", status_code=201)
async def create_invoice(
    request: InvoiceCreateRequest,
    actor: AuthContext = Depends(get_current_user),
    service: PaymentsService = Depends(get_payments_service)
):
    """Draft invoice; staff may invoice anyone, other users only themselves"""
    return success_response(await service.create_invoice(actor, request))


@router.get("")
async def list_invoices(
    params: PageParams = Depends(page_params),
    actor: AuthContext = Depends(get_current_user),
    service: PaymentsService = Depends(get_payments_service)
):
    return list_response(await service.list_invoices(actor, params))
