"""
Payments service - case payments, fee split, refunds, payouts and invoices
"""

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from config.settings import CASE_CURRENCY, PLATFORM_FEE_PERCENT
from database.connection import Database, get_database
from models.case import Case, CasePayment
from models.enums import (
    CasePaymentStatus, CaseStatus, InvoiceStatus, PaymentStatus, PaymentType, PayoutStatus,
    RefundStatus, UserRole
)
from models.payment import (
    Invoice, InvoiceCreateRequest, Payment, PaymentConfirmRequest, PaymentIntentRequest,
    PaymentMethod, RefundRecord, RefundRejectRequest, RefundRequest
)
from repositories.cases import CasesRepository
from repositories.lawyers import LawyersRepository
from repositories.payments import InvoicesRepository, PaymentsRepository
from repositories.users import UsersRepository
from services.base_service import BaseService, ErrorType, ServiceResult, StaleWriteError
from services.case_lifecycle import can_transition, make_timeline_entry, releases_capacity
from services.ledger import (
    compute_fee_split, compute_invoice_totals, is_refund_processable, refund_blocker,
    should_auto_approve_refund, summarize_payments
)
from services.notification_service import NotificationService, get_notification_service
from services.payment_gateway import PaymentGateway, PaymentGatewayError, get_payment_gateway
from utils.auth import AuthContext
from utils.helpers import (
    generate_invoice_number, generate_transaction_id, new_id, to_money, utc_now
)
from utils.pagination import PageParams, build_page_info

logger = logging.getLogger(__name__)

INVOICE_DUE_DAYS = 30


class CaseAlreadyPaidError(StaleWriteError):
    """Another payment settled the case first"""


class PaymentsService(BaseService):
    """Service for the payment ledger"""

    def __init__(self, db: Database, payments: PaymentsRepository, invoices: InvoicesRepository,
                 cases: CasesRepository, lawyers: LawyersRepository, users: UsersRepository,
                 gateway: PaymentGateway, notifications: Optional[NotificationService] = None,
                 fee_percent=PLATFORM_FEE_PERCENT):
        self.db = db
        self.payments = payments
        self.invoices = invoices
        self.cases = cases
        self.lawyers = lawyers
        self.users = users
        self.gateway = gateway
        self.notifications = notifications
        self.fee_percent = fee_percent

    def _owns(self, actor: AuthContext, payment: Payment) -> bool:
        return payment.user_id == actor.user_id or self.can(actor, "payments:read_all")

    @staticmethod
    def _external_error(e: PaymentGatewayError) -> ServiceResult:
        return ServiceResult.fail(ErrorType.EXTERNAL_SERVICE_ERROR, str(e))

    async def create_payment_intent(self, actor: AuthContext, request: PaymentIntentRequest) -> ServiceResult:
        """
        Open a processor payment intent for a case and record a pending payment

        Returns:
            ServiceResult with {"payment": Payment, "client_secret": str}
        """
        if not self.can(actor, "payments:create"):
            return self.forbidden("Not allowed to create payments")

        case = await self.cases.get(request.case_id)
        if case is None:
            return self.not_found("Case")
        if case.user_id != actor.user_id and not actor.is_admin:
            return self.forbidden("Only the case owner can pay for this case")
        if case.payment.status == CasePaymentStatus.PAID:
            return self.conflict("Case is already paid")
        existing = await self.payments.find_open_for_case(case.id)
        if existing is not None:
            if existing.status == PaymentStatus.COMPLETED:
                return self.conflict("Case is already paid")
            return self.conflict(f"Payment {existing.transaction_id} for this case is still pending")

        amount = to_money(request.amount)
        transaction_id = generate_transaction_id()
        try:
            intent = await self.gateway.create_payment_intent(
                amount,
                CASE_CURRENCY,
                {"case_id": case.id, "case_number": case.case_number,
                 "user_id": case.user_id, "transaction_id": transaction_id}
            )
        except PaymentGatewayError as e:
            return self._external_error(e)

        payment = Payment(
            id=new_id(),
            case_id=case.id,
            user_id=case.user_id,
            lawyer_id=case.lawyer_id,
            amount=amount,
            currency=CASE_CURRENCY,
            type=PaymentType.CASE_PAYMENT,
            status=PaymentStatus.PENDING,
            stripe_payment_intent_id=intent["id"],
            transaction_id=transaction_id,
            created_at=utc_now()
        )
        try:
            created = await self.payments.create(payment)
        except Exception as e:
            return self.server_error("Payment creation", e)

        logger.info(f"Payment intent {intent['id']} opened for case {case.case_number} ({amount})")
        return ServiceResult.ok({"payment": created, "client_secret": intent["client_secret"]})

    async def confirm_payment(self, actor: AuthContext, request: PaymentConfirmRequest) -> ServiceResult:
        """Confirm a payment once the processor reports the intent as succeeded"""
        payment = await self.payments.get(request.payment_id)
        if payment is None:
            return self.not_found("Payment")
        if not self._owns(actor, payment):
            return self.forbidden("Not authorized to confirm this payment")
        if payment.stripe_payment_intent_id != request.payment_intent_id:
            return self.invalid("Payment intent does not belong to this payment")
        if payment.status == PaymentStatus.COMPLETED:
            return self.conflict("Payment already confirmed")
        if payment.status != PaymentStatus.PENDING:
            return self.invalid(f"Payment cannot be confirmed in status '{payment.status.value}'")

        try:
            intent = await self.gateway.retrieve_payment_intent(request.payment_intent_id)
        except PaymentGatewayError as e:
            return self._external_error(e)
        if intent["status"] != "succeeded":
            return self.invalid(f"Payment has not succeeded (processor status: {intent['status']})")

        return await self._complete_payment(payment, intent, actor.user_id)

    async def _complete_payment(self, payment: Payment, intent: Dict[str, Any],
                                actor_id: Optional[str]) -> ServiceResult:
        """Record the fee split and mark the case paid"""
        platform_fee, lawyer_payout = compute_fee_split(payment.amount, self.fee_percent)
        now = utc_now()
        case = await self.cases.get(payment.case_id) if payment.case_id else None
        if case is not None and case.payment.status == CasePaymentStatus.PAID:
            logger.warning(f"Payment {payment.transaction_id} succeeded on already paid case {case.case_number}")
            return self.conflict("Case is already paid")
        try:
            async with self.db.transaction():
                updated = await self.payments.update(
                    payment.id,
                    {
                        "status": PaymentStatus.COMPLETED,
                        "platform_fee": platform_fee,
                        "lawyer_payout": lawyer_payout,
                        "payment_method": PaymentMethod(**(intent.get("payment_method") or {})),
                        "stripe_charge_id": intent.get("latest_charge"),
                    },
                    expected_status=PaymentStatus.PENDING
                )
                if updated is None:
                    raise StaleWriteError(payment.id)
                if case is not None:
                    await self._mark_case_paid(case, updated, actor_id, now)
        except CaseAlreadyPaidError:
            logger.warning(f"Payment {payment.transaction_id} lost the race to pay case {payment.case_id}")
            return self.conflict("Case is already paid")
        except StaleWriteError:
            return self.conflict("Payment already confirmed")
        except Exception as e:
            return self.server_error("Payment confirmation", e)

        logger.info(
            f"Payment {payment.transaction_id} completed: fee {platform_fee.amount}, payout {lawyer_payout.amount}"
        )
        return ServiceResult.ok(updated)

    async def _mark_case_paid(self, case: Case, payment: Payment, actor_id: Optional[str], now):
        fields = {
            "payment": CasePayment(status=CasePaymentStatus.PAID, payment_id=payment.id, paid_at=now),
            "pricing": case.pricing.model_copy(update={"actual_price": payment.amount}),
        }
        # Work starts on payment only once a lawyer holds the case
        if case.lawyer_id and can_transition(case.status, CaseStatus.IN_PROGRESS):
            entry = make_timeline_entry(CaseStatus.IN_PROGRESS, "Payment received", actor_id, now)
            if await self.cases.transition(case.id, case.status, entry, fields, require_unpaid=True) is None:
                current = await self.cases.get(case.id)
                if current is not None and current.payment.status == CasePaymentStatus.PAID:
                    raise CaseAlreadyPaidError(case.id)
                raise StaleWriteError(case.id)
        elif await self.cases.update(case.id, fields, require_unpaid=True) is None:
            raise CaseAlreadyPaidError(case.id)

    async def request_refund(self, actor: AuthContext, payment_id: str, request: RefundRequest) -> ServiceResult:
        """
        Request a refund; approved and executed immediately when the case was lost

        Returns:
            ServiceResult with the updated payment
        """
        if not self.can(actor, "payments:request_refund"):
            return self.forbidden("Not allowed to request refunds")

        payment = await self.payments.get(payment_id)
        if payment is None:
            return self.not_found("Payment")
        if payment.user_id != actor.user_id and not actor.is_admin:
            return self.forbidden("Only the payer can request a refund")

        blocker = refund_blocker(payment)
        if blocker:
            return self.conflict(blocker)
        if payment.status != PaymentStatus.COMPLETED:
            return self.invalid("Only completed payments can be refunded")

        amount = to_money(request.amount) if request.amount else payment.amount
        if amount > payment.amount:
            return self.invalid("Refund amount exceeds the payment amount")

        case = await self.cases.get(payment.case_id) if payment.case_id else None
        auto_approve = should_auto_approve_refund(case)
        refund = RefundRecord(
            amount=amount,
            reason=request.reason,
            status=RefundStatus.APPROVED if auto_approve else RefundStatus.PENDING,
            requested_at=utc_now()
        )

        if auto_approve:
            logger.info(f"Refund for {payment.transaction_id} auto-approved (guilty outcome)")
            return await self._execute_refund(payment, refund, actor.user_id)

        try:
            updated = await self.payments.update(
                payment.id, {"refund": refund}, expected_status=PaymentStatus.COMPLETED
            )
        except Exception as e:
            return self.server_error("Refund request", e)
        if updated is None:
            return self.conflict("Payment changed while requesting the refund")

        logger.info(f"Refund of {amount} requested for {payment.transaction_id}, awaiting review")
        if self.notifications:
            await self.notifications.refund_requested(updated)
        return ServiceResult.ok(updated, message="Refund request submitted for review")

    async def process_refund(self, actor: AuthContext, payment_id: str) -> ServiceResult:
        """Admin execution of an approved or pending refund"""
        if not self.can(actor, "payments:process_refund"):
            return self.forbidden("Only administrators can process refunds")

        payment = await self.payments.get(payment_id)
        if payment is None:
            return self.not_found("Payment")
        if payment.status == PaymentStatus.REFUNDED:
            return self.conflict("Payment already refunded")
        if not is_refund_processable(payment):
            return self.invalid("No approved or pending refund to process")

        refund = payment.refund.model_copy(update={"status": RefundStatus.APPROVED})
        return await self._execute_refund(payment, refund, actor.user_id)

    async def _execute_refund(self, payment: Payment, refund: RefundRecord,
                              actor_id: Optional[str]) -> ServiceResult:
        """Refund at the processor first, then settle payment and case together"""
        if not payment.stripe_payment_intent_id:
            return self.invalid("Payment has no processor reference to refund")

        try:
            processor_refund = await self.gateway.create_refund(payment.stripe_payment_intent_id, refund.amount)
        except PaymentGatewayError as e:
            return self._external_error(e)

        now = utc_now()
        completed = refund.model_copy(update={"status": RefundStatus.COMPLETED, "processed_at": now})
        try:
            async with self.db.transaction():
                updated = await self.payments.update(
                    payment.id,
                    {
                        "status": PaymentStatus.REFUNDED,
                        "refund": completed,
                        "stripe_refund_id": processor_refund["id"],
                    },
                    expected_status=PaymentStatus.COMPLETED
                )
                if updated is None:
                    raise StaleWriteError(payment.id)

                case = await self.cases.get(payment.case_id) if payment.case_id else None
                if case is not None:
                    fields = {
                        "payment": case.payment.model_copy(update={"status": CasePaymentStatus.REFUNDED}),
                        "pricing": case.pricing.model_copy(update={"refund_amount": completed.amount}),
                    }
                    entry = make_timeline_entry(
                        CaseStatus.CLOSED, f"Refund of {completed.amount} processed", actor_id, now
                    )
                    if await self.cases.transition(case.id, case.status, entry, fields) is None:
                        raise StaleWriteError(case.id)
                    if case.lawyer_id and releases_capacity(case.status, CaseStatus.CLOSED):
                        await self.lawyers.release_capacity(case.lawyer_id)
        except StaleWriteError:
            logger.error(
                f"Processor refund {processor_refund['id']} issued but {payment.transaction_id} changed concurrently"
            )
            return self.conflict("Payment already refunded")
        except Exception as e:
            return self.server_error("Refund processing", e)

        logger.info(f"Refund {processor_refund['id']} of {completed.amount} completed for {payment.transaction_id}")
        if self.notifications:
            client = await self.users.get(payment.user_id)
            await self.notifications.refund_completed(client.email if client else None, updated)
        return ServiceResult.ok(updated, message="Refund processed")

    async def reject_refund(self, actor: AuthContext, payment_id: str,
                            request: RefundRejectRequest) -> ServiceResult:
        if not self.can(actor, "payments:process_refund"):
            return self.forbidden("Only administrators can reject refunds")

        payment = await self.payments.get(payment_id)
        if payment is None:
            return self.not_found("Payment")
        if not payment.refund or payment.refund.status != RefundStatus.PENDING:
            return self.invalid("No pending refund to reject")

        refund = payment.refund.model_copy(update={"status": RefundStatus.REJECTED, "processed_at": utc_now()})
        try:
            updated = await self.payments.update(
                payment.id, {"refund": refund}, expected_status=PaymentStatus.COMPLETED
            )
        except Exception as e:
            return self.server_error("Refund rejection", e)
        if updated is None:
            return self.conflict("Payment changed while rejecting the refund")

        logger.info(f"Refund for {payment.transaction_id} rejected by {actor.user_id}: {request.reason}")
        return ServiceResult.ok(updated, message="Refund rejected")

    async def process_payout(self, actor: AuthContext, payment_id: str) -> ServiceResult:
        """Hand a pending lawyer payout to the payout integration"""
        if not self.can(actor, "payments:process_payout"):
            return self.forbidden("Only administrators can process payouts")

        payment = await self.payments.get(payment_id)
        if payment is None:
            return self.not_found("Payment")
        if payment.lawyer_payout is None:
            return self.invalid("Payment has no lawyer payout")
        if payment.lawyer_payout.status != PayoutStatus.PENDING:
            return self.conflict(f"Payout is already {payment.lawyer_payout.status.value}")
        if not payment.lawyer_id:
            return self.invalid("Payment has no lawyer to pay out")

        lawyer = await self.lawyers.get(payment.lawyer_id)
        if lawyer is None:
            return self.not_found("Lawyer")
        if not lawyer.bank_details or not lawyer.bank_details.account_number:
            return self.invalid("Lawyer bank details are missing")

        payout = payment.lawyer_payout.model_copy(update={
            "status": PayoutStatus.PROCESSING,
            "transaction_id": generate_transaction_id(),
        })
        try:
            updated = await self.payments.update(
                payment.id, {"lawyer_payout": payout}, expected_payout_status=PayoutStatus.PENDING
            )
        except Exception as e:
            return self.server_error("Payout processing", e)
        if updated is None:
            return self.conflict("Payout is no longer pending")

        logger.info(f"Payout {payout.transaction_id} of {payout.amount} started for lawyer {lawyer.id}")
        return ServiceResult.ok(updated, message="Payout processing")

    async def get_payment(self, actor: AuthContext, payment_id: str) -> ServiceResult:
        payment = await self.payments.get(payment_id)
        if payment is None:
            return self.not_found("Payment")
        if not self._owns(actor, payment) and not await self._is_payee(actor, payment):
            return self.forbidden("Not authorized to view this payment")
        return ServiceResult.ok(payment)

    async def _is_payee(self, actor: AuthContext, payment: Payment) -> bool:
        if actor.role != UserRole.LAWYER.value or not payment.lawyer_id:
            return False
        lawyer = await self.lawyers.get_by_user(actor.user_id)
        return lawyer is not None and lawyer.id == payment.lawyer_id

    async def list_payments(self, actor: AuthContext, params: PageParams,
                            status: Optional[PaymentStatus] = None) -> ServiceResult:
        """Payments visible to the actor, newest first"""
        try:
            if self.can(actor, "payments:read_all"):
                items, total = await self.payments.list(params.offset, params.limit, status=status)
            elif actor.role == UserRole.LAWYER.value:
                lawyer = await self.lawyers.get_by_user(actor.user_id)
                if lawyer is None:
                    return self.not_found("Lawyer profile")
                items, total = await self.payments.list(
                    params.offset, params.limit, lawyer_id=lawyer.id, status=status
                )
            elif self.can(actor, "payments:read_own"):
                items, total = await self.payments.list(
                    params.offset, params.limit, user_id=actor.user_id, status=status
                )
            else:
                return self.forbidden("Not allowed to list payments")
        except Exception as e:
            return self.server_error("Payment listing", e)
        return ServiceResult.ok_list(items, page_info=build_page_info(params, total))

    async def financial_summary(self, actor: AuthContext, lawyer_id: Optional[str] = None) -> ServiceResult:
        """Platform-wide totals for admins; a lawyer only sees their own payouts"""
        if not self.can(actor, "payments:summary"):
            if actor.role != UserRole.LAWYER.value:
                return self.forbidden("Not allowed to view financial summaries")
            lawyer = await self.lawyers.get_by_user(actor.user_id)
            if lawyer is None:
                return self.not_found("Lawyer profile")
            lawyer_id = lawyer.id
        try:
            payments = await self.payments.list_all(lawyer_id=lawyer_id)
        except Exception as e:
            return self.server_error("Financial summary", e)
        return ServiceResult.ok(summarize_payments(payments))

    async def create_invoice(self, actor: AuthContext, request: InvoiceCreateRequest) -> ServiceResult:
        if not self.can(actor, "invoices:create") and request.user_id != actor.user_id:
            return self.forbidden("Not allowed to create invoices for other users")

        totals = compute_invoice_totals(request.line_items, request.tax_percentage, request.discount_amount)
        if totals.total < 0:
            return self.invalid("Discount exceeds the invoice amount")

        now = utc_now()
        invoice = Invoice(
            id=new_id(),
            invoice_number=generate_invoice_number(now),
            user_id=request.user_id,
            lawyer_id=request.lawyer_id,
            case_id=request.case_id,
            status=InvoiceStatus.DRAFT,
            line_items=request.line_items,
            subtotal=totals.subtotal,
            tax_percentage=request.tax_percentage,
            tax_amount=totals.tax_amount,
            discount_amount=to_money(request.discount_amount),
            total_amount=totals.total,
            notes=request.notes,
            terms=request.terms,
            due_date=(now + timedelta(days=INVOICE_DUE_DAYS)).date(),
            created_by=actor.user_id,
            created_at=now
        )
        try:
            created = await self.invoices.create(invoice)
        except Exception as e:
            return self.server_error("Invoice creation", e)
        return ServiceResult.ok(created)

    async def list_invoices(self, actor: AuthContext, params: PageParams) -> ServiceResult:
        try:
            if self.can(actor, "invoices:read_all"):
                items, total = await self.invoices.list(params.offset, params.limit)
            elif self.can(actor, "invoices:read_own"):
                items, total = await self.invoices.list(params.offset, params.limit, user_id=actor.user_id)
            else:
                return self.forbidden("Not allowed to list invoices")
        except Exception as e:
            return self.server_error("Invoice listing", e)
        return ServiceResult.ok_list(items, page_info=build_page_info(params, total))

    async def handle_intent_event(self, event_type: str, intent: Dict[str, Any]) -> str:
        """
        Reconcile a payment from a processor webhook

        Returns:
            Short outcome label for the webhook log
        """
        payment = await self.payments.get_by_intent(intent.get("id", ""))
        if payment is None:
            return "not_found"

        if event_type == "payment_intent.succeeded":
            if payment.status != PaymentStatus.PENDING:
                return "ignored"
            method_types = intent.get("payment_method_types") or [None]
            details = {
                "latest_charge": intent.get("latest_charge"),
                "payment_method": {"type": method_types[0]},
            }
            result = await self._complete_payment(payment, details, None)
            if not result.success and result.error_type == ErrorType.SERVER_ERROR:
                raise RuntimeError(result.error)
            return "processed" if result.success else "ignored"

        if event_type == "payment_intent.payment_failed":
            updated = await self.payments.update(
                payment.id, {"status": PaymentStatus.FAILED}, expected_status=PaymentStatus.PENDING
            )
            if updated is None:
                return "ignored"
            logger.info(f"Payment {payment.transaction_id} marked failed by processor")
            return "processed"

        return "ignored"


# Global payments service instance
_payments_service = None


def get_payments_service() -> PaymentsService:
    """Get the global payments service instance"""
    global _payments_service
    if _payments_service is None:
        db = get_database()
        _payments_service = PaymentsService(
            db,
            PaymentsRepository(db),
            InvoicesRepository(db),
            CasesRepository(db),
            LawyersRepository(db),
            UsersRepository(db),
            get_payment_gateway(),
            get_notification_service()
        )
    return _payments_service
