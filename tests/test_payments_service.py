"""
Payment ledger: intents, confirmation, refunds, payouts and invoices
"""

from decimal import Decimal

import pytest

from models.case import CaseOutcome
from models.enums import (
    CasePaymentStatus, CaseStatus, OutcomeType, PaymentStatus, PayoutStatus, RefundStatus
)
from models.payment import (
    InvoiceCreateRequest, InvoiceLineItem, LawyerPayout, PaymentConfirmRequest, PaymentIntentRequest,
    PlatformFee, RefundRecord, RefundRejectRequest, RefundRequest
)
from services.base_service import ErrorType
from utils.auth import AuthContext
from utils.helpers import utc_now
from utils.pagination import PageParams
from fakes import make_case, make_payment


@pytest.fixture
def assigned_case(cases_repo, lawyers_repo, client_user, lawyer):
    lawyers_repo.lawyers[lawyer.id].availability.current_cases = 6
    return cases_repo.add(make_case(client_user.id, status=CaseStatus.ASSIGNED, lawyer_id=lawyer.id))


@pytest.fixture
def pending_payment(payments_repo, assigned_case, client_user, lawyer):
    return payments_repo.add(make_payment(client_user.id, assigned_case.id, lawyer.id))


@pytest.fixture
def completed_payment(payments_repo, assigned_case, client_user, lawyer):
    return payments_repo.add(make_payment(
        client_user.id, assigned_case.id, lawyer.id,
        status=PaymentStatus.COMPLETED,
        platform_fee=PlatformFee(amount=Decimal("49.80"), percentage=Decimal("20")),
        lawyer_payout=LawyerPayout(amount=Decimal("199.20"))
    ))


class TestPaymentIntent:

    @pytest.mark.asyncio
    async def test_records_pending_payment(self, payments_service, assigned_case, client_actor, gateway,
                                           payments_repo, lawyer):
        result = await payments_service.create_payment_intent(
            client_actor, PaymentIntentRequest(case_id=assigned_case.id, amount=Decimal("249"))
        )

        payment = result.first["payment"]
        assert result.first["client_secret"].startswith("secret_")
        assert payment.status == PaymentStatus.PENDING
        assert payment.amount == Decimal("249.00")
        assert payment.lawyer_id == lawyer.id
        assert payment.transaction_id.startswith("TXN-")
        assert gateway.called("create_payment_intent") == 1
        assert payment.id in payments_repo.payments

    @pytest.mark.asyncio
    async def test_processor_failure(self, payments_service, assigned_case, client_actor, gateway, payments_repo):
        gateway.fail = True

        result = await payments_service.create_payment_intent(
            client_actor, PaymentIntentRequest(case_id=assigned_case.id, amount=Decimal("249"))
        )

        assert result.error_type == ErrorType.EXTERNAL_SERVICE_ERROR
        assert payments_repo.payments == {}

    @pytest.mark.asyncio
    async def test_paid_case(self, payments_service, cases_repo, assigned_case, client_actor):
        cases_repo.cases[assigned_case.id].payment.status = CasePaymentStatus.PAID

        result = await payments_service.create_payment_intent(
            client_actor, PaymentIntentRequest(case_id=assigned_case.id, amount=Decimal("249"))
        )

        assert result.error_type == ErrorType.CONFLICT_ERROR

    @pytest.mark.asyncio
    async def test_second_intent_while_pending(self, payments_service, pending_payment, client_actor, gateway):
        result = await payments_service.create_payment_intent(
            client_actor, PaymentIntentRequest(case_id=pending_payment.case_id, amount=Decimal("249"))
        )

        assert result.error_type == ErrorType.CONFLICT_ERROR
        assert pending_payment.transaction_id in result.error
        assert gateway.called("create_payment_intent") == 0

    @pytest.mark.asyncio
    async def test_intent_after_completed_payment(self, payments_service, completed_payment, client_actor):
        result = await payments_service.create_payment_intent(
            client_actor, PaymentIntentRequest(case_id=completed_payment.case_id, amount=Decimal("249"))
        )
        assert result.error_type == ErrorType.CONFLICT_ERROR

    @pytest.mark.asyncio
    async def test_not_case_owner(self, payments_service, assigned_case):
        result = await payments_service.create_payment_intent(
            AuthContext(user_id="stranger"), PaymentIntentRequest(case_id=assigned_case.id, amount=Decimal("1"))
        )
        assert result.error_type == ErrorType.AUTHORIZATION_ERROR


class TestConfirmPayment:

    @pytest.mark.asyncio
    async def test_fee_split_and_case_paid(self, payments_service, pending_payment, cases_repo, client_actor):
        request = PaymentConfirmRequest(
            payment_intent_id=pending_payment.stripe_payment_intent_id, payment_id=pending_payment.id
        )

        result = await payments_service.confirm_payment(client_actor, request)

        payment = result.first
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.platform_fee.amount == Decimal("49.80")
        assert payment.lawyer_payout.amount == Decimal("199.20")
        assert payment.platform_fee.amount + payment.lawyer_payout.amount == payment.amount
        assert payment.payment_method.last4 == "4242"
        assert payment.stripe_charge_id == "ch_test"

        case = cases_repo.cases[pending_payment.case_id]
        assert case.payment.status == CasePaymentStatus.PAID
        assert case.payment.payment_id == payment.id
        assert case.pricing.actual_price == payment.amount
        assert case.status == CaseStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_second_payment_cannot_repay_case(self, payments_service, payments_repo, cases_repo,
                                                    pending_payment, client_user, lawyer, client_actor):
        duplicate = payments_repo.add(make_payment(client_user.id, pending_payment.case_id, lawyer.id))

        first = await payments_service.confirm_payment(client_actor, PaymentConfirmRequest(
            payment_intent_id=pending_payment.stripe_payment_intent_id, payment_id=pending_payment.id
        ))
        second = await payments_service.confirm_payment(client_actor, PaymentConfirmRequest(
            payment_intent_id=duplicate.stripe_payment_intent_id, payment_id=duplicate.id
        ))

        assert first.success
        assert second.error_type == ErrorType.CONFLICT_ERROR
        assert cases_repo.cases[pending_payment.case_id].payment.payment_id == pending_payment.id
        assert payments_repo.payments[duplicate.id].status == PaymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_racing_confirmations_keep_first_payment(self, payments_service, payments_repo, cases_repo,
                                                           pending_payment, client_user, lawyer, client_actor,
                                                           monkeypatch):
        duplicate = payments_repo.add(make_payment(client_user.id, pending_payment.case_id, lawyer.id))
        unpaid = await cases_repo.get(pending_payment.case_id)

        first = await payments_service.confirm_payment(client_actor, PaymentConfirmRequest(
            payment_intent_id=pending_payment.stripe_payment_intent_id, payment_id=pending_payment.id
        ))
        assert first.success

        # The second confirmation read the case before the first one committed
        real_get = cases_repo.get
        reads = []

        async def get_once_stale(case_id):
            reads.append(case_id)
            if len(reads) == 1:
                return unpaid.model_copy(deep=True)
            return await real_get(case_id)

        monkeypatch.setattr(cases_repo, "get", get_once_stale)
        second = await payments_service.confirm_payment(client_actor, PaymentConfirmRequest(
            payment_intent_id=duplicate.stripe_payment_intent_id, payment_id=duplicate.id
        ))

        assert second.error_type == ErrorType.CONFLICT_ERROR
        assert second.error == "Case is already paid"
        case = cases_repo.cases[pending_payment.case_id]
        assert case.payment.payment_id == pending_payment.id
        assert case.status == CaseStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_unassigned_case_stays_pending(self, payments_service, payments_repo, cases_repo, client_user,
                                                 client_actor):
        case = cases_repo.add(make_case(client_user.id))
        payment = payments_repo.add(make_payment(client_user.id, case.id))

        await payments_service.confirm_payment(client_actor, PaymentConfirmRequest(
            payment_intent_id=payment.stripe_payment_intent_id, payment_id=payment.id
        ))

        stored = cases_repo.cases[case.id]
        assert stored.status == CaseStatus.PENDING
        assert stored.payment.status == CasePaymentStatus.PAID

    @pytest.mark.asyncio
    async def test_intent_not_succeeded(self, payments_service, pending_payment, gateway, client_actor,
                                        payments_repo):
        gateway.intent_status = "requires_payment_method"

        result = await payments_service.confirm_payment(client_actor, PaymentConfirmRequest(
            payment_intent_id=pending_payment.stripe_payment_intent_id, payment_id=pending_payment.id
        ))

        assert result.error_type == ErrorType.VALIDATION_ERROR
        assert payments_repo.payments[pending_payment.id].status == PaymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_mismatched_intent(self, payments_service, pending_payment, client_actor):
        result = await payments_service.confirm_payment(client_actor, PaymentConfirmRequest(
            payment_intent_id="pi_other", payment_id=pending_payment.id
        ))
        assert result.error_type == ErrorType.VALIDATION_ERROR

    @pytest.mark.asyncio
    async def test_already_confirmed(self, payments_service, completed_payment, client_actor):
        result = await payments_service.confirm_payment(client_actor, PaymentConfirmRequest(
            payment_intent_id=completed_payment.stripe_payment_intent_id, payment_id=completed_payment.id
        ))
        assert result.error_type == ErrorType.CONFLICT_ERROR


class TestRefunds:

    @pytest.mark.asyncio
    async def test_request_awaits_review(self, payments_service, completed_payment, client_actor, gateway,
                                         notifications):
        result = await payments_service.request_refund(
            client_actor, completed_payment.id, RefundRequest(reason="Hearing cancelled")
        )

        payment = result.first
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.refund.status == RefundStatus.PENDING
        assert payment.refund.amount == completed_payment.amount
        assert gateway.called("create_refund") == 0
        assert notifications.kinds() == ["refund_requested"]

    @pytest.mark.asyncio
    async def test_second_request_is_a_conflict(self, payments_service, completed_payment, client_actor):
        await payments_service.request_refund(client_actor, completed_payment.id, RefundRequest())

        result = await payments_service.request_refund(client_actor, completed_payment.id, RefundRequest())

        assert result.error_type == ErrorType.CONFLICT_ERROR

    @pytest.mark.asyncio
    async def test_guilty_outcome_refunds_immediately(self, payments_service, cases_repo, lawyers_repo,
                                                      completed_payment, client_actor, gateway, lawyer):
        case = cases_repo.cases[completed_payment.case_id]
        case.status = CaseStatus.LOST
        case.outcome = CaseOutcome(type=OutcomeType.GUILTY)

        result = await payments_service.request_refund(client_actor, completed_payment.id, RefundRequest())

        payment = result.first
        assert payment.status == PaymentStatus.REFUNDED
        assert payment.refund.status == RefundStatus.COMPLETED
        assert payment.stripe_refund_id.startswith("re_")
        assert gateway.called("create_refund") == 1

        stored = cases_repo.cases[completed_payment.case_id]
        assert stored.status == CaseStatus.CLOSED
        assert stored.payment.status == CasePaymentStatus.REFUNDED
        assert stored.pricing.refund_amount == payment.amount
        # Capacity was already released when the case was lost
        assert lawyers_repo.lawyers[lawyer.id].availability.current_cases == 6

    @pytest.mark.asyncio
    async def test_amount_above_payment(self, payments_service, completed_payment, client_actor):
        result = await payments_service.request_refund(
            client_actor, completed_payment.id, RefundRequest(amount=Decimal("500"))
        )
        assert result.error_type == ErrorType.VALIDATION_ERROR

    @pytest.mark.asyncio
    async def test_admin_processes_pending_refund(self, payments_service, payments_repo, cases_repo,
                                                  lawyers_repo, completed_payment, admin_actor, lawyer,
                                                  notifications):
        payments_repo.payments[completed_payment.id].refund = RefundRecord(
            amount=Decimal("100"), requested_at=utc_now()
        )

        result = await payments_service.process_refund(admin_actor, completed_payment.id)

        assert result.first.status == PaymentStatus.REFUNDED
        assert result.first.refund.amount == Decimal("100")
        assert cases_repo.cases[completed_payment.case_id].status == CaseStatus.CLOSED
        assert lawyers_repo.lawyers[lawyer.id].availability.current_cases == 5
        assert "refund_completed" in notifications.kinds()

        again = await payments_service.process_refund(admin_actor, completed_payment.id)
        assert again.error_type == ErrorType.CONFLICT_ERROR

    @pytest.mark.asyncio
    async def test_processor_failure_leaves_ledger_untouched(self, payments_service, payments_repo, cases_repo,
                                                             completed_payment, admin_actor, gateway):
        payments_repo.payments[completed_payment.id].refund = RefundRecord(
            amount=Decimal("100"), requested_at=utc_now()
        )
        updates_before = payments_repo.updates
        gateway.fail = True

        result = await payments_service.process_refund(admin_actor, completed_payment.id)

        assert result.error_type == ErrorType.EXTERNAL_SERVICE_ERROR
        assert payments_repo.updates == updates_before
        assert payments_repo.payments[completed_payment.id].status == PaymentStatus.COMPLETED
        assert cases_repo.cases[completed_payment.case_id].status == CaseStatus.ASSIGNED

    @pytest.mark.asyncio
    async def test_reject(self, payments_service, payments_repo, completed_payment, admin_actor):
        payments_repo.payments[completed_payment.id].refund = RefundRecord(
            amount=Decimal("100"), requested_at=utc_now()
        )

        result = await payments_service.reject_refund(
            admin_actor, completed_payment.id, RefundRejectRequest(reason="Outside policy window")
        )

        assert result.first.refund.status == RefundStatus.REJECTED
        assert result.first.status == PaymentStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_clients_cannot_process(self, payments_service, completed_payment, client_actor):
        result = await payments_service.process_refund(client_actor, completed_payment.id)
        assert result.error_type == ErrorType.AUTHORIZATION_ERROR


class TestPayouts:

    @pytest.mark.asyncio
    async def test_payout_started_once(self, payments_service, completed_payment, admin_actor):
        result = await payments_service.process_payout(admin_actor, completed_payment.id)

        payout = result.first.lawyer_payout
        assert payout.status == PayoutStatus.PROCESSING
        assert payout.transaction_id.startswith("TXN-")

        again = await payments_service.process_payout(admin_actor, completed_payment.id)
        assert again.error_type == ErrorType.CONFLICT_ERROR

    @pytest.mark.asyncio
    async def test_missing_bank_details(self, payments_service, lawyers_repo, completed_payment, admin_actor,
                                        lawyer):
        lawyers_repo.lawyers[lawyer.id].bank_details = None

        result = await payments_service.process_payout(admin_actor, completed_payment.id)

        assert result.error_type == ErrorType.VALIDATION_ERROR

    @pytest.mark.asyncio
    async def test_pending_payment_has_no_payout(self, payments_service, pending_payment, admin_actor):
        result = await payments_service.process_payout(admin_actor, pending_payment.id)
        assert result.error_type == ErrorType.VALIDATION_ERROR


class TestReporting:

    @pytest.mark.asyncio
    async def test_lawyer_summary_is_scoped(self, payments_service, payments_repo, completed_payment,
                                            client_user, lawyer_actor):
        payments_repo.add(make_payment(client_user.id, lawyer_id="another-lawyer", status=PaymentStatus.COMPLETED))

        result = await payments_service.financial_summary(lawyer_actor, lawyer_id="another-lawyer")

        summary = result.first
        assert summary.payment_count == 1
        assert summary.pending_payouts == Decimal("199.20")

    @pytest.mark.asyncio
    async def test_clients_cannot_see_summary(self, payments_service, client_actor):
        result = await payments_service.financial_summary(client_actor)
        assert result.error_type == ErrorType.AUTHORIZATION_ERROR

    @pytest.mark.asyncio
    async def test_list_own_payments(self, payments_service, payments_repo, completed_payment, client_actor):
        payments_repo.add(make_payment("someone-else"))

        result = await payments_service.list_payments(client_actor, PageParams())

        assert [p.id for p in result.data] == [completed_payment.id]

    @pytest.mark.asyncio
    async def test_lawyer_sees_own_payment(self, payments_service, completed_payment, lawyer_actor):
        result = await payments_service.get_payment(lawyer_actor, completed_payment.id)
        assert result.success


class TestInvoices:

    @pytest.mark.asyncio
    async def test_create_invoice(self, payments_service, client_actor):
        request = InvoiceCreateRequest(
            user_id=client_actor.user_id,
            line_items=[InvoiceLineItem(description="Representation", quantity=1, unit_price=Decimal("249"))],
            tax_percentage=Decimal("10"),
            discount_amount=Decimal("24.90")
        )

        result = await payments_service.create_invoice(client_actor, request)

        invoice = result.first
        assert invoice.subtotal == Decimal("249.00")
        assert invoice.tax_amount == Decimal("24.90")
        assert invoice.total_amount == Decimal("249.00")
        assert invoice.invoice_number.startswith("INV-")

    @pytest.mark.asyncio
    async def test_discount_above_total(self, payments_service, client_actor):
        request = InvoiceCreateRequest(
            user_id=client_actor.user_id,
            line_items=[InvoiceLineItem(description="Consult", quantity=1, unit_price=Decimal("10"))],
            discount_amount=Decimal("20")
        )
        result = await payments_service.create_invoice(client_actor, request)
        assert result.error_type == ErrorType.VALIDATION_ERROR

    @pytest.mark.asyncio
    async def test_invoice_for_someone_else(self, payments_service, client_actor):
        result = await payments_service.create_invoice(client_actor, InvoiceCreateRequest(user_id="other"))
        assert result.error_type == ErrorType.AUTHORIZATION_ERROR
