"""
Stripe webhook dispatch
"""

from decimal import Decimal

import pytest

from models.enums import BillingPaymentStatus, CaseStatus, PaymentStatus
from models.webhook import StripeEvent
from fakes import make_account, make_case, make_payment


def stripe_event(event_type: str, payload: dict, event_id: str = "evt_1") -> StripeEvent:
    return StripeEvent(id=event_id, type=event_type, data={"object": payload})


@pytest.fixture
def pending_payment(payments_repo, cases_repo, client_user, lawyer):
    case = cases_repo.add(make_case(client_user.id, status=CaseStatus.ASSIGNED, lawyer_id=lawyer.id))
    return payments_repo.add(make_payment(client_user.id, case.id, lawyer.id))


class TestPaymentEvents:

    @pytest.mark.asyncio
    async def test_succeeded_completes_payment(self, webhook_service, payments_repo, cases_repo, pending_payment):
        event = stripe_event("payment_intent.succeeded", {
            "id": pending_payment.stripe_payment_intent_id,
            "latest_charge": "ch_hook",
            "payment_method_types": ["card"],
        })

        result = await webhook_service.handle(event)

        assert result.status == "processed"
        payment = payments_repo.payments[pending_payment.id]
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.platform_fee.amount == Decimal("49.80")
        assert payment.stripe_charge_id == "ch_hook"
        assert cases_repo.cases[pending_payment.case_id].status == CaseStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_replayed_event_is_a_duplicate(self, webhook_service, payments_repo, pending_payment):
        event = stripe_event("payment_intent.succeeded", {"id": pending_payment.stripe_payment_intent_id})

        await webhook_service.handle(event)
        updates = payments_repo.updates
        result = await webhook_service.handle(event)

        assert result.status == "duplicate"
        assert payments_repo.updates == updates

    @pytest.mark.asyncio
    async def test_new_event_for_settled_payment_is_ignored(self, webhook_service, pending_payment):
        payload = {"id": pending_payment.stripe_payment_intent_id}
        await webhook_service.handle(stripe_event("payment_intent.succeeded", payload, "evt_1"))

        result = await webhook_service.handle(stripe_event("payment_intent.succeeded", payload, "evt_2"))

        assert result.status == "ignored"

    @pytest.mark.asyncio
    async def test_second_payment_on_paid_case_is_ignored(self, webhook_service, payments_repo, cases_repo,
                                                          pending_payment, client_user, lawyer):
        duplicate = payments_repo.add(make_payment(client_user.id, pending_payment.case_id, lawyer.id))
        await webhook_service.handle(stripe_event(
            "payment_intent.succeeded", {"id": pending_payment.stripe_payment_intent_id}, "evt_1"
        ))

        result = await webhook_service.handle(stripe_event(
            "payment_intent.succeeded", {"id": duplicate.stripe_payment_intent_id}, "evt_2"
        ))

        assert result.status == "ignored"
        assert cases_repo.cases[pending_payment.case_id].payment.payment_id == pending_payment.id
        assert payments_repo.payments[duplicate.id].status == PaymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_failed_payment(self, webhook_service, payments_repo, pending_payment):
        event = stripe_event("payment_intent.payment_failed", {"id": pending_payment.stripe_payment_intent_id})

        result = await webhook_service.handle(event)

        assert result.status == "processed"
        assert payments_repo.payments[pending_payment.id].status == PaymentStatus.FAILED

    @pytest.mark.asyncio
    async def test_unknown_intent(self, webhook_service):
        result = await webhook_service.handle(stripe_event("payment_intent.succeeded", {"id": "pi_unknown"}))
        assert result.status == "not_found"

    @pytest.mark.asyncio
    async def test_unhandled_type_is_not_recorded(self, webhook_service, events_repo):
        result = await webhook_service.handle(stripe_event("charge.dispute.created", {}))

        assert result.status == "ignored"
        assert events_repo.events == {}


class TestSubscriptionEvents:

    @pytest.fixture
    def account(self, business_repo, client_user):
        return business_repo.add_account(make_account(client_user.id))

    @pytest.mark.asyncio
    async def test_checkout_completed_activates(self, webhook_service, business_repo, account):
        event = stripe_event("checkout.session.completed", {
            "id": "cs_1",
            "payment_status": "paid",
            "subscription": "sub_hook",
            "customer": account.stripe_customer_id,
            "metadata": {"business_id": account.id},
        })

        result = await webhook_service.handle(event)

        assert result.status == "processed"
        stored = business_repo.accounts[account.id]
        assert stored.is_active
        assert stored.stripe_subscription_id == "sub_hook"
        assert len(business_repo.billing) == 1

    @pytest.mark.asyncio
    async def test_invoice_failure_marks_past_due(self, webhook_service, business_repo, account, notifications):
        await webhook_service.handle(stripe_event("checkout.session.completed", {
            "payment_status": "paid", "subscription": "sub_hook", "metadata": {"business_id": account.id},
        }, "evt_checkout"))

        result = await webhook_service.handle(stripe_event("invoice.payment_failed", {
            "subscription": "sub_hook", "customer": account.stripe_customer_id,
        }, "evt_invoice"))

        assert result.status == "processed"
        assert business_repo.accounts[account.id].subscription_status == "past_due"
        assert business_repo.billing[-1].payment_status == BillingPaymentStatus.FAILED
        assert "business_payment_failed" in notifications.kinds()

    @pytest.mark.asyncio
    async def test_invoice_paid_renews(self, webhook_service, business_repo, account):
        result = await webhook_service.handle(stripe_event("invoice.payment_succeeded", {
            "customer": account.stripe_customer_id, "period_end": 1798761600, "charge": "ch_renewal",
        }))

        assert result.status == "processed"
        stored = business_repo.accounts[account.id]
        assert stored.is_active
        assert stored.subscription_renews.year == 2027

    @pytest.mark.asyncio
    async def test_subscription_deleted(self, webhook_service, business_repo, client_user):
        account = business_repo.add_account(make_account(
            client_user.id, is_active=True, auto_renew=True, stripe_subscription_id="sub_gone"
        ))

        result = await webhook_service.handle(stripe_event("customer.subscription.deleted", {"id": "sub_gone"}))

        assert result.status == "processed"
        stored = business_repo.accounts[account.id]
        assert (stored.is_active, stored.auto_renew, stored.subscription_status) == (False, False, "cancelled")

    @pytest.mark.asyncio
    async def test_unknown_customer(self, webhook_service):
        result = await webhook_service.handle(stripe_event("invoice.payment_failed", {"customer": "cus_nobody"}))
        assert result.status == "not_found"
