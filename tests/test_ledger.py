"""
Payment ledger arithmetic
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from models.case import CaseOutcome
from models.enums import (
    BillingPaymentStatus, CaseStatus, OutcomeType, PaymentStatus, PayoutStatus, RefundStatus
)
from models.payment import InvoiceLineItem, LawyerPayout, PlatformFee, RefundRecord
from services.ledger import (
    compute_business_invoice, compute_fee_split, compute_invoice_totals, crosses_limit_warning,
    is_refund_processable, price_fine, refund_blocker, should_auto_approve_refund, summarize_payments,
    summarize_subscriptions
)
from fakes import make_account, make_case, make_payment, make_plan

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


class TestFeeSplit:

    def test_twenty_percent(self):
        fee, payout = compute_fee_split(Decimal("249"), Decimal("20"))
        assert fee.amount == Decimal("49.80")
        assert payout.amount == Decimal("199.20")
        assert payout.status == PayoutStatus.PENDING

    @pytest.mark.parametrize("amount", ["0.05", "33.33", "99.99", "1234.57"])
    def test_fee_plus_payout_equals_amount(self, amount):
        fee, payout = compute_fee_split(Decimal(amount), Decimal("17.5"))
        assert fee.amount + payout.amount == Decimal(amount)

    def test_fee_rounds_half_up(self):
        # 20% of 0.125 rounded: amount is first quantized to 0.13, fee 0.026 -> 0.03
        fee, payout = compute_fee_split(Decimal("0.125"), Decimal("20"))
        assert fee.amount == Decimal("0.03")
        assert payout.amount == Decimal("0.10")


class TestRefundPolicy:

    def test_guilty_outcome_auto_approves(self):
        case = make_case("u1", status=CaseStatus.LOST, outcome=CaseOutcome(type=OutcomeType.GUILTY))
        assert should_auto_approve_refund(case)

    def test_other_outcomes_need_review(self):
        case = make_case("u1", status=CaseStatus.REDUCED, outcome=CaseOutcome(type=OutcomeType.REDUCED))
        assert not should_auto_approve_refund(case)
        assert not should_auto_approve_refund(make_case("u1"))
        assert not should_auto_approve_refund(None)

    def test_refund_blockers(self):
        assert refund_blocker(make_payment("u1", status=PaymentStatus.REFUNDED)) == "Payment already refunded"
        pending = make_payment("u1", status=PaymentStatus.COMPLETED,
                               refund=RefundRecord(amount=Decimal("10"), requested_at=NOW))
        assert refund_blocker(pending) == "Refund already requested"
        rejected = make_payment("u1", status=PaymentStatus.COMPLETED,
                                refund=RefundRecord(amount=Decimal("10"), requested_at=NOW,
                                                    status=RefundStatus.REJECTED))
        assert refund_blocker(rejected) is None
        assert not is_refund_processable(rejected)
        assert is_refund_processable(pending)


class TestInvoiceTotals:

    def test_totals(self):
        items = [
            InvoiceLineItem(description="Representation", quantity=Decimal("1"), unit_price=Decimal("249")),
            InvoiceLineItem(description="Filing", quantity=Decimal("2"), unit_price=Decimal("12.50")),
        ]
        totals = compute_invoice_totals(items, Decimal("8.25"), Decimal("10"))
        assert totals.subtotal == Decimal("274.00")
        assert totals.tax_amount == Decimal("22.61")
        assert totals.total == Decimal("286.61")

    def test_empty_invoice(self):
        totals = compute_invoice_totals([], Decimal("0"))
        assert totals.total == Decimal("0.00")

    def test_business_invoice_vat_whole_units(self):
        # 15% of 745 = 111.75 -> 112
        totals = compute_business_invoice(Decimal("500"), Decimal("200"), Decimal("45"), Decimal("15"))
        assert totals.subtotal == Decimal("745")
        assert totals.tax_amount == Decimal("112")
        assert totals.total == Decimal("857")


class TestFines:

    def test_within_limit(self):
        assert price_fine(10, 9, Decimal("50")) == (True, Decimal("0"))

    def test_over_limit(self):
        assert price_fine(10, 10, Decimal("50")) == (False, Decimal("50"))

    def test_unlimited_plan(self):
        assert price_fine(None, 500, Decimal("50")) == (True, Decimal("0"))

    def test_warning_fires_once(self):
        ratio = Decimal("0.8")
        assert not crosses_limit_warning(10, 6, 7, ratio)
        assert crosses_limit_warning(10, 7, 8, ratio)
        assert not crosses_limit_warning(10, 8, 9, ratio)
        assert not crosses_limit_warning(None, 7, 8, ratio)


class TestSummary:

    def test_only_completed_payments_count_as_revenue(self):
        paid = make_payment("u1", status=PaymentStatus.COMPLETED,
                            platform_fee=PlatformFee(amount=Decimal("49.80"), percentage=Decimal("20")),
                            lawyer_payout=LawyerPayout(amount=Decimal("199.20")))
        settled = make_payment("u1", amount=Decimal("100"), status=PaymentStatus.COMPLETED,
                               platform_fee=PlatformFee(amount=Decimal("20"), percentage=Decimal("20")),
                               lawyer_payout=LawyerPayout(amount=Decimal("80"), status=PayoutStatus.COMPLETED))
        pending = make_payment("u1")
        refunded = make_payment("u1", status=PaymentStatus.REFUNDED)

        summary = summarize_payments([paid, settled, pending, refunded])
        assert summary.total_revenue == Decimal("349.00")
        assert summary.total_fees == Decimal("69.80")
        assert summary.total_payouts == Decimal("279.20")
        assert summary.pending_payouts == Decimal("199.20")
        assert summary.payment_count == 4
        assert (summary.completed_payments, summary.pending_payments, summary.refunded_payments) == (2, 1, 1)


class TestSubscriptionSummary:

    def test_no_subscribers(self):
        summary = summarize_subscriptions([], [make_plan()], {})
        assert summary.active_businesses == 0
        assert summary.monthly_recurring_revenue == Decimal("0.00")
        assert [(p.plan_id, p.active_businesses) for p in summary.plans] == [("plan_basic", 0)]

    def test_unknown_plan_adds_no_revenue(self):
        accounts = [make_account("m1", plan_id="plan_legacy", is_active=True, is_verified=True)]
        summary = summarize_subscriptions(accounts, [make_plan()], {BillingPaymentStatus.PAID: Decimal("99.5")})
        assert summary.active_businesses == 1
        assert summary.monthly_recurring_revenue == Decimal("0.00")
        assert summary.total_revenue == Decimal("99.50")
