"""
Payment ledger arithmetic and policy

Amounts are Decimals quantized to cents. The platform fee is rounded and the
lawyer payout is the exact remainder, so fee + payout always equals the
payment amount.
"""

from decimal import Decimal
from typing import Dict, Iterable, Optional, Tuple

from models.business import BusinessAccount, PlanAnalytics, SubscriptionAnalytics, SubscriptionPlan
from models.case import Case
from models.enums import BillingPaymentStatus, OutcomeType, PaymentStatus, RefundStatus, PayoutStatus
from models.payment import (
    FinancialSummary, InvoiceLineItem, InvoiceTotals, LawyerPayout, Payment, PlatformFee
)
from utils.helpers import round_half_up, to_money

ZERO = Decimal("0")


def compute_fee_split(amount: Decimal, fee_percent: Decimal) -> Tuple[PlatformFee, LawyerPayout]:
    """Split a confirmed payment between the platform and the lawyer"""
    amount = to_money(amount)
    fee_amount = to_money(amount * Decimal(fee_percent) / 100)
    return (
        PlatformFee(amount=fee_amount, percentage=Decimal(fee_percent)),
        LawyerPayout(amount=amount - fee_amount, status=PayoutStatus.PENDING)
    )


def should_auto_approve_refund(case: Optional[Case]) -> bool:
    """Refunds are approved without review when the case was lost (guilty outcome)"""
    return bool(case and case.outcome and case.outcome.type == OutcomeType.GUILTY)


def refund_blocker(payment: Payment) -> Optional[str]:
    """Reason a refund cannot be requested, or None"""
    if payment.status == PaymentStatus.REFUNDED:
        return "Payment already refunded"
    if payment.refund and payment.refund.status in (RefundStatus.PENDING, RefundStatus.APPROVED):
        return "Refund already requested"
    return None


def is_refund_processable(payment: Payment) -> bool:
    return bool(payment.refund) and payment.refund.status in (RefundStatus.APPROVED, RefundStatus.PENDING)


def compute_invoice_totals(line_items: Iterable[InvoiceLineItem], tax_percentage: Decimal,
                           discount_amount: Decimal = ZERO) -> InvoiceTotals:
    """subtotal = sum(quantity * unit price); tax = subtotal * pct / 100; total = subtotal + tax - discount"""
    subtotal = sum((item.quantity * item.unit_price for item in line_items), ZERO)
    tax_amount = subtotal * Decimal(tax_percentage) / 100
    total = subtotal + tax_amount - (discount_amount or ZERO)
    return InvoiceTotals(
        subtotal=to_money(subtotal),
        tax_amount=to_money(tax_amount),
        total=to_money(total)
    )


def compute_business_invoice(plan_fee: Decimal, setup_fee: Decimal, extra_fines_cost: Decimal,
                             vat_percent: Decimal) -> InvoiceTotals:
    """Monthly B2B invoice: VAT is rounded to whole currency units"""
    subtotal = Decimal(plan_fee) + Decimal(setup_fee or ZERO) + Decimal(extra_fines_cost or ZERO)
    tax = round_half_up(subtotal * Decimal(vat_percent) / 100)
    return InvoiceTotals(subtotal=subtotal, tax_amount=tax, total=subtotal + tax)


def summarize_payments(payments: Iterable[Payment]) -> FinancialSummary:
    """Revenue, fee and payout totals over a set of payments"""
    total_revenue = total_fees = total_payouts = pending_payouts = ZERO
    counts = {status: 0 for status in PaymentStatus}
    payment_count = 0
    for payment in payments:
        payment_count += 1
        counts[payment.status] += 1
        if payment.status != PaymentStatus.COMPLETED:
            continue
        total_revenue += payment.amount
        if payment.platform_fee:
            total_fees += payment.platform_fee.amount
        if payment.lawyer_payout:
            total_payouts += payment.lawyer_payout.amount
            if payment.lawyer_payout.status == PayoutStatus.PENDING:
                pending_payouts += payment.lawyer_payout.amount
    return FinancialSummary(
        total_revenue=to_money(total_revenue),
        total_payouts=to_money(total_payouts),
        total_fees=to_money(total_fees),
        pending_payouts=to_money(pending_payouts),
        payment_count=payment_count,
        completed_payments=counts[PaymentStatus.COMPLETED],
        pending_payments=counts[PaymentStatus.PENDING],
        refunded_payments=counts[PaymentStatus.REFUNDED]
    )


def price_fine(fines_limit: Optional[int], fines_submitted: int,
               extra_charge: Decimal) -> Tuple[bool, Decimal]:
    """(included in plan, extra charge) for the next fine of the month; no limit means unlimited"""
    if fines_limit is None or fines_submitted < fines_limit:
        return True, ZERO
    return False, Decimal(extra_charge)


def crosses_limit_warning(fines_limit: Optional[int], before: int, after: int,
                          ratio: Decimal) -> bool:
    """True on the submission that first reaches ``ratio`` of the monthly limit"""
    if not fines_limit:
        return False
    threshold = Decimal(fines_limit) * Decimal(ratio)
    return before < threshold <= after


def summarize_subscriptions(active_accounts: Iterable[BusinessAccount], plans: Iterable[SubscriptionPlan],
                            billing_totals: Dict[BillingPaymentStatus, Decimal]) -> SubscriptionAnalytics:
    """
    Subscription revenue overview

    Only active, verified accounts count. Monthly recurring revenue is the
    sum of their plan prices; annual recurring revenue is twelve times that.
    """
    plans = list(plans)
    per_plan = {plan.id: PlanAnalytics(plan_id=plan.id, name=plan.name) for plan in plans}
    prices = {plan.id: Decimal(plan.monthly_price) for plan in plans}
    active = 0
    mrr = ZERO
    for account in active_accounts:
        if not (account.is_active and account.is_verified):
            continue
        active += 1
        price = prices.get(account.plan_id, ZERO)
        mrr += price
        entry = per_plan.get(account.plan_id)
        if entry is not None:
            entry.active_businesses += 1
            entry.monthly_revenue += price
    return SubscriptionAnalytics(
        active_businesses=active,
        total_revenue=to_money(billing_totals.get(BillingPaymentStatus.PAID) or ZERO),
        pending_revenue=to_money(billing_totals.get(BillingPaymentStatus.PENDING) or ZERO),
        monthly_recurring_revenue=to_money(mrr),
        annual_recurring_revenue=to_money(mrr * 12),
        plans=list(per_plan.values())
    )
