"""
B2B business account persistence: plans, accounts, employees, usage and billing history
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import asyncpg

from models.business import (
    BusinessAccount, BusinessEmployee, BusinessInvoice, FineSubmission, MonthlyUsage,
    SubscriptionPlan
)
from models.enums import BillingPaymentStatus
from repositories.base import BaseRepository, build_set_clause, record_to_dict

logger = logging.getLogger(__name__)

_ACCOUNT_UPDATABLE = {
    "company_name", "contact_email", "contact_phone", "contact_person", "city", "region",
    "plan_id", "stripe_customer_id", "stripe_subscription_id", "is_active", "is_verified",
    "auto_renew", "subscription_status", "subscription_starts", "subscription_renews"
}
_EMPLOYEE_UPDATABLE = {"full_name", "email", "role", "is_active"}
_PLAN_UPDATABLE = {
    "name", "description", "monthly_price", "setup_fee", "fines_limit", "employees_limit",
    "is_active", "display_order"
}


class DuplicateInvoiceError(Exception):
    """A billing record for the period already exists"""


def _build(model, record):
    row = record_to_dict(record)
    if row is None:
        return None
    row.pop("total_count", None)
    return model(**row)


class BusinessRepository(BaseRepository):

    # Plans

    async def list_plans(self) -> List[SubscriptionPlan]:
        async with self.db.acquire() as conn:
            records = await conn.fetch(
                "SELECT * FROM subscription_plans WHERE is_active ORDER BY display_order, id"
            )
        return [_build(SubscriptionPlan, r) for r in records]

    async def get_plan(self, plan_id: str) -> Optional[SubscriptionPlan]:
        async with self.db.acquire() as conn:
            record = await conn.fetchrow("SELECT * FROM subscription_plans WHERE id = $1", plan_id)
        return _build(SubscriptionPlan, record)

    async def list_all_plans(self) -> List[SubscriptionPlan]:
        """Every plan, inactive ones included"""
        async with self.db.acquire() as conn:
            records = await conn.fetch("SELECT * FROM subscription_plans ORDER BY display_order, id")
        return [_build(SubscriptionPlan, r) for r in records]

    async def create_plan(self, plan: SubscriptionPlan) -> SubscriptionPlan:
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(
                """
                INSERT INTO subscription_plans (
                    id, name, description, monthly_price, setup_fee, fines_limit, employees_limit,
                    is_active, display_order
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                RETURNING *
                """,
                plan.id, plan.name, plan.description, plan.monthly_price, plan.setup_fee,
                plan.fines_limit, plan.employees_limit, plan.is_active, plan.display_order
            )
        logger.info(f"Created subscription plan {plan.id}")
        return _build(SubscriptionPlan, record)

    async def update_plan(self, plan_id: str, fields: Dict[str, Any]) -> Optional[SubscriptionPlan]:
        set_clause, values = build_set_clause(fields, _PLAN_UPDATABLE, start_index=2)
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(
                f"UPDATE subscription_plans SET {set_clause}, updated_at = NOW() WHERE id = $1 RETURNING *",
                plan_id, *values
            )
        return _build(SubscriptionPlan, record)

    async def count_accounts_on_plan(self, plan_id: str) -> int:
        async with self.db.acquire() as conn:
            return await conn.fetchval("SELECT COUNT(*) FROM business_accounts WHERE plan_id = $1", plan_id)

    # Accounts

    async def create_account(self, account: BusinessAccount) -> BusinessAccount:
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(
                """
                INSERT INTO business_accounts (
                    id, company_name, company_registration, business_type, contact_email,
                    contact_phone, contact_person, city, region, plan_id, stripe_customer_id,
                    account_manager_id, is_active, is_verified, auto_renew, subscription_status,
                    created_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16, $17)
                RETURNING *
                """,
                account.id, account.company_name, account.company_registration,
                account.business_type, account.contact_email, account.contact_phone,
                account.contact_person, account.city, account.region, account.plan_id,
                account.stripe_customer_id, account.account_manager_id, account.is_active,
                account.is_verified, account.auto_renew, account.subscription_status, account.created_at
            )
        logger.info(f"Created business account {account.id} ({account.company_name})")
        return _build(BusinessAccount, record)

    async def get_account(self, business_id: str) -> Optional[BusinessAccount]:
        async with self.db.acquire() as conn:
            record = await conn.fetchrow("SELECT * FROM business_accounts WHERE id = $1", business_id)
        return _build(BusinessAccount, record)

    async def list_accounts(self, offset: int, limit: int,
                            manager_id: Optional[str] = None) -> Tuple[List[BusinessAccount], int]:
        where = "WHERE account_manager_id = $1" if manager_id else ""
        params: List[Any] = [manager_id] if manager_id else []
        async with self.db.acquire() as conn:
            total = await conn.fetchval(f"SELECT COUNT(*) FROM business_accounts {where}", *params)
            records = await conn.fetch(
                f"""
                SELECT * FROM business_accounts {where}
                ORDER BY created_at DESC, id
                LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
                """,
                *params, limit, offset
            )
        return [_build(BusinessAccount, r) for r in records], total

    async def list_active_accounts(self) -> List[BusinessAccount]:
        async with self.db.acquire() as conn:
            records = await conn.fetch("SELECT * FROM business_accounts WHERE is_active ORDER BY created_at, id")
        return [_build(BusinessAccount, r) for r in records]

    async def update_account(self, business_id: str, fields: Dict[str, Any]) -> Optional[BusinessAccount]:
        set_clause, values = build_set_clause(fields, _ACCOUNT_UPDATABLE, start_index=2)
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(
                f"UPDATE business_accounts SET {set_clause}, updated_at = NOW() WHERE id = $1 RETURNING *",
                business_id, *values
            )
        return _build(BusinessAccount, record)

    async def find_by_stripe_customer(self, customer_id: str) -> Optional[BusinessAccount]:
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(
                "SELECT * FROM business_accounts WHERE stripe_customer_id = $1", customer_id
            )
        return _build(BusinessAccount, record)

    async def find_by_stripe_subscription(self, subscription_id: str) -> Optional[BusinessAccount]:
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(
                "SELECT * FROM business_accounts WHERE stripe_subscription_id = $1", subscription_id
            )
        return _build(BusinessAccount, record)

    # Employees

    async def add_employee(self, employee: BusinessEmployee) -> BusinessEmployee:
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(
                """
                INSERT INTO business_employees (
                    id, business_id, user_id, role, full_name, email, is_active, added_by, created_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                RETURNING *
                """,
                employee.id, employee.business_id, employee.user_id, employee.role.value,
                employee.full_name, employee.email, employee.is_active, employee.added_by,
                employee.created_at
            )
        return _build(BusinessEmployee, record)

    async def get_employee(self, employee_id: str) -> Optional[BusinessEmployee]:
        async with self.db.acquire() as conn:
            record = await conn.fetchrow("SELECT * FROM business_employees WHERE id = $1", employee_id)
        return _build(BusinessEmployee, record)

    async def find_employee(self, business_id: str, user_id: str) -> Optional[BusinessEmployee]:
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(
                "SELECT * FROM business_employees WHERE business_id = $1 AND user_id = $2 AND is_active",
                business_id, user_id
            )
        return _build(BusinessEmployee, record)

    async def list_employees(self, business_id: str) -> List[BusinessEmployee]:
        async with self.db.acquire() as conn:
            records = await conn.fetch(
                "SELECT * FROM business_employees WHERE business_id = $1 ORDER BY created_at, id",
                business_id
            )
        return [_build(BusinessEmployee, r) for r in records]

    async def count_active_employees(self, business_id: str) -> int:
        async with self.db.acquire() as conn:
            return await conn.fetchval(
                "SELECT COUNT(*) FROM business_employees WHERE business_id = $1 AND is_active",
                business_id
            )

    async def update_employee(self, employee_id: str, fields: Dict[str, Any]) -> Optional[BusinessEmployee]:
        if "role" in fields and fields["role"] is not None:
            fields = {**fields, "role": getattr(fields["role"], "value", fields["role"])}
        set_clause, values = build_set_clause(fields, _EMPLOYEE_UPDATABLE, start_index=2)
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(
                f"UPDATE business_employees SET {set_clause} WHERE id = $1 RETURNING *",
                employee_id, *values
            )
        return _build(BusinessEmployee, record)

    # Usage

    async def get_usage(self, business_id: str, year: int, month: int,
                        for_update: bool = False) -> MonthlyUsage:
        """Usage counters for a month, created at zero on first access"""
        async with self.db.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO business_monthly_usage (business_id, year, month)
                VALUES ($1, $2, $3)
                ON CONFLICT (business_id, year, month) DO NOTHING
                """,
                business_id, year, month
            )
            query = """
                SELECT business_id, year, month, fines_submitted, fines_extra, extra_fine_cost
                FROM business_monthly_usage
                WHERE business_id = $1 AND year = $2 AND month = $3
            """
            if for_update:
                query += " FOR UPDATE"
            record = await conn.fetchrow(query, business_id, year, month)
        return _build(MonthlyUsage, record)

    async def record_fine(self, submission: FineSubmission, year: int, month: int) -> MonthlyUsage:
        """Insert the submission and bump the month's counters"""
        async with self.db.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO business_fine_submissions (
                    id, business_id, case_id, fine_type_id, fine_amount, employee_id,
                    included_in_plan, extra_charge, created_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                """,
                submission.id, submission.business_id, submission.case_id,
                submission.fine_type_id, submission.fine_amount, submission.employee_id,
                submission.included_in_plan, submission.extra_charge, submission.created_at
            )
            record = await conn.fetchrow(
                """
                UPDATE business_monthly_usage
                SET fines_submitted = fines_submitted + 1,
                    fines_extra = fines_extra + $4,
                    extra_fine_cost = extra_fine_cost + $5
                WHERE business_id = $1 AND year = $2 AND month = $3
                RETURNING business_id, year, month, fines_submitted, fines_extra, extra_fine_cost
                """,
                submission.business_id, year, month,
                0 if submission.included_in_plan else 1, submission.extra_charge
            )
        return _build(MonthlyUsage, record)

    async def list_fine_submissions(self, business_id: str, since: datetime) -> List[FineSubmission]:
        async with self.db.acquire() as conn:
            records = await conn.fetch(
                """
                SELECT * FROM business_fine_submissions
                WHERE business_id = $1 AND created_at >= $2
                ORDER BY created_at
                """,
                business_id, since
            )
        return [_build(FineSubmission, r) for r in records]

    # Billing history

    async def create_billing(self, invoice: BusinessInvoice) -> BusinessInvoice:
        """
        Raises:
            DuplicateInvoiceError: If the invoice number already exists for the business
        """
        try:
            async with self.db.acquire() as conn:
                record = await conn.fetchrow(
                    """
                    INSERT INTO business_billing_history (
                        id, business_id, invoice_number, billing_period_start, billing_period_end,
                        plan_fee, setup_fee, extra_fines_count, extra_fines_cost, subtotal, tax,
                        total, payment_status, payment_date, stripe_charge_id, created_at
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16)
                    RETURNING *
                    """,
                    invoice.id, invoice.business_id, invoice.invoice_number,
                    invoice.billing_period_start, invoice.billing_period_end, invoice.plan_fee,
                    invoice.setup_fee, invoice.extra_fines_count, invoice.extra_fines_cost,
                    invoice.subtotal, invoice.tax, invoice.total, invoice.payment_status.value,
                    invoice.payment_date, invoice.stripe_charge_id, invoice.created_at
                )
        except asyncpg.UniqueViolationError as e:
            raise DuplicateInvoiceError(invoice.invoice_number) from e
        logger.info(f"Recorded billing {invoice.invoice_number} for business {invoice.business_id}")
        return _build(BusinessInvoice, record)

    async def get_billing_by_number(self, business_id: str, invoice_number: str) -> Optional[BusinessInvoice]:
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(
                "SELECT * FROM business_billing_history WHERE business_id = $1 AND invoice_number = $2",
                business_id, invoice_number
            )
        return _build(BusinessInvoice, record)

    async def list_billing(self, business_id: str, offset: int,
                           limit: int) -> Tuple[List[BusinessInvoice], int]:
        async with self.db.acquire() as conn:
            total = await conn.fetchval(
                "SELECT COUNT(*) FROM business_billing_history WHERE business_id = $1", business_id
            )
            records = await conn.fetch(
                """
                SELECT * FROM business_billing_history WHERE business_id = $1
                ORDER BY billing_period_start DESC, id
                LIMIT $2 OFFSET $3
                """,
                business_id, limit, offset
            )
        return [_build(BusinessInvoice, r) for r in records], total

    async def mark_latest_billing(self, business_id: str, status: BillingPaymentStatus,
                                  payment_date=None, charge_id: Optional[str] = None) -> Optional[BusinessInvoice]:
        """Set the payment status of the most recent billing record"""
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(
                """
                UPDATE business_billing_history
                SET payment_status = $2,
                    payment_date = COALESCE($3, payment_date),
                    stripe_charge_id = COALESCE($4, stripe_charge_id)
                WHERE id = (
                    SELECT id FROM business_billing_history
                    WHERE business_id = $1
                    ORDER BY billing_period_start DESC, created_at DESC
                    LIMIT 1
                )
                RETURNING *
                """,
                business_id, status.value, payment_date, charge_id
            )
        return _build(BusinessInvoice, record)

    async def get_billing(self, billing_id: str) -> Optional[BusinessInvoice]:
        async with self.db.acquire() as conn:
            record = await conn.fetchrow("SELECT * FROM business_billing_history WHERE id = $1", billing_id)
        return _build(BusinessInvoice, record)

    async def list_billing_by_status(self, status: BillingPaymentStatus, offset: int,
                                     limit: int) -> Tuple[List[BusinessInvoice], int]:
        """Billing records in a payment status across all businesses, newest first"""
        async with self.db.acquire() as conn:
            total = await conn.fetchval(
                "SELECT COUNT(*) FROM business_billing_history WHERE payment_status = $1", status.value
            )
            records = await conn.fetch(
                """
                SELECT * FROM business_billing_history WHERE payment_status = $1
                ORDER BY created_at DESC, id
                LIMIT $2 OFFSET $3
                """,
                status.value, limit, offset
            )
        return [_build(BusinessInvoice, r) for r in records], total

    async def billing_totals(self) -> Dict[BillingPaymentStatus, Decimal]:
        """Sum of billed totals per payment status"""
        async with self.db.acquire() as conn:
            records = await conn.fetch(
                "SELECT payment_status, SUM(total) AS total FROM business_billing_history GROUP BY payment_status"
            )
        return {BillingPaymentStatus(r["payment_status"]): r["total"] for r in records}

    async def settle_billing(self, billing_id: str, status: BillingPaymentStatus, payment_date=None,
                             charge_id: Optional[str] = None) -> Optional[BusinessInvoice]:
        """Set a record's payment status; None once it is already paid"""
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(
                """
                UPDATE business_billing_history
                SET payment_status = $2,
                    payment_date = COALESCE($3, payment_date),
                    stripe_charge_id = COALESCE($4, stripe_charge_id)
                WHERE id = $1 AND payment_status <> 'paid'
                RETURNING *
                """,
                billing_id, status.value, payment_date, charge_id
            )
        return _build(BusinessInvoice, record)
