"""
Payment and invoice persistence
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from models.enums import PaymentStatus, PayoutStatus
from models.payment import Invoice, Payment
from repositories.base import BaseRepository, build_set_clause, jsonable, record_to_dict

logger = logging.getLogger(__name__)

_UPDATABLE = {
    "status", "payment_method", "stripe_payment_intent_id", "stripe_charge_id",
    "stripe_refund_id", "platform_fee", "lawyer_payout", "refund", "lawyer_id"
}


def _to_payment(record) -> Optional[Payment]:
    row = record_to_dict(record)
    if row is None:
        return None
    row.pop("total_count", None)
    return Payment(**row)


def _to_invoice(record) -> Optional[Invoice]:
    row = record_to_dict(record)
    if row is None:
        return None
    row.pop("total_count", None)
    return Invoice(**row)


def _filters(user_id: Optional[str], lawyer_id: Optional[str],
             status: Optional[PaymentStatus]) -> Tuple[str, List[Any]]:
    conditions = []
    params: List[Any] = []
    if user_id:
        params.append(user_id)
        conditions.append(f"user_id = ${len(params)}")
    if lawyer_id:
        params.append(lawyer_id)
        conditions.append(f"lawyer_id = ${len(params)}")
    if status:
        params.append(status.value)
        conditions.append(f"status = ${len(params)}")
    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
    return where, params


class PaymentsRepository(BaseRepository):

    async def create(self, payment: Payment) -> Payment:
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(
                """
                INSERT INTO payments (
                    id, case_id, user_id, lawyer_id, amount, currency, type, status,
                    stripe_payment_intent_id, transaction_id, created_at, updated_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $11)
                RETURNING *
                """,
                payment.id, payment.case_id, payment.user_id, payment.lawyer_id,
                payment.amount, payment.currency, payment.type.value, payment.status.value,
                payment.stripe_payment_intent_id, payment.transaction_id, payment.created_at
            )
        logger.info(f"Created payment {payment.id} ({payment.transaction_id})")
        return _to_payment(record)

    async def get(self, payment_id: str) -> Optional[Payment]:
        async with self.db.acquire() as conn:
            record = await conn.fetchrow("SELECT * FROM payments WHERE id = $1", payment_id)
        return _to_payment(record)

    async def get_by_intent(self, payment_intent_id: str) -> Optional[Payment]:
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(
                "SELECT * FROM payments WHERE stripe_payment_intent_id = $1", payment_intent_id
            )
        return _to_payment(record)

    async def find_open_for_case(self, case_id: str) -> Optional[Payment]:
        """Latest pending or completed payment on a case, if any"""
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(
                """
                SELECT * FROM payments
                WHERE case_id = $1 AND status IN ('pending', 'completed')
                ORDER BY created_at DESC
                LIMIT 1
                """,
                case_id
            )
        return _to_payment(record)

    async def update(self, payment_id: str, fields: Dict[str, Any],
                     expected_status: Optional[PaymentStatus] = None,
                     expected_payout_status: Optional[PayoutStatus] = None) -> Optional[Payment]:
        """
        Apply field changes, optionally guarded on the current payment/payout status

        Returns None when the payment does not exist or a guard no longer holds.
        """
        if "status" in fields and isinstance(fields["status"], PaymentStatus):
            fields = {**fields, "status": fields["status"].value}
        set_clause, values = build_set_clause(fields, _UPDATABLE, start_index=2)
        params: List[Any] = [payment_id, *values]
        guards = ""
        if expected_status is not None:
            params.append(expected_status.value)
            guards += f" AND status = ${len(params)}"
        if expected_payout_status is not None:
            params.append(expected_payout_status.value)
            guards += f" AND lawyer_payout->>'status' = ${len(params)}"

        async with self.db.acquire() as conn:
            record = await conn.fetchrow(
                f"UPDATE payments SET {set_clause}, updated_at = NOW() WHERE id = $1{guards} RETURNING *",
                *params
            )
        return _to_payment(record)

    async def list(self, offset: int, limit: int, user_id: Optional[str] = None,
                   lawyer_id: Optional[str] = None,
                   status: Optional[PaymentStatus] = None) -> Tuple[List[Payment], int]:
        where, params = _filters(user_id, lawyer_id, status)
        async with self.db.acquire() as conn:
            total = await conn.fetchval(f"SELECT COUNT(*) FROM payments {where}", *params)
            records = await conn.fetch(
                f"""
                SELECT * FROM payments {where}
                ORDER BY created_at DESC, id
                LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
                """,
                *params, limit, offset
            )
        return [_to_payment(r) for r in records], total

    async def list_all(self, user_id: Optional[str] = None,
                       lawyer_id: Optional[str] = None) -> List[Payment]:
        """Every matching payment, for financial summaries"""
        where, params = _filters(user_id, lawyer_id, None)
        async with self.db.acquire() as conn:
            records = await conn.fetch(f"SELECT * FROM payments {where} ORDER BY created_at", *params)
        return [_to_payment(r) for r in records]


class InvoicesRepository(BaseRepository):

    async def create(self, invoice: Invoice) -> Invoice:
        async with self.db.acquire() as conn:
            record = await conn.fetchrow(
                """
                INSERT INTO invoices (
                    id, invoice_number, user_id, lawyer_id, case_id, status, line_items,
                    subtotal, tax_percentage, tax_amount, discount_amount, total_amount,
                    paid_amount, notes, terms, due_date, created_by, created_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16, $17, $18)
                RETURNING *
                """,
                invoice.id, invoice.invoice_number, invoice.user_id, invoice.lawyer_id,
                invoice.case_id, invoice.status.value, jsonable(invoice.line_items),
                invoice.subtotal, invoice.tax_percentage, invoice.tax_amount,
                invoice.discount_amount, invoice.total_amount, invoice.paid_amount,
                invoice.notes, invoice.terms, invoice.due_date, invoice.created_by,
                invoice.created_at
            )
        logger.info(f"Created invoice {invoice.invoice_number}")
        return _to_invoice(record)

    async def get(self, invoice_id: str) -> Optional[Invoice]:
        async with self.db.acquire() as conn:
            record = await conn.fetchrow("SELECT * FROM invoices WHERE id = $1", invoice_id)
        return _to_invoice(record)

    async def list(self, offset: int, limit: int,
                   user_id: Optional[str] = None) -> Tuple[List[Invoice], int]:
        where = "WHERE user_id = $1" if user_id else ""
        params: List[Any] = [user_id] if user_id else []
        async with self.db.acquire() as conn:
            total = await conn.fetchval(f"SELECT COUNT(*) FROM invoices {where}", *params)
            records = await conn.fetch(
                f"""
                SELECT * FROM invoices {where}
                ORDER BY created_at DESC, id
                LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
                """,
                *params, limit, offset
            )
        return [_to_invoice(r) for r in records], total
