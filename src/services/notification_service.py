"""
Email notifications via Resend

Delivery is best-effort: a failed send is logged and never fails the
operation that triggered it.
"""

import asyncio
import logging
from typing import List, Optional

import resend

from config.settings import ADMIN_ALERT_EMAILS, FROM_EMAIL, RESEND_API_KEY
from models.business import BusinessAccount, MonthlyUsage
from models.case import Case
from models.payment import Payment

logger = logging.getLogger(__name__)


class NotificationService:
    """Transactional emails for case, payment and billing events"""

    async def send(self, recipients: List[str], subject: str, body: str) -> Optional[str]:
        """Send one email; returns the Resend id or None when skipped or failed"""
        recipients = [r for r in recipients if r]
        if not recipients:
            return None
        if not RESEND_API_KEY:
            logger.info(f"Resend not configured, skipping email '{subject}'")
            return None

        email_data = {
            "from": FROM_EMAIL,
            "to": recipients,
            "subject": subject,
            "html": f"<p>{body.replace(chr(10), '<br>')}</p>",
            "text": body,
        }
        try:
            result = await asyncio.to_thread(resend.Emails.send, email_data)
        except Exception as e:
            logger.error(f"Email '{subject}' to {recipients} failed: {e}")
            return None

        # Resend returns a dict or an object depending on the SDK version
        if isinstance(result, dict):
            resend_id = result.get("id")
        else:
            resend_id = getattr(result, "id", None)
        logger.info(f"Email sent via Resend - ID: {resend_id}, To: {recipients}")
        return resend_id

    async def case_assigned(self, lawyer_email: Optional[str], case: Case):
        await self.send(
            [lawyer_email],
            f"New case assigned: {case.case_number}",
            f"You have been assigned case {case.case_number} "
            f"({case.ticket_details.violation_type.value}, {case.ticket_details.location.state}).\n"
            f"Please review it in your dashboard."
        )

    async def case_status_changed(self, client_email: Optional[str], case: Case):
        await self.send(
            [client_email],
            f"Case {case.case_number} update",
            f"Your case {case.case_number} is now '{case.status.value}'."
        )

    async def refund_requested(self, payment: Payment):
        await self.send(
            ADMIN_ALERT_EMAILS,
            f"Refund requested for {payment.transaction_id}",
            f"A refund of {payment.refund.amount} {payment.currency.upper()} was requested "
            f"for payment {payment.transaction_id}.\nReason: {payment.refund.reason or 'n/a'}"
        )

    async def refund_completed(self, client_email: Optional[str], payment: Payment):
        await self.send(
            [client_email],
            "Your refund has been processed",
            f"A refund of {payment.refund.amount} {payment.currency.upper()} for payment "
            f"{payment.transaction_id} has been issued to your original payment method."
        )

    async def fine_limit_warning(self, account: BusinessAccount, usage: MonthlyUsage, limit: int):
        await self.send(
            [account.contact_email],
            "Monthly fine limit almost reached",
            f"{account.company_name} has submitted {usage.fines_submitted} of {limit} fines "
            f"included in this month's plan. Further fines are billed as extras."
        )

    async def business_payment_failed(self, account: BusinessAccount):
        await self.send(
            [account.contact_email, *ADMIN_ALERT_EMAILS],
            "Subscription payment failed",
            f"The latest subscription payment for {account.company_name} failed. "
            f"Please update the payment method to keep the account active."
        )


# Global notification service instance
_notification_service = None


def get_notification_service() -> NotificationService:
    """Get the global notification service instance"""
    global _notification_service
    if _notification_service is None:
        _notification_service = NotificationService()
    return _notification_service
