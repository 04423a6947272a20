"""
B2B billing service - business accounts, employees, fine usage and subscriptions
"""

import logging
from collections import Counter
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from config.settings import (
    B2B_CURRENCY, B2B_EXTRA_FINE_CHARGE, B2B_LIMIT_WARNING_RATIO, B2B_VAT_PERCENT,
    CHECKOUT_CANCEL_URL, CHECKOUT_SUCCESS_URL
)
from database.connection import Database, get_database
from models.business import (
    BusinessAccount, BusinessAccountCreateRequest, BusinessAccountUpdateRequest, BusinessEmployee,
    BusinessInvoice, EmployeeCreateRequest, EmployeeUpdateRequest, FineSubmission,
    FineSubmissionRequest, MonthlyInvoiceRequest, PlanChangeRequest, PlanCreateRequest,
    PlanPricingRequest, PlanUpdateRequest, SubscriptionCancelRequest, SubscriptionConfirmRequest,
    SubscriptionPlan
)
from models.enums import BillingPaymentStatus, EmployeeRole
from repositories.business import BusinessRepository, DuplicateInvoiceError
from repositories.fines import FinesRepository
from services.base_service import BaseService, ErrorType, ServiceResult
from services.ledger import (
    compute_business_invoice, crosses_limit_warning, price_fine, summarize_subscriptions
)
from services.notification_service import NotificationService, get_notification_service
from services.payment_gateway import PaymentGateway, PaymentGatewayError, get_payment_gateway
from utils.auth import AuthContext
from utils.helpers import add_months, business_invoice_number, month_bounds, new_id, utc_now
from utils.pagination import PageParams, build_page_info

logger = logging.getLogger(__name__)


class BillingService(BaseService):
    """Service for B2B subscription accounts"""

    def __init__(self, db: Database, business: BusinessRepository, gateway: PaymentGateway,
                 notifications: Optional[NotificationService] = None,
                 fines: Optional[FinesRepository] = None):
        self.db = db
        self.business = business
        self.gateway = gateway
        self.notifications = notifications
        self.fines = fines

    async def _is_account_admin(self, actor: AuthContext, account: BusinessAccount) -> bool:
        if account.account_manager_id == actor.user_id or self.can(actor, "business:read_all"):
            return True
        employee = await self.business.find_employee(account.id, actor.user_id)
        return employee is not None and employee.role == EmployeeRole.ADMIN

    async def _is_member(self, actor: AuthContext, account: BusinessAccount) -> bool:
        if account.account_manager_id == actor.user_id or self.can(actor, "business:read_all"):
            return True
        return await self.business.find_employee(account.id, actor.user_id) is not None

    async def _load_account(self, actor: AuthContext, business_id: str, admin: bool = False):
        """Account plus an error result when it is missing or off limits"""
        account = await self.business.get_account(business_id)
        if account is None:
            return None, self.not_found("Business account")
        allowed = await self._is_account_admin(actor, account) if admin else await self._is_member(actor, account)
        if not allowed:
            return None, self.forbidden("Not authorized for this business account")
        return account, None

    # Plans and accounts

    async def list_plans(self) -> ServiceResult:
        try:
            plans = await self.business.list_plans()
        except Exception as e:
            return self.server_error("Plan listing", e)
        return ServiceResult.ok_list(plans)

    async def list_all_plans(self, actor: AuthContext) -> ServiceResult:
        if not self.can(actor, "plans:manage"):
            return self.forbidden("Only administrators can manage plans")
        return ServiceResult.ok_list(await self.business.list_all_plans())

    async def create_plan(self, actor: AuthContext, request: PlanCreateRequest) -> ServiceResult:
        if not self.can(actor, "plans:manage"):
            return self.forbidden("Only administrators can manage plans")
        if await self.business.get_plan(request.id):
            return self.conflict(f"Plan {request.id} already exists")
        try:
            created = await self.business.create_plan(SubscriptionPlan(**request.model_dump()))
        except Exception as e:
            return self.server_error("Plan creation", e)
        logger.info(f"Plan {created.id} created by {actor.user_id}")
        return ServiceResult.ok(created)

    async def update_plan(self, actor: AuthContext, plan_id: str, request: PlanUpdateRequest) -> ServiceResult:
        """Name, description, ordering and visibility; prices go through update_plan_pricing"""
        if not self.can(actor, "plans:manage"):
            return self.forbidden("Only administrators can manage plans")
        if await self.business.get_plan(plan_id) is None:
            return self.not_found("Subscription plan")
        fields = request.model_dump(exclude_none=True)
        if not fields:
            return self.invalid("No fields provided to update")
        try:
            updated = await self.business.update_plan(plan_id, fields)
        except Exception as e:
            return self.server_error("Plan update", e)
        return ServiceResult.ok(updated)

    async def update_plan_pricing(self, actor: AuthContext, plan_id: str,
                                  request: PlanPricingRequest) -> ServiceResult:
        """
        Change a plan's prices and limits

        Only fields present in the request change. Prices cannot be cleared;
        a limit sent as null becomes unlimited.
        """
        if not self.can(actor, "plans:manage"):
            return self.forbidden("Only administrators can manage plans")
        if await self.business.get_plan(plan_id) is None:
            return self.not_found("Subscription plan")
        fields = {
            key: value for key, value in request.model_dump(exclude_unset=True).items()
            if value is not None or key in ("fines_limit", "employees_limit")
        }
        if not fields:
            return self.invalid("No pricing fields provided to update")
        try:
            updated = await self.business.update_plan(plan_id, fields)
        except Exception as e:
            return self.server_error("Plan pricing update", e)
        logger.info(f"Plan {plan_id} pricing changed by {actor.user_id}: {sorted(fields)}")
        return ServiceResult.ok(updated, message="Plan pricing updated")

    async def delete_plan(self, actor: AuthContext, plan_id: str) -> ServiceResult:
        """Deactivate a plan nobody is subscribed to"""
        if not self.can(actor, "plans:manage"):
            return self.forbidden("Only administrators can manage plans")
        if await self.business.get_plan(plan_id) is None:
            return self.not_found("Subscription plan")
        in_use = await self.business.count_accounts_on_plan(plan_id)
        if in_use:
            return self.invalid(f"Plan is used by {in_use} business account(s)")
        try:
            updated = await self.business.update_plan(plan_id, {"is_active": False})
        except Exception as e:
            return self.server_error("Plan deletion", e)
        logger.info(f"Plan {plan_id} deactivated by {actor.user_id}")
        return ServiceResult.ok(updated, message="Plan deleted")

    async def create_account(self, actor: AuthContext, request: BusinessAccountCreateRequest) -> ServiceResult:
        """
        Open an (inactive) business account for the actor

        Creates the processor customer, enrolls the actor as the account's
        admin employee and opens the current month's usage record.
        """
        if not self.can(actor, "business:manage_own"):
            return self.forbidden("Not allowed to create business accounts")

        plan = await self.business.get_plan(request.plan_id)
        if plan is None or not plan.is_active:
            return self.invalid("Subscription plan not found or inactive")

        business_id = new_id()
        try:
            customer_id = await self.gateway.create_customer(
                request.contact_email, request.company_name,
                {"business_id": business_id, "account_manager_id": actor.user_id}
            )
        except PaymentGatewayError as e:
            return ServiceResult.fail(ErrorType.EXTERNAL_SERVICE_ERROR, str(e))

        now = utc_now()
        account = BusinessAccount(
            id=business_id,
            **request.model_dump(),
            stripe_customer_id=customer_id,
            account_manager_id=actor.user_id,
            created_at=now
        )
        admin = BusinessEmployee(
            id=new_id(),
            business_id=business_id,
            user_id=actor.user_id,
            role=EmployeeRole.ADMIN,
            full_name=request.contact_person,
            email=request.contact_email,
            added_by=actor.user_id,
            created_at=now
        )
        try:
            async with self.db.transaction():
                created = await self.business.create_account(account)
                await self.business.add_employee(admin)
                await self.business.get_usage(business_id, now.year, now.month)
        except Exception as e:
            return self.server_error("Business account creation", e)

        logger.info(f"Business account {business_id} opened on plan {plan.id} by {actor.user_id}")
        return ServiceResult.ok(created)

    async def get_account(self, actor: AuthContext, business_id: str) -> ServiceResult:
        account, error = await self._load_account(actor, business_id)
        return error or ServiceResult.ok(account)

    async def list_accounts(self, actor: AuthContext, params: PageParams) -> ServiceResult:
        try:
            if self.can(actor, "business:read_all"):
                items, total = await self.business.list_accounts(params.offset, params.limit)
            else:
                items, total = await self.business.list_accounts(
                    params.offset, params.limit, manager_id=actor.user_id
                )
        except Exception as e:
            return self.server_error("Business account listing", e)
        return ServiceResult.ok_list(items, page_info=build_page_info(params, total))

    async def update_account(self, actor: AuthContext, business_id: str,
                             request: BusinessAccountUpdateRequest) -> ServiceResult:
        account, error = await self._load_account(actor, business_id, admin=True)
        if error:
            return error
        fields = request.model_dump(exclude_none=True)
        if not fields:
            return self.invalid("No fields provided to update")
        try:
            updated = await self.business.update_account(account.id, fields)
        except Exception as e:
            return self.server_error("Business account update", e)
        return ServiceResult.ok(updated)

    # Employees

    async def add_employee(self, actor: AuthContext, business_id: str,
                           request: EmployeeCreateRequest) -> ServiceResult:
        account, error = await self._load_account(actor, business_id, admin=True)
        if error:
            return error
        plan = await self.business.get_plan(account.plan_id)
        if plan and plan.employees_limit is not None:
            if await self.business.count_active_employees(account.id) >= plan.employees_limit:
                return self.invalid(f"Employee limit reached for plan ({plan.employees_limit})")

        employee = BusinessEmployee(
            id=new_id(),
            business_id=account.id,
            user_id=request.user_id,
            role=request.role,
            full_name=request.full_name,
            email=request.email,
            added_by=actor.user_id,
            created_at=utc_now()
        )
        try:
            created = await self.business.add_employee(employee)
        except Exception as e:
            return self.server_error("Employee creation", e)
        return ServiceResult.ok(created)

    async def list_employees(self, actor: AuthContext, business_id: str) -> ServiceResult:
        account, error = await self._load_account(actor, business_id)
        if error:
            return error
        return ServiceResult.ok_list(await self.business.list_employees(account.id))

    async def update_employee(self, actor: AuthContext, business_id: str, employee_id: str,
                              request: EmployeeUpdateRequest) -> ServiceResult:
        account, error = await self._load_account(actor, business_id, admin=True)
        if error:
            return error
        employee = await self.business.get_employee(employee_id)
        if employee is None or employee.business_id != account.id:
            return self.not_found("Employee")

        fields = request.model_dump(exclude_none=True)
        if not fields:
            return self.invalid("No fields provided to update")
        if fields.get("is_active") and not employee.is_active:
            plan = await self.business.get_plan(account.plan_id)
            if plan and plan.employees_limit is not None:
                if await self.business.count_active_employees(account.id) >= plan.employees_limit:
                    return self.invalid(f"Employee limit reached for plan ({plan.employees_limit})")
        try:
            updated = await self.business.update_employee(employee.id, fields)
        except Exception as e:
            return self.server_error("Employee update", e)
        return ServiceResult.ok(updated)

    # Usage

    async def submit_fine(self, actor: AuthContext, business_id: str,
                          request: FineSubmissionRequest) -> ServiceResult:
        """
        Record a fine against this month's plan allowance

        Returns:
            ServiceResult with {"submission", "usage", "warning"}; fines past
            the plan limit carry the extra-fine charge.
        """
        account, error = await self._load_account(actor, business_id)
        if error:
            return error
        if not account.is_active:
            return self.invalid("Business subscription is not active")
        if request.fine_type_id and self.fines:
            fine_type = await self.fines.get_fine_type(request.fine_type_id)
            if fine_type is None or not fine_type.is_active:
                return self.invalid("Fine type not found or inactive")
        plan = await self.business.get_plan(account.plan_id)
        if plan is None:
            return self.not_found("Subscription plan")

        now = utc_now()
        try:
            async with self.db.transaction():
                before = await self.business.get_usage(account.id, now.year, now.month, for_update=True)
                included, charge = price_fine(plan.fines_limit, before.fines_submitted, B2B_EXTRA_FINE_CHARGE)
                submission = FineSubmission(
                    id=new_id(),
                    business_id=account.id,
                    case_id=request.case_id,
                    fine_type_id=request.fine_type_id,
                    fine_amount=request.fine_amount,
                    employee_id=request.employee_id,
                    included_in_plan=included,
                    extra_charge=charge,
                    created_at=now
                )
                usage = await self.business.record_fine(submission, now.year, now.month)
        except Exception as e:
            return self.server_error("Fine submission", e)

        warning = None
        if crosses_limit_warning(plan.fines_limit, before.fines_submitted, usage.fines_submitted,
                                 B2B_LIMIT_WARNING_RATIO):
            warning = f"{usage.fines_submitted} of {plan.fines_limit} included fines used this month"
            logger.info(f"Business {account.id} near fine limit: {warning}")
            if self.notifications:
                await self.notifications.fine_limit_warning(account, usage, plan.fines_limit)
        if not included:
            logger.info(f"Business {account.id} extra fine charged {charge}")

        return ServiceResult.ok({"submission": submission, "usage": usage, "warning": warning})

    async def get_usage(self, actor: AuthContext, business_id: str,
                        year: Optional[int] = None, month: Optional[int] = None) -> ServiceResult:
        account, error = await self._load_account(actor, business_id)
        if error:
            return error
        now = utc_now()
        usage = await self.business.get_usage(account.id, year or now.year, month or now.month)
        plan = await self.business.get_plan(account.plan_id)
        limit = plan.fines_limit if plan else None
        remaining = None if limit is None else max(limit - usage.fines_submitted, 0)
        return ServiceResult.ok({"usage": usage, "fines_limit": limit, "remaining": remaining})

    # Billing

    async def generate_monthly_invoice(self, actor: AuthContext, business_id: str,
                                       request: MonthlyInvoiceRequest) -> ServiceResult:
        """One invoice per business per month: plan fee + setup fee + extra fines, plus VAT"""
        if not self.can(actor, "business:read_all"):
            return self.forbidden("Only billing staff can issue invoices")
        account = await self.business.get_account(business_id)
        if account is None:
            return self.not_found("Business account")
        plan = await self.business.get_plan(account.plan_id)
        if plan is None:
            return self.not_found("Subscription plan")

        invoice_number = business_invoice_number(account.id, request.year, request.month)
        if await self.business.get_billing_by_number(account.id, invoice_number):
            return self.conflict(f"Invoice {invoice_number} already exists")

        usage = await self.business.get_usage(account.id, request.year, request.month)
        _, history_total = await self.business.list_billing(account.id, 0, 1)
        # Setup fee is billed once, on the account's first invoice
        setup_fee = plan.setup_fee if history_total == 0 else Decimal("0")
        totals = compute_business_invoice(plan.monthly_price, setup_fee, usage.extra_fine_cost, B2B_VAT_PERCENT)
        period_start, period_end = month_bounds(request.year, request.month)

        invoice = BusinessInvoice(
            id=new_id(),
            business_id=account.id,
            invoice_number=invoice_number,
            billing_period_start=period_start,
            billing_period_end=period_end,
            plan_fee=plan.monthly_price,
            setup_fee=setup_fee,
            extra_fines_count=usage.fines_extra,
            extra_fines_cost=usage.extra_fine_cost,
            subtotal=totals.subtotal,
            tax=totals.tax_amount,
            total=totals.total,
            payment_status=BillingPaymentStatus.PENDING,
            created_at=utc_now()
        )
        try:
            created = await self.business.create_billing(invoice)
        except DuplicateInvoiceError:
            return self.conflict(f"Invoice {invoice_number} already exists")
        except Exception as e:
            return self.server_error("Invoice generation", e)
        return ServiceResult.ok(created)

    async def billing_history(self, actor: AuthContext, business_id: str, params: PageParams) -> ServiceResult:
        account, error = await self._load_account(actor, business_id, admin=True)
        if error:
            return error
        items, total = await self.business.list_billing(account.id, params.offset, params.limit)
        return ServiceResult.ok_list(items, page_info=build_page_info(params, total))

    async def subscription_analytics(self, actor: AuthContext) -> ServiceResult:
        if not self.can(actor, "business:read_all"):
            return self.forbidden("Only billing staff can view subscription analytics")
        try:
            accounts = await self.business.list_active_accounts()
            plans = await self.business.list_all_plans()
            totals = await self.business.billing_totals()
        except Exception as e:
            return self.server_error("Subscription analytics", e)
        return ServiceResult.ok(summarize_subscriptions(accounts, plans, totals))

    async def pending_billings(self, actor: AuthContext, params: PageParams) -> ServiceResult:
        if not self.can(actor, "business:read_all"):
            return self.forbidden("Only billing staff can view pending billings")
        items, total = await self.business.list_billing_by_status(
            BillingPaymentStatus.PENDING, params.offset, params.limit
        )
        return ServiceResult.ok_list(items, page_info=build_page_info(params, total))

    async def retry_billing_payment(self, actor: AuthContext, billing_id: str) -> ServiceResult:
        """Charge an unpaid billing record to the business's saved card"""
        if not self.can(actor, "billing:retry"):
            return self.forbidden("Not allowed to retry billing payments")
        billing = await self.business.get_billing(billing_id)
        if billing is None:
            return self.not_found("Billing record")
        if billing.payment_status == BillingPaymentStatus.PAID:
            return self.conflict(f"Invoice {billing.invoice_number} is already paid")
        account = await self.business.get_account(billing.business_id)
        if account is None or not account.stripe_customer_id:
            return self.invalid("Business account has no payment customer")

        try:
            charge = await self.gateway.charge_customer(
                account.stripe_customer_id, billing.total, B2B_CURRENCY,
                {"business_id": account.id, "invoice_number": billing.invoice_number}
            )
        except PaymentGatewayError as e:
            await self.business.settle_billing(billing.id, BillingPaymentStatus.FAILED)
            logger.warning(f"Retry of invoice {billing.invoice_number} failed: {e}")
            return ServiceResult.fail(ErrorType.EXTERNAL_SERVICE_ERROR, str(e))

        updated = await self.business.settle_billing(
            billing.id, BillingPaymentStatus.PAID, utc_now(), charge.get("latest_charge") or charge["id"]
        )
        if updated is None:
            logger.warning(f"Invoice {billing.invoice_number} was paid while its retry was charging")
            return self.conflict(f"Invoice {billing.invoice_number} is already paid")
        logger.info(f"Invoice {billing.invoice_number} paid on retry by {actor.user_id}")
        return ServiceResult.ok(updated, message="Payment processed")

    # Subscription lifecycle

    async def subscription_status(self, actor: AuthContext, business_id: str) -> ServiceResult:
        account, error = await self._load_account(actor, business_id)
        if error:
            return error
        plan = await self.business.get_plan(account.plan_id)
        now = utc_now()
        usage = await self.business.get_usage(account.id, now.year, now.month)
        return ServiceResult.ok({
            "business_id": account.id,
            "company_name": account.company_name,
            "plan_id": account.plan_id,
            "plan_name": plan.name if plan else None,
            "is_active": account.is_active,
            "is_verified": account.is_verified,
            "subscription_status": account.subscription_status,
            "subscription_starts": account.subscription_starts,
            "subscription_renews": account.subscription_renews,
            "auto_renew": account.auto_renew,
            "current_month_usage": usage,
            "plan_limits": {
                "fines_limit": plan.fines_limit if plan else None,
                "employees_limit": plan.employees_limit if plan else None,
            },
        })

    async def business_analytics(self, actor: AuthContext, business_id: str) -> ServiceResult:
        """This month's usage with a per fine type breakdown; a None limit means unlimited"""
        account, error = await self._load_account(actor, business_id)
        if error:
            return error
        now = utc_now()
        usage = await self.business.get_usage(account.id, now.year, now.month)
        submissions = await self.business.list_fine_submissions(
            account.id, now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        )
        plan = await self.business.get_plan(account.plan_id)
        limit = plan.fines_limit if plan else None
        breakdown = Counter(s.fine_type_id for s in submissions)
        return ServiceResult.ok({
            "current_month": usage,
            "submissions_this_month": len(submissions),
            "fine_types_breakdown": [
                {"fine_type_id": fine_type_id, "count": count}
                for fine_type_id, count in breakdown.most_common()
            ],
            "fines_limit": limit,
            "fines_remaining": None if limit is None else max(limit - usage.fines_submitted, 0),
        })

    async def change_plan(self, actor: AuthContext, business_id: str, request: PlanChangeRequest) -> ServiceResult:
        """
        Checkout session that moves an active subscription to another plan

        The switch happens once the session is paid; the setup fee is not
        charged again.
        """
        account, error = await self._load_account(actor, business_id, admin=True)
        if error:
            return error
        if not account.is_active:
            return self.invalid("Business subscription is not active")
        plan = await self.business.get_plan(request.plan_id)
        if plan is None or not plan.is_active:
            return self.not_found("Subscription plan")
        if plan.id == account.plan_id:
            return self.invalid("Business is already on this plan")
        if not account.stripe_customer_id:
            return self.invalid("Business account has no payment customer")
        if plan.employees_limit is not None:
            if await self.business.count_active_employees(account.id) > plan.employees_limit:
                return self.invalid(f"Too many active employees for plan ({plan.employees_limit})")

        try:
            session = await self.gateway.create_checkout_session(
                account.stripe_customer_id, plan, account.id, CHECKOUT_SUCCESS_URL, CHECKOUT_CANCEL_URL,
                metadata={"old_plan_id": account.plan_id, "new_plan_id": plan.id, "action": "plan_change"},
                include_setup_fee=False
            )
        except PaymentGatewayError as e:
            return ServiceResult.fail(ErrorType.EXTERNAL_SERVICE_ERROR, str(e))

        logger.info(f"Plan change session {session['id']} for business {account.id}: {account.plan_id} -> {plan.id}")
        return ServiceResult.ok(
            {"session_id": session["id"], "url": session["url"]}, message="Plan change session created"
        )

    async def apply_plan_change(self, account: BusinessAccount, session: Dict[str, Any]) -> BusinessAccount:
        """Move the account to the paid session's plan and stop the old subscription"""
        new_plan_id = session["metadata"]["new_plan_id"]
        fields: Dict[str, Any] = {"plan_id": new_plan_id}
        new_subscription = session.get("subscription")
        if new_subscription:
            fields["stripe_subscription_id"] = new_subscription
        updated = await self.business.update_account(account.id, fields)
        old_subscription = account.stripe_subscription_id
        if old_subscription and new_subscription and old_subscription != new_subscription:
            try:
                await self.gateway.cancel_subscription(old_subscription)
            except PaymentGatewayError as e:
                logger.error(f"Old subscription {old_subscription} of business {account.id} still live: {e}")
        logger.info(f"Business {account.id} moved from plan {account.plan_id} to {new_plan_id}")
        return updated

    async def create_checkout(self, actor: AuthContext, business_id: str) -> ServiceResult:
        """Processor checkout session for the account's plan"""
        account, error = await self._load_account(actor, business_id, admin=True)
        if error:
            return error
        if account.is_active:
            return self.conflict("Subscription is already active")
        plan = await self.business.get_plan(account.plan_id)
        if plan is None:
            return self.not_found("Subscription plan")

        try:
            customer_id = account.stripe_customer_id
            if not customer_id:
                customer_id = await self.gateway.create_customer(
                    account.contact_email, account.company_name, {"business_id": account.id}
                )
                await self.business.update_account(account.id, {"stripe_customer_id": customer_id})
            session = await self.gateway.create_checkout_session(
                customer_id, plan, account.id, CHECKOUT_SUCCESS_URL, CHECKOUT_CANCEL_URL
            )
        except PaymentGatewayError as e:
            return ServiceResult.fail(ErrorType.EXTERNAL_SERVICE_ERROR, str(e))

        logger.info(f"Checkout session {session['id']} created for business {account.id}")
        return ServiceResult.ok({"session_id": session["id"], "url": session["url"]})

    async def confirm_subscription(self, actor: AuthContext, request: SubscriptionConfirmRequest) -> ServiceResult:
        account, error = await self._load_account(actor, request.business_id, admin=True)
        if error:
            return error
        try:
            session = await self.gateway.retrieve_checkout_session(request.session_id)
        except PaymentGatewayError as e:
            return ServiceResult.fail(ErrorType.EXTERNAL_SERVICE_ERROR, str(e))

        if session["payment_status"] != "paid":
            return self.invalid("Payment has not been completed")
        if session["metadata"].get("business_id") not in (None, account.id):
            return self.invalid("Checkout session belongs to another business")

        plan_change = session["metadata"].get("action") == "plan_change"
        try:
            async with self.db.transaction():
                if plan_change:
                    activated = await self.apply_plan_change(account, session)
                else:
                    activated = await self.activate_subscription(account, session)
        except Exception as e:
            return self.server_error("Subscription confirmation", e)
        message = "Plan changed successfully" if plan_change else "Subscription activated successfully"
        return ServiceResult.ok(activated, message=message)

    async def activate_subscription(self, account: BusinessAccount, session: Dict[str, Any]) -> BusinessAccount:
        """
        Activate the account from a paid checkout session

        Safe to repeat: the first billing record is only written once per
        period, so a confirmation followed by the matching webhook is harmless.
        """
        now = utc_now()
        plan = await self.business.get_plan(account.plan_id)
        fields = {
            "is_active": True,
            "is_verified": True,
            "auto_renew": True,
            "subscription_status": "active",
            "subscription_renews": add_months(now, 1),
        }
        if not account.subscription_starts:
            fields["subscription_starts"] = now
        if session.get("subscription"):
            fields["stripe_subscription_id"] = session["subscription"]
        if session.get("customer"):
            fields["stripe_customer_id"] = session["customer"]
        updated = await self.business.update_account(account.id, fields)

        invoice_number = business_invoice_number(account.id, now.year, now.month)
        if plan and not await self.business.get_billing_by_number(account.id, invoice_number):
            totals = compute_business_invoice(plan.monthly_price, plan.setup_fee, 0, B2B_VAT_PERCENT)
            period_start, period_end = month_bounds(now.year, now.month)
            await self.business.create_billing(BusinessInvoice(
                id=new_id(),
                business_id=account.id,
                invoice_number=invoice_number,
                billing_period_start=period_start,
                billing_period_end=period_end,
                plan_fee=plan.monthly_price,
                setup_fee=plan.setup_fee,
                subtotal=totals.subtotal,
                tax=totals.tax_amount,
                total=totals.total,
                payment_status=BillingPaymentStatus.PAID,
                payment_date=now,
                stripe_charge_id=session.get("payment_intent") or session.get("invoice"),
                created_at=now
            ))
        await self.business.get_usage(account.id, now.year, now.month)
        if not await self.business.find_employee(account.id, account.account_manager_id):
            await self.business.add_employee(BusinessEmployee(
                id=new_id(),
                business_id=account.id,
                user_id=account.account_manager_id,
                role=EmployeeRole.ADMIN,
                full_name=account.contact_person,
                email=account.contact_email,
                added_by=account.account_manager_id,
                created_at=now
            ))
        logger.info(f"Business {account.id} subscription active until {fields['subscription_renews']}")
        return updated

    async def cancel_subscription(self, actor: AuthContext, business_id: str,
                                  request: SubscriptionCancelRequest) -> ServiceResult:
        account, error = await self._load_account(actor, business_id, admin=True)
        if error:
            return error
        if not account.is_active and not account.auto_renew:
            return self.conflict("Subscription is already cancelled")

        if account.stripe_subscription_id:
            try:
                await self.gateway.cancel_subscription(account.stripe_subscription_id)
            except PaymentGatewayError as e:
                return ServiceResult.fail(ErrorType.EXTERNAL_SERVICE_ERROR, str(e))
        try:
            updated = await self.business.update_account(account.id, {
                "is_active": False,
                "auto_renew": False,
                "subscription_status": "cancelled",
            })
        except Exception as e:
            return self.server_error("Subscription cancellation", e)

        logger.info(f"Business {account.id} cancelled subscription: {request.reason or 'no reason given'}")
        return ServiceResult.ok(updated, message="Subscription cancelled")

    async def handle_subscription_event(self, event_type: str, payload: Dict[str, Any]) -> str:
        """
        Apply a subscription webhook as an absolute state change

        Returns:
            Short outcome label for the webhook log
        """
        if event_type == "checkout.session.completed":
            business_id = (payload.get("metadata") or {}).get("business_id")
            account = await self.business.get_account(business_id) if business_id else None
            if account is None:
                return "not_found"
            if payload.get("payment_status") != "paid":
                return "ignored"
            if (payload.get("metadata") or {}).get("action") == "plan_change":
                await self.apply_plan_change(account, payload)
                return "processed"
            await self.activate_subscription(account, payload)
            return "processed"

        if event_type in ("invoice.payment_failed", "invoice.payment_succeeded"):
            account = await self._account_for(payload.get("customer"), payload.get("subscription"))
            if account is None:
                return "not_found"
            if event_type == "invoice.payment_failed":
                await self.business.update_account(account.id, {"subscription_status": "past_due"})
                await self.business.mark_latest_billing(account.id, BillingPaymentStatus.FAILED)
                logger.warning(f"Subscription payment failed for business {account.id}")
                if self.notifications:
                    await self.notifications.business_payment_failed(account)
            else:
                period_end = payload.get("period_end")
                renews = (
                    datetime.fromtimestamp(period_end, tz=timezone.utc) if period_end
                    else add_months(utc_now(), 1)
                )
                await self.business.update_account(account.id, {
                    "is_active": True,
                    "subscription_status": "active",
                    "subscription_renews": renews,
                })
                await self.business.mark_latest_billing(
                    account.id, BillingPaymentStatus.PAID, utc_now(), payload.get("charge")
                )
            return "processed"

        if event_type == "customer.subscription.deleted":
            account = await self._account_for(payload.get("customer"), payload.get("id"))
            if account is None:
                return "not_found"
            await self.business.update_account(account.id, {
                "is_active": False,
                "auto_renew": False,
                "subscription_status": "cancelled",
            })
            logger.info(f"Subscription ended for business {account.id}")
            return "processed"

        return "ignored"

    async def _account_for(self, customer_id: Optional[str],
                           subscription_id: Optional[str]) -> Optional[BusinessAccount]:
        if subscription_id:
            account = await self.business.find_by_stripe_subscription(subscription_id)
            if account:
                return account
        if customer_id:
            return await self.business.find_by_stripe_customer(customer_id)
        return None


# Global billing service instance
_billing_service = None


def get_billing_service() -> BillingService:
    """Get the global billing service instance"""
    global _billing_service
    if _billing_service is None:
        db = get_database()
        _billing_service = BillingService(
            db, BusinessRepository(db), get_payment_gateway(), get_notification_service(),
            FinesRepository(db)
        )
    return _billing_service
