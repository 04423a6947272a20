"""
Cases service - business logic for case submission and lifecycle
"""

import logging
from typing import Optional

from database.connection import Database, get_database
from models.case import (
    Case, CaseCreateRequest, CaseDocument, CasePricing, CaseRatingRequest,
    CaseReassignRequest, CaseStatusUpdateRequest, ClientRating, DocumentAttachRequest
)
from models.enums import CaseStatus, UserRole
from repositories.cases import CasesRepository
from repositories.lawyers import LawyersRepository
from repositories.users import UsersRepository
from services.base_service import BaseService, CapacityExhaustedError, ServiceResult, StaleWriteError
from services.case_lifecycle import (
    InvalidTransitionError, apply_outcome, apply_rating, can_transition,
    counts_toward_statistics, make_timeline_entry, outcome_matches_status, quota_exhausted,
    quote_case_price, releases_capacity, validate_transition
)
from services.matching_service import LawyerMatcher, case_request_for, get_lawyer_matcher
from services.notification_service import NotificationService, get_notification_service
from services.scoring import score_lawyer
from utils.auth import AuthContext
from utils.helpers import generate_case_number, new_id, utc_now
from utils.pagination import PageParams, build_page_info

logger = logging.getLogger(__name__)

QUOTA_EXCEEDED_MESSAGE = "Monthly case limit reached. Please upgrade your plan or wait for the next cycle."

# Statuses a case can only be in once a lawyer is working it
_LAWYER_STATUSES = {
    CaseStatus.ASSIGNED, CaseStatus.IN_PROGRESS, CaseStatus.COURT_SCHEDULED,
    CaseStatus.DISMISSED, CaseStatus.REDUCED, CaseStatus.LOST
}


class CasesService(BaseService):
    """Service for case management operations"""

    def __init__(self, db: Database, users: UsersRepository, lawyers: LawyersRepository,
                 cases: CasesRepository, matcher: LawyerMatcher,
                 notifications: Optional[NotificationService] = None):
        self.db = db
        self.users = users
        self.lawyers = lawyers
        self.cases = cases
        self.matcher = matcher
        self.notifications = notifications

    async def _actor_lawyer_id(self, actor: AuthContext) -> Optional[str]:
        if actor.role != UserRole.LAWYER.value:
            return None
        lawyer = await self.lawyers.get_by_user(actor.user_id)
        return lawyer.id if lawyer else None

    async def _can_view(self, actor: AuthContext, case: Case) -> bool:
        if case.user_id == actor.user_id or self.can(actor, "cases:read_all"):
            return True
        return case.lawyer_id is not None and case.lawyer_id == await self._actor_lawyer_id(actor)

    async def create_case(self, actor: AuthContext, request: CaseCreateRequest) -> ServiceResult:
        """
        Submit a new case and try to assign a lawyer

        Args:
            actor: Submitting user
            request: Ticket and driver details

        Returns:
            ServiceResult with the created case. Assignment problems never fail
            the submission; the case then stays `pending` and the result
            message says why.
        """
        if not self.can(actor, "cases:create"):
            return self.forbidden("Not allowed to submit cases")

        try:
            now = utc_now()
            user = await self.users.reset_quota_if_due(actor.user_id, now)
            if user is None:
                return self.not_found("User")
            if quota_exhausted(user.quota):
                logger.info(f"User {actor.user_id} hit monthly quota ({user.quota.cases_per_month})")
                return self.invalid(QUOTA_EXCEEDED_MESSAGE)

            ticket = request.ticket_details
            case = Case(
                id=new_id(),
                case_number=generate_case_number(),
                user_id=actor.user_id,
                ticket_details=ticket,
                client_info=request.client_info,
                status=CaseStatus.PENDING,
                timeline=[make_timeline_entry(CaseStatus.PENDING, "Case submitted", actor.user_id, now)],
                pricing=CasePricing(
                    quoted_price=quote_case_price(ticket.violation_type, request.client_info.is_cdl_driver)
                ),
                created_at=now,
                updated_at=now
            )

            async with self.db.transaction():
                if not await self.users.consume_quota(actor.user_id):
                    return self.invalid(QUOTA_EXCEEDED_MESSAGE)
                created = await self.cases.create(case)

            logger.info(f"Case {created.case_number} submitted by user {actor.user_id}")
        except Exception as e:
            return self.server_error("Case submission", e)

        match = await self.matcher.match_case(created)
        if match.success:
            return ServiceResult.ok(match.first, message=match.message)
        logger.warning(f"Case {created.case_number} left pending: {match.error}")
        return ServiceResult.ok(created, message=f"Case submitted; lawyer assignment pending ({match.error})")

    async def get_case(self, actor: AuthContext, case_id: str) -> ServiceResult:
        case = await self.cases.get(case_id)
        if case is None:
            return self.not_found("Case")
        if not await self._can_view(actor, case):
            return self.forbidden("Not authorized to view this case")
        return ServiceResult.ok(case)

    async def list_cases(self, actor: AuthContext, params: PageParams,
                         status: Optional[CaseStatus] = None) -> ServiceResult:
        """
        Cases visible to the actor: everything for support/admin, assigned
        cases for lawyers, own submissions otherwise
        """
        try:
            if self.can(actor, "cases:read_all"):
                items, total = await self.cases.list(params.offset, params.limit, status=status)
            elif actor.role == UserRole.LAWYER.value:
                lawyer_id = await self._actor_lawyer_id(actor)
                if lawyer_id is None:
                    return self.not_found("Lawyer profile")
                items, total = await self.cases.list(
                    params.offset, params.limit, lawyer_id=lawyer_id, status=status
                )
            elif self.can(actor, "cases:read_own"):
                items, total = await self.cases.list(
                    params.offset, params.limit, user_id=actor.user_id, status=status
                )
            else:
                return self.forbidden("Not allowed to list cases")
        except Exception as e:
            return self.server_error("Case listing", e)
        return ServiceResult.ok_list(items, page_info=build_page_info(params, total))

    async def update_status(self, actor: AuthContext, case_id: str,
                            request: CaseStatusUpdateRequest) -> ServiceResult:
        """
        Move a case through its lifecycle

        Appends the timeline entry, records court date/outcome, releases the
        lawyer's capacity on the first terminal status and counts the first
        decided outcome toward the lawyer's statistics, all in one transaction.
        """
        if not self.can(actor, "cases:update_status"):
            return self.forbidden("Not allowed to update case status")

        case = await self.cases.get(case_id)
        if case is None:
            return self.not_found("Case")
        if not self.can(actor, "cases:read_all"):
            lawyer_id = await self._actor_lawyer_id(actor)
            if lawyer_id is None or case.lawyer_id != lawyer_id:
                return self.forbidden("Only the assigned lawyer can update this case")

        try:
            validate_transition(case.status, request.status)
        except InvalidTransitionError as e:
            return self.invalid(str(e))
        if request.status in _LAWYER_STATUSES and not case.lawyer_id:
            return self.invalid("Case has no assigned lawyer")
        if request.status == CaseStatus.COURT_SCHEDULED and not (request.court_date or case.court_date):
            return self.invalid("court_date is required to schedule a hearing")
        if request.outcome and not outcome_matches_status(request.status, request.outcome.type):
            return self.invalid(
                f"Outcome '{request.outcome.type.value}' does not match status '{request.status.value}'"
            )

        fields = {}
        if request.court_date:
            fields["court_date"] = request.court_date
        count_outcome = False
        if request.outcome:
            fields["outcome"] = request.outcome
            previous = case.outcome.type if case.outcome else None
            count_outcome = bool(case.lawyer_id) and counts_toward_statistics(previous, request.outcome.type)

        entry = make_timeline_entry(request.status, request.note, actor.user_id, utc_now())
        try:
            async with self.db.transaction():
                updated = await self.cases.transition(case.id, case.status, entry, fields)
                if updated is None:
                    raise StaleWriteError(case.id)
                if case.lawyer_id and releases_capacity(case.status, request.status):
                    await self.lawyers.release_capacity(case.lawyer_id)
                if count_outcome:
                    lawyer = await self.lawyers.get(case.lawyer_id, for_update=True)
                    if lawyer:
                        await self.lawyers.save_statistics(
                            lawyer.id, apply_outcome(lawyer.statistics, request.outcome.type)
                        )
        except StaleWriteError:
            return self.conflict("Case was modified concurrently; reload and retry")
        except Exception as e:
            return self.server_error("Case status update", e)

        logger.info(f"Case {case.case_number}: {case.status.value} -> {request.status.value}")
        if self.notifications:
            owner = await self.users.get(case.user_id)
            await self.notifications.case_status_changed(owner.email if owner else None, updated)
        return ServiceResult.ok(updated)

    async def reassign(self, actor: AuthContext, case_id: str, request: CaseReassignRequest) -> ServiceResult:
        """Admin reassignment; capacity moves from the old lawyer to the new one"""
        if not self.can(actor, "cases:assign"):
            return self.forbidden("Only administrators can reassign cases")

        case = await self.cases.get(case_id)
        if case is None:
            return self.not_found("Case")
        if not can_transition(case.status, CaseStatus.ASSIGNED):
            return self.invalid(f"Cannot reassign a case in status '{case.status.value}'")
        if case.lawyer_id == request.lawyer_id:
            return self.invalid("Case is already assigned to this lawyer")

        lawyer = await self.lawyers.get(request.lawyer_id)
        if lawyer is None:
            return self.not_found("Lawyer")
        if not lawyer.is_approved or not lawyer.availability.is_available:
            return self.invalid("Lawyer is not approved or not available")
        if not lawyer.has_capacity():
            return self.invalid("Lawyer has no remaining capacity")

        score = score_lawyer(lawyer, case_request_for(case))
        note = request.note or f"Reassigned to {lawyer.full_name or lawyer.id}"
        entry = make_timeline_entry(CaseStatus.ASSIGNED, note, actor.user_id, utc_now())
        try:
            async with self.db.transaction():
                # Only the writer that still sees the lawyer it read may move capacity
                updated = await self.cases.transition(
                    case.id, case.status, entry, {"lawyer_id": lawyer.id, "assignment_score": score},
                    expected_lawyer_id=case.lawyer_id
                )
                if updated is None:
                    raise StaleWriteError(case.id)
                if not await self.lawyers.reserve_capacity(lawyer.id):
                    raise CapacityExhaustedError(lawyer.id)
                if case.lawyer_id:
                    await self.lawyers.release_capacity(case.lawyer_id)
        except StaleWriteError:
            return self.conflict("Case was modified concurrently; reload and retry")
        except CapacityExhaustedError:
            return self.invalid("Lawyer has no remaining capacity")
        except Exception as e:
            return self.server_error("Case reassignment", e)

        logger.info(f"Case {case.case_number} reassigned {case.lawyer_id} -> {lawyer.id} by {actor.user_id}")
        if self.notifications:
            await self.notifications.case_assigned(lawyer.email, updated)
        return ServiceResult.ok(updated)

    async def retry_matching(self, actor: AuthContext, case_id: str) -> ServiceResult:
        """Run the matcher again for a case that is still waiting for a lawyer"""
        if not self.can(actor, "cases:assign"):
            return self.forbidden("Only administrators can trigger matching")
        case = await self.cases.get(case_id)
        if case is None:
            return self.not_found("Case")
        return await self.matcher.match_case(case)

    async def retry_pending(self, actor: AuthContext, limit: int = 50) -> ServiceResult:
        """Retry matching for the oldest unassigned cases"""
        if not self.can(actor, "cases:assign"):
            return self.forbidden("Only administrators can trigger matching")
        pending = await self.cases.list_pending(limit)
        assigned = 0
        failed = 0
        for case in pending:
            result = await self.matcher.match_case(case)
            if not result.success:
                failed += 1
            elif result.first.lawyer_id:
                assigned += 1
        logger.info(f"Matching retry: {assigned}/{len(pending)} assigned, {failed} failed")
        return ServiceResult.ok({"processed": len(pending), "assigned": assigned, "failed": failed})

    async def rate_case(self, actor: AuthContext, case_id: str, request: CaseRatingRequest) -> ServiceResult:
        """Client rating, accepted once per case; updates the assigned lawyer's running average, if any"""
        if not self.can(actor, "cases:rate"):
            return self.forbidden("Not allowed to rate cases")

        case = await self.cases.get(case_id)
        if case is None:
            return self.not_found("Case")
        if case.user_id != actor.user_id:
            return self.forbidden("Only the case owner can rate this case")
        if case.client_rating is not None:
            return self.conflict("Case has already been rated")

        rating = ClientRating(rating=request.rating, review=request.review, rated_at=utc_now())
        try:
            async with self.db.transaction():
                updated = await self.cases.set_rating(case.id, rating)
                if updated is None:
                    raise StaleWriteError(case.id)
                lawyer = await self.lawyers.get(case.lawyer_id, for_update=True) if case.lawyer_id else None
                if lawyer:
                    await self.lawyers.save_rating(lawyer.id, apply_rating(lawyer.rating, request.rating))
        except StaleWriteError:
            return self.conflict("Case has already been rated")
        except Exception as e:
            return self.server_error("Case rating", e)

        logger.info(f"Case {case.case_number} rated {request.rating}/5")
        return ServiceResult.ok(updated)

    async def attach_document(self, actor: AuthContext, case_id: str,
                              request: DocumentAttachRequest) -> ServiceResult:
        if not self.can(actor, "cases:attach_document"):
            return self.forbidden("Not allowed to attach documents")
        case = await self.cases.get(case_id)
        if case is None:
            return self.not_found("Case")
        if not await self._can_view(actor, case):
            return self.forbidden("Not authorized to modify this case")
        if case.status == CaseStatus.CLOSED:
            return self.invalid("Cannot attach documents to a closed case")

        document = CaseDocument(
            name=request.name,
            type=request.type,
            url=request.url,
            uploaded_by=actor.user_id,
            uploaded_at=utc_now()
        )
        try:
            updated = await self.cases.add_document(case.id, document)
        except Exception as e:
            return self.server_error("Document attachment", e)
        return ServiceResult.ok(updated)


# Global cases service instance
_cases_service = None


def get_cases_service() -> CasesService:
    """Get the global cases service instance"""
    global _cases_service
    if _cases_service is None:
        db = get_database()
        _cases_service = CasesService(
            db,
            UsersRepository(db),
            LawyersRepository(db),
            CasesRepository(db),
            get_lawyer_matcher(),
            get_notification_service()
        )
    return _cases_service
