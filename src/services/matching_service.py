"""
Lawyer matching - picks and assigns the best available lawyer for a new case
"""

import logging
from typing import List, Optional, Tuple

from database.connection import Database, get_database
from models.case import Case
from models.enums import CaseStatus
from models.lawyer import Lawyer
from repositories.cases import CasesRepository
from repositories.lawyers import LawyersRepository
from services.base_service import BaseService, ErrorType, ServiceResult, StaleWriteError
from services.case_lifecycle import make_timeline_entry
from services.notification_service import NotificationService, get_notification_service
from services.scoring import CaseRequest, score_lawyer
from utils.helpers import utc_now

logger = logging.getLogger(__name__)

NO_MATCH_MESSAGE = "No eligible lawyer available; case remains pending"


def case_request_for(case: Case) -> CaseRequest:
    return CaseRequest(
        violation_type=case.ticket_details.violation_type,
        state=case.ticket_details.location.state,
        is_cdl_driver=case.client_info.is_cdl_driver
    )


def rank_candidates(candidates: List[Lawyer], request: CaseRequest) -> List[Tuple[Lawyer, float]]:
    """
    Candidates ordered best first

    Ties keep the order the candidates were supplied in.
    """
    scored = [(index, lawyer, score_lawyer(lawyer, request)) for index, lawyer in enumerate(candidates)]
    scored.sort(key=lambda item: (-item[2], item[0]))
    return [(lawyer, score) for _, lawyer, score in scored]


class LawyerMatcher(BaseService):
    """Filters eligible lawyers, scores them and assigns the winner"""

    def __init__(self, db: Database, lawyers: LawyersRepository, cases: CasesRepository,
                 notifications: Optional[NotificationService] = None):
        self.db = db
        self.lawyers = lawyers
        self.cases = cases
        self.notifications = notifications

    async def find_candidates(self, request: CaseRequest) -> List[Lawyer]:
        """Specialists licensed in the state, falling back to any lawyer licensed there"""
        candidates = await self.lawyers.find_candidates(request.state, request.violation_type.value)
        if candidates:
            return candidates
        logger.info(
            f"No {request.violation_type.value} specialists in {request.state}, widening to all specializations"
        )
        return await self.lawyers.find_candidates(request.state)

    async def match_case(self, case: Case) -> ServiceResult:
        """
        Assign the best-scoring eligible lawyer to a pending case

        Args:
            case: Case in `pending` status without a lawyer

        Returns:
            ServiceResult with the (possibly unchanged) case. A case that no
            lawyer could take is returned as-is with an explanatory message;
            persistence failures are returned as SERVER_ERROR and leave the
            case pending.
        """
        if case.status != CaseStatus.PENDING or case.lawyer_id:
            return self.conflict(f"Case {case.case_number} is not awaiting assignment")

        request = case_request_for(case)
        try:
            candidates = await self.find_candidates(request)
            if not candidates:
                logger.info(f"No eligible lawyer for case {case.case_number} in {request.state}")
                return ServiceResult.ok(case, message=NO_MATCH_MESSAGE)

            for lawyer, score in rank_candidates(candidates, request):
                assigned = await self._assign(case, lawyer, score)
                if assigned is not None:
                    logger.info(
                        f"Case {case.case_number} assigned to lawyer {lawyer.id} (score {score:.2f})"
                    )
                    if self.notifications:
                        await self.notifications.case_assigned(lawyer.email, assigned)
                    return ServiceResult.ok(assigned, message=f"Case assigned to {lawyer.full_name or lawyer.id}")
                logger.info(f"Lawyer {lawyer.id} filled up before case {case.case_number} could be assigned")

            return ServiceResult.ok(case, message=NO_MATCH_MESSAGE)

        except StaleWriteError:
            return self.conflict(f"Case {case.case_number} was assigned concurrently")
        except Exception as e:
            logger.error(f"Matching failed for case {case.case_number}: {e}", exc_info=True)
            return ServiceResult.fail(ErrorType.SERVER_ERROR, f"Lawyer assignment failed: {e}")

    async def _assign(self, case: Case, lawyer: Lawyer, score: float) -> Optional[Case]:
        """Reserve capacity and assign in one transaction; None if the lawyer is full"""
        async with self.db.transaction():
            if not await self.lawyers.reserve_capacity(lawyer.id):
                return None
            entry = make_timeline_entry(
                CaseStatus.ASSIGNED,
                f"Matched with {lawyer.full_name or 'lawyer'} (score {score:.2f})",
                None,
                utc_now()
            )
            updated = await self.cases.transition(
                case.id, CaseStatus.PENDING, entry,
                {"lawyer_id": lawyer.id, "assignment_score": score}
            )
            if updated is None:
                # Rolls back the capacity reservation
                raise StaleWriteError(case.id)
            return updated


# Global matcher instance
_lawyer_matcher = None


def get_lawyer_matcher() -> LawyerMatcher:
    """Get the global lawyer matcher instance"""
    global _lawyer_matcher
    if _lawyer_matcher is None:
        db = get_database()
        _lawyer_matcher = LawyerMatcher(
            db, LawyersRepository(db), CasesRepository(db), get_notification_service()
        )
    return _lawyer_matcher
