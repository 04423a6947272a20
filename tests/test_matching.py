"""
Lawyer matching and assignment
"""

import pytest

from models.enums import CaseStatus, Specialization, ViolationType
from models.lawyer import LawyerAvailability, LawyerRating, LawyerStatistics
from services.base_service import ErrorType
from services.matching_service import NO_MATCH_MESSAGE, rank_candidates
from services.scoring import CaseRequest
from fakes import make_case, make_lawyer


@pytest.fixture
def pending_case(cases_repo, client_user):
    return cases_repo.add(make_case(client_user.id))


class TestRankCandidates:

    def test_best_first_and_ties_keep_order(self):
        request = CaseRequest(violation_type=ViolationType.SPEEDING, state="WA")
        first = make_lawyer()
        twin = make_lawyer()
        star = make_lawyer(rating=LawyerRating(average=5, count=40))
        ranked = [lawyer.id for lawyer, _ in rank_candidates([first, twin, star], request)]
        assert ranked == [star.id, first.id, twin.id]


class TestMatchCase:

    @pytest.mark.asyncio
    async def test_assigns_highest_score(self, matcher, lawyers_repo, cases_repo, pending_case, lawyer,
                                         notifications):
        weaker = lawyers_repo.add(make_lawyer(statistics=LawyerStatistics(total_cases=10, cases_dismissed=2,
                                                                          success_rate=20)))

        result = await matcher.match_case(pending_case)

        assert result.success
        case = result.first
        assert case.lawyer_id == lawyer.id
        assert case.status == CaseStatus.ASSIGNED
        assert case.assignment_score == pytest.approx(83.25)
        assert case.timeline[-1].status == CaseStatus.ASSIGNED
        assert lawyers_repo.lawyers[lawyer.id].availability.current_cases == 6
        assert lawyers_repo.lawyers[weaker.id].availability.current_cases == 5
        assert notifications.kinds() == ["case_assigned"]

    @pytest.mark.asyncio
    async def test_falls_back_to_any_specialization(self, matcher, cases_repo, client_user, lawyer):
        dui_case = cases_repo.add(make_case(client_user.id, violation=ViolationType.DUI))

        result = await matcher.match_case(dui_case)

        assert result.first.lawyer_id == lawyer.id

    @pytest.mark.asyncio
    async def test_prefers_specialist(self, matcher, lawyers_repo, cases_repo, client_user):
        specialist = lawyers_repo.add(make_lawyer(
            specializations=[Specialization.DUI],
            years_of_experience=1,
            rating=LawyerRating(),
            statistics=LawyerStatistics()
        ))
        dui_case = cases_repo.add(make_case(client_user.id, violation=ViolationType.DUI))

        result = await matcher.match_case(dui_case)

        assert result.first.lawyer_id == specialist.id

    @pytest.mark.asyncio
    async def test_no_lawyer_in_state(self, matcher, cases_repo, client_user):
        oregon_case = cases_repo.add(make_case(client_user.id, state="OR"))

        result = await matcher.match_case(oregon_case)

        assert result.success
        assert result.message == NO_MATCH_MESSAGE
        assert result.first.status == CaseStatus.PENDING
        assert cases_repo.cases[oregon_case.id].lawyer_id is None

    @pytest.mark.asyncio
    async def test_skips_unavailable_and_full_lawyers(self, matcher, lawyers_repo, pending_case, lawyer):
        lawyers_repo.lawyers[lawyer.id].availability.is_available = False
        full = lawyers_repo.add(make_lawyer(availability=LawyerAvailability(max_cases=3, current_cases=3)))
        lawyers_repo.add(make_lawyer(is_approved=False))

        result = await matcher.match_case(pending_case)

        assert result.message == NO_MATCH_MESSAGE
        assert result.first.lawyer_id is None
        assert lawyers_repo.lawyers[full.id].availability.current_cases == 3

    @pytest.mark.asyncio
    async def test_lost_reservation_moves_to_next_candidate(self, matcher, lawyers_repo, pending_case, lawyer):
        runner_up = lawyers_repo.add(make_lawyer(years_of_experience=2))
        lawyers_repo.fill_on_reserve.add(lawyer.id)

        result = await matcher.match_case(pending_case)

        assert result.first.lawyer_id == runner_up.id
        assert lawyers_repo.lawyers[runner_up.id].availability.current_cases == 6

    @pytest.mark.asyncio
    async def test_case_already_assigned(self, matcher, cases_repo, client_user, lawyer):
        assigned = cases_repo.add(make_case(client_user.id, status=CaseStatus.ASSIGNED, lawyer_id=lawyer.id))

        result = await matcher.match_case(assigned)

        assert result.error_type == ErrorType.CONFLICT_ERROR

    @pytest.mark.asyncio
    async def test_concurrent_assignment_is_a_conflict(self, matcher, cases_repo, pending_case):
        cases_repo.stale_on_transition.add(pending_case.id)

        result = await matcher.match_case(pending_case)

        assert result.error_type == ErrorType.CONFLICT_ERROR

    @pytest.mark.asyncio
    async def test_repository_failure_is_a_server_error(self, matcher, lawyers_repo, pending_case):
        async def broken(*args, **kwargs):
            raise ConnectionError("database unavailable")

        lawyers_repo.find_candidates = broken

        result = await matcher.match_case(pending_case)

        assert not result.success
        assert result.error_type == ErrorType.SERVER_ERROR
