"""
Lawyer fitness scoring
"""

import pytest

from models.enums import Specialization, ViolationType
from models.lawyer import LawyerAvailability, LawyerRating, LawyerStatistics
from services.scoring import CaseRequest, MAX_SCORE, MAX_SCORE_WITH_CDL, score_lawyer
from fakes import make_lawyer

SPEEDING_WA = CaseRequest(violation_type=ViolationType.SPEEDING, state="WA")


class TestScoreLawyer:

    def test_weighted_sum(self):
        # 40 specialization + 24 success + 7.5 experience + 8 rating + 3.75 capacity
        lawyer = make_lawyer()
        assert score_lawyer(lawyer, SPEEDING_WA) == pytest.approx(83.25)

    def test_no_specialization_match(self):
        lawyer = make_lawyer(specializations=[Specialization.DUI])
        assert score_lawyer(lawyer, SPEEDING_WA) == pytest.approx(43.25)

    def test_experience_capped_at_twenty_years(self):
        veteran = make_lawyer(years_of_experience=35)
        twenty = make_lawyer(years_of_experience=20)
        assert score_lawyer(veteran, SPEEDING_WA) == score_lawyer(twenty, SPEEDING_WA)

    def test_cdl_bonus_requires_driver_and_specialist(self):
        specialist = make_lawyer(specializations=[Specialization.SPEEDING, Specialization.CDL_VIOLATIONS])
        cdl_request = CaseRequest(violation_type=ViolationType.SPEEDING, state="WA", is_cdl_driver=True)

        assert score_lawyer(specialist, cdl_request) - score_lawyer(specialist, SPEEDING_WA) == pytest.approx(10)
        plain = make_lawyer()
        assert score_lawyer(plain, cdl_request) == score_lawyer(plain, SPEEDING_WA)

    def test_perfect_lawyer_reaches_maximum(self):
        lawyer = make_lawyer(
            specializations=[Specialization.SPEEDING, Specialization.CDL_VIOLATIONS],
            years_of_experience=20,
            rating=LawyerRating(average=5, count=3),
            statistics=LawyerStatistics(total_cases=4, cases_dismissed=4, success_rate=100),
            availability=LawyerAvailability(max_cases=10, current_cases=0)
        )
        assert score_lawyer(lawyer, SPEEDING_WA) == pytest.approx(MAX_SCORE)
        cdl_request = CaseRequest(violation_type=ViolationType.SPEEDING, state="WA", is_cdl_driver=True)
        assert score_lawyer(lawyer, cdl_request) == pytest.approx(MAX_SCORE_WITH_CDL)

    def test_over_capacity_contributes_nothing(self):
        lawyer = make_lawyer(availability=LawyerAvailability(max_cases=5, current_cases=9))
        full = make_lawyer(availability=LawyerAvailability(max_cases=5, current_cases=5))
        assert score_lawyer(lawyer, SPEEDING_WA) == score_lawyer(full, SPEEDING_WA)
        assert score_lawyer(lawyer, SPEEDING_WA) == pytest.approx(79.5)

    def test_unrated_newcomer(self):
        lawyer = make_lawyer(
            years_of_experience=0,
            rating=LawyerRating(),
            statistics=LawyerStatistics(),
            availability=LawyerAvailability(max_cases=20, current_cases=0)
        )
        assert score_lawyer(lawyer, SPEEDING_WA) == pytest.approx(45)
