"""
Lawyer fitness scoring for case assignment

Pure and deterministic: the score depends only on the lawyer record and the
case request. Weights (points):

    specialization match          40
    success rate                  30  (linear in successRate / 100)
    experience                    15  (linear, capped at 20 years)
    client rating                 10  (linear in average / 5)
    spare capacity                 5  (1 - current / max)
    CDL driver + CDL specialist   10  (bonus)

Maximum is 100, or 110 with the CDL bonus. Intermediate values are never rounded.
"""

from dataclasses import dataclass

from models.enums import Specialization, ViolationType
from models.lawyer import Lawyer

SPECIALIZATION_POINTS = 40.0
SUCCESS_RATE_POINTS = 30.0
EXPERIENCE_POINTS = 15.0
EXPERIENCE_CAP_YEARS = 20.0
RATING_POINTS = 10.0
CAPACITY_POINTS = 5.0
CDL_BONUS_POINTS = 10.0

MAX_SCORE = SPECIALIZATION_POINTS + SUCCESS_RATE_POINTS + EXPERIENCE_POINTS + RATING_POINTS + CAPACITY_POINTS
MAX_SCORE_WITH_CDL = MAX_SCORE + CDL_BONUS_POINTS


@dataclass(frozen=True)
class CaseRequest:
    """The parts of a case the matcher looks at"""
    violation_type: ViolationType
    state: str
    is_cdl_driver: bool = False


def score_lawyer(lawyer: Lawyer, request: CaseRequest) -> float:
    """Compute the lawyer's fitness score for a case"""
    score = 0.0
    specializations = {Specialization(s).value for s in lawyer.specializations}

    if request.violation_type.value in specializations:
        score += SPECIALIZATION_POINTS

    score += (lawyer.statistics.success_rate / 100) * SUCCESS_RATE_POINTS

    score += min(lawyer.years_of_experience / EXPERIENCE_CAP_YEARS * EXPERIENCE_POINTS, EXPERIENCE_POINTS)

    score += (lawyer.rating.average / 5) * RATING_POINTS

    availability = lawyer.availability
    # Candidates are always below capacity; the clamp keeps outsiders non-negative
    capacity_ratio = min(availability.current_cases / availability.max_cases, 1.0)
    score += (1 - capacity_ratio) * CAPACITY_POINTS

    if request.is_cdl_driver and Specialization.CDL_VIOLATIONS.value in specializations:
        score += CDL_BONUS_POINTS

    return score
