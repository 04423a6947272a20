"""
Case lifecycle rules: status transitions, pricing quotes, quota resets and
lawyer statistics. Everything here is pure; services persist the results.
"""

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, FrozenSet, Optional, Tuple

from config.settings import CasePricingConfig
from models.case import TimelineEntry
from models.enums import CaseStatus, OutcomeType, ViolationType
from models.lawyer import LawyerRating, LawyerStatistics
from models.user import UserQuota
from utils.helpers import add_months

S = CaseStatus

# Self-loops: reassignment keeps a case `assigned`, a hearing can be
# rescheduled, and a closed case can take further notes (e.g. a late refund).
ALLOWED_TRANSITIONS: Dict[CaseStatus, FrozenSet[CaseStatus]] = {
    S.PENDING: frozenset({S.ASSIGNED, S.IN_PROGRESS, S.CLOSED}),
    S.ASSIGNED: frozenset({S.ASSIGNED, S.IN_PROGRESS, S.CLOSED}),
    S.IN_PROGRESS: frozenset({S.COURT_SCHEDULED, S.DISMISSED, S.REDUCED, S.LOST, S.CLOSED}),
    S.COURT_SCHEDULED: frozenset({S.COURT_SCHEDULED, S.DISMISSED, S.REDUCED, S.LOST, S.CLOSED}),
    S.DISMISSED: frozenset({S.CLOSED}),
    S.REDUCED: frozenset({S.CLOSED}),
    S.LOST: frozenset({S.CLOSED}),
    S.CLOSED: frozenset({S.CLOSED}),
}

TERMINAL_STATUSES = frozenset({S.DISMISSED, S.REDUCED, S.LOST, S.CLOSED})
ACTIVE_STATUSES = frozenset({S.ASSIGNED, S.IN_PROGRESS, S.COURT_SCHEDULED})


class InvalidTransitionError(ValueError):
    """Raised when a status change is not in the transition table"""

    def __init__(self, current: CaseStatus, requested: CaseStatus):
        self.current = current
        self.requested = requested
        super().__init__(f"Invalid status transition: {current.value} -> {requested.value}")


def can_transition(current: CaseStatus, requested: CaseStatus) -> bool:
    return requested in ALLOWED_TRANSITIONS.get(current, frozenset())


def validate_transition(current: CaseStatus, requested: CaseStatus):
    if not can_transition(current, requested):
        raise InvalidTransitionError(current, requested)


def make_timeline_entry(status: CaseStatus, note: str, actor_id: Optional[str],
                        now: datetime) -> TimelineEntry:
    return TimelineEntry(status=status, note=note or "", updated_by=actor_id, timestamp=now)


def releases_capacity(current: CaseStatus, requested: CaseStatus) -> bool:
    """True when the case stops occupying its lawyer's capacity"""
    return current not in TERMINAL_STATUSES and requested in TERMINAL_STATUSES


# Decided statuses and the only outcome each can carry
OUTCOME_FOR_STATUS: Dict[CaseStatus, OutcomeType] = {
    S.DISMISSED: OutcomeType.DISMISSED,
    S.REDUCED: OutcomeType.REDUCED,
    S.LOST: OutcomeType.GUILTY,
}


def outcome_matches_status(status: CaseStatus, outcome: OutcomeType) -> bool:
    """False when a decided status is paired with a different outcome"""
    expected = OUTCOME_FOR_STATUS.get(status)
    return expected is None or outcome == expected


def quote_case_price(violation_type: ViolationType, is_cdl_driver: bool) -> Decimal:
    """Quoted price for a new case; violation-specific prices win over the CDL price"""
    price = CasePricingConfig.VIOLATION_PRICES.get(ViolationType(violation_type).value)
    if price is not None:
        return price
    if is_cdl_driver:
        return CasePricingConfig.CDL_PRICE
    return CasePricingConfig.BASE_PRICE


def apply_quota_reset(quota: UserQuota, now: datetime) -> Tuple[UserQuota, bool]:
    """
    Reset the monthly counter once the reset date has passed.

    Returns the (possibly new) quota and whether a reset happened. A quota
    without a reset date is treated as due.
    """
    if quota.reset_date is not None and now < quota.reset_date:
        return quota, False
    return quota.model_copy(update={"cases_used": 0, "reset_date": add_months(now, 1)}), True


def quota_exhausted(quota: UserQuota) -> bool:
    return quota.cases_used >= quota.cases_per_month


def compute_success_rate(stats: LawyerStatistics) -> int:
    """round(100 * (won + dismissed + reduced) / total), 0 with no cases"""
    if stats.total_cases == 0:
        return 0
    successful = stats.cases_won + stats.cases_dismissed + stats.cases_reduced
    ratio = Decimal(successful * 100) / Decimal(stats.total_cases)
    return int(ratio.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def counts_toward_statistics(previous: Optional[OutcomeType], new: OutcomeType) -> bool:
    """A case contributes to its lawyer's statistics once, on its first decided outcome"""
    if new == OutcomeType.PENDING:
        return False
    return previous is None or previous == OutcomeType.PENDING


def apply_outcome(stats: LawyerStatistics, outcome: OutcomeType) -> LawyerStatistics:
    """Lawyer statistics after a decided outcome"""
    updated = stats.model_copy()
    if outcome == OutcomeType.DISMISSED:
        updated.cases_dismissed += 1
    elif outcome == OutcomeType.REDUCED:
        updated.cases_reduced += 1
    updated.total_cases += 1
    updated.success_rate = compute_success_rate(updated)
    return updated


def apply_rating(rating: LawyerRating, new_rating: int) -> LawyerRating:
    """Running average: (avg * count + new) / (count + 1)"""
    total = rating.average * rating.count + new_rating
    count = rating.count + 1
    return LawyerRating(average=total / count, count=count)
