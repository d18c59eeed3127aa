"""
Recurring Event Expander
Materializes a bounded recurrence rule into concrete occurrences
"""

from typing import List

from dateutil.relativedelta import relativedelta

from lms_backend.core.config import settings
from lms_backend.core.logging import get_logger
from lms_backend.services.calendar.models import (
    OccurrenceSpec,
    RecurrenceRule,
    RecurrenceType,
)

logger = get_logger(__name__)


def _offset(rule_type: RecurrenceType, units: int) -> relativedelta:
    if rule_type == RecurrenceType.DAILY:
        return relativedelta(days=units)
    if rule_type == RecurrenceType.WEEKLY:
        return relativedelta(weeks=units)
    if rule_type == RecurrenceType.MONTHLY:
        return relativedelta(months=units)
    return relativedelta(years=units)


def expand(rule: RecurrenceRule, base: OccurrenceSpec) -> List[OccurrenceSpec]:
    """
    Expand a recurrence rule from a base occurrence

    The k-th occurrence starts at ``base.start_time + k * interval`` units,
    computed from the base each time so month ends clamp (Jan 31 -> Feb 28)
    without drifting later occurrences. Every occurrence keeps the base
    duration.

    Args:
        rule: Recurrence rule; validated here, so an unbounded rule never expands
        base: The anchor occurrence

    Returns:
        Occurrences ordered by start time; element 0 is the anchor itself

    Raises:
        ValidationException: If the rule is malformed or unbounded
    """
    rule.check(base.start_time)

    limit = settings.RECURRENCE_MAX_OCCURRENCES
    if rule.count is not None:
        limit = min(rule.count, limit)

    duration = base.end_time - base.start_time
    occurrences: List[OccurrenceSpec] = []

    k = 0
    while len(occurrences) < limit:
        start = base.start_time + _offset(rule.type, rule.interval * k)
        if rule.end_date is not None and start > rule.end_date:
            break
        occurrences.append(
            base.model_copy(update={"start_time": start, "end_time": start + duration})
        )
        k += 1

    logger.debug(
        f"Expanded {rule.type.value} rule (interval={rule.interval}, count={rule.count}, "
        f"end={rule.end_date}) into {len(occurrences)} occurrences"
    )
    return occurrences
