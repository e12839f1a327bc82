"""
Unavailability (blackout) rule matching.

A rule blocks a minute when the minute's clinic-local date is one of the
rule's dates, the minute-of-day lies in ``[start_time, end_time)`` and the
rule targets the professional, either explicitly or through ``"all"``.
Any matching rule blocks; there is no precedence between rules.
"""

from datetime import date, datetime, time, timedelta
from typing import Any, Iterable, Optional

from clinic_backend.core.clock import to_clinic_local
from clinic_backend.scheduling.business_hours import minutes_of_day
from clinic_backend.scheduling.overlap import intervals_overlap

ALL_PROFESSIONALS = 'all'


def _as_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def _as_time(value: Any) -> time:
    if isinstance(value, time):
        return value
    return time.fromisoformat(str(value))


def rule_dates(rule: Any) -> set[date]:
    return {_as_date(value) for value in (rule.dates or [])}


def rule_targets(rule: Any, professional_id: Optional[int]) -> bool:
    """
    True when the rule applies to ``professional_id``.

    With no professional pinned only rules for everyone apply. An empty id
    list is stored by older clients to mean everyone.
    """
    targets = {str(value) for value in (rule.professional_ids or [])}
    if not targets or ALL_PROFESSIONALS in targets:
        return True
    if professional_id is None:
        return False
    return str(professional_id) in targets


def rule_minutes(rule: Any) -> tuple[int, int]:
    return minutes_of_day(_as_time(rule.start_time)), minutes_of_day(_as_time(rule.end_time))


def match_unavailability(instant: datetime, rules: Iterable[Any], professional_id: Optional[int]) -> Any:
    """Return the first rule blocking ``instant`` for the professional, or None."""
    local = to_clinic_local(instant)
    minute = minutes_of_day(local.time())
    return find_blocking_rule(local.date(), minute, minute + 1, rules, professional_id)


def find_blocking_rule(
    target_date: date,
    start_minute: int,
    end_minute: int,
    rules: Iterable[Any],
    professional_id: Optional[int],
) -> Any:
    """Return the first rule blocking any minute of ``[start_minute, end_minute)`` on ``target_date``."""
    for rule in rules:
        if target_date not in rule_dates(rule):
            continue
        if not rule_targets(rule, professional_id):
            continue
        rule_start, rule_end = rule_minutes(rule)
        if intervals_overlap(start_minute, end_minute, rule_start, rule_end):
            return rule
    return None


def find_blocking_rule_for_range(
    start: datetime,
    end: datetime,
    rules: Iterable[Any],
    professional_id: Optional[int],
) -> Any:
    """Range variant over instants; a range spanning midnight is checked day by day."""
    rules = list(rules)
    local_start = to_clinic_local(start)
    local_end = to_clinic_local(end)
    day = local_start.date()
    while datetime.combine(day, time(0, 0)) < local_end:
        day_start = datetime.combine(day, time(0, 0))
        segment_start = max(local_start, day_start)
        segment_end = min(local_end, day_start + timedelta(days=1))
        start_minute = int((segment_start - day_start).total_seconds() // 60)
        end_minute = int((segment_end - day_start).total_seconds() // 60)
        rule = find_blocking_rule(day, start_minute, end_minute, rules, professional_id)
        if rule is not None:
            return rule
        day += timedelta(days=1)
    return None
