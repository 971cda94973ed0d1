from __future__ import annotations

import datetime
from typing import Optional

from models import RecurrenceType, Schedule, to_civil_date


class RecurrenceEngine:
    """Pure date arithmetic for schedule recurrence rules.

    Every input is reduced to a civil date first, so a ``datetime`` with a
    time-of-day behaves exactly like the bare date.
    """

    @staticmethod
    def period(schedule: Schedule) -> Optional[int]:
        """Days between two consecutive occurrences, ``None`` if the rule
        fires at most once or never."""
        rtype = RecurrenceType(schedule.recurrence_type)
        if rtype is RecurrenceType.ONE_OFF:
            return None
        if rtype is RecurrenceType.WEEKLY:
            return 7
        if rtype is RecurrenceType.OFFSET:
            offset = schedule.offset_days
            if offset is None or offset < 1:
                return None
            return int(offset)
        raise ValueError(f"unknown recurrence type: {rtype}")

    @staticmethod
    def occurs_on(schedule: Schedule, date) -> bool:
        target = to_civil_date(date)
        start = to_civil_date(schedule.start_date)
        if target < start:
            return False
        rtype = RecurrenceType(schedule.recurrence_type)
        if rtype is RecurrenceType.ONE_OFF:
            return target == start
        if rtype is RecurrenceType.WEEKLY:
            return target.weekday() == start.weekday()
        if rtype is RecurrenceType.OFFSET:
            offset = schedule.offset_days
            if offset is None or offset < 1:
                return False
            return (target - start).days % offset == 0
        raise ValueError(f"unknown recurrence type: {rtype}")

    @staticmethod
    def naive_occurrences_in_range(schedule: Schedule, start, end) -> list[datetime.date]:
        """Reference implementation testing every day of the range."""
        current = to_civil_date(start)
        last = to_civil_date(end)
        result: list[datetime.date] = []
        while current <= last:
            if RecurrenceEngine.occurs_on(schedule, current):
                result.append(current)
            current += datetime.timedelta(days=1)
        return result

    @staticmethod
    def occurrences_in_range(schedule: Schedule, start, end) -> list[datetime.date]:
        """Return every occurrence between ``start`` and ``end`` inclusive."""
        first = to_civil_date(start)
        last = to_civil_date(end)
        anchor = to_civil_date(schedule.start_date)
        if last < first or last < anchor:
            return []
        rtype = RecurrenceType(schedule.recurrence_type)
        if rtype is RecurrenceType.ONE_OFF:
            return [anchor] if first <= anchor <= last else []
        step = RecurrenceEngine.period(schedule)
        if step is None:
            return []
        if first <= anchor:
            current = anchor
        else:
            skipped = -(-(first - anchor).days // step)
            current = anchor + datetime.timedelta(days=skipped * step)
        result: list[datetime.date] = []
        delta = datetime.timedelta(days=step)
        while current <= last:
            result.append(current)
            current += delta
        return result

    @staticmethod
    def next_occurrence(schedule: Schedule, after) -> Optional[datetime.date]:
        """First occurrence on or after ``after``."""
        first = to_civil_date(after)
        anchor = to_civil_date(schedule.start_date)
        step = RecurrenceEngine.period(schedule)
        if RecurrenceType(schedule.recurrence_type) is RecurrenceType.ONE_OFF:
            return anchor if first <= anchor else None
        if step is None:
            return None
        if first <= anchor:
            return anchor
        skipped = -(-(first - anchor).days // step)
        return anchor + datetime.timedelta(days=skipped * step)


def occurs_on(schedule: Schedule, date) -> bool:
    return RecurrenceEngine.occurs_on(schedule, date)


def occurrences_in_range(schedule: Schedule, start, end) -> list[datetime.date]:
    return RecurrenceEngine.occurrences_in_range(schedule, start, end)
