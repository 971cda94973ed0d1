import os
import sys
import datetime
import random

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from algorithms.recurrence import RecurrenceEngine, occurs_on, occurrences_in_range
from models import RecurrenceType, Schedule

D = datetime.date


def make(start, rtype, offset=None):
    return Schedule(1, 1, start, rtype, offset)


def test_one_off_only_on_start_date():
    s = make(D(2025, 1, 15), RecurrenceType.ONE_OFF)
    assert occurs_on(s, D(2025, 1, 15))
    assert not occurs_on(s, D(2025, 1, 22))
    assert not occurs_on(s, D(2025, 1, 14))
    assert occurrences_in_range(s, D(2025, 1, 1), D(2025, 12, 31)) == [D(2025, 1, 15)]
    assert occurrences_in_range(s, D(2025, 1, 16), D(2025, 12, 31)) == []


def test_weekly_matches_weekday_from_start_only():
    s = make(D(2025, 1, 15), RecurrenceType.WEEKLY)
    assert occurs_on(s, D(2025, 1, 22))
    assert not occurs_on(s, D(2025, 1, 16))
    # same weekday one week before the start never occurs
    assert not occurs_on(s, D(2025, 1, 8))
    for offset in range(0, 120):
        day = D(2025, 1, 1) + datetime.timedelta(days=offset)
        expected = day >= s.start_date and day.weekday() == s.start_date.weekday()
        assert occurs_on(s, day) == expected


def test_offset_every_third_day():
    s = make(D(2025, 1, 10), RecurrenceType.OFFSET, 3)
    assert occurrences_in_range(s, D(2025, 1, 10), D(2025, 1, 20)) == [
        D(2025, 1, 10),
        D(2025, 1, 13),
        D(2025, 1, 16),
        D(2025, 1, 19),
    ]


@pytest.mark.parametrize("n", [1, 2, 5, 9])
def test_offset_congruence(n):
    start = D(2024, 2, 27)
    s = make(start, RecurrenceType.OFFSET, n)
    for k in range(0, 40):
        assert occurs_on(s, start + datetime.timedelta(days=k * n))
    for delta in range(-10, 100):
        day = start + datetime.timedelta(days=delta)
        assert occurs_on(s, day) == (delta >= 0 and delta % n == 0)


def test_offset_one_is_daily():
    s = make(D(2025, 3, 1), RecurrenceType.OFFSET, 1)
    days = occurrences_in_range(s, D(2025, 2, 25), D(2025, 3, 5))
    assert days == [D(2025, 3, d) for d in range(1, 6)]


@pytest.mark.parametrize("offset", [None, 0, -1, -7])
def test_invalid_offset_never_occurs(offset):
    start = D(2025, 1, 10)
    s = make(start, RecurrenceType.OFFSET, offset)
    assert not occurs_on(s, start)
    assert not occurs_on(s, start + datetime.timedelta(days=7))
    assert occurrences_in_range(s, start, start + datetime.timedelta(days=60)) == []
    assert RecurrenceEngine.next_occurrence(s, start) is None


def test_time_of_day_is_ignored():
    s = make(datetime.datetime(2025, 1, 15, 18, 30), RecurrenceType.WEEKLY)
    assert occurs_on(s, datetime.datetime(2025, 1, 22, 6, 0))
    assert occurs_on(s, "2025-01-29T23:59:00")
    assert occurrences_in_range(
        s, datetime.datetime(2025, 1, 15, 23, 0), "2025-01-22"
    ) == [D(2025, 1, 15), D(2025, 1, 22)]


def test_reversed_range_is_empty():
    s = make(D(2025, 1, 1), RecurrenceType.OFFSET, 1)
    assert occurrences_in_range(s, D(2025, 1, 10), D(2025, 1, 5)) == []
    assert RecurrenceEngine.naive_occurrences_in_range(s, D(2025, 1, 10), D(2025, 1, 5)) == []


def test_range_is_inclusive_of_bounds():
    s = make(D(2025, 1, 1), RecurrenceType.WEEKLY)
    assert occurrences_in_range(s, D(2025, 1, 8), D(2025, 1, 15)) == [D(2025, 1, 8), D(2025, 1, 15)]


def test_next_occurrence():
    weekly = make(D(2025, 1, 15), RecurrenceType.WEEKLY)
    assert RecurrenceEngine.next_occurrence(weekly, D(2025, 1, 1)) == D(2025, 1, 15)
    assert RecurrenceEngine.next_occurrence(weekly, D(2025, 1, 16)) == D(2025, 1, 22)
    assert RecurrenceEngine.next_occurrence(weekly, D(2025, 1, 22)) == D(2025, 1, 22)
    once = make(D(2025, 1, 15), RecurrenceType.ONE_OFF)
    assert RecurrenceEngine.next_occurrence(once, D(2025, 1, 15)) == D(2025, 1, 15)
    assert RecurrenceEngine.next_occurrence(once, D(2025, 1, 16)) is None


def test_raw_string_recurrence_type_accepted():
    s = Schedule(1, 1, D(2025, 1, 10), "offset", 2)
    assert occurs_on(s, D(2025, 1, 12))


def test_stepping_matches_naive_iteration_on_random_cases():
    rng = random.Random(20250115)
    base = D(2024, 1, 1)
    for _ in range(1000):
        rtype = rng.choice(list(RecurrenceType))
        offset = rng.choice([None, -3, 0, 1, 2, 3, 5, 7, 10, 30])
        start = base + datetime.timedelta(days=rng.randint(0, 400))
        s = make(start, rtype, offset)
        first = base + datetime.timedelta(days=rng.randint(-30, 500))
        last = first + datetime.timedelta(days=rng.randint(-5, 120))
        stepped = occurrences_in_range(s, first, last)
        assert stepped == RecurrenceEngine.naive_occurrences_in_range(s, first, last)
        # restartable and side-effect free
        assert stepped == occurrences_in_range(s, first, last)
