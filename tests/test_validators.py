import os
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from errors import ValidationError
from models import ExerciseEntry, ExerciseMode, ExerciseSet, ExerciseType, RecurrenceType
from validators import (
    validate_entries,
    validate_name,
    validate_offset_days,
    validate_rest,
    validate_sets,
)


def entry(order_index, sets=None, rest=None):
    return ExerciseEntry(
        1,
        ExerciseType.DYNAMIC,
        ExerciseMode.REPS,
        sets if sets is not None else [ExerciseSet(10)],
        order_index,
        rest,
    )


def test_name_is_stripped_and_bounded():
    assert validate_name("  Pull Ups ") == "Pull Ups"
    with pytest.raises(ValidationError) as exc:
        validate_name("   ")
    assert exc.value.field == "name"
    with pytest.raises(ValidationError):
        validate_name("x" * 101)
    assert validate_name("x" * 100) == "x" * 100


def test_sets_must_not_be_empty():
    with pytest.raises(ValidationError) as exc:
        validate_sets([])
    assert exc.value.field == "sets"


def test_negative_set_values_name_the_field():
    with pytest.raises(ValidationError) as exc:
        validate_sets([ExerciseSet(10), ExerciseSet(10, 0.0, -5)])
    assert exc.value.field == "sets[1].rest"
    with pytest.raises(ValidationError) as exc:
        validate_sets([ExerciseSet(10, -1.0)])
    assert exc.value.field == "sets[0].weight"


def test_zero_rest_normalized():
    sets = validate_sets([ExerciseSet(10, 0.0, 0), ExerciseSet(10, 0.0, 60)])
    assert [s.rest for s in sets] == [None, 60]
    assert validate_rest(0) is None
    assert validate_rest(None) is None
    assert validate_rest(30) == 30
    with pytest.raises(ValidationError):
        validate_rest(-1)


def test_offset_days_required_for_offset():
    assert validate_offset_days(RecurrenceType.OFFSET, 3) == 3
    assert validate_offset_days(RecurrenceType.WEEKLY, 3) is None
    for bad in (None, 0, -2):
        with pytest.raises(ValidationError) as exc:
            validate_offset_days(RecurrenceType.OFFSET, bad)
        assert exc.value.field == "offset_days"


def test_entries_sorted_and_contiguous():
    checked = validate_entries([entry(1), entry(0)])
    assert [e.order_index for e in checked] == [0, 1]
    assert validate_entries([]) == []
    with pytest.raises(ValidationError):
        validate_entries([entry(0), entry(2)])
    with pytest.raises(ValidationError):
        validate_entries([entry(0), entry(0)])
    with pytest.raises(ValidationError):
        validate_entries([entry(-1)])
    with pytest.raises(ValidationError):
        validate_entries([entry(0, sets=[])])
    with pytest.raises(ValidationError):
        validate_entries([entry(0, rest=-10)])
