from __future__ import annotations

from typing import Iterable, Optional

from errors import ValidationError
from models import ExerciseEntry, ExerciseSet, RecurrenceType

MAX_NAME_LENGTH = 100


def validate_name(name: str, field: str = "name") -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError(field, "name cannot be empty")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(
            field, f"name cannot exceed {MAX_NAME_LENGTH} characters"
        )
    return name


def validate_sets(sets: list[ExerciseSet], field: str = "sets") -> list[ExerciseSet]:
    if not sets:
        raise ValidationError(field, "must have at least one set")
    for i, s in enumerate(sets):
        if s.rest is not None and s.rest < 0:
            raise ValidationError(f"{field}[{i}].rest", "rest cannot be negative")
        if s.weight is not None and s.weight < 0:
            raise ValidationError(f"{field}[{i}].weight", "weight cannot be negative")
        if s.value < 0:
            raise ValidationError(f"{field}[{i}].value", "value cannot be negative")
    return [s if s.rest != 0 else ExerciseSet(s.value, s.weight, None) for s in sets]


def validate_rest(rest: Optional[int], field: str = "rest_after_exercise") -> Optional[int]:
    """Return ``rest`` with 0 normalized to ``None``."""
    if rest is None or rest == 0:
        return None
    if rest < 0:
        raise ValidationError(field, "rest cannot be negative")
    return int(rest)


def validate_order_index(order_index: int, field: str = "order_index") -> int:
    if order_index < 0:
        raise ValidationError(field, "order index must be >= 0")
    return order_index


def validate_order_indices(indices: Iterable[int], field: str = "order_index") -> None:
    """Order indices must be a permutation of ``0..n-1``."""
    values = list(indices)
    for index in values:
        validate_order_index(index, field)
    if sorted(values) != list(range(len(values))):
        raise ValidationError(field, "order indices must be contiguous from 0")


def validate_offset_days(
    recurrence_type: RecurrenceType, offset_days: Optional[int]
) -> Optional[int]:
    if recurrence_type is RecurrenceType.OFFSET:
        if offset_days is None or offset_days < 1:
            raise ValidationError(
                "offset_days", "offset days must be >= 1 for offset recurrence"
            )
        return int(offset_days)
    return None


def validate_entry(entry: ExerciseEntry, field: str = "exercises") -> ExerciseEntry:
    """Validate one exercise entry and return a normalized copy."""
    sets = validate_sets(entry.sets, f"{field}.sets")
    rest = validate_rest(entry.rest_after_exercise, f"{field}.rest_after_exercise")
    validate_order_index(entry.order_index, f"{field}.order_index")
    return ExerciseEntry(
        entry.exercise_id,
        entry.type,
        entry.mode,
        sets,
        entry.order_index,
        rest,
    )


def validate_entries(entries: list[ExerciseEntry]) -> list[ExerciseEntry]:
    """Validate a full exercise list and return it sorted by order index."""
    checked = [validate_entry(e, f"exercises[{i}]") for i, e in enumerate(entries)]
    validate_order_indices((e.order_index for e in checked), "exercises.order_index")
    return sorted(checked, key=lambda e: e.order_index)
