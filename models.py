from __future__ import annotations

import datetime
import json
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional


class ExerciseType(str, Enum):
    DYNAMIC = "dynamic"
    STATIC = "static"


class ExerciseMode(str, Enum):
    REPS = "reps"
    VARIABLE_SETS = "variableSets"
    PYRAMID = "pyramid"
    STATIC = "static"


class RecurrenceType(str, Enum):
    ONE_OFF = "oneOff"
    WEEKLY = "weekly"
    OFFSET = "offset"


class OccurrenceState(str, Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    ORPHANED_COMPLETED = "orphanedCompleted"


def to_civil_date(value: datetime.date | datetime.datetime | str) -> datetime.date:
    """Strip time-of-day from ``value`` and return a plain ``date``."""
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    if isinstance(value, str):
        return datetime.date.fromisoformat(value.strip()[:10])
    raise TypeError(f"cannot convert {type(value).__name__} to a date")


@dataclass(frozen=True, slots=True)
class ExerciseSet:
    value: int
    weight: float = 0.0
    rest: Optional[int] = None

    def to_dict(self) -> dict:
        return {"value": self.value, "weight": self.weight, "rest": self.rest}

    @classmethod
    def from_dict(cls, data: dict) -> "ExerciseSet":
        rest = data.get("rest")
        return cls(
            value=int(data["value"]),
            weight=float(data.get("weight") or 0.0),
            rest=None if not rest else int(rest),
        )


def sets_to_json(sets: list[ExerciseSet]) -> str:
    return json.dumps([s.to_dict() for s in sets])


def sets_from_json(raw: str) -> list[ExerciseSet]:
    return [ExerciseSet.from_dict(item) for item in json.loads(raw)]


@dataclass(slots=True)
class Exercise:
    id: int
    name: str
    type: ExerciseType
    mode: ExerciseMode
    sets: list[ExerciseSet]
    is_default: bool = False
    is_disabled: bool = False
    rest_after_exercise: Optional[int] = None


@dataclass(slots=True)
class ExerciseEntry:
    """An exercise as planned or performed: the value shared by template,
    override and completed exercises."""

    exercise_id: int
    type: ExerciseType
    mode: ExerciseMode
    sets: list[ExerciseSet]
    order_index: int = 0
    rest_after_exercise: Optional[int] = None

    def as_entry(self) -> "ExerciseEntry":
        return ExerciseEntry(
            self.exercise_id,
            self.type,
            self.mode,
            list(self.sets),
            self.order_index,
            self.rest_after_exercise,
        )

    def with_order(self, order_index: int) -> "ExerciseEntry":
        return replace(self, order_index=order_index)


@dataclass(slots=True)
class TemplateExercise(ExerciseEntry):
    id: int = 0
    workout_id: int = 0


@dataclass(slots=True)
class OverrideExercise(ExerciseEntry):
    id: int = 0
    override_id: int = 0
    workout_exercise_id: Optional[int] = None


@dataclass(slots=True)
class CompletedExercise(ExerciseEntry):
    id: int = 0
    completed_workout_id: int = 0


@dataclass(slots=True)
class WorkoutTemplate:
    id: int
    name: str
    icon_code_point: int
    is_disabled: bool = False


@dataclass(slots=True)
class Schedule:
    id: int
    workout_id: int
    start_date: datetime.date
    recurrence_type: RecurrenceType
    offset_days: Optional[int] = None


@dataclass(slots=True)
class ScheduleDayOverride:
    id: int
    schedule_id: int
    date: datetime.date


@dataclass(slots=True)
class CompletedWorkout:
    id: int
    workout_id: Optional[int]
    workout_name: str
    icon_code_point: int
    scheduled_date: datetime.date
    completed_at: datetime.datetime
    exercises: list[CompletedExercise] = field(default_factory=list)
    legacy_instance_id: Optional[str] = None


@dataclass(slots=True)
class CalendarEntry:
    """One displayable occurrence on a calendar day.

    Live entries carry their schedule; orphaned entries are synthesized from a
    completion snapshot and have ``schedule_id`` set to ``None``.
    """

    date: datetime.date
    workout_id: Optional[int]
    workout_name: str
    icon_code_point: int
    exercises: list[ExerciseEntry]
    state: OccurrenceState
    schedule_id: Optional[int] = None
    recurrence_type: Optional[RecurrenceType] = None
    has_override: bool = False
    completed_id: Optional[int] = None

    @property
    def is_completed(self) -> bool:
        return self.state is not OccurrenceState.SCHEDULED

    @property
    def is_orphaned(self) -> bool:
        return self.state is OccurrenceState.ORPHANED_COMPLETED
