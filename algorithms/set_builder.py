from __future__ import annotations

from typing import Optional

from models import ExerciseMode, ExerciseSet, ExerciseType


class SetBuilder:
    """Builds set lists from the compact values a form collects.

    These are the "smart defaults" used when an exercise is added to a
    template or when legacy planned exercises are converted. No rest is
    attached to the final set.
    """

    DEFAULT_SETS = 4
    DEFAULT_REPS = 10
    DEFAULT_PYRAMID_TOP = 10
    DEFAULT_SECONDS = 30

    @staticmethod
    def _with_rest(values: list[int], weight: float, rests: list[Optional[int]]) -> list[ExerciseSet]:
        sets = []
        last = len(values) - 1
        for i, value in enumerate(values):
            rest = rests[i] if i < len(rests) and i != last else None
            sets.append(ExerciseSet(value=value, weight=weight, rest=rest or None))
        return sets

    @classmethod
    def uniform(
        cls,
        count: int,
        value: int,
        weight: float = 0.0,
        rest: Optional[int] = None,
    ) -> list[ExerciseSet]:
        """``count`` identical sets: the reps and static modes."""
        count = max(1, count)
        return cls._with_rest([value] * count, weight, [rest] * count)

    @classmethod
    def variable(
        cls,
        values: list[int],
        weight: float = 0.0,
        rests: Optional[list[int]] = None,
        rest: Optional[int] = None,
    ) -> list[ExerciseSet]:
        """One set per entry of ``values`` with optional per-set rest."""
        if not values:
            values = [cls.DEFAULT_REPS] * cls.DEFAULT_SETS
        if rests is None:
            rests = [rest] * len(values)
        return cls._with_rest(list(values), weight, list(rests))

    @classmethod
    def pyramid(
        cls, top: int, weight: float = 0.0, rest: Optional[int] = None
    ) -> list[ExerciseSet]:
        """1, 2, ... top ... 2, 1 reps; total reps equal ``top ** 2``."""
        top = max(1, top)
        values = list(range(1, top + 1)) + list(range(top - 1, 0, -1))
        return cls._with_rest(values, weight, [rest] * len(values))

    @classmethod
    def for_mode(
        cls,
        mode: ExerciseMode,
        *,
        sets: Optional[int] = None,
        reps: Optional[int] = None,
        reps_per_set: Optional[list[int]] = None,
        pyramid_top: Optional[int] = None,
        seconds: Optional[int] = None,
        weight: float = 0.0,
        rest: Optional[int] = None,
        rest_per_set: Optional[list[int]] = None,
    ) -> list[ExerciseSet]:
        mode = ExerciseMode(mode)
        count = sets or cls.DEFAULT_SETS
        if mode is ExerciseMode.REPS:
            return cls.uniform(count, reps or cls.DEFAULT_REPS, weight, rest)
        if mode is ExerciseMode.VARIABLE_SETS:
            values = reps_per_set or [reps or cls.DEFAULT_REPS] * count
            return cls.variable(values, weight, rest_per_set, rest)
        if mode is ExerciseMode.PYRAMID:
            return cls.pyramid(pyramid_top or cls.DEFAULT_PYRAMID_TOP, weight, rest)
        if mode is ExerciseMode.STATIC:
            return cls.uniform(count, seconds or cls.DEFAULT_SECONDS, weight, rest)
        raise ValueError(f"unknown exercise mode: {mode}")

    @staticmethod
    def type_for_mode(mode: ExerciseMode) -> ExerciseType:
        """Static holds are timed; every other mode counts reps."""
        if ExerciseMode(mode) is ExerciseMode.STATIC:
            return ExerciseType.STATIC
        return ExerciseType.DYNAMIC
