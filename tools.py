from typing import Iterable

from models import ExerciseEntry, ExerciseMode, ExerciseSet, ExerciseType


class ExerciseTools:
    """Formatting helpers for showing exercises and sets."""

    MODE_LABELS = {
        ExerciseMode.REPS: "Reps",
        ExerciseMode.VARIABLE_SETS: "Variable",
        ExerciseMode.PYRAMID: "Pyramid",
        ExerciseMode.STATIC: "Static",
    }

    TYPE_LABELS = {
        ExerciseType.DYNAMIC: "Dynamic",
        ExerciseType.STATIC: "Static",
    }

    @staticmethod
    def format_seconds(total_seconds: int | None) -> str:
        """Return ``"1m 30s"``, ``"1m"`` or ``"45s"``; empty for no time."""
        if not total_seconds or total_seconds <= 0:
            return ""
        minutes, seconds = divmod(int(total_seconds), 60)
        if minutes and seconds:
            return f"{minutes}m {seconds}s"
        if minutes:
            return f"{minutes}m"
        return f"{seconds}s"

    @classmethod
    def mode_label(cls, mode: ExerciseMode) -> str:
        return cls.MODE_LABELS[ExerciseMode(mode)]

    @classmethod
    def type_label(cls, ex_type: ExerciseType) -> str:
        return cls.TYPE_LABELS[ExerciseType(ex_type)]

    @staticmethod
    def _weight_suffix(sets: Iterable[ExerciseSet]) -> str:
        weights = {s.weight for s in sets if s.weight}
        if len(weights) == 1:
            weight = weights.pop()
            return f" @ {weight:g}kg"
        return ""

    @classmethod
    def sets_summary(cls, mode: ExerciseMode, sets: list[ExerciseSet]) -> str:
        """One-line description such as ``"4 × 10 reps"`` or ``"Pyramid to 5"``."""
        mode = ExerciseMode(mode)
        suffix = cls._weight_suffix(sets)
        values = [s.value for s in sets]
        if not values:
            return ""
        if mode is ExerciseMode.PYRAMID:
            return f"Pyramid to {max(values)}{suffix}"
        if mode is ExerciseMode.STATIC:
            unit = "s"
        else:
            unit = " reps"
        if len(set(values)) == 1:
            return f"{len(values)} × {values[0]}{unit}{suffix}"
        joined = ", ".join(str(v) for v in values)
        return f"{len(values)} sets ({joined}){suffix}"

    @classmethod
    def entry_summary(cls, name: str, entry: ExerciseEntry) -> str:
        line = f"{name}: {cls.sets_summary(entry.mode, entry.sets)}"
        rest = cls.format_seconds(entry.rest_after_exercise)
        if rest:
            line += f", then rest {rest}"
        return line
