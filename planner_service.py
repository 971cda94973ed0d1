from __future__ import annotations

import datetime
from typing import Optional

import structlog

from algorithms.recurrence import RecurrenceEngine
from db import (
    Database,
    ExerciseRepository,
    ScheduleOverrideRepository,
    ScheduleRepository,
    TemplateExerciseRepository,
    WorkoutTemplateRepository,
)
from errors import NotFoundError, ValidationError
from models import (
    ExerciseEntry,
    ExerciseMode,
    ExerciseSet,
    ExerciseType,
    OverrideExercise,
    RecurrenceType,
    Schedule,
    ScheduleDayOverride,
    TemplateExercise,
    WorkoutTemplate,
    to_civil_date,
)

log = structlog.get_logger(__name__)

DEFAULT_ICON_CODE_POINT = 0xE28D


class PlannerService:
    """Templates, schedules and per-date overrides.

    The override resolver lives here: for one occurrence (schedule, date) the
    override's exercise list wins outright when the override row exists,
    otherwise the template's current list is used. The two are never merged.
    """

    def __init__(
        self,
        db: Database,
        exercise_repo: ExerciseRepository | None = None,
        template_repo: WorkoutTemplateRepository | None = None,
        template_exercise_repo: TemplateExerciseRepository | None = None,
        schedule_repo: ScheduleRepository | None = None,
        override_repo: ScheduleOverrideRepository | None = None,
    ) -> None:
        self.db = db
        self.exercises = exercise_repo or ExerciseRepository(db)
        self.templates = template_repo or WorkoutTemplateRepository(db)
        self.template_exercises = template_exercise_repo or TemplateExerciseRepository(db)
        self.schedules = schedule_repo or ScheduleRepository(db)
        self.overrides = override_repo or ScheduleOverrideRepository(db)

    # templates

    async def create_template(
        self, name: str, icon_code_point: int = DEFAULT_ICON_CODE_POINT
    ) -> int:
        template_id = await self.templates.create(name, icon_code_point)
        log.info("template_created", template_id=template_id)
        return template_id

    async def rename_template(self, template_id: int, name: str) -> None:
        await self.templates.update(template_id, name=name)

    async def change_template_icon(self, template_id: int, icon_code_point: int) -> None:
        await self.templates.update(template_id, icon_code_point=icon_code_point)

    async def disable_template(self, template_id: int) -> None:
        await self.templates.set_disabled(template_id, True)

    async def enable_template(self, template_id: int) -> None:
        await self.templates.set_disabled(template_id, False)

    async def delete_template(self, template_id: int, detach_history: bool = False) -> None:
        await self.templates.delete(template_id, detach_history=detach_history)
        log.info("template_deleted", template_id=template_id, detach_history=detach_history)

    async def template_exercises_for(self, workout_id: int) -> list[TemplateExercise]:
        return await self.template_exercises.fetch_for_workout(workout_id)

    async def _entry_for(
        self,
        exercise_id: int,
        order_index: int,
        *,
        sets: Optional[list[ExerciseSet]] = None,
        ex_type: Optional[ExerciseType] = None,
        mode: Optional[ExerciseMode] = None,
        rest_after_exercise: Optional[int] = None,
    ) -> ExerciseEntry:
        exercise = await self.exercises.fetch_detail(exercise_id)
        return ExerciseEntry(
            exercise_id=exercise.id,
            type=ex_type or exercise.type,
            mode=mode or exercise.mode,
            sets=list(sets) if sets is not None else list(exercise.sets),
            order_index=order_index,
            rest_after_exercise=(
                rest_after_exercise
                if rest_after_exercise is not None
                else exercise.rest_after_exercise
            ),
        )

    async def add_exercise_to_workout(
        self,
        workout_id: int,
        exercise_id: int,
        *,
        sets: Optional[list[ExerciseSet]] = None,
        ex_type: Optional[ExerciseType] = None,
        mode: Optional[ExerciseMode] = None,
        rest_after_exercise: Optional[int] = None,
    ) -> int:
        """Append an exercise to a template; unspecified fields come from
        the exercise library entry."""
        await self.templates.fetch_detail(workout_id)
        position = await self.template_exercises.next_order_index(workout_id)
        entry = await self._entry_for(
            exercise_id,
            position,
            sets=sets,
            ex_type=ex_type,
            mode=mode,
            rest_after_exercise=rest_after_exercise,
        )
        return await self.template_exercises.add(workout_id, entry)

    async def update_template_exercise(self, exercise: TemplateExercise) -> None:
        await self.template_exercises.update(exercise)

    async def remove_exercise_from_workout(self, template_exercise_id: int) -> None:
        await self.template_exercises.remove(template_exercise_id)

    async def reorder_template_exercises(self, workout_id: int, order: list[int]) -> None:
        await self.template_exercises.reorder(workout_id, order)

    # schedules

    async def schedule_workout(
        self,
        workout_id: int,
        start_date,
        recurrence_type: RecurrenceType,
        offset_days: Optional[int] = None,
    ) -> int:
        await self.templates.fetch_detail(workout_id)
        schedule_id = await self.schedules.create(
            workout_id, start_date, recurrence_type, offset_days
        )
        log.info(
            "schedule_created",
            schedule_id=schedule_id,
            workout_id=workout_id,
            recurrence_type=RecurrenceType(recurrence_type).value,
        )
        return schedule_id

    async def update_schedule(self, schedule: Schedule) -> None:
        await self.schedules.update(schedule)

    async def delete_schedule(self, schedule_id: int) -> None:
        await self.schedules.delete(schedule_id)
        log.info("schedule_deleted", schedule_id=schedule_id)

    async def schedules_on(self, date) -> list[Schedule]:
        """Every schedule whose rule fires on ``date``, in id order."""
        return [
            s
            for s in await self.schedules.fetch_all()
            if RecurrenceEngine.occurs_on(s, date)
        ]

    async def live_schedules_on(self, date) -> list[tuple[Schedule, WorkoutTemplate]]:
        """Schedules firing on ``date`` whose template exists and is enabled."""
        templates = {t.id: t for t in await self.templates.fetch_all(include_disabled=False)}
        return [
            (s, templates[s.workout_id])
            for s in await self.schedules_on(date)
            if s.workout_id in templates
        ]

    async def occurrences(self, schedule_id: int, start, end) -> list[datetime.date]:
        schedule = await self.schedules.fetch_detail(schedule_id)
        return RecurrenceEngine.occurrences_in_range(schedule, start, end)

    # overrides

    async def effective_exercises(self, schedule: Schedule, date) -> list[ExerciseEntry]:
        override = await self.overrides.get(schedule.id, date)
        if override is not None:
            rows = await self.overrides.fetch_exercises(override.id)
        else:
            rows = await self.template_exercises.fetch_for_workout(schedule.workout_id)
        return [row.as_entry() for row in rows]

    async def has_override(self, schedule_id: int, date) -> bool:
        return await self.overrides.get(schedule_id, date) is not None

    async def override_exercises(self, schedule_id: int, date) -> list[OverrideExercise]:
        override = await self.overrides.get(schedule_id, date)
        if override is None:
            return []
        return await self.overrides.fetch_exercises(override.id)

    @staticmethod
    def _check_occurs(schedule: Schedule, date) -> None:
        if not RecurrenceEngine.occurs_on(schedule, date):
            raise ValidationError("date", "schedule does not occur on this date")

    async def get_or_create_override(self, schedule_id: int, date) -> ScheduleDayOverride:
        existing = await self.overrides.get(schedule_id, date)
        if existing is not None:
            return existing
        schedule = await self.schedules.fetch_detail(schedule_id)
        self._check_occurs(schedule, date)
        override_id = await self.overrides.create(schedule_id, date)
        log.info("override_created", schedule_id=schedule_id, date=to_civil_date(date).isoformat())
        return ScheduleDayOverride(override_id, schedule_id, to_civil_date(date))

    async def customize_from_template(self, schedule_id: int, date) -> ScheduleDayOverride:
        """Start an override as a copy of the template's current exercises.

        The copy keeps order and set data and records ``workout_exercise_id``
        for traceability only; later template edits do not reach it.
        """
        schedule = await self.schedules.fetch_detail(schedule_id)
        self._check_occurs(schedule, date)
        template_rows = await self.template_exercises.fetch_for_workout(schedule.workout_id)
        pairs = [(row.as_entry(), row.id) for row in template_rows]
        existing = await self.overrides.get(schedule_id, date)
        if existing is None:
            override_id = await self.overrides.create(schedule_id, date, pairs)
            log.info(
                "override_created",
                schedule_id=schedule_id,
                date=to_civil_date(date).isoformat(),
                copied=len(pairs),
            )
            return ScheduleDayOverride(override_id, schedule_id, to_civil_date(date))
        if await self.overrides.fetch_exercises(existing.id):
            raise ValidationError("exercises", "override already has exercises")
        await self.overrides.copy_exercises(existing.id, pairs)
        return existing

    async def add_override_exercise(
        self,
        schedule_id: int,
        date,
        exercise_id: int,
        *,
        sets: Optional[list[ExerciseSet]] = None,
        ex_type: Optional[ExerciseType] = None,
        mode: Optional[ExerciseMode] = None,
        rest_after_exercise: Optional[int] = None,
    ) -> int:
        override = await self.get_or_create_override(schedule_id, date)
        position = await self.overrides.next_order_index(override.id)
        entry = await self._entry_for(
            exercise_id,
            position,
            sets=sets,
            ex_type=ex_type,
            mode=mode,
            rest_after_exercise=rest_after_exercise,
        )
        return await self.overrides.add_exercise(override.id, entry)

    async def update_override_exercise(self, exercise: OverrideExercise) -> None:
        await self.overrides.update_exercise(exercise)

    async def remove_override_exercise(self, override_exercise_id: int) -> None:
        await self.overrides.remove_exercise(override_exercise_id)

    async def reorder_override_exercises(
        self, schedule_id: int, date, order: list[int]
    ) -> None:
        override = await self.overrides.get(schedule_id, date)
        if override is None:
            raise NotFoundError("override not found")
        await self.overrides.reorder_exercises(override.id, order)

    async def revert_to_template(self, schedule_id: int, date) -> bool:
        override = await self.overrides.get(schedule_id, date)
        if override is None:
            return False
        await self.overrides.delete(override.id)
        log.info("override_reverted", schedule_id=schedule_id, date=to_civil_date(date).isoformat())
        return True
