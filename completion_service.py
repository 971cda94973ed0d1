from __future__ import annotations

import datetime
from typing import Iterable, Optional

import structlog

from algorithms.recurrence import RecurrenceEngine
from db import CompletedWorkoutRepository, Database
from errors import NotFoundError, OrphanDeletionNotConfirmed, ValidationError
from models import (
    CompletedExercise,
    CompletedWorkout,
    ExerciseEntry,
    OccurrenceState,
    to_civil_date,
)
from planner_service import PlannerService
from validators import validate_entries, validate_entry, validate_order_indices

log = structlog.get_logger(__name__)


class CompletionService:
    """Records completions as frozen snapshots and answers questions about
    them.

    A completion copies the template name, icon and exercise list at the
    moment it is recorded. Later edits or deletion of the template or the
    schedule never change it.
    """

    def __init__(
        self,
        db: Database,
        planner: PlannerService | None = None,
        completed_repo: CompletedWorkoutRepository | None = None,
    ) -> None:
        self.db = db
        self.planner = planner or PlannerService(db)
        self.completed = completed_repo or CompletedWorkoutRepository(db)

    async def complete(
        self,
        workout_id: int,
        date,
        exercises: list[ExerciseEntry],
        completed_at: Optional[datetime.datetime] = None,
    ) -> CompletedWorkout:
        checked = validate_entries(exercises)
        template = await self.planner.templates.fetch_detail(workout_id)
        if await self.completed.find(workout_id, date) is not None:
            raise ValidationError(
                "scheduled_date", "workout is already completed on this date"
            )
        completed_id = await self.completed.insert_with_exercises(
            workout_id=workout_id,
            workout_name=template.name,
            icon_code_point=template.icon_code_point,
            scheduled_date=to_civil_date(date),
            completed_at=completed_at or datetime.datetime.now(),
            exercises=checked,
        )
        log.info(
            "completion_recorded",
            completed_id=completed_id,
            workout_id=workout_id,
            date=to_civil_date(date).isoformat(),
            exercises=len(checked),
        )
        return await self.completed.fetch_detail(completed_id)

    async def complete_occurrence(
        self,
        schedule_id: int,
        date,
        completed_at: Optional[datetime.datetime] = None,
    ) -> CompletedWorkout:
        """Complete one occurrence with its effective exercise list."""
        schedule = await self.planner.schedules.fetch_detail(schedule_id)
        if not RecurrenceEngine.occurs_on(schedule, date):
            raise ValidationError("date", "schedule does not occur on this date")
        exercises = await self.planner.effective_exercises(schedule, date)
        numbered = [e.with_order(i) for i, e in enumerate(exercises)]
        return await self.complete(schedule.workout_id, date, numbered, completed_at)

    async def complete_from_template(
        self,
        workout_id: int,
        date,
        completed_at: Optional[datetime.datetime] = None,
    ) -> CompletedWorkout:
        rows = await self.planner.template_exercises.fetch_for_workout(workout_id)
        numbered = [row.as_entry().with_order(i) for i, row in enumerate(rows)]
        return await self.complete(workout_id, date, numbered, completed_at)

    async def is_orphaned(self, completed: CompletedWorkout) -> bool:
        """True when no live schedule of an enabled template claims the
        completion's date."""
        if completed.workout_id is None:
            return True
        live = await self.planner.live_schedules_on(completed.scheduled_date)
        return not any(s.workout_id == completed.workout_id for s, _t in live)

    async def uncomplete(
        self, completed_id: int, confirm_destructive: bool = False
    ) -> CompletedWorkout:
        """Delete a completion and return the removed record.

        An orphaned completion is the only record of that workout on that
        date, so deleting it requires ``confirm_destructive``.
        """
        completed = await self.completed.fetch_detail(completed_id)
        orphaned = await self.is_orphaned(completed)
        if orphaned and not confirm_destructive:
            raise OrphanDeletionNotConfirmed(completed.id, completed.workout_name)
        await self.completed.delete(completed_id)
        log.info(
            "completion_removed",
            completed_id=completed_id,
            workout_id=completed.workout_id,
            orphaned=orphaned,
        )
        return completed

    async def is_completed(self, workout_id: int, date) -> bool:
        return await self.completed.find(workout_id, date) is not None

    async def find(self, workout_id: int, date) -> Optional[CompletedWorkout]:
        return await self.completed.find(workout_id, date)

    async def get(self, completed_id: int) -> CompletedWorkout:
        return await self.completed.fetch_detail(completed_id)

    async def all_completions(self) -> list[CompletedWorkout]:
        return await self.completed.fetch_all()

    async def completed_on(self, date) -> list[CompletedWorkout]:
        return await self.completed.fetch_for_date(date)

    async def history(self, exercise_id: int) -> list[CompletedExercise]:
        """Snapshots of one exercise, most recent completion first."""
        return await self.completed.history_for_exercise(exercise_id)

    async def update_completed_exercise(self, exercise: CompletedExercise) -> None:
        """Correct the recorded values of one completed exercise."""
        validate_entry(exercise)
        stored = await self.completed.get_exercise(exercise.id)
        if stored is None:
            raise NotFoundError("completed exercise not found")
        if exercise.completed_workout_id != stored.completed_workout_id:
            raise ValidationError(
                "completed_workout_id", "exercise belongs to another completion"
            )
        siblings = await self.completed.fetch_exercises(stored.completed_workout_id)
        indices = [
            exercise.order_index if s.id == exercise.id else s.order_index
            for s in siblings
        ]
        validate_order_indices(indices, "order_index")
        await self.completed.update_exercise(exercise)

    async def completed_dates_in_range(self, start, end) -> list[datetime.date]:
        return await self.completed.fetch_dates_in_range(start, end)

    async def all_completed_for_date(self, date, workout_ids: Iterable[int]) -> bool:
        ids = list(workout_ids)
        if not ids:
            return False
        for workout_id in ids:
            if not await self.is_completed(workout_id, date):
                return False
        return True

    async def occurrence_state(self, workout_id: int, date, live: bool = True) -> OccurrenceState:
        if not await self.is_completed(workout_id, date):
            return OccurrenceState.SCHEDULED
        if live:
            return OccurrenceState.COMPLETED
        return OccurrenceState.ORPHANED_COMPLETED
