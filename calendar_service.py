from __future__ import annotations

import datetime

import structlog

from algorithms.recurrence import RecurrenceEngine
from completion_service import CompletionService
from db import Database
from models import CalendarEntry, OccurrenceState, to_civil_date
from planner_service import PlannerService

log = structlog.get_logger(__name__)

CALENDAR_TABLES = (
    "workout_templates",
    "template_exercises",
    "schedules",
    "schedule_overrides",
    "override_exercises",
    "completed_workouts",
    "completed_exercises",
)


class CalendarService:
    """Answers "what appears on date X".

    Live occurrences come first in schedule order. Every completion on the
    date that no live occurrence claims follows as an orphaned entry built
    from its snapshot, so history never disappears from the calendar.
    """

    def __init__(
        self,
        db: Database,
        planner: PlannerService | None = None,
        completions: CompletionService | None = None,
    ) -> None:
        self.db = db
        self.planner = planner or PlannerService(db)
        self.completions = completions or CompletionService(db, self.planner)

    async def workouts_on(self, date) -> list[CalendarEntry]:
        day = to_civil_date(date)
        entries: list[CalendarEntry] = []
        claimed: set[int] = set()
        for schedule, template in await self.planner.live_schedules_on(day):
            completed = await self.completions.find(schedule.workout_id, day)
            has_override = await self.planner.has_override(schedule.id, day)
            if completed is not None:
                claimed.add(completed.id)
                entries.append(
                    CalendarEntry(
                        date=day,
                        workout_id=schedule.workout_id,
                        workout_name=completed.workout_name,
                        icon_code_point=completed.icon_code_point,
                        exercises=[e.as_entry() for e in completed.exercises],
                        state=OccurrenceState.COMPLETED,
                        schedule_id=schedule.id,
                        recurrence_type=schedule.recurrence_type,
                        has_override=has_override,
                        completed_id=completed.id,
                    )
                )
                continue
            entries.append(
                CalendarEntry(
                    date=day,
                    workout_id=schedule.workout_id,
                    workout_name=template.name,
                    icon_code_point=template.icon_code_point,
                    exercises=await self.planner.effective_exercises(schedule, day),
                    state=OccurrenceState.SCHEDULED,
                    schedule_id=schedule.id,
                    recurrence_type=schedule.recurrence_type,
                    has_override=has_override,
                )
            )

        for completed in await self.completions.completed_on(day):
            if completed.id in claimed:
                continue
            entries.append(
                CalendarEntry(
                    date=day,
                    workout_id=completed.workout_id,
                    workout_name=completed.workout_name,
                    icon_code_point=completed.icon_code_point,
                    exercises=[e.as_entry() for e in completed.exercises],
                    state=OccurrenceState.ORPHANED_COMPLETED,
                    completed_id=completed.id,
                )
            )
        return entries

    async def dates_with_workouts_in_range(self, start, end) -> list[datetime.date]:
        """Dates carrying a live occurrence or any completion."""
        first = to_civil_date(start)
        last = to_civil_date(end)
        templates = {
            t.id for t in await self.planner.templates.fetch_all(include_disabled=False)
        }
        dates: set[datetime.date] = set()
        for schedule in await self.planner.schedules.fetch_all():
            if schedule.workout_id not in templates:
                continue
            dates.update(RecurrenceEngine.occurrences_in_range(schedule, first, last))
        dates.update(await self.completions.completed_dates_in_range(first, last))
        return sorted(dates)

    async def watch_workouts_on(self, date):
        """Yield ``workouts_on(date)`` now and after every affecting change."""
        changes = self.db.notifier.watch(CALENDAR_TABLES)
        try:
            yield await self.workouts_on(date)
            async for changed in changes:
                log.debug("calendar_refresh", date=to_civil_date(date).isoformat(), tables=sorted(changed))
                yield await self.workouts_on(date)
        finally:
            changes.close()
