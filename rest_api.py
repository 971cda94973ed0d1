import asyncio
import datetime
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import List, Optional

import structlog
from fastapi import Body, FastAPI, HTTPException, Request, WebSocket
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from algorithms.recurrence import RecurrenceEngine
from algorithms.set_builder import SetBuilder
from calendar_service import CalendarService
from completion_service import CompletionService
from db import Database
from errors import (
    NotFoundError,
    OrphanDeletionNotConfirmed,
    ReferentialError,
    ValidationError,
)
from models import (
    CalendarEntry,
    CompletedExercise,
    Exercise,
    ExerciseEntry,
    ExerciseMode,
    ExerciseSet,
    ExerciseType,
    OverrideExercise,
    RecurrenceType,
    Schedule,
    TemplateExercise,
)
from planner_service import PlannerService
from settings_schema import load_settings

log = structlog.get_logger(__name__)

ORPHAN_WARNING = (
    "Unmarking this as completed will permanently delete this workout record."
)


class SetIn(BaseModel):
    value: int
    weight: float = 0.0
    rest: Optional[int] = None

    def to_set(self) -> ExerciseSet:
        return ExerciseSet(self.value, self.weight, self.rest)


class EntryIn(BaseModel):
    exercise_id: int
    type: ExerciseType
    mode: ExerciseMode
    sets: List[SetIn]
    order_index: Optional[int] = None
    rest_after_exercise: Optional[int] = None

    def to_kwargs(self, order_index: int = 0) -> dict:
        """Omitted order index falls back to ``order_index``."""
        return {
            "exercise_id": self.exercise_id,
            "type": self.type,
            "mode": self.mode,
            "sets": [s.to_set() for s in self.sets],
            "order_index": order_index if self.order_index is None else self.order_index,
            "rest_after_exercise": self.rest_after_exercise,
        }

    def to_entry(self) -> ExerciseEntry:
        return ExerciseEntry(**self.to_kwargs())


class ExerciseIn(BaseModel):
    name: str
    mode: ExerciseMode = ExerciseMode.REPS
    type: Optional[ExerciseType] = None
    sets: Optional[List[SetIn]] = None
    rest_after_exercise: Optional[int] = None

    def built_sets(self) -> list[ExerciseSet]:
        if self.sets is None:
            return SetBuilder.for_mode(self.mode)
        return [s.to_set() for s in self.sets]


class AddExerciseIn(BaseModel):
    exercise_id: int
    type: Optional[ExerciseType] = None
    mode: Optional[ExerciseMode] = None
    sets: Optional[List[SetIn]] = None
    rest_after_exercise: Optional[int] = None

    def built_sets(self) -> Optional[list[ExerciseSet]]:
        if self.sets is None:
            return None
        return [s.to_set() for s in self.sets]


class TemplateIn(BaseModel):
    name: Optional[str] = None
    icon_code_point: Optional[int] = None


class ScheduleIn(BaseModel):
    workout_id: int
    start_date: datetime.date
    recurrence_type: RecurrenceType
    offset_days: Optional[int] = None


class CompletionIn(BaseModel):
    workout_id: int
    date: datetime.date
    exercises: List[EntryIn]


def _calendar_entry_dict(entry: CalendarEntry) -> dict:
    data = asdict(entry)
    data["is_completed"] = entry.is_completed
    data["is_orphaned"] = entry.is_orphaned
    return data


class GymAPI:
    """Provides REST endpoints for the workout planner."""

    def __init__(
        self,
        db_path: str | None = None,
        yaml_path: str = "settings.yaml",
        *,
        db: Database | None = None,
    ) -> None:
        self.settings = load_settings(yaml_path)
        self.db = db or Database(
            db_path or self.settings.db_path,
            seed_defaults=self.settings.seed_default_exercises,
        )
        self.planner = PlannerService(self.db)
        self.completions = CompletionService(self.db, self.planner)
        self.calendar = CalendarService(self.db, self.planner, self.completions)
        self.watchers: list[WebSocket] = []
        self._unsubscribe = self.db.notifier.subscribe(self._on_change)
        self.app = FastAPI(
            title="Gym Planner API",
            description="REST API for workout templates, schedules and completions",
            lifespan=self._lifespan,
        )
        self._setup_error_handlers()
        self._setup_routes()

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        yield
        self.close()

    def close(self) -> None:
        self._unsubscribe()
        self.db.close()

    def _on_change(self, tables: set) -> None:
        if self.watchers:
            self._broadcast_event({"type": "tables_changed", "tables": sorted(tables)})

    async def _broadcast(self, event: dict) -> None:
        for ws in list(self.watchers):
            try:
                await ws.send_json(event)
            except Exception as e:
                log.info("watcher_dropped", error=str(e))
                self.watchers.remove(ws)

    def _broadcast_event(self, event: dict) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(self._broadcast(event))
            return
        loop.create_task(self._broadcast(event))

    def _setup_error_handlers(self) -> None:
        @self.app.exception_handler(ValidationError)
        async def validation_error(request: Request, exc: ValidationError):
            return JSONResponse(
                status_code=400, content={"detail": str(exc), "field": exc.field}
            )

        @self.app.exception_handler(ReferentialError)
        async def referential_error(request: Request, exc: ReferentialError):
            return JSONResponse(
                status_code=409,
                content={"detail": str(exc), "operation": exc.operation},
            )

        @self.app.exception_handler(OrphanDeletionNotConfirmed)
        async def orphan_not_confirmed(request: Request, exc: OrphanDeletionNotConfirmed):
            return JSONResponse(
                status_code=409,
                content={
                    "detail": str(exc),
                    "warning": ORPHAN_WARNING,
                    "completed_id": exc.completed_id,
                },
            )

        @self.app.exception_handler(NotFoundError)
        async def not_found(request: Request, exc: NotFoundError):
            return JSONResponse(status_code=404, content={"detail": str(exc)})

    def _setup_routes(self) -> None:
        @self.app.get(
            "/health",
            summary="Health check",
            description="Verify API and database connectivity.",
        )
        async def health():
            """Return API and database connection status."""
            try:
                await self.planner.exercises.count()
                return {"status": "ok"}
            except Exception as e:  # pragma: no cover - connectivity failure
                raise HTTPException(status_code=500, detail=str(e))

        @self.app.websocket("/ws/updates")
        async def updates_socket(ws: WebSocket):
            await ws.accept()
            self.watchers.append(ws)
            try:
                while True:
                    await ws.receive_text()
            except Exception as e:
                log.debug("watcher_disconnected", error=str(e))
            finally:
                if ws in self.watchers:
                    self.watchers.remove(ws)

        # exercises

        @self.app.get("/exercises")
        async def list_exercises(include_disabled: bool = False):
            exercises = await self.planner.exercises.fetch_all(include_disabled)
            return [asdict(e) for e in exercises]

        @self.app.post("/exercises")
        async def create_exercise(body: ExerciseIn):
            ex_type = body.type or SetBuilder.type_for_mode(body.mode)
            ex_id = await self.planner.exercises.create(
                body.name,
                ex_type,
                body.mode,
                body.built_sets(),
                rest_after_exercise=body.rest_after_exercise,
            )
            return {"id": ex_id}

        @self.app.get("/exercises/{exercise_id}")
        async def get_exercise(exercise_id: int):
            return asdict(await self.planner.exercises.fetch_detail(exercise_id))

        @self.app.put("/exercises/{exercise_id}")
        async def update_exercise(exercise_id: int, body: ExerciseIn):
            existing = await self.planner.exercises.fetch_detail(exercise_id)
            await self.planner.exercises.update(
                Exercise(
                    id=exercise_id,
                    name=body.name,
                    type=body.type or SetBuilder.type_for_mode(body.mode),
                    mode=body.mode,
                    sets=body.built_sets() if body.sets is not None else existing.sets,
                    is_default=existing.is_default,
                    is_disabled=existing.is_disabled,
                    rest_after_exercise=body.rest_after_exercise,
                )
            )
            return {"status": "updated"}

        @self.app.post("/exercises/{exercise_id}/disable")
        async def disable_exercise(exercise_id: int):
            await self.planner.exercises.set_disabled(exercise_id, True)
            return {"status": "disabled"}

        @self.app.post("/exercises/{exercise_id}/enable")
        async def enable_exercise(exercise_id: int):
            await self.planner.exercises.set_disabled(exercise_id, False)
            return {"status": "enabled"}

        @self.app.delete("/exercises/{exercise_id}")
        async def delete_exercise(exercise_id: int):
            await self.planner.exercises.delete(exercise_id)
            return {"status": "deleted"}

        @self.app.get("/exercises/{exercise_id}/history")
        async def exercise_history(exercise_id: int):
            await self.planner.exercises.fetch_detail(exercise_id)
            return [asdict(e) for e in await self.completions.history(exercise_id)]

        # templates

        @self.app.get("/templates")
        async def list_templates(include_disabled: bool = False):
            templates = await self.planner.templates.fetch_all(include_disabled)
            return [asdict(t) for t in templates]

        @self.app.post("/templates")
        async def create_template(body: TemplateIn):
            template_id = await self.planner.create_template(
                body.name or "",
                body.icon_code_point
                if body.icon_code_point is not None
                else self.settings.default_icon_code_point,
            )
            return {"id": template_id}

        @self.app.get("/templates/{template_id}")
        async def get_template(template_id: int):
            template = await self.planner.templates.fetch_detail(template_id)
            data = asdict(template)
            data["exercises"] = [
                asdict(e) for e in await self.planner.template_exercises_for(template_id)
            ]
            return data

        @self.app.put("/templates/{template_id}")
        async def update_template(template_id: int, body: TemplateIn):
            if body.name is not None:
                await self.planner.rename_template(template_id, body.name)
            if body.icon_code_point is not None:
                await self.planner.change_template_icon(template_id, body.icon_code_point)
            return {"status": "updated"}

        @self.app.post("/templates/{template_id}/disable")
        async def disable_template(template_id: int):
            await self.planner.disable_template(template_id)
            return {"status": "disabled"}

        @self.app.post("/templates/{template_id}/enable")
        async def enable_template(template_id: int):
            await self.planner.enable_template(template_id)
            return {"status": "enabled"}

        @self.app.delete("/templates/{template_id}")
        async def delete_template(template_id: int, detach_history: bool = False):
            await self.planner.delete_template(template_id, detach_history=detach_history)
            return {"status": "deleted"}

        @self.app.get("/templates/{template_id}/exercises")
        async def list_template_exercises(template_id: int):
            await self.planner.templates.fetch_detail(template_id)
            return [asdict(e) for e in await self.planner.template_exercises_for(template_id)]

        @self.app.post("/templates/{template_id}/exercises")
        async def add_template_exercise(template_id: int, body: AddExerciseIn):
            te_id = await self.planner.add_exercise_to_workout(
                template_id,
                body.exercise_id,
                sets=body.built_sets(),
                ex_type=body.type,
                mode=body.mode,
                rest_after_exercise=body.rest_after_exercise,
            )
            return {"id": te_id}

        @self.app.put("/templates/{template_id}/exercises/order")
        async def reorder_template_exercises(template_id: int, order: List[int] = Body(...)):
            await self.planner.reorder_template_exercises(template_id, order)
            return {"status": "reordered"}

        @self.app.put("/template_exercises/{template_exercise_id}")
        async def update_template_exercise(template_exercise_id: int, body: EntryIn):
            existing = await self.planner.template_exercises.get(template_exercise_id)
            if existing is None:
                raise NotFoundError("template exercise not found")
            await self.planner.update_template_exercise(
                TemplateExercise(
                    **body.to_kwargs(existing.order_index),
                    id=existing.id,
                    workout_id=existing.workout_id,
                )
            )
            return {"status": "updated"}

        @self.app.delete("/template_exercises/{template_exercise_id}")
        async def delete_template_exercise(template_exercise_id: int):
            await self.planner.remove_exercise_from_workout(template_exercise_id)
            return {"status": "deleted"}

        @self.app.post("/templates/{template_id}/complete")
        async def complete_template(template_id: int, date: datetime.date):
            completed = await self.completions.complete_from_template(template_id, date)
            return asdict(completed)

        # schedules and occurrences

        @self.app.get("/schedules")
        async def list_schedules():
            return [asdict(s) for s in await self.planner.schedules.fetch_all()]

        @self.app.post("/schedules")
        async def create_schedule(body: ScheduleIn):
            schedule_id = await self.planner.schedule_workout(
                body.workout_id, body.start_date, body.recurrence_type, body.offset_days
            )
            return {"id": schedule_id}

        @self.app.get("/schedules/{schedule_id}")
        async def get_schedule(schedule_id: int):
            return asdict(await self.planner.schedules.fetch_detail(schedule_id))

        @self.app.put("/schedules/{schedule_id}")
        async def update_schedule(schedule_id: int, body: ScheduleIn):
            await self.planner.update_schedule(
                Schedule(
                    schedule_id,
                    body.workout_id,
                    body.start_date,
                    body.recurrence_type,
                    body.offset_days,
                )
            )
            return {"status": "updated"}

        @self.app.delete("/schedules/{schedule_id}")
        async def delete_schedule(schedule_id: int):
            await self.planner.delete_schedule(schedule_id)
            return {"status": "deleted"}

        @self.app.get("/schedules/{schedule_id}/occurrences")
        async def schedule_occurrences(
            schedule_id: int, start: datetime.date, end: datetime.date
        ):
            dates = await self.planner.occurrences(schedule_id, start, end)
            return [d.isoformat() for d in dates]

        @self.app.get("/schedules/{schedule_id}/days/{day}")
        async def occurrence_detail(schedule_id: int, day: datetime.date):
            schedule = await self.planner.schedules.fetch_detail(schedule_id)
            exercises = await self.planner.effective_exercises(schedule, day)
            return {
                "schedule_id": schedule_id,
                "date": day.isoformat(),
                "occurs": RecurrenceEngine.occurs_on(schedule, day),
                "has_override": await self.planner.has_override(schedule_id, day),
                "exercises": [asdict(e) for e in exercises],
            }

        @self.app.post("/schedules/{schedule_id}/days/{day}/override")
        async def create_override(
            schedule_id: int, day: datetime.date, from_template: bool = True
        ):
            if from_template:
                override = await self.planner.customize_from_template(schedule_id, day)
            else:
                override = await self.planner.get_or_create_override(schedule_id, day)
            return asdict(override)

        @self.app.delete("/schedules/{schedule_id}/days/{day}/override")
        async def revert_override(schedule_id: int, day: datetime.date):
            reverted = await self.planner.revert_to_template(schedule_id, day)
            return {"reverted": reverted}

        @self.app.get("/schedules/{schedule_id}/days/{day}/exercises")
        async def list_override_exercises(schedule_id: int, day: datetime.date):
            rows = await self.planner.override_exercises(schedule_id, day)
            return [asdict(e) for e in rows]

        @self.app.post("/schedules/{schedule_id}/days/{day}/exercises")
        async def add_override_exercise(
            schedule_id: int, day: datetime.date, body: AddExerciseIn
        ):
            oe_id = await self.planner.add_override_exercise(
                schedule_id,
                day,
                body.exercise_id,
                sets=body.built_sets(),
                ex_type=body.type,
                mode=body.mode,
                rest_after_exercise=body.rest_after_exercise,
            )
            return {"id": oe_id}

        @self.app.put("/schedules/{schedule_id}/days/{day}/exercises/order")
        async def reorder_override_exercises(
            schedule_id: int, day: datetime.date, order: List[int] = Body(...)
        ):
            await self.planner.reorder_override_exercises(schedule_id, day, order)
            return {"status": "reordered"}

        @self.app.put("/override_exercises/{override_exercise_id}")
        async def update_override_exercise(override_exercise_id: int, body: EntryIn):
            existing = await self.planner.overrides.get_exercise(override_exercise_id)
            if existing is None:
                raise NotFoundError("override exercise not found")
            await self.planner.update_override_exercise(
                OverrideExercise(
                    **body.to_kwargs(existing.order_index),
                    id=existing.id,
                    override_id=existing.override_id,
                    workout_exercise_id=existing.workout_exercise_id,
                )
            )
            return {"status": "updated"}

        @self.app.delete("/override_exercises/{override_exercise_id}")
        async def delete_override_exercise(override_exercise_id: int):
            await self.planner.remove_override_exercise(override_exercise_id)
            return {"status": "deleted"}

        @self.app.post("/schedules/{schedule_id}/days/{day}/complete")
        async def complete_occurrence(schedule_id: int, day: datetime.date):
            completed = await self.completions.complete_occurrence(schedule_id, day)
            return asdict(completed)

        # completions

        @self.app.post("/completions")
        async def create_completion(body: CompletionIn):
            completed = await self.completions.complete(
                body.workout_id, body.date, [e.to_entry() for e in body.exercises]
            )
            return asdict(completed)

        @self.app.get("/completions")
        async def list_completions(date: Optional[datetime.date] = None):
            if date is None:
                rows = await self.completions.all_completions()
            else:
                rows = await self.completions.completed_on(date)
            return [asdict(c) for c in rows]

        @self.app.get("/completions/{completed_id}")
        async def get_completion(completed_id: int):
            return asdict(await self.completions.get(completed_id))

        @self.app.delete("/completions/{completed_id}")
        async def delete_completion(completed_id: int, confirm: bool = False):
            removed = await self.completions.uncomplete(
                completed_id, confirm_destructive=confirm
            )
            return {"status": "deleted", "id": removed.id}

        @self.app.put("/completed_exercises/{completed_exercise_id}")
        async def update_completed_exercise(completed_exercise_id: int, body: EntryIn):
            existing = await self.completions.completed.get_exercise(completed_exercise_id)
            if existing is None:
                raise NotFoundError("completed exercise not found")
            await self.completions.update_completed_exercise(
                CompletedExercise(
                    **body.to_kwargs(existing.order_index),
                    id=existing.id,
                    completed_workout_id=existing.completed_workout_id,
                )
            )
            return {"status": "updated"}

        # calendar

        @self.app.get("/calendar/{day}")
        async def calendar_day(day: datetime.date):
            entries = await self.calendar.workouts_on(day)
            return [_calendar_entry_dict(e) for e in entries]

        @self.app.get("/calendar")
        async def calendar_range(
            start: Optional[datetime.date] = None, end: Optional[datetime.date] = None
        ):
            start = start or datetime.date.today()
            end = end or start + datetime.timedelta(days=self.settings.calendar_range_days)
            dates = await self.calendar.dates_with_workouts_in_range(start, end)
            return [d.isoformat() for d in dates]

        @self.app.get("/recurrence/preview")
        async def recurrence_preview(
            start_date: datetime.date,
            recurrence_type: RecurrenceType,
            start: datetime.date,
            end: datetime.date,
            offset_days: Optional[int] = None,
        ):
            schedule = Schedule(0, 0, start_date, recurrence_type, offset_days)
            dates = RecurrenceEngine.occurrences_in_range(schedule, start, end)
            return [d.isoformat() for d in dates]


def create_app(yaml_path: str = "settings.yaml") -> FastAPI:
    return GymAPI(yaml_path=yaml_path).app


if __name__ == "__main__":
    import uvicorn

    api = GymAPI()
    uvicorn.run(api.app, host="0.0.0.0", port=8000)
