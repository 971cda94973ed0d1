import asyncio
import datetime
import json
import os
import sys
from dataclasses import dataclass, field, replace
from typing import Optional

import structlog

from algorithms.set_builder import SetBuilder
from db import (
    ENTRY_COLUMNS,
    BaseRepository,
    CompletedWorkoutRepository,
    Database,
    ExerciseRepository,
    WorkoutTemplateRepository,
    entry_params,
)
from models import (
    ExerciseEntry,
    ExerciseMode,
    ExerciseSet,
    ExerciseType,
    RecurrenceType,
    sets_to_json,
    to_civil_date,
)
from planner_service import DEFAULT_ICON_CODE_POINT
from validators import MAX_NAME_LENGTH, validate_entries, validate_sets

log = structlog.get_logger(__name__)

LEGACY_KEYS = (
    "custom_exercises",
    "workouts",
    "workout_templates",
    "scheduled_workouts",
    "completed_workouts",
)

IMPORT_TABLES = (
    "exercises",
    "workout_templates",
    "template_exercises",
    "schedules",
    "completed_workouts",
    "completed_exercises",
)


@dataclass(slots=True)
class ImportReport:
    skipped: bool = False
    exercises: int = 0
    templates: int = 0
    schedules: int = 0
    completions: int = 0
    detached_completions: int = 0
    renamed: list[str] = field(default_factory=list)


# Entries in a plan refer to exercises by lowercased name; ids are assigned
# when the plan is written.
PlannedEntries = list[tuple[str, ExerciseEntry]]


@dataclass(slots=True)
class PlannedExercise:
    name: str
    type: ExerciseType
    mode: ExerciseMode
    sets: list[ExerciseSet]


@dataclass(slots=True)
class PlannedTemplate:
    name: str
    icon_code_point: int
    entries: PlannedEntries


@dataclass(slots=True)
class PlannedSchedule:
    template: int
    start_date: datetime.date
    recurrence_type: RecurrenceType
    offset_days: Optional[int]


@dataclass(slots=True)
class PlannedCompletion:
    template: Optional[int]
    workout_name: str
    icon_code_point: int
    scheduled_date: datetime.date
    completed_at: datetime.datetime
    entries: PlannedEntries
    legacy_instance_id: Optional[str]


@dataclass(slots=True)
class ImportPlan:
    """Every legacy record converted and validated, nothing written yet."""

    exercise_ids: dict[str, int] = field(default_factory=dict)
    new_exercises: dict[str, PlannedExercise] = field(default_factory=dict)
    templates: list[PlannedTemplate] = field(default_factory=list)
    schedules: list[PlannedSchedule] = field(default_factory=list)
    completions: list[PlannedCompletion] = field(default_factory=list)
    custom_exercises: int = 0
    renamed: list[str] = field(default_factory=list)


def load_legacy_store(path: str) -> dict:
    """Read a legacy key/value dump.

    Values are JSON arrays, or strings holding a JSON array the way the
    old preferences store kept them. Unknown keys are ignored.
    """
    if not os.path.exists(path):
        return {}
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    store = {}
    for key in LEGACY_KEYS:
        value = raw.get(key)
        if value is None or value == "":
            continue
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError as e:
                raise ValueError(f"legacy key {key!r} is not valid JSON") from e
        if not isinstance(value, list):
            raise ValueError(f"legacy key {key!r} must hold a JSON array")
        store[key] = value
    return store


def _clip_name(name: Optional[str]) -> str:
    name = (name or "").strip()[:MAX_NAME_LENGTH].strip()
    return name or "Untitled"


def _parse_timestamp(value: str) -> datetime.datetime:
    return datetime.datetime.fromisoformat(value.strip().replace("Z", "+00:00"))


def _unique_name(name: Optional[str], taken: set[str]) -> str:
    base = _clip_name(name)
    candidate = base
    suffix = 2
    while candidate.lower() in taken:
        tail = f" ({suffix})"
        candidate = base[: MAX_NAME_LENGTH - len(tail)] + tail
        suffix += 1
    taken.add(candidate.lower())
    return candidate


class LegacyImporter(BaseRepository):
    """One-time import of the flat JSON generation into the relational model.

    Each legacy calendar workout becomes a template plus a schedule with the
    record's start date and recurrence. Legacy completions keep their
    snapshot and are linked to the imported template when the legacy id
    they point at was imported, otherwise they arrive detached.

    The whole store is converted and validated first and then written in a
    single transaction, so a bad record leaves the database untouched and
    the import can be retried.
    """

    table = "workout_templates"

    def __init__(self, db: Database) -> None:
        super().__init__(db)
        self.exercises = ExerciseRepository(db)
        self.templates = WorkoutTemplateRepository(db)
        self.completed = CompletedWorkoutRepository(db)

    async def needs_import(self, store: dict) -> bool:
        if not any(store.get(key) for key in LEGACY_KEYS):
            return False
        return await self.templates.count() == 0 and await self.completed.count() == 0

    async def run(self, store: dict) -> ImportReport:
        report = ImportReport()
        if not await self.needs_import(store):
            report.skipped = True
            log.info("legacy_import_skipped")
            return report

        plan = await self.plan(store)
        await self.write(plan)

        report.exercises = plan.custom_exercises
        report.templates = len(plan.templates)
        report.schedules = len(plan.schedules)
        report.completions = len(plan.completions)
        report.detached_completions = sum(1 for c in plan.completions if c.template is None)
        report.renamed = list(plan.renamed)
        log.info(
            "legacy_import_finished",
            exercises=report.exercises,
            templates=report.templates,
            schedules=report.schedules,
            completions=report.completions,
            detached=report.detached_completions,
        )
        return report

    async def plan(self, store: dict) -> ImportPlan:
        """Convert the store; raises on the first invalid record."""
        plan = ImportPlan()
        for exercise in await self.exercises.fetch_all(include_disabled=True):
            plan.exercise_ids[exercise.name.lower()] = exercise.id

        for record in store.get("custom_exercises", []):
            if self._plan_custom_exercise(plan, record):
                plan.custom_exercises += 1

        taken: set[str] = set()
        legacy_ids: dict[str, int] = {}
        by_name: dict[str, int] = {}
        for record in store.get("workout_templates", []):
            index = self._plan_template(plan, record, taken, self._entries(plan, record))
            legacy_ids[str(record.get("id"))] = index
            by_name[_clip_name(record.get("name")).lower()] = index

        scheduled = list(store.get("workouts", [])) + list(store.get("scheduled_workouts", []))
        for record in scheduled:
            entries = self._entries(plan, record)
            index = by_name.get(_clip_name(record.get("name")).lower())
            if index is None or plan.templates[index].entries != entries:
                index = self._plan_template(plan, record, taken, entries)
            legacy_ids[str(record.get("id"))] = index
            plan.schedules.append(self._plan_schedule(index, record))

        seen: set[tuple[int, datetime.date]] = set()
        for record in store.get("completed_workouts", []):
            completion = self._plan_completion(plan, record, legacy_ids)
            if completion.template is not None:
                key = (completion.template, completion.scheduled_date)
                if key in seen:
                    completion.template = None
                else:
                    seen.add(key)
            plan.completions.append(completion)
        return plan

    def _plan_custom_exercise(self, plan: ImportPlan, record: dict) -> bool:
        name = _clip_name(record.get("name"))
        key = name.lower()
        if key in plan.exercise_ids or key in plan.new_exercises:
            return False
        mode = ExerciseMode(record.get("mode", ExerciseMode.REPS.value))
        sets = SetBuilder.for_mode(
            mode,
            sets=record.get("defaultSets"),
            reps=record.get("defaultReps"),
            reps_per_set=record.get("defaultRepsPerSet"),
            pyramid_top=record.get("defaultPyramidTop"),
            seconds=record.get("defaultSeconds"),
            weight=float(record.get("defaultWeight") or 0.0),
            rest=record.get("defaultRestBetweenSets"),
            rest_per_set=record.get("defaultRestBetweenSetsPerSet"),
        )
        plan.new_exercises[key] = PlannedExercise(
            name, SetBuilder.type_for_mode(mode), mode, validate_sets(sets)
        )
        return True

    @staticmethod
    def _exercise_key(plan: ImportPlan, name: str, mode: ExerciseMode) -> str:
        key = name.lower()
        if key not in plan.exercise_ids and key not in plan.new_exercises:
            plan.new_exercises[key] = PlannedExercise(
                name, SetBuilder.type_for_mode(mode), mode, SetBuilder.for_mode(mode)
            )
        return key

    def _entries(self, plan: ImportPlan, record: dict) -> PlannedEntries:
        keys = []
        entries = []
        for position, item in enumerate(record.get("exercises") or []):
            mode = ExerciseMode(item.get("mode", ExerciseMode.REPS.value))
            sets = SetBuilder.for_mode(
                mode,
                sets=item.get("targetSets"),
                reps=item.get("targetReps"),
                reps_per_set=item.get("targetRepsPerSet"),
                pyramid_top=item.get("pyramidTop"),
                seconds=item.get("targetSeconds"),
                weight=float(item.get("targetWeight") or 0.0),
                rest=item.get("restBetweenSets"),
                rest_per_set=item.get("restBetweenSetsPerSet"),
            )
            keys.append(self._exercise_key(plan, _clip_name(item.get("exerciseName")), mode))
            entries.append(
                ExerciseEntry(
                    exercise_id=0,
                    type=SetBuilder.type_for_mode(mode),
                    mode=mode,
                    sets=sets,
                    order_index=position,
                    rest_after_exercise=item.get("restAfterExercise") or None,
                )
            )
        return list(zip(keys, validate_entries(entries)))

    @staticmethod
    def _plan_template(
        plan: ImportPlan, record: dict, taken: set[str], entries: PlannedEntries
    ) -> int:
        name = _unique_name(record.get("name"), taken)
        if name != _clip_name(record.get("name")):
            plan.renamed.append(name)
        plan.templates.append(
            PlannedTemplate(name, record.get("iconCodePoint") or DEFAULT_ICON_CODE_POINT, entries)
        )
        return len(plan.templates) - 1

    @staticmethod
    def _plan_schedule(template: int, record: dict) -> PlannedSchedule:
        # offset rules without a usable period are kept and never fire
        recurrence = RecurrenceType(record.get("recurrenceType", RecurrenceType.ONE_OFF.value))
        offset = record.get("offsetDays") if recurrence is RecurrenceType.OFFSET else None
        return PlannedSchedule(template, to_civil_date(record["startDate"]), recurrence, offset)

    def _plan_completion(
        self, plan: ImportPlan, record: dict, legacy_ids: dict[str, int]
    ) -> PlannedCompletion:
        legacy_id = record.get("scheduledWorkoutId")
        return PlannedCompletion(
            template=legacy_ids.get(str(legacy_id)),
            workout_name=_clip_name(record.get("workoutName")),
            icon_code_point=record.get("iconCodePoint") or DEFAULT_ICON_CODE_POINT,
            scheduled_date=to_civil_date(record["scheduledDate"]),
            completed_at=_parse_timestamp(record["completedAt"]),
            entries=self._entries(plan, record),
            legacy_instance_id=legacy_id,
        )

    async def write(self, plan: ImportPlan) -> None:
        """Insert a converted plan in one transaction."""
        async with self._write("legacy.import", *IMPORT_TABLES) as conn:
            ids = dict(plan.exercise_ids)
            for key, exercise in plan.new_exercises.items():
                cursor = await conn.execute(
                    "INSERT INTO exercises (name, type, mode, sets) VALUES (?, ?, ?, ?);",
                    (
                        exercise.name,
                        exercise.type.value,
                        exercise.mode.value,
                        sets_to_json(exercise.sets),
                    ),
                )
                ids[key] = cursor.lastrowid

            template_ids = []
            for template in plan.templates:
                cursor = await conn.execute(
                    "INSERT INTO workout_templates (name, icon_code_point) VALUES (?, ?);",
                    (template.name, int(template.icon_code_point)),
                )
                template_ids.append(cursor.lastrowid)
                await self._insert_entries(
                    conn, "template_exercises", "workout_id", cursor.lastrowid, template.entries, ids
                )

            for schedule in plan.schedules:
                await conn.execute(
                    "INSERT INTO schedules (workout_id, start_date, recurrence_type, offset_days) VALUES (?, ?, ?, ?);",
                    (
                        template_ids[schedule.template],
                        schedule.start_date.isoformat(),
                        schedule.recurrence_type.value,
                        schedule.offset_days,
                    ),
                )

            for completion in plan.completions:
                workout_id = (
                    template_ids[completion.template] if completion.template is not None else None
                )
                cursor = await conn.execute(
                    "INSERT INTO completed_workouts (workout_id, legacy_instance_id, workout_name, icon_code_point, scheduled_date, completed_at) VALUES (?, ?, ?, ?, ?, ?);",
                    (
                        workout_id,
                        completion.legacy_instance_id,
                        completion.workout_name,
                        int(completion.icon_code_point),
                        completion.scheduled_date.isoformat(),
                        completion.completed_at.isoformat(),
                    ),
                )
                await self._insert_entries(
                    conn,
                    "completed_exercises",
                    "completed_workout_id",
                    cursor.lastrowid,
                    completion.entries,
                    ids,
                )

    @staticmethod
    async def _insert_entries(
        conn, table: str, parent_col: str, parent_id: int, entries: PlannedEntries, ids: dict
    ) -> None:
        for key, entry in entries:
            await conn.execute(
                f"INSERT INTO {table} ({parent_col}, {ENTRY_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?);",
                (parent_id, *entry_params(replace(entry, exercise_id=ids[key]))),
            )


async def import_legacy_file(db: Database, path: str) -> ImportReport:
    store = load_legacy_store(path)
    return await LegacyImporter(db).run(store)


if __name__ == '__main__':
    db_path = sys.argv[1] if len(sys.argv) > 1 else 'workout.db'
    store_path = sys.argv[2] if len(sys.argv) > 2 else 'legacy.json'
    database = Database(db_path)
    try:
        print(asyncio.run(import_legacy_file(database, store_path)))
    finally:
        database.close()
