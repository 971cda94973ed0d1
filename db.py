import asyncio
import datetime
import sqlite3
from contextlib import asynccontextmanager, contextmanager
from typing import Callable, Iterable, List, Optional, Tuple

import aiosqlite
import structlog

from errors import NotFoundError, ReferentialError, ValidationError
from models import (
    CompletedExercise,
    CompletedWorkout,
    Exercise,
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
    sets_from_json,
    sets_to_json,
    to_civil_date,
)
from validators import (
    validate_entry,
    validate_name,
    validate_offset_days,
    validate_order_indices,
    validate_rest,
    validate_sets,
)

log = structlog.get_logger(__name__)


class ChangeSubscription:
    """Async iterator over change events; subscribed from construction."""

    def __init__(self, notifier: "ChangeNotifier", tables: Iterable[str] | None) -> None:
        loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue = asyncio.Queue()
        self._unsubscribe = notifier.subscribe(
            lambda changed: loop.call_soon_threadsafe(self._queue.put_nowait, changed),
            tables,
        )

    def __aiter__(self):
        return self

    async def __anext__(self) -> set:
        return await self._queue.get()

    def close(self) -> None:
        self._unsubscribe()


class ChangeNotifier:
    """Publishes the tables touched by every committed mutation."""

    def __init__(self) -> None:
        self._listeners: list[tuple[Optional[frozenset], Callable[[set], None]]] = []

    def subscribe(
        self, callback: Callable[[set], None], tables: Iterable[str] | None = None
    ) -> Callable[[], None]:
        entry = (frozenset(tables) if tables is not None else None, callback)
        self._listeners.append(entry)

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    def notify(self, tables: Iterable[str]) -> None:
        changed = set(tables)
        for keys, callback in list(self._listeners):
            if keys is None or keys & changed:
                callback(changed)

    def watch(self, tables: Iterable[str] | None = None) -> ChangeSubscription:
        """Subscribe now; iterate to receive the set of changed tables after
        each relevant mutation. Call ``close()`` when done."""
        return ChangeSubscription(self, tables)


class Database:
    """Provides SQLite connection management and schema initialization."""

    _TABLE_DEFINITIONS = {
        "exercises": (
            """CREATE TABLE exercises (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL COLLATE NOCASE UNIQUE,
                    type TEXT NOT NULL,
                    mode TEXT NOT NULL,
                    sets TEXT NOT NULL,
                    is_default INTEGER NOT NULL DEFAULT 0,
                    is_disabled INTEGER NOT NULL DEFAULT 0,
                    rest_after_exercise INTEGER
                );""",
            [
                "id",
                "name",
                "type",
                "mode",
                "sets",
                "is_default",
                "is_disabled",
                "rest_after_exercise",
            ],
        ),
        "workout_templates": (
            """CREATE TABLE workout_templates (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL COLLATE NOCASE UNIQUE,
                    icon_code_point INTEGER NOT NULL,
                    is_disabled INTEGER NOT NULL DEFAULT 0
                );""",
            ["id", "name", "icon_code_point", "is_disabled"],
        ),
        "template_exercises": (
            """CREATE TABLE template_exercises (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    workout_id INTEGER NOT NULL,
                    exercise_id INTEGER NOT NULL,
                    type TEXT NOT NULL,
                    mode TEXT NOT NULL,
                    order_index INTEGER NOT NULL,
                    sets TEXT NOT NULL,
                    rest_after_exercise INTEGER,
                    FOREIGN KEY(workout_id) REFERENCES workout_templates(id) ON DELETE CASCADE,
                    FOREIGN KEY(exercise_id) REFERENCES exercises(id) ON DELETE RESTRICT
                );""",
            [
                "id",
                "workout_id",
                "exercise_id",
                "type",
                "mode",
                "order_index",
                "sets",
                "rest_after_exercise",
            ],
        ),
        "schedules": (
            """CREATE TABLE schedules (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    workout_id INTEGER NOT NULL,
                    start_date TEXT NOT NULL,
                    recurrence_type TEXT NOT NULL,
                    offset_days INTEGER,
                    FOREIGN KEY(workout_id) REFERENCES workout_templates(id) ON DELETE RESTRICT
                );""",
            ["id", "workout_id", "start_date", "recurrence_type", "offset_days"],
        ),
        "schedule_overrides": (
            """CREATE TABLE schedule_overrides (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    schedule_id INTEGER NOT NULL,
                    date TEXT NOT NULL,
                    UNIQUE(schedule_id, date),
                    FOREIGN KEY(schedule_id) REFERENCES schedules(id) ON DELETE CASCADE
                );""",
            ["id", "schedule_id", "date"],
        ),
        "override_exercises": (
            """CREATE TABLE override_exercises (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    override_id INTEGER NOT NULL,
                    exercise_id INTEGER NOT NULL,
                    workout_exercise_id INTEGER,
                    type TEXT NOT NULL,
                    mode TEXT NOT NULL,
                    order_index INTEGER NOT NULL,
                    sets TEXT NOT NULL,
                    rest_after_exercise INTEGER,
                    FOREIGN KEY(override_id) REFERENCES schedule_overrides(id) ON DELETE CASCADE,
                    FOREIGN KEY(exercise_id) REFERENCES exercises(id) ON DELETE RESTRICT,
                    FOREIGN KEY(workout_exercise_id) REFERENCES template_exercises(id) ON DELETE SET NULL
                );""",
            [
                "id",
                "override_id",
                "exercise_id",
                "workout_exercise_id",
                "type",
                "mode",
                "order_index",
                "sets",
                "rest_after_exercise",
            ],
        ),
        "completed_workouts": (
            """CREATE TABLE completed_workouts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    workout_id INTEGER,
                    legacy_instance_id TEXT,
                    workout_name TEXT NOT NULL,
                    icon_code_point INTEGER NOT NULL,
                    scheduled_date TEXT NOT NULL,
                    completed_at TEXT NOT NULL,
                    FOREIGN KEY(workout_id) REFERENCES workout_templates(id) ON DELETE RESTRICT
                );""",
            [
                "id",
                "workout_id",
                "legacy_instance_id",
                "workout_name",
                "icon_code_point",
                "scheduled_date",
                "completed_at",
            ],
        ),
        "completed_exercises": (
            """CREATE TABLE completed_exercises (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    completed_workout_id INTEGER NOT NULL,
                    exercise_id INTEGER NOT NULL,
                    type TEXT NOT NULL,
                    mode TEXT NOT NULL,
                    order_index INTEGER NOT NULL,
                    sets TEXT NOT NULL,
                    rest_after_exercise INTEGER,
                    FOREIGN KEY(completed_workout_id) REFERENCES completed_workouts(id) ON DELETE CASCADE,
                    FOREIGN KEY(exercise_id) REFERENCES exercises(id) ON DELETE RESTRICT
                );""",
            [
                "id",
                "completed_workout_id",
                "exercise_id",
                "type",
                "mode",
                "order_index",
                "sets",
                "rest_after_exercise",
            ],
        ),
    }

    _INDEXES = [
        "CREATE INDEX IF NOT EXISTS ix_template_exercises_workout ON template_exercises(workout_id, order_index);",
        "CREATE INDEX IF NOT EXISTS ix_schedules_workout ON schedules(workout_id);",
        "CREATE INDEX IF NOT EXISTS ix_override_exercises_override ON override_exercises(override_id, order_index);",
        "CREATE INDEX IF NOT EXISTS ix_completed_workouts_date ON completed_workouts(scheduled_date);",
        "CREATE INDEX IF NOT EXISTS ix_completed_exercises_exercise ON completed_exercises(exercise_id);",
    ]

    # (name, type, mode, value): four sets, 90s rest between them
    _DEFAULT_EXERCISES = [
        ("Pull Ups", "dynamic", "reps", 10),
        ("Push Ups", "dynamic", "reps", 10),
        ("Dips", "dynamic", "reps", 10),
        ("Leg Press", "dynamic", "reps", 10),
        ("Bench Press", "dynamic", "reps", 10),
        ("Dead Lift", "dynamic", "reps", 10),
        ("Planche", "static", "static", 30),
        ("Dead Hang", "static", "static", 30),
        ("Front Lever", "static", "static", 30),
        ("Back Lever", "static", "static", 30),
    ]

    def __init__(self, db_path: str = "workout.db", *, seed_defaults: bool = True) -> None:
        self._db_path = db_path
        self._closed = False
        self.notifier = ChangeNotifier()
        self._ensure_schema()
        if seed_defaults:
            self._seed_default_exercises()

    @property
    def path(self) -> str:
        return self._db_path

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("database handle is closed")

    @contextmanager
    def _connection(self):
        self._check_open()
        connection = sqlite3.connect(self._db_path)
        try:
            connection.execute("PRAGMA foreign_keys = ON;")
            yield connection
            connection.commit()
        finally:
            connection.close()

    @asynccontextmanager
    async def _async_connection(self):
        self._check_open()
        conn = await aiosqlite.connect(self._db_path)
        try:
            await conn.execute("PRAGMA foreign_keys = ON;")
            yield conn
            await conn.commit()
        finally:
            await conn.close()

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            conn.execute("PRAGMA foreign_keys=off;")
            conn.execute("PRAGMA legacy_alter_table=ON;")
            for table, (sql, columns) in self._TABLE_DEFINITIONS.items():
                self._ensure_table(conn, table, sql, columns)
            for sql in self._INDEXES:
                conn.execute(sql)
            conn.execute("PRAGMA foreign_keys=on;")

    def _ensure_table(
        self, conn: sqlite3.Connection, table: str, sql: str, columns: List[str]
    ) -> None:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?;", (table,)
        )
        if cur.fetchone() is None:
            conn.execute(sql)
            return

        cur = conn.execute(f"PRAGMA table_info({table});")
        existing_cols = [row[1] for row in cur.fetchall()]
        if existing_cols == columns:
            return

        log.info("schema_table_rebuilt", table=table, columns=existing_cols)
        conn.execute(f"DROP TABLE IF EXISTS {table}_old;")
        conn.execute(f"ALTER TABLE {table} RENAME TO {table}_old;")
        conn.execute(sql)

        common = [c for c in existing_cols if c in columns]
        if common:
            cols = ", ".join(common)
            missing = [c for c in columns if c not in existing_cols]
            if missing:
                def default_val(col: str) -> str:
                    if col in ("is_default", "is_disabled"):
                        return "0"
                    if col == "icon_code_point":
                        return "0"
                    if col == "workout_name":
                        return "''"
                    return "NULL"

                defaults = ", ".join(default_val(c) for c in missing)
                conn.execute(
                    f"INSERT INTO {table} ({cols}, {', '.join(missing)}) SELECT {cols}, {defaults} FROM {table}_old;"
                )
            else:
                conn.execute(
                    f"INSERT INTO {table} ({cols}) SELECT {cols} FROM {table}_old;"
                )
        conn.execute(f"DROP TABLE {table}_old;")

    def _seed_default_exercises(self) -> None:
        with self._connection() as conn:
            count = conn.execute("SELECT COUNT(*) FROM exercises;").fetchone()[0]
            if count:
                return
            for name, ex_type, mode, value in self._DEFAULT_EXERCISES:
                sets = [ExerciseSet(value, 0.0, 90) for _ in range(3)]
                sets.append(ExerciseSet(value, 0.0, None))
                conn.execute(
                    "INSERT INTO exercises (name, type, mode, sets, is_default) VALUES (?, ?, ?, ?, 1);",
                    (name, ex_type, mode, sets_to_json(sets)),
                )
        log.info("default_exercises_seeded", count=len(self._DEFAULT_EXERCISES))


class BaseRepository:
    """Base repository providing async query helpers over a shared handle."""

    table: str = ""

    def __init__(self, db: Database) -> None:
        self.db = db

    @asynccontextmanager
    async def _write(self, operation: str, *tables: str):
        """Open a transaction; wrap integrity failures and notify on commit."""
        try:
            async with self.db._async_connection() as conn:
                yield conn
        except sqlite3.IntegrityError as e:
            log.warning("integrity_violation", operation=operation, error=str(e))
            raise ReferentialError(operation, str(e)) from e
        self.db.notifier.notify(tables or (self.table,))

    async def execute(
        self, query: str, params: Tuple = (), *, operation: str | None = None
    ) -> int:
        async with self._write(operation or f"{self.table}.write") as conn:
            cursor = await conn.execute(query, params)
            return cursor.lastrowid

    async def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        async with self.db._async_connection() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
            return list(rows)

    async def fetch_one(self, query: str, params: Tuple = ()) -> Optional[Tuple]:
        rows = await BaseRepository.fetch_all(self, query, params)
        return rows[0] if rows else None

    async def count(self) -> int:
        row = await self.fetch_one(f"SELECT COUNT(*) FROM {self.table};")
        return int(row[0]) if row else 0

    @staticmethod
    async def _reindex(conn, table: str, parent_col: str, parent_id: int) -> None:
        cursor = await conn.execute(
            f"SELECT id FROM {table} WHERE {parent_col} = ? ORDER BY order_index, id;",
            (parent_id,),
        )
        ids = [row[0] for row in await cursor.fetchall()]
        for pos, row_id in enumerate(ids):
            await conn.execute(
                f"UPDATE {table} SET order_index = ? WHERE id = ?;", (pos, row_id)
            )

    @staticmethod
    def _check_sibling_order(siblings, row_id: int, order_index: int) -> None:
        """Order indices stay a permutation of 0..n-1 after moving one row."""
        validate_order_indices(
            order_index if s.id == row_id else s.order_index for s in siblings
        )

    @staticmethod
    async def _apply_order(
        conn, table: str, parent_col: str, parent_id: int, order: list[int]
    ) -> None:
        cursor = await conn.execute(
            f"SELECT id FROM {table} WHERE {parent_col} = ?;", (parent_id,)
        )
        existing = [row[0] for row in await cursor.fetchall()]
        if set(order) != set(existing) or len(order) != len(existing):
            raise ValidationError("order", "order must list every exercise exactly once")
        for pos, row_id in enumerate(order):
            await conn.execute(
                f"UPDATE {table} SET order_index = ? WHERE id = ?;", (pos, row_id)
            )


ENTRY_COLUMNS = "exercise_id, type, mode, order_index, sets, rest_after_exercise"


def entry_params(entry: ExerciseEntry) -> tuple:
    return (
        entry.exercise_id,
        ExerciseType(entry.type).value,
        ExerciseMode(entry.mode).value,
        entry.order_index,
        sets_to_json(entry.sets),
        entry.rest_after_exercise,
    )


def _entry_fields(row: Tuple) -> dict:
    exercise_id, ex_type, mode, order_index, sets, rest = row
    return {
        "exercise_id": exercise_id,
        "type": ExerciseType(ex_type),
        "mode": ExerciseMode(mode),
        "order_index": order_index,
        "sets": sets_from_json(sets),
        "rest_after_exercise": rest,
    }


class ExerciseRepository(BaseRepository):
    """Repository for the exercise library."""

    table = "exercises"
    _COLUMNS = "id, name, type, mode, sets, is_default, is_disabled, rest_after_exercise"

    @staticmethod
    def _from_row(row: Tuple) -> Exercise:
        ex_id, name, ex_type, mode, sets, is_default, is_disabled, rest = row
        return Exercise(
            id=ex_id,
            name=name,
            type=ExerciseType(ex_type),
            mode=ExerciseMode(mode),
            sets=sets_from_json(sets),
            is_default=bool(is_default),
            is_disabled=bool(is_disabled),
            rest_after_exercise=rest,
        )

    async def create(
        self,
        name: str,
        ex_type: ExerciseType,
        mode: ExerciseMode,
        sets: list[ExerciseSet],
        *,
        is_default: bool = False,
        rest_after_exercise: int | None = None,
    ) -> int:
        name = validate_name(name)
        sets = validate_sets(sets)
        rest = validate_rest(rest_after_exercise)
        return await self.execute(
            "INSERT INTO exercises (name, type, mode, sets, is_default, rest_after_exercise) VALUES (?, ?, ?, ?, ?, ?);",
            (
                name,
                ExerciseType(ex_type).value,
                ExerciseMode(mode).value,
                sets_to_json(sets),
                int(is_default),
                rest,
            ),
            operation="exercises.create",
        )

    async def fetch_all(self, include_disabled: bool = False) -> list[Exercise]:
        query = f"SELECT {self._COLUMNS} FROM exercises"
        if not include_disabled:
            query += " WHERE is_disabled = 0"
        query += " ORDER BY name COLLATE NOCASE;"
        rows = await super().fetch_all(query)
        return [self._from_row(r) for r in rows]

    async def get(self, exercise_id: int) -> Optional[Exercise]:
        row = await self.fetch_one(
            f"SELECT {self._COLUMNS} FROM exercises WHERE id = ?;", (exercise_id,)
        )
        return self._from_row(row) if row else None

    async def fetch_detail(self, exercise_id: int) -> Exercise:
        exercise = await self.get(exercise_id)
        if exercise is None:
            raise NotFoundError("exercise not found")
        return exercise

    async def find_by_name(self, name: str) -> Optional[Exercise]:
        row = await self.fetch_one(
            f"SELECT {self._COLUMNS} FROM exercises WHERE name = ? COLLATE NOCASE;",
            (name.strip(),),
        )
        return self._from_row(row) if row else None

    async def name_exists(self, name: str, exclude_id: int | None = None) -> bool:
        existing = await self.find_by_name(name)
        return existing is not None and existing.id != exclude_id

    async def update(self, exercise: Exercise) -> None:
        name = validate_name(exercise.name)
        sets = validate_sets(exercise.sets)
        rest = validate_rest(exercise.rest_after_exercise)
        await self.fetch_detail(exercise.id)
        await self.execute(
            "UPDATE exercises SET name = ?, type = ?, mode = ?, sets = ?, rest_after_exercise = ? WHERE id = ?;",
            (
                name,
                ExerciseType(exercise.type).value,
                ExerciseMode(exercise.mode).value,
                sets_to_json(sets),
                rest,
                exercise.id,
            ),
            operation="exercises.update",
        )

    async def set_disabled(self, exercise_id: int, disabled: bool) -> None:
        await self.fetch_detail(exercise_id)
        await self.execute(
            "UPDATE exercises SET is_disabled = ? WHERE id = ?;",
            (int(disabled), exercise_id),
            operation="exercises.disable" if disabled else "exercises.enable",
        )

    async def delete(self, exercise_id: int) -> None:
        exercise = await self.fetch_detail(exercise_id)
        if exercise.is_default:
            raise ValidationError("is_default", "default exercises can only be disabled")
        await self.execute(
            "DELETE FROM exercises WHERE id = ?;",
            (exercise_id,),
            operation="exercises.delete",
        )


class WorkoutTemplateRepository(BaseRepository):
    """Repository for workout templates."""

    table = "workout_templates"
    _COLUMNS = "id, name, icon_code_point, is_disabled"

    @staticmethod
    def _from_row(row: Tuple) -> WorkoutTemplate:
        tid, name, icon, is_disabled = row
        return WorkoutTemplate(tid, name, icon, bool(is_disabled))

    async def create(self, name: str, icon_code_point: int) -> int:
        name = validate_name(name)
        return await self.execute(
            "INSERT INTO workout_templates (name, icon_code_point) VALUES (?, ?);",
            (name, int(icon_code_point)),
            operation="workout_templates.create",
        )

    async def fetch_all(self, include_disabled: bool = False) -> list[WorkoutTemplate]:
        query = f"SELECT {self._COLUMNS} FROM workout_templates"
        if not include_disabled:
            query += " WHERE is_disabled = 0"
        query += " ORDER BY name COLLATE NOCASE;"
        rows = await super().fetch_all(query)
        return [self._from_row(r) for r in rows]

    async def get(self, template_id: int) -> Optional[WorkoutTemplate]:
        row = await self.fetch_one(
            f"SELECT {self._COLUMNS} FROM workout_templates WHERE id = ?;",
            (template_id,),
        )
        return self._from_row(row) if row else None

    async def fetch_detail(self, template_id: int) -> WorkoutTemplate:
        template = await self.get(template_id)
        if template is None:
            raise NotFoundError("template not found")
        return template

    async def find_by_name(self, name: str) -> Optional[WorkoutTemplate]:
        row = await self.fetch_one(
            f"SELECT {self._COLUMNS} FROM workout_templates WHERE name = ? COLLATE NOCASE;",
            (name.strip(),),
        )
        return self._from_row(row) if row else None

    async def update(
        self,
        template_id: int,
        name: str | None = None,
        icon_code_point: int | None = None,
    ) -> None:
        await self.fetch_detail(template_id)
        if name is not None:
            name = validate_name(name)
        async with self._write("workout_templates.update") as conn:
            if name is not None:
                await conn.execute(
                    "UPDATE workout_templates SET name = ? WHERE id = ?;",
                    (name, template_id),
                )
            if icon_code_point is not None:
                await conn.execute(
                    "UPDATE workout_templates SET icon_code_point = ? WHERE id = ?;",
                    (int(icon_code_point), template_id),
                )

    async def set_disabled(self, template_id: int, disabled: bool) -> None:
        await self.fetch_detail(template_id)
        await self.execute(
            "UPDATE workout_templates SET is_disabled = ? WHERE id = ?;",
            (int(disabled), template_id),
            operation="workout_templates.disable" if disabled else "workout_templates.enable",
        )

    async def delete(self, template_id: int, *, detach_history: bool = False) -> None:
        """Hard-delete a template.

        Schedules always block deletion. Completions block it too unless
        ``detach_history`` is set, in which case their ``workout_id`` is
        cleared in the same transaction so the snapshots survive as orphans.
        """
        await self.fetch_detail(template_id)
        async with self._write(
            "workout_templates.delete",
            "workout_templates",
            "template_exercises",
            "override_exercises",
            "completed_workouts",
        ) as conn:
            if detach_history:
                await conn.execute(
                    "UPDATE completed_workouts SET workout_id = NULL WHERE workout_id = ?;",
                    (template_id,),
                )
            await conn.execute(
                "DELETE FROM workout_templates WHERE id = ?;", (template_id,)
            )


class TemplateExerciseRepository(BaseRepository):
    """Repository for the ordered exercise list of a template."""

    table = "template_exercises"

    @staticmethod
    def _from_row(row: Tuple) -> TemplateExercise:
        te_id, workout_id, *rest = row
        return TemplateExercise(id=te_id, workout_id=workout_id, **_entry_fields(rest))

    async def next_order_index(self, workout_id: int) -> int:
        row = await self.fetch_one(
            "SELECT COALESCE(MAX(order_index), -1) + 1 FROM template_exercises WHERE workout_id = ?;",
            (workout_id,),
        )
        return int(row[0]) if row else 0

    async def add(self, workout_id: int, entry: ExerciseEntry) -> int:
        entry = validate_entry(entry)
        return await self.execute(
            f"INSERT INTO template_exercises (workout_id, {ENTRY_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?);",
            (workout_id, *entry_params(entry)),
            operation="template_exercises.create",
        )

    async def fetch_for_workout(self, workout_id: int) -> list[TemplateExercise]:
        rows = await super().fetch_all(
            f"SELECT id, workout_id, {ENTRY_COLUMNS} FROM template_exercises WHERE workout_id = ? ORDER BY order_index, id;",
            (workout_id,),
        )
        return [self._from_row(r) for r in rows]

    async def get(self, template_exercise_id: int) -> Optional[TemplateExercise]:
        row = await self.fetch_one(
            f"SELECT id, workout_id, {ENTRY_COLUMNS} FROM template_exercises WHERE id = ?;",
            (template_exercise_id,),
        )
        return self._from_row(row) if row else None

    async def update(self, exercise: TemplateExercise) -> None:
        entry = validate_entry(exercise)
        existing = await self.get(exercise.id)
        if existing is None:
            raise NotFoundError("template exercise not found")
        if exercise.workout_id and exercise.workout_id != existing.workout_id:
            raise ValidationError("workout_id", "exercise belongs to another template")
        self._check_sibling_order(
            await self.fetch_for_workout(existing.workout_id), exercise.id, entry.order_index
        )
        await self.execute(
            "UPDATE template_exercises SET exercise_id = ?, type = ?, mode = ?, order_index = ?, sets = ?, rest_after_exercise = ? WHERE id = ?;",
            (*entry_params(entry), exercise.id),
            operation="template_exercises.update",
        )

    async def remove(self, template_exercise_id: int) -> None:
        existing = await self.get(template_exercise_id)
        if existing is None:
            raise NotFoundError("template exercise not found")
        async with self._write(
            "template_exercises.delete", "template_exercises", "override_exercises"
        ) as conn:
            await conn.execute(
                "DELETE FROM template_exercises WHERE id = ?;", (template_exercise_id,)
            )
            await self._reindex(conn, "template_exercises", "workout_id", existing.workout_id)

    async def reorder(self, workout_id: int, order: list[int]) -> None:
        async with self._write("template_exercises.reorder") as conn:
            await self._apply_order(conn, "template_exercises", "workout_id", workout_id, order)


class ScheduleRepository(BaseRepository):
    """Repository for schedules attaching templates to the calendar."""

    table = "schedules"
    _COLUMNS = "id, workout_id, start_date, recurrence_type, offset_days"

    @staticmethod
    def _from_row(row: Tuple) -> Schedule:
        sid, workout_id, start, rtype, offset = row
        return Schedule(sid, workout_id, to_civil_date(start), RecurrenceType(rtype), offset)

    async def create(
        self,
        workout_id: int,
        start_date: datetime.date,
        recurrence_type: RecurrenceType,
        offset_days: int | None = None,
        *,
        strict: bool = True,
    ) -> int:
        """Insert a schedule.

        Imported history may carry offset rules without a usable
        ``offset_days``; ``strict=False`` stores them as given and the
        recurrence engine treats them as never occurring.
        """
        recurrence_type = RecurrenceType(recurrence_type)
        if strict or recurrence_type is not RecurrenceType.OFFSET:
            offset_days = validate_offset_days(recurrence_type, offset_days)
        return await self.execute(
            "INSERT INTO schedules (workout_id, start_date, recurrence_type, offset_days) VALUES (?, ?, ?, ?);",
            (
                workout_id,
                to_civil_date(start_date).isoformat(),
                recurrence_type.value,
                offset_days,
            ),
            operation="schedules.create",
        )

    async def fetch_all(self) -> list[Schedule]:
        rows = await super().fetch_all(f"SELECT {self._COLUMNS} FROM schedules ORDER BY id;")
        return [self._from_row(r) for r in rows]

    async def fetch_for_workout(self, workout_id: int) -> list[Schedule]:
        rows = await super().fetch_all(
            f"SELECT {self._COLUMNS} FROM schedules WHERE workout_id = ? ORDER BY id;",
            (workout_id,),
        )
        return [self._from_row(r) for r in rows]

    async def get(self, schedule_id: int) -> Optional[Schedule]:
        row = await self.fetch_one(
            f"SELECT {self._COLUMNS} FROM schedules WHERE id = ?;", (schedule_id,)
        )
        return self._from_row(row) if row else None

    async def fetch_detail(self, schedule_id: int) -> Schedule:
        schedule = await self.get(schedule_id)
        if schedule is None:
            raise NotFoundError("schedule not found")
        return schedule

    async def update(self, schedule: Schedule) -> None:
        recurrence_type = RecurrenceType(schedule.recurrence_type)
        offset_days = validate_offset_days(recurrence_type, schedule.offset_days)
        await self.fetch_detail(schedule.id)
        await self.execute(
            "UPDATE schedules SET workout_id = ?, start_date = ?, recurrence_type = ?, offset_days = ? WHERE id = ?;",
            (
                schedule.workout_id,
                to_civil_date(schedule.start_date).isoformat(),
                recurrence_type.value,
                offset_days,
                schedule.id,
            ),
            operation="schedules.update",
        )

    async def delete(self, schedule_id: int) -> None:
        await self.fetch_detail(schedule_id)
        async with self._write(
            "schedules.delete", "schedules", "schedule_overrides", "override_exercises"
        ) as conn:
            await conn.execute("DELETE FROM schedules WHERE id = ?;", (schedule_id,))


class ScheduleOverrideRepository(BaseRepository):
    """Repository for per-date overrides and their exercise lists."""

    table = "schedule_overrides"
    _EXERCISE_COLUMNS = f"id, override_id, workout_exercise_id, {ENTRY_COLUMNS}"

    @staticmethod
    def _from_row(row: Tuple) -> ScheduleDayOverride:
        oid, schedule_id, date = row
        return ScheduleDayOverride(oid, schedule_id, to_civil_date(date))

    @staticmethod
    def _exercise_from_row(row: Tuple) -> OverrideExercise:
        oe_id, override_id, workout_exercise_id, *rest = row
        return OverrideExercise(
            id=oe_id,
            override_id=override_id,
            workout_exercise_id=workout_exercise_id,
            **_entry_fields(rest),
        )

    async def get(self, schedule_id: int, date) -> Optional[ScheduleDayOverride]:
        row = await self.fetch_one(
            "SELECT id, schedule_id, date FROM schedule_overrides WHERE schedule_id = ? AND date = ?;",
            (schedule_id, to_civil_date(date).isoformat()),
        )
        return self._from_row(row) if row else None

    async def get_by_id(self, override_id: int) -> Optional[ScheduleDayOverride]:
        row = await self.fetch_one(
            "SELECT id, schedule_id, date FROM schedule_overrides WHERE id = ?;",
            (override_id,),
        )
        return self._from_row(row) if row else None

    async def fetch_for_schedule(self, schedule_id: int) -> list[ScheduleDayOverride]:
        rows = await super().fetch_all(
            "SELECT id, schedule_id, date FROM schedule_overrides WHERE schedule_id = ? ORDER BY date;",
            (schedule_id,),
        )
        return [self._from_row(r) for r in rows]

    async def create(
        self,
        schedule_id: int,
        date,
        exercises: list[tuple[ExerciseEntry, int | None]] | None = None,
    ) -> int:
        """Insert an override, optionally with ``(entry, workout_exercise_id)``
        pairs, in one transaction."""
        checked = [(validate_entry(e), we_id) for e, we_id in exercises or []]
        async with self._write(
            "schedule_overrides.create", "schedule_overrides", "override_exercises"
        ) as conn:
            cursor = await conn.execute(
                "INSERT INTO schedule_overrides (schedule_id, date) VALUES (?, ?);",
                (schedule_id, to_civil_date(date).isoformat()),
            )
            override_id = cursor.lastrowid
            await self._insert_exercises(conn, override_id, checked)
        return override_id

    @staticmethod
    async def _insert_exercises(conn, override_id: int, pairs) -> None:
        for entry, we_id in pairs:
            await conn.execute(
                f"INSERT INTO override_exercises (override_id, workout_exercise_id, {ENTRY_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?);",
                (override_id, we_id, *entry_params(entry)),
            )

    async def copy_exercises(
        self, override_id: int, exercises: list[tuple[ExerciseEntry, int | None]]
    ) -> None:
        """Fill an existing override with ``(entry, workout_exercise_id)`` pairs."""
        checked = [(validate_entry(e), we_id) for e, we_id in exercises]
        async with self._write("override_exercises.create", "override_exercises") as conn:
            await self._insert_exercises(conn, override_id, checked)

    async def delete(self, override_id: int) -> None:
        async with self._write(
            "schedule_overrides.delete", "schedule_overrides", "override_exercises"
        ) as conn:
            await conn.execute(
                "DELETE FROM schedule_overrides WHERE id = ?;", (override_id,)
            )

    async def fetch_exercises(self, override_id: int) -> list[OverrideExercise]:
        rows = await super().fetch_all(
            f"SELECT {self._EXERCISE_COLUMNS} FROM override_exercises WHERE override_id = ? ORDER BY order_index, id;",
            (override_id,),
        )
        return [self._exercise_from_row(r) for r in rows]

    async def get_exercise(self, override_exercise_id: int) -> Optional[OverrideExercise]:
        row = await self.fetch_one(
            f"SELECT {self._EXERCISE_COLUMNS} FROM override_exercises WHERE id = ?;",
            (override_exercise_id,),
        )
        return self._exercise_from_row(row) if row else None

    async def next_order_index(self, override_id: int) -> int:
        row = await self.fetch_one(
            "SELECT COALESCE(MAX(order_index), -1) + 1 FROM override_exercises WHERE override_id = ?;",
            (override_id,),
        )
        return int(row[0]) if row else 0

    async def add_exercise(
        self,
        override_id: int,
        entry: ExerciseEntry,
        workout_exercise_id: int | None = None,
    ) -> int:
        entry = validate_entry(entry)
        async with self._write("override_exercises.create", "override_exercises") as conn:
            cursor = await conn.execute(
                f"INSERT INTO override_exercises (override_id, workout_exercise_id, {ENTRY_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?);",
                (override_id, workout_exercise_id, *entry_params(entry)),
            )
            return cursor.lastrowid

    async def update_exercise(self, exercise: OverrideExercise) -> None:
        entry = validate_entry(exercise)
        existing = await self.get_exercise(exercise.id)
        if existing is None:
            raise NotFoundError("override exercise not found")
        if exercise.override_id and exercise.override_id != existing.override_id:
            raise ValidationError("override_id", "exercise belongs to another override")
        self._check_sibling_order(
            await self.fetch_exercises(existing.override_id), exercise.id, entry.order_index
        )
        async with self._write("override_exercises.update", "override_exercises") as conn:
            await conn.execute(
                "UPDATE override_exercises SET exercise_id = ?, type = ?, mode = ?, order_index = ?, sets = ?, rest_after_exercise = ? WHERE id = ?;",
                (*entry_params(entry), exercise.id),
            )

    async def remove_exercise(self, override_exercise_id: int) -> None:
        existing = await self.get_exercise(override_exercise_id)
        if existing is None:
            raise NotFoundError("override exercise not found")
        async with self._write("override_exercises.delete", "override_exercises") as conn:
            await conn.execute(
                "DELETE FROM override_exercises WHERE id = ?;", (override_exercise_id,)
            )
            await self._reindex(conn, "override_exercises", "override_id", existing.override_id)

    async def reorder_exercises(self, override_id: int, order: list[int]) -> None:
        async with self._write("override_exercises.reorder", "override_exercises") as conn:
            await self._apply_order(conn, "override_exercises", "override_id", override_id, order)


class CompletedWorkoutRepository(BaseRepository):
    """Repository for completion snapshots and their exercises."""

    table = "completed_workouts"
    _COLUMNS = "id, workout_id, legacy_instance_id, workout_name, icon_code_point, scheduled_date, completed_at"
    _EXERCISE_COLUMNS = f"id, completed_workout_id, {ENTRY_COLUMNS}"

    @staticmethod
    def _from_row(row: Tuple) -> CompletedWorkout:
        cid, workout_id, legacy_id, name, icon, scheduled, completed_at = row
        return CompletedWorkout(
            id=cid,
            workout_id=workout_id,
            workout_name=name,
            icon_code_point=icon,
            scheduled_date=to_civil_date(scheduled),
            completed_at=datetime.datetime.fromisoformat(completed_at),
            legacy_instance_id=legacy_id,
        )

    @staticmethod
    def _exercise_from_row(row: Tuple) -> CompletedExercise:
        ce_id, completed_id, *rest = row
        return CompletedExercise(
            id=ce_id, completed_workout_id=completed_id, **_entry_fields(rest)
        )

    async def _with_exercises(self, rows: list[Tuple]) -> list[CompletedWorkout]:
        result = []
        for row in rows:
            completed = self._from_row(row)
            completed.exercises = await self.fetch_exercises(completed.id)
            result.append(completed)
        return result

    async def insert_with_exercises(
        self,
        *,
        workout_id: int | None,
        workout_name: str,
        icon_code_point: int,
        scheduled_date,
        completed_at: datetime.datetime,
        exercises: list[ExerciseEntry],
        legacy_instance_id: str | None = None,
    ) -> int:
        async with self._write(
            "completed_workouts.create", "completed_workouts", "completed_exercises"
        ) as conn:
            cursor = await conn.execute(
                "INSERT INTO completed_workouts (workout_id, legacy_instance_id, workout_name, icon_code_point, scheduled_date, completed_at) VALUES (?, ?, ?, ?, ?, ?);",
                (
                    workout_id,
                    legacy_instance_id,
                    workout_name,
                    int(icon_code_point),
                    to_civil_date(scheduled_date).isoformat(),
                    completed_at.isoformat(),
                ),
            )
            completed_id = cursor.lastrowid
            for entry in exercises:
                await conn.execute(
                    f"INSERT INTO completed_exercises (completed_workout_id, {ENTRY_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?);",
                    (completed_id, *entry_params(entry)),
                )
        return completed_id

    async def get(self, completed_id: int) -> Optional[CompletedWorkout]:
        rows = await super().fetch_all(
            f"SELECT {self._COLUMNS} FROM completed_workouts WHERE id = ?;",
            (completed_id,),
        )
        found = await self._with_exercises(rows)
        return found[0] if found else None

    async def fetch_detail(self, completed_id: int) -> CompletedWorkout:
        completed = await self.get(completed_id)
        if completed is None:
            raise NotFoundError("completed workout not found")
        return completed

    async def fetch_all(self) -> list[CompletedWorkout]:
        rows = await super().fetch_all(
            f"SELECT {self._COLUMNS} FROM completed_workouts ORDER BY scheduled_date DESC, id DESC;"
        )
        return await self._with_exercises(rows)

    async def fetch_for_date(self, date) -> list[CompletedWorkout]:
        rows = await super().fetch_all(
            f"SELECT {self._COLUMNS} FROM completed_workouts WHERE substr(scheduled_date, 1, 10) = ? ORDER BY id;",
            (to_civil_date(date).isoformat(),),
        )
        return await self._with_exercises(rows)

    async def find(self, workout_id: int, date) -> Optional[CompletedWorkout]:
        rows = await super().fetch_all(
            f"SELECT {self._COLUMNS} FROM completed_workouts WHERE workout_id = ? AND substr(scheduled_date, 1, 10) = ? ORDER BY id LIMIT 1;",
            (workout_id, to_civil_date(date).isoformat()),
        )
        found = await self._with_exercises(rows)
        return found[0] if found else None

    async def fetch_dates_in_range(self, start, end) -> list[datetime.date]:
        rows = await super().fetch_all(
            "SELECT DISTINCT substr(scheduled_date, 1, 10) FROM completed_workouts WHERE substr(scheduled_date, 1, 10) BETWEEN ? AND ? ORDER BY 1;",
            (to_civil_date(start).isoformat(), to_civil_date(end).isoformat()),
        )
        return [to_civil_date(r[0]) for r in rows]

    async def fetch_exercises(self, completed_id: int) -> list[CompletedExercise]:
        rows = await super().fetch_all(
            f"SELECT {self._EXERCISE_COLUMNS} FROM completed_exercises WHERE completed_workout_id = ? ORDER BY order_index, id;",
            (completed_id,),
        )
        return [self._exercise_from_row(r) for r in rows]

    async def get_exercise(self, completed_exercise_id: int) -> Optional[CompletedExercise]:
        row = await self.fetch_one(
            f"SELECT {self._EXERCISE_COLUMNS} FROM completed_exercises WHERE id = ?;",
            (completed_exercise_id,),
        )
        return self._exercise_from_row(row) if row else None

    async def update_exercise(self, exercise: CompletedExercise) -> None:
        entry = validate_entry(exercise)
        if await self.get_exercise(exercise.id) is None:
            raise NotFoundError("completed exercise not found")
        async with self._write("completed_exercises.update", "completed_exercises") as conn:
            await conn.execute(
                "UPDATE completed_exercises SET exercise_id = ?, type = ?, mode = ?, order_index = ?, sets = ?, rest_after_exercise = ? WHERE id = ?;",
                (*entry_params(entry), exercise.id),
            )

    async def history_for_exercise(self, exercise_id: int) -> list[CompletedExercise]:
        rows = await super().fetch_all(
            """
            SELECT ce.id, ce.completed_workout_id, ce.exercise_id, ce.type, ce.mode,
                   ce.order_index, ce.sets, ce.rest_after_exercise
            FROM completed_exercises ce
            JOIN completed_workouts cw ON ce.completed_workout_id = cw.id
            WHERE ce.exercise_id = ?
            ORDER BY cw.completed_at DESC, cw.id DESC, ce.order_index;
            """,
            (exercise_id,),
        )
        return [self._exercise_from_row(r) for r in rows]

    async def delete(self, completed_id: int) -> None:
        async with self._write(
            "completed_workouts.delete", "completed_workouts", "completed_exercises"
        ) as conn:
            await conn.execute(
                "DELETE FROM completed_workouts WHERE id = ?;", (completed_id,)
            )
