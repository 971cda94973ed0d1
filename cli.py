import argparse
import asyncio
import datetime
from typing import Optional

from calendar_service import CalendarService
from db import Database
from logging_config import configure_logging
from migrate import ImportReport, import_legacy_file
from models import RecurrenceType, to_civil_date
from planner_service import PlannerService
from settings_schema import load_settings
from tools import ExerciseTools


def import_legacy(db_path: str, store_path: str) -> ImportReport:
    """Import a legacy JSON dump once; later runs are no-ops."""
    db = Database(db_path)
    try:
        report = asyncio.run(import_legacy_file(db, store_path))
    finally:
        db.close()
    if report.skipped:
        print("Nothing to import")
    else:
        print(
            f"Imported {report.templates} templates, {report.schedules} schedules "
            f"and {report.completions} completions"
        )
    return report


def _marker(entry) -> str:
    if entry.is_orphaned:
        return "[orphaned]"
    if entry.is_completed:
        return "[done]"
    return "[ ]"


async def _day_lines(db: Database, day: datetime.date) -> list[str]:
    calendar = CalendarService(db)
    names = {e.id: e.name for e in await calendar.planner.exercises.fetch_all(True)}
    lines = []
    for entry in await calendar.workouts_on(day):
        lines.append(f"{_marker(entry)} {entry.workout_name}")
        for ex in entry.exercises:
            name = names.get(ex.exercise_id, f"#{ex.exercise_id}")
            lines.append(f"    {ExerciseTools.entry_summary(name, ex)}")
    return lines


def show_day(db_path: str, day: str) -> list[str]:
    db = Database(db_path)
    try:
        lines = asyncio.run(_day_lines(db, to_civil_date(day)))
    finally:
        db.close()
    print("\n".join(lines) if lines else "No workouts")
    return lines


def show_occurrences(db_path: str, schedule_id: int, start: str, end: str) -> list[datetime.date]:
    db = Database(db_path)
    try:
        dates = asyncio.run(PlannerService(db).occurrences(schedule_id, start, end))
    finally:
        db.close()
    for d in dates:
        print(d.isoformat())
    return dates


async def _demo(db: Database, today: datetime.date) -> bool:
    planner = PlannerService(db)
    if await planner.templates.count():
        return False
    push = await planner.create_template("Push Day")
    for name in ("Push Ups", "Bench Press", "Dips"):
        exercise = await planner.exercises.find_by_name(name)
        await planner.add_exercise_to_workout(push, exercise.id)
    await planner.schedule_workout(push, today, RecurrenceType.WEEKLY)

    hangs = await planner.create_template("Hang Session")
    for name in ("Dead Hang", "Front Lever"):
        exercise = await planner.exercises.find_by_name(name)
        await planner.add_exercise_to_workout(hangs, exercise.id)
    await planner.schedule_workout(hangs, today, RecurrenceType.OFFSET, 3)
    return True


def demo_data(db_path: str, today: Optional[datetime.date] = None) -> bool:
    """Populate the database with demo templates and schedules if empty."""
    db = Database(db_path, seed_defaults=True)
    try:
        inserted = asyncio.run(_demo(db, today or datetime.date.today()))
    finally:
        db.close()
    print("Demo data inserted" if inserted else "Database already contains templates")
    return inserted


def serve(yaml_path: str, host: str, port: int) -> None:
    import uvicorn

    from rest_api import GymAPI

    api = GymAPI(yaml_path=yaml_path)
    uvicorn.run(api.app, host=host, port=port)


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Workout planner commands")
    parser.add_argument("--yaml", default="settings.yaml")
    sub = parser.add_subparsers(dest="cmd", required=True)

    imp = sub.add_parser("import_legacy")
    imp.add_argument("--db", default=None)
    imp.add_argument("--store", default=None)

    day = sub.add_parser("day")
    day.add_argument("date", nargs="?", default=None)
    day.add_argument("--db", default=None)

    occ = sub.add_parser("occurrences")
    occ.add_argument("schedule_id", type=int)
    occ.add_argument("--start", required=True)
    occ.add_argument("--end", required=True)
    occ.add_argument("--db", default=None)

    demo = sub.add_parser("demo")
    demo.add_argument("--db", default=None)

    srv = sub.add_parser("serve")
    srv.add_argument("--host", default="127.0.0.1")
    srv.add_argument("--port", type=int, default=8000)

    args = parser.parse_args(argv)
    settings = load_settings(args.yaml)
    configure_logging(settings.log_level, settings.app_env)
    db_path = getattr(args, "db", None) or settings.db_path

    if args.cmd == "import_legacy":
        store = args.store or settings.legacy_store_path
        if not store:
            parser.error("no legacy store given (--store or legacy_store_path)")
        import_legacy(db_path, store)
    elif args.cmd == "day":
        show_day(db_path, args.date or datetime.date.today().isoformat())
    elif args.cmd == "occurrences":
        show_occurrences(db_path, args.schedule_id, args.start, args.end)
    elif args.cmd == "demo":
        demo_data(db_path)
    elif args.cmd == "serve":
        serve(args.yaml, args.host, args.port)


if __name__ == "__main__":
    main()
