import os
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from calendar_service import CalendarService
from completion_service import CompletionService
from db import Database
from planner_service import PlannerService


@pytest.fixture
def db(tmp_path):
    database = Database(str(tmp_path / "workout.db"))
    yield database
    database.close()


@pytest.fixture
def planner(db):
    return PlannerService(db)


@pytest.fixture
def completions(db, planner):
    return CompletionService(db, planner)


@pytest.fixture
def calendar(db, planner, completions):
    return CalendarService(db, planner, completions)
