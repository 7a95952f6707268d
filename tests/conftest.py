from datetime import date
from io import BytesIO

import pytest
from openpyxl import Workbook

from planning.calendar import CalendarResolver
from planning.config import PlanningConfig
from planning.db import Database
from planning.models import Child, StaffMember
from planning.store import ScheduleStore

HEADER = ["Personnel", "09:00-10:00", "10:00-11:00", "11:00-12:00", "14:00-15:00", "15:00-16:00"]
SHEETS = ["Lundi", "Mardi", "Mercredi", "Jeudi", "Vendredi"]

STAFF = [
    StaffMember(id="s1", first_name="Claire", last_name="Dubois"),
    StaffMember(id="s2", first_name="Marc", last_name="Petit"),
    StaffMember(id="s3", first_name="Julie", last_name="Moreau"),
    StaffMember(id="s4", first_name="Hugo", last_name="Lefebvre"),
    StaffMember(id="s5", first_name="Sophie", last_name="Laurent"),
]

CHILDREN = [
    Child(id=1, first_name="Emma", last_name="Martin"),
    Child(id=2, first_name="Louis", last_name="Bernard"),
    Child(id=3, first_name="Chloé", last_name="Thomas"),
    Child(id=4, first_name="Lucas", last_name="Robert"),
    Child(id=5, first_name="Léa", last_name="Richard"),
    Child(id=6, first_name="Gabriel", last_name="Durand"),
    Child(id=7, first_name="Inès", last_name="Leroy"),
    Child(id=8, first_name="Arthur", last_name="Moreau"),
    Child(id=9, first_name="Jade", last_name="Simon"),
    Child(id=10, first_name="Noah", last_name="Michel"),
]

SEMESTER_START = date(2025, 9, 1)
SEMESTER_END = date(2025, 12, 20)


def day_rows(sheet: str) -> list[list]:
    """A full-coverage day: everyone in slot 1, everyone in slot 4 except Wednesday."""
    short = sheet == "Mercredi"
    return [
        ["Claire Dubois", "Accueil – tous", None, None, None if short else "Atelier – tous", None],
        ["Marc Petit", None, "Piscine – Inès Leroy, Arthur Moreau", None, None, None],
        ["Julie Moreau", None, None, "Lecture – Emma Martin", None, None if short else "Jeux – Jade Simon"],
        ["Hugo Lefebvre", None, None, "Pause", None, None],
        ["Sophie Laurent", None, "Motricité – Noah Michel, Léa Richard", None, None, None],
    ]


def template(overrides: dict[str, list[list]] | None = None) -> dict[str, list[list]]:
    sheets = {title: day_rows(title) for title in SHEETS}
    sheets.update(overrides or {})
    return sheets


def build_workbook(sheets: dict[str, list[list]], header: list | None = None) -> bytes:
    workbook = Workbook()
    workbook.remove(workbook.active)
    for title, rows in sheets.items():
        worksheet = workbook.create_sheet(title)
        worksheet.append(header or HEADER)
        for row in rows:
            worksheet.append(row)
    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def config(tmp_path):
    return PlanningConfig(_env_file=None, database_url=f"sqlite:///{tmp_path / 'planning.db'}")


@pytest.fixture
def calendar():
    return CalendarResolver("FR", "C")


@pytest.fixture
def db(config):
    database = Database(config.database_url)
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def store(db, config):
    store = ScheduleStore(db, config)
    store.upsert_staff(STAFF)
    store.upsert_children(CHILDREN)
    return store


@pytest.fixture
def semester(store):
    return store.create_semester("Automne 2025", SEMESTER_START, SEMESTER_END)


@pytest.fixture
def workbook_bytes():
    return build_workbook(template())
