from pathlib import Path
from datetime import date
from decimal import Decimal
from uuid import uuid4
import os
import tempfile

import pytest

# Point the app at a throwaway database before any `registrar` import reads settings.
_TEST_DB = Path(__file__).resolve().parents[1] / "test_registrar.db"
if _TEST_DB.exists():
    _TEST_DB.unlink()
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_DB}"
os.environ.setdefault("ADMISSION_OBSERVABILITY_DIR", tempfile.mkdtemp(prefix="registrar-obs-"))

from sqlmodel import Session  # noqa: E402

from registrar.database import create_db_and_tables, make_engine  # noqa: E402
from registrar.services import CatalogService, EnrollmentService  # noqa: E402
from registrar.utils.course_locks import CourseLockRegistry  # noqa: E402


@pytest.fixture
def engine(tmp_path):
    """A fresh SQLite file per test; threads share it through the engine pool."""
    eng = make_engine(f"sqlite:///{tmp_path / 'registrar.db'}")
    create_db_and_tables(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def locks():
    return CourseLockRegistry(timeout_seconds=5)


@pytest.fixture
def admission(session, locks):
    return EnrollmentService(session, locks=locks)


class CatalogHelper:
    """Shortcuts for building semesters, courses and students in tests."""

    def __init__(self, session):
        self.svc = CatalogService(session)
        self._semester = None

    @property
    def semester(self):
        if self._semester is None:
            code = f"T-{uuid4().hex[:8]}"
            self._semester = self.svc.create_semester("Test semester", code, date(2026, 1, 10), date(2026, 5, 30))
        return self._semester

    def course(self, capacity=2, fee=Decimal("0"), code=None):
        return self.svc.create_course(self.semester.id, "Course", code or f"C-{uuid4().hex[:6]}",
                                      max_capacity=capacity, fee=fee)

    def students(self, n):
        return [self.svc.create_student(f"First{i}", f"Last{i}") for i in range(n)]

    def student(self):
        return self.students(1)[0]


@pytest.fixture
def catalog(session):
    return CatalogHelper(session)
