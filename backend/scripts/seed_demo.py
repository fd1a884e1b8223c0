"""CLI script to seed a demo semester, courses and a family of students into the backend DB.
Usage: python scripts/seed_demo.py [--capacity N] [--students N] [--register]
"""
import sys
import argparse
import pathlib
from datetime import date, timedelta
from decimal import Decimal
# Ensure `backend/` is on sys.path so `registrar` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from registrar.database import engine, create_db_and_tables
from registrar import services

DEMO_COURSES = [
    ("ART-101", "Watercolor Basics", Decimal("120.00")),
    ("SCI-110", "Kitchen Chemistry", Decimal("95.00")),
    ("MUS-120", "Intro to Recorder", Decimal("0")),
]


def main(capacity: int = 3, students: int = 5, register: bool = False, code: str = "DEMO"):
    """Create a demo semester with a few small courses and students.

    With `register`, every student is registered for every course so the
    later ones land on the waitlist. Results are printed to stdout for a
    quick CLI feedback loop.
    """
    create_db_and_tables()
    with Session(engine) as session:
        catalog = services.CatalogService(session)
        start = date.today()
        try:
            semester = catalog.create_semester(f"Demo semester {start.year}", code, start, start + timedelta(days=120))
        except ValueError as e:
            print(f'Semester not created: {e}')
            return
        print(f'Created semester {semester.code} (id {semester.id})')
        courses = []
        for course_code, name, fee in DEMO_COURSES:
            c = catalog.create_course(semester.id, name, course_code, max_capacity=capacity, fee=fee)
            courses.append(c)
            print(f'Created course {c.code} with {c.max_capacity} seats')
        families = services.AccountHolderService(session)
        family = families.create("Demo", "Family", f"family-{code.lower()}@example.org",
                                 membership_dues_owed=Decimal("50.00"))
        created = []
        for i in range(students):
            created.append(families.add_student(family.id, first_name=f"Student{i + 1}", last_name="Demo",
                                                email=f"student{i + 1}@example.org"))
        print(f'Created {len(created)} students in account {family.email}')
        if not register:
            return
        results = families.register_students(family.id, [s.id for s in created], [c.id for c in courses])
        for r in results:
            e = r['enrollment']
            if e is None:
                print(f"student {r['student_id']} course {r['course_id']}: {r['error']['code']}")
            elif e.waitlist_position:
                print(f"student {e.student_id} course {e.course_id}: {e.enrollment_type.value} #{e.waitlist_position}")
            else:
                print(f"student {e.student_id} course {e.course_id}: {e.enrollment_type.value}")


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('--capacity', type=int, default=3, help='Seats per demo course')
    parser.add_argument('--students', type=int, default=5, help='Number of demo students')
    parser.add_argument('--register', action='store_true', help='Register every student for every course')
    parser.add_argument('--code', default='DEMO', help='Semester code to create')
    args = parser.parse_args()
    main(capacity=args.capacity, students=args.students, register=args.register, code=args.code)
