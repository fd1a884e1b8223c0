"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
account holders, students, semesters, courses, enrollments, payments).
Repositories return SQLModel objects. Most of them commit and refresh
like plain CRUD; the enrollment repository only flushes, because
admission decisions commit the enrollment together with the ledger and
waitlist changes.
"""

from typing import List, Optional
from sqlmodel import Session, select
from . import models


class UserRepository:
    """CRUD operations for `User` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, user: models.User) -> models.User:
        """Persist a new user and return the managed instance."""
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def get_by_username(self, username: str) -> Optional[models.User]:
        """Return a `User` by username or `None` if not found."""
        stmt = select(models.User).where(models.User.username == username)
        return self.session.exec(stmt).first()

    def get(self, user_id: int) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)


class AccountHolderRepository:
    """CRUD operations for family `AccountHolder` records."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, holder: models.AccountHolder) -> models.AccountHolder:
        self.session.add(holder)
        self.session.commit()
        self.session.refresh(holder)
        return holder

    def get(self, holder_id: int) -> Optional[models.AccountHolder]:
        return self.session.get(models.AccountHolder, holder_id)

    def get_by_email(self, email: str) -> Optional[models.AccountHolder]:
        stmt = select(models.AccountHolder).where(models.AccountHolder.email == email)
        return self.session.exec(stmt).first()


class StudentRepository:
    def __init__(self, session: Session):
        self.session = session

    def create(self, student: models.Student) -> models.Student:
        self.session.add(student)
        self.session.commit()
        self.session.refresh(student)
        return student

    def get(self, student_id: int) -> Optional[models.Student]:
        return self.session.get(models.Student, student_id)

    def list_by_account_holder(self, holder_id: int) -> List[models.Student]:
        stmt = (
            select(models.Student)
            .where(models.Student.account_holder_id == holder_id)
            .order_by(models.Student.last_name, models.Student.first_name, models.Student.id)
        )
        return self.session.exec(stmt).all()


class SemesterRepository:
    """CRUD operations for `Semester` records."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, semester: models.Semester) -> models.Semester:
        self.session.add(semester)
        self.session.commit()
        self.session.refresh(semester)
        return semester

    def get(self, semester_id: int) -> Optional[models.Semester]:
        return self.session.get(models.Semester, semester_id)

    def get_by_code(self, code: str) -> Optional[models.Semester]:
        stmt = select(models.Semester).where(models.Semester.code == code)
        return self.session.exec(stmt).first()

    def list_all(self) -> List[models.Semester]:
        """Return all semesters, most recent start date first."""
        stmt = select(models.Semester).order_by(models.Semester.start_date.desc())
        return self.session.exec(stmt).all()


class CourseRepository:
    """CRUD operations for `Course` offerings.

    Capacity and the admitted counter are not written here; see
    `registrar.utils.capacity_ledger`.
    """
    def __init__(self, session: Session):
        self.session = session

    def create(self, course: models.Course) -> models.Course:
        self.session.add(course)
        self.session.commit()
        self.session.refresh(course)
        return course

    def get(self, course_id: int) -> Optional[models.Course]:
        return self.session.get(models.Course, course_id)

    def list(self, semester_id: Optional[int] = None) -> List[models.Course]:
        """List courses ordered by code, optionally for one semester."""
        stmt = select(models.Course)
        if semester_id is not None:
            stmt = stmt.where(models.Course.semester_id == semester_id)
        return self.session.exec(stmt.order_by(models.Course.code)).all()

    def code_exists(self, code: str, semester_id: int) -> bool:
        stmt = select(models.Course.id).where(models.Course.code == code, models.Course.semester_id == semester_id)
        return self.session.exec(stmt).first() is not None


class EnrollmentRepository:
    """Queries and staging for `Enrollment` rows (flush only, no commit)."""
    def __init__(self, session: Session):
        self.session = session

    def add(self, enrollment: models.Enrollment) -> models.Enrollment:
        """Stage `enrollment` and flush so it receives an id."""
        self.session.add(enrollment)
        self.session.flush()
        return enrollment

    def get(self, enrollment_id: int) -> Optional[models.Enrollment]:
        return self.session.get(models.Enrollment, enrollment_id)

    def find_active(self, student_id: int, course_id: int) -> Optional[models.Enrollment]:
        """Return the Enrolled or Waitlisted row of the pair, if any."""
        stmt = select(models.Enrollment).where(
            models.Enrollment.student_id == student_id,
            models.Enrollment.course_id == course_id,
            models.Enrollment.enrollment_type.in_(models.ACTIVE_TYPES),
        )
        return self.session.exec(stmt).first()

    def list_by_course(self, course_id: int, enrollment_type: Optional[models.EnrollmentType] = None) -> List[models.Enrollment]:
        """List a course's enrollments in registration order."""
        stmt = select(models.Enrollment).where(models.Enrollment.course_id == course_id)
        if enrollment_type is not None:
            stmt = stmt.where(models.Enrollment.enrollment_type == enrollment_type)
        stmt = stmt.order_by(models.Enrollment.enrollment_date, models.Enrollment.id)
        return self.session.exec(stmt).all()

    def list_by_student(self, student_id: int) -> List[models.Enrollment]:
        stmt = (
            select(models.Enrollment)
            .where(models.Enrollment.student_id == student_id)
            .order_by(models.Enrollment.enrollment_date.desc(), models.Enrollment.id.desc())
        )
        return self.session.exec(stmt).all()


class PaymentRepository:
    """Persist payments and query them per enrollment."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, payment: models.Payment) -> models.Payment:
        self.session.add(payment)
        self.session.commit()
        self.session.refresh(payment)
        return payment

    def list_for_enrollment(self, enrollment_id: int) -> List[models.Payment]:
        stmt = (
            select(models.Payment)
            .where(models.Payment.enrollment_id == enrollment_id)
            .order_by(models.Payment.payment_date, models.Payment.id)
        )
        return self.session.exec(stmt).all()

    def list_for_account_holder(self, holder_id: int,
                                payment_type: Optional[models.PaymentType] = None) -> List[models.Payment]:
        """List a family's payments, newest first, optionally of one type."""
        stmt = select(models.Payment).where(models.Payment.account_holder_id == holder_id)
        if payment_type is not None:
            stmt = stmt.where(models.Payment.payment_type == payment_type)
        stmt = stmt.order_by(models.Payment.payment_date.desc(), models.Payment.id.desc())
        return self.session.exec(stmt).all()
