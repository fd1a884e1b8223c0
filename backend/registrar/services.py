"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories and
the admission core. Most services are thin: they validate input and
persist aggregates via repositories. `EnrollmentService` is the admission
controller; every seat-affecting operation runs inside the course's
exclusion scope and commits ledger, waitlist and enrollment changes as
one unit.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
import logging
from passlib.context import CryptContext
from typing import Callable, Iterable, List, Optional, Tuple, TypeVar
from . import models, repositories
from sqlmodel import Session
from .auth import issue_token
from .config import settings
from .errors import (
    AlreadyTerminal,
    CapacityError,
    CourseBusy,
    DuplicateEnrollment,
    InvariantViolation,
    NotFound,
)
from .utils.admission_observability import record_admission_event
from .utils.capacity_ledger import CapacityLedger, CapacitySnapshot
from .utils.course_locks import CourseLockRegistry
from .utils.promotion import PromotionTrigger
from .utils.reconciliation import AccountBalance, Reconciliation, ReconciliationView
from .utils.waitlist import WaitlistQueue

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

# process-wide: every request thread must share the same per-course locks
course_locks = CourseLockRegistry(timeout_seconds=settings.COURSE_LOCK_TIMEOUT_SECONDS)

logger = logging.getLogger("registrar.admission")

T = TypeVar("T")


class AuthService:
    """Authentication related operations (register + authenticate)."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def register(self, username: str, password: str) -> models.User:
        """Create a new user with a hashed password.

        Returns the persisted `User` instance.
        """
        hashed = PWD_CTX.hash(password)
        u = models.User(username=username, password_hash=hashed)
        return self.user_repo.create(u)

    def authenticate(self, username: str, password: str):
        """Verify credentials and return a signed JWT token on success.

        Returns `None` if authentication fails.
        """
        user = self.user_repo.get_by_username(username)
        if not user:
            return None
        if not PWD_CTX.verify(password, user.password_hash):
            return None
        return issue_token(user)


class CatalogService:
    """Create and look up students, semesters and course offerings."""
    def __init__(self, session: Session):
        self.session = session
        self.students = repositories.StudentRepository(session)
        self.semesters = repositories.SemesterRepository(session)
        self.courses = repositories.CourseRepository(session)
        self.holders = repositories.AccountHolderRepository(session)

    def create_student(self, first_name: str, last_name: str, email: Optional[str] = None,
                       grade: Optional[str] = None, date_of_birth: Optional[date] = None,
                       notes: Optional[str] = None, account_holder_id: Optional[int] = None) -> models.Student:
        if not first_name.strip() or not last_name.strip():
            raise ValueError("first_name and last_name are required")
        if account_holder_id is not None and self.holders.get(account_holder_id) is None:
            raise NotFound("account holder", account_holder_id)
        s = models.Student(first_name=first_name.strip(), last_name=last_name.strip(), email=email,
                           grade=grade, date_of_birth=date_of_birth, notes=notes,
                           account_holder_id=account_holder_id)
        return self.students.create(s)

    def get_student(self, student_id: int) -> models.Student:
        student = self.students.get(student_id)
        if student is None:
            raise NotFound("student", student_id)
        return student

    def create_semester(self, name: str, code: str, start_date: date, end_date: date,
                        is_active: bool = True) -> models.Semester:
        """Create a semester; codes are unique and the dates must be ordered."""
        if end_date < start_date:
            raise ValueError("end_date must not be before start_date")
        if self.semesters.get_by_code(code):
            raise ValueError(f"semester code already exists: {code}")
        sem = models.Semester(name=name, code=code, start_date=start_date, end_date=end_date, is_active=is_active)
        return self.semesters.create(sem)

    def list_semesters(self) -> List[models.Semester]:
        return self.semesters.list_all()

    def create_course(self, semester_id: int, name: str, code: str, max_capacity: int,
                      fee: Decimal = Decimal("0"), description: Optional[str] = None,
                      age_group: Optional[str] = None) -> models.Course:
        """Create a course offering with an empty ledger.

        Raises `NotFound` for an unknown semester, `CapacityError` for a
        non-positive capacity and `ValueError` for a negative fee or a code
        already used in the semester.
        """
        if self.semesters.get(semester_id) is None:
            raise NotFound("semester", semester_id)
        if max_capacity < 1:
            raise CapacityError("max_capacity must be a positive integer")
        if fee < 0:
            raise ValueError("fee must be >= 0")
        if self.courses.code_exists(code, semester_id):
            raise ValueError(f"course code already exists in semester: {code}")
        course = models.Course(semester_id=semester_id, name=name, code=code, max_capacity=max_capacity,
                               fee=fee, description=description, age_group=age_group, enrolled_count=0)
        return self.courses.create(course)

    def get_course(self, course_id: int) -> models.Course:
        course = self.courses.get(course_id)
        if course is None:
            raise NotFound("course", course_id)
        return course

    def list_courses(self, semester_id: Optional[int] = None) -> List[models.Course]:
        return self.courses.list(semester_id)


class AccountHolderService:
    """Family accounts: their students, payments and batch registration."""
    def __init__(self, session: Session):
        self.session = session
        self.holders = repositories.AccountHolderRepository(session)
        self.students = repositories.StudentRepository(session)
        self.payments = repositories.PaymentRepository(session)
        self.view = ReconciliationView(session)

    def create(self, first_name: str, last_name: str, email: str, home_phone: Optional[str] = None,
               mobile_phone: Optional[str] = None,
               membership_dues_owed: Decimal = Decimal("0")) -> models.AccountHolder:
        """Create a family account; emails are unique across accounts."""
        if not first_name.strip() or not last_name.strip():
            raise ValueError("first_name and last_name are required")
        if not email or "@" not in email:
            raise ValueError("a valid email is required")
        if membership_dues_owed < 0:
            raise ValueError("membership_dues_owed must be >= 0")
        if self.holders.get_by_email(email):
            raise ValueError(f"account holder email already exists: {email}")
        holder = models.AccountHolder(first_name=first_name.strip(), last_name=last_name.strip(), email=email,
                                      home_phone=home_phone, mobile_phone=mobile_phone,
                                      membership_dues_owed=membership_dues_owed)
        return self.holders.create(holder)

    def get(self, holder_id: int) -> models.AccountHolder:
        holder = self.holders.get(holder_id)
        if holder is None:
            raise NotFound("account holder", holder_id)
        return holder

    def list_students(self, holder_id: int) -> List[models.Student]:
        self.get(holder_id)
        return self.students.list_by_account_holder(holder_id)

    def add_student(self, holder_id: int, **fields) -> models.Student:
        self.get(holder_id)
        return CatalogService(self.session).create_student(account_holder_id=holder_id, **fields)

    def list_payments(self, holder_id: int, payment_type: Optional[models.PaymentType] = None) -> List[models.Payment]:
        self.get(holder_id)
        return self.payments.list_for_account_holder(holder_id, payment_type)

    def balance(self, holder_id: int) -> AccountBalance:
        return self.view.account_balance(self.get(holder_id))

    def register_students(self, holder_id: int, student_ids: Iterable[int], course_ids: Iterable[int],
                          admission: Optional["EnrollmentService"] = None) -> List[dict]:
        """Register each of the family's students for each course.

        Every pair is admitted on its own, as in
        `EnrollmentService.register_batch`. A student id that does not
        belong to the family is rejected before anything is registered.
        """
        own = {s.id for s in self.list_students(holder_id)}
        student_ids, course_ids = list(student_ids), list(course_ids)
        foreign = [sid for sid in student_ids if sid not in own]
        if foreign:
            raise ValueError(f"students {foreign} do not belong to account holder {holder_id}")
        admission = admission or EnrollmentService(self.session)
        return admission.register_batch((sid, cid) for sid in student_ids for cid in course_ids)


@dataclass
class WithdrawalResult:
    enrollment: models.Enrollment
    previous_state: models.EnrollmentType
    promoted: List[models.Enrollment] = field(default_factory=list)


@dataclass
class ResizeResult:
    capacity: CapacitySnapshot
    promoted: List[models.Enrollment] = field(default_factory=list)


class EnrollmentService:
    """Admission controller: register, withdraw, resize and waitlist reads.

    Seat-affecting operations on one course are serialized through
    `locks`; operations on different courses proceed in parallel.
    """
    def __init__(self, session: Session, locks: Optional[CourseLockRegistry] = None,
                 max_promotions: Optional[int] = None, verify_invariants: Optional[bool] = None):
        self.session = session
        self.locks = locks or course_locks
        self.enrollments = repositories.EnrollmentRepository(session)
        self.students = repositories.StudentRepository(session)
        self.courses = repositories.CourseRepository(session)
        self.ledger = CapacityLedger(session)
        self.waitlist = WaitlistQueue(session)
        self.promotion = PromotionTrigger(
            session, self.ledger, self.waitlist,
            max_promotions=max_promotions or settings.MAX_PROMOTIONS_PER_TRIGGER,
        )
        self.verify_invariants = settings.VERIFY_INVARIANTS if verify_invariants is None else verify_invariants

    def _locked(self, course_id: int, work: Callable[[], T]) -> T:
        """Run `work` inside the course's exclusion scope and commit it.

        Any failure rolls the whole unit back. Invariant violations are
        logged and recorded before they propagate.
        """
        try:
            with self.locks.hold(course_id):
                # end any transaction opened before the lock so reads are fresh
                self.session.commit()
                try:
                    result = work()
                    if self.verify_invariants:
                        self.ledger.verify(course_id)
                        self.waitlist.verify(course_id)
                    self.session.commit()
                except Exception:
                    self.session.rollback()
                    raise
        except InvariantViolation as exc:
            logger.exception("invariant_violation course=%s", course_id)
            record_admission_event("invariant_violation", course_id=course_id, error=str(exc))
            raise
        return result

    def _require_course(self, course_id: int) -> models.Course:
        course = self.courses.get(course_id)
        if course is None:
            raise NotFound("course", course_id)
        return course

    def register_student(self, student_id: int, course_id: int, notes: Optional[str] = None) -> models.Enrollment:
        """Admit the student into a free seat or append them to the waitlist.

        A free seat goes to a newcomer only when nobody is waiting; seats
        left open by a capped promotion are first offered to the queue.
        Raises `NotFound` for an unknown student or course and
        `DuplicateEnrollment` when the student already holds an active
        enrollment in the course. Nothing is written in either case.
        """
        if self.students.get(student_id) is None:
            raise NotFound("student", student_id)
        course = self._require_course(course_id)
        semester_id, fee = course.semester_id, course.fee

        def work() -> Tuple[models.Enrollment, List[models.Enrollment]]:
            existing = self.enrollments.find_active(student_id, course_id)
            if existing is not None:
                raise DuplicateEnrollment(student_id, course_id, existing.id)
            promoted: List[models.Enrollment] = []
            if self.waitlist.size(course_id) > 0:
                # seats left open by a capped promotion belong to the queue
                promoted = self.promotion.fire(course_id)
            enrollment = models.Enrollment(
                student_id=student_id, course_id=course_id, semester_id=semester_id,
                fee_amount=fee, notes=notes, enrollment_type=models.EnrollmentType.ENROLLED,
            )
            if self.waitlist.size(course_id) == 0 and self.ledger.try_reserve_seat(course_id):
                self.enrollments.add(enrollment)
            else:
                enrollment.enrollment_type = models.EnrollmentType.WAITLISTED
                self.waitlist.enqueue(course_id, enrollment)
            return enrollment, promoted

        enrollment, promoted = self._locked(course_id, work)
        self._record_promotions(course_id, promoted)
        record_admission_event(
            "enrolled" if enrollment.enrollment_type == models.EnrollmentType.ENROLLED else "waitlisted",
            enrollment_id=enrollment.id, student_id=student_id, course_id=course_id,
            waitlist_position=enrollment.waitlist_position,
        )
        return enrollment

    def register_batch(self, requests: Iterable[Tuple[int, int]]) -> List[dict]:
        """Register several (student_id, course_id) pairs independently.

        Each pair runs in its own exclusion scope and commits on its own; a
        rejected pair is reported in its result entry and does not undo the
        others.
        """
        results = []
        for student_id, course_id in requests:
            entry = {"student_id": student_id, "course_id": course_id, "enrollment": None, "error": None}
            try:
                entry["enrollment"] = self.register_student(student_id, course_id)
            except (DuplicateEnrollment, NotFound, CourseBusy) as e:
                entry["error"] = {"code": type(e).__name__, "message": str(e)}
            results.append(entry)
        return results

    def withdraw(self, enrollment_id: int,
                 status: models.EnrollmentType = models.EnrollmentType.WITHDRAWN) -> WithdrawalResult:
        """Move an active enrollment to `status` (Withdrawn or Dropped).

        An Enrolled student's seat is released and the waitlist head is
        promoted into it; a Waitlisted student leaves the queue and the
        entries behind them move up. Raises `AlreadyTerminal` when the
        enrollment was already dropped or withdrawn.
        """
        if status not in models.TERMINAL_TYPES:
            raise ValueError(f"withdrawal status must be one of {[t.value for t in models.TERMINAL_TYPES]}")
        found = self.enrollments.get(enrollment_id)
        if found is None:
            raise NotFound("enrollment", enrollment_id)
        course_id = found.course_id

        def work() -> WithdrawalResult:
            enrollment = self.enrollments.get(enrollment_id)
            previous = enrollment.enrollment_type
            if previous.is_terminal:
                raise AlreadyTerminal(enrollment_id, previous)
            promoted: List[models.Enrollment] = []
            if previous == models.EnrollmentType.WAITLISTED:
                self.waitlist.remove(course_id, enrollment)
            now = datetime.now(timezone.utc)
            enrollment.enrollment_type = status
            enrollment.waitlist_position = None
            enrollment.withdrawn_at = now
            enrollment.updated_at = now
            self.session.add(enrollment)
            self.session.flush()
            if previous == models.EnrollmentType.ENROLLED:
                self.ledger.release_seat(course_id)
                promoted = self.promotion.fire(course_id, seat_freed=True)
            return WithdrawalResult(enrollment=enrollment, previous_state=previous, promoted=promoted)

        result = self._locked(course_id, work)
        record_admission_event(
            "withdrawn", enrollment_id=enrollment_id, course_id=course_id,
            previous_state=result.previous_state.value, status=status.value,
        )
        self._record_promotions(course_id, result.promoted)
        return result

    def drop(self, enrollment_id: int) -> WithdrawalResult:
        """Administrative withdrawal; identical to `withdraw` with Dropped."""
        return self.withdraw(enrollment_id, status=models.EnrollmentType.DROPPED)

    def resize_capacity(self, course_id: int, new_max: int) -> ResizeResult:
        """Change a course's seat limit, promoting waitlisted students into new seats."""
        self._require_course(course_id)

        def work() -> ResizeResult:
            before = self.ledger.snapshot(course_id)
            after = self.ledger.resize(course_id, new_max)
            promoted: List[models.Enrollment] = []
            if after.available_spots > before.available_spots:
                promoted = self.promotion.fire(course_id)
            return ResizeResult(capacity=self.ledger.snapshot(course_id), promoted=promoted)

        result = self._locked(course_id, work)
        record_admission_event("resized", course_id=course_id, max_capacity=new_max,
                               promoted=len(result.promoted))
        self._record_promotions(course_id, result.promoted)
        return result

    def _record_promotions(self, course_id: int, promoted: List[models.Enrollment]) -> None:
        for e in promoted:
            record_admission_event("promoted", enrollment_id=e.id, student_id=e.student_id, course_id=course_id)

    def capacity(self, course_id: int) -> CapacitySnapshot:
        return self.ledger.snapshot(course_id)

    def get_waitlist(self, course_id: int) -> List[models.Enrollment]:
        """Return the course's waitlisted enrollments, head first."""
        self._require_course(course_id)
        return self.waitlist.entries(course_id)

    def get(self, enrollment_id: int) -> models.Enrollment:
        enrollment = self.enrollments.get(enrollment_id)
        if enrollment is None:
            raise NotFound("enrollment", enrollment_id)
        return enrollment

    def list_for_course(self, course_id: int, enrollment_type: Optional[models.EnrollmentType] = None) -> List[models.Enrollment]:
        self._require_course(course_id)
        return self.enrollments.list_by_course(course_id, enrollment_type)

    def list_for_student(self, student_id: int) -> List[models.Enrollment]:
        if self.students.get(student_id) is None:
            raise NotFound("student", student_id)
        return self.enrollments.list_by_student(student_id)


class PaymentService:
    """Record payments and report per-enrollment reconciliation."""
    def __init__(self, session: Session):
        self.session = session
        self.payments = repositories.PaymentRepository(session)
        self.enrollments = repositories.EnrollmentRepository(session)
        self.students = repositories.StudentRepository(session)
        self.holders = repositories.AccountHolderRepository(session)
        self.view = ReconciliationView(session)

    def record_payment(self, amount: Decimal, payment_method: models.PaymentMethod,
                       payment_type: models.PaymentType = models.PaymentType.COURSE_FEE,
                       enrollment_id: Optional[int] = None, account_holder_id: Optional[int] = None,
                       transaction_id: Optional[str] = None, notes: Optional[str] = None) -> models.Payment:
        """Store a payment against a family and, for course fees, an enrollment.

        A payment linked to an enrollment is credited to the family of the
        enrolled student when `account_holder_id` is omitted. Membership
        dues must name a family.
        """
        if amount <= 0:
            raise ValueError("amount must be > 0")
        if account_holder_id is not None and self.holders.get(account_holder_id) is None:
            raise NotFound("account holder", account_holder_id)
        if enrollment_id is not None:
            enrollment = self.enrollments.get(enrollment_id)
            if enrollment is None:
                raise NotFound("enrollment", enrollment_id)
            student = self.students.get(enrollment.student_id)
            if account_holder_id is None:
                account_holder_id = student.account_holder_id
            elif student.account_holder_id not in (None, account_holder_id):
                raise ValueError(f"enrollment {enrollment_id} belongs to another account holder")
        if payment_type == models.PaymentType.MEMBERSHIP_DUES and account_holder_id is None:
            raise ValueError("membership dues must be paid by an account holder")
        p = models.Payment(amount=amount, payment_method=payment_method, payment_type=payment_type,
                           enrollment_id=enrollment_id, account_holder_id=account_holder_id,
                           transaction_id=transaction_id, notes=notes)
        return self.payments.create(p)

    def list_for_enrollment(self, enrollment_id: int) -> List[models.Payment]:
        if self.enrollments.get(enrollment_id) is None:
            raise NotFound("enrollment", enrollment_id)
        return self.payments.list_for_enrollment(enrollment_id)

    def reconcile(self, enrollment_id: int) -> Reconciliation:
        enrollment = self.enrollments.get(enrollment_id)
        if enrollment is None:
            raise NotFound("enrollment", enrollment_id)
        return self.view.reconcile(enrollment)
