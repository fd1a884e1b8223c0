"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Each class maps to a table; enrollment state lives in `Enrollment`, and the
seat ledger counter lives on `Course` next to the capacity it guards.
"""

from typing import Optional
from sqlmodel import SQLModel, Field, Relationship
from datetime import datetime, date, timezone
from decimal import Decimal
from enum import Enum
from typing import List


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EnrollmentType(str, Enum):
    """Lifecycle state of an enrollment.

    `ENROLLED` and `WAITLISTED` are the active states; `DROPPED` and
    `WITHDRAWN` are terminal.
    """
    ENROLLED = "Enrolled"
    WAITLISTED = "Waitlisted"
    DROPPED = "Dropped"
    WITHDRAWN = "Withdrawn"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_TYPES

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_TYPES


ACTIVE_TYPES = (EnrollmentType.ENROLLED, EnrollmentType.WAITLISTED)
TERMINAL_TYPES = (EnrollmentType.DROPPED, EnrollmentType.WITHDRAWN)


class PaymentStatus(str, Enum):
    PAID = "Paid"
    PENDING = "Pending"
    UNPAID = "Unpaid"


class PaymentMethod(str, Enum):
    CASH = "Cash"
    CHECK = "Check"
    CREDIT_CARD = "CreditCard"
    BANK_TRANSFER = "BankTransfer"
    ONLINE = "Online"
    OTHER = "Other"


class PaymentType(str, Enum):
    COURSE_FEE = "CourseFee"
    MEMBERSHIP_DUES = "MembershipDues"


class User(SQLModel, table=True):
    """A registered API user.

    Fields:
    - `username`: unique login name
    - `password_hash`: hashed password string (never store plaintext)
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    created_at: datetime = Field(default_factory=_utcnow)


class AccountHolder(SQLModel, table=True):
    """A family account that owns students and pays for them.

    `membership_dues_owed` is what the family is charged; what it has paid
    is the sum of its `MembershipDues` payments, never a stored counter.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    first_name: str
    last_name: str = Field(index=True)
    email: str = Field(index=True, unique=True)
    home_phone: Optional[str] = None
    mobile_phone: Optional[str] = None
    membership_dues_owed: Decimal = Field(default=Decimal("0"), max_digits=10, decimal_places=2)
    member_since: datetime = Field(default_factory=_utcnow)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    students: List['Student'] = Relationship(back_populates='account_holder')

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Student(SQLModel, table=True):
    """A student who can be registered for courses."""
    id: Optional[int] = Field(default=None, primary_key=True)
    account_holder_id: Optional[int] = Field(default=None, foreign_key='accountholder.id', index=True)
    first_name: str
    last_name: str = Field(index=True)
    email: Optional[str] = Field(default=None, index=True)
    grade: Optional[str] = None
    date_of_birth: Optional[date] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    account_holder: Optional[AccountHolder] = Relationship(back_populates='students')


class Semester(SQLModel, table=True):
    """A registration period grouping course offerings."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    code: str = Field(index=True, unique=True)
    start_date: date
    end_date: date
    is_active: bool = True
    created_at: datetime = Field(default_factory=_utcnow)
    courses: List['Course'] = Relationship(back_populates='semester')


class Course(SQLModel, table=True):
    """A course offering with a fixed seat capacity.

    `enrolled_count` is the capacity ledger's admitted counter. It is only
    changed through `CapacityLedger` and always equals the number of
    enrollments in state `Enrolled`.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    semester_id: int = Field(foreign_key='semester.id', index=True)
    name: str
    code: str = Field(index=True)
    description: Optional[str] = None
    age_group: Optional[str] = None
    fee: Decimal = Field(default=Decimal("0"), max_digits=10, decimal_places=2)
    max_capacity: int
    enrolled_count: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    semester: Optional[Semester] = Relationship(back_populates='courses')

    @property
    def available_spots(self) -> int:
        return max(0, self.max_capacity - self.enrolled_count)

    @property
    def is_full(self) -> bool:
        return self.available_spots == 0


class Enrollment(SQLModel, table=True):
    """A student's registration in a course offering.

    `waitlist_position` is set only while `enrollment_type` is
    `WAITLISTED`; positions within a course always form 1..n.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: int = Field(foreign_key='student.id', index=True)
    course_id: int = Field(foreign_key='course.id', index=True)
    semester_id: int = Field(foreign_key='semester.id', index=True)
    enrollment_type: EnrollmentType = Field(index=True)
    waitlist_position: Optional[int] = Field(default=None, index=True)
    enrollment_date: datetime = Field(default_factory=_utcnow)
    fee_amount: Decimal = Field(default=Decimal("0"), max_digits=10, decimal_places=2)
    notes: Optional[str] = None
    withdrawn_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=_utcnow)


class Payment(SQLModel, table=True):
    """A payment received from a family, optionally linked to an enrollment."""
    id: Optional[int] = Field(default=None, primary_key=True)
    account_holder_id: Optional[int] = Field(default=None, foreign_key='accountholder.id', index=True)
    enrollment_id: Optional[int] = Field(default=None, foreign_key='enrollment.id', index=True)
    amount: Decimal = Field(max_digits=10, decimal_places=2)
    payment_method: PaymentMethod
    payment_type: PaymentType = PaymentType.COURSE_FEE
    payment_date: datetime = Field(default_factory=_utcnow)
    transaction_id: Optional[str] = None
    notes: Optional[str] = None
