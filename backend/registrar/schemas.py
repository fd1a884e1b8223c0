"""Pydantic request/response schemas used by the API.

Schemas keep API input/output shapes stable and provide validation for
controller handlers and tests.
"""

from datetime import date
from decimal import Decimal
from pydantic import BaseModel, Field
from typing import List, Literal, Optional

from .models import PaymentMethod, PaymentType


class RegisterIn(BaseModel):
    """Payload for user registration/login endpoints."""
    username: str
    password: str


class TokenOut(BaseModel):
    """Authentication response containing an access token."""
    access_token: str


class AccountHolderIn(BaseModel):
    """A family account; students and payments are attached to it."""
    first_name: str
    last_name: str
    email: str
    home_phone: Optional[str] = None
    mobile_phone: Optional[str] = None
    membership_dues_owed: Decimal = Field(default=Decimal("0"), ge=0, max_digits=10, decimal_places=2)


class AccountStudentIn(BaseModel):
    """A student created under an account holder's family."""
    first_name: str
    last_name: str
    email: Optional[str] = None
    grade: Optional[str] = None
    date_of_birth: Optional[date] = None
    notes: Optional[str] = None


class StudentIn(AccountStudentIn):
    account_holder_id: Optional[int] = None


class SemesterIn(BaseModel):
    name: str
    code: str
    start_date: date
    end_date: date
    is_active: bool = True


class CourseIn(BaseModel):
    """Request format for creating a course offering."""
    semester_id: int
    name: str
    code: str
    max_capacity: int = Field(ge=1)
    fee: Decimal = Field(default=Decimal("0"), ge=0, max_digits=10, decimal_places=2)
    description: Optional[str] = None
    age_group: Optional[str] = None


class CapacityIn(BaseModel):
    """New seat limit for `PUT /courses/{id}/capacity`."""
    max_capacity: int


class EnrollmentIn(BaseModel):
    student_id: int
    course_id: int
    notes: Optional[str] = None


class BatchEnrollmentIn(BaseModel):
    """Several registrations processed independently, one per course."""
    items: List[EnrollmentIn] = Field(min_length=1)


class FamilyEnrollmentIn(BaseModel):
    """Register some of a family's students for one or more courses."""
    student_ids: List[int] = Field(min_length=1)
    course_ids: List[int] = Field(min_length=1)


class WithdrawIn(BaseModel):
    """`Withdrawn` for a voluntary withdrawal, `Dropped` for an administrative one."""
    status: Literal["Withdrawn", "Dropped"] = "Withdrawn"


class PaymentIn(BaseModel):
    amount: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    payment_method: PaymentMethod
    payment_type: PaymentType = PaymentType.COURSE_FEE
    enrollment_id: Optional[int] = None
    account_holder_id: Optional[int] = None
    transaction_id: Optional[str] = None
    notes: Optional[str] = None
