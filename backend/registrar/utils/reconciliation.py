"""Read-only payment/fee reconciliation for enrollments and family accounts.

Payment status is informational: it is derived from the enrollment's fee
and the sum of its linked payments on every read and never feeds back
into admission.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func
from sqlmodel import Session, select

from .. import models

_ZERO = Decimal("0")


def _money(value) -> Decimal:
    if value is None:
        return _ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def payment_status(fee_amount, amount_paid) -> models.PaymentStatus:
    """Classify an enrollment's payment state.

    Paid when the fee is covered (a zero fee counts as covered), Pending
    for a partial payment and Unpaid when nothing was paid.
    """
    fee = _money(fee_amount)
    paid = _money(amount_paid)
    if paid >= fee:
        return models.PaymentStatus.PAID
    if paid > _ZERO:
        return models.PaymentStatus.PENDING
    return models.PaymentStatus.UNPAID


@dataclass(frozen=True)
class Reconciliation:
    enrollment_id: int
    fee_amount: Decimal
    amount_paid: Decimal

    @property
    def balance_due(self) -> Decimal:
        return max(_ZERO, self.fee_amount - self.amount_paid)

    @property
    def status(self) -> models.PaymentStatus:
        return payment_status(self.fee_amount, self.amount_paid)

    def as_dict(self) -> dict:
        return {
            "enrollment_id": self.enrollment_id,
            "fee_amount": self.fee_amount,
            "amount_paid": self.amount_paid,
            "balance_due": self.balance_due,
            "payment_status": self.status.value,
        }


@dataclass(frozen=True)
class AccountBalance:
    """Payment totals of one family account."""
    account_holder_id: int
    total_paid: Decimal
    course_fees_paid: Decimal
    membership_dues_owed: Decimal
    membership_dues_paid: Decimal

    @property
    def membership_dues_balance(self) -> Decimal:
        return max(_ZERO, self.membership_dues_owed - self.membership_dues_paid)

    def as_dict(self) -> dict:
        return {
            "account_holder_id": self.account_holder_id,
            "total_paid": self.total_paid,
            "course_fees_paid": self.course_fees_paid,
            "membership_dues_owed": self.membership_dues_owed,
            "membership_dues_paid": self.membership_dues_paid,
            "membership_dues_balance": self.membership_dues_balance,
        }


class ReconciliationView:
    def __init__(self, session: Session):
        self.session = session

    def amount_paid(self, enrollment_id: int) -> Decimal:
        stmt = select(func.coalesce(func.sum(models.Payment.amount), 0)).where(
            models.Payment.enrollment_id == enrollment_id
        )
        return _money(self.session.exec(stmt).one())

    def reconcile(self, enrollment: models.Enrollment) -> Reconciliation:
        return Reconciliation(
            enrollment_id=enrollment.id,
            fee_amount=_money(enrollment.fee_amount),
            amount_paid=self.amount_paid(enrollment.id),
        )

    def total_paid_by_account_holder(self, holder_id: int, payment_type=None) -> Decimal:
        """Sum a family's payments, optionally only those of `payment_type`."""
        stmt = select(func.coalesce(func.sum(models.Payment.amount), 0)).where(
            models.Payment.account_holder_id == holder_id
        )
        if payment_type is not None:
            stmt = stmt.where(models.Payment.payment_type == payment_type)
        return _money(self.session.exec(stmt).one())

    def account_balance(self, holder: models.AccountHolder) -> AccountBalance:
        return AccountBalance(
            account_holder_id=holder.id,
            total_paid=self.total_paid_by_account_holder(holder.id),
            course_fees_paid=self.total_paid_by_account_holder(holder.id, models.PaymentType.COURSE_FEE),
            membership_dues_owed=_money(holder.membership_dues_owed),
            membership_dues_paid=self.total_paid_by_account_holder(holder.id, models.PaymentType.MEMBERSHIP_DUES),
        )
