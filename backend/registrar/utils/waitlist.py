"""Per-course FIFO waitlist stored on `Enrollment.waitlist_position`.

Positions within a course always form the contiguous run 1..n in arrival
order. Removing any entry, the head included, shifts every later entry
down by one. Callers hold the course's exclusion scope; the queue itself
neither locks nor commits.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import func, update
from sqlmodel import Session, select

from .. import models
from ..errors import InvariantViolation


class WaitlistQueue:
    def __init__(self, session: Session):
        self.session = session

    def _waiting(self, course_id: int):
        return select(models.Enrollment).where(
            models.Enrollment.course_id == course_id,
            models.Enrollment.enrollment_type == models.EnrollmentType.WAITLISTED,
        )

    def tail_position(self, course_id: int) -> int:
        stmt = select(func.max(models.Enrollment.waitlist_position)).where(
            models.Enrollment.course_id == course_id,
            models.Enrollment.enrollment_type == models.EnrollmentType.WAITLISTED,
        )
        return self.session.exec(stmt).one() or 0

    def size(self, course_id: int) -> int:
        stmt = select(func.count()).select_from(models.Enrollment).where(
            models.Enrollment.course_id == course_id,
            models.Enrollment.enrollment_type == models.EnrollmentType.WAITLISTED,
        )
        return self.session.exec(stmt).one()

    def enqueue(self, course_id: int, enrollment: models.Enrollment) -> int:
        """Append `enrollment` to the tail and return its position."""
        self.session.flush()
        position = self.tail_position(course_id) + 1
        enrollment.enrollment_type = models.EnrollmentType.WAITLISTED
        enrollment.waitlist_position = position
        self.session.add(enrollment)
        self.session.flush()
        return position

    def peek_head(self, course_id: int) -> Optional[models.Enrollment]:
        self.session.flush()
        stmt = self._waiting(course_id).order_by(models.Enrollment.waitlist_position).limit(1)
        return self.session.exec(stmt).first()

    def remove(self, course_id: int, enrollment: models.Enrollment) -> None:
        """Take `enrollment` out of the queue and close the gap behind it.

        The caller decides the entry's next state; only the position is
        cleared here.
        """
        position = enrollment.waitlist_position
        if position is None or enrollment.course_id != course_id:
            raise InvariantViolation(
                f"enrollment {enrollment.id} has no waitlist position in course {course_id}", course_id
            )
        enrollment.waitlist_position = None
        enrollment.updated_at = datetime.now(timezone.utc)
        self.session.add(enrollment)
        self.session.flush()
        stmt = (
            update(models.Enrollment)
            .where(
                models.Enrollment.course_id == course_id,
                models.Enrollment.enrollment_type == models.EnrollmentType.WAITLISTED,
                models.Enrollment.waitlist_position > position,
            )
            .values(waitlist_position=models.Enrollment.waitlist_position - 1)
        )
        self.session.connection().execute(stmt)
        self.session.expire_all()

    def dequeue_head(self, course_id: int) -> Optional[models.Enrollment]:
        head = self.peek_head(course_id)
        if head is None:
            return None
        self.remove(course_id, head)
        return head

    def entries(self, course_id: int) -> List[models.Enrollment]:
        """Return the waiting enrollments of `course_id`, head first."""
        self.session.flush()
        stmt = self._waiting(course_id).order_by(models.Enrollment.waitlist_position)
        return list(self.session.exec(stmt).all())

    def verify(self, course_id: int) -> List[int]:
        """Raise `InvariantViolation` unless positions are exactly 1..n."""
        positions = [e.waitlist_position for e in self.entries(course_id)]
        if positions != list(range(1, len(positions) + 1)):
            raise InvariantViolation(
                f"course {course_id} waitlist positions are not contiguous: {positions}", course_id
            )
        return positions
