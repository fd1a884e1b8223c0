"""Course capacity ledger.

The ledger owns `Course.enrolled_count`, the number of admitted seats.
Reservations are a single conditional UPDATE so a seat can never be
oversold, even by a writer that skipped the per-course lock. The ledger
does not commit; the admission controller commits the whole unit of work.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func, update
from sqlmodel import Session, select

from .. import models
from ..errors import CapacityError, InvariantViolation, NotFound

_LOGGER = logging.getLogger("registrar.ledger")


@dataclass(frozen=True)
class CapacitySnapshot:
    course_id: int
    max_capacity: int
    current_enrollment: int

    @property
    def available_spots(self) -> int:
        return max(0, self.max_capacity - self.current_enrollment)

    @property
    def is_full(self) -> bool:
        return self.available_spots == 0

    def as_dict(self) -> dict:
        return {
            "course_id": self.course_id,
            "max_capacity": self.max_capacity,
            "current_enrollment": self.current_enrollment,
            "available_spots": self.available_spots,
            "is_full": self.is_full,
        }


class CapacityLedger:
    def __init__(self, session: Session):
        self.session = session

    def _execute(self, stmt) -> int:
        # pending ORM changes must reach the database before the raw UPDATE,
        # and loaded Course rows must be re-read after it
        self.session.flush()
        result = self.session.connection().execute(stmt)
        self.session.expire_all()
        return result.rowcount

    def _require_course(self, course_id: int) -> models.Course:
        course = self.session.get(models.Course, course_id)
        if course is None:
            raise NotFound("course", course_id)
        return course

    def try_reserve_seat(self, course_id: int) -> bool:
        """Take one seat if any is free; return False without mutation otherwise."""
        stmt = (
            update(models.Course)
            .where(models.Course.id == course_id, models.Course.enrolled_count < models.Course.max_capacity)
            .values(enrolled_count=models.Course.enrolled_count + 1)
        )
        if self._execute(stmt) == 1:
            return True
        self._require_course(course_id)
        return False

    def release_seat(self, course_id: int) -> None:
        """Give back one previously reserved seat."""
        stmt = (
            update(models.Course)
            .where(models.Course.id == course_id, models.Course.enrolled_count > 0)
            .values(enrolled_count=models.Course.enrolled_count - 1)
        )
        if self._execute(stmt) == 1:
            return
        self._require_course(course_id)
        raise InvariantViolation(f"seat release on course {course_id} would make enrollment negative", course_id)

    def snapshot(self, course_id: int) -> CapacitySnapshot:
        course = self._require_course(course_id)
        return CapacitySnapshot(course_id, course.max_capacity, course.enrolled_count)

    def resize(self, course_id: int, new_max: int) -> CapacitySnapshot:
        """Set a new seat limit and return the resulting snapshot.

        The limit must be positive and may not drop below the seats already
        admitted.
        """
        if new_max < 1:
            raise CapacityError("max_capacity must be a positive integer")
        course = self._require_course(course_id)
        if new_max < course.enrolled_count:
            raise CapacityError(
                f"max_capacity {new_max} is below current enrollment {course.enrolled_count}"
            )
        old_max = course.max_capacity
        course.max_capacity = new_max
        course.updated_at = datetime.now(timezone.utc)
        self.session.add(course)
        self.session.flush()
        _LOGGER.info("capacity_resized course=%s old=%s new=%s", course_id, old_max, new_max)
        return CapacitySnapshot(course_id, course.max_capacity, course.enrolled_count)

    def verify(self, course_id: int) -> CapacitySnapshot:
        """Check the counter against the Enrolled rows; raise on mismatch."""
        snap = self.snapshot(course_id)
        stmt = select(func.count()).select_from(models.Enrollment).where(
            models.Enrollment.course_id == course_id,
            models.Enrollment.enrollment_type == models.EnrollmentType.ENROLLED,
        )
        enrolled_rows = self.session.exec(stmt).one()
        if enrolled_rows != snap.current_enrollment:
            raise InvariantViolation(
                f"course {course_id} ledger counts {snap.current_enrollment} seats but has {enrolled_rows} enrolled rows",
                course_id,
            )
        if snap.current_enrollment > snap.max_capacity:
            raise InvariantViolation(
                f"course {course_id} oversold: {snap.current_enrollment} > {snap.max_capacity}",
                course_id,
            )
        return snap
