"""Promotion of waitlisted enrollments into freed seats."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlmodel import Session

from .. import models
from ..errors import InvariantViolation
from .capacity_ledger import CapacityLedger
from .waitlist import WaitlistQueue

_LOGGER = logging.getLogger("registrar.promotion")


class PromotionTrigger:
    """Move waitlist heads into free seats, one reservation at a time.

    The caller must hold the course's exclusion scope, so a seat freed by
    a withdrawal is still free when the trigger runs.
    """

    def __init__(self, session: Session, ledger: CapacityLedger, waitlist: WaitlistQueue, max_promotions: int = 500):
        self.session = session
        self.ledger = ledger
        self.waitlist = waitlist
        self.max_promotions = max_promotions

    def fire(self, course_id: int, seat_freed: bool = False, limit: Optional[int] = None) -> List[models.Enrollment]:
        """Promote until the waitlist is empty or the course is full.

        With `seat_freed` the first reservation is expected to succeed; a
        failure then means the ledger and the waitlist disagree and raises
        `InvariantViolation`. Returns the promoted enrollments in order.
        """
        cap = self.max_promotions if limit is None else min(limit, self.max_promotions)
        promoted: List[models.Enrollment] = []
        while len(promoted) < cap:
            head = self.waitlist.peek_head(course_id)
            if head is None:
                break
            if not self.ledger.try_reserve_seat(course_id):
                if seat_freed and not promoted:
                    raise InvariantViolation(
                        f"course {course_id} freed a seat but could not admit waitlist head {head.id}",
                        course_id,
                    )
                break
            entry = self.waitlist.dequeue_head(course_id)
            if entry is None or entry.id != head.id:
                raise InvariantViolation(
                    f"course {course_id} waitlist head changed during promotion", course_id
                )
            entry.enrollment_type = models.EnrollmentType.ENROLLED
            entry.waitlist_position = None
            entry.updated_at = datetime.now(timezone.utc)
            self.session.add(entry)
            self.session.flush()
            promoted.append(entry)
        else:
            if self.waitlist.peek_head(course_id) is not None and not self.ledger.snapshot(course_id).is_full:
                _LOGGER.warning(
                    "promotion_capped course=%s promoted=%s remaining=%s",
                    course_id, len(promoted), self.waitlist.size(course_id),
                )
        if promoted:
            _LOGGER.info("promoted course=%s enrollments=%s", course_id, [e.id for e in promoted])
        return promoted
