import logging

import pytest

from registrar import models
from registrar.errors import CapacityError, InvariantViolation, NotFound
from registrar.services import EnrollmentService
from registrar.utils.capacity_ledger import CapacityLedger
from registrar.utils.promotion import PromotionTrigger
from registrar.utils.waitlist import WaitlistQueue

ENROLLED = models.EnrollmentType.ENROLLED


def _full_course_with_waitlist(admission, catalog, capacity, waiting):
    course_id = catalog.course(capacity=capacity).id
    students = [s.id for s in catalog.students(capacity + waiting)]
    enrolled = [admission.register_student(sid, course_id) for sid in students[:capacity]]
    queued = [admission.register_student(sid, course_id) for sid in students[capacity:]]
    return course_id, enrolled, queued


def test_resize_promotes_several_in_fifo_order(admission, catalog):
    course_id, _, queued = _full_course_with_waitlist(admission, catalog, capacity=1, waiting=4)
    result = admission.resize_capacity(course_id, 3)
    assert [e.id for e in result.promoted] == [queued[0].id, queued[1].id]
    assert result.capacity.current_enrollment == 3
    assert result.capacity.is_full
    assert [(e.id, e.waitlist_position) for e in admission.get_waitlist(course_id)] == [
        (queued[2].id, 1),
        (queued[3].id, 2),
    ]


def test_resize_beyond_waitlist_empties_it(admission, catalog):
    course_id, _, queued = _full_course_with_waitlist(admission, catalog, capacity=2, waiting=2)
    result = admission.resize_capacity(course_id, 10)
    assert len(result.promoted) == 2
    assert admission.get_waitlist(course_id) == []
    snap = admission.capacity(course_id)
    assert snap.current_enrollment == 4
    assert snap.available_spots == 6


def test_resize_without_new_seats_promotes_nobody(admission, catalog):
    course_id, _, queued = _full_course_with_waitlist(admission, catalog, capacity=2, waiting=1)
    result = admission.resize_capacity(course_id, 2)
    assert result.promoted == []
    assert admission.get(queued[0].id).waitlist_position == 1


def test_resize_rejections(admission, catalog):
    course_id, _, _ = _full_course_with_waitlist(admission, catalog, capacity=2, waiting=0)
    with pytest.raises(CapacityError):
        admission.resize_capacity(course_id, 1)
    with pytest.raises(CapacityError):
        admission.resize_capacity(course_id, 0)
    with pytest.raises(NotFound):
        admission.resize_capacity(9999, 5)
    assert admission.capacity(course_id).max_capacity == 2


def test_promotion_loop_is_capped(session, locks, catalog, caplog):
    svc = EnrollmentService(session, locks=locks, max_promotions=2)
    course_id, _, queued = _full_course_with_waitlist(svc, catalog, capacity=1, waiting=5)
    with caplog.at_level(logging.WARNING, logger="registrar.promotion"):
        result = svc.resize_capacity(course_id, 6)
    assert [e.id for e in result.promoted] == [queued[0].id, queued[1].id]
    assert any("promotion_capped" in r.getMessage() for r in caplog.records)
    # the remaining entries stay queued, still contiguous
    assert [e.waitlist_position for e in svc.get_waitlist(course_id)] == [1, 2, 3]
    # the next trigger picks up where the cap stopped
    again = svc.resize_capacity(course_id, 7)
    assert [e.id for e in again.promoted] == [queued[2].id, queued[3].id]


def test_newcomer_queues_behind_waitlist_left_by_capped_promotion(session, locks, catalog):
    svc = EnrollmentService(session, locks=locks, max_promotions=1)
    course_id, _, queued = _full_course_with_waitlist(svc, catalog, capacity=1, waiting=3)
    resized = svc.resize_capacity(course_id, 4)
    assert [e.id for e in resized.promoted] == [queued[0].id]

    newcomer = svc.register_student(catalog.student().id, course_id)
    # the registration first hands one open seat to the head of the queue
    assert svc.get(queued[1].id).enrollment_type == ENROLLED
    assert newcomer.enrollment_type == models.EnrollmentType.WAITLISTED
    assert [(e.id, e.waitlist_position) for e in svc.get_waitlist(course_id)] == [
        (queued[2].id, 1),
        (newcomer.id, 2),
    ]


def test_newcomer_takes_seat_once_queue_drains(session, locks, catalog):
    svc = EnrollmentService(session, locks=locks, max_promotions=5)
    course_id, _, queued = _full_course_with_waitlist(svc, catalog, capacity=1, waiting=2)
    svc.resize_capacity(course_id, 4)
    assert svc.get_waitlist(course_id) == []
    newcomer = svc.register_student(catalog.student().id, course_id)
    assert newcomer.enrollment_type == ENROLLED
    assert svc.capacity(course_id).is_full


def test_resize_of_unknown_course_takes_no_lock(admission, locks):
    with pytest.raises(NotFound):
        admission.resize_capacity(424242, 5)
    assert 424242 not in locks._locks


def test_freed_seat_that_cannot_be_filled_is_invariant_violation(session, catalog):
    course = catalog.course(capacity=1)
    course_id, semester_id = course.id, course.semester_id
    ledger = CapacityLedger(session)
    queue = WaitlistQueue(session)
    a, b = catalog.students(2)
    # the ledger is full although the caller claims a seat was just freed
    assert ledger.try_reserve_seat(course_id)
    session.add(models.Enrollment(student_id=a.id, course_id=course_id, semester_id=semester_id,
                                  enrollment_type=ENROLLED))
    queue.enqueue(course_id, models.Enrollment(student_id=b.id, course_id=course_id, semester_id=semester_id,
                                               enrollment_type=models.EnrollmentType.WAITLISTED))
    trigger = PromotionTrigger(session, ledger, queue)
    with pytest.raises(InvariantViolation):
        trigger.fire(course_id, seat_freed=True)
    assert trigger.fire(course_id) == []


def test_invariant_violation_rolls_back_and_is_recorded(admission, catalog, session, monkeypatch, tmp_path):
    monkeypatch.setenv("ADMISSION_OBSERVABILITY_DIR", str(tmp_path))
    course_id = catalog.course(capacity=2).id
    a, b = [s.id for s in catalog.students(2)]
    admission.register_student(a, course_id)
    # corrupt the counter behind the ledger's back
    course = session.get(models.Course, course_id)
    course.enrolled_count = 0
    session.add(course)
    session.commit()
    with pytest.raises(InvariantViolation):
        admission.register_student(b, course_id)
    assert admission.list_for_course(course_id, models.EnrollmentType.ENROLLED)[0].student_id == a
    assert len(admission.list_for_course(course_id)) == 1
    from registrar.utils.admission_observability import get_admission_stats
    assert get_admission_stats()["invariant_violation"] == 1
