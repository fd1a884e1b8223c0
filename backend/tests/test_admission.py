from decimal import Decimal

import pytest

from registrar import models
from registrar.errors import AlreadyTerminal, DuplicateEnrollment, NotFound

ENROLLED = models.EnrollmentType.ENROLLED
WAITLISTED = models.EnrollmentType.WAITLISTED
WITHDRAWN = models.EnrollmentType.WITHDRAWN
DROPPED = models.EnrollmentType.DROPPED


def test_two_seats_then_waitlist_then_promotion(admission, catalog):
    course_id = catalog.course(capacity=2).id
    a, b, c = [s.id for s in catalog.students(3)]

    ea = admission.register_student(a, course_id)
    assert ea.enrollment_type == ENROLLED and ea.waitlist_position is None
    assert admission.capacity(course_id).current_enrollment == 1

    eb = admission.register_student(b, course_id)
    assert eb.enrollment_type == ENROLLED
    assert admission.capacity(course_id).current_enrollment == 2

    ec = admission.register_student(c, course_id)
    assert ec.enrollment_type == WAITLISTED
    assert ec.waitlist_position == 1

    result = admission.withdraw(ea.id)
    assert result.previous_state == ENROLLED
    assert result.enrollment.enrollment_type == WITHDRAWN
    assert [e.id for e in result.promoted] == [ec.id]

    promoted = admission.get(ec.id)
    assert promoted.enrollment_type == ENROLLED
    assert promoted.waitlist_position is None
    snap = admission.capacity(course_id)
    assert snap.current_enrollment == 2
    assert snap.is_full
    assert admission.get_waitlist(course_id) == []


def test_waitlisted_cancel_shifts_positions(admission, catalog):
    course_id = catalog.course(capacity=1).id
    a, b, c = [s.id for s in catalog.students(3)]
    admission.register_student(a, course_id)
    eb = admission.register_student(b, course_id)
    ec = admission.register_student(c, course_id)
    assert (eb.waitlist_position, ec.waitlist_position) == (1, 2)

    result = admission.withdraw(eb.id)
    assert result.previous_state == WAITLISTED
    assert result.promoted == []
    assert admission.get(eb.id).enrollment_type == WITHDRAWN
    assert admission.get(eb.id).waitlist_position is None
    assert admission.get(ec.id).waitlist_position == 1
    # no seat was held, so none is released
    assert admission.capacity(course_id).current_enrollment == 1


def test_promotion_takes_only_the_head(admission, catalog):
    course_id = catalog.course(capacity=1).id
    ids = [s.id for s in catalog.students(4)]
    first = admission.register_student(ids[0], course_id)
    waiting = [admission.register_student(sid, course_id) for sid in ids[1:]]
    assert [w.waitlist_position for w in waiting] == [1, 2, 3]

    result = admission.withdraw(first.id)
    assert [e.id for e in result.promoted] == [waiting[0].id]
    assert admission.get(waiting[0].id).enrollment_type == ENROLLED
    assert [(e.id, e.waitlist_position) for e in admission.get_waitlist(course_id)] == [
        (waiting[1].id, 1),
        (waiting[2].id, 2),
    ]


def test_withdraw_twice_is_already_terminal(admission, catalog):
    course_id = catalog.course(capacity=2).id
    a, b = [s.id for s in catalog.students(2)]
    ea = admission.register_student(a, course_id)
    admission.register_student(b, course_id)
    admission.withdraw(ea.id)
    assert admission.capacity(course_id).current_enrollment == 1
    with pytest.raises(AlreadyTerminal):
        admission.withdraw(ea.id)
    # the seat was not released a second time
    assert admission.capacity(course_id).current_enrollment == 1


def test_duplicate_active_enrollment_rejected(admission, catalog):
    course_id = catalog.course(capacity=1).id
    a, b = [s.id for s in catalog.students(2)]
    ea = admission.register_student(a, course_id)
    with pytest.raises(DuplicateEnrollment) as info:
        admission.register_student(a, course_id)
    assert info.value.enrollment_id == ea.id

    eb = admission.register_student(b, course_id)
    assert eb.enrollment_type == WAITLISTED
    with pytest.raises(DuplicateEnrollment):
        admission.register_student(b, course_id)
    assert len(admission.get_waitlist(course_id)) == 1
    assert admission.capacity(course_id).current_enrollment == 1


def test_register_again_after_withdrawal(admission, catalog):
    course_id = catalog.course(capacity=1).id
    a = catalog.student().id
    first = admission.register_student(a, course_id)
    admission.withdraw(first.id)
    second = admission.register_student(a, course_id)
    assert second.id != first.id
    assert second.enrollment_type == ENROLLED
    assert admission.get(first.id).enrollment_type == WITHDRAWN
    assert [e.id for e in admission.list_for_student(a)] == [second.id, first.id]


def test_drop_marks_dropped_and_promotes(admission, catalog):
    course_id = catalog.course(capacity=1).id
    a, b = [s.id for s in catalog.students(2)]
    ea = admission.register_student(a, course_id)
    eb = admission.register_student(b, course_id)
    result = admission.drop(ea.id)
    assert result.enrollment.enrollment_type == DROPPED
    assert admission.get(ea.id).withdrawn_at is not None
    assert [e.id for e in result.promoted] == [eb.id]
    with pytest.raises(AlreadyTerminal):
        admission.withdraw(ea.id)


def test_withdraw_rejects_active_status(admission, catalog):
    course_id = catalog.course(capacity=1).id
    e = admission.register_student(catalog.student().id, course_id)
    with pytest.raises(ValueError):
        admission.withdraw(e.id, status=ENROLLED)


def test_unknown_ids_are_not_found(admission, catalog):
    course_id = catalog.course(capacity=1).id
    student_id = catalog.student().id
    with pytest.raises(NotFound):
        admission.register_student(student_id, 9999)
    with pytest.raises(NotFound):
        admission.register_student(9999, course_id)
    with pytest.raises(NotFound):
        admission.withdraw(9999)
    with pytest.raises(NotFound):
        admission.get_waitlist(9999)


def test_fee_copied_from_course(admission, catalog):
    course = catalog.course(capacity=1, fee=Decimal("125.50"))
    e = admission.register_student(catalog.student().id, course.id)
    assert Decimal(str(e.fee_amount)) == Decimal("125.50")
    assert e.semester_id == course.semester_id


def test_register_batch_reports_each_item(admission, catalog):
    c1 = catalog.course(capacity=1).id
    c2 = catalog.course(capacity=1).id
    a, b = [s.id for s in catalog.students(2)]
    admission.register_student(a, c1)
    results = admission.register_batch([(a, c1), (a, c2), (b, c1), (b, 9999)])
    assert [r["error"]["code"] if r["error"] else None for r in results] == [
        "DuplicateEnrollment", None, None, "NotFound",
    ]
    assert results[1]["enrollment"].enrollment_type == ENROLLED
    assert results[2]["enrollment"].enrollment_type == WAITLISTED
    assert admission.capacity(c2).current_enrollment == 1


def test_list_for_course_filters_by_type(admission, catalog):
    course_id = catalog.course(capacity=1).id
    a, b = [s.id for s in catalog.students(2)]
    admission.register_student(a, course_id)
    admission.register_student(b, course_id)
    assert len(admission.list_for_course(course_id)) == 2
    assert [e.student_id for e in admission.list_for_course(course_id, WAITLISTED)] == [b]
