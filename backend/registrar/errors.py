"""Domain errors raised by the admission core and services.

Controllers translate these into HTTP responses; see the exception
handlers in `registrar.main`.
"""


class RegistrarError(Exception):
    """Base class for registrar domain errors."""


class NotFound(RegistrarError):
    """An enrollment, course, student or semester does not exist."""

    def __init__(self, kind: str, ident):
        self.kind = kind
        self.ident = ident
        super().__init__(f"{kind} not found: {ident}")


class DuplicateEnrollment(RegistrarError):
    """The student already holds an active enrollment in the course."""

    def __init__(self, student_id: int, course_id: int, enrollment_id: int):
        self.student_id = student_id
        self.course_id = course_id
        self.enrollment_id = enrollment_id
        super().__init__(
            f"student {student_id} already has active enrollment {enrollment_id} in course {course_id}"
        )


class AlreadyTerminal(RegistrarError):
    """Withdrawal requested for an enrollment that is already dropped or withdrawn."""

    def __init__(self, enrollment_id: int, state):
        self.enrollment_id = enrollment_id
        self.state = state
        super().__init__(f"enrollment {enrollment_id} is already {getattr(state, 'value', state)}")


class InvariantViolation(RegistrarError):
    """Ledger or waitlist state is inconsistent.

    Never a user error: it means seat-affecting operations on a course
    were not serialized.
    """

    def __init__(self, message: str, course_id=None):
        self.course_id = course_id
        super().__init__(message)


class CourseBusy(RegistrarError):
    """The course's exclusion scope could not be acquired in time."""

    def __init__(self, course_id: int, waited_s: float):
        self.course_id = course_id
        self.waited_s = waited_s
        super().__init__(f"course {course_id} is busy; gave up after {waited_s:.1f}s")


class CapacityError(ValueError):
    """Rejected capacity value (non-positive, or below current enrollment)."""
