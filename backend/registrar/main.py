"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the course registrar backend.
Controllers are intentionally thin: they accept requests, delegate to
services, and return JSON responses. Domain errors raised by the
services are mapped to HTTP status codes by the exception handlers below.

Endpoints implemented:
- POST /auth/register
- POST /auth/login
- POST /account-holders, GET /account-holders/{id}
- GET/POST /account-holders/{id}/students, GET /account-holders/{id}/payments
- POST /account-holders/{id}/enrollments
- POST /students, GET /students/{id}, GET /students/{id}/enrollments
- POST /semesters, GET /semesters
- POST /courses, GET /courses, GET /courses/{id}
- PUT /courses/{id}/capacity
- GET /courses/{id}/waitlist, GET /courses/{id}/enrollments
- POST /enrollments, POST /enrollments/batch, GET /enrollments/{id}
- POST /enrollments/{id}/withdraw
- GET /enrollments/{id}/payment-status, GET /enrollments/{id}/payments
- POST /payments
- GET /admission/stats
- GET /health
"""

from fastapi import FastAPI, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import Session
import json
import logging
import time
import uuid
from typing import Optional
from .database import create_db_and_tables, get_session
from . import services, repositories, models
from .auth import get_current_user
from .errors import AlreadyTerminal, CourseBusy, DuplicateEnrollment, InvariantViolation, NotFound
from .schemas import (
    AccountHolderIn,
    AccountStudentIn,
    BatchEnrollmentIn,
    CapacityIn,
    CourseIn,
    EnrollmentIn,
    FamilyEnrollmentIn,
    PaymentIn,
    RegisterIn,
    SemesterIn,
    StudentIn,
    TokenOut,
    WithdrawIn,
)
from .utils.admission_observability import get_admission_stats
from .config import settings

app = FastAPI(title="Course Registrar API")
logger = logging.getLogger("registrar.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

_LOGGED_PREFIXES = ("/enrollments", "/courses")

if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    logged = request.url.path.startswith(_LOGGED_PREFIXES)
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        if logged:
            logger.exception(
                "request_failed %s",
                json.dumps(
                    {
                        "request_id": req_id,
                        "path": request.url.path,
                        "method": request.method,
                        "duration_ms": elapsed_ms,
                        "client": request.client.host if request.client else "unknown",
                    },
                    ensure_ascii=True,
                ),
            )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    if logged:
        logger.info(
            "request_done %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
    return response


@app.exception_handler(NotFound)
def handle_not_found(request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content={"code": "NOT_FOUND", "detail": str(exc)})


@app.exception_handler(DuplicateEnrollment)
def handle_duplicate(request: Request, exc: DuplicateEnrollment):
    return JSONResponse(
        status_code=409,
        content={"code": "DUPLICATE_ENROLLMENT", "detail": str(exc), "enrollment_id": exc.enrollment_id},
    )


@app.exception_handler(AlreadyTerminal)
def handle_already_terminal(request: Request, exc: AlreadyTerminal):
    return JSONResponse(status_code=409, content={"code": "ALREADY_TERMINAL", "detail": str(exc)})


@app.exception_handler(CourseBusy)
def handle_course_busy(request: Request, exc: CourseBusy):
    return JSONResponse(
        status_code=503,
        content={"code": "COURSE_BUSY", "detail": str(exc)},
        headers={"Retry-After": "1"},
    )


@app.exception_handler(InvariantViolation)
def handle_invariant_violation(request: Request, exc: InvariantViolation):
    # already logged with traceback by the admission controller
    return JSONResponse(status_code=500, content={"code": "INTERNAL_ERROR", "detail": "internal error"})


def _account_holder_out(h: models.AccountHolder) -> dict:
    return {
        'id': h.id,
        'first_name': h.first_name,
        'last_name': h.last_name,
        'full_name': h.full_name,
        'email': h.email,
        'home_phone': h.home_phone,
        'mobile_phone': h.mobile_phone,
        'membership_dues_owed': h.membership_dues_owed,
        'member_since': h.member_since,
    }


def _student_out(s: models.Student) -> dict:
    return {
        'id': s.id,
        'account_holder_id': s.account_holder_id,
        'first_name': s.first_name,
        'last_name': s.last_name,
        'email': s.email,
        'grade': s.grade,
        'date_of_birth': s.date_of_birth,
        'notes': s.notes,
    }


def _semester_out(sem: models.Semester) -> dict:
    return {
        'id': sem.id,
        'name': sem.name,
        'code': sem.code,
        'start_date': sem.start_date,
        'end_date': sem.end_date,
        'is_active': sem.is_active,
    }


def _course_out(c: models.Course) -> dict:
    return {
        'id': c.id,
        'semester_id': c.semester_id,
        'name': c.name,
        'code': c.code,
        'description': c.description,
        'age_group': c.age_group,
        'fee': c.fee,
        'max_capacity': c.max_capacity,
        'current_enrollment': c.enrolled_count,
        'available_spots': c.available_spots,
        'is_full': c.is_full,
    }


def _enrollment_out(e: models.Enrollment, payment: Optional[dict] = None) -> dict:
    out = {
        'id': e.id,
        'student_id': e.student_id,
        'course_id': e.course_id,
        'semester_id': e.semester_id,
        'enrollment_type': e.enrollment_type.value,
        'waitlist_position': e.waitlist_position,
        'enrollment_date': e.enrollment_date,
        'fee_amount': e.fee_amount,
        'withdrawn_at': e.withdrawn_at,
        'notes': e.notes,
    }
    if payment is not None:
        out['amount_paid'] = payment['amount_paid']
        out['payment_status'] = payment['payment_status']
    return out


def _payment_out(p: models.Payment) -> dict:
    return {
        'id': p.id,
        'enrollment_id': p.enrollment_id,
        'account_holder_id': p.account_holder_id,
        'amount': p.amount,
        'payment_method': p.payment_method.value,
        'payment_type': p.payment_type.value,
        'payment_date': p.payment_date,
        'transaction_id': p.transaction_id,
        'notes': p.notes,
    }


def _batch_out(results) -> dict:
    out = []
    for r in results:
        out.append({
            'student_id': r['student_id'],
            'course_id': r['course_id'],
            'enrollment': _enrollment_out(r['enrollment']) if r['enrollment'] is not None else None,
            'error': r['error'],
        })
    return {
        'registered': sum(1 for r in out if r['error'] is None),
        'failed': sum(1 for r in out if r['error'] is not None),
        'results': out,
    }


@app.post('/auth/register')
def register(payload: RegisterIn, db: Session = Depends(get_session)):
    """Register a new API user (idempotent).

    Returns the existing user if the username is already taken so
    automation and tests can call it repeatedly.
    """
    auth = services.AuthService(db)
    existing = repositories.UserRepository(db).get_by_username(payload.username)
    if existing:
        return {'id': existing.id, 'username': existing.username}
    user = auth.register(payload.username, payload.password)
    return {'id': user.id, 'username': user.username}


@app.post('/auth/login', response_model=TokenOut)
def login(payload: RegisterIn, db: Session = Depends(get_session)):
    """Authenticate a user and return a short-lived JWT token."""
    auth = services.AuthService(db)
    token = auth.authenticate(payload.username, payload.password)
    if not token:
        raise HTTPException(status_code=401, detail='invalid credentials')
    return TokenOut(access_token=token)


@app.post('/account-holders', status_code=201)
def create_account_holder(payload: AccountHolderIn, db: Session = Depends(get_session),
                          user: models.User = Depends(get_current_user)):
    """Create a family account that students and payments hang off."""
    try:
        h = services.AccountHolderService(db).create(**payload.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _account_holder_out(h)


@app.get('/account-holders/{holder_id}')
def get_account_holder(holder_id: int, db: Session = Depends(get_session)):
    """Return a family account with its students and payment totals."""
    svc = services.AccountHolderService(db)
    out = _account_holder_out(svc.get(holder_id))
    out['students'] = [_student_out(s) for s in svc.list_students(holder_id)]
    out['balance'] = svc.balance(holder_id).as_dict()
    return out


@app.get('/account-holders/{holder_id}/students')
def list_account_students(holder_id: int, db: Session = Depends(get_session)):
    return [_student_out(s) for s in services.AccountHolderService(db).list_students(holder_id)]


@app.post('/account-holders/{holder_id}/students', status_code=201)
def add_account_student(holder_id: int, payload: AccountStudentIn, db: Session = Depends(get_session),
                        user: models.User = Depends(get_current_user)):
    try:
        s = services.AccountHolderService(db).add_student(holder_id, **payload.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _student_out(s)


@app.get('/account-holders/{holder_id}/payments')
def list_account_payments(holder_id: int, payment_type: Optional[models.PaymentType] = None,
                          db: Session = Depends(get_session)):
    svc = services.AccountHolderService(db)
    return [_payment_out(p) for p in svc.list_payments(holder_id, payment_type)]


@app.post('/account-holders/{holder_id}/enrollments')
def register_family(holder_id: int, payload: FamilyEnrollmentIn, db: Session = Depends(get_session),
                    user: models.User = Depends(get_current_user)):
    """Register several of a family's students at once; each pair succeeds or fails on its own."""
    try:
        results = services.AccountHolderService(db).register_students(holder_id, payload.student_ids,
                                                                      payload.course_ids)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _batch_out(results)


@app.post('/students', status_code=201)
def create_student(payload: StudentIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    svc = services.CatalogService(db)
    try:
        s = svc.create_student(**payload.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _student_out(s)


@app.get('/students/{student_id}')
def get_student(student_id: int, db: Session = Depends(get_session)):
    return _student_out(services.CatalogService(db).get_student(student_id))


@app.get('/students/{student_id}/enrollments')
def list_student_enrollments(student_id: int, db: Session = Depends(get_session)):
    """List every enrollment of a student, active and terminal, newest first."""
    rows = services.EnrollmentService(db).list_for_student(student_id)
    return [_enrollment_out(e) for e in rows]


@app.post('/semesters', status_code=201)
def create_semester(payload: SemesterIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    svc = services.CatalogService(db)
    try:
        sem = svc.create_semester(**payload.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _semester_out(sem)


@app.get('/semesters')
def list_semesters(db: Session = Depends(get_session)):
    return [_semester_out(s) for s in services.CatalogService(db).list_semesters()]


@app.post('/courses', status_code=201)
def create_course(payload: CourseIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Create a course offering with `max_capacity` seats and an empty waitlist."""
    svc = services.CatalogService(db)
    try:
        c = svc.create_course(**payload.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _course_out(c)


@app.get('/courses')
def list_courses(semester_id: Optional[int] = None, db: Session = Depends(get_session)):
    return [_course_out(c) for c in services.CatalogService(db).list_courses(semester_id)]


@app.get('/courses/{course_id}')
def get_course(course_id: int, db: Session = Depends(get_session)):
    """Return a course with its capacity report and waitlist length."""
    course = services.CatalogService(db).get_course(course_id)
    out = _course_out(course)
    out['waitlist_size'] = len(services.EnrollmentService(db).get_waitlist(course_id))
    return out


@app.put('/courses/{course_id}/capacity')
def resize_capacity(course_id: int, payload: CapacityIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Change the seat limit of a course.

    Growing the limit promotes waitlisted students into the new seats, head
    first. Shrinking below the current enrollment is rejected with 400.
    """
    svc = services.EnrollmentService(db)
    try:
        result = svc.resize_capacity(course_id, payload.max_capacity)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        'capacity': result.capacity.as_dict(),
        'promoted': [_enrollment_out(e) for e in result.promoted],
    }


@app.get('/courses/{course_id}/waitlist')
def get_waitlist(course_id: int, db: Session = Depends(get_session)):
    """Return the waitlist of a course in position order."""
    return [_enrollment_out(e) for e in services.EnrollmentService(db).get_waitlist(course_id)]


@app.get('/courses/{course_id}/enrollments')
def list_course_enrollments(course_id: int, enrollment_type: Optional[models.EnrollmentType] = None,
                            db: Session = Depends(get_session)):
    rows = services.EnrollmentService(db).list_for_course(course_id, enrollment_type)
    return [_enrollment_out(e) for e in rows]


@app.post('/enrollments', status_code=201)
def register_student(payload: EnrollmentIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Register a student for a course.

    The response's `enrollment_type` is `Enrolled` when a seat was free and
    `Waitlisted` (with `waitlist_position`) otherwise. A second active
    registration for the same student and course answers 409.
    """
    e = services.EnrollmentService(db).register_student(payload.student_id, payload.course_id, notes=payload.notes)
    return _enrollment_out(e)


@app.post('/enrollments/batch')
def register_batch(payload: BatchEnrollmentIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Register several students/courses at once; each item succeeds or fails on its own."""
    svc = services.EnrollmentService(db)
    return _batch_out(svc.register_batch((item.student_id, item.course_id) for item in payload.items))


@app.get('/enrollments/{enrollment_id}')
def get_enrollment(enrollment_id: int, db: Session = Depends(get_session)):
    """Return an enrollment with its derived payment status."""
    e = services.EnrollmentService(db).get(enrollment_id)
    rec = services.PaymentService(db).reconcile(enrollment_id).as_dict()
    return _enrollment_out(e, payment=rec)


@app.post('/enrollments/{enrollment_id}/withdraw')
def withdraw(enrollment_id: int, payload: Optional[WithdrawIn] = None, db: Session = Depends(get_session),
             user: models.User = Depends(get_current_user)):
    """Withdraw (or drop) an enrollment.

    Withdrawing an enrolled student frees a seat and promotes the head of
    the waitlist into it; the promoted enrollments are returned. A second
    withdrawal of the same enrollment answers 409.
    """
    status = models.EnrollmentType((payload or WithdrawIn()).status)
    result = services.EnrollmentService(db).withdraw(enrollment_id, status=status)
    return {
        'enrollment': _enrollment_out(result.enrollment),
        'previous_state': result.previous_state.value,
        'promoted': [_enrollment_out(e) for e in result.promoted],
    }


@app.get('/enrollments/{enrollment_id}/payment-status')
def payment_status(enrollment_id: int, db: Session = Depends(get_session)):
    """Report fee, amount paid, balance and Paid/Pending/Unpaid status."""
    return services.PaymentService(db).reconcile(enrollment_id).as_dict()


@app.get('/enrollments/{enrollment_id}/payments')
def list_enrollment_payments(enrollment_id: int, db: Session = Depends(get_session)):
    return [_payment_out(p) for p in services.PaymentService(db).list_for_enrollment(enrollment_id)]


@app.post('/payments', status_code=201)
def record_payment(payload: PaymentIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    svc = services.PaymentService(db)
    try:
        p = svc.record_payment(**payload.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _payment_out(p)


@app.get('/admission/stats')
def admission_stats():
    """Return admission event counters from the observability log."""
    return get_admission_stats()


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}
