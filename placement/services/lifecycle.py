"""
Internship, application and evaluation lifecycle.

Every operation validates the requested transition and commits it in a
single transaction before any notification is emitted.  Capacity is
guarded twice: the internship row is locked (``select_for_update``) where
the backend supports it, and an acceptance only counts once a conditional
``UPDATE ... WHERE filled_places < total_places`` has claimed the place,
so two reviewers racing for the last place cannot both succeed on any
backend.  Lock conflicts reported by the store are retried; any other
store failure surfaces as ``PersistenceError``.

Notifications are a side effect of a committed transition.  They are
emitted after the transaction block and any failure there is logged,
never raised to the caller.
"""
from __future__ import annotations

import logging
import random
import time
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Callable, Iterable, Optional, TypeVar, Union

import bleach
from django.conf import settings
from django.db import DatabaseError, IntegrityError, OperationalError, transaction
from django.db.models import F
from django.utils import timezone
from django.utils.dateparse import parse_date

from placement.exceptions import (
    CapacityExceeded,
    DuplicateApplication,
    InvalidTransition,
    NotCancellable,
    NotFound,
    PersistenceError,
    Unauthorized,
    ValidationFailed,
)
from placement.models import (
    Application,
    Department,
    Evaluation,
    Internship,
    Role,
    User,
    require_all_roles,
)
from placement.realtime.push import build_push_channel
from placement.services.audit import log_action
from placement.services.dispatch import NotificationDispatcher

logger = logging.getLogger(__name__)

T = TypeVar('T')


# ---------------------------------------------------------------------------
# State machines
# ---------------------------------------------------------------------------
INTERNSHIP_TRANSITIONS: dict[str, frozenset[str]] = {
    Internship.STATUS_ACTIVE: frozenset({Internship.STATUS_FULL, Internship.STATUS_CLOSED, Internship.STATUS_ARCHIVED}),
    Internship.STATUS_FULL: frozenset({Internship.STATUS_ACTIVE, Internship.STATUS_CLOSED, Internship.STATUS_ARCHIVED}),
    Internship.STATUS_CLOSED: frozenset(),
    Internship.STATUS_ARCHIVED: frozenset(),
}

APPLICATION_TRANSITIONS: dict[str, frozenset[str]] = {
    Application.STATUS_PENDING: frozenset({
        Application.STATUS_ACCEPTED, Application.STATUS_REJECTED, Application.STATUS_CANCELLED,
    }),
    Application.STATUS_ACCEPTED: frozenset(),
    Application.STATUS_REJECTED: frozenset(),
    Application.STATUS_CANCELLED: frozenset(),
}

# statuses after which an internship takes no new applications or acceptances
INTERNSHIP_SHUT = frozenset({Internship.STATUS_CLOSED, Internship.STATUS_ARCHIVED})


def can_transition_internship(current: str, new: str) -> bool:
    return new in INTERNSHIP_TRANSITIONS.get(current, frozenset())


def can_transition_application(current: str, new: str) -> bool:
    return new in APPLICATION_TRANSITIONS.get(current, frozenset())


def next_capacity_status(status: str, filled_places: int, total_places: int) -> str:
    """Status implied by the place counters; shut internships keep theirs."""
    if status in INTERNSHIP_SHUT:
        return status
    if filled_places >= total_places:
        return Internship.STATUS_FULL
    if status == Internship.STATUS_FULL:
        return Internship.STATUS_ACTIVE
    return status


def recompute_capacity_status(internship: Internship) -> bool:
    """Apply :func:`next_capacity_status` in memory; True if the status changed."""
    new_status = next_capacity_status(internship.status, internship.filled_places, internship.total_places)
    changed = new_status != internship.status
    internship.status = new_status
    return changed


# ---------------------------------------------------------------------------
# Role scopes
# ---------------------------------------------------------------------------
def _chief_owns(user: User, internship: Internship) -> bool:
    if internship.chief_id == user.id or internship.created_by_id == user.id:
        return True
    if internship.department.chief_id == user.id:
        return True
    return internship.chief_id is None and user.department_id == internship.department_id


REVIEW_SCOPE: dict[Role, Callable[[User, Internship], bool]] = require_all_roles({
    Role.STUDENT: lambda user, internship: False,
    Role.SERVICE_CHIEF: _chief_owns,
    Role.DOCTOR: lambda user, internship: False,
    Role.DEAN: lambda user, internship: True,
}, 'REVIEW_SCOPE')

CREATE_SCOPE: dict[Role, Callable[[User, Department], bool]] = require_all_roles({
    Role.STUDENT: lambda user, department: False,
    Role.SERVICE_CHIEF: lambda user, department: user.department_id == department.id,
    Role.DOCTOR: lambda user, department: False,
    Role.DEAN: lambda user, department: True,
}, 'CREATE_SCOPE')


def role_of(user: User) -> Role:
    try:
        return Role(user.role)
    except ValueError:
        raise Unauthorized(f'unknown role {user.role!r}')


def can_review(user: User, internship: Internship) -> bool:
    """Dean, or a service chief in charge of the internship."""
    return REVIEW_SCOPE[role_of(user)](user, internship)


def _require_role(user: User, *roles: Role) -> None:
    if role_of(user) not in roles:
        raise Unauthorized(f'action reserved to {", ".join(r.value for r in roles)}')


# ---------------------------------------------------------------------------
# Input helpers
# ---------------------------------------------------------------------------
def _clean(text: Optional[str]) -> str:
    return bleach.clean((text or '').strip(), strip=True)


def _as_date(value: Union[date, str, None], name: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        parsed = parse_date(value) if isinstance(value, str) else None
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationFailed(f'{name} must be a date (YYYY-MM-DD)', field=name)
    return parsed


def _positive_int(value, name: str, *, allow_zero: bool = False) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationFailed(f'{name} must be an integer', field=name)
    if number < 0 or (number == 0 and not allow_zero):
        raise ValidationFailed(f'{name} must be {"non-negative" if allow_zero else "positive"}', field=name)
    return number


def _requirements(value: Union[str, Iterable[str], None]) -> list[str]:
    if not value:
        return []
    items = value.split(',') if isinstance(value, str) else value
    return [_clean(str(item)) for item in items if str(item).strip()]


def _score(value, name: str) -> int:
    try:
        number = Decimal(str(value))
        integral = number == number.to_integral_value()
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationFailed(f'{name} must be a number', field=name)
    low, high = settings.PLACEMENT_SCORE_MIN, settings.PLACEMENT_SCORE_MAX
    if not integral or not low <= number <= high:
        raise ValidationFailed(f'{name} must be an integer between {low} and {high}', field=name)
    return int(number)


def mean_score(*scores: int) -> Decimal:
    total = sum(Decimal(s) for s in scores)
    return (total / len(scores)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


def _locked_internship(internship_id) -> Internship:
    internship = Internship.objects.select_for_update().filter(id=internship_id).first()
    if internship is None:
        raise NotFound('internship not found', internshipId=internship_id)
    return internship


def _claim_place(internship: Internship) -> bool:
    """Take one place with a conditional update and refresh ``internship``.

    Returns True when this place filled the internship.
    """
    claimed = (Internship.objects
               .filter(id=internship.id, filled_places__lt=F('total_places'))
               .exclude(status__in=INTERNSHIP_SHUT)
               .update(filled_places=F('filled_places') + 1, updated_at=timezone.now()))
    internship.refresh_from_db()
    if not claimed:
        if internship.status in INTERNSHIP_SHUT:
            raise InvalidTransition('internship is not open', status=internship.status)
        raise CapacityExceeded('no place left on this internship', internshipId=internship.id,
                               filledPlaces=internship.filled_places,
                               totalPlaces=internship.total_places)
    if recompute_capacity_status(internship):
        internship.save(update_fields=['status', 'updated_at'])
        return internship.status == Internship.STATUS_FULL
    return False


def _atomically(work: Callable[[], T], *,
                on_integrity: Optional[Callable[[IntegrityError], Exception]] = None) -> T:
    """Run ``work`` in one transaction and translate store failures.

    Lock conflicts are retried with a growing, jittered pause, except
    inside an already open transaction which cannot be replayed from here.
    """
    nested = transaction.get_connection().in_atomic_block
    attempts = 1 if nested else max(1, settings.PLACEMENT_LOCK_RETRIES)
    for attempt in range(1, attempts + 1):
        try:
            with transaction.atomic():
                return work()
        except IntegrityError as exc:
            if on_integrity is not None:
                raise on_integrity(exc) from exc
            raise PersistenceError(f'constraint violated: {exc}') from exc
        except OperationalError as exc:
            if attempt == attempts:
                raise PersistenceError(f'store unavailable: {exc}') from exc
            logger.warning("lock conflict, retrying (%s/%s): %s", attempt, attempts, exc)
            time.sleep(settings.PLACEMENT_LOCK_BACKOFF * attempt * (1 + random.random()))
        except DatabaseError as exc:
            raise PersistenceError(f'store failure: {exc}') from exc
    raise PersistenceError('store unavailable')


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------
class LifecycleEngine:
    """Entry point for every placement state change."""

    def __init__(self, dispatcher: NotificationDispatcher):
        self.dispatcher = dispatcher

    def _emit(self, event: str, *args) -> None:
        try:
            getattr(self.dispatcher, event)(*args)
        except Exception:
            logger.exception("notification %s failed after commit", event)

    # -- internships -------------------------------------------------------
    def create_internship(self, actor: User, *, title: str, department_id, establishment_id,
                          total_places, start_date, end_date, description: str = '',
                          duration: str = '', requirements=None, chief_id=None) -> Internship:
        _require_role(actor, Role.DEAN, Role.SERVICE_CHIEF)
        title = _clean(title)
        if not title:
            raise ValidationFailed('title is required', field='title')
        total_places = _positive_int(total_places, 'total_places')
        start_date = _as_date(start_date, 'start_date')
        end_date = _as_date(end_date, 'end_date')
        if start_date >= end_date:
            raise ValidationFailed('start_date must be before end_date', field='start_date')

        department = Department.objects.filter(id=department_id).first()
        if department is None:
            raise NotFound('department not found', departmentId=department_id)
        if department.establishment_id != _positive_int(establishment_id, 'establishment_id'):
            raise ValidationFailed('department does not belong to this establishment', field='establishment_id')
        if not CREATE_SCOPE[role_of(actor)](actor, department):
            raise Unauthorized('chiefs may only create internships in their own department')

        chief = None
        if chief_id:
            chief = User.objects.filter(id=chief_id, role=Role.SERVICE_CHIEF).first()
            if chief is None:
                raise ValidationFailed('chief must be a service chief', field='chief_id')
        elif role_of(actor) == Role.SERVICE_CHIEF:
            chief = actor

        def work():
            internship = Internship.objects.create(
                title=title,
                description=_clean(description),
                department=department,
                establishment_id=department.establishment_id,
                chief=chief,
                created_by=actor,
                total_places=total_places,
                filled_places=0,
                duration=_clean(duration),
                start_date=start_date,
                end_date=end_date,
                requirements=_requirements(requirements),
                status=Internship.STATUS_ACTIVE,
            )
            log_action(user=actor, action='internship_create', object_type='internship',
                       object_id=internship.id, detail={'totalPlaces': total_places})
            return internship

        internship = _atomically(work)
        logger.info("internship %s created by %s", internship.id, actor.id)
        self._emit('internship_created', internship)
        return internship

    def change_internship_status(self, actor: User, internship_id, new_status: str) -> Internship:
        if new_status not in INTERNSHIP_TRANSITIONS:
            raise ValidationFailed(f'unknown internship status {new_status!r}', field='status')

        def work():
            internship = _locked_internship(internship_id)
            if not can_review(actor, internship):
                raise Unauthorized('not in charge of this internship')
            old_status = internship.status
            if not can_transition_internship(old_status, new_status):
                raise InvalidTransition(f'cannot move internship from {old_status} to {new_status}',
                                        current=old_status, requested=new_status)
            if new_status == Internship.STATUS_ACTIVE and not internship.has_free_place:
                raise InvalidTransition('no free place left, internship stays full',
                                        current=old_status, requested=new_status)
            internship.status = new_status
            internship.save(update_fields=['status', 'updated_at'])
            log_action(user=actor, action='internship_status', object_type='internship',
                       object_id=internship.id, detail={'from': old_status, 'to': new_status})
            return internship

        internship = _atomically(work)
        self._emit('internship_status_changed', internship)
        return internship

    close_or_archive = change_internship_status

    def correct_capacity(self, actor: User, internship_id, *, total_places=None, filled_places=None) -> Internship:
        """Administrative correction of the place counters."""
        def work():
            internship = _locked_internship(internship_id)
            if not can_review(actor, internship):
                raise Unauthorized('not in charge of this internship')
            total = internship.total_places if total_places is None else _positive_int(total_places, 'total_places')
            filled = (internship.filled_places if filled_places is None
                      else _positive_int(filled_places, 'filled_places', allow_zero=True))
            if filled > total:
                raise ValidationFailed('filled_places cannot exceed total_places', field='filled_places')
            before = {'total': internship.total_places, 'filled': internship.filled_places,
                      'status': internship.status}
            internship.total_places = total
            internship.filled_places = filled
            changed = recompute_capacity_status(internship)
            internship.save(update_fields=['total_places', 'filled_places', 'status', 'updated_at'])
            log_action(user=actor, action='internship_capacity', object_type='internship',
                       object_id=internship.id,
                       detail={'before': before, 'after': {'total': total, 'filled': filled,
                                                           'status': internship.status}})
            return internship, changed

        internship, changed = _atomically(work)
        if changed:
            self._emit('internship_status_changed', internship)
        return internship

    def delete_internship(self, actor: User, internship_id) -> None:
        _require_role(actor, Role.DEAN)

        def work():
            internship = _locked_internship(internship_id)
            evaluations, _ = Evaluation.objects.filter(internship=internship).delete()
            applications, _ = Application.objects.filter(internship=internship).delete()
            internship.delete()
            log_action(user=actor, action='internship_delete', object_type='internship',
                       object_id=int(internship_id),
                       detail={'applications': applications, 'evaluations': evaluations})

        _atomically(work)

    # -- applications ------------------------------------------------------
    def apply(self, student: User, internship_id, motivation_letter: str = '') -> Application:
        _require_role(student, Role.STUDENT)

        def work():
            internship = _locked_internship(internship_id)
            if internship.status in INTERNSHIP_SHUT:
                raise InvalidTransition('internship no longer accepts applications',
                                        status=internship.status)
            if internship.status != Internship.STATUS_ACTIVE or not internship.has_free_place:
                raise CapacityExceeded('internship is full', internshipId=internship.id)
            live = (Application.objects.filter(student=student, internship=internship)
                    .exclude(status=Application.STATUS_CANCELLED))
            if live.exists():
                raise DuplicateApplication('already applied to this internship', internshipId=internship.id)
            application = Application.objects.create(
                student=student,
                internship=internship,
                status=Application.STATUS_PENDING,
                motivation_letter=_clean(motivation_letter),
            )
            log_action(user=student, action='application_create', object_type='application',
                       object_id=application.id, detail={'internshipId': internship.id})
            return application

        application = _atomically(work, on_integrity=lambda exc: DuplicateApplication(
            'already applied to this internship', internshipId=internship_id))
        self._emit('application_submitted', application)
        return application

    def cancel_application(self, student: User, application_id) -> Application:
        def work():
            application = Application.objects.select_for_update().filter(id=application_id).first()
            if application is None:
                raise NotFound('application not found', applicationId=application_id)
            if application.student_id != student.id:
                raise NotCancellable('application does not belong to you')
            if not can_transition_application(application.status, Application.STATUS_CANCELLED):
                raise NotCancellable(f'application is {application.status}', status=application.status)
            application.status = Application.STATUS_CANCELLED
            application.save(update_fields=['status'])
            log_action(user=student, action='application_cancel', object_type='application',
                       object_id=application.id)
            return application

        return _atomically(work)

    def decide_application(self, reviewer: User, application_id, decision: str,
                           rejection_reason: Optional[str] = None) -> Application:
        if decision not in (Application.STATUS_ACCEPTED, Application.STATUS_REJECTED):
            raise ValidationFailed('decision must be accepted or rejected', field='decision')
        reason = _clean(rejection_reason)
        if decision == Application.STATUS_REJECTED and not reason:
            raise ValidationFailed('a rejection reason is required', field='rejection_reason')

        def work():
            application = (Application.objects.select_for_update().select_related('student')
                           .filter(id=application_id).first())
            if application is None:
                raise NotFound('application not found', applicationId=application_id)
            internship = _locked_internship(application.internship_id)
            if not can_review(reviewer, internship):
                raise Unauthorized('not in charge of this internship')
            if not can_transition_application(application.status, decision):
                raise InvalidTransition(f'application is already {application.status}',
                                        current=application.status, requested=decision)
            became_full = False
            if decision == Application.STATUS_ACCEPTED:
                if internship.status in INTERNSHIP_SHUT:
                    raise InvalidTransition('internship is not open', status=internship.status)
                if not internship.has_free_place:
                    raise CapacityExceeded('no place left on this internship', internshipId=internship.id,
                                           filledPlaces=internship.filled_places,
                                           totalPlaces=internship.total_places)
                became_full = _claim_place(internship)
            else:
                application.rejection_reason = reason
            application.status = decision
            application.response_date = timezone.now()
            application.reviewed_by = reviewer
            application.save(update_fields=['status', 'response_date', 'rejection_reason', 'reviewed_by'])
            log_action(user=reviewer, action='application_decide', object_type='application',
                       object_id=application.id,
                       detail={'decision': decision, 'filledPlaces': internship.filled_places})
            return application, internship, became_full

        application, internship, became_full = _atomically(work)
        application.internship = internship
        self._emit('application_decided', application)
        if became_full:
            self._emit('internship_status_changed', internship)
        return application

    # -- evaluations -------------------------------------------------------
    def create_evaluation(self, doctor: User, application_id) -> Evaluation:
        """Open (or reopen) the evaluation of an accepted application."""
        _require_role(doctor, Role.DOCTOR)
        application = (Application.objects.select_related('internship', 'student')
                       .filter(id=application_id).first())
        if application is None:
            raise NotFound('application not found', applicationId=application_id)
        if application.status != Application.STATUS_ACCEPTED:
            raise InvalidTransition('only accepted applications can be evaluated', status=application.status)
        internship = application.internship
        if doctor.department_id != internship.department_id:
            raise Unauthorized('doctor does not work in this department')

        due_date = timezone.now() + timedelta(days=settings.PLACEMENT_EVALUATION_DUE_DAYS)

        def work():
            evaluation, created = Evaluation.objects.get_or_create(
                student=application.student,
                internship=internship,
                doctor=doctor,
                defaults={'status': Evaluation.STATUS_PENDING, 'due_date': due_date},
            )
            if created:
                log_action(user=doctor, action='evaluation_create', object_type='evaluation',
                           object_id=evaluation.id, detail={'applicationId': application.id})
            return evaluation, created

        evaluation, created = _atomically(work)
        if created:
            self._emit('evaluation_opened', evaluation)
        return evaluation

    def _assigned_evaluation(self, doctor: User, evaluation_id) -> Evaluation:
        evaluation = (Evaluation.objects.select_for_update().select_related('internship', 'student')
                      .filter(id=evaluation_id).first())
        if evaluation is None:
            raise NotFound('evaluation not found', evaluationId=evaluation_id)
        if evaluation.doctor_id != doctor.id:
            raise Unauthorized('evaluation is assigned to another doctor')
        if evaluation.status == Evaluation.STATUS_SUBMITTED:
            raise InvalidTransition('evaluation already submitted', status=evaluation.status)
        return evaluation

    def save_evaluation_draft(self, doctor: User, evaluation_id, *, attendance=None, practical_skills=None,
                              professional_behavior=None, comments=None) -> Evaluation:
        scores = {
            'attendance': attendance,
            'practical_skills': practical_skills,
            'professional_behavior': professional_behavior,
        }

        def work():
            evaluation = self._assigned_evaluation(doctor, evaluation_id)
            for name, value in scores.items():
                if value is not None:
                    setattr(evaluation, name, _score(value, name))
            if comments is not None:
                evaluation.comments = _clean(comments)
            evaluation.status = Evaluation.STATUS_IN_PROGRESS
            evaluation.save()
            return evaluation

        return _atomically(work)

    def submit_evaluation(self, doctor: User, evaluation_id, *, attendance, practical_skills,
                          professional_behavior, comments: Optional[str] = None) -> Evaluation:
        def work():
            evaluation = self._assigned_evaluation(doctor, evaluation_id)
            evaluation.attendance = _score(attendance, 'attendance')
            evaluation.practical_skills = _score(practical_skills, 'practical_skills')
            evaluation.professional_behavior = _score(professional_behavior, 'professional_behavior')
            evaluation.score = mean_score(
                evaluation.attendance, evaluation.practical_skills, evaluation.professional_behavior
            )
            if comments is not None:
                evaluation.comments = _clean(comments)
            evaluation.status = Evaluation.STATUS_SUBMITTED
            evaluation.submission_date = timezone.now()
            evaluation.save()
            log_action(user=doctor, action='evaluation_submit', object_type='evaluation',
                       object_id=evaluation.id, detail={'score': str(evaluation.score)})
            return evaluation

        evaluation = _atomically(work)
        self._emit('evaluation_submitted', evaluation)
        return evaluation

    def validate_evaluation(self, chief: User, evaluation_id, comments: str = '') -> Evaluation:
        def work():
            evaluation = (Evaluation.objects.select_for_update().select_related('internship')
                          .filter(id=evaluation_id).first())
            if evaluation is None:
                raise NotFound('evaluation not found', evaluationId=evaluation_id)
            if not can_review(chief, evaluation.internship):
                raise Unauthorized('not in charge of this internship')
            if evaluation.status != Evaluation.STATUS_SUBMITTED:
                raise InvalidTransition('only submitted evaluations can be validated', status=evaluation.status)
            if evaluation.validated_at is not None:
                raise InvalidTransition('evaluation already validated')
            evaluation.validated_by = chief
            evaluation.validated_at = timezone.now()
            evaluation.chief_comments = _clean(comments)
            evaluation.save(update_fields=['validated_by', 'validated_at', 'chief_comments'])
            log_action(user=chief, action='evaluation_validate', object_type='evaluation',
                       object_id=evaluation.id)
            return evaluation

        evaluation = _atomically(work)
        self._emit('evaluation_validated', evaluation)
        return evaluation

    def send_evaluation_reminders(self, now=None) -> int:
        """Warn doctors once about each overdue, unsubmitted evaluation."""
        now = now or timezone.now()
        overdue = _atomically(lambda: list(
            Evaluation.objects
            .filter(status__in=[Evaluation.STATUS_PENDING, Evaluation.STATUS_IN_PROGRESS],
                    due_date__lte=now, reminded_at__isnull=True)
            .select_related('student', 'internship')
        ))
        sent = 0
        for evaluation in overdue:
            claimed = _atomically(lambda: Evaluation.objects.filter(
                id=evaluation.id, reminded_at__isnull=True).update(reminded_at=now))
            if claimed:
                self._emit('evaluation_reminder', evaluation)
                sent += 1
        return sent


def build_engine() -> LifecycleEngine:
    """Wire an engine with the configured push channel."""
    return LifecycleEngine(NotificationDispatcher(build_push_channel()))
