from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from placement.exceptions import InvalidTransition, NotFound, Unauthorized, ValidationFailed
from placement.models import Evaluation, Notification, Role
from placement.services.lifecycle import mean_score
from placement.tests.conftest import make_user

pytestmark = pytest.mark.django_db

SCORES = dict(attendance=80, practical_skills=90, professional_behavior=70)


@pytest.fixture
def evaluation(engine, doctor, accepted_application):
    return engine.create_evaluation(doctor, accepted_application.id)


def test_submit_stores_mean_score_and_is_final(engine, doctor, evaluation):
    assert evaluation.status == Evaluation.STATUS_PENDING
    submitted = engine.submit_evaluation(doctor, evaluation.id, comments='Très bon stage', **SCORES)
    assert submitted.status == Evaluation.STATUS_SUBMITTED
    assert submitted.score == Decimal('80.00')
    assert submitted.submission_date is not None

    with pytest.raises(InvalidTransition):
        engine.submit_evaluation(doctor, evaluation.id, attendance=10, practical_skills=10, professional_behavior=10)
    evaluation.refresh_from_db()
    assert evaluation.score == Decimal('80.00')
    assert evaluation.attendance == 80
    assert evaluation.comments == 'Très bon stage'


def test_submission_notifies_student(engine, doctor, student, evaluation):
    engine.submit_evaluation(doctor, evaluation.id, **SCORES)
    note = Notification.objects.get(user=student, title='Évaluation soumise')
    assert note.related_entity_type == 'Evaluation'
    assert note.related_entity_id == str(evaluation.id)


def test_open_is_get_or_create(engine, doctor, student, accepted_application, evaluation):
    again = engine.create_evaluation(doctor, accepted_application.id)
    assert again.id == evaluation.id
    assert Evaluation.objects.count() == 1
    assert Notification.objects.filter(user=student, title='Évaluation ouverte').count() == 1
    assert evaluation.due_date > timezone.now()


def test_only_accepted_applications_are_evaluated(engine, doctor, student, make_internship):
    application = engine.apply(student, make_internship().id)
    with pytest.raises(InvalidTransition):
        engine.create_evaluation(doctor, application.id)
    with pytest.raises(NotFound):
        engine.create_evaluation(doctor, 999999)


def test_doctor_must_belong_to_department(engine, chief, other_department, accepted_application):
    outsider = make_user('doctor2', Role.DOCTOR, other_department)
    with pytest.raises(Unauthorized):
        engine.create_evaluation(outsider, accepted_application.id)
    with pytest.raises(Unauthorized):
        engine.create_evaluation(chief, accepted_application.id)


def test_only_assigned_doctor_submits(engine, department, evaluation):
    colleague = make_user('doctor3', Role.DOCTOR, department)
    with pytest.raises(Unauthorized):
        engine.submit_evaluation(colleague, evaluation.id, **SCORES)


def test_draft_keeps_partial_scores(engine, doctor, evaluation):
    draft = engine.save_evaluation_draft(doctor, evaluation.id, attendance=75, comments='<img src=x>assidu')
    assert draft.status == Evaluation.STATUS_IN_PROGRESS
    assert draft.attendance == 75
    assert draft.practical_skills is None
    assert draft.score is None
    assert draft.comments == 'assidu'

    engine.submit_evaluation(doctor, evaluation.id, **SCORES)
    with pytest.raises(InvalidTransition):
        engine.save_evaluation_draft(doctor, evaluation.id, attendance=10)


@pytest.mark.parametrize('bad', [101, -1, 'abc', 85.5, None])
def test_scores_must_be_integers_in_range(engine, doctor, evaluation, bad):
    with pytest.raises(ValidationFailed):
        engine.submit_evaluation(doctor, evaluation.id, attendance=bad, practical_skills=50, professional_behavior=50)
    evaluation.refresh_from_db()
    assert evaluation.status == Evaluation.STATUS_PENDING


@pytest.mark.parametrize('scores, expected', [
    ((80, 90, 70), Decimal('80.00')),
    ((80, 85, 90), Decimal('85.00')),
    ((1, 0, 0), Decimal('0.33')),
    ((1, 1, 0), Decimal('0.67')),
    ((100, 100, 100), Decimal('100.00')),
])
def test_mean_score(scores, expected):
    assert mean_score(*scores) == expected


def test_chief_validates_submitted_evaluation(engine, chief, doctor, student, evaluation):
    with pytest.raises(InvalidTransition):
        engine.validate_evaluation(chief, evaluation.id)

    engine.submit_evaluation(doctor, evaluation.id, **SCORES)
    with pytest.raises(Unauthorized):
        engine.validate_evaluation(doctor, evaluation.id)

    validated = engine.validate_evaluation(chief, evaluation.id, comments='Conforme')
    assert validated.validated_by == chief
    assert validated.validated_at is not None
    assert validated.chief_comments == 'Conforme'
    assert validated.status == Evaluation.STATUS_SUBMITTED
    for user in (doctor, student):
        assert Notification.objects.filter(user=user, title='Évaluation validée').count() == 1

    with pytest.raises(InvalidTransition):
        engine.validate_evaluation(chief, evaluation.id)


def test_reminders_are_sent_once_for_overdue_evaluations(engine, doctor, evaluation, accepted_application):
    Evaluation.objects.filter(id=evaluation.id).update(due_date=timezone.now() - timedelta(days=1))

    assert engine.send_evaluation_reminders() == 1
    assert engine.send_evaluation_reminders() == 0
    note = Notification.objects.get(user=doctor, title="Rappel d'évaluation")
    assert note.type == 'warning'
    evaluation.refresh_from_db()
    assert evaluation.reminded_at is not None


def test_submitted_evaluations_are_not_reminded(engine, doctor, evaluation):
    engine.submit_evaluation(doctor, evaluation.id, **SCORES)
    Evaluation.objects.filter(id=evaluation.id).update(due_date=timezone.now() - timedelta(days=1))
    assert engine.send_evaluation_reminders() == 0


def test_reminder_sweep_ignores_future_due_dates(engine, evaluation):
    assert engine.send_evaluation_reminders(now=timezone.now()) == 0
    assert engine.send_evaluation_reminders(now=timezone.now() + timedelta(days=30)) == 1
