from datetime import date

import pytest
from django.db import DatabaseError

from placement.exceptions import NotFound, PersistenceError
from placement.models import Notification, Role
from placement.services import ledger
from placement.services.dispatch import Audience, NotificationDispatcher, NotificationPayload
from placement.services.lifecycle import LifecycleEngine
from placement.tests.conftest import make_user

pytestmark = pytest.mark.django_db


def _payload(title='Titre', message='Message'):
    return NotificationPayload(type=Notification.TYPE_INFO, title=title, message=message)


def test_new_internship_reaches_every_student_once(engine, dean, chief, doctor, students, department):
    internship = engine.create_internship(
        dean,
        title='Stage de réanimation',
        department_id=department.id,
        establishment_id=department.establishment_id,
        total_places=4,
        start_date=date(2026, 3, 1),
        end_date=date(2026, 5, 1),
    )
    for s in students:
        notes = Notification.objects.filter(user=s, related_entity_type='Internship')
        assert notes.count() == 1
        assert notes.get().related_entity_id == str(internship.id)
        assert notes.get().is_read is False
    for staff in (dean, chief, doctor):
        assert not Notification.objects.filter(user=staff).exists()


def test_inactive_students_are_skipped(push, students):
    students[2].is_active = False
    students[2].save(update_fields=['is_active'])
    report = NotificationDispatcher(push).notify(Audience.of_role(Role.STUDENT), _payload())
    assert len(report.persisted) == 2
    assert not Notification.objects.filter(user=students[2]).exists()


def test_partial_fan_out_keeps_earlier_rows(push, students, monkeypatch):
    real_create = ledger.create
    victim = students[1].id

    def flaky(user_id, payload):
        if user_id == victim:
            raise PersistenceError('disk full')
        return real_create(user_id, payload)

    monkeypatch.setattr(ledger, 'create', flaky)
    received = []
    push.subscribe_role(Role.STUDENT, received.append)

    report = NotificationDispatcher(push).notify(Audience.of_role(Role.STUDENT), _payload())
    assert report.failed == [victim]
    assert len(report.persisted) == 2
    assert report.pushed is True
    assert len(received) == 1
    assert set(Notification.objects.values_list('user_id', flat=True)) == {students[0].id, students[2].id}


def test_push_failure_is_swallowed(students, department, chief):
    class BrokenChannel:
        def push_to_user(self, user_id, payload):
            raise ConnectionError('socket closed')

        def push_to_role(self, role, payload):
            raise ConnectionError('socket closed')

    engine = LifecycleEngine(NotificationDispatcher(BrokenChannel()))
    internship = engine.create_internship(
        chief,
        title='Stage de pédiatrie',
        department_id=department.id,
        establishment_id=department.establishment_id,
        total_places=1,
        start_date=date(2026, 3, 1),
        end_date=date(2026, 5, 1),
    )
    assert internship.pk is not None
    assert Notification.objects.filter(related_entity_type='Internship').count() == len(students)

    report = engine.dispatcher.notify(Audience.user(students[0].id), _payload())
    assert report.pushed is False
    assert len(report.persisted) == 1


def test_store_failure_becomes_persistence_error(student, monkeypatch):
    def refuse(**kwargs):
        raise DatabaseError('read-only replica')

    monkeypatch.setattr(Notification.objects, 'create', refuse)
    with pytest.raises(PersistenceError):
        ledger.create(student.id, _payload())


def test_text_is_sanitised(student):
    note = ledger.create(student.id, _payload(title='<script>x</script>Bonjour', message='<img src=x>Salut'))
    assert '<script>' not in note.title
    assert note.message == 'Salut'


def test_list_is_newest_first_with_total(student, settings):
    for i in range(5):
        ledger.create(student.id, _payload(title=f'n{i}'))
    items, total = ledger.list_for_user(student.id, limit=2)
    assert total == 5
    assert [n.title for n in items] == ['n4', 'n3']

    items, _ = ledger.list_for_user(student.id, limit=2, offset=4)
    assert [n.title for n in items] == ['n0']

    settings.PLACEMENT_NOTIFICATION_MAX_PAGE_SIZE = 3
    items, _ = ledger.list_for_user(student.id, limit=100)
    assert len(items) == 3


def test_mark_read_is_idempotent_and_owned(students):
    owner, stranger = students[0], students[1]
    note = ledger.create(owner.id, _payload())

    first = ledger.mark_read(owner.id, note.id)
    assert first.is_read is True
    read_at = first.read_at
    again = ledger.mark_read(owner.id, note.id)
    assert again.read_at == read_at

    with pytest.raises(NotFound):
        ledger.mark_read(stranger.id, note.id)
    with pytest.raises(NotFound):
        ledger.mark_read(owner.id, 999999)


def test_mark_all_read_and_unread_count(students):
    owner, other = students[0], students[1]
    for _ in range(3):
        ledger.create(owner.id, _payload())
    ledger.create(other.id, _payload())

    assert ledger.unread_count(owner.id) == 3
    assert ledger.mark_all_read(owner.id) == 3
    assert ledger.mark_all_read(owner.id) == 0
    assert ledger.unread_count(owner.id) == 0
    assert ledger.unread_count(other.id) == 1


def test_delete_is_scoped_to_owner(students):
    owner, stranger = students[0], students[1]
    note = ledger.create(owner.id, _payload())
    with pytest.raises(NotFound):
        ledger.delete(stranger.id, note.id)
    ledger.delete(owner.id, note.id)
    assert not Notification.objects.filter(id=note.id).exists()
    with pytest.raises(NotFound):
        ledger.delete(owner.id, note.id)


def test_submitted_application_goes_to_assigned_chief_or_all_chiefs(engine, chief, other_chief, dean, student,
                                                                   make_internship):
    assigned = make_internship()
    engine.apply(student, assigned.id)
    assert Notification.objects.filter(user=chief, title='Nouvelle candidature').count() == 1
    assert not Notification.objects.filter(user=other_chief, title='Nouvelle candidature').exists()

    unassigned = make_internship(actor=dean)
    engine.apply(student, unassigned.id)
    for c in (chief, other_chief):
        assert Notification.objects.filter(
            user=c, title='Nouvelle candidature', message__contains='Etudiant1',
        ).count() == (2 if c == chief else 1)
    assert Notification.objects.filter(user=student, title='Candidature soumise').count() == 2


def test_audience_needs_exactly_one_target():
    with pytest.raises(ValueError):
        Audience()
    with pytest.raises(ValueError):
        Audience(user_id=1, role=Role.DEAN)
    assert str(Audience.of_role('doctor')) == 'role-doctor'
    assert str(Audience.user(7)) == 'user-7'


def test_role_audience_resolves_active_holders(push):
    lone_chief = make_user('chief9', Role.SERVICE_CHIEF)
    ids = NotificationDispatcher(push).resolve(Audience.of_role(Role.SERVICE_CHIEF))
    assert ids == [lone_chief.id]
