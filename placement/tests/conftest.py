from datetime import date

import pytest
from django.core.cache import cache

from placement.models import Department, Establishment, Role, User
from placement.realtime.push import LocalPushChannel
from placement.services.dispatch import NotificationDispatcher
from placement.services.lifecycle import LifecycleEngine


@pytest.fixture(autouse=True)
def _clear_cache():
    # throttle counters live in the cache
    cache.clear()
    yield
    cache.clear()


def make_user(username, role, department=None, **extra):
    return User.objects.create_user(
        username=username,
        password='P@ssw0rd1',
        role=role,
        department=department,
        establishment=department.establishment if department else None,
        **extra,
    )


@pytest.fixture
def establishment(db):
    return Establishment.objects.create(name='CHU Mustapha', city='Alger', kind='chu')


@pytest.fixture
def department(establishment):
    return Department.objects.create(establishment=establishment, name='Cardiologie')


@pytest.fixture
def other_department(establishment):
    return Department.objects.create(establishment=establishment, name='Pédiatrie')


@pytest.fixture
def dean(db):
    return make_user('dean1', Role.DEAN)


@pytest.fixture
def chief(department):
    return make_user('chief1', Role.SERVICE_CHIEF, department)


@pytest.fixture
def other_chief(other_department):
    return make_user('chief2', Role.SERVICE_CHIEF, other_department)


@pytest.fixture
def doctor(department):
    return make_user('doctor1', Role.DOCTOR, department)


@pytest.fixture
def students(db):
    return [make_user(f'student{i}', Role.STUDENT, first_name=f'Etudiant{i}') for i in (1, 2, 3)]


@pytest.fixture
def student(students):
    return students[0]


@pytest.fixture
def push():
    return LocalPushChannel()


@pytest.fixture
def engine(push):
    return LifecycleEngine(NotificationDispatcher(push))


@pytest.fixture
def make_internship(engine, chief, department):
    def _make(total_places=2, actor=None, **overrides):
        fields = dict(
            title='Stage de cardiologie',
            department_id=department.id,
            establishment_id=department.establishment_id,
            total_places=total_places,
            start_date=date(2026, 3, 1),
            end_date=date(2026, 6, 1),
        )
        fields.update(overrides)
        return engine.create_internship(actor or chief, **fields)
    return _make


@pytest.fixture
def accepted_application(engine, chief, student, make_internship):
    internship = make_internship(total_places=3)
    application = engine.apply(student, internship.id)
    return engine.decide_application(chief, application.id, 'accepted')
