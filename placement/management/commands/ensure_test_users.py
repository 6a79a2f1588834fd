from django.contrib.auth.hashers import make_password
from django.core.management.base import BaseCommand
from rest_framework.authtoken.models import Token

from placement.models import Department, Establishment, Role, User

TEST_SET = [
    ("dean1", Role.DEAN),
    ("chief1", Role.SERVICE_CHIEF),
    ("doctor1", Role.DOCTOR),
    ("student1", Role.STUDENT),
]

# roles attached to the demo department
STAFF_ROLES = {Role.SERVICE_CHIEF, Role.DOCTOR}


class Command(BaseCommand):
    help = "Ensure one test user per role exists, password=123456, and print API tokens (idempotent)."

    def add_arguments(self, parser):
        parser.add_argument("--password", default="123456")

    def handle(self, *args, **opts):
        establishment, _ = Establishment.objects.get_or_create(
            name="CHU Démo", defaults={"city": "Alger", "kind": "chu"}
        )
        department, _ = Department.objects.get_or_create(
            establishment=establishment, name="Médecine interne"
        )
        password = make_password(opts["password"])
        for username, role in TEST_SET:
            staff = role in STAFF_ROLES
            u, created = User.objects.get_or_create(
                username=username,
                defaults={"role": role, "password": password, "is_active": True},
            )
            u.password = password
            u.role = role
            u.is_active = True
            u.department = department if staff else None
            u.establishment = establishment if staff else None
            u.save(update_fields=["password", "role", "is_active", "department", "establishment"])
            token, _ = Token.objects.get_or_create(user=u)
            self.stdout.write(self.style.SUCCESS(f"ok: {username} ({role.value}) token={token.key}"))
        chief = User.objects.get(username="chief1")
        if department.chief_id != chief.id:
            department.chief = chief
            department.save(update_fields=["chief"])
        self.stdout.write(self.style.SUCCESS("All test users ensured."))
