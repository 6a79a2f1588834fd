"""
Database models for the placement backend.

Establishments and departments describe where internships take place,
users carry one of the four workflow roles, and the internship,
application and evaluation tables hold the state machines driven by
:mod:`placement.services.lifecycle`.  Notifications form the durable
ledger written by the notification dispatcher.
"""
from __future__ import annotations

from django.contrib.auth.models import AbstractUser
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import F, Q


class Role(models.TextChoices):
    """Closed set of actor roles.

    Tables keyed by role (permissions, audiences, review scopes) must
    cover every member; see :func:`require_all_roles`.
    """
    STUDENT = 'student', 'Étudiant'
    SERVICE_CHIEF = 'service_chief', 'Chef de service'
    DOCTOR = 'doctor', 'Médecin'
    DEAN = 'dean', 'Doyen'


def require_all_roles(table: dict, name: str) -> dict:
    """Fail at import time if a role-keyed table misses a role."""
    missing = set(Role) - set(table)
    if missing:
        raise RuntimeError(f"{name} has no entry for roles: {sorted(missing)}")
    return table


class Establishment(models.Model):
    """A hospital or clinic hosting internships."""
    KIND_CHOICES = [
        ('chu', 'CHU'),
        ('clinic', 'Clinique'),
        ('hospital', 'Hôpital'),
        ('polyclinic', 'Polyclinique'),
    ]
    name = models.CharField(max_length=255, unique=True)
    city = models.CharField(max_length=128)
    address = models.CharField(max_length=255, blank=True)
    phone = models.CharField(max_length=32, blank=True)
    kind = models.CharField(max_length=16, choices=KIND_CHOICES, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"{self.name} ({self.city})"


class Department(models.Model):
    """A hospital service inside an establishment, optionally led by a chief."""
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    establishment = models.ForeignKey(Establishment, on_delete=models.CASCADE, related_name='departments')
    chief = models.ForeignKey(
        'User', null=True, blank=True, on_delete=models.SET_NULL, related_name='led_departments'
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = [('establishment', 'name')]

    def __str__(self) -> str:
        return f"{self.name} @ {self.establishment_id}"


class User(AbstractUser):
    """Custom user model carrying the workflow role.

    Chiefs and doctors are attached to a department (and its
    establishment); students and deans usually are not.
    """
    role = models.CharField(max_length=16, choices=Role.choices, default=Role.STUDENT, db_index=True)
    establishment = models.ForeignKey(
        Establishment, null=True, blank=True, on_delete=models.SET_NULL, related_name='staff'
    )
    department = models.ForeignKey(
        Department, null=True, blank=True, on_delete=models.SET_NULL, related_name='staff'
    )
    phone = models.CharField(max_length=32, blank=True)

    def __str__(self) -> str:
        return f"{self.username} ({self.role})"


class Internship(models.Model):
    """A placement offer with a bounded number of places.

    ``filled_places`` only moves through the lifecycle engine: accepted
    applications increment it, administrative corrections may lower it.
    """
    STATUS_ACTIVE = 'active'
    STATUS_FULL = 'full'
    STATUS_CLOSED = 'closed'
    STATUS_ARCHIVED = 'archived'
    STATUS_CHOICES = (
        (STATUS_ACTIVE, 'active'),
        (STATUS_FULL, 'full'),
        (STATUS_CLOSED, 'closed'),
        (STATUS_ARCHIVED, 'archived'),
    )

    title = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    department = models.ForeignKey(Department, on_delete=models.PROTECT, related_name='internships')
    establishment = models.ForeignKey(Establishment, on_delete=models.PROTECT, related_name='internships')
    chief = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='supervised_internships'
    )
    created_by = models.ForeignKey(
        User, null=True, on_delete=models.SET_NULL, related_name='created_internships'
    )
    total_places = models.PositiveIntegerField()
    filled_places = models.PositiveIntegerField(default=0)
    duration = models.CharField(max_length=64, blank=True)
    start_date = models.DateField()
    end_date = models.DateField()
    requirements = models.JSONField(default=list, blank=True)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_ACTIVE, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.CheckConstraint(condition=Q(total_places__gt=0), name='internship_total_places_positive'),
            models.CheckConstraint(
                condition=Q(filled_places__lte=F('total_places')), name='internship_filled_within_total'
            ),
            models.CheckConstraint(condition=Q(start_date__lt=F('end_date')), name='internship_dates_ordered'),
        ]
        indexes = [
            models.Index(fields=['status', 'start_date'], name='internship_status_start_idx'),
            models.Index(fields=['department', 'status'], name='internship_dept_status_idx'),
        ]

    def __str__(self) -> str:
        return f"{self.title} [{self.status}] {self.filled_places}/{self.total_places}"

    @property
    def has_free_place(self) -> bool:
        return self.filled_places < self.total_places


class Application(models.Model):
    STATUS_PENDING = 'pending'
    STATUS_ACCEPTED = 'accepted'
    STATUS_REJECTED = 'rejected'
    STATUS_CANCELLED = 'cancelled'
    STATUS_CHOICES = (
        (STATUS_PENDING, 'pending'),
        (STATUS_ACCEPTED, 'accepted'),
        (STATUS_REJECTED, 'rejected'),
        (STATUS_CANCELLED, 'cancelled'),
    )

    student = models.ForeignKey(User, on_delete=models.CASCADE, related_name='applications')
    internship = models.ForeignKey(Internship, on_delete=models.PROTECT, related_name='applications')
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    applied_date = models.DateTimeField(auto_now_add=True)
    response_date = models.DateTimeField(null=True, blank=True)
    rejection_reason = models.TextField(blank=True)
    motivation_letter = models.TextField(blank=True)
    reviewed_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='reviewed_applications'
    )

    class Meta:
        constraints = [
            # a cancelled application frees the pair for a new one
            models.UniqueConstraint(
                fields=['student', 'internship'],
                condition=~Q(status='cancelled'),
                name='application_one_live_per_student',
            ),
        ]
        indexes = [
            models.Index(fields=['internship', 'status'], name='application_intern_status_idx'),
            models.Index(fields=['student', 'applied_date'], name='application_student_date_idx'),
        ]

    def __str__(self) -> str:
        return f"application {self.id} s={self.student_id} i={self.internship_id} [{self.status}]"


class Evaluation(models.Model):
    STATUS_PENDING = 'pending'
    STATUS_IN_PROGRESS = 'in_progress'
    STATUS_SUBMITTED = 'submitted'
    STATUS_CHOICES = (
        (STATUS_PENDING, 'pending'),
        (STATUS_IN_PROGRESS, 'in_progress'),
        (STATUS_SUBMITTED, 'submitted'),
    )
    SCORE_VALIDATORS = [MinValueValidator(0), MaxValueValidator(100)]

    student = models.ForeignKey(User, on_delete=models.CASCADE, related_name='evaluations')
    internship = models.ForeignKey(Internship, on_delete=models.PROTECT, related_name='evaluations')
    doctor = models.ForeignKey(User, on_delete=models.CASCADE, related_name='given_evaluations')
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)

    attendance = models.PositiveSmallIntegerField(null=True, blank=True, validators=SCORE_VALIDATORS)
    practical_skills = models.PositiveSmallIntegerField(null=True, blank=True, validators=SCORE_VALIDATORS)
    professional_behavior = models.PositiveSmallIntegerField(null=True, blank=True, validators=SCORE_VALIDATORS)
    score = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    comments = models.TextField(blank=True)

    start_date = models.DateTimeField(auto_now_add=True)
    due_date = models.DateTimeField(null=True, blank=True)
    submission_date = models.DateTimeField(null=True, blank=True)
    reminded_at = models.DateTimeField(null=True, blank=True)

    # chief validation is an annotation on a submitted evaluation, not a state
    validated_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='validated_evaluations'
    )
    validated_at = models.DateTimeField(null=True, blank=True)
    chief_comments = models.TextField(blank=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['student', 'internship', 'doctor'], name='evaluation_one_per_triple'
            ),
        ]
        indexes = [
            models.Index(fields=['doctor', 'status'], name='evaluation_doctor_status_idx'),
            models.Index(fields=['status', 'due_date'], name='evaluation_status_due_idx'),
        ]

    def __str__(self) -> str:
        return f"evaluation {self.id} s={self.student_id} d={self.doctor_id} [{self.status}]"


class Notification(models.Model):
    """One durable notification for one user.

    ``related_entity_type``/``related_entity_id`` name the record that
    triggered it.  They are advisory only: the record may be gone.
    """
    TYPE_INFO = 'info'
    TYPE_SUCCESS = 'success'
    TYPE_WARNING = 'warning'
    TYPE_ERROR = 'error'
    TYPE_CHOICES = (
        (TYPE_INFO, 'info'),
        (TYPE_SUCCESS, 'success'),
        (TYPE_WARNING, 'warning'),
        (TYPE_ERROR, 'error'),
    )

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='notifications')
    type = models.CharField(max_length=16, choices=TYPE_CHOICES, default=TYPE_INFO)
    title = models.CharField(max_length=255, blank=True)
    message = models.TextField()
    related_entity_type = models.CharField(max_length=64, blank=True, null=True)
    related_entity_id = models.CharField(max_length=64, blank=True, null=True)
    is_read = models.BooleanField(default=False)
    read_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['user', 'is_read'], name='notification_user_read_idx'),
            models.Index(fields=['user', 'created_at'], name='notification_user_created_idx'),
        ]

    def __str__(self) -> str:
        return f"notification {self.id} u={self.user_id} [{self.type}] {self.title}"


class AuditEvent(models.Model):
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=64)
    object_type = models.CharField(max_length=64, blank=True, null=True)
    object_id = models.IntegerField(blank=True, null=True)
    detail = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['action', 'created_at'], name='audit_action_created_idx'),
            models.Index(fields=['object_type', 'object_id', 'created_at'], name='audit_object_created_idx'),
        ]

    def __str__(self):
        return f"{self.action}:{self.object_type}#{self.object_id}"
