"""
Notification dispatcher.

``notify(audience, payload)`` resolves the audience to user ids, writes
one ledger row per recipient and then pushes the payload once through
the injected push channel.  Ledger rows are written independently: a
failing recipient is logged and skipped, earlier rows stay.  Push errors
are logged and swallowed, they never fail the triggering operation.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from django.contrib.auth import get_user_model
from django.utils import timezone
from prometheus_client import Counter

from placement.exceptions import PersistenceError
from placement.models import Application, Evaluation, Internship, Notification, Role
from placement.realtime.push import PushChannel
from placement.services import ledger

logger = logging.getLogger(__name__)

User = get_user_model()

NOTIFICATIONS_PERSISTED = Counter(
    'placement_notifications_persisted_total',
    'Notification ledger rows written by the dispatcher.',
)
NOTIFICATION_FAILURES = Counter(
    'placement_notification_failures_total',
    'Notification fan-out failures by stage.',
    ['stage'],
)


@dataclass(frozen=True)
class Audience:
    """Either a single user or every active holder of a role."""
    user_id: Optional[int] = None
    role: Optional[Role] = None

    def __post_init__(self):
        if (self.user_id is None) == (self.role is None):
            raise ValueError('audience needs exactly one of user_id or role')

    @classmethod
    def user(cls, user_id: int) -> 'Audience':
        return cls(user_id=user_id)

    @classmethod
    def of_role(cls, role: Role) -> 'Audience':
        return cls(role=Role(role))

    def __str__(self) -> str:
        return f"user-{self.user_id}" if self.user_id is not None else f"role-{self.role}"


@dataclass(frozen=True)
class NotificationPayload:
    type: str
    title: str
    message: str
    related_entity_type: Optional[str] = None
    related_entity_id: Optional[int] = None

    def as_push(self) -> dict:
        return {
            'type': self.type,
            'title': self.title,
            'message': self.message,
            'relatedEntityType': self.related_entity_type,
            'relatedEntityId': self.related_entity_id,
            'timestamp': timezone.now().isoformat(),
        }


@dataclass
class DispatchReport:
    audience: Audience
    persisted: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)
    pushed: bool = False


class NotificationDispatcher:
    def __init__(self, push_channel: PushChannel):
        self.push_channel = push_channel

    def resolve(self, audience: Audience) -> list[int]:
        if audience.user_id is not None:
            return [audience.user_id]
        return list(
            User.objects.filter(role=audience.role, is_active=True).order_by('id').values_list('id', flat=True)
        )

    def notify(self, audience: Audience, payload: NotificationPayload) -> DispatchReport:
        report = DispatchReport(audience=audience)
        for user_id in self.resolve(audience):
            try:
                notification = ledger.create(user_id, payload)
            except PersistenceError:
                NOTIFICATION_FAILURES.labels(stage='ledger').inc()
                logger.exception("ledger write failed for user %s (%s)", user_id, payload.title)
                report.failed.append(user_id)
                continue
            NOTIFICATIONS_PERSISTED.inc()
            report.persisted.append(notification.id)
        report.pushed = self._push(audience, payload)
        if report.failed:
            logger.warning(
                "partial fan-out to %s: %d stored, %d failed",
                audience, len(report.persisted), len(report.failed),
            )
        return report

    def _push(self, audience: Audience, payload: NotificationPayload) -> bool:
        try:
            if audience.user_id is not None:
                self.push_channel.push_to_user(audience.user_id, payload.as_push())
            else:
                self.push_channel.push_to_role(audience.role, payload.as_push())
        except Exception:
            NOTIFICATION_FAILURES.labels(stage='push').inc()
            logger.warning("push to %s failed (%s)", audience, payload.title, exc_info=True)
            return False
        return True

    # ------------------------------------------------------------------
    # Lifecycle events
    # ------------------------------------------------------------------
    def internship_created(self, internship: Internship) -> DispatchReport:
        return self.notify(Audience.of_role(Role.STUDENT), NotificationPayload(
            type=Notification.TYPE_INFO,
            title='Nouveau stage disponible',
            message=f'Un nouveau stage "{internship.title}" a été créé et est maintenant disponible.',
            related_entity_type='Internship',
            related_entity_id=internship.id,
        ))

    def internship_status_changed(self, internship: Internship) -> Optional[DispatchReport]:
        messages = {
            Internship.STATUS_FULL: f'Le stage "{internship.title}" est complet.',
            Internship.STATUS_CLOSED: f'Le stage "{internship.title}" est clôturé.',
        }
        if internship.status not in messages:
            return None
        return self.notify(Audience.of_role(Role.STUDENT), NotificationPayload(
            type=Notification.TYPE_WARNING,
            title='Mise à jour de stage',
            message=messages[internship.status],
            related_entity_type='Internship',
            related_entity_id=internship.id,
        ))

    def application_submitted(self, application: Application) -> list[DispatchReport]:
        internship = application.internship
        student = application.student
        if internship.chief_id:
            reviewers = Audience.user(internship.chief_id)
        else:
            reviewers = Audience.of_role(Role.SERVICE_CHIEF)
        name = student.get_full_name() or student.username
        return [
            self.notify(reviewers, NotificationPayload(
                type=Notification.TYPE_INFO,
                title='Nouvelle candidature',
                message=f'L\'étudiant {name} a postulé au stage "{internship.title}".',
                related_entity_type='Application',
                related_entity_id=application.id,
            )),
            self.notify(Audience.user(student.id), NotificationPayload(
                type=Notification.TYPE_SUCCESS,
                title='Candidature soumise',
                message=f'Votre candidature au stage "{internship.title}" a été soumise avec succès.',
                related_entity_type='Application',
                related_entity_id=application.id,
            )),
        ]

    def application_decided(self, application: Application) -> DispatchReport:
        title = application.internship.title
        if application.status == Application.STATUS_ACCEPTED:
            kind = Notification.TYPE_SUCCESS
            message = f'Votre candidature au stage "{title}" a été acceptée !'
        else:
            kind = Notification.TYPE_ERROR
            message = f'Votre candidature au stage "{title}" a été refusée.'
            if application.rejection_reason:
                message += f' Motif : {application.rejection_reason}'
        return self.notify(Audience.user(application.student_id), NotificationPayload(
            type=kind,
            title='Mise à jour de candidature',
            message=message,
            related_entity_type='Application',
            related_entity_id=application.id,
        ))

    def evaluation_opened(self, evaluation: Evaluation) -> DispatchReport:
        return self.notify(Audience.user(evaluation.student_id), NotificationPayload(
            type=Notification.TYPE_INFO,
            title='Évaluation ouverte',
            message=f'Votre évaluation pour le stage "{evaluation.internship.title}" a été ouverte.',
            related_entity_type='Evaluation',
            related_entity_id=evaluation.id,
        ))

    def evaluation_submitted(self, evaluation: Evaluation) -> DispatchReport:
        return self.notify(Audience.user(evaluation.student_id), NotificationPayload(
            type=Notification.TYPE_SUCCESS,
            title='Évaluation soumise',
            message=(
                f'Votre évaluation pour le stage "{evaluation.internship.title}" '
                f'a été soumise (note : {evaluation.score}).'
            ),
            related_entity_type='Evaluation',
            related_entity_id=evaluation.id,
        ))

    def evaluation_validated(self, evaluation: Evaluation) -> list[DispatchReport]:
        payload = NotificationPayload(
            type=Notification.TYPE_SUCCESS,
            title='Évaluation validée',
            message=f'L\'évaluation du stage "{evaluation.internship.title}" a été validée par le chef de service.',
            related_entity_type='Evaluation',
            related_entity_id=evaluation.id,
        )
        return [
            self.notify(Audience.user(evaluation.doctor_id), payload),
            self.notify(Audience.user(evaluation.student_id), payload),
        ]

    def evaluation_reminder(self, evaluation: Evaluation) -> DispatchReport:
        return self.notify(Audience.user(evaluation.doctor_id), NotificationPayload(
            type=Notification.TYPE_WARNING,
            title='Rappel d\'évaluation',
            message=(
                f'L\'évaluation de {evaluation.student.get_full_name() or evaluation.student.username} '
                f'pour le stage "{evaluation.internship.title}" attend votre soumission.'
            ),
            related_entity_type='Evaluation',
            related_entity_id=evaluation.id,
        ))
