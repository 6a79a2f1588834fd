"""
Notification ledger: durable storage and read-state of notifications.

Only the dispatcher creates rows; every other operation is scoped to the
owning user, and a notification owned by someone else is reported as
absent.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Optional

import bleach
from django.conf import settings
from django.db import DatabaseError, transaction
from django.utils import timezone

from placement.exceptions import NotFound, PersistenceError
from placement.models import Notification

if TYPE_CHECKING:
    from placement.services.dispatch import NotificationPayload


def _clean(text: Optional[str]) -> str:
    return bleach.clean((text or '').strip(), strip=True)


def create(user_id: int, payload: 'NotificationPayload') -> Notification:
    try:
        with transaction.atomic():
            return Notification.objects.create(
                user_id=user_id,
                type=payload.type,
                title=_clean(payload.title)[:255],
                message=_clean(payload.message),
                related_entity_type=payload.related_entity_type,
                related_entity_id=(
                    str(payload.related_entity_id) if payload.related_entity_id is not None else None
                ),
            )
    except DatabaseError as exc:
        raise PersistenceError(f'notification for user {user_id} not stored: {exc}') from exc


def list_for_user(user_id: int, limit: Optional[int] = None, offset: int = 0) -> tuple[list[Notification], int]:
    limit = limit or settings.PLACEMENT_NOTIFICATION_PAGE_SIZE
    limit = min(settings.PLACEMENT_NOTIFICATION_MAX_PAGE_SIZE, max(1, int(limit)))
    offset = max(0, int(offset or 0))
    qs = Notification.objects.filter(user_id=user_id)
    total = qs.count()
    items = list(qs.order_by('-created_at', '-id')[offset:offset + limit])
    return items, total


def _owned(user_id: int, notification_id: int) -> Notification:
    notification = Notification.objects.filter(id=notification_id, user_id=user_id).first()
    if notification is None:
        raise NotFound('notification not found', notificationId=notification_id)
    return notification


def mark_read(user_id: int, notification_id: int) -> Notification:
    notification = _owned(user_id, notification_id)
    if notification.is_read:
        return notification
    notification.is_read = True
    notification.read_at = timezone.now()
    notification.save(update_fields=['is_read', 'read_at'])
    return notification


def mark_all_read(user_id: int) -> int:
    return Notification.objects.filter(user_id=user_id, is_read=False).update(
        is_read=True, read_at=timezone.now()
    )


def delete(user_id: int, notification_id: int) -> None:
    deleted, _ = Notification.objects.filter(id=notification_id, user_id=user_id).delete()
    if not deleted:
        raise NotFound('notification not found', notificationId=notification_id)


def unread_count(user_id: int) -> int:
    return Notification.objects.filter(user_id=user_id, is_read=False).count()


def serialize(notification: Notification) -> dict:
    return {
        'id': notification.id,
        'type': notification.type,
        'title': notification.title,
        'message': notification.message,
        'relatedEntityType': notification.related_entity_type,
        'relatedEntityId': notification.related_entity_id,
        'isRead': notification.is_read,
        'readAt': notification.read_at.isoformat() if notification.read_at else None,
        'createdAt': notification.created_at.isoformat() if notification.created_at else None,
    }
