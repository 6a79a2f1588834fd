"""
Realtime push channels.

A push channel delivers a notification payload to a user or to every
connected holder of a role.  Delivery is best effort: nothing here is
persisted and callers must not depend on a push having arrived.  The
notification ledger is the durable record.

Two implementations are provided:

* :class:`LocalPushChannel` keeps subscriber callbacks in process memory
  and suits single-process deployments and tests.
* :class:`ChannelLayerPushChannel` publishes through the Channels layer
  to the ``user-<id>`` / ``role-<role>`` groups joined by
  :class:`placement.realtime.consumers.NotificationConsumer`.  With the
  Redis layer this reaches consumers in every process.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from collections import defaultdict
from typing import Any, Callable, Optional

from asgiref.sync import async_to_sync
from django.conf import settings
from django.utils.module_loading import import_string

logger = logging.getLogger(__name__)

Subscriber = Callable[[dict], Any]


def user_group(user_id) -> str:
    return f"user-{user_id}"


def role_group(role) -> str:
    return f"role-{role}"


class PushChannel:
    """Interface consumed by the notification dispatcher."""

    def push_to_user(self, user_id, payload: dict) -> None:
        raise NotImplementedError

    def push_to_role(self, role, payload: dict) -> None:
        raise NotImplementedError


class LocalPushChannel(PushChannel):
    """In-process registry of push subscribers keyed by group name."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[Subscriber]] = defaultdict(list)

    def subscribe_user(self, user_id, callback: Subscriber) -> None:
        self._subscribe(user_group(user_id), callback)

    def subscribe_role(self, role, callback: Subscriber) -> None:
        self._subscribe(role_group(role), callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        with self._lock:
            for callbacks in self._subscribers.values():
                if callback in callbacks:
                    callbacks.remove(callback)

    def push_to_user(self, user_id, payload: dict) -> None:
        self._publish(user_group(user_id), payload)

    def push_to_role(self, role, payload: dict) -> None:
        self._publish(role_group(role), payload)

    def _subscribe(self, group: str, callback: Subscriber) -> None:
        with self._lock:
            self._subscribers[group].append(callback)

    def _publish(self, group: str, payload: dict) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(group, ()))
        for callback in callbacks:
            callback({'group': group, **payload})


class ChannelLayerPushChannel(PushChannel):
    """Publish pushes to Channels groups with a per-call timeout."""

    EVENT_TYPE = 'notification.push'

    def __init__(self, channel_layer=None, timeout: Optional[float] = None):
        if channel_layer is None:
            from channels.layers import get_channel_layer

            channel_layer = get_channel_layer()
        self.channel_layer = channel_layer
        self.timeout = settings.PLACEMENT_PUSH_TIMEOUT if timeout is None else timeout

    def push_to_user(self, user_id, payload: dict) -> None:
        self._send(user_group(user_id), payload)

    def push_to_role(self, role, payload: dict) -> None:
        self._send(role_group(role), payload)

    def _send(self, group: str, payload: dict) -> None:
        if self.channel_layer is None:
            logger.warning("no channel layer configured, dropping push to %s", group)
            return
        message = {'type': self.EVENT_TYPE, 'payload': payload}

        async def send():
            await asyncio.wait_for(self.channel_layer.group_send(group, message), timeout=self.timeout)

        async_to_sync(send)()


def build_push_channel() -> PushChannel:
    """Instantiate the push channel named by ``PLACEMENT_PUSH_CHANNEL``."""
    return import_string(settings.PLACEMENT_PUSH_CHANNEL)()
