import json
from urllib.parse import parse_qs

from asgiref.sync import sync_to_async
from channels.generic.websocket import AsyncWebsocketConsumer
from django.contrib.auth.models import AnonymousUser

from placement.exceptions import NotFound
from placement.realtime.push import role_group, user_group
from placement.services import ledger


async def _ws_error(ws, code: int, message: str, *, close: bool = False):
    """
    Uniform error frame.
    Application codes: 4xxx for client errors, 5xxx for server errors.
    """
    payload = {"type": "error", "code": code, "message": message}
    try:
        await ws.send(json.dumps(payload))
    finally:
        if close:
            await ws.close(code=code)


def _user_for_token(key: str):
    from rest_framework.authtoken.models import Token

    token = Token.objects.select_related("user").filter(key=key).first()
    if token is None or not token.user.is_active:
        return None
    return token.user


class NotificationConsumer(AsyncWebsocketConsumer):
    """Live notification feed for one user.

    Joins ``user-<id>`` and ``role-<role>``; pushes arrive as
    ``notification.push`` events.  Clients authenticate with the session
    or with ``?token=<api token>``.
    """

    async def connect(self):
        user = self.scope.get("user") or AnonymousUser()
        if not user.is_authenticated:
            key = parse_qs(self.scope.get("query_string", b"").decode()).get("token", [None])[0]
            user = await sync_to_async(_user_for_token)(key) if key else None
        if user is None or not getattr(user, "role", None):
            await self.close(code=4003)
            return

        self.user = user
        self.groups_joined = [user_group(user.id), role_group(user.role)]
        for group in self.groups_joined:
            await self.channel_layer.group_add(group, self.channel_name)
        await self.accept()
        unread = await sync_to_async(ledger.unread_count)(user.id)
        await self.send(json.dumps({"type": "welcome", "unread": unread}))

    async def disconnect(self, close_code):
        for group in getattr(self, "groups_joined", ()):
            await self.channel_layer.group_discard(group, self.channel_name)

    async def receive(self, text_data=None, bytes_data=None):
        if not text_data:
            return

        try:
            data = json.loads(text_data)
        except ValueError:
            await _ws_error(self, 4000, "invalid_json")
            return

        if not isinstance(data, dict):
            await _ws_error(self, 4001, "invalid_payload")
            return

        kind = data.get("type")
        if kind == "mark_read":
            notification_id = data.get("id")
            if not isinstance(notification_id, int) or isinstance(notification_id, bool):
                await _ws_error(self, 4003, "invalid_id")
                return
            try:
                await sync_to_async(ledger.mark_read)(self.user.id, notification_id)
            except NotFound:
                await _ws_error(self, 4004, "notification_not_found")
                return
            await self.send(json.dumps({"type": "ack", "ok": True, "id": notification_id}))
        elif kind == "mark_all_read":
            updated = await sync_to_async(ledger.mark_all_read)(self.user.id)
            await self.send(json.dumps({"type": "ack", "ok": True, "updated": updated}))
        else:
            await _ws_error(self, 4002, "unsupported_type")

    async def notification_push(self, event):
        """
        Forward a group_send event to the client.
            {"type": "notification.push", "payload": {...}}
        """
        payload = event.get("payload", {})
        await self.send(json.dumps({"type": "notification", **payload}))
