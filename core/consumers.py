from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer

# Close code sent to sockets that arrive without a valid access token
UNAUTHENTICATED = 4401


def user_group(user_id):
    return f"user_{user_id}"


class NotificationConsumer(AsyncJsonWebsocketConsumer):
    """
    Live feed for a signed-in customer or admin.

    Server to client:
        ``connection_established`` with the current ``unread_count``;
        ``notification`` for each new order, spin or points notification;
        ``counter`` whenever the unread count changes.

    Client to server:
        ``{"type": "mark_read", "id": <notification id>}``
        ``{"type": "mark_all_read"}``
    """

    async def connect(self):
        self.user = self.scope.get('user')
        if not self.user or not self.user.is_authenticated:
            await self.close(code=UNAUTHENTICATED)
            return

        self.group_name = user_group(self.user.id)
        await self.channel_layer.group_add(self.group_name, self.channel_name)
        await self.accept()
        await self.send_json({
            'type': 'connection_established',
            'unread_count': await self._unread_count(),
        })

    async def disconnect(self, close_code):
        if hasattr(self, 'group_name'):
            await self.channel_layer.group_discard(self.group_name, self.channel_name)

    async def receive_json(self, content, **kwargs):
        command = content.get('type')
        if command == 'mark_read' and content.get('id'):
            # The post_save signal pushes the new counter
            if not await self._mark_read(content['id']):
                await self.send_json({'type': 'error', 'message': "Notification not found."})
        elif command == 'mark_all_read':
            await self._mark_all_read()
            await self.channel_layer.group_send(
                self.group_name, {'type': 'notification.counter', 'unread_count': 0}
            )
        else:
            await self.send_json({'type': 'error', 'message': f"Unknown command '{command}'."})

    async def notification_message(self, event):
        await self.send_json({'type': 'notification', 'notification': event['notification']})

    async def notification_counter(self, event):
        await self.send_json({'type': 'counter', 'unread_count': event['unread_count']})

    @database_sync_to_async
    def _unread_count(self):
        return self.user.notifications.filter(is_read=False).count()

    @database_sync_to_async
    def _mark_read(self, notification_id):
        notification = self.user.notifications.filter(pk=notification_id).first()
        if notification is None:
            return False
        if not notification.is_read:
            notification.is_read = True
            notification.save(update_fields=['is_read'])
        return True

    @database_sync_to_async
    def _mark_all_read(self):
        return self.user.notifications.filter(is_read=False).update(is_read=True)
