from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db.models.signals import post_save, post_delete
from django.dispatch import receiver

from .consumers import user_group
from .models import Notification


def push_unread_counter(user_id):
    """Sends the recipient's unread count to every open socket of theirs."""
    count = Notification.objects.filter(recipient_id=user_id, is_read=False).count()
    async_to_sync(get_channel_layer().group_send)(
        user_group(user_id),
        {"type": "notification.counter", "unread_count": count}
    )


@receiver([post_save, post_delete], sender=Notification)
def notification_changed(sender, instance, **kwargs):
    push_unread_counter(instance.recipient_id)
