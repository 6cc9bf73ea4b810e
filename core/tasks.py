from django_rq import job
from rq import Retry
from channels.layers import get_channel_layer
from asgiref.sync import async_to_sync
from django.conf import settings
from telegram import Bot
from telegram.request import HTTPXRequest
from .consumers import user_group
from .models import Notification
import logging
import asyncio

logger = logging.getLogger(__name__)


# ------------------------- Telegram -------------------------------------------

async def _async_send_telegram_message(chat_id, text, parse_mode=None):
    """Sends a message to a Telegram chat. Errors propagate to the caller."""
    timeout = settings.NOTIFIER_TIMEOUT
    request = HTTPXRequest(
        read_timeout=timeout,
        write_timeout=timeout,
        connect_timeout=timeout,
        pool_timeout=timeout
    )
    bot = Bot(token=settings.TELEGRAM_BOT_TOKEN, request=request)
    await bot.send_message(chat_id=chat_id, text=text, parse_mode=parse_mode)
    logger.info("Sent message to chat_id: %s", chat_id)


def send_telegram_message(chat_id, text, parse_mode=None):
    """
    Synchronous wrapper for RQ workers. Returns False when Telegram is not
    configured so callers can skip the channel without treating it as a failure.
    """
    if not (settings.TELEGRAM_BOT_TOKEN and chat_id):
        logger.info("Telegram not configured, skipping message")
        return False
    asyncio.run(_async_send_telegram_message(chat_id, text, parse_mode))
    return True


# ------------------------- Core Notification Task -----------------------------

def create_notification(recipient_id, notification_type, title, message, data=None):
    """Creates the in-app notification and pushes it to the recipient's websocket group."""
    notification = Notification.objects.create(
        recipient_id=recipient_id,
        notification_type=notification_type,
        title=title,
        message=message,
        data=data or {}
    )

    channel_layer = get_channel_layer()
    async_to_sync(channel_layer.group_send)(
        user_group(recipient_id),
        {
            "type": "notification.message",
            "notification": {
                "id": notification.id,
                "type": notification.notification_type,
                "title": notification.title,
                "message": notification.message,
                "data": notification.data,
                "created_at": notification.created_at.isoformat(),
            }
        }
    )
    return notification


@job('default',
    timeout=360,
    retry=Retry(max=3, interval=[60, 120, 240]))  # Backoff retry logic
def send_notification_task(recipient_id, notification_type, title, message, data=None):
    """
    Base task: Creates notification and pushes via WebSocket.
    Usage: Always call with .delay() unless in tests/CLI.
    """
    create_notification(recipient_id, notification_type, title, message, data)
    return f"Notification sent to user {recipient_id}"


def dispatch_notification(recipient_id, notification_type, title, message, data=None):
    """
    Fire-and-forget enqueue. Notifications are never allowed to fail the
    operation that triggered them, so enqueue errors are logged and dropped.
    """
    try:
        send_notification_task.delay(
            recipient_id=recipient_id,
            notification_type=notification_type,
            title=title,
            message=message,
            data=data,
        )
    except Exception:
        logger.exception(
            "Could not enqueue %s notification for user %s", notification_type, recipient_id
        )
