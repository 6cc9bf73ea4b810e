# orders/tasks.py
from django_rq import job
from rq import Retry
from django.conf import settings
from django.contrib.auth import get_user_model
from django.utils import timezone
import logging

from core.tasks import send_telegram_message, create_notification
from .models import Order

logger = logging.getLogger(__name__)
User = get_user_model()


def format_order_message(order):
    """Plain-text staff alert for a new order."""
    items = '\n'.join(
        f"- {item.name} x{item.quantity} (${item.unit_price:.2f})"
        for item in order.items.all()
    )

    discount_text = ''
    if order.discount > 0:
        discount_text = (
            f"\n🎁 Discounts Applied:\n- Loyalty Points: ${order.discount:.2f} "
            f"({order.points_redeemed} points)"
        )

    address = f"{order.city}, {order.street_address}, {order.postal_code}"
    notes = f"\n📝 Notes: {order.notes}" if order.notes else ''
    placed_at = timezone.localtime(order.created_at).strftime('%Y-%m-%d %H:%M')

    return (
        f"📦 NEW ORDER RECEIVED!\n\n"
        f"🧾 Order #{order.pk}:\n{items}{discount_text}\n\n"
        f"🚚 Delivery fee: ${order.delivery_fee:.2f}\n"
        f"💰 Total: ${order.total_amount:.2f} ({order.get_payment_method_display()})\n"
        f"🏠 Delivery Address: {address}{notes}\n\n"
        f"📋 Status: {order.status}\n\n"
        f"Please confirm and prepare the order.\n\n"
        f"Contact customer: {order.full_name}, {order.phone}\n"
        f"Order placed on: {placed_at}"
    )


@job('default',
    timeout=120,
    retry=Retry(max=3, interval=[30, 60, 120]))
def notify_order_placed_task(order_id):
    """
    Tells staff about a new order (Telegram chat and in-app) and confirms it
    to the customer. Raises on Telegram errors so RQ can retry.
    """
    try:
        order = Order.objects.select_related('user').prefetch_related('items').get(pk=order_id)
    except Order.DoesNotExist:
        logger.warning("Order %s vanished before notification", order_id)
        return f"Order {order_id} not found."

    text = format_order_message(order)
    data = {'order_id': order.pk, 'total_amount': str(order.total_amount)}

    # Telegram first: a failed send is retried before any in-app record exists
    sent = send_telegram_message(settings.TELEGRAM_ORDERS_CHAT_ID, text)

    for staff_id in User.objects.filter(is_staff=True, is_active=True).values_list('id', flat=True):
        create_notification(
            recipient_id=staff_id,
            notification_type='order_placed',
            title=f"New order #{order.pk}",
            message=text,
            data=data,
        )

    if order.user_id:
        create_notification(
            recipient_id=order.user_id,
            notification_type='order_placed',
            title="Order confirmed",
            message=f"Your order #{order.pk} of ${order.total_amount:.2f} is being prepared.",
            data=data,
        )

    return f"Order {order_id} notified (telegram={'sent' if sent else 'skipped'})"
