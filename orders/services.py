# orders/services.py
"""
Order placement. The order row and its lines are committed first; the spin
entitlement, point redemption and staff notification follow it and never
undo a paid order.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional
import logging

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import transaction

from loyaltypoints.exceptions import LedgerWriteFailure
from loyaltypoints.services import Redemption, redeem_points
from .models import Order, OrderItem
from .tasks import notify_order_placed_task

logger = logging.getLogger(__name__)

REDEMPTION_FAILED_NOTICE = (
    "Your order is paid, but we could not apply your points right now. "
    "Your points balance has not been changed."
)


@dataclass
class PlacedOrder:
    order: Order
    redemption: Optional[Redemption] = None
    notice: Optional[str] = None


def final_amount(subtotal, delivery_fee, discount=Decimal('0.00')):
    return max(subtotal + delivery_fee - discount, Decimal('0.00'))


def create_order(lines, delivery, payment_method, user=None, delivery_fee=None):
    """Creates a paid order with its line items, prices copied from the menu."""
    if not lines:
        raise ValidationError({'cart': "Your cart is empty."})
    if delivery_fee is None:
        delivery_fee = settings.DELIVERY_FEE

    subtotal = sum((line.line_total for line in lines), Decimal('0.00'))
    with transaction.atomic():
        order = Order.objects.create(
            user=user,
            status='paid',
            payment_method=payment_method,
            subtotal=subtotal,
            delivery_fee=delivery_fee,
            total_amount=final_amount(subtotal, delivery_fee),
            full_name=delivery.full_name,
            street_address=delivery.street_address,
            city=delivery.city,
            postal_code=delivery.postal_code,
            phone=delivery.phone,
            notes=delivery.notes,
        )
        OrderItem.objects.bulk_create([
            OrderItem(
                order=order,
                menu_item=line.menu_item,
                name=line.menu_item.name,
                unit_price=line.menu_item.price,
                quantity=line.quantity,
            )
            for line in lines
        ])
    return order


def grant_pending_spin(order_id) -> bool:
    """Only orders owned by an account can carry a spin."""
    return Order.objects.filter(pk=order_id, user__isnull=False).update(pending_spin=True) == 1


def consume_pending_spin(order_id) -> bool:
    return Order.objects.consume_pending_spin(order_id)


def _apply_redemption(order, user, points_to_redeem):
    with transaction.atomic():
        redemption = redeem_points(user, points_to_redeem, order=order)
        if redemption.points:
            order.discount = redemption.discount
            order.points_redeemed = redemption.points
            order.total_amount = final_amount(order.subtotal, order.delivery_fee, redemption.discount)
            order.save(update_fields=['discount', 'points_redeemed', 'total_amount', 'updated_at'])
    return redemption


def _enqueue_order_notification(order_id):
    try:
        notify_order_placed_task.delay(order_id)
    except Exception:
        logger.exception("Could not enqueue notification for order %s", order_id)


def place_order(lines, delivery, receipt, user=None, points_to_redeem=0) -> PlacedOrder:
    """
    Records a captured payment as an order. ``user`` is None for guests, who
    get neither a spin nor a redemption.
    """
    with transaction.atomic():
        order = create_order(lines, delivery, receipt.method, user=user)
        if user is not None and grant_pending_spin(order.pk):
            order.pending_spin = True

    logger.info("Order %s placed (%s, %s)", order.pk, receipt.method, order.total_amount)
    placed = PlacedOrder(order=order)

    if user is not None and points_to_redeem:
        try:
            placed.redemption = _apply_redemption(order, user, points_to_redeem)
        except LedgerWriteFailure:
            logger.warning("Redemption failed for order %s, keeping it without discount", order.pk)
            order.refresh_from_db()
            placed.notice = REDEMPTION_FAILED_NOTICE

    transaction.on_commit(lambda: _enqueue_order_notification(order.pk))
    return placed
