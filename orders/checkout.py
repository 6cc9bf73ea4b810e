# orders/checkout.py
"""
Checkout as an explicit state machine.

The state lives in the Django session. ``transition`` is the only way to move
it; it returns a new ``CheckoutSession`` and raises on failure, so a caller
that only persists successful results never leaves a half-applied step.
"""
from dataclasses import dataclass, field, asdict, replace
from enum import Enum
from typing import Optional
import logging

from django.conf import settings
from django.core.exceptions import ValidationError
from rest_framework.exceptions import NotAuthenticated

from loyaltypoints.models import LoyaltyPoint
from loyaltypoints.services import has_spun_today, points_value, quote_redemption
from .exceptions import InvalidTransition
from .models import Order
from .services import final_amount, place_order

logger = logging.getLogger(__name__)

CHECKOUT_SESSION_KEY = 'checkout'
SIGNUP_PROMPT = "Create an account to collect loyalty points and spin the wheel on your next order!"


class State(str, Enum):
    CART = 'cart'
    AWAITING_DELIVERY_INFO = 'awaiting_delivery_info'
    AWAITING_PAYMENT = 'awaiting_payment'
    PAID = 'paid'
    SPIN_OFFERED = 'spin_offered'
    DONE = 'done'


@dataclass(frozen=True)
class DeliveryInfo:
    full_name: str
    street_address: str
    city: str
    postal_code: str
    phone: str
    notes: str = ''

    REQUIRED = ('full_name', 'street_address', 'city', 'postal_code', 'phone')

    @classmethod
    def from_data(cls, data):
        values = {name: str(data.get(name) or '').strip() for name in cls.REQUIRED + ('notes',)}

        errors = {}
        for name in cls.REQUIRED:
            if not values[name]:
                errors[name] = "This field is required."
        if values['phone'] and len(values['phone']) < 6:
            errors['phone'] = "Please enter a valid phone number."
        if errors:
            raise ValidationError(errors)
        return cls(**values)


@dataclass(frozen=True)
class CheckoutSession:
    state: State = State.CART
    delivery: Optional[DeliveryInfo] = None
    points_to_redeem: int = 0
    order_id: Optional[int] = None
    notice: Optional[str] = None

    def to_dict(self):
        data = asdict(self)
        data['state'] = self.state.value
        return data

    @classmethod
    def from_dict(cls, data):
        if not data:
            return cls()
        delivery = data.get('delivery')
        return cls(
            state=State(data.get('state', State.CART.value)),
            delivery=DeliveryInfo(**delivery) if delivery else None,
            points_to_redeem=data.get('points_to_redeem', 0),
            order_id=data.get('order_id'),
            notice=data.get('notice'),
        )


# ------------------------- Events --------------------------------------------

@dataclass(frozen=True)
class BeginCheckout:
    pass


@dataclass(frozen=True)
class SubmitDelivery:
    data: dict = field(default_factory=dict)


@dataclass(frozen=True)
class SelectPoints:
    points: int


@dataclass(frozen=True)
class PaymentCaptured:
    receipt: object


@dataclass(frozen=True)
class Acknowledge:
    pass


@dataclass(frozen=True)
class SpinRecorded:
    pass


@dataclass(frozen=True)
class GoBack:
    pass


@dataclass(frozen=True)
class StartOver:
    pass


# ------------------------- Helpers -------------------------------------------

def _is_authenticated(user):
    return user is not None and user.is_authenticated


def load(django_session):
    return CheckoutSession.from_dict(django_session.get(CHECKOUT_SESSION_KEY))


def save(django_session, checkout):
    django_session[CHECKOUT_SESSION_KEY] = checkout.to_dict()
    django_session.modified = True


def quote(checkout, cart, user=None):
    """Amounts shown before payment. The redemption here is a preview only."""
    lines = cart.lines()
    subtotal = cart.subtotal(lines)
    delivery_fee = settings.DELIVERY_FEE
    points = 0
    if _is_authenticated(user) and checkout.points_to_redeem:
        balance = LoyaltyPoint.objects.filter(user=user).values_list('points', flat=True).first() or 0
        points = quote_redemption(checkout.points_to_redeem, balance, subtotal + delivery_fee)
    discount = points_value(points)
    return {
        'subtotal': subtotal,
        'delivery_fee': delivery_fee,
        'points_to_redeem': points,
        'discount': discount,
        'total': final_amount(subtotal, delivery_fee, discount),
    }


# ------------------------- Transitions ---------------------------------------

def _begin(checkout, event, user, cart):
    if cart is None or cart.is_empty():
        raise ValidationError({'cart': "Your cart is empty."})
    return replace(checkout, state=State.AWAITING_DELIVERY_INFO, notice=None)


def _with_saved_address(data, user):
    """Blank delivery fields fall back to the buyer's default saved address."""
    address = user.addresses.filter(is_default=True).first()
    if address is None:
        return data
    saved = {
        'full_name': address.full_name,
        'street_address': address.street_address,
        'city': address.city,
        'postal_code': address.postal_code,
        'phone': address.phone or user.phone,
    }
    merged = dict(data)
    for name, value in saved.items():
        if not str(merged.get(name) or '').strip():
            merged[name] = value
    return merged


def _submit_delivery(checkout, event, user, cart):
    data = _with_saved_address(event.data, user) if _is_authenticated(user) else event.data
    delivery = DeliveryInfo.from_data(data)
    return replace(checkout, state=State.AWAITING_PAYMENT, delivery=delivery)


def _select_points(checkout, event, user, cart):
    if not _is_authenticated(user):
        raise NotAuthenticated("Sign in to redeem loyalty points.")
    if event.points < 0:
        raise ValidationError({'points': "Points cannot be negative."})
    # Advisory: redeem_points clamps again when the order is placed
    preview = replace(checkout, points_to_redeem=event.points)
    return replace(checkout, points_to_redeem=quote(preview, cart, user)['points_to_redeem'])


def _payment_captured(checkout, event, user, cart):
    lines = cart.lines() if cart is not None else []
    if not lines:
        raise ValidationError({'cart': "Your cart is empty."})

    buyer = user if _is_authenticated(user) else None
    placed = place_order(
        lines, checkout.delivery, event.receipt,
        user=buyer,
        points_to_redeem=checkout.points_to_redeem if buyer else 0,
    )
    cart.clear()
    return replace(
        checkout,
        state=State.PAID,
        order_id=placed.order.pk,
        points_to_redeem=0,
        notice=placed.notice,
    )


def _acknowledge(checkout, event, user, cart):
    if _is_authenticated(user):
        return replace(checkout, state=State.SPIN_OFFERED)
    return replace(checkout, state=State.DONE, notice=SIGNUP_PROMPT)


def _spin_recorded(checkout, event, user, cart):
    return replace(checkout, state=State.DONE)


def _back_to_cart(checkout, event, user, cart):
    return replace(checkout, state=State.CART)


def _back_to_delivery(checkout, event, user, cart):
    return replace(checkout, state=State.AWAITING_DELIVERY_INFO, points_to_redeem=0)


def _start_over(checkout, event, user, cart):
    return CheckoutSession()


TRANSITIONS = {
    (State.CART, BeginCheckout): _begin,
    (State.AWAITING_DELIVERY_INFO, SubmitDelivery): _submit_delivery,
    (State.AWAITING_DELIVERY_INFO, GoBack): _back_to_cart,
    (State.AWAITING_PAYMENT, SelectPoints): _select_points,
    (State.AWAITING_PAYMENT, PaymentCaptured): _payment_captured,
    (State.AWAITING_PAYMENT, GoBack): _back_to_delivery,
    (State.PAID, Acknowledge): _acknowledge,
    (State.SPIN_OFFERED, SpinRecorded): _spin_recorded,
    (State.SPIN_OFFERED, StartOver): _start_over,
    (State.DONE, StartOver): _start_over,
}


def transition(checkout, event, user=None, cart=None):
    handler = TRANSITIONS.get((checkout.state, type(event)))
    if handler is None:
        raise InvalidTransition(
            f"{type(event).__name__} is not allowed while checkout is in state '{checkout.state.value}'."
        )
    new_checkout = handler(checkout, event, user, cart)
    if new_checkout.state != checkout.state:
        logger.debug("Checkout %s -> %s", checkout.state.value, new_checkout.state.value)
    return new_checkout


def sync_spin(checkout, user=None):
    """
    Moves SPIN_OFFERED on to DONE once the order's spin has been used, or once
    any spin was recorded today, since no further spin can be offered then.
    """
    if checkout.state != State.SPIN_OFFERED or checkout.order_id is None:
        return checkout
    still_pending = Order.objects.filter(pk=checkout.order_id, pending_spin=True).exists()
    if still_pending and not (_is_authenticated(user) and has_spun_today(user)):
        return checkout
    return transition(checkout, SpinRecorded())
