# loyaltypoints/services.py
"""
Points ledger, spin eligibility and redemption rules.

Every balance change goes through ``apply_transaction`` (or ``_post`` for
callers already holding the account lock): the ledger row and the cached
``LoyaltyPoint.points`` are written in one database transaction, so the
cached value always equals the sum of the ledger.
"""
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR
from typing import Optional, Union
import logging

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import DatabaseError, transaction
from django.db.models import F, Sum
from django.db.models.functions import Coalesce
from django.utils import timezone

from core.tasks import dispatch_notification
from orders.models import Order
from .exceptions import IneligibleSpin, LedgerWriteFailure
from .models import LoyaltyPoint, LoyaltyPointLog
from .rewards import draw, label_for_points

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal('0.01')


@dataclass(frozen=True)
class Eligible:
    order_id: int


@dataclass(frozen=True)
class Denied:
    reason: str


@dataclass(frozen=True)
class SpinResult:
    recorded: bool
    points: int
    label: str
    balance: int
    order_id: Optional[int] = None


@dataclass(frozen=True)
class Redemption:
    points: int
    discount: Decimal
    balance: int


# ------------------------- Conversions ---------------------------------------

def points_value(points) -> Decimal:
    """Monetary value of a number of points."""
    return (Decimal(points) / Decimal(settings.POINTS_PER_CURRENCY_UNIT)).quantize(TWO_PLACES)


def quote_redemption(requested, balance, payable_total=None) -> int:
    """
    Points that would actually be applied for a request: never more than the
    balance, nor more than the order's payable total (subtotal + delivery fee)
    expressed in points.
    """
    candidates = [int(requested), int(balance)]
    if payable_total is not None:
        payable_points = (Decimal(payable_total) * settings.POINTS_PER_CURRENCY_UNIT).to_integral_value(
            rounding=ROUND_FLOOR
        )
        candidates.append(int(payable_points))
    return max(min(candidates), 0)


# ------------------------- Ledger --------------------------------------------

@contextmanager
def ledger_write():
    """Atomic block whose database errors surface as LedgerWriteFailure."""
    try:
        with transaction.atomic():
            yield
    except DatabaseError as exc:
        logger.exception("Ledger write failed")
        raise LedgerWriteFailure() from exc


def get_account(user):
    account, _ = LoyaltyPoint.objects.get_or_create(user=user)
    return account


def _locked_account(user):
    account = get_account(user)
    return LoyaltyPoint.objects.select_for_update().get(pk=account.pk)


def _post(account, amount, kind, description, order_id=None):
    """Appends a ledger row and moves the cached balance. Caller holds the lock."""
    LoyaltyPointLog.objects.create(
        loyalty_account=account,
        points=amount,
        kind=kind,
        description=description,
        order_id=order_id,
    )
    account.points = F('points') + amount
    account.save(update_fields=['points', 'updated_at'])
    account.refresh_from_db(fields=['points', 'updated_at'])
    logger.info(
        "Ledger: %s %+d points for user %s (balance %s)",
        kind, amount, account.user_id, account.points
    )
    return account.points


def apply_transaction(user, amount, kind, description, order=None) -> int:
    """Writes one ledger entry and returns the new balance."""
    if kind not in dict(LoyaltyPointLog.KIND_CHOICES):
        raise ValidationError({'kind': f"Unknown transaction kind '{kind}'."})

    with ledger_write():
        account = _locked_account(user)
        return _post(account, amount, kind, description, order_id=getattr(order, 'pk', None))


def earn_points(user, points, description):
    if points <= 0:
        raise ValidationError({'points': "Points to earn must be positive."})
    return apply_transaction(user, points, LoyaltyPointLog.KIND_EARNED, description)


def admin_adjust(user, signed_points, reason):
    """Manual correction by staff. Negative amounts are applied as given."""
    if signed_points == 0:
        raise ValidationError({'points': "Adjustment must not be zero."})

    balance = apply_transaction(user, signed_points, LoyaltyPointLog.KIND_ADMIN_ADJUSTMENT, reason)

    verb = "added to" if signed_points > 0 else "removed from"
    transaction.on_commit(lambda: dispatch_notification(
        recipient_id=user.pk,
        notification_type='points_adjusted',
        title="Your points balance was adjusted",
        message=f"{abs(signed_points)} points were {verb} your balance. Reason: {reason}",
        data={'points': signed_points, 'new_total': balance}
    ))
    return balance


def redeem_points(user, requested_points, order=None) -> Redemption:
    """
    Redeems up to ``requested_points`` as a discount. The request is clamped
    to the balance and, when an order is given, to its payable total.
    """
    if requested_points is None or int(requested_points) <= 0:
        raise ValidationError({'points': "Points to redeem must be positive."})

    with ledger_write():
        account = _locked_account(user)
        payable = None
        if order is not None:
            payable = order.subtotal + order.delivery_fee
        applied = quote_redemption(requested_points, account.points, payable)
        if applied == 0:
            return Redemption(points=0, discount=Decimal('0.00'), balance=account.points)

        if order is not None:
            description = f"Redeemed for order #{order.pk}"
        else:
            description = "Redeemed points"
        balance = _post(
            account, -applied, LoyaltyPointLog.KIND_REDEEMED, description,
            order_id=getattr(order, 'pk', None)
        )

    return Redemption(points=applied, discount=points_value(applied), balance=balance)


def get_balance(user) -> int:
    return LoyaltyPointLog.objects.filter(loyalty_account__user=user).aggregate(
        total=Coalesce(Sum('points'), 0)
    )['total']


def get_history(user):
    return LoyaltyPointLog.objects.filter(
        loyalty_account__user=user
    ).select_related('order').order_by('-created_at', '-id')


# ------------------------- Spin ----------------------------------------------

def has_spun_today(user) -> bool:
    return LoyaltyPointLog.objects.filter(
        loyalty_account__user=user,
        kind=LoyaltyPointLog.KIND_WHEEL_SPIN,
        created_at__date=timezone.localdate(),
    ).exists()


def pending_spin_order_id(user) -> Optional[int]:
    return Order.objects.filter(
        user=user, pending_spin=True
    ).order_by('created_at', 'id').values_list('id', flat=True).first()


def check_spin_eligibility(user) -> Union[Eligible, Denied]:
    if has_spun_today(user):
        return Denied(IneligibleSpin.ALREADY_SPUN_TODAY)

    order_id = pending_spin_order_id(user)
    if order_id is None:
        return Denied(IneligibleSpin.NO_PENDING_SPIN)
    return Eligible(order_id)


def spin_status(user):
    spun_today = has_spun_today(user)
    order_id = pending_spin_order_id(user)
    eligibility = check_spin_eligibility(user)
    return {
        'has_pending_spin': order_id is not None,
        'has_spun_today': spun_today,
        'can_spin': isinstance(eligibility, Eligible),
        'reason': getattr(eligibility, 'reason', None),
        'order_id': order_id,
    }


def record_spin_result(user, order_id, points, label=None) -> SpinResult:
    """
    Consumes the order's spin and posts the prize. Safe against double
    submission: if the order no longer has a pending spin nothing is written.
    """
    if points < 0:
        raise ValidationError({'points': "Spin prizes cannot be negative."})
    label = label or label_for_points(points)

    with ledger_write():
        account = _locked_account(user)
        consumed = Order.objects.consume_pending_spin(order_id, user=user)
        if not consumed:
            logger.info("Spin for order %s already consumed, nothing recorded", order_id)
            return SpinResult(recorded=False, points=0, label=label, balance=account.points, order_id=order_id)

        # Checked again under the account lock so two pending orders cannot both spin today
        if has_spun_today(user):
            raise IneligibleSpin(IneligibleSpin.ALREADY_SPUN_TODAY)

        balance = _post(account, points, LoyaltyPointLog.KIND_WHEEL_SPIN, label, order_id=order_id)

    logger.info("User %s spun the wheel for order %s: %s", user.pk, order_id, label)
    return SpinResult(recorded=True, points=points, label=label, balance=balance, order_id=order_id)


def spin_the_wheel(user, rng=None) -> SpinResult:
    eligibility = check_spin_eligibility(user)
    if isinstance(eligibility, Denied):
        raise IneligibleSpin(eligibility.reason)

    reward = draw(rng)
    result = record_spin_result(user, eligibility.order_id, reward.points, reward.label)

    if result.recorded:
        if result.points > 0:
            message = f"You won {result.points} points on the wheel!"
        else:
            message = "No prize this time. Better luck with your next order!"
        transaction.on_commit(lambda: dispatch_notification(
            recipient_id=user.pk,
            notification_type='spin_result',
            title=result.label,
            message=message,
            data={'points': result.points, 'order_id': result.order_id, 'new_total': result.balance}
        ))
    return result
