"""
Simulated payment capture. No gateway is called: card details are checked the
way the checkout form checks them and the charge is accepted.
"""
from dataclasses import dataclass
from decimal import Decimal
import logging
import re
import uuid

from django.core.exceptions import ValidationError

from .exceptions import PaymentDeclined

logger = logging.getLogger(__name__)

CARD = 'card'
CASH = 'cash'
PAYMENT_METHODS = (CARD, CASH)

_CARD_NUMBER_RE = re.compile(r'^\d{16,19}$')
_EXPIRY_RE = re.compile(r'^(0[1-9]|1[0-2])/\d{2}$')
_CVC_RE = re.compile(r'^\d{3}$')


@dataclass(frozen=True)
class PaymentReceipt:
    method: str
    amount: Decimal
    reference: str


def validate_card(card):
    """Raises ValidationError with one message per bad field."""
    card = card or {}
    errors = {}

    name = (card.get('card_name') or '').strip()
    if len(name) < 3:
        errors['card_name'] = "Name must be at least 3 characters."

    number = re.sub(r'\s+', '', card.get('card_number') or '')
    if not _CARD_NUMBER_RE.match(number):
        errors['card_number'] = "Please enter a valid card number."

    if not _EXPIRY_RE.match((card.get('expiry_date') or '').strip()):
        errors['expiry_date'] = "Please use MM/YY format."

    if not _CVC_RE.match((card.get('cvc') or '').strip()):
        errors['cvc'] = "CVC must be 3 digits."

    if errors:
        raise ValidationError(errors)


def capture_payment(method, amount, card=None) -> PaymentReceipt:
    if method not in PAYMENT_METHODS:
        raise ValidationError({'payment_method': f"Unsupported payment method '{method}'."})
    if amount < 0:
        raise PaymentDeclined("Cannot charge a negative amount.")

    if method == CARD:
        validate_card(card)

    receipt = PaymentReceipt(method=method, amount=amount, reference=uuid.uuid4().hex[:12])
    logger.info("Captured %s payment of %s (ref %s)", method, amount, receipt.reference)
    return receipt
