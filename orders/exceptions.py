from rest_framework import status
from core.exceptions import ShopError


class PaymentDeclined(ShopError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = 'payment_declined'
    default_message = "The payment was declined."


class InvalidTransition(ShopError):
    status_code = status.HTTP_409_CONFLICT
    default_code = 'invalid_transition'
    default_message = "That step is not available at this point of checkout."
