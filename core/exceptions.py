# core/exceptions.py
from django.core.exceptions import ValidationError as DjangoValidationError
from rest_framework import status
from rest_framework.views import exception_handler
from rest_framework.response import Response
import logging
import uuid

logger = logging.getLogger(__name__)


class ShopError(Exception):
    """
    Base class for business errors raised by the service layer. They are not
    system faults: the handler turns them into a user-facing message with a
    stable machine-readable code.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = 'shop_error'
    default_message = 'The request could not be completed.'

    def __init__(self, message=None, code=None):
        self.message = message or self.default_message
        self.code = code or self.default_code
        super().__init__(self.message)


def _validation_payload(exc):
    if hasattr(exc, 'message_dict'):
        return exc.message_dict
    return {'detail': exc.messages}


def custom_exception_handler(exc, context):
    error_id = uuid.uuid4()

    if isinstance(exc, ShopError):
        logger.info("Error ID: %s, %s: %s", error_id, exc.code, exc.message)
        return Response(
            {'detail': exc.message, 'code': exc.code, 'error_id': str(error_id)},
            status=exc.status_code
        )

    if isinstance(exc, DjangoValidationError):
        logger.info("Error ID: %s, validation failed: %s", error_id, exc.messages)
        payload = _validation_payload(exc)
        payload['error_id'] = str(error_id)
        return Response(payload, status=status.HTTP_400_BAD_REQUEST)

    response = exception_handler(exc, context)

    if response is None:
        # Log the full error
        logger.error(
            "Error ID: %s\nError: %s\nContext: %s", error_id, exc, context,
            exc_info=True
        )
        return Response(
            {
                'error': 'An unexpected error occurred',
                'error_id': str(error_id),
            },
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    # Add error ID to all error responses
    if isinstance(response.data, dict):
        response.data['error_id'] = str(error_id)

    return response
