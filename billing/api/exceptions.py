import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

from billing.exceptions import BillingError

logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = 'An internal server error occurred.'


def billing_exception_handler(exc, context):
    """
    Map billing errors to their HTTP status, keep DRF's handling for its own
    exceptions, and turn anything else into an opaque 500.
    """
    if isinstance(exc, BillingError):
        return Response(exc.as_dict(), status=exc.status_code)

    response = drf_exception_handler(exc, context)
    if response is not None:
        return response

    view = context.get('view')
    logger.exception("Unhandled error in %s", view.__class__.__name__ if view else 'view', exc_info=exc)
    return Response({'detail': INTERNAL_ERROR_MESSAGE}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)
