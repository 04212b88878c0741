import logging

from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class DoseMateError(Exception):
    """
    Base exception for household, catalog, slot, schedule and ledger errors.

    Every subclass carries a stable ``code`` so callers can tell a capacity
    problem from an authority problem from a missing record.
    """
    code = 'error'
    status_code = 500
    default_message = 'Request could not be completed.'

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(DoseMateError):
    """Household, user, catalog item or schedule is absent."""
    code = 'not_found'
    status_code = 404
    default_message = 'Requested resource was not found.'


class Conflict(DoseMateError):
    """Duplicate id, already-bound hardware, occupied slot or insufficient stock."""
    code = 'conflict'
    status_code = 409
    default_message = 'Request conflicts with the current state.'


class Forbidden(DoseMateError):
    """Role or household authority violation."""
    code = 'forbidden'
    status_code = 403
    default_message = 'You do not have permission to perform this action.'


class ResourceExhausted(DoseMateError):
    """No free dispenser slot is left under the configured capacity."""
    code = 'resource_exhausted'
    status_code = 507
    default_message = 'No available dispenser slot.'


class InvalidArgument(DoseMateError):
    """Malformed quantity, dose or time-of-day value."""
    code = 'invalid_argument'
    status_code = 400
    default_message = 'Invalid argument.'


class HouseholdBusy(Conflict):
    """The household lock could not be acquired within the configured deadline."""
    code = 'busy'
    status_code = 409
    default_message = 'Household is busy, try again shortly.'


def custom_exception_handler(exc, context):
    """
    Turn DoseMateError into a stable ``{"error", "detail"}`` payload and leave
    everything else to DRF's default handler.
    """
    if isinstance(exc, DoseMateError):
        view = context.get('view')
        logger.info(
            f"{exc.code} in {view.__class__.__name__ if view else 'unknown view'}: {exc.message}"
        )
        return Response({'error': exc.code, 'detail': exc.message}, status=exc.status_code)

    return exception_handler(exc, context)
