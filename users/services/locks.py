import logging
from contextlib import contextmanager

from django.conf import settings
from django.db import OperationalError, connection, transaction

from dosemate.exceptions import HouseholdBusy, NotFound
from users.models import Household

logger = logging.getLogger(__name__)


@contextmanager
def household_lock(connect):
    """
    Serialize mutations of one household's shared state.

    Opens a transaction and row-locks the ``Household`` for ``connect``. On
    PostgreSQL the wait is bounded by ``HOUSEHOLD_LOCK_TIMEOUT_MS``; when it
    expires the caller gets ``HouseholdBusy`` instead of queuing forever.
    A lock timeout raised by the caller's own statements inside the block is
    reported as ``HouseholdBusy`` too, after the transaction is rolled back.
    Yields the locked household.
    """
    if not connect:
        raise NotFound("User is not linked to a household.")

    timeout_ms = int(getattr(settings, 'HOUSEHOLD_LOCK_TIMEOUT_MS', 3000))

    try:
        with transaction.atomic():
            if connection.vendor == 'postgresql':
                with connection.cursor() as cursor:
                    cursor.execute(f"SET LOCAL lock_timeout = {timeout_ms}")
            try:
                household = Household.objects.select_for_update().get(connect=connect)
            except Household.DoesNotExist:
                raise NotFound(f"Household {connect} not found.")
            yield household
    except OperationalError as e:
        logger.warning(f"Lock wait on household {connect} exceeded {timeout_ms}ms: {str(e)}")
        raise HouseholdBusy() from e
