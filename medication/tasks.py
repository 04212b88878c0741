from celery import shared_task
import logging
from django.conf import settings

logger = logging.getLogger(__name__)

LOW_STOCK_STATUS = 'low_stock'


@shared_task
def check_low_stock_slots():
    """
    Flag dispenser slots at or below LOW_STOCK_THRESHOLD.
    Runs hourly; each newly flagged slot gets an audit alert.
    """
    from audit.models import AuditEvent
    from audit.utils import log_event
    from .models import SlotAssignment
    from .services.slots import slot_allocator

    threshold = getattr(settings, 'LOW_STOCK_THRESHOLD', 5)
    logger.info(f"Checking dispenser slots for stock at or below {threshold}")

    flagged = 0
    for assignment in slot_allocator.low_stock(threshold):
        if assignment.error_status == LOW_STOCK_STATUS:
            continue

        assignment.error_status = LOW_STOCK_STATUS
        assignment.save(update_fields=['error_status', 'updated_at'])
        flagged += 1

        logger.warning(
            f"Low stock in household {assignment.connect}: slot {assignment.slot} "
            f"({assignment.medicine.item_id}) has {assignment.remain} left"
        )
        log_event(
            AuditEvent.EventType.ALERT, 'slot', assignment.slot,
            f"{assignment.medicine.name} is running low ({assignment.remain} left)",
            connect=assignment.connect,
            additional_data={'item_id': assignment.medicine.item_id, 'remain': assignment.remain},
        )

    cleared = SlotAssignment.objects.filter(
        error_status=LOW_STOCK_STATUS, remain__gt=threshold
    ).update(error_status='')

    logger.info(f"Flagged {flagged} low-stock slots, cleared {cleared}")
    return f"Flagged {flagged} low-stock slots, cleared {cleared}"
