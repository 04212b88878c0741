import logging

logger = logging.getLogger('audit')


def log_event(event_type, resource_type, resource_id, description,
              user=None, connect='', additional_data=None):
    """
    Centralized function to record a household audit event.

    Args:
        event_type: AuditEvent.EventType value
        resource_type: Kind of record touched (e.g. 'slot', 'medicine')
        resource_id: Identifier of the record
        description: Human-readable summary
        user: Acting user, None for system tasks
        connect: Household connect code
        additional_data: Extra JSON-serializable context

    Returns:
        AuditEvent: The created event
    """
    from .models import AuditEvent

    if additional_data is None:
        additional_data = {}

    event = AuditEvent.objects.create(
        user=user,
        connect=connect or '',
        event_type=event_type,
        resource_type=resource_type,
        resource_id=str(resource_id),
        description=description,
        additional_data=additional_data,
    )

    actor = user.username if user else 'system'
    logger.info(f"[{connect or '-'}] {event_type} {resource_type}:{resource_id} by {actor} - {description}")
    return event
