import logging

from django.db import IntegrityError, transaction

from audit.models import AuditEvent
from audit.utils import log_event
from dosemate.exceptions import Conflict, Forbidden, InvalidArgument, NotFound
from users.permissions import can_manage_catalog
from users.services.locks import household_lock

from ..models import DoseHistory, Medicine, ScheduleEntry, SlotAssignment

logger = logging.getLogger(__name__)

PERMISSION_OWN = 'own'
PERMISSION_OTHERS = 'others'

EDITABLE_FIELDS = (
    'name', 'kind', 'warning', 'description', 'manufacturer', 'image_url',
    'start_date', 'end_date', 'target_users',
)


def _normalize_target_users(target_users):
    if target_users is None:
        return None
    if not isinstance(target_users, (list, tuple, set)):
        raise InvalidArgument("target_users must be a list of user ids or null.")
    # Empty selection means nobody was singled out, so the item is shared
    users = sorted({str(u) for u in target_users if u})
    return users or None


def permission_for(medicine, user):
    """
    ``own`` when the item is shared, the user is a parent, or the user is
    listed in ``target_users``. Otherwise ``others``.
    """
    if user.is_parent or medicine.is_targeted_to(user.username):
        return PERMISSION_OWN
    return PERMISSION_OTHERS


def add_item(requester, item_id, name, kind=Medicine.Kind.MEDICINE, warning=False,
             start_date=None, end_date=None, target_users=None, **extra):
    """
    Add a medicine or supplement to the requester's household catalog.

    Args:
        requester: Acting user, must be a parent
        item_id: Household-chosen id, unique within the household
        name: Display name
        kind: Medicine.Kind value
        warning: Whether the item carries a contraindication warning
        start_date, end_date: Optional active window
        target_users: List of user ids the item is restricted to, or None
        **extra: description, manufacturer, image_url

    Returns:
        Medicine: The created catalog item

    Raises:
        Forbidden: If the requester is not a parent
        Conflict: If ``item_id`` already exists in the household
    """
    if not can_manage_catalog(requester.role):
        raise Forbidden("Only the parent account can add catalog items.")
    if not requester.connect:
        raise NotFound("User is not linked to a household.")
    if not item_id or not name:
        raise InvalidArgument("item_id and name are required.")
    if kind not in Medicine.Kind.values:
        raise InvalidArgument(f"Unknown item kind: {kind}")
    if start_date and end_date and end_date < start_date:
        raise InvalidArgument("end_date must not be before start_date.")

    connect = requester.connect
    if Medicine.objects.filter(item_id=item_id, connect=connect).exists():
        raise Conflict(f"Item {item_id} already exists in this household.")

    try:
        with transaction.atomic():
            medicine = Medicine.objects.create(
                item_id=item_id,
                connect=connect,
                name=name,
                kind=kind,
                warning=bool(warning),
                start_date=start_date,
                end_date=end_date,
                target_users=_normalize_target_users(target_users),
                description=extra.get('description') or '',
                manufacturer=extra.get('manufacturer') or '',
                image_url=extra.get('image_url') or '',
                created_by=requester,
            )
            log_event(
                AuditEvent.EventType.CREATE, 'medicine', item_id,
                f"{kind} {name} added to catalog",
                user=requester, connect=connect,
            )
    except IntegrityError:
        raise Conflict(f"Item {item_id} already exists in this household.")

    logger.info(f"Catalog item {item_id} added to household {connect} by {requester.username}")
    return medicine


def get_item(connect, item_id):
    """
    Raises:
        NotFound: If the item is not in the household catalog
    """
    try:
        return Medicine.objects.get(item_id=item_id, connect=connect)
    except Medicine.DoesNotExist:
        raise NotFound(f"Item {item_id} not found in this household.")


def list_for_user(user, kind=None):
    """
    All household catalog items, each paired with the user's permission.

    Returns:
        list: [(Medicine, 'own' | 'others'), ...]
    """
    if not user.connect:
        raise NotFound("User is not linked to a household.")

    queryset = Medicine.objects.filter(connect=user.connect).select_related('slot_assignment')
    if kind:
        queryset = queryset.filter(kind=kind)

    return [(medicine, permission_for(medicine, user)) for medicine in queryset]


def search_by_name(connect, query):
    """Case-insensitive substring search over the household catalog."""
    return list(Medicine.objects.filter(connect=connect, name__icontains=query or ''))


def update_item(requester, item_id, **changes):
    """
    Edit a catalog item. Unknown fields are ignored.

    Raises:
        Forbidden: If the requester is not a parent
        NotFound: If the item does not exist
    """
    if not can_manage_catalog(requester.role):
        raise Forbidden("Only the parent account can edit catalog items.")

    medicine = get_item(requester.connect, item_id)

    updated = []
    for field in EDITABLE_FIELDS:
        if field not in changes:
            continue
        value = changes[field]
        if field == 'target_users':
            value = _normalize_target_users(value)
        elif field == 'kind' and value not in Medicine.Kind.values:
            raise InvalidArgument(f"Unknown item kind: {value}")
        elif field in ('description', 'manufacturer', 'image_url') and value is None:
            value = ''
        setattr(medicine, field, value)
        updated.append(field)

    if medicine.start_date and medicine.end_date and medicine.end_date < medicine.start_date:
        raise InvalidArgument("end_date must not be before start_date.")

    if updated:
        medicine.save(update_fields=updated + ['updated_at'])
        log_event(
            AuditEvent.EventType.UPDATE, 'medicine', item_id,
            f"Catalog item updated: {', '.join(updated)}",
            user=requester, connect=requester.connect,
        )
        logger.info(f"Catalog item {item_id} updated in household {requester.connect}: {updated}")

    return medicine


def delete_item(requester, item_id):
    """
    Remove a catalog item with its schedule entries and slot assignment.

    All three deletes run in one transaction under the household lock; either
    every dependent row goes or none do. Dose history keeps its ``item_id``.

    Raises:
        Forbidden: If the requester is not a parent
        NotFound: If the item does not exist
    """
    if not can_manage_catalog(requester.role):
        raise Forbidden("Only the parent account can delete catalog items.")

    connect = requester.connect

    with household_lock(connect):
        medicine = get_item(connect, item_id)

        schedules_deleted, _ = ScheduleEntry.objects.filter(medicine=medicine).delete()
        slots_deleted, _ = SlotAssignment.objects.filter(medicine=medicine).delete()
        DoseHistory.objects.filter(medicine=medicine).update(medicine=None)
        medicine.delete()

        log_event(
            AuditEvent.EventType.DELETE, 'medicine', item_id,
            f"Catalog item {item_id} deleted",
            user=requester, connect=connect,
            additional_data={'schedules': schedules_deleted, 'slots': slots_deleted},
        )

    logger.info(
        f"Catalog item {item_id} deleted from household {connect} "
        f"({schedules_deleted} schedule entries, {slots_deleted} slot)"
    )
    return {'schedules_deleted': schedules_deleted, 'slot_released': bool(slots_deleted)}
