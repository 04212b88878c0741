import logging

from django.conf import settings

from audit.models import AuditEvent
from audit.utils import log_event
from dosemate.exceptions import Conflict, Forbidden, InvalidArgument, NotFound, ResourceExhausted
from users.models import User
from users.permissions import can_manual_dispense, can_write_shared_quantity
from users.services.locks import household_lock

from ..models import MAX_QUANTITY, DispenseLog, Medicine, SlotAssignment
from .catalog import PERMISSION_OTHERS, permission_for

logger = logging.getLogger(__name__)


def parse_quantity(value, field='total', maximum=MAX_QUANTITY):
    """
    Parse a positive integer quantity coming from a client.

    Returns None for a missing or blank value.

    Raises:
        InvalidArgument: If the value is not a positive integer or exceeds ``maximum``
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if value == '':
            return None
    if isinstance(value, bool):
        raise InvalidArgument(f"{field} must be a positive integer.")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise InvalidArgument(f"{field} must be a positive integer, got {value!r}.")
    if isinstance(value, float) and value != number:
        raise InvalidArgument(f"{field} must be a whole number, got {value!r}.")
    if number <= 0:
        raise InvalidArgument(f"{field} must be a positive integer, got {value!r}.")
    if number > maximum:
        raise InvalidArgument(f"{field} must be at most {maximum}, got {value!r}.")
    return number


def is_sole_owner(medicine, user):
    """True when the item is restricted to exactly this user."""
    return medicine.target_users == [user.username]


class SlotAllocator:
    """
    Maps catalog items onto the fixed slots of a household dispenser.

    Allocation is first-fit in ascending slot order, scoped to the household
    and bounded by ``DISPENSER_SLOT_CAPACITY``. Every mutation runs under the
    household lock.
    """

    @property
    def capacity(self):
        return int(getattr(settings, 'DISPENSER_SLOT_CAPACITY', 6))

    def slot_map(self, connect):
        """Current ``{slot: item_id}`` for the household."""
        rows = SlotAssignment.objects.filter(connect=connect).select_related('medicine').order_by('slot')
        return {row.slot: row.medicine.item_id for row in rows}

    def _first_free_slot(self, connect):
        used = set(SlotAssignment.objects.filter(connect=connect).values_list('slot', flat=True))
        for slot in range(1, self.capacity + 1):
            if slot not in used:
                return slot
        return None

    def _dispenser_for(self, connect):
        return (
            User.objects.filter(connect=connect, dispenser_id__isnull=False)
            .values_list('dispenser_id', flat=True)
            .first()
        )

    def _allocate(self, connect, medicine, total, requested_slot=None):
        """Create the slot row. Caller must hold the household lock."""
        if requested_slot is not None:
            if not 1 <= requested_slot <= self.capacity:
                raise InvalidArgument(
                    f"Slot {requested_slot} is outside 1..{self.capacity}."
                )
            if SlotAssignment.objects.filter(connect=connect, slot=requested_slot).exists():
                raise Conflict(f"Slot {requested_slot} is already occupied.")
            slot = requested_slot
        else:
            slot = self._first_free_slot(connect)
            if slot is None:
                logger.warning(f"Household {connect} has no free slot (capacity {self.capacity})")
                raise ResourceExhausted(
                    f"No available slot: all {self.capacity} dispenser slots are in use."
                )

        assignment = SlotAssignment.objects.create(
            connect=connect,
            medicine=medicine,
            slot=slot,
            total=total,
            remain=total,
            dispenser_id=self._dispenser_for(connect),
        )
        logger.info(f"Item {medicine.item_id} assigned to slot {slot} in household {connect} (total {total})")
        return assignment

    def assign(self, connect, item_id, total, requested_slot=None, requester=None):
        """
        Load a catalog item into a slot.

        Args:
            connect: Household connect code
            item_id: Catalog item id
            total: Initial quantity; ``remain`` starts equal to it
            requested_slot: Specific slot to use, else first free slot
            requester: Acting user, checked against the item's targets; None for system callers

        Returns:
            int: The slot number

        Raises:
            NotFound: If the item is not in the household catalog
            Forbidden: If the requester may not stock this item
            Conflict: If the item already has a slot or the requested slot is taken
            ResourceExhausted: If every slot is occupied
        """
        total = parse_quantity(total)
        if total is None:
            raise InvalidArgument("total is required.")
        if requested_slot is not None:
            requested_slot = parse_quantity(requested_slot, field='slot')

        with household_lock(connect):
            medicine = self._get_medicine(connect, item_id)
            if requester is not None:
                self._check_access(medicine, requester)
                if not can_write_shared_quantity(requester.role, is_sole_owner(medicine, requester)):
                    raise Forbidden(f"Only the parent account or the sole owner can stock {item_id}.")
            if SlotAssignment.objects.filter(medicine=medicine).exists():
                raise Conflict(f"Item {item_id} already occupies a slot.")

            assignment = self._allocate(connect, medicine, total, requested_slot)
            log_event(
                AuditEvent.EventType.CREATE, 'slot', assignment.slot,
                f"Item {item_id} loaded into slot {assignment.slot}",
                user=requester, connect=connect,
                additional_data={'item_id': item_id, 'total': total},
            )
        return assignment.slot

    def release(self, connect, item_id, requester=None):
        """
        Free the item's slot for later assignments.

        Raises:
            NotFound: If the item has no slot
        """
        with household_lock(connect):
            assignment = (
                SlotAssignment.objects.filter(connect=connect, medicine__item_id=item_id)
                .select_related('medicine')
                .first()
            )
            if assignment is None:
                raise NotFound(f"Item {item_id} has no slot assigned.")

            slot = assignment.slot
            assignment.delete()
            log_event(
                AuditEvent.EventType.DELETE, 'slot', slot,
                f"Item {item_id} released from slot {slot}",
                user=requester, connect=connect,
                additional_data={'item_id': item_id},
            )

        logger.info(f"Slot {slot} released from item {item_id} in household {connect}")
        return slot

    def adjust_quantity(self, requester, connect, item_id, new_total, is_owner=False):
        """
        Reset an item's total and remaining stock to ``new_total``.

        Parents may always write. Anyone else may write only as the sole owner
        of the item; otherwise the write is dropped and None is returned.
        Creates the slot (first-fit) when the item has none yet.

        Returns:
            SlotAssignment or None if the write was ignored

        Raises:
            InvalidArgument: If ``new_total`` is not a positive integer
            ResourceExhausted: If a new slot is needed and none is free
        """
        new_total = parse_quantity(new_total)
        if new_total is None:
            return None

        if not can_write_shared_quantity(requester.role, is_owner):
            logger.warning(
                f"Ignored quantity change for {item_id} in household {connect} "
                f"by {requester.username} ({requester.role})"
            )
            return None

        with household_lock(connect):
            medicine = self._get_medicine(connect, item_id)
            assignment = SlotAssignment.objects.select_for_update().filter(medicine=medicine).first()

            if assignment is None:
                assignment = self._allocate(connect, medicine, new_total)
                event_type = AuditEvent.EventType.CREATE
            else:
                assignment.total = new_total
                assignment.remain = new_total
                assignment.save(update_fields=['total', 'remain', 'updated_at'])
                event_type = AuditEvent.EventType.UPDATE

            log_event(
                event_type, 'slot', assignment.slot,
                f"Stock of {item_id} set to {new_total}",
                user=requester, connect=connect,
                additional_data={'item_id': item_id, 'total': new_total},
            )

        logger.info(f"Stock of {item_id} in household {connect} set to {new_total} by {requester.username}")
        return assignment

    def dispense(self, connect, item_id, count, requester=None, reason=DispenseLog.Reason.SCHEDULED):
        """
        Take ``count`` units out of the item's slot.

        Returns:
            int: Remaining quantity after the dispense

        Raises:
            NotFound: If the item has no slot
            Conflict: If fewer than ``count`` units remain
            Forbidden: If a manual (non-scheduled) dispense is requested by a non-parent,
                or the item belongs to other members
        """
        count = parse_quantity(count, field='count')
        if count is None:
            raise InvalidArgument("count is required.")
        if reason not in DispenseLog.Reason.values:
            raise InvalidArgument(f"Unknown dispense reason: {reason}")
        if reason != DispenseLog.Reason.SCHEDULED:
            if requester is None or not can_manual_dispense(requester.role):
                raise Forbidden("Only the parent account can dispense outside the schedule.")

        with household_lock(connect):
            assignment = (
                SlotAssignment.objects.select_for_update()
                .filter(connect=connect, medicine__item_id=item_id)
                .first()
            )
            if assignment is None:
                raise NotFound(f"Item {item_id} has no slot assigned.")
            if requester is not None:
                self._check_access(assignment.medicine, requester)

            if assignment.remain < count:
                logger.warning(
                    f"Dispense of {count} refused for {item_id} in household {connect}: "
                    f"only {assignment.remain} left"
                )
                raise Conflict(
                    f"Not enough stock in slot {assignment.slot}: {assignment.remain} left, {count} requested."
                )

            assignment.remain -= count
            assignment.save(update_fields=['remain', 'updated_at'])

            DispenseLog.objects.create(
                slot_assignment=assignment,
                connect=connect,
                item_id=item_id,
                slot=assignment.slot,
                count=count,
                reason=reason,
                requested_by=requester,
                remain_after=assignment.remain,
            )
            log_event(
                AuditEvent.EventType.DISPENSE, 'slot', assignment.slot,
                f"Dispensed {count} of {item_id} ({reason})",
                user=requester, connect=connect,
                additional_data={'item_id': item_id, 'count': count, 'remain': assignment.remain},
            )

        logger.info(
            f"Dispensed {count} of {item_id} from slot {assignment.slot} in household {connect}, "
            f"{assignment.remain} left"
        )
        return assignment.remain

    def inventory(self, dispenser_id):
        """
        Per-slot stock of a paired dispenser.

        Raises:
            NotFound: If no household has paired this dispenser
        """
        connect = (
            User.objects.filter(dispenser_id=dispenser_id)
            .values_list('connect', flat=True)
            .first()
        )
        if not connect:
            raise NotFound(f"Dispenser {dispenser_id} is not paired.")

        rows = SlotAssignment.objects.filter(connect=connect).select_related('medicine').order_by('slot')
        return [
            {
                'item_id': row.medicine.item_id,
                'name': row.medicine.name,
                'total': row.total,
                'remain': row.remain,
                'slot': row.slot,
            }
            for row in rows
        ]

    def low_stock(self, threshold=None):
        """Slot rows at or below the refill threshold, across all households."""
        if threshold is None:
            threshold = getattr(settings, 'LOW_STOCK_THRESHOLD', 5)
        return SlotAssignment.objects.filter(remain__lte=threshold).select_related('medicine')

    def _check_access(self, medicine, requester):
        if permission_for(medicine, requester) == PERMISSION_OTHERS:
            logger.warning(f"{requester.username} refused access to {medicine.item_id} in household {medicine.connect}")
            raise Forbidden(f"Item {medicine.item_id} belongs to other household members.")

    def _get_medicine(self, connect, item_id):
        try:
            return Medicine.objects.get(connect=connect, item_id=item_id)
        except Medicine.DoesNotExist:
            raise NotFound(f"Item {item_id} not found in this household.")


slot_allocator = SlotAllocator()
