import logging
from collections import OrderedDict

from django.conf import settings

from audit.models import AuditEvent
from audit.utils import log_event
from dosemate.exceptions import Forbidden, InvalidArgument, NotFound
from users.models import User
from users.services import household
from users.services.locks import household_lock

from ..models import MAX_DOSE, DayOfWeek, DoseHistory, Medicine, ScheduleEntry, SlotAssignment, TimeOfDay
from .age_validation import validate_age
from .catalog import PERMISSION_OTHERS, permission_for
from .clock import get_clock, time_of_day_for_hour, weekday_code
from .slots import is_sole_owner, parse_quantity, slot_allocator

logger = logging.getLogger(__name__)

DEFAULT_DOSE = 1
TIME_ORDER = [t.value for t in TimeOfDay]
DAY_ORDER = [d.value for d in DayOfWeek]


def parse_dose(value, field='dose'):
    """
    Positive integer dose, or None when absent. Zero counts as absent, the
    way clients send an unset dose.
    """
    if value in (0, '0'):
        return None
    return parse_quantity(value, field=field, maximum=MAX_DOSE)


def resolve_dose(entry_dose=None, uniform_dose=None, others_latest=None, own_latest=None):
    """
    Pick the dose for one schedule cell.

    Precedence: the cell's own dose, the uniform dose sent with the request,
    the latest dose another household member uses for the item, the user's
    own latest dose for the item, then 1.
    """
    for candidate in (entry_dose, uniform_dose, others_latest, own_latest):
        if candidate is not None and candidate > 0:
            return candidate
    return DEFAULT_DOSE


def _get_user(user_id):
    try:
        return User.objects.get(username=user_id)
    except User.DoesNotExist:
        raise NotFound(f"User {user_id} not found.")


def _get_medicine(connect, item_id):
    if not connect:
        raise NotFound("User is not linked to a household.")
    try:
        return Medicine.objects.get(connect=connect, item_id=item_id)
    except Medicine.DoesNotExist:
        raise NotFound(f"Item {item_id} not found in this household.")


def _clean_entries(entries):
    """
    Validate raw ``{'day_of_week', 'time_of_day', 'dose'?}`` cells.

    A repeated (day, time) cell keeps its last occurrence.
    """
    cleaned = OrderedDict()
    for entry in entries or []:
        day = entry.get('day_of_week')
        time_of_day = entry.get('time_of_day')
        if day not in DAY_ORDER:
            raise InvalidArgument(f"Unknown day_of_week: {day!r}")
        if time_of_day not in TIME_ORDER:
            raise InvalidArgument(f"Unknown time_of_day: {time_of_day!r}")
        cleaned[(day, time_of_day)] = parse_dose(entry.get('dose'))
    return cleaned


def _check_authority(requester, user, medicine):
    if requester.connect != user.connect:
        raise Forbidden("You can only manage schedules in your own household.")
    if requester.is_parent:
        return
    if requester.pk != user.pk:
        raise Forbidden("A child account can only manage its own schedule.")
    if permission_for(medicine, requester) == PERMISSION_OTHERS:
        raise Forbidden(f"Item {medicine.item_id} belongs to another family member.")


def _age_gate(user, medicine):
    """Warnings for a child taking a flagged item; refuses contraindicated ages."""
    if not (user.is_child and medicine.warning and user.age is not None):
        return []

    result = validate_age(user.age, medicine.description)
    if not result['allowed']:
        logger.warning(f"Schedule for {medicine.item_id} refused for {user.username}: {result['reason']}")
        raise Forbidden(result['reason'])
    return result['warnings']


def _latest_dose(queryset):
    latest = queryset.order_by('-created_at', '-id').values_list('dose', flat=True).first()
    return latest or None


def save_schedule(item_id, user_id, requester, entries, total=None, uniform_dose=None):
    """
    Replace the weekly schedule of ``user_id`` for one catalog item.

    Args:
        item_id: Catalog item id in the user's household
        user_id: Whose schedule is saved
        requester: Acting user (may be the same as the schedule owner)
        entries: [{'day_of_week', 'time_of_day', 'dose'?}, ...]
        total: New stock for the item's slot; None or blank leaves stock alone
        uniform_dose: Dose for cells that carry none

    Returns:
        dict: created, quantity_updated, slot, warnings

    Raises:
        NotFound: Unknown user or item
        Forbidden: Cross-household request, a child editing someone else,
            an item restricted to another member, or a refused age
        InvalidArgument: Malformed day, time, dose or total
        ResourceExhausted: A slot had to be created and none is free
    """
    user = _get_user(user_id)
    medicine = _get_medicine(user.connect, item_id)
    _check_authority(requester, user, medicine)

    cells = _clean_entries(entries)
    uniform_dose = parse_dose(uniform_dose, field='uniform_dose')
    total = parse_quantity(total)
    warnings = _age_gate(user, medicine)

    connect = user.connect
    quantity_updated = False
    slot = None

    with household_lock(connect):
        # Read before the delete below
        others_latest = _latest_dose(
            ScheduleEntry.objects.filter(medicine=medicine, connect=connect).exclude(user=user)
        )
        own_latest = _latest_dose(ScheduleEntry.objects.filter(medicine=medicine, user=user))

        ScheduleEntry.objects.filter(user=user, medicine=medicine).delete()

        new_entries = [
            ScheduleEntry(
                user=user,
                medicine=medicine,
                connect=connect,
                day_of_week=day,
                time_of_day=time_of_day,
                dose=resolve_dose(dose, uniform_dose, others_latest, own_latest),
            )
            for (day, time_of_day), dose in cells.items()
        ]

        if total is not None:
            is_owner = requester.pk == user.pk and is_sole_owner(medicine, requester)
            assignment = slot_allocator.adjust_quantity(
                requester, connect, item_id, total, is_owner=is_owner
            )
            if assignment is not None:
                quantity_updated = True
                slot = assignment.slot

        ScheduleEntry.objects.bulk_create(new_entries)

        log_event(
            AuditEvent.EventType.UPDATE, 'schedule', f"{user_id}:{item_id}",
            f"Schedule of {item_id} for {user_id} saved with {len(new_entries)} entries",
            user=requester, connect=connect,
            additional_data={'entries': len(new_entries), 'quantity_updated': quantity_updated},
        )

    logger.info(
        f"Schedule saved for {user_id}/{item_id} by {requester.username}: "
        f"{len(new_entries)} entries, quantity_updated={quantity_updated}"
    )
    return {
        'success': True,
        'created': len(new_entries),
        'quantity_updated': quantity_updated,
        'slot': slot,
        'warnings': warnings,
    }


def _empty_grid():
    return OrderedDict((day, OrderedDict((t, False) for t in TIME_ORDER)) for day in DAY_ORDER)


def _slot_snapshot(medicine):
    assignment = SlotAssignment.objects.filter(medicine=medicine).first()
    if assignment is None:
        return None
    return {
        'slot': assignment.slot,
        'total': assignment.total,
        'remain': assignment.remain,
        'dispenser_id': assignment.dispenser_id,
    }


def get_schedule(item_id, user_id):
    """
    Weekly grid of one user's schedule for an item.

    An item with no schedule yet yields an all-false grid with zero doses.
    ``doses`` holds the largest dose used in each time-of-day.
    """
    user = _get_user(user_id)
    medicine = _get_medicine(user.connect, item_id)

    grid = _empty_grid()
    doses = OrderedDict((t, 0) for t in TIME_ORDER)
    cells = []

    for entry in ScheduleEntry.objects.filter(user=user, medicine=medicine):
        grid[entry.day_of_week][entry.time_of_day] = True
        doses[entry.time_of_day] = max(doses[entry.time_of_day], entry.dose)
        cells.append({
            'day_of_week': entry.day_of_week,
            'time_of_day': entry.time_of_day,
            'dose': entry.dose,
        })

    cells.sort(key=lambda c: (DAY_ORDER.index(c['day_of_week']), TIME_ORDER.index(c['time_of_day'])))

    return {
        'item_id': medicine.item_id,
        'user_id': user.username,
        'scheduled': bool(cells),
        'grid': grid,
        'doses': doses,
        'entries': cells,
        'slot': _slot_snapshot(medicine),
    }


def _today_entries(queryset, today):
    """Entries for today's weekday whose item is inside its active window."""
    entries = queryset.filter(day_of_week=weekday_code(today)).select_related('medicine', 'user')
    return [e for e in entries if e.medicine.is_active_on(today)]


def get_expected_dose_now(item_id, user_id, clock=None):
    """
    Dose due in the current time-of-day, plus the next one later today.

    Between 0 and 5 o'clock there is no current bucket; ``time_slot`` is None
    and ``next_dose`` points at the first dose of the day.
    """
    clock = get_clock(clock)
    user = _get_user(user_id)
    medicine = _get_medicine(user.connect, item_id)
    today = clock.today()
    current = time_of_day_for_hour(clock.hour())

    by_time = {}
    for entry in _today_entries(ScheduleEntry.objects.filter(user=user, medicine=medicine), today):
        if entry.dose > 0:
            by_time[entry.time_of_day] = entry.dose

    later = TIME_ORDER[TIME_ORDER.index(current) + 1:] if current else TIME_ORDER
    next_dose = None
    for time_of_day in later:
        if time_of_day in by_time:
            next_dose = {'time_slot': time_of_day, 'dose': by_time[time_of_day]}
            break

    return {
        'dose': by_time.get(current, 0) if current else 0,
        'time_slot': current,
        'next_dose': next_dose,
    }


def _completed_cells(users, today):
    rows = DoseHistory.objects.filter(
        user__in=users, dose_date=today, status=DoseHistory.Status.COMPLETED
    ).values_list('user_id', 'item_id', 'time_of_day')
    return set(rows)


def get_today_schedule(connect, clock=None):
    """Today's doses for every member of the household, with completion flags."""
    clock = get_clock(clock)
    today = clock.today()

    entries = _today_entries(ScheduleEntry.objects.filter(connect=connect), today)
    completed = _completed_cells([e.user_id for e in entries], today)
    entries.sort(key=lambda e: (TIME_ORDER.index(e.time_of_day), e.user.name, e.medicine.name))

    return {
        'date': today.isoformat(),
        'weekday': weekday_code(today),
        'schedules': [
            {
                'item_id': e.medicine.item_id,
                'name': e.medicine.name,
                'kind': e.medicine.kind,
                'user_id': e.user.username,
                'member_name': e.user.name,
                'time_of_day': e.time_of_day,
                'dose': e.dose,
                'is_completed': (e.user_id, e.medicine.item_id, e.time_of_day) in completed,
            }
            for e in entries
        ],
    }


def get_schedules_for_dispenser(dispenser_id, day):
    """
    Every member's doses due on ``day`` at the dispenser ``dispenser_id``.

    Entries come from ``day``'s weekday and skip items outside their active
    window. Ordered by time-of-day, then member and item name.

    Raises:
        NotFound: If no household has paired this dispenser
    """
    members = household.list_dispenser_members(dispenser_id)
    entries = _today_entries(ScheduleEntry.objects.filter(user__in=members), day)
    entries.sort(key=lambda e: (TIME_ORDER.index(e.time_of_day), e.user.name, e.medicine.name))

    return [
        {
            'user_id': e.user.username,
            'user_name': e.user.name,
            'item_id': e.medicine.item_id,
            'medicine_name': e.medicine.name,
            'time_of_day': e.time_of_day,
            'dose': e.dose,
        }
        for e in entries
    ]


def get_today_schedule_for_kit(kit_id, clock=None):
    """Today's doses of the kit owner grouped by time-of-day."""
    clock = get_clock(clock)
    try:
        user = User.objects.get(kit_id=kit_id)
    except User.DoesNotExist:
        raise NotFound(f"No user is bound to kit {kit_id}.")

    today = clock.today()
    schedule = OrderedDict((t, []) for t in TIME_ORDER)
    for entry in _today_entries(ScheduleEntry.objects.filter(user=user), today):
        schedule[entry.time_of_day].append({
            'item_id': entry.medicine.item_id,
            'name': entry.medicine.name,
            'dose': entry.dose,
        })

    return {
        'status': 'ok',
        'user_id': user.username,
        'date': today.isoformat(),
        'weekday': weekday_code(today),
        'schedule': schedule,
    }


def get_family_summary(connect, clock=None):
    """
    Per member: items scheduled, today's total and completed doses, and how
    many of the member's items are at or below the refill threshold.
    """
    clock = get_clock(clock)
    today = clock.today()
    threshold = getattr(settings, 'LOW_STOCK_THRESHOLD', 5)

    members = list(User.objects.filter(connect=connect).order_by('-role', 'date_joined'))
    low_stock = set(
        SlotAssignment.objects.filter(connect=connect, remain__lte=threshold)
        .values_list('medicine_id', flat=True)
    )

    summary = []
    for member in members:
        all_entries = ScheduleEntry.objects.filter(user=member)
        item_ids = set(all_entries.values_list('medicine_id', flat=True))
        todays = _today_entries(all_entries, today)
        completed = _completed_cells([member.pk], today)

        summary.append({
            'user_id': member.username,
            'member_name': member.name,
            'role': member.role,
            'active_items': len(item_ids),
            'today_total': len(todays),
            'today_completed': sum(
                1 for e in todays if (member.pk, e.medicine.item_id, e.time_of_day) in completed
            ),
            'upcoming_refills': len(item_ids & low_stock),
        })
    return summary
