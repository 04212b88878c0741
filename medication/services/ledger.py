import logging
from collections import OrderedDict
from datetime import timedelta

from django.db import IntegrityError, transaction
from django.db.models import Case, IntegerField, Value, When

from dosemate.exceptions import Forbidden, InvalidArgument, NotFound
from users.models import User

from ..models import MAX_DOSE, TIME_OF_DAY_HOURS, DoseHistory, Medicine, ScheduleEntry, TimeOfDay
from .catalog import PERMISSION_OTHERS, permission_for
from .clock import get_clock, is_bucket_past, weekday_code

logger = logging.getLogger(__name__)

TIME_ORDER = [t.value for t in TimeOfDay]

TIME_LABELS = {
    TimeOfDay.MORNING.value: 'Morning',
    TimeOfDay.AFTERNOON.value: 'Afternoon',
    TimeOfDay.EVENING.value: 'Evening',
}


def percent(part, whole):
    """Whole-number percentage, halves rounded up; 0 when ``whole`` is 0."""
    if not whole:
        return 0
    return (part * 200 + whole) // (2 * whole)


def _bucket_order():
    return Case(
        *[When(time_of_day=t, then=Value(i)) for i, t in enumerate(TIME_ORDER)],
        output_field=IntegerField(),
    )


def _parse_actual_dose(value):
    if isinstance(value, bool):
        raise InvalidArgument("actual_dose must be a non-negative integer.")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise InvalidArgument(f"actual_dose must be a non-negative integer, got {value!r}.")
    if number < 0 or (isinstance(value, float) and value != number):
        raise InvalidArgument(f"actual_dose must be a non-negative integer, got {value!r}.")
    if number > MAX_DOSE:
        raise InvalidArgument(f"actual_dose must be at most {MAX_DOSE}, got {value!r}.")
    return number


def _get_user(user_id):
    try:
        return User.objects.get(username=user_id)
    except User.DoesNotExist:
        raise NotFound(f"User {user_id} not found.")


def _planned_dose(user, medicine, day, time_of_day):
    return (
        ScheduleEntry.objects.filter(
            user=user, medicine=medicine, day_of_week=weekday_code(day), time_of_day=time_of_day
        )
        .values_list('dose', flat=True)
        .first()
    )


def _apply(history, actual_dose, notes, now):
    history.actual_dose = actual_dose
    history.status = DoseHistory.Status.MISSED if actual_dose == 0 else DoseHistory.Status.COMPLETED
    history.completed_at = now
    if notes:
        history.notes = notes


def complete_dose(user_id, item_id, time_of_day, actual_dose, notes=None, clock=None):
    """
    Record today's intake of one item in one time-of-day.

    A second call for the same cell overwrites the first. ``scheduled_dose``
    comes from today's schedule entry when there is one, else equals
    ``actual_dose``.

    Returns:
        DoseHistory: The created or updated row

    Raises:
        NotFound: Unknown user, user without household, or unknown item
        Forbidden: The item is restricted to other members
        InvalidArgument: Unknown time-of-day or out-of-range dose
    """
    clock = get_clock(clock)
    if time_of_day not in TIME_ORDER:
        raise InvalidArgument(f"Unknown time_of_day: {time_of_day!r}")
    actual_dose = _parse_actual_dose(actual_dose)

    user = _get_user(user_id)
    if not user.connect:
        raise NotFound(f"User {user_id} is not linked to a household.")

    medicine = Medicine.objects.filter(connect=user.connect, item_id=item_id).first()
    if medicine is None:
        raise NotFound(f"Item {item_id} not found in this household.")
    if permission_for(medicine, user) == PERMISSION_OTHERS:
        logger.warning(f"Dose for {item_id} refused: {user_id} is not among its target users")
        raise Forbidden(f"Item {item_id} is not taken by {user_id}.")

    now = clock.now()
    today = now.date()
    cell = {'user': user, 'item_id': item_id, 'dose_date': today, 'time_of_day': time_of_day}

    with transaction.atomic():
        history = DoseHistory.objects.select_for_update().filter(**cell).first()

        if history is None:
            planned = _planned_dose(user, medicine, today, time_of_day)
            history = DoseHistory(
                connect=user.connect,
                medicine=medicine,
                scheduled_dose=planned if planned is not None else actual_dose,
                **cell
            )
            _apply(history, actual_dose, notes, now)
            try:
                with transaction.atomic():
                    history.save()
            except IntegrityError:
                # A concurrent request created the row first
                history = DoseHistory.objects.select_for_update().get(**cell)
                _apply(history, actual_dose, notes, now)
                history.save()
        else:
            _apply(history, actual_dose, notes, now)
            history.save()

    logger.info(
        f"Dose recorded for {user_id}/{item_id} {today} {time_of_day}: "
        f"{actual_dose}/{history.scheduled_dose} ({history.status})"
    )
    return history


def get_dose_history(user_id, item_id=None, start_date=None, end_date=None):
    """A user's ledger, newest day first, then morning to evening."""
    user = _get_user(user_id)
    queryset = DoseHistory.objects.filter(user=user)
    if item_id:
        queryset = queryset.filter(item_id=item_id)
    if start_date:
        queryset = queryset.filter(dose_date__gte=start_date)
    if end_date:
        queryset = queryset.filter(dose_date__lte=end_date)
    return queryset.annotate(bucket=_bucket_order()).order_by('-dose_date', 'bucket')


def _count(rows):
    completed = sum(1 for r in rows if r.status == DoseHistory.Status.COMPLETED)
    missed = sum(1 for r in rows if r.status == DoseHistory.Status.MISSED)
    return len(rows), completed, missed


def get_today_progress(user_id, clock=None):
    """Counts of today's ledger rows by status."""
    clock = get_clock(clock)
    user = _get_user(user_id)
    rows = list(DoseHistory.objects.filter(user=user, dose_date=clock.today()))
    scheduled, completed, missed = _count(rows)
    return {
        'scheduled': scheduled,
        'completed': completed,
        'missed': missed,
        'completion_rate': percent(completed, scheduled),
    }


def get_weekly_stats(user_id, start_date):
    """Ledger totals over ``start_date`` and the six days after it."""
    user = _get_user(user_id)
    end_date = start_date + timedelta(days=6)
    rows = list(DoseHistory.objects.filter(user=user, dose_date__range=(start_date, end_date)))

    total_scheduled, total_completed, missed_doses = _count(rows)

    daily_stats = []
    for offset in range(7):
        day = start_date + timedelta(days=offset)
        scheduled, completed, missed = _count([r for r in rows if r.dose_date == day])
        daily_stats.append({
            'date': day.isoformat(),
            'scheduled': scheduled,
            'completed': completed,
            'missed': missed,
            'completion_rate': percent(completed, scheduled),
        })

    return {
        'start_date': start_date.isoformat(),
        'end_date': end_date.isoformat(),
        'total_scheduled': total_scheduled,
        'total_completed': total_completed,
        'missed_doses': missed_doses,
        'completion_rate': percent(total_completed, total_scheduled),
        'daily_stats': daily_stats,
    }


def get_family_stats(connect, clock=None):
    """Today's ledger totals across the household."""
    clock = get_clock(clock)
    rows = list(DoseHistory.objects.filter(connect=connect, dose_date=clock.today()))
    total_scheduled, total_completed, total_missed = _count(rows)
    return {
        'total_scheduled': total_scheduled,
        'total_completed': total_completed,
        'total_missed': total_missed,
        'completion_rate': percent(total_completed, total_scheduled),
        'member_count': User.objects.filter(connect=connect).count(),
    }


def _bucket_stats(scheduled, completed, missed, past):
    remaining = max(scheduled - completed - missed, 0)
    if past:
        missed += remaining
        remaining = 0
    return {'scheduled': scheduled, 'completed': completed, 'missed': missed, 'remaining': remaining}


def get_detailed_family_stats(connect, clock=None):
    """
    Today's household adherence by time-of-day and by member.

    Planned doses come from today's schedule entries. Doses still open in a
    bucket whose window has ended are reported as missed.
    """
    clock = get_clock(clock)
    now = clock.now()
    today = now.date()
    hour = now.hour

    members = list(User.objects.filter(connect=connect).order_by('-role', 'date_joined'))
    entries = [
        e for e in ScheduleEntry.objects.filter(connect=connect, day_of_week=weekday_code(today))
        .select_related('medicine')
        if e.medicine.is_active_on(today)
    ]
    rows = list(DoseHistory.objects.filter(connect=connect, dose_date=today))

    def cell_stats(user_pk=None):
        stats = OrderedDict()
        for bucket in TIME_ORDER:
            planned = [e for e in entries if e.time_of_day == bucket and (user_pk is None or e.user_id == user_pk)]
            recorded = [r for r in rows if r.time_of_day == bucket and (user_pk is None or r.user_id == user_pk)]
            _, completed, missed = _count(recorded)
            stats[bucket] = _bucket_stats(len(planned), completed, missed, is_bucket_past(bucket, hour))
        return stats

    household = cell_stats()
    time_based_stats = []
    for bucket, stats in household.items():
        start, end = TIME_OF_DAY_HOURS[bucket]
        time_based_stats.append({
            'time_of_day': bucket,
            'label': TIME_LABELS[bucket],
            'start_hour': start,
            'end_hour': end,
            **stats,
            'completion_rate': percent(stats['completed'], stats['scheduled']),
        })

    member_stats = []
    for member in members:
        buckets = cell_stats(member.pk)
        totals = {key: sum(b[key] for b in buckets.values()) for key in ('scheduled', 'completed', 'missed', 'remaining')}
        member_stats.append({
            'user_id': member.username,
            'name': member.name,
            'role': member.role,
            **totals,
            'completion_rate': percent(totals['completed'], totals['scheduled']),
        })

    summary = {
        'total_' + key: sum(b[key] for b in household.values())
        for key in ('scheduled', 'completed', 'missed', 'remaining')
    }
    summary['completion_rate'] = percent(summary['total_completed'], summary['total_scheduled'])
    summary['member_count'] = len(members)

    return {
        'summary': summary,
        'time_based_stats': time_based_stats,
        'member_stats': member_stats,
        'last_updated': now.isoformat(),
    }


def get_today_completion_status(user_id, item_id=None, day=None, clock=None):
    """
    Which buckets are completed on ``day`` (default today).

    With ``item_id`` returns one item's status; without it, one row per item
    that has ledger rows on that day.
    """
    clock = get_clock(clock)
    day = day or clock.today()
    user = _get_user(user_id)

    queryset = DoseHistory.objects.filter(user=user, dose_date=day)
    if item_id:
        queryset = queryset.filter(item_id=item_id)

    by_item = OrderedDict()
    for row in queryset.order_by('item_id'):
        status = by_item.setdefault(row.item_id, OrderedDict((t, False) for t in TIME_ORDER))
        if row.status == DoseHistory.Status.COMPLETED:
            status[row.time_of_day] = True

    if item_id:
        return {
            'item_id': item_id,
            'date': day.isoformat(),
            'completion_status': by_item.get(item_id, OrderedDict((t, False) for t in TIME_ORDER)),
        }

    return [{'item_id': key, 'date': day.isoformat(), **status} for key, status in by_item.items()]
