from django.db import models
from django.conf import settings
from django.core.validators import MinValueValidator
from django.utils.translation import gettext_lazy as _


class DayOfWeek(models.TextChoices):
    MONDAY = 'mon', _('Monday')
    TUESDAY = 'tue', _('Tuesday')
    WEDNESDAY = 'wed', _('Wednesday')
    THURSDAY = 'thu', _('Thursday')
    FRIDAY = 'fri', _('Friday')
    SATURDAY = 'sat', _('Saturday')
    SUNDAY = 'sun', _('Sunday')


class TimeOfDay(models.TextChoices):
    MORNING = 'morning', _('Morning')
    AFTERNOON = 'afternoon', _('Afternoon')
    EVENING = 'evening', _('Evening')


# Hours (inclusive) covered by each time-of-day bucket
TIME_OF_DAY_HOURS = {
    TimeOfDay.MORNING.value: (6, 11),
    TimeOfDay.AFTERNOON.value: (12, 17),
    TimeOfDay.EVENING.value: (18, 23),
}

# Index 0 is Monday, matching date.weekday()
WEEKDAYS = [choice.value for choice in DayOfWeek]

# Column ceilings: doses are small integer fields, stock counts are integer fields
MAX_DOSE = 32767
MAX_QUANTITY = 2147483647


class Medicine(models.Model):
    """
    Catalog item (medicine or supplement) of one household.

    ``item_id`` is chosen by the household and is only unique together with
    ``connect``. ``target_users`` restricts the item to the listed user ids;
    ``None`` means the whole household shares it.
    """
    class Kind(models.TextChoices):
        MEDICINE = 'medicine', _('Medicine')
        SUPPLEMENT = 'supplement', _('Supplement')

    item_id = models.CharField(max_length=100)
    connect = models.CharField(max_length=50, db_index=True)
    name = models.CharField(max_length=255)
    kind = models.CharField(max_length=20, choices=Kind.choices, default=Kind.MEDICINE)
    warning = models.BooleanField(default=False)

    # Descriptive fields, usually filled from the drug lookup
    description = models.TextField(blank=True)
    manufacturer = models.CharField(max_length=255, blank=True)
    image_url = models.URLField(max_length=500, blank=True)

    start_date = models.DateField(null=True, blank=True)
    end_date = models.DateField(null=True, blank=True)
    target_users = models.JSONField(null=True, blank=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='created_medicines'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']
        verbose_name = "Medicine"
        verbose_name_plural = "Medicines"
        constraints = [
            models.UniqueConstraint(fields=['item_id', 'connect'], name='unique_item_per_household'),
        ]

    def __str__(self):
        return f"{self.name} ({self.item_id})"

    @property
    def is_shared(self):
        return self.target_users is None

    def is_targeted_to(self, user_id):
        return self.target_users is None or user_id in self.target_users

    def is_active_on(self, day):
        """Whether ``day`` falls inside the optional start/end window."""
        if self.start_date and day < self.start_date:
            return False
        if self.end_date and day > self.end_date:
            return False
        return True


class SlotAssignment(models.Model):
    """
    A catalog item loaded into one physical slot of the household dispenser.

    Slot numbers are unique per household and bounded by
    ``DISPENSER_SLOT_CAPACITY``; the upper bound is checked by the allocator
    since the capacity is deployment configuration.
    """
    connect = models.CharField(max_length=50, db_index=True)
    medicine = models.OneToOneField(Medicine, on_delete=models.CASCADE, related_name='slot_assignment')
    slot = models.PositiveSmallIntegerField(validators=[MinValueValidator(1)])
    total = models.PositiveIntegerField(default=0)
    remain = models.PositiveIntegerField(default=0)
    dispenser_id = models.CharField(max_length=50, null=True, blank=True, db_index=True)
    error_status = models.CharField(max_length=100, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['connect', 'slot']
        verbose_name = "Slot Assignment"
        verbose_name_plural = "Slot Assignments"
        constraints = [
            models.UniqueConstraint(fields=['connect', 'slot'], name='unique_slot_per_household'),
            models.CheckConstraint(condition=models.Q(slot__gte=1), name='slot_positive'),
            models.CheckConstraint(condition=models.Q(remain__gte=0), name='remain_not_negative'),
            models.CheckConstraint(condition=models.Q(remain__lte=models.F('total')), name='remain_within_total'),
        ]

    def __str__(self):
        return f"Slot {self.slot}: {self.medicine.item_id} ({self.remain}/{self.total})"

    @property
    def item_id(self):
        return self.medicine.item_id


class ScheduleEntry(models.Model):
    """One recurring (day, time-of-day) dose of a catalog item for one user."""
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='schedule_entries'
    )
    medicine = models.ForeignKey(Medicine, on_delete=models.CASCADE, related_name='schedule_entries')
    connect = models.CharField(max_length=50, db_index=True)
    day_of_week = models.CharField(max_length=3, choices=DayOfWeek.choices)
    time_of_day = models.CharField(max_length=10, choices=TimeOfDay.choices)
    dose = models.PositiveSmallIntegerField(default=1, validators=[MinValueValidator(1)])
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['user', 'medicine', 'day_of_week', 'time_of_day']
        verbose_name = "Schedule Entry"
        verbose_name_plural = "Schedule Entries"
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'medicine', 'day_of_week', 'time_of_day'],
                name='unique_schedule_cell'
            ),
            models.CheckConstraint(condition=models.Q(dose__gt=0), name='dose_positive'),
        ]

    def __str__(self):
        return f"{self.user} {self.medicine.item_id} {self.day_of_week}/{self.time_of_day} x{self.dose}"


class DoseHistory(models.Model):
    """
    Actual intake recorded for one (user, item, date, time-of-day).

    Re-submitting the same cell overwrites the row.
    """
    class Status(models.TextChoices):
        COMPLETED = 'completed', _('Completed')
        MISSED = 'missed', _('Missed')
        PARTIAL = 'partial', _('Partial')

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='dose_history'
    )
    # Copy of the catalog id, kept after the Medicine row is deleted
    item_id = models.CharField(max_length=100)
    medicine = models.ForeignKey(
        Medicine,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='dose_history'
    )
    connect = models.CharField(max_length=50, db_index=True)
    time_of_day = models.CharField(max_length=10, choices=TimeOfDay.choices)
    dose_date = models.DateField(db_index=True)
    scheduled_dose = models.PositiveSmallIntegerField(default=0)
    actual_dose = models.PositiveSmallIntegerField(default=0)
    status = models.CharField(max_length=10, choices=Status.choices)
    completed_at = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-dose_date', 'time_of_day']
        verbose_name = "Dose History"
        verbose_name_plural = "Dose History"
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'item_id', 'dose_date', 'time_of_day'],
                name='unique_dose_per_cell'
            ),
        ]
        indexes = [
            models.Index(fields=['connect', 'dose_date'], name='dose_history_connect_date'),
        ]

    def __str__(self):
        return f"{self.user} {self.item_id} {self.dose_date} {self.time_of_day}: {self.status}"

    @property
    def shortfall(self):
        """Doses still owed against the scheduled amount."""
        return max(self.scheduled_dose - self.actual_dose, 0)


class DispenseLog(models.Model):
    """A dispense event against a slot, scheduled or manual."""
    class Reason(models.TextChoices):
        SCHEDULED = 'scheduled', _('Scheduled')
        GUIDANCE = 'guidance', _('Dose Guidance')
        MISSED = 'missed', _('Missed Dose')
        EMERGENCY = 'emergency', _('Emergency')
        EXTRA = 'extra', _('Extra Dose')

    slot_assignment = models.ForeignKey(
        SlotAssignment,
        on_delete=models.SET_NULL,
        null=True,
        related_name='dispense_logs'
    )
    connect = models.CharField(max_length=50, db_index=True)
    item_id = models.CharField(max_length=100)
    slot = models.PositiveSmallIntegerField()
    count = models.PositiveSmallIntegerField()
    reason = models.CharField(max_length=20, choices=Reason.choices, default=Reason.SCHEDULED)
    requested_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='dispense_requests'
    )
    remain_after = models.PositiveIntegerField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']
        verbose_name = "Dispense Log"
        verbose_name_plural = "Dispense Logs"

    def __str__(self):
        return f"{self.item_id} slot {self.slot} x{self.count} ({self.reason})"
