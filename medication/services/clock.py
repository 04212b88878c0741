from django.utils import timezone

from ..models import TIME_OF_DAY_HOURS, WEEKDAYS


class SystemClock:
    """Wall clock in the project's ``TIME_ZONE``."""

    def now(self):
        return timezone.localtime()

    def today(self):
        return self.now().date()

    def hour(self):
        return self.now().hour

    def weekday(self):
        """Today's day-of-week code ('mon' .. 'sun')."""
        return WEEKDAYS[self.today().weekday()]


class FixedClock(SystemClock):
    """Clock pinned to a given aware datetime. Used by tests."""

    def __init__(self, moment):
        if timezone.is_naive(moment):
            moment = timezone.make_aware(moment)
        self.moment = moment

    def now(self):
        return timezone.localtime(self.moment)


system_clock = SystemClock()


def get_clock(clock=None):
    return clock or system_clock


def time_of_day_for_hour(hour):
    """Map an hour to its time-of-day bucket, or None between 0 and 5."""
    for bucket, (start, end) in TIME_OF_DAY_HOURS.items():
        if start <= hour <= end:
            return bucket
    return None


def is_bucket_past(bucket, hour):
    """A bucket is past once the hour is beyond its end hour."""
    return hour > TIME_OF_DAY_HOURS[bucket][1]


def weekday_code(day):
    return WEEKDAYS[day.weekday()]
