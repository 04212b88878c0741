from datetime import date, timedelta

from django.test import TestCase

from dosemate.exceptions import Forbidden, InvalidArgument, NotFound
from medication.models import DoseHistory
from medication.services import catalog, ledger, schedule
from medication.services.ledger import percent
from users.services import household

from .helpers import PASSWORD, add_item, make_family, monday_at

MONDAY = date(2024, 1, 15)


def cells(*times, day='mon', dose='1'):
    return [{'day_of_week': day, 'time_of_day': t, 'dose': dose} for t in times]


class PercentTestCase(TestCase):
    def test_half_up(self):
        self.assertEqual(percent(1, 3), 33)
        self.assertEqual(percent(2, 3), 67)
        self.assertEqual(percent(1, 8), 13)
        self.assertEqual(percent(3, 3), 100)

    def test_zero_whole(self):
        self.assertEqual(percent(0, 0), 0)


class CompleteDoseTestCase(TestCase):
    def setUp(self):
        self.parent, (self.child,) = make_family()
        add_item(self.parent, 'vitamin')
        schedule.save_schedule('vitamin', self.child.username, self.parent, cells('morning', dose='2'))
        self.clock = monday_at(8)

    def test_skipped_morning_dose(self):
        history = ledger.complete_dose(self.child.username, 'vitamin', 'morning', 0, clock=self.clock)
        self.assertEqual(history.status, DoseHistory.Status.MISSED)
        self.assertEqual(history.scheduled_dose, 2)

        progress = ledger.get_today_progress(self.child.username, clock=self.clock)
        self.assertEqual(progress, {'scheduled': 1, 'completed': 0, 'missed': 1, 'completion_rate': 0})

    def test_repeat_call_overwrites(self):
        ledger.complete_dose(self.child.username, 'vitamin', 'morning', 0, clock=self.clock)
        history = ledger.complete_dose(self.child.username, 'vitamin', 'morning', 2, notes='late', clock=self.clock)

        self.assertEqual(DoseHistory.objects.count(), 1)
        self.assertEqual(history.status, DoseHistory.Status.COMPLETED)
        self.assertEqual(history.actual_dose, 2)
        self.assertEqual(history.notes, 'late')

    def test_unscheduled_bucket_uses_actual_dose(self):
        history = ledger.complete_dose(self.child.username, 'vitamin', 'evening', 3, clock=self.clock)
        self.assertEqual(history.scheduled_dose, 3)
        self.assertEqual(history.shortfall, 0)

    def test_partial_intake_has_shortfall(self):
        history = ledger.complete_dose(self.child.username, 'vitamin', 'morning', 1, clock=self.clock)
        self.assertEqual(history.status, DoseHistory.Status.COMPLETED)
        self.assertEqual(history.shortfall, 1)

    def test_invalid_input(self):
        with self.assertRaises(InvalidArgument):
            ledger.complete_dose(self.child.username, 'vitamin', 'night', 1, clock=self.clock)
        with self.assertRaises(InvalidArgument):
            ledger.complete_dose(self.child.username, 'vitamin', 'morning', -1, clock=self.clock)
        with self.assertRaises(NotFound):
            ledger.complete_dose(self.child.username, 'missing', 'morning', 1, clock=self.clock)
        with self.assertRaises(NotFound):
            ledger.complete_dose('nobody', 'vitamin', 'morning', 1, clock=self.clock)
        with self.assertRaises(InvalidArgument):
            ledger.complete_dose(self.child.username, 'vitamin', 'morning', 40000, clock=self.clock)
        self.assertFalse(DoseHistory.objects.exists())

    def test_item_of_another_member_is_refused(self):
        household.create_child('child2', PASSWORD, 'Child2', self.parent.connect)
        add_item(self.parent, 'inhaler', target_users=['child2'])

        with self.assertRaises(Forbidden):
            ledger.complete_dose(self.child.username, 'inhaler', 'morning', 1, clock=self.clock)
        history = ledger.complete_dose('child2', 'inhaler', 'morning', 1, clock=self.clock)
        self.assertEqual(history.user.username, 'child2')
        self.assertEqual(DoseHistory.objects.count(), 1)

    def test_history_survives_catalog_delete(self):
        ledger.complete_dose(self.child.username, 'vitamin', 'morning', 2, clock=self.clock)
        catalog.delete_item(self.parent, 'vitamin')

        history = DoseHistory.objects.get()
        self.assertEqual(history.item_id, 'vitamin')
        self.assertIsNone(history.medicine)

    def test_history_order(self):
        for time_of_day in ('evening', 'morning', 'afternoon'):
            ledger.complete_dose(self.child.username, 'vitamin', time_of_day, 1, clock=self.clock)
        DoseHistory.objects.create(
            user=self.child, item_id='vitamin', connect=self.child.connect, time_of_day='evening',
            dose_date=MONDAY - timedelta(days=1), scheduled_dose=1, actual_dose=1,
            status=DoseHistory.Status.COMPLETED,
        )

        rows = ledger.get_dose_history(self.child.username)
        self.assertEqual(
            [(r.dose_date, r.time_of_day) for r in rows],
            [(MONDAY, 'morning'), (MONDAY, 'afternoon'), (MONDAY, 'evening'), (MONDAY - timedelta(days=1), 'evening')]
        )


class StatsTestCase(TestCase):
    def setUp(self):
        self.parent, (self.child,) = make_family()
        self.connect = self.parent.connect
        add_item(self.parent, 'vitamin')
        schedule.save_schedule(
            'vitamin', self.child.username, self.parent, cells('morning', 'afternoon', 'evening')
        )

    def _record(self, day, time_of_day, status):
        DoseHistory.objects.create(
            user=self.child, item_id='vitamin', connect=self.connect, time_of_day=time_of_day,
            dose_date=day, scheduled_dose=1, actual_dose=1 if status == 'completed' else 0, status=status,
        )

    def test_weekly_stats(self):
        self._record(MONDAY, 'morning', 'completed')
        self._record(MONDAY, 'evening', 'missed')
        self._record(MONDAY + timedelta(days=6), 'morning', 'completed')
        self._record(MONDAY + timedelta(days=7), 'morning', 'completed')

        stats = ledger.get_weekly_stats(self.child.username, MONDAY)
        self.assertEqual(stats['total_scheduled'], 3)
        self.assertEqual(stats['total_completed'], 2)
        self.assertEqual(stats['missed_doses'], 1)
        self.assertEqual(stats['completion_rate'], 67)
        self.assertEqual(len(stats['daily_stats']), 7)
        self.assertEqual(stats['daily_stats'][0]['completion_rate'], 50)
        self.assertEqual(stats['daily_stats'][1]['scheduled'], 0)

    def test_family_stats(self):
        ledger.complete_dose(self.child.username, 'vitamin', 'morning', 1, clock=monday_at(9))
        ledger.complete_dose(self.parent.username, 'vitamin', 'morning', 0, clock=monday_at(9))

        stats = ledger.get_family_stats(self.connect, clock=monday_at(9))
        self.assertEqual(stats, {
            'total_scheduled': 2,
            'total_completed': 1,
            'total_missed': 1,
            'completion_rate': 50,
            'member_count': 2,
        })

    def test_detailed_stats_mark_past_buckets_missed(self):
        clock = monday_at(20)
        ledger.complete_dose(self.child.username, 'vitamin', 'morning', 1, clock=clock)

        stats = ledger.get_detailed_family_stats(self.connect, clock=clock)
        buckets = {row['time_of_day']: row for row in stats['time_based_stats']}

        self.assertEqual((buckets['morning']['completed'], buckets['morning']['remaining']), (1, 0))
        self.assertEqual((buckets['afternoon']['missed'], buckets['afternoon']['remaining']), (1, 0))
        self.assertEqual((buckets['evening']['missed'], buckets['evening']['remaining']), (0, 1))
        self.assertEqual(stats['summary'], {
            'total_scheduled': 3,
            'total_completed': 1,
            'total_missed': 1,
            'total_remaining': 1,
            'completion_rate': 33,
            'member_count': 2,
        })

        child_stats = next(m for m in stats['member_stats'] if m['user_id'] == self.child.username)
        self.assertEqual(child_stats['missed'], 1)
        self.assertEqual(child_stats['remaining'], 1)

    def test_completion_status(self):
        ledger.complete_dose(self.child.username, 'vitamin', 'morning', 1, clock=monday_at(9))
        ledger.complete_dose(self.child.username, 'vitamin', 'afternoon', 0, clock=monday_at(13))

        status = ledger.get_today_completion_status(self.child.username, 'vitamin', clock=monday_at(14))
        self.assertEqual(status['completion_status'], {'morning': True, 'afternoon': False, 'evening': False})

        rows = ledger.get_today_completion_status(self.child.username, clock=monday_at(14))
        self.assertEqual(rows, [{
            'item_id': 'vitamin', 'date': '2024-01-15', 'morning': True, 'afternoon': False, 'evening': False,
        }])
