from django.test import TestCase, override_settings

from dosemate.exceptions import Forbidden, InvalidArgument, NotFound, ResourceExhausted
from medication.models import ScheduleEntry, SlotAssignment
from medication.services import schedule
from medication.services.schedule import resolve_dose
from medication.services.slots import slot_allocator

from .helpers import add_item, make_family, monday_at


def cells(*pairs, dose=None):
    return [
        {'day_of_week': day, 'time_of_day': time_of_day, 'dose': dose}
        for day, time_of_day in pairs
    ]


class ResolveDoseTestCase(TestCase):
    def test_precedence(self):
        self.assertEqual(resolve_dose(3, 2, 4, 5), 3)
        self.assertEqual(resolve_dose(None, 2, 4, 5), 2)
        self.assertEqual(resolve_dose(None, None, 4, 5), 4)
        self.assertEqual(resolve_dose(None, None, None, 5), 5)
        self.assertEqual(resolve_dose(), 1)

    def test_zero_counts_as_unset(self):
        self.assertEqual(resolve_dose(0, 0, 0, 2), 2)


class SaveScheduleTestCase(TestCase):
    def setUp(self):
        self.parent, (self.child, self.sibling) = make_family(children=('child1', 'child2'))
        self.connect = self.parent.connect
        add_item(self.parent, 'vitamin')

    def test_save_then_get(self):
        entries = [
            {'day_of_week': 'mon', 'time_of_day': 'morning', 'dose': '2'},
            {'day_of_week': 'wed', 'time_of_day': 'evening', 'dose': 1},
        ]
        result = schedule.save_schedule('vitamin', self.child.username, self.parent, entries)
        self.assertEqual(result['created'], 2)

        saved = schedule.get_schedule('vitamin', self.child.username)
        self.assertTrue(saved['scheduled'])
        self.assertTrue(saved['grid']['mon']['morning'])
        self.assertTrue(saved['grid']['wed']['evening'])
        self.assertFalse(saved['grid']['mon']['evening'])
        self.assertEqual(saved['doses'], {'morning': 2, 'afternoon': 0, 'evening': 1})
        self.assertEqual(
            [(e['day_of_week'], e['time_of_day'], e['dose']) for e in saved['entries']],
            [('mon', 'morning', 2), ('wed', 'evening', 1)]
        )

    def test_save_replaces_previous_entries(self):
        schedule.save_schedule('vitamin', self.child.username, self.parent, cells(('mon', 'morning'), ('tue', 'morning')))
        schedule.save_schedule('vitamin', self.child.username, self.parent, cells(('fri', 'evening')))

        rows = ScheduleEntry.objects.filter(user=self.child)
        self.assertEqual([(r.day_of_week, r.time_of_day) for r in rows], [('fri', 'evening')])

    def test_unscheduled_item_yields_empty_grid(self):
        saved = schedule.get_schedule('vitamin', self.child.username)
        self.assertFalse(saved['scheduled'])
        self.assertFalse(any(v for day in saved['grid'].values() for v in day.values()))
        self.assertEqual(saved['doses'], {'morning': 0, 'afternoon': 0, 'evening': 0})
        self.assertIsNone(saved['slot'])

    def test_dose_inherited_from_other_member(self):
        schedule.save_schedule('vitamin', self.sibling.username, self.parent, cells(('mon', 'morning'), dose='3'))
        schedule.save_schedule('vitamin', self.child.username, self.parent, cells(('tue', 'evening')))

        self.assertEqual(ScheduleEntry.objects.get(user=self.child).dose, 3)

    def test_uniform_dose_beats_inherited(self):
        schedule.save_schedule('vitamin', self.sibling.username, self.parent, cells(('mon', 'morning'), dose='3'))
        schedule.save_schedule(
            'vitamin', self.child.username, self.parent, cells(('tue', 'evening')), uniform_dose='2'
        )
        self.assertEqual(ScheduleEntry.objects.get(user=self.child).dose, 2)

    def test_own_previous_dose_is_reused(self):
        schedule.save_schedule('vitamin', self.child.username, self.parent, cells(('mon', 'morning'), dose='4'))
        schedule.save_schedule('vitamin', self.child.username, self.parent, cells(('tue', 'morning'), dose='0'))
        self.assertEqual(ScheduleEntry.objects.get(user=self.child).dose, 4)

    def test_default_dose(self):
        schedule.save_schedule('vitamin', self.child.username, self.parent, cells(('mon', 'morning')))
        self.assertEqual(ScheduleEntry.objects.get(user=self.child).dose, 1)

    def test_malformed_values(self):
        with self.assertRaises(InvalidArgument):
            schedule.save_schedule('vitamin', self.child.username, self.parent, cells(('funday', 'morning')))
        with self.assertRaises(InvalidArgument):
            schedule.save_schedule('vitamin', self.child.username, self.parent, cells(('mon', 'night')))
        with self.assertRaises(InvalidArgument):
            schedule.save_schedule('vitamin', self.child.username, self.parent, cells(('mon', 'morning'), dose='-1'))
        with self.assertRaises(InvalidArgument):
            schedule.save_schedule('vitamin', self.child.username, self.parent, cells(('mon', 'morning')), total='lots')

    def test_values_past_column_limits(self):
        with self.assertRaises(InvalidArgument):
            schedule.save_schedule('vitamin', self.child.username, self.parent, cells(('mon', 'morning'), dose='40000'))
        with self.assertRaises(InvalidArgument):
            schedule.save_schedule(
                'vitamin', self.child.username, self.parent, cells(('mon', 'morning')), uniform_dose='32768'
            )
        with self.assertRaises(InvalidArgument):
            schedule.save_schedule(
                'vitamin', self.child.username, self.parent, cells(('mon', 'morning')), total='9999999999'
            )
        self.assertFalse(ScheduleEntry.objects.exists())

    def test_unknown_item_or_user(self):
        with self.assertRaises(NotFound):
            schedule.save_schedule('missing', self.child.username, self.parent, [])
        with self.assertRaises(NotFound):
            schedule.save_schedule('vitamin', 'nobody', self.parent, [])


class ScheduleAuthorityTestCase(TestCase):
    def setUp(self):
        self.parent, (self.child, self.sibling) = make_family(children=('child1', 'child2'))
        self.connect = self.parent.connect
        add_item(self.parent, 'vitamin')
        add_item(self.parent, 'private', target_users=[self.child.username])
        add_item(self.parent, 'siblings', target_users=[self.sibling.username])
        slot_allocator.assign(self.connect, 'vitamin', 10)

    def test_child_cannot_change_shared_total(self):
        result = schedule.save_schedule(
            'vitamin', self.child.username, self.child, cells(('mon', 'morning')), total='50'
        )
        self.assertTrue(result['success'])
        self.assertFalse(result['quantity_updated'])
        self.assertEqual(SlotAssignment.objects.get(medicine__item_id='vitamin').remain, 10)
        self.assertEqual(ScheduleEntry.objects.filter(user=self.child).count(), 1)

    def test_parent_changes_total(self):
        result = schedule.save_schedule(
            'vitamin', self.child.username, self.parent, cells(('mon', 'morning')), total='50'
        )
        self.assertTrue(result['quantity_updated'])
        assignment = SlotAssignment.objects.get(medicine__item_id='vitamin')
        self.assertEqual((assignment.total, assignment.remain), (50, 50))

    def test_sole_owner_child_sets_total_and_gets_slot(self):
        result = schedule.save_schedule(
            'private', self.child.username, self.child, cells(('mon', 'morning')), total='20'
        )
        self.assertTrue(result['quantity_updated'])
        self.assertEqual(result['slot'], 2)

    def test_child_cannot_edit_sibling(self):
        with self.assertRaises(Forbidden):
            schedule.save_schedule('vitamin', self.sibling.username, self.child, cells(('mon', 'morning')))

    def test_child_cannot_schedule_others_item(self):
        with self.assertRaises(Forbidden):
            schedule.save_schedule('siblings', self.child.username, self.child, cells(('mon', 'morning')))

    def test_other_household_is_forbidden(self):
        from users.services import household
        stranger, _ = household.create_parent('parent2', 'Str0ng-pass-123', 'Stranger')
        with self.assertRaises(Forbidden):
            schedule.save_schedule('vitamin', self.child.username, stranger, cells(('mon', 'morning')))

    @override_settings(DISPENSER_SLOT_CAPACITY=1)
    def test_slot_exhaustion_rolls_back_schedule(self):
        schedule.save_schedule('vitamin', self.child.username, self.parent, cells(('mon', 'morning')))
        with self.assertRaises(ResourceExhausted):
            schedule.save_schedule(
                'private', self.child.username, self.parent, cells(('tue', 'morning')), total='5'
            )
        self.assertFalse(ScheduleEntry.objects.filter(medicine__item_id='private').exists())
        self.assertEqual(ScheduleEntry.objects.filter(medicine__item_id='vitamin').count(), 1)


class AgeGateTestCase(TestCase):
    def setUp(self):
        self.parent, (self.child,) = make_family(child_age=5)
        add_item(self.parent, 'syrup', warning=True, description='만 6세 이하의 어린이는 복용하지 말 것')
        add_item(self.parent, 'tablet', warning=True, description='Not for use under 4.')

    def test_contraindicated_age_is_refused(self):
        with self.assertRaises(Forbidden):
            schedule.save_schedule('syrup', self.child.username, self.parent, cells(('mon', 'morning')))
        self.assertFalse(ScheduleEntry.objects.exists())

    def test_allowed_age_returns_warnings(self):
        result = schedule.save_schedule('tablet', self.child.username, self.parent, cells(('mon', 'morning')))
        self.assertTrue(result['warnings'])

    def test_parent_is_not_age_gated(self):
        self.parent.age = 4
        self.parent.save()
        result = schedule.save_schedule('syrup', self.parent.username, self.parent, cells(('mon', 'morning')))
        self.assertEqual(result['warnings'], [])


class ExpectedDoseTestCase(TestCase):
    def setUp(self):
        self.parent, (self.child,) = make_family()
        add_item(self.parent, 'vitamin')
        schedule.save_schedule('vitamin', self.child.username, self.parent, [
            {'day_of_week': 'mon', 'time_of_day': 'morning', 'dose': '2'},
            {'day_of_week': 'mon', 'time_of_day': 'evening', 'dose': '1'},
            {'day_of_week': 'tue', 'time_of_day': 'afternoon', 'dose': '5'},
        ])

    def test_current_bucket(self):
        result = schedule.get_expected_dose_now('vitamin', self.child.username, clock=monday_at(8))
        self.assertEqual(result, {
            'dose': 2,
            'time_slot': 'morning',
            'next_dose': {'time_slot': 'evening', 'dose': 1},
        })

    def test_bucket_without_dose(self):
        result = schedule.get_expected_dose_now('vitamin', self.child.username, clock=monday_at(14))
        self.assertEqual(result['dose'], 0)
        self.assertEqual(result['time_slot'], 'afternoon')
        self.assertEqual(result['next_dose'], {'time_slot': 'evening', 'dose': 1})

    def test_before_morning(self):
        result = schedule.get_expected_dose_now('vitamin', self.child.username, clock=monday_at(3))
        self.assertIsNone(result['time_slot'])
        self.assertEqual(result['dose'], 0)
        self.assertEqual(result['next_dose'], {'time_slot': 'morning', 'dose': 2})

    def test_last_bucket_has_no_next(self):
        result = schedule.get_expected_dose_now('vitamin', self.child.username, clock=monday_at(20))
        self.assertEqual(result['dose'], 1)
        self.assertIsNone(result['next_dose'])


class TodayScheduleTestCase(TestCase):
    def setUp(self):
        self.parent, (self.child,) = make_family()
        add_item(self.parent, 'vitamin')
        schedule.save_schedule('vitamin', self.child.username, self.parent, cells(('mon', 'morning'), ('mon', 'evening')))
        schedule.save_schedule('vitamin', self.parent.username, self.parent, cells(('tue', 'morning')))

    def test_household_today(self):
        result = schedule.get_today_schedule(self.parent.connect, clock=monday_at(9))
        self.assertEqual(result['weekday'], 'mon')
        self.assertEqual(
            [(s['user_id'], s['time_of_day']) for s in result['schedules']],
            [('child1', 'morning'), ('child1', 'evening')]
        )
        self.assertFalse(any(s['is_completed'] for s in result['schedules']))

    def test_kit_today(self):
        from users.services import household
        household.pair_daily_kit(self.child, 'KIT-1')

        result = schedule.get_today_schedule_for_kit('KIT-1', clock=monday_at(9))
        self.assertEqual(result['user_id'], 'child1')
        self.assertEqual(len(result['schedule']['morning']), 1)
        self.assertEqual(result['schedule']['afternoon'], [])

        with self.assertRaises(NotFound):
            schedule.get_today_schedule_for_kit('KIT-2', clock=monday_at(9))

    def test_inactive_item_is_skipped(self):
        from datetime import date
        from medication.services import catalog
        catalog.update_item(self.parent, 'vitamin', end_date=date(2024, 1, 1))

        result = schedule.get_today_schedule(self.parent.connect, clock=monday_at(9))
        self.assertEqual(result['schedules'], [])

    def test_family_summary(self):
        slot_allocator.assign(self.parent.connect, 'vitamin', 3)
        summary = schedule.get_family_summary(self.parent.connect, clock=monday_at(9))

        by_user = {row['user_id']: row for row in summary}
        self.assertEqual(by_user['child1']['today_total'], 2)
        self.assertEqual(by_user['parent1']['today_total'], 0)
        self.assertEqual(by_user['parent1']['active_items'], 1)
        self.assertEqual(by_user['child1']['upcoming_refills'], 1)

    def test_dispenser_schedule_for_a_date(self):
        from datetime import date
        from users.services import household
        household.pair_dispenser(self.parent, 'DISP-1')

        monday = schedule.get_schedules_for_dispenser('DISP-1', date(2024, 1, 15))
        self.assertEqual(
            [(s['user_id'], s['user_name'], s['medicine_name'], s['time_of_day'], s['dose']) for s in monday],
            [('child1', 'Child1', 'Vitamin', 'morning', 1), ('child1', 'Child1', 'Vitamin', 'evening', 1)]
        )

        tuesday = schedule.get_schedules_for_dispenser('DISP-1', date(2024, 1, 16))
        self.assertEqual([(s['user_id'], s['item_id']) for s in tuesday], [('parent1', 'vitamin')])

        self.assertEqual(schedule.get_schedules_for_dispenser('DISP-1', date(2024, 1, 17)), [])
        with self.assertRaises(NotFound):
            schedule.get_schedules_for_dispenser('DISP-2', date(2024, 1, 15))
