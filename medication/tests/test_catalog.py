from datetime import date

from django.test import TestCase

from audit.models import AuditEvent
from dosemate.exceptions import Conflict, Forbidden, InvalidArgument, NotFound
from medication.models import Medicine, ScheduleEntry, SlotAssignment
from medication.services import catalog, schedule
from medication.services.catalog import PERMISSION_OTHERS, PERMISSION_OWN
from medication.services.slots import slot_allocator

from .helpers import add_item, make_family


class AddItemTestCase(TestCase):
    def setUp(self):
        self.parent, (self.child,) = make_family()

    def test_parent_adds_item(self):
        medicine = add_item(self.parent, 'omega3', 'Omega 3', kind=Medicine.Kind.SUPPLEMENT)
        self.assertEqual(medicine.connect, self.parent.connect)
        self.assertTrue(medicine.is_shared)
        self.assertTrue(AuditEvent.objects.filter(resource_type='medicine', resource_id='omega3').exists())

    def test_duplicate_item_id(self):
        add_item(self.parent, 'omega3')
        with self.assertRaises(Conflict):
            add_item(self.parent, 'omega3')

    def test_same_item_id_in_other_household(self):
        from users.services import household
        other, _ = household.create_parent('parent2', 'Str0ng-pass-123', 'Other')
        add_item(self.parent, 'omega3')
        add_item(other, 'omega3')
        self.assertEqual(Medicine.objects.filter(item_id='omega3').count(), 2)

    def test_child_cannot_add(self):
        with self.assertRaises(Forbidden):
            add_item(self.child, 'candy')

    def test_empty_target_users_means_shared(self):
        medicine = add_item(self.parent, 'omega3', target_users=[])
        self.assertIsNone(medicine.target_users)

    def test_window_validation(self):
        with self.assertRaises(InvalidArgument):
            add_item(self.parent, 'omega3', start_date=date(2024, 2, 1), end_date=date(2024, 1, 1))


class PermissionTestCase(TestCase):
    def setUp(self):
        self.parent, (self.child, self.sibling) = make_family(children=('child1', 'child2'))
        add_item(self.parent, 'shared')
        add_item(self.parent, 'for-child', target_users=[self.child.username])

    def test_permissions_per_user(self):
        child_view = dict((m.item_id, p) for m, p in catalog.list_for_user(self.child))
        sibling_view = dict((m.item_id, p) for m, p in catalog.list_for_user(self.sibling))
        parent_view = dict((m.item_id, p) for m, p in catalog.list_for_user(self.parent))

        self.assertEqual(child_view, {'shared': PERMISSION_OWN, 'for-child': PERMISSION_OWN})
        self.assertEqual(sibling_view, {'shared': PERMISSION_OWN, 'for-child': PERMISSION_OTHERS})
        self.assertEqual(parent_view, {'shared': PERMISSION_OWN, 'for-child': PERMISSION_OWN})

    def test_search(self):
        self.assertEqual([m.item_id for m in catalog.search_by_name(self.parent.connect, 'CHI')], ['for-child'])


class UpdateItemTestCase(TestCase):
    def setUp(self):
        self.parent, (self.child,) = make_family()
        add_item(self.parent, 'omega3')

    def test_update_fields(self):
        medicine = catalog.update_item(self.parent, 'omega3', name='Omega-3 Forte', warning=True, bogus=1)
        self.assertEqual(medicine.name, 'Omega-3 Forte')
        self.assertTrue(Medicine.objects.get(item_id='omega3').warning)

    def test_child_cannot_update(self):
        with self.assertRaises(Forbidden):
            catalog.update_item(self.child, 'omega3', name='x')

    def test_unknown_item(self):
        with self.assertRaises(NotFound):
            catalog.update_item(self.parent, 'missing', name='x')


class DeleteItemTestCase(TestCase):
    def setUp(self):
        self.parent, (self.child,) = make_family()
        add_item(self.parent, 'omega3')
        add_item(self.parent, 'iron')
        slot_allocator.assign(self.parent.connect, 'omega3', 10)
        slot_allocator.assign(self.parent.connect, 'iron', 10)
        entries = [{'day_of_week': 'mon', 'time_of_day': 'morning'}, {'day_of_week': 'tue', 'time_of_day': 'evening'}]
        schedule.save_schedule('omega3', self.child.username, self.parent, entries)
        schedule.save_schedule('iron', self.child.username, self.parent, entries)

    def test_delete_removes_dependents(self):
        result = catalog.delete_item(self.parent, 'omega3')
        self.assertEqual(result, {'schedules_deleted': 2, 'slot_released': True})

        self.assertFalse(Medicine.objects.filter(item_id='omega3').exists())
        self.assertFalse(ScheduleEntry.objects.filter(medicine__item_id='omega3').exists())
        self.assertEqual(slot_allocator.slot_map(self.parent.connect), {2: 'iron'})
        self.assertEqual(ScheduleEntry.objects.count(), 2)

    def test_freed_slot_is_reused(self):
        catalog.delete_item(self.parent, 'omega3')
        add_item(self.parent, 'zinc')
        self.assertEqual(slot_allocator.assign(self.parent.connect, 'zinc', 5), 1)

    def test_child_cannot_delete(self):
        with self.assertRaises(Forbidden):
            catalog.delete_item(self.child, 'omega3')
        self.assertEqual(SlotAssignment.objects.count(), 2)
