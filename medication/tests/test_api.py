from unittest import mock

from django.db import OperationalError
from django.db.models.query import QuerySet
from django.test import TestCase, override_settings
from rest_framework.test import APIClient

from medication.models import DoseHistory, SlotAssignment

from .helpers import PASSWORD, add_item, make_family


class CatalogAPITestCase(TestCase):
    def setUp(self):
        self.parent, (self.child,) = make_family()
        self.client = APIClient()

    def test_parent_adds_item(self):
        self.client.force_authenticate(user=self.parent)
        response = self.client.post('/api/medication/catalog/', {
            'item_id': 'omega3', 'name': 'Omega 3', 'kind': 'supplement',
        }, format='json')
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['permission'], 'own')

        response = self.client.post('/api/medication/catalog/', {
            'item_id': 'omega3', 'name': 'Omega 3',
        }, format='json')
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data['error'], 'conflict')

    def test_child_reads_but_cannot_write(self):
        add_item(self.parent, 'shared')
        add_item(self.parent, 'private', target_users=['someone-else'])
        self.client.force_authenticate(user=self.child)

        response = self.client.get('/api/medication/catalog/')
        self.assertEqual(response.status_code, 200)
        permissions = {item['item_id']: item['permission'] for item in response.data}
        self.assertEqual(permissions, {'shared': 'own', 'private': 'others'})

        response = self.client.post('/api/medication/catalog/', {'item_id': 'x', 'name': 'X'}, format='json')
        self.assertEqual(response.status_code, 403)

    def test_delete(self):
        add_item(self.parent, 'omega3')
        self.client.force_authenticate(user=self.parent)
        response = self.client.delete('/api/medication/catalog/omega3/')
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.data['slot_released'])

        response = self.client.get('/api/medication/catalog/omega3/')
        self.assertEqual(response.status_code, 404)


class SlotAPITestCase(TestCase):
    def setUp(self):
        self.parent, (self.child,) = make_family()
        add_item(self.parent, 'A')
        add_item(self.parent, 'B')
        self.client = APIClient()
        self.client.force_authenticate(user=self.parent)

    @override_settings(DISPENSER_SLOT_CAPACITY=1)
    def test_exhaustion_status(self):
        response = self.client.post('/api/medication/slots/', {'item_id': 'A', 'total': 10}, format='json')
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['slot'], 1)

        response = self.client.post('/api/medication/slots/', {'item_id': 'B', 'total': 10}, format='json')
        self.assertEqual(response.status_code, 507)
        self.assertEqual(response.data['error'], 'resource_exhausted')

    def test_dispense_and_logs(self):
        self.client.post('/api/medication/slots/', {'item_id': 'A', 'total': 2}, format='json')

        response = self.client.post('/api/medication/slots/A/dispense/', {'count': 2}, format='json')
        self.assertEqual(response.data['remain'], 0)

        response = self.client.post('/api/medication/slots/A/dispense/', {'count': 1}, format='json')
        self.assertEqual(response.status_code, 409)

        response = self.client.get('/api/medication/slots/logs/')
        self.assertEqual(len(response.data), 1)

    def test_child_quantity_write_is_ignored(self):
        self.client.post('/api/medication/slots/', {'item_id': 'A', 'total': 10}, format='json')
        self.client.force_authenticate(user=self.child)

        response = self.client.post('/api/medication/slots/A/quantity/', {'total': 50}, format='json')
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.data['updated'])
        self.assertEqual(SlotAssignment.objects.get().remain, 10)

    def test_child_cannot_load_another_members_item(self):
        from users.services import household
        household.create_child('child2', PASSWORD, 'Child2', self.parent.connect)
        add_item(self.parent, 'C', target_users=['child2'])
        self.client.force_authenticate(user=self.child)

        response = self.client.post('/api/medication/slots/', {'item_id': 'C', 'total': 500}, format='json')
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.data['error'], 'forbidden')
        self.assertFalse(SlotAssignment.objects.exists())

    def test_lock_timeout_returns_busy(self):
        timeout = OperationalError('canceling statement due to lock timeout')
        with mock.patch.object(QuerySet, 'select_for_update', side_effect=timeout):
            response = self.client.post('/api/medication/slots/', {'item_id': 'A', 'total': 10}, format='json')
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data['error'], 'busy')
        self.assertFalse(SlotAssignment.objects.exists())

    def test_quantity_ceiling(self):
        response = self.client.post(
            '/api/medication/slots/', {'item_id': 'A', 'total': 2147483648}, format='json'
        )
        self.assertEqual(response.status_code, 400)
        self.assertFalse(SlotAssignment.objects.exists())

    def test_inventory_of_paired_dispenser(self):
        from users.services import household
        household.pair_dispenser(self.parent, 'DISP-1')
        self.client.post('/api/medication/slots/', {'item_id': 'B', 'total': 7}, format='json')

        response = self.client.get('/api/medication/slots/inventory/DISP-1/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data, [{'item_id': 'B', 'name': 'B', 'total': 7, 'remain': 7, 'slot': 1}])

        response = self.client.get('/api/medication/slots/inventory/OTHER/')
        self.assertEqual(response.status_code, 404)


class ScheduleAndLedgerAPITestCase(TestCase):
    def setUp(self):
        self.parent, (self.child,) = make_family()
        add_item(self.parent, 'vitamin')
        self.client = APIClient()

    def test_schedule_round_trip(self):
        self.client.force_authenticate(user=self.parent)
        response = self.client.post('/api/medication/schedules/', {
            'item_id': 'vitamin',
            'user_id': 'child1',
            'entries': [
                {'day_of_week': 'mon', 'time_of_day': 'morning', 'dose': 2},
                {'day_of_week': 'thu', 'time_of_day': 'evening'},
            ],
            'total': '30',
        }, format='json')
        self.assertEqual(response.status_code, 201)
        self.assertTrue(response.data['quantity_updated'])

        response = self.client.get('/api/medication/schedules/', {'item_id': 'vitamin', 'user_id': 'child1'})
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data['grid']['thu']['evening'])
        self.assertEqual(response.data['doses']['morning'], 2)
        self.assertEqual(response.data['slot']['remain'], 30)

    def test_dispenser_schedule_by_date(self):
        from users.services import household
        household.pair_dispenser(self.parent, 'DISP-1')
        self.client.force_authenticate(user=self.parent)
        self.client.post('/api/medication/schedules/', {
            'item_id': 'vitamin', 'user_id': 'child1',
            'entries': [{'day_of_week': 'mon', 'time_of_day': 'morning', 'dose': 2}],
        }, format='json')

        response = self.client.get('/api/medication/schedules/dispenser/DISP-1/', {'date': '2024-01-15'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data, [{
            'user_id': 'child1', 'user_name': 'Child1', 'item_id': 'vitamin',
            'medicine_name': 'Vitamin', 'time_of_day': 'morning', 'dose': 2,
        }])

        response = self.client.get('/api/medication/schedules/dispenser/DISP-1/', {'date': 'not-a-date'})
        self.assertEqual(response.status_code, 400)
        response = self.client.get('/api/medication/schedules/dispenser/DISP-2/')
        self.assertEqual(response.status_code, 404)

    def test_schedule_for_unknown_member(self):
        self.client.force_authenticate(user=self.parent)
        response = self.client.get('/api/medication/schedules/', {'item_id': 'vitamin', 'user_id': 'ghost'})
        self.assertEqual(response.status_code, 404)

    def test_complete_and_list(self):
        self.client.force_authenticate(user=self.child)
        response = self.client.post('/api/medication/dose-history/complete/', {
            'item_id': 'vitamin', 'time_of_day': 'morning', 'actual_dose': 1,
        }, format='json')
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['status'], 'completed')

        response = self.client.get('/api/medication/dose-history/')
        self.assertEqual(len(response.data), 1)
        self.assertEqual(DoseHistory.objects.get().user, self.child)

    def test_child_cannot_record_for_parent(self):
        self.client.force_authenticate(user=self.child)
        response = self.client.post('/api/medication/dose-history/complete/', {
            'user_id': 'parent1', 'item_id': 'vitamin', 'time_of_day': 'morning', 'actual_dose': 1,
        }, format='json')
        self.assertEqual(response.status_code, 403)

    def test_weekly_requires_start_date(self):
        self.client.force_authenticate(user=self.child)
        response = self.client.get('/api/medication/dose-history/weekly/')
        self.assertEqual(response.status_code, 400)

        response = self.client.get('/api/medication/dose-history/weekly/', {'start_date': '2024-01-15'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['end_date'], '2024-01-21')

    def test_family_detailed(self):
        self.client.force_authenticate(user=self.parent)
        response = self.client.get('/api/medication/dose-history/family-detailed/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['summary']['member_count'], 2)


class AgeCheckAPITestCase(TestCase):
    def setUp(self):
        self.parent, (self.child,) = make_family(child_age=5)
        add_item(self.parent, 'syrup', warning=True, description='만 6세 이하 복용 금지')
        self.client = APIClient()
        self.client.force_authenticate(user=self.parent)

    def test_refused_age(self):
        response = self.client.get('/api/medication/catalog/syrup/age-check/', {'user_id': 'child1'})
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.data['allowed'])
        self.assertTrue(response.data['basic']['is_child'])

    def test_age_not_set(self):
        response = self.client.get('/api/medication/catalog/syrup/age-check/')
        self.assertEqual(response.status_code, 400)
