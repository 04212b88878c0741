from rest_framework import viewsets, mixins, status, filters
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from django.utils.dateparse import parse_date
from django_filters.rest_framework import DjangoFilterBackend

from dosemate.exceptions import Forbidden, InvalidArgument, NotFound
from users.models import User
from users.permissions import IsHouseholdMember
from users.services.household import get_household_member

from .filters import DoseHistoryFilter
from .models import DispenseLog, DoseHistory, SlotAssignment
from .permissions import CanManageCatalog
from .serializers import (
    DispenseLogSerializer, DispenseSerializer, DoseCompleteSerializer, DoseHistorySerializer,
    MedicineSerializer, MedicineWriteSerializer, QuantitySerializer, ScheduleSaveSerializer,
    SlotAssignmentSerializer, SlotAssignSerializer
)
from .services import catalog, drug_lookup, ledger, schedule
from .services.age_validation import get_basic_age_validation, validate_age
from .services.clock import get_clock
from .services.slots import is_sole_owner, slot_allocator


def _date_param(request, name, required=False):
    value = request.query_params.get(name)
    if not value:
        if required:
            raise InvalidArgument(f"{name} is required (YYYY-MM-DD).")
        return None
    parsed = parse_date(value)
    if parsed is None:
        raise InvalidArgument(f"{name} must be a date in YYYY-MM-DD format.")
    return parsed


class MedicineViewSet(viewsets.ViewSet):
    """API viewset for the household catalog of medicines and supplements."""
    permission_classes = [IsAuthenticated, IsHouseholdMember, CanManageCatalog]
    lookup_field = 'item_id'
    lookup_value_regex = '[^/]+'

    def _serialize(self, items_with_permission, many=True):
        permissions = {medicine.item_id: permission for medicine, permission in items_with_permission}
        medicines = [medicine for medicine, _ in items_with_permission]
        data = MedicineSerializer(medicines, many=True, context={'permissions': permissions}).data
        return data if many else data[0]

    def list(self, request):
        """Catalog items with the caller's own/others permission. Filter with ?kind=."""
        items = catalog.list_for_user(request.user, kind=request.query_params.get('kind'))
        return Response(self._serialize(items))

    def create(self, request):
        serializer = MedicineWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        medicine = catalog.add_item(request.user, **serializer.validated_data)
        return Response(
            self._serialize([(medicine, catalog.permission_for(medicine, request.user))], many=False),
            status=status.HTTP_201_CREATED
        )

    def retrieve(self, request, item_id=None):
        medicine = catalog.get_item(request.user.connect, item_id)
        return Response(self._serialize([(medicine, catalog.permission_for(medicine, request.user))], many=False))

    def partial_update(self, request, item_id=None):
        serializer = MedicineWriteSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        changes = dict(serializer.validated_data)
        changes.pop('item_id', None)
        medicine = catalog.update_item(request.user, item_id, **changes)
        return Response(self._serialize([(medicine, catalog.permission_for(medicine, request.user))], many=False))

    def destroy(self, request, item_id=None):
        """Delete an item together with its schedules and slot."""
        result = catalog.delete_item(request.user, item_id)
        return Response({"detail": f"Item {item_id} deleted", **result})

    @action(detail=False, methods=['get'])
    def search(self, request):
        """Search the household catalog by name (?q=)."""
        medicines = catalog.search_by_name(request.user.connect, request.query_params.get('q', ''))
        return Response(self._serialize([(m, catalog.permission_for(m, request.user)) for m in medicines]))

    @action(detail=True, methods=['get'], url_path='age-check')
    def age_check(self, request, item_id=None):
        """Whether a member (?user_id=, default caller) may take the item at their age."""
        medicine = catalog.get_item(request.user.connect, item_id)
        member = get_household_member(request.user, request.query_params.get('user_id'))
        if member.age is None:
            raise InvalidArgument(f"Age of {member.username} is not set.")
        return Response({
            'item_id': medicine.item_id,
            'user_id': member.username,
            'basic': get_basic_age_validation(member.age),
            **validate_age(member.age, medicine.description),
        })

    @action(detail=False, methods=['get'], url_path='lookup')
    def lookup(self, request):
        """Search the public drug database by product name (?name=)."""
        name = request.query_params.get('name')
        if not name:
            raise InvalidArgument("name is required.")
        return Response(drug_lookup.search_by_name(name))

    @action(detail=False, methods=['get'], url_path=r'lookup/(?P<item_seq>[^/.]+)')
    def lookup_details(self, request, item_seq=None):
        """Details of one product in the public drug database."""
        details = drug_lookup.get_details(item_seq)
        if details is None:
            raise NotFound(f"No drug information for {item_seq}.")
        return Response(details)


class SlotViewSet(viewsets.ViewSet):
    """API viewset for dispenser slots of the caller's household."""
    permission_classes = [IsAuthenticated, IsHouseholdMember]
    lookup_field = 'item_id'
    lookup_value_regex = '[^/]+'

    def list(self, request):
        connect = request.user.connect
        rows = SlotAssignment.objects.filter(connect=connect).select_related('medicine')
        return Response({
            'capacity': slot_allocator.capacity,
            'slot_map': slot_allocator.slot_map(connect),
            'slots': SlotAssignmentSerializer(rows, many=True).data,
        })

    def create(self, request):
        """Load an item into a slot (first free slot unless ``slot`` is given)."""
        serializer = SlotAssignSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        slot = slot_allocator.assign(
            request.user.connect, data['item_id'], data['total'],
            requested_slot=data.get('slot'), requester=request.user
        )
        return Response({'item_id': data['item_id'], 'slot': slot}, status=status.HTTP_201_CREATED)

    def destroy(self, request, item_id=None):
        """Free the slot held by an item."""
        if not request.user.is_parent:
            raise Forbidden("Only the parent account can release slots.")
        slot = slot_allocator.release(request.user.connect, item_id, requester=request.user)
        return Response({'item_id': item_id, 'released_slot': slot})

    @action(detail=True, methods=['post'])
    def quantity(self, request, item_id=None):
        """Reset an item's stock. Ignored for callers without write authority."""
        serializer = QuantitySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        medicine = catalog.get_item(request.user.connect, item_id)
        assignment = slot_allocator.adjust_quantity(
            request.user, request.user.connect, item_id, serializer.validated_data['total'],
            is_owner=is_sole_owner(medicine, request.user)
        )
        if assignment is None:
            return Response({'item_id': item_id, 'updated': False})
        return Response({'item_id': item_id, 'updated': True, **SlotAssignmentSerializer(assignment).data})

    @action(detail=True, methods=['post'])
    def dispense(self, request, item_id=None):
        serializer = DispenseSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        remain = slot_allocator.dispense(
            request.user.connect, item_id, serializer.validated_data['count'],
            requester=request.user, reason=serializer.validated_data['reason']
        )
        return Response({'item_id': item_id, 'remain': remain})

    @action(detail=False, methods=['get'])
    def logs(self, request):
        """Most recent dispense events of the household."""
        logs = DispenseLog.objects.filter(connect=request.user.connect).select_related('requested_by')[:50]
        return Response(DispenseLogSerializer(logs, many=True).data)

    @action(detail=False, methods=['get'], url_path=r'inventory/(?P<dispenser_id>[^/.]+)')
    def inventory(self, request, dispenser_id=None):
        """Per-slot stock of the household's paired dispenser."""
        if request.user.dispenser_id != dispenser_id:
            raise NotFound(f"Dispenser {dispenser_id} is not paired with your household.")
        return Response(slot_allocator.inventory(dispenser_id))


class ScheduleViewSet(viewsets.ViewSet):
    """API viewset for weekly dosing schedules."""
    permission_classes = [IsAuthenticated, IsHouseholdMember]

    def list(self, request):
        """Weekly grid for ?item_id= and optional ?user_id= (default: caller)."""
        item_id = request.query_params.get('item_id')
        if not item_id:
            raise InvalidArgument("item_id is required.")
        member = get_household_member(request.user, request.query_params.get('user_id'))
        return Response(schedule.get_schedule(item_id, member.username))

    def create(self, request):
        """Replace the schedule of one item for one member."""
        serializer = ScheduleSaveSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        member = get_household_member(request.user, data.get('user_id'))
        result = schedule.save_schedule(
            data['item_id'], member.username, request.user,
            entries=data['entries'], total=data.get('total'), uniform_dose=data.get('dose')
        )
        return Response(result, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=['get'])
    def expected(self, request):
        """Dose due now for ?item_id= and optional ?user_id=."""
        item_id = request.query_params.get('item_id')
        if not item_id:
            raise InvalidArgument("item_id is required.")
        member = get_household_member(request.user, request.query_params.get('user_id'))
        return Response(schedule.get_expected_dose_now(item_id, member.username))

    @action(detail=False, methods=['get'])
    def today(self, request):
        return Response(schedule.get_today_schedule(request.user.connect))

    @action(detail=False, methods=['get'], url_path=r'kit/(?P<kit_id>[^/.]+)/today')
    def kit_today(self, request, kit_id=None):
        """Today's doses for the owner of a daily kit, grouped by time-of-day."""
        if not User.objects.filter(kit_id=kit_id, connect=request.user.connect).exists():
            raise NotFound(f"No member of your household is bound to kit {kit_id}.")
        return Response(schedule.get_today_schedule_for_kit(kit_id))

    @action(detail=False, methods=['get'], url_path=r'dispenser/(?P<dispenser_id>[^/.]+)')
    def dispenser(self, request, dispenser_id=None):
        """Doses every member takes from the dispenser on ?date= (default: today)."""
        if request.user.dispenser_id != dispenser_id:
            raise NotFound(f"Dispenser {dispenser_id} is not paired with your household.")
        day = _date_param(request, 'date') or get_clock().today()
        return Response(schedule.get_schedules_for_dispenser(dispenser_id, day))

    @action(detail=False, methods=['get'], url_path='family-summary')
    def family_summary(self, request):
        return Response(schedule.get_family_summary(request.user.connect))


class DoseHistoryViewSet(mixins.ListModelMixin, viewsets.GenericViewSet):
    """API viewset for the dose ledger."""
    serializer_class = DoseHistorySerializer
    permission_classes = [IsAuthenticated, IsHouseholdMember]
    filter_backends = [DjangoFilterBackend, filters.OrderingFilter]
    filterset_class = DoseHistoryFilter
    ordering_fields = ['dose_date', 'completed_at']

    def get_queryset(self):
        if getattr(self, 'swagger_fake_view', False):
            return DoseHistory.objects.none()

        member = get_household_member(self.request.user, self.request.query_params.get('user_id'))
        return ledger.get_dose_history(member.username)

    @action(detail=False, methods=['post'])
    def complete(self, request):
        """Record an intake for today. Parents may record for any member."""
        serializer = DoseCompleteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        member = get_household_member(request.user, request.data.get('user_id'))
        if member.pk != request.user.pk and not request.user.is_parent:
            raise Forbidden("A child account can only record its own doses.")

        history = ledger.complete_dose(
            member.username, data['item_id'], data['time_of_day'], data['actual_dose'],
            notes=data.get('notes')
        )
        return Response(DoseHistorySerializer(history).data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=['get'], url_path='today-progress')
    def today_progress(self, request):
        member = get_household_member(request.user, request.query_params.get('user_id'))
        return Response(ledger.get_today_progress(member.username))

    @action(detail=False, methods=['get'])
    def weekly(self, request):
        """Totals for ?start_date= and the six following days."""
        member = get_household_member(request.user, request.query_params.get('user_id'))
        start_date = _date_param(request, 'start_date', required=True)
        return Response(ledger.get_weekly_stats(member.username, start_date))

    @action(detail=False, methods=['get'])
    def family(self, request):
        return Response(ledger.get_family_stats(request.user.connect))

    @action(detail=False, methods=['get'], url_path='family-detailed')
    def family_detailed(self, request):
        return Response(ledger.get_detailed_family_stats(request.user.connect))

    @action(detail=False, methods=['get'], url_path='completion-status')
    def completion_status(self, request):
        member = get_household_member(request.user, request.query_params.get('user_id'))
        return Response(ledger.get_today_completion_status(
            member.username,
            item_id=request.query_params.get('item_id'),
            day=_date_param(request, 'date'),
        ))
