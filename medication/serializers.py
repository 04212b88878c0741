from rest_framework import serializers

from .models import MAX_DOSE, MAX_QUANTITY, DayOfWeek, DispenseLog, DoseHistory, Medicine, SlotAssignment, TimeOfDay


class SlotAssignmentSerializer(serializers.ModelSerializer):
    """Serializer for slot stock."""
    item_id = serializers.CharField(source='medicine.item_id', read_only=True)
    name = serializers.CharField(source='medicine.name', read_only=True)

    class Meta:
        model = SlotAssignment
        fields = ('slot', 'item_id', 'name', 'total', 'remain', 'dispenser_id', 'error_status', 'updated_at')
        read_only_fields = fields


class MedicineSerializer(serializers.ModelSerializer):
    """
    Catalog item as seen by the requesting user.

    ``permission`` is read from the ``permissions`` context map
    (``{item_id: 'own' | 'others'}``) built by the catalog service.
    """
    permission = serializers.SerializerMethodField()
    slot = serializers.SerializerMethodField()
    kind_display = serializers.CharField(source='get_kind_display', read_only=True)

    class Meta:
        model = Medicine
        fields = (
            'item_id', 'name', 'kind', 'kind_display', 'warning', 'description', 'manufacturer',
            'image_url', 'start_date', 'end_date', 'target_users', 'permission', 'slot',
            'created_at', 'updated_at',
        )
        read_only_fields = fields

    def get_permission(self, obj):
        return self.context.get('permissions', {}).get(obj.item_id)

    def get_slot(self, obj):
        assignment = getattr(obj, 'slot_assignment', None)
        if assignment is None:
            return None
        return {'slot': assignment.slot, 'total': assignment.total, 'remain': assignment.remain}


class MedicineWriteSerializer(serializers.Serializer):
    """Input for adding or editing a catalog item."""
    item_id = serializers.CharField(max_length=100)
    name = serializers.CharField(max_length=255)
    kind = serializers.ChoiceField(choices=Medicine.Kind.choices, default=Medicine.Kind.MEDICINE)
    warning = serializers.BooleanField(default=False)
    description = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    manufacturer = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=255)
    image_url = serializers.URLField(required=False, allow_blank=True, allow_null=True, max_length=500)
    start_date = serializers.DateField(required=False, allow_null=True)
    end_date = serializers.DateField(required=False, allow_null=True)
    target_users = serializers.ListField(
        child=serializers.CharField(max_length=150), required=False, allow_null=True
    )


class SlotAssignSerializer(serializers.Serializer):
    item_id = serializers.CharField(max_length=100)
    total = serializers.IntegerField(min_value=1, max_value=MAX_QUANTITY)
    slot = serializers.IntegerField(min_value=1, required=False, allow_null=True)


class QuantitySerializer(serializers.Serializer):
    total = serializers.IntegerField(min_value=1, max_value=MAX_QUANTITY)


class DispenseSerializer(serializers.Serializer):
    count = serializers.IntegerField(min_value=1, max_value=MAX_QUANTITY, default=1)
    reason = serializers.ChoiceField(choices=DispenseLog.Reason.choices, default=DispenseLog.Reason.SCHEDULED)


class DispenseLogSerializer(serializers.ModelSerializer):
    requested_by = serializers.CharField(source='requested_by.username', read_only=True, default=None)

    class Meta:
        model = DispenseLog
        fields = ('item_id', 'slot', 'count', 'reason', 'requested_by', 'remain_after', 'created_at')
        read_only_fields = fields


class ScheduleCellSerializer(serializers.Serializer):
    day_of_week = serializers.ChoiceField(choices=DayOfWeek.choices)
    time_of_day = serializers.ChoiceField(choices=TimeOfDay.choices)
    # Parsed by the schedule service so blank and zero fall back to inherited doses
    dose = serializers.CharField(required=False, allow_null=True, allow_blank=True)


class ScheduleSaveSerializer(serializers.Serializer):
    """Input for replacing a user's weekly schedule of an item."""
    item_id = serializers.CharField(max_length=100)
    user_id = serializers.CharField(max_length=150, required=False)
    entries = ScheduleCellSerializer(many=True, allow_empty=True)
    total = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    dose = serializers.CharField(required=False, allow_null=True, allow_blank=True)


class DoseCompleteSerializer(serializers.Serializer):
    item_id = serializers.CharField(max_length=100)
    time_of_day = serializers.ChoiceField(choices=TimeOfDay.choices)
    actual_dose = serializers.IntegerField(min_value=0, max_value=MAX_DOSE)
    notes = serializers.CharField(required=False, allow_blank=True)


class DoseHistorySerializer(serializers.ModelSerializer):
    """Serializer for ledger rows."""
    user_id = serializers.CharField(source='user.username', read_only=True)
    status_display = serializers.CharField(source='get_status_display', read_only=True)
    shortfall = serializers.IntegerField(read_only=True)

    class Meta:
        model = DoseHistory
        fields = (
            'id', 'user_id', 'item_id', 'time_of_day', 'dose_date', 'scheduled_dose',
            'actual_dose', 'status', 'status_display', 'shortfall', 'completed_at', 'notes',
        )
        read_only_fields = fields
