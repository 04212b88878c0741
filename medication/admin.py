from django.contrib import admin
from .models import DispenseLog, DoseHistory, Medicine, ScheduleEntry, SlotAssignment


class ScheduleEntryInline(admin.TabularInline):
    """Inline admin for schedule entries."""
    model = ScheduleEntry
    extra = 0
    fields = ('user', 'day_of_week', 'time_of_day', 'dose')
    readonly_fields = ('created_at',)


class SlotAssignmentInline(admin.StackedInline):
    """Inline admin for the item's dispenser slot."""
    model = SlotAssignment
    extra = 0
    fields = ('slot', 'total', 'remain', 'dispenser_id', 'error_status')


@admin.register(Medicine)
class MedicineAdmin(admin.ModelAdmin):
    """Admin interface for catalog items."""
    list_display = ('item_id', 'name', 'kind', 'connect', 'warning', 'start_date', 'end_date')
    list_filter = ('kind', 'warning')
    search_fields = ('item_id', 'name', 'connect', 'manufacturer')
    readonly_fields = ('created_at', 'updated_at', 'created_by')
    inlines = [SlotAssignmentInline, ScheduleEntryInline]

    fieldsets = (
        ('Basic Information', {
            'fields': ('item_id', 'connect', 'name', 'kind', 'warning')
        }),
        ('Details', {
            'fields': ('description', 'manufacturer', 'image_url'),
            'classes': ('collapse',),
        }),
        ('Availability', {
            'fields': ('start_date', 'end_date', 'target_users')
        }),
        ('Metadata', {
            'fields': ('created_by', 'created_at', 'updated_at'),
            'classes': ('collapse',),
        }),
    )


@admin.register(SlotAssignment)
class SlotAssignmentAdmin(admin.ModelAdmin):
    """Admin interface for dispenser slots."""
    list_display = ('connect', 'slot', 'medicine', 'remain', 'total', 'dispenser_id', 'error_status')
    list_filter = ('error_status',)
    search_fields = ('connect', 'dispenser_id', 'medicine__item_id', 'medicine__name')
    ordering = ('connect', 'slot')


@admin.register(DoseHistory)
class DoseHistoryAdmin(admin.ModelAdmin):
    """Admin interface for the dose ledger."""
    list_display = ('user', 'item_id', 'dose_date', 'time_of_day', 'actual_dose', 'scheduled_dose', 'status')
    list_filter = ('status', 'time_of_day')
    search_fields = ('user__username', 'item_id', 'connect')
    date_hierarchy = 'dose_date'
    readonly_fields = ('created_at', 'updated_at')


@admin.register(DispenseLog)
class DispenseLogAdmin(admin.ModelAdmin):
    """Read-only admin for dispense events."""
    list_display = ('created_at', 'connect', 'slot', 'item_id', 'count', 'reason', 'requested_by', 'remain_after')
    list_filter = ('reason',)
    search_fields = ('connect', 'item_id', 'requested_by__username')
    readonly_fields = [f.name for f in DispenseLog._meta.fields]

    def has_add_permission(self, request):
        return False
