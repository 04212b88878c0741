from django.contrib import admin

from .models import AuditEvent


@admin.register(AuditEvent)
class AuditEventAdmin(admin.ModelAdmin):
    """Read-only admin for the household audit trail."""
    list_display = ('timestamp', 'event_type', 'resource_type', 'resource_id', 'connect', 'user')
    list_filter = ('event_type', 'resource_type')
    search_fields = ('connect', 'resource_id', 'description', 'user__username')
    readonly_fields = (
        'id', 'user', 'connect', 'event_type', 'resource_type', 'resource_id',
        'description', 'timestamp', 'additional_data'
    )
    date_hierarchy = 'timestamp'

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
