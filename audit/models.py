from django.db import models
from django.conf import settings
import uuid


class AuditEvent(models.Model):
    """
    Model for household audit events.
    Tracks pairing, catalog, slot and dispense changes made by family members.
    """
    class EventType(models.TextChoices):
        CREATE = 'create', 'Create'
        UPDATE = 'update', 'Update'
        DELETE = 'delete', 'Delete'
        PAIR = 'pair', 'Pair Hardware'
        DISPENSE = 'dispense', 'Dispense'
        ALERT = 'alert', 'Alert'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name='audit_events',
        null=True,
        blank=True
    )
    connect = models.CharField(max_length=50, blank=True, db_index=True)
    event_type = models.CharField(max_length=20, choices=EventType.choices, db_index=True)
    resource_type = models.CharField(max_length=100, db_index=True)
    resource_id = models.CharField(max_length=100, blank=True, db_index=True)
    description = models.TextField()
    timestamp = models.DateTimeField(auto_now_add=True, db_index=True)
    additional_data = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ['-timestamp']
        verbose_name = 'Audit Event'
        verbose_name_plural = 'Audit Events'

    def __str__(self):
        """String representation of the audit event."""
        return f"{self.get_event_type_display()} {self.resource_type} by {self.user or 'System'}"
