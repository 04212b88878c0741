from django.db import models
from django.contrib.auth.models import AbstractUser
from django.utils.translation import gettext_lazy as _


class Household(models.Model):
    """
    A family sharing one dispenser, keyed by its connect code.

    Members reference the household through ``User.connect``. The row itself
    is the anchor for per-household locking.
    """
    connect = models.CharField(max_length=50, unique=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'households'
        verbose_name = 'Household'
        verbose_name_plural = 'Households'

    def __str__(self):
        return self.connect

    @property
    def members(self):
        return User.objects.filter(connect=self.connect)

    @property
    def parent(self):
        return self.members.filter(role=User.Role.PARENT).first()


class User(AbstractUser):
    """Custom user model for household dispenser accounts."""

    class Role(models.TextChoices):
        PARENT = 'parent', _('Parent')
        CHILD = 'child', _('Child')

    # Basic information
    name = models.CharField(max_length=100)
    role = models.CharField(max_length=10, choices=Role.choices, default=Role.PARENT)
    birth_date = models.DateField(null=True, blank=True)
    age = models.PositiveSmallIntegerField(null=True, blank=True)

    # Household membership
    connect = models.CharField(max_length=50, null=True, blank=True, db_index=True)

    # Hardware pairing
    dispenser_id = models.CharField(max_length=50, null=True, blank=True, db_index=True)
    kit_id = models.CharField(max_length=45, null=True, blank=True, unique=True)

    def __str__(self):
        return f"{self.username} ({self.role})"

    @property
    def is_parent(self):
        return self.role == self.Role.PARENT

    @property
    def is_child(self):
        return self.role == self.Role.CHILD

    def household_members(self):
        """All users sharing this user's connect code, including the user."""
        if not self.connect:
            return User.objects.none()
        return User.objects.filter(connect=self.connect)

    class Meta:
        db_table = 'users'
        verbose_name = 'User'
        verbose_name_plural = 'Users'
