# admin.py
from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from .models import Household, User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """Admin configuration for household accounts."""
    model = User
    list_display = ('username', 'name', 'role', 'connect', 'dispenser_id', 'kit_id', 'is_active', 'date_joined')
    list_filter = ('role', 'is_staff', 'is_superuser', 'is_active')
    search_fields = ('username', 'name', 'connect', 'dispenser_id', 'kit_id')
    ordering = ('-date_joined',)

    fieldsets = (
        (None, {'fields': ('username', 'password')}),
        ('Personal Info', {
            'fields': ('name', 'email', 'age', 'birth_date')
        }),
        ('Household', {
            'fields': ('role', 'connect', 'dispenser_id', 'kit_id')
        }),
        ('Permissions', {
            'fields': ('is_active', 'is_staff', 'is_superuser', 'groups', 'user_permissions')
        }),
        ('Important Dates', {
            'fields': ('last_login', 'date_joined')
        }),
    )

    readonly_fields = ('date_joined', 'last_login')

    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        ('Household', {
            'fields': ('name', 'role', 'connect')
        }),
    )


@admin.register(Household)
class HouseholdAdmin(admin.ModelAdmin):
    list_display = ('connect', 'parent_username', 'member_count', 'created_at')
    search_fields = ('connect',)
    readonly_fields = ('created_at',)

    def parent_username(self, obj):
        parent = obj.parent
        return parent.username if parent else '-'
    parent_username.short_description = 'Parent'

    def member_count(self, obj):
        return obj.members.count()
    member_count.short_description = 'Members'
