# permissions.py
from rest_framework import permissions

from .models import User


def can_manage_catalog(role):
    """Only parents create, edit or delete household catalog items."""
    return role == User.Role.PARENT


def can_pair_dispenser(role):
    """Only parents bind the shared dispenser to the household."""
    return role == User.Role.PARENT


def can_manage_members(role):
    """Only parents remove or edit child accounts."""
    return role == User.Role.PARENT


def can_write_shared_quantity(role, is_owner):
    """
    Decide whether a caller may change a slot's shared total/remain.

    Parents always may. A child may only when the item and the schedule being
    saved belong to that child alone; otherwise the write is dropped.
    """
    if role == User.Role.PARENT:
        return True
    return bool(is_owner)


def can_manual_dispense(role):
    """Out-of-schedule dispensing is a parent action."""
    return role == User.Role.PARENT


class IsParent(permissions.BasePermission):
    """
    Allow access only to parent accounts.
    """
    message = "Only the main (parent) account can perform this action."

    def has_permission(self, request, view):
        if not request.user.is_authenticated:
            return False
        return getattr(request.user, 'role', None) == User.Role.PARENT


class IsHouseholdMember(permissions.BasePermission):
    """
    Allow access only to onboarded users, and to objects of their own household.
    """
    message = "Your account is not linked to a household."

    def has_permission(self, request, view):
        if not request.user.is_authenticated:
            return False
        return bool(getattr(request.user, 'connect', None))

    def has_object_permission(self, request, view, obj):
        return getattr(obj, 'connect', None) == request.user.connect
