from rest_framework import permissions

from users.permissions import can_manage_catalog


class CanManageCatalog(permissions.BasePermission):
    """
    Household members may read the catalog; only parents may change it.
    """
    message = "Only the main (parent) account can change the household catalog."

    def has_permission(self, request, view):
        if not request.user.is_authenticated:
            return False
        if request.method in permissions.SAFE_METHODS:
            return True
        return can_manage_catalog(getattr(request.user, 'role', None))

    def has_object_permission(self, request, view, obj):
        return getattr(obj, 'connect', None) == request.user.connect
