from rest_framework import permissions


class IsShopAdmin(permissions.BasePermission):
    """
    The single admin capability check for the back office. Views below this
    boundary rely on it and never re-derive admin status themselves.
    """
    message = "Admin access required."

    def has_permission(self, request, view):
        return bool(
            request.user and
            request.user.is_authenticated and
            request.user.is_staff
        )


class IsAdminOrReadOnly(permissions.BasePermission):
    """
    Anyone may read (menu browsing); only shop admins may write.
    """
    def has_permission(self, request, view):
        if request.method in permissions.SAFE_METHODS:
            return True
        return IsShopAdmin().has_permission(request, view)
