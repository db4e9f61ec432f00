import logging

from rest_framework.permissions import BasePermission

logger = logging.getLogger("security.authorization")


def is_owner(user, obj):
    if not user or not user.is_authenticated:
        return False
    if user.is_superuser:
        return True
    return getattr(obj, "owner_id", None) == user.id


class IsOwner(BasePermission):
    """Object permission that restricts records to the tenant that owns them and logs denied attempts."""

    message = "You do not have permission to access this record."

    def has_object_permission(self, request, view, obj):
        allowed = is_owner(request.user, obj)
        if not allowed:
            logger.warning(
                "permission_denied user=%s method=%s path=%s view=%s object=%s",
                getattr(request.user, "username", "anonymous"),
                request.method,
                request.path,
                view.__class__.__name__,
                getattr(obj, "pk", None),
            )
        return allowed
