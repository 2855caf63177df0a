import logging

from rest_framework.permissions import BasePermission

from core.models import User

logger = logging.getLogger("security.authorization")

# Day-to-day yard work: record challans and returns, look up ledgers and bills.
OPERATOR_CAPABILITIES = frozenset(
    {
        "clients.view",
        "clients.manage",
        "challan.view",
        "challan.create",
        "stock.view",
        "billing.view",
        "billing.create",
    }
)

# Admins can also correct history, adjust stock totals and settle bills.
ADMIN_CAPABILITIES = OPERATOR_CAPABILITIES | {
    "challan.manage",
    "stock.adjust",
    "bills.manage",
    "audit.view",
}

ROLE_CAPABILITIES = {
    User.Role.OPERATOR: OPERATOR_CAPABILITIES,
    User.Role.ADMIN: ADMIN_CAPABILITIES,
}


def get_user_role(user):
    if not user or not user.is_authenticated:
        return None
    if user.is_superuser:
        return User.Role.ADMIN
    return getattr(user, "role", None) or User.Role.OPERATOR


def capabilities_for(user):
    if not user or not user.is_authenticated:
        return frozenset()
    if user.is_superuser:
        return ADMIN_CAPABILITIES
    return ROLE_CAPABILITIES.get(get_user_role(user), frozenset())


def user_has_capability(user, capability):
    return capability in capabilities_for(user)


class RoleCapabilityPermission(BasePermission):
    """Checks the capability mapped to the view action in `permission_action_map`.

    Actions missing from the map are allowed for any authenticated caller that
    got past the view's other permission classes.
    """

    message = "You do not have permission to perform this action."

    def has_permission(self, request, view):
        action_key = getattr(view, "action", None) or request.method.lower()
        capability = getattr(view, "permission_action_map", {}).get(action_key)
        if capability is None or user_has_capability(request.user, capability):
            return True

        logger.warning(
            "permission_denied capability=%s user=%s role=%s",
            capability,
            getattr(request.user, "username", "anonymous"),
            get_user_role(request.user),
            extra={"method": request.method, "path": request.path, "view": view.__class__.__name__},
        )
        return False
