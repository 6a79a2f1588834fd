"""
Role based permission classes for the placement API.

Coarse role gates live here; finer scoping (which chief is in charge of
which internship, which doctor owns which evaluation) is enforced by the
lifecycle engine.
"""
from rest_framework.permissions import BasePermission

from .models import Role, require_all_roles

# what each role may do at the HTTP layer
ROLE_CAPABILITIES = require_all_roles({
    Role.STUDENT: {"apply"},
    Role.SERVICE_CHIEF: {"manage_internships", "review"},
    Role.DOCTOR: {"evaluate"},
    Role.DEAN: {"manage_internships", "review", "delete_internships"},
}, "ROLE_CAPABILITIES")


def has_capability(user, capability: str) -> bool:
    if not (user and user.is_authenticated):
        return False
    try:
        role = Role(getattr(user, "role", None))
    except ValueError:
        return False
    return capability in ROLE_CAPABILITIES[role]


class _CapabilityPermission(BasePermission):
    capability = ""

    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        return has_capability(getattr(request, "user", None), self.capability)


class IsStudent(_CapabilityPermission):
    """Students applying to internships."""
    capability = "apply"


class CanManageInternships(_CapabilityPermission):
    """Deans and service chiefs."""
    capability = "manage_internships"


class IsReviewer(_CapabilityPermission):
    """Roles allowed to decide applications and validate evaluations."""
    capability = "review"


class IsDoctor(_CapabilityPermission):
    capability = "evaluate"


class IsDean(_CapabilityPermission):
    capability = "delete_internships"
