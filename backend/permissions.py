"""
Roles and capabilities.

Every role-dependent decision goes through `has_capability` instead of
comparing role strings at the call site.
"""
from enum import Enum

from errors import PermissionDeniedError


class Role(str, Enum):
    INVESTOR = "investor"
    SELLER = "seller"
    ADMIN = "admin"


class Capability(str, Enum):
    LIST_NOTES = "list_notes"
    SUBMIT_INQUIRIES = "submit_inquiries"
    REVIEW_LISTINGS = "review_listings"
    VERIFY_DOCUMENTS = "verify_documents"
    MANAGE_USERS = "manage_users"
    MANAGE_PLATFORM_TASKS = "manage_platform_tasks"
    CORRECT_COUNTERS = "correct_counters"
    VIEW_PLATFORM_STATS = "view_platform_stats"
    VIEW_ALL_RECORDS = "view_all_records"


ROLE_CAPABILITIES = {
    Role.INVESTOR: {Capability.SUBMIT_INQUIRIES},
    Role.SELLER: {Capability.LIST_NOTES},
    Role.ADMIN: set(Capability),
}

# Roles a visitor may pick at signup
SELF_SERVICE_ROLES = (Role.INVESTOR, Role.SELLER)


def role_of(user) -> Role:
    return Role(user.role)


def has_capability(user, capability: Capability) -> bool:
    return capability in ROLE_CAPABILITIES[role_of(user)]


def require_capability(user, capability: Capability, message: str = None):
    if not has_capability(user, capability):
        raise PermissionDeniedError(message or f"Your account is not allowed to {capability.value.replace('_', ' ')}")


def is_admin(user) -> bool:
    return role_of(user) is Role.ADMIN
