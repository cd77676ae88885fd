from .base import Base
from .tenant import Tenant
from .user import User
from .role import Role, RolePermission
from .policy import PolicyRule, RoleAssignmentRule

__all__ = [
    "Base",
    "Tenant",
    "User",
    "Role",
    "RolePermission",
    "PolicyRule",
    "RoleAssignmentRule",
]
