from __future__ import annotations

from enum import Enum, IntFlag


class LifecycleState(str, Enum):
    """Soft-delete state shared by roles, users and tenants."""

    ACTIVE = "active"
    DEACTIVATED = "deactivated"


class RoleType(str, Enum):
    GLOBAL = "global"
    TENANT = "tenant"
    INTERNAL = "internal"


class GlobalRole(str, Enum):
    TECH = "tech"
    ADMIN = "admin"
    CUSTOMER_ADMIN = "customer_admin"
    VENDOR_ADMIN = "vendor_admin"


class TenantType(str, Enum):
    ADMIN = "admin"
    CUSTOMER = "customer"
    VENDOR = "vendor"


class UserType(str, Enum):
    """Portal discriminator of a user."""

    ADMIN = "admin"
    TECHNICAL = "technical"
    CUSTOMER = "customer"
    VENDOR = "vendor"


class SubscriptionPlan(str, Enum):
    BASIC = "basic"
    STANDARD = "standard"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    TRIAL = "trial"
    CANCELLED = "cancelled"


class MaritimeFeature(IntFlag):
    NONE = 0
    VESSEL_MANAGEMENT = 1
    RFQ_MANAGEMENT = 2
    QUOTE_MANAGEMENT = 4
    ORDER_MANAGEMENT = 8
    VENDOR_MANAGEMENT = 16
    ANALYTICS_ACCESS = 32
    SYSTEM_ADMIN = 64

    @classmethod
    def from_names(cls, names: list[str] | tuple[str, ...]) -> "MaritimeFeature":
        flags = cls.NONE
        for name in names:
            try:
                flags |= cls[name.strip().upper()]
            except KeyError as exc:
                raise ValueError(f"Unknown maritime feature: {name}") from exc
        return flags

    def names(self) -> list[str]:
        return [
            member.name.lower()
            for member in type(self)
            if member is not type(self).NONE and member in self
        ]


ADMINISTRATOR_GLOBAL_ROLES: frozenset[GlobalRole] = frozenset(
    {GlobalRole.ADMIN, GlobalRole.CUSTOMER_ADMIN, GlobalRole.VENDOR_ADMIN}
)
