"""
Role catalog - canonical roles, templates and public policies.

Seeding reads everything from here. The catalog is validated at import
time: a malformed entry stops the application from starting.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from ..domain.enums import GlobalRole, MaritimeFeature, RoleType, TenantType, UserType
from .model import HTTP_ACTIONS, WILDCARD, PolicyTuple, normalize_action


@dataclass(frozen=True)
class PermissionEntry:
    resource: str
    actions: tuple[str, ...]

    def expand(self, subject: str, domain: str) -> list[PolicyTuple]:
        return [PolicyTuple.of(subject, self.resource, action, domain) for action in self.actions]


@dataclass(frozen=True)
class RoleDefinition:
    name: str
    description: str
    role_type: RoleType
    permissions: tuple[PermissionEntry, ...]
    features: MaritimeFeature
    global_role: GlobalRole | None = None
    tenant_type: TenantType | None = None
    is_system_role: bool = False

    @property
    def subject(self) -> str:
        return self.global_role.value if self.global_role is not None else self.name


def _entry(resource: str, *actions: str) -> PermissionEntry:
    return PermissionEntry(resource=resource, actions=tuple(actions))


F = MaritimeFeature

# ============================================================================
# WELL-KNOWN SUBJECTS
# ============================================================================

TOP_LEVEL_OPERATOR_ROLE: Final[str] = GlobalRole.TECH.value
PUBLIC_SUBJECT: Final[str] = "public"
SYSTEM_TENANT_SLUG: Final[str] = "maritime-procurement-system"
SYSTEM_TENANT_NAME: Final[str] = "Maritime Procurement System"


# ============================================================================
# GLOBAL ROLES - system roles, protected from non-operator changes
# ============================================================================

GLOBAL_ROLES: Final[tuple[RoleDefinition, ...]] = (
    RoleDefinition(
        name="Tech Super Admin",
        description="Global super administrator with access to all systems and tenants",
        role_type=RoleType.GLOBAL,
        global_role=GlobalRole.TECH,
        permissions=(
            _entry("/*", "*"),
            _entry("/api/*", "*"),
            _entry("/api/tenants/*", "*"),
            _entry("/api/users/*", "*"),
            _entry("/api/roles/*", "*"),
        ),
        features=(
            F.VESSEL_MANAGEMENT
            | F.RFQ_MANAGEMENT
            | F.QUOTE_MANAGEMENT
            | F.ORDER_MANAGEMENT
            | F.VENDOR_MANAGEMENT
            | F.ANALYTICS_ACCESS
            | F.SYSTEM_ADMIN
        ),
        is_system_role=True,
    ),
    RoleDefinition(
        name="Platform Admin",
        description="Platform administrator",
        role_type=RoleType.GLOBAL,
        global_role=GlobalRole.ADMIN,
        permissions=(
            _entry("/api/admin/*", "*"),
            _entry("/api/tenants", "POST"),
            _entry("/api/tenants/*", "GET", "PUT"),
            _entry("/api/users", "GET", "POST"),
            _entry("/api/users/*", "PUT", "DELETE"),
            _entry("/api/roles", "GET", "POST"),
            _entry("/api/roles/*", "GET", "PUT", "DELETE", "POST"),
            _entry("/api/auth/me", "GET"),
        ),
        features=(
            F.VESSEL_MANAGEMENT
            | F.RFQ_MANAGEMENT
            | F.QUOTE_MANAGEMENT
            | F.ORDER_MANAGEMENT
            | F.VENDOR_MANAGEMENT
            | F.ANALYTICS_ACCESS
        ),
        is_system_role=True,
    ),
    RoleDefinition(
        name="Customer Admin",
        description="Customer organization administrator",
        role_type=RoleType.GLOBAL,
        global_role=GlobalRole.CUSTOMER_ADMIN,
        permissions=(
            _entry("/api/customers/*", "*"),
            _entry("/api/users", "GET", "POST"),
            _entry("/api/users/*", "PUT", "DELETE"),
            _entry("/api/roles", "GET", "POST"),
            _entry("/api/roles/*", "GET", "PUT", "DELETE", "POST"),
            _entry("/api/rfq/*", "*"),
            _entry("/api/quotes/*", "*"),
            _entry("/api/orders/*", "*"),
            _entry("/api/auth/me", "GET"),
        ),
        features=(
            F.VESSEL_MANAGEMENT
            | F.RFQ_MANAGEMENT
            | F.QUOTE_MANAGEMENT
            | F.ORDER_MANAGEMENT
            | F.ANALYTICS_ACCESS
        ),
        is_system_role=True,
    ),
    RoleDefinition(
        name="Vendor Admin",
        description="Vendor organization administrator",
        role_type=RoleType.GLOBAL,
        global_role=GlobalRole.VENDOR_ADMIN,
        permissions=(
            _entry("/api/vendors/*", "*"),
            _entry("/api/users", "GET", "POST"),
            _entry("/api/users/*", "PUT", "DELETE"),
            _entry("/api/roles", "GET", "POST"),
            _entry("/api/roles/*", "GET", "PUT", "DELETE", "POST"),
            _entry("/api/rfq/*", "GET"),
            _entry("/api/quotes/*", "*"),
            _entry("/api/orders/*", "GET"),
            _entry("/api/auth/me", "GET"),
        ),
        features=F.QUOTE_MANAGEMENT | F.VENDOR_MANAGEMENT | F.ANALYTICS_ACCESS,
        is_system_role=True,
    ),
)


# ============================================================================
# INTERNAL ROLE TEMPLATES - bound to the system tenant, copied per tenant
# ============================================================================

INTERNAL_ROLE_TEMPLATES: Final[tuple[RoleDefinition, ...]] = (
    RoleDefinition(
        name="Fleet Manager",
        description="Manages vessel fleet operations and maintenance",
        role_type=RoleType.INTERNAL,
        tenant_type=TenantType.CUSTOMER,
        permissions=(
            _entry("/api/customers/vessels/*", "*"),
            _entry("/api/customers/maintenance/*", "*"),
            _entry("/api/rfq", "GET", "POST"),
            _entry("/api/rfq/*", "GET", "PUT"),
        ),
        features=F.VESSEL_MANAGEMENT | F.RFQ_MANAGEMENT | F.ANALYTICS_ACCESS,
    ),
    RoleDefinition(
        name="Procurement Officer",
        description="Handles procurement processes and vendor relationships",
        role_type=RoleType.INTERNAL,
        tenant_type=TenantType.CUSTOMER,
        permissions=(
            _entry("/api/rfq/*", "*"),
            _entry("/api/quotes/*", "GET", "PUT"),
            _entry("/api/orders/*", "GET", "POST"),
            _entry("/api/vendors", "GET"),
        ),
        features=(
            F.RFQ_MANAGEMENT | F.QUOTE_MANAGEMENT | F.ORDER_MANAGEMENT | F.ANALYTICS_ACCESS
        ),
    ),
    RoleDefinition(
        name="Finance Approver",
        description="Approves financial transactions and budgets",
        role_type=RoleType.INTERNAL,
        tenant_type=TenantType.CUSTOMER,
        permissions=(
            _entry("/api/quotes/*", "GET", "PUT"),
            _entry("/api/orders/*", "GET", "PUT"),
            _entry("/api/customers/budget/*", "*"),
        ),
        features=F.QUOTE_MANAGEMENT | F.ORDER_MANAGEMENT | F.ANALYTICS_ACCESS,
    ),
    RoleDefinition(
        name="Sales Representative",
        description="Handles sales activities and customer relationships",
        role_type=RoleType.INTERNAL,
        tenant_type=TenantType.VENDOR,
        permissions=(
            _entry("/api/rfq/*", "GET"),
            _entry("/api/quotes", "GET", "POST"),
            _entry("/api/quotes/*", "GET", "PUT"),
            _entry("/api/orders/*", "GET"),
        ),
        features=F.QUOTE_MANAGEMENT | F.VENDOR_MANAGEMENT | F.ANALYTICS_ACCESS,
    ),
    RoleDefinition(
        name="Pricing Manager",
        description="Manages pricing strategies and quote approvals",
        role_type=RoleType.INTERNAL,
        tenant_type=TenantType.VENDOR,
        permissions=(
            _entry("/api/quotes/*", "*"),
            _entry("/api/vendors/pricing/*", "*"),
        ),
        features=F.QUOTE_MANAGEMENT | F.VENDOR_MANAGEMENT | F.ANALYTICS_ACCESS,
    ),
    RoleDefinition(
        name="Technical Support",
        description="Provides technical support and product expertise",
        role_type=RoleType.INTERNAL,
        tenant_type=TenantType.VENDOR,
        permissions=(
            _entry("/api/rfq/*", "GET"),
            _entry("/api/quotes/*", "GET", "PUT"),
            _entry("/api/vendors/products/*", "*"),
        ),
        features=F.QUOTE_MANAGEMENT | F.VENDOR_MANAGEMENT,
    ),
)


# ============================================================================
# PUBLIC POLICIES - anonymous callers in the default domain
# ============================================================================

PUBLIC_PERMISSIONS: Final[tuple[PermissionEntry, ...]] = (
    _entry("/api/auth/login", "POST"),
    _entry("/api/auth/register", "POST"),
    _entry("/api/auth/refresh", "POST"),
    _entry("/api/auth/logout", "POST"),
    _entry("/health", "GET"),
)


# ============================================================================
# LEGACY PORTAL MAPPING - userType -> derived global role
# ============================================================================

LEGACY_USER_TYPE_ROLES: Final[dict[UserType, GlobalRole]] = {
    UserType.ADMIN: GlobalRole.ADMIN,
    UserType.TECHNICAL: GlobalRole.TECH,
    UserType.CUSTOMER: GlobalRole.CUSTOMER_ADMIN,
    UserType.VENDOR: GlobalRole.VENDOR_ADMIN,
}

TENANT_TYPE_BY_USER_TYPE: Final[dict[UserType, TenantType]] = {
    UserType.ADMIN: TenantType.ADMIN,
    UserType.TECHNICAL: TenantType.ADMIN,
    UserType.CUSTOMER: TenantType.CUSTOMER,
    UserType.VENDOR: TenantType.VENDOR,
}


def global_role_definition(code: GlobalRole) -> RoleDefinition:
    for definition in GLOBAL_ROLES:
        if definition.global_role is code:
            return definition
    raise KeyError(code)


def public_policies(domain: str) -> list[PolicyTuple]:
    policies: list[PolicyTuple] = []
    for entry in PUBLIC_PERMISSIONS:
        policies.extend(entry.expand(PUBLIC_SUBJECT, domain))
    return policies


# ============================================================================
# CATALOG VALIDATION
# ============================================================================

def validate_actions(actions: tuple[str, ...] | list[str]) -> list[str]:
    """Normalize permission actions, rejecting anything that is not a verb or ``*``."""
    normalized: list[str] = []
    for action in actions:
        value = normalize_action(action)
        if value != WILDCARD and value not in HTTP_ACTIONS:
            raise ValueError(f"Unknown action: {action}")
        if value not in normalized:
            normalized.append(value)
    if not normalized:
        raise ValueError("Permission entry needs at least one action")
    return normalized


def _validate_catalog() -> None:
    seen_global: set[GlobalRole] = set()
    names: set[str] = set()

    for definition in GLOBAL_ROLES + INTERNAL_ROLE_TEMPLATES:
        if definition.name in names:
            raise RuntimeError(f"Duplicate role name in catalog: {definition.name}")
        names.add(definition.name)

        for entry in definition.permissions:
            try:
                validate_actions(entry.actions)
            except ValueError as exc:
                raise RuntimeError(f"Invalid catalog role {definition.name}: {exc}") from exc

        if definition.role_type is RoleType.GLOBAL:
            if definition.global_role is None:
                raise RuntimeError(f"Global role {definition.name} needs a global_role code")
            if definition.global_role in seen_global:
                raise RuntimeError(f"Duplicate global role code: {definition.global_role}")
            seen_global.add(definition.global_role)
        elif definition.global_role is not None:
            raise RuntimeError(f"Non-global role {definition.name} carries a global_role")
        elif definition.tenant_type is None:
            raise RuntimeError(f"Template {definition.name} needs a tenant_type")

    if seen_global != set(GlobalRole):
        missing = set(GlobalRole) - seen_global
        raise RuntimeError(f"Catalog is missing global roles: {sorted(m.value for m in missing)}")

    for entry in PUBLIC_PERMISSIONS:
        validate_actions(entry.actions)


_validate_catalog()
