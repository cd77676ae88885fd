"""
Domain invariants for roles, tenants and users.

All invariants are checked BEFORE any side effect (database or policy
writes). A violation is an explicit rejection, never silently repaired.
"""
from __future__ import annotations

import logging
import re
from typing import Any

from .enums import GlobalRole, RoleType, TenantType

logger = logging.getLogger("procurement.invariants")

SLUG_PATTERN = re.compile(r"^[a-z0-9-]+$")


class InvariantViolation(Exception):
    """Raised when a domain invariant is violated."""

    def __init__(self, message: str, *, invariant: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.invariant = invariant
        self.details = details or {}

        logger.error(
            "invariant_violation invariant=%s message=%s details=%s",
            invariant,
            message,
            details,
        )


def validate_role_shape(
    *,
    name: str,
    role_type: RoleType,
    global_role: GlobalRole | None,
    tenant_id: Any | None,
    tenant_type: TenantType | None,
) -> None:
    """A global_role code only on global roles; tenant and internal roles need a tenant.

    Raises:
        InvariantViolation: The combination of fields is not allowed.
    """
    if global_role is not None and role_type is not RoleType.GLOBAL:
        raise InvariantViolation(
            "global_role may only be set on global roles",
            invariant="role.global_role_requires_global_type",
            details={"name": name, "role_type": role_type.value},
        )
    if role_type is RoleType.GLOBAL and tenant_id is not None:
        raise InvariantViolation(
            "Global roles cannot belong to a tenant",
            invariant="role.global_has_no_tenant",
            details={"name": name, "tenant_id": str(tenant_id)},
        )
    if role_type in (RoleType.TENANT, RoleType.INTERNAL):
        if tenant_id is None:
            raise InvariantViolation(
                "Tenant and internal roles require a tenant",
                invariant="role.scoped_requires_tenant",
                details={"name": name, "role_type": role_type.value},
            )
        if tenant_type is None:
            raise InvariantViolation(
                "Tenant and internal roles require a tenant type",
                invariant="role.scoped_requires_tenant_type",
                details={"name": name, "role_type": role_type.value},
            )


def validate_tenant_slug(slug: str) -> None:
    if not slug or not SLUG_PATTERN.match(slug):
        raise InvariantViolation(
            "Tenant slug may only contain lowercase letters, digits and hyphens",
            invariant="tenant.slug_format",
            details={"slug": slug},
        )


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.strip().lower()).strip("-")
    return slug
