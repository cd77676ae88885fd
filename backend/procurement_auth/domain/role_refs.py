"""
Declared roles of a user.

A user's roles come from one of two sources and are resolved exactly once,
when the roles are synchronised into the enforcement engine:

- ExplicitRoleReference: the user record names a global role code or a role id.
- DerivedLegacyRole: the user record names no role at all, so one is derived from
  the portal discriminator (user_type).
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Protocol, Union

from ..authz.catalog import LEGACY_USER_TYPE_ROLES
from .enums import GlobalRole, UserType

logger = logging.getLogger("procurement.roles")


@dataclass(frozen=True)
class ExplicitRoleReference:
    global_role: GlobalRole | None = None
    role_id: uuid.UUID | None = None

    def __post_init__(self) -> None:
        if (self.global_role is None) == (self.role_id is None):
            raise ValueError("Exactly one of global_role or role_id must be set")


@dataclass(frozen=True)
class DerivedLegacyRole:
    user_type: UserType
    global_role: GlobalRole


DeclaredRole = Union[ExplicitRoleReference, DerivedLegacyRole]


class _DeclaringUser(Protocol):
    id: uuid.UUID
    user_type: UserType
    global_role: GlobalRole | None
    tenant_role_ids: list[str]
    internal_role_ids: list[str]


def resolve_declared_roles(user: _DeclaringUser) -> list[DeclaredRole]:
    declared: list[DeclaredRole] = []
    if user.global_role is not None:
        declared.append(ExplicitRoleReference(global_role=user.global_role))

    for raw_id in [*user.tenant_role_ids, *user.internal_role_ids]:
        try:
            declared.append(ExplicitRoleReference(role_id=uuid.UUID(str(raw_id))))
        except ValueError:
            logger.warning("Ignoring malformed role reference user_id=%s value=%s", user.id, raw_id)

    # Only a user with no structured role at all falls back to the portal mapping
    if not declared:
        legacy = LEGACY_USER_TYPE_ROLES.get(user.user_type)
        if legacy is not None:
            declared.append(DerivedLegacyRole(user_type=user.user_type, global_role=legacy))

    return declared
