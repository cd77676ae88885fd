"""
Per-request access-control chain.

Steps run strictly in order and the first failing step ends the request:

    resolve_identity -> gate_account -> bind_tenant -> auto_assign
        -> check_portal -> check_permission

Every denial raises the originating error kind and leaves the context in
the DENIED state. Auto-assignment is best effort and never denies.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from ..authz.catalog import PUBLIC_SUBJECT
from ..authz.enforcer import EnforcementEngine
from ..authz.service import AuthorizationService
from ..domain.enums import UserType
from ..domain.ports.identity import IdentityStorePort, TenantData, UserData
from ..errors import (
    AppError,
    InsufficientPermissionsError,
    PortalMismatchError,
    TenantContextRequiredError,
    TenantInactiveError,
    TenantNotFoundError,
    UnauthenticatedError,
    UserNotFoundError,
)
from ..security.tokens import TokenError, TokenExpiredError, TokenKind, TokenManager
from ..services.role_assignment import RoleAssignmentProtocol

logger = logging.getLogger("procurement.access")


class AccessState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    TENANT_BOUND = "tenant_bound"
    PERMISSION_CHECKED = "permission_checked"
    ALLOWED = "allowed"
    DENIED = "denied"


@dataclass
class AccessContext:
    state: AccessState = AccessState.UNAUTHENTICATED
    user: UserData | None = None
    tenant: TenantData | None = None
    is_operator: bool = False
    # Tenant not operational; only grants from the global domain still apply
    global_grants_only: bool = False
    denial: AppError | None = None

    @property
    def domain(self) -> str:
        if self.tenant is None:
            raise TenantContextRequiredError()
        return self.tenant.domain

    @property
    def subject(self) -> str:
        if self.user is None:
            raise UnauthenticatedError()
        return str(self.user.id)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccessControlChain:
    def __init__(
        self,
        engine: EnforcementEngine,
        identity: IdentityStorePort,
        token_manager: TokenManager,
        roles: RoleAssignmentProtocol | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.engine = engine
        self.authorization = AuthorizationService(engine)
        self.identity = identity
        self.token_manager = token_manager
        self.roles = roles
        self._clock = clock

    def _deny(self, ctx: AccessContext, error: AppError) -> AppError:
        ctx.state = AccessState.DENIED
        ctx.denial = error
        logger.warning(
            "Access denied code=%s user_id=%s tenant_id=%s",
            error.code,
            ctx.user.id if ctx.user is not None else None,
            ctx.tenant.id if ctx.tenant is not None else None,
        )
        return error

    async def resolve_identity(self, credential: str | None) -> AccessContext:
        ctx = AccessContext()
        if not credential:
            raise self._deny(ctx, UnauthenticatedError("Not authenticated"))
        try:
            user_id = self.token_manager.validate(credential, TokenKind.ACCESS)
        except TokenExpiredError:
            raise self._deny(ctx, UnauthenticatedError("Token has expired")) from None
        except TokenError:
            raise self._deny(ctx, UnauthenticatedError("Invalid token")) from None

        try:
            ctx.user = await self.identity.find_user_by_id(user_id)
        except UserNotFoundError:
            raise self._deny(ctx, UnauthenticatedError("User not found")) from None
        ctx.state = AccessState.AUTHENTICATED
        return ctx

    async def gate_account(self, ctx: AccessContext) -> AccessContext:
        user = ctx.user
        if user is None:
            raise self._deny(ctx, UnauthenticatedError())
        if not user.is_active:
            raise self._deny(ctx, UnauthenticatedError("Account is deactivated"))

        subject = str(user.id)
        ctx.is_operator = self.authorization.is_top_level_operator(subject)

        try:
            ctx.tenant = await self.identity.find_tenant_by_id(user.tenant_id)
        except TenantNotFoundError:
            ctx.tenant = None
            return ctx

        if not ctx.tenant.is_operational(self._clock()):
            if not self.engine.roles_for_user(subject, self.engine.global_domain):
                raise self._deny(ctx, TenantInactiveError())
            ctx.global_grants_only = True
        return ctx

    def bind_tenant(self, ctx: AccessContext) -> AccessContext:
        if ctx.tenant is None:
            raise self._deny(ctx, TenantContextRequiredError())
        ctx.state = AccessState.TENANT_BOUND
        return ctx

    async def auto_assign(self, ctx: AccessContext) -> None:
        if self.roles is None or ctx.user is None or ctx.tenant is None:
            return
        try:
            bound = await self.roles.ensure_declared_roles(ctx.user, ctx.tenant)
        except Exception as exc:
            logger.warning(
                "Role auto-assignment failed user_id=%s error=%s", ctx.user.id, exc
            )
            return
        if bound and not ctx.is_operator:
            ctx.is_operator = self.authorization.is_top_level_operator(ctx.subject)

    def check_portal(self, ctx: AccessContext, allowed_user_types: Iterable[UserType]) -> AccessContext:
        allowed = frozenset(allowed_user_types)
        if ctx.user is None or ctx.user.user_type not in allowed:
            raise self._deny(
                ctx,
                PortalMismatchError(
                    details={"allowed": sorted(user_type.value for user_type in allowed)}
                ),
            )
        return ctx

    def check_permission(self, ctx: AccessContext, resource: str, action: str) -> AccessContext:
        if ctx.state is not AccessState.TENANT_BOUND:
            raise self._deny(ctx, TenantContextRequiredError())
        subject = ctx.subject
        if ctx.global_grants_only:
            allowed = self.engine.has_global_grant(subject, resource, action)
            if not allowed:
                raise self._deny(ctx, TenantInactiveError())
        else:
            allowed = self.authorization.is_allowed(subject, resource, action, ctx.domain)
        ctx.state = AccessState.PERMISSION_CHECKED
        if not allowed:
            raise self._deny(
                ctx,
                InsufficientPermissionsError(details={"resource": resource, "action": action}),
            )
        ctx.state = AccessState.ALLOWED
        return ctx

    async def authenticate(self, credential: str | None) -> AccessContext:
        """Identity, account gate, tenant binding and auto-assignment."""
        ctx = await self.resolve_identity(credential)
        await self.gate_account(ctx)
        self.bind_tenant(ctx)
        await self.auto_assign(ctx)
        return ctx


def authorize_public(engine: EnforcementEngine, resource: str, action: str, domain: str) -> bool:
    """Evaluate an anonymous caller as the public subject."""
    allowed = engine.enforce(PUBLIC_SUBJECT, resource, action, domain)
    if not allowed:
        logger.warning("Public access denied resource=%s action=%s", resource, action)
    return allowed
