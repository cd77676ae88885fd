import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from ...application.auth_rate_limit import (
    check_login_rate_limit,
    record_login_failure,
    reset_login_limit,
)
from ...application.lockout import LockoutPolicy
from ...domain.enums import UserType
from ...domain.ports.identity import IdentityStorePort, TenantData, UserData
from ...errors import AccountLockedError, AuthError, TenantInactiveError, UnauthenticatedError
from ...security.passwords import hash_password, needs_rehash, verify_password
from ...security.tokens import AuthTokens, TokenManager
from ...services.role_assignment import RoleAssignmentProtocol

logger = logging.getLogger("procurement.auth")

INVALID_CREDENTIALS = "Invalid credentials"


@dataclass(frozen=True)
class LoginResult:
    user: UserData
    tenant: TenantData
    tokens: AuthTokens


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def _authenticate_user(
    identity: IdentityStorePort,
    email: str,
    password: str,
    *,
    tenant_scope=None,
    user_type: UserType | None = None,
    lockout: LockoutPolicy,
    now: datetime,
) -> UserData:
    user = await identity.find_user_by_credential(email, tenant_scope)
    if user is None or (user_type is not None and user.user_type is not user_type):
        raise UnauthenticatedError(INVALID_CREDENTIALS)

    # A locked account is rejected before the password is looked at
    if user.is_locked(now):
        raise AccountLockedError(details={"lock_until": user.lock_until.isoformat()})

    if not verify_password(password, user.password_hash):
        patch = lockout.failure_patch(user, now)
        await identity.update_user(user.id, patch)
        await identity.commit()
        if "lock_until" in patch and patch["lock_until"] is not None:
            logger.warning("Account locked after failed logins user_id=%s", user.id)
        raise UnauthenticatedError(INVALID_CREDENTIALS)

    if not user.is_active:
        raise UnauthenticatedError("Account is deactivated")
    return user


async def login_user(
    identity: IdentityStorePort,
    token_manager: TokenManager,
    email: str,
    password: str,
    *,
    tenant_scope=None,
    user_type: UserType | None = None,
    client_ip: str | None = None,
    lockout: LockoutPolicy | None = None,
    roles: RoleAssignmentProtocol | None = None,
    clock: Callable[[], datetime] = _utcnow,
) -> LoginResult:
    rate_limit_key = check_login_rate_limit(email, client_ip)
    lockout = lockout or LockoutPolicy()
    now = clock()

    try:
        user = await _authenticate_user(
            identity,
            email,
            password,
            tenant_scope=tenant_scope,
            user_type=user_type,
            lockout=lockout,
            now=now,
        )
    except AuthError:
        record_login_failure(rate_limit_key)
        raise
    reset_login_limit(rate_limit_key)

    tenant = await identity.find_tenant_by_id(user.tenant_id)
    operator = roles is not None and roles.is_operator(user)
    if not tenant.is_operational(now) and not operator:
        raise TenantInactiveError("Tenant account is not active")

    patch = lockout.success_patch(now)
    if needs_rehash(user.password_hash):
        patch["password_hash"] = hash_password(password)
    try:
        user = await identity.update_user(user.id, patch)
        await identity.commit()
    except Exception:
        await identity.rollback()
        raise

    if roles is not None:
        try:
            await roles.ensure_declared_roles(user, tenant)
        except Exception as exc:
            logger.warning("Role auto-assignment failed at login user_id=%s error=%s", user.id, exc)

    logger.info("User logged in user_id=%s tenant_id=%s", user.id, tenant.id)
    return LoginResult(user=user, tenant=tenant, tokens=token_manager.issue_pair(user.id))
