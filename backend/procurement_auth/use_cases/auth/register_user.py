import logging
import uuid
from dataclasses import dataclass

from ...authz.catalog import TENANT_TYPE_BY_USER_TYPE
from ...domain.enums import TenantType, UserType
from ...domain.invariants import slugify, validate_tenant_slug
from ...domain.ports.identity import IdentityStorePort, TenantData, UserData
from ...errors import (
    ConflictError,
    InsufficientPermissionsError,
    TenantContextRequiredError,
    ValidationError,
)
from ...security.passwords import hash_password
from ...security.tokens import AuthTokens, TokenManager
from ...services.role_assignment import RoleAssignmentProtocol

logger = logging.getLogger("procurement.auth")


@dataclass(frozen=True)
class RegistrationResult:
    user: UserData
    tenant: TenantData
    tokens: AuthTokens


async def _ensure_email_available(
    identity: IdentityStorePort, email: str, tenant_scope: uuid.UUID | None = None
) -> None:
    try:
        existing = await identity.find_user_by_credential(email, tenant_scope)
    except TenantContextRequiredError:
        existing = True
    if existing:
        raise ConflictError("User already exists")


async def _assign_declared_roles(
    roles: RoleAssignmentProtocol | None, user: UserData, tenant: TenantData
) -> None:
    if roles is None:
        return
    try:
        await roles.ensure_declared_roles(user, tenant)
    except Exception as exc:
        logger.warning("Role auto-assignment failed user_id=%s error=%s", user.id, exc)


async def register_operator(
    identity: IdentityStorePort,
    token_manager: TokenManager,
    *,
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    user_type: UserType,
    company_name: str | None = None,
    roles: RoleAssignmentProtocol | None = None,
) -> RegistrationResult:
    """Self-service signup: a new organization and its owning administrator.

    Every other user type joins an existing tenant through ``invite_user``.
    """
    if user_type is not UserType.ADMIN:
        raise ValidationError("Non-admin users must be invited by an existing tenant admin")

    email = email.strip().lower()
    await _ensure_email_available(identity, email)

    tenant_name = company_name or f"{first_name} {last_name} Company"
    slug = slugify(company_name or f"{first_name}-{last_name}-company")
    validate_tenant_slug(slug)
    if await identity.find_tenant_by_slug(slug) is not None:
        raise ConflictError("Company is already registered", details={"slug": slug})

    try:
        tenant = await identity.create_tenant(
            name=tenant_name, slug=slug, tenant_type=TenantType.ADMIN
        )
        user = await identity.create_user(
            email=email,
            password_hash=hash_password(password),
            first_name=first_name,
            last_name=last_name,
            tenant_id=tenant.id,
            user_type=user_type,
            is_verified=True,
        )
        tenant = await identity.update_tenant(
            tenant.id, {"owner_id": user.id, "admin_ids": [str(user.id)]}
        )
        await identity.commit()
    except Exception:
        await identity.rollback()
        raise

    await _assign_declared_roles(roles, user, tenant)
    logger.info("Organization registered tenant_id=%s owner_id=%s", tenant.id, user.id)
    return RegistrationResult(user=user, tenant=tenant, tokens=token_manager.issue_pair(user.id))


async def invite_user(
    identity: IdentityStorePort,
    roles: RoleAssignmentProtocol,
    caller: UserData,
    *,
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    user_type: UserType,
    tenant_id: uuid.UUID | None = None,
) -> UserData:
    """An administrator creates a user in their own tenant."""
    if not roles.is_administrator(caller):
        raise InsufficientPermissionsError("Only administrators can invite users")

    target_tenant_id = tenant_id or caller.tenant_id
    operator = roles.is_operator(caller)
    if target_tenant_id != caller.tenant_id and not operator:
        raise InsufficientPermissionsError("Cannot invite users into another tenant")

    tenant = await identity.find_tenant_by_id(target_tenant_id)
    if TENANT_TYPE_BY_USER_TYPE[user_type] is not tenant.tenant_type:
        raise ValidationError(
            "User type does not match the tenant",
            details={"user_type": user_type.value, "tenant_type": tenant.tenant_type.value},
        )

    email = email.strip().lower()
    await _ensure_email_available(identity, email, tenant.id)

    try:
        user = await identity.create_user(
            email=email,
            password_hash=hash_password(password),
            first_name=first_name,
            last_name=last_name,
            tenant_id=tenant.id,
            user_type=user_type,
        )
        await identity.commit()
    except Exception:
        await identity.rollback()
        raise

    logger.info("User invited user_id=%s tenant_id=%s by=%s", user.id, tenant.id, caller.id)
    return user
