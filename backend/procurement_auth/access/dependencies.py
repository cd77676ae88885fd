from collections.abc import AsyncGenerator

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from ..application.lockout import LockoutPolicy
from ..authz.enforcer import EnforcementEngine
from ..config import get_settings
from ..crud.identity import SqlIdentityStore
from ..crud.role import RoleRepository
from ..database import get_session
from ..domain.enums import UserType
from ..domain.ports.identity import IdentityStorePort, UserData
from ..errors import InsufficientPermissionsError, StoreUnavailableError
from ..security.tokens import TokenManager
from ..services.role_assignment import RoleAssignmentProtocol
from ..services.role_catalog import RoleCatalogService
from .chain import AccessContext, AccessControlChain, authorize_public

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"

bearer_scheme = HTTPBearer(auto_error=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async for session in get_session():
        yield session


def get_engine(request: Request) -> EnforcementEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise StoreUnavailableError("Authorization engine is not initialized")
    return engine


def get_token_manager(request: Request) -> TokenManager:
    manager = getattr(request.app.state, "token_manager", None)
    if manager is None:
        manager = TokenManager.from_settings(get_settings())
        request.app.state.token_manager = manager
    return manager


def get_lockout_policy() -> LockoutPolicy:
    return LockoutPolicy.from_settings(get_settings())


def get_identity_store(db: AsyncSession = Depends(get_db)) -> IdentityStorePort:
    return SqlIdentityStore(db)


def get_role_repository(db: AsyncSession = Depends(get_db)) -> RoleRepository:
    return RoleRepository(db)


def get_role_protocol(
    engine: EnforcementEngine = Depends(get_engine),
    roles: RoleRepository = Depends(get_role_repository),
    identity: IdentityStorePort = Depends(get_identity_store),
) -> RoleAssignmentProtocol:
    return RoleAssignmentProtocol(engine, roles, identity)


def get_role_catalog(
    db: AsyncSession = Depends(get_db),
    protocol: RoleAssignmentProtocol = Depends(get_role_protocol),
) -> RoleCatalogService:
    return RoleCatalogService(db, protocol, roles=protocol.roles)


def get_access_chain(
    engine: EnforcementEngine = Depends(get_engine),
    identity: IdentityStorePort = Depends(get_identity_store),
    token_manager: TokenManager = Depends(get_token_manager),
    roles: RoleAssignmentProtocol = Depends(get_role_protocol),
) -> AccessControlChain:
    return AccessControlChain(engine, identity, token_manager, roles)


def _extract_credential(
    request: Request, credentials: HTTPAuthorizationCredentials | None
) -> str | None:
    if credentials is not None and credentials.scheme.lower() == "bearer":
        return credentials.credentials
    return request.cookies.get(ACCESS_COOKIE)


async def get_access_context(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    chain: AccessControlChain = Depends(get_access_chain),
) -> AccessContext:
    ctx = await chain.authenticate(_extract_credential(request, credentials))
    request.state.access = ctx
    return ctx


async def get_current_user(ctx: AccessContext = Depends(get_access_context)) -> UserData:
    return ctx.user


async def get_optional_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    chain: AccessControlChain = Depends(get_access_chain),
) -> UserData | None:
    credential = _extract_credential(request, credentials)
    if not credential:
        return None
    ctx = await chain.authenticate(credential)
    return ctx.user


def require_permission(resource: str, action: str):
    """Fixed (resource, action) bound to the route."""

    async def dependency(
        ctx: AccessContext = Depends(get_access_context),
        chain: AccessControlChain = Depends(get_access_chain),
    ) -> AccessContext:
        chain.check_permission(ctx, resource, action)
        return ctx

    return dependency


def require_dynamic_permission():
    """The literal request path and verb are the resource and action."""

    async def dependency(
        request: Request,
        ctx: AccessContext = Depends(get_access_context),
        chain: AccessControlChain = Depends(get_access_chain),
    ) -> AccessContext:
        chain.check_permission(ctx, request.url.path, request.method)
        return ctx

    return dependency


def require_portal(*user_types: UserType):
    async def dependency(
        ctx: AccessContext = Depends(get_access_context),
        chain: AccessControlChain = Depends(get_access_chain),
    ) -> AccessContext:
        chain.check_portal(ctx, user_types)
        return ctx

    return dependency


def require_top_level_operator():
    async def dependency(ctx: AccessContext = Depends(get_access_context)) -> AccessContext:
        if not ctx.is_operator:
            raise InsufficientPermissionsError("Top-level operator access required")
        return ctx

    return dependency


def require_public_access():
    """Anonymous callers, evaluated as the public subject in the default domain."""

    async def dependency(
        request: Request,
        engine: EnforcementEngine = Depends(get_engine),
    ) -> None:
        domain = get_settings().default_domain
        if not authorize_public(engine, request.url.path, request.method, domain):
            raise InsufficientPermissionsError()

    return dependency
