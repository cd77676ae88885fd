from fastapi import APIRouter, Depends, Request, Response, status

from ..access.chain import AccessContext
from ..access.dependencies import (
    ACCESS_COOKIE,
    REFRESH_COOKIE,
    get_access_context,
    get_identity_store,
    get_lockout_policy,
    get_optional_user,
    get_role_protocol,
    get_token_manager,
    require_public_access,
)
from ..application.lockout import LockoutPolicy
from ..config import get_settings
from ..domain.ports.identity import IdentityStorePort, UserData
from ..errors import UnauthenticatedError
from ..schemas.auth import (
    MeResponse,
    RefreshTokenRequest,
    SessionResponse,
    TenantSummary,
    TokenResponse,
    UserLogin,
    UserProfile,
    UserRegister,
)
from ..security.tokens import AuthTokens, TokenManager
from ..services.role_assignment import RoleAssignmentProtocol
from ..use_cases.auth.login_user import login_user
from ..use_cases.auth.logout_user import logout_user
from ..use_cases.auth.refresh_session import refresh_session
from ..use_cases.auth.register_user import register_operator

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _client_ip(request: Request) -> str:
    client_host = request.client.host if request.client else None
    return client_host or "unknown-ip"


def set_token_cookies(response: Response, tokens: AuthTokens, token_manager: TokenManager) -> None:
    settings = get_settings()
    common = {
        "httponly": True,
        "secure": settings.cookie_secure,
        "samesite": settings.cookie_samesite,
        "domain": settings.cookie_domain,
        "path": "/",
    }
    response.set_cookie(
        ACCESS_COOKIE,
        tokens.access_token,
        max_age=int(token_manager.access_ttl.total_seconds()),
        **common,
    )
    response.set_cookie(
        REFRESH_COOKIE,
        tokens.refresh_token,
        max_age=int(token_manager.refresh_ttl.total_seconds()),
        **common,
    )


def clear_token_cookies(response: Response) -> None:
    settings = get_settings()
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(name, path="/", domain=settings.cookie_domain)


@router.post(
    "/register",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_public_access())],
)
async def register(
    payload: UserRegister,
    response: Response,
    identity: IdentityStorePort = Depends(get_identity_store),
    token_manager: TokenManager = Depends(get_token_manager),
    roles: RoleAssignmentProtocol = Depends(get_role_protocol),
) -> SessionResponse:
    result = await register_operator(
        identity,
        token_manager,
        email=payload.email,
        password=payload.password,
        first_name=payload.first_name,
        last_name=payload.last_name,
        user_type=payload.user_type,
        company_name=payload.company_name,
        roles=roles,
    )
    set_token_cookies(response, result.tokens, token_manager)
    return SessionResponse(
        access_token=result.tokens.access_token,
        refresh_token=result.tokens.refresh_token,
        user=UserProfile.model_validate(result.user),
        tenant=TenantSummary.model_validate(result.tenant),
    )


@router.post(
    "/login",
    response_model=SessionResponse,
    dependencies=[Depends(require_public_access())],
)
async def login(
    payload: UserLogin,
    request: Request,
    response: Response,
    identity: IdentityStorePort = Depends(get_identity_store),
    token_manager: TokenManager = Depends(get_token_manager),
    roles: RoleAssignmentProtocol = Depends(get_role_protocol),
    lockout: LockoutPolicy = Depends(get_lockout_policy),
) -> SessionResponse:
    tenant_scope = None
    if payload.tenant_slug:
        tenant = await identity.find_tenant_by_slug(payload.tenant_slug)
        if tenant is None:
            raise UnauthenticatedError("Invalid credentials")
        tenant_scope = tenant.id

    result = await login_user(
        identity,
        token_manager,
        payload.email,
        payload.password,
        tenant_scope=tenant_scope,
        user_type=payload.user_type,
        client_ip=_client_ip(request),
        lockout=lockout,
        roles=roles,
    )
    set_token_cookies(response, result.tokens, token_manager)
    return SessionResponse(
        access_token=result.tokens.access_token,
        refresh_token=result.tokens.refresh_token,
        user=UserProfile.model_validate(result.user),
        tenant=TenantSummary.model_validate(result.tenant),
    )


@router.post(
    "/refresh",
    response_model=TokenResponse,
    dependencies=[Depends(require_public_access())],
)
async def refresh(
    request: Request,
    response: Response,
    payload: RefreshTokenRequest | None = None,
    identity: IdentityStorePort = Depends(get_identity_store),
    token_manager: TokenManager = Depends(get_token_manager),
) -> TokenResponse:
    refresh_token = (payload.refresh_token if payload else None) or request.cookies.get(REFRESH_COOKIE)
    tokens = await refresh_session(
        identity, token_manager, refresh_token, client_ip=_client_ip(request)
    )
    set_token_cookies(response, tokens, token_manager)
    return TokenResponse(access_token=tokens.access_token, refresh_token=tokens.refresh_token)


@router.post(
    "/logout",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_public_access())],
)
async def logout(
    response: Response,
    user: UserData | None = Depends(get_optional_user),
) -> Response:
    await logout_user(user.id if user else None)
    response.status_code = status.HTTP_204_NO_CONTENT
    clear_token_cookies(response)
    return response


@router.get("/me", response_model=MeResponse)
async def me(
    ctx: AccessContext = Depends(get_access_context),
    roles: RoleAssignmentProtocol = Depends(get_role_protocol),
) -> MeResponse:
    engine = roles.engine
    held = engine.roles_for_user(ctx.subject, ctx.domain) | engine.roles_for_user(
        ctx.subject, engine.global_domain
    )
    return MeResponse(
        user=UserProfile.model_validate(ctx.user),
        tenant=TenantSummary.model_validate(ctx.tenant),
        roles=sorted(held),
        is_top_level_operator=ctx.is_operator,
    )
