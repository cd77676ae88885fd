import uuid

from fastapi import APIRouter, Depends, status

from ..access.chain import AccessContext
from ..access.dependencies import (
    get_access_context,
    get_role_catalog,
    get_role_protocol,
    require_dynamic_permission,
    require_permission,
)
from ..schemas.auth import UserProfile
from ..schemas.role import (
    RoleAssignRequest,
    RoleCreate,
    RoleResponse,
    RoleUpdate,
    TemplateInstantiateRequest,
)
from ..services.role_assignment import RoleAssignmentProtocol
from ..services.role_catalog import RoleCatalogService

router = APIRouter(prefix="/api/roles", tags=["roles"])


@router.get("", response_model=list[RoleResponse])
async def list_roles(
    ctx: AccessContext = Depends(get_access_context),
    catalog: RoleCatalogService = Depends(get_role_catalog),
) -> list[RoleResponse]:
    roles = await catalog.list_visible_roles(ctx.user)
    return [RoleResponse.model_validate(role) for role in roles]


@router.post(
    "",
    response_model=RoleResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permission("/api/roles", "POST"))],
)
async def create_role(
    payload: RoleCreate,
    ctx: AccessContext = Depends(get_access_context),
    catalog: RoleCatalogService = Depends(get_role_catalog),
) -> RoleResponse:
    role = await catalog.create_role(ctx.user, payload)
    return RoleResponse.model_validate(role)


@router.post(
    "/templates/{template_id}/instantiate",
    response_model=RoleResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_dynamic_permission())],
)
async def instantiate_template(
    template_id: uuid.UUID,
    payload: TemplateInstantiateRequest | None = None,
    ctx: AccessContext = Depends(get_access_context),
    catalog: RoleCatalogService = Depends(get_role_catalog),
) -> RoleResponse:
    role = await catalog.instantiate_template(
        ctx.user, template_id, payload.tenant_id if payload else None
    )
    return RoleResponse.model_validate(role)


@router.get(
    "/{role_id}",
    response_model=RoleResponse,
)
async def get_role(
    role_id: uuid.UUID,
    ctx: AccessContext = Depends(get_access_context),
    catalog: RoleCatalogService = Depends(get_role_catalog),
) -> RoleResponse:
    role = await catalog.get_role(ctx.user, role_id)
    return RoleResponse.model_validate(role)


@router.put(
    "/{role_id}",
    response_model=RoleResponse,
    dependencies=[Depends(require_dynamic_permission())],
)
async def update_role(
    role_id: uuid.UUID,
    payload: RoleUpdate,
    ctx: AccessContext = Depends(get_access_context),
    catalog: RoleCatalogService = Depends(get_role_catalog),
) -> RoleResponse:
    role = await catalog.update_role(ctx.user, role_id, payload)
    return RoleResponse.model_validate(role)


@router.delete(
    "/{role_id}",
    response_model=RoleResponse,
    dependencies=[Depends(require_dynamic_permission())],
)
async def deactivate_role(
    role_id: uuid.UUID,
    ctx: AccessContext = Depends(get_access_context),
    catalog: RoleCatalogService = Depends(get_role_catalog),
) -> RoleResponse:
    role = await catalog.deactivate_role(ctx.user, role_id)
    return RoleResponse.model_validate(role)


@router.post(
    "/{role_id}/assign",
    response_model=UserProfile,
    dependencies=[Depends(require_dynamic_permission())],
)
async def assign_role(
    role_id: uuid.UUID,
    payload: RoleAssignRequest,
    ctx: AccessContext = Depends(get_access_context),
    protocol: RoleAssignmentProtocol = Depends(get_role_protocol),
) -> UserProfile:
    user = await protocol.grant(ctx.user, role_id, payload.user_id)
    return UserProfile.model_validate(user)


@router.post(
    "/{role_id}/unassign",
    response_model=UserProfile,
    dependencies=[Depends(require_dynamic_permission())],
)
async def unassign_role(
    role_id: uuid.UUID,
    payload: RoleAssignRequest,
    ctx: AccessContext = Depends(get_access_context),
    protocol: RoleAssignmentProtocol = Depends(get_role_protocol),
) -> UserProfile:
    user = await protocol.revoke(ctx.user, role_id, payload.user_id)
    return UserProfile.model_validate(user)
