import uuid

from fastapi import APIRouter, Depends, status

from ..access.chain import AccessContext
from ..access.dependencies import (
    get_access_context,
    get_identity_store,
    get_role_protocol,
    require_dynamic_permission,
    require_permission,
)
from ..domain.ports.identity import IdentityStorePort
from ..schemas.auth import UserProfile
from ..schemas.user import UserInvite
from ..services.role_assignment import RoleAssignmentProtocol
from ..use_cases.auth.deactivate_user import deactivate_user
from ..use_cases.auth.register_user import invite_user

router = APIRouter(prefix="/api/users", tags=["users"])


@router.post(
    "",
    response_model=UserProfile,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permission("/api/users", "POST"))],
)
async def invite(
    payload: UserInvite,
    ctx: AccessContext = Depends(get_access_context),
    identity: IdentityStorePort = Depends(get_identity_store),
    protocol: RoleAssignmentProtocol = Depends(get_role_protocol),
) -> UserProfile:
    user = await invite_user(
        identity,
        protocol,
        ctx.user,
        email=payload.email,
        password=payload.password,
        first_name=payload.first_name,
        last_name=payload.last_name,
        user_type=payload.user_type,
        tenant_id=payload.tenant_id,
    )
    return UserProfile.model_validate(user)


@router.delete(
    "/{user_id}",
    response_model=UserProfile,
    dependencies=[Depends(require_dynamic_permission())],
)
async def deactivate(
    user_id: uuid.UUID,
    ctx: AccessContext = Depends(get_access_context),
    identity: IdentityStorePort = Depends(get_identity_store),
    protocol: RoleAssignmentProtocol = Depends(get_role_protocol),
) -> UserProfile:
    user = await deactivate_user(identity, protocol, ctx.user, user_id)
    return UserProfile.model_validate(user)
