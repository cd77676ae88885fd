import logging
import uuid

from ...domain.enums import LifecycleState
from ...domain.ports.identity import IdentityStorePort, UserData
from ...errors import InsufficientPermissionsError, ValidationError
from ...services.role_assignment import RoleAssignmentProtocol

logger = logging.getLogger("procurement.auth")


async def deactivate_user(
    identity: IdentityStorePort,
    roles: RoleAssignmentProtocol,
    caller: UserData,
    user_id: uuid.UUID,
) -> UserData:
    """Soft-deactivate a user; role assignments are kept for reactivation."""
    if caller.id == user_id:
        raise ValidationError("Users cannot deactivate themselves")

    target = await identity.find_user_by_id(user_id)
    if not roles.is_operator(caller):
        if not roles.is_administrator(caller) or target.tenant_id != caller.tenant_id:
            raise InsufficientPermissionsError("Cannot deactivate this user")
        if roles.is_operator(target):
            raise InsufficientPermissionsError("Cannot deactivate a top-level operator")

    if target.lifecycle is LifecycleState.DEACTIVATED:
        return target

    try:
        target = await identity.update_user(target.id, {"lifecycle": LifecycleState.DEACTIVATED})
        await identity.commit()
    except Exception:
        await identity.rollback()
        raise

    logger.info("User deactivated user_id=%s by=%s", target.id, caller.id)
    return target
