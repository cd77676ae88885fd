from __future__ import annotations

import uuid

from .catalog import TOP_LEVEL_OPERATOR_ROLE
from .enforcer import EnforcementEngine


class AuthorizationService:
    """Allow/deny surface for business-logic collaborators.

    Both calls are synchronous and never perform I/O.
    """

    def __init__(self, engine: EnforcementEngine) -> None:
        self.engine = engine

    def is_allowed(
        self,
        user_id: uuid.UUID | str,
        resource: str,
        action: str,
        tenant_id: uuid.UUID | str,
    ) -> bool:
        return self.engine.enforce(str(user_id), resource, action, str(tenant_id))

    def is_top_level_operator(self, user_id: uuid.UUID | str) -> bool:
        engine = self.engine
        return engine.has_role_in_domain(
            str(user_id), TOP_LEVEL_OPERATOR_ROLE, engine.global_domain
        )
