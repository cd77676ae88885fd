import logging
from collections.abc import Callable

from sqlalchemy import delete, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..authz.model import PolicyRecords, PolicyTuple, RoleAssignment
from ..errors import StoreUnavailableError
from ..models.policy import PolicyRule, RoleAssignmentRule

logger = logging.getLogger("procurement.policy_store")


class SqlPolicyStore:
    """Policy store backed by the ``policy_rules`` and ``role_assignments`` tables.

    Opens its own session per call: the enforcement engine outlives any
    request-scoped session.
    """

    def __init__(self, session_factory: Callable[[], AsyncSession]) -> None:
        self._session_factory = session_factory

    async def load_all(self, domain: str | None = None) -> PolicyRecords:
        policy_query = select(
            PolicyRule.subject, PolicyRule.resource, PolicyRule.action, PolicyRule.domain
        )
        assignment_query = select(
            RoleAssignmentRule.subject, RoleAssignmentRule.role, RoleAssignmentRule.domain
        )
        if domain is not None:
            policy_query = policy_query.where(PolicyRule.domain == domain)
            assignment_query = assignment_query.where(RoleAssignmentRule.domain == domain)

        try:
            async with self._session_factory() as session:
                policy_rows = (await session.execute(policy_query)).all()
                assignment_rows = (await session.execute(assignment_query)).all()
        except SQLAlchemyError as exc:
            logger.error("Policy store read failed error=%s", exc)
            raise StoreUnavailableError("Policy store is unavailable") from exc

        return PolicyRecords(
            policies=frozenset(PolicyTuple(*row) for row in policy_rows),
            assignments=frozenset(RoleAssignment(*row) for row in assignment_rows),
        )

    async def persist(self, records: PolicyRecords) -> None:
        policy_rows = [
            {"subject": p.subject, "resource": p.resource, "action": p.action, "domain": p.domain}
            for p in records.policies
        ]
        assignment_rows = [
            {"subject": a.subject, "role": a.role, "domain": a.domain}
            for a in records.assignments
        ]

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await session.execute(delete(PolicyRule))
                    await session.execute(delete(RoleAssignmentRule))
                    if policy_rows:
                        await session.execute(insert(PolicyRule), policy_rows)
                    if assignment_rows:
                        await session.execute(insert(RoleAssignmentRule), assignment_rows)
        except SQLAlchemyError as exc:
            logger.error("Policy store write failed error=%s", exc)
            raise StoreUnavailableError("Policy store is unavailable") from exc
