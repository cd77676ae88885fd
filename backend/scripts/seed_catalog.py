"""
Seed the role catalog, the baseline policies and (optionally) the bootstrap
top-level operator. Safe to run repeatedly: seeded stores are left as they are.

The API seeds the same data at startup; this script is for fresh databases
prepared before the first deploy.

Usage:
    python -m scripts.seed_catalog
"""
import asyncio
import logging

from procurement_auth.authz.enforcer import EnforcementEngine
from procurement_auth.config import get_settings
from procurement_auth.crud.policy import SqlPolicyStore
from procurement_auth.database import AsyncSessionLocal, engine as db_engine
from procurement_auth.services.seeding import (
    create_default_operator,
    seed_default_policies,
    seed_default_roles,
)

logger = logging.getLogger("procurement.seeding")


async def seed_catalog() -> None:
    settings = get_settings()
    policy_engine = EnforcementEngine(
        SqlPolicyStore(AsyncSessionLocal),
        global_domain=settings.global_domain,
        fail_mode=settings.enforcement_fail_mode,
    )
    await policy_engine.load()

    async with AsyncSessionLocal() as session:
        roles_seeded = await seed_default_roles(session)
    policies_seeded = await seed_default_policies(policy_engine, settings.default_domain)

    operator = None
    if settings.bootstrap_operator_email and settings.bootstrap_operator_password:
        async with AsyncSessionLocal() as session:
            operator = await create_default_operator(
                session,
                policy_engine,
                email=settings.bootstrap_operator_email,
                password=settings.bootstrap_operator_password,
            )

    logger.info(
        "Seeding finished roles=%s policies=%s operator=%s",
        roles_seeded,
        policies_seeded,
        operator.id if operator else None,
    )
    await db_engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    asyncio.run(seed_catalog())
