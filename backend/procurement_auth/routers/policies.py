from fastapi import APIRouter, Depends, Query

from ..access.dependencies import get_engine, require_top_level_operator
from ..authz.enforcer import EnforcementEngine
from ..authz.model import PolicyTuple, RoleAssignment
from ..errors import StoreUnavailableError
from ..schemas.policy import (
    MutationResponse,
    PolicyListResponse,
    PolicyTupleSchema,
    ReloadResponse,
    RoleAssignmentSchema,
)

router = APIRouter(
    prefix="/api/policies",
    tags=["policies"],
    dependencies=[Depends(require_top_level_operator())],
)


@router.get("", response_model=PolicyListResponse)
async def list_policies(
    domain: str | None = Query(None),
    engine: EnforcementEngine = Depends(get_engine),
) -> PolicyListResponse:
    return PolicyListResponse(
        policies=[
            PolicyTupleSchema(
                subject=p.subject, resource=p.resource, action=p.action, domain=p.domain
            )
            for p in engine.policies(domain)
        ],
        assignments=[
            RoleAssignmentSchema(subject=a.subject, role=a.role, domain=a.domain)
            for a in engine.assignments(domain)
        ],
    )


@router.post("", response_model=MutationResponse)
async def add_policy(
    payload: PolicyTupleSchema,
    engine: EnforcementEngine = Depends(get_engine),
) -> MutationResponse:
    policy = PolicyTuple.of(payload.subject, payload.resource, payload.action, payload.domain)
    return MutationResponse(changed=await engine.add_policy(policy))


@router.post("/remove", response_model=MutationResponse)
async def remove_policy(
    payload: PolicyTupleSchema,
    engine: EnforcementEngine = Depends(get_engine),
) -> MutationResponse:
    policy = PolicyTuple.of(payload.subject, payload.resource, payload.action, payload.domain)
    return MutationResponse(changed=await engine.remove_policy(policy))


@router.post("/assignments", response_model=MutationResponse)
async def add_assignment(
    payload: RoleAssignmentSchema,
    engine: EnforcementEngine = Depends(get_engine),
) -> MutationResponse:
    assignment = RoleAssignment.of(payload.subject, payload.role, payload.domain)
    changed = await engine.add_role_assignment(
        assignment.subject, assignment.role, assignment.domain
    )
    return MutationResponse(changed=changed)


@router.post("/assignments/remove", response_model=MutationResponse)
async def remove_assignment(
    payload: RoleAssignmentSchema,
    engine: EnforcementEngine = Depends(get_engine),
) -> MutationResponse:
    assignment = RoleAssignment.of(payload.subject, payload.role, payload.domain)
    changed = await engine.remove_role_assignment(
        assignment.subject, assignment.role, assignment.domain
    )
    return MutationResponse(changed=changed)


@router.post("/reload", response_model=ReloadResponse)
async def reload_policies(engine: EnforcementEngine = Depends(get_engine)) -> ReloadResponse:
    if not await engine.reload():
        raise StoreUnavailableError("Policy reload failed; serving the last snapshot")
    return ReloadResponse(
        reloaded=True,
        policies=len(engine.policies()),
        assignments=len(engine.assignments()),
    )
