import pytest

from procurement_auth.domain.enums import GlobalRole, RoleType, TenantType, UserType
from procurement_auth.errors import (
    DerivedRoleRevocationError,
    InsufficientPermissionsError,
    StoreUnavailableError,
)
from procurement_auth.services.role_assignment import RoleAssignmentProtocol
from tests.authz_helpers import (
    FakeIdentityStore,
    FakeRoleRepository,
    InMemoryPolicyStore,
    loaded_engine,
    make_role,
    make_tenant,
    make_user,
)


async def _setup(store: InMemoryPolicyStore | None = None):
    engine = await loaded_engine(store)
    roles = FakeRoleRepository.with_global_roles()
    identity = FakeIdentityStore()
    return engine, roles, identity, RoleAssignmentProtocol(engine, roles, identity)


@pytest.mark.anyio
async def test_declared_global_role_binds_in_user_tenant() -> None:
    engine, _roles, identity, protocol = await _setup()
    tenant = make_tenant(TenantType.CUSTOMER)
    user = make_user(tenant, global_role=GlobalRole.CUSTOMER_ADMIN)
    identity.add(tenant, user)

    bound = await protocol.ensure_declared_roles(user, tenant)

    assert bound == ["customer_admin"]
    assert engine.enforce(str(user.id), "/api/rfq/42", "POST", tenant.domain)
    assert not engine.enforce(str(user.id), "/api/rfq/42", "POST", "another-tenant")


@pytest.mark.anyio
async def test_declared_roles_are_bound_once() -> None:
    _engine, _roles, identity, protocol = await _setup()
    tenant = make_tenant(TenantType.VENDOR)
    user = make_user(tenant, user_type=UserType.VENDOR, global_role=GlobalRole.VENDOR_ADMIN)
    identity.add(tenant, user)

    assert await protocol.ensure_declared_roles(user, tenant) == ["vendor_admin"]
    assert await protocol.ensure_declared_roles(user, tenant) == []


@pytest.mark.anyio
async def test_declared_operator_role_binds_globally() -> None:
    engine, _roles, identity, protocol = await _setup()
    tenant = make_tenant(TenantType.ADMIN)
    user = make_user(tenant, user_type=UserType.TECHNICAL, global_role=GlobalRole.TECH)
    identity.add(tenant, user)

    await protocol.ensure_declared_roles(user, tenant)

    assert protocol.is_operator(user)
    assert engine.enforce(str(user.id), "/api/anything", "DELETE", "unrelated-tenant")


@pytest.mark.anyio
async def test_legacy_portal_role_never_binds_globally() -> None:
    engine, _roles, identity, protocol = await _setup()
    tenant = make_tenant(TenantType.ADMIN)
    user = make_user(tenant, user_type=UserType.TECHNICAL)
    identity.add(tenant, user)

    bound = await protocol.ensure_declared_roles(user, tenant)

    assert bound == ["tech"]
    assert engine.has_role_in_domain(str(user.id), "tech", tenant.domain)
    assert not protocol.is_operator(user)
    assert not engine.enforce(str(user.id), "/api/anything", "GET", "unrelated-tenant")


@pytest.mark.anyio
async def test_explicit_role_suppresses_legacy_derivation() -> None:
    _engine, roles, identity, protocol = await _setup()
    tenant = make_tenant(TenantType.CUSTOMER)
    buyer = roles.add(make_role("Buyer", [("/api/rfq", ["GET"])], tenant=tenant))
    user = make_user(tenant, tenant_role_ids=[str(buyer.id)])
    identity.add(tenant, user)

    assert await protocol.ensure_declared_roles(user, tenant) == ["Buyer"]


@pytest.mark.anyio
async def test_admin_grants_tenant_role() -> None:
    engine, roles, identity, protocol = await _setup()
    tenant = make_tenant(TenantType.CUSTOMER)
    admin = make_user(tenant, global_role=GlobalRole.CUSTOMER_ADMIN)
    target = make_user(tenant)
    identity.add(tenant, admin, target)
    await protocol.ensure_declared_roles(admin, tenant)
    buyer = roles.add(make_role("Buyer", [("/api/rfq/*", ["GET", "POST"])], tenant=tenant))

    updated = await protocol.grant(admin, buyer.id, target.id)

    assert updated.tenant_role_ids == [str(buyer.id)]
    assert identity.commits == 1
    assert engine.enforce(str(target.id), "/api/rfq/1", "POST", tenant.domain)

    await protocol.revoke(admin, buyer.id, target.id)

    assert target.tenant_role_ids == []
    assert not engine.enforce(str(target.id), "/api/rfq/1", "POST", tenant.domain)


@pytest.mark.anyio
async def test_internal_role_is_recorded_separately() -> None:
    _engine, roles, identity, protocol = await _setup()
    tenant = make_tenant(TenantType.CUSTOMER)
    operator = make_user(tenant, user_type=UserType.TECHNICAL, global_role=GlobalRole.TECH)
    target = make_user(tenant)
    identity.add(tenant, operator, target)
    await protocol.ensure_declared_roles(operator, tenant)
    officer = roles.add(
        make_role("Procurement Officer", [("/api/rfq/*", ["*"])], role_type=RoleType.INTERNAL, tenant=tenant)
    )

    await protocol.grant(operator, officer.id, target.id)

    assert target.internal_role_ids == [str(officer.id)]
    assert target.tenant_role_ids == []


@pytest.mark.anyio
async def test_cross_tenant_grant_is_refused_for_admins() -> None:
    _engine, roles, identity, protocol = await _setup()
    home = make_tenant(TenantType.CUSTOMER)
    other = make_tenant(TenantType.CUSTOMER)
    admin = make_user(home, global_role=GlobalRole.CUSTOMER_ADMIN)
    stranger = make_user(other)
    identity.add(home, other, admin, stranger)
    await protocol.ensure_declared_roles(admin, home)
    role = roles.add(make_role("Buyer", [("/api/rfq", ["GET"])], tenant=other))

    with pytest.raises(InsufficientPermissionsError):
        await protocol.grant(admin, role.id, stranger.id)


@pytest.mark.anyio
async def test_only_operators_grant_the_operator_role() -> None:
    _engine, roles, identity, protocol = await _setup()
    tenant = make_tenant(TenantType.ADMIN)
    admin = make_user(tenant, user_type=UserType.ADMIN, global_role=GlobalRole.ADMIN)
    target = make_user(tenant, user_type=UserType.ADMIN)
    identity.add(tenant, admin, target)
    await protocol.ensure_declared_roles(admin, tenant)
    tech = await roles.get_by_global_role(GlobalRole.TECH)

    with pytest.raises(InsufficientPermissionsError):
        await protocol.grant(admin, tech.id, target.id)


@pytest.mark.anyio
async def test_grant_rolls_back_identity_when_engine_fails() -> None:
    store = InMemoryPolicyStore()
    _engine, roles, identity, protocol = await _setup(store)
    tenant = make_tenant(TenantType.CUSTOMER)
    operator = make_user(tenant, user_type=UserType.TECHNICAL, global_role=GlobalRole.TECH)
    target = make_user(tenant)
    identity.add(tenant, operator, target)
    await protocol.ensure_declared_roles(operator, tenant)
    buyer = roles.add(make_role("Buyer", [("/api/rfq", ["GET"])], tenant=tenant))

    store.fail_persist = True
    with pytest.raises(StoreUnavailableError):
        await protocol.grant(operator, buyer.id, target.id)

    assert identity.rollbacks == 1
    assert identity.commits == 0


@pytest.mark.anyio
async def test_grant_undoes_binding_when_commit_fails() -> None:
    engine, roles, identity, protocol = await _setup()
    tenant = make_tenant(TenantType.CUSTOMER)
    operator = make_user(tenant, user_type=UserType.TECHNICAL, global_role=GlobalRole.TECH)
    target = make_user(tenant)
    identity.add(tenant, operator, target)
    await protocol.ensure_declared_roles(operator, tenant)
    buyer = roles.add(make_role("Buyer", [("/api/rfq", ["GET"])], tenant=tenant))

    identity.fail_commit = True
    with pytest.raises(StoreUnavailableError):
        await protocol.grant(operator, buyer.id, target.id)

    assert not engine.has_role_in_domain(str(target.id), "Buyer", tenant.domain)


@pytest.mark.anyio
async def test_replacing_global_role_unbinds_previous_code() -> None:
    engine, roles, identity, protocol = await _setup()
    tenant = make_tenant(TenantType.ADMIN)
    operator = make_user(tenant, user_type=UserType.TECHNICAL, global_role=GlobalRole.TECH)
    target = make_user(tenant, user_type=UserType.ADMIN, global_role=GlobalRole.ADMIN)
    identity.add(tenant, operator, target)
    await protocol.ensure_declared_roles(operator, tenant)
    await protocol.ensure_declared_roles(target, tenant)
    customer_admin = await roles.get_by_global_role(GlobalRole.CUSTOMER_ADMIN)

    await protocol.grant(operator, customer_admin.id, target.id)

    assert target.global_role is GlobalRole.CUSTOMER_ADMIN
    held = engine.roles_for_user(str(target.id), tenant.domain)
    assert "customer_admin" in held
    assert "admin" not in held


@pytest.mark.anyio
async def test_role_derived_from_user_type_cannot_be_revoked_silently() -> None:
    engine, roles, identity, protocol = await _setup()
    tenant = make_tenant(TenantType.CUSTOMER)
    operator = make_user(tenant, user_type=UserType.TECHNICAL, global_role=GlobalRole.TECH)
    member = make_user(tenant)
    identity.add(tenant, operator, member)
    await protocol.ensure_declared_roles(operator, tenant)
    assert await protocol.ensure_declared_roles(member, tenant) == ["customer_admin"]
    customer_admin = await roles.get_by_global_role(GlobalRole.CUSTOMER_ADMIN)

    with pytest.raises(DerivedRoleRevocationError) as exc_info:
        await protocol.revoke(operator, customer_admin.id, member.id)

    assert exc_info.value.status_code == 409
    assert exc_info.value.details == {"user_type": "customer"}
    assert engine.has_role_in_domain(str(member.id), "customer_admin", tenant.domain)

    # once an explicit role is declared the derived one can go for good
    buyer = roles.add(make_role("Buyer", [("/api/rfq", ["GET"])], tenant=tenant))
    await protocol.grant(operator, buyer.id, member.id)
    await protocol.revoke(operator, customer_admin.id, member.id)

    assert await protocol.ensure_declared_roles(member, tenant) == []
    assert not engine.has_role_in_domain(str(member.id), "customer_admin", tenant.domain)
    assert engine.has_role_in_domain(str(member.id), "Buyer", tenant.domain)


@pytest.mark.anyio
async def test_failed_commit_restores_replaced_global_role() -> None:
    engine, roles, identity, protocol = await _setup()
    tenant = make_tenant(TenantType.ADMIN)
    operator = make_user(tenant, user_type=UserType.TECHNICAL, global_role=GlobalRole.TECH)
    target = make_user(tenant, user_type=UserType.ADMIN, global_role=GlobalRole.ADMIN)
    identity.add(tenant, operator, target)
    await protocol.ensure_declared_roles(operator, tenant)
    await protocol.ensure_declared_roles(target, tenant)
    customer_admin = await roles.get_by_global_role(GlobalRole.CUSTOMER_ADMIN)

    identity.fail_commit = True
    with pytest.raises(StoreUnavailableError):
        await protocol.grant(operator, customer_admin.id, target.id)

    held = engine.roles_for_user(str(target.id), tenant.domain)
    assert "admin" in held
    assert "customer_admin" not in held
