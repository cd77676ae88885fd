import pytest

from procurement_auth.domain.enums import (
    GlobalRole,
    LifecycleState,
    RoleType,
    TenantType,
    UserType,
)
from procurement_auth.errors import (
    ConflictError,
    InsufficientPermissionsError,
    RoleInUseError,
    RoleNotFoundError,
    ValidationError,
)
from procurement_auth.schemas.role import RoleCreate, RoleUpdate
from procurement_auth.services.role_assignment import RoleAssignmentProtocol
from procurement_auth.services.role_catalog import RoleCatalogService
from tests.authz_helpers import (
    FakeIdentityStore,
    FakeRoleRepository,
    FakeSession,
    FakeUserRepository,
    loaded_engine,
    make_role,
    make_tenant,
    make_user,
)


class CatalogFixture:
    def __init__(self, engine, roles, identity, protocol, session, service) -> None:
        self.engine = engine
        self.roles = roles
        self.identity = identity
        self.protocol = protocol
        self.session = session
        self.service = service

    async def admin_of(self, tenant, global_role: GlobalRole, user_type: UserType = UserType.CUSTOMER):
        user = make_user(tenant, user_type=user_type, global_role=global_role)
        self.identity.add(user)
        await self.protocol.ensure_declared_roles(user, tenant)
        return user


async def _catalog() -> CatalogFixture:
    engine = await loaded_engine()
    roles = FakeRoleRepository.with_global_roles()
    identity = FakeIdentityStore()
    protocol = RoleAssignmentProtocol(engine, roles, identity)
    session = FakeSession()
    service = RoleCatalogService(
        session, protocol, roles=roles, users=FakeUserRepository(identity)
    )
    return CatalogFixture(engine, roles, identity, protocol, session, service)


@pytest.mark.anyio
async def test_customer_admin_creates_internal_role_in_own_tenant() -> None:
    fx = await _catalog()
    tenant = make_tenant(TenantType.CUSTOMER)
    fx.identity.add(tenant)
    admin = await fx.admin_of(tenant, GlobalRole.CUSTOMER_ADMIN)

    role = await fx.service.create_role(
        admin,
        RoleCreate(
            name="Deck Officer",
            role_type=RoleType.INTERNAL,
            permissions=[{"resource": "/api/rfq/*", "actions": ["GET"]}],
            maritime_features=["rfq_management"],
        ),
    )

    assert role.tenant_id == tenant.id
    assert role.tenant_type is TenantType.CUSTOMER
    assert role.created_by == admin.id
    assert fx.session.commits == 1


@pytest.mark.anyio
async def test_tenant_roles_require_platform_admin() -> None:
    fx = await _catalog()
    tenant = make_tenant(TenantType.CUSTOMER)
    fx.identity.add(tenant)
    admin = await fx.admin_of(tenant, GlobalRole.CUSTOMER_ADMIN)

    with pytest.raises(InsufficientPermissionsError):
        await fx.service.create_role(admin, RoleCreate(name="Buyer", role_type=RoleType.TENANT))
    with pytest.raises(InsufficientPermissionsError):
        await fx.service.create_role(admin, RoleCreate(name="Ops", role_type=RoleType.GLOBAL))


@pytest.mark.anyio
async def test_tenant_role_names_cannot_shadow_global_subjects() -> None:
    fx = await _catalog()
    tenant = make_tenant(TenantType.CUSTOMER)
    fx.identity.add(tenant)
    admin = await fx.admin_of(tenant, GlobalRole.CUSTOMER_ADMIN)

    for name in ("tech", "public", "Platform Admin"):
        with pytest.raises(ConflictError):
            await fx.service.create_role(admin, RoleCreate(name=name, role_type=RoleType.INTERNAL))


@pytest.mark.anyio
async def test_duplicate_name_in_tenant_conflicts() -> None:
    fx = await _catalog()
    tenant = make_tenant(TenantType.CUSTOMER)
    fx.identity.add(tenant)
    admin = await fx.admin_of(tenant, GlobalRole.CUSTOMER_ADMIN)
    payload = RoleCreate(name="Deck Officer", role_type=RoleType.INTERNAL)

    await fx.service.create_role(admin, payload)
    with pytest.raises(ConflictError):
        await fx.service.create_role(admin, payload)


@pytest.mark.anyio
async def test_role_in_use_cannot_be_deactivated_until_released() -> None:
    fx = await _catalog()
    tenant = make_tenant(TenantType.CUSTOMER)
    fx.identity.add(tenant)
    admin = await fx.admin_of(tenant, GlobalRole.CUSTOMER_ADMIN)
    role = fx.roles.add(
        make_role("Buyer", [("/api/rfq/*", ["GET"])], role_type=RoleType.INTERNAL, tenant=tenant)
    )
    member = make_user(tenant)
    fx.identity.add(member)
    await fx.protocol.grant(admin, role.id, member.id)

    with pytest.raises(RoleInUseError) as exc_info:
        await fx.service.deactivate_role(admin, role.id)
    assert exc_info.value.details == {"user_count": 1}

    await fx.protocol.revoke(admin, role.id, member.id)
    deactivated = await fx.service.deactivate_role(admin, role.id)

    assert deactivated.lifecycle is LifecycleState.DEACTIVATED
    assert not [p for p in fx.engine.policies() if p.subject == "Buyer"]
    with pytest.raises(RoleNotFoundError):
        await fx.service.get_role(admin, role.id)


@pytest.mark.anyio
async def test_rename_moves_policies_and_assignments() -> None:
    fx = await _catalog()
    tenant = make_tenant(TenantType.CUSTOMER)
    fx.identity.add(tenant)
    admin = await fx.admin_of(tenant, GlobalRole.CUSTOMER_ADMIN)
    role = fx.roles.add(
        make_role("Buyer", [("/api/rfq/*", ["GET"])], role_type=RoleType.INTERNAL, tenant=tenant)
    )
    member = make_user(tenant)
    fx.identity.add(member)
    await fx.protocol.grant(admin, role.id, member.id)

    await fx.service.update_role(
        admin,
        role.id,
        RoleUpdate(name="Senior Buyer", permissions=[{"resource": "/api/orders/*", "actions": ["POST"]}]),
    )

    subject = str(member.id)
    assert fx.engine.has_role_in_domain(subject, "Senior Buyer", tenant.domain)
    assert not fx.engine.has_role_in_domain(subject, "Buyer", tenant.domain)
    assert fx.engine.enforce(subject, "/api/orders/1", "POST", tenant.domain)
    assert not fx.engine.enforce(subject, "/api/rfq/1", "GET", tenant.domain)


@pytest.mark.anyio
async def test_system_roles_are_protected_from_tenant_admins() -> None:
    fx = await _catalog()
    tenant = make_tenant(TenantType.CUSTOMER)
    fx.identity.add(tenant)
    admin = await fx.admin_of(tenant, GlobalRole.CUSTOMER_ADMIN)
    platform_admin = await fx.roles.get_by_global_role(GlobalRole.ADMIN)

    with pytest.raises(InsufficientPermissionsError):
        await fx.service.update_role(admin, platform_admin.id, RoleUpdate(description="mine now"))
    with pytest.raises(InsufficientPermissionsError):
        await fx.service.deactivate_role(admin, platform_admin.id)


@pytest.mark.anyio
async def test_template_instantiation_matches_tenant_type() -> None:
    fx = await _catalog()
    system = make_tenant(TenantType.ADMIN)
    customer = make_tenant(TenantType.CUSTOMER)
    vendor = make_tenant(TenantType.VENDOR)
    fx.identity.add(system, customer, vendor)
    template = fx.roles.add(
        make_role(
            "Fleet Manager",
            [("/api/customers/vessels/*", ["*"])],
            role_type=RoleType.INTERNAL,
            tenant=system,
            is_template=True,
        )
    )
    template.tenant_type = TenantType.CUSTOMER

    customer_admin = await fx.admin_of(customer, GlobalRole.CUSTOMER_ADMIN)
    copy = await fx.service.instantiate_template(customer_admin, template.id)

    assert copy.tenant_id == customer.id
    assert copy.is_template is False
    assert copy.permission_entries() == [("/api/customers/vessels/*", ["*"])]

    vendor_admin = await fx.admin_of(vendor, GlobalRole.VENDOR_ADMIN, UserType.VENDOR)
    with pytest.raises(ValidationError):
        await fx.service.instantiate_template(vendor_admin, template.id)


@pytest.mark.anyio
async def test_plain_members_only_see_their_own_roles() -> None:
    fx = await _catalog()
    tenant = make_tenant(TenantType.CUSTOMER)
    fx.identity.add(tenant)
    mine = fx.roles.add(make_role("Buyer", [("/api/rfq", ["GET"])], tenant=tenant))
    fx.roles.add(make_role("Approver", [("/api/orders", ["PUT"])], tenant=tenant))
    member = make_user(tenant, tenant_role_ids=[str(mine.id)])
    fx.identity.add(member)

    visible = await fx.service.list_visible_roles(member)

    assert [role.name for role in visible] == ["Buyer"]


@pytest.mark.anyio
async def test_other_tenants_roles_are_hidden() -> None:
    fx = await _catalog()
    home = make_tenant(TenantType.CUSTOMER)
    other = make_tenant(TenantType.CUSTOMER)
    fx.identity.add(home, other)
    admin = await fx.admin_of(home, GlobalRole.CUSTOMER_ADMIN)
    foreign = fx.roles.add(make_role("Buyer", [("/api/rfq", ["GET"])], tenant=other))

    with pytest.raises(InsufficientPermissionsError):
        await fx.service.get_role(admin, foreign.id)
    assert foreign not in await fx.service.list_visible_roles(admin)


@pytest.mark.anyio
async def test_global_role_names_cannot_reuse_tenant_role_names() -> None:
    fx = await _catalog()
    customer = make_tenant(TenantType.CUSTOMER)
    platform = make_tenant(TenantType.ADMIN)
    fx.identity.add(customer, platform)
    admin = await fx.admin_of(customer, GlobalRole.CUSTOMER_ADMIN)
    operator = await fx.admin_of(platform, GlobalRole.TECH, UserType.TECHNICAL)
    buyer = await fx.service.create_role(
        admin,
        RoleCreate(
            name="Buyer",
            role_type=RoleType.INTERNAL,
            permissions=[{"resource": "/api/rfq/*", "actions": ["GET"]}],
        ),
    )
    member = make_user(customer)
    fx.identity.add(member)
    await fx.protocol.grant(admin, buyer.id, member.id)

    with pytest.raises(ConflictError) as exc_info:
        await fx.service.create_role(operator, RoleCreate(name="Buyer", role_type=RoleType.GLOBAL))
    assert exc_info.value.details == {"name": "Buyer"}

    auditor = await fx.service.create_role(
        operator, RoleCreate(name="Fleet Auditor", role_type=RoleType.GLOBAL)
    )
    with pytest.raises(ConflictError):
        await fx.service.update_role(operator, auditor.id, RoleUpdate(name="Buyer"))
    await fx.service.deactivate_role(operator, auditor.id)

    assert fx.engine.enforce(str(member.id), "/api/rfq/1", "GET", customer.domain)
