import uuid

import pytest
from pydantic import ValidationError as PydanticValidationError

from procurement_auth.authz.catalog import (
    GLOBAL_ROLES,
    INTERNAL_ROLE_TEMPLATES,
    PUBLIC_SUBJECT,
    global_role_definition,
    public_policies,
    validate_actions,
)
from procurement_auth.domain.enums import GlobalRole, MaritimeFeature, RoleType, TenantType
from procurement_auth.domain.invariants import (
    InvariantViolation,
    slugify,
    validate_role_shape,
    validate_tenant_slug,
)
from procurement_auth.schemas.role import RoleCreate


def test_every_global_role_code_has_exactly_one_definition() -> None:
    codes = [definition.global_role for definition in GLOBAL_ROLES]

    assert sorted(code.value for code in codes) == sorted(code.value for code in GlobalRole)
    assert all(definition.is_system_role for definition in GLOBAL_ROLES)


def test_templates_are_internal_and_typed() -> None:
    for definition in INTERNAL_ROLE_TEMPLATES:
        assert definition.role_type is RoleType.INTERNAL
        assert definition.tenant_type in (TenantType.CUSTOMER, TenantType.VENDOR)
        assert definition.global_role is None


def test_operator_definition_grants_everything() -> None:
    operator = global_role_definition(GlobalRole.TECH)

    expanded = [policy for entry in operator.permissions for policy in entry.expand("tech", "*")]

    assert any(policy.resource == "/*" and policy.action == "*" for policy in expanded)
    assert operator.features & MaritimeFeature.SYSTEM_ADMIN


def test_public_policies_cover_session_endpoints() -> None:
    policies = public_policies("maritime-procurement")

    assert {(p.resource, p.action) for p in policies} >= {
        ("/api/auth/login", "POST"),
        ("/api/auth/register", "POST"),
        ("/api/auth/refresh", "POST"),
    }
    assert all(p.subject == PUBLIC_SUBJECT for p in policies)
    assert all(p.domain == "maritime-procurement" for p in policies)


def test_validate_actions_normalizes_and_deduplicates() -> None:
    assert validate_actions(["get", "GET", "post"]) == ["GET", "POST"]
    assert validate_actions(["*"]) == ["*"]
    with pytest.raises(ValueError):
        validate_actions(["FETCH"])
    with pytest.raises(ValueError):
        validate_actions([])


def test_role_shape_rules() -> None:
    validate_role_shape(
        name="Tech",
        role_type=RoleType.GLOBAL,
        global_role=GlobalRole.TECH,
        tenant_id=None,
        tenant_type=None,
    )
    validate_role_shape(
        name="Buyer",
        role_type=RoleType.TENANT,
        global_role=None,
        tenant_id=uuid.uuid4(),
        tenant_type=TenantType.CUSTOMER,
    )

    with pytest.raises(InvariantViolation) as exc_info:
        validate_role_shape(
            name="Buyer",
            role_type=RoleType.TENANT,
            global_role=GlobalRole.ADMIN,
            tenant_id=uuid.uuid4(),
            tenant_type=TenantType.CUSTOMER,
        )
    assert exc_info.value.invariant == "role.global_role_requires_global_type"

    with pytest.raises(InvariantViolation):
        validate_role_shape(
            name="Buyer",
            role_type=RoleType.INTERNAL,
            global_role=None,
            tenant_id=None,
            tenant_type=TenantType.CUSTOMER,
        )

    with pytest.raises(InvariantViolation):
        validate_role_shape(
            name="Ops",
            role_type=RoleType.GLOBAL,
            global_role=None,
            tenant_id=uuid.uuid4(),
            tenant_type=None,
        )


def test_tenant_slugs() -> None:
    assert slugify("  Blue Ocean Shipping Ltd. ") == "blue-ocean-shipping-ltd"
    validate_tenant_slug("blue-ocean-1")
    with pytest.raises(InvariantViolation):
        validate_tenant_slug("Blue Ocean")


def test_role_create_schema_validates_permissions_and_features() -> None:
    payload = RoleCreate(
        name="Buyer",
        role_type=RoleType.TENANT,
        permissions=[{"resource": "/api/rfq/*", "actions": ["get", "post"]}],
        maritime_features=["rfq_management", "analytics_access"],
    )

    assert payload.permissions[0].actions == ["GET", "POST"]

    with pytest.raises(PydanticValidationError):
        RoleCreate(
            name="Buyer",
            role_type=RoleType.TENANT,
            permissions=[{"resource": "api/rfq", "actions": ["GET"]}],
        )
    with pytest.raises(PydanticValidationError):
        RoleCreate(name="Buyer", role_type=RoleType.TENANT, maritime_features=["teleport"])
