import uuid
from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from ..authz.catalog import validate_actions
from ..domain.enums import GlobalRole, LifecycleState, MaritimeFeature, RoleType, TenantType


class PermissionEntrySchema(BaseModel):
    resource: str = Field(..., min_length=1, max_length=255)
    actions: list[str] = Field(..., min_length=1)

    @field_validator("resource")
    @classmethod
    def _check_resource(cls, value: str) -> str:
        value = value.strip()
        if value != "*" and not value.startswith("/"):
            raise ValueError("resource must be '*' or start with '/'")
        return value

    @field_validator("actions")
    @classmethod
    def _check_actions(cls, value: list[str]) -> list[str]:
        return validate_actions(value)


class RoleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(None, max_length=500)
    role_type: RoleType
    global_role: GlobalRole | None = None
    tenant_id: uuid.UUID | None = None
    tenant_type: TenantType | None = None
    permissions: list[PermissionEntrySchema] = Field(default_factory=list)
    maritime_features: list[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be blank")
        return value

    @field_validator("maritime_features")
    @classmethod
    def _check_features(cls, value: list[str]) -> list[str]:
        MaritimeFeature.from_names(value)
        return value


class RoleUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = Field(None, max_length=500)
    permissions: list[PermissionEntrySchema] | None = None
    maritime_features: list[str] | None = None

    @field_validator("maritime_features")
    @classmethod
    def _check_features(cls, value: list[str] | None) -> list[str] | None:
        if value is not None:
            MaritimeFeature.from_names(value)
        return value


class RoleAssignRequest(BaseModel):
    user_id: uuid.UUID


class TemplateInstantiateRequest(BaseModel):
    tenant_id: uuid.UUID | None = None


class RoleResponse(BaseModel):
    id: uuid.UUID
    name: str
    description: str | None
    role_type: RoleType
    global_role: GlobalRole | None
    tenant_id: uuid.UUID | None
    tenant_type: TenantType | None
    permissions: list[PermissionEntrySchema]
    maritime_features: list[str]
    is_system_role: bool
    is_template: bool
    lifecycle: LifecycleState
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

    @field_validator("maritime_features", mode="before")
    @classmethod
    def _expand_features(cls, value: object) -> object:
        if isinstance(value, int):
            return MaritimeFeature(value).names()
        return value

    @field_validator("permissions", mode="before")
    @classmethod
    def _load_permissions(cls, value: object) -> object:
        if isinstance(value, list):
            return [
                {"resource": entry.resource, "actions": list(entry.actions)}
                if hasattr(entry, "resource")
                else entry
                for entry in value
            ]
        return value
