from pydantic import BaseModel, Field, field_validator

from ..authz.model import normalize_action


class PolicyTupleSchema(BaseModel):
    subject: str = Field(..., min_length=1, max_length=255)
    resource: str = Field(..., min_length=1, max_length=255)
    action: str = Field(..., min_length=1, max_length=16)
    domain: str = Field(..., min_length=1, max_length=255)

    @field_validator("action")
    @classmethod
    def _normalize_action(cls, value: str) -> str:
        return normalize_action(value)


class RoleAssignmentSchema(BaseModel):
    subject: str = Field(..., min_length=1, max_length=255)
    role: str = Field(..., min_length=1, max_length=255)
    domain: str = Field(..., min_length=1, max_length=255)


class PolicyListResponse(BaseModel):
    policies: list[PolicyTupleSchema]
    assignments: list[RoleAssignmentSchema]


class MutationResponse(BaseModel):
    changed: bool


class ReloadResponse(BaseModel):
    reloaded: bool
    policies: int
    assignments: int
