from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..domain.enums import GlobalRole, LifecycleState, MaritimeFeature, RoleType, TenantType
from .base import Base, enum_column_type


class Role(Base):
    __tablename__ = "roles"
    __table_args__ = (
        UniqueConstraint("name", "tenant_id", name="uq_roles_name_tenant_id"),
        Index(
            "uq_roles_global_name",
            "name",
            unique=True,
            postgresql_where=text("tenant_id IS NULL"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text)
    role_type: Mapped[RoleType] = mapped_column(enum_column_type(RoleType), nullable=False)
    global_role: Mapped[GlobalRole | None] = mapped_column(
        enum_column_type(GlobalRole), nullable=True, unique=True
    )
    tenant_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    tenant_type: Mapped[TenantType | None] = mapped_column(
        enum_column_type(TenantType), nullable=True
    )
    maritime_features: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    is_system_role: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    is_template: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    lifecycle: Mapped[LifecycleState] = mapped_column(
        enum_column_type(LifecycleState),
        nullable=False,
        default=LifecycleState.ACTIVE,
    )
    created_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    permissions: Mapped[list[RolePermission]] = relationship(
        "RolePermission",
        order_by="RolePermission.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def subject(self) -> str:
        """Name this role is known by in policy and assignment tuples."""
        if self.global_role is not None:
            return self.global_role.value
        return self.name

    @property
    def is_active(self) -> bool:
        return self.lifecycle is LifecycleState.ACTIVE

    @property
    def features(self) -> MaritimeFeature:
        return MaritimeFeature(self.maritime_features)

    def permission_entries(self) -> list[tuple[str, list[str]]]:
        return [(entry.resource, list(entry.actions)) for entry in self.permissions]


class RolePermission(Base):
    __tablename__ = "role_permissions"
    __table_args__ = (
        UniqueConstraint("role_id", "position", name="uq_role_permissions_role_id_position"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    role_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("roles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    resource: Mapped[str] = mapped_column(String(255), nullable=False)
    actions: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
