import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from ..domain.enums import GlobalRole, LifecycleState, UserType
from .base import Base, enum_column_type


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("tenant_id", "email", name="uq_users_tenant_id_email"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    user_type: Mapped[UserType] = mapped_column(enum_column_type(UserType), nullable=False)
    global_role: Mapped[GlobalRole | None] = mapped_column(
        enum_column_type(GlobalRole), nullable=True, index=True
    )
    tenant_role_ids: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    internal_role_ids: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    lifecycle: Mapped[LifecycleState] = mapped_column(
        enum_column_type(LifecycleState),
        nullable=False,
        default=LifecycleState.ACTIVE,
    )
    login_attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    lock_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    is_verified: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    is_email_verified: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    @property
    def is_active(self) -> bool:
        return self.lifecycle is LifecycleState.ACTIVE

    def is_locked(self, now: datetime | None = None) -> bool:
        if self.lock_until is None:
            return False
        return self.lock_until > (now or datetime.now(timezone.utc))
