import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import DateTime, String, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from ..domain.enums import LifecycleState, SubscriptionPlan, SubscriptionStatus, TenantType
from .base import Base, enum_column_type

TRIAL_PERIOD = timedelta(days=14)
OPERATIONAL_STATUSES = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIAL})


def default_trial_end() -> datetime:
    return datetime.now(timezone.utc) + TRIAL_PERIOD


class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(
        String(100), unique=True, nullable=False, index=True
    )
    tenant_type: Mapped[TenantType] = mapped_column(
        enum_column_type(TenantType), nullable=False
    )
    plan: Mapped[SubscriptionPlan] = mapped_column(
        enum_column_type(SubscriptionPlan),
        nullable=False,
        default=SubscriptionPlan.BASIC,
    )
    subscription_status: Mapped[SubscriptionStatus] = mapped_column(
        enum_column_type(SubscriptionStatus),
        nullable=False,
        default=SubscriptionStatus.TRIAL,
    )
    trial_ends_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=default_trial_end
    )
    owner_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    admin_ids: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    lifecycle: Mapped[LifecycleState] = mapped_column(
        enum_column_type(LifecycleState),
        nullable=False,
        default=LifecycleState.ACTIVE,
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
    def domain(self) -> str:
        return str(self.id)

    def is_operational(self, now: datetime | None = None) -> bool:
        """Whether authorization checks in this tenant's domain may succeed."""
        if self.lifecycle is not LifecycleState.ACTIVE:
            return False
        if self.subscription_status not in OPERATIONAL_STATUSES:
            return False
        if self.subscription_status is SubscriptionStatus.TRIAL and self.trial_ends_at is not None:
            current = now or datetime.now(timezone.utc)
            return self.trial_ends_at > current
        return True
