"""
Organization and membership models.

Organizations are the tenant boundary: every role and membership is scoped by
organization_id and cross-tenant access is always invalid.
"""
from datetime import datetime
from sqlalchemy import String, ForeignKey, Boolean, Integer, Text, DateTime, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column
import enum

from flowbit.core.database.base import Base, TimestampMixin, generate_ulid


class PlanTier(str, enum.Enum):
    """Subscription plan of an organization."""
    FREE = "free"
    BASIC = "basic"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"


# (max_users, max_projects) per plan
PLAN_LIMITS: dict[PlanTier, tuple[int, int]] = {
    PlanTier.FREE: (5, 10),
    PlanTier.BASIC: (15, 50),
    PlanTier.PREMIUM: (50, 200),
    PlanTier.ENTERPRISE: (999, 999),
}


class MembershipStatus(str, enum.Enum):
    """Lifecycle state of a membership."""
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    LEFT = "left"


MEMBERSHIP_TRANSITIONS: dict[MembershipStatus, frozenset[MembershipStatus]] = {
    MembershipStatus.PENDING: frozenset({MembershipStatus.ACTIVE, MembershipStatus.LEFT}),
    MembershipStatus.ACTIVE: frozenset({MembershipStatus.SUSPENDED, MembershipStatus.LEFT}),
    MembershipStatus.SUSPENDED: frozenset({MembershipStatus.ACTIVE, MembershipStatus.LEFT}),
    MembershipStatus.LEFT: frozenset(),
}


def can_transition(current: MembershipStatus, target: MembershipStatus) -> bool:
    return target in MEMBERSHIP_TRANSITIONS[current]


class Organization(Base, TimestampMixin):
    """
    Organization model (tenant).

    The invite code lets employees join on their own; it can be disabled or
    regenerated by an administrator.
    """
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Self-service joining
    invite_code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)
    invite_code_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # Role given to members who join via invite code; no FK to avoid a roles <-> organizations cycle
    default_role_id: Mapped[str | None] = mapped_column(String(26), nullable=True)

    # Plan and limits
    plan: Mapped[PlanTier] = mapped_column(SQLEnum(PlanTier), default=PlanTier.FREE, nullable=False)
    max_users: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    max_projects: Mapped[int] = mapped_column(Integer, default=10, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, slug={self.slug!r})>"


class Membership(Base, TimestampMixin):
    """
    Binds one user to one organization with one role.
    """
    __tablename__ = "organization_members"
    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_member_per_org"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    organization_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("roles.id", ondelete="RESTRICT"), nullable=False, index=True
    )

    status: Mapped[MembershipStatus] = mapped_column(
        SQLEnum(MembershipStatus),
        default=MembershipStatus.PENDING,
        nullable=False,
        index=True
    )

    invited_by_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    invited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    joined_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Membership(id={self.id}, user_id={self.user_id}, org_id={self.organization_id}, status={self.status})>"
