"""
Organization bootstrap and membership bookkeeping shared by the auth and
organization routes.
"""
from datetime import datetime, timezone
from fastapi import HTTPException, status
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from flowbit.features.organizations.invite_codes import (
    generate_unique_invite_code,
    format_invite_code,
    is_valid_invite_code_format,
)
from flowbit.features.organizations.models import (
    Organization,
    Membership,
    MembershipStatus,
    PlanTier,
    PLAN_LIMITS,
)
from flowbit.features.permissions.roles import seed_organization_roles, OWNER_ROLE
from flowbit.features.users.models import User
from flowbit.utils import get_logger, slugify


log = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def invite_code_exists(db: AsyncSession, code: str) -> bool:
    result = await db.execute(select(Organization.id).where(Organization.invite_code == code))
    return result.first() is not None


async def unique_slug(db: AsyncSession, name: str) -> str:
    """Slug derived from ``name``, suffixed with -2, -3, ... when taken."""
    base = slugify(name, max_length=44)
    result = await db.execute(
        select(Organization.slug).where(
            (Organization.slug == base) | (Organization.slug.like(f"{base}-%"))
        )
    )
    taken = set(result.scalars().all())
    if base not in taken:
        return base
    suffix = 2
    while f"{base}-{suffix}" in taken:
        suffix += 1
    return f"{base}-{suffix}"


async def count_active_members(db: AsyncSession, organization_id: str) -> int:
    result = await db.execute(
        select(func.count(Membership.id)).where(
            Membership.organization_id == organization_id,
            Membership.status == MembershipStatus.ACTIVE,
        )
    )
    return result.scalar_one()


async def ensure_seat_available(db: AsyncSession, organization: Organization) -> None:
    """
    Raises:
        HTTPException: 403 when the plan's user limit is reached
    """
    if await count_active_members(db, organization.id) >= organization.max_users:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Organization has reached its user limit ({organization.max_users}) for the {organization.plan.value} plan",
        )


async def create_organization(
    db: AsyncSession,
    owner: User,
    name: str,
    description: str | None = None,
    plan: PlanTier = PlanTier.FREE,
) -> tuple[Organization, Membership]:
    """
    Create an organization, seed its system roles and make ``owner`` its
    active owner.

    An invite code collision that slips past the existence check surfaces as
    IntegrityError on flush; callers retry the whole unit of work.
    """
    max_users, max_projects = PLAN_LIMITS[plan]
    slug = await unique_slug(db, name)

    invite_code = await generate_unique_invite_code(lambda code: invite_code_exists(db, code))
    organization = Organization(
        name=name,
        slug=slug,
        description=description,
        invite_code=invite_code,
        plan=plan,
        max_users=max_users,
        max_projects=max_projects,
    )
    db.add(organization)
    await db.flush()

    roles = await seed_organization_roles(db, organization)

    now = utcnow()
    membership = Membership(
        organization_id=organization.id,
        user_id=owner.id,
        role_id=roles[OWNER_ROLE.name].id,
        status=MembershipStatus.ACTIVE,
        invited_at=now,
        joined_at=now,
    )
    db.add(membership)
    await db.flush()

    log.info("Created organization %s (%s) owned by %s", organization.slug, organization.id, owner.id)
    return organization, membership


async def get_organization_by_invite_code(db: AsyncSession, code: str) -> Organization | None:
    code = format_invite_code(code)
    if not is_valid_invite_code_format(code):
        return None
    result = await db.execute(
        select(Organization).where(Organization.invite_code == code, Organization.is_active.is_(True))
    )
    return result.scalar_one_or_none()


async def join_with_invite_code(db: AsyncSession, user: User, code: str) -> Membership:
    """
    Give ``user`` an active membership, with the organization's default role,
    in the organization owning ``code``.

    A previous membership that was left or is pending is reactivated;
    suspended members cannot rejoin this way.
    """
    organization = await get_organization_by_invite_code(db, code)
    if organization is None or not organization.invite_code_enabled:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Invalid or disabled invite code",
        )

    if organization.default_role_id is None:
        roles = await seed_organization_roles(db, organization)
        default_role_id = organization.default_role_id or roles["member"].id
    else:
        default_role_id = organization.default_role_id

    result = await db.execute(
        select(Membership).where(
            Membership.organization_id == organization.id,
            Membership.user_id == user.id,
        )
    )
    membership = result.scalar_one_or_none()

    if membership is not None:
        if membership.status == MembershipStatus.ACTIVE:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Already a member of this organization",
            )
        if membership.status == MembershipStatus.SUSPENDED:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Your membership in this organization is suspended",
            )

    await ensure_seat_available(db, organization)

    now = utcnow()
    if membership is None:
        membership = Membership(
            organization_id=organization.id,
            user_id=user.id,
            role_id=default_role_id,
            invited_at=now,
        )
        db.add(membership)
    elif membership.status == MembershipStatus.LEFT:
        membership.role_id = default_role_id
    membership.status = MembershipStatus.ACTIVE
    membership.joined_at = now
    await db.flush()

    log.info("User %s joined organization %s via invite code", user.id, organization.id)
    return membership
