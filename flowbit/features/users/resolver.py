"""
Membership resolution at authentication time.

Decides which organization a login applies to and materializes the role's
permission set into a PrincipalSession:

1. load the identity's active memberships
2. none            -> NoMembership
3. explicit choice -> that membership, or AccessDenied
4. exactly one     -> that membership
5. several         -> OrganizationSelection listing every candidate; the
                      caller re-authenticates naming one of them
"""
from dataclasses import dataclass
from typing import Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from flowbit.core.errors import NoMembership, AccessDenied
from flowbit.features.organizations.models import Organization, Membership, MembershipStatus
from flowbit.features.permissions.models import Role
from flowbit.features.users.auth import PrincipalSession
from flowbit.features.users.models import User
from flowbit.utils import get_logger


log = get_logger(__name__)


@dataclass(frozen=True)
class ResolvedMembership:
    membership: Membership
    organization: Organization
    role: Role


@dataclass(frozen=True)
class OrganizationCandidate:
    id: str
    slug: str
    name: str
    role_name: str
    role_display_name: str


@dataclass(frozen=True)
class OrganizationSelection:
    """Returned instead of a session when the caller must pick an organization."""
    candidates: tuple[OrganizationCandidate, ...]


async def get_active_memberships(db: AsyncSession, user_id: str) -> list[ResolvedMembership]:
    result = await db.execute(
        select(Membership, Organization, Role)
        .join(Organization, Organization.id == Membership.organization_id)
        .join(Role, Role.id == Membership.role_id)
        .where(
            Membership.user_id == user_id,
            Membership.status == MembershipStatus.ACTIVE,
            Organization.is_active.is_(True),
        )
        .order_by(Organization.name, Organization.slug)
    )
    return [ResolvedMembership(m, o, r) for m, o, r in result.all()]


def build_session(user: User, resolved: ResolvedMembership) -> PrincipalSession:
    """Copy the role's permission set verbatim into a session snapshot."""
    return PrincipalSession(
        user_id=user.id,
        email=user.email,
        organization_id=resolved.organization.id,
        organization_slug=resolved.organization.slug,
        membership_id=resolved.membership.id,
        role_name=resolved.role.name,
        permissions=tuple(resolved.role.permissions or ()),
    )


async def resolve_session(
    db: AsyncSession,
    user: User,
    organization: str | None = None,
) -> Union[tuple[PrincipalSession, ResolvedMembership], OrganizationSelection]:
    """
    Resolve the organization context for an authenticated user.

    Args:
        db: Database session
        user: The authenticated identity
        organization: Explicitly requested organization, by slug or id

    Returns:
        (session, resolved membership), or OrganizationSelection when the user
        has several active memberships and did not choose one

    Raises:
        NoMembership: the user has no active membership anywhere
        AccessDenied: the user has no active membership in ``organization``
    """
    memberships = await get_active_memberships(db, user.id)

    if not memberships:
        log.info("User %s has no active organization membership", user.id)
        raise NoMembership()

    if organization:
        chosen = next(
            (m for m in memberships if organization in (m.organization.slug, m.organization.id)),
            None,
        )
        if chosen is None:
            log.info("User %s denied access to organization %s", user.id, organization)
            raise AccessDenied(organization=organization)
        return build_session(user, chosen), chosen

    if len(memberships) == 1:
        return build_session(user, memberships[0]), memberships[0]

    return OrganizationSelection(
        candidates=tuple(
            OrganizationCandidate(
                id=m.organization.id,
                slug=m.organization.slug,
                name=m.organization.name,
                role_name=m.role.name,
                role_display_name=m.role.display_name,
            )
            for m in memberships
        )
    )
