"""
Organization-related dependency injection functions.
"""
from typing import Annotated
from fastapi import Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from flowbit.core.database.engine import get_db
from flowbit.features.organizations.models import Organization, Membership
from flowbit.features.users.auth import PrincipalSession
from flowbit.features.users.dependencies import get_current_session


async def get_current_organization(
    session: Annotated[PrincipalSession, Depends(get_current_session)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> Organization:
    """
    Get the organization the caller's session is bound to.

    Raises:
        HTTPException: 404 if the organization no longer exists or is inactive
    """
    result = await db.execute(
        select(Organization).where(
            Organization.id == session.organization_id,
            Organization.is_active.is_(True),
        )
    )
    organization = result.scalar_one_or_none()

    if organization is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Organization not found"
        )
    return organization


async def get_org_membership(
    db: AsyncSession,
    organization_id: str,
    user_id: str,
) -> Membership:
    """
    Get a membership of the given organization or raise 404.

    Memberships of other organizations are reported as missing.
    """
    result = await db.execute(
        select(Membership).where(
            Membership.organization_id == organization_id,
            Membership.user_id == user_id,
        )
    )
    membership = result.scalar_one_or_none()

    if membership is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Member not found"
        )
    return membership
