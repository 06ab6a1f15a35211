"""
Organization feature routes.

Everything here is scoped to the organization of the caller's session; ids
belonging to other tenants behave as if they did not exist.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from flowbit.core.database.engine import get_db
from flowbit.features.organizations.dependencies import get_current_organization, get_org_membership
from flowbit.features.organizations.invite_codes import generate_unique_invite_code
from flowbit.features.organizations.models import (
    Organization,
    Membership,
    MembershipStatus,
    can_transition,
)
from flowbit.features.organizations.schemas import (
    OrganizationResponse,
    OrganizationUpdate,
    InviteCodeResponse,
    MemberResponse,
    UpdateMemberRole,
    UpdateMemberStatus,
    InvitationCreate,
    InvitationResponse,
)
from flowbit.features.organizations.service import (
    count_active_members,
    ensure_seat_available,
    invite_code_exists,
    utcnow,
)
from flowbit.features.permissions.dependencies import (
    require_permission,
    require_any_permission,
    require_org_admin,
    create_audit_log,
)
from flowbit.features.permissions.models import Role
from flowbit.features.permissions.roles import get_role_for_org
from flowbit.features.users.auth import PrincipalSession
from flowbit.features.users.dependencies import get_current_session
from flowbit.features.users.models import User
from flowbit.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["organizations"])


async def _organization_response(
    db: AsyncSession, organization: Organization, session: PrincipalSession
) -> OrganizationResponse:
    response = OrganizationResponse.model_validate(organization)
    response.member_count = await count_active_members(db, organization.id)
    if not session.is_admin:
        response.invite_code = None
    return response


async def _require_visible_role(db: AsyncSession, role_id: str, organization_id: str) -> Role:
    role = await get_role_for_org(db, role_id, organization_id)
    if role is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid role"
        )
    return role


# Current organization
@router.get("/current", response_model=OrganizationResponse)
async def get_current_organization_endpoint(
    organization: Annotated[Organization, Depends(get_current_organization)],
    session: Annotated[PrincipalSession, Depends(get_current_session)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get the caller's current organization."""
    return await _organization_response(db, organization, session)


@router.patch("/current", response_model=OrganizationResponse)
async def update_current_organization(
    update_data: OrganizationUpdate,
    request: Request,
    organization: Annotated[Organization, Depends(get_current_organization)],
    session: Annotated[PrincipalSession, Depends(require_permission("org.edit"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Update organization information."""
    update_dict = update_data.model_dump(exclude_unset=True)
    if update_dict.get("default_role_id") is not None:
        await _require_visible_role(db, update_dict["default_role_id"], organization.id)

    for field, value in update_dict.items():
        if value is not None:
            setattr(organization, field, value)

    await create_audit_log(
        db,
        user_id=session.user_id,
        action="update",
        resource_type="organization",
        resource_id=organization.id,
        organization_id=organization.id,
        details=update_dict,
        request=request,
    )
    await db.commit()
    await db.refresh(organization)
    return await _organization_response(db, organization, session)


@router.post("/current/invite-code", response_model=InviteCodeResponse)
async def regenerate_invite_code(
    request: Request,
    organization: Annotated[Organization, Depends(get_current_organization)],
    session: Annotated[PrincipalSession, Depends(require_permission("org.edit"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Replace the invite code; the old one stops working immediately."""
    organization.invite_code = await generate_unique_invite_code(lambda code: invite_code_exists(db, code))
    await create_audit_log(
        db,
        user_id=session.user_id,
        action="regenerate_invite_code",
        resource_type="organization",
        resource_id=organization.id,
        organization_id=organization.id,
        request=request,
    )
    await db.commit()
    return InviteCodeResponse(
        invite_code=organization.invite_code,
        invite_code_enabled=organization.invite_code_enabled,
    )


# Members
@router.get("/members", response_model=list[MemberResponse])
async def list_members(
    session: Annotated[PrincipalSession, Depends(require_any_permission(["users.view", "org.view"]))],
    db: Annotated[AsyncSession, Depends(get_db)],
    include_inactive: bool = False,
):
    """List members of the current organization."""
    stmt = (
        select(Membership, User, Role)
        .join(User, User.id == Membership.user_id)
        .join(Role, Role.id == Membership.role_id)
        .where(Membership.organization_id == session.organization_id)
        .order_by(User.username, User.email)
    )
    if not include_inactive:
        stmt = stmt.where(Membership.status == MembershipStatus.ACTIVE)

    result = await db.execute(stmt)
    return [
        MemberResponse(
            membership_id=membership.id,
            user_id=user.id,
            email=user.email,
            username=user.username,
            first_name=user.first_name,
            last_name=user.last_name,
            role_id=role.id,
            role_name=role.name,
            role_display_name=role.display_name,
            status=membership.status,
            invited_at=membership.invited_at,
            joined_at=membership.joined_at,
        )
        for membership, user, role in result.all()
    ]


@router.put("/members/{user_id}/role", response_model=dict)
async def update_member_role(
    user_id: str,
    role_data: UpdateMemberRole,
    request: Request,
    session: Annotated[PrincipalSession, Depends(require_org_admin)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Assign a different role to a member. Takes effect at their next login."""
    if user_id == session.user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot change your own role"
        )

    role = await _require_visible_role(db, role_data.role_id, session.organization_id)
    membership = await get_org_membership(db, session.organization_id, user_id)

    previous_role_id = membership.role_id
    membership.role_id = role.id
    await create_audit_log(
        db,
        user_id=session.user_id,
        action="assign_role",
        resource_type="membership",
        resource_id=membership.id,
        organization_id=session.organization_id,
        details={"user_id": user_id, "from": previous_role_id, "to": role.id},
        request=request,
    )
    await db.commit()
    return {"message": "Member role updated successfully", "role_id": role.id}


@router.put("/members/{user_id}/status", response_model=dict)
async def update_member_status(
    user_id: str,
    status_data: UpdateMemberStatus,
    request: Request,
    organization: Annotated[Organization, Depends(get_current_organization)],
    session: Annotated[PrincipalSession, Depends(require_org_admin)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Move a membership along pending -> active -> suspended/left."""
    if user_id == session.user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot change your own membership status"
        )

    membership = await get_org_membership(db, organization.id, user_id)
    target = status_data.status

    if membership.status == target:
        return {"message": "Member status unchanged", "status": target.value}
    if not can_transition(membership.status, target):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot change membership status from {membership.status.value} to {target.value}"
        )
    if target == MembershipStatus.ACTIVE:
        await ensure_seat_available(db, organization)

    previous = membership.status
    membership.status = target
    if target == MembershipStatus.ACTIVE and membership.joined_at is None:
        membership.joined_at = utcnow()

    await create_audit_log(
        db,
        user_id=session.user_id,
        action="update_status",
        resource_type="membership",
        resource_id=membership.id,
        organization_id=organization.id,
        details={"user_id": user_id, "from": previous.value, "to": target.value},
        request=request,
    )
    await db.commit()
    return {"message": "Member status updated successfully", "status": target.value}


@router.delete("/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    user_id: str,
    request: Request,
    session: Annotated[PrincipalSession, Depends(require_org_admin)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Remove a member from the organization."""
    if user_id == session.user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot remove yourself from organization"
        )

    membership = await get_org_membership(db, session.organization_id, user_id)
    membership_id = membership.id
    await db.delete(membership)
    await create_audit_log(
        db,
        user_id=session.user_id,
        action="remove_member",
        resource_type="membership",
        resource_id=membership_id,
        organization_id=session.organization_id,
        details={"user_id": user_id},
        request=request,
    )
    await db.commit()


# Invitations
@router.post("/invitations", response_model=InvitationResponse, status_code=status.HTTP_201_CREATED)
async def invite_user(
    invitation: InvitationCreate,
    request: Request,
    organization: Annotated[Organization, Depends(get_current_organization)],
    session: Annotated[PrincipalSession, Depends(require_permission("users.invite"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Invite an existing user. The membership is pending until an admin activates it."""
    result = await db.execute(select(User).where(User.email == invitation.email.lower()))
    user = result.scalar_one_or_none()
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No user with this email"
        )

    role_id = invitation.role_id or organization.default_role_id
    if role_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Organization has no default role; specify role_id"
        )
    await _require_visible_role(db, role_id, organization.id)

    result = await db.execute(
        select(Membership).where(
            Membership.organization_id == organization.id,
            Membership.user_id == user.id,
        )
    )
    membership = result.scalar_one_or_none()
    now = utcnow()

    if membership is not None and membership.status != MembershipStatus.LEFT:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"User already has a {membership.status.value} membership"
        )
    if membership is None:
        membership = Membership(organization_id=organization.id, user_id=user.id, role_id=role_id)
        db.add(membership)
    membership.role_id = role_id
    membership.status = MembershipStatus.PENDING
    membership.invited_by_id = session.user_id
    membership.invited_at = now
    membership.joined_at = None
    await db.flush()

    await create_audit_log(
        db,
        user_id=session.user_id,
        action="invite",
        resource_type="membership",
        resource_id=membership.id,
        organization_id=organization.id,
        details={"email": user.email, "role_id": role_id},
        request=request,
    )
    await db.commit()

    return InvitationResponse(
        membership_id=membership.id,
        user_id=user.id,
        email=user.email,
        role_id=membership.role_id,
        status=membership.status,
        invited_by_id=membership.invited_by_id,
        invited_at=membership.invited_at,
    )


@router.get("/invitations", response_model=list[InvitationResponse])
async def list_invitations(
    session: Annotated[PrincipalSession, Depends(require_org_admin)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Pending invitations of the current organization."""
    result = await db.execute(
        select(Membership, User)
        .join(User, User.id == Membership.user_id)
        .where(
            Membership.organization_id == session.organization_id,
            Membership.status == MembershipStatus.PENDING,
        )
        .order_by(Membership.invited_at.desc())
    )
    return [
        InvitationResponse(
            membership_id=membership.id,
            user_id=user.id,
            email=user.email,
            role_id=membership.role_id,
            status=membership.status,
            invited_by_id=membership.invited_by_id,
            invited_at=membership.invited_at,
        )
        for membership, user in result.all()
    ]


@router.delete("/invitations/{membership_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_invitation(
    membership_id: str,
    request: Request,
    session: Annotated[PrincipalSession, Depends(require_org_admin)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Cancel a pending invitation."""
    result = await db.execute(
        select(Membership).where(
            Membership.id == membership_id,
            Membership.organization_id == session.organization_id,
            Membership.status == MembershipStatus.PENDING,
        )
    )
    membership = result.scalar_one_or_none()
    if membership is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Invitation not found"
        )

    await db.delete(membership)
    await create_audit_log(
        db,
        user_id=session.user_id,
        action="cancel_invitation",
        resource_type="membership",
        resource_id=membership_id,
        organization_id=session.organization_id,
        request=request,
    )
    await db.commit()
