"""
Role management and permission inspection routes.

All routes act on the caller's current organization, taken from the session.
"""
import math
from typing import Annotated, List
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from flowbit.core.database.engine import get_db
from flowbit.features.organizations.models import Organization, Membership, MembershipStatus
from flowbit.features.permissions.dependencies import require_permission, create_audit_log
from flowbit.features.permissions.evaluator import has_all, has_any
from flowbit.features.permissions.models import Role, AuditLog
from flowbit.features.permissions.roles import (
    list_roles_for_org,
    get_role_for_org,
    count_role_members,
    reassign_departed_members,
    role_name_taken,
)
from flowbit.features.permissions.schemas import (
    RoleCreate,
    RoleUpdate,
    RoleResponse,
    PermissionCheckRequest,
    PermissionCheckResponse,
    SessionPermissionsResponse,
    AuditLogResponse,
    AuditLogListResponse,
)
from flowbit.features.users.auth import PrincipalSession
from flowbit.features.users.dependencies import get_current_session
from flowbit.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


async def _get_org_role(db: AsyncSession, role_id: str, organization_id: str) -> Role:
    role = await get_role_for_org(db, role_id, organization_id)
    if role is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Role not found")
    return role


# ============================================================================
# Role Routes
# ============================================================================

@router.get("/roles", response_model=List[RoleResponse])
async def list_roles(
    session: Annotated[PrincipalSession, Depends(get_current_session)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """List the organization's roles and the global system roles."""
    roles = await list_roles_for_org(db, session.organization_id)

    result = await db.execute(
        select(Membership.role_id, func.count(Membership.id))
        .where(
            Membership.organization_id == session.organization_id,
            Membership.status != MembershipStatus.LEFT,
        )
        .group_by(Membership.role_id)
    )
    counts = dict(result.all())

    responses = []
    for role in roles:
        response = RoleResponse.model_validate(role)
        response.member_count = counts.get(role.id, 0)
        responses.append(response)
    return responses


@router.get("/roles/{role_id}", response_model=RoleResponse)
async def get_role(
    role_id: str,
    session: Annotated[PrincipalSession, Depends(get_current_session)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Get a role visible to the current organization."""
    role = await _get_org_role(db, role_id, session.organization_id)
    response = RoleResponse.model_validate(role)
    response.member_count = await count_role_members(db, role.id, session.organization_id)
    return response


@router.post("/roles", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    role: RoleCreate,
    request: Request,
    session: Annotated[PrincipalSession, Depends(require_permission("roles.create"))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Create a custom role in the current organization."""
    if await role_name_taken(db, role.name, session.organization_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Role name already exists"
        )

    db_role = Role(
        **role.model_dump(),
        is_system=False,
        organization_id=session.organization_id,
    )
    db.add(db_role)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Role name already exists"
        )

    await create_audit_log(
        db,
        user_id=session.user_id,
        action="create",
        resource_type="role",
        resource_id=db_role.id,
        organization_id=session.organization_id,
        details=role.model_dump(),
        request=request,
    )
    await db.commit()
    await db.refresh(db_role)

    response = RoleResponse.model_validate(db_role)
    response.member_count = 0
    return response


@router.put("/roles/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: str,
    role_update: RoleUpdate,
    request: Request,
    session: Annotated[PrincipalSession, Depends(require_permission("roles.edit"))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Update a custom role. System roles are immutable."""
    db_role = await _get_org_role(db, role_id, session.organization_id)

    if db_role.is_system or db_role.organization_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot edit system roles"
        )

    update_data = role_update.model_dump(exclude_unset=True)
    for key, value in update_data.items():
        if value is not None:
            setattr(db_role, key, value)

    await create_audit_log(
        db,
        user_id=session.user_id,
        action="update",
        resource_type="role",
        resource_id=db_role.id,
        organization_id=session.organization_id,
        details=update_data,
        request=request,
    )
    await db.commit()
    await db.refresh(db_role)

    response = RoleResponse.model_validate(db_role)
    response.member_count = await count_role_members(db, db_role.id, session.organization_id)
    return response


@router.delete("/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: str,
    request: Request,
    session: Annotated[PrincipalSession, Depends(require_permission("roles.delete"))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """
    Delete a custom role that no current member holds. System roles and the
    organization's default role cannot be deleted.
    """
    db_role = await _get_org_role(db, role_id, session.organization_id)
    organization = await db.get(Organization, session.organization_id)

    if db_role.is_system or db_role.organization_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot delete system roles"
        )

    if await count_role_members(db, db_role.id) > 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot delete role that is currently assigned to members"
        )

    if organization is not None and organization.default_role_id == db_role.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot delete the organization's default role"
        )

    if organization is not None:
        moved = await reassign_departed_members(db, db_role.id, organization)
        if moved:
            log.info("Moved %d departed memberships off role %s before deleting it", moved, db_role.id)

    role_name = db_role.name
    await db.delete(db_role)
    await create_audit_log(
        db,
        user_id=session.user_id,
        action="delete",
        resource_type="role",
        resource_id=role_id,
        organization_id=session.organization_id,
        details={"name": role_name},
        request=request,
    )
    await db.commit()
    return None


# ============================================================================
# Permission Inspection
# ============================================================================

@router.get("/me", response_model=SessionPermissionsResponse)
async def get_my_permissions(
    session: Annotated[PrincipalSession, Depends(get_current_session)],
):
    """Permissions carried by the caller's token."""
    return SessionPermissionsResponse(
        user_id=session.user_id,
        organization_id=session.organization_id,
        organization_slug=session.organization_slug,
        role=session.role_name,
        permissions=list(session.permissions),
        is_admin=session.is_admin,
    )


@router.post("/check", response_model=PermissionCheckResponse)
async def check_permissions(
    check: PermissionCheckRequest,
    session: Annotated[PrincipalSession, Depends(get_current_session)],
):
    """Evaluate permissions against the caller's own session."""
    results = {p: session.can(p) for p in check.permissions}
    if check.mode == "all":
        allowed = has_all(session.permissions, check.permissions)
    else:
        allowed = has_any(session.permissions, check.permissions)
    return PermissionCheckResponse(allowed=allowed, results=results)


# ============================================================================
# Audit Logs
# ============================================================================

@router.get("/audit-logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    session: Annotated[PrincipalSession, Depends(require_permission("audit.view"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    resource_type: str | None = None,
):
    """Audit entries of the current organization, newest first."""
    stmt = select(AuditLog).where(AuditLog.organization_id == session.organization_id)
    if resource_type:
        stmt = stmt.where(AuditLog.resource_type == resource_type)

    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()
    result = await db.execute(
        stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    items = [AuditLogResponse.model_validate(entry) for entry in result.scalars().all()]

    return AuditLogListResponse(
        items=items,
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size) if total else 0,
    )
