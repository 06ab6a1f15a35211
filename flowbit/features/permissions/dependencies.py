"""
Route protection dependencies and audit logging helpers.

The evaluator only answers yes/no; turning a "no" into a 403 happens here,
at the request boundary.
"""
from typing import Any, Dict, Optional, Sequence
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from flowbit.core.errors import PermissionDenied
from flowbit.features.permissions.models import AuditLog
from flowbit.features.users.auth import PrincipalSession
from flowbit.features.users.dependencies import get_current_session
from flowbit.utils import get_logger


log = get_logger(__name__)


def _deny(session: PrincipalSession, request: Request, required: Sequence[str], mode: str) -> PermissionDenied:
    log.warning(
        "Permission denied: user=%s org=%s role=%s %s %s on %s %s",
        session.user_id, session.organization_id, session.role_name,
        mode, list(required), request.method, request.url.path,
    )
    return PermissionDenied(required=list(required))


def require_permission(permission: str):
    """
    FastAPI dependency to require a specific permission.

    Usage:
        @router.post("/roles")
        async def create_role(
            session: PrincipalSession = Depends(require_permission("roles.create"))
        ):
            ...

    Returns:
        Dependency function that returns the current session if allowed

    Raises:
        PermissionDenied: translated to 403 by the app's exception handler
    """
    async def permission_dependency(
        request: Request,
        session: PrincipalSession = Depends(get_current_session),
    ) -> PrincipalSession:
        if not session.can(permission):
            raise _deny(session, request, [permission], "requires")
        return session

    return permission_dependency


def require_all_permissions(permissions: Sequence[str]):
    """Require every permission in ``permissions``."""
    async def permission_dependency(
        request: Request,
        session: PrincipalSession = Depends(get_current_session),
    ) -> PrincipalSession:
        if not session.can_all(list(permissions)):
            raise _deny(session, request, permissions, "requires all of")
        return session

    return permission_dependency


def require_any_permission(permissions: Sequence[str]):
    """
    Require at least one of ``permissions``.

    Usage:
        Depends(require_any_permission(["tasks.view", "tickets.view"]))
    """
    async def permission_dependency(
        request: Request,
        session: PrincipalSession = Depends(get_current_session),
    ) -> PrincipalSession:
        if not session.can_any(list(permissions)):
            raise _deny(session, request, permissions, "requires one of")
        return session

    return permission_dependency


async def require_org_admin(
    request: Request,
    session: PrincipalSession = Depends(get_current_session),
) -> PrincipalSession:
    """Require an organization administrator (see ADMIN_PERMISSIONS)."""
    if not session.is_admin:
        log.warning(
            "Organization admin required: user=%s org=%s role=%s on %s %s",
            session.user_id, session.organization_id, session.role_name,
            request.method, request.url.path,
        )
        raise PermissionDenied("Organization admin access required")
    return session


# ============================================================================
# Audit Logging
# ============================================================================

async def create_audit_log(
    db: AsyncSession,
    user_id: Optional[str],
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> AuditLog:
    """
    Add an audit log entry to the current unit of work.

    The entry is committed together with the change it describes.
    """
    ip_address = user_agent = None
    if request is not None:
        ip_address = request.client.host if request.client else None
        user_agent = request.headers.get("user-agent")
        if user_agent:
            user_agent = user_agent[:255]

    audit_log = AuditLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        organization_id=organization_id,
        details=details,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.add(audit_log)
    await db.flush()

    log.info(
        "Audit: user=%s action=%s resource=%s:%s org=%s",
        user_id, action, resource_type, resource_id, organization_id,
    )
    return audit_log
