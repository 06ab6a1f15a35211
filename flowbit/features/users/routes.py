"""
Authentication and user profile routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from flowbit.core import config
from flowbit.core.database.engine import get_db
from flowbit.core.errors import InvalidCredentials
from flowbit.core.rate_limit import limiter
from flowbit.features.organizations.models import Organization
from flowbit.features.organizations.schemas import OrganizationPublic
from flowbit.features.organizations.service import create_organization, join_with_invite_code, utcnow
from flowbit.features.users.auth import PrincipalSession, hash_password, verify_password, issue_token
from flowbit.features.users.dependencies import get_current_session, get_current_user
from flowbit.features.users.models import User
from flowbit.features.users.resolver import (
    OrganizationSelection,
    ResolvedMembership,
    resolve_session,
    get_active_memberships,
)
from flowbit.features.users.schemas import (
    AuthResponse,
    CurrentUserResponse,
    JoinRequest,
    LoginRequest,
    OrganizationChoice,
    RegisterRequest,
    SwitchOrganizationRequest,
    UserResponse,
    UserUpdate,
)
from flowbit.utils import get_logger


log = get_logger(__name__)
auth_router = APIRouter(tags=["auth"])
router = APIRouter(tags=["users"])


def _session_response(message: str, user: User, session: PrincipalSession, resolved: ResolvedMembership) -> AuthResponse:
    return AuthResponse(
        message=message,
        token=issue_token(session),
        user=UserResponse.model_validate(user),
        organization=OrganizationPublic.model_validate(resolved.organization),
        role=session.role_name,
        permissions=list(session.permissions),
    )


def _selection_response(selection: OrganizationSelection) -> AuthResponse:
    return AuthResponse(
        message="Select an organization to continue",
        require_organization_selection=True,
        organizations=[
            OrganizationChoice(
                id=c.id,
                slug=c.slug,
                name=c.name,
                role=c.role_name,
                role_display_name=c.role_display_name,
            )
            for c in selection.candidates
        ],
    )


async def _authenticate(db: AsyncSession, email: str, password: str) -> User:
    """
    Raises:
        InvalidCredentials: unknown email or wrong password
        HTTPException: 403 if the account is deactivated
    """
    result = await db.execute(select(User).where(User.email == email.lower()))
    user = result.scalar_one_or_none()

    if user is None or not verify_password(password, user.password_hash):
        log.info("Failed login for %s", email)
        raise InvalidCredentials()
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )
    return user


async def _resolve(db: AsyncSession, user: User, organization: str) -> tuple[PrincipalSession, ResolvedMembership]:
    outcome = await resolve_session(db, user, organization)
    if isinstance(outcome, OrganizationSelection):
        log.error("Resolving user %s into organization %s returned a selection", user.id, organization)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Organization could not be resolved",
        )
    return outcome


# ============================================================================
# Authentication
# ============================================================================

@auth_router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(config.LOGIN_RATE_LIMIT)
async def register(
    request: Request,
    data: RegisterRequest,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """
    Create an account. With ``organization_name`` a new organization is
    created and the user becomes its owner; with ``invite_code`` the user
    joins that organization with its default role.
    """
    email = data.email.lower()
    password_hash = hash_password(data.password)

    for attempt in range(2):
        result = await db.execute(select(User.id).where(User.email == email))
        if result.first() is not None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Email already registered"
            )

        user = User(
            email=email,
            username=data.username,
            first_name=data.first_name,
            last_name=data.last_name,
            password_hash=password_hash,
            last_login_at=utcnow(),
        )
        db.add(user)
        try:
            await db.flush()
            if data.organization_name:
                organization, _ = await create_organization(db, user, data.organization_name)
            else:
                membership = await join_with_invite_code(db, user, data.invite_code)
                organization = await db.get(Organization, membership.organization_id)
            session, resolved = await _resolve(db, user, organization.id)
            await db.commit()
            break
        except IntegrityError:
            # Concurrent registration took the email, slug or invite code
            await db.rollback()
            if attempt:
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail="Registration conflicted with another request, please retry"
                )
            log.warning("Registration for %s hit a uniqueness conflict, retrying", email)

    await db.refresh(user)
    log.info("Registered user %s into organization %s", user.id, session.organization_id)
    return _session_response("Registration successful", user, session, resolved)


@auth_router.post("/login", response_model=AuthResponse)
@limiter.limit(config.LOGIN_RATE_LIMIT)
async def login(
    request: Request,
    credentials: LoginRequest,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """
    Sign in. Users with several organizations must name one; without it the
    response lists the candidates and carries no token.
    """
    user = await _authenticate(db, credentials.email, credentials.password)

    outcome = await resolve_session(db, user, credentials.organization)
    if isinstance(outcome, OrganizationSelection):
        log.info("User %s must select one of %d organizations", user.id, len(outcome.candidates))
        return _selection_response(outcome)

    session, resolved = outcome
    user.last_login_at = utcnow()
    await db.commit()
    await db.refresh(user)

    log.info("User %s logged into organization %s as %s", user.id, session.organization_id, session.role_name)
    return _session_response("Login successful", user, session, resolved)


@auth_router.post("/join", response_model=AuthResponse)
@limiter.limit(config.LOGIN_RATE_LIMIT)
async def join_organization(
    request: Request,
    data: JoinRequest,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Join an organization by invite code and sign into it."""
    user = await _authenticate(db, data.email, data.password)
    membership = await join_with_invite_code(db, user, data.invite_code)
    session, resolved = await _resolve(db, user, membership.organization_id)

    user.last_login_at = utcnow()
    await db.commit()
    await db.refresh(user)
    return _session_response("Joined organization", user, session, resolved)


@auth_router.post("/switch", response_model=AuthResponse)
async def switch_organization(
    switch_data: SwitchOrganizationRequest,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Issue a token for another organization the user is an active member of."""
    session, resolved = await _resolve(db, user, switch_data.organization)
    return _session_response("Organization switched successfully", user, session, resolved)


@auth_router.post("/refresh", response_model=AuthResponse)
async def refresh_token(
    current: Annotated[PrincipalSession, Depends(get_current_session)],
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Re-issue the token from the current role and membership state."""
    session, resolved = await _resolve(db, user, current.organization_id)
    return _session_response("Token refreshed", user, session, resolved)


# ============================================================================
# Users
# ============================================================================

@router.get("/me", response_model=CurrentUserResponse)
async def get_current_user_profile(
    session: Annotated[PrincipalSession, Depends(get_current_session)],
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Current user, organization and the permissions carried by the token."""
    organization = await db.get(Organization, session.organization_id)
    if organization is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Organization not found"
        )
    return CurrentUserResponse(
        user=UserResponse.model_validate(user),
        organization=OrganizationPublic.model_validate(organization),
        role=session.role_name,
        permissions=list(session.permissions),
        is_admin=session.is_admin,
    )


@router.patch("/me", response_model=UserResponse)
async def update_current_user_profile(
    update_data: UserUpdate,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Update current user's profile."""
    for field, value in update_data.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(user, field, value)

    await db.commit()
    await db.refresh(user)
    return user


@router.get("/me/organizations", response_model=list[OrganizationChoice])
async def list_my_organizations(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Organizations the user can sign into."""
    return [
        OrganizationChoice(
            id=m.organization.id,
            slug=m.organization.slug,
            name=m.organization.name,
            role=m.role.name,
            role_display_name=m.role.display_name,
        )
        for m in await get_active_memberships(db, user.id)
    ]
