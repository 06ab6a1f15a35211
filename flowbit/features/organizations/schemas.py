"""
Pydantic schemas for organization-related requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, Field, EmailStr

from flowbit.features.organizations.models import MembershipStatus, PlanTier


class OrganizationPublic(BaseModel):
    """Public organization information (limited fields)."""
    id: str
    name: str
    slug: str

    model_config = {"from_attributes": True}


class OrganizationResponse(OrganizationPublic):
    """Full organization details, visible to its members."""
    description: str | None = None
    invite_code: str | None = Field(None, description="Only shown to organization admins")
    invite_code_enabled: bool
    default_role_id: str | None = None
    plan: PlanTier
    max_users: int
    max_projects: int
    is_active: bool
    created_at: datetime
    updated_at: datetime
    member_count: int | None = Field(None, description="Number of active members")

    model_config = {"from_attributes": True}


class OrganizationUpdate(BaseModel):
    """Schema for updating organization information."""
    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = Field(None, max_length=1000)
    invite_code_enabled: bool | None = None
    default_role_id: str | None = None


class InviteCodeResponse(BaseModel):
    invite_code: str
    invite_code_enabled: bool


# Member Schemas
class MemberResponse(BaseModel):
    """A user's membership in the current organization."""
    membership_id: str
    user_id: str
    email: str
    username: str
    first_name: str | None = None
    last_name: str | None = None
    role_id: str
    role_name: str
    role_display_name: str
    status: MembershipStatus
    invited_at: datetime | None = None
    joined_at: datetime | None = None


class UpdateMemberRole(BaseModel):
    role_id: str = Field(..., description="Role to assign (own or global system role)")


class UpdateMemberStatus(BaseModel):
    status: MembershipStatus


# Invitation Schemas
class InvitationCreate(BaseModel):
    """Invite an existing user; the membership stays pending until activated."""
    email: EmailStr
    role_id: str | None = Field(None, description="Defaults to the organization's default role")


class InvitationResponse(BaseModel):
    membership_id: str
    user_id: str
    email: str
    role_id: str
    status: MembershipStatus
    invited_by_id: str | None = None
    invited_at: datetime | None = None
