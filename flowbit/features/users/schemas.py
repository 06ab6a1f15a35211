"""
Pydantic schemas for user and authentication requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field, model_validator

from flowbit.features.organizations.schemas import OrganizationPublic


class UserResponse(BaseModel):
    """Schema for user responses."""
    id: str
    email: EmailStr
    username: str
    first_name: str | None = None
    last_name: str | None = None
    is_active: bool
    last_login_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class UserUpdate(BaseModel):
    """Schema for updating user information."""
    username: str | None = Field(None, min_length=1, max_length=50)
    first_name: str | None = Field(None, max_length=50)
    last_name: str | None = Field(None, max_length=50)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)
    organization: str | None = Field(None, description="Slug or id of the organization to sign into")


class RegisterRequest(BaseModel):
    """Create an account together with a new organization, or join one by invite code."""
    email: EmailStr
    username: str = Field(..., min_length=1, max_length=50)
    password: str = Field(..., min_length=8, max_length=128)
    first_name: str | None = Field(None, max_length=50)
    last_name: str | None = Field(None, max_length=50)
    organization_name: str | None = Field(None, min_length=1, max_length=100)
    invite_code: str | None = Field(None, max_length=20)

    @model_validator(mode="after")
    def one_organization_source(self) -> "RegisterRequest":
        if bool(self.organization_name) == bool(self.invite_code):
            raise ValueError("Provide exactly one of organization_name or invite_code")
        return self


class JoinRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)
    invite_code: str = Field(..., min_length=1, max_length=20)


class SwitchOrganizationRequest(BaseModel):
    organization: str = Field(..., description="Slug or id of the organization to switch to")


class OrganizationChoice(BaseModel):
    id: str
    slug: str
    name: str
    role: str
    role_display_name: str


class AuthResponse(BaseModel):
    """
    Either a session (token, user, organization, permissions) or, when the
    user belongs to several organizations and chose none, the list to pick from.
    """
    message: str
    token: str | None = None
    user: UserResponse | None = None
    organization: OrganizationPublic | None = None
    role: str | None = None
    permissions: list[str] = []
    require_organization_selection: bool = False
    organizations: list[OrganizationChoice] = []


class CurrentUserResponse(BaseModel):
    user: UserResponse
    organization: OrganizationPublic
    role: str
    permissions: list[str]
    is_admin: bool
