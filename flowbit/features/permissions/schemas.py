"""
Pydantic schemas for role management and permission checks.
"""
from datetime import datetime
from typing import Dict, Any, List, Literal, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator

from flowbit.features.permissions.evaluator import normalize_permissions


def _validate_permissions(v: List[str]) -> List[str]:
    try:
        return normalize_permissions(v)
    except ValueError as e:
        raise ValueError(str(e)) from None


# ============================================================================
# Role Schemas
# ============================================================================

class RoleBase(BaseModel):
    """Base role schema."""
    display_name: str = Field(..., min_length=1, max_length=100, description="Human readable role name")
    description: Optional[str] = Field(None, max_length=1000, description="Role description")


class RoleCreate(RoleBase):
    """Schema for creating a custom role in the current organization."""
    name: str = Field(..., min_length=1, max_length=50, pattern=r"^[a-z][a-z0-9_-]*$", description="Machine key")
    permissions: List[str] = Field(..., description="Permission strings, e.g. 'tasks.*' or 'projects.view'")

    @field_validator("permissions")
    @classmethod
    def permissions_known(cls, v: List[str]) -> List[str]:
        return _validate_permissions(v)


class RoleUpdate(BaseModel):
    """Schema for updating a custom role. Unset fields are left unchanged."""
    display_name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    permissions: Optional[List[str]] = None

    @field_validator("permissions")
    @classmethod
    def permissions_known(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            return v
        return _validate_permissions(v)


class RoleResponse(RoleBase):
    """Schema for role response."""
    id: str
    name: str
    permissions: List[str] = []
    is_system: bool
    organization_id: Optional[str]
    created_at: datetime
    updated_at: datetime
    member_count: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Permission Check Schemas
# ============================================================================

class PermissionCheckRequest(BaseModel):
    """Check the caller's own permissions."""
    permissions: List[str] = Field(..., min_length=1, description="Permissions to check")
    mode: Literal["all", "any"] = Field("all", description="Require all of them or any of them")


class PermissionCheckResponse(BaseModel):
    allowed: bool
    results: Dict[str, bool]


class SessionPermissionsResponse(BaseModel):
    """What the caller's current token grants."""
    user_id: str
    organization_id: str
    organization_slug: str
    role: str
    permissions: List[str]
    is_admin: bool


# ============================================================================
# Audit Log Schemas
# ============================================================================

class AuditLogResponse(BaseModel):
    """Schema for audit log response."""
    id: str
    user_id: Optional[str]
    action: str
    resource_type: str
    resource_id: Optional[str]
    organization_id: Optional[str]
    details: Optional[Dict[str, Any]]
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogListResponse(BaseModel):
    """Schema for paginated audit log list."""
    items: List[AuditLogResponse]
    total: int
    page: int
    page_size: int
    pages: int
