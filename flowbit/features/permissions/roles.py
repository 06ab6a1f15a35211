"""
System role catalogue and role store helpers.

Every organization is seeded with an ``owner`` and a ``member`` role. The
global catalogue (organization_id = null) is seeded once by
``scripts/seed_roles.py`` and is visible to every organization.
"""
from dataclasses import dataclass
from sqlalchemy import select, update, or_, func
from sqlalchemy.ext.asyncio import AsyncSession

from flowbit.features.organizations.models import Organization, Membership, MembershipStatus
from flowbit.features.permissions.evaluator import normalize_permissions
from flowbit.features.permissions.models import Role
from flowbit.utils import get_logger


log = get_logger(__name__)


@dataclass(frozen=True)
class RoleDefinition:
    name: str
    display_name: str
    description: str
    permissions: tuple[str, ...]


OWNER_ROLE = RoleDefinition(
    "owner", "Organization Owner", "Full control over the organization", ("*",)
)
MEMBER_ROLE = RoleDefinition(
    "member", "Team Member", "Default role for team members",
    ("projects.view", "tasks.view", "tasks.create", "tasks.edit"),
)

ORGANIZATION_ROLES: tuple[RoleDefinition, ...] = (OWNER_ROLE, MEMBER_ROLE)

GLOBAL_ROLES: tuple[RoleDefinition, ...] = (
    RoleDefinition(
        "org_owner", "Organization Owner", "Full access within organization",
        ("org.*", "projects.*", "tasks.*", "users.*", "settings.*"),
    ),
    RoleDefinition(
        "org_admin", "Organization Admin", "Administrative access within organization",
        ("projects.*", "tasks.*", "users.view", "users.invite", "settings.view"),
    ),
    RoleDefinition(
        "project_manager", "Project Manager", "Manage projects and teams",
        ("projects.view", "projects.edit", "projects.create", "tasks.*", "users.view"),
    ),
    RoleDefinition(
        "team_lead", "Team Lead", "Lead team members and manage assigned projects",
        ("projects.view", "projects.edit", "tasks.*", "users.view"),
    ),
    RoleDefinition(
        "developer", "Developer", "Work on tasks and projects",
        ("projects.view", "tasks.view", "tasks.edit", "tasks.create", "tasks.comment"),
    ),
    RoleDefinition(
        "viewer", "Viewer", "Read-only access to assigned projects",
        ("projects.view", "tasks.view"),
    ),
)


def _build_role(definition: RoleDefinition, organization_id: str | None) -> Role:
    return Role(
        name=definition.name,
        display_name=definition.display_name,
        description=definition.description,
        permissions=normalize_permissions(definition.permissions),
        is_system=True,
        organization_id=organization_id,
    )


async def seed_organization_roles(db: AsyncSession, organization: Organization) -> dict[str, Role]:
    """
    Create the organization's system roles if missing and point
    ``default_role_id`` at ``member``. Returns roles keyed by name.
    """
    result = await db.execute(select(Role).where(Role.organization_id == organization.id))
    roles = {role.name: role for role in result.scalars().all()}

    for definition in ORGANIZATION_ROLES:
        if definition.name not in roles:
            role = _build_role(definition, organization.id)
            db.add(role)
            roles[definition.name] = role
    await db.flush()

    if organization.default_role_id is None:
        organization.default_role_id = roles[MEMBER_ROLE.name].id
        await db.flush()

    log.debug("Seeded roles %s for organization %s", sorted(roles), organization.id)
    return roles


async def seed_system_roles(db: AsyncSession) -> int:
    """Create missing global system roles. Returns how many were created."""
    result = await db.execute(select(Role.name).where(Role.organization_id.is_(None)))
    existing = set(result.scalars().all())

    created = 0
    for definition in GLOBAL_ROLES:
        if definition.name in existing:
            continue
        db.add(_build_role(definition, None))
        created += 1
    await db.flush()
    return created


async def list_roles_for_org(db: AsyncSession, organization_id: str) -> list[Role]:
    """Organization roles plus the global catalogue, system roles first."""
    result = await db.execute(
        select(Role)
        .where(or_(Role.organization_id == organization_id, Role.organization_id.is_(None)))
        .order_by(Role.is_system.desc(), Role.created_at, Role.name)
    )
    return list(result.scalars().all())


async def get_role_for_org(db: AsyncSession, role_id: str, organization_id: str) -> Role | None:
    """A role visible to the organization: its own or a global one."""
    result = await db.execute(
        select(Role).where(
            Role.id == role_id,
            or_(Role.organization_id == organization_id, Role.organization_id.is_(None)),
        )
    )
    return result.scalar_one_or_none()


async def count_role_members(db: AsyncSession, role_id: str, organization_id: str | None = None) -> int:
    """Memberships holding the role, not counting members who left."""
    stmt = select(func.count(Membership.id)).where(
        Membership.role_id == role_id,
        Membership.status != MembershipStatus.LEFT,
    )
    if organization_id is not None:
        stmt = stmt.where(Membership.organization_id == organization_id)
    result = await db.execute(stmt)
    return result.scalar_one()


async def reassign_departed_members(db: AsyncSession, role_id: str, organization: Organization) -> int:
    """
    Point memberships that left the organization while holding ``role_id`` at
    the default role, so the role can be deleted. Rejoining assigns the
    default role anyway. Returns how many memberships moved.
    """
    if organization.default_role_id is None:
        await seed_organization_roles(db, organization)

    result = await db.execute(
        update(Membership)
        .where(
            Membership.organization_id == organization.id,
            Membership.role_id == role_id,
            Membership.status == MembershipStatus.LEFT,
        )
        .values(role_id=organization.default_role_id)
    )
    return result.rowcount


async def role_name_taken(db: AsyncSession, name: str, organization_id: str) -> bool:
    result = await db.execute(
        select(Role.id).where(
            Role.name == name,
            or_(Role.organization_id == organization_id, Role.is_system.is_(True)),
        )
    )
    return result.first() is not None
